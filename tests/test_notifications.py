"""
Tests for in-app notifications and the periodic notification sweep.
"""
import pytest

from tailor_platform.db import connect
from tailor_platform.notifications.service import create_notification
from tailor_platform.util.time import iso_after, utcnow_iso


def _notify(cfg, user_id, title, **kw):
    kw.setdefault("type", "system")
    kw.setdefault("severity", "info")
    kw.setdefault("message", f"{title} message")
    with connect(cfg.DB_DSN) as conn:
        return create_notification(conn, user_id=user_id, title=title, **kw)


def _move_to_paid_plan(cfg, user_id, *, end_in_days, billing_in_days=None, slug="professional-monthly"):
    with connect(cfg.DB_DSN) as conn:
        plan_id = conn.execute("SELECT plan_id FROM plans WHERE slug=?", (slug,)).fetchone()["plan_id"]
        conn.execute(
            "UPDATE subscriptions SET plan_id=?, end_date=?, next_billing_date=? WHERE user_id=? AND status='active'",
            (
                plan_id,
                iso_after(days=end_in_days),
                iso_after(days=billing_in_days) if billing_in_days is not None else None,
                user_id,
            ),
        )


def test_list_mark_read_and_delete(client, register, cfg):
    account = register()
    uid = account["user"]["user_id"]
    a = _notify(cfg, uid, "Welcome")
    b = _notify(cfg, uid, "Tip of the day")

    r = client.get("/notifications", headers=account["headers"])
    assert r.status_code == 200
    body = r.json()
    assert body["unread_count"] == 2
    assert {n["title"] for n in body["items"]} == {"Welcome", "Tip of the day"}

    r = client.post(f"/notifications/{a['notification_id']}/read", headers=account["headers"])
    assert r.status_code == 200
    assert r.json()["notification"]["is_read"] is True

    unread = client.get("/notifications", params={"unread_only": True}, headers=account["headers"]).json()
    assert [n["title"] for n in unread["items"]] == ["Tip of the day"]
    assert unread["unread_count"] == 1

    r = client.post("/notifications/read-all", headers=account["headers"])
    assert r.json()["updated"] == 1

    r = client.delete(f"/notifications/{b['notification_id']}", headers=account["headers"])
    assert r.status_code == 200
    assert len(client.get("/notifications", headers=account["headers"]).json()["items"]) == 1


def test_notifications_are_private(client, register, cfg):
    owner = register(email="owner@example.com")
    other = register(email="other@example.com")
    n = _notify(cfg, owner["user"]["user_id"], "Secret")
    r = client.post(f"/notifications/{n['notification_id']}/read", headers=other["headers"])
    assert r.status_code == 404
    assert r.json()["detail"] == "notification_not_found"
    assert client.get("/notifications", headers=other["headers"]).json()["items"] == []


def test_create_notification_dedupes_and_validates(register, cfg):
    account = register()
    uid = account["user"]["user_id"]
    first = _notify(cfg, uid, "Same title")
    again = _notify(cfg, uid, "Same title", message="different body")
    assert again["notification_id"] == first["notification_id"]

    with pytest.raises(ValueError, match="invalid_notification_type"):
        _notify(cfg, uid, "Bad", type="marketing")


def test_expired_notifications_are_hidden(client, register, cfg):
    account = register()
    uid = account["user"]["user_id"]
    with connect(cfg.DB_DSN) as conn:
        conn.execute(
            """
            INSERT INTO notifications (user_id, type, severity, title, message, is_read, expires_at, created_at, updated_at)
            VALUES (?, 'system', 'info', 'Old news', 'gone', 0, ?, ?, ?)
            """,
            (uid, "2000-01-01T00:00:00Z", utcnow_iso(), utcnow_iso()),
        )
    body = client.get("/notifications", headers=account["headers"]).json()
    assert body["items"] == []
    assert body["unread_count"] == 0


def test_sweep_generates_renewal_and_expiry_alerts(client, tailor, cfg, admin_headers):
    uid = tailor["user"]["user_id"]
    _move_to_paid_plan(cfg, uid, end_in_days=5, billing_in_days=2)

    r = client.post("/admin/generate-notifications", headers=admin_headers)
    assert r.status_code == 200, r.text
    counts = r.json()["counts"]
    assert counts["payment_reminders"] == 1
    assert counts["expiration_alerts"] == 1

    items = client.get("/notifications", headers=tailor["headers"]).json()["items"]
    by_title = {n["title"]: n for n in items}
    assert by_title["Upcoming Subscription Renewal"]["severity"] == "warning"
    assert by_title["Subscription Expiring Soon"]["severity"] == "warning"
    assert by_title["Subscription Expiring Soon"]["action_url"] == "/settings/billing"

    # Running again does not duplicate anything.
    client.post("/admin/generate-notifications", headers=admin_headers)
    again = client.get("/notifications", headers=tailor["headers"]).json()["items"]
    assert len(again) == len(items)


def test_sweep_expires_overdue_subscriptions(client, tailor, cfg, admin_headers):
    _move_to_paid_plan(cfg, tailor["user"]["user_id"], end_in_days=-1)

    counts = client.post("/admin/generate-notifications", headers=admin_headers).json()["counts"]
    assert counts["expired_subscriptions"] == 1

    items = client.get("/notifications", headers=tailor["headers"]).json()["items"]
    expired = [n for n in items if n["title"] == "Subscription Expired"]
    assert expired and expired[0]["severity"] == "critical"

    r = client.get("/clients", headers=tailor["headers"])
    assert r.status_code == 402


def test_sweep_warns_about_usage(client, tailor, cfg, admin_headers):
    uid = tailor["user"]["user_id"]
    _move_to_paid_plan(cfg, uid, end_in_days=60)
    now = utcnow_iso()
    with connect(cfg.DB_DSN) as conn:
        for i in range(185):
            conn.execute(
                "INSERT INTO clients (user_id, name, created_at, updated_at) VALUES (?,?,?,?)",
                (uid, f"Client {i}", now, now),
            )

    counts = client.post("/admin/generate-notifications", headers=admin_headers).json()["counts"]
    assert counts["usage_warnings"] == 1

    items = client.get("/notifications", headers=tailor["headers"]).json()["items"]
    warning = next(n for n in items if n["title"] == "Client Limit Approaching")
    assert warning["severity"] == "warning"
    assert warning["metadata"] == {"kind": "clients", "used": 185, "limit": 200}


def test_sweep_cleans_up_expired_rows(client, register, cfg, admin_headers):
    account = register()
    with connect(cfg.DB_DSN) as conn:
        conn.execute(
            """
            INSERT INTO notifications (user_id, type, severity, title, message, is_read, expires_at, created_at, updated_at)
            VALUES (?, 'system', 'info', 'Stale', 'old', 0, '2000-01-01T00:00:00Z', ?, ?)
            """,
            (account["user"]["user_id"], utcnow_iso(), utcnow_iso()),
        )
    counts = client.post("/admin/generate-notifications", headers=admin_headers).json()["counts"]
    assert counts["cleaned_up"] == 1
