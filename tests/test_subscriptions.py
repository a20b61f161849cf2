"""
Tests for plans and Paystack-backed subscriptions.

Paystack is never called: tailor_platform.billing.paystack.verify_transaction is patched.
"""
import pytest

from tailor_platform.billing import paystack
from tailor_platform.db import connect


def _paid_tx(user_id, amount_kobo=300000, **extra):
    tx = {
        "id": 987654,
        "status": "success",
        "amount": amount_kobo,
        "currency": "NGN",
        "paid_at": "2026-01-01T10:00:00Z",
        "metadata": {"user_id": user_id},
        "customer": {"customer_code": "CUS_test"},
        "authorization": {
            "authorization_code": "AUTH_abc123",
            "last4": "4081",
            "exp_month": "12",
            "exp_year": "2030",
            "card_type": "visa",
            "bank": "Test Bank",
            "reusable": True,
        },
    }
    tx.update(extra)
    return tx


@pytest.fixture
def fake_paystack(monkeypatch):
    """Patch verify_transaction; returns a dict of reference -> transaction to fill per test."""
    transactions = {}
    calls = []

    def _verify(cfg, reference):
        calls.append(reference)
        return transactions[reference]

    monkeypatch.setattr(paystack, "verify_transaction", _verify)
    transactions["_calls"] = calls
    return transactions


def test_list_plans(client):
    """Six plans: Growth / Professional / Enterprise, monthly and annual."""
    r = client.get("/plans")
    assert r.status_code == 200
    plans = r.json()["plans"]
    assert len(plans) == 6
    slugs = {p["slug"] for p in plans}
    assert {"growth-monthly", "professional-annual", "enterprise-monthly"} <= slugs

    r = client.get("/plans", params={"interval": "monthly"})
    monthly = r.json()["plans"]
    assert [p["name"] for p in monthly] == ["Growth", "Professional", "Enterprise"]
    assert monthly[0]["is_free"] is True
    assert monthly[2]["unlimited_clients"] is True

    annual = client.get("/plans", params={"interval": "annual"}).json()["plans"]
    assert annual[1]["price"] == monthly[1]["price"] * 10


def test_list_plans_invalid_interval(client):
    r = client.get("/plans", params={"interval": "weekly"})
    assert r.status_code == 400
    assert r.json()["detail"] == "invalid_interval"


def test_get_plan_by_name_and_interval(client):
    r = client.get("/plans/professional", params={"interval": "annual"})
    assert r.status_code == 200
    assert r.json()["plan"]["slug"] == "professional-annual"

    r = client.get("/plans/platinum")
    assert r.status_code == 404


def test_workshop_requires_subscription(client, register):
    """Without an active subscription the workshop endpoints answer 402."""
    account = register()
    r = client.get("/clients", headers=account["headers"])
    assert r.status_code == 402
    assert r.json()["detail"] == "subscription_required"


def test_subscribe_to_free_plan(client, register, cfg):
    """Free plans activate immediately and refresh the session."""
    account = register()
    r = client.post("/subscriptions", json={"plan_id": "growth-monthly"}, headers=account["headers"])
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["processed"] is True
    assert body["subscription"]["status"] == "active"
    assert body["plan"]["slug"] == "growth-monthly"
    assert body["token"]
    assert body["user"]["subscription_status"] == "active"
    assert body["user"]["onboarding_step"] == "setup"
    assert r.cookies.get("tp_sub") == "active"

    r = client.get("/subscriptions/current", headers=account["headers"])
    assert r.status_code == 200
    cur = r.json()
    assert cur["active"] is True
    assert cur["plan"]["name"] == "Growth"

    # A welcome notification was created.
    items = client.get("/notifications", headers=account["headers"]).json()["items"]
    assert any(n["type"] == "subscription" for n in items)


def test_paid_plan_requires_reference(client, register):
    account = register()
    r = client.post("/subscriptions", json={"plan_id": "professional-monthly"}, headers=account["headers"])
    assert r.status_code == 400
    assert r.json()["detail"] == "payment_reference_required"


def test_paid_plan_without_paystack_key_is_not_configured(client, register):
    """No PAYSTACK_SECRET_KEY -> 501."""
    account = register()
    r = client.post(
        "/payments/verify",
        json={"reference": "ref_no_key", "plan_id": "professional-monthly"},
        headers=account["headers"],
    )
    assert r.status_code == 501
    assert r.json()["detail"] == "paystack_secret_key_missing"


def test_verify_payment_activates_paid_plan(client, register, fake_paystack):
    """A verified Paystack transaction activates the plan, records the payment and stores the card."""
    account = register()
    uid = account["user"]["user_id"]
    fake_paystack["ref_pro_1"] = _paid_tx(uid)

    r = client.post(
        "/payments/verify",
        json={"reference": "ref_pro_1", "plan_id": "professional", "billing_interval": "monthly"},
        headers=account["headers"],
    )
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["processed"] is True
    assert body["plan"]["slug"] == "professional-monthly"
    assert body["subscription"]["payment_reference"] == "ref_pro_1"

    history = client.get("/subscriptions/billing-history", headers=account["headers"]).json()["payments"]
    assert len(history) == 1
    assert history[0]["amount"] == 3000.0
    assert history[0]["status"] == "successful"

    methods = client.get("/subscriptions/payment-methods", headers=account["headers"]).json()["payment_methods"]
    assert len(methods) == 1
    assert methods[0]["last4"] == "4081"
    assert methods[0]["is_default"] is True

    r = client.get(f"/subscriptions/invoice/{history[0]['payment_id']}", headers=account["headers"])
    assert r.status_code == 200
    assert "text/html" in r.headers["content-type"]
    assert f"Invoice #{history[0]['payment_id']}" in r.text


def test_verify_payment_is_idempotent(client, register, fake_paystack):
    """Replaying a reference does not charge or activate twice."""
    account = register()
    fake_paystack["ref_once"] = _paid_tx(account["user"]["user_id"])
    payload = {"reference": "ref_once", "plan_id": "professional-monthly"}

    first = client.post("/payments/verify", json=payload, headers=account["headers"])
    assert first.json()["processed"] is True
    second = client.post("/payments/verify", json=payload, headers=account["headers"])
    assert second.status_code == 200
    assert second.json()["processed"] is False
    assert fake_paystack["_calls"] == ["ref_once"]

    history = client.get("/subscriptions/billing-history", headers=account["headers"]).json()["payments"]
    assert len(history) == 1


def test_verify_payment_rejects_short_amount_and_allows_retry(client, register, fake_paystack):
    """An underpaid transaction is rejected and its reference released."""
    account = register()
    uid = account["user"]["user_id"]
    fake_paystack["ref_short"] = _paid_tx(uid, amount_kobo=100)
    payload = {"reference": "ref_short", "plan_id": "professional-monthly"}

    r = client.post("/payments/verify", json=payload, headers=account["headers"])
    assert r.status_code == 400
    assert r.json()["detail"] == "amount_mismatch"

    fake_paystack["ref_short"] = _paid_tx(uid)
    r = client.post("/payments/verify", json=payload, headers=account["headers"])
    assert r.status_code == 200
    assert r.json()["processed"] is True


def test_verify_payment_rejects_other_users_transaction(client, register, fake_paystack):
    account = register()
    fake_paystack["ref_other"] = _paid_tx(account["user"]["user_id"] + 1000)
    r = client.post(
        "/payments/verify",
        json={"reference": "ref_other", "plan_id": "professional-monthly"},
        headers=account["headers"],
    )
    assert r.status_code == 400
    assert r.json()["detail"] == "reference_user_mismatch"


def test_verify_payment_rejects_failed_transaction(client, register, fake_paystack):
    account = register()
    fake_paystack["ref_failed"] = _paid_tx(account["user"]["user_id"], status="failed")
    r = client.post(
        "/payments/verify",
        json={"reference": "ref_failed", "plan_id": "professional-monthly"},
        headers=account["headers"],
    )
    assert r.status_code == 400
    assert r.json()["detail"] == "payment_not_successful"


def test_change_plan(client, tailor, fake_paystack):
    """Upgrading keeps a single active subscription; the same plan is a 409."""
    r = client.post("/subscriptions/change-plan", json={"plan_id": "growth-monthly"}, headers=tailor["headers"])
    assert r.status_code == 409
    assert r.json()["detail"] == "already_on_plan"

    fake_paystack["ref_upgrade"] = _paid_tx(tailor["user"]["user_id"], amount_kobo=500000)
    r = client.post(
        "/subscriptions/change-plan",
        json={"plan_id": "enterprise-monthly", "reference": "ref_upgrade"},
        headers=tailor["headers"],
    )
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["plan"]["slug"] == "enterprise-monthly"
    assert body["subscription"]["metadata"]["previous_plan_id"]

    from tailor_platform.db import connect
    from tailor_platform.config import load_config

    with connect(load_config().DB_DSN) as conn:
        n = conn.execute(
            "SELECT COUNT(*) AS n FROM subscriptions WHERE user_id=? AND status='active'",
            (tailor["user"]["user_id"],),
        ).fetchone()["n"]
    assert n == 1


def test_change_plan_without_subscription(client, register):
    account = register()
    r = client.post("/subscriptions/change-plan", json={"plan_id": "growth-monthly"}, headers=account["headers"])
    assert r.status_code == 400
    assert r.json()["detail"] == "no_active_subscription"


def test_cancel_subscription_locks_workshop(client, tailor):
    """After canceling, workshop endpoints answer 402 again."""
    assert client.get("/clients", headers=tailor["headers"]).status_code == 200

    r = client.post("/subscriptions/cancel", json={"reason": "closing shop"}, headers=tailor["headers"])
    assert r.status_code == 200
    body = r.json()
    assert body["subscription"]["status"] == "canceled"
    assert body["subscription"]["metadata"]["cancel_reason"] == "closing shop"
    assert body["user"]["subscription_status"] == "canceled"

    r = client.get("/clients", headers=tailor["headers"])
    assert r.status_code == 402

    r = client.post("/subscriptions/cancel", json={}, headers=tailor["headers"])
    assert r.status_code == 400
    assert r.json()["detail"] == "no_active_subscription"


def test_overdue_subscription_locks_workshop_without_sweep(client, tailor, cfg):
    """Access stops at end_date even when nothing else has expired the subscription yet."""
    uid = tailor["user"]["user_id"]
    assert client.get("/clients", headers=tailor["headers"]).status_code == 200
    with connect(cfg.DB_DSN) as conn:
        conn.execute(
            "UPDATE subscriptions SET end_date=? WHERE user_id=? AND status='active'", ("2020-01-01T00:00:00Z", uid)
        )

    r = client.get("/clients", headers=tailor["headers"])
    assert r.status_code == 402
    assert r.json()["detail"] == "subscription_required"

    with connect(cfg.DB_DSN) as conn:
        status = conn.execute("SELECT status FROM subscriptions WHERE user_id=?", (uid,)).fetchone()["status"]
        user_status = conn.execute("SELECT subscription_status FROM users WHERE user_id=?", (uid,)).fetchone()[
            "subscription_status"
        ]
    assert status == "expired"
    assert user_status == "expired"
    assert client.get("/subscriptions/current", headers=tailor["headers"]).json()["active"] is False


def test_invoice_of_other_user_is_not_found(client, tailor):
    r = client.get("/subscriptions/invoice/999", headers=tailor["headers"])
    assert r.status_code == 404
    assert r.json()["detail"] == "payment_not_found"
