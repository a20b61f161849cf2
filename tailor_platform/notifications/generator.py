"""Periodic notification sweep.

Runs from the worker (GENERATE_NOTIFICATIONS jobs / periodic schedule), the admin endpoint
and scripts/generate_notifications.py. Every step is idempotent: create_notification dedupes
on (user, type, title) while the previous notification is unexpired.
"""

from __future__ import annotations

from datetime import timedelta
from typing import Any, Dict

from tailor_platform.billing.subscriptions import expire_overdue
from tailor_platform.db import touch_app_config
from tailor_platform.notifications.service import BILLING_URL, create_notification
from tailor_platform.util.time import days_until, iso_after, parse_iso, to_iso, utcnow, utcnow_iso
from tailor_platform.workshop.limits import usage_count


REMINDER_WINDOW_DAYS = 7
REMINDER_WARNING_DAYS = 3
EXPIRY_WINDOW_DAYS = 14
EXPIRY_WARNING_DAYS = 7
USAGE_INFO_PCT = 80
USAGE_WARNING_PCT = 90


def _debug(msg: str) -> None:
    print(f"[notifications] {msg}")


_ACTIVE_PAID_SQL = """
    SELECT s.*, p.name AS plan_name, p.price AS plan_price, p.max_clients, p.max_styles
    FROM subscriptions s
    JOIN plans p ON p.plan_id = s.plan_id
    WHERE s.status='active' AND p.price > 0
"""


def generate_payment_reminders(conn: Any) -> int:
    now = utcnow()
    horizon = to_iso(now + timedelta(days=REMINDER_WINDOW_DAYS))
    rows = conn.execute(
        _ACTIVE_PAID_SQL + " AND s.next_billing_date IS NOT NULL AND s.next_billing_date > ? AND s.next_billing_date <= ?",
        (to_iso(now), horizon),
    ).fetchall()
    n = 0
    for r in rows:
        due = parse_iso(r["next_billing_date"])
        if due is None:
            continue
        days = days_until(due, now)
        create_notification(
            conn,
            user_id=int(r["user_id"]),
            type="payment",
            severity="warning" if days < REMINDER_WARNING_DAYS else "info",
            title="Upcoming Subscription Renewal",
            message=(
                f"Your {r['plan_name']} plan will renew in {days} days. "
                "Please ensure your payment method is up to date."
            ),
            action_url=BILLING_URL,
            action_text="Manage Billing",
            expires_at=str(r["next_billing_date"]),
            metadata={"subscription_id": int(r["subscription_id"]), "days_until_renewal": days},
        )
        n += 1
    return n


def generate_expiration_alerts(conn: Any) -> int:
    now = utcnow()
    horizon = to_iso(now + timedelta(days=EXPIRY_WINDOW_DAYS))
    rows = conn.execute(
        _ACTIVE_PAID_SQL + " AND s.end_date IS NOT NULL AND s.end_date > ? AND s.end_date <= ?",
        (to_iso(now), horizon),
    ).fetchall()
    n = 0
    for r in rows:
        end = parse_iso(r["end_date"])
        if end is None:
            continue
        days = days_until(end, now)
        create_notification(
            conn,
            user_id=int(r["user_id"]),
            type="subscription",
            severity="warning" if days < EXPIRY_WARNING_DAYS else "info",
            title="Subscription Expiring Soon",
            message=(
                f"Your {r['plan_name']} plan will expire in {days} days. "
                "Renew now to avoid service interruption."
            ),
            action_url=BILLING_URL,
            action_text="Renew Subscription",
            expires_at=str(r["end_date"]),
            metadata={"subscription_id": int(r["subscription_id"]), "days_until_expiration": days},
        )
        n += 1
    return n


def expire_overdue_subscriptions(conn: Any) -> int:
    expired = expire_overdue(conn)
    for sub in expired:
        plan = conn.execute("SELECT name FROM plans WHERE plan_id=?", (int(sub["plan_id"]),)).fetchone()
        plan_name = plan["name"] if plan is not None else "subscription"
        create_notification(
            conn,
            user_id=int(sub["user_id"]),
            type="subscription",
            severity="critical",
            title="Subscription Expired",
            message=f"Your {plan_name} plan has expired. Renew to keep adding clients and styles.",
            action_url=BILLING_URL,
            action_text="Renew Subscription",
            expires_at=iso_after(days=30),
            metadata={"subscription_id": int(sub["subscription_id"])},
        )
    return len(expired)


def generate_usage_warnings(conn: Any) -> int:
    """Warn paid users nearing their client or style limit. Unlimited (-1) limits are skipped."""
    rows = conn.execute(_ACTIVE_PAID_SQL).fetchall()
    n = 0
    for r in rows:
        user_id = int(r["user_id"])
        for kind, label in (("clients", "Client"), ("styles", "Style")):
            limit = int(r[f"max_{kind}"])
            if limit <= 0:
                continue
            used = usage_count(conn, user_id, kind)
            pct = used / limit * 100
            if pct < USAGE_INFO_PCT:
                continue
            create_notification(
                conn,
                user_id=user_id,
                type="usage",
                severity="warning" if pct >= USAGE_WARNING_PCT else "info",
                title=f"{label} Limit Approaching",
                message=(
                    f"You've used {used} of {limit} {kind} ({round(pct)}%). "
                    f"Consider upgrading your plan for more {kind}."
                ),
                action_url=BILLING_URL,
                action_text="Upgrade Plan",
                expires_at=iso_after(days=30),
                metadata={"kind": kind, "used": used, "limit": limit},
            )
            n += 1
    return n


def cleanup_expired_notifications(conn: Any) -> int:
    cur = conn.execute(
        "DELETE FROM notifications WHERE expires_at IS NOT NULL AND expires_at < ?",
        (utcnow_iso(),),
    )
    return int(cur.rowcount or 0)


def run_notification_sweep(conn: Any) -> Dict[str, int]:
    """Run every generator once and return per-step counts."""
    counts = {
        "expired_subscriptions": expire_overdue_subscriptions(conn),
        "payment_reminders": generate_payment_reminders(conn),
        "expiration_alerts": generate_expiration_alerts(conn),
        "usage_warnings": generate_usage_warnings(conn),
        "cleaned_up": cleanup_expired_notifications(conn),
    }
    touch_app_config(conn, "last_notification_sweep_at")
    _debug(f"Sweep done: {counts}")
    return counts
