"""Subscription state machine (Paystack).

Flow:
  plan selection -> Paystack checkout (frontend) -> verify_payment(reference)
  -> subscription row mutation -> new access token -> email + notification

Each Paystack reference is applied at most once (see billing.references).
A user has at most one active subscription; renewals and plan changes update it in place.
"""

from __future__ import annotations

from html import escape
from typing import Any, Dict, List, Optional

from tailor_platform.auth.crud import get_user_by_id, issue_access_token, set_onboarding_step, set_subscription_status
from tailor_platform.billing import paystack
from tailor_platform.billing.payment_methods import save_card_from_transaction
from tailor_platform.billing.plans import free_plan, get_plan, plan_to_dict, resolve_plan
from tailor_platform.billing.references import claim_reference, release_reference
from tailor_platform.config import Config
from tailor_platform.db import connect
from tailor_platform.mail import templates
from tailor_platform.mail.sender import queue_email
from tailor_platform.notifications.service import BILLING_URL, create_notification
from tailor_platform.util.normalization import dumps, loads_obj
from tailor_platform.util.time import add_months, iso_after, to_iso, utcnow, utcnow_iso


def _debug(msg: str) -> None:
    print(f"[billing] {msg}")


def subscription_to_dict(row: Any) -> Dict[str, Any]:
    d = dict(row)
    d["metadata"] = loads_obj(d.pop("metadata_json", None))
    d["amount"] = float(d.get("amount") or 0)
    return d


def get_active_subscription(conn: Any, user_id: int) -> Optional[Dict[str, Any]]:
    row = conn.execute(
        "SELECT * FROM subscriptions WHERE user_id=? AND status='active' ORDER BY created_at DESC LIMIT 1",
        (int(user_id),),
    ).fetchone()
    return subscription_to_dict(row) if row is not None else None


def expire_overdue(conn: Any, *, user_id: Optional[int] = None) -> List[Dict[str, Any]]:
    """Flip active subscriptions past end_date to 'expired'. Returns the expired rows."""
    now = utcnow_iso()
    where = "status='active' AND end_date IS NOT NULL AND end_date < ?"
    params: List[Any] = [now]
    if user_id is not None:
        where += " AND user_id=?"
        params.append(int(user_id))
    rows = conn.execute(f"SELECT * FROM subscriptions WHERE {where}", tuple(params)).fetchall()
    for r in rows:
        conn.execute(
            "UPDATE subscriptions SET status='expired', updated_at=? WHERE subscription_id=?",
            (now, int(r["subscription_id"])),
        )
        set_subscription_status(conn, user_id=int(r["user_id"]), status="expired")
        _debug(f"Expired subscription id={r['subscription_id']} user_id={r['user_id']}")
    return [subscription_to_dict(r) for r in rows]


def get_current(conn: Any, user_id: int) -> Dict[str, Any]:
    """Current subscription + plan. Without one, the free plan is reported with active=False."""
    expire_overdue(conn, user_id=user_id)
    sub = get_active_subscription(conn, user_id)
    if sub is None:
        return {"active": False, "subscription": None, "plan": free_plan(conn)}
    return {"active": True, "subscription": sub, "plan": get_plan(conn, int(sub["plan_id"]))}


def activate_subscription(
    conn: Any,
    cfg: Config,
    *,
    user_id: int,
    plan: Dict[str, Any],
    reference: Optional[str] = None,
    transaction: Optional[Dict[str, Any]] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """Create or update the user's single active subscription for `plan`.

    Paid activations (a verified `transaction`) also record a subscription payment and
    store the card. Returns {subscription, plan, token}.
    """
    user = get_user_by_id(conn, user_id)
    if user is None:
        raise ValueError("user_not_found")

    interval = str(plan["billing_interval"])
    now_dt = utcnow()
    start = to_iso(now_dt)
    end = to_iso(add_months(now_dt, 12 if interval == "annual" else 1))
    amount = float(plan["price"])
    now = utcnow_iso()

    payment_method_label = None
    method = None
    if transaction is not None:
        method = save_card_from_transaction(conn, user_id=user_id, transaction=transaction)
        if method is not None:
            payment_method_label = f"{method.get('brand') or 'card'} ****{method.get('last4') or ''}".strip()

    existing = get_active_subscription(conn, user_id)
    if existing is not None:
        meta = dict(existing.get("metadata") or {})
        meta.update(metadata or {})
        conn.execute(
            """
            UPDATE subscriptions
            SET plan_id=?, status='active', start_date=?, end_date=?, billing_period=?, amount=?,
                next_billing_date=?, canceled_at=NULL, payment_method=?, payment_reference=?,
                metadata_json=?, updated_at=?
            WHERE subscription_id=?
            """,
            (
                int(plan["plan_id"]),
                start,
                end,
                interval,
                amount,
                end,
                payment_method_label or existing.get("payment_method"),
                reference,
                dumps(meta),
                now,
                int(existing["subscription_id"]),
            ),
        )
        sub_id = int(existing["subscription_id"])
    else:
        row = conn.execute(
            """
            INSERT INTO subscriptions (user_id, plan_id, status, start_date, end_date, billing_period, amount,
                                       next_billing_date, canceled_at, payment_method, payment_reference,
                                       metadata_json, created_at, updated_at)
            VALUES (?,?,'active',?,?,?,?,?,NULL,?,?,?,?,?)
            RETURNING subscription_id
            """,
            (int(user_id), int(plan["plan_id"]), start, end, interval, amount, end,
             payment_method_label, reference, dumps(metadata), now, now),
        ).fetchone()
        sub_id = int(row["subscription_id"])

    if transaction is not None:
        paid = float(transaction.get("amount") or 0) / 100.0
        conn.execute(
            """
            INSERT INTO subscription_payments (user_id, subscription_id, amount, currency, status, reference,
                                               description, payment_method_id, provider, provider_reference,
                                               metadata_json, created_at, updated_at)
            VALUES (?,?,?,?,'successful',?,?,?,'paystack',?,?,?,?)
            """,
            (
                int(user_id),
                sub_id,
                paid,
                str(transaction.get("currency") or cfg.PAYSTACK_CURRENCY),
                reference,
                f"{plan['name']} plan ({interval})",
                int(method["payment_method_id"]) if method else None,
                str(transaction.get("id") or "") or None,
                dumps({"plan_id": plan["plan_id"], "paid_at": transaction.get("paid_at")}),
                now,
                now,
            ),
        )

    set_subscription_status(conn, user_id=user_id, status="active")
    if int(user["has_completed_setup"] or 0) != 1:
        set_onboarding_step(conn, user_id=user_id, step="setup")

    subject, html = templates.subscription_confirmation(
        app_name=cfg.APP_NAME,
        app_url=cfg.PUBLIC_APP_URL,
        plan_name=str(plan["name"]),
        billing_period=interval,
        amount=amount,
        currency=cfg.PAYSTACK_CURRENCY,
        name=user["name"],
    )
    queue_email(
        conn,
        to=str(user["email"]),
        to_name=user["name"],
        subject=subject,
        html=html,
        dedupe_key=f"subscription|{sub_id}|{reference or start}",
    )
    create_notification(
        conn,
        user_id=user_id,
        type="subscription",
        severity="info",
        title=f"{plan['name']} plan activated",
        message=f"Your {plan['name']} plan is active until {end[:10]}.",
        action_url=BILLING_URL,
        action_text="View Billing",
        expires_at=end,
        metadata={"subscription_id": sub_id, "plan_id": plan["plan_id"]},
    )

    sub_row = conn.execute("SELECT * FROM subscriptions WHERE subscription_id=?", (sub_id,)).fetchone()
    fresh_user = get_user_by_id(conn, user_id)
    token = issue_access_token(conn, cfg, fresh_user)
    _debug(f"Activated subscription id={sub_id} user_id={user_id} plan={plan['slug']} reference={reference}")
    return {"subscription": subscription_to_dict(sub_row), "plan": plan, "token": token}


def verify_payment(
    cfg: Config,
    *,
    user_id: int,
    reference: str,
    plan: Any,
    interval: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """Verify a Paystack checkout and activate the plan it paid for.

    Returns {processed, subscription, plan, token?}. A reference that was already applied
    returns processed=False with the current subscription.
    """
    ref = (reference or "").strip()
    if not ref:
        raise ValueError("reference_required")

    with connect(cfg.DB_DSN) as conn:
        plan_d = resolve_plan(conn, plan, interval=interval)
        # Idempotency: record the reference first; if we've seen it, exit early.
        if not claim_reference(conn, reference=ref, purpose="subscription", user_id=user_id):
            current = get_current(conn, user_id)
            return {"processed": False, "subscription": current["subscription"], "plan": current["plan"]}

    try:
        tx = paystack.verify_transaction(cfg, ref)
        status = str(tx.get("status") or "")
        if status != "success":
            raise ValueError("payment_not_successful")

        tx_user = (tx.get("metadata") or {}).get("user_id") if isinstance(tx.get("metadata"), dict) else None
        if tx_user is not None and str(tx_user) != str(user_id):
            raise ValueError("reference_user_mismatch")

        paid = float(tx.get("amount") or 0) / 100.0
        if paid + 1e-6 < float(plan_d["price"]):
            raise ValueError("amount_mismatch")

        with connect(cfg.DB_DSN) as conn:
            result = activate_subscription(
                conn,
                cfg,
                user_id=user_id,
                plan=plan_d,
                reference=ref,
                transaction=tx,
                metadata=metadata,
            )
    except Exception:
        # Forget the reference so the client can retry.
        release_reference(cfg, ref)
        raise

    return {"processed": True, **result}


def create_subscription(
    cfg: Config,
    *,
    user_id: int,
    plan: Any,
    interval: Optional[str] = None,
    reference: Optional[str] = None,
) -> Dict[str, Any]:
    """Subscribe to a plan. Free plans activate immediately; paid plans need a Paystack reference."""
    with connect(cfg.DB_DSN) as conn:
        plan_d = resolve_plan(conn, plan, interval=interval)
        if plan_d["is_free"]:
            return {"processed": True, **activate_subscription(conn, cfg, user_id=user_id, plan=plan_d)}

    if not (reference or "").strip():
        raise ValueError("payment_reference_required")
    return verify_payment(cfg, user_id=user_id, reference=str(reference), plan=plan_d["plan_id"])


def change_plan(
    cfg: Config,
    *,
    user_id: int,
    plan: Any,
    interval: Optional[str] = None,
    reference: Optional[str] = None,
) -> Dict[str, Any]:
    """Move the active subscription to another plan (paid targets need a Paystack reference)."""
    with connect(cfg.DB_DSN) as conn:
        expire_overdue(conn, user_id=user_id)
        current = get_active_subscription(conn, user_id)
        if current is None:
            raise ValueError("no_active_subscription")
        plan_d = resolve_plan(conn, plan, interval=interval)
        if int(plan_d["plan_id"]) == int(current["plan_id"]):
            raise ValueError("already_on_plan")
        meta = {"previous_plan_id": int(current["plan_id"]), "plan_changed_at": utcnow_iso()}
        if plan_d["is_free"]:
            return {"processed": True, **activate_subscription(conn, cfg, user_id=user_id, plan=plan_d, metadata=meta)}

    if not (reference or "").strip():
        raise ValueError("payment_reference_required")
    return verify_payment(cfg, user_id=user_id, reference=str(reference), plan=plan_d["plan_id"], metadata=meta)


def cancel_subscription(conn: Any, cfg: Config, *, user_id: int, reason: Optional[str] = None) -> Dict[str, Any]:
    sub = get_active_subscription(conn, user_id)
    if sub is None:
        raise ValueError("no_active_subscription")
    now = utcnow_iso()
    meta = dict(sub.get("metadata") or {})
    if reason:
        meta["cancel_reason"] = str(reason)[:1000]
    conn.execute(
        """
        UPDATE subscriptions
        SET status='canceled', canceled_at=?, next_billing_date=NULL, metadata_json=?, updated_at=?
        WHERE subscription_id=?
        """,
        (now, dumps(meta), now, int(sub["subscription_id"])),
    )
    set_subscription_status(conn, user_id=user_id, status="canceled")
    plan = get_plan(conn, int(sub["plan_id"])) or {}
    create_notification(
        conn,
        user_id=user_id,
        type="subscription",
        severity="warning",
        title="Subscription canceled",
        message=f"Your {plan.get('name', 'current')} plan was canceled. Choose a plan to keep using the workshop.",
        action_url=BILLING_URL,
        action_text="Choose Plan",
        expires_at=iso_after(days=30),
        metadata={"subscription_id": int(sub["subscription_id"])},
    )
    row = conn.execute("SELECT * FROM subscriptions WHERE subscription_id=?", (int(sub["subscription_id"]),)).fetchone()
    token = issue_access_token(conn, cfg, get_user_by_id(conn, user_id))
    _debug(f"Canceled subscription id={sub['subscription_id']} user_id={user_id}")
    return {"subscription": subscription_to_dict(row), "token": token}


# -----------------------------
# History / invoices
# -----------------------------


def billing_history(conn: Any, user_id: int, *, limit: int = 10) -> List[Dict[str, Any]]:
    rows = conn.execute(
        """
        SELECT sp.*, p.name AS plan_name, s.billing_period
        FROM subscription_payments sp
        LEFT JOIN subscriptions s ON s.subscription_id = sp.subscription_id
        LEFT JOIN plans p ON p.plan_id = s.plan_id
        WHERE sp.user_id=?
        ORDER BY sp.created_at DESC, sp.payment_id DESC
        LIMIT ?
        """,
        (int(user_id), max(1, int(limit))),
    ).fetchall()
    out: List[Dict[str, Any]] = []
    for r in rows:
        d = dict(r)
        d["metadata"] = loads_obj(d.pop("metadata_json", None))
        d["amount"] = float(d.get("amount") or 0)
        out.append(d)
    return out


def invoice_html(conn: Any, cfg: Config, *, user_id: int, payment_id: int) -> str:
    row = conn.execute(
        """
        SELECT sp.*, p.name AS plan_name, s.billing_period, u.email, u.name AS user_name
        FROM subscription_payments sp
        JOIN users u ON u.user_id = sp.user_id
        LEFT JOIN subscriptions s ON s.subscription_id = sp.subscription_id
        LEFT JOIN plans p ON p.plan_id = s.plan_id
        WHERE sp.payment_id=? AND sp.user_id=?
        """,
        (int(payment_id), int(user_id)),
    ).fetchone()
    if row is None:
        raise ValueError("payment_not_found")

    amount = templates.format_amount(float(row["amount"] or 0), str(row["currency"] or cfg.PAYSTACK_CURRENCY))
    period = "Monthly" if row["billing_period"] == "monthly" else ("Annual" if row["billing_period"] else "")
    return f"""<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><title>Invoice #{int(row['payment_id'])}</title></head>
<body style="font-family: Arial, sans-serif; max-width: 720px; margin: 0 auto; padding: 24px; color: #1f2937;">
  <h1 style="color: #0d9488;">{escape(cfg.APP_NAME)}</h1>
  <h2>Invoice #{int(row['payment_id'])}</h2>
  <p>Date: {escape(str(row['created_at'])[:10])}<br>
     Billed to: {escape(str(row['user_name'] or ''))} &lt;{escape(str(row['email']))}&gt;</p>
  <table style="width: 100%; border-collapse: collapse;">
    <tr style="background: #f3f4f6;"><th align="left" style="padding: 8px;">Description</th><th align="left" style="padding: 8px;">Period</th><th align="right" style="padding: 8px;">Amount</th></tr>
    <tr><td style="padding: 8px;">{escape(str(row['description'] or (row['plan_name'] or 'Subscription')))}</td>
        <td style="padding: 8px;">{period}</td>
        <td align="right" style="padding: 8px;">{escape(amount)}</td></tr>
  </table>
  <p>Status: {escape(str(row['status']))}<br>Reference: {escape(str(row['reference'] or ''))}</p>
</body>
</html>"""


def plan_summary(conn: Any, user_id: int) -> Dict[str, Any]:
    """Compact subscription block for profile / dashboard payloads."""
    cur = get_current(conn, user_id)
    plan = cur["plan"] or {}
    sub = cur["subscription"] or {}
    return {
        "active": cur["active"],
        "plan_id": plan.get("plan_id"),
        "plan_name": plan.get("name") if cur["active"] else "Free Plan",
        "plan_slug": plan.get("slug"),
        "status": sub.get("status"),
        "billing_period": sub.get("billing_period"),
        "end_date": sub.get("end_date"),
        "next_billing_date": sub.get("next_billing_date"),
    }


def plan_limits(conn: Any, user_id: int) -> Dict[str, Any]:
    """Effective limits for the user. Without an active subscription the free plan applies."""
    cur = get_current(conn, user_id)
    plan = cur["plan"]
    if plan is None:
        row = conn.execute("SELECT * FROM plans ORDER BY price ASC LIMIT 1").fetchone()
        plan = plan_to_dict(row) if row is not None else {"max_clients": -1, "max_styles": -1}
    return {"max_clients": int(plan.get("max_clients", -1)), "max_styles": int(plan.get("max_styles", -1))}
