from __future__ import annotations

import re
import secrets
import time
from typing import Any, Dict, List, Optional

from tailor_platform.billing import paystack
from tailor_platform.billing.references import claim_reference, release_reference
from tailor_platform.config import Config
from tailor_platform.db import connect
from tailor_platform.util.normalization import dumps, loads_obj
from tailor_platform.util.time import utcnow_iso


def _debug(msg: str) -> None:
    print(f"[billing] {msg}")


def payment_method_to_dict(row: Any) -> Dict[str, Any]:
    d = dict(row)
    d["metadata"] = loads_obj(d.pop("metadata_json", None))
    d["is_default"] = bool(d.get("is_default"))
    return d


def list_payment_methods(conn: Any, user_id: int) -> List[Dict[str, Any]]:
    rows = conn.execute(
        """
        SELECT * FROM payment_methods
        WHERE user_id=?
        ORDER BY is_default DESC, created_at DESC, payment_method_id DESC
        """,
        (int(user_id),),
    ).fetchall()
    return [payment_method_to_dict(r) for r in rows]


def _get_owned(conn: Any, user_id: int, payment_method_id: int) -> Any:
    row = conn.execute(
        "SELECT * FROM payment_methods WHERE payment_method_id=? AND user_id=?",
        (int(payment_method_id), int(user_id)),
    ).fetchone()
    if row is None:
        raise ValueError("payment_method_not_found")
    return row


def save_payment_method(
    conn: Any,
    *,
    user_id: int,
    provider_id: Optional[str],
    type: str = "card",
    last4: Optional[str] = None,
    expiry_month: Optional[str] = None,
    expiry_year: Optional[str] = None,
    brand: Optional[str] = None,
    provider: str = "paystack",
    metadata: Optional[Dict[str, Any]] = None,
    make_default: Optional[bool] = None,
) -> Dict[str, Any]:
    """Insert or refresh a stored payment method (keyed by provider + provider_id).

    The user's first method becomes the default unless make_default=False.
    """
    if type not in ("card", "bank_account"):
        raise ValueError("invalid_payment_method_type")
    if last4 is not None and not re.fullmatch(r"\d{4}", str(last4)):
        raise ValueError("invalid_last4")

    now = utcnow_iso()
    has_any = conn.execute(
        "SELECT 1 FROM payment_methods WHERE user_id=? LIMIT 1", (int(user_id),)
    ).fetchone()
    if make_default is None:
        make_default = has_any is None

    existing = None
    if provider_id:
        existing = conn.execute(
            "SELECT payment_method_id FROM payment_methods WHERE user_id=? AND provider=? AND provider_id=?",
            (int(user_id), provider, provider_id),
        ).fetchone()

    if existing is not None:
        pm_id = int(existing["payment_method_id"])
        conn.execute(
            """
            UPDATE payment_methods
            SET type=?, last4=?, expiry_month=?, expiry_year=?, brand=?, metadata_json=?, updated_at=?
            WHERE payment_method_id=?
            """,
            (type, last4, expiry_month, expiry_year, brand, dumps(metadata), now, pm_id),
        )
    else:
        row = conn.execute(
            """
            INSERT INTO payment_methods (user_id, type, last4, expiry_month, expiry_year, brand, is_default,
                                         provider, provider_id, metadata_json, created_at, updated_at)
            VALUES (?,?,?,?,?,?,0,?,?,?,?,?)
            RETURNING payment_method_id
            """,
            (int(user_id), type, last4, expiry_month, expiry_year, brand, provider, provider_id, dumps(metadata), now, now),
        ).fetchone()
        pm_id = int(row["payment_method_id"])

    if make_default:
        set_default_payment_method(conn, user_id, pm_id)
    return payment_method_to_dict(_get_owned(conn, user_id, pm_id))


def set_default_payment_method(conn: Any, user_id: int, payment_method_id: int) -> Dict[str, Any]:
    _get_owned(conn, user_id, payment_method_id)
    now = utcnow_iso()
    conn.execute(
        "UPDATE payment_methods SET is_default=0, updated_at=? WHERE user_id=? AND is_default=1",
        (now, int(user_id)),
    )
    conn.execute(
        "UPDATE payment_methods SET is_default=1, updated_at=? WHERE payment_method_id=?",
        (now, int(payment_method_id)),
    )
    return payment_method_to_dict(_get_owned(conn, user_id, payment_method_id))


def delete_payment_method(conn: Any, user_id: int, payment_method_id: int) -> None:
    """Delete a method; if it was the default, the most recent remaining one takes over."""
    row = _get_owned(conn, user_id, payment_method_id)
    conn.execute("DELETE FROM payment_methods WHERE payment_method_id=?", (int(payment_method_id),))
    if int(row["is_default"] or 0) == 1:
        nxt = conn.execute(
            "SELECT payment_method_id FROM payment_methods WHERE user_id=? ORDER BY created_at DESC, payment_method_id DESC LIMIT 1",
            (int(user_id),),
        ).fetchone()
        if nxt is not None:
            set_default_payment_method(conn, user_id, int(nxt["payment_method_id"]))


def save_card_from_transaction(conn: Any, *, user_id: int, transaction: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    card = paystack.card_from_authorization(transaction.get("authorization"))
    if card is None:
        return None
    return save_payment_method(
        conn,
        user_id=user_id,
        provider_id=card["provider_id"],
        type="card",
        last4=card["last4"],
        expiry_month=card["expiry_month"],
        expiry_year=card["expiry_year"],
        brand=card["brand"],
        metadata={"bank": card.get("bank"), "customer_code": (transaction.get("customer") or {}).get("customer_code")},
    )


# -----------------------------
# Card authorization (charge a small amount, store the card, refund)
# -----------------------------


def new_authorization_reference(user_id: int) -> str:
    return f"auth_{int(user_id)}_{int(time.time() * 1000)}_{secrets.token_hex(4)}"


def init_authorization(cfg: Config, *, user_id: int, email: str) -> Dict[str, Any]:
    """Parameters for the Paystack inline checkout used to authorize a card."""
    if not cfg.PAYSTACK_PUBLIC_KEY:
        raise RuntimeError("paystack_public_key_missing")
    return {
        "reference": new_authorization_reference(user_id),
        "public_key": cfg.PAYSTACK_PUBLIC_KEY,
        "email": email,
        "amount": int(cfg.PAYMENT_AUTH_AMOUNT_KOBO),
        "currency": cfg.PAYSTACK_CURRENCY,
        "metadata": {"user_id": int(user_id), "purpose": "authorization"},
    }


def verify_authorization(cfg: Config, *, user_id: int, reference: str) -> Dict[str, Any]:
    """Verify a card-authorization charge, store the card and refund the charge.

    Idempotent per reference: a replay returns processed=False.
    """
    ref = (reference or "").strip()
    if not ref:
        raise ValueError("reference_required")
    if not ref.startswith(f"auth_{int(user_id)}_"):
        raise ValueError("reference_user_mismatch")

    with connect(cfg.DB_DSN) as conn:
        if not claim_reference(conn, reference=ref, purpose="authorization", user_id=user_id):
            return {"processed": False, "payment_methods": list_payment_methods(conn, user_id)}

    try:
        tx = paystack.verify_transaction(cfg, ref)
        if str(tx.get("status") or "") != "success":
            raise ValueError("payment_not_successful")
        tx_user = (tx.get("metadata") or {}).get("user_id") if isinstance(tx.get("metadata"), dict) else None
        if tx_user is not None and str(tx_user) != str(user_id):
            raise ValueError("reference_user_mismatch")
        with connect(cfg.DB_DSN) as conn:
            method = save_card_from_transaction(conn, user_id=user_id, transaction=tx)
            if method is None:
                raise ValueError("card_not_reusable")
    except Exception:
        release_reference(cfg, ref)
        raise

    refunded = True
    try:
        paystack.refund_transaction(cfg, ref)
    except RuntimeError as e:
        # The card is stored either way; the refund can be retried from the dashboard.
        _debug(f"Authorization refund failed reference={ref}: {e}")
        refunded = False

    return {"processed": True, "payment_method": method, "refunded": refunded}


def verify_bank_account(cfg: Config, *, account_number: str, bank_code: str) -> Dict[str, Any]:
    acct = (account_number or "").strip()
    code = (bank_code or "").strip()
    if not re.fullmatch(r"\d{10}", acct):
        raise ValueError("invalid_account_number")
    if not code:
        raise ValueError("bank_code_required")
    data = paystack.resolve_account(cfg, account_number=acct, bank_code=code)
    return {
        "account_name": data.get("account_name"),
        "account_number": data.get("account_number") or acct,
        "bank_code": code,
    }
