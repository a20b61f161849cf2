"""Minimal Paystack REST client.

Only the calls the billing flow needs: verify a transaction, refund an authorization
charge and resolve a bank account. Amounts are in kobo (1/100 of the currency unit).
"""

from __future__ import annotations

from typing import Any, Dict, Optional
from urllib.parse import quote

import requests

from tailor_platform.config import Config


def _debug(msg: str) -> None:
    print(f"[paystack] {msg}")


def _secret(cfg: Config) -> str:
    if not cfg.PAYSTACK_SECRET_KEY:
        raise RuntimeError("paystack_secret_key_missing")
    return str(cfg.PAYSTACK_SECRET_KEY)


def _headers(cfg: Config) -> Dict[str, str]:
    return {
        "Authorization": f"Bearer {_secret(cfg)}",
        "Content-Type": "application/json",
    }


def _data_or_raise(r: requests.Response, what: str) -> Dict[str, Any]:
    if r.status_code != 200:
        raise RuntimeError(f"paystack_{what}_error {r.status_code}: {r.text[:500]}")
    body = r.json() if r.text else {}
    if not body.get("status"):
        raise RuntimeError(f"paystack_{what}_failed: {body.get('message') or 'unknown'}")
    data = body.get("data")
    return data if isinstance(data, dict) else {}


def verify_transaction(cfg: Config, reference: str) -> Dict[str, Any]:
    """Return Paystack's transaction `data` object.

    The caller decides what to do with `data["status"]` (success|failed|abandoned...).
    """
    ref = (reference or "").strip()
    if not ref:
        raise ValueError("reference_required")
    url = f"{cfg.PAYSTACK_BASE_URL.rstrip('/')}/transaction/verify/{quote(ref, safe='')}"
    _debug(f"Verifying transaction reference={ref}")
    r = requests.get(url, headers=_headers(cfg), timeout=30)
    return _data_or_raise(r, "verify")


def refund_transaction(cfg: Config, reference: str, *, amount_kobo: Optional[int] = None) -> Dict[str, Any]:
    payload: Dict[str, Any] = {"transaction": reference}
    if amount_kobo is not None:
        payload["amount"] = int(amount_kobo)
    url = f"{cfg.PAYSTACK_BASE_URL.rstrip('/')}/refund"
    _debug(f"Refunding transaction reference={reference}")
    r = requests.post(url, headers=_headers(cfg), json=payload, timeout=30)
    return _data_or_raise(r, "refund")


def resolve_account(cfg: Config, *, account_number: str, bank_code: str) -> Dict[str, Any]:
    """Look up the account holder for a NUBAN account number."""
    url = f"{cfg.PAYSTACK_BASE_URL.rstrip('/')}/bank/resolve"
    params = {"account_number": account_number, "bank_code": bank_code}
    _debug(f"Resolving bank account bank_code={bank_code}")
    r = requests.get(url, headers=_headers(cfg), params=params, timeout=30)
    return _data_or_raise(r, "resolve")


def card_from_authorization(authorization: Dict[str, Any] | None) -> Optional[Dict[str, Any]]:
    """Extract reusable card details from a verified transaction's `authorization`.

    Returns None when Paystack did not return a reusable card.
    """
    auth = authorization or {}
    code = str(auth.get("authorization_code") or "").strip()
    if not code:
        return None
    if auth.get("reusable") is False:
        return None
    return {
        "provider_id": code,
        "last4": str(auth.get("last4") or "") or None,
        "expiry_month": str(auth.get("exp_month") or "") or None,
        "expiry_year": str(auth.get("exp_year") or "") or None,
        "brand": str(auth.get("card_type") or auth.get("brand") or "").strip() or None,
        "bank": auth.get("bank"),
    }
