"""Paystack reference idempotency.

A reference is recorded before it is processed. If processing fails the row is
removed so the client can retry with the same reference.
"""

from __future__ import annotations

from typing import Any

from tailor_platform.config import Config
from tailor_platform.db import connect
from tailor_platform.util.time import utcnow_iso


def claim_reference(conn: Any, *, reference: str, purpose: str, user_id: int) -> bool:
    """Record a reference. Returns False if it was already seen."""
    row = conn.execute(
        """
        INSERT INTO paystack_references (reference, purpose, user_id, received_at)
        VALUES (?,?,?,?)
        ON CONFLICT(reference) DO NOTHING
        RETURNING reference
        """,
        (reference, purpose, int(user_id), utcnow_iso()),
    ).fetchone()
    return row is not None


def release_reference(cfg: Config, reference: str) -> None:
    """Forget a reference after a failed attempt (own transaction)."""
    try:
        with connect(cfg.DB_DSN) as conn:
            conn.execute("DELETE FROM paystack_references WHERE reference=?", (reference,))
    except Exception as e:
        print(f"[billing] Could not release reference={reference}: {e}")
