from __future__ import annotations

from typing import Any

from tailor_platform.auth.crud import get_user_by_id
from tailor_platform.billing.subscriptions import plan_limits


_TABLES = {"clients": "clients", "styles": "styles"}


class LimitReached(Exception):
    """Plan limit hit (maps to HTTP 403)."""

    def __init__(self, code: str, limit: int):
        super().__init__(code)
        self.code = code
        self.limit = int(limit)


def usage_count(conn: Any, user_id: int, kind: str) -> int:
    table = _TABLES[kind]
    return int(conn.execute(f"SELECT COUNT(*) AS n FROM {table} WHERE user_id=?", (int(user_id),)).fetchone()["n"])


def check_limit(conn: Any, user_id: int, kind: str) -> None:
    """Raise LimitReached('<kind>_limit_reached') when one more row would exceed the plan. -1 = unlimited.

    Admins are never limited.
    """
    user = get_user_by_id(conn, user_id)
    if user is not None and user["role"] == "admin":
        return
    limit = plan_limits(conn, user_id)[f"max_{kind}"]
    if limit >= 0 and usage_count(conn, user_id, kind) >= limit:
        raise LimitReached(f"{kind[:-1]}_limit_reached", limit)
