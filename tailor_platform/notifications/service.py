from __future__ import annotations

from typing import Any, Dict, List, Optional

from tailor_platform.util.normalization import dumps, loads_obj
from tailor_platform.util.time import utcnow_iso


TYPES = ("payment", "subscription", "usage", "system")
SEVERITIES = ("info", "warning", "critical")

BILLING_URL = "/settings/billing"


def _debug(msg: str) -> None:
    print(f"[notifications] {msg}")


def notification_to_dict(row: Any) -> Dict[str, Any]:
    d = dict(row)
    d["metadata"] = loads_obj(d.pop("metadata_json", None))
    d["is_read"] = bool(d.get("is_read"))
    return d


def create_notification(
    conn: Any,
    *,
    user_id: int,
    type: str,
    severity: str,
    title: str,
    message: str,
    action_url: Optional[str] = None,
    action_text: Optional[str] = None,
    expires_at: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """Create a notification unless an unexpired one with the same (user, type, title) exists.

    Returns the new or the existing notification.
    """
    if type not in TYPES:
        raise ValueError("invalid_notification_type")
    if severity not in SEVERITIES:
        raise ValueError("invalid_notification_severity")

    now = utcnow_iso()
    existing = conn.execute(
        """
        SELECT * FROM notifications
        WHERE user_id=? AND type=? AND title=?
          AND (expires_at IS NULL OR expires_at > ?)
        ORDER BY created_at DESC
        LIMIT 1
        """,
        (int(user_id), type, title, now),
    ).fetchone()
    if existing is not None:
        return notification_to_dict(existing)

    row = conn.execute(
        """
        INSERT INTO notifications (user_id, type, severity, title, message, is_read, action_url, action_text,
                                   expires_at, metadata_json, created_at, updated_at)
        VALUES (?,?,?,?,?,0,?,?,?,?,?,?)
        RETURNING *
        """,
        (int(user_id), type, severity, title, message, action_url, action_text, expires_at, dumps(metadata), now, now),
    ).fetchone()
    _debug(f"Created notification user_id={user_id} type={type} severity={severity} title={title!r}")
    return notification_to_dict(row)


def list_notifications(
    conn: Any,
    user_id: int,
    *,
    unread_only: bool = False,
    limit: int = 50,
) -> Dict[str, Any]:
    now = utcnow_iso()
    where = "user_id=? AND (expires_at IS NULL OR expires_at > ?)"
    params: List[Any] = [int(user_id), now]
    if unread_only:
        where += " AND is_read=0"
    rows = conn.execute(
        f"SELECT * FROM notifications WHERE {where} ORDER BY created_at DESC, notification_id DESC LIMIT ?",
        tuple(params + [max(1, min(int(limit), 200))]),
    ).fetchall()
    unread = conn.execute(
        "SELECT COUNT(*) AS n FROM notifications WHERE user_id=? AND is_read=0 AND (expires_at IS NULL OR expires_at > ?)",
        (int(user_id), now),
    ).fetchone()["n"]
    return {"items": [notification_to_dict(r) for r in rows], "unread_count": int(unread)}


def _get_owned(conn: Any, user_id: int, notification_id: int) -> Any:
    row = conn.execute(
        "SELECT * FROM notifications WHERE notification_id=? AND user_id=?",
        (int(notification_id), int(user_id)),
    ).fetchone()
    if row is None:
        raise ValueError("notification_not_found")
    return row


def mark_read(conn: Any, user_id: int, notification_id: int) -> Dict[str, Any]:
    _get_owned(conn, user_id, notification_id)
    conn.execute(
        "UPDATE notifications SET is_read=1, updated_at=? WHERE notification_id=?",
        (utcnow_iso(), int(notification_id)),
    )
    return notification_to_dict(_get_owned(conn, user_id, notification_id))


def mark_all_read(conn: Any, user_id: int) -> int:
    cur = conn.execute(
        "UPDATE notifications SET is_read=1, updated_at=? WHERE user_id=? AND is_read=0",
        (utcnow_iso(), int(user_id)),
    )
    return int(cur.rowcount or 0)


def delete_notification(conn: Any, user_id: int, notification_id: int) -> None:
    _get_owned(conn, user_id, notification_id)
    conn.execute("DELETE FROM notifications WHERE notification_id=?", (int(notification_id),))
