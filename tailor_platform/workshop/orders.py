from __future__ import annotations

import math
from typing import Any, Dict, List, Optional

from tailor_platform.util.normalization import clean_text, normalize_order_status
from tailor_platform.util.paging import like, page_bounds, pagination, sort_clause
from tailor_platform.util.time import parse_iso, to_iso, utcnow_iso
from tailor_platform.workshop.clients import get_owned_client
from tailor_platform.workshop.styles import get_owned_style


STATUSES = ("pending", "in_progress", "processing", "ready", "completed", "delivered", "cancelled")
ACTIVE_STATUSES = ("pending", "in_progress", "processing")

_SORTS = {
    "created_at": "o.created_at",
    "updated_at": "o.updated_at",
    "due_date": "o.due_date",
    "status": "o.status",
    "total_amount": "o.total_amount",
    "client": "LOWER(c.name)",
}

_SELECT = """
    SELECT o.*,
           c.name AS client_name,
           s.name AS style_name,
           s.image_url AS style_image_url
    FROM orders o
    JOIN clients c ON c.client_id = o.client_id
    LEFT JOIN styles s ON s.style_id = o.style_id
"""


def _status(value: Any, default: Optional[str] = None) -> str:
    s = normalize_order_status(value) if value is not None else ""
    if not s:
        if default is None:
            raise ValueError("invalid_status")
        return default
    if s not in STATUSES:
        raise ValueError("invalid_status")
    return s


def _due_date(value: Any) -> Optional[str]:
    raw = clean_text(value)
    if raw is None:
        return None
    dt = parse_iso(raw)
    if dt is None:
        raise ValueError("invalid_due_date")
    return dt.date().isoformat()


def _amount(value: Any, code: str) -> float:
    try:
        v = float(value)
    except (TypeError, ValueError):
        raise ValueError(code)
    if not math.isfinite(v):
        raise ValueError(code)
    return round(v, 2)


def _money_fields(total: float, deposit: float) -> Dict[str, float]:
    if total <= 0:
        raise ValueError("invalid_total")
    if deposit < 0:
        raise ValueError("invalid_deposit")
    if deposit > total:
        raise ValueError("deposit_exceeds_total")
    return {"total_amount": total, "deposit_amount": deposit, "balance_amount": round(total - deposit, 2)}


def get_owned_order(conn: Any, user_id: int, order_id: int) -> Any:
    row = conn.execute(
        _SELECT + " WHERE o.order_id=? AND c.user_id=?",
        (int(order_id), int(user_id)),
    ).fetchone()
    if row is None:
        raise ValueError("order_not_found")
    return row


def _check_measurement(conn: Any, user_id: int, measurement_id: Any) -> Optional[int]:
    if measurement_id in (None, ""):
        return None
    row = conn.execute(
        """
        SELECT m.measurement_id FROM measurements m
        JOIN clients c ON c.client_id = m.client_id
        WHERE m.measurement_id=? AND c.user_id=?
        """,
        (int(measurement_id), int(user_id)),
    ).fetchone()
    if row is None:
        raise ValueError("measurement_not_found")
    return int(row["measurement_id"])


def list_orders(
    conn: Any,
    user_id: int,
    *,
    page: int = 1,
    limit: int = 10,
    client_id: Optional[int] = None,
    status: Optional[str] = None,
    search: Optional[str] = None,
    due_from: Optional[str] = None,
    due_to: Optional[str] = None,
    sort: Optional[str] = None,
    order: Optional[str] = None,
) -> Dict[str, Any]:
    p, lim, offset = page_bounds(page, limit, default_limit=10)
    where = ["c.user_id=?"]
    params: List[Any] = [int(user_id)]
    if client_id:
        where.append("o.client_id=?")
        params.append(int(client_id))
    if status and status.strip():
        where.append("o.status=?")
        params.append(_status(status))
    if search and search.strip():
        where.append("(LOWER(c.name) LIKE ? OR LOWER(COALESCE(o.description,'')) LIKE ?)")
        term = like(search)
        params.extend([term, term])
    if due_from:
        where.append("o.due_date >= ?")
        params.append(_due_date(due_from))
    if due_to:
        where.append("o.due_date <= ?")
        params.append(_due_date(due_to))
    where_sql = " AND ".join(where)

    total = conn.execute(
        f"SELECT COUNT(*) AS n FROM orders o JOIN clients c ON c.client_id = o.client_id WHERE {where_sql}",
        tuple(params),
    ).fetchone()["n"]
    rows = conn.execute(
        _SELECT
        + f"""
        WHERE {where_sql}
        ORDER BY {sort_clause(sort, order, _SORTS, "created_at")}, o.order_id DESC
        LIMIT ? OFFSET ?
        """,
        tuple(params + [lim, offset]),
    ).fetchall()
    return {"items": [dict(r) for r in rows], "pagination": pagination(p, lim, total)}


def create_order(conn: Any, user_id: int, data: Dict[str, Any]) -> Dict[str, Any]:
    if data.get("client_id") in (None, ""):
        raise ValueError("client_required")
    client_id = int(data["client_id"])
    get_owned_client(conn, user_id, client_id)

    style_id = data.get("style_id")
    if style_id not in (None, ""):
        get_owned_style(conn, user_id, int(style_id))
        style_id = int(style_id)
    else:
        style_id = None

    money = _money_fields(
        _amount(data.get("total_amount"), "invalid_total"),
        _amount(data.get("deposit_amount") or 0, "invalid_deposit"),
    )
    status = _status(data.get("status"), default="pending")
    due_date = _due_date(data.get("due_date"))

    measurement_id = _check_measurement(conn, user_id, data.get("measurement_id"))
    if measurement_id is None:
        m = conn.execute("SELECT measurement_id FROM measurements WHERE client_id=?", (client_id,)).fetchone()
        measurement_id = int(m["measurement_id"]) if m is not None else None

    now = utcnow_iso()
    row = conn.execute(
        """
        INSERT INTO orders (client_id, style_id, measurement_id, description, due_date, total_amount,
                            deposit_amount, balance_amount, status, notes, created_at, updated_at)
        VALUES (?,?,?,?,?,?,?,?,?,?,?,?)
        RETURNING order_id
        """,
        (
            client_id,
            style_id,
            measurement_id,
            clean_text(data.get("description")),
            due_date,
            money["total_amount"],
            money["deposit_amount"],
            money["balance_amount"],
            status,
            clean_text(data.get("notes")),
            now,
            now,
        ),
    ).fetchone()
    return get_order(conn, user_id, int(row["order_id"]))


def get_order(conn: Any, user_id: int, order_id: int) -> Dict[str, Any]:
    d = dict(get_owned_order(conn, user_id, order_id))
    d["payments"] = list_payments(conn, user_id, order_id)
    d["paid_total"] = round(sum(float(p["amount"] or 0) for p in d["payments"]), 2)
    return d


def update_order(conn: Any, user_id: int, order_id: int, data: Dict[str, Any]) -> Dict[str, Any]:
    current = get_owned_order(conn, user_id, order_id)
    fields: list[tuple[str, Any]] = []

    if "description" in data:
        fields.append(("description", clean_text(data.get("description"))))
    if "notes" in data:
        fields.append(("notes", clean_text(data.get("notes"))))
    if "due_date" in data:
        fields.append(("due_date", _due_date(data.get("due_date"))))
    if data.get("status") is not None:
        fields.append(("status", _status(data.get("status"))))
    if "style_id" in data:
        sid = data.get("style_id")
        if sid not in (None, ""):
            get_owned_style(conn, user_id, int(sid))
            fields.append(("style_id", int(sid)))
        else:
            fields.append(("style_id", None))
    if "measurement_id" in data:
        fields.append(("measurement_id", _check_measurement(conn, user_id, data.get("measurement_id"))))

    if data.get("total_amount") is not None or data.get("deposit_amount") is not None:
        total = _amount(
            data["total_amount"] if data.get("total_amount") is not None else current["total_amount"],
            "invalid_total",
        )
        deposit = _amount(
            data["deposit_amount"] if data.get("deposit_amount") is not None else current["deposit_amount"],
            "invalid_deposit",
        )
        fields.extend(_money_fields(total, deposit).items())

    if fields:
        fields.append(("updated_at", utcnow_iso()))
        sets = ", ".join([f"{k}=?" for k, _ in fields])
        conn.execute(f"UPDATE orders SET {sets} WHERE order_id=?", [v for _, v in fields] + [int(order_id)])
    return get_order(conn, user_id, order_id)


def delete_order(conn: Any, user_id: int, order_id: int) -> None:
    get_owned_order(conn, user_id, order_id)
    conn.execute("DELETE FROM order_payments WHERE order_id=?", (int(order_id),))
    conn.execute("DELETE FROM orders WHERE order_id=?", (int(order_id),))


# -----------------------------
# Payments received against an order
# -----------------------------


def list_payments(conn: Any, user_id: int, order_id: int) -> List[Dict[str, Any]]:
    rows = conn.execute(
        """
        SELECT * FROM order_payments
        WHERE order_id=? AND user_id=?
        ORDER BY payment_date DESC, order_payment_id DESC
        """,
        (int(order_id), int(user_id)),
    ).fetchall()
    return [dict(r) for r in rows]


def record_payment(conn: Any, user_id: int, data: Dict[str, Any], *, currency: str = "NGN") -> Dict[str, Any]:
    """Record money received from a client for one of the user's orders."""
    if data.get("order_id") in (None, ""):
        raise ValueError("order_required")
    order_id = int(data["order_id"])
    get_owned_order(conn, user_id, order_id)

    amount = _amount(data.get("amount"), "invalid_amount")
    if amount <= 0:
        raise ValueError("invalid_amount")

    paid_at = utcnow_iso()
    if clean_text(data.get("payment_date")):
        dt = parse_iso(str(data["payment_date"]))
        if dt is None:
            raise ValueError("invalid_payment_date")
        paid_at = to_iso(dt)

    now = utcnow_iso()
    row = conn.execute(
        """
        INSERT INTO order_payments (order_id, user_id, amount, currency, payment_method, payment_date, status,
                                    reference, notes, created_by, created_at, updated_at)
        VALUES (?,?,?,?,?,?,'completed',?,?,?,?,?)
        RETURNING *
        """,
        (
            order_id,
            int(user_id),
            amount,
            (clean_text(data.get("currency")) or currency).upper(),
            clean_text(data.get("payment_method")),
            paid_at,
            clean_text(data.get("reference")),
            clean_text(data.get("notes")),
            int(user_id),
            now,
            now,
        ),
    ).fetchone()
    return dict(row)
