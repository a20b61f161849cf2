"""Dashboard aggregates. Grouping by day/week/month happens in Python so the SQL stays portable."""

from __future__ import annotations

from datetime import timedelta
from typing import Any, Dict, List, Optional, Tuple

from tailor_platform.billing.subscriptions import get_current
from tailor_platform.util.paging import in_placeholders, page_bounds, pagination
from tailor_platform.util.time import add_months, month_start, parse_iso, to_iso, utcnow
from tailor_platform.workshop.orders import ACTIVE_STATUSES


PERIODS = ("7days", "30days", "90days", "1year")
ACTIVITY_TYPES = ("client", "order", "payment", "measurement")


def _count(conn: Any, sql: str, params: tuple) -> int:
    return int(conn.execute(sql, params).fetchone()["n"] or 0)


def _revenue(conn: Any, user_id: int, start: str, end: str) -> float:
    row = conn.execute(
        """
        SELECT COALESCE(SUM(amount), 0) AS total
        FROM order_payments
        WHERE user_id=? AND status='completed' AND payment_date >= ? AND payment_date < ?
        """,
        (int(user_id), start, end),
    ).fetchone()
    return float(row["total"] or 0)


def growth_pct(current: float, previous: float) -> int:
    if previous > 0:
        return int(round((current - previous) / previous * 100))
    return 100 if current > 0 else 0


def stats(conn: Any, user_id: int) -> Dict[str, Any]:
    now = utcnow()
    this_month = month_start(now)
    next_month = add_months(this_month, 1)
    prev_month = add_months(this_month, -1)
    m0, m1, mp = to_iso(this_month), to_iso(next_month), to_iso(prev_month)
    uid = int(user_id)
    active = list(ACTIVE_STATUSES)

    total_clients = _count(conn, "SELECT COUNT(*) AS n FROM clients WHERE user_id=?", (uid,))
    new_clients = _count(
        conn,
        "SELECT COUNT(*) AS n FROM clients WHERE user_id=? AND created_at >= ? AND created_at < ?",
        (uid, m0, m1),
    )
    active_orders = _count(
        conn,
        f"""
        SELECT COUNT(*) AS n FROM orders o JOIN clients c ON c.client_id = o.client_id
        WHERE c.user_id=? AND o.status IN ({in_placeholders(active)})
        """,
        tuple([uid] + active),
    )
    total_orders = _count(
        conn,
        "SELECT COUNT(*) AS n FROM orders o JOIN clients c ON c.client_id = o.client_id WHERE c.user_id=?",
        (uid,),
    )
    completed_this_month = _count(
        conn,
        """
        SELECT COUNT(*) AS n FROM orders o JOIN clients c ON c.client_id = o.client_id
        WHERE c.user_id=? AND o.status='completed' AND o.updated_at >= ? AND o.updated_at < ?
        """,
        (uid, m0, m1),
    )
    revenue = _revenue(conn, uid, m0, m1)
    prev_revenue = _revenue(conn, uid, mp, m0)

    cur = get_current(conn, uid)
    plan = cur["plan"] or {}
    plan_name = plan.get("name") if cur["active"] else "Free Plan"
    max_clients = int(plan.get("max_clients", -1)) if plan else -1
    remaining: Optional[int] = None if max_clients < 0 else max(0, max_clients - total_clients)

    return {
        "total_clients": total_clients,
        "new_clients_this_month": new_clients,
        "total_orders": total_orders,
        "active_orders": active_orders,
        "completed_orders_this_month": completed_this_month,
        "monthly_revenue": revenue,
        "previous_month_revenue": prev_revenue,
        "revenue_growth": growth_pct(revenue, prev_revenue),
        "subscription_plan": plan_name,
        "clients_remaining": remaining,
    }


def _client_events(conn: Any, user_id: int, start: Optional[str], end: Optional[str], limit: int) -> List[Dict[str, Any]]:
    sql = "SELECT client_id, name, created_at FROM clients WHERE user_id=?"
    params: List[Any] = [int(user_id)]
    if start:
        sql += " AND created_at >= ?"
        params.append(start)
    if end:
        sql += " AND created_at <= ?"
        params.append(end)
    sql += " ORDER BY created_at DESC, client_id DESC LIMIT ?"
    params.append(int(limit))
    return [
        {
            "id": f"client-{r['client_id']}",
            "type": "client",
            "title": "New client added",
            "description": f"Added {r['name']}",
            "timestamp": r["created_at"],
            "metadata": {"client_id": int(r["client_id"]), "client_name": r["name"]},
        }
        for r in conn.execute(sql, tuple(params)).fetchall()
    ]


# An order shows up once: at completion when completed, otherwise when it was created.
_ORDER_EVENT_AT = "CASE WHEN o.status='completed' THEN o.updated_at ELSE o.created_at END"


def _order_events(conn: Any, user_id: int, start: Optional[str], end: Optional[str], limit: int) -> List[Dict[str, Any]]:
    sql = f"""
        SELECT o.order_id, o.status, {_ORDER_EVENT_AT} AS event_at, c.client_id, c.name AS client_name
        FROM orders o JOIN clients c ON c.client_id = o.client_id
        WHERE c.user_id=?
    """
    params: List[Any] = [int(user_id)]
    if start:
        sql += f" AND {_ORDER_EVENT_AT} >= ?"
        params.append(start)
    if end:
        sql += f" AND {_ORDER_EVENT_AT} <= ?"
        params.append(end)
    sql += " ORDER BY event_at DESC, o.order_id DESC LIMIT ?"
    params.append(int(limit))

    out = []
    for r in conn.execute(sql, tuple(params)).fetchall():
        done = r["status"] == "completed"
        out.append(
            {
                "id": f"order-{r['order_id']}",
                "type": "order",
                "title": "Order completed" if done else "New order created",
                "description": (
                    f"Completed order for {r['client_name']}" if done else f"New order created for {r['client_name']}"
                ),
                "timestamp": r["event_at"],
                "metadata": {
                    "order_id": int(r["order_id"]),
                    "client_id": int(r["client_id"]),
                    "client_name": r["client_name"],
                    "status": r["status"],
                },
            }
        )
    return out


def _payment_events(conn: Any, user_id: int, start: Optional[str], end: Optional[str], limit: int) -> List[Dict[str, Any]]:
    sql = """
        SELECT p.order_payment_id, p.amount, p.currency, p.payment_date, p.order_id, c.name AS client_name
        FROM order_payments p
        JOIN orders o ON o.order_id = p.order_id
        JOIN clients c ON c.client_id = o.client_id
        WHERE p.user_id=?
    """
    params: List[Any] = [int(user_id)]
    if start:
        sql += " AND p.payment_date >= ?"
        params.append(start)
    if end:
        sql += " AND p.payment_date <= ?"
        params.append(end)
    sql += " ORDER BY p.payment_date DESC, p.order_payment_id DESC LIMIT ?"
    params.append(int(limit))
    return [
        {
            "id": f"payment-{r['order_payment_id']}",
            "type": "payment",
            "title": "Payment received",
            "description": f"Received {r['currency']} {float(r['amount']):,.2f} from {r['client_name']}",
            "timestamp": r["payment_date"],
            "metadata": {
                "payment_id": int(r["order_payment_id"]),
                "order_id": int(r["order_id"]),
                "amount": float(r["amount"]),
                "client_name": r["client_name"],
            },
        }
        for r in conn.execute(sql, tuple(params)).fetchall()
    ]


def _measurement_events(
    conn: Any, user_id: int, start: Optional[str], end: Optional[str], limit: int
) -> List[Dict[str, Any]]:
    sql = """
        SELECT m.measurement_id, m.last_updated, c.client_id, c.name AS client_name
        FROM measurements m JOIN clients c ON c.client_id = m.client_id
        WHERE c.user_id=?
    """
    params: List[Any] = [int(user_id)]
    if start:
        sql += " AND m.last_updated >= ?"
        params.append(start)
    if end:
        sql += " AND m.last_updated <= ?"
        params.append(end)
    sql += " ORDER BY m.last_updated DESC, m.measurement_id DESC LIMIT ?"
    params.append(int(limit))
    return [
        {
            "id": f"measurement-{r['measurement_id']}",
            "type": "measurement",
            "title": "Measurements updated",
            "description": f"Updated measurements for {r['client_name']}",
            "timestamp": r["last_updated"],
            "metadata": {"client_id": int(r["client_id"]), "client_name": r["client_name"]},
        }
        for r in conn.execute(sql, tuple(params)).fetchall()
    ]


def _event_sort_key(item: Dict[str, Any]) -> Tuple[str, str, int]:
    """Newest first; ties broken the same way each source orders its rows."""
    return (str(item["timestamp"] or ""), item["type"], int(item["id"].rsplit("-", 1)[1]))


_EVENT_SOURCES = {
    "client": _client_events,
    "order": _order_events,
    "payment": _payment_events,
    "measurement": _measurement_events,
}


def recent_activity(conn: Any, user_id: int, *, limit: int = 10) -> List[Dict[str, Any]]:
    """Latest clients, orders and payments merged into one feed."""
    items: List[Dict[str, Any]] = []
    for kind in ("client", "order", "payment"):
        items.extend(_EVENT_SOURCES[kind](conn, user_id, None, None, 5))
    items.sort(key=_event_sort_key, reverse=True)
    return items[: max(1, int(limit))]


def _bound(value: Optional[str], code: str, *, end_of_day: bool = False) -> Optional[str]:
    if not value:
        return None
    dt = parse_iso(value)
    if dt is None:
        raise ValueError(code)
    if end_of_day and len(value.strip()) == 10:
        dt = dt + timedelta(days=1) - timedelta(seconds=1)
    return to_iso(dt)


def activity(
    conn: Any,
    user_id: int,
    *,
    type: Optional[str] = None,
    start: Optional[str] = None,
    end: Optional[str] = None,
    page: int = 1,
    per_page: int = 10,
) -> Dict[str, Any]:
    kind = (type or "all").strip().lower()
    if kind != "all" and kind not in ACTIVITY_TYPES:
        raise ValueError("invalid_activity_type")
    start_iso = _bound(start, "invalid_start_date")
    end_iso = _bound(end, "invalid_end_date", end_of_day=True)
    p, lim, offset = page_bounds(page, per_page, default_limit=10)

    # Each source is capped at offset+limit rows, enough to fill the requested page after merging.
    window = offset + lim
    kinds = ACTIVITY_TYPES if kind == "all" else (kind,)
    items: List[Dict[str, Any]] = []
    total = 0
    for k in kinds:
        items.extend(_EVENT_SOURCES[k](conn, user_id, start_iso, end_iso, window))
        total += _count_events(conn, user_id, k, start_iso, end_iso)
    items.sort(key=_event_sort_key, reverse=True)
    return {"items": items[offset : offset + lim], "pagination": pagination(p, lim, total)}


def _count_events(conn: Any, user_id: int, kind: str, start: Optional[str], end: Optional[str]) -> int:
    if kind == "client":
        sql, col = "SELECT COUNT(*) AS n FROM clients WHERE user_id=?", "created_at"
    elif kind == "order":
        sql = "SELECT COUNT(*) AS n FROM orders o JOIN clients c ON c.client_id = o.client_id WHERE c.user_id=?"
        col = _ORDER_EVENT_AT
    elif kind == "payment":
        sql, col = "SELECT COUNT(*) AS n FROM order_payments WHERE user_id=?", "payment_date"
    else:
        sql = "SELECT COUNT(*) AS n FROM measurements m JOIN clients c ON c.client_id = m.client_id WHERE c.user_id=?"
        col = "m.last_updated"
    params: List[Any] = [int(user_id)]
    if start:
        sql += f" AND {col} >= ?"
        params.append(start)
    if end:
        sql += f" AND {col} <= ?"
        params.append(end)
    return _count(conn, sql, tuple(params))


def orders_due_soon(conn: Any, user_id: int, *, limit: int = 10) -> List[Dict[str, Any]]:
    """Active orders due within 7 days (overdue included) or without a due date."""
    horizon = (utcnow() + timedelta(days=7)).date().isoformat()
    active = list(ACTIVE_STATUSES)
    rows = conn.execute(
        f"""
        SELECT o.order_id, o.due_date, o.total_amount, o.status, o.created_at, c.name AS client_name
        FROM orders o JOIN clients c ON c.client_id = o.client_id
        WHERE c.user_id=?
          AND o.status IN ({in_placeholders(active)})
          AND (o.due_date IS NULL OR o.due_date <= ?)
        ORDER BY CASE WHEN o.due_date IS NULL THEN 1 ELSE 0 END, o.due_date ASC, o.order_id ASC
        LIMIT ?
        """,
        tuple([int(user_id)] + active + [horizon, max(1, int(limit))]),
    ).fetchall()
    return [dict(r) for r in rows]


def client_growth(conn: Any, user_id: int, *, period: str = "30days") -> Dict[str, Any]:
    p = (period or "30days").strip().lower()
    if p == "year":
        p = "1year"
    if p not in PERIODS:
        raise ValueError("invalid_period")

    now = utcnow()
    today = now.replace(hour=0, minute=0, second=0, microsecond=0)
    if p == "7days":
        start = today - timedelta(days=6)
        labels = [f"{d:%b} {d.day}" for d in (today - timedelta(days=i) for i in range(6, -1, -1))]
    elif p == "30days":
        start = today - timedelta(days=30)
        labels = [f"Week {i}" for i in range(1, 6)]
    else:
        months = 3 if p == "90days" else 12
        start = add_months(month_start(now), -(months - 1))
        labels = [f"{add_months(month_start(now), -i):%b}" for i in range(months - 1, -1, -1)]

    rows = conn.execute(
        "SELECT created_at FROM clients WHERE user_id=? AND created_at >= ? ORDER BY created_at",
        (int(user_id), to_iso(start)),
    ).fetchall()
    data = [0] * len(labels)
    for r in rows:
        dt = parse_iso(r["created_at"])
        if dt is None:
            continue
        if p == "7days":
            idx = 6 - (today.date() - dt.date()).days
        elif p == "30days":
            idx = 4 - min(4, (today.date() - dt.date()).days // 7)
        else:
            diff = (now.year - dt.year) * 12 + (now.month - dt.month)
            idx = len(labels) - 1 - diff
        if 0 <= idx < len(data):
            data[idx] += 1

    previous = _count(
        conn,
        "SELECT COUNT(*) AS n FROM clients WHERE user_id=? AND created_at < ?",
        (int(user_id), to_iso(start)),
    )
    current = sum(data)
    if previous > 0:
        pct = int(round(current / previous * 100))
    else:
        pct = 100 if current > 0 else 0
    return {"period": p, "labels": labels, "data": data, "total_growth": current, "percent_growth": pct}
