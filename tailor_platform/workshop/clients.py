from __future__ import annotations

from typing import Any, Dict, List, Optional

from tailor_platform.workshop.limits import check_limit
from tailor_platform.util.normalization import clean_text, dumps, loads_obj
from tailor_platform.util.paging import like, page_bounds, pagination, sort_clause
from tailor_platform.util.time import utcnow_iso


CLIENT_FIELDS = ("name", "email", "phone", "address", "gender", "notes")

_SORTS = {
    "name": "LOWER(c.name)",
    "email": "LOWER(c.email)",
    "created_at": "c.created_at",
    "updated_at": "c.updated_at",
}


def measurement_to_dict(row: Any) -> Optional[Dict[str, Any]]:
    if row is None:
        return None
    d = dict(row)
    d["values"] = loads_obj(d.pop("values_json", None))
    return d


def get_owned_client(conn: Any, user_id: int, client_id: int) -> Any:
    row = conn.execute(
        "SELECT * FROM clients WHERE client_id=? AND user_id=?",
        (int(client_id), int(user_id)),
    ).fetchone()
    if row is None:
        raise ValueError("client_not_found")
    return row


def get_measurement(conn: Any, client_id: int) -> Optional[Dict[str, Any]]:
    row = conn.execute("SELECT * FROM measurements WHERE client_id=?", (int(client_id),)).fetchone()
    return measurement_to_dict(row)


def upsert_measurement(
    conn: Any,
    client_id: int,
    *,
    values: Dict[str, Any],
    notes: Optional[str] = None,
) -> Dict[str, Any]:
    if not isinstance(values, dict):
        raise ValueError("invalid_measurements")
    now = utcnow_iso()
    row = conn.execute(
        """
        INSERT INTO measurements (client_id, values_json, notes, last_updated)
        VALUES (?,?,?,?)
        ON CONFLICT(client_id) DO UPDATE SET
            values_json=excluded.values_json,
            notes=excluded.notes,
            last_updated=excluded.last_updated
        RETURNING *
        """,
        (int(client_id), dumps(values), clean_text(notes), now),
    ).fetchone()
    return measurement_to_dict(row)


def list_clients(
    conn: Any,
    user_id: int,
    *,
    page: int = 1,
    limit: int = 20,
    search: Optional[str] = None,
    sort: Optional[str] = None,
    order: Optional[str] = None,
    has_orders: Optional[bool] = None,
) -> Dict[str, Any]:
    p, lim, offset = page_bounds(page, limit)
    where = ["c.user_id=?"]
    params: List[Any] = [int(user_id)]
    if search and search.strip():
        where.append("(LOWER(c.name) LIKE ? OR LOWER(COALESCE(c.email,'')) LIKE ? OR COALESCE(c.phone,'') LIKE ?)")
        term = like(search)
        params.extend([term, term, term])
    if has_orders is True:
        where.append("EXISTS (SELECT 1 FROM orders o WHERE o.client_id = c.client_id)")
    elif has_orders is False:
        where.append("NOT EXISTS (SELECT 1 FROM orders o WHERE o.client_id = c.client_id)")
    where_sql = " AND ".join(where)

    total = conn.execute(f"SELECT COUNT(*) AS n FROM clients c WHERE {where_sql}", tuple(params)).fetchone()["n"]
    rows = conn.execute(
        f"""
        SELECT c.*,
               (SELECT COUNT(*) FROM orders o WHERE o.client_id = c.client_id) AS order_count,
               (SELECT MAX(o.created_at) FROM orders o WHERE o.client_id = c.client_id) AS last_order_at
        FROM clients c
        WHERE {where_sql}
        ORDER BY {sort_clause(sort, order, _SORTS, "created_at")}, c.client_id DESC
        LIMIT ? OFFSET ?
        """,
        tuple(params + [lim, offset]),
    ).fetchall()
    items = []
    for r in rows:
        d = dict(r)
        d["order_count"] = int(d.get("order_count") or 0)
        items.append(d)
    return {"items": items, "pagination": pagination(p, lim, total)}


def create_client(conn: Any, user_id: int, data: Dict[str, Any], *, enforce_limit: bool = True) -> Dict[str, Any]:
    name = clean_text(data.get("name"))
    if not name:
        raise ValueError("name_required")

    if enforce_limit:
        check_limit(conn, user_id, "clients")

    now = utcnow_iso()
    row = conn.execute(
        """
        INSERT INTO clients (user_id, name, email, phone, address, gender, notes, created_at, updated_at)
        VALUES (?,?,?,?,?,?,?,?,?)
        RETURNING client_id
        """,
        (
            int(user_id),
            name,
            clean_text(data.get("email")),
            clean_text(data.get("phone")),
            clean_text(data.get("address")),
            clean_text(data.get("gender")),
            clean_text(data.get("notes")),
            now,
            now,
        ),
    ).fetchone()
    client_id = int(row["client_id"])

    values = data.get("measurements")
    if values:
        upsert_measurement(conn, client_id, values=values, notes=data.get("measurement_notes"))
    return get_client(conn, user_id, client_id)


def get_client(conn: Any, user_id: int, client_id: int) -> Dict[str, Any]:
    d = dict(get_owned_client(conn, user_id, client_id))
    d["measurement"] = get_measurement(conn, client_id)
    stats = conn.execute(
        """
        SELECT COUNT(*) AS order_count,
               COALESCE(SUM(total_amount), 0) AS total_value,
               MAX(created_at) AS last_order_at
        FROM orders WHERE client_id=?
        """,
        (int(client_id),),
    ).fetchone()
    d["order_count"] = int(stats["order_count"] or 0)
    d["total_order_value"] = float(stats["total_value"] or 0)
    d["last_order_at"] = stats["last_order_at"]
    return d


def update_client(conn: Any, user_id: int, client_id: int, data: Dict[str, Any]) -> Dict[str, Any]:
    get_owned_client(conn, user_id, client_id)
    fields: list[tuple[str, Any]] = []
    for k in CLIENT_FIELDS:
        if k in data:
            v = clean_text(data.get(k))
            if k == "name" and not v:
                raise ValueError("name_required")
            fields.append((k, v))
    if fields:
        fields.append(("updated_at", utcnow_iso()))
        sets = ", ".join([f"{k}=?" for k, _ in fields])
        conn.execute(
            f"UPDATE clients SET {sets} WHERE client_id=?",
            [v for _, v in fields] + [int(client_id)],
        )
    if data.get("measurements") is not None:
        upsert_measurement(conn, client_id, values=data["measurements"], notes=data.get("measurement_notes"))
    return get_client(conn, user_id, client_id)


def delete_client(conn: Any, user_id: int, client_id: int) -> None:
    get_owned_client(conn, user_id, client_id)
    has_orders = conn.execute("SELECT 1 FROM orders WHERE client_id=? LIMIT 1", (int(client_id),)).fetchone()
    if has_orders is not None:
        raise ValueError("client_has_orders")
    conn.execute("DELETE FROM measurements WHERE client_id=?", (int(client_id),))
    conn.execute("DELETE FROM clients WHERE client_id=?", (int(client_id),))
