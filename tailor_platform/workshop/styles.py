from __future__ import annotations

from typing import Any, Dict, List, Optional

from tailor_platform.util.normalization import clean_text, dumps, loads_obj
from tailor_platform.util.paging import like, page_bounds, pagination, sort_clause
from tailor_platform.util.time import utcnow_iso
from tailor_platform.workshop.limits import check_limit


_SORTS = {
    "name": "LOWER(s.name)",
    "category": "LOWER(s.category)",
    "created_at": "s.created_at",
    "updated_at": "s.updated_at",
}


def style_to_dict(row: Any) -> Dict[str, Any]:
    d = dict(row)
    d["details"] = loads_obj(d.pop("details_json", None))
    return d


def get_owned_style(conn: Any, user_id: int, style_id: int) -> Any:
    row = conn.execute(
        "SELECT * FROM styles WHERE style_id=? AND user_id=?",
        (int(style_id), int(user_id)),
    ).fetchone()
    if row is None:
        raise ValueError("style_not_found")
    return row


def list_styles(
    conn: Any,
    user_id: int,
    *,
    page: int = 1,
    limit: int = 12,
    search: Optional[str] = None,
    category: Optional[str] = None,
    sort: Optional[str] = None,
    order: Optional[str] = None,
) -> Dict[str, Any]:
    p, lim, offset = page_bounds(page, limit, default_limit=12)
    where = ["s.user_id=?"]
    params: List[Any] = [int(user_id)]
    if search and search.strip():
        where.append("(LOWER(s.name) LIKE ? OR LOWER(COALESCE(s.description,'')) LIKE ?)")
        term = like(search)
        params.extend([term, term])
    if category and category.strip():
        where.append("LOWER(COALESCE(s.category,''))=?")
        params.append(category.strip().lower())
    where_sql = " AND ".join(where)

    total = conn.execute(f"SELECT COUNT(*) AS n FROM styles s WHERE {where_sql}", tuple(params)).fetchone()["n"]
    rows = conn.execute(
        f"""
        SELECT s.*, (SELECT COUNT(*) FROM orders o WHERE o.style_id = s.style_id) AS order_count
        FROM styles s
        WHERE {where_sql}
        ORDER BY {sort_clause(sort, order, _SORTS, "created_at")}, s.style_id DESC
        LIMIT ? OFFSET ?
        """,
        tuple(params + [lim, offset]),
    ).fetchall()
    return {"items": [style_to_dict(r) for r in rows], "pagination": pagination(p, lim, total)}


def create_style(conn: Any, user_id: int, data: Dict[str, Any], *, image_url: Optional[str]) -> Dict[str, Any]:
    """`image_url` is the already-uploaded (or user-supplied) image location."""
    name = clean_text(data.get("name"))
    if not name:
        raise ValueError("name_required")
    if not image_url:
        raise ValueError("image_required")
    check_limit(conn, user_id, "styles")

    now = utcnow_iso()
    row = conn.execute(
        """
        INSERT INTO styles (user_id, name, description, image_url, category, details_json, created_at, updated_at)
        VALUES (?,?,?,?,?,?,?,?)
        RETURNING style_id
        """,
        (
            int(user_id),
            name,
            clean_text(data.get("description")),
            image_url,
            clean_text(data.get("category")),
            dumps(data.get("details") or {}),
            now,
            now,
        ),
    ).fetchone()
    return style_to_dict(get_owned_style(conn, user_id, int(row["style_id"])))


def get_style(conn: Any, user_id: int, style_id: int) -> Dict[str, Any]:
    d = style_to_dict(get_owned_style(conn, user_id, style_id))
    rows = conn.execute(
        """
        SELECT o.order_id, o.status, o.due_date, o.total_amount, o.created_at, c.client_id, c.name AS client_name
        FROM orders o
        JOIN clients c ON c.client_id = o.client_id
        WHERE o.style_id=? AND c.user_id=?
        ORDER BY o.created_at DESC
        LIMIT 20
        """,
        (int(style_id), int(user_id)),
    ).fetchall()
    d["related_orders"] = [dict(r) for r in rows]
    return d


def update_style(
    conn: Any,
    user_id: int,
    style_id: int,
    data: Dict[str, Any],
    *,
    image_url: Optional[str] = None,
) -> Dict[str, Any]:
    get_owned_style(conn, user_id, style_id)
    fields: list[tuple[str, Any]] = []
    for k in ("name", "description", "category"):
        if k in data:
            v = clean_text(data.get(k))
            if k == "name" and not v:
                raise ValueError("name_required")
            fields.append((k, v))
    if "details" in data:
        fields.append(("details_json", dumps(data.get("details") or {})))
    if image_url:
        fields.append(("image_url", image_url))
    if fields:
        fields.append(("updated_at", utcnow_iso()))
        sets = ", ".join([f"{k}=?" for k, _ in fields])
        conn.execute(f"UPDATE styles SET {sets} WHERE style_id=?", [v for _, v in fields] + [int(style_id)])
    return get_style(conn, user_id, style_id)


def delete_style(conn: Any, user_id: int, style_id: int) -> None:
    """Delete a style. Orders keep their data; their style link is cleared."""
    get_owned_style(conn, user_id, style_id)
    conn.execute("UPDATE orders SET style_id=NULL WHERE style_id=?", (int(style_id),))
    conn.execute("DELETE FROM styles WHERE style_id=?", (int(style_id),))
