"""Measurement templates, per-template client measurements and unit settings."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from tailor_platform.auth.crud import get_user_by_id, set_onboarding_step
from tailor_platform.util.normalization import clean_text, dumps, loads_obj
from tailor_platform.util.paging import in_placeholders
from tailor_platform.util.time import utcnow_iso
from tailor_platform.workshop.clients import get_owned_client


UNITS = ("in", "cm")
GENDERS = ("male", "female", "unisex")
DEFAULT_CATEGORY = "upper"


def _debug(msg: str) -> None:
    print(f"[measurements] {msg}")


def _gender(value: Any) -> str:
    g = (clean_text(value) or "unisex").lower()
    if g not in GENDERS:
        raise ValueError("invalid_gender")
    return g


def _unit(value: Any, default: str = "in") -> str:
    u = (clean_text(value) or default).lower()
    if u not in UNITS:
        raise ValueError("invalid_unit")
    return u


def field_to_dict(row: Any) -> Dict[str, Any]:
    d = dict(row)
    meta = loads_obj(d.pop("metadata_json", None))
    d["is_required"] = bool(d.get("is_required"))
    d["category"] = meta.get("category") or DEFAULT_CATEGORY
    d["metadata"] = meta
    return d


def _fields_by_template(conn: Any, template_ids: List[int]) -> Dict[int, List[Dict[str, Any]]]:
    out: Dict[int, List[Dict[str, Any]]] = {tid: [] for tid in template_ids}
    if not template_ids:
        return out
    rows = conn.execute(
        f"""
        SELECT * FROM measurement_fields
        WHERE template_id IN ({in_placeholders(template_ids)})
        ORDER BY display_order ASC, field_id ASC
        """,
        tuple(template_ids),
    ).fetchall()
    for r in rows:
        out[int(r["template_id"])].append(field_to_dict(r))
    return out


def template_to_dict(row: Any, fields: List[Dict[str, Any]]) -> Dict[str, Any]:
    d = dict(row)
    d["is_default"] = bool(d.get("is_default"))
    d["is_archived"] = bool(d.get("is_archived"))
    d["fields"] = fields
    return d


def get_owned_template(conn: Any, user_id: int, template_id: int) -> Any:
    row = conn.execute(
        "SELECT * FROM measurement_templates WHERE template_id=? AND user_id=?",
        (int(template_id), int(user_id)),
    ).fetchone()
    if row is None:
        raise ValueError("template_not_found")
    return row


def get_template(conn: Any, user_id: int, template_id: int) -> Dict[str, Any]:
    row = get_owned_template(conn, user_id, template_id)
    fields = _fields_by_template(conn, [int(row["template_id"])])
    return template_to_dict(row, fields[int(row["template_id"])])


def list_templates(conn: Any, user_id: int, *, include_archived: bool = False) -> List[Dict[str, Any]]:
    sql = "SELECT * FROM measurement_templates WHERE user_id=?"
    if not include_archived:
        sql += " AND is_archived=0"
    sql += " ORDER BY is_default DESC, name ASC, template_id ASC"
    rows = conn.execute(sql, (int(user_id),)).fetchall()
    fields = _fields_by_template(conn, [int(r["template_id"]) for r in rows])
    return [template_to_dict(r, fields[int(r["template_id"])]) for r in rows]


def _replace_fields(conn: Any, template_id: int, fields: List[Dict[str, Any]], *, default_unit: str) -> None:
    conn.execute("DELETE FROM measurement_fields WHERE template_id=?", (int(template_id),))
    now = utcnow_iso()
    seen: set[str] = set()
    for idx, f in enumerate(fields or []):
        if not isinstance(f, dict):
            raise ValueError("invalid_field")
        name = clean_text(f.get("name"))
        if not name:
            raise ValueError("field_name_required")
        if name.lower() in seen:
            raise ValueError("duplicate_field_name")
        seen.add(name.lower())

        order = f.get("display_order", f.get("order"))
        meta: Dict[str, Any] = {}
        if clean_text(f.get("category")):
            meta["category"] = clean_text(f.get("category"))
        conn.execute(
            """
            INSERT INTO measurement_fields (template_id, name, description, unit, is_required, display_order,
                                            metadata_json, created_at, updated_at)
            VALUES (?,?,?,?,?,?,?,?,?)
            """,
            (
                int(template_id),
                name,
                clean_text(f.get("description")),
                _unit(f.get("unit"), default_unit),
                0 if f.get("is_required") is False else 1,
                int(order) if order is not None else idx,
                dumps(meta) if meta else None,
                now,
                now,
            ),
        )


def create_template(conn: Any, user_id: int, data: Dict[str, Any]) -> Dict[str, Any]:
    """Create a template, or replace the fields of an existing one with the same name and gender.

    The user's first template completes onboarding.
    """
    name = clean_text(data.get("name"))
    if not name:
        raise ValueError("name_required")
    gender = _gender(data.get("gender"))
    fields = data.get("fields") or []

    existing = conn.execute(
        "SELECT * FROM measurement_templates WHERE user_id=? AND name=? AND gender=?",
        (int(user_id), name, gender),
    ).fetchone()
    if existing is not None:
        tid = int(existing["template_id"])
        _debug(f"Template '{name}' exists for user {user_id}; replacing fields")
        _replace_fields(conn, tid, fields, default_unit=str(existing["unit"]))
        conn.execute("UPDATE measurement_templates SET updated_at=? WHERE template_id=?", (utcnow_iso(), tid))
        return get_template(conn, user_id, tid)

    n = conn.execute("SELECT COUNT(*) AS n FROM measurement_templates WHERE user_id=?", (int(user_id),)).fetchone()["n"]
    first = int(n) == 0

    unit = _unit(data.get("unit"))
    now = utcnow_iso()
    row = conn.execute(
        """
        INSERT INTO measurement_templates (user_id, name, unit, description, gender, is_default, is_archived,
                                           created_at, updated_at)
        VALUES (?,?,?,?,?,?,0,?,?)
        RETURNING template_id
        """,
        (int(user_id), name, unit, clean_text(data.get("description")), gender, 1 if first else 0, now, now),
    ).fetchone()
    tid = int(row["template_id"])
    _replace_fields(conn, tid, fields, default_unit=unit)

    if first:
        u = get_user_by_id(conn, user_id)
        if u is not None and not int(u["has_completed_setup"] or 0):
            set_onboarding_step(conn, user_id=user_id, step="complete")
            _debug(f"User {user_id} created their first template and completed setup")
    return get_template(conn, user_id, tid)


def update_template(conn: Any, user_id: int, template_id: int, data: Dict[str, Any]) -> Dict[str, Any]:
    row = get_owned_template(conn, user_id, template_id)
    updates: list[tuple[str, Any]] = []
    if "name" in data:
        name = clean_text(data.get("name"))
        if not name:
            raise ValueError("name_required")
        updates.append(("name", name))
    if "gender" in data and data.get("gender") is not None:
        updates.append(("gender", _gender(data.get("gender"))))

    changed = dict(updates)
    if "name" in changed or "gender" in changed:
        clash = conn.execute(
            "SELECT 1 FROM measurement_templates WHERE user_id=? AND name=? AND gender=? AND template_id<>?",
            (
                int(user_id),
                changed.get("name", row["name"]),
                changed.get("gender", row["gender"]),
                int(template_id),
            ),
        ).fetchone()
        if clash is not None:
            raise ValueError("template_exists")

    if "unit" in data and data.get("unit") is not None:
        updates.append(("unit", _unit(data.get("unit"))))
    if "description" in data:
        updates.append(("description", clean_text(data.get("description"))))
    if "is_archived" in data and data.get("is_archived") is not None:
        updates.append(("is_archived", 1 if data.get("is_archived") else 0))

    if updates:
        updates.append(("updated_at", utcnow_iso()))
        sets = ", ".join([f"{k}=?" for k, _ in updates])
        conn.execute(
            f"UPDATE measurement_templates SET {sets} WHERE template_id=?",
            [v for _, v in updates] + [int(template_id)],
        )

    if data.get("fields") is not None:
        unit = dict(updates).get("unit") or str(row["unit"])
        _replace_fields(conn, template_id, data["fields"], default_unit=unit)
    return get_template(conn, user_id, template_id)


def delete_template(conn: Any, user_id: int, template_id: int) -> None:
    """Delete a template; if it was the default, the newest remaining one takes over."""
    row = get_owned_template(conn, user_id, template_id)
    conn.execute("DELETE FROM measurement_fields WHERE template_id=?", (int(template_id),))
    conn.execute("DELETE FROM client_measurements WHERE template_id=?", (int(template_id),))
    conn.execute("DELETE FROM measurement_templates WHERE template_id=?", (int(template_id),))
    if int(row["is_default"] or 0) == 1:
        nxt = conn.execute(
            """
            SELECT template_id FROM measurement_templates
            WHERE user_id=?
            ORDER BY is_archived ASC, created_at DESC, template_id DESC
            LIMIT 1
            """,
            (int(user_id),),
        ).fetchone()
        if nxt is not None:
            set_default_template(conn, user_id, int(nxt["template_id"]))


def set_default_template(conn: Any, user_id: int, template_id: int) -> Dict[str, Any]:
    get_owned_template(conn, user_id, template_id)
    now = utcnow_iso()
    conn.execute(
        "UPDATE measurement_templates SET is_default=0, updated_at=? WHERE user_id=? AND is_default=1",
        (now, int(user_id)),
    )
    conn.execute(
        "UPDATE measurement_templates SET is_default=1, updated_at=? WHERE template_id=?",
        (now, int(template_id)),
    )
    return get_template(conn, user_id, template_id)


# -----------------------------
# Client measurements (per template)
# -----------------------------


def _client_measurement_to_dict(row: Any) -> Dict[str, Any]:
    d = dict(row)
    d["values"] = loads_obj(d.pop("values_json", None))
    return d


def list_client_measurements(conn: Any, user_id: int, client_id: int) -> List[Dict[str, Any]]:
    get_owned_client(conn, user_id, client_id)
    rows = conn.execute(
        """
        SELECT cm.*, t.name AS template_name, t.unit AS template_unit
        FROM client_measurements cm
        JOIN measurement_templates t ON t.template_id = cm.template_id
        WHERE cm.client_id=?
        ORDER BY cm.taken_at DESC
        """,
        (int(client_id),),
    ).fetchall()
    return [_client_measurement_to_dict(r) for r in rows]


def upsert_client_measurement(
    conn: Any,
    user_id: int,
    client_id: int,
    *,
    template_id: int,
    values: Dict[str, Any],
    notes: Optional[str] = None,
) -> Dict[str, Any]:
    """Record a client's measurements against a template. Required template fields must be present."""
    get_owned_client(conn, user_id, client_id)
    tpl = get_template(conn, user_id, template_id)
    if not isinstance(values, dict):
        raise ValueError("invalid_measurements")

    missing = [
        f["name"]
        for f in tpl["fields"]
        if f["is_required"] and values.get(f["name"]) in (None, "")
    ]
    if missing:
        raise ValueError("missing_required_fields")

    now = utcnow_iso()
    conn.execute(
        """
        INSERT INTO client_measurements (client_id, template_id, values_json, notes, taken_at, taken_by,
                                         created_at, updated_at)
        VALUES (?,?,?,?,?,?,?,?)
        ON CONFLICT(client_id, template_id) DO UPDATE SET
            values_json=excluded.values_json,
            notes=excluded.notes,
            taken_at=excluded.taken_at,
            taken_by=excluded.taken_by,
            updated_at=excluded.updated_at
        """,
        (int(client_id), int(template_id), dumps(values), clean_text(notes), now, int(user_id), now, now),
    )
    row = conn.execute(
        """
        SELECT cm.*, t.name AS template_name, t.unit AS template_unit
        FROM client_measurements cm
        JOIN measurement_templates t ON t.template_id = cm.template_id
        WHERE cm.client_id=? AND cm.template_id=?
        """,
        (int(client_id), int(template_id)),
    ).fetchone()
    return _client_measurement_to_dict(row)


# -----------------------------
# Settings
# -----------------------------


def get_settings(conn: Any, user_id: int) -> Dict[str, Any]:
    row = conn.execute(
        "SELECT default_unit, updated_at FROM user_measurement_settings WHERE user_id=?",
        (int(user_id),),
    ).fetchone()
    if row is None:
        return {"default_unit": "in", "updated_at": None}
    return dict(row)


def update_settings(conn: Any, user_id: int, *, default_unit: str) -> Dict[str, Any]:
    unit = (default_unit or "").strip().lower()
    if unit not in UNITS:
        raise ValueError("invalid_unit")
    now = utcnow_iso()
    conn.execute(
        """
        INSERT INTO user_measurement_settings (user_id, default_unit, created_at, updated_at)
        VALUES (?,?,?,?)
        ON CONFLICT(user_id) DO UPDATE SET default_unit=excluded.default_unit, updated_at=excluded.updated_at
        """,
        (int(user_id), unit, now, now),
    )
    return get_settings(conn, user_id)
