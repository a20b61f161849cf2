from __future__ import annotations

from typing import Any, Dict, Optional

from tailor_platform.auth.crud import get_user_by_id, public_user, set_onboarding_step
from tailor_platform.billing.subscriptions import plan_summary
from tailor_platform.util.normalization import clean_text, dumps, loads_list
from tailor_platform.util.time import utcnow_iso


BUSINESS_TEXT_FIELDS = (
    "business_name",
    "business_type",
    "business_description",
    "phone",
    "address",
    "city",
    "state",
    "location",
    "bio",
)
BUSINESS_LIST_FIELDS = ("specializations", "services")


def _as_list(value: Any) -> list:
    if value is None:
        return []
    if isinstance(value, str):
        return [s.strip() for s in value.split(",") if s.strip()]
    if isinstance(value, (list, tuple)):
        return [str(v).strip() for v in value if str(v).strip()]
    raise ValueError("invalid_list_field")


def business_to_dict(row: Any) -> Dict[str, Any]:
    d = dict(row)
    for k in BUSINESS_LIST_FIELDS:
        d[k] = loads_list(d.pop(f"{k}_json", None))
    return d


def get_business(conn: Any, user_id: int) -> Optional[Dict[str, Any]]:
    row = conn.execute("SELECT * FROM businesses WHERE user_id=?", (int(user_id),)).fetchone()
    return business_to_dict(row) if row is not None else None


def update_business(conn: Any, user_id: int, data: Dict[str, Any]) -> Dict[str, Any]:
    """Insert or update the user's business. Only keys present in `data` are touched."""
    fields: list[tuple[str, Any]] = []
    for k in BUSINESS_TEXT_FIELDS:
        if k in data:
            fields.append((k, clean_text(data.get(k))))
    if "years_in_business" in data:
        y = data.get("years_in_business")
        if y in (None, ""):
            fields.append(("years_in_business", None))
        else:
            try:
                years = int(y)
            except (TypeError, ValueError):
                raise ValueError("invalid_years_in_business")
            if years < 0:
                raise ValueError("invalid_years_in_business")
            fields.append(("years_in_business", years))
    for k in BUSINESS_LIST_FIELDS:
        if k in data:
            fields.append((f"{k}_json", dumps(_as_list(data.get(k)))))
    if "image" in data:
        fields.append(("image", clean_text(data.get("image"))))

    now = utcnow_iso()
    existing = conn.execute("SELECT business_id FROM businesses WHERE user_id=?", (int(user_id),)).fetchone()
    if existing is None:
        cols = ["user_id"] + [k for k, _ in fields] + ["created_at", "updated_at"]
        vals = [int(user_id)] + [v for _, v in fields] + [now, now]
        conn.execute(
            f"INSERT INTO businesses ({', '.join(cols)}) VALUES ({','.join(['?'] * len(cols))})",
            vals,
        )
    elif fields:
        fields.append(("updated_at", now))
        sets = ", ".join([f"{k}=?" for k, _ in fields])
        conn.execute(f"UPDATE businesses SET {sets} WHERE user_id=?", [v for _, v in fields] + [int(user_id)])

    b = get_business(conn, user_id)
    if b is None:
        raise ValueError("business_not_found")
    return b


def get_profile(conn: Any, user_id: int) -> Dict[str, Any]:
    row = get_user_by_id(conn, user_id)
    if row is None:
        raise ValueError("user_not_found")
    return {
        "user": public_user(row),
        "business": get_business(conn, user_id),
        "subscription": plan_summary(conn, user_id),
    }


def update_profile(conn: Any, user_id: int, data: Dict[str, Any]) -> Dict[str, Any]:
    if "name" in data:
        name = clean_text(data.get("name"))
        if not name:
            raise ValueError("name_required")
        conn.execute(
            "UPDATE users SET name=?, updated_at=? WHERE user_id=?",
            (name, utcnow_iso(), int(user_id)),
        )
    business = {k: v for k, v in data.items() if k != "name"}
    if "avatar" in business:
        business["image"] = business.pop("avatar")
    if business:
        update_business(conn, user_id, business)
    return get_profile(conn, user_id)


def update_onboarding_step(conn: Any, user_id: int, step: str) -> Dict[str, Any]:
    set_onboarding_step(conn, user_id=user_id, step=(step or "").strip().lower())
    row = get_user_by_id(conn, user_id)
    if row is None:
        raise ValueError("user_not_found")
    return public_user(row)


def set_avatar(conn: Any, user_id: int, image_url: str) -> Dict[str, Any]:
    return update_business(conn, user_id, {"image": image_url})
