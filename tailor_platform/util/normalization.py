from __future__ import annotations

import json
import re
from typing import Any, Dict, List, Optional


_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_SPECIAL_RE = re.compile(r"[^A-Za-z0-9]")


def normalize_email(email: str | None) -> str:
    return (email or "").strip().lower()


def is_valid_email(email: str | None) -> bool:
    return bool(_EMAIL_RE.match(normalize_email(email)))


def clean_text(value: Any) -> Optional[str]:
    """Trim strings; blank -> None."""
    if value is None:
        return None
    s = str(value).strip()
    return s or None


def check_password_strength(password: str | None) -> None:
    """Raise ValueError unless the password has 8+ chars with upper, lower, digit and special char."""
    p = password or ""
    if len(p) < 8:
        raise ValueError("password_too_short")
    if not (
        re.search(r"[A-Z]", p)
        and re.search(r"[a-z]", p)
        and re.search(r"[0-9]", p)
        and _SPECIAL_RE.search(p)
    ):
        raise ValueError("password_too_weak")


def normalize_order_status(status: str | None) -> str:
    """'In Progress' / 'in-progress' -> 'in_progress'."""
    s = (status or "").strip().lower()
    return re.sub(r"[\s\-]+", "_", s)


def dumps(value: Any) -> str:
    return json.dumps(value if value is not None else {}, ensure_ascii=False)


def loads_obj(raw: Any) -> Dict[str, Any]:
    """Decode a *_json column into a dict. Invalid or non-object JSON -> {}."""
    if raw is None or raw == "":
        return {}
    if isinstance(raw, dict):
        return raw
    try:
        v = json.loads(raw)
    except (TypeError, ValueError):
        return {}
    return v if isinstance(v, dict) else {}


def loads_list(raw: Any) -> List[Any]:
    """Decode a *_json column into a list. Invalid or non-list JSON -> []."""
    if raw is None or raw == "":
        return []
    if isinstance(raw, list):
        return raw
    try:
        v = json.loads(raw)
    except (TypeError, ValueError):
        return []
    return v if isinstance(v, list) else []
