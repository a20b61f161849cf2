from __future__ import annotations

import math
from typing import Any, Dict, Sequence, Tuple


MAX_PAGE_SIZE = 100


def page_bounds(page: int | None, limit: int | None, *, default_limit: int = 20) -> Tuple[int, int, int]:
    """Clamp page/limit and return (page, limit, offset)."""
    p = max(1, int(page or 1))
    lim = int(limit or default_limit)
    lim = max(1, min(lim, MAX_PAGE_SIZE))
    return p, lim, (p - 1) * lim


def pagination(page: int, limit: int, total: int) -> Dict[str, Any]:
    return {
        "page": page,
        "limit": limit,
        "total": int(total),
        "total_pages": int(math.ceil(int(total) / limit)) if limit else 0,
    }


def sort_clause(sort: str | None, order: str | None, allowed: Dict[str, str], default: str) -> str:
    """Map a user-supplied sort key onto a whitelisted column expression."""
    col = allowed.get((sort or "").strip().lower(), allowed[default])
    direction = "ASC" if (order or "").strip().lower() == "asc" else "DESC"
    return f"{col} {direction}"


def like(term: str) -> str:
    return f"%{term.strip().lower()}%"


def in_placeholders(values: Sequence[Any]) -> str:
    return ",".join(["?"] * len(values))
