from __future__ import annotations

from typing import Any, Dict, List, Optional

from tailor_platform.util.normalization import dumps, loads_obj
from tailor_platform.util.time import utcnow_iso


INTERVALS = ("monthly", "annual")
FREE_PLAN_SLUG = "growth-monthly"

# Annual price = 10 months (2 months free).
ANNUAL_MONTHS_CHARGED = 10

_BASE_PLANS: List[Dict[str, Any]] = [
    {
        "key": "growth",
        "name": "Growth",
        "description": "Basic plan for solo tailors just getting started",
        "price": 0,
        "max_clients": 50,
        "max_styles": 100,
        "is_featured": False,
        "features": {"clients": True, "styles": True, "orders": True},
    },
    {
        "key": "professional",
        "name": "Professional",
        "description": "Perfect for growing tailor businesses",
        "price": 3000,
        "max_clients": 200,
        "max_styles": 500,
        "is_featured": True,
        "features": {"clients": True, "styles": True, "orders": True},
    },
    {
        "key": "enterprise",
        "name": "Enterprise",
        "description": "For established tailor businesses with multiple staff",
        "price": 5000,
        "max_clients": -1,
        "max_styles": -1,
        "is_featured": False,
        "features": {"clients": True, "styles": True, "orders": True, "team": True},
    },
]


def _debug(msg: str) -> None:
    print(f"[billing] {msg}")


def plan_catalog() -> List[Dict[str, Any]]:
    """The monthly + annual catalog, keyed by slug."""
    out: List[Dict[str, Any]] = []
    for interval in INTERVALS:
        for p in _BASE_PLANS:
            price = p["price"] if interval == "monthly" else p["price"] * ANNUAL_MONTHS_CHARGED
            out.append(
                {
                    "slug": f"{p['key']}-{interval}",
                    "name": p["name"],
                    "description": p["description"],
                    "price": float(price),
                    "billing_interval": interval,
                    "features": p["features"],
                    "is_featured": p["is_featured"],
                    "max_clients": p["max_clients"],
                    "max_styles": p["max_styles"],
                }
            )
    return out


def seed_plans(conn: Any) -> Dict[str, int]:
    """Insert or update the catalog by slug. Safe to run repeatedly."""
    created = 0
    updated = 0
    now = utcnow_iso()
    for p in plan_catalog():
        existing = conn.execute("SELECT plan_id FROM plans WHERE slug=?", (p["slug"],)).fetchone()
        params = (
            p["name"],
            p["description"],
            p["price"],
            p["billing_interval"],
            dumps(p["features"]),
            1 if p["is_featured"] else 0,
            int(p["max_clients"]),
            int(p["max_styles"]),
        )
        if existing is not None:
            conn.execute(
                """
                UPDATE plans
                SET name=?, description=?, price=?, billing_interval=?, features_json=?,
                    is_featured=?, max_clients=?, max_styles=?, updated_at=?
                WHERE plan_id=?
                """,
                params + (now, int(existing["plan_id"])),
            )
            updated += 1
        else:
            conn.execute(
                """
                INSERT INTO plans (slug, name, description, price, billing_interval, features_json,
                                   is_featured, max_clients, max_styles, is_active, created_at, updated_at)
                VALUES (?,?,?,?,?,?,?,?,?,1,?,?)
                """,
                (p["slug"],) + params + (now, now),
            )
            created += 1
    _debug(f"Seeded plans created={created} updated={updated}")
    return {"created": created, "updated": updated}


def plan_to_dict(row: Any) -> Dict[str, Any]:
    d = dict(row)
    d["features"] = loads_obj(d.pop("features_json", None))
    d["is_active"] = bool(d.get("is_active"))
    d["is_featured"] = bool(d.get("is_featured"))
    d["price"] = float(d.get("price") or 0)
    d["is_free"] = d["price"] <= 0
    d["unlimited_clients"] = int(d.get("max_clients") or 0) < 0
    return d


def list_plans(conn: Any, *, interval: Optional[str] = None) -> List[Dict[str, Any]]:
    if interval:
        if interval not in INTERVALS:
            raise ValueError("invalid_interval")
        rows = conn.execute(
            "SELECT * FROM plans WHERE is_active=1 AND billing_interval=? ORDER BY price ASC, plan_id ASC",
            (interval,),
        ).fetchall()
    else:
        rows = conn.execute(
            "SELECT * FROM plans WHERE is_active=1 ORDER BY price ASC, plan_id ASC"
        ).fetchall()
    return [plan_to_dict(r) for r in rows]


def get_plan(conn: Any, plan_id: int) -> Optional[Dict[str, Any]]:
    row = conn.execute("SELECT * FROM plans WHERE plan_id=?", (int(plan_id),)).fetchone()
    return plan_to_dict(row) if row is not None else None


def resolve_plan(conn: Any, plan: Any, *, interval: Optional[str] = None) -> Dict[str, Any]:
    """Find an active plan by numeric id, slug, or base name + interval ('professional', 'annual').

    Raises ValueError plan_not_found.
    """
    key = str(plan if plan is not None else "").strip().lower()
    if not key:
        raise ValueError("plan_required")

    row = None
    if key.isdigit():
        row = conn.execute("SELECT * FROM plans WHERE plan_id=? AND is_active=1", (int(key),)).fetchone()
    else:
        row = conn.execute("SELECT * FROM plans WHERE slug=? AND is_active=1", (key,)).fetchone()
        if row is None:
            slug = f"{key}-{interval or 'monthly'}"
            row = conn.execute("SELECT * FROM plans WHERE slug=? AND is_active=1", (slug,)).fetchone()
    if row is None:
        raise ValueError("plan_not_found")
    return plan_to_dict(row)


def free_plan(conn: Any) -> Optional[Dict[str, Any]]:
    row = conn.execute("SELECT * FROM plans WHERE slug=?", (FREE_PLAN_SLUG,)).fetchone()
    return plan_to_dict(row) if row is not None else None
