from __future__ import annotations

from typing import Any, Dict, Optional, Tuple

from tailor_platform.config import Config
from tailor_platform.db import connect
from tailor_platform.util.hashing import new_token, sha256_hex
from tailor_platform.util.normalization import is_valid_email, normalize_email
from tailor_platform.util.time import iso_after, utcnow_iso

from .security import create_access_token, hash_password, verify_password


ONBOARDING_STEPS = ("verification", "subscription", "setup", "complete")
TOKEN_PURPOSES = ("email_verify", "password_reset")

_BOOL_COLS = ("is_active", "email_verified", "has_completed_setup")


def public_user(row: Any | Dict[str, Any]) -> Dict[str, Any]:
    d = dict(row)
    d.pop("password_hash", None)
    for k in _BOOL_COLS:
        if k in d:
            d[k] = bool(d[k])
    # Convenience flag used by the frontend for gating.
    status = (d.get("subscription_status") or "").strip().lower()
    d["is_paid"] = status == "active"
    return d


def set_subscription_status(conn: Any, *, user_id: int, status: str | None) -> None:
    now = utcnow_iso()
    conn.execute(
        "UPDATE users SET subscription_status=?, updated_at=? WHERE user_id=?",
        (status, now, int(user_id)),
    )


def set_onboarding_step(conn: Any, *, user_id: int, step: str) -> None:
    """Move the onboarding wizard. 'complete' also marks setup as done."""
    if step not in ONBOARDING_STEPS:
        raise ValueError("invalid_onboarding_step")
    now = utcnow_iso()
    # Build dynamic SQL so we only touch what the step implies.
    fields: list[tuple[str, Any]] = [("onboarding_step", step)]
    if step == "complete":
        fields.append(("has_completed_setup", 1))
        fields.append(("onboarding_completed_at", now))
    fields.append(("updated_at", now))

    sets = ", ".join([f"{k}=?" for k, _ in fields])
    params = [v for _, v in fields] + [int(user_id)]
    conn.execute(f"UPDATE users SET {sets} WHERE user_id=?", params)


def get_user_by_email(conn: Any, email: str) -> Optional[Any]:
    e = normalize_email(email)
    if not e:
        return None
    return conn.execute(
        "SELECT * FROM users WHERE email=?",
        (e,),
    ).fetchone()


def get_user_by_id(conn: Any, user_id: int) -> Optional[Any]:
    return conn.execute(
        "SELECT * FROM users WHERE user_id=?",
        (int(user_id),),
    ).fetchone()


def verify_user_credentials(conn: Any, email: str, password: str) -> Optional[Any]:
    row = get_user_by_email(conn, email)
    if row is None:
        return None
    if int(row["is_active"] or 0) != 1:
        return None
    if not verify_password(password, str(row["password_hash"])):
        return None
    return row


def create_user(
    conn: Any,
    *,
    email: str,
    password: str,
    name: str | None = None,
    role: str = "user",
    is_active: bool = True,
    email_verified: bool = False,
) -> Dict[str, Any]:
    e = normalize_email(email)
    if not e:
        raise ValueError("email_blank")
    if not is_valid_email(e):
        raise ValueError("invalid_email")
    if role not in ("admin", "user"):
        raise ValueError("invalid_role")

    existing = conn.execute("SELECT 1 FROM users WHERE email=?", (e,)).fetchone()
    if existing is not None:
        raise ValueError("email_exists")

    # Verified accounts skip straight to plan selection.
    step = "subscription" if email_verified else "verification"
    now = utcnow_iso()
    row = conn.execute(
        """
        INSERT INTO users (email, name, password_hash, role, is_active, email_verified,
                           onboarding_step, created_at, updated_at)
        VALUES (?,?,?,?,?,?,?,?,?)
        RETURNING *
        """,
        (
            e,
            (name or "").strip() or None,
            hash_password(password),
            role,
            1 if is_active else 0,
            1 if email_verified else 0,
            step,
            now,
            now,
        ),
    ).fetchone()
    return public_user(row)


def update_password(conn: Any, *, user_id: int, password: str) -> None:
    now = utcnow_iso()
    conn.execute(
        "UPDATE users SET password_hash=?, updated_at=? WHERE user_id=?",
        (hash_password(password), now, int(user_id)),
    )


def mark_email_verified(conn: Any, user_id: int) -> None:
    now = utcnow_iso()
    conn.execute(
        """
        UPDATE users
        SET email_verified=1,
            onboarding_step=CASE WHEN onboarding_step='verification' THEN 'subscription' ELSE onboarding_step END,
            updated_at=?
        WHERE user_id=?
        """,
        (now, int(user_id)),
    )


def touch_last_login(conn: Any, user_id: int) -> None:
    now = utcnow_iso()
    conn.execute(
        "UPDATE users SET last_login_at=?, updated_at=? WHERE user_id=?",
        (now, now, int(user_id)),
    )


# -----------------------------
# Emailed tokens (verification / reset)
# -----------------------------


def create_verification_token(conn: Any, *, user_id: int, purpose: str, ttl_minutes: int) -> str:
    """Create a single-use token and return the raw value (only its hash is stored).

    Older unused tokens for the same purpose are invalidated.
    """
    if purpose not in TOKEN_PURPOSES:
        raise ValueError("invalid_token_purpose")
    now = utcnow_iso()
    conn.execute(
        "UPDATE verification_tokens SET used_at=? WHERE user_id=? AND purpose=? AND used_at IS NULL",
        (now, int(user_id), purpose),
    )
    raw = new_token()
    conn.execute(
        """
        INSERT INTO verification_tokens (user_id, purpose, token_hash, expires_at, used_at, created_at)
        VALUES (?,?,?,?,NULL,?)
        """,
        (int(user_id), purpose, sha256_hex(raw), iso_after(minutes=max(1, int(ttl_minutes))), now),
    )
    return raw


def consume_verification_token(conn: Any, *, token: str, purpose: str) -> int:
    """Mark a token as used and return its user_id.

    Raises ValueError: token_invalid | token_used | token_expired
    """
    raw = (token or "").strip()
    if not raw:
        raise ValueError("token_invalid")
    row = conn.execute(
        "SELECT token_id, user_id, expires_at, used_at FROM verification_tokens WHERE token_hash=? AND purpose=?",
        (sha256_hex(raw), purpose),
    ).fetchone()
    if row is None:
        raise ValueError("token_invalid")
    if row["used_at"]:
        raise ValueError("token_used")
    now = utcnow_iso()
    if str(row["expires_at"]) <= now:
        raise ValueError("token_expired")
    conn.execute("UPDATE verification_tokens SET used_at=? WHERE token_id=?", (now, int(row["token_id"])))
    return int(row["user_id"])


# -----------------------------
# Access tokens
# -----------------------------


def active_plan_claims(conn: Any, user_id: int) -> Tuple[Optional[str], Optional[str]]:
    """(plan slug, end_date) of the user's active subscription, or (None, None)."""
    row = conn.execute(
        """
        SELECT p.slug, s.end_date
        FROM subscriptions s
        JOIN plans p ON p.plan_id = s.plan_id
        WHERE s.user_id=? AND s.status='active'
        ORDER BY s.created_at DESC
        LIMIT 1
        """,
        (int(user_id),),
    ).fetchone()
    if row is None:
        return None, None
    return str(row["slug"]), (str(row["end_date"]) if row["end_date"] else None)


def issue_access_token(conn: Any, cfg: Config, user: Any | Dict[str, Any]) -> str:
    plan, plan_expiry = active_plan_claims(conn, int(user["user_id"]))
    return create_access_token(
        secret=cfg.AUTH_JWT_SECRET,
        user_id=int(user["user_id"]),
        email=str(user["email"]),
        role=str(user["role"]),
        expires_minutes=int(cfg.AUTH_TOKEN_EXPIRE_MINUTES),
        plan=plan,
        plan_expiry=plan_expiry,
    )


def bootstrap_admin_if_needed(cfg: Config) -> Optional[Dict[str, Any]]:
    """Create the first admin user if the users table is empty.

    Controlled via environment variables so a new clone has a deterministic way to log in.

    - AUTH_BOOTSTRAP_ADMIN_EMAIL
    - AUTH_BOOTSTRAP_ADMIN_PASSWORD

    This only runs when there are 0 rows in `users`.
    """

    with connect(cfg.DB_DSN) as conn:
        n = conn.execute("SELECT COUNT(*) AS n FROM users").fetchone()["n"]
        if int(n) > 0:
            return None

        email = normalize_email(getattr(cfg, "AUTH_BOOTSTRAP_ADMIN_EMAIL", "") or "")
        password = getattr(cfg, "AUTH_BOOTSTRAP_ADMIN_PASSWORD", None) or ""

        # If env explicitly clears these, don't create anything.
        if not email or not password:
            return None

        u = create_user(conn, email=email, password=password, name="Admin", role="admin", email_verified=True)
        set_onboarding_step(conn, user_id=int(u["user_id"]), step="complete")
        return u
