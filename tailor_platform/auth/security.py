"""Password hashing (passlib) and signed session tokens (PyJWT, HS256)."""

from __future__ import annotations

from datetime import timedelta
from typing import Any, Dict, Optional

import jwt
from passlib.context import CryptContext

from tailor_platform.util.time import utcnow


_pwd = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
JWT_ALGORITHM = "HS256"


def hash_password(password: str) -> str:
    if not password:
        raise ValueError("password_required")
    return _pwd.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    """False for blank input or an unreadable stored hash."""
    if not (password and password_hash):
        return False
    try:
        return _pwd.verify(password, password_hash)
    except (ValueError, TypeError):
        return False


def create_access_token(
    *,
    secret: str,
    user_id: int,
    email: str,
    role: str,
    expires_minutes: int,
    plan: Optional[str] = None,
    plan_expiry: Optional[str] = None,
) -> str:
    """Sign a session token. `plan`/`plan_expiry` mirror the active subscription at issue time."""
    if not secret:
        raise RuntimeError("auth_jwt_secret_missing")
    issued = utcnow()
    claims: Dict[str, Any] = {
        "sub": str(int(user_id)),
        "email": email,
        "role": role,
        "plan": plan,
        "plan_expiry": plan_expiry,
        "iat": issued,
        "exp": issued + timedelta(minutes=max(1, int(expires_minutes))),
    }
    return jwt.encode(claims, secret, algorithm=JWT_ALGORITHM)


def decode_access_token(*, token: str, secret: str) -> Dict[str, Any]:
    """Verify signature and expiry. Raises jwt.ExpiredSignatureError / jwt.InvalidTokenError."""
    if not secret:
        raise RuntimeError("auth_jwt_secret_missing")
    return jwt.decode(token, secret, algorithms=[JWT_ALGORITHM], options={"require": ["sub", "exp"]})
