"""FastAPI dependencies: who is calling, and may they use the workshop endpoints."""

from __future__ import annotations

from typing import Any, Dict, Optional

import jwt
from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from tailor_platform.config import Config
from tailor_platform.db import connect

from .crud import get_user_by_id, public_user
from .security import decode_access_token


_bearer = HTTPBearer(auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(status_code=401, detail=detail, headers={"WWW-Authenticate": "Bearer"})


def _app_config(request: Request) -> Config:
    cfg = getattr(request.app.state, "cfg", None)
    if cfg is None:
        raise HTTPException(status_code=500, detail="server_config_missing")
    return cfg


def _request_token(request: Request, credentials: Optional[HTTPAuthorizationCredentials], cfg: Config) -> str:
    """Bearer header first, then the session cookie."""
    if credentials is not None and credentials.credentials:
        return credentials.credentials
    token = request.cookies.get(cfg.AUTH_COOKIE_NAME or "tp_token")
    if not token:
        raise _unauthorized("missing_token")
    return token


def _user_id_from_token(token: str, cfg: Config) -> int:
    try:
        claims = decode_access_token(token=token, secret=cfg.AUTH_JWT_SECRET)
    except jwt.ExpiredSignatureError:
        raise _unauthorized("token_expired")
    except jwt.InvalidTokenError:
        raise _unauthorized("token_invalid")
    try:
        return int(claims["sub"])
    except (KeyError, TypeError, ValueError):
        raise _unauthorized("token_invalid")


def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer),
) -> Dict[str, Any]:
    """The caller as a public user dict (plus `is_admin`).

    The row is re-read on every request, so deactivation and subscription changes
    apply immediately even while an older token is still valid.
    """
    cfg = _app_config(request)
    user_id = _user_id_from_token(_request_token(request, credentials, cfg), cfg)

    with connect(cfg.DB_DSN) as conn:
        row = get_user_by_id(conn, user_id)
    if row is None:
        raise _unauthorized("user_not_found")
    if not row["is_active"]:
        raise _unauthorized("user_inactive")

    user = public_user(row)
    user["is_admin"] = user.get("role") == "admin"
    return user


def require_admin(user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
    if not user["is_admin"]:
        raise HTTPException(status_code=403, detail="admin_required")
    return user


def require_subscription(request: Request, user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
    """Workshop endpoints need an active subscription; the free Growth plan counts.

    Admins pass, and so does everyone when BILLING_DEV_BYPASS=1. A subscription past its
    end_date is expired here rather than waiting for the sweep.
    """
    cfg = _app_config(request)
    if user["is_admin"] or cfg.BILLING_DEV_BYPASS:
        return user
    if user.get("is_paid"):
        # billing.subscriptions imports auth.crud, so import at call time.
        from tailor_platform.billing.subscriptions import expire_overdue

        with connect(cfg.DB_DSN) as conn:
            expired = expire_overdue(conn, user_id=int(user["user_id"]))
        if not expired:
            return user
    raise HTTPException(status_code=402, detail="subscription_required")
