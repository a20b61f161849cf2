"""Accounts and sessions for tailors.

Passwords are hashed with passlib, sessions are HS256 JWTs sent either as a Bearer
header or in the `tp_token` httpOnly cookie. Email verification and password reset
use single-use tokens stored as SHA-256 hashes.
"""

from .crud import bootstrap_admin_if_needed, create_user
from .deps import get_current_user, require_admin, require_subscription

__all__ = [
    "bootstrap_admin_if_needed",
    "create_user",
    "get_current_user",
    "require_admin",
    "require_subscription",
]
