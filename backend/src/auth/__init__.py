"""Authentication and authorization helpers."""

from src.auth.context import AuthContext
from src.auth.middleware import get_current_user, require_auth
from src.auth.permissions import (
    can_impersonate,
    can_manage_billing,
    can_manage_team,
    is_owner_or_admin,
)

__all__ = [
    "AuthContext",
    "get_current_user",
    "require_auth",
    "can_impersonate",
    "can_manage_billing",
    "can_manage_team",
    "is_owner_or_admin",
]
