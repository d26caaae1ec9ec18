"""
Role checks.

SECURITY: all checks read the users row; nothing comes from token claims.
"""

from src.models.user import User, UserRole


def can_impersonate(user: User) -> bool:
    return bool(user and user.is_super_admin)


def is_owner_or_admin(user: User) -> bool:
    return bool(user and user.role in (UserRole.OWNER.value, UserRole.ADMIN.value))


def can_manage_billing(user: User) -> bool:
    """Only the company owner can manage billing."""
    return bool(user and user.role == UserRole.OWNER.value)


def can_manage_team(user: User) -> bool:
    return is_owner_or_admin(user)
