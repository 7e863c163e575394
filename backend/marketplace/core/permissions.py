"""
Role and approval checks shared by the services.

Admins pass every role check. Denials are audited.
"""
from typing import Iterable, Optional

from marketplace.core.audit import AuditLog
from marketplace.core.exceptions import AuthenticationError, ForbiddenError
from marketplace.models.user import User, SELLER_ROLES


def require_user(user: Optional[User]) -> User:
    if user is None:
        raise AuthenticationError("You must be logged in to perform this action")
    return user


def require_role(user: Optional[User], roles: Iterable[str]) -> User:
    user = require_user(user)
    roles = list(roles)
    if user.is_admin or not roles:
        return user
    if user.role not in roles:
        AuditLog.log_access_denied("role_check", "user", user.id, user.id, f"role {user.role} not in {roles}")
        raise ForbiddenError(f"Access denied. Required roles: {', '.join(roles)}")
    return user


def require_admin(user: Optional[User]) -> User:
    user = require_user(user)
    if not user.is_admin:
        AuditLog.log_access_denied("admin_check", "user", user.id, user.id, "admin required")
        raise ForbiddenError("Admin access required")
    return user


def require_seller(user: Optional[User]) -> User:
    return require_role(user, sorted(SELLER_ROLES))


def require_approved(user: Optional[User]) -> User:
    """Unapproved accounts may browse but not trade."""
    user = require_user(user)
    if not user.is_admin and not user.is_approved:
        raise ForbiddenError("Your account is pending approval")
    return user
