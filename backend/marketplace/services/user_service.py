"""Marketplace accounts: registration, approval and lookup."""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from marketplace.core.audit import AuditLog
from marketplace.core.config import settings
from marketplace.core.exceptions import ForbiddenError, NotFoundError, UserInputError
from marketplace.core.permissions import require_admin
from marketplace.models.user import User, UserRole
from marketplace.services import notification_service
from marketplace.services.pagination import paginate

logger = logging.getLogger(__name__)

VALID_ROLES = {r.value for r in UserRole}

PROFILE_FIELDS = {
    "company_name", "contact_name", "phone", "profile_image_url", "license_urls",
    "efda_license_url", "business_license_url", "street", "city", "state", "country",
    "postal_code", "location_text", "latitude", "longitude",
}


def _clean(data: Dict[str, Any]) -> Dict[str, Any]:
    cleaned = {}
    for key, value in data.items():
        if key not in PROFILE_FIELDS:
            continue
        cleaned[key] = value.strip() if isinstance(value, str) else value
    return cleaned


def get_user(db: Session, user_id: int) -> User:
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise NotFoundError("User not found")
    return user


def get_by_email(db: Session, email: str) -> Optional[User]:
    return db.query(User).filter(User.email == email.strip().lower()).first()


def initialize_user(db: Session, email: str) -> User:
    """Return the account for ``email``, creating an unregistered one on first sight."""
    existing = get_by_email(db, email)
    if existing:
        return existing
    user = User(email=email.strip().lower(), role=None, is_approved=False, profile_complete=False)
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info(f"Initialized marketplace user {user.id} ({user.email})")
    return user


def update_profile(db: Session, user: User, data: Dict[str, Any]) -> User:
    for key, value in _clean(data).items():
        setattr(user, key, value)
    db.commit()
    db.refresh(user)
    return user


def complete_registration(db: Session, user: User, role: str, data: Dict[str, Any]) -> User:
    if role not in VALID_ROLES:
        raise UserInputError(f"Invalid role: {role}")
    if role == UserRole.ADMIN.value and user.email != (settings.ADMIN_EMAIL or "").strip().lower():
        AuditLog.log_access_denied("register", "user", user.id, user.id, "admin role requested")
        raise ForbiddenError("The admin role cannot be self-assigned")
    if not (data.get("company_name") or "").strip():
        raise UserInputError("Company name is required")

    for key, value in _clean(data).items():
        setattr(user, key, value)
    user.role = role
    user.profile_complete = True
    # Admins are approved immediately, everyone else waits for review
    user.is_approved = role == UserRole.ADMIN.value
    user.rejection_reason = None
    db.commit()
    db.refresh(user)
    AuditLog.log_action("register", "user", user.id, user.id, changes={"role": role})

    if not user.is_approved:
        admin_ids = [uid for (uid,) in db.query(User.id).filter(User.role == UserRole.ADMIN.value).all()]
        if admin_ids:
            try:
                notification_service.send_bulk(
                    db,
                    admin_ids,
                    "approval_request",
                    f"{user.display_name} registered as {role} and is awaiting approval",
                    {"user_id": user.id, "action_url": "/admin/approvals"},
                    "high",
                )
            except Exception as e:
                db.rollback()
                logger.error(f"Failed to notify admins about user {user.id}: {e}", exc_info=True)
    return user


def approve_user(db: Session, admin: User, user_id: int) -> User:
    require_admin(admin)
    user = get_user(db, user_id)
    user.is_approved = True
    user.approved_by = admin.id
    user.approved_at = datetime.now(timezone.utc)
    user.rejection_reason = None
    db.commit()
    db.refresh(user)
    AuditLog.log_action("approve", "user", user.id, admin.id)
    notification_service.notify(
        db, user.id, "account", "Your account has been approved", {"action_url": "/"}, "high"
    )
    return user


def reject_user(db: Session, admin: User, user_id: int, reason: str) -> User:
    require_admin(admin)
    if not reason or not reason.strip():
        raise UserInputError("A rejection reason is required")
    user = get_user(db, user_id)
    user.is_approved = False
    user.rejection_reason = reason.strip()
    db.commit()
    db.refresh(user)
    AuditLog.log_action("reject", "user", user.id, admin.id, changes={"reason": user.rejection_reason})
    notification_service.notify(
        db, user.id, "account", f"Your registration was rejected: {user.rejection_reason}", {}, "high"
    )
    return user


def list_by_role(db: Session, role: str, limit: Optional[int] = None, offset: Optional[int] = None) -> List[User]:
    if role not in VALID_ROLES:
        raise UserInputError(f"Invalid role: {role}")
    q = db.query(User).filter(User.role == role).order_by(User.created_at.desc(), User.id.desc())
    return paginate(q, limit, offset)


def list_pending_approval(db: Session, limit: Optional[int] = None, offset: Optional[int] = None) -> List[User]:
    """Completed registrations still waiting for an admin, oldest first."""
    q = (
        db.query(User)
        .filter(User.is_approved.is_(False), User.profile_complete.is_(True))
        .order_by(User.created_at.asc(), User.id.asc())
    )
    return paginate(q, limit, offset)


def search_users(
    db: Session,
    query: str,
    exclude_user_id: Optional[int] = None,
    limit: Optional[int] = None,
    offset: Optional[int] = None,
) -> List[User]:
    term = (query or "").strip().lower()
    if not term:
        return []
    pattern = f"%{term}%"
    q = db.query(User).filter(
        or_(
            User.company_name.ilike(pattern),
            User.contact_name.ilike(pattern),
            User.email.ilike(pattern),
            User.phone.ilike(pattern),
            User.street.ilike(pattern),
            User.city.ilike(pattern),
            User.state.ilike(pattern),
            User.country.ilike(pattern),
        )
    )
    if exclude_user_id is not None:
        q = q.filter(User.id != exclude_user_id)
    return paginate(q.order_by(User.company_name, User.id), limit, offset)


def delete_user(db: Session, admin: User, user_id: int) -> bool:
    require_admin(admin)
    user = get_user(db, user_id)
    db.delete(user)
    db.commit()
    AuditLog.log_action("delete", "user", user_id, admin.id)
    return True
