"""Create all tables. Run on app startup."""
import logging

from marketplace.db.base import Base
from marketplace.db.session import engine, SessionLocal
import marketplace.models  # noqa: F401 - register models
from marketplace.models.user import User, UserRole
from marketplace.core.config import settings

logger = logging.getLogger(__name__)


def init_db(bind=None):
    Base.metadata.create_all(bind=bind or engine)

    if not settings.ADMIN_EMAIL:
        return

    db = SessionLocal()
    try:
        if db.query(User).count() == 0:
            admin = User(
                email=settings.ADMIN_EMAIL.strip().lower(),
                role=UserRole.ADMIN.value,
                company_name="MedLink",
                is_approved=True,
                profile_complete=True,
            )
            db.add(admin)
            db.commit()
            logger.warning(f"Bootstrap admin created for {settings.ADMIN_EMAIL}")
    finally:
        db.close()
