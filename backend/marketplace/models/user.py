import enum

from sqlalchemy import Column, Integer, String, Boolean, DateTime, Float, Numeric, JSON
from sqlalchemy.sql import func
from marketplace.db.base import Base


class UserRole(str, enum.Enum):
    ADMIN = "admin"
    IMPORTER = "importer"
    SUPPLIER = "supplier"
    HEALTHCARE_FACILITY = "healthcare-facility"


# Roles allowed to list products and sell batches
SELLER_ROLES = {UserRole.IMPORTER.value, UserRole.SUPPLIER.value, UserRole.HEALTHCARE_FACILITY.value}


class User(Base):
    """
    Marketplace account.

    Identity lives with the external provider; this row carries the role,
    the approval state and the business profile. ``role`` stays NULL until
    registration is completed.
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    role = Column(String(32), nullable=True, index=True)
    company_name = Column(String(255), nullable=True)
    contact_name = Column(String(255), nullable=True)
    phone = Column(String(64), nullable=True)
    profile_image_url = Column(String(1024), nullable=True)
    license_urls = Column(JSON, default=list)
    efda_license_url = Column(String(1024), nullable=True)
    business_license_url = Column(String(1024), nullable=True)

    # Address
    street = Column(String(255), nullable=True)
    city = Column(String(128), nullable=True)
    state = Column(String(128), nullable=True)
    country = Column(String(128), nullable=True)
    postal_code = Column(String(32), nullable=True)
    location_text = Column(String(512), nullable=True)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)

    # Approval workflow
    is_approved = Column(Boolean, default=False, nullable=False)
    profile_complete = Column(Boolean, default=False, nullable=False)
    rejection_reason = Column(String(512), nullable=True)
    approved_by = Column(Integer, nullable=True)
    approved_at = Column(DateTime(timezone=True), nullable=True)

    # Denormalized rating stats, re-summed on every rating write
    rating_count = Column(Integer, default=0, nullable=False)
    rating_sum = Column(Integer, default=0, nullable=False)
    rating_average = Column(Numeric(3, 1), default=0, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    @property
    def display_name(self) -> str:
        return self.company_name or self.contact_name or self.email

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN.value
