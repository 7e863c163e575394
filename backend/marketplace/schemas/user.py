from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, field_validator


class ProfileUpdate(BaseModel):
    company_name: Optional[str] = None
    contact_name: Optional[str] = None
    phone: Optional[str] = None
    profile_image_url: Optional[str] = None
    license_urls: Optional[List[str]] = None
    efda_license_url: Optional[str] = None
    business_license_url: Optional[str] = None
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None
    postal_code: Optional[str] = None
    location_text: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None


class RegistrationRequest(ProfileUpdate):
    role: str

    @field_validator("role")
    @classmethod
    def normalize_role(cls, v: str) -> str:
        return v.strip().lower().replace("_", "-")


class RejectRequest(BaseModel):
    reason: str


class UserResponse(BaseModel):
    id: int
    email: str
    role: Optional[str] = None
    company_name: Optional[str] = None
    contact_name: Optional[str] = None
    phone: Optional[str] = None
    profile_image_url: Optional[str] = None
    city: Optional[str] = None
    country: Optional[str] = None
    location_text: Optional[str] = None
    is_approved: bool
    profile_complete: bool
    rejection_reason: Optional[str] = None
    rating_count: int = 0
    rating_average: Decimal = Decimal("0")
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True
