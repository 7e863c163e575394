from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class UserRatingCreate(BaseModel):
    rated_user_id: int
    order_id: int
    rating: int = Field(ge=1, le=5)
    comment: Optional[str] = None
    rating_role: Optional[str] = None


class ProductRatingCreate(BaseModel):
    product_id: int
    order_id: int
    rating: int = Field(ge=1, le=5)
    comment: Optional[str] = None


class RatingResponse(BaseModel):
    id: int
    type: str
    rater_id: int
    rater_name: Optional[str] = None
    rated_user_id: Optional[int] = None
    rated_user_name: Optional[str] = None
    product_id: Optional[int] = None
    product_name: Optional[str] = None
    order_id: int
    rating: int
    comment: Optional[str] = None
    rating_role: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class RatingStats(BaseModel):
    total_ratings: int
    average_rating: float
