import enum

from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Text, Index, CheckConstraint
from sqlalchemy.sql import func
from marketplace.db.base import Base


class RatingType(str, enum.Enum):
    USER = "user_rating"
    PRODUCT = "product_rating"


class RatingRole(str, enum.Enum):
    SELLER = "seller_rating"  # buyer rating the seller
    BUYER = "buyer_rating"  # seller rating the buyer


class Rating(Base):
    __tablename__ = "ratings"
    __table_args__ = (
        CheckConstraint("rating >= 1 AND rating <= 5", name="ck_ratings_range"),
        Index("ix_ratings_order_rater", "order_id", "rater_id"),
    )

    id = Column(Integer, primary_key=True, index=True)
    type = Column(String(32), nullable=False, index=True)
    rater_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    rater_name = Column(String(255), nullable=True)
    rated_user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=True, index=True)
    rated_user_name = Column(String(255), nullable=True)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="CASCADE"), nullable=True, index=True)
    product_name = Column(String(255), nullable=True)
    product_seller_id = Column(Integer, nullable=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False)
    rating = Column(Integer, nullable=False)
    comment = Column(Text, nullable=True)
    rating_role = Column(String(32), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
