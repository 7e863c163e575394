from sqlalchemy import Column, Integer, String, ForeignKey, Numeric, DateTime, JSON
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from marketplace.db.base import Base


class Transaction(Base):
    """Payment record keyed by the gateway ``tx_ref``."""
    __tablename__ = "transactions"

    id = Column(String(128), primary_key=True)  # tx_ref
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="SET NULL"), nullable=True, index=True)
    buyer_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    seller_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    chapa_ref = Column(String(128), nullable=True, index=True)
    chapa_status = Column(String(32), nullable=True)
    amount = Column(Numeric(14, 2), nullable=False)
    currency = Column(String(8), nullable=False, default="ETB")
    status = Column(String(32), nullable=False, index=True)
    payment_method = Column(String(64), nullable=True)
    gateway_payload = Column(JSON, nullable=True)

    paid_at = Column(DateTime(timezone=True), nullable=True)
    released_to_seller_at = Column(DateTime(timezone=True), nullable=True)
    refunded_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    order = relationship("Order", backref="transactions")
