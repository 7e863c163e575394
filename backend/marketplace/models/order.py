import enum

from sqlalchemy import Column, Integer, String, ForeignKey, Numeric, Date, DateTime, Text, JSON
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from marketplace.db.base import Base


class OrderStatus(str, enum.Enum):
    PENDING_CONFIRMATION = "pending-confirmation"
    CONFIRMED = "confirmed"
    REJECTED_BY_SELLER = "rejected-by-seller"
    PREPARING = "preparing"
    READY_FOR_PICKUP = "ready-for-pickup"
    PICKUP_SCHEDULED = "pickup-scheduled"
    PICKUP_CONFIRMED = "pickup-confirmed"
    DELIVERED = "delivered"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    DISPUTED = "disputed"
    RESOLVED = "resolved"


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    PAID_HELD_BY_SYSTEM = "paid-held-by-system"
    RELEASED_TO_SELLER = "released-to-seller"
    REFUNDED = "refunded"
    FAILED = "failed"


class Order(Base):
    """
    Purchase from a single seller.

    ``status`` and ``payment_status`` hold the hyphenated values of the
    enums above. Checkout writes one order per batch seller in the cart.
    """
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    order_number = Column(String(32), unique=True, nullable=False)
    buyer_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    buyer_name = Column(String(255), nullable=True)
    seller_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    seller_name = Column(String(255), nullable=True)
    total_items = Column(Integer, nullable=False, default=0)
    total_cost = Column(Numeric(14, 2), nullable=False, default=0)
    status = Column(String(32), nullable=False, default=OrderStatus.PENDING_CONFIRMATION.value, index=True)
    payment_status = Column(String(32), nullable=False, default=PaymentStatus.PENDING.value)
    notes = Column(Text, nullable=True)

    order_date = Column(DateTime(timezone=True), server_default=func.now())
    pickup_scheduled_date = Column(Date, nullable=True)
    preparing_started_date = Column(DateTime(timezone=True), nullable=True)
    ready_for_pickup_date = Column(DateTime(timezone=True), nullable=True)
    pickup_confirmed_date = Column(DateTime(timezone=True), nullable=True)
    delivered_date = Column(DateTime(timezone=True), nullable=True)
    completed_date = Column(DateTime(timezone=True), nullable=True)

    paid_at = Column(DateTime(timezone=True), nullable=True)
    released_to_seller_at = Column(DateTime(timezone=True), nullable=True)
    refunded_at = Column(DateTime(timezone=True), nullable=True)
    transaction_id = Column(String(128), nullable=True)

    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_by = Column(Integer, nullable=True)
    cancellation_reason = Column(String(512), nullable=True)
    disputed_at = Column(DateTime(timezone=True), nullable=True)
    disputed_by = Column(Integer, nullable=True)
    dispute_reason = Column(String(512), nullable=True)
    resolved_at = Column(DateTime(timezone=True), nullable=True)

    product_transfer_result = Column(JSON, nullable=True)
    product_transfer_error = Column(String(1024), nullable=True)
    product_transfer_failed_at = Column(DateTime(timezone=True), nullable=True)

    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    items = relationship("OrderItem", back_populates="order", cascade="all, delete-orphan", order_by="OrderItem.id")


class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="SET NULL"), nullable=True)
    product_name = Column(String(255), nullable=False)
    product_type = Column(String(16), nullable=False)
    product_category = Column(String(128), nullable=True)
    product_image = Column(String(1024), nullable=True)
    total_quantity = Column(Integer, nullable=False)
    total_price = Column(Numeric(14, 2), nullable=False)

    order = relationship("Order", back_populates="items")
    batch_items = relationship(
        "OrderBatchItem",
        back_populates="order_item",
        cascade="all, delete-orphan",
        order_by="OrderBatchItem.id",
    )


class OrderBatchItem(Base):
    __tablename__ = "order_batch_items"

    id = Column(Integer, primary_key=True, index=True)
    order_item_id = Column(Integer, ForeignKey("order_items.id", ondelete="CASCADE"), nullable=False, index=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    batch_id = Column(Integer, ForeignKey("batches.id", ondelete="SET NULL"), nullable=True)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(12, 2), nullable=False)
    subtotal = Column(Numeric(14, 2), nullable=False)
    expiry_date = Column(Date, nullable=True)

    order = relationship("Order")
    order_item = relationship("OrderItem", back_populates="batch_items")
    batch = relationship("Batch")


class Counter(Base):
    """Named monotonic counter, incremented inside the caller's transaction."""
    __tablename__ = "counters"

    name = Column(String(64), primary_key=True)
    value = Column(Integer, nullable=False, default=0)
