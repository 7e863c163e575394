from sqlalchemy import Column, Integer, String, ForeignKey, Numeric, Date, DateTime, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from marketplace.db.base import Base


class Cart(Base):
    """One cart per user. Totals are derived from the batch lines below it."""
    __tablename__ = "carts"

    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    total_items = Column(Integer, default=0, nullable=False)
    total_price = Column(Numeric(14, 2), default=0, nullable=False)
    last_updated = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    items = relationship(
        "CartItem",
        back_populates="cart",
        cascade="all, delete-orphan",
        order_by="CartItem.added_at",
    )


class CartItem(Base):
    """Product line of a cart with a snapshot of the product at add time."""
    __tablename__ = "cart_items"
    __table_args__ = (UniqueConstraint("user_id", "product_id", name="uq_cart_items_user_product"),)

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("carts.user_id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="CASCADE"), nullable=False)
    product_name = Column(String(255), nullable=False)
    product_type = Column(String(16), nullable=False)
    product_category = Column(String(128), nullable=True)
    product_image = Column(String(1024), nullable=True)
    total_quantity = Column(Integer, default=0, nullable=False)
    total_price = Column(Numeric(14, 2), default=0, nullable=False)
    added_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    cart = relationship("Cart", back_populates="items")
    batch_items = relationship(
        "CartBatchItem",
        back_populates="cart_item",
        cascade="all, delete-orphan",
        order_by="CartBatchItem.id",
    )


class CartBatchItem(Base):
    """Quantity of one batch reserved in a cart line, priced at add time."""
    __tablename__ = "cart_batch_items"
    __table_args__ = (UniqueConstraint("cart_item_id", "batch_id", name="uq_cart_batch_items_item_batch"),)

    id = Column(Integer, primary_key=True, index=True)
    cart_item_id = Column(Integer, ForeignKey("cart_items.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="CASCADE"), nullable=False)
    batch_id = Column(Integer, ForeignKey("batches.id", ondelete="CASCADE"), nullable=False)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(12, 2), nullable=False)
    expiry_date = Column(Date, nullable=True)
    batch_seller_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    batch_seller_name = Column(String(255), nullable=True)
    added_at = Column(DateTime(timezone=True), server_default=func.now())

    cart_item = relationship("CartItem", back_populates="batch_items")
    batch = relationship("Batch")
