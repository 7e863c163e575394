import enum

from sqlalchemy import (
    Column, Integer, String, ForeignKey, Numeric, Boolean, Date, DateTime, Text, JSON,
    Index, CheckConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from marketplace.db.base import Base


class ProductType(str, enum.Enum):
    DRUG = "DRUG"
    EQUIPMENT = "EQUIPMENT"


class Product(Base):
    """
    Catalog entry owned by a seller.

    Drug and equipment specific columns share one table; the ones that do
    not apply to ``product_type`` stay NULL. Deleting a product only clears
    ``is_active`` so that orders and ratings keep their reference.
    """
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True)
    product_type = Column(String(16), nullable=False, index=True)
    name = Column(String(255), nullable=False, index=True)
    owner_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    owner_name = Column(String(255), nullable=True)
    original_lister_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    original_lister_name = Column(String(255), nullable=True)
    category = Column(String(128), nullable=True, index=True)
    description = Column(Text, nullable=True)
    image_list = Column(JSON, default=list)
    is_active = Column(Boolean, default=True, nullable=False)

    # DRUG
    package_type = Column(String(128), nullable=True)
    concentration = Column(String(128), nullable=True)
    requires_prescription = Column(Boolean, default=False)

    # EQUIPMENT
    brand_name = Column(String(128), nullable=True)
    model_number = Column(String(128), nullable=True)
    warranty_info = Column(String(512), nullable=True)
    spare_part_info = Column(JSON, default=list)

    # Stock transfer bookkeeping
    transferred_from_id = Column(Integer, ForeignKey("products.id", ondelete="SET NULL"), nullable=True)
    acquired_via_order_id = Column(Integer, nullable=True)
    last_transfer_at = Column(DateTime(timezone=True), nullable=True)
    deactivated_reason = Column(String(255), nullable=True)
    deactivated_at = Column(DateTime(timezone=True), nullable=True)
    sold_out = Column(Boolean, default=False, nullable=False)

    rating_count = Column(Integer, default=0, nullable=False)
    rating_sum = Column(Integer, default=0, nullable=False)
    rating_average = Column(Numeric(3, 1), default=0, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    owner = relationship("User", foreign_keys=[owner_id])
    batches = relationship("Batch", back_populates="product", cascade="all, delete-orphan")

    @property
    def image(self):
        return self.image_list[0] if self.image_list else None


class Batch(Base):
    """A lot of stock for a product held by ``current_owner_id``."""
    __tablename__ = "batches"
    __table_args__ = (
        Index("ix_batches_product_expiry", "product_id", "expiry_date"),
        CheckConstraint("quantity >= 0", name="ck_batches_quantity_non_negative"),
    )

    id = Column(Integer, primary_key=True, index=True)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="CASCADE"), nullable=False)
    product_type = Column(String(16), nullable=False)
    current_owner_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    current_owner_name = Column(String(255), nullable=True)
    quantity = Column(Integer, nullable=False, default=0)
    cost_price = Column(Numeric(12, 2), nullable=True)
    selling_price = Column(Numeric(12, 2), nullable=True)  # NULL until the new owner prices transferred stock
    added_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    # DRUG
    expiry_date = Column(Date, nullable=True)
    manufacturing_date = Column(Date, nullable=True)
    lot_number = Column(String(128), nullable=True)
    size_per_package = Column(String(64), nullable=True)
    manufacturer = Column(String(255), nullable=True)
    manufacturer_country = Column(String(128), nullable=True)

    # EQUIPMENT
    serial_numbers = Column(JSON, default=list)
    technical_specifications = Column(JSON, default=list)
    user_manuals = Column(JSON, default=list)
    certification = Column(String(255), nullable=True)

    source_batch_id = Column(Integer, ForeignKey("batches.id", ondelete="SET NULL"), nullable=True)
    transferred_from_order_id = Column(Integer, nullable=True)
    sold_out = Column(Boolean, default=False, nullable=False)

    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    product = relationship("Product", back_populates="batches")
