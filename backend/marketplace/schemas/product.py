from datetime import date, datetime
from decimal import Decimal
from typing import Any, List, Optional

from pydantic import BaseModel, Field


class ProductBase(BaseModel):
    name: Optional[str] = None
    category: Optional[str] = None
    description: Optional[str] = None
    image_list: Optional[List[str]] = None
    # DRUG
    package_type: Optional[str] = None
    concentration: Optional[str] = None
    requires_prescription: Optional[bool] = None
    # EQUIPMENT
    brand_name: Optional[str] = None
    model_number: Optional[str] = None
    warranty_info: Optional[str] = None
    spare_part_info: Optional[List[Any]] = None


class ProductCreate(ProductBase):
    product_type: str
    name: str


class ProductUpdate(ProductBase):
    pass


class ProductResponse(BaseModel):
    id: int
    product_type: str
    name: str
    owner_id: int
    owner_name: Optional[str] = None
    original_lister_id: Optional[int] = None
    category: Optional[str] = None
    description: Optional[str] = None
    image_list: List[str] = Field(default_factory=list)
    is_active: bool
    sold_out: bool = False
    package_type: Optional[str] = None
    concentration: Optional[str] = None
    requires_prescription: Optional[bool] = None
    brand_name: Optional[str] = None
    model_number: Optional[str] = None
    warranty_info: Optional[str] = None
    spare_part_info: Optional[List[Any]] = None
    transferred_from_id: Optional[int] = None
    rating_count: int = 0
    rating_average: Decimal = Decimal("0")
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class BatchBase(BaseModel):
    quantity: Optional[int] = None
    cost_price: Optional[Decimal] = None
    selling_price: Optional[Decimal] = None
    # DRUG
    expiry_date: Optional[date] = None
    manufacturing_date: Optional[date] = None
    lot_number: Optional[str] = None
    size_per_package: Optional[str] = None
    manufacturer: Optional[str] = None
    manufacturer_country: Optional[str] = None
    # EQUIPMENT
    serial_numbers: Optional[List[str]] = None
    technical_specifications: Optional[List[Any]] = None
    user_manuals: Optional[List[str]] = None
    certification: Optional[str] = None


class BatchCreate(BatchBase):
    product_type: str
    quantity: int


class BatchUpdate(BatchBase):
    pass


class BatchResponse(BaseModel):
    id: int
    product_id: int
    product_type: str
    current_owner_id: int
    current_owner_name: Optional[str] = None
    quantity: int
    cost_price: Optional[Decimal] = None
    selling_price: Optional[Decimal] = None
    added_at: Optional[datetime] = None
    expiry_date: Optional[date] = None
    manufacturing_date: Optional[date] = None
    lot_number: Optional[str] = None
    size_per_package: Optional[str] = None
    manufacturer: Optional[str] = None
    manufacturer_country: Optional[str] = None
    serial_numbers: Optional[List[str]] = None
    technical_specifications: Optional[List[Any]] = None
    user_manuals: Optional[List[str]] = None
    certification: Optional[str] = None
    source_batch_id: Optional[int] = None
    sold_out: bool = False

    class Config:
        from_attributes = True
