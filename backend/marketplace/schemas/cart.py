from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field


class AddToCartRequest(BaseModel):
    product_id: int
    quantity: int = Field(gt=0)


class AddBatchToCartRequest(AddToCartRequest):
    batch_id: int


class UpdateCartBatchRequest(BaseModel):
    quantity: int


class CartBatchItemResponse(BaseModel):
    batch_id: int
    quantity: int
    unit_price: Decimal
    expiry_date: Optional[date] = None
    batch_seller_id: int
    batch_seller_name: Optional[str] = None

    class Config:
        from_attributes = True


class CartItemResponse(BaseModel):
    product_id: int
    product_name: str
    product_type: str
    product_category: Optional[str] = None
    product_image: Optional[str] = None
    total_quantity: int
    total_price: Decimal
    batch_items: List[CartBatchItemResponse] = Field(default_factory=list)

    class Config:
        from_attributes = True


class CartResponse(BaseModel):
    user_id: int
    total_items: int
    total_price: Decimal
    last_updated: Optional[datetime] = None
    items: List[CartItemResponse] = Field(default_factory=list)

    class Config:
        from_attributes = True
