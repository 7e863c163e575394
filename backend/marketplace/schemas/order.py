from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from marketplace.schemas.common import api_status


class CheckoutRequest(BaseModel):
    seller_id: Optional[int] = None
    notes: Optional[str] = None
    pickup_scheduled_date: Optional[date] = None


class StatusUpdate(BaseModel):
    status: str
    transaction_id: Optional[str] = None
    reason: Optional[str] = None


class PaymentStatusUpdate(BaseModel):
    payment_status: str
    transaction_id: Optional[str] = None


class ReasonRequest(BaseModel):
    reason: str = ""


class SchedulePickupRequest(BaseModel):
    pickup_date: date


class OrderBatchItemResponse(BaseModel):
    batch_id: Optional[int] = None
    quantity: int
    unit_price: Decimal
    subtotal: Decimal
    expiry_date: Optional[date] = None

    class Config:
        from_attributes = True


class OrderItemResponse(BaseModel):
    product_id: Optional[int] = None
    product_name: str
    product_type: str
    product_category: Optional[str] = None
    product_image: Optional[str] = None
    total_quantity: int
    total_price: Decimal
    batch_items: List[OrderBatchItemResponse] = Field(default_factory=list)

    class Config:
        from_attributes = True


class OrderResponse(BaseModel):
    id: int
    order_number: str
    buyer_id: int
    buyer_name: Optional[str] = None
    seller_id: int
    seller_name: Optional[str] = None
    total_items: int
    total_cost: Decimal
    status: str
    payment_status: str
    notes: Optional[str] = None
    order_date: Optional[datetime] = None
    pickup_scheduled_date: Optional[date] = None
    preparing_started_date: Optional[datetime] = None
    ready_for_pickup_date: Optional[datetime] = None
    pickup_confirmed_date: Optional[datetime] = None
    delivered_date: Optional[datetime] = None
    completed_date: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    released_to_seller_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None
    transaction_id: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    disputed_at: Optional[datetime] = None
    dispute_reason: Optional[str] = None
    resolved_at: Optional[datetime] = None
    product_transfer_result: Optional[Dict[str, Any]] = None
    product_transfer_error: Optional[str] = None
    items: List[OrderItemResponse] = Field(default_factory=list)

    @field_validator("status", "payment_status", mode="before")
    @classmethod
    def status_for_api(cls, v):
        return api_status(v)

    class Config:
        from_attributes = True


class OrderSummary(BaseModel):
    order_id: int
    order_number: str
    buyer_name: Optional[str] = None
    seller_name: Optional[str] = None
    total_items: int
    total_cost: Decimal
    status: str
    payment_status: str
    order_date: Optional[datetime] = None
    pickup_scheduled_date: Optional[date] = None

    @field_validator("status", "payment_status", mode="before")
    @classmethod
    def status_for_api(cls, v):
        return api_status(v)
