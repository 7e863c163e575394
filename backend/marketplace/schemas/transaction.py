from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from pydantic import BaseModel, field_validator

from marketplace.schemas.common import api_status


class TransactionCreate(BaseModel):
    id: str
    order_id: Optional[int] = None
    buyer_id: Optional[int] = None
    seller_id: Optional[int] = None
    chapa_ref: Optional[str] = None
    chapa_status: Optional[str] = None
    amount: Decimal
    currency: Optional[str] = None
    status: Optional[str] = None
    payment_method: Optional[str] = None


class TransactionStatusUpdate(BaseModel):
    status: str
    chapa_ref: Optional[str] = None


class TransactionResponse(BaseModel):
    id: str
    order_id: Optional[int] = None
    buyer_id: int
    seller_id: int
    chapa_ref: Optional[str] = None
    chapa_status: Optional[str] = None
    amount: Decimal
    currency: str
    status: str
    payment_method: Optional[str] = None
    paid_at: Optional[datetime] = None
    released_to_seller_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @field_validator("status", mode="before")
    @classmethod
    def status_for_api(cls, v):
        return api_status(v)

    class Config:
        from_attributes = True


class TransactionSummary(BaseModel):
    transaction_id: str
    order_id: Optional[int] = None
    chapa_ref: Optional[str] = None
    amount: Decimal
    currency: str
    status: str
    created_at: Optional[datetime] = None

    @field_validator("status", mode="before")
    @classmethod
    def status_for_api(cls, v):
        return api_status(v)


class InitializePaymentRequest(BaseModel):
    order_id: int
    first_name: str
    last_name: str = ""
    phone: Optional[str] = None


class InitializePaymentResponse(BaseModel):
    checkout_url: Optional[str] = None
    tx_ref: str


class VerifyPaymentRequest(BaseModel):
    order_id: int
    tx_ref: str


class WebhookAck(BaseModel):
    received: bool
    handled: bool
    detail: Optional[Dict[str, Any]] = None
