"""Orders: checkout and the status lifecycle."""
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from marketplace.api.deps import get_current_user, get_db
from marketplace.models.user import User
from marketplace.schemas.order import (
    CheckoutRequest, OrderResponse, OrderSummary, PaymentStatusUpdate, ReasonRequest,
    SchedulePickupRequest, StatusUpdate,
)
from marketplace.services import order_service

router = APIRouter()


@router.post("/checkout", response_model=List[OrderResponse])
def checkout(data: CheckoutRequest, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    """One order per seller in the cart, or only ``seller_id``'s lines when given."""
    return order_service.checkout(db, current_user, data.seller_id, data.notes, data.pickup_scheduled_date)


@router.get("/buying", response_model=List[OrderResponse])
def buying(
    status: Optional[str] = Query(None),
    limit: Optional[int] = Query(None),
    offset: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return order_service.list_buyer_orders(db, current_user.id, status, limit, offset)


@router.get("/selling", response_model=List[OrderResponse])
def selling(
    status: Optional[str] = Query(None),
    limit: Optional[int] = Query(None),
    offset: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return order_service.list_seller_orders(db, current_user.id, status, limit, offset)


@router.get("/summaries", response_model=List[OrderSummary])
def summaries(
    status: Optional[str] = Query(None),
    payment_status: Optional[str] = Query(None),
    buyer_id: Optional[int] = Query(None),
    seller_id: Optional[int] = Query(None),
    limit: Optional[int] = Query(None),
    offset: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    filters = {
        "status": status,
        "payment_status": payment_status,
        "buyer_id": buyer_id,
        "seller_id": seller_id,
        "limit": limit,
        "offset": offset,
    }
    return order_service.order_summaries(db, current_user, filters)


@router.get("", response_model=List[OrderResponse])
def all_orders(
    status: Optional[str] = Query(None),
    limit: Optional[int] = Query(None),
    offset: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Admin view across every buyer and seller."""
    return order_service.list_orders_by_status(db, current_user, status, limit, offset)


@router.get("/{order_id}", response_model=OrderResponse)
def get_order(order_id: int, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return order_service.get_order_for_user(db, current_user, order_id)


@router.patch("/{order_id}/status", response_model=OrderResponse)
def update_status(order_id: int, data: StatusUpdate, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return order_service.update_status(db, current_user, order_id, data.status, data.transaction_id, data.reason)


@router.post("/{order_id}/schedule-pickup", response_model=OrderResponse)
def schedule_pickup(order_id: int, data: SchedulePickupRequest, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return order_service.schedule_pickup(db, current_user, order_id, data.pickup_date)


@router.post("/{order_id}/confirm-pickup", response_model=OrderResponse)
def confirm_pickup(order_id: int, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return order_service.confirm_pickup(db, current_user, order_id)


@router.post("/{order_id}/cancel", response_model=OrderResponse)
def cancel(order_id: int, data: ReasonRequest, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return order_service.cancel_order(db, current_user, order_id, data.reason)


@router.post("/{order_id}/dispute", response_model=OrderResponse)
def dispute(order_id: int, data: ReasonRequest, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return order_service.dispute_order(db, current_user, order_id, data.reason)


@router.patch("/{order_id}/payment-status", response_model=OrderResponse)
def update_payment_status(order_id: int, data: PaymentStatusUpdate, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return order_service.update_payment_status(db, current_user, order_id, data.payment_status, data.transaction_id)


@router.delete("/{order_id}")
def delete_order(order_id: int, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return {"deleted": order_service.delete_order(db, current_user, order_id)}
