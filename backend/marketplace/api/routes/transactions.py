"""Transactions recorded against orders."""
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from marketplace.api.deps import get_current_user, get_db
from marketplace.core.exceptions import NotFoundError
from marketplace.models.user import User
from marketplace.schemas.transaction import (
    TransactionCreate, TransactionResponse, TransactionStatusUpdate, TransactionSummary,
)
from marketplace.services import transaction_service

router = APIRouter()


@router.post("", response_model=TransactionResponse)
def create(data: TransactionCreate, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return transaction_service.create_transaction(db, current_user, data.model_dump(exclude_none=True))


@router.get("/mine", response_model=List[TransactionResponse])
def mine(
    status: Optional[str] = Query(None),
    limit: Optional[int] = Query(None),
    offset: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return transaction_service.list_by_user(db, current_user.id, status, limit, offset)


@router.get("/stats")
def stats(db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return transaction_service.transaction_stats(db, current_user.id)


@router.get("/summaries", response_model=List[TransactionSummary])
def summaries(
    order_id: Optional[int] = Query(None),
    chapa_ref: Optional[str] = Query(None),
    status: Optional[str] = Query(None),
    user_id: Optional[int] = Query(None),
    date_from: Optional[datetime] = Query(None),
    date_to: Optional[datetime] = Query(None),
    min_amount: Optional[Decimal] = Query(None),
    max_amount: Optional[Decimal] = Query(None),
    limit: Optional[int] = Query(None),
    offset: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    filters = {
        "order_id": order_id,
        "chapa_ref": chapa_ref,
        "status": status,
        "user_id": user_id,
        "date_from": date_from,
        "date_to": date_to,
        "min_amount": min_amount,
        "max_amount": max_amount,
        "limit": limit,
        "offset": offset,
    }
    return transaction_service.transaction_summaries(db, current_user, filters)


@router.get("/status/{status}", response_model=List[TransactionResponse])
def by_status(
    status: str,
    limit: Optional[int] = Query(None),
    offset: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return transaction_service.list_by_status(db, current_user, status, limit, offset)


@router.get("/order/{order_id}", response_model=List[TransactionResponse])
def by_order(
    order_id: int,
    limit: Optional[int] = Query(None),
    offset: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return transaction_service.list_by_order(db, current_user, order_id, limit, offset)


@router.get("/chapa-ref/{chapa_ref}", response_model=TransactionResponse)
def by_chapa_ref(chapa_ref: str, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    tx = transaction_service.get_by_chapa_ref(db, chapa_ref)
    if not tx:
        raise NotFoundError("Transaction not found")
    return transaction_service.get_transaction(db, current_user, tx.id)


@router.get("/{transaction_id}", response_model=TransactionResponse)
def get_transaction(transaction_id: str, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return transaction_service.get_transaction(db, current_user, transaction_id)


@router.patch("/{transaction_id}/status", response_model=TransactionResponse)
def update_status(
    transaction_id: str,
    data: TransactionStatusUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return transaction_service.update_transaction_status(db, current_user, transaction_id, data.status, data.chapa_ref)
