"""Chapa checkout: initialize, verify and the gateway webhook."""
import json
import logging

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from marketplace.api.deps import get_current_user, get_db, get_payment_client
from marketplace.models.user import User
from marketplace.schemas.transaction import (
    InitializePaymentRequest, InitializePaymentResponse, TransactionResponse, VerifyPaymentRequest, WebhookAck,
)
from marketplace.services import transaction_service
from marketplace.services.chapa_client import ChapaClient

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/initialize", response_model=InitializePaymentResponse)
def initialize(
    data: InitializePaymentRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    client: ChapaClient = Depends(get_payment_client),
):
    return transaction_service.initialize_order_payment(
        db, client, current_user, data.order_id, data.first_name, data.last_name, data.phone
    )


@router.post("/verify", response_model=TransactionResponse)
def verify(
    data: VerifyPaymentRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    client: ChapaClient = Depends(get_payment_client),
):
    return transaction_service.verify_order_payment(db, client, current_user, data.order_id, data.tx_ref)


@router.post("/webhook", response_model=WebhookAck)
async def webhook(
    request: Request,
    chapa_signature: str | None = Header(None, alias="Chapa-Signature"),
    db: Session = Depends(get_db),
    client: ChapaClient = Depends(get_payment_client),
):
    """Gateway callback. Unauthenticated; trusted only through the signature."""
    raw_body = await request.body()
    if not client.verify_webhook_signature(raw_body, chapa_signature):
        logger.warning("Rejected Chapa webhook with a bad signature")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid signature")
    try:
        payload = json.loads(raw_body or b"{}")
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON body")
    if not isinstance(payload, dict) or not isinstance(payload.get("meta") or {}, dict):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Webhook body must be a JSON object")
    order_id = (payload.get("meta") or {}).get("order_id")
    if order_id is not None and not str(order_id).isdigit():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid order id")
    if payload.get("status") == "success" and not payload.get("tx_ref"):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="tx_ref is required")
    return await run_in_threadpool(transaction_service.handle_webhook, db, payload)
