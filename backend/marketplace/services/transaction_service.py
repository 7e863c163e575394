"""Payment transactions and the gateway flows that create them."""
import logging
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from marketplace.core.audit import AuditLog
from marketplace.core.config import settings
from marketplace.core.exceptions import (
    ForbiddenError, NotFoundError, PaymentGatewayError, UserInputError,
)
from marketplace.core.permissions import require_admin
from marketplace.models.order import Order, PaymentStatus
from marketplace.models.transaction import Transaction
from marketplace.models.user import User
from marketplace.services import notification_service
from marketplace.services.chapa_client import ChapaClient
from marketplace.services.order_status import parse_payment_status
from marketplace.services.pagination import clamp, paginate

logger = logging.getLogger(__name__)

# Statuses counted as money that reached the seller
SETTLED_STATUSES = {PaymentStatus.RELEASED_TO_SELLER.value}


def _amount(value: Any) -> Decimal:
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        raise UserInputError("amount must be a number")
    if amount <= 0:
        raise UserInputError("amount must be greater than 0")
    return amount


def _stamp(tx: Transaction, status: str) -> None:
    now = datetime.now(timezone.utc)
    if status == PaymentStatus.PAID_HELD_BY_SYSTEM.value and not tx.paid_at:
        tx.paid_at = now
    elif status == PaymentStatus.RELEASED_TO_SELLER.value:
        tx.released_to_seller_at = now
    elif status == PaymentStatus.REFUNDED.value:
        tx.refunded_at = now


def _require_participant(user: User, tx: Transaction) -> None:
    if user.is_admin or user.id in (tx.buyer_id, tx.seller_id):
        return
    AuditLog.log_access_denied("read", "transaction", tx.id, user.id, "not a participant")
    raise ForbiddenError("You do not have permission to view this transaction")


def notify_transaction_created(db: Session, tx: Transaction) -> None:
    message = f"New transaction created for order #{tx.order_id}"
    data = {
        "transaction_id": tx.id,
        "chapa_ref": tx.chapa_ref,
        "order_id": tx.order_id,
        "amount": str(tx.amount),
        "currency": tx.currency,
        "system_status": tx.status,
        "action_url": f"/orders/{tx.order_id}/transactions",
    }
    notification_service.notify(db, tx.buyer_id, "transaction_created", message, {**data, "seller_id": tx.seller_id})
    notification_service.notify(db, tx.seller_id, "transaction_created", message, {**data, "buyer_id": tx.buyer_id})


def create_transaction(db: Session, user: User, data: Dict[str, Any]) -> Transaction:
    tx_id = (data.get("id") or data.get("transaction_id") or "").strip()
    if not tx_id:
        raise UserInputError("transaction id is required.")
    if db.query(Transaction).filter(Transaction.id == tx_id).first():
        raise UserInputError(f"Transaction {tx_id} already exists")

    order_id = data.get("order_id")
    buyer_id, seller_id = data.get("buyer_id"), data.get("seller_id")
    if order_id is not None:
        order = db.query(Order).filter(Order.id == order_id).first()
        if not order:
            raise NotFoundError("Order not found")
        buyer_id, seller_id = order.buyer_id, order.seller_id
        if not user.is_admin and user.id != order.buyer_id:
            raise ForbiddenError("Only the buyer can record a payment for this order")
    elif not user.is_admin:
        raise UserInputError("order_id is required")
    if buyer_id is None or seller_id is None:
        raise UserInputError("buyer_id and seller_id are required")

    status = parse_payment_status(data.get("status") or PaymentStatus.PAID_HELD_BY_SYSTEM).value
    tx = Transaction(
        id=tx_id,
        order_id=order_id,
        buyer_id=buyer_id,
        seller_id=seller_id,
        chapa_ref=data.get("chapa_ref"),
        chapa_status=data.get("chapa_status") or "success",
        amount=_amount(data.get("amount")),
        currency=data.get("currency") or settings.DEFAULT_CURRENCY,
        status=status,
        payment_method=data.get("payment_method"),
        gateway_payload=data.get("gateway_payload"),
    )
    _stamp(tx, status)
    db.add(tx)
    if order_id is not None and not order.transaction_id:
        order.transaction_id = tx_id
    db.commit()
    db.refresh(tx)
    AuditLog.log_payment_event("created", tx.id, tx.order_id, tx.status, tx.amount)
    notify_transaction_created(db, tx)
    return tx


def get_transaction(db: Session, user: User, transaction_id: str) -> Transaction:
    tx = db.query(Transaction).filter(Transaction.id == transaction_id).first()
    if not tx:
        raise NotFoundError("Transaction not found")
    _require_participant(user, tx)
    return tx


def get_by_chapa_ref(db: Session, chapa_ref: str) -> Optional[Transaction]:
    return db.query(Transaction).filter(Transaction.chapa_ref == chapa_ref).first()


def list_by_order(db: Session, user: User, order_id: int, limit: Optional[int] = None, offset: Optional[int] = None) -> List[Transaction]:
    order = db.query(Order).filter(Order.id == order_id).first()
    if not order:
        raise NotFoundError("Order not found")
    if not user.is_admin and user.id not in (order.buyer_id, order.seller_id):
        raise ForbiddenError("You do not have permission to view this order's transactions")
    q = db.query(Transaction).filter(Transaction.order_id == order_id).order_by(Transaction.created_at.desc(), Transaction.id)
    return paginate(q, limit, offset)


def list_by_user(
    db: Session,
    user_id: int,
    status: Optional[str] = None,
    limit: Optional[int] = None,
    offset: Optional[int] = None,
) -> List[Transaction]:
    q = db.query(Transaction).filter(or_(Transaction.buyer_id == user_id, Transaction.seller_id == user_id))
    if status:
        q = q.filter(Transaction.status == parse_payment_status(status).value)
    return paginate(q.order_by(Transaction.created_at.desc(), Transaction.id), limit, offset)


def list_by_status(db: Session, admin: User, status: str, limit: Optional[int] = None, offset: Optional[int] = None) -> List[Transaction]:
    require_admin(admin)
    q = db.query(Transaction).filter(Transaction.status == parse_payment_status(status).value)
    return paginate(q.order_by(Transaction.created_at.desc(), Transaction.id), limit, offset)


def transaction_summaries(db: Session, user: User, filters: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
    """Filtered summary rows; non-admins only ever see their own transactions."""
    filters = filters or {}
    q = db.query(Transaction)
    if filters.get("order_id") is not None:
        q = q.filter(Transaction.order_id == filters["order_id"])
    if filters.get("chapa_ref"):
        q = q.filter(Transaction.chapa_ref == filters["chapa_ref"])
    if filters.get("status"):
        q = q.filter(Transaction.status == parse_payment_status(filters["status"]).value)
    if filters.get("date_from"):
        q = q.filter(Transaction.created_at >= filters["date_from"])
    if filters.get("date_to"):
        q = q.filter(Transaction.created_at <= filters["date_to"])
    if filters.get("min_amount") is not None:
        q = q.filter(Transaction.amount >= Decimal(str(filters["min_amount"])))
    if filters.get("max_amount") is not None:
        q = q.filter(Transaction.amount <= Decimal(str(filters["max_amount"])))

    user_id = filters.get("user_id") if user.is_admin else user.id
    if user_id is not None:
        q = q.filter(or_(Transaction.buyer_id == user_id, Transaction.seller_id == user_id))

    limit, offset = clamp(filters.get("limit"), filters.get("offset"))
    rows = q.order_by(Transaction.created_at.desc(), Transaction.id).limit(limit).offset(offset).all()
    return [
        {
            "transaction_id": t.id,
            "order_id": t.order_id,
            "chapa_ref": t.chapa_ref,
            "amount": t.amount,
            "currency": t.currency,
            "status": t.status,
            "created_at": t.created_at,
        }
        for t in rows
    ]


def apply_status(tx: Transaction, status: str, chapa_ref: Optional[str] = None) -> bool:
    """Set status and its timestamp in memory. Returns False when nothing changed."""
    status = parse_payment_status(status).value
    if chapa_ref:
        tx.chapa_ref = chapa_ref
    if tx.status == status:
        return False
    tx.status = status
    _stamp(tx, status)
    return True


def update_transaction_status(db: Session, admin: User, transaction_id: str, status: str, chapa_ref: Optional[str] = None) -> Transaction:
    require_admin(admin)
    tx = db.query(Transaction).filter(Transaction.id == transaction_id).first()
    if not tx:
        raise NotFoundError("Transaction not found")
    previous = tx.status
    apply_status(tx, status, chapa_ref)
    db.commit()
    db.refresh(tx)
    AuditLog.log_action("status_change", "transaction", tx.id, admin.id, changes={"from": previous, "to": tx.status})
    return tx


def sync_order_transaction(db: Session, order: Order, payment_status: str, transaction_id: Optional[str] = None) -> Optional[Transaction]:
    """
    Mirror an order's new payment status onto its transaction.

    Runs inside the caller's transaction under a savepoint; a failure is
    logged and leaves the order update alone.
    """
    try:
        with db.begin_nested():
            tx_id = transaction_id or order.transaction_id
            q = db.query(Transaction)
            if tx_id:
                tx = q.filter(Transaction.id == tx_id).first()
            else:
                tx = q.filter(Transaction.order_id == order.id).order_by(Transaction.created_at.desc(), Transaction.id.desc()).first()
            if not tx:
                logger.warning(f"No transaction found for order {order.id}")
                return None
            if apply_status(tx, payment_status):
                logger.info(f"Transaction {tx.id} synced to {tx.status} for order {order.id}")
            return tx
    except Exception as e:
        logger.error(f"Failed to sync transaction for order {order.id}: {e}", exc_info=True)
        return None


def transaction_stats(db: Session, user_id: int) -> Dict[str, Any]:
    base = db.query(Transaction).filter(or_(Transaction.buyer_id == user_id, Transaction.seller_id == user_id))
    stats: Dict[str, Any] = {s.value: 0 for s in PaymentStatus}
    for status, count in base.with_entities(Transaction.status, func.count(Transaction.id)).group_by(Transaction.status).all():
        stats[status] = count
    stats["total"] = base.count()
    stats["total_amount"] = base.with_entities(func.coalesce(func.sum(Transaction.amount), 0)).scalar()
    stats["completed_amount"] = (
        base.filter(Transaction.status.in_(SETTLED_STATUSES))
        .with_entities(func.coalesce(func.sum(Transaction.amount), 0))
        .scalar()
    )
    return stats


# ---------------------------------------------------------------------------
# Gateway flows
# ---------------------------------------------------------------------------

def initialize_order_payment(db: Session, client: ChapaClient, buyer: User, order_id: int, first_name: str, last_name: str = "", phone: Optional[str] = None) -> Dict[str, Any]:
    order = db.query(Order).filter(Order.id == order_id).first()
    if not order:
        raise NotFoundError("Order not found")
    if order.buyer_id != buyer.id:
        raise ForbiddenError("Only the buyer can pay for this order")
    if order.payment_status not in (PaymentStatus.PENDING.value, PaymentStatus.FAILED.value):
        raise UserInputError(f"Order payment is already {order.payment_status}")
    result = client.initialize_payment(
        order_id=order.id,
        order_number=order.order_number,
        seller_id=order.seller_id,
        seller_name=order.seller_name,
        amount=order.total_cost,
        email=buyer.email,
        first_name=first_name,
        last_name=last_name,
        phone=phone or buyer.phone,
        buyer_id=buyer.id,
    )
    AuditLog.log_payment_event("initialized", result["tx_ref"], order.id, "pending", order.total_cost)
    return result


def record_verified_payment(db: Session, order_id: int, tx_ref: str, verification: Dict[str, Any]) -> Transaction:
    """
    Store a gateway-confirmed payment against its order.

    The order's payment moves from pending to processing; the seller's
    confirmation later marks it held by the system.
    """
    if verification.get("status") != "success":
        raise PaymentGatewayError(f"Payment not successful. Status: {verification.get('status')}")
    order = db.query(Order).filter(Order.id == order_id).first()
    if not order:
        raise NotFoundError("Order not found")
    amount = _amount(verification.get("amount"))
    if amount < Decimal(str(order.total_cost)):
        raise UserInputError(f"Paid amount {amount} is less than order total {order.total_cost}")

    if order.payment_status in (PaymentStatus.PENDING.value, PaymentStatus.FAILED.value):
        order.payment_status = PaymentStatus.PROCESSING.value
    order.transaction_id = tx_ref

    tx = db.query(Transaction).filter(Transaction.id == tx_ref).first()
    created = tx is None
    if created:
        tx = Transaction(
            id=tx_ref,
            order_id=order.id,
            buyer_id=order.buyer_id,
            seller_id=order.seller_id,
            amount=amount,
            currency=verification.get("currency") or settings.DEFAULT_CURRENCY,
            status=order.payment_status,
        )
        db.add(tx)
    tx.chapa_ref = verification.get("reference") or tx.chapa_ref
    tx.chapa_status = verification.get("status")
    tx.payment_method = verification.get("method") or tx.payment_method
    tx.gateway_payload = verification
    apply_status(tx, order.payment_status)
    try:
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(tx)
    AuditLog.log_payment_event("verified", tx.id, order.id, tx.status, tx.amount)
    if created:
        notify_transaction_created(db, tx)
    notification_service.notify_payment_status(db, order.buyer_id, tx.id, PaymentStatus.PROCESSING.value, tx.amount, order.id)
    return tx


def verify_order_payment(db: Session, client: ChapaClient, user: User, order_id: int, tx_ref: str) -> Transaction:
    order = db.query(Order).filter(Order.id == order_id).first()
    if not order:
        raise NotFoundError("Order not found")
    if not user.is_admin and user.id != order.buyer_id:
        raise ForbiddenError("Only the buyer can verify this payment")
    verification = client.verify_payment(tx_ref)
    return record_verified_payment(db, order.id, tx_ref, verification)


def handle_webhook(db: Session, payload: Dict[str, Any]) -> Dict[str, Any]:
    tx_ref = payload.get("tx_ref")
    meta = payload.get("meta") or {}
    order_id = meta.get("order_id")
    status = payload.get("status")
    AuditLog.log_payment_event("webhook", tx_ref or "", order_id, status or "unknown", payload.get("amount"))

    if not order_id:
        logger.warning(f"Webhook for {tx_ref} carries no order id, ignoring")
        return {"received": True, "handled": False}

    if status == "success":
        if not tx_ref:
            raise UserInputError("tx_ref is required")
        record_verified_payment(db, int(order_id), tx_ref, payload)
        return {"received": True, "handled": True}

    if status == "failed":
        order = db.query(Order).filter(Order.id == int(order_id)).first()
        if not order:
            raise NotFoundError("Order not found")
        if order.payment_status in (PaymentStatus.PENDING.value, PaymentStatus.PROCESSING.value):
            order.payment_status = PaymentStatus.FAILED.value
        tx = db.query(Transaction).filter(Transaction.id == tx_ref).first() if tx_ref else None
        if tx:
            apply_status(tx, PaymentStatus.FAILED.value)
        db.commit()
        notification_service.notify_payment_status(db, order.buyer_id, tx_ref, PaymentStatus.FAILED.value, order.total_cost, order.id)
        return {"received": True, "handled": True}

    return {"received": True, "handled": False}
