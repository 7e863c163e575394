"""
Orders: checkout from the cart and the status lifecycle that follows.

Every write runs as one unit of work: flush, do the dependent updates,
single commit, roll back on any failure. Notifications go out only
after the commit.
"""
import logging
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from marketplace.core.audit import AuditLog
from marketplace.core.exceptions import (
    ForbiddenError, InsufficientStockError, NotFoundError, UserInputError,
)
from marketplace.core.permissions import require_admin, require_approved
from marketplace.models.cart import Cart, CartItem
from marketplace.models.order import Counter, Order, OrderBatchItem, OrderItem, OrderStatus, PaymentStatus
from marketplace.models.product import Batch
from marketplace.models.user import User
from marketplace.services import notification_service, transaction_service, transfer_service
from marketplace.services.cart_service import recalculate_totals
from marketplace.services.order_status import (
    ADMIN_ONLY_FROM, DISPUTABLE_FROM, SELLER_ONLY, TRANSFER_TRIGGERS, check_transition,
    determine_payment_status, parse_payment_status, parse_status,
)
from marketplace.services.pagination import paginate

logger = logging.getLogger(__name__)

ORDER_COUNTER = "orders"

# Reaching these returns the ordered units to the seller's batches
RESTOCK_ON = frozenset({OrderStatus.CANCELLED, OrderStatus.REJECTED_BY_SELLER})


def _now() -> datetime:
    return datetime.now(timezone.utc)


def next_order_number(db: Session) -> str:
    counter = db.query(Counter).filter(Counter.name == ORDER_COUNTER).with_for_update().first()
    if counter is None:
        counter = Counter(name=ORDER_COUNTER, value=0)
        db.add(counter)
    counter.value += 1
    db.flush()
    return f"ORD-{counter.value:06d}"


def get_order(db: Session, order_id: int) -> Order:
    order = db.query(Order).filter(Order.id == order_id).first()
    if not order:
        raise NotFoundError("Order not found")
    return order


def get_order_for_user(db: Session, user: User, order_id: int) -> Order:
    order = get_order(db, order_id)
    _require_participant(user, order, "read")
    return order


def _require_participant(user: User, order: Order, action: str) -> None:
    if user.is_admin or user.id in (order.buyer_id, order.seller_id):
        return
    AuditLog.log_access_denied(action, "order", order.id, user.id, "not buyer or seller")
    raise ForbiddenError("You do not have permission to access this order")


def _require_party(user: User, order: Order, action: str) -> None:
    """Buyer or seller only; admins act through update_status."""
    if user.id in (order.buyer_id, order.seller_id):
        return
    AuditLog.log_access_denied(action, "order", order.id, user.id, "not buyer or seller")
    raise ForbiddenError(f"Only buyer or seller can {action} orders")


def _item_summary(order: Order) -> List[Dict[str, Any]]:
    return [
        {"name": i.product_name, "quantity": i.total_quantity, "price": str(i.total_price)}
        for i in order.items
    ]


# ---------------------------------------------------------------------------
# Checkout
# ---------------------------------------------------------------------------

def checkout(
    db: Session,
    buyer: User,
    seller_id: Optional[int] = None,
    notes: Optional[str] = None,
    pickup_scheduled_date: Optional[date] = None,
) -> List[Order]:
    """
    Turn the buyer's cart into one order per batch seller.

    With ``seller_id`` only that seller's lines are ordered and the rest of
    the cart is left untouched. Stock is re-checked and decremented in the
    same commit that writes the orders and trims the cart.
    """
    require_approved(buyer)
    cart = db.query(Cart).filter(Cart.user_id == buyer.id).first()
    if not cart or not cart.items:
        raise UserInputError("Cart is empty")

    # seller id -> product id -> (cart item, [batch lines])
    groups: Dict[int, Dict[int, Any]] = {}
    for item in cart.items:
        for line in item.batch_items:
            if seller_id is not None and line.batch_seller_id != seller_id:
                continue
            by_product = groups.setdefault(line.batch_seller_id, {})
            by_product.setdefault(item.product_id, (item, []))[1].append(line)
    if not groups:
        raise UserInputError("No cart items found for this seller")

    orders: List[Order] = []
    try:
        for group_seller_id, products in groups.items():
            seller = db.query(User).filter(User.id == group_seller_id).first()
            if not seller:
                raise NotFoundError(f"Seller {group_seller_id} not found")

            order = Order(
                order_number=next_order_number(db),
                buyer_id=buyer.id,
                buyer_name=buyer.display_name,
                seller_id=seller.id,
                seller_name=seller.display_name,
                status=OrderStatus.PENDING_CONFIRMATION.value,
                payment_status=PaymentStatus.PENDING.value,
                notes=(notes or "").strip() or None,
                pickup_scheduled_date=pickup_scheduled_date,
            )
            total_items = 0
            total_cost = Decimal("0")

            for product_id, (cart_item, lines) in products.items():
                order_item = OrderItem(
                    product_id=product_id,
                    product_name=cart_item.product_name,
                    product_type=cart_item.product_type,
                    product_category=cart_item.product_category,
                    product_image=cart_item.product_image,
                    total_quantity=0,
                    total_price=Decimal("0"),
                )
                for line in lines:
                    batch = db.query(Batch).filter(Batch.id == line.batch_id).with_for_update().first()
                    available = batch.quantity if batch else 0
                    if available < line.quantity:
                        raise InsufficientStockError(
                            requested=line.quantity,
                            available=available,
                            message=(
                                f"Not enough quantity available for {cart_item.product_name}. "
                                f"Requested: {line.quantity}, Available: {available}"
                            ),
                        )
                    batch.quantity -= line.quantity
                    if batch.quantity == 0:
                        batch.sold_out = True

                    unit_price = Decimal(str(line.unit_price))
                    subtotal = unit_price * line.quantity
                    order_item.batch_items.append(
                        OrderBatchItem(
                            order=order,
                            batch_id=batch.id,
                            quantity=line.quantity,
                            unit_price=unit_price,
                            subtotal=subtotal,
                            expiry_date=line.expiry_date,
                        )
                    )
                    order_item.total_quantity += line.quantity
                    order_item.total_price += subtotal

                    cart_item.batch_items.remove(line)

                order.items.append(order_item)
                total_items += order_item.total_quantity
                total_cost += order_item.total_price

                if not cart_item.batch_items:
                    cart.items.remove(cart_item)

            order.total_items = total_items
            order.total_cost = total_cost
            db.add(order)
            orders.append(order)

        recalculate_totals(cart)
        db.commit()
    except Exception:
        db.rollback()
        logger.error(f"Checkout failed for buyer {buyer.id}", exc_info=True)
        raise

    for order in orders:
        db.refresh(order)
        AuditLog.log_action("create", "order", order.id, buyer.id, changes={"total_cost": str(order.total_cost)})
        logger.info(f"Order {order.order_number} created: buyer {buyer.id} -> seller {order.seller_id}, {order.total_cost}")
        notification_service.notify_new_order(
            db, order.seller_id, order.id, buyer.id, order.buyer_name, _item_summary(order), order.total_cost
        )
        notification_service.notify_order_status(
            db,
            order.buyer_id,
            order.id,
            order.status,
            {"order_number": order.order_number, "seller_name": order.seller_name, "total_amount": str(order.total_cost)},
        )
    return orders


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------

def list_buyer_orders(db: Session, buyer_id: int, status: Optional[str] = None, limit: Optional[int] = None, offset: Optional[int] = None) -> List[Order]:
    q = db.query(Order).filter(Order.buyer_id == buyer_id)
    if status:
        q = q.filter(Order.status == parse_status(status).value)
    return paginate(q.order_by(Order.order_date.desc(), Order.id.desc()), limit, offset)


def list_seller_orders(db: Session, seller_id: int, status: Optional[str] = None, limit: Optional[int] = None, offset: Optional[int] = None) -> List[Order]:
    q = db.query(Order).filter(Order.seller_id == seller_id)
    if status:
        q = q.filter(Order.status == parse_status(status).value)
    return paginate(q.order_by(Order.order_date.desc(), Order.id.desc()), limit, offset)


def list_orders_by_status(db: Session, admin: User, status: Optional[str] = None, limit: Optional[int] = None, offset: Optional[int] = None) -> List[Order]:
    require_admin(admin)
    q = db.query(Order)
    if status:
        q = q.filter(Order.status == parse_status(status).value)
    return paginate(q.order_by(Order.order_date.desc(), Order.id.desc()), limit, offset)


def order_summaries(db: Session, user: User, filters: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
    filters = filters or {}
    q = db.query(Order)
    if filters.get("status"):
        q = q.filter(Order.status == parse_status(filters["status"]).value)
    if filters.get("payment_status"):
        q = q.filter(Order.payment_status == parse_payment_status(filters["payment_status"]).value)
    if filters.get("buyer_id") is not None:
        q = q.filter(Order.buyer_id == filters["buyer_id"])
    if filters.get("seller_id") is not None:
        q = q.filter(Order.seller_id == filters["seller_id"])
    if not user.is_admin:
        q = q.filter(or_(Order.buyer_id == user.id, Order.seller_id == user.id))
    rows = paginate(q.order_by(Order.order_date.desc(), Order.id.desc()), filters.get("limit"), filters.get("offset"))
    return [
        {
            "order_id": o.id,
            "order_number": o.order_number,
            "buyer_name": o.buyer_name,
            "seller_name": o.seller_name,
            "total_items": o.total_items,
            "total_cost": o.total_cost,
            "status": o.status,
            "payment_status": o.payment_status,
            "order_date": o.order_date,
            "pickup_scheduled_date": o.pickup_scheduled_date,
        }
        for o in rows
    ]


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------

def _apply_payment_status(order: Order, payment_status: str, transaction_id: Optional[str] = None) -> bool:
    if transaction_id:
        order.transaction_id = transaction_id
    if order.payment_status == payment_status:
        return False
    order.payment_status = payment_status
    now = _now()
    if payment_status == PaymentStatus.PAID_HELD_BY_SYSTEM.value:
        order.paid_at = now
    elif payment_status == PaymentStatus.RELEASED_TO_SELLER.value:
        order.released_to_seller_at = now
    elif payment_status == PaymentStatus.REFUNDED.value:
        order.refunded_at = now
    return True


def _stamp_status(order: Order, status: OrderStatus) -> None:
    now = _now()
    if status == OrderStatus.PREPARING:
        order.preparing_started_date = now
    elif status == OrderStatus.READY_FOR_PICKUP:
        order.ready_for_pickup_date = now
    elif status == OrderStatus.PICKUP_CONFIRMED:
        order.pickup_confirmed_date = now
    elif status == OrderStatus.DELIVERED:
        order.delivered_date = now
    elif status == OrderStatus.COMPLETED:
        order.completed_date = now
    elif status == OrderStatus.RESOLVED:
        order.resolved_at = now


def _restock(db: Session, order: Order) -> None:
    """Return reserved units to the seller's batches."""
    if order.product_transfer_result:
        return
    for item in order.items:
        for line in item.batch_items:
            batch = db.query(Batch).filter(Batch.id == line.batch_id).first() if line.batch_id else None
            if batch is None:
                continue
            batch.quantity += line.quantity
            batch.sold_out = False


def _run_transfer(db: Session, order: Order, status: OrderStatus) -> Optional[Dict[str, Any]]:
    transfer_type = "delivery" if status == OrderStatus.DELIVERED else "pickup"
    try:
        with db.begin_nested():
            summary = transfer_service.transfer_order_to_buyer(db, order, transfer_type)
    except Exception as e:
        logger.error(f"Product transfer failed for order {order.id}: {e}", exc_info=True)
        order.product_transfer_error = str(e)
        order.product_transfer_failed_at = _now()
        return None
    order.product_transfer_result = summary
    order.product_transfer_error = None
    return summary


def _notify_status_change(
    db: Session,
    order: Order,
    new_status: OrderStatus,
    payment_changed: bool,
    transfer_summary: Optional[Dict[str, Any]],
    actor_id: Optional[int],
) -> None:
    details = {
        "order_number": order.order_number,
        "seller_name": order.seller_name,
        "total_amount": str(order.total_cost),
    }
    if new_status in (OrderStatus.CANCELLED, OrderStatus.DISPUTED):
        # Whoever did not act hears about it; an admin action informs both sides
        recipients = [uid for uid in (order.buyer_id, order.seller_id) if uid != actor_id]
        for uid in recipients:
            notification_service.notify_order_status(db, uid, order.id, new_status.value, details)
    else:
        notification_service.notify_order_status(db, order.buyer_id, order.id, new_status.value, details)

    if new_status in (OrderStatus.PICKUP_CONFIRMED, OrderStatus.DELIVERED, OrderStatus.COMPLETED):
        notification_service.notify(
            db,
            order.seller_id,
            "order_status",
            f"Order {order.order_number} has been {new_status.value.replace('-', ' ')}",
            {"order_id": order.id, "status": new_status.value, "buyer_name": order.buyer_name, "action_url": f"/orders/{order.id}"},
            "normal",
        )

    if payment_changed:
        _notify_payment(db, order)

    if transfer_summary:
        transfer_service.notify_transfer(db, order, transfer_summary)


def _notify_payment(db: Session, order: Order) -> None:
    payment_ref = order.transaction_id or str(order.id)
    notification_service.notify_payment_status(
        db, order.buyer_id, payment_ref, order.payment_status, order.total_cost, order.id
    )
    if order.payment_status == PaymentStatus.RELEASED_TO_SELLER.value:
        notification_service.notify_payment_status(
            db, order.seller_id, payment_ref, order.payment_status, order.total_cost, order.id
        )


def _transition(
    db: Session,
    order: Order,
    new_status: OrderStatus,
    actor: User,
    transaction_id: Optional[str] = None,
    extra: Optional[Dict[str, Any]] = None,
) -> Order:
    """Validated status change with every side effect, committed once."""
    previous_status = order.status
    previous_payment = order.payment_status
    if parse_status(previous_status) in ADMIN_ONLY_FROM and not actor.is_admin:
        AuditLog.log_access_denied("update", "order", order.id, actor.id, f"{previous_status} is settled by an admin")
        raise ForbiddenError("Only an admin can settle a disputed order")
    check_transition(previous_status, new_status)

    transfer_summary = None
    try:
        order.status = new_status.value
        for key, value in (extra or {}).items():
            setattr(order, key, value)
        _stamp_status(order, new_status)

        payment_status = determine_payment_status(new_status, previous_payment).value
        payment_changed = _apply_payment_status(order, payment_status, transaction_id)
        if payment_changed:
            transaction_service.sync_order_transaction(db, order, payment_status, transaction_id)

        if new_status in RESTOCK_ON:
            _restock(db, order)
        if new_status in TRANSFER_TRIGGERS:
            transfer_summary = _run_transfer(db, order, new_status)

        db.commit()
    except Exception:
        db.rollback()
        logger.error(f"Status update {previous_status} -> {new_status.value} failed for order {order.id}", exc_info=True)
        raise

    db.refresh(order)
    AuditLog.log_action(
        "status_change",
        "order",
        order.id,
        actor.id,
        changes={
            "from": previous_status,
            "to": order.status,
            "payment_from": previous_payment,
            "payment_to": order.payment_status,
        },
    )
    logger.info(f"Order {order.id} moved {previous_status} -> {order.status} by user {actor.id}")
    _notify_status_change(db, order, new_status, payment_changed, transfer_summary, actor.id)
    return order


def update_status(
    db: Session,
    user: User,
    order_id: int,
    new_status,
    transaction_id: Optional[str] = None,
    reason: Optional[str] = None,
) -> Order:
    order = get_order(db, order_id)
    _require_participant(user, order, "update")
    status = parse_status(new_status)
    if status == OrderStatus.DISPUTED:
        return dispute_order(db, user, order_id, reason or "")
    if status in SELLER_ONLY and user.id != order.seller_id:
        AuditLog.log_access_denied("update", "order", order.id, user.id, f"{status.value} is seller only")
        raise ForbiddenError("Only seller can confirm or reject orders")
    return _transition(db, order, status, user, transaction_id)


def confirm_pickup(db: Session, user: User, order_id: int) -> Order:
    return update_status(db, user, order_id, OrderStatus.PICKUP_CONFIRMED)


def schedule_pickup(db: Session, user: User, order_id: int, pickup_date: date) -> Order:
    order = get_order(db, order_id)
    _require_party(user, order, "schedule pickup for")
    if pickup_date < date.today():
        raise UserInputError("Pickup date cannot be in the past")
    order = _transition(
        db, order, OrderStatus.PICKUP_SCHEDULED, user, extra={"pickup_scheduled_date": pickup_date}
    )
    scheduler_is_buyer = user.id == order.buyer_id
    recipient = order.seller_id if scheduler_is_buyer else order.buyer_id
    scheduler_name = order.buyer_name if scheduler_is_buyer else order.seller_name
    notification_service.notify(
        db,
        recipient,
        "pickup_scheduled",
        f"{scheduler_name} scheduled pickup of order {order.order_number} for {pickup_date.isoformat()}",
        {"order_id": order.id, "pickup_date": pickup_date.isoformat(), "action_url": f"/orders/{order.id}"},
        "high",
    )
    return order


def cancel_order(db: Session, user: User, order_id: int, reason: str = "") -> Order:
    order = get_order(db, order_id)
    _require_party(user, order, "cancel")
    refund_due = order.payment_status == PaymentStatus.PAID_HELD_BY_SYSTEM.value
    order = _transition(
        db,
        order,
        OrderStatus.CANCELLED,
        user,
        extra={
            "cancelled_at": _now(),
            "cancelled_by": user.id,
            "cancellation_reason": (reason or "").strip() or None,
        },
    )
    if refund_due:
        logger.info(f"Order {order.id} cancelled with held payment, refund issued")
    return order


def dispute_order(db: Session, user: User, order_id: int, reason: str) -> Order:
    order = get_order(db, order_id)
    _require_party(user, order, "dispute")
    if not reason or not reason.strip():
        raise UserInputError("A dispute reason is required")
    if parse_status(order.status) not in DISPUTABLE_FROM:
        raise UserInputError(f"Cannot dispute order with status: {order.status}")
    return _transition(
        db,
        order,
        OrderStatus.DISPUTED,
        user,
        extra={"disputed_at": _now(), "disputed_by": user.id, "dispute_reason": reason.strip()},
    )


def update_payment_status(db: Session, admin: User, order_id: int, payment_status, transaction_id: Optional[str] = None) -> Order:
    """Direct payment status override, outside the order state machine."""
    require_admin(admin)
    order = get_order(db, order_id)
    status = parse_payment_status(payment_status).value
    previous = order.payment_status
    try:
        changed = _apply_payment_status(order, status, transaction_id)
        if changed:
            transaction_service.sync_order_transaction(db, order, status, transaction_id)
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(order)
    AuditLog.log_action("payment_status_change", "order", order.id, admin.id, changes={"from": previous, "to": status})
    if changed:
        _notify_payment(db, order)
    return order


def delete_order(db: Session, admin: User, order_id: int) -> bool:
    require_admin(admin)
    order = get_order(db, order_id)
    db.delete(order)
    db.commit()
    AuditLog.log_action("delete", "order", order_id, admin.id)
    return True
