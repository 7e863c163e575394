"""
Notifications: persisted per user, then pushed live through the hub.

``create_notification`` propagates failures. The ``notify_*`` helpers are
called after a business write has committed, so they log and swallow
errors instead of failing an operation that already happened.
"""
import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from marketplace.core.config import settings
from marketplace.core.exceptions import ForbiddenError, NotFoundError, UserInputError
from marketplace.models.notification import Notification, NotificationPriority
from marketplace.models.user import User
from marketplace.services.notification_hub import hub, NotificationHub
from marketplace.services.pagination import clamp

logger = logging.getLogger(__name__)

BULK_CHUNK_SIZE = 500

ORDER_STATUS_MESSAGES = {
    "pending-confirmation": "Your order has been placed and is awaiting seller confirmation",
    "confirmed": "Your order has been confirmed by the seller",
    "rejected-by-seller": "Your order has been rejected by the seller",
    "preparing": "Your order is being prepared",
    "ready-for-pickup": "Your order is ready for pickup",
    "pickup-scheduled": "Pickup has been scheduled for your order",
    "pickup-confirmed": "Pickup of your order has been confirmed",
    "delivered": "Your order has been delivered successfully",
    "completed": "Your order has been completed",
    "cancelled": "Your order has been cancelled",
    "disputed": "A dispute has been opened on your order",
    "resolved": "The dispute on your order has been resolved",
}

ORDER_STATUS_PRIORITY = {
    "rejected-by-seller": "high",
    "ready-for-pickup": "high",
    "pickup-scheduled": "high",
    "pickup-confirmed": "high",
    "delivered": "high",
    "cancelled": "urgent",
    "disputed": "urgent",
}

PAYMENT_STATUS_MESSAGES = {
    "processing": "Payment of {amount} is being processed",
    "paid-held-by-system": "Payment of {amount} received and held until pickup",
    "released-to-seller": "Payment of {amount} has been released to the seller",
    "refunded": "Refund of {amount} processed",
    "failed": "Payment of {amount} failed",
}

PAYMENT_STATUS_PRIORITY = {
    "failed": "urgent",
    "refunded": "high",
    "released-to-seller": "high",
}


def _fmt_amount(amount: Any) -> str:
    if isinstance(amount, (int, float, Decimal)):
        return f"{settings.DEFAULT_CURRENCY} {Decimal(str(amount)):,.2f}"
    return str(amount)


def get_unread_count(db: Session, user_id: int) -> int:
    return (
        db.query(func.count(Notification.id))
        .filter(Notification.user_id == user_id, Notification.is_read.is_(False))
        .scalar()
    ) or 0


def _publish(db: Session, notification: Notification, channel: NotificationHub) -> None:
    payload = notification.to_payload()
    channel.publish(notification.user_id, "notification", payload)
    channel.publish(
        notification.user_id,
        "notification_count_update",
        {"count": get_unread_count(db, notification.user_id)},
    )
    if notification.priority == NotificationPriority.URGENT.value:
        channel.publish(notification.user_id, "urgent_notification", payload)


def create_notification(
    db: Session,
    user_id: int,
    type: str,
    message: str,
    data: Optional[Dict[str, Any]] = None,
    priority: str = NotificationPriority.NORMAL.value,
    channel: NotificationHub = hub,
) -> Notification:
    if priority not in {p.value for p in NotificationPriority}:
        raise UserInputError(f"Invalid priority: {priority}")
    if not message or not message.strip():
        raise UserInputError("Notification message is required")

    notification = Notification(
        user_id=user_id,
        type=type,
        message=message.strip(),
        data=data or {},
        priority=priority,
        is_read=False,
        source="system",
    )
    db.add(notification)
    db.commit()
    db.refresh(notification)
    _publish(db, notification, channel)
    return notification


def notify(db: Session, *args, **kwargs) -> Optional[Notification]:
    """``create_notification`` that logs and swallows failures."""
    try:
        return create_notification(db, *args, **kwargs)
    except Exception as e:
        db.rollback()
        logger.error(f"Failed to send notification to user {args[0] if args else '?'}: {e}", exc_info=True)
        return None


def notify_order_status(
    db: Session,
    user_id: int,
    order_id: int,
    status: str,
    order_details: Optional[Dict[str, Any]] = None,
    message: Optional[str] = None,
) -> Optional[Notification]:
    return notify(
        db,
        user_id,
        "order_status",
        message or ORDER_STATUS_MESSAGES.get(status, f"Order status updated to {status}"),
        {
            "order_id": order_id,
            "status": status,
            "order_details": order_details or {},
            "action_url": f"/orders/{order_id}",
        },
        ORDER_STATUS_PRIORITY.get(status, "normal"),
    )


def notify_new_order(
    db: Session,
    seller_id: int,
    order_id: int,
    buyer_id: int,
    buyer_name: str,
    items: List[Dict[str, Any]],
    total_amount: Decimal,
) -> Optional[Notification]:
    urgent = Decimal(str(total_amount)) > Decimal(settings.URGENT_ORDER_THRESHOLD)
    return notify(
        db,
        seller_id,
        "new_order",
        f"New order received from {buyer_name}",
        {
            "order_id": order_id,
            "customer_id": buyer_id,
            "customer_name": buyer_name,
            "items": items,
            "total_amount": str(total_amount),
            "urgent_order": urgent,
            "action_url": f"/orders/{order_id}",
        },
        "urgent" if urgent else "high",
    )


def notify_payment_status(
    db: Session,
    user_id: int,
    payment_id: Optional[str],
    status: str,
    amount: Any,
    order_id: Optional[int] = None,
) -> Optional[Notification]:
    template = PAYMENT_STATUS_MESSAGES.get(status)
    message = template.format(amount=_fmt_amount(amount)) if template else f"Payment status: {status}"
    return notify(
        db,
        user_id,
        "payment",
        message,
        {
            "payment_id": payment_id,
            "status": status,
            "amount": str(amount),
            "order_id": order_id,
            "action_url": f"/orders/{order_id}" if order_id else f"/payments/{payment_id}",
        },
        PAYMENT_STATUS_PRIORITY.get(status, "normal"),
    )


def notify_cart_update(
    db: Session,
    user_id: int,
    action: str,  # "added", "updated", "removed", "cleared"
    product_name: Optional[str] = None,
    quantity: Optional[int] = None,
) -> Optional[Notification]:
    if action == "cleared":
        message = "Your cart has been cleared"
    elif action == "added":
        message = f"{quantity} x {product_name} added to your cart"
    elif action == "removed":
        message = f"{product_name} removed from your cart"
    else:
        message = f"{product_name} quantity updated to {quantity}"
    return notify(
        db,
        user_id,
        "cart_update",
        message,
        {"action": action, "product_name": product_name, "quantity": quantity, "action_url": "/cart"},
        "low",
    )


def notify_low_stock_warning(
    db: Session,
    user_id: int,
    product_id: int,
    product_name: str,
    requested: int,
    available: int,
) -> Optional[Notification]:
    return notify(
        db,
        user_id,
        "low_stock_warning",
        f"Only {available} units of {product_name} are available (you requested {requested})",
        {
            "product_id": product_id,
            "product_name": product_name,
            "requested_quantity": requested,
            "available_quantity": available,
            "action_url": f"/products/{product_id}",
        },
        "high",
    )


def notify_rating(
    db: Session,
    user_id: int,
    rating_id: int,
    rating: int,
    rater_name: str,
    product_name: Optional[str] = None,
) -> Optional[Notification]:
    target = f" for {product_name}" if product_name else ""
    return notify(
        db,
        user_id,
        "rating",
        f"New {rating}-star rating from {rater_name}{target}",
        {
            "rating_id": rating_id,
            "rating": rating,
            "rater_name": rater_name,
            "product_name": product_name,
            "action_url": "/ratings",
        },
        "high" if rating < 4 else "normal",
    )


def send_bulk(
    db: Session,
    user_ids: Iterable[int],
    type: str,
    message: str,
    data: Optional[Dict[str, Any]] = None,
    priority: str = NotificationPriority.NORMAL.value,
    channel: NotificationHub = hub,
) -> List[Notification]:
    """Persist in chunks, one commit per chunk, then publish to each recipient."""
    ids = list(dict.fromkeys(user_ids))
    created: List[Notification] = []
    for start in range(0, len(ids), BULK_CHUNK_SIZE):
        chunk = [
            Notification(
                user_id=uid,
                type=type,
                message=message,
                data=data or {},
                priority=priority,
                is_read=False,
                source="system",
            )
            for uid in ids[start:start + BULK_CHUNK_SIZE]
        ]
        db.add_all(chunk)
        db.commit()
        created.extend(chunk)

    for notification in created:
        db.refresh(notification)
        _publish(db, notification, channel)
    logger.info(f"Bulk notification '{type}' sent to {len(created)} users")
    return created


def notify_by_role(
    db: Session,
    role: str,
    type: str,
    message: str,
    data: Optional[Dict[str, Any]] = None,
    priority: str = NotificationPriority.NORMAL.value,
) -> List[Notification]:
    user_ids = [uid for (uid,) in db.query(User.id).filter(User.role == role).all()]
    return send_bulk(db, user_ids, type, message, data, priority)


def list_notifications(
    db: Session,
    user_id: int,
    unread_only: bool = False,
    type: Optional[str] = None,
    priority: Optional[str] = None,
    limit: Optional[int] = None,
    offset: Optional[int] = None,
) -> List[Notification]:
    q = db.query(Notification).filter(Notification.user_id == user_id)
    if unread_only:
        q = q.filter(Notification.is_read.is_(False))
    if type:
        q = q.filter(Notification.type == type)
    if priority:
        q = q.filter(Notification.priority == priority)
    limit, offset = clamp(limit, offset)
    return q.order_by(Notification.created_at.desc(), Notification.id.desc()).limit(limit).offset(offset).all()


def _get_owned(db: Session, user_id: int, notification_id: int) -> Notification:
    notification = db.query(Notification).filter(Notification.id == notification_id).first()
    if not notification:
        raise NotFoundError("Notification not found")
    if notification.user_id != user_id:
        raise ForbiddenError("Not authorized to access this notification")
    return notification


def mark_as_read(db: Session, user_id: int, notification_id: int, channel: NotificationHub = hub) -> Notification:
    notification = _get_owned(db, user_id, notification_id)
    if not notification.is_read:
        notification.is_read = True
        notification.read_at = datetime.now(timezone.utc)
        db.commit()
        db.refresh(notification)
        channel.publish(user_id, "notification_count_update", {"count": get_unread_count(db, user_id)})
    return notification


def mark_all_as_read(db: Session, user_id: int, channel: NotificationHub = hub) -> int:
    updated = (
        db.query(Notification)
        .filter(Notification.user_id == user_id, Notification.is_read.is_(False))
        .update(
            {Notification.is_read: True, Notification.read_at: datetime.now(timezone.utc)},
            synchronize_session=False,
        )
    )
    db.commit()
    channel.publish(user_id, "notification_count_update", {"count": 0})
    return updated


def delete_notification(db: Session, user_id: int, notification_id: int) -> bool:
    notification = _get_owned(db, user_id, notification_id)
    db.delete(notification)
    db.commit()
    return True


def bulk_delete(db: Session, user_id: int, notification_ids: List[int]) -> int:
    """Delete the caller's notifications among ``notification_ids``; others are ignored."""
    if not notification_ids:
        raise UserInputError("notification_ids must be a non-empty list")
    if len(notification_ids) > BULK_CHUNK_SIZE:
        raise UserInputError(f"Cannot delete more than {BULK_CHUNK_SIZE} notifications at once")
    deleted = (
        db.query(Notification)
        .filter(Notification.user_id == user_id, Notification.id.in_(notification_ids))
        .delete(synchronize_session=False)
    )
    db.commit()
    return deleted


def stats(db: Session, user_id: int) -> Dict[str, Any]:
    base = db.query(Notification).filter(Notification.user_id == user_id)
    by_type = dict(
        base.with_entities(Notification.type, func.count(Notification.id)).group_by(Notification.type).all()
    )
    by_priority = {p.value: 0 for p in NotificationPriority}
    by_priority.update(
        dict(
            base.with_entities(Notification.priority, func.count(Notification.id))
            .group_by(Notification.priority)
            .all()
        )
    )
    total = base.count()
    unread = get_unread_count(db, user_id)
    return {
        "total": total,
        "unread": unread,
        "read": total - unread,
        "by_type": by_type,
        "by_priority": by_priority,
    }


def cleanup_read_older_than(db: Session, days: int = 30) -> int:
    cutoff = datetime.now(timezone.utc) - timedelta(days=days)
    deleted = (
        db.query(Notification)
        .filter(Notification.is_read.is_(True), Notification.created_at < cutoff)
        .delete(synchronize_session=False)
    )
    db.commit()
    logger.info(f"Removed {deleted} read notifications older than {days} days")
    return deleted
