"""
Ratings left after an order: buyer and seller rate each other, buyers
rate the products they bought. User and product statistics are re-summed
from the ratings table on every write.
"""
import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from marketplace.core.audit import AuditLog
from marketplace.core.exceptions import ForbiddenError, NotFoundError, UserInputError
from marketplace.core.permissions import require_admin
from marketplace.models.order import Order
from marketplace.models.product import Product
from marketplace.models.rating import Rating, RatingRole, RatingType
from marketplace.models.user import User
from marketplace.services import notification_service
from marketplace.services.pagination import paginate

logger = logging.getLogger(__name__)


def _check_value(rating: int) -> int:
    try:
        value = int(rating)
    except (TypeError, ValueError):
        raise UserInputError("Rating must be between 1 and 5")
    if value < 1 or value > 5:
        raise UserInputError("Rating must be between 1 and 5")
    return value


def _order_for_rater(db: Session, rater: User, order_id: int) -> Order:
    order = db.query(Order).filter(Order.id == order_id).first()
    if not order:
        raise NotFoundError("Order not found")
    if rater.id not in (order.buyer_id, order.seller_id):
        AuditLog.log_access_denied("rate", "order", order_id, rater.id, "not buyer or seller")
        raise ForbiddenError("Only the buyer or seller of this order can rate it")
    return order


def _average(count: int, total: int) -> Decimal:
    if not count:
        return Decimal("0")
    return (Decimal(total) / Decimal(count)).quantize(Decimal("0.1"), rounding=ROUND_HALF_UP)


def _user_rating_exists(db: Session, order_id: int, rater_id: int, rated_user_id: int) -> bool:
    return db.query(Rating.id).filter(
        Rating.type == RatingType.USER.value,
        Rating.order_id == order_id,
        Rating.rater_id == rater_id,
        Rating.rated_user_id == rated_user_id,
    ).first() is not None


def _product_rating_exists(db: Session, order_id: int, rater_id: int, product_id: int) -> bool:
    return db.query(Rating.id).filter(
        Rating.type == RatingType.PRODUCT.value,
        Rating.order_id == order_id,
        Rating.rater_id == rater_id,
        Rating.product_id == product_id,
    ).first() is not None


def refresh_user_stats(db: Session, user_id: int) -> None:
    count, total = (
        db.query(func.count(Rating.id), func.coalesce(func.sum(Rating.rating), 0))
        .filter(Rating.rated_user_id == user_id, Rating.type == RatingType.USER.value)
        .one()
    )
    user = db.query(User).filter(User.id == user_id).first()
    if user:
        user.rating_count, user.rating_sum = count, int(total)
        user.rating_average = _average(count, int(total))


def refresh_product_stats(db: Session, product_id: int) -> None:
    count, total = (
        db.query(func.count(Rating.id), func.coalesce(func.sum(Rating.rating), 0))
        .filter(Rating.product_id == product_id, Rating.type == RatingType.PRODUCT.value)
        .one()
    )
    product = db.query(Product).filter(Product.id == product_id).first()
    if product:
        product.rating_count, product.rating_sum = count, int(total)
        product.rating_average = _average(count, int(total))


def create_user_rating(
    db: Session,
    rater: User,
    rated_user_id: int,
    order_id: int,
    rating: int,
    comment: Optional[str] = None,
    rating_role: Optional[str] = None,
) -> Rating:
    value = _check_value(rating)
    order = _order_for_rater(db, rater, order_id)
    counterpart = order.seller_id if rater.id == order.buyer_id else order.buyer_id
    if rated_user_id != counterpart:
        raise UserInputError("You can only rate the other party of this order")

    if _user_rating_exists(db, order_id, rater.id, rated_user_id):
        raise UserInputError("Rating already exists for this order")

    rated_user = db.query(User).filter(User.id == rated_user_id).first()
    if not rated_user:
        raise NotFoundError("Rated user not found")

    if rating_role is None:
        rating_role = RatingRole.SELLER.value if rated_user_id == order.seller_id else RatingRole.BUYER.value
    elif rating_role not in {r.value for r in RatingRole}:
        raise UserInputError(f"Invalid rating role: {rating_role}")

    record = Rating(
        type=RatingType.USER.value,
        rater_id=rater.id,
        rater_name=rater.display_name,
        rated_user_id=rated_user.id,
        rated_user_name=rated_user.display_name,
        order_id=order_id,
        rating=value,
        comment=(comment or "").strip() or None,
        rating_role=rating_role,
    )
    try:
        db.add(record)
        db.flush()
        refresh_user_stats(db, rated_user.id)
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(record)

    AuditLog.log_action("create", "rating", record.id, rater.id, changes={"rated_user_id": rated_user.id, "rating": value})
    notification_service.notify_rating(db, rated_user.id, record.id, value, rater.display_name)
    return record


def create_product_rating(
    db: Session,
    user: User,
    product_id: int,
    order_id: int,
    rating: int,
    comment: Optional[str] = None,
) -> Rating:
    value = _check_value(rating)
    order = _order_for_rater(db, user, order_id)
    if user.id != order.buyer_id:
        raise ForbiddenError("Only the buyer can rate products from this order")
    if product_id not in {item.product_id for item in order.items}:
        raise UserInputError("Product is not part of this order")

    product = db.query(Product).filter(Product.id == product_id).first()
    if not product:
        raise NotFoundError("Product not found")

    if _product_rating_exists(db, order_id, user.id, product_id):
        raise UserInputError("Rating already exists for this product in this order")

    record = Rating(
        type=RatingType.PRODUCT.value,
        rater_id=user.id,
        rater_name=user.display_name,
        product_id=product.id,
        product_name=product.name,
        product_seller_id=product.owner_id,
        order_id=order_id,
        rating=value,
        comment=(comment or "").strip() or None,
    )
    try:
        db.add(record)
        db.flush()
        refresh_product_stats(db, product.id)
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(record)

    AuditLog.log_action("create", "rating", record.id, user.id, changes={"product_id": product.id, "rating": value})
    notification_service.notify_rating(db, product.owner_id, record.id, value, user.display_name, product.name)
    return record


def can_rate_user(db: Session, rater: User, order_id: int, rated_user_id: int) -> bool:
    """Whether ``rater`` may still rate ``rated_user_id`` for this order. Never raises."""
    order = db.query(Order).filter(Order.id == order_id).first()
    if not order or rater.id not in (order.buyer_id, order.seller_id):
        return False
    counterpart = order.seller_id if rater.id == order.buyer_id else order.buyer_id
    if rated_user_id != counterpart:
        return False
    return not _user_rating_exists(db, order_id, rater.id, rated_user_id)


def can_rate_product(db: Session, user: User, order_id: int, product_id: int) -> bool:
    order = db.query(Order).filter(Order.id == order_id).first()
    if not order or user.id != order.buyer_id:
        return False
    if product_id not in {item.product_id for item in order.items}:
        return False
    return not _product_rating_exists(db, order_id, user.id, product_id)


def get_rating(db: Session, rating_id: int) -> Rating:
    record = db.query(Rating).filter(Rating.id == rating_id).first()
    if not record:
        raise NotFoundError("Rating not found")
    return record


def user_ratings(db: Session, user_id: int, limit: Optional[int] = None, offset: Optional[int] = None) -> List[Rating]:
    """Ratings received by a user."""
    q = db.query(Rating).filter(Rating.rated_user_id == user_id, Rating.type == RatingType.USER.value)
    return paginate(q.order_by(Rating.created_at.desc(), Rating.id.desc()), limit, offset)


def product_ratings(db: Session, product_id: int, limit: Optional[int] = None, offset: Optional[int] = None) -> List[Rating]:
    q = db.query(Rating).filter(Rating.product_id == product_id, Rating.type == RatingType.PRODUCT.value)
    return paginate(q.order_by(Rating.created_at.desc(), Rating.id.desc()), limit, offset)


def ratings_by_user(db: Session, user_id: int, limit: Optional[int] = None, offset: Optional[int] = None) -> List[Rating]:
    """Ratings written by a user, of either type."""
    q = db.query(Rating).filter(Rating.rater_id == user_id)
    return paginate(q.order_by(Rating.created_at.desc(), Rating.id.desc()), limit, offset)


def ratings_by_order(db: Session, order_id: int) -> List[Rating]:
    return db.query(Rating).filter(Rating.order_id == order_id).order_by(Rating.id).all()


def _stats(holder) -> Dict[str, Any]:
    if holder is None:
        return {"total_ratings": 0, "average_rating": 0.0}
    return {"total_ratings": holder.rating_count, "average_rating": float(holder.rating_average or 0)}


def user_rating_stats(db: Session, user_id: int) -> Dict[str, Any]:
    return _stats(db.query(User).filter(User.id == user_id).first())


def product_rating_stats(db: Session, product_id: int) -> Dict[str, Any]:
    return _stats(db.query(Product).filter(Product.id == product_id).first())


def delete_rating(db: Session, admin: User, rating_id: int, reason: str = "") -> bool:
    require_admin(admin)
    record = get_rating(db, rating_id)
    author_id, rating_type = record.rater_id, record.type
    try:
        db.delete(record)
        db.flush()
        if rating_type == RatingType.USER.value and record.rated_user_id:
            refresh_user_stats(db, record.rated_user_id)
        elif record.product_id:
            refresh_product_stats(db, record.product_id)
        db.commit()
    except Exception:
        db.rollback()
        raise

    AuditLog.log_action("delete", "rating", rating_id, admin.id, changes={"reason": reason})
    logger.info(f"Rating {rating_id} removed by admin {admin.id}")
    notification_service.notify(
        db,
        author_id,
        "rating_removed",
        "One of your ratings has been removed by our moderation team",
        {"reason": reason, "rating_type": rating_type, "action_url": "/support/contact"},
        "high",
    )
    return True
