"""
Cart: product lines split into per-batch lines.

Every mutation re-sums the line totals and the cart totals before the
single commit, so the stored totals always equal the batch lines.
"""
import logging
from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from marketplace.core.exceptions import InsufficientStockError, NotFoundError, UserInputError
from marketplace.core.permissions import require_approved
from marketplace.models.cart import Cart, CartBatchItem, CartItem
from marketplace.models.product import Batch, Product
from marketplace.models.user import User
from marketplace.services import notification_service
from marketplace.services.allocation import allocate

logger = logging.getLogger(__name__)


def recalculate_totals(cart: Cart) -> Cart:
    total_items = 0
    total_price = Decimal("0")
    for item in cart.items:
        item.total_quantity = sum(b.quantity for b in item.batch_items)
        item.total_price = sum((Decimal(str(b.unit_price)) * b.quantity for b in item.batch_items), Decimal("0"))
        total_items += item.total_quantity
        total_price += item.total_price
    cart.total_items = total_items
    cart.total_price = total_price
    return cart


def release_batch(db: Session, batch_id: int) -> List[Cart]:
    """Take a batch out of every cart holding it and re-sum those carts. The caller commits."""
    lines = db.query(CartBatchItem).filter(CartBatchItem.batch_id == batch_id).all()
    carts = {}
    for line in lines:
        item = line.cart_item
        item.batch_items.remove(line)
        cart = item.cart
        if not item.batch_items:
            cart.items.remove(item)
        carts[cart.user_id] = cart
    for cart in carts.values():
        recalculate_totals(cart)
    if carts:
        logger.info(f"Batch {batch_id} released from {len(carts)} cart(s)")
    return list(carts.values())


def get_or_create_cart(db: Session, user_id: int) -> Cart:
    cart = db.query(Cart).filter(Cart.user_id == user_id).first()
    if cart:
        return cart
    cart = Cart(user_id=user_id, total_items=0, total_price=Decimal("0"))
    db.add(cart)
    db.flush()
    return cart


def get_cart(db: Session, user_id: int) -> Cart:
    cart = db.query(Cart).filter(Cart.user_id == user_id).first()
    if cart:
        return cart
    cart = get_or_create_cart(db, user_id)
    db.commit()
    db.refresh(cart)
    return cart


def _find_item(cart: Cart, product_id: int) -> Optional[CartItem]:
    return next((i for i in cart.items if i.product_id == product_id), None)


def _find_batch_line(item: CartItem, batch_id: int) -> Optional[CartBatchItem]:
    return next((b for b in item.batch_items if b.batch_id == batch_id), None)


def _get_item_or_raise(cart: Cart, product_id: int) -> CartItem:
    item = _find_item(cart, product_id)
    if not item:
        raise NotFoundError("Product not found in cart")
    return item


def _new_item(user_id: int, product: Product) -> CartItem:
    return CartItem(
        user_id=user_id,
        product_id=product.id,
        product_name=product.name,
        product_type=product.product_type,
        product_category=product.category,
        product_image=product.image,
        total_quantity=0,
        total_price=Decimal("0"),
    )


def _purchasable_product(db: Session, user: User, product_id: int) -> Product:
    product = db.query(Product).filter(Product.id == product_id, Product.is_active.is_(True)).first()
    if not product:
        raise NotFoundError("Product not found")
    if product.owner_id == user.id:
        raise UserInputError("You cannot add your own product to the cart")
    return product


def _commit(db: Session, cart: Cart) -> Cart:
    recalculate_totals(cart)
    try:
        db.commit()
    except Exception:
        db.rollback()
        logger.error(f"Cart update failed for user {cart.user_id}", exc_info=True)
        raise
    db.refresh(cart)
    return cart


def add_to_cart(db: Session, user: User, product_id: int, quantity: int) -> Cart:
    """Allocate ``quantity`` across the product's batches and merge into the cart."""
    require_approved(user)
    product = _purchasable_product(db, user, product_id)
    cart = get_or_create_cart(db, user.id)
    item = _find_item(cart, product.id)
    reserved: Dict[int, int] = {b.batch_id: b.quantity for b in item.batch_items} if item else {}

    batches = (
        db.query(Batch)
        .filter(
            Batch.product_id == product.id,
            Batch.quantity > 0,
            Batch.selling_price.isnot(None),
            Batch.current_owner_id != user.id,
        )
        .all()
    )
    try:
        allocations = allocate(batches, quantity, product.product_type, reserved)
    except InsufficientStockError as e:
        db.rollback()
        if e.available > 0:
            notification_service.notify_low_stock_warning(
                db, user.id, product.id, product.name, e.requested, e.available
            )
        raise

    if item is None:
        item = _new_item(user.id, product)
        cart.items.append(item)

    for alloc in allocations:
        line = _find_batch_line(item, alloc.batch_id)
        if line:
            line.quantity += alloc.quantity
        else:
            item.batch_items.append(
                CartBatchItem(
                    user_id=user.id,
                    product_id=product.id,
                    batch_id=alloc.batch_id,
                    quantity=alloc.quantity,
                    unit_price=alloc.unit_price,
                    expiry_date=alloc.expiry_date,
                    batch_seller_id=alloc.batch_seller_id,
                    batch_seller_name=alloc.batch_seller_name,
                )
            )

    cart = _commit(db, cart)
    logger.info(f"User {user.id} added {quantity} x product {product.id} across {len(allocations)} batches")
    notification_service.notify_cart_update(db, user.id, "added", product.name, quantity)
    return cart


def add_specific_batch_to_cart(db: Session, user: User, product_id: int, batch_id: int, quantity: int) -> Cart:
    require_approved(user)
    if quantity is None or quantity <= 0:
        raise UserInputError("Quantity must be greater than 0")
    product = _purchasable_product(db, user, product_id)
    batch = db.query(Batch).filter(Batch.id == batch_id).first()
    if not batch:
        raise NotFoundError("Batch not found")
    if batch.product_id != product.id:
        raise UserInputError("Batch does not belong to the specified product")
    if batch.selling_price is None:
        raise UserInputError("Batch is not available for sale")

    cart = get_or_create_cart(db, user.id)
    item = _find_item(cart, product.id)
    line = _find_batch_line(item, batch.id) if item else None
    already = line.quantity if line else 0
    if batch.quantity < already + quantity:
        db.rollback()
        raise InsufficientStockError(requested=quantity, available=max(batch.quantity - already, 0))

    if item is None:
        item = _new_item(user.id, product)
        cart.items.append(item)
    if line:
        line.quantity += quantity
    else:
        item.batch_items.append(
            CartBatchItem(
                user_id=user.id,
                product_id=product.id,
                batch_id=batch.id,
                quantity=quantity,
                unit_price=Decimal(str(batch.selling_price)),
                expiry_date=batch.expiry_date,
                batch_seller_id=batch.current_owner_id,
                batch_seller_name=batch.current_owner_name,
            )
        )

    cart = _commit(db, cart)
    notification_service.notify_cart_update(db, user.id, "added", product.name, quantity)
    return cart


def update_cart_batch_item(db: Session, user: User, product_id: int, batch_id: int, quantity: int) -> Cart:
    """Set a batch line's quantity; zero or less removes the line."""
    require_approved(user)
    cart = get_or_create_cart(db, user.id)
    item = _get_item_or_raise(cart, product_id)
    line = _find_batch_line(item, batch_id)
    if not line:
        raise NotFoundError("Batch item not found in cart")

    if quantity <= 0:
        return remove_batch_from_cart(db, user, product_id, batch_id)

    batch = db.query(Batch).filter(Batch.id == batch_id).first()
    available = batch.quantity if batch else 0
    if available < quantity:
        raise InsufficientStockError(requested=quantity, available=available)
    line.quantity = quantity

    product_name = item.product_name
    cart = _commit(db, cart)
    notification_service.notify_cart_update(db, user.id, "updated", product_name, quantity)
    return cart


def remove_product_from_cart(db: Session, user: User, product_id: int) -> Cart:
    require_approved(user)
    cart = get_or_create_cart(db, user.id)
    item = _get_item_or_raise(cart, product_id)
    product_name = item.product_name
    cart.items.remove(item)
    cart = _commit(db, cart)
    notification_service.notify_cart_update(db, user.id, "removed", product_name)
    return cart


def remove_batch_from_cart(db: Session, user: User, product_id: int, batch_id: int) -> Cart:
    """Drop one batch line; the product line goes too once it has no batches left."""
    require_approved(user)
    cart = get_or_create_cart(db, user.id)
    item = _get_item_or_raise(cart, product_id)
    line = _find_batch_line(item, batch_id)
    if not line:
        raise NotFoundError("Batch item not found in cart")
    product_name = item.product_name
    item.batch_items.remove(line)
    if not item.batch_items:
        cart.items.remove(item)
    cart = _commit(db, cart)
    notification_service.notify_cart_update(db, user.id, "removed", product_name)
    return cart


def clear_cart(db: Session, user: User) -> Cart:
    require_approved(user)
    cart = get_or_create_cart(db, user.id)
    cart.items.clear()
    cart = _commit(db, cart)
    notification_service.notify_cart_update(db, user.id, "cleared")
    return cart
