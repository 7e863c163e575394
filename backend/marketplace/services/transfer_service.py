"""
Stock transfer after pickup or delivery.

Purchased units become a new batch in the buyer's inventory, under the
buyer's matching product or a fresh copy of the seller's product. The
caller owns the transaction; nothing here commits.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from marketplace.core.exceptions import NotFoundError
from marketplace.models.order import Order, OrderBatchItem
from marketplace.models.product import Batch, Product, ProductType
from marketplace.models.user import User, UserRole
from marketplace.services import notification_service

logger = logging.getLogger(__name__)


def find_existing_buyer_product(db: Session, buyer_id: int, original: Product) -> Optional[Product]:
    q = db.query(Product).filter(
        Product.owner_id == buyer_id,
        Product.name == original.name,
        Product.product_type == original.product_type,
        Product.is_active.is_(True),
    )
    if original.category:
        q = q.filter(Product.category == original.category)
    if original.product_type == ProductType.DRUG.value:
        q = q.filter(
            _same(Product.concentration, original.concentration),
            _same(Product.package_type, original.package_type),
        )
    else:
        q = q.filter(
            _same(Product.brand_name, original.brand_name),
            _same(Product.model_number, original.model_number),
        )
    return q.order_by(Product.id).first()


def _same(column, value):
    return column.is_(None) if value is None else column == value


def copy_product_for_buyer(db: Session, original: Product, buyer: User, order: Order) -> Product:
    copy = Product(
        product_type=original.product_type,
        name=original.name,
        owner_id=buyer.id,
        owner_name=buyer.display_name,
        original_lister_id=original.original_lister_id,
        original_lister_name=original.original_lister_name,
        category=original.category,
        description=original.description,
        image_list=list(original.image_list or []),
        is_active=True,
        transferred_from_id=original.id,
        acquired_via_order_id=order.id,
        last_transfer_at=datetime.now(timezone.utc),
    )
    if original.product_type == ProductType.DRUG.value:
        copy.package_type = original.package_type
        copy.concentration = original.concentration
        copy.requires_prescription = original.requires_prescription
    else:
        copy.brand_name = original.brand_name
        copy.model_number = original.model_number
        copy.warranty_info = original.warranty_info
        copy.spare_part_info = list(original.spare_part_info or [])
    db.add(copy)
    db.flush()
    return copy


def _take_serial_numbers(source: Batch, quantity: int) -> List[str]:
    """Move the first ``quantity`` serial numbers off the seller's batch."""
    serials = list(source.serial_numbers or [])
    taken, source.serial_numbers = serials[:quantity], serials[quantity:]
    return taken


def transfer_batch(db: Session, line: OrderBatchItem, target: Product, buyer: User, order: Order) -> Dict[str, Any]:
    source = line.batch
    if source is None:
        raise NotFoundError(f"Original batch {line.batch_id} not found")

    new_batch = Batch(
        product_id=target.id,
        product_type=target.product_type,
        current_owner_id=buyer.id,
        current_owner_name=buyer.display_name,
        quantity=line.quantity,
        cost_price=line.unit_price,
        selling_price=None,
        source_batch_id=source.id,
        transferred_from_order_id=order.id,
    )
    if target.product_type == ProductType.DRUG.value:
        new_batch.expiry_date = source.expiry_date
        new_batch.manufacturing_date = source.manufacturing_date
        new_batch.lot_number = source.lot_number
        new_batch.size_per_package = source.size_per_package
        new_batch.manufacturer = source.manufacturer
        new_batch.manufacturer_country = source.manufacturer_country
    else:
        new_batch.serial_numbers = _take_serial_numbers(source, line.quantity)
        new_batch.technical_specifications = list(source.technical_specifications or [])
        new_batch.user_manuals = list(source.user_manuals or [])
        new_batch.certification = source.certification

    if source.quantity == 0:
        source.sold_out = True
    db.add(new_batch)
    db.flush()
    return {
        "original_batch_id": source.id,
        "new_batch_id": new_batch.id,
        "transferred_quantity": line.quantity,
        "target_product_id": target.id,
    }


def _settle_original_product(db: Session, original: Product, buyer: User, order: Order, transfer_type: str) -> str:
    now = datetime.now(timezone.utc)
    remaining = (
        db.query(func.coalesce(func.sum(Batch.quantity), 0))
        .filter(Batch.product_id == original.id)
        .scalar()
    )
    if buyer.role == UserRole.HEALTHCARE_FACILITY.value:
        original.is_active = False
        original.deactivated_at = now
        original.deactivated_reason = f"Transferred to healthcare facility {buyer.display_name} via {transfer_type}"
        return "deactivated"
    if remaining == 0:
        original.is_active = False
        original.sold_out = True
        original.deactivated_at = now
        original.deactivated_reason = f"All inventory sold - transferred via {transfer_type}"
        return "sold_out"
    original.last_transfer_at = now
    return "active"


def transfer_order_to_buyer(db: Session, order: Order, transfer_type: str) -> Dict[str, Any]:
    buyer = db.query(User).filter(User.id == order.buyer_id).first()
    if not buyer:
        raise NotFoundError("Buyer not found")

    results = []
    for item in order.items:
        original = db.query(Product).filter(Product.id == item.product_id).first() if item.product_id else None
        if original is None:
            logger.warning(f"Order {order.id}: product {item.product_id} no longer exists, skipping transfer")
            continue

        target = find_existing_buyer_product(db, buyer.id, original)
        is_new = target is None
        if is_new:
            target = copy_product_for_buyer(db, original, buyer, order)
        else:
            target.last_transfer_at = datetime.now(timezone.utc)

        batch_results = [transfer_batch(db, line, target, buyer, order) for line in item.batch_items]
        original_state = _settle_original_product(db, original, buyer, order, transfer_type)

        results.append({
            "order_item_id": item.id,
            "original_product_id": original.id,
            "target_product_id": target.id,
            "is_new_product": is_new,
            "original_product_state": original_state,
            "batch_transfers": batch_results,
        })

    db.flush()
    logger.info(f"Order {order.id}: transferred {len(results)} products to buyer {buyer.id} via {transfer_type}")
    return {
        "order_id": order.id,
        "buyer_id": buyer.id,
        "transfer_type": transfer_type,
        "transferred_items": results,
        "transferred_at": datetime.now(timezone.utc).isoformat(),
    }


def notify_transfer(db: Session, order: Order, summary: Dict[str, Any]) -> None:
    count = len(summary.get("transferred_items", []))
    transfer_type = summary.get("transfer_type")
    notification_service.notify(
        db,
        order.buyer_id,
        "product_transfer",
        f"Products from order {order.order_number} have been added to your inventory",
        {"order_id": order.id, "transfer_type": transfer_type, "transferred_items_count": count},
        "normal",
    )
    notification_service.notify(
        db,
        order.seller_id,
        "product_transfer",
        f"Order {order.order_number} has been completed - products transferred to {order.buyer_name}",
        {"order_id": order.id, "transfer_type": transfer_type, "transferred_items_count": count},
        "normal",
    )
