"""Products and batches. Listing for buyers, CRUD for the sellers that own them."""
import logging
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from marketplace.core.audit import AuditLog
from marketplace.core.exceptions import ForbiddenError, NotFoundError, UserInputError
from marketplace.core.permissions import require_approved, require_seller
from marketplace.models.product import Batch, Product, ProductType
from marketplace.models.user import User
from marketplace.services import cart_service
from marketplace.services.pagination import paginate

logger = logging.getLogger(__name__)

COMMON_PRODUCT_FIELDS = {"name", "category", "description", "image_list"}
DRUG_PRODUCT_FIELDS = {"package_type", "concentration", "requires_prescription"}
EQUIPMENT_PRODUCT_FIELDS = {"brand_name", "model_number", "warranty_info", "spare_part_info"}

COMMON_BATCH_FIELDS = {"quantity", "cost_price", "selling_price"}
DRUG_BATCH_FIELDS = {
    "expiry_date", "manufacturing_date", "lot_number", "size_per_package",
    "manufacturer", "manufacturer_country",
}
EQUIPMENT_BATCH_FIELDS = {"serial_numbers", "technical_specifications", "user_manuals", "certification"}

PRODUCT_SORT_FIELDS = {"created_at", "updated_at", "name", "category"}
BATCH_SORT_FIELDS = {"added_at", "expiry_date", "quantity", "selling_price"}


def _check_type(product_type: str) -> str:
    if product_type not in {t.value for t in ProductType}:
        raise UserInputError(f"Invalid product type: {product_type}. Must be DRUG or EQUIPMENT")
    return product_type


def _allowed_fields(common: set, drug: set, equipment: set, product_type: str) -> set:
    return common | (drug if product_type == ProductType.DRUG.value else equipment)


def _strip(data: Dict[str, Any], allowed: set) -> Dict[str, Any]:
    unknown = {k for k, v in data.items() if v is not None} - allowed
    if unknown:
        raise UserInputError(f"Fields not valid for this product type: {', '.join(sorted(unknown))}")
    return {k: (v.strip() if isinstance(v, str) else v) for k, v in data.items() if v is not None}


def _money(value: Any, field: str) -> Optional[Decimal]:
    if value is None:
        return None
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise UserInputError(f"{field} must be a number")
    if amount < 0:
        raise UserInputError(f"{field} cannot be negative")
    return amount


def _order_by(model, sort_by: Optional[str], sort_order: Optional[str], allowed: set, default: str):
    column = getattr(model, sort_by if sort_by in allowed else default)
    ordered = column.asc() if (sort_order or "desc").lower() == "asc" else column.desc()
    return [ordered, model.id.desc()]


# ---------------------------------------------------------------------------
# Products
# ---------------------------------------------------------------------------

def get_product(db: Session, product_id: int) -> Product:
    product = db.query(Product).filter(Product.id == product_id).first()
    if not product:
        raise NotFoundError("Product not found")
    return product


def create_product(db: Session, owner: User, product_type: str, data: Dict[str, Any]) -> Product:
    require_seller(owner)
    require_approved(owner)
    _check_type(product_type)
    fields = _strip(data, _allowed_fields(COMMON_PRODUCT_FIELDS, DRUG_PRODUCT_FIELDS, EQUIPMENT_PRODUCT_FIELDS, product_type))
    if not fields.get("name"):
        raise UserInputError("Product name is required")

    product = Product(
        product_type=product_type,
        owner_id=owner.id,
        owner_name=owner.display_name,
        original_lister_id=owner.id,
        original_lister_name=owner.display_name,
        is_active=True,
        **fields,
    )
    db.add(product)
    db.commit()
    db.refresh(product)
    logger.info(f"Product {product.id} ({product_type}) listed by user {owner.id}")
    return product


def list_products(
    db: Session,
    product_type: Optional[str] = None,
    category: Optional[str] = None,
    search: Optional[str] = None,
    owner_id: Optional[int] = None,
    active_only: bool = True,
    limit: Optional[int] = None,
    offset: Optional[int] = None,
    sort_by: Optional[str] = None,
    sort_order: Optional[str] = None,
) -> List[Product]:
    q = db.query(Product)
    if product_type:
        q = q.filter(Product.product_type == _check_type(product_type))
    if category:
        q = q.filter(Product.category == category)
    if owner_id is not None:
        q = q.filter(Product.owner_id == owner_id)
    if active_only:
        q = q.filter(Product.is_active.is_(True))
    if search and search.strip():
        pattern = f"%{search.strip()}%"
        q = q.filter(
            or_(
                Product.name.ilike(pattern),
                Product.description.ilike(pattern),
                Product.category.ilike(pattern),
                Product.brand_name.ilike(pattern),
            )
        )
    q = q.order_by(*_order_by(Product, sort_by, sort_order, PRODUCT_SORT_FIELDS, "created_at"))
    return paginate(q, limit, offset)


def list_owner_products(db: Session, owner_id: int, **filters) -> List[Product]:
    """Seller's own catalog, inactive products included unless asked otherwise."""
    filters.setdefault("active_only", False)
    return list_products(db, owner_id=owner_id, **filters)


def _require_lister(user: User, product: Product, action: str) -> None:
    if user.is_admin or product.original_lister_id == user.id or product.owner_id == user.id:
        return
    AuditLog.log_access_denied(action, "product", product.id, user.id, "not lister or owner")
    raise ForbiddenError(f"You do not have permission to {action} this product.")


def update_product(db: Session, user: User, product_id: int, data: Dict[str, Any], product_type: Optional[str] = None) -> Product:
    product = get_product(db, product_id)
    if product_type and product.product_type != product_type:
        raise UserInputError(f"Product is not a {product_type.lower()} product.")
    _require_lister(user, product, "update")
    allowed = _allowed_fields(COMMON_PRODUCT_FIELDS, DRUG_PRODUCT_FIELDS, EQUIPMENT_PRODUCT_FIELDS, product.product_type)
    fields = _strip(data, allowed | {"is_active"})
    if "name" in fields and not fields["name"]:
        raise UserInputError("Product name cannot be empty")
    for key, value in fields.items():
        setattr(product, key, value)
    db.commit()
    db.refresh(product)
    return product


def delete_product(db: Session, user: User, product_id: int) -> Product:
    """Soft delete: the product disappears from listings but keeps its history."""
    product = get_product(db, product_id)
    _require_lister(user, product, "delete")
    product.is_active = False
    product.deactivated_reason = "Deleted by owner" if product.owner_id == user.id else "Deleted by admin"
    product.deactivated_at = datetime.now(timezone.utc)
    db.commit()
    db.refresh(product)
    AuditLog.log_action("delete", "product", product.id, user.id)
    return product


# ---------------------------------------------------------------------------
# Batches
# ---------------------------------------------------------------------------

def get_batch(db: Session, batch_id: int) -> Batch:
    batch = db.query(Batch).filter(Batch.id == batch_id).first()
    if not batch:
        raise NotFoundError("Batch not found")
    return batch


def _batch_fields(product_type: str, data: Dict[str, Any]) -> Dict[str, Any]:
    fields = _strip(data, _allowed_fields(COMMON_BATCH_FIELDS, DRUG_BATCH_FIELDS, EQUIPMENT_BATCH_FIELDS, product_type))
    if "quantity" in fields:
        try:
            fields["quantity"] = int(fields["quantity"])
        except (TypeError, ValueError):
            raise UserInputError("quantity must be an integer")
        if fields["quantity"] < 0:
            raise UserInputError("quantity cannot be negative")
    for money_field in ("cost_price", "selling_price"):
        if money_field in fields:
            fields[money_field] = _money(fields[money_field], money_field)
    for date_field in ("expiry_date", "manufacturing_date"):
        value = fields.get(date_field)
        if isinstance(value, str):
            try:
                fields[date_field] = date.fromisoformat(value)
            except ValueError:
                raise UserInputError(f"Invalid {date_field} format. Use YYYY-MM-DD")
    if fields.get("expiry_date") and fields.get("manufacturing_date"):
        if fields["manufacturing_date"] > fields["expiry_date"]:
            raise UserInputError("manufacturing_date cannot be after expiry_date")
    return fields


def create_batch(db: Session, user: User, product_id: int, product_type: str, data: Dict[str, Any]) -> Batch:
    require_approved(user)
    _check_type(product_type)
    product = db.query(Product).filter(Product.id == product_id).first()
    if not product or product.product_type != product_type:
        raise UserInputError(
            f"Product with ID {product_id} not found or product type mismatch (expected {product_type})."
        )
    _require_lister(user, product, "add batches to")

    fields = _batch_fields(product_type, data)
    if product_type == ProductType.DRUG.value and not fields.get("expiry_date"):
        raise UserInputError("expiry_date is required for drug batches")
    if fields.get("selling_price") is None:
        raise UserInputError("selling_price is required")

    batch = Batch(
        product_id=product.id,
        product_type=product_type,
        current_owner_id=user.id,
        current_owner_name=user.display_name,
        quantity=fields.pop("quantity", 0),
        **fields,
    )
    if product_type == ProductType.EQUIPMENT.value and batch.serial_numbers:
        if len(batch.serial_numbers) > batch.quantity:
            raise UserInputError("More serial numbers than units in the batch")
    db.add(batch)
    db.commit()
    db.refresh(batch)
    logger.info(f"Batch {batch.id} added to product {product.id}: {batch.quantity} units")
    return batch


def list_batches(
    db: Session,
    product_id: Optional[int] = None,
    owner_id: Optional[int] = None,
    in_stock_only: bool = False,
    limit: Optional[int] = None,
    offset: Optional[int] = None,
    sort_by: Optional[str] = None,
    sort_order: Optional[str] = None,
) -> List[Batch]:
    q = db.query(Batch)
    if product_id is not None:
        get_product(db, product_id)
        q = q.filter(Batch.product_id == product_id)
    if owner_id is not None:
        q = q.filter(Batch.current_owner_id == owner_id)
    if in_stock_only:
        q = q.filter(Batch.quantity > 0)
    q = q.order_by(*_order_by(Batch, sort_by, sort_order, BATCH_SORT_FIELDS, "added_at"))
    return paginate(q, limit, offset)


def update_batch(db: Session, user: User, batch_id: int, data: Dict[str, Any], product_type: Optional[str] = None) -> Batch:
    batch = get_batch(db, batch_id)
    if product_type and batch.product_type != product_type:
        raise UserInputError(f"Batch does not belong to a {product_type.lower()} product.")
    if not user.is_admin and batch.current_owner_id != user.id:
        AuditLog.log_access_denied("update", "batch", batch.id, user.id, "not current owner")
        raise ForbiddenError("You do not have permission to update this batch.")
    for key, value in _batch_fields(batch.product_type, data).items():
        setattr(batch, key, value)
    batch.sold_out = batch.quantity == 0
    db.commit()
    db.refresh(batch)
    return batch


def delete_batch(db: Session, user: User, batch_id: int) -> bool:
    batch = get_batch(db, batch_id)
    if not user.is_admin and batch.current_owner_id != user.id:
        AuditLog.log_access_denied("delete", "batch", batch.id, user.id, "not current owner")
        raise ForbiddenError("You do not have permission to delete this batch.")
    try:
        cart_service.release_batch(db, batch.id)
        db.delete(batch)
        db.commit()
    except Exception:
        db.rollback()
        raise
    AuditLog.log_action("delete", "batch", batch_id, user.id)
    return True


def stock_for_product(db: Session, product_id: int) -> int:
    return (
        db.query(func.coalesce(func.sum(Batch.quantity), 0))
        .filter(Batch.product_id == product_id)
        .scalar()
    )


# ---------------------------------------------------------------------------
# Inventory alerts
# ---------------------------------------------------------------------------

def low_stock_batches(db: Session, owner_id: int, threshold: int = 20, limit: int = 10) -> List[Dict[str, Any]]:
    rows = (
        db.query(Batch, Product)
        .join(Product, Batch.product_id == Product.id)
        .filter(Batch.current_owner_id == owner_id, Batch.quantity < threshold, Product.is_active.is_(True))
        .order_by(Batch.quantity.asc(), Batch.id)
        .limit(limit)
        .all()
    )
    return [
        {
            "batch_id": b.id,
            "product_id": p.id,
            "product_name": p.name,
            "quantity": b.quantity,
            "status": "Out of Stock" if b.quantity == 0 else "Low Stock",
        }
        for b, p in rows
    ]


def expiring_batches(db: Session, owner_id: int, days: int = 30, limit: int = 10) -> List[Dict[str, Any]]:
    today = date.today()
    alert_date = today + timedelta(days=days)
    rows = (
        db.query(Batch, Product)
        .join(Product, Batch.product_id == Product.id)
        .filter(
            Batch.current_owner_id == owner_id,
            Batch.expiry_date.isnot(None),
            Batch.expiry_date <= alert_date,
            Batch.expiry_date >= today,
            Batch.quantity > 0,
        )
        .order_by(Batch.expiry_date.asc())
        .limit(limit)
        .all()
    )
    return [
        {
            "batch_id": b.id,
            "product_id": p.id,
            "product_name": p.name,
            "expiry_date": b.expiry_date.isoformat(),
            "days_until_expiry": (b.expiry_date - today).days,
            "quantity": b.quantity,
        }
        for b, p in rows
    ]
