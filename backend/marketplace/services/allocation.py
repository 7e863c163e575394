"""
Batch allocation: pick which batches satisfy a requested quantity.

Drugs are served first-expiry-first-out, equipment first-in-first-out.
Pure function over already loaded batches; callers persist the result.
"""
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from marketplace.core.exceptions import InsufficientStockError, UserInputError
from marketplace.models.product import Batch, ProductType


@dataclass
class BatchAllocation:
    batch_id: int
    quantity: int
    unit_price: Decimal
    expiry_date: Optional[date]
    batch_seller_id: int
    batch_seller_name: Optional[str]

    @property
    def subtotal(self) -> Decimal:
        return self.unit_price * self.quantity


def _priority_key(product_type: str):
    if product_type == ProductType.DRUG.value:
        # Batches without an expiry date go last
        return lambda b: (b.expiry_date is None, b.expiry_date or date.max, b.id)
    return lambda b: (b.added_at is None, b.added_at or datetime.max, b.id)


def available_quantity(batch: Batch, reserved: Optional[Dict[int, int]] = None) -> int:
    held = (reserved or {}).get(batch.id, 0)
    return max((batch.quantity or 0) - held, 0)


def allocate(
    batches: Iterable[Batch],
    quantity: int,
    product_type: str,
    reserved: Optional[Dict[int, int]] = None,
) -> List[BatchAllocation]:
    """
    Allocate ``quantity`` units across ``batches``.

    ``reserved`` maps batch id to units already held elsewhere (the caller's
    cart) and is subtracted from each batch before allocating. Raises
    InsufficientStockError without allocating anything when the batches
    cannot cover the request.
    """
    if quantity is None or quantity <= 0:
        raise UserInputError("Quantity must be greater than 0")

    candidates = [b for b in batches if available_quantity(b, reserved) > 0]
    total_available = sum(available_quantity(b, reserved) for b in candidates)
    if total_available < quantity:
        raise InsufficientStockError(requested=quantity, available=total_available)

    allocations: List[BatchAllocation] = []
    remaining = quantity
    for batch in sorted(candidates, key=_priority_key(product_type)):
        if remaining <= 0:
            break
        take = min(available_quantity(batch, reserved), remaining)
        allocations.append(
            BatchAllocation(
                batch_id=batch.id,
                quantity=take,
                unit_price=Decimal(str(batch.selling_price or 0)),
                expiry_date=batch.expiry_date,
                batch_seller_id=batch.current_owner_id,
                batch_seller_name=batch.current_owner_name,
            )
        )
        remaining -= take
    return allocations
