"""
Order status state machine and the payment status it implies.

Pure lookups, no database access. Stored values are the hyphenated
enum values; the API speaks UPPER_SNAKE_CASE and both directions go
through the converters at the bottom.
"""
from typing import Dict, FrozenSet, Optional

from marketplace.core.exceptions import InvalidStatusTransitionError, UserInputError
from marketplace.models.order import OrderStatus, PaymentStatus

S = OrderStatus

TRANSITIONS: Dict[OrderStatus, FrozenSet[OrderStatus]] = {
    S.PENDING_CONFIRMATION: frozenset({S.CONFIRMED, S.REJECTED_BY_SELLER, S.CANCELLED}),
    S.CONFIRMED: frozenset({S.PREPARING, S.CANCELLED}),
    S.PREPARING: frozenset({S.READY_FOR_PICKUP, S.DELIVERED, S.CANCELLED}),
    S.READY_FOR_PICKUP: frozenset({S.PICKUP_SCHEDULED, S.PICKUP_CONFIRMED, S.DELIVERED, S.CANCELLED}),
    S.PICKUP_SCHEDULED: frozenset({S.PICKUP_CONFIRMED, S.CANCELLED}),
    S.PICKUP_CONFIRMED: frozenset({S.COMPLETED, S.DISPUTED}),
    S.DELIVERED: frozenset({S.COMPLETED, S.DISPUTED}),
    S.COMPLETED: frozenset({S.DISPUTED}),
    S.DISPUTED: frozenset({S.RESOLVED, S.CANCELLED}),
    S.REJECTED_BY_SELLER: frozenset(),
    S.CANCELLED: frozenset(),
    S.RESOLVED: frozenset(),
}

# Only the seller may accept or reject a new order
SELLER_ONLY = frozenset({S.CONFIRMED, S.REJECTED_BY_SELLER})

# Reaching these moves the purchased stock into the buyer's inventory
TRANSFER_TRIGGERS = frozenset({S.PICKUP_CONFIRMED, S.DELIVERED})

DISPUTABLE_FROM = frozenset({S.PICKUP_CONFIRMED, S.DELIVERED, S.COMPLETED})

# Only an admin settles these
ADMIN_ONLY_FROM = frozenset({S.DISPUTED})


def parse_status(value) -> OrderStatus:
    """Accept ``PENDING_CONFIRMATION``, ``pending_confirmation`` or ``pending-confirmation``."""
    if isinstance(value, OrderStatus):
        return value
    normalized = str(value or "").strip().lower().replace("_", "-")
    try:
        return OrderStatus(normalized)
    except ValueError:
        raise UserInputError(f"Invalid order status: {value}")


def parse_payment_status(value) -> PaymentStatus:
    if isinstance(value, PaymentStatus):
        return value
    normalized = str(value or "").strip().lower().replace("_", "-")
    try:
        return PaymentStatus(normalized)
    except ValueError:
        raise UserInputError(f"Invalid payment status: {value}")


def to_api(value: Optional[str]) -> Optional[str]:
    """``pickup-confirmed`` -> ``PICKUP_CONFIRMED``."""
    if value is None:
        return None
    return str(getattr(value, "value", value)).upper().replace("-", "_")


def is_valid_transition(current, new) -> bool:
    return parse_status(new) in TRANSITIONS.get(parse_status(current), frozenset())


def check_transition(current, new) -> OrderStatus:
    current_status, new_status = parse_status(current), parse_status(new)
    if new_status not in TRANSITIONS[current_status]:
        raise InvalidStatusTransitionError(current_status.value, new_status.value)
    return new_status


def is_terminal(status) -> bool:
    return not TRANSITIONS[parse_status(status)]


def determine_payment_status(new_status, current_payment_status) -> PaymentStatus:
    """
    Payment status implied by moving the order to ``new_status``.

    confirmed: pending/processing -> paid-held-by-system
    pickup-confirmed, delivered: paid-held-by-system -> released-to-seller
    cancelled, rejected-by-seller: paid-held-by-system -> refunded
    anything else leaves the payment status unchanged.
    """
    new_status = parse_status(new_status)
    payment = parse_payment_status(current_payment_status)
    P = PaymentStatus

    if new_status == S.CONFIRMED and payment in (P.PENDING, P.PROCESSING):
        return P.PAID_HELD_BY_SYSTEM
    if new_status in TRANSFER_TRIGGERS and payment == P.PAID_HELD_BY_SYSTEM:
        return P.RELEASED_TO_SELLER
    if new_status in (S.CANCELLED, S.REJECTED_BY_SELLER) and payment == P.PAID_HELD_BY_SYSTEM:
        return P.REFUNDED
    return payment
