import pytest

from marketplace.core.exceptions import InvalidStatusTransitionError, UserInputError
from marketplace.models.order import OrderStatus, PaymentStatus
from marketplace.services.order_status import (
    TRANSITIONS, check_transition, determine_payment_status, is_terminal, is_valid_transition,
    parse_status, to_api,
)

S = OrderStatus
P = PaymentStatus


@pytest.mark.parametrize("current,new", [
    (S.PENDING_CONFIRMATION, S.CONFIRMED),
    (S.PENDING_CONFIRMATION, S.REJECTED_BY_SELLER),
    (S.CONFIRMED, S.PREPARING),
    (S.PREPARING, S.READY_FOR_PICKUP),
    (S.PREPARING, S.DELIVERED),
    (S.READY_FOR_PICKUP, S.PICKUP_SCHEDULED),
    (S.PICKUP_SCHEDULED, S.PICKUP_CONFIRMED),
    (S.PICKUP_CONFIRMED, S.COMPLETED),
    (S.DELIVERED, S.DISPUTED),
    (S.DISPUTED, S.RESOLVED),
])
def test_listed_transitions_are_allowed(current, new):
    assert is_valid_transition(current, new)
    assert check_transition(current, new) == new


def test_every_unlisted_transition_is_rejected():
    for current in S:
        for new in S:
            if new in TRANSITIONS[current]:
                continue
            with pytest.raises(InvalidStatusTransitionError) as exc:
                check_transition(current, new)
            assert exc.value.status_code == 409
            assert f"from {current.value} to {new.value}" in exc.value.message


def test_terminal_statuses():
    assert {s for s in S if is_terminal(s)} == {S.REJECTED_BY_SELLER, S.CANCELLED, S.RESOLVED}


def test_status_spellings_are_interchangeable():
    assert parse_status("PICKUP_CONFIRMED") == S.PICKUP_CONFIRMED
    assert parse_status("pickup_confirmed") == S.PICKUP_CONFIRMED
    assert parse_status("pickup-confirmed") == S.PICKUP_CONFIRMED
    assert to_api("rejected-by-seller") == "REJECTED_BY_SELLER"
    with pytest.raises(UserInputError):
        parse_status("SHIPPED")


@pytest.mark.parametrize("new,current,expected", [
    (S.CONFIRMED, P.PENDING, P.PAID_HELD_BY_SYSTEM),
    (S.CONFIRMED, P.PROCESSING, P.PAID_HELD_BY_SYSTEM),
    (S.PICKUP_CONFIRMED, P.PAID_HELD_BY_SYSTEM, P.RELEASED_TO_SELLER),
    (S.DELIVERED, P.PAID_HELD_BY_SYSTEM, P.RELEASED_TO_SELLER),
    (S.CANCELLED, P.PAID_HELD_BY_SYSTEM, P.REFUNDED),
    (S.REJECTED_BY_SELLER, P.PAID_HELD_BY_SYSTEM, P.REFUNDED),
    (S.CANCELLED, P.PENDING, P.PENDING),
    (S.PREPARING, P.PAID_HELD_BY_SYSTEM, P.PAID_HELD_BY_SYSTEM),
    (S.DELIVERED, P.PENDING, P.PENDING),
])
def test_payment_status_follows_order_status(new, current, expected):
    assert determine_payment_status(new, current) == expected
