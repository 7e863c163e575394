from datetime import date, timedelta
from decimal import Decimal

import pytest

from marketplace.core.exceptions import ForbiddenError, InvalidStatusTransitionError, UserInputError
from marketplace.models.notification import Notification
from marketplace.models.order import Order, OrderStatus, PaymentStatus
from marketplace.models.product import Batch, Product
from marketplace.models.transaction import Transaction
from marketplace.services import cart_service, order_service, transaction_service


@pytest.fixture
def place_order(db, seller, make_product, make_batch, future):
    def _place(buyer, quantity=4, stock=10, product_type="DRUG", serials=None):
        product = make_product(seller, product_type=product_type, name=f"Item for {buyer.id}")
        extra = {"serial_numbers": serials} if serials else {}
        batch = make_batch(
            product,
            quantity=stock,
            price="30.00",
            expiry=future(180) if product_type == "DRUG" else None,
            lot_number="LOT-7" if product_type == "DRUG" else None,
            **extra,
        )
        cart_service.add_to_cart(db, buyer, product.id, quantity)
        order = order_service.checkout(db, buyer)[0]
        return order, product, batch

    return _place


def _advance(db, order, *steps):
    for user, status in steps:
        order = order_service.update_status(db, user, order.id, status)
    return order


def test_happy_path_through_pickup_releases_payment_and_transfers_stock(db, seller, buyer, place_order):
    order, product, batch = place_order(buyer, quantity=4)

    order = _advance(
        db, order,
        (seller, "CONFIRMED"),
        (seller, "PREPARING"),
        (seller, "READY_FOR_PICKUP"),
    )
    assert order.payment_status == PaymentStatus.PAID_HELD_BY_SYSTEM.value
    assert order.paid_at is not None
    assert order.ready_for_pickup_date is not None

    order = order_service.confirm_pickup(db, buyer, order.id)
    assert order.status == OrderStatus.PICKUP_CONFIRMED.value
    assert order.payment_status == PaymentStatus.RELEASED_TO_SELLER.value
    assert order.product_transfer_error is None
    assert order.product_transfer_result["transfer_type"] == "pickup"

    copy = db.query(Product).filter(Product.owner_id == buyer.id).one()
    assert copy.name == product.name
    assert copy.transferred_from_id == product.id
    new_batch = db.query(Batch).filter(Batch.current_owner_id == buyer.id).one()
    assert new_batch.quantity == 4
    assert new_batch.selling_price is None
    assert Decimal(str(new_batch.cost_price)) == Decimal("30.00")
    assert new_batch.lot_number == "LOT-7"
    assert new_batch.source_batch_id == batch.id

    db.refresh(product)
    assert product.is_active is True

    order = order_service.update_status(db, buyer, order.id, "COMPLETED")
    assert order.completed_date is not None


def test_repeat_purchase_reuses_buyer_product(db, seller, buyer, place_order):
    first, product, _ = place_order(buyer, quantity=2)
    _advance(db, first, (seller, "CONFIRMED"), (seller, "PREPARING"), (seller, "DELIVERED"))

    cart_service.add_to_cart(db, buyer, product.id, 3)
    second = order_service.checkout(db, buyer)[0]
    _advance(db, second, (seller, "CONFIRMED"), (seller, "PREPARING"), (seller, "DELIVERED"))

    owned = db.query(Product).filter(Product.owner_id == buyer.id).all()
    assert len(owned) == 1
    assert sorted(b.quantity for b in db.query(Batch).filter(Batch.current_owner_id == buyer.id)) == [2, 3]


def test_selling_out_deactivates_seller_product(db, seller, buyer, place_order):
    order, product, _ = place_order(buyer, quantity=5, stock=5)
    _advance(db, order, (seller, "CONFIRMED"), (seller, "PREPARING"), (seller, "DELIVERED"))
    db.refresh(product)
    assert product.is_active is False
    assert product.sold_out is True


def test_healthcare_facility_purchase_deactivates_original(db, seller, facility, place_order):
    order, product, _ = place_order(facility, quantity=2, stock=10)
    _advance(db, order, (seller, "CONFIRMED"), (seller, "PREPARING"), (seller, "DELIVERED"))
    db.refresh(product)
    assert product.is_active is False
    assert "healthcare facility" in product.deactivated_reason


def test_equipment_serial_numbers_move_with_the_units(db, seller, buyer, place_order):
    order, _, batch = place_order(
        buyer, quantity=2, stock=3, product_type="EQUIPMENT", serials=["SN-1", "SN-2", "SN-3"]
    )
    _advance(db, order, (seller, "CONFIRMED"), (seller, "PREPARING"), (seller, "DELIVERED"))
    db.refresh(batch)
    new_batch = db.query(Batch).filter(Batch.current_owner_id == buyer.id).one()
    assert new_batch.serial_numbers == ["SN-1", "SN-2"]
    assert batch.serial_numbers == ["SN-3"]


def test_invalid_transition_writes_nothing(db, seller, buyer, place_order):
    order, _, _ = place_order(buyer)
    with pytest.raises(InvalidStatusTransitionError):
        order_service.update_status(db, seller, order.id, "DELIVERED")
    db.expire_all()
    stored = db.get(Order, order.id)
    assert stored.status == OrderStatus.PENDING_CONFIRMATION.value
    assert stored.delivered_date is None


def test_only_the_seller_confirms(db, buyer, admin, place_order):
    order, _, _ = place_order(buyer)
    with pytest.raises(ForbiddenError):
        order_service.update_status(db, buyer, order.id, "CONFIRMED")
    with pytest.raises(ForbiddenError):
        order_service.update_status(db, admin, order.id, "CONFIRMED")


def test_outsiders_cannot_touch_an_order(db, make_user, buyer, place_order):
    order, _, _ = place_order(buyer)
    stranger = make_user()
    with pytest.raises(ForbiddenError):
        order_service.get_order_for_user(db, stranger, order.id)
    with pytest.raises(ForbiddenError):
        order_service.cancel_order(db, stranger, order.id, "no")


def test_cancel_refunds_held_payment_and_restocks(db, seller, buyer, place_order):
    order, _, batch = place_order(buyer, quantity=4, stock=10)
    order = order_service.update_status(db, seller, order.id, "CONFIRMED")
    transaction_service.create_transaction(
        db, buyer, {"id": "tx_manual_1", "order_id": order.id, "amount": "120.00"}
    )

    order = order_service.cancel_order(db, buyer, order.id, "Found a closer supplier")

    assert order.status == OrderStatus.CANCELLED.value
    assert order.payment_status == PaymentStatus.REFUNDED.value
    assert order.cancelled_by == buyer.id
    assert order.cancellation_reason == "Found a closer supplier"
    assert order.refunded_at is not None
    db.refresh(batch)
    assert batch.quantity == 10
    tx = db.get(Transaction, "tx_manual_1")
    assert tx.status == PaymentStatus.REFUNDED.value
    assert db.query(Notification).filter_by(user_id=seller.id, type="order_status").count() >= 1


def test_rejection_restocks(db, seller, buyer, place_order):
    order, _, batch = place_order(buyer, quantity=3, stock=3)
    db.refresh(batch)
    assert batch.sold_out is True
    order_service.update_status(db, seller, order.id, "REJECTED_BY_SELLER")
    db.refresh(batch)
    assert batch.quantity == 3
    assert batch.sold_out is False


def test_cannot_cancel_after_pickup(db, seller, buyer, place_order):
    order, _, _ = place_order(buyer)
    _advance(db, order, (seller, "CONFIRMED"), (seller, "PREPARING"), (seller, "DELIVERED"))
    with pytest.raises(InvalidStatusTransitionError):
        order_service.cancel_order(db, buyer, order.id, "too late")


def test_dispute_and_admin_resolution(db, seller, buyer, admin, place_order):
    order, _, _ = place_order(buyer)
    with pytest.raises(UserInputError):
        order_service.dispute_order(db, buyer, order.id, "not delivered")

    _advance(db, order, (seller, "CONFIRMED"), (seller, "PREPARING"), (seller, "DELIVERED"))
    with pytest.raises(UserInputError):
        order_service.dispute_order(db, buyer, order.id, "  ")
    order = order_service.dispute_order(db, buyer, order.id, "Two boxes damaged")
    assert order.status == OrderStatus.DISPUTED.value
    assert order.disputed_by == buyer.id

    order = order_service.update_status(db, admin, order.id, "RESOLVED")
    assert order.status == OrderStatus.RESOLVED.value
    assert order.resolved_at is not None


def test_schedule_pickup_notifies_the_other_party(db, seller, buyer, place_order):
    order, _, _ = place_order(buyer)
    _advance(db, order, (seller, "CONFIRMED"), (seller, "PREPARING"), (seller, "READY_FOR_PICKUP"))

    with pytest.raises(UserInputError):
        order_service.schedule_pickup(db, buyer, order.id, date.today() - timedelta(days=1))

    pickup = date.today() + timedelta(days=2)
    order = order_service.schedule_pickup(db, buyer, order.id, pickup)
    assert order.status == OrderStatus.PICKUP_SCHEDULED.value
    assert order.pickup_scheduled_date == pickup
    assert db.query(Notification).filter_by(user_id=seller.id, type="pickup_scheduled").count() == 1


def test_admin_payment_override_and_delete(db, seller, buyer, admin, place_order):
    order, _, _ = place_order(buyer)
    with pytest.raises(ForbiddenError):
        order_service.update_payment_status(db, seller, order.id, "FAILED")

    order = order_service.update_payment_status(db, admin, order.id, "PAID_HELD_BY_SYSTEM", "tx_abc")
    assert order.payment_status == PaymentStatus.PAID_HELD_BY_SYSTEM.value
    assert order.transaction_id == "tx_abc"

    assert order_service.delete_order(db, admin, order.id) is True
    assert db.query(Order).count() == 0


def test_listing_and_summaries(db, seller, buyer, make_user, admin, place_order):
    place_order(buyer)
    other_buyer = make_user(company_name="Other Buyer")
    place_order(other_buyer)

    assert len(order_service.list_buyer_orders(db, buyer.id)) == 1
    assert len(order_service.list_seller_orders(db, seller.id)) == 2
    assert len(order_service.list_seller_orders(db, seller.id, status="CONFIRMED")) == 0
    assert len(order_service.list_orders_by_status(db, admin, "PENDING_CONFIRMATION")) == 2
    with pytest.raises(ForbiddenError):
        order_service.list_orders_by_status(db, buyer)

    rows = order_service.order_summaries(db, buyer)
    assert [r["buyer_name"] for r in rows] == [buyer.display_name]
    assert len(order_service.order_summaries(db, admin, {"seller_id": seller.id})) == 2


def test_only_an_admin_settles_a_dispute(db, seller, buyer, admin, place_order):
    order, _, _ = place_order(buyer)
    _advance(db, order, (seller, "CONFIRMED"), (seller, "PREPARING"), (seller, "DELIVERED"))
    order_service.dispute_order(db, buyer, order.id, "Seal broken on arrival")

    with pytest.raises(ForbiddenError):
        order_service.update_status(db, seller, order.id, "RESOLVED")
    with pytest.raises(ForbiddenError):
        order_service.update_status(db, buyer, order.id, "CANCELLED")
    with pytest.raises(ForbiddenError):
        order_service.cancel_order(db, seller, order.id, "closing it myself")
    db.refresh(order)
    assert order.status == OrderStatus.DISPUTED.value

    order = order_service.update_status(db, admin, order.id, "CANCELLED")
    assert order.status == OrderStatus.CANCELLED.value


def test_disputing_through_update_status_needs_a_reason(db, seller, buyer, place_order):
    order, _, _ = place_order(buyer)
    _advance(db, order, (seller, "CONFIRMED"), (seller, "PREPARING"), (seller, "DELIVERED"))

    with pytest.raises(UserInputError, match="A dispute reason is required"):
        order_service.update_status(db, buyer, order.id, "DISPUTED")
    db.refresh(order)
    assert order.status == OrderStatus.DELIVERED.value

    order = order_service.update_status(db, buyer, order.id, "DISPUTED", reason="Wrong strength delivered")
    assert order.status == OrderStatus.DISPUTED.value
    assert order.dispute_reason == "Wrong strength delivered"
