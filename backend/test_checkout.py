from decimal import Decimal

import pytest

from marketplace.core.exceptions import InsufficientStockError, UserInputError
from marketplace.models.cart import CartBatchItem
from marketplace.models.notification import Notification
from marketplace.models.order import Order, OrderStatus, PaymentStatus
from marketplace.models.product import Batch
from marketplace.services import cart_service, order_service


@pytest.fixture
def two_seller_cart(db, make_user, buyer, make_product, make_batch, future):
    seller_a = make_user(role="importer", company_name="Alpha Import")
    seller_b = make_user(role="supplier", company_name="Beta Supply")
    drug = make_product(seller_a, name="Metformin 500mg")
    glove = make_product(seller_b, product_type="EQUIPMENT", name="Nitrile Gloves")
    a1 = make_batch(drug, quantity=6, price="5.00", expiry=future(40))
    a2 = make_batch(drug, quantity=6, price="6.00", expiry=future(400))
    b1 = make_batch(glove, quantity=20, price="2.50")
    cart_service.add_to_cart(db, buyer, drug.id, 8)
    cart_service.add_to_cart(db, buyer, glove.id, 10)
    return {"seller_a": seller_a, "seller_b": seller_b, "batches": (a1, a2, b1)}


def test_checkout_creates_one_order_per_seller(db, buyer, two_seller_cart):
    orders = order_service.checkout(db, buyer, notes="Deliver to the back gate")

    by_seller = {o.seller_id: o for o in orders}
    assert set(by_seller) == {two_seller_cart["seller_a"].id, two_seller_cart["seller_b"].id}

    alpha = by_seller[two_seller_cart["seller_a"].id]
    assert alpha.status == OrderStatus.PENDING_CONFIRMATION.value
    assert alpha.payment_status == PaymentStatus.PENDING.value
    assert alpha.total_items == 8
    assert Decimal(str(alpha.total_cost)) == Decimal("42.00")
    assert alpha.notes == "Deliver to the back gate"
    assert alpha.order_number.startswith("ORD-")
    assert len({o.order_number for o in orders}) == 2

    beta = by_seller[two_seller_cart["seller_b"].id]
    assert Decimal(str(beta.total_cost)) == Decimal("25.00")


def test_checkout_decrements_stock_once_and_empties_cart(db, buyer, two_seller_cart):
    a1, a2, b1 = two_seller_cart["batches"]
    order_service.checkout(db, buyer)

    db.expire_all()
    assert db.get(Batch, a1.id).quantity == 0
    assert db.get(Batch, a1.id).sold_out is True
    assert db.get(Batch, a2.id).quantity == 4
    assert db.get(Batch, b1.id).quantity == 10

    cart = cart_service.get_cart(db, buyer.id)
    assert cart.items == []
    assert cart.total_items == 0
    assert db.query(CartBatchItem).count() == 0


def test_checkout_for_one_seller_keeps_other_lines(db, buyer, two_seller_cart):
    seller_b = two_seller_cart["seller_b"]
    orders = order_service.checkout(db, buyer, seller_id=seller_b.id)

    assert [o.seller_id for o in orders] == [seller_b.id]
    cart = cart_service.get_cart(db, buyer.id)
    assert cart.total_items == 8
    assert {item.product_name for item in cart.items} == {"Metformin 500mg"}


def test_checkout_snapshots_prices(db, buyer, two_seller_cart):
    a1, a2, _ = two_seller_cart["batches"]
    a1.selling_price = Decimal("99.00")
    db.commit()

    orders = order_service.checkout(db, buyer, seller_id=two_seller_cart["seller_a"].id)
    lines = {line.batch_id: line for item in orders[0].items for line in item.batch_items}
    assert Decimal(str(lines[a1.id].unit_price)) == Decimal("5.00")
    assert Decimal(str(lines[a2.id].subtotal)) == Decimal("12.00")


def test_checkout_fails_atomically_when_stock_ran_out(db, buyer, two_seller_cart):
    _, a2, b1 = two_seller_cart["batches"]
    a2.quantity = 1
    db.commit()

    with pytest.raises(InsufficientStockError):
        order_service.checkout(db, buyer)

    db.expire_all()
    assert db.query(Order).count() == 0
    assert db.get(Batch, b1.id).quantity == 20
    assert cart_service.get_cart(db, buyer.id).total_items == 18


def test_empty_cart_cannot_check_out(db, buyer):
    with pytest.raises(UserInputError, match="Cart is empty"):
        order_service.checkout(db, buyer)


def test_sellers_and_buyer_are_notified(db, buyer, two_seller_cart):
    order_service.checkout(db, buyer)
    seller_a = two_seller_cart["seller_a"]
    new_order = db.query(Notification).filter_by(user_id=seller_a.id, type="new_order").one()
    assert new_order.priority == "high"
    placed = db.query(Notification).filter_by(user_id=buyer.id, type="order_status").all()
    assert len(placed) == 2
