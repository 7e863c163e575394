from decimal import Decimal

import pytest

from marketplace.core.exceptions import (
    ForbiddenError, InsufficientStockError, NotFoundError, UserInputError,
)
from marketplace.models.notification import Notification
from marketplace.services import cart_service, catalog_service


def _lines(cart):
    return {(line.batch_id, line.quantity) for item in cart.items for line in item.batch_items}


def _assert_totals_consistent(cart):
    expected_price = sum(
        (Decimal(str(line.unit_price)) * line.quantity for item in cart.items for line in item.batch_items),
        Decimal("0"),
    )
    expected_items = sum(line.quantity for item in cart.items for line in item.batch_items)
    assert Decimal(str(cart.total_price)) == expected_price
    assert cart.total_items == expected_items
    for item in cart.items:
        assert item.total_quantity == sum(line.quantity for line in item.batch_items)


def test_add_to_cart_allocates_earliest_expiry_first(db, seller, buyer, make_product, make_batch, future):
    product = make_product(seller)
    late = make_batch(product, quantity=10, price="20.00", expiry=future(300))
    early = make_batch(product, quantity=4, price="22.00", expiry=future(60))

    cart = cart_service.add_to_cart(db, buyer, product.id, 6)

    assert _lines(cart) == {(early.id, 4), (late.id, 2)}
    assert cart.total_items == 6
    assert Decimal(str(cart.total_price)) == Decimal("128.00")
    item = cart.items[0]
    assert item.product_name == product.name
    assert item.batch_items[0].batch_seller_id == seller.id


def test_repeated_adds_merge_and_respect_units_already_in_cart(db, seller, buyer, make_product, make_batch, future):
    product = make_product(seller)
    first = make_batch(product, quantity=5, expiry=future(30))
    second = make_batch(product, quantity=5, expiry=future(90))

    cart_service.add_to_cart(db, buyer, product.id, 4)
    cart = cart_service.add_to_cart(db, buyer, product.id, 3)

    assert len(cart.items) == 1
    assert _lines(cart) == {(first.id, 5), (second.id, 2)}
    _assert_totals_consistent(cart)


def test_shortage_leaves_cart_untouched_and_warns(db, seller, buyer, make_product, make_batch, future):
    product = make_product(seller)
    make_batch(product, quantity=3, expiry=future(30))
    cart_service.add_to_cart(db, buyer, product.id, 2)

    with pytest.raises(InsufficientStockError) as exc:
        cart_service.add_to_cart(db, buyer, product.id, 5)

    assert exc.value.available == 1
    cart = cart_service.get_cart(db, buyer.id)
    assert cart.total_items == 2
    warnings = db.query(Notification).filter_by(user_id=buyer.id, type="low_stock_warning").all()
    assert len(warnings) == 1
    assert warnings[0].priority == "high"


def test_transferred_stock_without_price_is_not_sold(db, seller, buyer, make_product, make_batch):
    product = make_product(seller)
    make_batch(product, quantity=10, price=None)
    with pytest.raises(InsufficientStockError):
        cart_service.add_to_cart(db, buyer, product.id, 1)


def test_sellers_cannot_buy_their_own_products(db, seller, make_product, make_batch):
    product = make_product(seller)
    make_batch(product)
    with pytest.raises(UserInputError):
        cart_service.add_to_cart(db, seller, product.id, 1)


def test_unapproved_users_cannot_use_the_cart(db, make_user, seller, make_product, make_batch):
    pending = make_user(approved=False)
    product = make_product(seller)
    make_batch(product)
    with pytest.raises(ForbiddenError):
        cart_service.add_to_cart(db, pending, product.id, 1)
    with pytest.raises(ForbiddenError):
        cart_service.update_cart_batch_item(db, pending, product.id, 1, 1)
    with pytest.raises(ForbiddenError):
        cart_service.remove_product_from_cart(db, pending, product.id)
    with pytest.raises(ForbiddenError):
        cart_service.remove_batch_from_cart(db, pending, product.id, 1)
    with pytest.raises(ForbiddenError):
        cart_service.clear_cart(db, pending)


def test_add_specific_batch_checks_ownership_and_stock(db, seller, buyer, make_product, make_batch, future):
    product = make_product(seller)
    other = make_product(seller, name="Ceftriaxone 1g")
    batch = make_batch(product, quantity=4, expiry=future(200))
    foreign = make_batch(other, quantity=4, expiry=future(200))

    cart = cart_service.add_specific_batch_to_cart(db, buyer, product.id, batch.id, 3)
    assert _lines(cart) == {(batch.id, 3)}

    with pytest.raises(UserInputError, match="Batch does not belong to the specified product"):
        cart_service.add_specific_batch_to_cart(db, buyer, product.id, foreign.id, 1)
    with pytest.raises(InsufficientStockError):
        cart_service.add_specific_batch_to_cart(db, buyer, product.id, batch.id, 2)


def test_update_and_remove_keep_totals_consistent(db, seller, buyer, make_product, make_batch, future):
    drug = make_product(seller)
    kit = make_product(seller, product_type="EQUIPMENT", name="Glucometer")
    d1 = make_batch(drug, quantity=5, price="10.00", expiry=future(30))
    d2 = make_batch(drug, quantity=5, price="12.00", expiry=future(60))
    k1 = make_batch(kit, quantity=2, price="150.00")

    cart_service.add_to_cart(db, buyer, drug.id, 7)
    cart = cart_service.add_to_cart(db, buyer, kit.id, 1)
    _assert_totals_consistent(cart)

    cart = cart_service.update_cart_batch_item(db, buyer, drug.id, d2.id, 4)
    _assert_totals_consistent(cart)
    assert _lines(cart) == {(d1.id, 5), (d2.id, 4), (k1.id, 1)}

    cart = cart_service.update_cart_batch_item(db, buyer, drug.id, d1.id, 0)
    assert _lines(cart) == {(d2.id, 4), (k1.id, 1)}

    cart = cart_service.remove_batch_from_cart(db, buyer, kit.id, k1.id)
    assert [item.product_id for item in cart.items] == [drug.id]
    _assert_totals_consistent(cart)

    cart = cart_service.remove_product_from_cart(db, buyer, drug.id)
    assert cart.items == []
    assert cart.total_items == 0
    assert Decimal(str(cart.total_price)) == Decimal("0")


def test_missing_cart_lines_raise_not_found(db, seller, buyer, make_product, make_batch):
    product = make_product(seller)
    batch = make_batch(product)
    with pytest.raises(NotFoundError, match="Product not found in cart"):
        cart_service.update_cart_batch_item(db, buyer, product.id, batch.id, 1)
    cart_service.add_to_cart(db, buyer, product.id, 1)
    with pytest.raises(NotFoundError, match="Batch item not found in cart"):
        cart_service.remove_batch_from_cart(db, buyer, product.id, batch.id + 100)


def test_clear_cart(db, seller, buyer, make_product, make_batch):
    product = make_product(seller)
    make_batch(product)
    cart_service.add_to_cart(db, buyer, product.id, 2)
    cart = cart_service.clear_cart(db, buyer)
    assert cart.items == []
    assert cart.total_items == 0


def test_deleting_a_batch_takes_it_out_of_carts(db, seller, buyer, make_user, make_product, make_batch, future):
    other_buyer = make_user()
    drug = make_product(seller)
    kit = make_product(seller, product_type="EQUIPMENT", name="Pulse oximeter")
    doomed = make_batch(drug, quantity=5, price="10.00", expiry=future(30))
    kept = make_batch(kit, quantity=3, price="40.00")

    cart_service.add_to_cart(db, buyer, drug.id, 3)
    cart_service.add_to_cart(db, buyer, kit.id, 1)
    cart_service.add_to_cart(db, other_buyer, drug.id, 2)

    catalog_service.delete_batch(db, seller, doomed.id)

    cart = cart_service.get_cart(db, buyer.id)
    db.refresh(cart)
    assert [item.product_id for item in cart.items] == [kit.id]
    assert _lines(cart) == {(kept.id, 1)}
    assert cart.total_items == 1
    assert Decimal(str(cart.total_price)) == Decimal("40.00")
    _assert_totals_consistent(cart)

    emptied = cart_service.get_cart(db, other_buyer.id)
    db.refresh(emptied)
    assert emptied.items == []
    assert emptied.total_items == 0
    assert Decimal(str(emptied.total_price)) == Decimal("0")
