import hashlib
import hmac
from decimal import Decimal
from unittest import mock

import pytest
import requests

from marketplace.core.exceptions import (
    ForbiddenError, NotFoundError, PaymentGatewayError, UserInputError,
)
from marketplace.models.notification import Notification
from marketplace.models.order import PaymentStatus
from marketplace.models.transaction import Transaction
from marketplace.services import cart_service, order_service, transaction_service
from marketplace.services.chapa_client import ChapaClient


@pytest.fixture
def order(db, seller, buyer, make_product, make_batch, future):
    product = make_product(seller)
    make_batch(product, quantity=10, price="30.00", expiry=future(120))
    cart_service.add_to_cart(db, buyer, product.id, 4)
    return order_service.checkout(db, buyer)[0]


def _response(body, status_code=200):
    response = mock.Mock(status_code=status_code)
    response.json.return_value = body
    return response


def _client(*responses, **kwargs):
    session = mock.Mock(spec=requests.Session)
    session.request.side_effect = list(responses)
    client = ChapaClient(secret_key="CHASECK_TEST-abc", base_url="https://chapa.test/v1", session=session, **kwargs)
    return client, session


def _notification_types(db):
    return {(n.user_id, n.type) for n in db.query(Notification).all()}


# ---------------------------------------------------------------------------
# Transaction records
# ---------------------------------------------------------------------------

def test_create_transaction_links_order_and_notifies_both_sides(db, order, buyer, seller):
    tx = transaction_service.create_transaction(
        db, buyer, {"id": "tx_1", "order_id": order.id, "amount": "120.00", "chapa_ref": "CH-1"}
    )
    assert tx.status == PaymentStatus.PAID_HELD_BY_SYSTEM.value
    assert (tx.buyer_id, tx.seller_id) == (buyer.id, seller.id)
    assert tx.paid_at is not None
    assert tx.currency == "ETB"
    db.refresh(order)
    assert order.transaction_id == "tx_1"

    types = _notification_types(db)
    assert (buyer.id, "transaction_created") in types
    assert (seller.id, "transaction_created") in types


def test_create_transaction_validation(db, order, buyer, seller):
    with pytest.raises(UserInputError, match="transaction id is required"):
        transaction_service.create_transaction(db, buyer, {"order_id": order.id, "amount": "10"})
    with pytest.raises(UserInputError, match="greater than 0"):
        transaction_service.create_transaction(db, buyer, {"id": "tx_0", "order_id": order.id, "amount": "0"})
    with pytest.raises(UserInputError, match="must be a number"):
        transaction_service.create_transaction(db, buyer, {"id": "tx_0", "order_id": order.id, "amount": "ten"})
    with pytest.raises(ForbiddenError):
        transaction_service.create_transaction(db, seller, {"id": "tx_0", "order_id": order.id, "amount": "10"})
    with pytest.raises(NotFoundError):
        transaction_service.create_transaction(db, buyer, {"id": "tx_0", "order_id": 999, "amount": "10"})

    transaction_service.create_transaction(db, buyer, {"id": "tx_dup", "order_id": order.id, "amount": "10"})
    with pytest.raises(UserInputError, match="already exists"):
        transaction_service.create_transaction(db, buyer, {"id": "tx_dup", "order_id": order.id, "amount": "10"})


def test_transaction_visibility(db, order, buyer, seller, make_user, admin):
    transaction_service.create_transaction(db, buyer, {"id": "tx_v", "order_id": order.id, "amount": "120"})
    assert transaction_service.get_transaction(db, seller, "tx_v").id == "tx_v"
    assert transaction_service.get_transaction(db, admin, "tx_v").id == "tx_v"
    with pytest.raises(ForbiddenError):
        transaction_service.get_transaction(db, make_user(), "tx_v")
    with pytest.raises(NotFoundError):
        transaction_service.get_transaction(db, buyer, "tx_missing")

    assert [t.id for t in transaction_service.list_by_order(db, seller, order.id)] == ["tx_v"]
    assert [t.id for t in transaction_service.list_by_user(db, buyer.id)] == ["tx_v"]
    assert transaction_service.list_by_user(db, buyer.id, status="REFUNDED") == []
    with pytest.raises(ForbiddenError):
        transaction_service.list_by_status(db, buyer, "PAID_HELD_BY_SYSTEM")
    assert len(transaction_service.list_by_status(db, admin, "PAID_HELD_BY_SYSTEM")) == 1


def test_lookup_by_gateway_reference(db, order, buyer):
    transaction_service.create_transaction(
        db, buyer, {"id": "tx_ref_1", "order_id": order.id, "amount": "120", "chapa_ref": "APx77"}
    )
    assert transaction_service.get_by_chapa_ref(db, "APx77").id == "tx_ref_1"
    assert transaction_service.get_by_chapa_ref(db, "unknown") is None


def test_summaries_are_scoped_to_the_caller(db, order, buyer, make_user, admin):
    transaction_service.create_transaction(db, buyer, {"id": "tx_s", "order_id": order.id, "amount": "120"})
    stranger = make_user()
    assert transaction_service.transaction_summaries(db, stranger) == []
    # A non-admin cannot widen the scope with user_id
    assert transaction_service.transaction_summaries(db, stranger, {"user_id": buyer.id}) == []

    rows = transaction_service.transaction_summaries(db, admin, {"min_amount": 100, "max_amount": 200})
    assert [r["transaction_id"] for r in rows] == ["tx_s"]
    assert transaction_service.transaction_summaries(db, admin, {"min_amount": 500}) == []


def test_stats_count_settled_amount(db, order, buyer, seller, admin):
    transaction_service.create_transaction(db, buyer, {"id": "tx_a", "order_id": order.id, "amount": "120"})
    transaction_service.update_transaction_status(db, admin, "tx_a", "RELEASED_TO_SELLER")

    stats = transaction_service.transaction_stats(db, seller.id)
    assert stats["total"] == 1
    assert stats[PaymentStatus.RELEASED_TO_SELLER.value] == 1
    assert stats[PaymentStatus.REFUNDED.value] == 0
    assert Decimal(str(stats["completed_amount"])) == Decimal("120")

    with pytest.raises(ForbiddenError):
        transaction_service.update_transaction_status(db, buyer, "tx_a", "REFUNDED")


def test_order_status_change_syncs_the_transaction(db, order, buyer, seller):
    transaction_service.create_transaction(
        db, buyer, {"id": "tx_sync", "order_id": order.id, "amount": "120", "status": "PROCESSING"}
    )
    order_service.update_status(db, seller, order.id, "CONFIRMED")
    tx = db.get(Transaction, "tx_sync")
    assert tx.status == PaymentStatus.PAID_HELD_BY_SYSTEM.value
    assert tx.paid_at is not None


# ---------------------------------------------------------------------------
# Gateway client
# ---------------------------------------------------------------------------

def test_initialize_payment_sends_order_metadata(db, order, buyer):
    client, session = _client(
        _response({"status": "success", "data": {"checkout_url": "https://checkout.chapa.test/abc"}})
    )
    result = transaction_service.initialize_order_payment(db, client, buyer, order.id, "Abebe", "Kebede")

    assert result["checkout_url"] == "https://checkout.chapa.test/abc"
    assert result["tx_ref"].startswith(f"tx_{order.id}_")
    method, url = session.request.call_args.args
    payload = session.request.call_args.kwargs["json"]
    assert (method, url) == ("POST", "https://chapa.test/v1/transaction/initialize")
    assert payload["amount"] == "120.00"
    assert payload["meta"]["order_id"] == order.id
    assert payload["meta"]["seller_id"] == order.seller_id
    assert session.request.call_args.kwargs["headers"]["Authorization"] == "Bearer CHASECK_TEST-abc"


def test_initialize_payment_only_for_the_buyer_of_an_unpaid_order(db, order, buyer, seller):
    client, _ = _client()
    with pytest.raises(ForbiddenError):
        transaction_service.initialize_order_payment(db, client, seller, order.id, "X")
    order_service.update_status(db, seller, order.id, "CONFIRMED")
    with pytest.raises(UserInputError, match="already"):
        transaction_service.initialize_order_payment(db, client, buyer, order.id, "X")


def test_gateway_refusal_surfaces_its_message():
    client, _ = _client(_response({"status": "failed", "message": "Invalid currency"}, status_code=400))
    with pytest.raises(PaymentGatewayError, match="Invalid currency"):
        client.verify_payment("tx_x")


def test_timeouts_are_retried(monkeypatch):
    monkeypatch.setattr("marketplace.services.chapa_client.time.sleep", lambda _: None)
    client, session = _client(
        requests.Timeout(),
        _response({"status": "success", "data": {"status": "success", "amount": "10"}}),
    )
    assert client.verify_payment("tx_r") == {"status": "success", "amount": "10"}
    assert session.request.call_count == 2


def test_timeouts_give_up_after_retries(monkeypatch):
    monkeypatch.setattr("marketplace.services.chapa_client.time.sleep", lambda _: None)
    client, session = _client(requests.Timeout(), requests.Timeout(), requests.Timeout())
    with pytest.raises(PaymentGatewayError, match="timed out"):
        client.verify_payment("tx_r")
    assert session.request.call_count == ChapaClient.MAX_RETRIES + 1


def test_unconfigured_gateway_refuses_requests():
    client = ChapaClient(secret_key="", session=mock.Mock(spec=requests.Session))
    assert client.is_available() is False
    with pytest.raises(PaymentGatewayError, match="not configured"):
        client.verify_payment("tx_1")


def test_webhook_signature():
    client = ChapaClient(secret_key="k", webhook_secret="whsec_test")
    body = b'{"tx_ref": "tx_1", "status": "success"}'
    digest = hmac.new(b"whsec_test", body, hashlib.sha256).hexdigest()

    assert client.verify_webhook_signature(body, f"sha256={digest}") is True
    assert client.verify_webhook_signature(body, "sha256=deadbeef") is False
    assert client.verify_webhook_signature(body, None) is False
    assert ChapaClient(secret_key="k", webhook_secret="").verify_webhook_signature(body, None) is True


# ---------------------------------------------------------------------------
# Verification and webhooks
# ---------------------------------------------------------------------------

def test_verified_payment_moves_order_to_processing(db, order, buyer, seller):
    client, _ = _client(
        _response({"status": "success", "data": {
            "status": "success", "amount": "120.00", "currency": "ETB", "reference": "APqx9", "method": "telebirr",
        }})
    )
    tx = transaction_service.verify_order_payment(db, client, buyer, order.id, "tx_paid")

    assert tx.status == PaymentStatus.PROCESSING.value
    assert tx.chapa_ref == "APqx9"
    assert tx.payment_method == "telebirr"
    db.refresh(order)
    assert order.payment_status == PaymentStatus.PROCESSING.value
    assert order.transaction_id == "tx_paid"

    order_service.update_status(db, seller, order.id, "CONFIRMED")
    db.refresh(tx)
    assert tx.status == PaymentStatus.PAID_HELD_BY_SYSTEM.value
    assert (buyer.id, "payment") in _notification_types(db)


def test_underpayment_is_rejected(db, order):
    with pytest.raises(UserInputError, match="less than order total"):
        transaction_service.record_verified_payment(db, order.id, "tx_low", {"status": "success", "amount": "50"})
    assert db.query(Transaction).count() == 0


def test_unsuccessful_verification_is_rejected(db, order):
    with pytest.raises(PaymentGatewayError):
        transaction_service.record_verified_payment(db, order.id, "tx_p", {"status": "pending", "amount": "120"})


def test_webhook_success_and_replay(db, order):
    payload = {"tx_ref": "tx_hook", "status": "success", "amount": "120.00", "meta": {"order_id": order.id}}
    assert transaction_service.handle_webhook(db, payload) == {"received": True, "handled": True}
    assert transaction_service.handle_webhook(db, payload) == {"received": True, "handled": True}
    assert db.query(Transaction).count() == 1


def test_successful_webhook_needs_a_tx_ref(db, order):
    with pytest.raises(UserInputError, match="tx_ref is required"):
        transaction_service.handle_webhook(db, {"status": "success", "amount": "120.00", "meta": {"order_id": order.id}})
    assert db.query(Transaction).count() == 0


def test_webhook_failure_marks_payment_failed(db, order, buyer):
    payload = {"tx_ref": "tx_fail", "status": "failed", "meta": {"order_id": order.id}}
    assert transaction_service.handle_webhook(db, payload)["handled"] is True
    db.refresh(order)
    assert order.payment_status == PaymentStatus.FAILED.value
    urgent = db.query(Notification).filter_by(user_id=buyer.id, type="payment").one()
    assert urgent.priority == "urgent"


def test_webhook_without_order_is_ignored(db):
    assert transaction_service.handle_webhook(db, {"tx_ref": "tx_x", "status": "success"}) == {
        "received": True,
        "handled": False,
    }
