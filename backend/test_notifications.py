from datetime import datetime, timedelta, timezone

import pytest

from marketplace.core.exceptions import ForbiddenError, NotFoundError, UserInputError
from marketplace.models.user import UserRole
from marketplace.services import notification_service
from marketplace.services.notification_hub import NotificationHub


def test_hub_delivers_to_every_subscription_of_a_user():
    hub = NotificationHub()
    first, second = hub.subscribe(1), hub.subscribe(1)
    other = hub.subscribe(2)

    assert hub.publish(1, "notification", {"id": 10}) == 2
    assert first.get(timeout=0) == {"event": "notification", "data": {"id": 10}}
    assert second.drain() == [{"event": "notification", "data": {"id": 10}}]
    assert other.get(timeout=0) is None

    hub.unsubscribe(first)
    hub.unsubscribe(second)
    assert hub.subscriber_count(1) == 0
    assert hub.publish(1, "notification", {}) == 0


def test_create_notification_publishes_count_and_urgent(db, buyer, channel):
    sub = channel.subscribe(buyer.id)
    notification = notification_service.create_notification(
        db, buyer.id, "payment", "Payment failed", {"order_id": 1}, "urgent", channel=channel
    )

    events = sub.drain()
    assert [e["event"] for e in events] == ["notification", "notification_count_update", "urgent_notification"]
    assert events[0]["data"]["id"] == notification.id
    assert events[1]["data"] == {"count": 1}


def test_create_notification_validation(db, buyer, channel):
    with pytest.raises(UserInputError, match="Invalid priority"):
        notification_service.create_notification(db, buyer.id, "system", "hello", priority="critical", channel=channel)
    with pytest.raises(UserInputError):
        notification_service.create_notification(db, buyer.id, "system", "   ", channel=channel)
    # The safe variant logs instead of raising
    assert notification_service.notify(db, buyer.id, "system", "   ") is None


def test_mark_as_read_only_for_the_owner(db, buyer, seller, channel):
    notification = notification_service.create_notification(db, buyer.id, "system", "Welcome", channel=channel)
    with pytest.raises(ForbiddenError):
        notification_service.mark_as_read(db, seller.id, notification.id, channel=channel)
    with pytest.raises(NotFoundError):
        notification_service.mark_as_read(db, buyer.id, 999, channel=channel)

    read = notification_service.mark_as_read(db, buyer.id, notification.id, channel=channel)
    assert read.is_read is True and read.read_at is not None
    assert notification_service.get_unread_count(db, buyer.id) == 0


def test_listing_filters_and_mark_all(db, buyer, channel):
    for priority in ("low", "high", "high"):
        notification_service.create_notification(db, buyer.id, "cart_update", f"{priority} one", priority=priority, channel=channel)
    notification_service.create_notification(db, buyer.id, "rating", "rated", channel=channel)

    assert len(notification_service.list_notifications(db, buyer.id)) == 4
    assert len(notification_service.list_notifications(db, buyer.id, priority="high")) == 2
    assert len(notification_service.list_notifications(db, buyer.id, type="rating")) == 1
    assert len(notification_service.list_notifications(db, buyer.id, limit=2)) == 2

    sub = channel.subscribe(buyer.id)
    assert notification_service.mark_all_as_read(db, buyer.id, channel=channel) == 4
    assert notification_service.list_notifications(db, buyer.id, unread_only=True) == []
    assert sub.get(timeout=0) == {"event": "notification_count_update", "data": {"count": 0}}


def test_stats(db, buyer, channel):
    first = notification_service.create_notification(db, buyer.id, "order_status", "a", priority="high", channel=channel)
    notification_service.create_notification(db, buyer.id, "order_status", "b", channel=channel)
    notification_service.create_notification(db, buyer.id, "payment", "c", priority="urgent", channel=channel)
    notification_service.mark_as_read(db, buyer.id, first.id, channel=channel)

    stats = notification_service.stats(db, buyer.id)
    assert stats["total"] == 3
    assert stats["unread"] == 2
    assert stats["read"] == 1
    assert stats["by_type"] == {"order_status": 2, "payment": 1}
    assert stats["by_priority"] == {"low": 0, "normal": 1, "high": 1, "urgent": 1}


def test_bulk_delete_ignores_other_users(db, buyer, seller, channel):
    mine = [notification_service.create_notification(db, buyer.id, "system", f"n{i}", channel=channel) for i in range(3)]
    theirs = notification_service.create_notification(db, seller.id, "system", "keep", channel=channel)

    deleted = notification_service.bulk_delete(db, buyer.id, [mine[0].id, mine[1].id, theirs.id])
    assert deleted == 2
    assert notification_service.get_unread_count(db, seller.id) == 1
    with pytest.raises(UserInputError):
        notification_service.bulk_delete(db, buyer.id, [])

    assert notification_service.delete_notification(db, buyer.id, mine[2].id) is True
    assert notification_service.list_notifications(db, buyer.id) == []


def test_send_bulk_and_by_role(db, make_user, channel):
    facilities = [make_user(role=UserRole.HEALTHCARE_FACILITY.value) for _ in range(3)]
    make_user(role=UserRole.IMPORTER.value)

    created = notification_service.notify_by_role(
        db, UserRole.HEALTHCARE_FACILITY.value, "system", "New cold chain rules apply from Monday"
    )
    assert sorted(n.user_id for n in created) == sorted(u.id for u in facilities)

    sent = notification_service.send_bulk(db, [facilities[0].id, facilities[0].id], "system", "Once", channel=channel)
    assert len(sent) == 1


def test_new_order_priority_follows_threshold(db, seller, buyer):
    small = notification_service.notify_new_order(db, seller.id, 1, buyer.id, "Bole Supplies", [], "100.00")
    large = notification_service.notify_new_order(db, seller.id, 2, buyer.id, "Bole Supplies", [], "25000.00")
    assert small.priority == "high"
    assert large.priority == "urgent"
    assert large.data["urgent_order"] is True


def test_cleanup_removes_only_old_read_notifications(db, buyer, channel):
    old_read = notification_service.create_notification(db, buyer.id, "system", "old read", channel=channel)
    old_unread = notification_service.create_notification(db, buyer.id, "system", "old unread", channel=channel)
    fresh_read = notification_service.create_notification(db, buyer.id, "system", "fresh read", channel=channel)
    long_ago = datetime.now(timezone.utc) - timedelta(days=45)
    old_read.created_at = long_ago
    old_unread.created_at = long_ago
    db.commit()
    notification_service.mark_as_read(db, buyer.id, old_read.id, channel=channel)
    notification_service.mark_as_read(db, buyer.id, fresh_read.id, channel=channel)

    assert notification_service.cleanup_read_older_than(db, days=30) == 1
    remaining = {n.message for n in notification_service.list_notifications(db, buyer.id)}
    assert remaining == {"old unread", "fresh read"}
