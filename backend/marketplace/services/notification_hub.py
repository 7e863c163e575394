"""
In-process publish/subscribe for live user events.

Each subscriber gets its own queue, fed by ``publish`` from whatever thread
committed the change. Delivery is best effort: nothing is persisted here
and the hub does not span processes.
"""
import logging
import queue
import threading
from collections import defaultdict
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


class Subscription:
    def __init__(self, user_id: int):
        self.user_id = user_id
        self._queue: "queue.SimpleQueue[Dict[str, Any]]" = queue.SimpleQueue()

    def put(self, message: Dict[str, Any]) -> None:
        self._queue.put(message)

    def get(self, timeout: Optional[float] = None) -> Optional[Dict[str, Any]]:
        """Next event, or None when nothing arrives within ``timeout``."""
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def drain(self) -> List[Dict[str, Any]]:
        events = []
        while True:
            event = self.get(timeout=0)
            if event is None:
                return events
            events.append(event)


class NotificationHub:
    def __init__(self):
        self._lock = threading.Lock()
        self._subscribers: Dict[int, List[Subscription]] = defaultdict(list)

    def subscribe(self, user_id: int) -> Subscription:
        subscription = Subscription(user_id)
        with self._lock:
            self._subscribers[user_id].append(subscription)
        logger.debug(f"User {user_id} subscribed ({self.subscriber_count(user_id)} open)")
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            subs = self._subscribers.get(subscription.user_id, [])
            if subscription in subs:
                subs.remove(subscription)
            if not subs:
                self._subscribers.pop(subscription.user_id, None)

    def subscriber_count(self, user_id: int) -> int:
        with self._lock:
            return len(self._subscribers.get(user_id, []))

    def publish(self, user_id: int, event: str, payload: Dict[str, Any]) -> int:
        """Queue ``event`` for every open subscription of ``user_id``. Returns deliveries."""
        with self._lock:
            targets = list(self._subscribers.get(user_id, []))
        for subscription in targets:
            subscription.put({"event": event, "data": payload})
        return len(targets)


hub = NotificationHub()
