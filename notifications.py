import logging
import threading
from typing import Callable, List, Protocol

from schemas import BidEvent

log = logging.getLogger(__name__)

Subscriber = Callable[[BidEvent], None]


class NotificationSink(Protocol):
    def publish(self, event: BidEvent) -> None:
        ...


class NotificationHub:
    """
    In-process fan-out of bid events.

    Delivery is at-most-once: a subscriber that raises misses that event
    and stays subscribed. Clients recover state by reading the listing and
    its bids.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._subscribers: List[Subscriber] = []

    def subscribe(self, subscriber: Subscriber) -> Callable[[], None]:
        """Register a callback; returns a function that unsubscribes it."""
        with self._lock:
            self._subscribers.append(subscriber)

        def unsubscribe() -> None:
            with self._lock:
                if subscriber in self._subscribers:
                    self._subscribers.remove(subscriber)

        return unsubscribe

    def publish(self, event: BidEvent) -> None:
        with self._lock:
            targets = list(self._subscribers)
        for subscriber in targets:
            try:
                subscriber(event)
            except Exception:
                log.exception("Subscriber %r failed for %s on listing %s", subscriber, event.type, event.listing_id)

    def __len__(self) -> int:
        with self._lock:
            return len(self._subscribers)
