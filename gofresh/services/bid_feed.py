# gofresh/services/bid_feed.py
#
# In-process change feed for listing activity. Delivery is best effort:
# subscribers get at-least-once, possibly reordered events and are expected
# to re-read state instead of applying the event payload as a delta.

from __future__ import annotations

import itertools
from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import RLock
from typing import Any, Callable, Dict

import structlog

logger = structlog.stdlib.get_logger()


@dataclass(frozen=True)
class FeedEvent:
    listing_id: str
    type: str                     # bid_placed | auction_ended | sold
    payload: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=lambda: datetime.now(tz=timezone.utc))


Subscriber = Callable[[FeedEvent], None]


class BidFeed:
    def __init__(self):
        self._lock = RLock()
        self._subscribers: Dict[str, Dict[int, Subscriber]] = {}
        self._ids = itertools.count(1)

    def subscribe(self, listing_id: str, callback: Subscriber) -> int:
        with self._lock:
            token = next(self._ids)
            self._subscribers.setdefault(listing_id, {})[token] = callback
            return token

    def unsubscribe(self, listing_id: str, token: int) -> None:
        with self._lock:
            subs = self._subscribers.get(listing_id)
            if not subs:
                return
            subs.pop(token, None)
            if not subs:
                self._subscribers.pop(listing_id, None)

    def subscriber_count(self, listing_id: str) -> int:
        with self._lock:
            return len(self._subscribers.get(listing_id, {}))

    def publish(self, event: FeedEvent) -> int:
        """Fan out to current subscribers; a failing subscriber does not stop the rest."""
        with self._lock:
            callbacks = list(self._subscribers.get(event.listing_id, {}).values())

        delivered = 0
        for callback in callbacks:
            try:
                callback(event)
                delivered += 1
            except Exception:
                logger.exception("bid_feed_delivery_failed", listing_id=event.listing_id, event_type=event.type)
        return delivered


bid_feed = BidFeed()
