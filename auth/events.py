"""
auth/events.py -- In-process fan-out of account change notifications.

The service calls publish("users-changed") after an admin deletes a user or
resets a password. The admin SSE endpoint subscribes a callback per open
connection and forwards events to the browser.

Delivery is best-effort: a subscriber whose callback raises is logged and
dropped, and the remaining subscribers still receive the event. Nothing is
queued for subscribers that connect later.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import itertools
import logging
import threading
from collections.abc import Callable
from typing import Protocol

logger = logging.getLogger("usergate.events")

USERS_CHANGED = "users-changed"


class EventPublisher(Protocol):
    def publish(self, event: str) -> int: ...


class UserEventBroadcaster:
    """Thread-safe subscriber registry.

    publish() may be called from worker threads (sync route handlers), so the
    subscriber table is guarded by a lock and callbacks are expected to hand
    off to their own event loop (see api/routes/v1/admin.py).
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        self._subscribers: dict[int, Callable[[str], None]] = {}

    def subscribe(self, callback: Callable[[str], None]) -> Callable[[], None]:
        """Register callback; returns a function that unregisters it."""
        with self._lock:
            sub_id = next(self._ids)
            self._subscribers[sub_id] = callback

        def unsubscribe() -> None:
            with self._lock:
                self._subscribers.pop(sub_id, None)

        return unsubscribe

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def publish(self, event: str) -> int:
        """Deliver event to every subscriber. Returns how many accepted it."""
        with self._lock:
            targets = list(self._subscribers.items())
        delivered = 0
        failed: list[int] = []
        for sub_id, callback in targets:
            try:
                callback(event)
            except Exception:
                logger.warning("Dropping event subscriber %d after delivery failure", sub_id, exc_info=True)
                failed.append(sub_id)
            else:
                delivered += 1
        if failed:
            with self._lock:
                for sub_id in failed:
                    self._subscribers.pop(sub_id, None)
        return delivered
