"""Unit tests for auth/events.py -- best-effort users-changed fan-out."""

import logging

from auth.events import USERS_CHANGED, UserEventBroadcaster


class TestUserEventBroadcaster:
    def test_publish_reaches_every_subscriber(self, events: UserEventBroadcaster) -> None:
        first: list[str] = []
        second: list[str] = []
        events.subscribe(first.append)
        events.subscribe(second.append)
        assert events.publish(USERS_CHANGED) == 2
        assert first == second == [USERS_CHANGED]

    def test_unsubscribe_stops_delivery(self, events: UserEventBroadcaster) -> None:
        received: list[str] = []
        unsubscribe = events.subscribe(received.append)
        unsubscribe()
        unsubscribe()
        assert events.publish(USERS_CHANGED) == 0
        assert received == []
        assert events.subscriber_count == 0

    def test_failing_subscriber_is_dropped(self, events: UserEventBroadcaster, caplog) -> None:
        """One broken connection does not stop delivery to the others."""

        def broken(event: str) -> None:
            raise RuntimeError("connection closed")

        received: list[str] = []
        events.subscribe(broken)
        events.subscribe(received.append)

        with caplog.at_level(logging.WARNING, logger="usergate.events"):
            assert events.publish(USERS_CHANGED) == 1
        assert received == [USERS_CHANGED]
        assert events.subscriber_count == 1
        assert "Dropping event subscriber" in caplog.text

    def test_publish_without_subscribers(self, events: UserEventBroadcaster) -> None:
        assert events.publish(USERS_CHANGED) == 0
