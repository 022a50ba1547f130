"""
tests/test_admin_events.py -- The admin "users-changed" SSE stream.

TestClient cannot read an endless event stream, so these tests await the
route coroutine directly and drive the EventSourceResponse body iterator by
hand. The request is a stub exposing only what the route touches:
app.state.user_events and is_disconnected().

Covers:
  - an event published from a worker thread reaches the stream
  - events beyond the per-connection buffer are dropped
  - closing the stream, or a client disconnect, unsubscribes it
"""

from __future__ import annotations

import asyncio
import threading
from types import SimpleNamespace

from api.routes.v1.admin import _STREAM_BUFFER, events
from auth.events import USERS_CHANGED, UserEventBroadcaster
from auth.models import Role, User

ADMIN = User(username="root", role=Role.ADMIN, id=1)


class _StubRequest:
    def __init__(self, broadcaster: UserEventBroadcaster, disconnected: bool = False) -> None:
        self.app = SimpleNamespace(state=SimpleNamespace(user_events=broadcaster))
        self._disconnected = disconnected

    async def is_disconnected(self) -> bool:
        return self._disconnected


def _publish_from_thread(broadcaster: UserEventBroadcaster, count: int = 1) -> None:
    """Publish like a sync route handler would: from a thread-pool thread."""

    def run() -> None:
        for _ in range(count):
            broadcaster.publish(USERS_CHANGED)

    worker = threading.Thread(target=run)
    worker.start()
    worker.join()


class TestUserEventsStream:
    def test_thread_published_event_reaches_stream(self) -> None:
        broadcaster = UserEventBroadcaster()

        async def scenario() -> dict:
            response = await events(_StubRequest(broadcaster), ADMIN)
            assert broadcaster.subscriber_count == 1
            stream = response.body_iterator
            _publish_from_thread(broadcaster)
            message = await asyncio.wait_for(stream.__anext__(), timeout=5)
            await stream.aclose()
            return message

        message = asyncio.run(scenario())
        assert message == {"event": USERS_CHANGED, "data": "refresh"}
        assert broadcaster.subscriber_count == 0

    def test_overflow_beyond_buffer_is_dropped(self) -> None:
        """A slow client keeps the first events that fit its buffer; the rest are lost."""
        broadcaster = UserEventBroadcaster()

        async def scenario() -> int:
            response = await events(_StubRequest(broadcaster), ADMIN)
            stream = response.body_iterator
            _publish_from_thread(broadcaster, count=_STREAM_BUFFER + 8)
            received = 0
            try:
                while True:
                    await asyncio.wait_for(stream.__anext__(), timeout=0.5)
                    received += 1
            except asyncio.TimeoutError:
                pass
            await stream.aclose()
            return received

        assert asyncio.run(scenario()) == _STREAM_BUFFER
        assert broadcaster.subscriber_count == 0

    def test_disconnected_client_unsubscribes(self) -> None:
        broadcaster = UserEventBroadcaster()

        async def scenario() -> list:
            response = await events(_StubRequest(broadcaster, disconnected=True), ADMIN)
            return [message async for message in response.body_iterator]

        assert asyncio.run(scenario()) == []
        assert broadcaster.subscriber_count == 0
