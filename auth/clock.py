"""
auth/clock.py -- Injectable time source.

Components that reason about expiry take a `clock` callable instead of calling
datetime.now() themselves, so tests can move time deterministically.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timezone

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    """Timezone-aware UTC now. The default Clock."""
    return datetime.now(timezone.utc)
