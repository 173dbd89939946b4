"""Constants and a frozen clock shared by the test modules."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

TENANT = "tenant-a"
PROPERTY = "prop-1"
CHECKOUT = datetime(2026, 10, 4, 11, 0, tzinfo=UTC)


class FrozenClock:
    """Deterministic clock; tests move it explicitly."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, *, minutes: float = 0, seconds: float = 0) -> datetime:
        self.now = self.now + timedelta(minutes=minutes, seconds=seconds)
        return self.now
