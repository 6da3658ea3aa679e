"""Clock implementations.

Every time-dependent decision (TOTP counters, rate-limit windows, lockout
expiry) reads the time from an injected IClock.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from .ports import IClock


class SystemClock(IClock):
    """Wall-clock time in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FrozenClock(IClock):
    """Manually driven clock for TESTING.

    Example:
        ```python
        clock = FrozenClock(datetime(2024, 1, 1, tzinfo=timezone.utc))
        clock.advance(seconds=45)
        ```
    """

    def __init__(self, start: datetime | None = None) -> None:
        self._now = _as_utc(start or datetime.now(timezone.utc))

    def now(self) -> datetime:
        return self._now

    def set(self, instant: datetime) -> None:
        """Jump to an absolute instant."""
        self._now = _as_utc(instant)

    def advance(self, *, seconds: float = 0, minutes: float = 0) -> datetime:
        """Move the clock forward and return the new instant."""
        self._now += timedelta(seconds=seconds, minutes=minutes)
        return self._now


def _as_utc(instant: datetime) -> datetime:
    # Treat naive datetime as UTC
    if instant.tzinfo is None:
        return instant.replace(tzinfo=timezone.utc)
    return instant.astimezone(timezone.utc)


__all__: list[str] = ["SystemClock", "FrozenClock"]
