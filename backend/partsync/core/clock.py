"""
Clock abstraction for the scheduler and sync bookkeeping.

Services take a clock instead of calling datetime.now() directly so tests can
drive schedules with a virtual clock. Times are naive UTC, matching what the
DateTime columns store and return on every supported backend.
"""

import asyncio
from datetime import datetime, timedelta, UTC
from typing import Protocol


class Clock(Protocol):
    """Source of the current time and of waits between scheduler ticks."""

    def now(self) -> datetime:
        ...

    async def sleep(self, seconds: float) -> None:
        ...


class SystemClock:
    """Wall-clock time, naive UTC."""

    def now(self) -> datetime:
        return datetime.now(UTC).replace(tzinfo=None)

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)


class FrozenClock:
    """
    Virtual clock for tests.

    `sleep` advances the clock instead of waiting, then yields control once
    so background tasks can make progress.
    """

    def __init__(self, start: datetime):
        self._now = start

    def now(self) -> datetime:
        return self._now

    def advance(self, delta: timedelta) -> None:
        self._now = self._now + delta

    def set(self, value: datetime) -> None:
        self._now = value

    async def sleep(self, seconds: float) -> None:
        self._now = self._now + timedelta(seconds=seconds)
        await asyncio.sleep(0)
