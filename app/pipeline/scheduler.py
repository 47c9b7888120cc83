"""
Time primitives — rate limiter and daily scheduler.

Both take their clock and sleep as constructor arguments so jobs can be
driven by a fake clock in tests instead of real sleeps.
"""
import asyncio
import logging
import time
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Optional
from zoneinfo import ZoneInfo

from app.config import SYNC_SCHEDULE_HOUR, SYNC_SCHEDULE_MINUTE, SYNC_SCHEDULE_TIMEZONE

logger = logging.getLogger('pipeline.scheduler')


# ── Rate limiter ──────────────────────────────────────────────────────────────

class RateLimiter:
    """
    Keeps at least `min_interval` seconds between the end of one permit and
    the start of the next.

        async with limiter:
            await do_one_item()
    """

    def __init__(self, min_interval: float,
                 clock: Callable[[], float] = time.monotonic,
                 sleep: Callable[[float], Awaitable] = asyncio.sleep):
        self.min_interval = max(0.0, float(min_interval))
        self._clock = clock
        self._sleep = sleep
        self._last_release: Optional[float] = None
        self._lock = asyncio.Lock()
        self.total_waited = 0.0

    async def acquire(self):
        await self._lock.acquire()
        if self._last_release is None:
            return
        remaining = self._last_release + self.min_interval - self._clock()
        if remaining > 0:
            self.total_waited += remaining
            try:
                await self._sleep(remaining)
            except BaseException:
                self._lock.release()
                raise

    def release(self):
        self._last_release = self._clock()
        self._lock.release()

    async def wait(self):
        """Take and immediately return a permit: spacing without holding the lock."""
        await self.acquire()
        self.release()

    async def __aenter__(self):
        await self.acquire()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self.release()
        return False


# ── Schedules ─────────────────────────────────────────────────────────────────

class DailySchedule:
    """Fires once a day at hour:minute in a fixed timezone."""

    def __init__(self, hour: int = SYNC_SCHEDULE_HOUR, minute: int = SYNC_SCHEDULE_MINUTE,
                 tz: str = SYNC_SCHEDULE_TIMEZONE):
        if not (0 <= hour < 24 and 0 <= minute < 60):
            raise ValueError(f"Invalid schedule time {hour:02d}:{minute:02d}")
        self.hour = hour
        self.minute = minute
        self.tz = ZoneInfo(tz)

    def next_run_after(self, moment: datetime) -> datetime:
        """First firing instant strictly after `moment` (naive values are UTC)."""
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=timezone.utc)
        local = moment.astimezone(self.tz)
        candidate = datetime(local.year, local.month, local.day, self.hour, self.minute, tzinfo=self.tz)
        if candidate <= local:
            next_day = local.date() + timedelta(days=1)
            candidate = datetime(next_day.year, next_day.month, next_day.day,
                                 self.hour, self.minute, tzinfo=self.tz)
        return candidate

    def __repr__(self):
        return f'<DailySchedule {self.hour:02d}:{self.minute:02d} {self.tz.key}>'


# ── Schedulers ────────────────────────────────────────────────────────────────

class Scheduler(ABC):
    """Invokes a callback whenever the schedule says so."""

    @abstractmethod
    def start(self, callback: Callable[[], Awaitable]):
        ...

    @abstractmethod
    def stop(self):
        ...


def _utcnow_aware() -> datetime:
    return datetime.now(timezone.utc)


class AsyncioScheduler(Scheduler):
    """Scheduler running as a task on the current event loop."""

    def __init__(self, schedule: DailySchedule,
                 now: Callable[[], datetime] = _utcnow_aware,
                 sleep: Callable[[float], Awaitable] = asyncio.sleep):
        self.schedule = schedule
        self._now = now
        self._sleep = sleep
        self._task: Optional[asyncio.Task] = None
        self.runs = 0

    async def run(self, callback: Callable[[], Awaitable], iterations: Optional[int] = None):
        """Loop: sleep until the next firing, run callback. Errors are logged, not raised."""
        while iterations is None or self.runs < iterations:
            now = self._now()
            next_run = self.schedule.next_run_after(now)
            delay = max(0.0, (next_run - now).total_seconds())
            logger.info("Next scheduled run at %s (in %.0fs)", next_run.isoformat(), delay)
            await self._sleep(delay)
            self.runs += 1
            try:
                await callback()
            except Exception:
                logger.error("Scheduled callback failed", exc_info=True)

    def start(self, callback):
        if self._task is not None and not self._task.done():
            return self._task
        self._task = asyncio.get_running_loop().create_task(self.run(callback))
        return self._task

    def stop(self):
        if self._task is not None:
            self._task.cancel()
            self._task = None
