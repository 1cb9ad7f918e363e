"""Daily exchange-rate refresh task.

Runs as its own asyncio task, independent of request handling:
- sleeps until the next fixed refresh time in the cache's time zone
- runs the blocking refresh in a worker thread
- logs and swallows any failure, then waits for the next tick (no immediate retry)
"""
import asyncio
from datetime import datetime, time, timedelta
from typing import Callable, Optional

from .exchange_rate import ExchangeRateCache
from .logging_setup import logger


def parse_refresh_time(value: str) -> time:
    """Parse HH:MM (24h)."""
    try:
        hours, minutes = (int(part) for part in value.strip().split(":"))
        return time(hour=hours, minute=minutes)
    except ValueError:
        raise ValueError(f"Invalid refresh time {value!r}, expected HH:MM") from None


class RateRefreshScheduler:
    """Refresh an ExchangeRateCache once a day at a fixed local time."""

    def __init__(
        self,
        cache: ExchangeRateCache,
        refresh_time: str = "02:30",
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.cache = cache
        self.refresh_at = parse_refresh_time(refresh_time)
        self.clock = clock or (lambda: datetime.now(self.cache.zone))
        self.runs = 0
        self._stop_event = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    def next_run_after(self, now: datetime) -> datetime:
        now = now.astimezone(self.cache.zone)
        candidate = datetime.combine(now.date(), self.refresh_at, tzinfo=self.cache.zone)
        if candidate <= now:
            candidate = datetime.combine(now.date() + timedelta(days=1), self.refresh_at, tzinfo=self.cache.zone)
        return candidate

    def seconds_until_next_run(self) -> float:
        now = self.clock()
        return max(0.0, (self.next_run_after(now) - now).total_seconds())

    async def run_once(self) -> bool:
        """One refresh cycle; True if the cached rate changed."""
        self.runs += 1
        try:
            return await asyncio.to_thread(self.cache.refresh)
        except Exception as e:
            logger.error(f"Rate refresh cycle failed | error={e!r}")
            return False

    async def run(self) -> None:
        """Loop until stop() is called."""
        while not self._stop_event.is_set():
            delay = self.seconds_until_next_run()
            logger.debug(f"Next rate refresh in {delay:.0f}s")
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
                break
            except asyncio.TimeoutError:
                pass
            await self.run_once()

    def start(self) -> asyncio.Task:
        """Schedule the loop on the running event loop."""
        self._stop_event.clear()
        self._task = asyncio.create_task(self.run())
        return self._task

    async def stop(self) -> None:
        """Signal the loop to stop and wait for it to finish."""
        self._stop_event.set()
        if self._task is not None:
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
