"""Test the daily rate refresh task."""
import asyncio
from datetime import date, datetime
from decimal import Decimal
from zoneinfo import ZoneInfo

import pytest

from tradebook.errors import TransientSourceError
from tradebook.exchange_rate import CacheState, ExchangeRateCache
from tradebook.quote_sources import InMemoryQuoteSource, RateQuote
from tradebook.scheduler import RateRefreshScheduler, parse_refresh_time

LA = ZoneInfo("America/Los_Angeles")
QUOTE = RateQuote(Decimal("0.75"), date(2024, 5, 1))


def _cache(*outcomes):
    return ExchangeRateCache(InMemoryQuoteSource(*outcomes), zone="America/Los_Angeles")


def test_parse_refresh_time():
    assert parse_refresh_time("02:30").hour == 2
    assert parse_refresh_time(" 23:05 ").minute == 5
    with pytest.raises(ValueError):
        parse_refresh_time("2:30am")
    with pytest.raises(ValueError):
        parse_refresh_time("25:00")


def test_next_run_is_today_before_refresh_time():
    scheduler = RateRefreshScheduler(_cache(None), "02:30")
    now = datetime(2024, 5, 1, 1, 0, tzinfo=LA)
    assert scheduler.next_run_after(now) == datetime(2024, 5, 1, 2, 30, tzinfo=LA)


def test_next_run_is_tomorrow_after_refresh_time():
    scheduler = RateRefreshScheduler(_cache(None), "02:30")
    now = datetime(2024, 5, 1, 2, 30, tzinfo=LA)
    assert scheduler.next_run_after(now) == datetime(2024, 5, 2, 2, 30, tzinfo=LA)


def test_seconds_until_next_run_uses_clock():
    clock = lambda: datetime(2024, 5, 1, 2, 0, tzinfo=LA)
    scheduler = RateRefreshScheduler(_cache(None), "02:30", clock=clock)
    assert scheduler.seconds_until_next_run() == 1800


@pytest.mark.asyncio
async def test_run_once_refreshes_cache():
    cache = _cache(QUOTE)
    scheduler = RateRefreshScheduler(cache)
    assert await scheduler.run_once() is True
    assert cache.state == CacheState.LIVE
    assert cache.current_rate() == Decimal("0.750000")


@pytest.mark.asyncio
async def test_run_once_survives_source_failure():
    cache = _cache(TransientSourceError("timeout"))
    scheduler = RateRefreshScheduler(cache)
    assert await scheduler.run_once() is False
    assert cache.state == CacheState.FALLBACK


@pytest.mark.asyncio
async def test_run_once_survives_unexpected_error():
    cache = _cache(None)

    def broken_refresh():
        raise RuntimeError("refresh exploded")

    cache.refresh = broken_refresh
    scheduler = RateRefreshScheduler(cache)
    assert await scheduler.run_once() is False
    assert scheduler.runs == 1


class FastScheduler(RateRefreshScheduler):
    """Ticks every few milliseconds instead of once a day."""

    def seconds_until_next_run(self) -> float:
        return 0.01


@pytest.mark.asyncio
async def test_loop_keeps_running_after_failures():
    source = InMemoryQuoteSource(TransientSourceError("down"), TransientSourceError("down"), QUOTE)
    cache = ExchangeRateCache(source)
    scheduler = FastScheduler(cache)

    scheduler.start()
    await asyncio.sleep(0.2)
    await scheduler.stop()

    assert scheduler.runs >= 3
    assert source.calls == scheduler.runs
    assert cache.current_rate() == Decimal("0.750000")


@pytest.mark.asyncio
async def test_stop_before_first_tick():
    scheduler = RateRefreshScheduler(_cache(QUOTE), "02:30")
    scheduler.start()
    await asyncio.sleep(0)
    await asyncio.wait_for(scheduler.stop(), timeout=1.0)
    assert scheduler.runs == 0
