"""
P&L aggregation: exact in-memory summaries and two interchangeable
``Aggregator`` implementations for dashboard statistics.

- ``summarize``: daily/monthly buckets for a bounded set of trades
- ``ExactAggregator``: loads the trades in range and computes in memory
- ``PushedDownAggregator``: delegates to repository aggregate queries

Both aggregators normalize every row with ``pnl.to_reporting`` before
summing, round totals half-up to cents, and break best-period ties in favour
of the earliest period, so they agree on any data set.
"""

from abc import ABC, abstractmethod
from collections import defaultdict
from datetime import date, timedelta
from decimal import Decimal
from typing import Callable, Dict, Iterable, List, NamedTuple, Optional

from .models import Currency, PeriodAggregate, PnlBucket, PnlSummary, Trade, YearMonth
from .pnl import pnl_percent, reporting_notional, reporting_pnl, sum_money
from .repository import DateRange, TradeRepository


class Totals(NamedTuple):
    trade_count: int
    total_pnl: Decimal
    total_notional: Optional[Decimal]

    @property
    def pnl_percent(self) -> Optional[Decimal]:
        return pnl_percent(self.total_pnl, self.total_notional)


def _day_label(trade: Trade) -> str:
    return trade.closed_at.isoformat()


def _month_label(trade: Trade) -> str:
    return str(YearMonth.of(trade.closed_at))


def _totals(trades: List[Trade], rate: Decimal, reporting_currency: Currency) -> Totals:
    if not trades:
        return Totals(0, sum_money([]), None)
    return Totals(
        trade_count=len(trades),
        total_pnl=sum_money(reporting_pnl(t, rate, reporting_currency) for t in trades),
        total_notional=sum_money(reporting_notional(t, rate, reporting_currency) for t in trades),
    )


def _buckets(
    trades: Iterable[Trade],
    label: Callable[[Trade], str],
    rate: Decimal,
    reporting_currency: Currency,
) -> List[PnlBucket]:
    """Group trades by label; newest period first."""
    groups: Dict[str, List[Trade]] = defaultdict(list)
    for trade in trades:
        groups[label(trade)].append(trade)

    buckets = []
    for period in sorted(groups, reverse=True):
        totals = _totals(groups[period], rate, reporting_currency)
        buckets.append(PnlBucket(period, totals.total_pnl, totals.trade_count, totals.pnl_percent))
    return buckets


def best_bucket(buckets: Iterable[PnlBucket]) -> Optional[PnlBucket]:
    """Highest P&L bucket; on equal P&L the earliest period wins."""
    best = None
    for bucket in buckets:
        if best is None or bucket.pnl > best.pnl or (bucket.pnl == best.pnl and bucket.period < best.period):
            best = bucket
    if best is None:
        return None
    return PnlBucket(best.period, best.pnl, best.trades, None)


def summarize(
    trades: List[Trade],
    rate: Decimal,
    rate_as_of: date,
    reporting_currency: Currency = Currency.USD,
) -> PnlSummary:
    """Exact summary of a bounded trade set in the reporting currency.

    Args:
        trades: Trades in any order (already filtered to the wanted window)
        rate: Reporting units per secondary unit
        rate_as_of: Effective date of the rate, echoed in the result
        reporting_currency: Currency totals are normalized into

    Returns:
        PnlSummary with totals, daily buckets (YYYY-MM-DD) and monthly
        buckets (YYYY-MM), both sorted most recent first
    """
    totals = _totals(trades, rate, reporting_currency)
    return PnlSummary(
        total_pnl=totals.total_pnl,
        trade_count=totals.trade_count,
        pnl_percent=totals.pnl_percent,
        daily=_buckets(trades, _day_label, rate, reporting_currency),
        monthly=_buckets(trades, _month_label, rate, reporting_currency),
        rate=rate,
        rate_as_of=rate_as_of,
    )


class Aggregator(ABC):
    """Statistics over one user's trades, optionally restricted to [start, end)."""

    def __init__(self, repository: TradeRepository, reporting_currency: Currency = Currency.USD):
        self.repository = repository
        self.reporting_currency = reporting_currency

    @abstractmethod
    def totals(self, user_id: str, rate: Decimal, date_range: DateRange = None) -> Totals:
        pass

    @abstractmethod
    def best_day(self, user_id: str, rate: Decimal, date_range: DateRange = None) -> Optional[PnlBucket]:
        pass

    @abstractmethod
    def best_month(self, user_id: str, rate: Decimal, date_range: DateRange = None) -> Optional[PnlBucket]:
        pass

    def latest_closed_at(self, user_id: str) -> Optional[date]:
        return self.repository.latest_closed_at(user_id)


class ExactAggregator(Aggregator):
    """Materializes the trades in range and aggregates them in memory."""

    def _load(self, user_id: str, date_range: DateRange) -> List[Trade]:
        if date_range is None:
            return self.repository.find_all_for_user(user_id)
        start, end = date_range
        if end <= start:
            return []
        return self.repository.find_by_user_and_date_range(user_id, start, end - timedelta(days=1))

    def totals(self, user_id: str, rate: Decimal, date_range: DateRange = None) -> Totals:
        return _totals(self._load(user_id, date_range), rate, self.reporting_currency)

    def best_day(self, user_id: str, rate: Decimal, date_range: DateRange = None) -> Optional[PnlBucket]:
        trades = self._load(user_id, date_range)
        return best_bucket(_buckets(trades, _day_label, rate, self.reporting_currency))

    def best_month(self, user_id: str, rate: Decimal, date_range: DateRange = None) -> Optional[PnlBucket]:
        trades = self._load(user_id, date_range)
        return best_bucket(_buckets(trades, _month_label, rate, self.reporting_currency))


def _to_bucket(row: Optional[PeriodAggregate]) -> Optional[PnlBucket]:
    if row is None or row.period is None or row.pnl is None:
        return None
    return PnlBucket(row.period, sum_money([row.pnl]), row.trades, None)


class PushedDownAggregator(Aggregator):
    """Asks the repository for counts, sums and best periods; loads no trades."""

    def totals(self, user_id: str, rate: Decimal, date_range: DateRange = None) -> Totals:
        count = self.repository.count(user_id, date_range)
        total_pnl = sum_money([self.repository.sum_pnl(user_id, rate, date_range)])
        raw_notional = self.repository.sum_notional(user_id, rate, date_range)
        total_notional = sum_money([raw_notional]) if raw_notional is not None else None
        return Totals(count, total_pnl, total_notional)

    def best_day(self, user_id: str, rate: Decimal, date_range: DateRange = None) -> Optional[PnlBucket]:
        return _to_bucket(self.repository.best_day(user_id, rate, date_range))

    def best_month(self, user_id: str, rate: Decimal, date_range: DateRange = None) -> Optional[PnlBucket]:
        return _to_bucket(self.repository.best_month(user_id, rate, date_range))
