"""
Storage contracts consumed by the engine.

Date ranges on aggregate queries are half-open: ``start <= closed_at < end``.
Aggregate sums apply the per-row currency rule before summing: rows in the
secondary currency are multiplied by ``rate`` and rounded half-up to cents,
rows already in the reporting currency pass through.
"""

from abc import ABC, abstractmethod
from datetime import date
from decimal import Decimal
from typing import List, Optional, Tuple

from .models import Currency, PeriodAggregate, Trade
from .quote_sources import RateQuote

DateRange = Optional[Tuple[date, date]]


class TradeRepository(ABC):
    """Trade storage with pushed-down aggregate queries."""

    @abstractmethod
    def save(self, trade: Trade) -> Trade:
        """Insert or update a trade."""
        pass

    @abstractmethod
    def delete(self, trade: Trade) -> None:
        pass

    @abstractmethod
    def find_by_id_and_user(self, trade_id: str, user_id: str) -> Optional[Trade]:
        """Return the trade only if it exists and belongs to user_id."""
        pass

    @abstractmethod
    def find_all_for_user(self, user_id: str) -> List[Trade]:
        """All trades, closed_at descending then creation order descending."""
        pass

    @abstractmethod
    def find_by_user_and_date_range(self, user_id: str, start: date, end: date) -> List[Trade]:
        """Trades closed within [start, end] inclusive, newest first."""
        pass

    @abstractmethod
    def find_page(
        self,
        user_id: str,
        offset: int,
        limit: int,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> Tuple[List[Trade], int]:
        """One page of trades (inclusive range when given) and the total match count."""
        pass

    @abstractmethod
    def count(self, user_id: str, date_range: DateRange = None) -> int:
        pass

    @abstractmethod
    def sum_pnl(self, user_id: str, rate: Decimal, date_range: DateRange = None) -> Optional[Decimal]:
        """Sum of converted realized P&L, or None when no rows match."""
        pass

    @abstractmethod
    def sum_notional(self, user_id: str, rate: Decimal, date_range: DateRange = None) -> Optional[Decimal]:
        pass

    @abstractmethod
    def best_day(self, user_id: str, rate: Decimal, date_range: DateRange = None) -> Optional[PeriodAggregate]:
        """Day with the highest converted P&L; ties go to the earliest day."""
        pass

    @abstractmethod
    def best_month(self, user_id: str, rate: Decimal, date_range: DateRange = None) -> Optional[PeriodAggregate]:
        """Month (YYYY-MM) with the highest converted P&L; ties go to the earliest month."""
        pass

    @abstractmethod
    def latest_closed_at(self, user_id: str) -> Optional[date]:
        pass


class RateHistoryRepository(ABC):
    """Persisted exchange rates keyed by (base, quote, effective date)."""

    @abstractmethod
    def find_latest(self, base: Currency, quote: Currency) -> Optional[RateQuote]:
        pass

    @abstractmethod
    def find_by_date(self, base: Currency, quote: Currency, effective_date: date) -> Optional[RateQuote]:
        pass

    @abstractmethod
    def upsert(self, base: Currency, quote: Currency, effective_date: date, rate: Decimal) -> None:
        """Update the row for that date in place, or insert a new one."""
        pass
