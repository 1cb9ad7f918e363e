"""
Trade service: the operations the request-handling layer calls.

Writes validate the request, recompute realized P&L from the submitted
fields and save. Reads either summarize a bounded window exactly or ask an
``Aggregator`` for dashboard statistics, always converting through the
exchange rate snapshot taken at the start of the call.

Examples:
    >>> from pathlib import Path
    >>> from tradebook.persistence_sqlite import SQLitePersistence
    >>> from tradebook.exchange_rate import ExchangeRateCache
    >>> from tradebook.quote_sources import InMemoryQuoteSource
    >>> store = SQLitePersistence(Path("journal.db"))
    >>> rates = ExchangeRateCache(InMemoryQuoteSource(None), store.rates)
    >>> service = TradeService(store.trades, rates)
    >>> stats = service.get_aggregate_stats("user-1")
"""

import uuid
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional, Union

from .aggregation import Aggregator, PushedDownAggregator, summarize
from .errors import NotFoundError, ValidationError
from .exchange_rate import ExchangeRateCache
from .logging_setup import logger
from .models import AggregateStats, Page, PnlSummary, Trade, TradeRequest, YearMonth
from .pnl import PnlInputs, calculate_realized_pnl, pnl_percent, trade_notional, validate_request
from .repository import TradeRepository

MIN_PAGE_SIZE = 1
MAX_PAGE_SIZE = 100


def _as_year_month(month: Union[YearMonth, str, None]) -> Optional[YearMonth]:
    if month is None or isinstance(month, YearMonth):
        return month
    try:
        return YearMonth.parse(month)
    except ValueError as e:
        raise ValidationError(str(e)) from e


class TradeService:
    """Create, update, list and report on one user's trades.

    Args:
        repository: Trade storage
        rates: Exchange rate cache consulted for every report
        aggregator: Backs get_aggregate_stats / get_scoped_aggregate_stats
            (defaults to PushedDownAggregator over the repository)
        max_page_size: Upper clamp for list_trades page size
    """

    def __init__(
        self,
        repository: TradeRepository,
        rates: ExchangeRateCache,
        aggregator: Optional[Aggregator] = None,
        *,
        max_page_size: int = MAX_PAGE_SIZE,
    ):
        self.repository = repository
        self.rates = rates
        self.reporting_currency = rates.quote_currency
        self.aggregator = aggregator or PushedDownAggregator(repository, self.reporting_currency)
        self.max_page_size = max(MIN_PAGE_SIZE, min(max_page_size, MAX_PAGE_SIZE))

    # --- Writes ---
    def create_trade(self, request: TradeRequest, user_id: str) -> Trade:
        instrument = validate_request(request)
        now = datetime.now(timezone.utc)
        trade = self._build(str(uuid.uuid4()), user_id, request, instrument, created_at=now, updated_at=now)
        saved = self.repository.save(trade)
        logger.info(f"Trade created | trade_id={saved.id} user_id={user_id} symbol={saved.symbol} realized_pnl={saved.realized_pnl}")
        return saved

    def update_trade(self, trade_id: str, request: TradeRequest, user_id: str) -> Trade:
        existing = self.get_trade(trade_id, user_id)
        instrument = validate_request(request)
        trade = self._build(
            existing.id,
            user_id,
            request,
            instrument,
            created_at=existing.created_at,
            updated_at=datetime.now(timezone.utc),
        )
        saved = self.repository.save(trade)
        logger.info(f"Trade updated | trade_id={saved.id} user_id={user_id} realized_pnl={saved.realized_pnl}")
        return saved

    def delete_trade(self, trade_id: str, user_id: str) -> None:
        trade = self.get_trade(trade_id, user_id)
        self.repository.delete(trade)
        logger.info(f"Trade deleted | trade_id={trade_id} user_id={user_id}")

    def get_trade(self, trade_id: str, user_id: str) -> Trade:
        trade = self.repository.find_by_id_and_user(trade_id, user_id)
        if trade is None:
            raise NotFoundError("Trade not found")
        return trade

    def _build(self, trade_id, user_id, request: TradeRequest, instrument, *, created_at, updated_at) -> Trade:
        trade = Trade(
            id=trade_id,
            user_id=user_id,
            symbol=request.symbol.strip().upper(),
            instrument=instrument,
            currency=request.currency,
            direction=request.direction,
            quantity=request.quantity,
            entry_price=request.entry_price,
            exit_price=request.exit_price,
            fees=request.fees if request.fees is not None else Decimal("0"),
            margin_rate=request.margin_rate if request.margin_rate is not None else Decimal("0"),
            opened_at=request.opened_at,
            closed_at=request.closed_at,
            account_id=request.account_id,
            notes=request.notes,
            created_at=created_at,
            updated_at=updated_at,
        )
        # Always derived from the fields just applied, never from the caller.
        trade.realized_pnl = calculate_realized_pnl(PnlInputs.from_trade(trade))
        return trade

    # --- Listing ---
    def list_trades(
        self,
        user_id: str,
        page: int = 0,
        size: int = 20,
        month: Union[YearMonth, str, None] = None,
        day: Optional[date] = None,
    ) -> Page:
        """Page through trades, most recently closed first.

        A day filter takes precedence over a month filter.
        """
        size = max(MIN_PAGE_SIZE, min(size, self.max_page_size))
        page = max(page, 0)
        month = _as_year_month(month)
        start = end = None
        if day is not None:
            start = end = day
        elif month is not None:
            start, end = month.first_day(), month.last_day()
        items, total = self.repository.find_page(user_id, page * size, size, start, end)
        return Page(items=items, page=page, size=size, total_elements=total)

    @staticmethod
    def trade_pnl_percent(trade: Trade) -> Optional[Decimal]:
        """Return on entry notional for one trade, in its native currency."""
        return pnl_percent(trade.realized_pnl, trade_notional(trade))

    # --- Reports ---
    def summarize(self, user_id: str, month: Union[YearMonth, str, None] = None) -> PnlSummary:
        """Exact daily/monthly summary over one month, or over all trades."""
        month = _as_year_month(month)
        if month is not None:
            trades = self.repository.find_by_user_and_date_range(user_id, month.first_day(), month.last_day())
        else:
            trades = self.repository.find_all_for_user(user_id)
        snapshot = self.rates.snapshot()
        return summarize(trades, snapshot.rate, snapshot.as_of, self.reporting_currency)

    def get_aggregate_stats(self, user_id: str) -> AggregateStats:
        """Totals, best day and best month over the user's whole history."""
        snapshot = self.rates.snapshot()
        totals = self.aggregator.totals(user_id, snapshot.rate)
        return AggregateStats(
            total_pnl=totals.total_pnl,
            trade_count=totals.trade_count,
            pnl_percent=totals.pnl_percent,
            best_day=self.aggregator.best_day(user_id, snapshot.rate),
            best_month=self.aggregator.best_month(user_id, snapshot.rate),
            rate=snapshot.rate,
            rate_as_of=snapshot.as_of,
        )

    def resolve_scoped_year(
        self,
        user_id: str,
        year: Optional[int] = None,
        month: Optional[YearMonth] = None,
        day: Optional[date] = None,
    ) -> int:
        if year is not None:
            return year
        if month is not None:
            return month.year
        if day is not None:
            return day.year
        latest = self.aggregator.latest_closed_at(user_id)
        if latest is not None:
            return latest.year
        return self.rates.today().year

    def get_scoped_aggregate_stats(
        self,
        user_id: str,
        year: Optional[int] = None,
        month: Union[YearMonth, str, None] = None,
        day: Optional[date] = None,
    ) -> AggregateStats:
        """Statistics for one calendar year.

        Totals and best month cover [Jan 1, Jan 1 next year). Best day is
        pinned to ``day`` when given, otherwise searched within ``month``,
        otherwise within the best month of the year. A day or month outside
        the scoped year yields no best day.
        """
        month = _as_year_month(month)
        scoped_year = self.resolve_scoped_year(user_id, year, month, day)
        year_range = (date(scoped_year, 1, 1), date(scoped_year + 1, 1, 1))

        snapshot = self.rates.snapshot()
        totals = self.aggregator.totals(user_id, snapshot.rate, year_range)
        best_month = self.aggregator.best_month(user_id, snapshot.rate, year_range)

        if month is not None:
            scoped_month = month
        elif day is not None:
            scoped_month = YearMonth.of(day)
        elif best_month is not None:
            scoped_month = YearMonth.parse(best_month.period)
        else:
            scoped_month = None

        day_range = None
        if day is not None:
            day_range = (day, day + timedelta(days=1))
        elif scoped_month is not None:
            day_range = (scoped_month.first_day(), scoped_month.next_month_start())

        best_day = None
        if day_range is not None:
            # best day never leaves the scoped year
            start, end = max(day_range[0], year_range[0]), min(day_range[1], year_range[1])
            if start < end:
                best_day = self.aggregator.best_day(user_id, snapshot.rate, (start, end))

        return AggregateStats(
            total_pnl=totals.total_pnl,
            trade_count=totals.trade_count,
            pnl_percent=totals.pnl_percent,
            best_day=best_day,
            best_month=best_month,
            rate=snapshot.rate,
            rate_as_of=snapshot.as_of,
            scoped_year=scoped_year,
            scoped_month=str(scoped_month) if scoped_month is not None else None,
            scoped_day=day.isoformat() if day is not None else None,
        )
