"""
Process-wide cache of the secondary→reporting exchange rate.

The cache holds a single immutable ``RateSnapshot`` (rate + effective date).
Readers dereference it without locking; writers build a new snapshot and
swap the reference, so a reader can never pair the rate from one refresh
with the date from another.

Lifecycle:
    UNINITIALIZED → FALLBACK (constructed with the configured constant)
                  → LIVE (history loaded or a refresh succeeded)

Examples:
    >>> from decimal import Decimal
    >>> from tradebook.quote_sources import InMemoryQuoteSource
    >>> cache = ExchangeRateCache(InMemoryQuoteSource(None), fallback_rate=Decimal("0.732"))
    >>> cache.state
    <CacheState.FALLBACK: 'FALLBACK'>
    >>> cache.current_rate()
    Decimal('0.732')
"""

import threading
from dataclasses import dataclass
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .errors import TransientSourceError
from .logging_setup import logger
from .models import Currency
from .quote_sources import HttpQuoteSource, KeyValueQuoteSource, QuoteSource, RateQuote

FALLBACK_PLACES = Decimal("0.001")
RATE_PLACES = Decimal("0.000001")


class CacheState(str, Enum):
    UNINITIALIZED = "UNINITIALIZED"
    FALLBACK = "FALLBACK"
    LIVE = "LIVE"


@dataclass(frozen=True)
class RateSnapshot:
    """Rate and the date it was confirmed effective, replaced as one unit."""
    rate: Decimal
    as_of: date
    state: CacheState = CacheState.LIVE


def _resolve_zone(zone: str) -> ZoneInfo:
    try:
        return ZoneInfo(zone)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(f"Invalid fx effective zone {zone!r}, falling back to UTC")
        return ZoneInfo("UTC")


class ExchangeRateCache:
    """Cached reporting rate with startup load and best-effort refresh.

    Args:
        source: Where refreshes fetch quotes from
        history: Optional RateHistoryRepository for load/persist
        fallback_rate: Constant used until a real rate is known
        base_currency: Secondary currency (converted from)
        quote_currency: Reporting currency (converted into)
        zone: Time zone that defines "today" and quote effective dates
    """

    def __init__(
        self,
        source: QuoteSource,
        history=None,
        *,
        fallback_rate: Decimal = Decimal("0.732"),
        base_currency: Currency = Currency.CAD,
        quote_currency: Currency = Currency.USD,
        zone: str = "America/Los_Angeles",
    ):
        self.source = source
        self.history = history
        self.base_currency = base_currency
        self.quote_currency = quote_currency
        self.zone = _resolve_zone(zone)
        self.fallback_rate = fallback_rate.quantize(FALLBACK_PLACES, rounding=ROUND_HALF_UP)
        if self.fallback_rate <= 0:
            raise ValueError(f"Fallback rate must be positive, got {fallback_rate}")
        # Serializes writers only; readers never take it.
        self._write_lock = threading.Lock()
        self._snapshot = RateSnapshot(self.fallback_rate, self.today(), CacheState.FALLBACK)

    @classmethod
    def from_config(cls, fx_config, persistence=None) -> "ExchangeRateCache":
        """Build a cache (and its quote source) from an FxConfig.

        ``fx_config.source`` selects ``http`` (default) or ``kv``; the kv
        source and rate history both live in ``persistence`` when given.
        """
        base = Currency(fx_config.base_currency)
        quote = Currency(fx_config.quote_currency)
        source_name = (fx_config.source or "http").strip().lower()
        if source_name == "kv":
            if persistence is None:
                raise ValueError("fx.source 'kv' requires a persistence store")
            source: QuoteSource = KeyValueQuoteSource(persistence, base_currency=base, quote_currency=quote)
        elif source_name == "http":
            source = HttpQuoteSource(
                fx_config.url,
                base_currency=base,
                quote_currency=quote,
                timeout=fx_config.timeout_seconds,
                zone=fx_config.effective_zone,
            )
        else:
            raise ValueError(f"Unknown fx source: {fx_config.source}")
        return cls(
            source,
            history=persistence.rates if persistence is not None else None,
            fallback_rate=fx_config.fallback_rate,
            base_currency=base,
            quote_currency=quote,
            zone=fx_config.effective_zone,
        )

    def today(self) -> date:
        return datetime.now(self.zone).date()

    # --- Reads (lock-free) ---
    def snapshot(self) -> RateSnapshot:
        return self._snapshot

    def current_rate(self) -> Decimal:
        return self._snapshot.rate

    def as_of_date(self) -> date:
        return self._snapshot.as_of

    @property
    def state(self) -> CacheState:
        return self._snapshot.state

    # Names used by the reporting layer for the CAD/USD pair
    cad_to_usd = current_rate
    last_updated_on = as_of_date

    # --- Writes ---
    def _replace(self, rate: Decimal, as_of: date) -> None:
        self._snapshot = RateSnapshot(rate, as_of, CacheState.LIVE)

    def startup(self) -> None:
        """Load the latest persisted rate, then attempt one immediate refresh."""
        logger.info(
            f"Initializing {self.base_currency.value}/{self.quote_currency.value} rate "
            f"with fallback {self.fallback_rate} (source={type(self.source).__name__})"
        )
        self.load_latest_from_history()
        self.refresh()

    def load_latest_from_history(self) -> bool:
        """Replace the snapshot with the newest persisted rate; True if one was found."""
        if self.history is None:
            return False
        try:
            latest = self.history.find_latest(self.base_currency, self.quote_currency)
        except Exception as e:
            logger.warning(f"Unable to load rate history, keeping {self.current_rate()} | error={e}")
            return False
        if latest is None:
            return False
        with self._write_lock:
            self._replace(latest.rate, latest.effective_date)
        logger.info(f"Loaded rate {latest.rate} on {latest.effective_date} from history")
        return True

    def refresh(self) -> bool:
        """Fetch a fresh quote; on success swap the snapshot and persist history.

        Never raises. Returns True if the cached rate was updated.
        """
        pair = f"{self.base_currency.value}/{self.quote_currency.value}"
        try:
            logger.info(f"Refreshing {pair} rate from {type(self.source).__name__}")
            quote = self.source.latest_quote()
        except TransientSourceError as e:
            logger.warning(f"Unable to refresh {pair} rate, keeping cached {self.current_rate()} | error={e.reason}")
            return False
        except Exception as e:
            logger.warning(f"Unexpected error refreshing {pair} rate, keeping cached {self.current_rate()} | error={e!r}")
            return False

        if quote is None or quote.rate is None or quote.rate <= 0:
            logger.warning(f"{pair} source returned no usable rate, keeping cached {self.current_rate()}")
            return False

        rate = quote.rate.quantize(RATE_PLACES, rounding=ROUND_HALF_UP)
        with self._write_lock:
            self._replace(rate, quote.effective_date)
        logger.info(f"{pair} rate updated to {rate} on {quote.effective_date}")
        self._persist(RateQuote(rate, quote.effective_date))
        return True

    def _persist(self, quote: RateQuote) -> None:
        if self.history is None:
            return
        try:
            self.history.upsert(self.base_currency, self.quote_currency, quote.effective_date, quote.rate)
        except Exception as e:
            logger.warning(f"Unable to persist rate history for {quote.effective_date} | error={e}")
