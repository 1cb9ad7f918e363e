"""External exchange-rate quote sources.

The exchange rate cache depends only on ``QuoteSource.latest_quote()``,
which returns a ``RateQuote`` (reporting units per 1 secondary unit plus the
effective date) or None. Implementations:

- HttpQuoteSource: JSON endpoint listing ``ForeignExchangeRates`` records
- KeyValueQuoteSource: one item per currency pair in the SQLite kv table
- InMemoryQuoteSource: scripted quotes for tests
"""
import json
from abc import ABC, abstractmethod
from collections import deque
from datetime import date, datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Deque, List, Mapping, NamedTuple, Optional, Tuple, Union
from zoneinfo import ZoneInfo

import requests

from .errors import TransientSourceError
from .models import Currency

RATE_PLACES = Decimal("0.000001")


class RateQuote(NamedTuple):
    rate: Decimal
    effective_date: date


class QuoteSource(ABC):
    """Something that can report the latest secondary→reporting rate."""

    @abstractmethod
    def latest_quote(self) -> Optional[RateQuote]:
        """Return the freshest usable quote, or None if the source has none.

        Raises:
            TransientSourceError: The source could not be reached or parsed
        """
        pass


def _currency_code(node: Any) -> str:
    # Some feeds wrap codes as {"Value": "USD"}
    if isinstance(node, Mapping):
        value = node.get("Value")
        if value is not None:
            return str(value).upper()
    return str(node).upper()


def _parse_rate(value: Any) -> Optional[Decimal]:
    """Finite Decimal from a JSON number or numeric string, else None."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        rate = Decimal(str(value))
    elif isinstance(value, str):
        try:
            rate = Decimal(value.strip())
        except InvalidOperation:
            return None
    else:
        return None
    return rate if rate.is_finite() else None


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if not isinstance(value, str):
        return None
    try:
        ts = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


class HttpQuoteSource(QuoteSource):
    """Rate feed over HTTP.

    Expected payload::

        {"ForeignExchangeRates": [
            {"FromCurrency": {"Value": "USD"}, "ToCurrency": {"Value": "CAD"},
             "Rate": "1.25", "ExchangeRateEffectiveTimestamp": "2024-12-05T08:00:00Z"},
            ...
        ]}

    Records for the pair may be quoted either way round. Records quoted as
    reporting→secondary (e.g. USD→CAD, CAD per USD) are inverted to
    reporting-per-secondary. There is no automatic retry: a failed fetch
    waits for the next scheduled refresh.
    """

    def __init__(
        self,
        url: str,
        *,
        base_currency: Currency = Currency.CAD,
        quote_currency: Currency = Currency.USD,
        timeout: float = 2.0,
        zone: str = "America/Los_Angeles",
        session: Optional[requests.Session] = None,
    ):
        self.url = url
        self.base_currency = base_currency
        self.quote_currency = quote_currency
        self.timeout = timeout
        self.zone = ZoneInfo(zone)
        self.session = session or requests.Session()

    def _fetch(self) -> Any:
        try:
            resp = self.session.get(self.url, timeout=(self.timeout, self.timeout))
        except requests.exceptions.RequestException as e:
            raise TransientSourceError(f"Rate request failed: {e}") from e
        if not resp.ok:
            raise TransientSourceError(f"Rate request failed: {resp.status_code}: {resp.text}")
        try:
            return resp.json()
        except ValueError as e:
            raise TransientSourceError(f"Rate response is not JSON: {e}") from e

    def _orientation(self, record: Mapping) -> Optional[bool]:
        """True if quoted secondary→reporting, False if inverted, None if another pair."""
        pair = (_currency_code(record.get("FromCurrency")), _currency_code(record.get("ToCurrency")))
        if pair == (self.base_currency.value, self.quote_currency.value):
            return True
        if pair == (self.quote_currency.value, self.base_currency.value):
            return False
        return None

    def _to_quote(self, record: Mapping, direct: bool, fetched_at: datetime) -> Optional[RateQuote]:
        raw = _parse_rate(record.get("Rate"))
        if raw is None or raw <= 0:
            return None
        rate = raw if direct else Decimal("1") / raw
        ts = _parse_timestamp(record.get("ExchangeRateEffectiveTimestamp")) or fetched_at
        return RateQuote(
            rate=rate.quantize(RATE_PLACES, rounding=ROUND_HALF_UP),
            effective_date=ts.astimezone(self.zone).date(),
        )

    def select_quote(self, payload: Any) -> Optional[RateQuote]:
        """Pick the freshest positive quote for the configured pair from a payload."""
        if not isinstance(payload, Mapping):
            return None
        records = payload.get("ForeignExchangeRates")
        if not isinstance(records, list):
            return None

        fetched_at = datetime.now(self.zone)
        candidates: List[Tuple[datetime, Mapping, bool]] = []
        for record in records:
            if not isinstance(record, Mapping):
                continue
            direct = self._orientation(record)
            if direct is None:
                continue
            ts = _parse_timestamp(record.get("ExchangeRateEffectiveTimestamp")) or fetched_at
            candidates.append((ts, record, direct))

        candidates.sort(key=lambda c: c[0], reverse=True)
        for _, record, direct in candidates:
            quote = self._to_quote(record, direct, fetched_at)
            if quote is not None:
                return quote
        return None

    def latest_quote(self) -> Optional[RateQuote]:
        return self.select_quote(self._fetch())


class KeyValueQuoteSource(QuoteSource):
    """Reads the latest rate from a key/value store, one item per pair.

    The item under key ``CADUSD`` (base + quote) holds JSON::

        {"rate": "0.731500", "effective_date": "2024-12-05"}

    ``store`` is anything with ``kv_get(key) -> Optional[str]``, such as
    ``SQLitePersistence``.
    """

    def __init__(self, store, *, base_currency: Currency = Currency.CAD, quote_currency: Currency = Currency.USD):
        self.store = store
        self.key = f"{base_currency.value}{quote_currency.value}"

    def latest_quote(self) -> Optional[RateQuote]:
        try:
            raw = self.store.kv_get(self.key)
        except Exception as e:
            raise TransientSourceError(f"Unable to read {self.key} from key/value store: {e}") from e
        if not raw:
            return None
        try:
            item = json.loads(raw)
        except ValueError:
            return None
        if not isinstance(item, Mapping):
            return None

        rate = _parse_rate(item.get("rate"))
        if rate is None or rate <= 0:
            return None
        try:
            effective = date.fromisoformat(str(item.get("effective_date")))
        except ValueError:
            return None
        return RateQuote(rate=rate, effective_date=effective)


class InMemoryQuoteSource(QuoteSource):
    """Scripted source: each call pops the next quote, None, or exception.

    Once the script is exhausted the last outcome repeats.
    """

    def __init__(self, *outcomes: Union[RateQuote, None, Exception]):
        self._outcomes: Deque = deque(outcomes)
        self._last: Union[RateQuote, None, Exception] = None
        self.calls = 0

    def push(self, outcome: Union[RateQuote, None, Exception]) -> None:
        self._outcomes.append(outcome)

    def latest_quote(self) -> Optional[RateQuote]:
        self.calls += 1
        if self._outcomes:
            self._last = self._outcomes.popleft()
        if isinstance(self._last, Exception):
            raise self._last
        return self._last
