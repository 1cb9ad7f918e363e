from datetime import date
from decimal import Decimal
from pathlib import Path

import pytest

from tradebook.exchange_rate import ExchangeRateCache
from tradebook.models import AssetType, Currency, OptionType, TradeDirection, TradeRequest
from tradebook.persistence_sqlite import SQLitePersistence
from tradebook.quote_sources import InMemoryQuoteSource
from tradebook.trade_service import TradeService

USER_ID = "user-1"


def make_request(**overrides) -> TradeRequest:
    """A valid one-day USD stock trade; override any field."""
    fields = dict(
        symbol="AAPL",
        asset_type=AssetType.STOCK,
        currency=Currency.USD,
        direction=TradeDirection.LONG,
        quantity=10,
        entry_price=Decimal("100.00"),
        exit_price=Decimal("110.00"),
        fees=Decimal("0"),
        opened_at=date(2024, 1, 10),
        closed_at=date(2024, 1, 10),
    )
    fields.update(overrides)
    return TradeRequest(**fields)


def make_option_request(**overrides) -> TradeRequest:
    fields = dict(
        symbol="SPY",
        asset_type=AssetType.OPTION,
        option_type=OptionType.CALL,
        strike_price=Decimal("500"),
        expiry_date=date(2024, 6, 30),
    )
    fields.update(overrides)
    return make_request(**fields)


@pytest.fixture
def store(tmp_path: Path):
    p = SQLitePersistence(tmp_path / "trades.db")
    yield p
    p.close()


@pytest.fixture
def rates(store):
    # No live source: the cache stays on its fallback rate
    return ExchangeRateCache(InMemoryQuoteSource(None), store.rates, fallback_rate=Decimal("0.75"))


@pytest.fixture
def service(store, rates):
    return TradeService(store.trades, rates)
