"""End-to-end demo of the trade journal.

Shows:
1. Loading configuration and logging
2. Opening the SQLite store and warming the exchange rate cache
3. Recording stock and option trades in USD and CAD
4. Exact monthly summary and pushed-down dashboard stats
5. Running the daily refresh task for a moment
"""
import asyncio
import sys
from datetime import date
from decimal import Decimal
from pathlib import Path

# Add parent directory to path so we can import tradebook
sys.path.insert(0, str(Path(__file__).parent.parent))

from tradebook.config import AppConfig
from tradebook.exchange_rate import ExchangeRateCache
from tradebook.logging_setup import logger, setup_logging
from tradebook.models import AssetType, Currency, OptionType, TradeDirection, TradeRequest
from tradebook.persistence_sqlite import SQLitePersistence
from tradebook.scheduler import RateRefreshScheduler
from tradebook.trade_service import TradeService

USER = "demo-user"


async def main():
    setup_logging(log_file="tradebook.log", level="INFO", enable_console=True)
    logger.info("=== Trade Journal Demo ===")

    config_file = Path(__file__).parent.parent / "config.yaml"
    if config_file.exists():
        config = AppConfig.from_yaml(str(config_file))
        logger.info(f"Loaded config from {config_file}")
    else:
        config = AppConfig()
        logger.info("Using default configuration")

    store = SQLitePersistence(Path(config.persistence.db_path))
    rates = ExchangeRateCache.from_config(config.fx, store)
    rates.startup()
    logger.info(f"Rate {rates.current_rate()} as of {rates.as_of_date()} ({rates.state.value})")

    service = TradeService(store.trades, rates, max_page_size=config.listing.max_page_size)

    service.create_trade(
        TradeRequest(
            symbol="msft",
            asset_type=AssetType.STOCK,
            direction=TradeDirection.LONG,
            quantity=10,
            entry_price=Decimal("410.00"),
            exit_price=Decimal("418.50"),
            fees=Decimal("1.00"),
            margin_rate=Decimal("7.5"),
            opened_at=date(2024, 5, 1),
            closed_at=date(2024, 5, 20),
        ),
        USER,
    )
    service.create_trade(
        TradeRequest(
            symbol="SPY",
            asset_type=AssetType.OPTION,
            direction=TradeDirection.SHORT,
            quantity=2,
            entry_price=Decimal("3.10"),
            exit_price=Decimal("1.10"),
            fees=Decimal("4.00"),
            option_type=OptionType.PUT,
            strike_price=Decimal("500"),
            expiry_date=date(2024, 6, 21),
            opened_at=date(2024, 6, 3),
            closed_at=date(2024, 6, 7),
        ),
        USER,
    )
    service.create_trade(
        TradeRequest(
            symbol="RY",
            asset_type=AssetType.STOCK,
            currency=Currency.CAD,
            direction=TradeDirection.LONG,
            quantity=50,
            entry_price=Decimal("130.00"),
            exit_price=Decimal("134.00"),
            opened_at=date(2024, 6, 10),
            closed_at=date(2024, 6, 14),
        ),
        USER,
    )

    summary = service.summarize(USER, "2024-06")
    logger.info(f"June: total={summary.total_pnl} trades={summary.trade_count} return={summary.pnl_percent}")
    for bucket in summary.daily:
        logger.info(f"  {bucket.period}: {bucket.pnl} ({bucket.trades} trades)")

    stats = service.get_scoped_aggregate_stats(USER, year=2024)
    logger.info(f"2024: total={stats.total_pnl} best_month={stats.best_month} best_day={stats.best_day}")

    scheduler = RateRefreshScheduler(rates, refresh_time=config.fx.refresh_time)
    scheduler.start()
    await asyncio.sleep(0.1)
    await scheduler.stop()

    store.close()
    logger.info("Demo complete")


if __name__ == "__main__":
    asyncio.run(main())
