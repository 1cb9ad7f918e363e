"""
Trade P&L & Aggregation Engine.

Tracks closed stock and option trades per user and reports realized P&L in a
single reporting currency:
- Realized P&L per trade with option contract multiplier and margin carrying cost
- CAD/USD normalization through a cached, daily refreshed exchange rate
- Exact daily/monthly summaries for bounded windows
- Pushed-down aggregate statistics (totals, best day, best month) that agree
  with the exact method
- Atomic persistence with SQLite and versioned migrations
- Structured logging via loguru
- Configuration-driven (YAML)

Core Modules:
    models: Trade, instrument variant, request and report types
    pnl: Realized P&L calculator and currency normalizer
    exchange_rate: Exchange rate cache with atomic snapshot replacement
    quote_sources: HTTP / key-value / in-memory rate sources
    scheduler: Daily rate refresh task
    aggregation: Exact and pushed-down aggregators
    trade_service: Write path, listing and reports
    persistence_sqlite: SQLite repositories
    config: Configuration loading

Example:
    >>> from tradebook.config import AppConfig
    >>> from tradebook.exchange_rate import ExchangeRateCache
    >>> from tradebook.persistence_sqlite import SQLitePersistence
    >>> from tradebook.trade_service import TradeService
    >>>
    >>> config = AppConfig()
    >>> store = SQLitePersistence(config.persistence.db_path)
    >>> rates = ExchangeRateCache.from_config(config.fx, store)
    >>> rates.startup()
    >>> service = TradeService(store.trades, rates)
"""

__version__ = "0.1.0"
__all__ = [
    "models",
    "errors",
    "pnl",
    "exchange_rate",
    "quote_sources",
    "scheduler",
    "repository",
    "aggregation",
    "trade_service",
    "persistence_sqlite",
    "db_migrations",
    "config",
    "logging_setup",
]
