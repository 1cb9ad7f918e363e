#!/usr/bin/env python
"""Trade history and P&L reporter.

Usage:
    python scripts/trade_history.py --db tradebook.db --user u1 add trade.json
    python scripts/trade_history.py --db tradebook.db --user u1 list --page 0 --size 20
    python scripts/trade_history.py --db tradebook.db --user u1 summary --month 2024-05
    python scripts/trade_history.py --db tradebook.db --user u1 stats --year 2024
    python scripts/trade_history.py --db tradebook.db rate --refresh
"""
import argparse
import json
import sys
from datetime import date
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from tradebook.aggregation import ExactAggregator, PushedDownAggregator
from tradebook.config import AppConfig
from tradebook.errors import TradebookError
from tradebook.exchange_rate import ExchangeRateCache
from tradebook.logging_setup import setup_logging
from tradebook.models import TradeRequest
from tradebook.persistence_sqlite import SQLitePersistence
from tradebook.trade_service import TradeService


def fmt_percent(value):
    return f"{value}%" if value is not None else "n/a"


def print_buckets(title, buckets):
    print(f"\n=== {title} ===")
    print(f"{'Period':<12} {'P&L':>14} {'Trades':>7} {'Return':>10}")
    print("-" * 46)
    for b in buckets:
        print(f"{b.period:<12} {str(b.pnl):>14} {b.trades:>7} {fmt_percent(b.pnl_percent):>10}")


def add_trade(service, user_id, path):
    """Create a trade from a JSON file of request fields."""
    with open(path, "r") as f:
        request = TradeRequest.parse(json.load(f))
    trade = service.create_trade(request, user_id)
    print(f"Created trade {trade.id}: {trade.symbol} realized P&L {trade.realized_pnl} {trade.currency.value}")


def list_trades(service, user_id, page, size, month, day):
    result = service.list_trades(user_id, page=page, size=size, month=month, day=day)
    if not result.items:
        print("No trades found")
        return
    print(f"{'Closed':<11} {'Symbol':<8} {'Type':<7} {'Dir':<6} {'Qty':>6} {'Entry':>10} {'Exit':>10} {'P&L':>12} {'Cur':<4} {'Return':>9}")
    print("-" * 92)
    for t in result.items:
        print(
            f"{t.closed_at.isoformat():<11} {t.symbol:<8} {t.asset_type.value:<7} {t.direction.value:<6} "
            f"{t.quantity:>6} {str(t.entry_price):>10} {str(t.exit_price):>10} {str(t.realized_pnl):>12} "
            f"{t.currency.value:<4} {fmt_percent(service.trade_pnl_percent(t)):>9}"
        )
    print(
        f"\nPage {result.page + 1}/{max(result.total_pages, 1)} "
        f"({result.total_elements} trades, has_next={result.has_next}, has_previous={result.has_previous})"
    )


def summary(service, user_id, month):
    s = service.summarize(user_id, month)
    if s.trade_count == 0:
        print("No completed trades found")
        return
    print("\n=== P&L Summary ===")
    print(f"Total Trades: {s.trade_count}")
    print(f"Total P&L: {s.total_pnl} {service.reporting_currency.value}")
    print(f"Return: {fmt_percent(s.pnl_percent)}")
    print(f"Rate: {s.rate} (as of {s.rate_as_of})")
    print_buckets("Monthly", s.monthly)
    print_buckets("Daily", s.daily)


def stats(service, user_id, year, month, day, scoped):
    if scoped:
        st = service.get_scoped_aggregate_stats(user_id, year=year, month=month, day=day)
    else:
        st = service.get_aggregate_stats(user_id)
    print("\n=== Aggregate Stats ===")
    if st.scoped_year is not None:
        print(f"Year: {st.scoped_year}  Month: {st.scoped_month or '-'}  Day: {st.scoped_day or '-'}")
    print(f"Total Trades: {st.trade_count}")
    print(f"Total P&L: {st.total_pnl} {service.reporting_currency.value}")
    print(f"Return: {fmt_percent(st.pnl_percent)}")
    best_day = f"{st.best_day.period} ({st.best_day.pnl}, {st.best_day.trades} trades)" if st.best_day else "-"
    best_month = f"{st.best_month.period} ({st.best_month.pnl}, {st.best_month.trades} trades)" if st.best_month else "-"
    print(f"Best Day: {best_day}")
    print(f"Best Month: {best_month}")
    print(f"Rate: {st.rate} (as of {st.rate_as_of})")


def main():
    parser = argparse.ArgumentParser(description="Trade history and P&L reporter")
    parser.add_argument("--db", required=True, help="Path to SQLite database")
    parser.add_argument("--config", help="Optional YAML config file")
    parser.add_argument("--user", default="local", help="User id to report on")
    parser.add_argument("--exact", action="store_true", help="Compute stats in memory instead of in SQL")
    parser.add_argument("--verbose", action="store_true", help="Log to stderr")

    sub = parser.add_subparsers(dest="cmd")

    add_cmd = sub.add_parser("add")
    add_cmd.add_argument("file", help="JSON file with trade request fields")

    list_cmd = sub.add_parser("list")
    list_cmd.add_argument("--page", type=int, default=0)
    list_cmd.add_argument("--size", type=int, default=None)
    list_cmd.add_argument("--month", help="YYYY-MM")
    list_cmd.add_argument("--day", type=date.fromisoformat, help="YYYY-MM-DD")

    sum_cmd = sub.add_parser("summary")
    sum_cmd.add_argument("--month", help="YYYY-MM")

    stats_cmd = sub.add_parser("stats")
    stats_cmd.add_argument("--year", type=int)
    stats_cmd.add_argument("--month", help="YYYY-MM")
    stats_cmd.add_argument("--day", type=date.fromisoformat, help="YYYY-MM-DD")
    stats_cmd.add_argument("--all-time", action="store_true", help="Unscoped stats over the whole history")

    rate_cmd = sub.add_parser("rate")
    rate_cmd.add_argument("--refresh", action="store_true", help="Fetch a fresh rate before printing")

    args = parser.parse_args()

    config = AppConfig.from_yaml(args.config) if args.config else AppConfig()
    setup_logging(log_file=None, level=config.persistence.log_level, enable_console=args.verbose)

    persistence = SQLitePersistence(Path(args.db))
    rates = ExchangeRateCache.from_config(config.fx, persistence)
    # Reports use the last persisted rate; only `rate --refresh` goes to the network.
    rates.load_latest_from_history()

    aggregator_cls = ExactAggregator if args.exact else PushedDownAggregator
    service = TradeService(
        persistence.trades,
        rates,
        aggregator_cls(persistence.trades, rates.quote_currency),
        max_page_size=config.listing.max_page_size,
    )

    try:
        if args.cmd == "add":
            add_trade(service, args.user, args.file)
        elif args.cmd == "list":
            size = args.size if args.size is not None else config.listing.default_page_size
            list_trades(service, args.user, args.page, size, args.month, args.day)
        elif args.cmd == "summary":
            summary(service, args.user, args.month)
        elif args.cmd == "stats":
            stats(service, args.user, args.year, args.month, args.day, scoped=not args.all_time)
        elif args.cmd == "rate":
            if args.refresh:
                rates.refresh()
            snap = rates.snapshot()
            print(f"{rates.base_currency.value}->{rates.quote_currency.value}: {snap.rate} as of {snap.as_of} ({snap.state.value})")
        else:
            parser.print_help()
    except TradebookError as e:
        print(f"Error: {e.reason}")
        sys.exit(2)
    finally:
        persistence.close()


if __name__ == "__main__":
    main()
