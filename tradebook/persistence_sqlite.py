import sqlite3
import threading
from contextlib import contextmanager
from datetime import date, datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Iterator, List, Optional, Tuple

from .models import AssetType, Currency, PeriodAggregate, Trade
from .pnl import notional, to_reporting
from .quote_sources import RateQuote
from .repository import DateRange, RateHistoryRepository, TradeRepository

TRADE_COLUMNS = (
    "id", "user_id", "account_id", "symbol", "asset_type", "currency", "direction",
    "quantity", "entry_price", "exit_price", "fees", "margin_rate", "option_type",
    "strike_price", "expiry_date", "opened_at", "closed_at", "realized_pnl", "notes",
    "created_at", "updated_at",
)

NEWEST_FIRST = "ORDER BY closed_at DESC, created_at DESC, rowid DESC"


# --- SQL functions: the same Decimal rules the in-memory path uses ---

def _sql_to_reporting(amount, currency, rate, reporting):
    if amount is None:
        return None
    converted = to_reporting(Decimal(amount), Currency(currency), Decimal(rate), Currency(reporting))
    return str(converted)


def _sql_notional(entry_price, quantity, asset_type):
    if entry_price is None or quantity is None:
        return None
    return str(notional(AssetType(asset_type), Decimal(entry_price), int(quantity)))


class _DecimalSum:
    """SQL aggregate summing decimal strings exactly; NULL when nothing was summed."""

    def __init__(self):
        self.total = Decimal("0")
        self.seen = False

    def step(self, value):
        if value is None:
            return
        self.total += Decimal(value)
        self.seen = True

    def finalize(self):
        return str(self.total) if self.seen else None


def _register_functions(conn: sqlite3.Connection) -> None:
    conn.create_function("to_reporting", 4, _sql_to_reporting, deterministic=True)
    conn.create_function("trade_notional", 3, _sql_notional, deterministic=True)
    conn.create_aggregate("decimal_sum", 1, _DecimalSum)


def _range_clause(date_range: DateRange) -> Tuple[str, tuple]:
    if date_range is None:
        return "", ()
    start, end = date_range
    return " AND closed_at >= ? AND closed_at < ?", (start.isoformat(), end.isoformat())


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@contextmanager
def write_transaction(conn: sqlite3.Connection, lock: threading.Lock) -> Iterator[sqlite3.Cursor]:
    """One BEGIN IMMEDIATE ... COMMIT on a shared connection.

    Every writer on the connection must pass the same lock; at most one
    write transaction is open at a time.
    """
    with lock:
        cur = conn.cursor()
        try:
            cur.execute("BEGIN IMMEDIATE")
            yield cur
            conn.commit()
        except Exception:
            conn.rollback()
            raise


class SQLiteTradeRepository(TradeRepository):
    """Trades table with aggregate queries evaluated inside SQLite.

    Conversions and sums run as registered SQL functions, so aggregates
    never materialize Trade objects and match the in-memory arithmetic.
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        reporting_currency: Currency = Currency.USD,
        write_lock: Optional[threading.Lock] = None,
    ):
        self.conn = conn
        self.reporting_currency = reporting_currency
        self.write_lock = write_lock or threading.Lock()

    def _rows_to_trades(self, rows) -> List[Trade]:
        return [Trade.from_dict(r) for r in rows]

    # --- Writes ---
    def save(self, trade: Trade) -> Trade:
        """Insert or update; missing timestamps are stamped with the current UTC time."""
        now = datetime.now(timezone.utc)
        if trade.created_at is None:
            trade.created_at = now
        if trade.updated_at is None:
            trade.updated_at = trade.created_at
        data = trade.to_dict()
        values = tuple(data[c] for c in TRADE_COLUMNS)
        placeholders = ", ".join("?" for _ in TRADE_COLUMNS)
        updates = ", ".join(f"{c} = excluded.{c}" for c in TRADE_COLUMNS if c not in ("id", "created_at"))
        with write_transaction(self.conn, self.write_lock) as cur:
            cur.execute(
                f"INSERT INTO trades({', '.join(TRADE_COLUMNS)}) VALUES({placeholders}) "
                f"ON CONFLICT(id) DO UPDATE SET {updates}",
                values,
            )
        return trade

    def delete(self, trade: Trade) -> None:
        with write_transaction(self.conn, self.write_lock) as cur:
            cur.execute("DELETE FROM trades WHERE id = ? AND user_id = ?", (trade.id, trade.user_id))

    # --- Lookups ---
    def find_by_id_and_user(self, trade_id: str, user_id: str) -> Optional[Trade]:
        cur = self.conn.execute("SELECT * FROM trades WHERE id = ? AND user_id = ?", (trade_id, user_id))
        row = cur.fetchone()
        return Trade.from_dict(row) if row else None

    def find_all_for_user(self, user_id: str) -> List[Trade]:
        cur = self.conn.execute(f"SELECT * FROM trades WHERE user_id = ? {NEWEST_FIRST}", (user_id,))
        return self._rows_to_trades(cur.fetchall())

    def find_by_user_and_date_range(self, user_id: str, start: date, end: date) -> List[Trade]:
        cur = self.conn.execute(
            f"SELECT * FROM trades WHERE user_id = ? AND closed_at BETWEEN ? AND ? {NEWEST_FIRST}",
            (user_id, start.isoformat(), end.isoformat()),
        )
        return self._rows_to_trades(cur.fetchall())

    def find_page(
        self,
        user_id: str,
        offset: int,
        limit: int,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> Tuple[List[Trade], int]:
        where = "user_id = ?"
        params: tuple = (user_id,)
        if start is not None and end is not None:
            where += " AND closed_at BETWEEN ? AND ?"
            params += (start.isoformat(), end.isoformat())
        total = self.conn.execute(f"SELECT COUNT(*) FROM trades WHERE {where}", params).fetchone()[0]
        cur = self.conn.execute(
            f"SELECT * FROM trades WHERE {where} {NEWEST_FIRST} LIMIT ? OFFSET ?",
            params + (limit, offset),
        )
        return self._rows_to_trades(cur.fetchall()), total

    def latest_closed_at(self, user_id: str) -> Optional[date]:
        row = self.conn.execute("SELECT MAX(closed_at) FROM trades WHERE user_id = ?", (user_id,)).fetchone()
        return date.fromisoformat(row[0]) if row and row[0] else None

    # --- Pushed-down aggregates ---
    def count(self, user_id: str, date_range: DateRange = None) -> int:
        clause, params = _range_clause(date_range)
        row = self.conn.execute(f"SELECT COUNT(*) FROM trades WHERE user_id = ?{clause}", (user_id,) + params).fetchone()
        return int(row[0])

    def sum_pnl(self, user_id: str, rate: Decimal, date_range: DateRange = None) -> Optional[Decimal]:
        clause, params = _range_clause(date_range)
        row = self.conn.execute(
            f"SELECT decimal_sum(to_reporting(realized_pnl, currency, ?, ?)) FROM trades WHERE user_id = ?{clause}",
            (str(rate), self.reporting_currency.value, user_id) + params,
        ).fetchone()
        return Decimal(row[0]) if row[0] is not None else None

    def sum_notional(self, user_id: str, rate: Decimal, date_range: DateRange = None) -> Optional[Decimal]:
        clause, params = _range_clause(date_range)
        row = self.conn.execute(
            "SELECT decimal_sum(to_reporting(trade_notional(entry_price, quantity, asset_type), currency, ?, ?)) "
            f"FROM trades WHERE user_id = ?{clause}",
            (str(rate), self.reporting_currency.value, user_id) + params,
        ).fetchone()
        return Decimal(row[0]) if row[0] is not None else None

    def _best_period(self, period_expr: str, user_id: str, rate: Decimal, date_range: DateRange) -> Optional[PeriodAggregate]:
        clause, params = _range_clause(date_range)
        # Sums are exact cents, so ordering by their REAL value is exact; ties go to the earliest period.
        row = self.conn.execute(
            f"""
            SELECT period, pnl, trades FROM (
                SELECT {period_expr} AS period,
                       decimal_sum(to_reporting(realized_pnl, currency, ?, ?)) AS pnl,
                       COUNT(*) AS trades
                FROM trades
                WHERE user_id = ?{clause}
                GROUP BY {period_expr}
            )
            ORDER BY CAST(pnl AS REAL) DESC, period ASC
            LIMIT 1
            """,
            (str(rate), self.reporting_currency.value, user_id) + params,
        ).fetchone()
        if row is None or row["period"] is None or row["pnl"] is None:
            return None
        return PeriodAggregate(period=row["period"], pnl=Decimal(row["pnl"]), trades=int(row["trades"]))

    def best_day(self, user_id: str, rate: Decimal, date_range: DateRange = None) -> Optional[PeriodAggregate]:
        return self._best_period("closed_at", user_id, rate, date_range)

    def best_month(self, user_id: str, rate: Decimal, date_range: DateRange = None) -> Optional[PeriodAggregate]:
        return self._best_period("substr(closed_at, 1, 7)", user_id, rate, date_range)


class SQLiteRateHistory(RateHistoryRepository):
    def __init__(self, conn: sqlite3.Connection, write_lock: Optional[threading.Lock] = None):
        self.conn = conn
        self.write_lock = write_lock or threading.Lock()

    def find_latest(self, base: Currency, quote: Currency) -> Optional[RateQuote]:
        row = self.conn.execute(
            "SELECT rate, effective_date FROM exchange_rates WHERE base_currency = ? AND quote_currency = ? "
            "ORDER BY effective_date DESC LIMIT 1",
            (base.value, quote.value),
        ).fetchone()
        if not row:
            return None
        return RateQuote(rate=Decimal(row["rate"]), effective_date=date.fromisoformat(row["effective_date"]))

    def find_by_date(self, base: Currency, quote: Currency, effective_date: date) -> Optional[RateQuote]:
        row = self.conn.execute(
            "SELECT rate, effective_date FROM exchange_rates "
            "WHERE base_currency = ? AND quote_currency = ? AND effective_date = ?",
            (base.value, quote.value, effective_date.isoformat()),
        ).fetchone()
        if not row:
            return None
        return RateQuote(rate=Decimal(row["rate"]), effective_date=date.fromisoformat(row["effective_date"]))

    def upsert(self, base: Currency, quote: Currency, effective_date: date, rate: Decimal) -> None:
        key = (base.value, quote.value, effective_date.isoformat())
        now = _now()
        with write_transaction(self.conn, self.write_lock) as cur:
            cur.execute(
                "UPDATE exchange_rates SET rate = ?, updated_at = ? "
                "WHERE base_currency = ? AND quote_currency = ? AND effective_date = ?",
                (str(rate), now) + key,
            )
            if cur.rowcount == 0:
                cur.execute(
                    "INSERT INTO exchange_rates(base_currency, quote_currency, effective_date, rate, created_at, updated_at) "
                    "VALUES(?, ?, ?, ?, ?, ?)",
                    key + (str(rate), now, now),
                )

    def count(self) -> int:
        return int(self.conn.execute("SELECT COUNT(*) FROM exchange_rates").fetchone()[0])


class SQLitePersistence:
    """Owns the SQLite connection, applies migrations and exposes repositories.

    - ``trades``: SQLiteTradeRepository
    - ``rates``: SQLiteRateHistory
    - ``kv_get`` / ``kv_put``: small key/value items (used by KeyValueQuoteSource)

    All writes use transactions for atomicity. The connection is shared
    across threads, so every write transaction holds ``write_lock``.
    """

    def __init__(self, path: Path, reporting_currency: Currency = Currency.USD):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(str(self.path), timeout=30, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self.write_lock = threading.Lock()
        _register_functions(self.conn)
        self._init_db()
        self.trades = SQLiteTradeRepository(self.conn, reporting_currency, self.write_lock)
        self.rates = SQLiteRateHistory(self.conn, self.write_lock)

    def _init_db(self):
        # Apply schema migrations
        from .db_migrations import apply_migrations

        apply_migrations(self.conn)

    def transaction(self):
        """Write transaction on the shared connection; yields a cursor."""
        return write_transaction(self.conn, self.write_lock)

    # --- Key/value APIs ---
    def kv_put(self, key: str, value: str) -> None:
        with self.transaction() as cur:
            cur.execute("INSERT OR REPLACE INTO kv(key, value, updated_at) VALUES(?, ?, strftime('%s','now'))", (key, value))

    def kv_get(self, key: str) -> Optional[str]:
        row = self.conn.execute("SELECT value FROM kv WHERE key = ?", (key,)).fetchone()
        return row[0] if row else None

    def close(self):
        self.conn.close()
