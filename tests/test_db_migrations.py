import sqlite3
from pathlib import Path

import pytest

from tradebook.db_migrations import MIGRATIONS, apply_migrations, pending_versions
from tradebook.persistence_sqlite import SQLitePersistence


def test_apply_migrations_idempotent(tmp_path: Path):
    db = tmp_path / "migs.db"
    # persistence applies everything on open
    p = SQLitePersistence(db)
    assert apply_migrations(p.conn) == []
    assert pending_versions(p.conn) == []
    assert set(MIGRATIONS.keys()) >= {1, 2, 3}
    p.close()


def test_trades_quantity_must_be_positive(tmp_path: Path):
    conn = sqlite3.connect(str(tmp_path / "check.db"))
    apply_migrations(conn)
    with pytest.raises(sqlite3.IntegrityError):
        conn.execute(
            "INSERT INTO trades(id, user_id, symbol, asset_type, currency, direction, quantity, entry_price, "
            "exit_price, opened_at, closed_at, realized_pnl, created_at, updated_at) "
            "VALUES('t1', 'u1', 'AAPL', 'STOCK', 'USD', 'LONG', 0, '1', '1', '2024-01-01', '2024-01-01', '0', 'x', 'x')"
        )
    conn.close()


def test_exchange_rates_unique_per_day(tmp_path: Path):
    conn = sqlite3.connect(str(tmp_path / "unique.db"))
    apply_migrations(conn)
    row = ("CAD", "USD", "2024-12-05", "0.8", "x", "x")
    sql = (
        "INSERT INTO exchange_rates(base_currency, quote_currency, effective_date, rate, created_at, updated_at) "
        "VALUES(?, ?, ?, ?, ?, ?)"
    )
    conn.execute(sql, row)
    with pytest.raises(sqlite3.IntegrityError):
        conn.execute(sql, row)
    conn.close()
