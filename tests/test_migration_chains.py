"""Test migration chains: apply and rollback multiple versions."""
import sqlite3
from pathlib import Path

from tradebook.db_migrations import apply_migrations, rollback_last, rollback_migration


def _tables(conn):
    return {row[0] for row in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")}


def _indices(conn):
    return {row[0] for row in conn.execute("SELECT name FROM sqlite_master WHERE type='index'")}


def test_migration_chain_apply(tmp_path: Path):
    """Apply all versions, verify tables and indices exist."""
    conn = sqlite3.connect(str(tmp_path / "chain.db"), timeout=30)

    applied = apply_migrations(conn)
    assert applied == [1, 2, 3], f"Expected [1, 2, 3] but got {applied}"

    tables = _tables(conn)
    assert {"trades", "kv", "exchange_rates"} <= tables

    indices = _indices(conn)
    assert "idx_trades_user_closed" in indices
    assert "idx_trades_account" in indices

    conn.close()


def test_migration_chain_rollback_indices_only(tmp_path: Path):
    """Rollback v2 only; tables survive, indices are gone."""
    conn = sqlite3.connect(str(tmp_path / "chain2.db"), timeout=30)
    apply_migrations(conn)

    rollback_migration(conn, 2)

    assert "trades" in _tables(conn)
    assert "idx_trades_user_closed" not in _indices(conn)

    versions = {row[0] for row in conn.execute("SELECT version FROM schema_migrations")}
    assert versions == {1, 3}

    # Re-applying restores only the rolled-back version
    assert apply_migrations(conn) == [2]
    conn.close()


def test_migration_chain_rollback_last_to_empty(tmp_path: Path):
    """rollback_last walks back down to an empty schema."""
    conn = sqlite3.connect(str(tmp_path / "chain3.db"), timeout=30)
    apply_migrations(conn)

    assert rollback_last(conn) == 3
    assert "exchange_rates" not in _tables(conn)
    assert rollback_last(conn) == 2
    assert rollback_last(conn) == 1
    assert rollback_last(conn) is None

    versions = [row[0] for row in conn.execute("SELECT version FROM schema_migrations")]
    assert versions == []
    assert "trades" not in _tables(conn)

    conn.close()
