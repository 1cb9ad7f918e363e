from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional


def _migration_1(conn):
    cur = conn.cursor()
    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS trades (
            id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL,
            account_id TEXT,
            symbol TEXT NOT NULL,
            asset_type TEXT NOT NULL,
            currency TEXT NOT NULL DEFAULT 'USD',
            direction TEXT NOT NULL,
            quantity INTEGER NOT NULL CHECK (quantity > 0),
            entry_price TEXT NOT NULL,
            exit_price TEXT NOT NULL,
            fees TEXT NOT NULL DEFAULT '0',
            margin_rate TEXT NOT NULL DEFAULT '0',
            option_type TEXT,
            strike_price TEXT,
            expiry_date TEXT,
            opened_at TEXT NOT NULL,
            closed_at TEXT NOT NULL,
            realized_pnl TEXT NOT NULL,
            notes TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
        """
    )
    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS kv (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL,
            updated_at INTEGER
        )
        """
    )


def _migration_1_down(conn):
    cur = conn.cursor()
    cur.execute("DROP TABLE IF EXISTS trades")
    cur.execute("DROP TABLE IF EXISTS kv")
    conn.commit()


def _migration_2(conn):
    """Indices for per-user listing and date-range aggregation."""
    cur = conn.cursor()
    cur.execute("CREATE INDEX IF NOT EXISTS idx_trades_user_closed ON trades(user_id, closed_at)")
    cur.execute("CREATE INDEX IF NOT EXISTS idx_trades_account ON trades(account_id)")
    conn.commit()


def _migration_2_down(conn):
    cur = conn.cursor()
    cur.execute("DROP INDEX IF EXISTS idx_trades_user_closed")
    cur.execute("DROP INDEX IF EXISTS idx_trades_account")
    conn.commit()


def _migration_3(conn):
    """Exchange rate history, one row per (base, quote, effective date)."""
    cur = conn.cursor()
    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS exchange_rates (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            base_currency TEXT NOT NULL,
            quote_currency TEXT NOT NULL,
            effective_date TEXT NOT NULL,
            rate TEXT NOT NULL,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            UNIQUE (base_currency, quote_currency, effective_date)
        )
        """
    )
    conn.commit()


def _migration_3_down(conn):
    cur = conn.cursor()
    cur.execute("DROP TABLE IF EXISTS exchange_rates")
    conn.commit()


MIGRATIONS: Dict[int, Callable] = {
    1: _migration_1,
    2: _migration_2,
    3: _migration_3,
}

# Optional down migrations
MIGRATION_DOWNS: Dict[int, Callable] = {
    1: _migration_1_down,
    2: _migration_2_down,
    3: _migration_3_down,
}


def _ensure_migrations_table(conn) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS schema_migrations (
            version INTEGER PRIMARY KEY,
            applied_at TEXT NOT NULL
        )
        """
    )
    conn.commit()


def applied_versions(conn) -> Dict[int, str]:
    """Map of applied migration version -> applied_at timestamp."""
    _ensure_migrations_table(conn)
    cur = conn.execute("SELECT version, applied_at FROM schema_migrations ORDER BY version")
    return {row[0]: row[1] for row in cur.fetchall()}


def pending_versions(conn) -> List[int]:
    applied = applied_versions(conn)
    return sorted(v for v in MIGRATIONS.keys() if v not in applied)


def apply_migrations(conn) -> List[int]:
    """Apply pending migrations to the given sqlite3 connection.

    Returns the list of applied migration versions.
    """
    to_apply = pending_versions(conn)
    cur = conn.cursor()
    applied_now = []
    for v in to_apply:
        # run migration inside transaction
        try:
            conn.execute("BEGIN IMMEDIATE")
            MIGRATIONS[v](conn)
            cur.execute("INSERT INTO schema_migrations(version, applied_at) VALUES(?, ?)", (v, datetime.now(timezone.utc).isoformat()))
            conn.commit()
            applied_now.append(v)
        except Exception:
            conn.rollback()
            raise

    return applied_now


def rollback_migration(conn, version: int) -> None:
    """Rollback a specific migration version if a down migration is registered."""
    if version not in MIGRATION_DOWNS:
        raise RuntimeError(f"No down migration registered for version {version}")

    cur = conn.cursor()
    try:
        conn.execute("BEGIN IMMEDIATE")
        MIGRATION_DOWNS[version](conn)
        cur.execute("DELETE FROM schema_migrations WHERE version = ?", (version,))
        conn.commit()
    except Exception:
        conn.rollback()
        raise


def rollback_last(conn) -> Optional[int]:
    """Rollback the latest applied migration if possible; returns rolled-back version or None."""
    applied = applied_versions(conn)
    if not applied:
        return None
    v = max(applied)
    rollback_migration(conn, v)
    return v
