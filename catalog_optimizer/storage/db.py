"""
Database connection management.

Provides SQLite connections and schema creation for the credit ledger and
the optimization record store.
"""

import sqlite3
from pathlib import Path

DEFAULT_DB_PATH = "catalog_optimizer.db"

# Seconds a writer waits on a locked database before giving up
BUSY_TIMEOUT = 30.0


def get_connection(db_path: str = DEFAULT_DB_PATH) -> sqlite3.Connection:
    """Create and return a SQLite database connection with foreign keys enabled.

    Each caller gets its own connection, so connections are never shared
    between threads.

    Args:
        db_path: Path to SQLite database file

    Returns:
        SQLite connection with foreign key constraints enabled
    """
    path = Path(db_path)
    conn = sqlite3.connect(str(path), timeout=BUSY_TIMEOUT)
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


def initialize_schema(db_path: str = DEFAULT_DB_PATH) -> None:
    """Create ledger and optimization tables if they don't exist.

    credit_transaction is an append-only ledger: no UPDATE or DELETE is ever
    issued against it. credit_account.balance is guarded by a CHECK
    constraint in addition to the conditional debit.

    Args:
        db_path: Path to SQLite database file
    """
    conn = get_connection(db_path)
    try:
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS credit_account (
                owner_id TEXT PRIMARY KEY,
                balance INTEGER NOT NULL DEFAULT 0 CHECK (balance >= 0),
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS credit_transaction (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                account_id TEXT NOT NULL REFERENCES credit_account(owner_id),
                delta INTEGER NOT NULL,
                reason TEXT NOT NULL,
                related_entity_id TEXT,
                timestamp TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS credit_transaction_account_idx
                ON credit_transaction (account_id);

            CREATE TABLE IF NOT EXISTS optimization_record (
                store_id TEXT NOT NULL,
                product_id TEXT NOT NULL,
                optimization_type TEXT NOT NULL,
                original_value TEXT,
                optimized_value TEXT NOT NULL,
                credits_used INTEGER NOT NULL DEFAULT 0,
                applied_at TEXT NOT NULL,
                PRIMARY KEY (store_id, product_id, optimization_type)
            );
        """)
        conn.commit()
    finally:
        conn.close()
