"""
Migration 001: Add recurrence annotation columns to transactions.

Each outgoing transaction records the recurring pattern it belongs to.
"""

import sqlite3

VERSION = 1
NAME = "recurrence_columns"


def upgrade(conn: sqlite3.Connection) -> None:
    """Add is_recurring, recurrence_pattern, recurrence_group_id."""
    cursor = conn.execute("PRAGMA table_info(transactions)")
    columns = {row[1] for row in cursor.fetchall()}

    if "is_recurring" not in columns:
        conn.execute("ALTER TABLE transactions ADD COLUMN is_recurring INTEGER NOT NULL DEFAULT 0")
    if "recurrence_pattern" not in columns:
        conn.execute("ALTER TABLE transactions ADD COLUMN recurrence_pattern TEXT")
    if "recurrence_group_id" not in columns:
        conn.execute("ALTER TABLE transactions ADD COLUMN recurrence_group_id TEXT")

    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_transactions_recurrence_group "
        "ON transactions(org_id, recurrence_group_id)"
    )


def downgrade(conn: sqlite3.Connection) -> None:
    """Drop the recurrence columns (SQLite >= 3.35)."""
    conn.execute("DROP INDEX IF EXISTS idx_transactions_recurrence_group")
    conn.execute("ALTER TABLE transactions DROP COLUMN recurrence_group_id")
    conn.execute("ALTER TABLE transactions DROP COLUMN recurrence_pattern")
    conn.execute("ALTER TABLE transactions DROP COLUMN is_recurring")
