"""
Migration 003: Add document_links table.

Links a supporting document to a ledger entity. Unlinking is a soft delete
so the history of confirmed evidence is kept.
"""

import sqlite3

VERSION = 3
NAME = "document_links"


def upgrade(conn: sqlite3.Connection) -> None:
    """Create document_links table."""
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS document_links (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            org_id TEXT NOT NULL,
            document_id TEXT NOT NULL,
            entity_type TEXT NOT NULL,  -- FINANCE_TRANSACTION
            entity_id TEXT NOT NULL,
            is_deleted INTEGER NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            UNIQUE (org_id, document_id, entity_type, entity_id)
        )
    """
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_document_links_entity "
        "ON document_links(org_id, entity_type, entity_id)"
    )


def downgrade(conn: sqlite3.Connection) -> None:
    """Remove document_links table."""
    conn.execute("DROP TABLE IF EXISTS document_links")
