"""
Migration 002: Add subscription detection tables.

- subscription_rules: per-organisation regex rules (vendor grouping)
- subscriptions: derived recurring charges, replaced on every detection run
- subscription_transactions: members of each subscription with the
  service period month they pay for
"""

import sqlite3

VERSION = 2
NAME = "subscriptions"


def upgrade(conn: sqlite3.Connection) -> None:
    """Create subscription tables."""
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS subscription_rules (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            org_id TEXT NOT NULL,
            vendor_key TEXT NOT NULL,
            display_name TEXT NOT NULL,
            match_regex TEXT NOT NULL,
            cadence TEXT NOT NULL DEFAULT 'monthly',
            is_enabled INTEGER NOT NULL DEFAULT 1,
            created_at TEXT NOT NULL
        )
    """
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_subscription_rules_org ON subscription_rules(org_id)"
    )

    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS subscriptions (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            org_id TEXT NOT NULL,
            vendor_key TEXT NOT NULL,
            display_name TEXT NOT NULL,
            cadence TEXT NOT NULL,
            currency TEXT NOT NULL DEFAULT 'PLN',
            avg_amount TEXT NOT NULL,  -- Decimal string, positive
            amount_tolerance TEXT NOT NULL,
            first_seen_date TEXT,
            last_charge_date TEXT,
            next_expected_date TEXT,
            active INTEGER NOT NULL DEFAULT 1,
            confidence REAL NOT NULL DEFAULT 0,  -- 0-100
            source TEXT NOT NULL DEFAULT 'auto',  -- auto, rule
            created_at TEXT NOT NULL,
            UNIQUE (org_id, vendor_key, cadence, currency)
        )
    """
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_subscriptions_active ON subscriptions(org_id, active)"
    )

    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS subscription_transactions (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            org_id TEXT NOT NULL,
            subscription_id INTEGER NOT NULL,
            transaction_id INTEGER NOT NULL,
            service_period_month TEXT,  -- YYYY-MM-01
            UNIQUE (org_id, subscription_id, transaction_id),
            FOREIGN KEY (subscription_id) REFERENCES subscriptions(id) ON DELETE CASCADE,
            FOREIGN KEY (transaction_id) REFERENCES transactions(id) ON DELETE CASCADE
        )
    """
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_subscription_tx_sub "
        "ON subscription_transactions(subscription_id)"
    )


def downgrade(conn: sqlite3.Connection) -> None:
    """Remove subscription tables."""
    conn.execute("DROP TABLE IF EXISTS subscription_transactions")
    conn.execute("DROP TABLE IF EXISTS subscriptions")
    conn.execute("DROP TABLE IF EXISTS subscription_rules")
