"""
Versioned schema migrations for the ledger database.

Migration modules live next to this file and are named {version}_{name}.py,
e.g. 001_recurrence_columns.py. Each module defines:
- VERSION: int
- NAME: str
- upgrade(conn: Connection) -> None
- downgrade(conn: Connection) -> None  # optional
"""

import importlib
import logging
import sqlite3
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

logger = logging.getLogger(__name__)

MIGRATIONS_PACKAGE = __name__.rsplit(".", 1)[0]


@dataclass
class Migration:
    """One schema step."""

    version: int
    name: str
    upgrade: Callable[[sqlite3.Connection], None]
    downgrade: Callable[[sqlite3.Connection], None] | None


def get_all_migrations() -> list[Migration]:
    """Load every migration module, sorted by version.

    A module that cannot be loaded is a packaging defect and raises.
    """
    migrations = []
    for py_file in sorted(Path(__file__).parent.glob("[0-9][0-9][0-9]_*.py")):
        module = importlib.import_module(f"{MIGRATIONS_PACKAGE}.{py_file.stem}")
        migrations.append(
            Migration(
                version=module.VERSION,
                name=module.NAME,
                upgrade=module.upgrade,
                downgrade=getattr(module, "downgrade", None),
            )
        )
    return sorted(migrations, key=lambda m: m.version)


class MigrationRunner:
    """
    Applies migrations in order on one connection.

    Applied versions are recorded in the `migrations` table.
    """

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn
        self.conn.execute(
            """
            CREATE TABLE IF NOT EXISTS migrations (
                version INTEGER PRIMARY KEY,
                name TEXT NOT NULL,
                applied_at TEXT NOT NULL
            )
        """
        )
        self.conn.commit()

    def applied_versions(self) -> set[int]:
        """Versions already recorded."""
        return {row[0] for row in self.conn.execute("SELECT version FROM migrations")}

    def current_version(self) -> int:
        """Highest applied version, 0 for a fresh database."""
        return max(self.applied_versions(), default=0)

    def apply(self, migration: Migration) -> None:
        """Run one upgrade and record it, rolling back on failure."""
        logger.info("Applying migration %03d: %s", migration.version, migration.name)
        try:
            migration.upgrade(self.conn)
            applied_at = datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
            self.conn.execute(
                "INSERT INTO migrations (version, name, applied_at) VALUES (?, ?, ?)",
                (migration.version, migration.name, applied_at),
            )
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            logger.error("Migration %03d failed", migration.version)
            raise

    def revert(self, migration: Migration) -> None:
        """Run one downgrade and forget it."""
        if migration.downgrade is None:
            raise NotImplementedError(f"Migration {migration.version} cannot be reverted")
        logger.info("Reverting migration %03d: %s", migration.version, migration.name)
        try:
            migration.downgrade(self.conn)
            self.conn.execute("DELETE FROM migrations WHERE version = ?", (migration.version,))
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            logger.error("Reverting migration %03d failed", migration.version)
            raise

    def run_pending(self) -> list[int]:
        """Apply every migration not yet recorded. Returns applied versions."""
        done = self.applied_versions()
        applied = []
        for migration in get_all_migrations():
            if migration.version in done:
                continue
            self.apply(migration)
            applied.append(migration.version)

        if applied:
            logger.info("Applied %d migrations: %s", len(applied), applied)
        else:
            logger.debug("No pending migrations")
        return applied

    def migrate_to(self, target_version: int) -> None:
        """Upgrade or downgrade until `target_version` is current."""
        by_version = {m.version: m for m in get_all_migrations()}
        current = self.current_version()

        for version in range(current + 1, target_version + 1):
            if version in by_version:
                self.apply(by_version[version])
        for version in range(current, target_version, -1):
            if version in by_version:
                self.revert(by_version[version])
