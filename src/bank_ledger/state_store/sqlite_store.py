"""
SQLite-based ledger store.

Tables:
- transactions: the ledger, UNIQUE(org_id, transaction_hash)
- documents: supporting documents visible to the matcher
- document_links: confirmed document/transaction links (migration 003)
- subscriptions, subscription_transactions, subscription_rules (migration 002)

Every method takes an OrgContext and never reads or writes another
organisation's rows.
"""

import json
import logging
import re
import sqlite3
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from datetime import date, datetime, timezone
from decimal import Decimal
from pathlib import Path

from ..schemas.context import OrgContext
from ..schemas.document import Document
from ..schemas.subscription import (
    DetectedSubscription,
    RecurrenceAnnotation,
    SubscriptionRule,
    SubscriptionSource,
)
from ..schemas.transaction import (
    UNCATEGORISED,
    CategorySource,
    CategoryTotal,
    Direction,
    LedgerSummary,
    MonthlyTrendPoint,
    Transaction,
    TransactionCandidate,
    TransactionFilter,
)

logger = logging.getLogger(__name__)

# Entity type recorded on links to ledger rows
TRANSACTION_ENTITY = "FINANCE_TRANSACTION"

# Bound parameters per IN (...) query
IN_CLAUSE_BATCH = 500


def _now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _fold(value: str | None) -> str:
    """Unicode-aware lowercase for SQL search (SQLite LOWER() is ASCII-only)."""
    return (value or "").lower()


# Tax payments in the monthly trend (outflows only)
TAX_CATEGORY_RE = re.compile(r"tax|podat")
VAT_RE = re.compile(r"\bvat\b")
CIT_RE = re.compile(r"\bcit\b|podatek dochodowy")


def tax_kind(category: str | None, subcategory: str | None, description: str | None) -> str | None:
    """Classify an outgoing payment as "vat", "cit" or "other" tax, or None."""
    cat = (category or "").lower()
    if not TAX_CATEGORY_RE.search(cat):
        return None
    text = f"{cat} {(description or '').lower()}"
    if subcategory == "vat" or VAT_RE.search(text):
        return "vat"
    if subcategory == "income_tax" or CIT_RE.search(text):
        return "cit"
    return "other"


def _month_start(today: date, months_back: int) -> date:
    """First day of the month `months_back` months before today's month."""
    y, m = divmod(today.year * 12 + today.month - 1 - months_back, 12)
    return date(y, m + 1, 1)


class StateStore:
    """
    SQLite-based ledger store.

    Provides persistent storage for:
    - Imported transactions (content-hash deduplicated)
    - Documents and document links
    - Derived subscriptions and recurrence annotations

    One connection per operation; concurrent writers are serialized by
    SQLite and deduplicated by the (org_id, transaction_hash) constraint.
    """

    SCHEMA_VERSION = 1

    def __init__(self, db_path: Path | str, run_migrations: bool = True):
        """
        Initialize state store.

        Args:
            db_path: Path to SQLite database file
            run_migrations: Whether to run pending migrations (default True)
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()
        if run_migrations:
            self._run_migrations()

    def _get_connection(self) -> sqlite3.Connection:
        """Get a database connection with row factory."""
        conn = sqlite3.connect(str(self.db_path), timeout=30)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        conn.create_function("fold", 1, _fold, deterministic=True)
        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Context manager for database transactions."""
        conn = self._get_connection()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_db(self) -> None:
        """Initialize database schema."""
        with self._transaction() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS schema_version (
                    version INTEGER PRIMARY KEY
                )
            """
            )

            # Ledger
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS transactions (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    org_id TEXT NOT NULL,
                    source_document_id TEXT,
                    booking_date TEXT NOT NULL,
                    value_date TEXT,
                    amount TEXT NOT NULL,  -- Decimal string, non-negative
                    currency TEXT NOT NULL DEFAULT 'PLN',
                    direction TEXT NOT NULL CHECK (direction IN ('in', 'out')),
                    description TEXT NOT NULL,
                    counterparty_name TEXT,
                    counterparty_account TEXT,
                    reference TEXT,
                    category TEXT NOT NULL DEFAULT 'uncategorised',
                    subcategory TEXT,
                    category_source TEXT,  -- import, rule, manual
                    transaction_hash TEXT NOT NULL,
                    raw TEXT,  -- JSON object, verbatim source row
                    created_at TEXT NOT NULL,
                    UNIQUE (org_id, transaction_hash)
                )
            """
            )

            # Supporting documents (metadata only)
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS documents (
                    id TEXT NOT NULL,
                    org_id TEXT NOT NULL,
                    title TEXT,
                    doc_type TEXT NOT NULL DEFAULT 'OTHER',
                    metadata TEXT,  -- JSON object
                    created_at TEXT NOT NULL,
                    PRIMARY KEY (org_id, id)
                )
            """
            )

            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_transactions_org_date "
                "ON transactions(org_id, booking_date)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_transactions_org_category "
                "ON transactions(org_id, category)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_documents_org_created "
                "ON documents(org_id, created_at)"
            )

            conn.execute(
                "INSERT OR REPLACE INTO schema_version (version) VALUES (?)", (self.SCHEMA_VERSION,)
            )

    def _run_migrations(self) -> None:
        """Run pending database migrations."""
        from .migrations import MigrationRunner

        conn = self._get_connection()
        try:
            MigrationRunner(conn).run_pending()
        finally:
            conn.close()

    # Transaction methods

    def insert_transactions(
        self,
        ctx: OrgContext,
        candidates: list[TransactionCandidate],
        source_document_id: str | None = None,
    ) -> int:
        """
        Insert one chunk of candidates in a single SQL transaction.

        Rows whose (org_id, transaction_hash) already exists are left
        untouched; a conflicting concurrent insert counts the same way.

        Returns:
            Number of rows actually inserted

        Raises:
            sqlite3.Error: The whole chunk is rolled back
        """
        now = _now()
        inserted = 0
        with self._transaction() as conn:
            for c in candidates:
                if not c.transaction_hash:
                    raise ValueError("candidate has no transaction_hash")
                cursor = conn.execute(
                    """
                    INSERT INTO transactions
                    (org_id, source_document_id, booking_date, value_date, amount, currency,
                     direction, description, counterparty_name, counterparty_account, reference,
                     category, subcategory, category_source, transaction_hash, raw, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT (org_id, transaction_hash) DO NOTHING
                """,
                    (
                        ctx.org_id,
                        source_document_id,
                        c.booking_date,
                        c.value_date,
                        f"{c.amount:.2f}",
                        c.currency,
                        c.direction.value,
                        c.description,
                        c.counterparty_name,
                        c.counterparty_account,
                        c.reference,
                        c.category,
                        c.subcategory,
                        c.category_source.value if c.category_source else None,
                        c.transaction_hash,
                        json.dumps(c.raw, ensure_ascii=False),
                        now,
                    ),
                )
                inserted += cursor.rowcount
        return inserted

    def existing_hashes(self, ctx: OrgContext, hashes: Iterable[str]) -> set[str]:
        """Subset of `hashes` already stored for the organisation."""
        wanted = list(dict.fromkeys(hashes))
        found: set[str] = set()
        with self._transaction() as conn:
            for i in range(0, len(wanted), IN_CLAUSE_BATCH):
                batch = wanted[i : i + IN_CLAUSE_BATCH]
                placeholders = ",".join("?" * len(batch))
                rows = conn.execute(
                    f"SELECT transaction_hash FROM transactions "
                    f"WHERE org_id = ? AND transaction_hash IN ({placeholders})",
                    (ctx.org_id, *batch),
                ).fetchall()
                found.update(row["transaction_hash"] for row in rows)
        return found

    def get_transaction(self, ctx: OrgContext, transaction_id: int) -> Transaction | None:
        """Get one ledger row by ID."""
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM transactions WHERE org_id = ? AND id = ?",
                (ctx.org_id, transaction_id),
            ).fetchone()
            return Transaction.from_row(row) if row else None

    def count_transactions(self, ctx: OrgContext) -> int:
        """Number of ledger rows for the organisation."""
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT COUNT(*) FROM transactions WHERE org_id = ?", (ctx.org_id,)
            ).fetchone()
            return row[0]

    def query_transactions(
        self, ctx: OrgContext, filters: TransactionFilter | None = None
    ) -> tuple[list[Transaction], int]:
        """
        Filtered ledger query.

        Ordered by booking date descending, then creation time descending.

        Returns:
            (page of transactions, total rows matching the filter)
        """
        filters = filters or TransactionFilter()
        where, params = self._filter_clause(ctx, filters)

        with self._transaction() as conn:
            total = conn.execute(
                f"SELECT COUNT(*) FROM transactions WHERE {where}", params
            ).fetchone()[0]
            rows = conn.execute(
                f"""
                SELECT * FROM transactions WHERE {where}
                ORDER BY booking_date DESC, created_at DESC, id DESC
                LIMIT ? OFFSET ?
            """,
                (*params, filters.limit, filters.offset),
            ).fetchall()
        return [Transaction.from_row(r) for r in rows], total

    @staticmethod
    def _filter_clause(ctx: OrgContext, filters: TransactionFilter) -> tuple[str, list]:
        clauses = ["org_id = ?"]
        params: list = [ctx.org_id]

        if filters.date_from:
            clauses.append("booking_date >= ?")
            params.append(filters.date_from)
        if filters.date_to:
            clauses.append("booking_date <= ?")
            params.append(filters.date_to)
        if filters.direction:
            clauses.append("direction = ?")
            params.append(Direction(filters.direction).value)
        if filters.uncategorised_only:
            clauses.append("category = ?")
            params.append(UNCATEGORISED)
        elif filters.category:
            clauses.append("category = ?")
            params.append(filters.category)
        if filters.search:
            clauses.append(
                "(fold(description) LIKE ? ESCAPE '\\' "
                "OR fold(counterparty_name) LIKE ? ESCAPE '\\')"
            )
            needle = (
                filters.search.lower()
                .replace("\\", "\\\\")
                .replace("%", "\\%")
                .replace("_", "\\_")
            )
            params.extend([f"%{needle}%", f"%{needle}%"])

        return " AND ".join(clauses), params

    def list_for_detection(
        self, ctx: OrgContext, since: str | None = None
    ) -> list[Transaction]:
        """Outgoing transactions in chronological order, optionally from `since`."""
        sql = "SELECT * FROM transactions WHERE org_id = ? AND direction = 'out'"
        params: list = [ctx.org_id]
        if since:
            sql += " AND booking_date >= ?"
            params.append(since)
        sql += " ORDER BY booking_date ASC, id ASC"
        with self._transaction() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [Transaction.from_row(r) for r in rows]

    def update_transaction_category(
        self,
        ctx: OrgContext,
        transaction_id: int,
        category: str,
        subcategory: str | None = None,
    ) -> bool:
        """Record a user-chosen category. Returns False if the row is unknown."""
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE transactions
                SET category = ?, subcategory = ?, category_source = ?
                WHERE org_id = ? AND id = ?
            """,
                (
                    category or UNCATEGORISED,
                    subcategory,
                    CategorySource.MANUAL.value,
                    ctx.org_id,
                    transaction_id,
                ),
            )
            return cursor.rowcount > 0

    def summarize(
        self, ctx: OrgContext, date_from: str | None = None, date_to: str | None = None
    ) -> LedgerSummary:
        """Inflow, outflow and uncategorised count over a period."""
        where, params = self._filter_clause(
            ctx, TransactionFilter(date_from=date_from, date_to=date_to)
        )
        inflow = Decimal("0")
        outflow = Decimal("0")
        uncategorised = 0
        with self._transaction() as conn:
            rows = conn.execute(
                f"SELECT amount, direction, category FROM transactions WHERE {where}", params
            ).fetchall()
        for row in rows:
            if row["direction"] == Direction.IN.value:
                inflow += Decimal(row["amount"])
            else:
                outflow += Decimal(row["amount"])
            if row["category"] == UNCATEGORISED:
                uncategorised += 1
        return LedgerSummary(inflow=inflow, outflow=outflow, uncategorised_count=uncategorised)

    def monthly_trend(
        self, ctx: OrgContext, months: int = 12, today: date | None = None
    ) -> list[MonthlyTrendPoint]:
        """
        Per-month inflow, outflow, net and tax breakdown.

        Covers the last `months` calendar months up to and including the
        month of `today`. Months without transactions are omitted.
        """
        today = today or date.today()
        date_from = _month_start(today, months - 1).isoformat()
        date_before = _month_start(today, -1).isoformat()

        with self._transaction() as conn:
            rows = conn.execute(
                """
                SELECT booking_date, amount, direction, category, subcategory, description
                FROM transactions
                WHERE org_id = ? AND booking_date >= ? AND booking_date < ?
                ORDER BY booking_date ASC
                """,
                (ctx.org_id, date_from, date_before),
            ).fetchall()

        by_month: dict[str, MonthlyTrendPoint] = {}
        for row in rows:
            month = row["booking_date"][:7]
            point = by_month.setdefault(month, MonthlyTrendPoint(month))
            amount = Decimal(row["amount"])
            if row["direction"] == Direction.IN.value:
                point.inflow += amount
                continue
            point.outflow += amount
            kind = tax_kind(row["category"], row["subcategory"], row["description"])
            if kind == "vat":
                point.taxes.vat += amount
            elif kind == "cit":
                point.taxes.cit += amount
            elif kind == "other":
                point.taxes.other += amount
        return [by_month[m] for m in sorted(by_month)]

    def top_categories(
        self,
        ctx: OrgContext,
        date_from: str | None = None,
        date_to: str | None = None,
        limit: int = 10,
    ) -> list[CategoryTotal]:
        """Categories ranked by total amount moved, largest first."""
        where, params = self._filter_clause(
            ctx, TransactionFilter(date_from=date_from, date_to=date_to)
        )
        with self._transaction() as conn:
            rows = conn.execute(
                f"SELECT amount, category FROM transactions WHERE {where}", params
            ).fetchall()

        totals: dict[str, CategoryTotal] = {}
        for row in rows:
            category = row["category"] or UNCATEGORISED
            entry = totals.setdefault(category, CategoryTotal(category, Decimal("0"), 0))
            entry.total_amount += Decimal(row["amount"])
            entry.transaction_count += 1

        ranked = sorted(totals.values(), key=lambda c: (-c.total_amount, c.category))
        return ranked[:limit]

    def list_categories(self, ctx: OrgContext) -> list[str]:
        """Distinct categories in use, sorted."""
        with self._transaction() as conn:
            rows = conn.execute(
                """
                SELECT DISTINCT category FROM transactions
                WHERE org_id = ? AND category IS NOT NULL AND category != ''
                ORDER BY category
                """,
                (ctx.org_id,),
            ).fetchall()
        return [row["category"] for row in rows]

    def apply_recurrence(
        self, ctx: OrgContext, annotations: list[RecurrenceAnnotation]
    ) -> int:
        """
        Write recurrence fields for the given transactions.

        Returns:
            Number of rows whose fields actually changed
        """
        updated = 0
        with self._transaction() as conn:
            for a in annotations:
                cursor = conn.execute(
                    """
                    UPDATE transactions
                    SET is_recurring = ?, recurrence_pattern = ?, recurrence_group_id = ?
                    WHERE org_id = ? AND id = ?
                      AND (is_recurring IS NOT ? OR recurrence_pattern IS NOT ?
                           OR recurrence_group_id IS NOT ?)
                """,
                    (
                        int(a.is_recurring),
                        a.pattern,
                        a.group_id,
                        ctx.org_id,
                        a.transaction_id,
                        int(a.is_recurring),
                        a.pattern,
                        a.group_id,
                    ),
                )
                updated += cursor.rowcount
        return updated

    # Document methods

    def upsert_document(self, document: Document) -> None:
        """Insert or update a document's metadata."""
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO documents (id, org_id, title, doc_type, metadata, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT (org_id, id) DO UPDATE SET
                    title = excluded.title,
                    doc_type = excluded.doc_type,
                    metadata = excluded.metadata
            """,
                (
                    document.id,
                    document.org_id,
                    document.title,
                    document.doc_type.value,
                    json.dumps(document.metadata, ensure_ascii=False, default=str),
                    document.created_at or _now(),
                ),
            )

    def get_document(self, ctx: OrgContext, document_id: str) -> Document | None:
        """Get a document by ID."""
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM documents WHERE org_id = ? AND id = ?",
                (ctx.org_id, document_id),
            ).fetchone()
            return Document.from_row(row) if row else None

    def list_recent_documents(self, ctx: OrgContext, limit: int = 100) -> list[Document]:
        """Most recently created documents first."""
        with self._transaction() as conn:
            rows = conn.execute(
                """
                SELECT * FROM documents WHERE org_id = ?
                ORDER BY created_at DESC, id DESC
                LIMIT ?
            """,
                (ctx.org_id, limit),
            ).fetchall()
        return [Document.from_row(r) for r in rows]

    def link_document(self, ctx: OrgContext, document_id: str, transaction_id: int) -> None:
        """Link a document to a transaction, reviving a soft-deleted link."""
        now = _now()
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO document_links
                (org_id, document_id, entity_type, entity_id, is_deleted, created_at, updated_at)
                VALUES (?, ?, ?, ?, 0, ?, ?)
                ON CONFLICT (org_id, document_id, entity_type, entity_id) DO UPDATE SET
                    is_deleted = 0,
                    updated_at = excluded.updated_at
            """,
                (ctx.org_id, document_id, TRANSACTION_ENTITY, str(transaction_id), now, now),
            )

    def unlink_document(self, ctx: OrgContext, document_id: str, transaction_id: int) -> bool:
        """Soft-delete a link. Returns False if no active link existed."""
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE document_links SET is_deleted = 1, updated_at = ?
                WHERE org_id = ? AND document_id = ? AND entity_type = ?
                  AND entity_id = ? AND is_deleted = 0
            """,
                (_now(), ctx.org_id, document_id, TRANSACTION_ENTITY, str(transaction_id)),
            )
            return cursor.rowcount > 0

    def linked_document_ids(self, ctx: OrgContext, transaction_id: int) -> set[str]:
        """IDs of documents actively linked to a transaction."""
        with self._transaction() as conn:
            rows = conn.execute(
                """
                SELECT document_id FROM document_links
                WHERE org_id = ? AND entity_type = ? AND entity_id = ? AND is_deleted = 0
            """,
                (ctx.org_id, TRANSACTION_ENTITY, str(transaction_id)),
            ).fetchall()
        return {row["document_id"] for row in rows}

    # Subscription methods

    def replace_subscriptions(
        self, ctx: OrgContext, subscriptions: list[DetectedSubscription]
    ) -> None:
        """Replace the organisation's derived subscriptions in one transaction."""
        now = _now()
        with self._transaction() as conn:
            conn.execute("DELETE FROM subscription_transactions WHERE org_id = ?", (ctx.org_id,))
            conn.execute("DELETE FROM subscriptions WHERE org_id = ?", (ctx.org_id,))

            for sub in subscriptions:
                cursor = conn.execute(
                    """
                    INSERT INTO subscriptions
                    (org_id, vendor_key, display_name, cadence, currency, avg_amount,
                     amount_tolerance, first_seen_date, last_charge_date, next_expected_date,
                     active, confidence, source, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                    (
                        ctx.org_id,
                        sub.vendor_key,
                        sub.display_name,
                        sub.cadence,
                        sub.currency,
                        f"{sub.avg_amount:.2f}",
                        f"{sub.amount_tolerance:.2f}",
                        sub.first_seen_date,
                        sub.last_charge_date,
                        sub.next_expected_date,
                        int(sub.active),
                        sub.confidence,
                        sub.source.value,
                        now,
                    ),
                )
                subscription_id = cursor.lastrowid
                months = sub.service_period_months or [None] * len(sub.transaction_ids)
                conn.executemany(
                    """
                    INSERT INTO subscription_transactions
                    (org_id, subscription_id, transaction_id, service_period_month)
                    VALUES (?, ?, ?, ?)
                """,
                    [
                        (ctx.org_id, subscription_id, tx_id, month)
                        for tx_id, month in zip(sub.transaction_ids, months)
                    ],
                )

    def list_subscriptions(
        self, ctx: OrgContext, active_only: bool = False
    ) -> list[DetectedSubscription]:
        """Stored subscriptions with their member transactions."""
        sql = "SELECT * FROM subscriptions WHERE org_id = ?"
        if active_only:
            sql += " AND active = 1"
        sql += " ORDER BY avg_amount + 0 DESC, vendor_key"

        result = []
        with self._transaction() as conn:
            for row in conn.execute(sql, (ctx.org_id,)).fetchall():
                members = conn.execute(
                    """
                    SELECT transaction_id, service_period_month FROM subscription_transactions
                    WHERE subscription_id = ? ORDER BY id
                """,
                    (row["id"],),
                ).fetchall()
                result.append(
                    DetectedSubscription(
                        vendor_key=row["vendor_key"],
                        display_name=row["display_name"],
                        cadence=row["cadence"],
                        currency=row["currency"],
                        avg_amount=Decimal(row["avg_amount"]),
                        amount_tolerance=Decimal(row["amount_tolerance"]),
                        first_seen_date=row["first_seen_date"],
                        last_charge_date=row["last_charge_date"],
                        next_expected_date=row["next_expected_date"],
                        active=bool(row["active"]),
                        confidence=row["confidence"],
                        source=SubscriptionSource(row["source"]),
                        transaction_ids=[m["transaction_id"] for m in members],
                        service_period_months=[m["service_period_month"] for m in members],
                    )
                )
        return result

    def add_subscription_rule(self, ctx: OrgContext, rule: SubscriptionRule) -> int:
        """Store a per-organisation subscription rule. Returns its ID."""
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                INSERT INTO subscription_rules
                (org_id, vendor_key, display_name, match_regex, cadence, is_enabled, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
                (
                    ctx.org_id,
                    rule.vendor_key,
                    rule.display_name,
                    rule.match_regex,
                    rule.cadence,
                    int(rule.is_enabled),
                    _now(),
                ),
            )
            return cursor.lastrowid

    def list_subscription_rules(
        self, ctx: OrgContext, enabled_only: bool = True
    ) -> list[SubscriptionRule]:
        """Organisation rules in creation order."""
        sql = "SELECT * FROM subscription_rules WHERE org_id = ?"
        if enabled_only:
            sql += " AND is_enabled = 1"
        sql += " ORDER BY id"
        with self._transaction() as conn:
            rows = conn.execute(sql, (ctx.org_id,)).fetchall()
        return [SubscriptionRule.from_row(r) for r in rows]
