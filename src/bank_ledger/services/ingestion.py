"""
Statement ingestion pipeline.

parse -> normalize -> categorize -> hash -> dedupe -> chunked insert ->
recurring detection.

Parse, validation and persistence failures are reported as an ImportResult
carrying the step they happened at; `import_statement` does not raise for
them. Chunks that committed before a failing chunk stay committed, and
re-running the same import is safe because rows are deduplicated by
content hash.
"""

from __future__ import annotations

import logging
import sqlite3
from typing import TYPE_CHECKING

from ..parsers import ParseError, StatementParser
from ..recurring import RecurringDetector
from ..schemas.context import OrgContext
from ..schemas.dedupe import compute_transaction_hash
from ..schemas.import_result import ImportResult, ImportStep
from ..schemas.transaction import TransactionCandidate
from .categorizer import Categorizer
from .normalizer import TransactionNormalizer

if TYPE_CHECKING:
    from ..config import Config
    from ..state_store import StateStore

logger = logging.getLogger(__name__)


class StatementImporter:
    """Imports bank statement exports into one organisation's ledger."""

    def __init__(
        self,
        store: StateStore,
        config: Config,
        parser: StatementParser | None = None,
        normalizer: TransactionNormalizer | None = None,
        categorizer: Categorizer | None = None,
        detector: RecurringDetector | None = None,
    ):
        self.store = store
        self.config = config
        self.parser = parser or StatementParser(debug_lines=config.importing.debug_lines)
        self.normalizer = normalizer or TransactionNormalizer(config.importing.default_currency)
        self.categorizer = categorizer or Categorizer(config.categorization.all_rules())
        self.detector = detector or RecurringDetector(store, config.recurring)

    def import_statement(
        self,
        data: bytes | str,
        ctx: OrgContext | None = None,
        storage_path: str | None = None,
        source_document_id: str | None = None,
        detect: bool | None = None,
    ) -> ImportResult:
        """
        Import one statement.

        Args:
            data: Raw export, bytes or already-decoded text
            ctx: Organisation scope; derived from `storage_path` when omitted
            storage_path: Storage key of the uploaded file
            source_document_id: Document the rows are traced back to
            detect: Run recurring detection afterwards (default from config)

        Returns:
            ImportResult with counts, or the failing step and diagnostics
        """
        if ctx is None and storage_path:
            ctx = OrgContext.from_storage_path(storage_path)
        if ctx is None:
            return ImportResult.failure(
                ImportStep.MISSING_ORG,
                "Cannot determine organisation",
                {"storage_path": storage_path},
            )

        try:
            statement = self.parser.parse(data)
        except ParseError as e:
            logger.warning("Statement parse failed at %s: %s", e.step, e.reason)
            return ImportResult.failure(ImportStep(e.step), e.reason, e.extra)

        parsed = len(statement.rows)
        normalized = self.normalizer.normalize(statement)
        counts = {"parsed": parsed, "valid": normalized.valid, "invalid": normalized.invalid}

        if normalized.valid == 0:
            return ImportResult.failure(
                ImportStep.MAP_0_VALID,
                "No valid transactions after mapping",
                {
                    "invalid": normalized.invalid,
                    "headers": statement.headers,
                    "columns": normalized.column_map,
                    "reasons": [reason for _, reason in normalized.invalid_reasons[:10]],
                },
                **counts,
            )

        candidates, skipped = self._prepare(ctx, normalized.candidates)

        chunk_size = max(self.config.importing.chunk_size, 1)
        inserted = 0
        for start in range(0, len(candidates), chunk_size):
            chunk = candidates[start : start + chunk_size]
            try:
                chunk_inserted = self.store.insert_transactions(ctx, chunk, source_document_id)
            except sqlite3.Error as e:
                logger.error("Insert failed for chunk %d: %s", start // chunk_size, e)
                return ImportResult.failure(
                    ImportStep.INSERT,
                    "Failed to insert transactions",
                    {"chunk_index": start // chunk_size, "error": str(e)},
                    inserted=inserted,
                    skipped=skipped,
                    **counts,
                )
            inserted += chunk_inserted
            # Rows that lost a concurrent insert race
            skipped += len(chunk) - chunk_inserted

        logger.info(
            "Imported statement for %s (%s): %d parsed, %d valid, %d inserted, %d skipped",
            ctx.org_id,
            statement.dialect,
            parsed,
            normalized.valid,
            inserted,
            skipped,
        )

        if detect is None:
            detect = self.config.importing.detect_recurring_after_import
        if inserted > 0 and detect:
            try:
                self.detector.detect(ctx)
            except Exception:
                # The rows are committed; detection can be re-run on its own
                logger.exception("Recurring detection failed after import for %s", ctx.org_id)

        return ImportResult(
            ok=True,
            inserted=inserted,
            skipped=skipped,
            dialect=statement.dialect,
            **counts,
        )

    def _prepare(
        self, ctx: OrgContext, candidates: list[TransactionCandidate]
    ) -> tuple[list[TransactionCandidate], int]:
        """Categorize, hash and drop rows already in the batch or the ledger."""
        unique: dict[str, TransactionCandidate] = {}
        skipped = 0
        for candidate in candidates:
            self.categorizer.apply(candidate)
            candidate.transaction_hash = compute_transaction_hash(
                booking_date=candidate.booking_date,
                amount=candidate.signed_amount,
                currency=candidate.currency,
                description=candidate.description,
                counterparty_account=candidate.counterparty_account,
                counterparty_name=candidate.counterparty_name,
            )
            if candidate.transaction_hash in unique:
                skipped += 1
                continue
            unique[candidate.transaction_hash] = candidate

        existing = self.store.existing_hashes(ctx, unique)
        if existing:
            logger.debug("%d rows already in ledger for %s", len(existing), ctx.org_id)
        fresh = [c for h, c in unique.items() if h not in existing]
        return fresh, skipped + len(existing)
