"""Document matcher: ranks supporting documents for one ledger transaction.

Each signal contributes its configured weight when it fires; contributions
are additive and the total is capped at 1.0:

- invoice_number: document invoice number inside the reference or description
- issuer: issuer name and counterparty are mutual substrings
- amount: gross total within max(currency floor, 1%) of the amount
- issue_date / due_date: booking date within the configured window
- currency: same currency

Comparisons run on alphanumeric-only lowercase text. Ranking is a pure
function of (transaction, documents, already-linked ids).
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING

from ..schemas.document import Confidence, Document, DocumentSuggestion

if TYPE_CHECKING:
    from ..config import MatchingConfig
    from ..schemas.context import OrgContext
    from ..schemas.transaction import Transaction
    from ..state_store import StateStore

logger = logging.getLogger(__name__)

SCORE_CAP = Decimal("1.0")


def normalize_text(text: str | None) -> str:
    """Lowercase and keep only ASCII letters and digits."""
    return re.sub(r"[^a-z0-9]", "", (text or "").lower())


def _parse_day(value: str | None) -> date | None:
    if not value:
        return None
    try:
        return date.fromisoformat(value[:10])
    except ValueError:
        return None


@dataclass
class MatchScore:
    """Individual signal contribution to a match score."""

    signal: str
    score: Decimal
    weight: Decimal
    detail: str

    @property
    def weighted_score(self) -> Decimal:
        """Get the weighted score for this signal."""
        return self.score * self.weight


@dataclass
class MatchResult:
    """Scored pairing of one document with one transaction."""

    document_id: str
    signals: list[MatchScore] = field(default_factory=list)

    @property
    def total_score(self) -> Decimal:
        return min(sum((s.weighted_score for s in self.signals), Decimal("0")), SCORE_CAP)

    @property
    def reasons(self) -> list[str]:
        return [s.detail for s in self.signals if s.score > 0]

    def explanation(self) -> str:
        percent = f"{self.total_score * 100:.0f}%"
        if not self.reasons:
            return f"Partial match (score: {percent})"
        return "; ".join(self.reasons) + f" (score: {percent})"


class DocumentMatcher:
    """Scores documents against a transaction and keeps the confident ones."""

    def __init__(self, config: MatchingConfig) -> None:
        self.config = config

    def score(self, transaction: Transaction, document: Document) -> MatchResult:
        """Evaluate every signal for one document."""
        result = MatchResult(document_id=document.id)
        for signal in (
            self._score_invoice_number,
            self._score_issuer,
            self._score_amount,
            self._score_issue_date,
            self._score_due_date,
            self._score_currency,
        ):
            match = signal(transaction, document)
            if match is not None:
                result.signals.append(match)
        return result

    def rank(
        self,
        transaction: Transaction,
        documents: Iterable[Document],
        linked_ids: Iterable[str] = (),
    ) -> list[DocumentSuggestion]:
        """
        Rank documents for a transaction.

        Already-linked documents are skipped; results below the suggestion
        threshold are dropped; at most `max_results` are returned, best first.
        """
        linked = set(linked_ids)
        suggestions: list[DocumentSuggestion] = []

        for document in documents:
            if document.id in linked:
                continue
            result = self.score(transaction, document)
            total = result.total_score
            if total < self.config.suggestion_threshold:
                continue
            suggestions.append(
                DocumentSuggestion(
                    document_id=document.id,
                    score=float(total),
                    confidence=self._confidence(total),
                    explanation=result.explanation(),
                    reasons=result.reasons,
                )
            )

        suggestions.sort(key=lambda s: s.score, reverse=True)
        return suggestions[: self.config.max_results]

    def suggest(
        self,
        store: StateStore,
        ctx: OrgContext,
        transaction_id: int,
        transaction: Transaction | None = None,
    ) -> list[DocumentSuggestion]:
        """
        Suggest documents for a stored transaction.

        Reads the organisation's most recent documents and current links;
        writes nothing.

        Raises:
            KeyError: Transaction does not exist in this organisation
        """
        if transaction is None:
            transaction = store.get_transaction(ctx, transaction_id)
            if transaction is None:
                raise KeyError(f"Transaction {transaction_id} not found for {ctx.org_id}")

        documents = store.list_recent_documents(ctx, limit=self.config.document_window)
        linked = store.linked_document_ids(ctx, transaction_id)
        suggestions = self.rank(transaction, documents, linked)
        logger.debug(
            "Transaction %s: %d documents scored, %d suggestions",
            transaction_id,
            len(documents),
            len(suggestions),
        )
        return suggestions

    def _confidence(self, total: Decimal) -> Confidence:
        if total >= self.config.high_confidence:
            return Confidence.HIGH
        if total >= self.config.medium_confidence:
            return Confidence.MEDIUM
        return Confidence.LOW

    def _signal(self, name: str, detail: str) -> MatchScore:
        return MatchScore(
            signal=name,
            score=Decimal("1"),
            weight=self.config.weights.get(name, Decimal("0")),
            detail=detail,
        )

    def _score_invoice_number(self, tx: Transaction, doc: Document) -> MatchScore | None:
        invoice_no = doc.invoice_no
        needle = normalize_text(invoice_no)
        if not needle:
            return None
        if needle in normalize_text(tx.reference) or needle in normalize_text(tx.description):
            return self._signal(
                "invoice_number",
                f"Invoice number {invoice_no} matches transaction reference/description",
            )
        return None

    def _score_issuer(self, tx: Transaction, doc: Document) -> MatchScore | None:
        issuer = normalize_text(doc.issuer_name)
        counterparty = normalize_text(tx.counterparty_name)
        if not issuer or not counterparty:
            return None
        if issuer in counterparty or counterparty in issuer:
            return self._signal(
                "issuer",
                f'Issuer "{doc.issuer_name}" matches counterparty "{tx.counterparty_name}"',
            )
        return None

    def _score_amount(self, tx: Transaction, doc: Document) -> MatchScore | None:
        total = doc.total_gross
        if total is None:
            return None
        amount = abs(tx.amount)
        tolerance = max(
            self.config.amount_floor(tx.currency), amount * self.config.amount_tolerance_pct
        )
        if abs(total - amount) <= tolerance:
            return self._signal("amount", f"Amount {total} {tx.currency} matches transaction amount")
        return None

    def _within(self, tx: Transaction, value: str | None, window: tuple[int, int]) -> bool:
        doc_day = _parse_day(value)
        booking = _parse_day(tx.booking_date)
        if doc_day is None or booking is None:
            return False
        low, high = window
        return low <= (booking - doc_day).days <= high

    def _score_issue_date(self, tx: Transaction, doc: Document) -> MatchScore | None:
        if self._within(tx, doc.issue_date, self.config.issue_date_window):
            return self._signal(
                "issue_date", f"Issue date {doc.issue_date} is close to transaction date"
            )
        return None

    def _score_due_date(self, tx: Transaction, doc: Document) -> MatchScore | None:
        if self._within(tx, doc.due_date, self.config.due_date_window):
            return self._signal("due_date", f"Due date {doc.due_date} is close to transaction date")
        return None

    def _score_currency(self, tx: Transaction, doc: Document) -> MatchScore | None:
        currency = normalize_text(doc.currency)
        if currency and currency == normalize_text(tx.currency):
            return self._signal("currency", f"Currency {doc.currency} matches")
        return None
