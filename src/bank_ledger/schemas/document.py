"""
Supporting documents and match suggestions.

Documents (invoices, receipts, contracts) are owned by the document store;
the ledger only reads their metadata:
    invoice_no, issuer_name, total_gross, issue_date, due_date, currency
"""

import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any


class DocumentType(str, Enum):
    """Kind of document held by the document store."""

    INVOICE = "INVOICE"
    CONTRACT = "CONTRACT"
    RECEIPT = "RECEIPT"
    BANK_CONFIRMATION = "BANK_CONFIRMATION"
    OTHER = "OTHER"


class Confidence(str, Enum):
    """Coarse label attached to a suggestion score."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass
class Document:
    """A supporting document visible to the matcher."""

    id: str
    org_id: str
    title: str = ""
    doc_type: DocumentType = DocumentType.OTHER
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: str | None = None

    @property
    def invoice_no(self) -> str | None:
        return self._text("invoice_no")

    @property
    def issuer_name(self) -> str | None:
        return self._text("issuer_name")

    @property
    def issue_date(self) -> str | None:
        return self._text("issue_date")

    @property
    def due_date(self) -> str | None:
        return self._text("due_date")

    @property
    def currency(self) -> str | None:
        return self._text("currency")

    @property
    def total_gross(self) -> Decimal | None:
        """
        Declared gross total as a magnitude, or None if missing or unparseable.

        Uses the statement amount rules, so "1.234,56" and "1 234,56 PLN"
        both read as 1234.56.
        """
        from ..services.normalizer import parse_amount  # services imports schemas

        value = self.metadata.get("total_gross")
        if value is None or value == "":
            return None
        result = parse_amount(str(value))
        return abs(result) if result is not None else None

    def _text(self, key: str) -> str | None:
        value = self.metadata.get(key)
        if value is None:
            return None
        value = str(value).strip()
        return value or None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Document":
        """Create from database row."""
        return cls(
            id=row["id"],
            org_id=row["org_id"],
            title=row["title"] or "",
            doc_type=DocumentType(row["doc_type"]) if row["doc_type"] else DocumentType.OTHER,
            metadata=json.loads(row["metadata"]) if row["metadata"] else {},
            created_at=row["created_at"],
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "title": self.title,
            "doc_type": self.doc_type.value,
            "metadata": self.metadata,
            "created_at": self.created_at,
        }


@dataclass
class DocumentSuggestion:
    """A ranked candidate document for one transaction. Never persisted."""

    document_id: str
    score: float
    confidence: Confidence
    explanation: str
    reasons: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "documentId": self.document_id,
            "score": self.score,
            "confidence": self.confidence.value,
            "explanation": self.explanation,
        }
