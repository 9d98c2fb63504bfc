"""
Canonical transaction types.

Amounts are always stored as non-negative Decimal magnitudes; the sign of
the original statement row is carried by `direction`.
"""

import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any


class Direction(str, Enum):
    """Money flow relative to the organisation's account."""

    IN = "in"
    OUT = "out"


class CategorySource(str, Enum):
    """Who assigned the current category."""

    IMPORT = "import"  # bank-provided category column
    RULE = "rule"  # Categorizer keyword/regex rule
    MANUAL = "manual"  # user override, never replaced automatically


UNCATEGORISED = "uncategorised"


@dataclass
class TransactionCandidate:
    """A normalized statement row, not yet persisted."""

    booking_date: str  # YYYY-MM-DD
    amount: Decimal
    currency: str
    direction: Direction
    description: str
    value_date: str | None = None
    counterparty_name: str | None = None
    counterparty_account: str | None = None
    reference: str | None = None
    bank_category: str | None = None
    raw: dict[str, str] = field(default_factory=dict)

    # Filled in by the import pipeline
    category: str = UNCATEGORISED
    subcategory: str | None = None
    category_source: CategorySource | None = None
    transaction_hash: str | None = None

    @property
    def signed_amount(self) -> Decimal:
        """Amount with the sign restored from direction."""
        return -self.amount if self.direction == Direction.OUT else self.amount


@dataclass
class Transaction:
    """A persisted ledger row."""

    id: int
    org_id: str
    booking_date: str
    amount: Decimal
    currency: str
    direction: Direction
    description: str
    transaction_hash: str
    created_at: str
    source_document_id: str | None = None
    value_date: str | None = None
    counterparty_name: str | None = None
    counterparty_account: str | None = None
    reference: str | None = None
    category: str = UNCATEGORISED
    subcategory: str | None = None
    category_source: CategorySource | None = None
    raw: dict[str, Any] = field(default_factory=dict)
    is_recurring: bool = False
    recurrence_pattern: str | None = None
    recurrence_group_id: str | None = None

    @property
    def signed_amount(self) -> Decimal:
        """Amount with the sign restored from direction."""
        return -self.amount if self.direction == Direction.OUT else self.amount

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Transaction":
        """Create from database row."""
        keys = row.keys()
        return cls(
            id=row["id"],
            org_id=row["org_id"],
            source_document_id=row["source_document_id"],
            booking_date=row["booking_date"],
            value_date=row["value_date"],
            amount=Decimal(row["amount"]),
            currency=row["currency"],
            direction=Direction(row["direction"]),
            description=row["description"],
            counterparty_name=row["counterparty_name"],
            counterparty_account=row["counterparty_account"],
            reference=row["reference"],
            category=row["category"] or UNCATEGORISED,
            subcategory=row["subcategory"],
            category_source=(
                CategorySource(row["category_source"]) if row["category_source"] else None
            ),
            transaction_hash=row["transaction_hash"],
            raw=json.loads(row["raw"]) if row["raw"] else {},
            created_at=row["created_at"],
            is_recurring=bool(row["is_recurring"]) if "is_recurring" in keys else False,
            recurrence_pattern=row["recurrence_pattern"] if "recurrence_pattern" in keys else None,
            recurrence_group_id=(
                row["recurrence_group_id"] if "recurrence_group_id" in keys else None
            ),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "org_id": self.org_id,
            "source_document_id": self.source_document_id,
            "booking_date": self.booking_date,
            "value_date": self.value_date,
            "amount": f"{self.amount:.2f}",
            "currency": self.currency,
            "direction": self.direction.value,
            "description": self.description,
            "counterparty_name": self.counterparty_name,
            "counterparty_account": self.counterparty_account,
            "reference": self.reference,
            "category": self.category,
            "subcategory": self.subcategory,
            "category_source": self.category_source.value if self.category_source else None,
            "transaction_hash": self.transaction_hash,
            "is_recurring": self.is_recurring,
            "recurrence_pattern": self.recurrence_pattern,
            "recurrence_group_id": self.recurrence_group_id,
            "created_at": self.created_at,
        }


@dataclass
class TransactionFilter:
    """Ledger query filter. Every field is optional except paging."""

    date_from: str | None = None
    date_to: str | None = None
    direction: Direction | None = None
    category: str | None = None
    uncategorised_only: bool = False
    search: str | None = None
    limit: int = 1000
    offset: int = 0


@dataclass
class LedgerSummary:
    """Totals for the organisation's ledger over a period."""

    inflow: Decimal
    outflow: Decimal
    uncategorised_count: int

    @property
    def net(self) -> Decimal:
        return self.inflow - self.outflow

    def to_dict(self) -> dict[str, Any]:
        return {
            "inflow_sum": f"{self.inflow:.2f}",
            "outflow_sum": f"{self.outflow:.2f}",
            "net": f"{self.net:.2f}",
            "uncategorised_count": self.uncategorised_count,
        }


@dataclass
class TaxBreakdown:
    """Outgoing tax payments in one month."""

    vat: Decimal = Decimal("0")
    cit: Decimal = Decimal("0")
    other: Decimal = Decimal("0")

    def to_dict(self) -> dict[str, str]:
        return {"vat": f"{self.vat:.2f}", "cit": f"{self.cit:.2f}", "other": f"{self.other:.2f}"}


@dataclass
class MonthlyTrendPoint:
    """Inflow, outflow and taxes for one calendar month (YYYY-MM)."""

    month: str
    inflow: Decimal = Decimal("0")
    outflow: Decimal = Decimal("0")
    taxes: TaxBreakdown = field(default_factory=TaxBreakdown)

    @property
    def net(self) -> Decimal:
        return self.inflow - self.outflow

    def to_dict(self) -> dict[str, Any]:
        return {
            "month": self.month,
            "inflow": f"{self.inflow:.2f}",
            "outflow": f"{self.outflow:.2f}",
            "net": f"{self.net:.2f}",
            "taxes": self.taxes.to_dict(),
        }


@dataclass
class CategoryTotal:
    """Money moved under one category, both directions counted."""

    category: str
    total_amount: Decimal
    transaction_count: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "category": self.category,
            "total_amount": f"{self.total_amount:.2f}",
            "transaction_count": self.transaction_count,
        }
