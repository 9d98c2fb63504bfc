"""
Recurring charge types.

Subscriptions are derived data: every detection run recomputes them from
the organisation's current transactions and replaces the stored set.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any


class RecurrencePattern(str, Enum):
    """Interval classification of a recurring charge."""

    WEEKLY = "weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"
    ONE_TIME = "one_time"


class SubscriptionSource(str, Enum):
    """How a subscription was recognized."""

    RULE = "rule"
    AUTO = "auto"


@dataclass
class RecurrenceAnnotation:
    """Per-transaction recurrence fields written by a detection run."""

    transaction_id: int
    is_recurring: bool
    pattern: str | None
    group_id: str | None


@dataclass
class DetectedSubscription:
    """A group of charges recurring at a regular cadence."""

    vendor_key: str
    display_name: str
    cadence: str
    currency: str
    avg_amount: Decimal
    amount_tolerance: Decimal
    first_seen_date: str
    last_charge_date: str
    next_expected_date: str | None
    active: bool
    confidence: float  # 0-100
    source: SubscriptionSource
    transaction_ids: list[int] = field(default_factory=list)
    service_period_months: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "vendor_key": self.vendor_key,
            "display_name": self.display_name,
            "cadence": self.cadence,
            "currency": self.currency,
            "avg_amount": f"{self.avg_amount:.2f}",
            "amount_tolerance": f"{self.amount_tolerance:.2f}",
            "first_seen_date": self.first_seen_date,
            "last_charge_date": self.last_charge_date,
            "next_expected_date": self.next_expected_date,
            "active": self.active,
            "confidence": self.confidence,
            "source": self.source.value,
            "transaction_ids": self.transaction_ids,
            "service_period_months": self.service_period_months,
        }


@dataclass
class SubscriptionRule:
    """Per-organisation regex rule forcing a vendor grouping."""

    vendor_key: str
    display_name: str
    match_regex: str
    cadence: str = "monthly"
    is_enabled: bool = True
    id: int | None = None
    org_id: str | None = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "SubscriptionRule":
        """Create from database row."""
        return cls(
            id=row["id"],
            org_id=row["org_id"],
            vendor_key=row["vendor_key"],
            display_name=row["display_name"],
            match_regex=row["match_regex"],
            cadence=row["cadence"],
            is_enabled=bool(row["is_enabled"]),
        )
