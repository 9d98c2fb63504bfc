"""
Core data types for the ledger.

- OrgContext: explicit organisation scope passed to every operation
- TransactionCandidate / Transaction: canonical ledger rows
- Document / DocumentSuggestion: supporting evidence and ranked matches
- DetectedSubscription: derived recurring charges
- ImportResult: typed outcome of a statement import
- LedgerSummary / MonthlyTrendPoint / CategoryTotal: ledger analytics
"""

from .context import OrgContext
from .dedupe import compute_transaction_hash
from .document import Confidence, Document, DocumentSuggestion, DocumentType
from .import_result import ImportResult, ImportStep
from .subscription import (
    DetectedSubscription,
    RecurrenceAnnotation,
    RecurrencePattern,
    SubscriptionRule,
    SubscriptionSource,
)
from .transaction import (
    UNCATEGORISED,
    CategorySource,
    CategoryTotal,
    Direction,
    LedgerSummary,
    MonthlyTrendPoint,
    TaxBreakdown,
    Transaction,
    TransactionCandidate,
    TransactionFilter,
)

__all__ = [
    "OrgContext",
    "compute_transaction_hash",
    "Confidence",
    "Document",
    "DocumentSuggestion",
    "DocumentType",
    "ImportResult",
    "ImportStep",
    "DetectedSubscription",
    "RecurrenceAnnotation",
    "RecurrencePattern",
    "SubscriptionRule",
    "SubscriptionSource",
    "UNCATEGORISED",
    "CategorySource",
    "CategoryTotal",
    "Direction",
    "LedgerSummary",
    "MonthlyTrendPoint",
    "TaxBreakdown",
    "Transaction",
    "TransactionCandidate",
    "TransactionFilter",
]
