"""Import pipeline services: normalization, categorization and ingestion."""

from .categorizer import Categorizer, CategoryMatch
from .ingestion import StatementImporter
from .normalizer import NormalizationResult, TransactionNormalizer, parse_amount, parse_date

__all__ = [
    "Categorizer",
    "CategoryMatch",
    "StatementImporter",
    "NormalizationResult",
    "TransactionNormalizer",
    "parse_amount",
    "parse_date",
]
