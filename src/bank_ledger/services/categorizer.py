"""
Rule-based categorizer.

Categories are advisory. A user may overwrite them after import, and since
deduplication runs before any write, re-importing a statement never
replaces a category on an existing row.
"""

import logging
import re
from dataclasses import dataclass

from ..config import CategoryRule
from ..schemas.transaction import UNCATEGORISED, CategorySource, TransactionCandidate

logger = logging.getLogger(__name__)


@dataclass
class CategoryMatch:
    """Outcome of categorizing one description."""

    category: str
    subcategory: str | None
    source: CategorySource | None
    rule_index: int | None = None


class Categorizer:
    """Tests descriptions against ordered keyword/regex rules. First match wins."""

    def __init__(self, rules: list[CategoryRule]):
        self.rules = rules
        self._compiled: list[tuple[CategoryRule, list[str], re.Pattern | None]] = []
        for rule in rules:
            pattern = None
            if rule.pattern:
                try:
                    pattern = re.compile(rule.pattern, re.IGNORECASE)
                except re.error as e:
                    logger.warning("Skipping invalid pattern for %s: %s", rule.category, e)
            keywords = [k.lower() for k in rule.keywords if k]
            self._compiled.append((rule, keywords, pattern))

    def match(self, description: str) -> CategoryMatch | None:
        """Return the first matching rule's category, or None."""
        text = " ".join(description.lower().split())
        for idx, (rule, keywords, pattern) in enumerate(self._compiled):
            if any(k in text for k in keywords) or (pattern and pattern.search(text)):
                return CategoryMatch(rule.category, rule.subcategory, CategorySource.RULE, idx)
        return None

    def categorize(self, description: str, bank_category: str | None = None) -> CategoryMatch:
        """
        Categorize a description.

        Rule matches win; otherwise a category supplied by the bank export is
        kept; otherwise the row is uncategorised.
        """
        match = self.match(description)
        if match is not None:
            return match
        if bank_category:
            return CategoryMatch(bank_category, None, CategorySource.IMPORT)
        return CategoryMatch(UNCATEGORISED, None, None)

    def apply(self, candidate: TransactionCandidate) -> TransactionCandidate:
        """Set category fields on a candidate in place and return it."""
        match = self.categorize(candidate.description, candidate.bank_category)
        candidate.category = match.category
        candidate.subcategory = match.subcategory
        candidate.category_source = match.source
        return candidate
