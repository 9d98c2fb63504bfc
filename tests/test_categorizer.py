"""Tests for rule-based categorization."""

import logging
from decimal import Decimal

from bank_ledger.config import CategorizationConfig, CategoryRule
from bank_ledger.schemas.transaction import (
    UNCATEGORISED,
    CategorySource,
    Direction,
    TransactionCandidate,
)
from bank_ledger.services.categorizer import Categorizer


def default_categorizer() -> Categorizer:
    return Categorizer(CategorizationConfig().all_rules())


class TestDefaultRules:
    """Tests for the built-in Polish business rules."""

    def test_social_security(self):
        """ZUS contributions are tax/social_security."""
        match = default_categorizer().categorize("Składka ZUS 12/2023")
        assert (match.category, match.subcategory) == ("tax", "social_security")
        assert match.source == CategorySource.RULE

    def test_vat_uses_word_boundary(self):
        """VAT matches as a word, not inside other words."""
        categorizer = default_categorizer()
        assert categorizer.categorize("Przelew VAT 01/2024").subcategory == "vat"
        assert categorizer.categorize("ELEVATOR SERVICE").category == UNCATEGORISED

    def test_card_payment(self):
        """Card purchases are recognised case-insensitively."""
        match = default_categorizer().categorize("ZAKUP PRZY UŻYCIU KARTY BIEDRONKA")
        assert match.category == "card_payment"

    def test_salary(self):
        """Payroll transfers are income/salary."""
        match = default_categorizer().categorize("WYNAGRODZENIE STYCZEŃ")
        assert (match.category, match.subcategory) == ("income", "salary")

    def test_atm_pattern(self):
        """ATM is matched by regex."""
        assert default_categorizer().categorize("ATM WITHDRAWAL 123").category == "cash"


class TestRuleOrder:
    """Tests for first-match-wins evaluation."""

    def test_first_matching_rule_wins(self):
        """A description matching two rules gets the earlier rule's category."""
        match = default_categorizer().categorize("Prowizja od przelewu do ZUS")

        assert match.category == "tax"
        assert match.rule_index == 0

    def test_user_rules_before_defaults(self):
        """Configured rules are evaluated before the built-in ones."""
        config = CategorizationConfig(
            rules=[CategoryRule("payroll_tax", None, keywords=["zus"])]
        )
        match = Categorizer(config.all_rules()).categorize("Składka ZUS")

        assert match.category == "payroll_tax"

    def test_defaults_can_be_disabled(self):
        """Without defaults only user rules apply."""
        config = CategorizationConfig(rules=[], use_default_rules=False)
        match = Categorizer(config.all_rules()).categorize("Składka ZUS")

        assert match.category == UNCATEGORISED
        assert match.source is None


class TestFallbacks:
    """Tests for categories when no rule matches."""

    def test_bank_category_kept(self):
        """A category from the bank export is used when no rule matches."""
        match = default_categorizer().categorize("SPOTIFY P1A2B3C4", bank_category="Rozrywka")

        assert match.category == "Rozrywka"
        assert match.source == CategorySource.IMPORT

    def test_rule_beats_bank_category(self):
        """Rules take precedence over the bank's category."""
        match = default_categorizer().categorize("WYNAGRODZENIE", bank_category="Wpływy")
        assert match.category == "income"

    def test_uncategorised(self):
        """No rule and no bank category leaves the row uncategorised."""
        match = default_categorizer().categorize("Something unusual")

        assert match.category == UNCATEGORISED
        assert match.subcategory is None
        assert match.source is None

    def test_invalid_pattern_skipped(self, caplog):
        """A broken regex is logged and ignored; keywords still work."""
        rules = [CategoryRule("broken", None, keywords=["coffee"], pattern="([")]

        with caplog.at_level(logging.WARNING):
            categorizer = Categorizer(rules)

        assert "Skipping invalid pattern" in caplog.text
        assert categorizer.categorize("Morning coffee").category == "broken"
        assert categorizer.categorize("Tea").category == UNCATEGORISED


class TestApply:
    """Tests for applying categories to candidates."""

    def test_apply_sets_fields(self):
        """apply() fills category, subcategory and source."""
        candidate = TransactionCandidate(
            booking_date="2024-01-08",
            amount=Decimal("1600.32"),
            currency="PLN",
            direction=Direction.OUT,
            description="Składka ZUS 12/2023",
        )

        default_categorizer().apply(candidate)

        assert candidate.category == "tax"
        assert candidate.subcategory == "social_security"
        assert candidate.category_source == CategorySource.RULE
