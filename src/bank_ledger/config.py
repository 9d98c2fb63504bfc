"""
Configuration management (SSOT).

This module defines ALL configuration for the ledger.
All config keys are defined here; no other module should invent config keys.

Key invariants:
- Scoring weights and keyword rules are data, not inline conditionals
- Thresholds are expressed on the same scale the engines compute
  (matcher scores in [0, 1], subscription confidence in [0, 100])
"""

import os
from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path

import yaml


class ConfigValidationError(Exception):
    """Raised when configuration validation fails."""

    pass


@dataclass
class ImportConfig:
    """Statement import settings."""

    # Currency assumed when neither a column nor an amount suffix names one
    default_currency: str = "PLN"
    # Rows per insert call (backend payload limit)
    chunk_size: int = 200
    # Run recurring detection after an import that inserted rows
    detect_recurring_after_import: bool = True
    # Raw lines attached to a structural parse failure
    debug_lines: int = 40


@dataclass
class CategoryRule:
    """One ordered categorization rule.

    A rule matches when any keyword is a substring of the lowercased
    description, or when `pattern` (case-insensitive regex) is found in it.
    """

    category: str
    subcategory: str | None = None
    keywords: list[str] = field(default_factory=list)
    pattern: str | None = None


def _default_category_rules() -> list[CategoryRule]:
    return [
        CategoryRule("tax", "social_security", keywords=["zus", "składka zus", "skladka zus"]),
        CategoryRule("tax", "vat", pattern=r"\bvat\b|\bjpk\b"),
        CategoryRule(
            "tax",
            "income_tax",
            keywords=["urząd skarbowy", "urzad skarbowy", "podatek", "mikrorachunek"],
        ),
        CategoryRule(
            "cash",
            "atm_withdrawal",
            keywords=["wypłata z bankomatu", "wyplata z bankomatu", "bankomat"],
            pattern=r"\batm\b",
        ),
        CategoryRule(
            "card_payment",
            None,
            keywords=[
                "zakup przy użyciu karty",
                "zakup przy uzyciu karty",
                "płatność kartą",
                "platnosc karta",
                "card payment",
            ],
        ),
        CategoryRule(
            "income", "salary", keywords=["wynagrodzenie", "pensja", "salary", "payroll"]
        ),
        CategoryRule(
            "bank_fees",
            None,
            keywords=["opłata za prowadzenie", "oplata za prowadzenie", "prowizja"],
        ),
    ]


@dataclass
class CategorizationConfig:
    """Ordered categorization rules. First match wins."""

    # User rules are evaluated before the built-in defaults
    rules: list[CategoryRule] = field(default_factory=list)
    use_default_rules: bool = True

    def all_rules(self) -> list[CategoryRule]:
        """User rules followed by the defaults (if enabled)."""
        if self.use_default_rules:
            return list(self.rules) + _default_category_rules()
        return list(self.rules)


@dataclass
class SubscriptionRuleConfig:
    """Regex rule forcing a vendor grouping for subscriptions."""

    vendor_key: str
    display_name: str
    match_regex: str
    cadence: str = "monthly"


def _default_subscription_rules() -> list[SubscriptionRuleConfig]:
    return [
        SubscriptionRuleConfig(
            "google_workspace", "Google Workspace", r"(?i)google\s+(workspace|gsuite)|gcpld\d+"
        ),
        SubscriptionRuleConfig("squarespace", "Squarespace", r"(?i)\bsqsp\*|squarespace"),
        SubscriptionRuleConfig(
            "rent",
            "Rent",
            r"(?i)\bnajem\b|czynsz|op\s*łata\s*za\s*[a-ząćęłńóśźż]+\s*\d{4}",
        ),
    ]


@dataclass
class RecurringConfig:
    """Recurring charge and subscription detection settings."""

    # Subscription lookback (days, ~18 months); 0 = whole history
    lookback_days: int = 548
    # A subscription is active if charged within this many days
    active_window_days: int = 45
    # Next expected charge, days after the last one
    next_charge_days: int = 30
    # Minimum members for a heuristic (auto) subscription
    min_auto_occurrences: int = 3
    # Minimum members for a rule subscription
    min_rule_occurrences: int = 2
    # Share of consecutive gaps that must fall in the cadence window
    min_cadence_ratio: float = 0.7
    # Tolerance around the average amount: max(floor, pct * avg)
    amount_tolerance_floor: Decimal = Decimal("5.00")
    amount_tolerance_pct: Decimal = Decimal("0.05")
    # Confidence (0-100) assigned to rule matches
    rule_confidence: float = 90.0
    # Maximum length of a recurrence group key
    group_key_length: int = 100
    # Day-gap windows per cadence (inclusive), checked in this order
    cadence_windows: dict[str, tuple[int, int]] = field(
        default_factory=lambda: {
            "weekly": (6, 8),
            "monthly": (28, 32),
            "quarterly": (87, 93),
            "yearly": (360, 370),
        }
    )
    subscription_rules: list[SubscriptionRuleConfig] = field(
        default_factory=_default_subscription_rules
    )


def _default_weights() -> dict[str, Decimal]:
    return {
        "invoice_number": Decimal("0.40"),
        "issuer": Decimal("0.25"),
        "amount": Decimal("0.20"),
        "issue_date": Decimal("0.10"),
        "due_date": Decimal("0.10"),
        "currency": Decimal("0.05"),
    }


@dataclass
class MatchingConfig:
    """Document suggestion settings."""

    # Additive weight per signal; the total is capped at 1.0
    weights: dict[str, Decimal] = field(default_factory=_default_weights)
    # Minimum score to be suggested
    suggestion_threshold: Decimal = Decimal("0.55")
    # Confidence labels
    high_confidence: Decimal = Decimal("0.80")
    medium_confidence: Decimal = Decimal("0.70")
    max_results: int = 10
    # Most recent documents considered per request
    document_window: int = 100
    # Amount tolerance: max(floor for currency, pct * |amount|)
    amount_tolerance_floors: dict[str, Decimal] = field(
        default_factory=lambda: {"PLN": Decimal("5")}
    )
    default_amount_tolerance_floor: Decimal = Decimal("1")
    amount_tolerance_pct: Decimal = Decimal("0.01")
    # Day windows relative to the booking date (booking - document date)
    issue_date_window: tuple[int, int] = (-30, 90)
    due_date_window: tuple[int, int] = (-30, 30)

    def amount_floor(self, currency: str | None) -> Decimal:
        """Tolerance floor for a currency."""
        return self.amount_tolerance_floors.get(
            (currency or "").upper(), self.default_amount_tolerance_floor
        )


@dataclass
class Config:
    """Application configuration (SSOT).

    All configuration is centralized here. No other module should define
    configuration keys or defaults.
    """

    importing: ImportConfig = field(default_factory=ImportConfig)
    categorization: CategorizationConfig = field(default_factory=CategorizationConfig)
    recurring: RecurringConfig = field(default_factory=RecurringConfig)
    matching: MatchingConfig = field(default_factory=MatchingConfig)
    state_db_path: Path = field(default_factory=lambda: Path("data/ledger.db"))

    def validate(self) -> list[str]:
        """Validate configuration completeness and consistency.

        Returns:
            List of validation errors (empty if valid)
        """
        errors: list[str] = []

        if not 1 <= self.importing.chunk_size <= 1000:
            errors.append("import.chunk_size must be between 1 and 1000")
        if len(self.importing.default_currency) != 3:
            errors.append("import.default_currency must be a 3-letter ISO code")

        for name, weight in self.matching.weights.items():
            if not Decimal("0") <= weight <= Decimal("1"):
                errors.append(f"matching.weights.{name} must be within [0, 1]")

        # Thresholds must be sensible
        if self.matching.medium_confidence > self.matching.high_confidence:
            errors.append("matching.medium_confidence must be <= high_confidence")
        if not Decimal("0") < self.matching.suggestion_threshold <= Decimal("1"):
            errors.append("matching.suggestion_threshold must be within (0, 1]")
        if self.matching.max_results < 1:
            errors.append("matching.max_results must be >= 1")

        if not 0 < self.recurring.min_cadence_ratio <= 1:
            errors.append("recurring.min_cadence_ratio must be within (0, 1]")
        for cadence, (low, high) in self.recurring.cadence_windows.items():
            if low > high:
                errors.append(f"recurring.cadence_windows.{cadence} is empty ({low} > {high})")

        for rule in self.categorization.rules:
            if not rule.keywords and not rule.pattern:
                errors.append(f"categorization rule '{rule.category}' has no keywords or pattern")

        return errors


def _decimal(value: object, default: Decimal) -> Decimal:
    if value is None:
        return default
    return Decimal(str(value))


def _env_bool(name: str, current: bool) -> bool:
    value = os.environ.get(name, "").lower()
    if value == "true":
        return True
    if value == "false":
        return False
    return current


def load_config(config_path: Path) -> Config:
    """
    Load configuration from YAML file.

    A missing file yields the defaults. Environment variables can override
    config values:
    - BANK_LEDGER_STATE_DB
    - BANK_LEDGER_DEFAULT_CURRENCY
    - BANK_LEDGER_CHUNK_SIZE
    - BANK_LEDGER_DETECT_AFTER_IMPORT (true/false)
    """
    if config_path.exists():
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
    else:
        data = {}

    # Import config
    import_data = data.get("import", {})
    chunk_size = import_data.get("chunk_size", 200)
    chunk_env = os.environ.get("BANK_LEDGER_CHUNK_SIZE", "")
    if chunk_env:
        try:
            chunk_size = int(chunk_env)
        except ValueError:
            raise ConfigValidationError(f"BANK_LEDGER_CHUNK_SIZE is not an integer: {chunk_env!r}")

    importing = ImportConfig(
        default_currency=os.environ.get(
            "BANK_LEDGER_DEFAULT_CURRENCY", import_data.get("default_currency", "PLN")
        ).upper(),
        chunk_size=chunk_size,
        detect_recurring_after_import=_env_bool(
            "BANK_LEDGER_DETECT_AFTER_IMPORT",
            import_data.get("detect_recurring_after_import", True),
        ),
        debug_lines=import_data.get("debug_lines", 40),
    )

    # Categorization config
    cat_data = data.get("categorization", {})
    categorization = CategorizationConfig(
        rules=[
            CategoryRule(
                category=r["category"],
                subcategory=r.get("subcategory"),
                keywords=list(r.get("keywords", [])),
                pattern=r.get("pattern"),
            )
            for r in cat_data.get("rules", [])
        ],
        use_default_rules=cat_data.get("use_default_rules", True),
    )

    # Recurring config
    rec_data = data.get("recurring", {})
    rec_defaults = RecurringConfig()
    windows = dict(rec_defaults.cadence_windows)
    for cadence, bounds in rec_data.get("cadence_windows", {}).items():
        windows[cadence] = (int(bounds[0]), int(bounds[1]))

    if "subscription_rules" in rec_data:
        subscription_rules = [
            SubscriptionRuleConfig(
                vendor_key=r["vendor_key"],
                display_name=r.get("display_name", r["vendor_key"]),
                match_regex=r["match_regex"],
                cadence=r.get("cadence", "monthly"),
            )
            for r in rec_data["subscription_rules"]
        ]
    else:
        subscription_rules = rec_defaults.subscription_rules

    recurring = RecurringConfig(
        lookback_days=rec_data.get("lookback_days", rec_defaults.lookback_days),
        active_window_days=rec_data.get("active_window_days", rec_defaults.active_window_days),
        next_charge_days=rec_data.get("next_charge_days", rec_defaults.next_charge_days),
        min_auto_occurrences=rec_data.get(
            "min_auto_occurrences", rec_defaults.min_auto_occurrences
        ),
        min_rule_occurrences=rec_data.get(
            "min_rule_occurrences", rec_defaults.min_rule_occurrences
        ),
        min_cadence_ratio=rec_data.get("min_cadence_ratio", rec_defaults.min_cadence_ratio),
        amount_tolerance_floor=_decimal(
            rec_data.get("amount_tolerance_floor"), rec_defaults.amount_tolerance_floor
        ),
        amount_tolerance_pct=_decimal(
            rec_data.get("amount_tolerance_pct"), rec_defaults.amount_tolerance_pct
        ),
        rule_confidence=rec_data.get("rule_confidence", rec_defaults.rule_confidence),
        group_key_length=rec_data.get("group_key_length", rec_defaults.group_key_length),
        cadence_windows=windows,
        subscription_rules=subscription_rules,
    )

    # Matching config
    match_data = data.get("matching", {})
    match_defaults = MatchingConfig()
    weights = dict(match_defaults.weights)
    for name, weight in match_data.get("weights", {}).items():
        weights[name] = Decimal(str(weight))
    floors = dict(match_defaults.amount_tolerance_floors)
    for currency, floor in match_data.get("amount_tolerance_floors", {}).items():
        floors[currency.upper()] = Decimal(str(floor))

    matching = MatchingConfig(
        weights=weights,
        suggestion_threshold=_decimal(
            match_data.get("suggestion_threshold"), match_defaults.suggestion_threshold
        ),
        high_confidence=_decimal(match_data.get("high_confidence"), match_defaults.high_confidence),
        medium_confidence=_decimal(
            match_data.get("medium_confidence"), match_defaults.medium_confidence
        ),
        max_results=match_data.get("max_results", match_defaults.max_results),
        document_window=match_data.get("document_window", match_defaults.document_window),
        amount_tolerance_floors=floors,
        default_amount_tolerance_floor=_decimal(
            match_data.get("default_amount_tolerance_floor"),
            match_defaults.default_amount_tolerance_floor,
        ),
        amount_tolerance_pct=_decimal(
            match_data.get("amount_tolerance_pct"), match_defaults.amount_tolerance_pct
        ),
        issue_date_window=tuple(match_data.get("issue_date_window", (-30, 90))),
        due_date_window=tuple(match_data.get("due_date_window", (-30, 30))),
    )

    # State DB
    state_db = os.environ.get("BANK_LEDGER_STATE_DB", data.get("state_db_path", "data/ledger.db"))

    return Config(
        importing=importing,
        categorization=categorization,
        recurring=recurring,
        matching=matching,
        state_db_path=Path(state_db),
    )


def create_default_config(config_path: Path) -> None:
    """Create a default configuration file."""
    default_config = """# Bank Ledger Configuration
#
# Environment overrides:
#   BANK_LEDGER_STATE_DB, BANK_LEDGER_DEFAULT_CURRENCY,
#   BANK_LEDGER_CHUNK_SIZE, BANK_LEDGER_DETECT_AFTER_IMPORT

# Statement import
import:
  default_currency: "PLN"                 # Used when the statement names none
  chunk_size: 200                          # Rows per insert (1-1000)
  detect_recurring_after_import: true      # Re-run detection when rows were inserted
  debug_lines: 40                          # Raw lines attached to parse failures

# Categorization (user rules run before the built-in defaults)
categorization:
  use_default_rules: true
  rules: []
  #  - category: "office"
  #    subcategory: "software"
  #    keywords: ["jetbrains", "github"]
  #  - category: "travel"
  #    pattern: "\\\\b(pkp|lot)\\\\b"

# Recurring charges and subscriptions
recurring:
  lookback_days: 548                       # ~18 months
  active_window_days: 45                   # Active if charged within this window
  next_charge_days: 30
  min_auto_occurrences: 3
  min_rule_occurrences: 2
  min_cadence_ratio: 0.7
  amount_tolerance_floor: 5.00
  amount_tolerance_pct: 0.05
  rule_confidence: 90
  cadence_windows:
    weekly: [6, 8]
    monthly: [28, 32]
    quarterly: [87, 93]
    yearly: [360, 370]
  # subscription_rules replaces the built-in list when present
  # subscription_rules:
  #   - vendor_key: "google_workspace"
  #     display_name: "Google Workspace"
  #     match_regex: "(?i)google\\\\s+(workspace|gsuite)|gcpld\\\\d+"

# Document suggestions
matching:
  weights:
    invoice_number: 0.40
    issuer: 0.25
    amount: 0.20
    issue_date: 0.10
    due_date: 0.10
    currency: 0.05
  suggestion_threshold: 0.55
  high_confidence: 0.80
  medium_confidence: 0.70
  max_results: 10
  document_window: 100
  amount_tolerance_floors:
    PLN: 5
  default_amount_tolerance_floor: 1
  amount_tolerance_pct: 0.01
  issue_date_window: [-30, 90]
  due_date_window: [-30, 30]

# State database path
state_db_path: "data/ledger.db"
"""

    config_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config_path, "w") as f:
        f.write(default_config)
