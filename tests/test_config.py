"""Tests for configuration loading and validation."""

from decimal import Decimal
from pathlib import Path

import pytest

from bank_ledger.config import (
    CategoryRule,
    Config,
    ConfigValidationError,
    create_default_config,
    load_config,
)

ENV_VARS = (
    "BANK_LEDGER_STATE_DB",
    "BANK_LEDGER_DEFAULT_CURRENCY",
    "BANK_LEDGER_CHUNK_SIZE",
    "BANK_LEDGER_DETECT_AFTER_IMPORT",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Isolate tests from the caller's environment."""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def write_config(tmp_path: Path, text: str) -> Path:
    path = tmp_path / "config.yaml"
    path.write_text(text, encoding="utf-8")
    return path


class TestDefaults:
    """Tests for default values."""

    def test_missing_file_gives_defaults(self, tmp_path):
        """A missing file is not an error."""
        config = load_config(tmp_path / "missing.yaml")

        assert config.importing.chunk_size == 200
        assert config.importing.default_currency == "PLN"
        assert config.recurring.lookback_days == 548
        assert config.matching.suggestion_threshold == Decimal("0.55")
        assert config.state_db_path == Path("data/ledger.db")
        assert config.validate() == []

    def test_default_rules_present(self):
        """Built-in categorization and subscription rules are on by default."""
        config = Config()

        assert config.categorization.all_rules()[0].category == "tax"
        assert {r.vendor_key for r in config.recurring.subscription_rules} >= {"google_workspace"}

    def test_amount_floor_per_currency(self):
        """PLN has its own floor; other currencies use the default."""
        matching = Config().matching

        assert matching.amount_floor("pln") == Decimal("5")
        assert matching.amount_floor("EUR") == Decimal("1")
        assert matching.amount_floor(None) == Decimal("1")


class TestYamlOverrides:
    """Tests for values read from the file."""

    def test_sections_override_defaults(self, tmp_path):
        """Keys in the file replace defaults; others stay."""
        path = write_config(
            tmp_path,
            """
import:
  chunk_size: 50
  default_currency: eur
categorization:
  use_default_rules: false
  rules:
    - category: office
      subcategory: software
      keywords: [jetbrains, github]
recurring:
  lookback_days: 365
  cadence_windows:
    monthly: [27, 33]
matching:
  weights:
    issuer: 0.30
  amount_tolerance_floors:
    eur: 2
state_db_path: /tmp/ledger.db
""",
        )

        config = load_config(path)

        assert config.importing.chunk_size == 50
        assert config.importing.default_currency == "EUR"
        assert config.categorization.all_rules() == [
            CategoryRule("office", "software", keywords=["jetbrains", "github"])
        ]
        assert config.recurring.lookback_days == 365
        assert config.recurring.cadence_windows["monthly"] == (27, 33)
        assert config.recurring.cadence_windows["weekly"] == (6, 8)
        assert config.matching.weights["issuer"] == Decimal("0.3")
        assert config.matching.weights["invoice_number"] == Decimal("0.40")
        assert config.matching.amount_floor("EUR") == Decimal("2")
        assert config.state_db_path == Path("/tmp/ledger.db")

    def test_subscription_rules_replace_builtin(self, tmp_path):
        """A configured rule list replaces the built-in one."""
        path = write_config(
            tmp_path,
            """
recurring:
  subscription_rules:
    - vendor_key: hosting
      match_regex: "(?i)atman"
""",
        )

        rules = load_config(path).recurring.subscription_rules

        assert len(rules) == 1
        assert rules[0].display_name == "hosting"
        assert rules[0].cadence == "monthly"

    def test_empty_file(self, tmp_path):
        """An empty file yields the defaults."""
        config = load_config(write_config(tmp_path, ""))
        assert config.importing.chunk_size == 200


class TestEnvironmentOverrides:
    """Tests for environment variables."""

    def test_env_beats_file(self, tmp_path, monkeypatch):
        """Environment values win over the file."""
        path = write_config(tmp_path, "import:\n  chunk_size: 50\nstate_db_path: a.db\n")
        monkeypatch.setenv("BANK_LEDGER_CHUNK_SIZE", "25")
        monkeypatch.setenv("BANK_LEDGER_STATE_DB", str(tmp_path / "env.db"))
        monkeypatch.setenv("BANK_LEDGER_DEFAULT_CURRENCY", "usd")
        monkeypatch.setenv("BANK_LEDGER_DETECT_AFTER_IMPORT", "false")

        config = load_config(path)

        assert config.importing.chunk_size == 25
        assert config.state_db_path == tmp_path / "env.db"
        assert config.importing.default_currency == "USD"
        assert config.importing.detect_recurring_after_import is False

    def test_unknown_bool_keeps_file_value(self, tmp_path, monkeypatch):
        """Only true/false are understood."""
        monkeypatch.setenv("BANK_LEDGER_DETECT_AFTER_IMPORT", "maybe")

        config = load_config(tmp_path / "missing.yaml")

        assert config.importing.detect_recurring_after_import is True

    def test_bad_chunk_size(self, tmp_path, monkeypatch):
        """A non-integer chunk size is a configuration error."""
        monkeypatch.setenv("BANK_LEDGER_CHUNK_SIZE", "lots")

        with pytest.raises(ConfigValidationError):
            load_config(tmp_path / "missing.yaml")


class TestValidate:
    """Tests for consistency checks."""

    def test_chunk_size_bounds(self):
        """Chunk size must be within 1..1000."""
        config = Config()
        config.importing.chunk_size = 1001

        assert "import.chunk_size must be between 1 and 1000" in config.validate()

    def test_thresholds(self):
        """Medium above high and out-of-range weights are reported."""
        config = Config()
        config.matching.medium_confidence = Decimal("0.9")
        config.matching.weights["amount"] = Decimal("1.5")

        errors = config.validate()

        assert "matching.medium_confidence must be <= high_confidence" in errors
        assert "matching.weights.amount must be within [0, 1]" in errors

    def test_empty_cadence_window(self):
        """A window whose bounds are reversed is reported."""
        config = Config()
        config.recurring.cadence_windows["weekly"] = (8, 6)

        assert any("cadence_windows.weekly" in e for e in config.validate())

    def test_rule_without_matchers(self):
        """A category rule needs keywords or a pattern."""
        config = Config()
        config.categorization.rules.append(CategoryRule("empty"))

        assert "categorization rule 'empty' has no keywords or pattern" in config.validate()


class TestCreateDefaultConfig:
    """Tests for the generated configuration file."""

    def test_round_trip(self, tmp_path):
        """The generated file loads into the defaults."""
        path = tmp_path / "nested" / "config.yaml"

        create_default_config(path)
        config = load_config(path)

        defaults = Config()
        assert config.validate() == []
        assert config.importing == defaults.importing
        assert config.matching.weights == defaults.matching.weights
        assert config.matching.issue_date_window == defaults.matching.issue_date_window
        assert config.recurring.cadence_windows == defaults.recurring.cadence_windows
        assert config.recurring.amount_tolerance_floor == defaults.recurring.amount_tolerance_floor
