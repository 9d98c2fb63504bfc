"""Tests for recurring charge and subscription detection."""

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

import pytest

from bank_ledger.config import RecurringConfig
from bank_ledger.recurring import (
    RecurringDetector,
    amounts_similar,
    classify_gap,
    descriptions_similar,
    detect_recurring_pattern,
    group_key,
    infer_service_month,
    normalize_description,
)
from bank_ledger.schemas.subscription import RecurrencePattern, SubscriptionRule, SubscriptionSource
from bank_ledger.schemas.transaction import Direction, TransactionFilter

from conftest import make_candidate


@dataclass
class Charge:
    id: int
    booking_date: str
    amount: Decimal
    description: str


def charge(idx, booking_date, amount="43.00", description="NETFLIX.COM 866-579-7172"):
    return Charge(idx, booking_date, Decimal(amount), description)


class TestSimilarity:
    """Tests for description and amount similarity."""

    def test_normalize_description(self):
        """Lowercase, single spaces, no punctuation."""
        assert normalize_description("  NETFLIX.COM   866-579 ") == "netflixcom 866579"

    def test_normalize_keeps_polish_letters(self):
        """Non-ASCII letters are word characters."""
        assert normalize_description("Opłata za CZYNSZ!") == "opłata za czynsz"

    def test_identical_descriptions(self):
        """Equal after normalization."""
        assert descriptions_similar("NETFLIX.COM", "netflix.com") is True

    def test_containment(self):
        """Longer descriptions containing each other are similar."""
        assert descriptions_similar("SPOTIFY STOCKHOLM", "SPOTIFY STOCKHOLM P1A2B3") is True

    def test_short_descriptions_need_equality(self):
        """Short strings are never matched by containment."""
        assert descriptions_similar("UBER", "UBER EATS") is False

    def test_shared_words(self):
        """Three shared words longer than three letters suffice."""
        assert descriptions_similar(
            "PRZELEW HOSTING SERWER ATMAN styczeń",
            "PRZELEW HOSTING SERWER ATMAN luty",
        ) is True

    def test_amounts_within_one_percent(self):
        """Amounts within 1% of their average are similar."""
        assert amounts_similar(Decimal("100.00"), Decimal("100.99")) is True
        assert amounts_similar(Decimal("100.00"), Decimal("102.00")) is False
        assert amounts_similar(Decimal("-43.00"), Decimal("43.00")) is True


class TestCadence:
    """Tests for gap classification."""

    @pytest.mark.parametrize(
        "days,expected",
        [
            (7, RecurrencePattern.WEEKLY),
            (30, RecurrencePattern.MONTHLY),
            (28, RecurrencePattern.MONTHLY),
            (90, RecurrencePattern.QUARTERLY),
            (365, RecurrencePattern.YEARLY),
            (45, RecurrencePattern.ONE_TIME),
            (1, RecurrencePattern.ONE_TIME),
        ],
    )
    def test_classify_gap(self, days, expected):
        """Gaps map onto cadence windows."""
        assert classify_gap(days) == expected

    def test_custom_windows(self):
        """Windows are configurable."""
        assert classify_gap(14, {"weekly": (13, 15)}) == RecurrencePattern.WEEKLY


class TestDetectRecurringPattern:
    """Tests for per-transaction classification."""

    def test_no_history(self):
        """Nothing similar before it: one_time with zero confidence."""
        result = detect_recurring_pattern(charge(1, "2024-01-05"), [])

        assert result.pattern == RecurrencePattern.ONE_TIME
        assert result.confidence == 0.0
        assert result.is_recurring is False

    def test_monthly_case(self):
        """Monthly charges are recognised with confidence at least 0.5."""
        previous = [charge(1, "2024-01-05"), charge(2, "2024-02-04")]

        result = detect_recurring_pattern(charge(3, "2024-03-06"), previous)

        assert result.pattern == RecurrencePattern.MONTHLY
        assert result.confidence >= 0.5
        assert result.confidence == pytest.approx(0.75)
        assert result.is_recurring is True

    def test_confidence_capped(self):
        """Confidence never exceeds 0.95."""
        result = detect_recurring_pattern(charge(2, "2024-02-05"), [charge(1, "2024-01-05")])

        assert result.pattern == RecurrencePattern.MONTHLY
        assert result.confidence == pytest.approx(0.95)

    def test_same_day_duplicate(self):
        """Similar charges at no usable distance give low confidence."""
        result = detect_recurring_pattern(charge(2, "2024-01-05"), [charge(1, "2024-01-05")])

        assert result.pattern == RecurrencePattern.ONE_TIME
        assert result.confidence == pytest.approx(0.3)

    def test_irregular_gap(self):
        """Gaps outside every window are one_time."""
        result = detect_recurring_pattern(charge(2, "2024-02-19"), [charge(1, "2024-01-05")])

        assert result.pattern == RecurrencePattern.ONE_TIME
        assert result.confidence == pytest.approx(0.5)
        assert result.is_recurring is False

    def test_different_amounts_ignored(self):
        """Similar descriptions with different amounts are not history."""
        result = detect_recurring_pattern(
            charge(2, "2024-02-05", amount="99.00"), [charge(1, "2024-01-05")]
        )

        assert result.confidence == 0.0

    def test_group_id(self):
        """The group ID combines normalized description and amount."""
        result = detect_recurring_pattern(charge(2, "2024-02-05"), [charge(1, "2024-01-05")])
        assert result.group_id == "netflixcom 8665797172_43.00"


class TestHelpers:
    """Tests for grouping keys and service months."""

    def test_group_key_truncated_keeps_amount(self):
        """Long descriptions are cut; the amount suffix survives."""
        key = group_key("x" * 300, Decimal("-1234.50"))

        assert len(key) == 100
        assert key.endswith("_1234.50")

    def test_service_month_from_fee_description(self):
        """The "Opłata za <month> <year>" phrasing sets the service month."""
        assert infer_service_month("OPŁATA ZA PAŹDZIERNIK 2025", "2025-11-03") == "2025-10-01"
        assert infer_service_month("Opłata za stycznia 2025", "2024-12-28") == "2025-01-01"

    def test_fee_description_needs_year(self):
        """Without a year the fee phrasing falls back to the booking month."""
        assert infer_service_month("Opłata za maj", "2024-06-02") == "2024-06-01"

    def test_service_month_from_workspace_description(self):
        """Google Workspace names the month; the year defaults to the booking year."""
        assert infer_service_month("GOOGLE WORKSPACE SIERPIEŃ", "2025-09-01") == "2025-08-01"
        assert infer_service_month("Google Workspace sierpnia 2024", "2025-01-05") == "2024-08-01"

    def test_stray_month_word_ignored(self):
        """Month words outside the known phrasings do not move the service month."""
        assert infer_service_month("CZYNSZ ZA PAŹDZIERNIK 2025", "2025-11-03") == "2025-11-01"
        assert infer_service_month("Najem lokalu - stycznia 2025", "2024-12-28") == "2024-12-01"
        assert infer_service_month("Zwrot 3 maja 2024", "2024-06-10") == "2024-06-01"

    def test_service_month_fallback(self):
        """Without month and year the booking month is used."""
        assert infer_service_month("NETFLIX.COM", "2024-03-15") == "2024-03-01"


def insert(store, ctx, *candidates):
    store.insert_transactions(ctx, list(candidates))


@pytest.fixture
def ledger(store, ctx):
    """Three monthly Netflix charges, two Google Workspace charges, one purchase, one inflow."""
    insert(
        store,
        ctx,
        make_candidate("2024-01-05", "43.00", "NETFLIX.COM 866-579-7172", counterparty_name="Netflix"),
        make_candidate("2024-02-05", "43.00", "NETFLIX.COM 866-579-7172", counterparty_name="Netflix"),
        make_candidate("2024-03-05", "43.00", "NETFLIX.COM 866-579-7172", counterparty_name="Netflix"),
        make_candidate("2024-02-01", "27.60", "GOOGLE WORKSPACE GCPLD1234"),
        make_candidate("2024-03-01", "27.60", "GOOGLE WORKSPACE GCPLD1234"),
        make_candidate("2024-02-14", "599.00", "IKEA KRAKÓW"),
        make_candidate("2024-02-10", "8500.00", "WYNAGRODZENIE", direction=Direction.IN),
    )
    return store


class TestRecurringDetector:
    """Tests for detection runs against the ledger."""

    def test_detects_auto_and_rule_subscriptions(self, ledger, ctx, today):
        """Monthly auto groups and rule matches become subscriptions."""
        result = RecurringDetector(ledger, RecurringConfig()).detect(ctx, today)

        assert result.processed == 6
        assert result.matched == 2

        by_key = {s.vendor_key: s for s in result.subscriptions}
        netflix = by_key["netflixcom 8665797172_43.00"]
        assert netflix.source == SubscriptionSource.AUTO
        assert netflix.display_name == "Netflix"
        assert netflix.cadence == "monthly"
        assert netflix.avg_amount == Decimal("43.00")
        assert netflix.amount_tolerance == Decimal("5.00")
        assert netflix.confidence == 95.0
        assert netflix.first_seen_date == "2024-01-05"
        assert netflix.last_charge_date == "2024-03-05"
        assert netflix.next_expected_date == "2024-04-04"
        assert netflix.active is True
        assert len(netflix.transaction_ids) == 3

        google = by_key["google_workspace"]
        assert google.source == SubscriptionSource.RULE
        assert google.display_name == "Google Workspace"
        assert google.confidence == 90.0

        assert result.monthly_total == Decimal("70.60")
        assert result.to_dict()["monthlyTotal"] == "70.60"

    def test_subscriptions_persisted(self, ledger, ctx, today):
        """Detected subscriptions are stored with their members."""
        RecurringDetector(ledger, RecurringConfig()).detect(ctx, today)

        stored = ledger.list_subscriptions(ctx)
        assert {s.vendor_key for s in stored} == {"netflixcom 8665797172_43.00", "google_workspace"}
        netflix = next(s for s in stored if s.source == SubscriptionSource.AUTO)
        assert netflix.service_period_months == ["2024-01-01", "2024-02-01", "2024-03-01"]

    def test_rerun_replaces(self, ledger, ctx, today):
        """Running twice leaves one copy of each subscription."""
        detector = RecurringDetector(ledger, RecurringConfig())
        detector.detect(ctx, today)
        detector.detect(ctx, today)

        assert len(ledger.list_subscriptions(ctx)) == 2

    def test_inactive_after_window(self, ledger, ctx):
        """Subscriptions without a recent charge are inactive and excluded from the total."""
        result = RecurringDetector(ledger, RecurringConfig()).detect(ctx, date(2024, 6, 1))

        assert all(not s.active for s in result.subscriptions)
        assert result.monthly_total == Decimal("0.00")
        assert ledger.list_subscriptions(ctx, active_only=True) == []

    def test_org_rule_takes_over(self, ledger, ctx, today):
        """A new organisation rule regroups charges on the next run."""
        detector = RecurringDetector(ledger, RecurringConfig())
        detector.detect(ctx, today)

        ledger.add_subscription_rule(ctx, SubscriptionRule("netflix", "Netflix", r"(?i)netflix"))
        result = detector.detect(ctx, today)

        keys = {s.vendor_key: s for s in result.subscriptions}
        assert set(keys) == {"netflix", "google_workspace"}
        assert keys["netflix"].source == SubscriptionSource.RULE
        assert keys["netflix"].confidence == 90.0

    def test_invalid_rule_regex_skipped(self, ledger, ctx, today, caplog):
        """A broken rule is logged and detection continues."""
        ledger.add_subscription_rule(ctx, SubscriptionRule("broken", "Broken", "(["))

        with caplog.at_level(logging.WARNING):
            result = RecurringDetector(ledger, RecurringConfig()).detect(ctx, today)

        assert "Invalid regex" in caplog.text
        assert result.matched == 2

    def test_rule_needs_two_charges(self, store, ctx, today):
        """A single rule match is not a subscription."""
        insert(store, ctx, make_candidate("2024-03-01", "27.60", "GOOGLE WORKSPACE GCPLD1234"))

        result = RecurringDetector(store, RecurringConfig()).detect(ctx, today)

        assert result.subscriptions == []

    def test_auto_needs_three_charges(self, store, ctx, today):
        """Two similar monthly charges are not enough without a rule."""
        insert(
            store,
            ctx,
            make_candidate("2024-02-05", "43.00", "NETFLIX.COM"),
            make_candidate("2024-03-05", "43.00", "NETFLIX.COM"),
        )

        assert RecurringDetector(store, RecurringConfig()).detect(ctx, today).matched == 0

    def test_irregular_charges_ignored(self, store, ctx, today):
        """Similar charges without a monthly rhythm are not subscriptions."""
        insert(
            store,
            ctx,
            make_candidate("2024-01-05", "15.00", "BOLT RIDE WARSZAWA"),
            make_candidate("2024-01-15", "15.00", "BOLT RIDE WARSZAWA"),
            make_candidate("2024-03-05", "15.00", "BOLT RIDE WARSZAWA"),
        )

        assert RecurringDetector(store, RecurringConfig()).detect(ctx, today).matched == 0

    def test_currencies_kept_apart(self, store, ctx, today):
        """The same service billed in two currencies forms two groups."""
        insert(
            store,
            ctx,
            *[
                make_candidate(d, "10.00", "CLOUD STORAGE PLAN", currency=cur)
                for cur in ("PLN", "EUR")
                for d in ("2024-01-10", "2024-02-10", "2024-03-10")
            ],
        )

        result = RecurringDetector(store, RecurringConfig()).detect(ctx, today)

        assert sorted(s.currency for s in result.subscriptions) == ["EUR", "PLN"]

    def test_lookback_limits_subscriptions(self, ledger, ctx, today):
        """Charges older than the lookback window are ignored for subscriptions."""
        config = RecurringConfig(lookback_days=40)

        result = RecurringDetector(ledger, config).detect(ctx, today)

        assert result.processed == 2
        assert result.matched == 0

    def test_recurrence_annotations(self, ledger, ctx, today):
        """Every outgoing transaction gets recurrence fields."""
        RecurringDetector(ledger, RecurringConfig()).detect(ctx, today)

        rows, _ = ledger.query_transactions(ctx, TransactionFilter(search="netflix"))
        by_date = {r.booking_date: r for r in rows}
        assert by_date["2024-01-05"].is_recurring is False
        assert by_date["2024-02-05"].is_recurring is True
        assert by_date["2024-03-05"].recurrence_pattern == "monthly"
        assert by_date["2024-03-05"].recurrence_group_id == "netflixcom 8665797172_43.00"

        rows, _ = ledger.query_transactions(ctx, TransactionFilter(search="ikea"))
        assert rows[0].is_recurring is False
        assert rows[0].recurrence_pattern is None

    def test_annotations_recomputed(self, ledger, ctx, today):
        """A second run changes nothing and reports no updates."""
        detector = RecurringDetector(ledger, RecurringConfig())
        first = detector.detect(ctx, today)
        second = detector.detect(ctx, today)

        assert first.recurring_updated == 3
        assert second.recurring_updated == 0
