"""Recurring charge detection.

Two outgoing transactions are candidates for the same recurring charge when
their descriptions are similar and their amounts are within 1% of each
other. Day gaps between such transactions are classified into cadence
buckets (weekly, monthly, quarterly, yearly); the most frequent bucket
wins.

A detection run is a full recompute: per-transaction recurrence fields are
rewritten for the whole history and the organisation's subscriptions are
replaced, never merged.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING, Any, Protocol

from ..schemas.subscription import (
    DetectedSubscription,
    RecurrenceAnnotation,
    RecurrencePattern,
    SubscriptionRule,
    SubscriptionSource,
)

if TYPE_CHECKING:
    from ..config import RecurringConfig
    from ..schemas.context import OrgContext
    from ..state_store import StateStore

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")

DEFAULT_CADENCE_WINDOWS: dict[str, tuple[int, int]] = {
    "weekly": (6, 8),
    "monthly": (28, 32),
    "quarterly": (87, 93),
    "yearly": (360, 370),
}

# Gaps outside (0, MAX_GAP_DAYS) carry no cadence evidence
MAX_GAP_DAYS = 400

PL_MONTHS = {
    "styczeń": 1, "stycznia": 1,
    "luty": 2, "lutego": 2,
    "marzec": 3, "marca": 3,
    "kwiecień": 4, "kwietnia": 4,
    "maj": 5, "maja": 5,
    "czerwiec": 6, "czerwca": 6,
    "lipiec": 7, "lipca": 7,
    "sierpień": 8, "sierpnia": 8,
    "wrzesień": 9, "września": 9,
    "październik": 10, "października": 10,
    "listopad": 11, "listopada": 11,
    "grudzień": 12, "grudnia": 12,
}  # fmt: skip

_PL_MONTH_ALT = "|".join(sorted(PL_MONTHS, key=len, reverse=True))
FEE_FOR_MONTH_RE = re.compile(r"\bopłata\s+za\s+(" + _PL_MONTH_ALT + r")\b")
WORKSPACE_MONTH_RE = re.compile(r"\bgoogle\s+workspace\s+(" + _PL_MONTH_ALT + r")\b")
YEAR_RE = re.compile(r"\b(20\d{2})\b")


class ChargeLike(Protocol):
    """Fields the detector reads from a transaction."""

    id: Any
    booking_date: str
    amount: Decimal
    description: str


# ============================================================================
# Similarity and interval primitives
# ============================================================================


def normalize_description(description: str) -> str:
    """Lowercase, collapse whitespace and strip punctuation."""
    text = re.sub(r"\s+", " ", description.lower())
    return re.sub(r"[^\w\s]", "", text).strip()


def _normalized_similar(norm1: str, norm2: str) -> bool:
    if norm1 == norm2:
        return True

    # One contains the other
    if len(norm1) > 10 and len(norm2) > 10:
        if norm1 in norm2 or norm2 in norm1:
            return True

    # At least 3 shared longer words
    if len(norm1) > 20 and len(norm2) > 20:
        words1 = {w for w in norm1.split(" ") if len(w) > 3}
        words2 = {w for w in norm2.split(" ") if len(w) > 3}
        if len(words1 & words2) >= 3:
            return True

    return False


def descriptions_similar(desc1: str, desc2: str) -> bool:
    """True if two descriptions plausibly name the same recurring charge."""
    return _normalized_similar(normalize_description(desc1), normalize_description(desc2))


def amounts_similar(amount1: Decimal, amount2: Decimal) -> bool:
    """Exact match, or within 1% of their average."""
    abs1 = abs(Decimal(amount1))
    abs2 = abs(Decimal(amount2))
    if abs1 == abs2:
        return True
    avg = (abs1 + abs2) / 2
    return avg > 0 and abs(abs1 - abs2) / avg < Decimal("0.01")


def days_between(date1: str, date2: str) -> int:
    """Absolute number of days between two ISO dates."""
    return abs((date.fromisoformat(date2) - date.fromisoformat(date1)).days)


def classify_gap(
    days: int, windows: dict[str, tuple[int, int]] | None = None
) -> RecurrencePattern:
    """Map a day gap onto a cadence bucket; unmatched gaps are one_time."""
    for cadence, (low, high) in (windows or DEFAULT_CADENCE_WINDOWS).items():
        if low <= days <= high:
            return RecurrencePattern(cadence)
    return RecurrencePattern.ONE_TIME


def vote_cadence(
    gaps: Sequence[int], windows: dict[str, tuple[int, int]] | None = None
) -> tuple[RecurrencePattern, int]:
    """Most frequent cadence among the gaps and its supporting count.

    one_time gaps do not vote. Ties go to the bucket listed first in
    `windows` (weekly, monthly, quarterly, yearly).
    """
    windows = windows or DEFAULT_CADENCE_WINDOWS
    counts = {cadence: 0 for cadence in windows}
    for days in gaps:
        bucket = classify_gap(days, windows)
        if bucket != RecurrencePattern.ONE_TIME:
            counts[bucket.value] += 1

    best, best_count = RecurrencePattern.ONE_TIME, 0
    for cadence, count in counts.items():
        if count > best_count:
            best, best_count = RecurrencePattern(cadence), count
    return best, best_count


def group_key(description: str, amount: Decimal, max_length: int = 100) -> str:
    """Stable identity for a recurring charge: normalized description + amount.

    The amount suffix always survives truncation.
    """
    amount_part = f"{abs(Decimal(amount)):.2f}"
    room = max(max_length - len(amount_part) - 1, 0)
    return f"{normalize_description(description)[:room]}_{amount_part}"


def infer_service_month(description: str, booking_date: str) -> str:
    """Month a charge pays for, as YYYY-MM-01.

    Two phrasings name it explicitly:
    - "OPŁATA ZA PAŹDZIERNIK 2025" (the year is required)
    - "GOOGLE WORKSPACE SIERPIEŃ [2025]" (the booking year when omitted)

    Anything else, including a stray month word, uses the booking month.
    """
    text = description.lower()
    year_match = YEAR_RE.search(text)

    fee_match = FEE_FOR_MONTH_RE.search(text)
    if fee_match and year_match:
        return f"{int(year_match.group(1)):04d}-{PL_MONTHS[fee_match.group(1)]:02d}-01"

    workspace_match = WORKSPACE_MONTH_RE.search(text)
    if workspace_match:
        year = int(year_match.group(1)) if year_match else int(booking_date[:4])
        return f"{year:04d}-{PL_MONTHS[workspace_match.group(1)]:02d}-01"

    return f"{booking_date[:7]}-01"


# ============================================================================
# Per-transaction pattern
# ============================================================================


@dataclass
class RecurringMatch:
    """Recurring pattern of one transaction relative to its history."""

    pattern: RecurrencePattern
    confidence: float
    group_id: str

    @property
    def is_recurring(self) -> bool:
        return self.pattern != RecurrencePattern.ONE_TIME and self.confidence > 0.5


def _match_against(
    tx: ChargeLike,
    norm: str,
    previous: Sequence[tuple[ChargeLike, str]],
    windows: dict[str, tuple[int, int]],
    key_length: int,
) -> RecurringMatch:
    key = group_key(tx.description, tx.amount, key_length)
    similar = [
        prev
        for prev, prev_norm in previous
        if _normalized_similar(prev_norm, norm) and amounts_similar(prev.amount, tx.amount)
    ]
    if not similar:
        return RecurringMatch(RecurrencePattern.ONE_TIME, 0.0, key)

    gaps = [days_between(p.booking_date, tx.booking_date) for p in similar]
    gaps = [d for d in gaps if 0 < d < MAX_GAP_DAYS]
    if not gaps:
        return RecurringMatch(RecurrencePattern.ONE_TIME, 0.3, key)

    pattern, count = vote_cadence(gaps, windows)
    if pattern == RecurrencePattern.ONE_TIME:
        return RecurringMatch(RecurrencePattern.ONE_TIME, 0.5, key)

    confidence = min(0.5 + (count / len(similar)) * 0.5, 0.95)
    return RecurringMatch(pattern, confidence, key)


def detect_recurring_pattern(
    transaction: ChargeLike,
    previous: Sequence[ChargeLike],
    windows: dict[str, tuple[int, int]] | None = None,
    key_length: int = 100,
) -> RecurringMatch:
    """
    Classify a transaction against earlier transactions.

    Returns:
        one_time/0.0 when nothing similar precedes it; one_time/0.3 when
        similar charges exist but none at a usable distance; one_time/0.5
        when no gap falls in a cadence window; otherwise the winning
        cadence with confidence min(0.5 + 0.5 * supporting/similar, 0.95)
    """
    pairs = [(p, normalize_description(p.description)) for p in previous]
    return _match_against(
        transaction,
        normalize_description(transaction.description),
        pairs,
        windows or DEFAULT_CADENCE_WINDOWS,
        key_length,
    )


# ============================================================================
# Detection run
# ============================================================================


@dataclass
class DetectionResult:
    """Outcome of one detection run."""

    subscriptions: list[DetectedSubscription] = field(default_factory=list)
    monthly_total: Decimal = Decimal("0.00")
    processed: int = 0
    recurring_updated: int = 0

    @property
    def matched(self) -> int:
        return len(self.subscriptions)

    def to_dict(self) -> dict[str, Any]:
        return {
            "subscriptions": [s.to_dict() for s in self.subscriptions],
            "monthlyTotal": f"{self.monthly_total:.2f}",
            "processed": self.processed,
            "matched": self.matched,
            "recurringUpdated": self.recurring_updated,
        }


@dataclass
class _Cluster:
    vendor_key: str
    display_name: str
    currency: str
    rule: SubscriptionRule | None = None
    anchor_norm: str = ""
    members: list[Any] = field(default_factory=list)


class RecurringDetector:
    """Finds recurring charges and subscriptions in an organisation's ledger."""

    def __init__(self, store: StateStore, config: RecurringConfig):
        self.store = store
        self.config = config

    def detect(self, ctx: OrgContext, today: date | None = None) -> DetectionResult:
        """
        Recompute recurrence annotations and subscriptions for one organisation.

        Safe to call repeatedly: stored subscriptions are replaced wholesale.
        """
        today = today or date.today()
        history = self.store.list_for_detection(ctx)

        annotations = self.annotate(history)
        updated = self.store.apply_recurrence(ctx, annotations)

        if self.config.lookback_days:
            since = (today - timedelta(days=self.config.lookback_days)).isoformat()
            window = [t for t in history if t.booking_date >= since]
        else:
            window = history

        rules = self.load_rules(ctx)
        subscriptions = self.find_subscriptions(window, rules, today)
        self.store.replace_subscriptions(ctx, subscriptions)

        monthly_total = sum(
            (s.avg_amount for s in subscriptions if s.active and s.cadence == "monthly"),
            Decimal("0.00"),
        )
        logger.info(
            "Detection for %s: %d transactions, %d subscriptions, monthly total %s, "
            "%d recurrence updates",
            ctx.org_id,
            len(window),
            len(subscriptions),
            monthly_total,
            updated,
        )
        return DetectionResult(
            subscriptions=subscriptions,
            monthly_total=monthly_total,
            processed=len(window),
            recurring_updated=updated,
        )

    def annotate(self, history: Sequence[ChargeLike]) -> list[RecurrenceAnnotation]:
        """Recurrence fields for every transaction, in chronological order."""
        normalized = [(tx, normalize_description(tx.description)) for tx in history]
        annotations = []
        for i, (tx, norm) in enumerate(normalized):
            match = _match_against(
                tx,
                norm,
                normalized[:i],
                self.config.cadence_windows,
                self.config.group_key_length,
            )
            if match.is_recurring:
                annotations.append(
                    RecurrenceAnnotation(tx.id, True, match.pattern.value, match.group_id)
                )
            else:
                annotations.append(RecurrenceAnnotation(tx.id, False, None, None))
        return annotations

    def load_rules(self, ctx: OrgContext) -> list[SubscriptionRule]:
        """Organisation rules first, then configured rules."""
        rules = self.store.list_subscription_rules(ctx)
        rules.extend(
            SubscriptionRule(r.vendor_key, r.display_name, r.match_regex, r.cadence)
            for r in self.config.subscription_rules
        )
        return rules

    def find_subscriptions(
        self,
        transactions: Sequence[Any],
        rules: Sequence[SubscriptionRule],
        today: date,
    ) -> list[DetectedSubscription]:
        """Group chronological outgoing transactions and keep the recurring groups."""
        compiled = []
        for rule in rules:
            try:
                compiled.append((rule, re.compile(rule.match_regex)))
            except re.error as e:
                logger.warning("Invalid regex in rule %s (%r): %s", rule.vendor_key, rule.match_regex, e)

        clusters: list[_Cluster] = []
        by_rule: dict[tuple[str, str], _Cluster] = {}

        for tx in transactions:
            rule = next((r for r, rx in compiled if rx.search(tx.description)), None)
            if rule is not None:
                cluster = by_rule.get((rule.vendor_key, tx.currency))
                if cluster is None:
                    cluster = _Cluster(rule.vendor_key, rule.display_name, tx.currency, rule)
                    by_rule[(rule.vendor_key, tx.currency)] = cluster
                    clusters.append(cluster)
                cluster.members.append(tx)
                continue

            norm = normalize_description(tx.description)
            cluster = next(
                (
                    c
                    for c in clusters
                    if c.rule is None
                    and c.currency == tx.currency
                    and _normalized_similar(c.anchor_norm, norm)
                    and amounts_similar(c.members[0].amount, tx.amount)
                ),
                None,
            )
            if cluster is None:
                cluster = _Cluster(
                    vendor_key=group_key(tx.description, tx.amount, self.config.group_key_length),
                    display_name=tx.counterparty_name or tx.description[:50],
                    currency=tx.currency,
                    anchor_norm=norm,
                )
                clusters.append(cluster)
            cluster.members.append(tx)

        detected: list[DetectedSubscription] = []
        seen: set[tuple[str, str, str]] = set()
        for cluster in clusters:
            sub = self._evaluate(cluster, today)
            if sub is None:
                continue
            identity = (sub.vendor_key, sub.cadence, sub.currency)
            if identity in seen:
                logger.warning("Duplicate subscription key %s skipped", identity)
                continue
            seen.add(identity)
            detected.append(sub)
        return detected

    def _evaluate(self, cluster: _Cluster, today: date) -> DetectedSubscription | None:
        cfg = self.config
        members = sorted(cluster.members, key=lambda t: (t.booking_date, t.id))
        amounts = [abs(t.amount) for t in members]
        avg = (sum(amounts, Decimal("0")) / len(amounts)).quantize(CENT, ROUND_HALF_UP)
        tolerance = max(cfg.amount_tolerance_floor, avg * cfg.amount_tolerance_pct).quantize(
            CENT, ROUND_HALF_UP
        )

        if cluster.rule is not None:
            if len(members) < cfg.min_rule_occurrences:
                return None
            cadence = cluster.rule.cadence
            confidence = float(cfg.rule_confidence)
            source = SubscriptionSource.RULE
        else:
            if len(members) < cfg.min_auto_occurrences:
                return None
            if any(abs(a - avg) > tolerance for a in amounts):
                return None
            gaps = [
                days_between(a.booking_date, b.booking_date) for a, b in zip(members, members[1:])
            ]
            pattern, count = vote_cadence(gaps, cfg.cadence_windows)
            ratio = count / len(gaps)
            if pattern != RecurrencePattern.MONTHLY or count < 2 or ratio < cfg.min_cadence_ratio:
                return None
            cadence = pattern.value
            confidence = round(100 * min(0.5 + 0.5 * ratio, 0.95), 2)
            source = SubscriptionSource.AUTO

        first = date.fromisoformat(members[0].booking_date)
        last = date.fromisoformat(members[-1].booking_date)
        return DetectedSubscription(
            vendor_key=cluster.vendor_key,
            display_name=cluster.display_name,
            cadence=cadence,
            currency=cluster.currency,
            avg_amount=avg,
            amount_tolerance=tolerance,
            first_seen_date=first.isoformat(),
            last_charge_date=last.isoformat(),
            next_expected_date=(last + timedelta(days=cfg.next_charge_days)).isoformat(),
            active=abs((today - last).days) <= cfg.active_window_days,
            confidence=confidence,
            source=source,
            transaction_ids=[t.id for t in members],
            service_period_months=[
                infer_service_month(t.description, t.booking_date) for t in members
            ],
        )
