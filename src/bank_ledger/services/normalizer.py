"""
Transaction normalizer - maps dialect columns to canonical fields.

Column names vary by bank and locale, so every logical field has an ordered
list of synonyms; the first synonym present in the header wins. Lookup is
insensitive to case, whitespace and punctuation, with a partial-match
fallback for headers such as "Kwota operacji (PLN)".

Rows missing a parseable booking date, a non-zero amount or a description
are invalid: they are counted and dropped, never fatal for the batch.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation

from ..parsers.base import ParsedStatement
from ..schemas.transaction import Direction, TransactionCandidate

logger = logging.getLogger(__name__)

# ============================================================================
# Column synonyms (ordered, first match wins)
# ============================================================================

FIELD_SYNONYMS: dict[str, list[str]] = {
    "booking_date": [
        "Data księgowania",
        "Data ksiegowania",
        "Data operacji",
        "Data transakcji",
        "Booking date",
        "Data",
        "Date",
    ],
    "amount": ["Kwota", "Kwota operacji", "Kwota transakcji", "Amount"],
    "description": ["Opis operacji", "Tytuł", "Tytul", "Opis", "Description"],
    "value_date": ["Data waluty", "Data wartości", "Data wartosci", "Value date"],
    "currency": ["Waluta", "Currency"],
    "counterparty_name": [
        "Kontrahent",
        "Nadawca/Odbiorca",
        "Odbiorca",
        "Nadawca",
        "Nazwa kontrahenta",
        "Counterparty",
    ],
    "counterparty_account": [
        "Rachunek kontrahenta",
        "Numer rachunku",
        "Nr rachunku",
        "Konto",
        "Counterparty account",
    ],
    "reference": ["Referencje", "Numer referencyjny", "Reference"],
    "bank_category": ["Kategoria", "Category"],
}

# Partial matches shorter than this are too ambiguous to trust
MIN_PARTIAL_KEY_LENGTH = 4

ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
DOTTED_DATE_RE = re.compile(r"^(\d{2})\.(\d{2})\.(\d{4})$")
CURRENCY_CODE_RE = re.compile(r"^([A-Za-z]{3})(?=[\d+\-.,])|(?<=[\d.,])([A-Za-z]{3})$")
# A dot followed by exactly three digits is a thousands separator
THOUSANDS_DOT_RE = re.compile(r"\.(?=\d{3}(\D|$))")
NUMBER_RE = re.compile(r"^[+-]?\d+(\.\d+)?$")


def normalize_key(value: str) -> str:
    """Lowercase, collapse whitespace and drop punctuation."""
    value = value.replace("\u00a0", " ").lower().strip()
    value = re.sub(r"\s+", " ", value)
    return re.sub(r"[^\w ]|_", "", value).strip()


def parse_date(value: str | None) -> str | None:
    """
    Parse a statement date to ISO format.

    Accepts YYYY-MM-DD verbatim and DD.MM.YYYY; anything else is invalid.
    """
    if not value:
        return None
    s = value.strip()

    if ISO_DATE_RE.match(s):
        iso = s
    else:
        m = DOTTED_DATE_RE.match(s)
        if not m:
            return None
        iso = f"{m.group(3)}-{m.group(2)}-{m.group(1)}"

    try:
        datetime.strptime(iso, "%Y-%m-%d")
    except ValueError:
        return None
    return iso


def split_currency(value: str) -> tuple[str, str | None]:
    """Split a leading or trailing ISO currency code off an amount cell."""
    compact = re.sub(r"\s+", "", value.replace("\u00a0", " "))
    m = CURRENCY_CODE_RE.search(compact)
    if not m:
        return compact, None
    code = (m.group(1) or m.group(2)).upper()
    return compact[: m.start()] + compact[m.end():], code


def parse_amount(value: str | None) -> Decimal | None:
    """
    Parse a locale-formatted amount into a signed Decimal.

    A comma is the decimal separator when it is the rightmost separator and
    has at most two trailing digits; otherwise commas and stray dots are
    thousands separators. Zero and non-finite results are invalid.

    Examples:
        "-123.45"      -> Decimal("-123.45")
        "1 234,56 PLN" -> Decimal("1234.56")
        "1.234.567,8"  -> Decimal("1234567.8")
        "1,234"        -> Decimal("1234")
    """
    if not value:
        return None
    s, _ = split_currency(value)
    if not s:
        return None

    last_comma = s.rfind(",")
    last_dot = s.rfind(".")
    if last_comma > last_dot and len(s) - last_comma - 1 <= 2:
        head, tail = s[:last_comma], s[last_comma + 1:]
        s = head.replace(".", "").replace(",", "") + "." + tail
    else:
        s = THOUSANDS_DOT_RE.sub("", s.replace(",", ""))

    if not NUMBER_RE.match(s):
        return None
    try:
        amount = Decimal(s)
    except InvalidOperation:
        return None
    if not amount.is_finite() or amount == 0:
        return None
    return amount


@dataclass
class NormalizationResult:
    """Candidates built from a parsed statement."""

    candidates: list[TransactionCandidate] = field(default_factory=list)
    invalid: int = 0
    column_map: dict[str, str | None] = field(default_factory=dict)
    invalid_reasons: list[tuple[int, str]] = field(default_factory=list)

    @property
    def valid(self) -> int:
        return len(self.candidates)


class TransactionNormalizer:
    """
    Maps raw statement rows onto canonical transaction candidates.

    Direction comes from the sign of the amount (negative = out); the
    candidate stores the absolute value.
    """

    def __init__(
        self,
        default_currency: str = "PLN",
        synonyms: dict[str, list[str]] | None = None,
    ):
        self.default_currency = default_currency.upper()
        self.synonyms = synonyms or FIELD_SYNONYMS

    def resolve_columns(self, headers: list[str]) -> dict[str, str | None]:
        """Pick the header used for each canonical field."""
        key_map: dict[str, str] = {}
        for header in headers:
            key_map.setdefault(normalize_key(header), header)

        used: set[str] = set()
        columns: dict[str, str | None] = {}
        for field_name, candidates in self.synonyms.items():
            header = self._find_header(key_map, candidates, used)
            columns[field_name] = header
            if header is not None:
                used.add(header)
        return columns

    def normalize(self, statement: ParsedStatement) -> NormalizationResult:
        """Normalize every row; invalid rows are counted, not raised."""
        columns = self.resolve_columns(statement.headers)
        logger.debug("Resolved columns: %s", columns)
        result = NormalizationResult(column_map=columns)

        for idx, row in enumerate(statement.rows):
            candidate, reason = self.normalize_row(row, columns)
            if candidate is None:
                result.invalid += 1
                result.invalid_reasons.append((idx, reason or "invalid"))
                logger.debug("Row %d invalid: %s", idx, reason)
                continue
            result.candidates.append(candidate)

        logger.info(
            "Normalized %d rows: %d valid, %d invalid",
            len(statement.rows),
            result.valid,
            result.invalid,
        )
        return result

    def normalize_row(
        self, row: dict[str, str], columns: dict[str, str | None]
    ) -> tuple[TransactionCandidate | None, str | None]:
        """Build one candidate, or return the reason the row is invalid."""

        def get(field_name: str) -> str | None:
            header = columns.get(field_name)
            if header is None:
                return None
            value = (row.get(header) or "").strip()
            return value or None

        booking_date = parse_date(get("booking_date"))
        if booking_date is None:
            return None, f"unparseable booking date {get('booking_date')!r}"

        amount_raw = get("amount")
        amount = parse_amount(amount_raw)
        if amount is None:
            return None, f"unparseable or zero amount {amount_raw!r}"

        description = " ".join((get("description") or "").split())
        if not description:
            return None, "empty description"

        currency = get("currency")
        if currency is None and amount_raw:
            _, currency = split_currency(amount_raw)
        currency = (currency or self.default_currency).upper()

        return (
            TransactionCandidate(
                booking_date=booking_date,
                value_date=parse_date(get("value_date")),
                amount=abs(amount),
                currency=currency,
                direction=Direction.OUT if amount < 0 else Direction.IN,
                description=description,
                counterparty_name=get("counterparty_name"),
                counterparty_account=get("counterparty_account"),
                reference=get("reference"),
                bank_category=get("bank_category"),
                raw=dict(row),
            ),
            None,
        )

    @staticmethod
    def _find_header(
        key_map: dict[str, str], candidates: list[str], used: set[str]
    ) -> str | None:
        for candidate in candidates:
            header = key_map.get(normalize_key(candidate))
            if header is not None and header not in used:
                return header

        # Fallback: partial match
        candidate_keys = [normalize_key(c) for c in candidates]
        for key, header in key_map.items():
            if header in used or len(key) < MIN_PARTIAL_KEY_LENGTH:
                continue
            if any(ck in key for ck in candidate_keys):
                return header
        return None
