"""Test fixtures and utilities."""

from datetime import date
from decimal import Decimal
from pathlib import Path

import pytest

from bank_ledger.config import Config
from bank_ledger.schemas.context import OrgContext
from bank_ledger.schemas.dedupe import compute_transaction_hash
from bank_ledger.schemas.transaction import Direction, TransactionCandidate
from bank_ledger.state_store import StateStore

ORG_ID = "6f1c2b8e-4d3a-4b7e-9a51-2c8d0e4f7a10"
OTHER_ORG_ID = "0b9e7d6c-5a4f-4e3d-8c2b-1a0f9e8d7c6b"

# Flat CSV export, semicolon-delimited, Polish locale
SAMPLE_FLAT_CSV = """Data księgowania;Data waluty;Kontrahent;Tytuł;Kwota;Waluta
2024-01-05;2024-01-05;Netflix International;NETFLIX.COM 866-579-7172;-43,00;PLN
05.01.2024;05.01.2024;ACME Sp. z o.o.;Wynagrodzenie za grudzień 2023;12 500,00;PLN
2024-01-08;2024-01-08;ZUS;Składka ZUS 12/2023;-1 600,32;PLN
2024-01-09;2024-01-09;Biedronka;Zakup przy użyciu karty BIEDRONKA 1234;-54,30;PLN
"""

# mBank export: metadata preamble, `#`-prefixed header, trailing delimiters
SAMPLE_MBANK_CSV = """mBank S.A. Bankowość Detaliczna;
Skrytka Pocztowa 2108;
90-959 Łódź 2;

#Klient;
JAN KOWALSKI;

#Za okres:;
01.01.2024;31.03.2024;

#Data operacji;#Opis operacji;#Rachunek;#Kategoria;#Kwota;
2024-01-05;"SPOTIFY P1A2B3C4 STOCKHOLM";eKonto 1234;Rozrywka;-23,99 PLN;
2024-01-10;"WYNAGRODZENIE STYCZEŃ";eKonto 1234;Wpływy;8 500,00 PLN;
2024-01-15;"ZAKUP PRZY UŻYCIU KARTY BIEDRONKA";eKonto 1234;Żywność;-54,30 PLN;
"""


@pytest.fixture
def sample_flat_csv() -> str:
    """Flat semicolon-delimited statement."""
    return SAMPLE_FLAT_CSV


@pytest.fixture
def sample_mbank_csv() -> str:
    """mBank-style statement with a metadata preamble."""
    return SAMPLE_MBANK_CSV


@pytest.fixture
def temp_db(tmp_path) -> Path:
    """Temporary database path for testing."""
    return tmp_path / "test_ledger.db"


@pytest.fixture
def store(temp_db) -> StateStore:
    """Fresh state store."""
    return StateStore(temp_db)


@pytest.fixture
def ctx() -> OrgContext:
    """Organisation under test."""
    return OrgContext(ORG_ID)


@pytest.fixture
def other_ctx() -> OrgContext:
    """A second organisation, for isolation checks."""
    return OrgContext(OTHER_ORG_ID)


@pytest.fixture
def config(temp_db) -> Config:
    """Default configuration pointing at the temporary database."""
    return Config(state_db_path=temp_db)


@pytest.fixture
def today() -> date:
    """Fixed reference date for recency checks."""
    return date(2024, 4, 1)


def make_candidate(
    booking_date: str,
    amount: str,
    description: str,
    direction: Direction = Direction.OUT,
    currency: str = "PLN",
    counterparty_name: str | None = None,
    reference: str | None = None,
) -> TransactionCandidate:
    """Build a hashed candidate ready for insertion."""
    candidate = TransactionCandidate(
        booking_date=booking_date,
        amount=Decimal(amount),
        currency=currency,
        direction=direction,
        description=description,
        counterparty_name=counterparty_name,
        reference=reference,
    )
    candidate.transaction_hash = compute_transaction_hash(
        booking_date=booking_date,
        amount=candidate.signed_amount,
        currency=currency,
        description=description,
        counterparty_name=counterparty_name,
    )
    return candidate
