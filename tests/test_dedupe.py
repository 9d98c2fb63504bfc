"""Tests for dedupe module - transaction content hashes."""

from decimal import Decimal

import pytest

from bank_ledger.schemas.dedupe import compute_transaction_hash

BASE = {
    "booking_date": "2024-01-05",
    "amount": Decimal("-43.00"),
    "currency": "PLN",
    "description": "NETFLIX.COM 866-579-7172",
    "counterparty_account": "PL61109010140000071219812874",
    "counterparty_name": "Netflix International",
}


class TestComputeTransactionHash:
    """Tests for transaction hash generation."""

    def test_sha256_hex(self):
        """Hash is a 64-character hex digest."""
        tx_hash = compute_transaction_hash(**BASE)

        assert len(tx_hash) == 64
        assert all(c in "0123456789abcdef" for c in tx_hash)

    def test_deterministic(self):
        """Same inputs produce same output (deterministic)."""
        assert compute_transaction_hash(**BASE) == compute_transaction_hash(**BASE)

    @pytest.mark.parametrize(
        "field,value",
        [
            ("booking_date", "2024-01-06"),
            ("amount", Decimal("-43.01")),
            ("currency", "EUR"),
            ("description", "NETFLIX.COM 866-579-7173"),
            ("counterparty_account", "PL00000000000000000000000000"),
            ("counterparty_name", "Netflix BV"),
        ],
    )
    def test_any_field_change_changes_hash(self, field, value):
        """Changing one field changes the hash."""
        changed = {**BASE, field: value}
        assert compute_transaction_hash(**changed) != compute_transaction_hash(**BASE)

    def test_sign_matters(self):
        """A charge and a refund of the same value hash differently."""
        refund = {**BASE, "amount": Decimal("43.00")}
        assert compute_transaction_hash(**refund) != compute_transaction_hash(**BASE)

    def test_amount_normalization(self):
        """Amount formats that denote the same value hash the same."""
        h1 = compute_transaction_hash(**{**BASE, "amount": Decimal("-43")})
        h2 = compute_transaction_hash(**{**BASE, "amount": "-43,00"})
        h3 = compute_transaction_hash(**{**BASE, "amount": -43.0})

        assert h1 == h2 == h3 == compute_transaction_hash(**BASE)

    def test_currency_case_insensitive(self):
        """Currency codes are compared uppercased."""
        lower = {**BASE, "currency": "pln"}
        assert compute_transaction_hash(**lower) == compute_transaction_hash(**BASE)

    def test_missing_optional_fields(self):
        """Missing counterparty fields equal empty strings."""
        h1 = compute_transaction_hash("2024-01-05", Decimal("-1"), "PLN", "Fee")
        h2 = compute_transaction_hash("2024-01-05", Decimal("-1"), "PLN", "Fee", "", "  ")

        assert h1 == h2

    def test_field_boundaries(self):
        """Moving text between fields changes the hash."""
        h1 = compute_transaction_hash("2024-01-05", Decimal("-1"), "PLN", "Fee A", None, "B")
        h2 = compute_transaction_hash("2024-01-05", Decimal("-1"), "PLN", "Fee", "A", "B")

        assert h1 != h2
