"""
Transaction hash generation (CRITICAL).

This module defines THE deterministic content hash for ledger rows.
It is the idempotency key of the import pipeline: the store enforces
UNIQUE(org_id, transaction_hash), so re-importing a statement never
duplicates rows.

Hash input (pipe-joined, UTF-8, SHA256 hex digest):
    booking_date | signed amount (2 dp) | currency | description
    | counterparty_account | counterparty_name

The hash must be:
- Stable: same inputs always produce the same output
- Sensitive: changing any single field changes the hash
- Collision-resistant: distinct real transactions never share a key
"""

import hashlib
from decimal import Decimal

# ============================================================================
# SSOT Constants for Transaction Hashing
# ============================================================================

# Separator between hashed fields
HASH_FIELD_SEPARATOR = "|"


def _normalize_amount(amount: Decimal | float | str) -> str:
    """Normalize amount to a 2-decimal string with dot separator."""
    if isinstance(amount, str):
        amount = Decimal(amount.replace(",", "."))
    elif isinstance(amount, float):
        amount = Decimal(str(amount))
    return f"{amount:.2f}"


def _normalize_text(value: str | None) -> str:
    """Strip surrounding whitespace; None becomes an empty string."""
    return (value or "").strip()


def compute_transaction_hash(
    booking_date: str,
    amount: Decimal | float | str,
    currency: str,
    description: str,
    counterparty_account: str | None = None,
    counterparty_name: str | None = None,
) -> str:
    """
    Compute the content hash of a transaction.

    `amount` is the signed amount, so a charge and a refund of the same
    value on the same day stay distinct.

    Returns:
        64-character SHA256 hex digest
    """
    components = [
        _normalize_text(booking_date),
        _normalize_amount(amount),
        _normalize_text(currency).upper(),
        _normalize_text(description),
        _normalize_text(counterparty_account),
        _normalize_text(counterparty_name),
    ]
    data = HASH_FIELD_SEPARATOR.join(components)
    return hashlib.sha256(data.encode("utf-8")).hexdigest()
