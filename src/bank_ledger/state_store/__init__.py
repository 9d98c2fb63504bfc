"""
State Store (SQLite-based).

Persistent ledger storage for:
- Imported transactions, unique per (org_id, transaction_hash)
- Documents and document links
- Derived subscriptions and subscription rules

Every operation is scoped by an explicit OrgContext.
"""

from .sqlite_store import TRANSACTION_ENTITY, StateStore

__all__ = [
    "StateStore",
    "TRANSACTION_ENTITY",
]
