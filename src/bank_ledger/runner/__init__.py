"""
CLI runner module.

Provides commands:
- import: Import a bank statement export
- detect: Recompute recurring charges and subscriptions
- suggest: Rank supporting documents for a transaction
- transactions / summary: Query the ledger
- add-document / link / categorize: Curate ledger data
"""

from .main import create_cli, main

__all__ = [
    "create_cli",
    "main",
]
