"""
Bank Ledger - bank statement ingestion and reconciliation.

Turns heterogeneous bank-statement exports into a normalized, deduplicated
transaction ledger, detects recurring charges and suggests supporting
documents for individual transactions.
"""

__version__ = "0.1.0"
