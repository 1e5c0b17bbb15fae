"""
Reconciliation Kernel

The invoice ledger core for financial reconciliation:
- Single mutation primitive for invoice balances
- Per-invoice serialized, all-or-nothing mutations
- Idempotent payment, credit-note and match application
- Integer minor-unit money (no floats)
"""

__version__ = "0.1.0"
