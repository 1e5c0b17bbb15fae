"""Kernel services: ledger primitive and transaction boundary."""

from recon_kernel.services.invoice_ledger import InvoiceLedger
from recon_kernel.services.transaction_runner import TransactionRunner

__all__ = ["InvoiceLedger", "TransactionRunner"]
