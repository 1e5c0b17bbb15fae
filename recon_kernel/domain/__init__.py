"""Pure domain layer: money, clock, invoice status, DTOs, results."""

from recon_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from recon_kernel.domain.invoice_status import (
    InvoiceStatus,
    LedgerReason,
    derive_status,
    is_open,
)
from recon_kernel.domain.money import Money, ensure_minor_units, round_half_up
from recon_kernel.domain.results import OperationStatus

__all__ = [
    "Clock",
    "SystemClock",
    "DeterministicClock",
    "InvoiceStatus",
    "LedgerReason",
    "derive_status",
    "is_open",
    "Money",
    "ensure_minor_units",
    "round_half_up",
    "OperationStatus",
]
