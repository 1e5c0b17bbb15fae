"""
Payment Recorder result types.

Frozen result returned to callers instead of live ORM rows.  Rejections
carry no records and a message explaining why nothing was written.
"""

from __future__ import annotations

from dataclasses import dataclass

from recon_kernel.domain.dtos import InvoiceSnapshot, PaymentRecord
from recon_kernel.domain.results import OperationStatus, ResultMixin


@dataclass(frozen=True)
class PaymentResult(ResultMixin):
    """Outcome of recording a payment."""

    status: OperationStatus
    invoice: InvoiceSnapshot | None = None
    payment: PaymentRecord | None = None
    message: str | None = None

    @classmethod
    def rejected(cls, status: OperationStatus, message: str) -> PaymentResult:
        return cls(status=status, message=message)
