"""Credit Note Manager result types."""

from __future__ import annotations

from dataclasses import dataclass

from recon_kernel.domain.dtos import CreditNoteRecord, InvoiceSnapshot
from recon_kernel.domain.results import OperationStatus, ResultMixin


@dataclass(frozen=True)
class CreditNoteResult(ResultMixin):
    """
    Outcome of a credit-note command.

    ``invoice`` is the invoice as it stood when the command committed
    (after the balance change for ``apply``).
    """

    status: OperationStatus
    credit_note: CreditNoteRecord | None = None
    invoice: InvoiceSnapshot | None = None
    max_creditable: int | None = None
    message: str | None = None

    @classmethod
    def rejected(cls, status: OperationStatus, message: str) -> CreditNoteResult:
        return cls(status=status, message=message)
