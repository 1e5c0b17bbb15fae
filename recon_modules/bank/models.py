"""Match Applier result types."""

from __future__ import annotations

from dataclasses import dataclass

from recon_engines.matching import MatchSuggestion
from recon_kernel.domain.dtos import BankTransactionSnapshot, InvoiceSnapshot, PaymentRecord
from recon_kernel.domain.results import OperationStatus, ResultMixin


@dataclass(frozen=True)
class MatchResult(ResultMixin):
    """Outcome of confirming a transaction against an invoice."""

    status: OperationStatus
    transaction: BankTransactionSnapshot | None = None
    payment: PaymentRecord | None = None
    invoice: InvoiceSnapshot | None = None
    message: str | None = None

    @classmethod
    def rejected(cls, status: OperationStatus, message: str) -> MatchResult:
        return cls(status=status, message=message)


@dataclass(frozen=True)
class AutoConfirmResult(ResultMixin):
    """
    Outcome of ``auto_confirm``.

    ``suggestion`` is the top-ranked candidate even when it was not
    confident enough to confirm; ``match`` is set only when a
    confirmation was attempted.
    """

    status: OperationStatus
    suggestion: MatchSuggestion | None = None
    match: MatchResult | None = None
    message: str | None = None
