"""
Operation results shared by the payment, credit-note and bank modules.

Module services catch ReconciliationError subclasses at their transaction
boundary and turn them into a frozen result carrying an OperationStatus.
The status value is the lowercased exception ``code``, so callers can
branch on either representation.
"""

from enum import Enum

from recon_kernel.exceptions import ReconciliationError


class OperationStatus(str, Enum):
    """Outcome of a reconciliation command."""

    APPLIED = "applied"
    ALREADY_APPLIED = "already_applied"

    # Validation (terminal)
    INVALID_AMOUNT = "invalid_amount"
    INVOICE_NOT_FOUND = "invoice_not_found"
    CREDIT_NOTE_NOT_FOUND = "credit_note_not_found"
    TRANSACTION_NOT_FOUND = "transaction_not_found"
    INSUFFICIENT_REMAINING_BALANCE = "insufficient_remaining_balance"
    EXCEEDS_REMAINING_BALANCE = "exceeds_remaining_balance"
    CREDIT_EXCEEDS_INVOICE = "credit_exceeds_invoice"
    INVOICE_CANCELLED = "invoice_cancelled"
    INVOICE_NOT_OPEN = "invoice_not_open"
    INVALID_INVOICE_TRANSITION = "invalid_invoice_transition"
    ALREADY_ISSUED = "already_issued"
    NOT_ISSUED = "not_issued"
    ALREADY_MATCHED = "already_matched"
    INVALID_PAYMENT_METADATA = "invalid_payment_metadata"
    CREDIT_NOTE_REASON_REQUIRED = "credit_note_reason_required"
    CURRENCY_MISMATCH = "currency_mismatch"
    IDEMPOTENCY_KEY_CONFLICT = "idempotency_key_conflict"
    IMMUTABILITY_VIOLATION = "immutability_violation"
    NO_CONFIDENT_MATCH = "no_confident_match"

    # Transient (retry with the same idempotency key)
    OPTIMISTIC_LOCK_CONFLICT = "optimistic_lock_conflict"
    PERSISTENCE_UNAVAILABLE = "persistence_unavailable"


SUCCESS_STATUSES: frozenset[OperationStatus] = frozenset({
    OperationStatus.APPLIED,
    OperationStatus.ALREADY_APPLIED,
})

RETRYABLE_STATUSES: frozenset[OperationStatus] = frozenset({
    OperationStatus.OPTIMISTIC_LOCK_CONFLICT,
    OperationStatus.PERSISTENCE_UNAVAILABLE,
})


def status_for_error(exc: ReconciliationError) -> OperationStatus:
    """Map a kernel exception to its result status via its ``code``."""
    return OperationStatus(exc.code.lower())


class ResultMixin:
    """``is_success`` / ``is_retryable`` for frozen result dataclasses with a ``status``."""

    status: OperationStatus

    @property
    def is_success(self) -> bool:
        return self.status in SUCCESS_STATUSES

    @property
    def is_retryable(self) -> bool:
        return self.status in RETRYABLE_STATUSES
