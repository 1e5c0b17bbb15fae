"""
Typed Exception Hierarchy for the Reconciliation Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Reconciliation callers must react to *kinds* of failure: a balance error is
shown to the operator for correction, a persistence error is retried with
the same idempotency key, an illegal state transition is reported and
dropped.  Parsing message strings for that is fragile, so:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (not just a message string)

Kernel services raise these.  Module services (payments, credit notes,
bank matching) catch them at their transaction boundary, roll back, and
surface them to callers as result objects whose status is derived from
``code`` (see ``recon_kernel.domain.results``).

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    ReconciliationError (base)
    |
    +-- InvalidAmountError
    |
    +-- NotFoundError
    |   +-- InvoiceNotFoundError
    |   +-- CreditNoteNotFoundError
    |   +-- TransactionNotFoundError
    |
    +-- BalanceError
    |   +-- InsufficientRemainingBalanceError
    |   +-- ExceedsRemainingBalanceError
    |   +-- CreditExceedsInvoiceError
    |
    +-- InvoiceStateError
    |   +-- InvoiceCancelledError
    |   +-- InvoiceNotOpenError
    |   +-- InvalidInvoiceTransitionError
    |
    +-- StateTransitionError
    |   +-- AlreadyIssuedError
    |   +-- NotIssuedError
    |   +-- AlreadyMatchedError
    |
    +-- InvalidPaymentMetadataError
    |
    +-- CreditNoteReasonRequiredError
    |
    +-- CurrencyMismatchError
    |
    +-- IdempotencyError
    |   +-- IdempotencyKeyConflictError
    |
    +-- ConcurrencyError
    |   +-- OptimisticLockError
    |
    +-- PersistenceError
    |   +-- PersistenceUnavailableError
    |
    +-- ImmutabilityError
        +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category     | Code                            | When Raised
-------------|---------------------------------|-------------------------------------
Amount       | INVALID_AMOUNT                  | Non-integer or non-positive amount
Lookup       | INVOICE_NOT_FOUND               | Invoice id unknown (or other tenant)
             | CREDIT_NOTE_NOT_FOUND           | Credit note id unknown
             | TRANSACTION_NOT_FOUND           | Bank transaction id unknown
Balance      | INSUFFICIENT_REMAINING_BALANCE  | Ledger delta > amount_remaining
             | EXCEEDS_REMAINING_BALANCE       | Payment amount > amount_remaining
             | CREDIT_EXCEEDS_INVOICE          | Credit would over-credit the invoice
Invoice      | INVOICE_CANCELLED               | Any mutation of a cancelled invoice
             | INVOICE_NOT_OPEN                | Match target is paid or cancelled
             | INVALID_INVOICE_TRANSITION      | send/cancel from an illegal state
Transition   | ALREADY_ISSUED                  | issue() on a non-draft credit note
             | NOT_ISSUED                      | apply() on a non-issued credit note
             | ALREADY_MATCHED                 | confirm on a matched transaction
Metadata     | INVALID_PAYMENT_METADATA        | Unknown / mistyped metadata keys
Credit note  | CREDIT_NOTE_REASON_REQUIRED     | create() with a blank reason
Currency     | CURRENCY_MISMATCH               | Transaction/invoice currencies differ
Idempotency  | IDEMPOTENCY_KEY_CONFLICT        | Same key, different command
Concurrency  | OPTIMISTIC_LOCK_CONFLICT        | Invoice version changed under us
Persistence  | PERSISTENCE_UNAVAILABLE         | Store timeout / outage (retryable)
Immutability | IMMUTABILITY_VIOLATION          | Mutating a payment / applied note

===============================================================================
HANDLING PATTERNS
===============================================================================

1. VALIDATION ERRORS ARE TERMINAL -- return them to the user:

    except BalanceError as e:
        return {"error": e.code, "remaining": e.amount_remaining}

2. PERSISTENCE ERRORS ARE RETRYABLE -- retry with the SAME idempotency key:

    except PersistenceUnavailableError:
        schedule_retry(command, idempotency_key=command.key)

3. ``retryable`` is a class attribute so middleware can decide without
   knowing every subclass.
"""


class ReconciliationError(Exception):
    """
    Base exception for all reconciliation kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "RECONCILIATION_ERROR"
    retryable: bool = False


class InvalidAmountError(ReconciliationError):
    """Monetary amount is not a positive integer in minor units."""

    code: str = "INVALID_AMOUNT"

    def __init__(self, amount: object, reason: str):
        self.amount = amount
        self.reason = reason
        super().__init__(f"Invalid amount {amount!r}: {reason}")


# Lookup exceptions


class NotFoundError(ReconciliationError):
    """Base exception for missing records."""

    code: str = "NOT_FOUND"


class InvoiceNotFoundError(NotFoundError):
    """Invoice with given ID was not found."""

    code: str = "INVOICE_NOT_FOUND"

    def __init__(self, invoice_id: str):
        self.invoice_id = invoice_id
        super().__init__(f"Invoice not found: {invoice_id}")


class CreditNoteNotFoundError(NotFoundError):
    """Credit note with given ID was not found."""

    code: str = "CREDIT_NOTE_NOT_FOUND"

    def __init__(self, credit_note_id: str):
        self.credit_note_id = credit_note_id
        super().__init__(f"Credit note not found: {credit_note_id}")


class TransactionNotFoundError(NotFoundError):
    """Bank transaction with given ID was not found."""

    code: str = "TRANSACTION_NOT_FOUND"

    def __init__(self, transaction_id: str):
        self.transaction_id = transaction_id
        super().__init__(f"Bank transaction not found: {transaction_id}")


# Balance exceptions


class BalanceError(ReconciliationError):
    """Base exception for mutations that would overdraw an obligation."""

    code: str = "BALANCE_ERROR"


class InsufficientRemainingBalanceError(BalanceError):
    """
    Ledger delta exceeds what is still owed on the invoice.

    Raised by the ledger primitive before any write.
    """

    code: str = "INSUFFICIENT_REMAINING_BALANCE"

    def __init__(self, invoice_id: str, amount: int, amount_remaining: int):
        self.invoice_id = invoice_id
        self.amount = amount
        self.amount_remaining = amount_remaining
        super().__init__(
            f"Cannot apply {amount} to invoice {invoice_id}: "
            f"only {amount_remaining} remaining"
        )


class ExceedsRemainingBalanceError(BalanceError):
    """Payment amount exceeds the invoice's remaining balance."""

    code: str = "EXCEEDS_REMAINING_BALANCE"

    def __init__(self, invoice_id: str, amount: int, amount_remaining: int):
        self.invoice_id = invoice_id
        self.amount = amount
        self.amount_remaining = amount_remaining
        super().__init__(
            f"Maximum payment amount for invoice {invoice_id} is "
            f"{amount_remaining}, got {amount}"
        )


class CreditExceedsInvoiceError(BalanceError):
    """Credit note would push issued/applied credits above the invoice total."""

    code: str = "CREDIT_EXCEEDS_INVOICE"

    def __init__(
        self,
        invoice_id: str,
        amount: int,
        max_creditable: int,
        already_credited: int,
    ):
        self.invoice_id = invoice_id
        self.amount = amount
        self.max_creditable = max_creditable
        self.already_credited = already_credited
        super().__init__(
            f"Maximum credit amount for invoice {invoice_id} is "
            f"{max_creditable}. Already credited: {already_credited}"
        )


# Invoice state exceptions


class InvoiceStateError(ReconciliationError):
    """Base exception for invoice lifecycle violations."""

    code: str = "INVOICE_STATE_ERROR"


class InvoiceCancelledError(InvoiceStateError):
    """Invoice is cancelled; it is frozen against all mutation."""

    code: str = "INVOICE_CANCELLED"

    def __init__(self, invoice_id: str):
        self.invoice_id = invoice_id
        super().__init__(f"Invoice {invoice_id} is cancelled")


class InvoiceNotOpenError(InvoiceStateError):
    """Invoice cannot receive money (fully paid or cancelled)."""

    code: str = "INVOICE_NOT_OPEN"

    def __init__(self, invoice_id: str, status: str):
        self.invoice_id = invoice_id
        self.status = status
        super().__init__(f"Invoice {invoice_id} is not open (status={status})")


class InvalidInvoiceTransitionError(InvoiceStateError):
    """Invoice lifecycle transition not allowed from the current status."""

    code: str = "INVALID_INVOICE_TRANSITION"

    def __init__(self, invoice_id: str, from_status: str, to_status: str):
        self.invoice_id = invoice_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Invoice {invoice_id} cannot move from {from_status} to {to_status}"
        )


# State transition exceptions


class StateTransitionError(ReconciliationError):
    """Base exception for illegal credit-note / transaction transitions."""

    code: str = "STATE_TRANSITION_ERROR"


class AlreadyIssuedError(StateTransitionError):
    """Credit note is not in draft and cannot be issued."""

    code: str = "ALREADY_ISSUED"

    def __init__(self, credit_note_id: str, status: str):
        self.credit_note_id = credit_note_id
        self.status = status
        super().__init__(
            f"Credit note {credit_note_id} not found in draft or already issued "
            f"(status={status})"
        )


class NotIssuedError(StateTransitionError):
    """Credit note is not issued and cannot be applied."""

    code: str = "NOT_ISSUED"

    def __init__(self, credit_note_id: str, status: str):
        self.credit_note_id = credit_note_id
        self.status = status
        super().__init__(
            f"Credit note {credit_note_id} cannot be applied (status={status})"
        )


class AlreadyMatchedError(StateTransitionError):
    """Bank transaction has already been matched to an invoice."""

    code: str = "ALREADY_MATCHED"

    def __init__(self, transaction_id: str, matched_invoice_id: str):
        self.transaction_id = transaction_id
        self.matched_invoice_id = matched_invoice_id
        super().__init__(
            f"Bank transaction {transaction_id} already matched to "
            f"invoice {matched_invoice_id}"
        )


class InvalidPaymentMetadataError(ReconciliationError):
    """Payment metadata carries unknown keys or wrongly typed values."""

    code: str = "INVALID_PAYMENT_METADATA"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Invalid payment metadata: {reason}")


class CreditNoteReasonRequiredError(ReconciliationError):
    """A credit note needs a non-blank reason."""

    code: str = "CREDIT_NOTE_REASON_REQUIRED"

    def __init__(self, invoice_id: str):
        self.invoice_id = invoice_id
        super().__init__(f"Credit note for invoice {invoice_id} requires a reason")


class CurrencyMismatchError(ReconciliationError):
    """Money in one currency applied to an obligation in another."""

    code: str = "CURRENCY_MISMATCH"

    def __init__(self, expected: str, received: str):
        self.expected = expected
        self.received = received
        super().__init__(f"Currency mismatch: expected {expected}, got {received}")


# Idempotency exceptions


class IdempotencyError(ReconciliationError):
    """Base exception for idempotency-key misuse."""

    code: str = "IDEMPOTENCY_ERROR"


class IdempotencyKeyConflictError(IdempotencyError):
    """
    Idempotency key was already used for a different command.

    A replay must carry the same invoice and amount as the original call.
    """

    code: str = "IDEMPOTENCY_KEY_CONFLICT"

    def __init__(self, idempotency_key: str, reason: str):
        self.idempotency_key = idempotency_key
        self.reason = reason
        super().__init__(f"Idempotency key {idempotency_key!r} conflict: {reason}")


# Concurrency exceptions


class ConcurrencyError(ReconciliationError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"
    retryable: bool = True


class OptimisticLockError(ConcurrencyError):
    """Concurrent modification detected via version mismatch."""

    code: str = "OPTIMISTIC_LOCK_CONFLICT"

    def __init__(self, operation: str, attempts: int):
        self.operation = operation
        self.attempts = attempts
        super().__init__(
            f"Concurrent modification during {operation} "
            f"after {attempts} attempt(s)"
        )


# Persistence exceptions


class PersistenceError(ReconciliationError):
    """Base exception for storage failures."""

    code: str = "PERSISTENCE_ERROR"
    retryable: bool = True


class PersistenceUnavailableError(PersistenceError):
    """
    Transactional store is unavailable or timed out.

    Nothing was committed.  Retry with the same idempotency key.
    """

    code: str = "PERSISTENCE_UNAVAILABLE"

    def __init__(self, operation: str, reason: str):
        self.operation = operation
        self.reason = reason
        super().__init__(f"Persistence unavailable during {operation}: {reason}")


# Immutability exceptions


class ImmutabilityError(ReconciliationError):
    """Base exception for immutability violations."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """Attempted to modify an immutable record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(f"Cannot modify {entity_type} {entity_id}: {reason}")
