"""
ORM-Level Immutability Enforcement.

===============================================================================
WHY THIS EXISTS
===============================================================================

Reconciliation records are evidence.  Once money has been recorded against
an invoice, the record of it must not change -- a mistake is compensated
with a new payment or credit note, never by editing history.

SQLAlchemy fires events before UPDATE/DELETE operations reach the database.
We register listeners that intercept these events and check the rules:

    session.flush()
         |
         v
    [before_update event] --> _check_*() --> ImmutabilityViolationError
         |
         v
    [before_delete event] --> _block_*_delete() --> ImmutabilityViolationError
         |
         v
    SQL sent to database (only if checks pass)

If a check fails the flush aborts and the transaction is rolled back by
whoever owns it.

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity              | When Immutable                     | Deletable
--------------------|------------------------------------|-----------
Payment             | ALWAYS (from creation)             | never
InvoiceLedgerEntry  | ALWAYS (from creation)             | never
CreditNote          | After status = APPLIED             | draft only
Invoice             | After status = CANCELLED           | never
BankTransaction     | After matched_invoice_id is set    | unmatched only

updated_at / updated_by fields are audit metadata and may always change.

===============================================================================
USAGE
===============================================================================

    from recon_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # idempotent; create_tables() calls it

To temporarily disable (TESTS ONLY):

    unregister_immutability_listeners()
"""

from sqlalchemy import event, inspect
from sqlalchemy.orm.attributes import get_history

from recon_kernel.exceptions import ImmutabilityViolationError
from recon_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

_AUDIT_METADATA_FIELDS = frozenset({"updated_at", "updated_by_id"})


def _changed_fields(target) -> list[str]:
    """Names of mapped attributes with pending changes, minus audit metadata."""
    state = inspect(target)
    return sorted(
        attr.key
        for attr in state.attrs
        if attr.key not in _AUDIT_METADATA_FIELDS and attr.history.has_changes()
    )


def _previous_value(target, attr: str):
    """Value the attribute had when it was loaded (before pending changes)."""
    history = get_history(target, attr)
    if history.deleted:
        return history.deleted[0]
    if history.unchanged:
        return history.unchanged[0]
    return None


def _reject(entity_type: str, target, operation: str, reason: str, fields=None):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(target.id),
            "operation": operation,
            "fields": fields or [],
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(target.id),
        reason=reason,
    )


# ---------------------------------------------------------------------------
# Append-only records
# ---------------------------------------------------------------------------


def _check_payment_immutability(mapper, connection, target):
    changed = _changed_fields(target)
    if changed:
        _reject("Payment", target, "UPDATE", "Payments are immutable once recorded", changed)


def _block_payment_delete(mapper, connection, target):
    _reject("Payment", target, "DELETE", "Payments cannot be deleted")


def _check_ledger_entry_immutability(mapper, connection, target):
    changed = _changed_fields(target)
    if changed:
        _reject("InvoiceLedgerEntry", target, "UPDATE", "Ledger entries are append-only", changed)


def _block_ledger_entry_delete(mapper, connection, target):
    _reject("InvoiceLedgerEntry", target, "DELETE", "Ledger entries cannot be deleted")


# ---------------------------------------------------------------------------
# Lifecycle-dependent records
# ---------------------------------------------------------------------------


def _check_credit_note_immutability(mapper, connection, target):
    """Applied credit notes are terminal.

    The issued -> applied flip itself is allowed: the previous status is
    what decides.
    """
    from recon_kernel.models.credit_note import CreditNoteStatus

    if _previous_value(target, "status") != CreditNoteStatus.APPLIED.value:
        return
    changed = _changed_fields(target)
    if changed:
        _reject("CreditNote", target, "UPDATE", "Applied credit notes are terminal", changed)


def _check_credit_note_delete(mapper, connection, target):
    from recon_kernel.models.credit_note import CreditNoteStatus

    if _previous_value(target, "status") != CreditNoteStatus.DRAFT.value:
        _reject("CreditNote", target, "DELETE", "Only draft credit notes can be deleted")


def _check_invoice_immutability(mapper, connection, target):
    """Cancelled invoices are frozen; the cancelling update itself passes."""
    from recon_kernel.domain.invoice_status import InvoiceStatus

    if _previous_value(target, "status") != InvoiceStatus.CANCELLED.value:
        return
    changed = [f for f in _changed_fields(target) if f != "version"]
    if changed:
        _reject("Invoice", target, "UPDATE", "Cancelled invoices are frozen", changed)


def _block_invoice_delete(mapper, connection, target):
    _reject("Invoice", target, "DELETE", "Invoices are never deleted")


def _check_bank_transaction_immutability(mapper, connection, target):
    """A transaction becomes matched exactly once."""
    if _previous_value(target, "matched_invoice_id") is None:
        return
    changed = [f for f in _changed_fields(target) if f != "version"]
    if changed:
        _reject("BankTransaction", target, "UPDATE", "Matched transactions are immutable", changed)


def _check_bank_transaction_delete(mapper, connection, target):
    if _previous_value(target, "matched_invoice_id") is not None:
        _reject("BankTransaction", target, "DELETE", "Matched transactions cannot be deleted")


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------


def _listeners():
    from recon_kernel.models.bank_transaction import BankTransaction
    from recon_kernel.models.credit_note import CreditNote
    from recon_kernel.models.invoice import Invoice
    from recon_kernel.models.ledger_entry import InvoiceLedgerEntry
    from recon_kernel.models.payment import Payment

    return (
        (Payment, "before_update", _check_payment_immutability),
        (Payment, "before_delete", _block_payment_delete),
        (InvoiceLedgerEntry, "before_update", _check_ledger_entry_immutability),
        (InvoiceLedgerEntry, "before_delete", _block_ledger_entry_delete),
        (CreditNote, "before_update", _check_credit_note_immutability),
        (CreditNote, "before_delete", _check_credit_note_delete),
        (Invoice, "before_update", _check_invoice_immutability),
        (Invoice, "before_delete", _block_invoice_delete),
        (BankTransaction, "before_update", _check_bank_transaction_immutability),
        (BankTransaction, "before_delete", _check_bank_transaction_delete),
    )


def register_immutability_listeners() -> None:
    """Register all immutability listeners.  Safe to call more than once."""
    for model, name, fn in _listeners():
        if not event.contains(model, name, fn):
            event.listen(model, name, fn)


def unregister_immutability_listeners() -> None:
    """Remove all immutability listeners.  TESTS ONLY."""
    for model, name, fn in _listeners():
        if event.contains(model, name, fn):
            event.remove(model, name, fn)
