"""
Invoice status derivation.

Responsibility:
    Pure function mapping an invoice's balance and due date to its status.
    The ledger calls this after every applied delta; the overdue sweep
    calls it without a delta.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O, no clock (``today``
    is passed in).

Invariants enforced:
    - ``cancelled`` is externally imposed: derive_status never produces it
      and never moves an invoice out of it.
    - Otherwise status is a function of (amount_paid, amount_remaining,
      due_date, today) and the status the invoice was in before.
"""

from datetime import date
from enum import Enum


class InvoiceStatus(str, Enum):
    """Lifecycle status of an invoice.

    Contract: CANCELLED and PAID are terminal for the ledger.
    """

    DRAFT = "draft"
    SENT = "sent"
    PARTIAL = "partial"
    PAID = "paid"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"


class LedgerReason(str, Enum):
    """Why a delta was applied to an invoice balance."""

    PAYMENT = "payment"
    CREDIT = "credit"


# Statuses in which an invoice can still receive money.
OPEN_STATUSES: frozenset[InvoiceStatus] = frozenset({
    InvoiceStatus.DRAFT,
    InvoiceStatus.SENT,
    InvoiceStatus.PARTIAL,
    InvoiceStatus.OVERDUE,
})


def derive_status(
    current: InvoiceStatus,
    amount_paid: int,
    amount_remaining: int,
    due_date: date | None,
    today: date,
) -> InvoiceStatus:
    """
    Compute the invoice status after a balance change.

    Rules, first match wins:
      - cancelled stays cancelled
      - amount_remaining <= 0            -> paid
      - amount_paid > 0, remaining > 0   -> partial
      - amount_paid == 0, today > due    -> overdue
      - otherwise the current status is kept (draft / sent / overdue)
    """
    current = InvoiceStatus(current)
    if current is InvoiceStatus.CANCELLED:
        return current
    if amount_remaining <= 0:
        return InvoiceStatus.PAID
    if amount_paid > 0:
        return InvoiceStatus.PARTIAL
    if due_date is not None and today > due_date:
        return InvoiceStatus.OVERDUE
    return current


def is_open(status: InvoiceStatus | str, amount_remaining: int) -> bool:
    """True when the invoice can still receive a payment or credit."""
    return InvoiceStatus(status) in OPEN_STATUSES and amount_remaining > 0
