"""
InvoiceLedger -- the single mutation primitive for invoice balances.

Responsibility:
    Owns an invoice's ``amount_paid``, ``amount_remaining`` and ``status``.
    Every payment and every applied credit note goes through
    ``apply_delta``; nothing else writes those columns.  Also hosts the
    invoice lifecycle helpers used by collaborators (create / send /
    cancel / overdue sweep) and the open-invoice read for the matcher.

Architecture position:
    Kernel > Services -- imperative shell.  Flushes only; the caller's
    TransactionRunner owns commit/rollback, so the ledger delta and the
    record that caused it (payment, credit-note flip, bank match) commit
    together.

Invariants enforced:
    - amount_paid + amount_remaining == total after every delta.
    - amount_remaining never goes negative: the delta is checked against the
      balance read *under the invoice lock*.
    - Per-invoice serialization: SELECT ... FOR UPDATE (PostgreSQL) plus the
      version_id_col check; on SQLite the engine's BEGIN IMMEDIATE.
    - Cancelled invoices reject every mutation.
    - Each delta appends an immutable InvoiceLedgerEntry.

Failure modes:
    - InvalidAmountError: delta is not a positive int.
    - InvoiceNotFoundError: unknown id (or wrong tenant).
    - InvoiceCancelledError: invoice is cancelled.
    - InsufficientRemainingBalanceError: delta > amount_remaining.
    - InvalidInvoiceTransitionError: send/cancel from an illegal status.
"""

from datetime import date
from uuid import UUID

from sqlalchemy import func, select

from recon_kernel.domain.currency import CurrencyRegistry
from recon_kernel.domain.invoice_status import (
    OPEN_STATUSES,
    InvoiceStatus,
    LedgerReason,
    derive_status,
)
from recon_kernel.domain.money import ensure_minor_units
from recon_kernel.exceptions import (
    InsufficientRemainingBalanceError,
    InvalidInvoiceTransitionError,
    InvoiceCancelledError,
    InvoiceNotFoundError,
)
from recon_kernel.logging_config import get_logger
from recon_kernel.models.invoice import Invoice
from recon_kernel.models.ledger_entry import InvoiceLedgerEntry
from recon_kernel.services.base import BaseService

logger = get_logger("services.invoice_ledger")


class InvoiceLedger(BaseService):
    """
    Ledger operations on invoices within the caller's session.

    Contract:
        ``apply_delta`` is the only way an invoice balance changes.

    Non-goals:
        - Does NOT commit or roll back.
        - Does NOT know why money arrived beyond ``reason_kind``.
    """

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_invoice(self, invoice_id: UUID, tenant_id: str | None = None) -> Invoice:
        """Load an invoice without locking it."""
        invoice = self.session.get(Invoice, invoice_id)
        if invoice is None or (tenant_id is not None and invoice.tenant_id != tenant_id):
            raise InvoiceNotFoundError(str(invoice_id))
        return invoice

    def lock_invoice(self, invoice_id: UUID, tenant_id: str | None = None) -> Invoice:
        """
        Load an invoice under an exclusive row lock, refreshing any copy
        already in the session so the balance read is current.
        """
        stmt = (
            select(Invoice)
            .where(Invoice.id == invoice_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        invoice = self.session.execute(stmt).scalar_one_or_none()
        if invoice is None or (tenant_id is not None and invoice.tenant_id != tenant_id):
            raise InvoiceNotFoundError(str(invoice_id))
        return invoice

    def open_invoices(self, tenant_id: str, currency: str | None = None) -> list[Invoice]:
        """Invoices that can still receive money, ordered by invoice number."""
        stmt = (
            select(Invoice)
            .where(Invoice.tenant_id == tenant_id)
            .where(Invoice.status.in_([s.value for s in OPEN_STATUSES]))
            .where(Invoice.amount_remaining > 0)
            .order_by(Invoice.invoice_number)
        )
        if currency is not None:
            stmt = stmt.where(Invoice.currency == currency)
        return list(self.session.execute(stmt).scalars())

    def ledger_entries(self, invoice_id: UUID) -> list[InvoiceLedgerEntry]:
        """Applied deltas for an invoice in application order."""
        stmt = (
            select(InvoiceLedgerEntry)
            .where(InvoiceLedgerEntry.invoice_id == invoice_id)
            .order_by(InvoiceLedgerEntry.applied_at, InvoiceLedgerEntry.amount_paid_after)
        )
        return list(self.session.execute(stmt).scalars())

    def ledger_total(self, invoice_id: UUID) -> int:
        """Sum of applied deltas; equals the invoice's amount_paid."""
        stmt = select(func.coalesce(func.sum(InvoiceLedgerEntry.amount), 0)).where(
            InvoiceLedgerEntry.invoice_id == invoice_id
        )
        return int(self.session.execute(stmt).scalar_one())

    # ------------------------------------------------------------------
    # The mutation primitive
    # ------------------------------------------------------------------

    def apply_delta(
        self,
        invoice_id: UUID,
        amount_delta: int,
        reason_kind: LedgerReason,
        source_id: UUID | None = None,
        tenant_id: str | None = None,
    ) -> Invoice:
        """
        Apply money to an invoice.

        Preconditions:
            - amount_delta is a positive int of minor units.
        Postconditions:
            - amount_paid += delta, amount_remaining -= delta.
            - status re-derived; paid_date stamped when it becomes PAID.
            - one InvoiceLedgerEntry appended.

        Raises:
            InvalidAmountError, InvoiceNotFoundError, InvoiceCancelledError,
            InsufficientRemainingBalanceError.  Nothing is written on error.
        """
        ensure_minor_units(amount_delta)
        reason_kind = LedgerReason(reason_kind)

        invoice = self.lock_invoice(invoice_id, tenant_id)

        if invoice.is_cancelled:
            raise InvoiceCancelledError(str(invoice.id))

        if amount_delta > invoice.amount_remaining:
            logger.info(
                "ledger_delta_rejected",
                extra={
                    "invoice_id": str(invoice.id),
                    "amount": amount_delta,
                    "amount_remaining": invoice.amount_remaining,
                    "reason_kind": reason_kind.value,
                },
            )
            raise InsufficientRemainingBalanceError(
                str(invoice.id), amount_delta, invoice.amount_remaining
            )

        previous_status = invoice.status_enum
        now = self.clock.now()

        invoice.amount_paid += amount_delta
        invoice.amount_remaining -= amount_delta
        new_status = derive_status(
            previous_status,
            invoice.amount_paid,
            invoice.amount_remaining,
            invoice.due_date,
            now.date(),
        )
        invoice.status = new_status.value
        if new_status is InvoiceStatus.PAID:
            invoice.paid_date = now

        # INVARIANT: balance identity holds before anything is flushed
        assert invoice.amount_paid + invoice.amount_remaining == invoice.total

        self.session.add(
            InvoiceLedgerEntry(
                invoice_id=invoice.id,
                reason_kind=reason_kind.value,
                amount=amount_delta,
                source_id=source_id,
                amount_paid_after=invoice.amount_paid,
                amount_remaining_after=invoice.amount_remaining,
                status_after=new_status.value,
                applied_at=now,
            )
        )
        self.session.flush()

        logger.info(
            "ledger_delta_applied",
            extra={
                "invoice_id": str(invoice.id),
                "reason_kind": reason_kind.value,
                "amount": amount_delta,
                "amount_paid": invoice.amount_paid,
                "amount_remaining": invoice.amount_remaining,
                "status_from": previous_status.value,
                "status_to": new_status.value,
                "source_id": str(source_id) if source_id else None,
            },
        )
        return invoice

    # ------------------------------------------------------------------
    # Lifecycle helpers
    # ------------------------------------------------------------------

    def create_invoice(
        self,
        *,
        tenant_id: str,
        invoice_number: str,
        customer_name: str,
        currency: str,
        subtotal: int,
        tax: int = 0,
        issue_date: date | None = None,
        due_date: date | None = None,
        variable_symbol: str | None = None,
        order_reference: str | None = None,
        actor_id: str | None = None,
    ) -> Invoice:
        """Create a draft invoice with nothing paid."""
        ensure_minor_units(subtotal, allow_zero=True)
        ensure_minor_units(tax, allow_zero=True)
        total = ensure_minor_units(subtotal + tax)

        invoice = Invoice(
            tenant_id=tenant_id,
            invoice_number=invoice_number,
            customer_name=customer_name,
            currency=CurrencyRegistry.validate(currency),
            subtotal=subtotal,
            tax=tax,
            total=total,
            amount_paid=0,
            amount_remaining=total,
            status=InvoiceStatus.DRAFT.value,
            issue_date=issue_date,
            due_date=due_date,
            variable_symbol=variable_symbol,
            order_reference=order_reference,
            created_by_id=actor_id,
        )
        self.session.add(invoice)
        self.session.flush()

        logger.info(
            "invoice_created",
            extra={
                "invoice_id": str(invoice.id),
                "tenant_id": tenant_id,
                "invoice_number": invoice_number,
                "total": total,
                "currency": invoice.currency,
            },
        )
        return invoice

    def send_invoice(self, invoice_id: UUID, tenant_id: str | None = None) -> Invoice:
        """draft -> sent.  Stamps issue_date with today when absent."""
        invoice = self.lock_invoice(invoice_id, tenant_id)
        current = invoice.status_enum
        if current is InvoiceStatus.CANCELLED:
            raise InvoiceCancelledError(str(invoice.id))
        if current is not InvoiceStatus.DRAFT:
            raise InvalidInvoiceTransitionError(
                str(invoice.id), current.value, InvoiceStatus.SENT.value
            )

        invoice.status = InvoiceStatus.SENT.value
        if invoice.issue_date is None:
            invoice.issue_date = self.clock.today()
        self.session.flush()

        logger.info(
            "invoice_sent",
            extra={"invoice_id": str(invoice.id), "issue_date": invoice.issue_date},
        )
        return invoice

    def cancel_invoice(self, invoice_id: UUID, tenant_id: str | None = None) -> Invoice:
        """
        Move an invoice into the cancelled trap state.

        Fully paid invoices cannot be cancelled; compensate with a credit
        note instead.
        """
        invoice = self.lock_invoice(invoice_id, tenant_id)
        current = invoice.status_enum
        if current is InvoiceStatus.CANCELLED:
            raise InvoiceCancelledError(str(invoice.id))
        if current is InvoiceStatus.PAID:
            raise InvalidInvoiceTransitionError(
                str(invoice.id), current.value, InvoiceStatus.CANCELLED.value
            )

        invoice.status = InvoiceStatus.CANCELLED.value
        invoice.cancelled_at = self.clock.now()
        self.session.flush()

        logger.warning(
            "invoice_cancelled",
            extra={
                "invoice_id": str(invoice.id),
                "status_from": current.value,
                "amount_paid": invoice.amount_paid,
                "amount_remaining": invoice.amount_remaining,
            },
        )
        return invoice

    def refresh_overdue(self, tenant_id: str) -> list[Invoice]:
        """
        Move sent invoices with nothing paid and a passed due date to overdue.

        Returns the invoices that changed.
        """
        today = self.clock.today()
        stmt = (
            select(Invoice)
            .where(Invoice.tenant_id == tenant_id)
            .where(Invoice.status == InvoiceStatus.SENT.value)
            .where(Invoice.amount_paid == 0)
            .where(Invoice.due_date < today)
            .with_for_update()
        )
        changed: list[Invoice] = []
        for invoice in self.session.execute(stmt).scalars():
            new_status = derive_status(
                invoice.status_enum,
                invoice.amount_paid,
                invoice.amount_remaining,
                invoice.due_date,
                today,
            )
            if new_status is not invoice.status_enum:
                invoice.status = new_status.value
                changed.append(invoice)
        self.session.flush()

        logger.info(
            "overdue_refreshed",
            extra={"tenant_id": tenant_id, "updated": len(changed)},
        )
        return changed
