"""
Credit Note Manager -- bounded reversal of an invoice's obligation.

Thin glue layer over InvoiceLedger:
1. ``create``  validates the credit cap and splits subtotal/tax (draft)
2. ``issue``   re-validates the cap under the invoice lock (issued)
3. ``apply``   reduces the invoice balance via ``apply_delta`` and flips
               the note to applied in the same transaction

Credit cap:
    max_creditable = min(
        total - sum(issued + applied totals),
        amount_remaining - sum(issued, not yet applied totals),
    )
The first bound keeps issued/applied credits within the invoice total.
The second keeps every issued note applicable: a credit can only reduce
what is still owed, so a fully paid invoice has nothing left to credit.
Drafts reserve nothing.

Each command runs in its own transaction through TransactionRunner.

Usage:
    manager = CreditNoteManager(session_factory, clock)
    created = manager.create(invoice_id, 25000, reason="Returned item")
    manager.issue(created.credit_note.id)
    manager.apply(created.credit_note.id, idempotency_key="refund:812")
"""

from __future__ import annotations

from collections.abc import Callable
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from recon_config.loader import default_config
from recon_config.schema import ReconciliationConfig
from recon_kernel.db.engine import read_only_session
from recon_kernel.domain.clock import Clock, SystemClock
from recon_kernel.domain.dtos import CreditNoteRecord, InvoiceSnapshot
from recon_kernel.domain.invoice_status import LedgerReason
from recon_kernel.domain.money import ensure_minor_units
from recon_kernel.domain.results import OperationStatus, status_for_error
from recon_kernel.exceptions import (
    AlreadyIssuedError,
    CreditExceedsInvoiceError,
    CreditNoteNotFoundError,
    CreditNoteReasonRequiredError,
    IdempotencyKeyConflictError,
    InvoiceCancelledError,
    NotIssuedError,
    ReconciliationError,
)
from recon_kernel.logging_config import LogContext, get_logger
from recon_kernel.models.credit_note import RESERVING_STATUSES, CreditNote, CreditNoteStatus
from recon_kernel.models.invoice import Invoice
from recon_kernel.services.invoice_ledger import InvoiceLedger
from recon_kernel.services.transaction_runner import TransactionRunner
from recon_kernel.utils.idempotency import credit_note_apply_key
from recon_modules._command import build_runner, run_command
from recon_modules.credit_notes.models import CreditNoteResult
from recon_modules.credit_notes.tax_split import TaxSplitPolicy, tax_split_from_settings

logger = get_logger("modules.credit_notes.service")


class CreditNoteManager:
    """
    Creates, issues and applies credit notes.

    Transaction boundary: every public command commits on success and
    rolls back on failure.  Domain rejections come back as a
    CreditNoteResult; unexpected errors propagate.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        clock: Clock | None = None,
        config: ReconciliationConfig | None = None,
        tax_split: TaxSplitPolicy | None = None,
        runner: TransactionRunner | None = None,
    ):
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._config = config or default_config()
        settings = self._config.credit_notes
        self._tax_split = tax_split or tax_split_from_settings(
            settings.tax_split, settings.fixed_tax_rate
        )
        self._runner = runner or build_runner(session_factory, self._config.persistence)

    # =========================================================================
    # Create
    # =========================================================================

    def create(
        self,
        invoice_id: UUID,
        amount: int,
        reason: str,
        notes: str | None = None,
        tax_split: TaxSplitPolicy | None = None,
        tenant_id: str | None = None,
        actor_id: str | None = None,
    ) -> CreditNoteResult:
        """
        Create a draft credit note for ``amount`` minor units (gross).

        Rejects with CREDIT_EXCEEDS_INVOICE when ``amount`` is above the
        invoice's max creditable amount, INVOICE_CANCELLED on cancelled
        invoices, CREDIT_NOTE_REASON_REQUIRED for a blank reason.
        ``tax_split`` overrides the manager's policy for this note only.
        """
        policy = tax_split or self._tax_split

        with LogContext.bind(invoice_id=invoice_id, actor_id=actor_id):
            logger.info("credit_note_create_started", extra={
                "invoice_id": str(invoice_id),
                "amount": amount,
            })
            try:
                ensure_minor_units(amount)
                if not reason or not reason.strip():
                    raise CreditNoteReasonRequiredError(str(invoice_id))
            except ReconciliationError as exc:
                return self._rejected("create_credit_note", exc)

            def work(session: Session) -> CreditNoteResult:
                ledger = InvoiceLedger(session, self._clock)
                invoice = ledger.lock_invoice(invoice_id, tenant_id)
                if invoice.is_cancelled:
                    raise InvoiceCancelledError(str(invoice.id))

                max_creditable, already_credited = self._check_cap(session, invoice, amount)
                subtotal, tax = policy.split(amount, invoice.subtotal, invoice.tax)

                note = CreditNote(
                    tenant_id=invoice.tenant_id,
                    invoice_id=invoice.id,
                    credit_note_number=self._next_number(session, invoice.tenant_id),
                    subtotal=subtotal,
                    tax=tax,
                    total=amount,
                    reason=reason.strip(),
                    notes=notes,
                    status=CreditNoteStatus.DRAFT.value,
                    created_by_id=actor_id,
                )
                session.add(note)
                session.flush()

                logger.info("credit_note_created", extra={
                    "credit_note_id": str(note.id),
                    "credit_note_number": note.credit_note_number,
                    "invoice_id": str(invoice.id),
                    "subtotal": subtotal,
                    "tax": tax,
                    "total": amount,
                    "already_credited": already_credited,
                })
                return CreditNoteResult(
                    status=OperationStatus.APPLIED,
                    credit_note=CreditNoteRecord.from_model(note),
                    invoice=InvoiceSnapshot.from_model(invoice),
                    max_creditable=max_creditable,
                )

            # Concurrent creates for one tenant can pick the same number; the
            # unique constraint rejects the loser, which retries with the next.
            attempts = self._config.persistence.max_attempts
            attempt = 0
            while True:
                attempt += 1
                try:
                    return run_command(
                        self._runner, "create_credit_note", work, CreditNoteResult.rejected, logger
                    )
                except IntegrityError:
                    if attempt >= attempts:
                        raise
                    logger.warning("credit_note_number_collision", extra={"attempt": attempt})

    # =========================================================================
    # Issue
    # =========================================================================

    def issue(self, credit_note_id: UUID, tenant_id: str | None = None) -> CreditNoteResult:
        """draft -> issued.  Stamps issue_date and re-checks the cap."""

        def work(session: Session) -> CreditNoteResult:
            note, invoice = self._lock_note_and_invoice(session, credit_note_id, tenant_id)
            current = CreditNoteStatus(note.status)
            if current is not CreditNoteStatus.DRAFT:
                raise AlreadyIssuedError(str(note.id), current.value)
            if invoice.is_cancelled:
                raise InvoiceCancelledError(str(invoice.id))

            self._check_cap(session, invoice, note.total)

            note.status = CreditNoteStatus.ISSUED.value
            note.issue_date = self._clock.today()
            session.flush()

            logger.info("credit_note_issued", extra={
                "credit_note_id": str(note.id),
                "credit_note_number": note.credit_note_number,
                "invoice_id": str(invoice.id),
                "total": note.total,
            })
            return CreditNoteResult(
                status=OperationStatus.APPLIED,
                credit_note=CreditNoteRecord.from_model(note),
                invoice=InvoiceSnapshot.from_model(invoice),
            )

        with LogContext.bind(tenant_id=tenant_id):
            return run_command(
                self._runner, "issue_credit_note", work, CreditNoteResult.rejected, logger
            )

    # =========================================================================
    # Apply
    # =========================================================================

    def apply(
        self,
        credit_note_id: UUID,
        idempotency_key: str | None = None,
        tenant_id: str | None = None,
    ) -> CreditNoteResult:
        """
        issued -> applied, reducing the invoice balance by the note total.

        The status flip and the ledger delta share one transaction.  A
        retry with the key that applied the note returns ALREADY_APPLIED
        and changes nothing.  Without a key the note's default apply key
        is used, so a plain retry is also safe.
        """
        key = idempotency_key or credit_note_apply_key(credit_note_id)

        def work(session: Session) -> CreditNoteResult:
            note, invoice = self._lock_note_and_invoice(session, credit_note_id, tenant_id)
            current = CreditNoteStatus(note.status)

            if current is CreditNoteStatus.APPLIED:
                if note.apply_idempotency_key == key:
                    logger.info("credit_note_apply_replayed", extra={
                        "credit_note_id": str(note.id),
                    })
                    return CreditNoteResult(
                        status=OperationStatus.ALREADY_APPLIED,
                        credit_note=CreditNoteRecord.from_model(note),
                        invoice=InvoiceSnapshot.from_model(invoice),
                    )
                raise NotIssuedError(str(note.id), current.value)
            if current is not CreditNoteStatus.ISSUED:
                raise NotIssuedError(str(note.id), current.value)

            holder = session.execute(
                select(CreditNote.id).where(CreditNote.apply_idempotency_key == key)
            ).scalar_one_or_none()
            if holder is not None:
                raise IdempotencyKeyConflictError(key, f"already applied credit note {holder}")

            ledger = InvoiceLedger(session, self._clock)
            invoice = ledger.apply_delta(
                invoice.id, note.total, LedgerReason.CREDIT, source_id=note.id
            )

            note.status = CreditNoteStatus.APPLIED.value
            note.applied_at = self._clock.now()
            note.apply_idempotency_key = key
            session.flush()

            logger.info("credit_note_applied", extra={
                "credit_note_id": str(note.id),
                "invoice_id": str(invoice.id),
                "total": note.total,
                "amount_remaining": invoice.amount_remaining,
                "invoice_status": invoice.status,
            })
            return CreditNoteResult(
                status=OperationStatus.APPLIED,
                credit_note=CreditNoteRecord.from_model(note),
                invoice=InvoiceSnapshot.from_model(invoice),
            )

        with LogContext.bind(idempotency_key=key, tenant_id=tenant_id):
            return run_command(
                self._runner, "apply_credit_note", work, CreditNoteResult.rejected, logger
            )

    # =========================================================================
    # Queries
    # =========================================================================

    def get_credit_note(self, credit_note_id: UUID) -> CreditNoteRecord:
        with read_only_session(self._session_factory) as session:
            note = session.get(CreditNote, credit_note_id)
            if note is None:
                raise CreditNoteNotFoundError(str(credit_note_id))
            return CreditNoteRecord.from_model(note)

    def max_creditable(self, invoice_id: UUID) -> int:
        """Current cap for a new credit note on this invoice."""
        with read_only_session(self._session_factory) as session:
            invoice = InvoiceLedger(session, self._clock).get_invoice(invoice_id)
            return self._max_creditable(session, invoice)[0]

    def list_credit_notes(
        self,
        tenant_id: str,
        invoice_id: UUID | None = None,
        status: CreditNoteStatus | str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[CreditNoteRecord], int]:
        """Newest first, with the total count for pagination."""
        filters = [CreditNote.tenant_id == tenant_id]
        if invoice_id is not None:
            filters.append(CreditNote.invoice_id == invoice_id)
        if status is not None:
            filters.append(CreditNote.status == CreditNoteStatus(status).value)

        with read_only_session(self._session_factory) as session:
            stmt = (
                select(CreditNote)
                .where(*filters)
                .order_by(CreditNote.created_at.desc(), CreditNote.credit_note_number.desc())
                .limit(limit)
                .offset(offset)
            )
            notes = [CreditNoteRecord.from_model(n) for n in session.execute(stmt).scalars()]
            total = session.execute(
                select(func.count()).select_from(CreditNote).where(*filters)
            ).scalar_one()
        return notes, int(total)

    # =========================================================================
    # Helpers
    # =========================================================================

    def _lock_note_and_invoice(
        self,
        session: Session,
        credit_note_id: UUID,
        tenant_id: str | None,
    ) -> tuple[CreditNote, Invoice]:
        """Invoice lock first, then the note, so every path locks in one order."""
        note = session.get(CreditNote, credit_note_id)
        if note is None or (tenant_id is not None and note.tenant_id != tenant_id):
            raise CreditNoteNotFoundError(str(credit_note_id))

        invoice = InvoiceLedger(session, self._clock).lock_invoice(note.invoice_id)
        note = session.execute(
            select(CreditNote)
            .where(CreditNote.id == credit_note_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one()
        return note, invoice

    @staticmethod
    def _credit_totals(session: Session, invoice_id: UUID) -> dict[str, int]:
        stmt = (
            select(CreditNote.status, func.coalesce(func.sum(CreditNote.total), 0))
            .where(CreditNote.invoice_id == invoice_id)
            .where(CreditNote.status.in_([s.value for s in RESERVING_STATUSES]))
            .group_by(CreditNote.status)
        )
        return {status: int(total) for status, total in session.execute(stmt)}

    def _max_creditable(self, session: Session, invoice: Invoice) -> tuple[int, int]:
        """(max_creditable, already_credited) for the invoice as loaded."""
        totals = self._credit_totals(session, invoice.id)
        issued = totals.get(CreditNoteStatus.ISSUED.value, 0)
        already_credited = issued + totals.get(CreditNoteStatus.APPLIED.value, 0)
        cap = min(invoice.total - already_credited, invoice.amount_remaining - issued)
        return max(cap, 0), already_credited

    def _check_cap(self, session: Session, invoice: Invoice, amount: int) -> tuple[int, int]:
        max_creditable, already_credited = self._max_creditable(session, invoice)
        if amount > max_creditable:
            logger.info("credit_cap_exceeded", extra={
                "invoice_id": str(invoice.id),
                "amount": amount,
                "max_creditable": max_creditable,
                "already_credited": already_credited,
            })
            raise CreditExceedsInvoiceError(
                str(invoice.id), amount, max_creditable, already_credited
            )
        return max_creditable, already_credited

    def _next_number(self, session: Session, tenant_id: str) -> str:
        """``{prefix}{YYYY}{NNNN}``, sequential per tenant and year."""
        settings = self._config.credit_notes
        prefix = f"{settings.number_prefix}{self._clock.today().year}"
        last = session.execute(
            select(CreditNote.credit_note_number)
            .where(CreditNote.tenant_id == tenant_id)
            .where(CreditNote.credit_note_number.startswith(prefix))
            .order_by(CreditNote.credit_note_number.desc())
            .limit(1)
        ).scalar_one_or_none()

        next_number = 1
        if last is not None:
            suffix = last[len(prefix):]
            if suffix.isdigit():
                next_number = int(suffix) + 1
        return f"{prefix}{next_number:0{settings.number_width}d}"

    @staticmethod
    def _rejected(operation: str, exc: ReconciliationError) -> CreditNoteResult:
        status = status_for_error(exc)
        logger.info(f"{operation}_rejected", extra={
            "status": status.value,
            "error_code": exc.code,
            "reason": str(exc),
        })
        return CreditNoteResult.rejected(status, str(exc))
