"""
Payment Recorder -- records partial and full payments against invoices.

Thin glue layer that:
1. Locks the invoice through InvoiceLedger
2. Replays or rejects a repeated idempotency key
3. Calls InvoiceLedger.apply_delta and inserts the immutable Payment

The ledger delta and the Payment row commit together or not at all.
This service owns the transaction boundary through TransactionRunner.

Usage:
    recorder = PaymentRecorder(session_factory, clock)
    result = recorder.record_partial_payment(
        invoice_id=invoice_id, amount=40000, method=PaymentMethod.CARD,
        idempotency_key="stripe:pi_3Nx...",
    )
    if result.is_success:
        ...
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from recon_config.loader import default_config
from recon_config.schema import ReconciliationConfig
from recon_kernel.db.engine import read_only_session
from recon_kernel.domain.clock import Clock, SystemClock
from recon_kernel.domain.dtos import InvoiceSnapshot, PaymentMetadata, PaymentRecord
from recon_kernel.domain.invoice_status import LedgerReason
from recon_kernel.domain.money import ensure_minor_units
from recon_kernel.domain.results import OperationStatus, status_for_error
from recon_kernel.exceptions import (
    ExceedsRemainingBalanceError,
    IdempotencyKeyConflictError,
    InvoiceCancelledError,
    ReconciliationError,
)
from recon_kernel.logging_config import LogContext, get_logger
from recon_kernel.models.invoice import Invoice
from recon_kernel.models.payment import Payment, PaymentMethod, PaymentStatus
from recon_kernel.services.invoice_ledger import InvoiceLedger
from recon_kernel.services.transaction_runner import TransactionRunner
from recon_kernel.utils.idempotency import generate_idempotency_key
from recon_modules._command import build_runner, run_command
from recon_modules.payments.models import PaymentResult

logger = get_logger("modules.payments.service")


class PaymentRecorder:
    """
    Records payments through the invoice ledger.

    Transaction boundary: ``record_partial_payment`` runs in its own
    transaction.  ``record_payment_in_session`` is the in-transaction
    primitive for callers that already own one (the Match Applier).
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        clock: Clock | None = None,
        config: ReconciliationConfig | None = None,
        runner: TransactionRunner | None = None,
    ):
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._config = config or default_config()
        self._runner = runner or build_runner(session_factory, self._config.persistence)

    # =========================================================================
    # Commands
    # =========================================================================

    def record_partial_payment(
        self,
        invoice_id: UUID,
        amount: int,
        method: PaymentMethod | str,
        notes: str | None = None,
        idempotency_key: str | None = None,
        metadata: PaymentMetadata | Mapping[str, Any] | None = None,
        tenant_id: str | None = None,
        actor_id: str | None = None,
    ) -> PaymentResult:
        """
        Record a payment of ``amount`` minor units against an invoice.

        Replaying an idempotency key that already recorded the same invoice
        and amount returns ALREADY_APPLIED with the original payment; the
        same key with different arguments is IDEMPOTENCY_KEY_CONFLICT.
        Without a key every call is a new payment.
        """
        key = idempotency_key or generate_idempotency_key("payments", "payment.recorded", uuid4())

        with LogContext.bind(invoice_id=invoice_id, idempotency_key=key, actor_id=actor_id):
            logger.info("payment_recording_started", extra={
                "invoice_id": str(invoice_id),
                "amount": amount,
                "method": str(getattr(method, "value", method)),
            })

            try:
                ensure_minor_units(amount)
                method = PaymentMethod(method)
                meta = self._coerce_metadata(metadata).with_notes(notes)
            except ReconciliationError as exc:
                return self._rejected(exc)

            def work(session: Session) -> PaymentResult:
                status, invoice, payment = self.record_payment_in_session(
                    session,
                    invoice_id=invoice_id,
                    amount=amount,
                    method=method,
                    idempotency_key=key,
                    metadata=meta,
                    tenant_id=tenant_id,
                    actor_id=actor_id,
                )
                return PaymentResult(
                    status=status,
                    invoice=InvoiceSnapshot.from_model(invoice),
                    payment=PaymentRecord.from_model(payment),
                )

            try:
                result = run_command(
                    self._runner,
                    "record_partial_payment",
                    work,
                    PaymentResult.rejected,
                    logger,
                )
            except IntegrityError:
                # A concurrent request inserted the same key first.
                logger.info("payment_idempotency_race", extra={"invoice_id": str(invoice_id)})
                return self._replay_after_race(key, invoice_id, amount)

            if result.is_success:
                logger.info("payment_committed", extra={
                    "invoice_id": str(invoice_id),
                    "payment_id": str(result.payment.id),
                    "status": result.status.value,
                })
            return result

    def record_payment_in_session(
        self,
        session: Session,
        *,
        invoice_id: UUID,
        amount: int,
        method: PaymentMethod | str,
        idempotency_key: str,
        metadata: PaymentMetadata | None = None,
        tenant_id: str | None = None,
        actor_id: str | None = None,
    ) -> tuple[OperationStatus, Invoice, Payment]:
        """
        Apply a payment inside the caller's transaction.  Flushes only.

        The invoice is locked before the key lookup, so a concurrent replay
        of the same key waits for the first one and then sees its payment.

        Returns:
            (APPLIED | ALREADY_APPLIED, invoice, payment)

        Raises:
            InvalidAmountError, InvoiceNotFoundError, InvoiceCancelledError,
            ExceedsRemainingBalanceError, IdempotencyKeyConflictError.
        """
        ensure_minor_units(amount)
        method = PaymentMethod(method)
        ledger = InvoiceLedger(session, self._clock)
        invoice = ledger.lock_invoice(invoice_id, tenant_id)

        existing = self._payment_by_key(session, idempotency_key)
        if existing is not None:
            if existing.invoice_id != invoice.id or existing.amount != amount:
                raise IdempotencyKeyConflictError(
                    idempotency_key,
                    f"already used for {existing.amount} on invoice {existing.invoice_id}",
                )
            logger.info("payment_replayed", extra={
                "payment_id": str(existing.id),
                "invoice_id": str(invoice.id),
            })
            return OperationStatus.ALREADY_APPLIED, invoice, existing

        if invoice.is_cancelled:
            raise InvoiceCancelledError(str(invoice.id))
        if amount > invoice.amount_remaining:
            raise ExceedsRemainingBalanceError(str(invoice.id), amount, invoice.amount_remaining)

        payment_id = uuid4()
        ledger.apply_delta(invoice.id, amount, LedgerReason.PAYMENT, source_id=payment_id)

        payment = Payment(
            id=payment_id,
            tenant_id=invoice.tenant_id,
            invoice_id=invoice.id,
            amount=amount,
            currency=invoice.currency,
            method=method.value,
            status=PaymentStatus.COMPLETED.value,
            completed_at=self._clock.now(),
            idempotency_key=idempotency_key,
            payment_metadata=(metadata or PaymentMetadata()).to_dict(),
            created_by_id=actor_id,
        )
        session.add(payment)
        session.flush()

        logger.info("payment_recorded", extra={
            "payment_id": str(payment.id),
            "invoice_id": str(invoice.id),
            "amount": amount,
            "currency": invoice.currency,
            "method": method.value,
            "amount_remaining": invoice.amount_remaining,
            "invoice_status": invoice.status,
        })
        return OperationStatus.APPLIED, invoice, payment

    # =========================================================================
    # Queries
    # =========================================================================

    def get_payment(self, idempotency_key: str) -> PaymentRecord | None:
        with read_only_session(self._session_factory) as session:
            payment = self._payment_by_key(session, idempotency_key)
            return PaymentRecord.from_model(payment) if payment is not None else None

    def list_payments(self, invoice_id: UUID) -> list[PaymentRecord]:
        """Payments for an invoice, oldest first."""
        with read_only_session(self._session_factory) as session:
            stmt = (
                select(Payment)
                .where(Payment.invoice_id == invoice_id)
                .order_by(Payment.completed_at, Payment.id)
            )
            return [PaymentRecord.from_model(p) for p in session.execute(stmt).scalars()]

    # =========================================================================
    # Helpers
    # =========================================================================

    @staticmethod
    def _payment_by_key(session: Session, idempotency_key: str) -> Payment | None:
        stmt = select(Payment).where(Payment.idempotency_key == idempotency_key)
        return session.execute(stmt).scalar_one_or_none()

    @staticmethod
    def _coerce_metadata(metadata: PaymentMetadata | Mapping[str, Any] | None) -> PaymentMetadata:
        if isinstance(metadata, PaymentMetadata):
            return metadata
        return PaymentMetadata.from_dict(dict(metadata) if metadata else None)

    def _replay_after_race(self, key: str, invoice_id: UUID, amount: int) -> PaymentResult:
        with read_only_session(self._session_factory) as session:
            payment = self._payment_by_key(session, key)
            if payment is None:
                raise RuntimeError(f"Payment with key {key} vanished after unique violation")
            if payment.invoice_id != invoice_id or payment.amount != amount:
                return self._rejected(IdempotencyKeyConflictError(
                    key, f"already used for {payment.amount} on invoice {payment.invoice_id}",
                ))
            invoice = session.get(Invoice, payment.invoice_id)
            return PaymentResult(
                status=OperationStatus.ALREADY_APPLIED,
                invoice=InvoiceSnapshot.from_model(invoice),
                payment=PaymentRecord.from_model(payment),
            )

    @staticmethod
    def _rejected(exc: ReconciliationError) -> PaymentResult:
        status = status_for_error(exc)
        logger.info("record_partial_payment_rejected", extra={
            "status": status.value,
            "error_code": exc.code,
            "reason": str(exc),
        })
        return PaymentResult.rejected(status, str(exc))
