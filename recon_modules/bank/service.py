"""
Match Applier -- confirms bank transactions against invoices.

Thin glue layer that:
1. Loads open invoices and runs TransactionMatcher for suggestions
2. On confirmation, records a bank_reconciliation payment through
   PaymentRecorder.record_payment_in_session
3. Marks the transaction matched

Steps 2 and 3 and the ledger delta underneath them commit as one unit.
Suggestions are read without locks; confirmation re-validates the
transaction and the invoice balance under lock.

Usage:
    applier = MatchApplier(session_factory, clock)
    for suggestion in applier.suggest(transaction_id):
        ...
    result = applier.confirm_match(transaction_id, invoice_id, actor_id="op-7")
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import date
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from recon_config.loader import default_config
from recon_config.schema import ReconciliationConfig
from recon_engines.matching import ConfidenceLevel, MatchSuggestion, TransactionMatcher
from recon_kernel.db.engine import read_only_session
from recon_kernel.domain.clock import Clock, SystemClock
from recon_kernel.domain.currency import CurrencyRegistry
from recon_kernel.domain.dtos import (
    BankTransactionSnapshot,
    InvoiceSnapshot,
    PaymentMetadata,
    PaymentRecord,
)
from recon_kernel.domain.invoice_status import is_open
from recon_kernel.domain.money import Money, ensure_minor_units
from recon_kernel.domain.results import OperationStatus, status_for_error
from recon_kernel.exceptions import (
    AlreadyMatchedError,
    IdempotencyKeyConflictError,
    InvoiceNotOpenError,
    ReconciliationError,
    TransactionNotFoundError,
)
from recon_kernel.logging_config import LogContext, get_logger
from recon_kernel.models.bank_transaction import BankTransaction
from recon_kernel.models.payment import Payment, PaymentMethod
from recon_kernel.services.invoice_ledger import InvoiceLedger
from recon_kernel.services.transaction_runner import TransactionRunner
from recon_kernel.utils.idempotency import match_payment_key
from recon_modules._command import build_runner, run_command
from recon_modules.bank.models import AutoConfirmResult, MatchResult
from recon_modules.payments.service import PaymentRecorder

logger = get_logger("modules.bank.service")


class MatchApplier:
    """
    Suggests and confirms invoice matches for bank transactions.

    Engine composition:
    - TransactionMatcher: pure scoring of open invoices
    - PaymentRecorder: the in-transaction payment primitive

    Transaction boundary: ``confirm_match`` and ``register_transaction``
    commit on success and roll back on failure.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        clock: Clock | None = None,
        config: ReconciliationConfig | None = None,
        matcher: TransactionMatcher | None = None,
        payment_recorder: PaymentRecorder | None = None,
        runner: TransactionRunner | None = None,
    ):
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._config = config or default_config()
        self._runner = runner or build_runner(session_factory, self._config.persistence)
        self._matcher = matcher or TransactionMatcher(self._config.matching)
        self._payments = payment_recorder or PaymentRecorder(
            session_factory, self._clock, self._config, runner=self._runner
        )

    # =========================================================================
    # Ingestion collaborator
    # =========================================================================

    def register_transaction(
        self,
        *,
        tenant_id: str,
        transaction_date: date,
        amount: int,
        currency: str,
        counterparty_name: str | None = None,
        counterparty_account: str | None = None,
        description: str | None = None,
        variable_symbol: str | None = None,
    ) -> BankTransactionSnapshot:
        """
        Store an unmatched transaction handed over by bank-feed ingestion.

        Raises:
            InvalidAmountError: amount is not a positive int.
            ValueError: unknown currency code.
        """
        ensure_minor_units(amount)
        currency = CurrencyRegistry.validate(currency)

        def work(session: Session) -> BankTransactionSnapshot:
            txn = BankTransaction(
                tenant_id=tenant_id,
                transaction_date=transaction_date,
                amount=amount,
                currency=currency,
                counterparty_name=counterparty_name,
                counterparty_account=counterparty_account,
                description=description,
                variable_symbol=variable_symbol,
            )
            session.add(txn)
            session.flush()
            logger.info("bank_transaction_registered", extra={
                "transaction_id": str(txn.id),
                "tenant_id": tenant_id,
                "amount": amount,
                "currency": currency,
            })
            return BankTransactionSnapshot.from_model(txn)

        return self._runner.run("register_transaction", work)

    # =========================================================================
    # Suggestions (read-only)
    # =========================================================================

    def suggest(self, transaction_id: UUID, limit: int | None = None) -> list[MatchSuggestion]:
        """
        Ranked invoice suggestions for an unmatched transaction.

        Returns an empty list for a transaction that is already matched.

        Raises:
            TransactionNotFoundError
        """
        with read_only_session(self._session_factory) as session:
            txn = session.get(BankTransaction, transaction_id)
            if txn is None:
                raise TransactionNotFoundError(str(transaction_id))
            if txn.is_matched:
                return []
            snapshot = BankTransactionSnapshot.from_model(txn)
            candidates = [
                InvoiceSnapshot.from_model(invoice)
                for invoice in InvoiceLedger(session, self._clock).open_invoices(
                    txn.tenant_id, txn.currency
                )
            ]
        return self._matcher.suggest(snapshot, candidates, limit=limit)

    # =========================================================================
    # Confirmation
    # =========================================================================

    def confirm_match(
        self,
        transaction_id: UUID,
        invoice_id: UUID,
        idempotency_key: str | None = None,
        actor_id: str | None = None,
    ) -> MatchResult:
        """
        Apply the transaction's full amount to the invoice as a payment.

        Rejections:
            ALREADY_MATCHED     -- transaction already consumed.  A retry
                                   carrying the key that matched it returns
                                   ALREADY_APPLIED with the prior result.
            INVOICE_NOT_OPEN    -- invoice paid or cancelled.
            CURRENCY_MISMATCH   -- transaction and invoice currencies differ.
            EXCEEDS_REMAINING_BALANCE -- transaction larger than what is owed.
            IDEMPOTENCY_KEY_CONFLICT  -- key already matched another transaction.
        """

        def work(session: Session) -> MatchResult:
            txn = self._lock_transaction(session, transaction_id)

            if txn.is_matched:
                if (
                    idempotency_key is not None
                    and txn.match_idempotency_key == idempotency_key
                    and txn.matched_invoice_id == invoice_id
                ):
                    return self._replayed(session, txn)
                raise AlreadyMatchedError(str(txn.id), str(txn.matched_invoice_id))

            ledger = InvoiceLedger(session, self._clock)
            invoice = ledger.lock_invoice(invoice_id, txn.tenant_id)
            if not is_open(invoice.status_enum, invoice.amount_remaining):
                raise InvoiceNotOpenError(str(invoice.id), invoice.status)
            owed = Money(invoice.amount_remaining, invoice.currency)
            owed.require_same_currency(Money(txn.amount, txn.currency))
            if idempotency_key is not None:
                self._check_match_key_free(session, idempotency_key, txn.id)

            payment_key = match_payment_key(txn.id)
            _, invoice, payment = self._payments.record_payment_in_session(
                session,
                invoice_id=invoice.id,
                amount=txn.amount,
                method=PaymentMethod.BANK_RECONCILIATION,
                idempotency_key=payment_key,
                metadata=PaymentMetadata(
                    bank_transaction_id=str(txn.id),
                    external_reference=txn.variable_symbol,
                    source="bank_reconciliation",
                ),
                tenant_id=txn.tenant_id,
                actor_id=actor_id,
            )

            txn.matched_invoice_id = invoice.id
            txn.payment_id = payment.id
            txn.matched_at = self._clock.now()
            txn.match_idempotency_key = idempotency_key or payment_key
            session.flush()

            logger.info("match_confirmed", extra={
                "transaction_id": str(txn.id),
                "invoice_id": str(invoice.id),
                "payment_id": str(payment.id),
                "amount": txn.amount,
                "amount_remaining": invoice.amount_remaining,
                "invoice_status": invoice.status,
            })
            return MatchResult(
                status=OperationStatus.APPLIED,
                transaction=BankTransactionSnapshot.from_model(txn),
                payment=PaymentRecord.from_model(payment),
                invoice=InvoiceSnapshot.from_model(invoice),
            )

        with LogContext.bind(
            transaction_id=transaction_id,
            invoice_id=invoice_id,
            idempotency_key=idempotency_key,
            actor_id=actor_id,
        ):
            logger.info("match_confirmation_started", extra={
                "transaction_id": str(transaction_id),
                "invoice_id": str(invoice_id),
            })
            try:
                return run_command(
                    self._runner, "confirm_match", work, MatchResult.rejected, logger
                )
            except IntegrityError:
                if idempotency_key is None:
                    raise
                # A concurrent confirmation of another transaction stored the key first.
                with read_only_session(self._session_factory) as session:
                    holder = self._match_key_holder(session, idempotency_key)
                if holder is None or holder == transaction_id:
                    raise
                logger.info("match_idempotency_race", extra={
                    "transaction_id": str(transaction_id),
                    "holder_transaction_id": str(holder),
                })
                exc = IdempotencyKeyConflictError(
                    idempotency_key, f"already matched bank transaction {holder}"
                )
                return MatchResult.rejected(status_for_error(exc), str(exc))

    def auto_confirm(self, transaction_id: UUID, actor_id: str | None = None) -> AutoConfirmResult:
        """
        Confirm the top suggestion when it is HIGH confidence and leads the
        runner-up by at least ``auto_confirm_margin``.  Otherwise
        NO_CONFIDENT_MATCH and nothing is written.
        """
        try:
            suggestions = self.suggest(transaction_id)
        except ReconciliationError as exc:
            return AutoConfirmResult(status=status_for_error(exc), message=str(exc))

        top = suggestions[0] if suggestions else None
        reason = self._auto_confirm_blocker(suggestions)
        if reason is not None:
            logger.info("auto_confirm_skipped", extra={
                "transaction_id": str(transaction_id),
                "reason": reason,
                "top_confidence": top.confidence if top else None,
            })
            return AutoConfirmResult(
                status=OperationStatus.NO_CONFIDENT_MATCH,
                suggestion=top,
                message=reason,
            )

        match = self.confirm_match(transaction_id, top.invoice_id, actor_id=actor_id)
        return AutoConfirmResult(
            status=match.status,
            suggestion=top,
            match=match,
            message=match.message,
        )

    # =========================================================================
    # Queries
    # =========================================================================

    def get_transaction(self, transaction_id: UUID) -> BankTransactionSnapshot:
        with read_only_session(self._session_factory) as session:
            txn = session.get(BankTransaction, transaction_id)
            if txn is None:
                raise TransactionNotFoundError(str(transaction_id))
            return BankTransactionSnapshot.from_model(txn)

    def unmatched_transactions(self, tenant_id: str) -> list[BankTransactionSnapshot]:
        """Transactions still waiting for a match, oldest first."""
        with read_only_session(self._session_factory) as session:
            stmt = (
                select(BankTransaction)
                .where(BankTransaction.tenant_id == tenant_id)
                .where(BankTransaction.matched_invoice_id.is_(None))
                .order_by(BankTransaction.transaction_date, BankTransaction.id)
            )
            return [BankTransactionSnapshot.from_model(t) for t in session.execute(stmt).scalars()]

    # =========================================================================
    # Helpers
    # =========================================================================

    @staticmethod
    def _lock_transaction(session: Session, transaction_id: UUID) -> BankTransaction:
        stmt = (
            select(BankTransaction)
            .where(BankTransaction.id == transaction_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        txn = session.execute(stmt).scalar_one_or_none()
        if txn is None:
            raise TransactionNotFoundError(str(transaction_id))
        return txn

    @staticmethod
    def _match_key_holder(session: Session, idempotency_key: str) -> UUID | None:
        stmt = select(BankTransaction.id).where(
            BankTransaction.match_idempotency_key == idempotency_key
        )
        return session.execute(stmt).scalar_one_or_none()

    def _check_match_key_free(
        self, session: Session, idempotency_key: str, transaction_id: UUID
    ) -> None:
        holder = self._match_key_holder(session, idempotency_key)
        if holder is not None and holder != transaction_id:
            raise IdempotencyKeyConflictError(
                idempotency_key, f"already matched bank transaction {holder}"
            )

    def _replayed(self, session: Session, txn: BankTransaction) -> MatchResult:
        payment = session.get(Payment, txn.payment_id)
        invoice = InvoiceLedger(session, self._clock).get_invoice(txn.matched_invoice_id)
        logger.info("match_confirmation_replayed", extra={
            "transaction_id": str(txn.id),
            "invoice_id": str(invoice.id),
        })
        return MatchResult(
            status=OperationStatus.ALREADY_APPLIED,
            transaction=BankTransactionSnapshot.from_model(txn),
            payment=PaymentRecord.from_model(payment),
            invoice=InvoiceSnapshot.from_model(invoice),
        )

    def _auto_confirm_blocker(self, suggestions: list[MatchSuggestion]) -> str | None:
        if not suggestions:
            return "no candidate invoices"
        top = suggestions[0]
        if top.confidence_level is not ConfidenceLevel.HIGH:
            return f"top confidence {top.confidence} is below high"
        if len(suggestions) > 1:
            lead = round(top.confidence - suggestions[1].confidence, 4)
            if lead < self._config.matching.auto_confirm_margin:
                return f"lead over runner-up {lead} is below margin"
        return None
