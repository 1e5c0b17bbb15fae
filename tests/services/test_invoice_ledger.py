"""
Tests for InvoiceLedger.

Verifies:
- apply_delta keeps amount_paid + amount_remaining == total
- Status derivation after each delta
- Rejections leave no trace
- Ledger entries mirror every applied delta
- Lifecycle helpers (send, cancel, overdue sweep, open invoice query)
"""

from datetime import date
from uuid import uuid4

import pytest

from recon_kernel.domain.dtos import InvoiceSnapshot, LedgerEntryRecord
from recon_kernel.domain.invoice_status import InvoiceStatus, LedgerReason
from recon_kernel.exceptions import (
    InsufficientRemainingBalanceError,
    InvalidAmountError,
    InvalidInvoiceTransitionError,
    InvoiceCancelledError,
    InvoiceNotFoundError,
)
from recon_kernel.services.invoice_ledger import InvoiceLedger


@pytest.fixture
def apply_delta(runner, clock):
    def _apply(invoice_id, amount, reason=LedgerReason.PAYMENT, **kwargs) -> InvoiceSnapshot:
        return runner.run(
            "apply_delta",
            lambda s: InvoiceSnapshot.from_model(
                InvoiceLedger(s, clock).apply_delta(invoice_id, amount, reason, **kwargs)
            ),
        )

    return _apply


@pytest.fixture
def entries(session_factory, clock):
    def _entries(invoice_id) -> list[LedgerEntryRecord]:
        with session_factory() as s:
            return [
                LedgerEntryRecord.from_model(e)
                for e in InvoiceLedger(s, clock).ledger_entries(invoice_id)
            ]

    return _entries


class TestApplyDelta:
    """The single balance mutation primitive."""

    def test_partial_delta(self, create_invoice, apply_delta, load_invoice):
        invoice = create_invoice(100000)

        result = apply_delta(invoice.id, 40000)

        assert result.amount_paid == 40000
        assert result.amount_remaining == 60000
        assert result.status is InvoiceStatus.PARTIAL
        stored = load_invoice(invoice.id)
        assert stored.amount_paid + stored.amount_remaining == stored.total
        assert stored.version > invoice.version

    def test_full_delta_marks_paid(self, create_invoice, apply_delta):
        invoice = create_invoice(100000)

        result = apply_delta(invoice.id, 100000)

        assert result.status is InvoiceStatus.PAID
        assert result.amount_remaining == 0
        assert result.paid_date is not None

    def test_successive_deltas(self, create_invoice, apply_delta):
        invoice = create_invoice(100000)

        apply_delta(invoice.id, 30000)
        apply_delta(invoice.id, 20000, LedgerReason.CREDIT)
        result = apply_delta(invoice.id, 50000)

        assert result.status is InvoiceStatus.PAID
        assert result.amount_paid == 100000

    def test_delta_above_remaining_rejected_without_writes(
        self, create_invoice, apply_delta, load_invoice, entries
    ):
        invoice = create_invoice(100000)
        apply_delta(invoice.id, 60000)

        with pytest.raises(InsufficientRemainingBalanceError) as exc_info:
            apply_delta(invoice.id, 40001)

        assert exc_info.value.amount_remaining == 40000
        stored = load_invoice(invoice.id)
        assert stored.amount_remaining == 40000
        assert len(entries(invoice.id)) == 1

    @pytest.mark.parametrize("amount", [0, -100, 10.5])
    def test_invalid_amount(self, create_invoice, apply_delta, amount):
        invoice = create_invoice(100000)

        with pytest.raises(InvalidAmountError):
            apply_delta(invoice.id, amount)

    def test_cancelled_invoice_rejected(self, create_invoice, cancel_invoice, apply_delta):
        invoice = create_invoice(100000)
        cancel_invoice(invoice.id)

        with pytest.raises(InvoiceCancelledError):
            apply_delta(invoice.id, 1000)

    def test_unknown_invoice(self, apply_delta):
        with pytest.raises(InvoiceNotFoundError):
            apply_delta(uuid4(), 1000)

    def test_other_tenant_cannot_see_invoice(self, create_invoice, apply_delta):
        invoice = create_invoice(100000, tenant_id="tenant-a")

        with pytest.raises(InvoiceNotFoundError):
            apply_delta(invoice.id, 1000, tenant_id="tenant-b")

    def test_overdue_invoice_becomes_partial(self, create_invoice, runner, clock, apply_delta):
        invoice = create_invoice(100000, due_date=date(2024, 2, 15))
        runner.run("refresh_overdue", lambda s: InvoiceLedger(s, clock).refresh_overdue("tenant-a"))

        result = apply_delta(invoice.id, 1000)

        assert result.status is InvoiceStatus.PARTIAL

    def test_ledger_entries_mirror_deltas(self, create_invoice, apply_delta, entries, session_factory, clock):
        invoice = create_invoice(100000)
        source = uuid4()
        apply_delta(invoice.id, 30000, source_id=source)
        apply_delta(invoice.id, 70000, LedgerReason.CREDIT)

        recorded = entries(invoice.id)

        assert [e.amount for e in recorded] == [30000, 70000]
        assert [e.reason_kind for e in recorded] == [LedgerReason.PAYMENT, LedgerReason.CREDIT]
        assert recorded[0].source_id == source
        assert recorded[0].status_after is InvoiceStatus.PARTIAL
        assert recorded[1].status_after is InvoiceStatus.PAID
        assert recorded[1].amount_remaining_after == 0
        with session_factory() as s:
            assert InvoiceLedger(s, clock).ledger_total(invoice.id) == 100000


class TestLifecycle:

    def test_create_requires_positive_total(self, create_invoice):
        with pytest.raises(InvalidAmountError):
            create_invoice(0)

    def test_created_invoice_has_nothing_paid(self, create_invoice):
        invoice = create_invoice(121000, tax=21000, send=False)

        assert invoice.status is InvoiceStatus.DRAFT
        assert invoice.subtotal == 100000
        assert invoice.amount_paid == 0
        assert invoice.amount_remaining == 121000

    def test_send_stamps_issue_date(self, create_invoice, clock):
        invoice = create_invoice(100000, issue_date=None)

        assert invoice.status is InvoiceStatus.SENT
        assert invoice.issue_date == clock.today()

    def test_send_twice_rejected(self, create_invoice, runner, clock):
        invoice = create_invoice(100000)

        with pytest.raises(InvalidInvoiceTransitionError):
            runner.run("send", lambda s: InvoiceLedger(s, clock).send_invoice(invoice.id))

    def test_cancel_paid_invoice_rejected(self, create_invoice, apply_delta, cancel_invoice):
        invoice = create_invoice(100000)
        apply_delta(invoice.id, 100000)

        with pytest.raises(InvalidInvoiceTransitionError):
            cancel_invoice(invoice.id)

    def test_cancel_keeps_balances(self, create_invoice, apply_delta, cancel_invoice):
        invoice = create_invoice(100000)
        apply_delta(invoice.id, 25000)

        cancelled = cancel_invoice(invoice.id)

        assert cancelled.status is InvoiceStatus.CANCELLED
        assert cancelled.amount_paid == 25000
        assert cancelled.amount_remaining == 75000

    def test_refresh_overdue(self, create_invoice, apply_delta, runner, clock, load_invoice):
        late = create_invoice(100000, due_date=date(2024, 2, 15))
        late_partial = create_invoice(100000, due_date=date(2024, 2, 15))
        on_time = create_invoice(100000)
        apply_delta(late_partial.id, 100)

        changed = runner.run(
            "refresh_overdue",
            lambda s: [i.id for i in InvoiceLedger(s, clock).refresh_overdue("tenant-a")],
        )

        assert changed == [late.id]
        assert load_invoice(late.id).status is InvoiceStatus.OVERDUE
        assert load_invoice(late_partial.id).status is InvoiceStatus.PARTIAL
        assert load_invoice(on_time.id).status is InvoiceStatus.SENT

    def test_open_invoices(self, create_invoice, apply_delta, cancel_invoice, session_factory, clock):
        second = create_invoice(100000, invoice_number="FV-2024-0002")
        first = create_invoice(100000, invoice_number="FV-2024-0001")
        paid = create_invoice(100000, invoice_number="FV-2024-0003")
        cancelled = create_invoice(100000, invoice_number="FV-2024-0004")
        create_invoice(100000, invoice_number="FV-2024-0005", currency="EUR")
        create_invoice(100000, invoice_number="FV-2024-0006", tenant_id="tenant-b")
        apply_delta(paid.id, 100000)
        cancel_invoice(cancelled.id)

        with session_factory() as s:
            found = InvoiceLedger(s, clock).open_invoices("tenant-a", "CZK")

        assert [i.id for i in found] == [first.id, second.id]
