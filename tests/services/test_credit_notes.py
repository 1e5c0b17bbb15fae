"""
Tests for CreditNoteManager.

Verifies:
- Draft creation with tax split and per-tenant numbering
- Credit cap: issued and applied notes reserve, drafts do not
- Issue and apply lifecycle (draft -> issued -> applied)
- Apply reduces the invoice balance exactly once per key
- Cancelled invoices reject every credit command
"""

from datetime import date
from uuid import uuid4

import pytest

from recon_config.loader import config_from_dict
from recon_kernel.domain.invoice_status import InvoiceStatus
from recon_kernel.domain.results import OperationStatus
from recon_kernel.exceptions import CreditNoteNotFoundError
from recon_kernel.models.credit_note import CreditNoteStatus
from recon_kernel.models.payment import PaymentMethod
from recon_modules.credit_notes import CreditNoteManager, NoTaxSplit


@pytest.fixture
def issued_note(credit_note_manager):
    """Create and issue a note, returning the issued result."""

    def _issued(invoice_id, amount, reason="Returned goods"):
        created = credit_note_manager.create(invoice_id, amount, reason)
        assert created.is_success, created.message
        issued = credit_note_manager.issue(created.credit_note.id)
        assert issued.is_success, issued.message
        return issued.credit_note

    return _issued


class TestCreate:

    def test_draft_with_proportional_tax(self, create_invoice, credit_note_manager):
        invoice = create_invoice(121000, tax=21000)

        result = credit_note_manager.create(invoice.id, 12100, "Damaged item", notes="photo attached")

        assert result.status is OperationStatus.APPLIED
        note = result.credit_note
        assert note.status is CreditNoteStatus.DRAFT
        assert (note.subtotal, note.tax, note.total) == (10000, 2100, 12100)
        assert note.credit_note_number == "CN20240001"
        assert note.reason == "Damaged item"
        assert note.notes == "photo attached"
        assert result.max_creditable == 121000

    def test_numbers_are_sequential_per_tenant(self, create_invoice, credit_note_manager):
        a = create_invoice(100000, tenant_id="tenant-a")
        b = create_invoice(100000, tenant_id="tenant-b", invoice_number="FV-2024-0100")

        first = credit_note_manager.create(a.id, 1000, "r")
        second = credit_note_manager.create(a.id, 1000, "r")
        other_tenant = credit_note_manager.create(b.id, 1000, "r")

        assert first.credit_note.credit_note_number == "CN20240001"
        assert second.credit_note.credit_note_number == "CN20240002"
        assert other_tenant.credit_note.credit_note_number == "CN20240001"

    def test_creating_does_not_touch_balance(self, create_invoice, credit_note_manager, load_invoice):
        invoice = create_invoice(100000)

        credit_note_manager.create(invoice.id, 50000, "Discount")

        assert load_invoice(invoice.id).amount_remaining == 100000

    @pytest.mark.parametrize("reason", ["", "  "])
    def test_reason_required(self, create_invoice, credit_note_manager, reason):
        invoice = create_invoice(100000)

        result = credit_note_manager.create(invoice.id, 1000, reason)

        assert result.status is OperationStatus.CREDIT_NOTE_REASON_REQUIRED
        assert not result.is_success
        assert credit_note_manager.list_credit_notes("tenant-a")[1] == 0

    @pytest.mark.parametrize("amount", [0, -1, 10.0])
    def test_invalid_amount(self, create_invoice, credit_note_manager, amount):
        invoice = create_invoice(100000)

        result = credit_note_manager.create(invoice.id, amount, "r")

        assert result.status is OperationStatus.INVALID_AMOUNT

    def test_above_total_rejected(self, create_invoice, credit_note_manager):
        invoice = create_invoice(100000)

        result = credit_note_manager.create(invoice.id, 100001, "r")

        assert result.status is OperationStatus.CREDIT_EXCEEDS_INVOICE
        assert "100000" in result.message
        assert result.credit_note is None

    def test_tax_split_override(self, create_invoice, credit_note_manager):
        invoice = create_invoice(121000, tax=21000)

        result = credit_note_manager.create(invoice.id, 12100, "r", tax_split=NoTaxSplit())

        assert (result.credit_note.subtotal, result.credit_note.tax) == (12100, 0)

    def test_configured_fixed_rate(self, session_factory, clock, runner, create_invoice):
        config = config_from_dict({
            "credit_notes": {"tax_split": "fixed_rate", "fixed_tax_rate": "0.15", "number_prefix": "DN"},
        })
        manager = CreditNoteManager(session_factory, clock, config, runner=runner)
        invoice = create_invoice(100000)

        result = manager.create(invoice.id, 1150, "r")

        assert (result.credit_note.subtotal, result.credit_note.tax) == (1000, 150)
        assert result.credit_note.credit_note_number == "DN20240001"

    def test_cancelled_invoice(self, create_invoice, cancel_invoice, credit_note_manager):
        invoice = create_invoice(100000)
        cancel_invoice(invoice.id)

        result = credit_note_manager.create(invoice.id, 1000, "r")

        assert result.status is OperationStatus.INVOICE_CANCELLED

    def test_unknown_invoice(self, credit_note_manager):
        assert credit_note_manager.create(uuid4(), 1000, "r").status is OperationStatus.INVOICE_NOT_FOUND


class TestCreditCap:

    def test_drafts_do_not_reserve(self, create_invoice, credit_note_manager):
        invoice = create_invoice(100000)

        first = credit_note_manager.create(invoice.id, 80000, "r")
        second = credit_note_manager.create(invoice.id, 80000, "r")

        assert first.is_success and second.is_success
        assert credit_note_manager.max_creditable(invoice.id) == 100000

    def test_issue_rechecks_cap(self, create_invoice, credit_note_manager):
        invoice = create_invoice(100000)
        first = credit_note_manager.create(invoice.id, 80000, "r")
        second = credit_note_manager.create(invoice.id, 80000, "r")

        assert credit_note_manager.issue(first.credit_note.id).is_success
        result = credit_note_manager.issue(second.credit_note.id)

        assert result.status is OperationStatus.CREDIT_EXCEEDS_INVOICE
        assert credit_note_manager.get_credit_note(second.credit_note.id).status is CreditNoteStatus.DRAFT

    def test_issued_and_applied_notes_reserve(self, create_invoice, credit_note_manager, issued_note):
        invoice = create_invoice(100000)
        applied = issued_note(invoice.id, 30000)
        credit_note_manager.apply(applied.id)
        issued_note(invoice.id, 50000)

        assert credit_note_manager.max_creditable(invoice.id) == 20000
        assert credit_note_manager.create(invoice.id, 20001, "r").status is (
            OperationStatus.CREDIT_EXCEEDS_INVOICE
        )
        assert credit_note_manager.create(invoice.id, 20000, "r").is_success

    def test_payments_reduce_cap(self, create_invoice, credit_note_manager, payment_recorder):
        invoice = create_invoice(100000)
        payment_recorder.record_partial_payment(invoice.id, 80000, PaymentMethod.CASH)

        assert credit_note_manager.max_creditable(invoice.id) == 20000
        assert credit_note_manager.create(invoice.id, 20001, "r").status is (
            OperationStatus.CREDIT_EXCEEDS_INVOICE
        )

    def test_paid_invoice_has_nothing_to_credit(self, create_invoice, credit_note_manager, payment_recorder):
        invoice = create_invoice(100000)
        payment_recorder.record_partial_payment(invoice.id, 100000, PaymentMethod.CASH)

        assert credit_note_manager.max_creditable(invoice.id) == 0
        assert credit_note_manager.create(invoice.id, 1, "r").status is (
            OperationStatus.CREDIT_EXCEEDS_INVOICE
        )

    def test_cap_logged(self, create_invoice, credit_note_manager, captured_logs):
        invoice = create_invoice(1000)

        credit_note_manager.create(invoice.id, 5000, "r")

        [record] = [r for r in captured_logs() if r["message"] == "credit_cap_exceeded"]
        assert record["max_creditable"] == 1000


class TestIssue:

    def test_issue_stamps_date(self, create_invoice, credit_note_manager, clock):
        invoice = create_invoice(100000)
        created = credit_note_manager.create(invoice.id, 1000, "r")

        result = credit_note_manager.issue(created.credit_note.id)

        assert result.status is OperationStatus.APPLIED
        assert result.credit_note.status is CreditNoteStatus.ISSUED
        assert result.credit_note.issue_date == date(2024, 3, 1)

    def test_issue_twice_rejected(self, create_invoice, credit_note_manager, issued_note):
        invoice = create_invoice(100000)
        note = issued_note(invoice.id, 1000)

        result = credit_note_manager.issue(note.id)

        assert result.status is OperationStatus.ALREADY_ISSUED

    def test_issue_after_invoice_cancelled(self, create_invoice, cancel_invoice, credit_note_manager):
        invoice = create_invoice(100000)
        created = credit_note_manager.create(invoice.id, 1000, "r")
        cancel_invoice(invoice.id)

        result = credit_note_manager.issue(created.credit_note.id)

        assert result.status is OperationStatus.INVOICE_CANCELLED

    def test_unknown_note(self, credit_note_manager):
        assert credit_note_manager.issue(uuid4()).status is OperationStatus.CREDIT_NOTE_NOT_FOUND


class TestApply:

    def test_apply_reduces_balance(self, create_invoice, credit_note_manager, issued_note, load_invoice):
        invoice = create_invoice(100000)
        note = issued_note(invoice.id, 25000)

        result = credit_note_manager.apply(note.id)

        assert result.status is OperationStatus.APPLIED
        assert result.credit_note.status is CreditNoteStatus.APPLIED
        assert result.credit_note.applied_at is not None
        assert result.invoice.amount_remaining == 75000
        assert result.invoice.status is InvoiceStatus.PARTIAL
        stored = load_invoice(invoice.id)
        assert stored.amount_paid + stored.amount_remaining == stored.total

    def test_full_credit_settles_invoice(self, create_invoice, credit_note_manager, issued_note):
        invoice = create_invoice(100000)
        note = issued_note(invoice.id, 100000)

        result = credit_note_manager.apply(note.id)

        assert result.invoice.status is InvoiceStatus.PAID

    def test_credit_plus_payment_settles_invoice(
        self, create_invoice, credit_note_manager, issued_note, payment_recorder
    ):
        invoice = create_invoice(100000)
        credit_note_manager.apply(issued_note(invoice.id, 30000).id)

        result = payment_recorder.record_partial_payment(invoice.id, 70000, PaymentMethod.BANK_TRANSFER)

        assert result.invoice.status is InvoiceStatus.PAID

    def test_draft_cannot_be_applied(self, create_invoice, credit_note_manager):
        invoice = create_invoice(100000)
        created = credit_note_manager.create(invoice.id, 1000, "r")

        result = credit_note_manager.apply(created.credit_note.id)

        assert result.status is OperationStatus.NOT_ISSUED

    def test_retry_is_idempotent(self, create_invoice, credit_note_manager, issued_note, load_invoice):
        invoice = create_invoice(100000)
        note = issued_note(invoice.id, 25000)

        first = credit_note_manager.apply(note.id)
        second = credit_note_manager.apply(note.id)

        assert first.status is OperationStatus.APPLIED
        assert second.status is OperationStatus.ALREADY_APPLIED
        assert second.is_success
        assert load_invoice(invoice.id).amount_remaining == 75000

    def test_retry_with_explicit_key(self, create_invoice, credit_note_manager, issued_note):
        invoice = create_invoice(100000)
        note = issued_note(invoice.id, 25000)

        credit_note_manager.apply(note.id, idempotency_key="refund:812")
        replay = credit_note_manager.apply(note.id, idempotency_key="refund:812")
        other_key = credit_note_manager.apply(note.id, idempotency_key="refund:813")

        assert replay.status is OperationStatus.ALREADY_APPLIED
        assert other_key.status is OperationStatus.NOT_ISSUED

    def test_key_used_by_another_note_conflicts(self, create_invoice, credit_note_manager, issued_note):
        invoice = create_invoice(100000)
        first = issued_note(invoice.id, 10000)
        second = issued_note(invoice.id, 10000)
        credit_note_manager.apply(first.id, idempotency_key="refund:1")

        result = credit_note_manager.apply(second.id, idempotency_key="refund:1")

        assert result.status is OperationStatus.IDEMPOTENCY_KEY_CONFLICT
        assert credit_note_manager.get_credit_note(second.id).status is CreditNoteStatus.ISSUED

    def test_apply_after_payment_consumed_balance(
        self, create_invoice, credit_note_manager, issued_note, payment_recorder, load_invoice
    ):
        invoice = create_invoice(100000)
        note = issued_note(invoice.id, 30000)
        payment_recorder.record_partial_payment(invoice.id, 80000, PaymentMethod.CASH)

        result = credit_note_manager.apply(note.id)

        assert result.status is OperationStatus.INSUFFICIENT_REMAINING_BALANCE
        assert credit_note_manager.get_credit_note(note.id).status is CreditNoteStatus.ISSUED
        assert load_invoice(invoice.id).amount_remaining == 20000

    def test_apply_on_cancelled_invoice(self, create_invoice, cancel_invoice, credit_note_manager, issued_note):
        invoice = create_invoice(100000)
        note = issued_note(invoice.id, 1000)
        cancel_invoice(invoice.id)

        result = credit_note_manager.apply(note.id)

        assert result.status is OperationStatus.INVOICE_CANCELLED


class TestQueries:

    def test_get_unknown(self, credit_note_manager):
        with pytest.raises(CreditNoteNotFoundError):
            credit_note_manager.get_credit_note(uuid4())

    def test_list_credit_notes(self, create_invoice, credit_note_manager, issued_note):
        invoice = create_invoice(100000)
        other = create_invoice(100000)
        credit_note_manager.create(invoice.id, 1000, "r")
        issued_note(invoice.id, 2000)
        credit_note_manager.create(other.id, 3000, "r")

        notes, total = credit_note_manager.list_credit_notes("tenant-a")
        for_invoice, invoice_total = credit_note_manager.list_credit_notes(
            "tenant-a", invoice_id=invoice.id
        )
        issued, issued_total = credit_note_manager.list_credit_notes(
            "tenant-a", status=CreditNoteStatus.ISSUED
        )
        page, _ = credit_note_manager.list_credit_notes("tenant-a", limit=1, offset=1)

        assert total == 3
        assert [n.credit_note_number for n in notes] == ["CN20240003", "CN20240002", "CN20240001"]
        assert invoice_total == 2
        assert {n.total for n in for_invoice} == {1000, 2000}
        assert issued_total == 1
        assert issued[0].total == 2000
        assert [n.credit_note_number for n in page] == ["CN20240002"]
