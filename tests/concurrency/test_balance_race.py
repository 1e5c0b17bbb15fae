"""
Concurrent writers against one invoice.

Each thread gets its own session from the shared factory.  Row locks
(PostgreSQL) or BEGIN IMMEDIATE (SQLite) serialize the writers; the
balance is always re-read under the lock, so no interleaving can pay an
invoice past its total.
"""

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from recon_kernel.domain.invoice_status import InvoiceStatus
from recon_kernel.domain.results import OperationStatus
from recon_kernel.models.payment import PaymentMethod

pytestmark = pytest.mark.slow_locks


def run_together(n: int, fn):
    """Start ``n`` calls of ``fn(i)`` at the same moment and collect results."""
    barrier = threading.Barrier(n)

    def task(i):
        barrier.wait()
        return fn(i)

    with ThreadPoolExecutor(max_workers=n) as pool:
        return list(pool.map(task, range(n)))


class TestConcurrentPayments:

    def test_two_payments_exceeding_total(self, create_invoice, payment_recorder, load_invoice):
        invoice = create_invoice(100000)

        results = run_together(
            2,
            lambda i: payment_recorder.record_partial_payment(invoice.id, 60000, PaymentMethod.CARD),
        )

        statuses = sorted(r.status.value for r in results)
        assert statuses == [
            OperationStatus.APPLIED.value,
            OperationStatus.EXCEEDS_REMAINING_BALANCE.value,
        ]
        stored = load_invoice(invoice.id)
        assert stored.amount_paid == 60000
        assert stored.amount_remaining == 40000
        assert stored.status is InvoiceStatus.PARTIAL
        assert len(payment_recorder.list_payments(invoice.id)) == 1

    def test_many_small_payments(self, create_invoice, payment_recorder, load_invoice):
        invoice = create_invoice(100000)

        results = run_together(
            10,
            lambda i: payment_recorder.record_partial_payment(invoice.id, 15000, PaymentMethod.CARD),
        )

        applied = [r for r in results if r.status is OperationStatus.APPLIED]
        assert len(applied) == 6
        assert all(
            r.status is OperationStatus.EXCEEDS_REMAINING_BALANCE
            for r in results
            if r.status is not OperationStatus.APPLIED
        )
        stored = load_invoice(invoice.id)
        assert stored.amount_paid == 90000
        assert stored.amount_paid + stored.amount_remaining == stored.total

    def test_same_idempotency_key(self, create_invoice, payment_recorder, load_invoice):
        invoice = create_invoice(100000)

        results = run_together(
            3,
            lambda i: payment_recorder.record_partial_payment(
                invoice.id, 40000, PaymentMethod.STRIPE, idempotency_key="stripe:pi_race"
            ),
        )

        assert sorted(r.status.value for r in results) == [
            OperationStatus.ALREADY_APPLIED.value,
            OperationStatus.ALREADY_APPLIED.value,
            OperationStatus.APPLIED.value,
        ]
        assert len({r.payment.id for r in results}) == 1
        assert load_invoice(invoice.id).amount_paid == 40000


class TestConcurrentMatches:

    def test_transaction_matched_once(self, create_invoice, create_transaction, match_applier, load_invoice):
        first = create_invoice(100000)
        second = create_invoice(100000)
        txn = create_transaction(40000)
        targets = [first.id, second.id]

        results = run_together(2, lambda i: match_applier.confirm_match(txn.id, targets[i]))

        assert sorted(r.status.value for r in results) == [
            OperationStatus.ALREADY_MATCHED.value,
            OperationStatus.APPLIED.value,
        ]
        assert load_invoice(first.id).amount_paid + load_invoice(second.id).amount_paid == 40000

    def test_shared_key_matches_one_transaction(
        self, create_invoice, create_transaction, match_applier, load_invoice
    ):
        invoices = [create_invoice(100000), create_invoice(100000)]
        txns = [create_transaction(40000), create_transaction(30000)]

        results = run_together(
            2,
            lambda i: match_applier.confirm_match(
                txns[i].id, invoices[i].id, idempotency_key="ui:confirm:shared"
            ),
        )

        assert sorted(r.status.value for r in results) == [
            OperationStatus.APPLIED.value,
            OperationStatus.IDEMPOTENCY_KEY_CONFLICT.value,
        ]
        paid = [load_invoice(invoice.id).amount_paid for invoice in invoices]
        assert sorted(paid) in ([0, 30000], [0, 40000])


class TestPaymentAgainstCredit:

    def test_credit_and_payment_never_overdraw(
        self, create_invoice, credit_note_manager, payment_recorder, load_invoice
    ):
        invoice = create_invoice(100000)
        created = credit_note_manager.create(invoice.id, 50000, "Discount")
        credit_note_manager.issue(created.credit_note.id)

        def act(i):
            if i == 0:
                return credit_note_manager.apply(created.credit_note.id)
            return payment_recorder.record_partial_payment(invoice.id, 60000, PaymentMethod.CARD)

        credit_result, payment_result = run_together(2, act)

        assert credit_result.is_success != payment_result.is_success
        stored = load_invoice(invoice.id)
        assert stored.amount_remaining >= 0
        assert stored.amount_paid in (50000, 60000)
