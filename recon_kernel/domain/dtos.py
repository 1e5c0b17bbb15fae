"""
DTOs -- Immutable snapshots crossing the service boundary.

Responsibility:
    Frozen records returned to callers and fed to the pure matcher:
    InvoiceSnapshot, BankTransactionSnapshot, PaymentRecord,
    CreditNoteRecord, LedgerEntryRecord, plus the typed PaymentMetadata
    that replaces a free-form JSON blob.

Architecture position:
    Kernel > Domain -- pure, zero I/O.  ``from_model()`` class methods are
    boundary converters invoked only from the service layer.

Invariants enforced:
    - Services return DTOs, never live ORM entities.
    - PaymentMetadata rejects unknown keys and non-string values.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import date, datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID

from recon_kernel.domain.invoice_status import InvoiceStatus, LedgerReason, is_open
from recon_kernel.exceptions import InvalidPaymentMetadataError

if TYPE_CHECKING:
    from recon_kernel.models.bank_transaction import BankTransaction
    from recon_kernel.models.credit_note import CreditNote, CreditNoteStatus
    from recon_kernel.models.invoice import Invoice
    from recon_kernel.models.ledger_entry import InvoiceLedgerEntry
    from recon_kernel.models.payment import Payment, PaymentMethod


@dataclass(frozen=True)
class InvoiceSnapshot:
    """Point-in-time view of an invoice."""

    id: UUID
    tenant_id: str
    invoice_number: str
    customer_name: str
    currency: str
    subtotal: int
    tax: int
    total: int
    amount_paid: int
    amount_remaining: int
    status: InvoiceStatus
    issue_date: date | None = None
    due_date: date | None = None
    paid_date: datetime | None = None
    variable_symbol: str | None = None
    order_reference: str | None = None
    version: int = 1

    def __post_init__(self) -> None:
        object.__setattr__(self, "status", InvoiceStatus(self.status))
        if self.amount_paid + self.amount_remaining != self.total:
            raise ValueError(
                f"Invoice {self.invoice_number}: amount_paid + amount_remaining "
                f"({self.amount_paid} + {self.amount_remaining}) != total ({self.total})"
            )

    @property
    def is_open(self) -> bool:
        return is_open(self.status, self.amount_remaining)

    @classmethod
    def from_model(cls, model: Invoice) -> InvoiceSnapshot:
        return cls(
            id=model.id,
            tenant_id=model.tenant_id,
            invoice_number=model.invoice_number,
            customer_name=model.customer_name,
            currency=model.currency,
            subtotal=model.subtotal,
            tax=model.tax,
            total=model.total,
            amount_paid=model.amount_paid,
            amount_remaining=model.amount_remaining,
            status=InvoiceStatus(model.status),
            issue_date=model.issue_date,
            due_date=model.due_date,
            paid_date=model.paid_date,
            variable_symbol=model.variable_symbol,
            order_reference=model.order_reference,
            version=model.version,
        )


@dataclass(frozen=True)
class BankTransactionSnapshot:
    """Point-in-time view of a bank transaction (the matcher's input)."""

    id: UUID
    tenant_id: str
    transaction_date: date
    amount: int
    currency: str
    counterparty_name: str | None = None
    counterparty_account: str | None = None
    description: str | None = None
    variable_symbol: str | None = None
    matched_invoice_id: UUID | None = None
    payment_id: UUID | None = None
    matched_at: datetime | None = None

    @property
    def is_matched(self) -> bool:
        return self.matched_invoice_id is not None

    @classmethod
    def from_model(cls, model: BankTransaction) -> BankTransactionSnapshot:
        return cls(
            id=model.id,
            tenant_id=model.tenant_id,
            transaction_date=model.transaction_date,
            amount=model.amount,
            currency=model.currency,
            counterparty_name=model.counterparty_name,
            counterparty_account=model.counterparty_account,
            description=model.description,
            variable_symbol=model.variable_symbol,
            matched_invoice_id=model.matched_invoice_id,
            payment_id=model.payment_id,
            matched_at=model.matched_at,
        )


@dataclass(frozen=True)
class PaymentMetadata:
    """
    Typed payment metadata.

    Stored as JSON, but only these keys exist.  ``from_dict`` is the
    boundary check for caller-supplied mappings.
    """

    notes: str | None = None
    bank_transaction_id: str | None = None
    external_reference: str | None = None
    source: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> PaymentMetadata:
        if not data:
            return cls()
        allowed = set(cls.__dataclass_fields__)
        unknown = sorted(set(data) - allowed)
        if unknown:
            raise InvalidPaymentMetadataError(f"unknown keys {unknown}")
        for key, value in data.items():
            if value is not None and not isinstance(value, str):
                raise InvalidPaymentMetadataError(
                    f"{key} must be a string, got {type(value).__name__}"
                )
        return cls(**data)

    def to_dict(self) -> dict[str, str]:
        """JSON form; keys with no value are omitted."""
        return {k: v for k, v in asdict(self).items() if v is not None}

    def with_notes(self, notes: str | None) -> PaymentMetadata:
        if notes is None:
            return self
        return PaymentMetadata(
            notes=notes,
            bank_transaction_id=self.bank_transaction_id,
            external_reference=self.external_reference,
            source=self.source,
        )


@dataclass(frozen=True)
class PaymentRecord:
    """An immutable completed payment."""

    id: UUID
    tenant_id: str
    invoice_id: UUID
    amount: int
    currency: str
    method: PaymentMethod
    completed_at: datetime
    idempotency_key: str
    metadata: PaymentMetadata

    @classmethod
    def from_model(cls, model: Payment) -> PaymentRecord:
        from recon_kernel.models.payment import PaymentMethod

        return cls(
            id=model.id,
            tenant_id=model.tenant_id,
            invoice_id=model.invoice_id,
            amount=model.amount,
            currency=model.currency,
            method=PaymentMethod(model.method),
            completed_at=model.completed_at,
            idempotency_key=model.idempotency_key,
            metadata=PaymentMetadata.from_dict(model.payment_metadata),
        )


@dataclass(frozen=True)
class CreditNoteRecord:
    """A credit note as seen by callers."""

    id: UUID
    tenant_id: str
    invoice_id: UUID
    credit_note_number: str
    subtotal: int
    tax: int
    total: int
    reason: str
    status: CreditNoteStatus
    notes: str | None = None
    issue_date: date | None = None
    applied_at: datetime | None = None

    @classmethod
    def from_model(cls, model: CreditNote) -> CreditNoteRecord:
        from recon_kernel.models.credit_note import CreditNoteStatus

        return cls(
            id=model.id,
            tenant_id=model.tenant_id,
            invoice_id=model.invoice_id,
            credit_note_number=model.credit_note_number,
            subtotal=model.subtotal,
            tax=model.tax,
            total=model.total,
            reason=model.reason,
            status=CreditNoteStatus(model.status),
            notes=model.notes,
            issue_date=model.issue_date,
            applied_at=model.applied_at,
        )


@dataclass(frozen=True)
class LedgerEntryRecord:
    """One applied delta and the balance it produced."""

    id: UUID
    invoice_id: UUID
    reason_kind: LedgerReason
    amount: int
    source_id: UUID | None
    amount_paid_after: int
    amount_remaining_after: int
    status_after: InvoiceStatus
    applied_at: datetime

    @classmethod
    def from_model(cls, model: InvoiceLedgerEntry) -> LedgerEntryRecord:
        return cls(
            id=model.id,
            invoice_id=model.invoice_id,
            reason_kind=LedgerReason(model.reason_kind),
            amount=model.amount,
            source_id=model.source_id,
            amount_paid_after=model.amount_paid_after,
            amount_remaining_after=model.amount_remaining_after,
            status_after=InvoiceStatus(model.status_after),
            applied_at=model.applied_at,
        )
