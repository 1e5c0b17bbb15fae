"""
Module: recon_kernel.models.credit_note
Responsibility: ORM persistence for credit notes -- bounded reversals of
    part of an invoice's obligation.
Architecture position: Kernel > Models.

Invariants enforced:
    - Lifecycle draft -> issued -> applied, one way.
    - Applied credit notes are terminal (ORM listener).
    - credit_note_number is unique per tenant.
    - subtotal + tax == total, total > 0 (check constraints).
"""

from datetime import date, datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import BigInteger, CheckConstraint, Date, DateTime, ForeignKey, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from recon_kernel.db.base import TrackedBase, UUIDString


class CreditNoteStatus(str, Enum):
    """Lifecycle status of a credit note.

    Contract: DRAFT -> ISSUED -> APPLIED, no backward transitions.
    Only ISSUED and APPLIED count against the invoice's credit cap.
    """

    DRAFT = "draft"
    ISSUED = "issued"
    APPLIED = "applied"


# Statuses whose totals reserve part of the invoice
RESERVING_STATUSES = (CreditNoteStatus.ISSUED, CreditNoteStatus.APPLIED)


class CreditNote(TrackedBase):
    """A credit note against one invoice."""

    __tablename__ = "credit_notes"

    __table_args__ = (
        UniqueConstraint(
            "tenant_id", "credit_note_number", name="uq_credit_notes_tenant_number"
        ),
        UniqueConstraint("apply_idempotency_key", name="uq_credit_notes_apply_key"),
        CheckConstraint("total > 0", name="ck_credit_notes_total_positive"),
        CheckConstraint("subtotal + tax = total", name="ck_credit_notes_total_split"),
        Index("idx_credit_notes_invoice_status", "invoice_id", "status"),
    )

    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    invoice_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("invoices.id"),
        nullable=False,
    )
    credit_note_number: Mapped[str] = mapped_column(String(50), nullable=False)

    subtotal: Mapped[int] = mapped_column(BigInteger, nullable=False)
    tax: Mapped[int] = mapped_column(BigInteger, nullable=False)
    total: Mapped[int] = mapped_column(BigInteger, nullable=False)

    reason: Mapped[str] = mapped_column(Text, nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    status: Mapped[CreditNoteStatus] = mapped_column(
        String(20),
        default=CreditNoteStatus.DRAFT.value,
        nullable=False,
    )
    issue_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    applied_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    apply_idempotency_key: Mapped[str | None] = mapped_column(String(255), nullable=True)

    def __repr__(self) -> str:
        return f"<CreditNote {self.credit_note_number} status={self.status} total={self.total}>"

    @property
    def status_enum(self) -> CreditNoteStatus:
        return CreditNoteStatus(self.status)
