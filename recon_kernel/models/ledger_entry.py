"""
Module: recon_kernel.models.ledger_entry
Responsibility: Append-only record of every delta applied to an invoice
    balance.  The sum of entry amounts for an invoice equals its
    amount_paid; each row also snapshots the balance it produced.
Architecture position: Kernel > Models.

Invariants enforced:
    - Rows are immutable from creation (ORM listener).
    - amount > 0 (check constraint).
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import BigInteger, CheckConstraint, DateTime, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from recon_kernel.db.base import Base, UUIDString
from recon_kernel.domain.invoice_status import InvoiceStatus, LedgerReason


class InvoiceLedgerEntry(Base):
    """One applied payment or credit against an invoice."""

    __tablename__ = "invoice_ledger_entries"

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_ledger_entries_amount_positive"),
        Index("idx_ledger_entries_invoice", "invoice_id"),
        Index("idx_ledger_entries_source", "source_id"),
    )

    invoice_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("invoices.id"),
        nullable=False,
    )
    reason_kind: Mapped[LedgerReason] = mapped_column(String(20), nullable=False)
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)

    # Payment or credit note that produced the delta
    source_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    amount_paid_after: Mapped[int] = mapped_column(BigInteger, nullable=False)
    amount_remaining_after: Mapped[int] = mapped_column(BigInteger, nullable=False)
    status_after: Mapped[InvoiceStatus] = mapped_column(String(20), nullable=False)
    applied_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:
        return f"<InvoiceLedgerEntry {self.reason_kind} {self.amount} -> {self.invoice_id}>"
