"""
Module: recon_kernel.models.bank_transaction
Responsibility: ORM persistence for incoming bank transactions awaiting
    attribution to an invoice.
Architecture position: Kernel > Models.

Invariants enforced:
    - Transitions to matched exactly once: the ORM listener blocks any
      change to a transaction whose matched_invoice_id was already set.
    - version is the optimistic-lock counter, so two concurrent confirmations
      of the same transaction cannot both commit.
    - match_idempotency_key is unique.

Notes:
    The booking date is stored in the ``date`` column but exposed as
    ``transaction_date`` to avoid shadowing ``datetime.date``.
"""

from datetime import date, datetime
from uuid import UUID

from sqlalchemy import BigInteger, CheckConstraint, Date, DateTime, ForeignKey, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from recon_kernel.db.base import TrackedBase, UUIDString


class BankTransaction(TrackedBase):
    """An incoming fund movement from a bank statement."""

    __tablename__ = "bank_transactions"

    __table_args__ = (
        UniqueConstraint("match_idempotency_key", name="uq_bank_transactions_match_key"),
        CheckConstraint("amount > 0", name="ck_bank_transactions_amount_positive"),
        Index("idx_bank_transactions_tenant_matched", "tenant_id", "matched_invoice_id"),
    )

    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    transaction_date: Mapped[date] = mapped_column("date", Date, nullable=False)
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    counterparty_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    counterparty_account: Mapped[str | None] = mapped_column(String(100), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    variable_symbol: Mapped[str | None] = mapped_column(String(20), nullable=True)

    matched_invoice_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("invoices.id"),
        nullable=True,
    )
    payment_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("payments.id"),
        nullable=True,
    )
    matched_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    match_idempotency_key: Mapped[str | None] = mapped_column(String(255), nullable=True)

    version: Mapped[int] = mapped_column(nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        state = f"matched={self.matched_invoice_id}" if self.matched_invoice_id else "unmatched"
        return f"<BankTransaction {self.amount} {self.currency} {state}>"

    @property
    def is_matched(self) -> bool:
        return self.matched_invoice_id is not None
