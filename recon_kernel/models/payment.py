"""
Module: recon_kernel.models.payment
Responsibility: ORM persistence for payments -- atomic monetary events
    that reduce an invoice's remaining balance.
Architecture position: Kernel > Models.

Invariants enforced:
    - Immutable once created (ORM listener).
    - idempotency_key is unique (uq_payments_idempotency_key), which makes a
      concurrent replay of the same command fail at INSERT instead of
      double-applying.
    - amount > 0 (check constraint).
"""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, BigInteger, CheckConstraint, DateTime, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from recon_kernel.db.base import TrackedBase, UUIDString


class PaymentMethod(str, Enum):
    """How the money arrived."""

    BANK_TRANSFER = "bank_transfer"
    CARD = "card"
    CASH = "cash"
    PAYPAL = "paypal"
    STRIPE = "stripe"
    GOPAY = "gopay"
    CRYPTO = "crypto"
    BANK_RECONCILIATION = "bank_reconciliation"


class PaymentStatus(str, Enum):
    """Payments recorded by this core are always completed."""

    COMPLETED = "completed"


class Payment(TrackedBase):
    """A completed payment against one invoice."""

    __tablename__ = "payments"

    __table_args__ = (
        UniqueConstraint("idempotency_key", name="uq_payments_idempotency_key"),
        CheckConstraint("amount > 0", name="ck_payments_amount_positive"),
        Index("idx_payments_invoice", "invoice_id"),
        Index("idx_payments_tenant", "tenant_id"),
    )

    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    invoice_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("invoices.id"),
        nullable=False,
    )
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    method: Mapped[PaymentMethod] = mapped_column(String(30), nullable=False)
    status: Mapped[PaymentStatus] = mapped_column(
        String(20),
        default=PaymentStatus.COMPLETED.value,
        nullable=False,
    )
    completed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    idempotency_key: Mapped[str] = mapped_column(String(255), nullable=False)

    # "metadata" is reserved on declarative classes
    payment_metadata: Mapped[dict[str, Any]] = mapped_column(
        "metadata",
        JSON,
        nullable=False,
        default=dict,
    )

    def __repr__(self) -> str:
        return f"<Payment {self.amount} {self.currency} -> {self.invoice_id}>"
