"""
Module: recon_kernel.models.invoice
Responsibility: ORM persistence for invoices -- the obligation whose
    paid/owed state the ledger maintains.
Architecture position: Kernel > Models.  May import from db/base.py
    and domain/.  MUST NOT import from services/ or outer layers.

Invariants enforced:
    - amount_paid + amount_remaining == total (check constraint
      ck_invoices_balance; also maintained by InvoiceLedger).
    - amount_remaining >= 0 and amount_paid >= 0 (check constraints).
    - version is SQLAlchemy's version_id_col: every UPDATE is conditional on
      the version read, so a stale write raises StaleDataError instead of
      silently overwriting a concurrent change.
    - Cancelled invoices are frozen (ORM listener in db/immutability.py).
    - Invoices are never deleted (ORM listener).

Failure modes:
    - IntegrityError on a duplicate (tenant_id, invoice_number) or a check
      constraint violation.
    - StaleDataError on a concurrent version bump.
"""

from datetime import date, datetime

from sqlalchemy import BigInteger, CheckConstraint, Date, DateTime, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from recon_kernel.db.base import TrackedBase
from recon_kernel.domain.invoice_status import InvoiceStatus, is_open


class Invoice(TrackedBase):
    """
    An obligation owed by a customer.

    Mutated only through InvoiceLedger; never deleted.
    """

    __tablename__ = "invoices"

    __table_args__ = (
        UniqueConstraint("tenant_id", "invoice_number", name="uq_invoices_tenant_number"),
        CheckConstraint("amount_paid + amount_remaining = total", name="ck_invoices_balance"),
        CheckConstraint("amount_remaining >= 0", name="ck_invoices_remaining_non_negative"),
        CheckConstraint("amount_paid >= 0", name="ck_invoices_paid_non_negative"),
        CheckConstraint("subtotal + tax = total", name="ck_invoices_total_split"),
        Index("idx_invoices_tenant_status", "tenant_id", "status"),
        Index("idx_invoices_due_date", "due_date"),
    )

    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    invoice_number: Mapped[str] = mapped_column(String(50), nullable=False)

    # Explicit payment reference; derived from invoice_number when absent
    variable_symbol: Mapped[str | None] = mapped_column(String(20), nullable=True)

    customer_name: Mapped[str] = mapped_column(String(255), nullable=False)
    order_reference: Mapped[str | None] = mapped_column(String(100), nullable=True)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    subtotal: Mapped[int] = mapped_column(BigInteger, nullable=False)
    tax: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    total: Mapped[int] = mapped_column(BigInteger, nullable=False)
    amount_paid: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    amount_remaining: Mapped[int] = mapped_column(BigInteger, nullable=False)

    status: Mapped[InvoiceStatus] = mapped_column(
        String(20),
        default=InvoiceStatus.DRAFT.value,
        nullable=False,
    )

    issue_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    due_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    paid_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    version: Mapped[int] = mapped_column(nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return (
            f"<Invoice {self.invoice_number} status={self.status} "
            f"paid={self.amount_paid} remaining={self.amount_remaining}>"
        )

    @property
    def status_enum(self) -> InvoiceStatus:
        """Status as the enum (the column loads back as a plain string)."""
        return InvoiceStatus(self.status)

    @property
    def is_cancelled(self) -> bool:
        return self.status_enum is InvoiceStatus.CANCELLED

    @property
    def is_open(self) -> bool:
        """Can still receive a payment or credit."""
        return is_open(self.status, self.amount_remaining)
