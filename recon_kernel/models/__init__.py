"""ORM models for the reconciliation core."""

from recon_kernel.models.bank_transaction import BankTransaction
from recon_kernel.models.credit_note import CreditNote, CreditNoteStatus
from recon_kernel.models.invoice import Invoice
from recon_kernel.models.ledger_entry import InvoiceLedgerEntry
from recon_kernel.models.payment import Payment, PaymentMethod, PaymentStatus

__all__ = [
    "BankTransaction",
    "CreditNote",
    "CreditNoteStatus",
    "Invoice",
    "InvoiceLedgerEntry",
    "Payment",
    "PaymentMethod",
    "PaymentStatus",
]
