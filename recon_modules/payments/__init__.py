"""
Payments Module.

Records payments against invoices through the invoice ledger.
"""

from recon_modules.payments.models import PaymentResult
from recon_modules.payments.service import PaymentRecorder

__all__ = ["PaymentRecorder", "PaymentResult"]
