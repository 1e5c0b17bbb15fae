"""
Credit Notes Module.

Draft, issue and apply credit notes within the invoice's credit cap.
"""

from recon_modules.credit_notes.models import CreditNoteResult
from recon_modules.credit_notes.service import CreditNoteManager
from recon_modules.credit_notes.tax_split import (
    FixedRateTaxSplit,
    NoTaxSplit,
    ProportionalTaxSplit,
    TaxSplitPolicy,
)

__all__ = [
    "CreditNoteManager",
    "CreditNoteResult",
    "FixedRateTaxSplit",
    "NoTaxSplit",
    "ProportionalTaxSplit",
    "TaxSplitPolicy",
]
