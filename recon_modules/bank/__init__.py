"""
Bank Module.

Match suggestions for bank transactions and confirmation of a match as a
bank_reconciliation payment.
"""

from recon_modules.bank.models import AutoConfirmResult, MatchResult
from recon_modules.bank.service import MatchApplier

__all__ = ["AutoConfirmResult", "MatchApplier", "MatchResult"]
