"""
Tax split policies for credit notes.

A credit note is created for a gross amount and has to carry its own
subtotal/tax split.  The default derives the rate from the invoice
(``tax / subtotal``), which assumes one uniform rate across all invoice
lines.  Invoices with mixed rates should pass an explicit policy.

All policies return ``(subtotal, tax)`` with ``subtotal + tax == amount``.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Protocol

from recon_kernel.domain.money import split_by_rate


class TaxSplitPolicy(Protocol):
    """Splits a gross credit amount into ``(subtotal, tax)``."""

    def split(self, amount: int, invoice_subtotal: int, invoice_tax: int) -> tuple[int, int]:
        ...


class ProportionalTaxSplit:
    """Effective invoice rate ``tax / subtotal``; rate 0 for a zero subtotal."""

    def split(self, amount: int, invoice_subtotal: int, invoice_tax: int) -> tuple[int, int]:
        if invoice_subtotal <= 0:
            return amount, 0
        rate = Decimal(invoice_tax) / Decimal(invoice_subtotal)
        return split_by_rate(amount, rate)


class FixedRateTaxSplit:
    """A known rate, e.g. ``FixedRateTaxSplit(Decimal("0.21"))``."""

    def __init__(self, rate: Decimal | str):
        rate = Decimal(rate)
        if rate < 0:
            raise ValueError(f"Tax rate must not be negative: {rate}")
        self.rate = rate

    def split(self, amount: int, invoice_subtotal: int, invoice_tax: int) -> tuple[int, int]:
        return split_by_rate(amount, self.rate)


class NoTaxSplit:
    """The whole amount is subtotal."""

    def split(self, amount: int, invoice_subtotal: int, invoice_tax: int) -> tuple[int, int]:
        return amount, 0


def tax_split_from_settings(name: str, fixed_rate: str | None = None) -> TaxSplitPolicy:
    """Build the policy named in ``CreditNoteSettings.tax_split``."""
    if name == "proportional":
        return ProportionalTaxSplit()
    if name == "fixed_rate":
        if fixed_rate is None:
            raise ValueError("fixed_rate is required for the fixed_rate tax split")
        return FixedRateTaxSplit(fixed_rate)
    if name == "none":
        return NoTaxSplit()
    raise ValueError(f"Unknown tax split policy: {name}")
