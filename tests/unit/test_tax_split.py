"""
Unit tests for credit note tax split policies.
"""

from decimal import Decimal

import pytest

from recon_modules.credit_notes.tax_split import (
    FixedRateTaxSplit,
    NoTaxSplit,
    ProportionalTaxSplit,
    tax_split_from_settings,
)


class TestProportionalTaxSplit:

    def test_uses_invoice_rate(self):
        # 21% invoice: 100000 net + 21000 tax
        assert ProportionalTaxSplit().split(12100, 100000, 21000) == (10000, 2100)

    def test_sum_is_exact(self):
        net, tax = ProportionalTaxSplit().split(999, 100000, 21000)
        assert net + tax == 999

    def test_untaxed_invoice(self):
        assert ProportionalTaxSplit().split(5000, 100000, 0) == (5000, 0)

    def test_zero_subtotal(self):
        assert ProportionalTaxSplit().split(5000, 0, 0) == (5000, 0)


class TestOtherPolicies:

    def test_fixed_rate(self):
        assert FixedRateTaxSplit("0.21").split(1210, 1, 1) == (1000, 210)

    def test_fixed_rate_rejects_negative(self):
        with pytest.raises(ValueError):
            FixedRateTaxSplit(Decimal("-0.01"))

    def test_no_tax(self):
        assert NoTaxSplit().split(1210, 1000, 210) == (1210, 0)


class TestFromSettings:

    def test_named_policies(self):
        assert isinstance(tax_split_from_settings("proportional"), ProportionalTaxSplit)
        assert isinstance(tax_split_from_settings("none"), NoTaxSplit)
        assert tax_split_from_settings("fixed_rate", "0.15").rate == Decimal("0.15")

    def test_fixed_rate_requires_rate(self):
        with pytest.raises(ValueError):
            tax_split_from_settings("fixed_rate")

    def test_unknown_policy(self):
        with pytest.raises(ValueError):
            tax_split_from_settings("reverse_charge")
