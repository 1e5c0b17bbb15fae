"""
Money -- exact minor-unit arithmetic for the reconciliation core.

Responsibility:
    Every monetary value at the core's boundary is an ``int`` of minor
    currency units.  This module is the single place where those integers
    are validated, compared with a tolerance, rounded, and split into
    net/tax.  Balance math never sees a float.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  Leaf of the
    dependency graph; imported by the ledger, the modules and the matcher.

Invariants enforced:
    - Amounts are ``int`` (``bool`` is rejected even though it subclasses int).
    - Money from one currency is never applied to an obligation in another.
    - Rounding of fractional minor units is ROUND_HALF_UP, done only here.

Failure modes:
    - InvalidAmountError on non-integer / non-positive amounts.
    - CurrencyMismatchError on cross-currency application.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from recon_kernel.domain.currency import CurrencyRegistry
from recon_kernel.exceptions import CurrencyMismatchError, InvalidAmountError


def ensure_minor_units(amount: object, *, allow_zero: bool = False) -> int:
    """
    Validate an inbound minor-unit amount.

    Returns the amount unchanged.

    Raises:
        InvalidAmountError: if ``amount`` is not an int, or is negative, or is
            zero while ``allow_zero`` is False.
    """
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise InvalidAmountError(amount, "amount must be an integer in minor units")
    if amount < 0:
        raise InvalidAmountError(amount, "amount must not be negative")
    if amount == 0 and not allow_zero:
        raise InvalidAmountError(amount, "amount must be positive")
    return amount


def round_half_up(value: Decimal) -> int:
    """Round a Decimal number of minor units to the nearest int, halves away from zero."""
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def within_tolerance(a: int, b: int, tolerance: int) -> bool:
    """True when two minor-unit amounts differ by at most ``tolerance``."""
    return abs(a - b) <= tolerance


def split_by_rate(amount: int, rate: Decimal) -> tuple[int, int]:
    """
    Split a gross amount into ``(net, tax)`` for a tax rate expressed as a
    fraction (``Decimal("0.21")`` for 21%).

    ``net = round_half_up(amount / (1 + rate))`` and ``tax = amount - net``,
    so ``net + tax == amount`` exactly.
    """
    if rate < 0:
        raise ValueError(f"Tax rate must not be negative: {rate}")
    net = round_half_up(Decimal(amount) / (Decimal(1) + rate))
    return net, amount - net


@dataclass(frozen=True, slots=True)
class Money:
    """
    Monetary amount in minor units paired with its currency.

    Guarantees:
        - amount is always an int (never float or Decimal)
        - currency is a normalized ISO 4217 code
    """

    amount: int
    currency: str

    def __post_init__(self) -> None:
        if isinstance(self.amount, bool) or not isinstance(self.amount, int):
            raise InvalidAmountError(self.amount, "amount must be an integer in minor units")
        object.__setattr__(self, "currency", CurrencyRegistry.validate(self.currency))

    def require_same_currency(self, other: Money) -> None:
        """Raise CurrencyMismatchError unless ``other`` is in this currency."""
        if self.currency != other.currency:
            raise CurrencyMismatchError(self.currency, other.currency)
