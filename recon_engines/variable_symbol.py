"""
recon_engines.variable_symbol -- Payment references derived from invoices.

A variable symbol (VS) is the numeric reference a payer types into a
regional bank transfer.  Banks drop leading zeros and payers drop
separators, so comparison is on digits only with leading zeros ignored.

An invoice is reachable through up to three references:
    - its explicit ``variable_symbol`` when one was assigned;
    - the derived reference: year group + sequence zero-padded to
      ``width`` digits (``FV-2024-0001`` -> ``2024001``);
    - all digits of the invoice number, last 10 kept (VS max length).
"""

from __future__ import annotations

import re

VS_MAX_LENGTH = 10

_DIGIT_GROUPS = re.compile(r"\d+")


def digits_only(value: str | None) -> str:
    if not value:
        return ""
    return "".join(ch for ch in value if ch.isdigit())


def normalize_vs(value: str | None) -> str | None:
    """Digits with leading zeros removed; None when there are no digits."""
    digits = digits_only(value)
    if not digits:
        return None
    return digits.lstrip("0") or "0"


def _is_year(group: str) -> bool:
    return len(group) == 4 and 1900 <= int(group) <= 2099


def derive_variable_symbol(invoice_number: str | None, width: int = 3) -> str | None:
    """
    Year group followed by the last numeric group padded to ``width``.

    Returns None when the number has no year group followed by a sequence.

    >>> derive_variable_symbol("FV-2024-0001")
    '2024001'
    >>> derive_variable_symbol("2024/17", width=4)
    '20240017'
    """
    if not invoice_number:
        return None
    groups = _DIGIT_GROUPS.findall(invoice_number)
    for group in groups[:-1]:
        if _is_year(group):
            sequence = str(int(groups[-1])).zfill(width)
            return (group + sequence)[-VS_MAX_LENGTH:]
    return None


def candidate_references(
    invoice_number: str | None,
    explicit_vs: str | None = None,
    width: int = 3,
) -> frozenset[str]:
    """Normalized references a payer may have used for this invoice."""
    raw = (
        explicit_vs,
        derive_variable_symbol(invoice_number, width),
        digits_only(invoice_number)[-VS_MAX_LENGTH:],
    )
    return frozenset(ref for ref in (normalize_vs(r) for r in raw) if ref)


def vs_matches(
    transaction_vs: str | None,
    invoice_number: str | None,
    explicit_vs: str | None = None,
    width: int = 3,
) -> bool:
    tx_ref = normalize_vs(transaction_vs)
    if tx_ref is None:
        return False
    return tx_ref in candidate_references(invoice_number, explicit_vs, width)
