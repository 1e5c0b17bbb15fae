"""
recon_engines.text -- Text normalization and similarity for matching.

Pure functions, zero I/O.  Scores are floats in [0, 1]; they only ever
rank candidates and never touch money.

Normalization folds case and diacritics ("Dvořák" == "dvorak") and turns
any run of non-alphanumeric characters into one space, so "FV-2024/0001"
and "fv 2024 0001" compare equal.
"""

from __future__ import annotations

import re
import unicodedata
from difflib import SequenceMatcher

_NON_ALNUM = re.compile(r"[^a-z0-9]+")

# Legal-form suffixes, as token sequences after normalization.
_LEGAL_FORMS: tuple[tuple[str, ...], ...] = (
    ("s", "r", "o"),
    ("sro",),
    ("spol",),
    ("a", "s"),
    ("v", "o", "s"),
    ("k", "s"),
    ("z", "s"),
    ("ltd",),
    ("limited",),
    ("llc",),
    ("inc",),
    ("corp",),
    ("co",),
    ("plc",),
    ("gmbh",),
    ("ag",),
    ("se",),
)

TEXT_RATIO_WEIGHT = 0.6
TEXT_TOKEN_WEIGHT = 0.4


def strip_diacritics(value: str) -> str:
    decomposed = unicodedata.normalize("NFKD", value)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def normalize_text(value: str | None) -> str:
    """Lowercase, ASCII-fold, and collapse non-alphanumerics to single spaces."""
    if not value:
        return ""
    folded = strip_diacritics(value).lower()
    return _NON_ALNUM.sub(" ", folded).strip()


def tokens(value: str | None) -> list[str]:
    normalized = normalize_text(value)
    return normalized.split() if normalized else []


def jaccard(a: set[str], b: set[str]) -> float:
    union = a | b
    if not union:
        return 0.0
    return len(a & b) / len(union)


def text_similarity(a: str | None, b: str | None) -> float:
    """
    Blend of character-level and token-level similarity.

    0.6 x SequenceMatcher ratio of the normalized strings plus 0.4 x the
    Jaccard overlap of their token sets.  Empty input scores 0.
    """
    norm_a = normalize_text(a)
    norm_b = normalize_text(b)
    if not norm_a or not norm_b:
        return 0.0
    ratio = SequenceMatcher(None, norm_a, norm_b).ratio()
    token_score = jaccard(set(norm_a.split()), set(norm_b.split()))
    return round(TEXT_RATIO_WEIGHT * ratio + TEXT_TOKEN_WEIGHT * token_score, 4)


def strip_legal_form(parts: list[str]) -> list[str]:
    """Drop trailing legal-form suffixes ("Acme spol. s r.o." -> ["acme"])."""
    result = list(parts)
    changed = True
    while changed and result:
        changed = False
        for form in _LEGAL_FORMS:
            n = len(form)
            if len(result) > n and tuple(result[-n:]) == form:
                del result[-n:]
                changed = True
                break
    return result


def name_tokens(value: str | None) -> set[str]:
    return set(strip_legal_form(tokens(value)))


def name_similarity(a: str | None, b: str | None) -> float:
    """
    Token-set similarity of two party names.

    Legal forms are ignored and containment of one token set in the other
    counts as a full match ("ACME" vs "Acme Trading s.r.o." -> 1.0).
    """
    tokens_a = name_tokens(a)
    tokens_b = name_tokens(b)
    if not tokens_a or not tokens_b:
        return 0.0
    if tokens_a <= tokens_b or tokens_b <= tokens_a:
        return 1.0
    return round(jaccard(tokens_a, tokens_b), 4)
