"""
recon_engines.matching -- Bank transaction to invoice matching engine.

Responsibility:
    Score one unattributed bank transaction against a tenant's open
    invoices and return ranked, explainable MatchSuggestions.  Each
    candidate gets five independent factors (amount, date proximity,
    variable symbol, counterparty name, free-text similarity) that are
    combined into one confidence in [0, 1].

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import recon_kernel/domain and sibling engine helpers.

Invariants enforced:
    - Replay safety: identical inputs produce identical outputs; no clock,
      no randomness, ties broken by invoice number.
    - Ordering: a candidate with both amount and variable-symbol match
      outranks every candidate with neither.  Confidence is banded into
      tiers by the number of strong signals and MatchingPolicy rejects
      overlapping tiers, so the weak factors can only reorder candidates
      inside a tier.
    - Money comparisons are integer minor units; floats appear only in
      scores.
    - Non-open and other-currency candidates are never suggested.

Failure modes:
    - ValueError from MatchingPolicy when weights or tiers are invalid.

Audit relevance:
    Suggestions are advisory.  Nothing here mutates state; the Match
    Applier re-validates balance when a suggestion is confirmed.  All
    invocations are traced via ``@traced_engine``.

Usage:
    from recon_engines.matching import TransactionMatcher

    matcher = TransactionMatcher()
    suggestions = matcher.suggest(transaction_snapshot, open_invoice_snapshots)
"""

from __future__ import annotations

import time
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date, timedelta
from enum import Enum
from uuid import UUID

from recon_engines.text import name_similarity, text_similarity
from recon_engines.tracer import traced_engine
from recon_engines.variable_symbol import derive_variable_symbol, vs_matches
from recon_kernel.domain.dtos import BankTransactionSnapshot, InvoiceSnapshot
from recon_kernel.domain.money import within_tolerance
from recon_kernel.logging_config import get_logger

logger = get_logger("engines.matching")

HIGH_CONFIDENCE = 0.9
MEDIUM_CONFIDENCE = 0.7


class ConfidenceLevel(str, Enum):
    """UI band for a confidence score."""

    HIGH = "high"  # >= 0.9
    MEDIUM = "medium"  # >= 0.7
    LOW = "low"

    @classmethod
    def from_score(cls, confidence: float) -> ConfidenceLevel:
        if confidence >= HIGH_CONFIDENCE:
            return cls.HIGH
        if confidence >= MEDIUM_CONFIDENCE:
            return cls.MEDIUM
        return cls.LOW


@dataclass(frozen=True)
class MatchingPolicy:
    """
    Tunable weights and thresholds for the matcher.

    Confidence tiers:
        both amount and VS match  -> [both_signals_floor, both_signals_ceiling]
        exactly one of them       -> [one_signal_floor, one_signal_ceiling]
                                     (+ reference_preference when it is VS)
        neither                   -> [0, no_signal_ceiling]

    The position inside a tier is the tie-breaker score
    ``date_weight * date + name_weight * name + text_weight * text``.
    """

    amount_tolerance: int = 1
    date_window_days: int = 60
    on_time_grace_days: int = 7
    recent_days: int = 3
    vs_sequence_width: int = 3
    name_match_threshold: float = 0.6
    text_match_threshold: float = 0.5

    both_signals_floor: float = 0.90
    both_signals_ceiling: float = 1.00
    one_signal_floor: float = 0.70
    one_signal_ceiling: float = 0.85
    reference_preference: float = 0.02
    no_signal_ceiling: float = 0.50

    date_weight: float = 0.4
    name_weight: float = 0.4
    text_weight: float = 0.2

    max_results: int = 10
    auto_confirm_margin: float = 0.05

    def __post_init__(self):
        if self.amount_tolerance < 0:
            raise ValueError("amount_tolerance cannot be negative")
        if self.date_window_days <= 0:
            raise ValueError("date_window_days must be positive")
        if self.on_time_grace_days < 0:
            raise ValueError("on_time_grace_days cannot be negative")
        if self.vs_sequence_width <= 0:
            raise ValueError("vs_sequence_width must be positive")
        if self.max_results <= 0:
            raise ValueError("max_results must be positive")

        for name in ("name_match_threshold", "text_match_threshold", "auto_confirm_margin"):
            value = getattr(self, name)
            if not 0 <= value <= 1:
                raise ValueError(f"{name} must be within [0, 1], got {value}")

        weights = (self.date_weight, self.name_weight, self.text_weight)
        if any(w < 0 for w in weights):
            raise ValueError("tie-breaker weights cannot be negative")
        if abs(sum(weights) - 1.0) > 1e-9:
            raise ValueError(f"tie-breaker weights must sum to 1, got {sum(weights)}")

        # Tier layout: [0, none] <= [one, one + pref] <= [both, ceiling] <= 1
        if not 0 < self.no_signal_ceiling <= self.one_signal_floor:
            raise ValueError("no_signal_ceiling must be positive and <= one_signal_floor")
        if self.one_signal_floor < MEDIUM_CONFIDENCE:
            raise ValueError(f"one_signal_floor must be >= {MEDIUM_CONFIDENCE}")
        if self.one_signal_floor > self.one_signal_ceiling:
            raise ValueError("one_signal_floor cannot exceed one_signal_ceiling")
        if self.reference_preference < 0:
            raise ValueError("reference_preference cannot be negative")
        if self.one_signal_ceiling + self.reference_preference >= self.both_signals_floor:
            raise ValueError(
                "one_signal_ceiling + reference_preference must stay below both_signals_floor"
            )
        if self.both_signals_floor < HIGH_CONFIDENCE:
            raise ValueError(f"both_signals_floor must be >= {HIGH_CONFIDENCE}")
        if not self.both_signals_floor <= self.both_signals_ceiling <= 1.0:
            raise ValueError("both_signals_ceiling must be within [both_signals_floor, 1]")


@dataclass(frozen=True)
class MatchFactors:
    """Per-signal evidence behind one suggestion."""

    amount_match: bool
    date_proximity: float
    date_distance_days: int | None
    vs_match: bool
    name_match: bool
    name_similarity: float
    text_similarity: float

    @property
    def strong_signals(self) -> int:
        return int(self.amount_match) + int(self.vs_match)


@dataclass(frozen=True)
class MatchSuggestion:
    """A ranked candidate invoice for a bank transaction.  Never persisted."""

    invoice_id: UUID
    invoice_number: str
    confidence: float
    confidence_level: ConfidenceLevel
    reason: str
    match_factors: MatchFactors


class TransactionMatcher:
    """
    Multi-signal matcher for bank transactions.

    Contract:
        Pure -- no I/O, no database access, no clock.  Safe to call
        repeatedly and from many threads at once.
    Guarantees:
        - ``suggest`` returns at most ``policy.max_results`` suggestions
          sorted by descending confidence, ties by invoice number.
        - Only open invoices in the transaction's currency are scored.
    Non-goals:
        - Does not confirm matches or touch balances.
        - Does not split one transaction across several invoices.
    """

    def __init__(self, policy: MatchingPolicy | None = None) -> None:
        self.policy = policy or MatchingPolicy()

    @traced_engine(
        "transaction_matcher",
        "1.0",
        fingerprint_fields=("transaction", "candidate_invoices"),
    )
    def suggest(
        self,
        transaction: BankTransactionSnapshot,
        candidate_invoices: Sequence[InvoiceSnapshot],
        limit: int | None = None,
    ) -> list[MatchSuggestion]:
        """
        Rank candidate invoices for a transaction.

        Args:
            transaction: The unattributed bank transaction.
            candidate_invoices: Invoices to score, in any order.
            limit: Optional cap below ``policy.max_results``.

        Returns:
            Suggestions with confidence > 0, best first.
        """
        t0 = time.monotonic()
        logger.info("match_suggestions_started", extra={
            "transaction_id": str(transaction.id),
            "candidate_count": len(candidate_invoices),
        })

        cap = self.policy.max_results if limit is None else min(limit, self.policy.max_results)

        suggestions: list[MatchSuggestion] = []
        skipped = 0
        for invoice in candidate_invoices:
            if not invoice.is_open or invoice.currency != transaction.currency:
                skipped += 1
                continue
            suggestion = self.score(transaction, invoice)
            if suggestion.confidence > 0:
                suggestions.append(suggestion)

        suggestions.sort(key=lambda s: (-s.confidence, s.invoice_number, str(s.invoice_id)))
        ranked = suggestions[:max(cap, 0)]

        duration_ms = round((time.monotonic() - t0) * 1000, 2)
        logger.info("match_suggestions_completed", extra={
            "transaction_id": str(transaction.id),
            "candidates_evaluated": len(candidate_invoices) - skipped,
            "candidates_skipped": skipped,
            "suggestions_found": len(ranked),
            "top_confidence": ranked[0].confidence if ranked else 0.0,
            "duration_ms": duration_ms,
        })
        return ranked

    # ------------------------------------------------------------------
    # Scoring
    # ------------------------------------------------------------------

    def score(
        self,
        transaction: BankTransactionSnapshot,
        invoice: InvoiceSnapshot,
    ) -> MatchSuggestion:
        """Score a single candidate.  Does not check eligibility."""
        factors = self.compute_factors(transaction, invoice)
        confidence = self.combine(factors)
        return MatchSuggestion(
            invoice_id=invoice.id,
            invoice_number=invoice.invoice_number,
            confidence=confidence,
            confidence_level=ConfidenceLevel.from_score(confidence),
            reason=self.explain(factors),
            match_factors=factors,
        )

    def compute_factors(
        self,
        transaction: BankTransactionSnapshot,
        invoice: InvoiceSnapshot,
    ) -> MatchFactors:
        policy = self.policy
        proximity, distance = self._date_proximity(
            transaction.transaction_date, invoice.issue_date, invoice.due_date
        )
        names = name_similarity(transaction.counterparty_name, invoice.customer_name)
        return MatchFactors(
            amount_match=within_tolerance(
                transaction.amount, invoice.amount_remaining, policy.amount_tolerance
            ),
            date_proximity=proximity,
            date_distance_days=distance,
            vs_match=vs_matches(
                transaction.variable_symbol,
                invoice.invoice_number,
                invoice.variable_symbol,
                policy.vs_sequence_width,
            ),
            name_match=names >= policy.name_match_threshold,
            name_similarity=names,
            text_similarity=self._text_similarity(transaction.description, invoice),
        )

    def combine(self, factors: MatchFactors) -> float:
        """Fold factors into one confidence using the policy's tiers."""
        policy = self.policy
        tie_breaker = (
            policy.date_weight * factors.date_proximity
            + policy.name_weight * factors.name_similarity
            + policy.text_weight * factors.text_similarity
        )
        tie_breaker = min(max(tie_breaker, 0.0), 1.0)

        if factors.strong_signals == 2:
            span = policy.both_signals_ceiling - policy.both_signals_floor
            confidence = policy.both_signals_floor + span * tie_breaker
        elif factors.strong_signals == 1:
            span = policy.one_signal_ceiling - policy.one_signal_floor
            confidence = policy.one_signal_floor + span * tie_breaker
            if factors.vs_match:
                confidence += policy.reference_preference
        else:
            confidence = policy.no_signal_ceiling * tie_breaker
        return round(min(confidence, 1.0), 4)

    def explain(self, factors: MatchFactors) -> str:
        """Human-readable synthesis of the factors that fired."""
        if factors.amount_match and factors.vs_match:
            parts = ["Amount and variable symbol match"]
        elif factors.amount_match:
            parts = ["Amount matches"]
        elif factors.vs_match:
            parts = ["Variable symbol matches"]
        else:
            parts = []

        if factors.name_match:
            parts.append("customer name matches")
        if factors.text_similarity >= self.policy.text_match_threshold:
            parts.append("description similar")
        if factors.date_distance_days is not None and factors.date_distance_days <= self.policy.recent_days:
            parts.append(f"date within {self.policy.recent_days} days")

        if not parts:
            return "No strong indicators"
        text = ", ".join(parts)
        return text[0].upper() + text[1:]

    def _date_proximity(
        self,
        tx_date: date,
        issue_date: date | None,
        due_date: date | None,
    ) -> tuple[float, int | None]:
        """
        1.0 inside [issue_date, due_date + grace]; linear decay to 0 at
        ``date_window_days`` outside it.

        Returns (proximity, days between the transaction and the due date,
        or the issue date when there is no due date).
        """
        anchor = due_date or issue_date
        if anchor is None:
            return 0.0, None
        distance = abs((tx_date - anchor).days)

        start = issue_date or anchor
        end = (due_date or anchor) + timedelta(days=self.policy.on_time_grace_days)
        if start <= tx_date <= end:
            return 1.0, distance

        gap = (start - tx_date).days if tx_date < start else (tx_date - end).days
        proximity = max(0.0, 1.0 - gap / self.policy.date_window_days)
        return round(proximity, 4), distance

    def _text_similarity(self, description: str | None, invoice: InvoiceSnapshot) -> float:
        if not description:
            return 0.0
        fields = (
            invoice.invoice_number,
            derive_variable_symbol(invoice.invoice_number, self.policy.vs_sequence_width),
            invoice.customer_name,
            invoice.order_reference,
        )
        return max((text_similarity(description, f) for f in fields if f), default=0.0)
