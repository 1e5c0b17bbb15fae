"""
Pure calculation engines for reconciliation.

Engines take frozen snapshots and return frozen results.  They never
open sessions, read the clock, or mutate their inputs.
"""

from recon_engines.matching import (
    ConfidenceLevel,
    MatchFactors,
    MatchingPolicy,
    MatchSuggestion,
    TransactionMatcher,
)
from recon_engines.tracer import traced_engine

__all__ = [
    "ConfidenceLevel",
    "MatchFactors",
    "MatchingPolicy",
    "MatchSuggestion",
    "TransactionMatcher",
    "traced_engine",
]
