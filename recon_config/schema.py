"""
Reconciliation configuration schema.

Frozen dataclasses parsed from YAML by ``recon_config.loader``.  Every
section validates itself in ``__post_init__`` so an invalid file fails at
load time rather than halfway through a payment.

The matcher's tunables live on ``recon_engines.matching.MatchingPolicy``
(the engine owns its parameters); this module only composes them.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from recon_engines.matching import MatchingPolicy
from recon_kernel.logging_config import get_logger

logger = get_logger("config.schema")

TAX_SPLIT_POLICIES = ("proportional", "fixed_rate", "none")


@dataclass(frozen=True)
class CreditNoteSettings:
    """Numbering and tax-split defaults for credit notes."""

    number_prefix: str = "CN"
    number_width: int = 4
    tax_split: str = "proportional"  # "proportional", "fixed_rate", "none"
    fixed_tax_rate: str | None = None  # decimal string, e.g. "0.21"

    def __post_init__(self):
        if not self.number_prefix or not self.number_prefix.strip():
            raise ValueError("number_prefix cannot be empty")
        if not 1 <= self.number_width <= 9:
            raise ValueError(f"number_width must be within [1, 9], got {self.number_width}")
        if self.tax_split not in TAX_SPLIT_POLICIES:
            raise ValueError(
                f"tax_split must be one of {TAX_SPLIT_POLICIES}, got '{self.tax_split}'"
            )
        if self.tax_split == "fixed_rate" and not self.fixed_tax_rate:
            raise ValueError("fixed_tax_rate is required when tax_split is 'fixed_rate'")


@dataclass(frozen=True)
class PersistenceSettings:
    """Transaction retry behaviour and the default database URL."""

    max_attempts: int = 3
    backoff_seconds: float = 0.05
    database_url: str | None = None

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.backoff_seconds < 0:
            raise ValueError("backoff_seconds cannot be negative")


@dataclass(frozen=True)
class ReconciliationConfig:
    """
    Root configuration object.

        config = load_config(Path("config/reconciliation.yaml"))
        matcher = TransactionMatcher(config.matching)
    """

    matching: MatchingPolicy = field(default_factory=MatchingPolicy)
    credit_notes: CreditNoteSettings = field(default_factory=CreditNoteSettings)
    persistence: PersistenceSettings = field(default_factory=PersistenceSettings)
    checksum: str | None = None

    def __post_init__(self):
        logger.debug(
            "reconciliation_config_initialized",
            extra={
                "max_results": self.matching.max_results,
                "amount_tolerance": self.matching.amount_tolerance,
                "credit_note_prefix": self.credit_notes.number_prefix,
                "tax_split": self.credit_notes.tax_split,
                "max_attempts": self.persistence.max_attempts,
                "checksum": self.checksum,
            },
        )
