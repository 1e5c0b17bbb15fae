"""Typed reconciliation configuration loaded from YAML."""

from recon_config.loader import (
    compute_checksum,
    config_from_dict,
    default_config,
    load_config,
    resolve_database_url,
)
from recon_config.schema import (
    CreditNoteSettings,
    PersistenceSettings,
    ReconciliationConfig,
)

__all__ = [
    "CreditNoteSettings",
    "PersistenceSettings",
    "ReconciliationConfig",
    "compute_checksum",
    "config_from_dict",
    "default_config",
    "load_config",
    "resolve_database_url",
]
