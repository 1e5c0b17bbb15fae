"""
Configuration Loader (``recon_config.loader``).

Responsibility
--------------
Loads the reconciliation YAML file and parses it into the typed
``recon_config.schema`` dataclasses.

Invariants enforced
-------------------
* Parse errors raise ``ValueError`` (unknown keys, bad values) with
  descriptive messages; no silent defaults for misspelled keys.
* Every parsed object is a frozen dataclass from ``schema.py``.
* ``compute_checksum`` produces a deterministic SHA-256 hash for
  configuration identity and change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Unknown section or key -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
import os
from dataclasses import fields
from pathlib import Path
from typing import Any

import yaml

from recon_config.schema import (
    CreditNoteSettings,
    PersistenceSettings,
    ReconciliationConfig,
)
from recon_engines.matching import MatchingPolicy
from recon_kernel.logging_config import get_logger

logger = get_logger("config.loader")

DATABASE_URL_ENV = "DATABASE_URL"

_SECTIONS: dict[str, type] = {
    "matching": MatchingPolicy,
    "credit_notes": CreditNoteSettings,
    "persistence": PersistenceSettings,
}


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the top level is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top level must be a mapping, got {type(data).__name__}")
    return data


def _parse_section(name: str, cls: type, data: Any) -> Any:
    if data is None:
        return cls()
    if not isinstance(data, dict):
        raise ValueError(f"section '{name}' must be a mapping")
    allowed = {f.name for f in fields(cls)}
    unknown = sorted(set(data) - allowed)
    if unknown:
        raise ValueError(f"section '{name}' has unknown keys {unknown}")
    return cls(**data)


def config_from_dict(data: dict[str, Any]) -> ReconciliationConfig:
    """
    Build a ReconciliationConfig from a parsed mapping.

    Missing sections take their defaults.  The checksum is computed over
    the input mapping.
    """
    unknown = sorted(set(data) - set(_SECTIONS))
    if unknown:
        raise ValueError(f"unknown configuration sections {unknown}")

    sections = {
        name: _parse_section(name, cls, data.get(name))
        for name, cls in _SECTIONS.items()
    }
    return ReconciliationConfig(**sections, checksum=compute_checksum(data))


def load_config(path: Path | str) -> ReconciliationConfig:
    """Load and validate a configuration file."""
    path = Path(path)
    data = load_yaml_file(path)
    config = config_from_dict(data)
    logger.info(
        "config_loaded",
        extra={"path": str(path), "checksum": config.checksum},
    )
    return config


def default_config() -> ReconciliationConfig:
    """Configuration with every section at its defaults."""
    return config_from_dict({})


def resolve_database_url(
    config: ReconciliationConfig | None = None,
    environ: dict[str, str] | None = None,
) -> str | None:
    """``DATABASE_URL`` from the environment wins over the configured URL."""
    env = os.environ if environ is None else environ
    url = env.get(DATABASE_URL_ENV)
    if url:
        return url
    return config.persistence.database_url if config is not None else None


def compute_checksum(data: dict[str, Any]) -> str:
    """
    Compute SHA-256 checksum of canonical JSON serialization.

    Identical ``data`` always produces identical checksums.
    """
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
