"""
Shared helpers for module command flows.

Used by recon_modules/*/service.py to run one command inside a
TransactionRunner and turn domain rejections into result objects.

Architecture: Modules layer.  Imports only from recon_kernel and recon_config.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TypeVar

from sqlalchemy.orm import Session

from recon_config.schema import PersistenceSettings
from recon_kernel.domain.results import OperationStatus, status_for_error
from recon_kernel.exceptions import ReconciliationError
from recon_kernel.services.transaction_runner import TransactionRunner

R = TypeVar("R")


def build_runner(
    session_factory: Callable[[], Session],
    settings: PersistenceSettings,
) -> TransactionRunner:
    return TransactionRunner(
        session_factory,
        max_attempts=settings.max_attempts,
        backoff_seconds=settings.backoff_seconds,
    )


def run_command(
    runner: TransactionRunner,
    operation: str,
    work: Callable[[Session], R],
    on_error: Callable[[OperationStatus, str], R],
    logger: logging.Logger,
) -> R:
    """
    Run ``work`` in its own transaction.

    A ReconciliationError has already been rolled back by the runner and
    becomes ``on_error(status, message)``.  Any other exception propagates.
    """
    try:
        return runner.run(operation, work)
    except ReconciliationError as exc:
        status = status_for_error(exc)
        log = logger.warning if exc.retryable else logger.info
        log(
            f"{operation}_rejected",
            extra={"status": status.value, "error_code": exc.code, "reason": str(exc)},
        )
        return on_error(status, str(exc))
