"""
TransactionRunner -- owns commit/rollback for one reconciliation command.

Responsibility:
    Opens a session from the injected factory, runs the unit of work,
    commits, and closes.  Optimistic-lock conflicts (StaleDataError) and
    transient storage failures (OperationalError: lock timeouts, "database
    is locked", dropped connections) are retried with linear backoff on a
    fresh session.  Anything else is rolled back and re-raised unchanged.

Architecture position:
    Kernel > Services -- imperative shell.  Used by every module service;
    kernel services below it only flush.

Invariants enforced:
    - All-or-nothing: the unit of work either commits entirely or leaves
      no trace (rollback on every failure path).
    - A commit that has started is never abandoned by this class; retries
      happen only after the store has reported failure.
    - Exhausted retries surface as typed, retryable errors
      (PersistenceUnavailableError / OptimisticLockError), never as a
      silent no-op.

Failure modes:
    - PersistenceUnavailableError after ``max_attempts`` OperationalErrors.
    - OptimisticLockError after ``max_attempts`` StaleDataErrors.
"""

import time
from collections.abc import Callable
from typing import TypeVar

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from recon_kernel.exceptions import OptimisticLockError, PersistenceUnavailableError
from recon_kernel.logging_config import get_logger

logger = get_logger("services.transaction_runner")

T = TypeVar("T")


class TransactionRunner:
    """
    Runs a unit of work in its own transaction with bounded retries.

    Usage:
        runner = TransactionRunner(session_factory)
        result = runner.run("record_payment", lambda session: ...)
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session] | Callable[[], Session],
        max_attempts: int = 3,
        backoff_seconds: float = 0.05,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self._session_factory = session_factory
        self._max_attempts = max_attempts
        self._backoff_seconds = backoff_seconds
        self._sleep = sleep

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    def run(self, operation: str, work: Callable[[Session], T]) -> T:
        """
        Execute ``work(session)`` and commit.

        Args:
            operation: Name used in logs and error messages.
            work: Callable receiving an open session.  Must only flush.

        Returns:
            Whatever ``work`` returned, after a successful commit.
        """
        attempt = 0
        while True:
            attempt += 1
            session: Session | None = None
            try:
                session = self._session_factory()
                result = work(session)
                session.commit()
                logger.debug(
                    "transaction_committed",
                    extra={"operation": operation, "attempt": attempt},
                )
                return result
            except StaleDataError as exc:
                self._rollback(session, operation)
                if attempt >= self._max_attempts:
                    logger.warning(
                        "transaction_conflict_exhausted",
                        extra={"operation": operation, "attempts": attempt},
                    )
                    raise OptimisticLockError(operation, attempt) from exc
                reason = "optimistic_lock_conflict"
            except OperationalError as exc:
                self._rollback(session, operation)
                if attempt >= self._max_attempts:
                    logger.error(
                        "persistence_unavailable",
                        extra={
                            "operation": operation,
                            "attempts": attempt,
                            "reason": str(exc.orig),
                        },
                    )
                    raise PersistenceUnavailableError(operation, str(exc.orig)) from exc
                reason = "operational_error"
            except Exception:
                self._rollback(session, operation)
                raise
            finally:
                if session is not None:
                    session.close()

            delay = self._backoff_seconds * attempt
            logger.warning(
                "transaction_retry",
                extra={
                    "operation": operation,
                    "attempt": attempt,
                    "max_attempts": self._max_attempts,
                    "reason": reason,
                    "delay_seconds": delay,
                },
            )
            self._sleep(delay)

    @staticmethod
    def _rollback(session: Session | None, operation: str) -> None:
        if session is None:
            return
        try:
            session.rollback()
        except OperationalError:
            # Connection already gone; the store discarded the transaction.
            logger.warning(
                "transaction_rollback_failed",
                extra={"operation": operation},
                exc_info=True,
            )
            return
        logger.info("transaction_rolled_back", extra={"operation": operation})
