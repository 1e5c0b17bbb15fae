"""
BaseService -- abstract base for kernel services.

Responsibility:
    Common constructor and session-handling contract for every kernel
    service.  Concrete services receive a SQLAlchemy ``Session`` and use
    ``session.flush()`` -- never ``session.commit()``.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.

Invariants enforced:
    Transaction boundaries belong to the caller (TransactionRunner in the
    module services).  This is what lets a payment insert, a ledger delta
    and a bank-transaction update commit as one unit.
"""

from abc import ABC

from sqlalchemy.orm import Session

from recon_kernel.domain.clock import Clock, SystemClock


class BaseService(ABC):
    """
    Abstract base class for kernel services.

    Guarantees:
        - The service never calls ``session.commit()`` or
          ``session.rollback()``.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self.session = session
        self.clock = clock or SystemClock()
