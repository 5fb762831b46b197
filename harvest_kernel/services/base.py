"""
BaseService -- abstract base for all kernel services.

Responsibility:
    Provides the common constructor and session-handling contract for
    every ledger in the kernel layer.  Concrete services receive a
    SQLAlchemy ``Session`` and use ``session.flush()`` -- never
    ``session.commit()``.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.

Invariants enforced:
    - Transaction boundaries: kernel services flush within the caller's
      transaction and never commit or rollback.  The module services in
      ``harvest_modules`` own commit/rollback, so a ledger mutation and the
      status write that triggered it always land together.

Failure modes:
    - A subclass that commits breaks the atomicity of the calling operation.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from harvest_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for all kernel services.

    Contract:
        Accepts a SQLAlchemy ``Session`` from the caller and uses
        ``session.flush()`` to persist changes within the active
        transaction.

    Non-goals:
        - Does NOT manage transaction lifecycle (commit/rollback).
        - Does NOT provide read-only reporting -- that belongs in
          ``harvest_kernel/selectors/``.
    """

    def __init__(self, session: Session):
        self.session = session
