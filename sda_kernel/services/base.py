"""
BaseService -- abstract base for kernel services.

Responsibility:
    Common constructor and session-handling contract for every write
    service in the kernel.  Services receive a SQLAlchemy ``Session`` and
    use ``session.flush()`` -- never ``session.commit()``.

Invariants enforced:
    - Transaction boundaries belong to the caller (the run guard, the
      request handlers, or a test harness).  Services flush within the
      caller's transaction and never commit or roll back the outer
      transaction themselves; SAVEPOINTs they open are theirs to resolve.
"""

from abc import ABC
from typing import Generic, TypeVar
from uuid import UUID

from sqlalchemy.orm import Session

from sda_kernel.db.base import Base
from sda_kernel.domain.clock import Clock, SystemClock

ModelType = TypeVar("ModelType", bound=Base)

# Actor recorded on rows written by the scheduled automation run
SYSTEM_ACTOR_ID = UUID("00000000-0000-0000-0000-000000000001")


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for kernel services.

    Contract:
        Accepts a SQLAlchemy ``Session`` and an optional ``Clock``.  All
        timestamps come from the clock.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self.session = session
        self.clock = clock or SystemClock()
