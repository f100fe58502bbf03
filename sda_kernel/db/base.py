"""
Declarative base for the SDA kernel models.

Conventions every table follows:

* ``id`` is a uuid4 primary key generated in Python, stored as
  ``String(36)`` so the same schema runs on PostgreSQL and SQLite.
  Human-facing numbers (``TXN-A000001``, ``CLM-0000001``) are separate
  UNIQUE columns allocated by ``IdentifierAllocator``.
* Money is ``Decimal`` mapped to ``Numeric(38, 9)``; services quantize to
  cents before writing.
* Timestamps are timezone-aware and written in UTC.

This module imports nothing from the rest of the kernel.
"""

from datetime import datetime
from decimal import Decimal
from typing import ClassVar
from uuid import UUID, uuid4

from sqlalchemy import BigInteger, DateTime, Numeric, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class UUIDString(TypeDecorator):
    """``uuid.UUID`` on the Python side, 36-character string in the database."""

    impl = String(36)
    cache_ok = True

    @property
    def python_type(self):
        return UUID

    def process_bind_param(self, value, dialect):
        return None if value is None else str(value)

    def process_result_value(self, value, dialect):
        return None if value is None else UUID(value)


class Base(DeclarativeBase):
    type_annotation_map: ClassVar[dict] = {
        UUID: UUIDString(),
        Decimal: Numeric(38, 9),
        datetime: DateTime(timezone=True),
        int: BigInteger,
    }

    id: Mapped[UUID] = mapped_column(UUIDString(), primary_key=True, default=uuid4)


class TrackedBase(Base):
    """
    Rows that users and the automation run modify.

    ``created_by_id`` is required.  Scheduled runs write as
    ``SYSTEM_ACTOR_ID``; services set ``updated_by_id`` on every change.
    """

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(), onupdate=func.now()
    )
    created_by_id: Mapped[UUID] = mapped_column(UUIDString())
    updated_by_id: Mapped[UUID | None] = mapped_column(UUIDString())
