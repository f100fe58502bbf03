"""
Module: sda_kernel.models.automation_log
Responsibility: ORM persistence for one scheduled billing-cycle execution per
    organization per local calendar day.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - At most one log per (organization_id, run_date)
      (UNIQUE uq_automation_log_org_date).  The run guard uses the row
      as its idempotency record; a concurrent duplicate insert loses with
      IntegrityError.
    - Append-only: rows are never updated.  Operators may delete the
      current day's row to allow a re-run.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import JSON, Date, DateTime, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from sda_kernel.db.base import Base, UUIDString


class RunStatus(str, Enum):
    """Outcome of a billing-cycle run."""

    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"


class AutomationLog(Base):
    """
    Record of one completed billing-cycle run.

    Guarantees:
        - run_date is the local calendar date in the organization timezone.
        - errors_json holds the per-contract error entries in processing
          order.
    """

    __tablename__ = "automation_logs"

    __table_args__ = (
        UniqueConstraint("organization_id", "run_date", name="uq_automation_log_org_date"),
        Index("idx_automation_log_executed", "executed_at"),
    )

    organization_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        nullable=False,
    )

    run_date: Mapped[date] = mapped_column(
        Date,
        nullable=False,
    )

    executed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
    )

    contracts_processed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    contracts_skipped: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    contracts_failed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    transactions_created: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    total_amount: Mapped[Decimal] = mapped_column(
        nullable=False,
        default=Decimal("0"),
    )

    execution_time_ms: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )

    errors_json: Mapped[list | None] = mapped_column(
        JSON,
        nullable=True,
    )

    # Human-readable narrative for operators and notification bodies
    summary: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )

    def __repr__(self) -> str:
        return f"<AutomationLog {self.organization_id} {self.run_date}: {self.status}>"

    @property
    def status_enum(self) -> RunStatus:
        """Return status as RunStatus (normalizes raw DB strings)."""
        return RunStatus(self.status)
