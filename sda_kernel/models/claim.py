"""
Module: sda_kernel.models.claim
Responsibility: ORM persistence for regulator claims (batches of picked-up
    transactions) and the append-only reconciliation records uploaded
    against them.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - claim_number is UNIQUE (uq_claim_number).
    - transaction_count / total_amount equal the count and sum of linked,
      non-cancelled transactions.  Maintained by
      claim_packager.recalculate_claim_aggregates at every mutation point.
    - Status changes follow CLAIM_TRANSITIONS; paid, rejected and
      partially_paid are terminal.
    - ClaimReconciliation rows are never updated after insertion.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import (
    JSON,
    DateTime,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from sda_kernel.db.base import Base, TrackedBase, UUIDString


class ClaimStatus(str, Enum):
    """
    Status of a regulator claim.

    State machine:
        DRAFT -> IN_PROGRESS | SUBMITTED | AUTOMATION_SUBMITTED
        IN_PROGRESS -> SUBMITTED | AUTOMATION_SUBMITTED | PROCESSED
                       | PAID | REJECTED | PARTIALLY_PAID
        SUBMITTED -> PROCESSED | PAID | REJECTED | PARTIALLY_PAID
        AUTOMATION_SUBMITTED -> AUTO_PROCESSED | PROCESSED | PAID
                                | REJECTED | PARTIALLY_PAID
        AUTO_PROCESSED -> PAID | REJECTED | PARTIALLY_PAID
        PROCESSED -> PAID | REJECTED | PARTIALLY_PAID
        PAID, REJECTED, PARTIALLY_PAID: terminal
    """

    DRAFT = "draft"
    IN_PROGRESS = "in_progress"
    PROCESSED = "processed"
    SUBMITTED = "submitted"
    PAID = "paid"
    REJECTED = "rejected"
    PARTIALLY_PAID = "partially_paid"
    AUTOMATION_SUBMITTED = "automation_submitted"
    AUTO_PROCESSED = "auto_processed"


_SETTLED = frozenset({
    ClaimStatus.PAID, ClaimStatus.REJECTED, ClaimStatus.PARTIALLY_PAID,
})

CLAIM_TRANSITIONS: dict[ClaimStatus, frozenset[ClaimStatus]] = {
    ClaimStatus.DRAFT: frozenset({
        ClaimStatus.IN_PROGRESS,
        ClaimStatus.SUBMITTED,
        ClaimStatus.AUTOMATION_SUBMITTED,
    }),
    ClaimStatus.IN_PROGRESS: frozenset({
        ClaimStatus.SUBMITTED,
        ClaimStatus.AUTOMATION_SUBMITTED,
        ClaimStatus.PROCESSED,
    }) | _SETTLED,
    ClaimStatus.SUBMITTED: frozenset({ClaimStatus.PROCESSED}) | _SETTLED,
    ClaimStatus.AUTOMATION_SUBMITTED: frozenset({
        ClaimStatus.AUTO_PROCESSED,
        ClaimStatus.PROCESSED,
    }) | _SETTLED,
    ClaimStatus.AUTO_PROCESSED: _SETTLED,
    ClaimStatus.PROCESSED: _SETTLED,
    # Terminal states
    ClaimStatus.PAID: frozenset(),
    ClaimStatus.REJECTED: frozenset(),
    ClaimStatus.PARTIALLY_PAID: frozenset(),
}


class Claim(TrackedBase):
    """
    A batch of transactions submitted together to the funding regulator.

    Contract:
        Created by ClaimPackager in DRAFT with at least one linked
        transaction already in picked_up.  A claim never exists with zero
        linked transactions.
    """

    __tablename__ = "claims"

    __table_args__ = (
        UniqueConstraint("claim_number", name="uq_claim_number"),
        Index("idx_claim_org_status", "organization_id", "status"),
    )

    organization_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        nullable=False,
    )

    # Human-readable identifier, e.g. CLM-0000001
    claim_number: Mapped[str] = mapped_column(
        String(40),
        nullable=False,
    )

    # Selection criteria used when the claim was packaged
    filters_json: Mapped[dict | None] = mapped_column(
        JSON,
        nullable=True,
    )

    transaction_count: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )

    total_amount: Mapped[Decimal] = mapped_column(
        nullable=False,
        default=Decimal("0"),
    )

    status: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        default=ClaimStatus.DRAFT.value,
    )

    submitted_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    submitted_by_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        nullable=True,
    )

    file_generated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    file_generated_by_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        nullable=True,
    )

    def __repr__(self) -> str:
        return f"<Claim {self.claim_number}: {self.status}>"

    @property
    def status_enum(self) -> ClaimStatus:
        """Return status as ClaimStatus (normalizes raw DB strings)."""
        return ClaimStatus(self.status)

    def can_transition_to(self, target: ClaimStatus) -> bool:
        """Check the allow-list for a status change."""
        return target in CLAIM_TRANSITIONS[self.status_enum]


class ClaimReconciliation(Base):
    """
    Append-only record of one regulator response applied to a claim.

    Guarantees:
        - Never updated after insertion.
        - Totals are copied verbatim from the caller's parsed response.
    """

    __tablename__ = "claim_reconciliations"

    __table_args__ = (
        Index("idx_reconciliation_claim", "claim_id"),
    )

    claim_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        nullable=False,
    )

    organization_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        nullable=False,
    )

    uploaded_by_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        nullable=False,
    )

    file_name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )

    total_processed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_paid: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_rejected: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_errors: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_unmatched: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Raw per-line results as supplied by the caller
    results_json: Mapped[dict | None] = mapped_column(
        JSON,
        nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    def __repr__(self) -> str:
        return (
            f"<ClaimReconciliation {self.claim_id}: "
            f"paid={self.total_paid} rejected={self.total_rejected}>"
        )
