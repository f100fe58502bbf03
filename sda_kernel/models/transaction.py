"""
Module: sda_kernel.models.transaction
Responsibility: ORM persistence for billing transactions drawn against a
    funding contract, manually or by the scheduled drawdown run.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - transaction_number is UNIQUE (uq_transaction_number).  The allocator
      relies on this constraint to detect lost races.
    - amount > 0 (CHECK ck_transaction_amount_positive).
    - Status changes follow TRANSACTION_TRANSITIONS; paid, rejected and
      cancelled are terminal.

Failure modes:
    - IntegrityError on duplicate transaction_number (retried by the
      IdentifierAllocator).
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Index,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from sda_kernel.db.base import TrackedBase, UUIDString


class TransactionStatus(str, Enum):
    """
    Status of a billing transaction.

    State machine:
        DRAFT -> PICKED_UP | CANCELLED
        PICKED_UP -> PAID | REJECTED | CANCELLED
        PAID, REJECTED, CANCELLED: terminal
    """

    DRAFT = "draft"
    PICKED_UP = "picked_up"
    PAID = "paid"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


TRANSACTION_TRANSITIONS: dict[TransactionStatus, frozenset[TransactionStatus]] = {
    TransactionStatus.DRAFT: frozenset({
        TransactionStatus.PICKED_UP, TransactionStatus.CANCELLED,
    }),
    TransactionStatus.PICKED_UP: frozenset({
        TransactionStatus.PAID, TransactionStatus.REJECTED, TransactionStatus.CANCELLED,
    }),
    TransactionStatus.PAID: frozenset(),
    TransactionStatus.REJECTED: frozenset(),
    TransactionStatus.CANCELLED: frozenset(),
}


class Transaction(TrackedBase):
    """
    A single billing event against a contract and resident.

    Guarantees:
        - claim_id is set exactly when the transaction is packaged.
        - is_automated distinguishes drawdown-run rows from manual entries.
    """

    __tablename__ = "transactions"

    __table_args__ = (
        UniqueConstraint("transaction_number", name="uq_transaction_number"),
        CheckConstraint("amount > 0", name="ck_transaction_amount_positive"),
        Index("idx_transaction_org_status", "organization_id", "status"),
        Index("idx_transaction_claim", "claim_id"),
        Index("idx_transaction_contract", "contract_id"),
    )

    organization_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        nullable=False,
    )

    # Human-readable identifier, e.g. TXN-A000123
    transaction_number: Mapped[str] = mapped_column(
        String(40),
        nullable=False,
    )

    resident_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        nullable=False,
    )

    contract_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        nullable=True,
    )

    amount: Mapped[Decimal] = mapped_column(nullable=False)

    occurred_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    service_code: Mapped[str | None] = mapped_column(
        String(50),
        nullable=True,
    )

    description: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=TransactionStatus.DRAFT.value,
    )

    claim_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        nullable=True,
    )

    is_automated: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
    )

    # Free-form notes; reconciliation appends warnings here
    note: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )

    def __repr__(self) -> str:
        return f"<Transaction {self.transaction_number}: {self.status} {self.amount}>"

    @property
    def status_enum(self) -> TransactionStatus:
        """Return status as TransactionStatus (normalizes raw DB strings)."""
        return TransactionStatus(self.status)

    def can_transition_to(self, target: TransactionStatus) -> bool:
        """Check the allow-list for a status change."""
        return target in TRANSACTION_TRANSITIONS[self.status_enum]

    def append_note(self, line: str) -> None:
        """Append a line to the note, preserving existing text."""
        self.note = f"{self.note}\n{line}" if self.note else line
