"""
Module: sda_kernel.models.funding_contract
Responsibility: ORM persistence for time-bounded funding allocations held by
    a resident, the balance the drawdown engine draws against.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - 0 <= current_balance <= original_amount (CHECK ck_contract_balance_range).
    - original_amount >= 0 (CHECK ck_contract_original_nonnegative).
    - Status changes follow CONTRACT_TRANSITIONS; Cancelled and Renewed are
      terminal.

Failure modes:
    - IntegrityError when a write would push the balance outside its range.
    - InvalidContractTransitionError (raised by FundingContractService) on a
      status change outside the allow-list.
"""

from datetime import date
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import Boolean, CheckConstraint, Date, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from sda_kernel.db.base import TrackedBase, UUIDString


class FundingType(str, Enum):
    """Funding source backing a contract."""

    NDIS = "ndis"
    SDA = "sda"
    SIL = "sil"
    PRIVATE = "private"
    OTHER = "other"


class DrawdownRate(str, Enum):
    """Cadence at which automatic drawdowns occur."""

    DAILY = "daily"
    WEEKLY = "weekly"
    FORTNIGHTLY = "fortnightly"
    MONTHLY = "monthly"


class ContractStatus(str, Enum):
    """
    Lifecycle status of a funding contract.

    State machine:
        DRAFT -> ACTIVE | CANCELLED
        ACTIVE -> EXPIRED | CANCELLED | RENEWED
        EXPIRED -> RENEWED
        CANCELLED: terminal
        RENEWED: terminal (superseded by a child contract)
    """

    DRAFT = "Draft"
    ACTIVE = "Active"
    EXPIRED = "Expired"
    CANCELLED = "Cancelled"
    RENEWED = "Renewed"


CONTRACT_TRANSITIONS: dict[ContractStatus, frozenset[ContractStatus]] = {
    ContractStatus.DRAFT: frozenset({
        ContractStatus.ACTIVE, ContractStatus.CANCELLED,
    }),
    ContractStatus.ACTIVE: frozenset({
        ContractStatus.EXPIRED, ContractStatus.CANCELLED, ContractStatus.RENEWED,
    }),
    ContractStatus.EXPIRED: frozenset({
        ContractStatus.RENEWED,
    }),
    ContractStatus.CANCELLED: frozenset(),
    ContractStatus.RENEWED: frozenset(),
}


class FundingContract(TrackedBase):
    """
    A funding allocation for one resident.

    Contract:
        The drawdown engine is the only automated writer of current_balance
        and last_drawdown_date.  Manual transactions and cancellations adjust
        the balance through TransactionService.

    Guarantees:
        - current_balance never leaves [0, original_amount] (CHECK).
        - parent_contract_id links a renewal to the contract it superseded.
    """

    __tablename__ = "funding_contracts"

    __table_args__ = (
        CheckConstraint(
            "current_balance >= 0 AND current_balance <= original_amount",
            name="ck_contract_balance_range",
        ),
        CheckConstraint(
            "original_amount >= 0",
            name="ck_contract_original_nonnegative",
        ),
        Index("idx_contract_org_status", "organization_id", "contract_status"),
        Index("idx_contract_resident", "resident_id"),
    )

    organization_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        nullable=False,
    )

    resident_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        nullable=False,
    )

    funding_type: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=FundingType.SDA.value,
    )

    # NDIS support item code carried onto generated transactions
    support_item_code: Mapped[str | None] = mapped_column(
        String(50),
        nullable=True,
    )

    original_amount: Mapped[Decimal] = mapped_column(nullable=False)

    current_balance: Mapped[Decimal] = mapped_column(nullable=False)

    drawdown_rate: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=DrawdownRate.DAILY.value,
    )

    auto_drawdown: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
    )

    # Cost per day; derived by the rate calculator when absent
    daily_support_item_cost: Mapped[Decimal | None] = mapped_column(
        nullable=True,
    )

    last_drawdown_date: Mapped[date | None] = mapped_column(
        Date,
        nullable=True,
    )

    start_date: Mapped[date] = mapped_column(
        Date,
        nullable=False,
    )

    end_date: Mapped[date | None] = mapped_column(
        Date,
        nullable=True,
    )

    contract_status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=ContractStatus.DRAFT.value,
    )

    parent_contract_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        nullable=True,
    )

    def __repr__(self) -> str:
        return (
            f"<FundingContract {self.id}: {self.contract_status} "
            f"balance={self.current_balance}>"
        )

    @property
    def status_enum(self) -> ContractStatus:
        """Return contract_status as ContractStatus (normalizes raw DB strings)."""
        return ContractStatus(self.contract_status)

    @property
    def rate_enum(self) -> DrawdownRate:
        """Return drawdown_rate as DrawdownRate (normalizes raw DB strings)."""
        return DrawdownRate(self.drawdown_rate)

    def can_transition_to(self, target: ContractStatus) -> bool:
        """Check the allow-list for a status change."""
        return target in CONTRACT_TRANSITIONS[self.status_enum]
