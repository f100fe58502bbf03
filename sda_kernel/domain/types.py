"""
sda_kernel.domain.types -- Pure frozen dataclasses for drawdown and claims.

ZERO I/O.  Services build these from ORM rows and return them to callers;
nothing here touches a session.

Invariants enforced:
    - All DTOs are frozen dataclasses with tuples for collections.
    - Monetary values are Decimal, never float.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from sda_kernel.models.automation_log import RunStatus
from sda_kernel.models.funding_contract import ContractStatus, DrawdownRate


# =============================================================================
# Contract terms
# =============================================================================


@dataclass(frozen=True)
class ContractTerms:
    """Snapshot of the contract fields the eligibility rules read."""

    contract_id: UUID
    resident_id: UUID
    status: ContractStatus
    auto_drawdown: bool
    drawdown_rate: DrawdownRate
    original_amount: Decimal
    current_balance: Decimal
    start_date: date
    end_date: date | None = None
    last_drawdown_date: date | None = None
    daily_support_item_cost: Decimal | None = None
    support_item_code: str | None = None

    @classmethod
    def from_model(cls, contract: Any) -> ContractTerms:
        """Build from a FundingContract row."""
        return cls(
            contract_id=contract.id,
            resident_id=contract.resident_id,
            status=ContractStatus(contract.contract_status),
            auto_drawdown=bool(contract.auto_drawdown),
            drawdown_rate=DrawdownRate(contract.drawdown_rate),
            original_amount=Decimal(contract.original_amount),
            current_balance=Decimal(contract.current_balance),
            start_date=contract.start_date,
            end_date=contract.end_date,
            last_drawdown_date=contract.last_drawdown_date,
            daily_support_item_cost=(
                Decimal(contract.daily_support_item_cost)
                if contract.daily_support_item_cost is not None
                else None
            ),
            support_item_code=contract.support_item_code,
        )


@dataclass(frozen=True)
class ContractRate:
    """Daily rate derived from contract amount and duration."""

    daily_rate: Decimal
    weekly_rate: Decimal
    fortnightly_rate: Decimal
    total_days: int


# =============================================================================
# Eligibility
# =============================================================================


@dataclass(frozen=True)
class EligibilityChecks:
    """Outcome of each individual eligibility rule."""

    status_check: bool
    automation_check: bool
    balance_check: bool
    date_check: bool
    cadence_check: bool

    @property
    def all_passed(self) -> bool:
        return (
            self.status_check
            and self.automation_check
            and self.balance_check
            and self.date_check
            and self.cadence_check
        )


@dataclass(frozen=True)
class EligibilityResult:
    """Eligibility verdict for one contract on one local date."""

    contract_id: UUID
    resident_id: UUID
    as_of_date: date
    checks: EligibilityChecks
    reasons: tuple[str, ...] = ()
    drawdown_amount: Decimal | None = None
    next_due_date: date | None = None

    @property
    def is_eligible(self) -> bool:
        return self.checks.all_passed


# =============================================================================
# Drawdown run
# =============================================================================


@dataclass(frozen=True)
class DrawdownError:
    """Structured error entry for one contract in a drawdown run."""

    contract_id: UUID
    resident_id: UUID | None
    code: str
    message: str

    def to_dict(self) -> dict[str, str | None]:
        return {
            "contract_id": str(self.contract_id),
            "resident_id": str(self.resident_id) if self.resident_id else None,
            "code": self.code,
            "message": self.message,
        }


@dataclass(frozen=True)
class GeneratedTransaction:
    """A transaction written by the drawdown generator."""

    transaction_id: UUID
    transaction_number: str
    contract_id: UUID
    resident_id: UUID
    amount: Decimal
    drawdown_rate: DrawdownRate
    balance_after: Decimal


@dataclass(frozen=True)
class PlannedDrawdown:
    """A drawdown a cycle would generate; produced by preview without writes."""

    run_date: date
    contract_id: UUID
    resident_id: UUID
    drawdown_rate: DrawdownRate
    amount: Decimal
    balance_before: Decimal
    balance_after: Decimal


@dataclass(frozen=True)
class DrawdownRunSummary:
    """Structured result of one drawdown generator run.

    ``status`` is derived: SUCCESS when nothing failed, PARTIAL when some
    contracts failed and at least one transaction was created, FAILED
    otherwise.  Skipped contracts never affect the status.
    """

    processed_contracts: int = 0
    successful_transactions: int = 0
    failed_transactions: int = 0
    skipped_contracts: int = 0
    total_amount: Decimal = Decimal("0.00")
    frequency_breakdown: dict[str, int] = field(default_factory=dict)
    errors: tuple[DrawdownError, ...] = ()
    transactions: tuple[GeneratedTransaction, ...] = ()

    @property
    def status(self) -> RunStatus:
        if self.failed_transactions == 0:
            return RunStatus.SUCCESS
        if self.successful_transactions > 0:
            return RunStatus.PARTIAL
        return RunStatus.FAILED

    @property
    def average_amount(self) -> Decimal:
        if self.successful_transactions == 0:
            return Decimal("0.00")
        return (self.total_amount / self.successful_transactions).quantize(
            Decimal("0.01")
        )


# =============================================================================
# Claims
# =============================================================================


@dataclass(frozen=True)
class ClaimFilters:
    """Selection criteria for packaging draft transactions into a claim.

    ``date_to`` is inclusive to the end of that day.  With ``include_all``
    set, the other filters are ignored.
    """

    resident_id: UUID | None = None
    date_from: date | None = None
    date_to: date | None = None
    include_all: bool = False

    def to_json(self) -> dict[str, Any]:
        return {
            "resident_id": str(self.resident_id) if self.resident_id else None,
            "date_from": self.date_from.isoformat() if self.date_from else None,
            "date_to": self.date_to.isoformat() if self.date_to else None,
            "include_all": self.include_all,
        }


@dataclass(frozen=True)
class TransactionView:
    """Read-only view of a transaction row."""

    transaction_id: UUID
    transaction_number: str
    resident_id: UUID
    contract_id: UUID | None
    amount: Decimal
    occurred_at: datetime
    status: str
    claim_id: UUID | None = None
    service_code: str | None = None
    is_automated: bool = False

    @classmethod
    def from_model(cls, txn: Any) -> TransactionView:
        return cls(
            transaction_id=txn.id,
            transaction_number=txn.transaction_number,
            resident_id=txn.resident_id,
            contract_id=txn.contract_id,
            amount=Decimal(txn.amount),
            occurred_at=txn.occurred_at,
            status=txn.status,
            claim_id=txn.claim_id,
            service_code=txn.service_code,
            is_automated=bool(txn.is_automated),
        )


@dataclass(frozen=True)
class ClaimAggregates:
    """Count and sum of the non-cancelled transactions linked to a claim."""

    transaction_count: int
    total_amount: Decimal


@dataclass(frozen=True)
class ReconciliationTotals:
    """Totals from a parsed regulator response, supplied by the caller."""

    total_processed: int = 0
    total_paid: int = 0
    total_rejected: int = 0
    total_errors: int = 0
    total_unmatched: int = 0


@dataclass(frozen=True)
class TransactionOutcome:
    """Settlement outcome for one picked-up transaction."""

    transaction_id: UUID
    paid: bool
    note: str | None = None


@dataclass(frozen=True)
class ClaimPackage:
    """Result of a successful packaging operation."""

    claim_id: UUID
    claim_number: str
    transaction_count: int
    total_amount: Decimal
    transaction_ids: tuple[UUID, ...]
    created_at: datetime | None = None
