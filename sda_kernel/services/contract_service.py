"""
FundingContractService -- funding contract status lifecycle.

Responsibility:
    Activates, cancels, expires and renews funding contracts, and enables
    automatic drawdown with a daily cost derived by the rate calculator.

Architecture position:
    Kernel > Services.  Called by operator request handlers; the drawdown
    generator never changes contract status.

Invariants enforced:
    - Status changes follow CONTRACT_TRANSITIONS.
    - A renewal is a new Draft contract with its balance reset to its
      original amount; the predecessor moves to Renewed and is linked by
      parent_contract_id.
    - Flush-only: never commits or rolls back the session.

Failure modes:
    - ContractNotFoundError: no contract with that id in the organization.
    - InvalidContractTransitionError: status change outside the allow-list.
    - InvalidContractRateError: auto drawdown requested on a contract whose
      daily cost cannot be derived.
"""

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select

from sda_kernel.domain.rates import calculate_contract_rates, to_cents
from sda_kernel.domain.types import ContractRate
from sda_kernel.exceptions import (
    ContractNotFoundError,
    InvalidContractRateError,
    InvalidContractTransitionError,
)
from sda_kernel.logging_config import get_logger
from sda_kernel.models.funding_contract import (
    ContractStatus,
    DrawdownRate,
    FundingContract,
)
from sda_kernel.services.base import BaseService

logger = get_logger("services.contract")


def _same_day_next_year(day: date) -> date:
    try:
        return day.replace(year=day.year + 1)
    except ValueError:
        # 29 February
        return day.replace(year=day.year + 1, day=28)


class FundingContractService(BaseService[FundingContract]):
    """
    Service for funding contract status changes.

    Contract:
        Every method looks the contract up within ``organization_id`` and
        returns the updated ORM row after flushing.
    """

    def get(self, organization_id: UUID, contract_id: UUID) -> FundingContract:
        contract = self.session.execute(
            select(FundingContract).where(
                FundingContract.organization_id == organization_id,
                FundingContract.id == contract_id,
            )
        ).scalar_one_or_none()
        if contract is None:
            raise ContractNotFoundError(str(contract_id))
        return contract

    def transition(
        self,
        organization_id: UUID,
        contract_id: UUID,
        target: ContractStatus,
        actor_id: UUID,
    ) -> FundingContract:
        """Move a contract to ``target`` if the allow-list permits it."""
        contract = self.get(organization_id, contract_id)
        self._apply(contract, target, actor_id)
        return contract

    def _apply(
        self,
        contract: FundingContract,
        target: ContractStatus,
        actor_id: UUID,
    ) -> None:
        if not contract.can_transition_to(target):
            logger.warning(
                "contract_transition_rejected",
                extra={
                    "contract_id": str(contract.id),
                    "from_status": contract.contract_status,
                    "to_status": target.value,
                },
            )
            raise InvalidContractTransitionError(
                str(contract.id), contract.contract_status, target.value
            )
        previous = contract.contract_status
        contract.contract_status = target.value
        contract.updated_by_id = actor_id
        self.session.flush()
        logger.info(
            "contract_status_changed",
            extra={
                "contract_id": str(contract.id),
                "from_status": previous,
                "to_status": target.value,
            },
        )

    def activate(self, organization_id: UUID, contract_id: UUID, actor_id: UUID) -> FundingContract:
        return self.transition(organization_id, contract_id, ContractStatus.ACTIVE, actor_id)

    def cancel(self, organization_id: UUID, contract_id: UUID, actor_id: UUID) -> FundingContract:
        return self.transition(organization_id, contract_id, ContractStatus.CANCELLED, actor_id)

    def expire_elapsed(
        self,
        organization_id: UUID,
        as_of_date: date,
        actor_id: UUID,
    ) -> list[UUID]:
        """Expire every Active contract whose end date is before ``as_of_date``.

        Returns the ids of the contracts expired.
        """
        contracts = self.session.execute(
            select(FundingContract)
            .where(
                FundingContract.organization_id == organization_id,
                FundingContract.contract_status == ContractStatus.ACTIVE.value,
                FundingContract.end_date.is_not(None),
                FundingContract.end_date < as_of_date,
            )
            .order_by(FundingContract.end_date, FundingContract.id)
        ).scalars().all()

        expired: list[UUID] = []
        for contract in contracts:
            self._apply(contract, ContractStatus.EXPIRED, actor_id)
            expired.append(contract.id)

        if expired:
            logger.info(
                "contracts_expired",
                extra={
                    "organization_id": str(organization_id),
                    "as_of_date": as_of_date.isoformat(),
                    "count": len(expired),
                },
            )
        return expired

    def renew(
        self,
        organization_id: UUID,
        contract_id: UUID,
        actor_id: UUID,
        start_date: date | None = None,
        end_date: date | None = None,
        original_amount: Decimal | None = None,
    ) -> FundingContract:
        """
        Supersede a contract with a new Draft contract.

        The renewal copies the funding terms, starts today unless told
        otherwise, and ends a year after its start by default.  Its balance
        starts at its original amount.

        Raises:
            InvalidContractTransitionError: predecessor cannot be renewed.
        """
        parent = self.get(organization_id, contract_id)
        if not parent.can_transition_to(ContractStatus.RENEWED):
            raise InvalidContractTransitionError(
                str(parent.id), parent.contract_status, ContractStatus.RENEWED.value
            )

        start = start_date or self.clock.now_utc().date()
        end = end_date or _same_day_next_year(start)
        amount = to_cents(
            original_amount if original_amount is not None else parent.original_amount
        )

        renewal = FundingContract(
            organization_id=organization_id,
            resident_id=parent.resident_id,
            funding_type=parent.funding_type,
            support_item_code=parent.support_item_code,
            original_amount=amount,
            current_balance=amount,
            drawdown_rate=parent.drawdown_rate,
            auto_drawdown=parent.auto_drawdown,
            daily_support_item_cost=None,
            last_drawdown_date=None,
            start_date=start,
            end_date=end,
            contract_status=ContractStatus.DRAFT.value,
            parent_contract_id=parent.id,
            created_by_id=actor_id,
        )
        self.session.add(renewal)
        self.session.flush()

        if renewal.auto_drawdown:
            rate = calculate_contract_rates(str(renewal.id), amount, start, end)
            renewal.daily_support_item_cost = rate.daily_rate

        self._apply(parent, ContractStatus.RENEWED, actor_id)
        logger.info(
            "contract_renewed",
            extra={
                "contract_id": str(renewal.id),
                "parent_contract_id": str(parent.id),
                "original_amount": str(amount),
            },
        )
        return renewal

    def enable_auto_drawdown(
        self,
        organization_id: UUID,
        contract_id: UUID,
        rate: DrawdownRate,
        actor_id: UUID,
    ) -> ContractRate:
        """
        Turn on automatic drawdown at ``rate``.

        The daily support item cost is derived from the contract amount and
        duration and stored on the contract.

        Raises:
            InvalidContractRateError: amount or dates do not allow a rate.
        """
        contract = self.get(organization_id, contract_id)
        if contract.status_enum in (ContractStatus.CANCELLED, ContractStatus.RENEWED):
            raise InvalidContractRateError(
                str(contract.id),
                f"Contract is {contract.contract_status}",
            )
        computed = calculate_contract_rates(
            str(contract.id),
            contract.original_amount,
            contract.start_date,
            contract.end_date,
        )
        contract.drawdown_rate = rate.value
        contract.auto_drawdown = True
        contract.daily_support_item_cost = computed.daily_rate
        contract.updated_by_id = actor_id
        self.session.flush()
        logger.info(
            "contract_auto_drawdown_enabled",
            extra={
                "contract_id": str(contract.id),
                "drawdown_rate": rate.value,
                "daily_rate": str(computed.daily_rate),
            },
        )
        return computed

    def disable_auto_drawdown(
        self,
        organization_id: UUID,
        contract_id: UUID,
        actor_id: UUID,
    ) -> FundingContract:
        contract = self.get(organization_id, contract_id)
        contract.auto_drawdown = False
        contract.updated_by_id = actor_id
        self.session.flush()
        logger.info(
            "contract_auto_drawdown_disabled",
            extra={"contract_id": str(contract.id)},
        )
        return contract
