"""
Module: sda_kernel.selectors.contract_selector
Responsibility: Read-only discovery of funding contracts due for an
    automatic drawdown.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - Never mutates state; safe to call repeatedly.
    - Eligibility is evaluated on the local date in the organization
      timezone, never on the server's date.
    - Results are ordered deterministically (start_date, created_at, id)
      so a run processes contracts in a stable order.
"""

from datetime import date, datetime
from uuid import UUID

from sqlalchemy import select

from sda_kernel.domain.eligibility import evaluate_eligibility, local_date
from sda_kernel.domain.types import ContractTerms, EligibilityResult
from sda_kernel.logging_config import get_logger
from sda_kernel.models.funding_contract import ContractStatus, FundingContract
from sda_kernel.selectors.base import BaseSelector

logger = get_logger("selectors.contract")


class ContractSelector(BaseSelector[FundingContract]):
    """Queries for funding contracts and their drawdown eligibility."""

    def get_terms(self, organization_id: UUID, contract_id: UUID) -> ContractTerms | None:
        contract = self.session.execute(
            select(FundingContract).where(
                FundingContract.organization_id == organization_id,
                FundingContract.id == contract_id,
            )
        ).scalar_one_or_none()
        return ContractTerms.from_model(contract) if contract else None

    def candidate_terms(self, organization_id: UUID) -> list[ContractTerms]:
        """Active contracts with auto drawdown enabled, in processing order."""
        rows = self.session.execute(
            select(FundingContract)
            .where(
                FundingContract.organization_id == organization_id,
                FundingContract.contract_status == ContractStatus.ACTIVE.value,
                FundingContract.auto_drawdown.is_(True),
            )
            .order_by(
                FundingContract.start_date,
                FundingContract.created_at,
                FundingContract.id,
            )
        ).scalars()
        return [ContractTerms.from_model(row) for row in rows]

    def evaluate_on(self, organization_id: UUID, as_of_date: date) -> list[EligibilityResult]:
        """Eligibility verdicts for every candidate on a local date."""
        return [
            evaluate_eligibility(terms, as_of_date)
            for terms in self.candidate_terms(organization_id)
        ]

    def find_eligible_on(self, organization_id: UUID, as_of_date: date) -> list[EligibilityResult]:
        results = self.evaluate_on(organization_id, as_of_date)
        eligible = [r for r in results if r.is_eligible]
        logger.info(
            "eligible_contracts_found",
            extra={
                "organization_id": str(organization_id),
                "as_of_date": as_of_date.isoformat(),
                "candidates": len(results),
                "eligible": len(eligible),
            },
        )
        return eligible

    def find_eligible(
        self,
        organization_id: UUID,
        as_of: datetime,
        timezone: str,
    ) -> list[EligibilityResult]:
        """Contracts due for a drawdown at ``as_of`` in ``timezone``."""
        return self.find_eligible_on(organization_id, local_date(as_of, timezone))
