"""
DrawdownGenerator -- SAVEPOINT-per-contract drawdown transaction generation.

Responsibility:
    For each eligible contract: re-read and lock the contract, re-check its
    eligibility and balance, allocate a transaction number, insert a draft
    automated transaction, and decrement the balance.  Produces a
    structured DrawdownRunSummary.

Architecture position:
    Kernel > Services.  Called by the billing-cycle run guard.

Invariants enforced:
    - SAVEPOINT isolation per contract: one contract's failure never aborts
      the rest of the run.
    - current_balance never goes negative and never exceeds
      original_amount.
    - One contract per resident per run; later contracts for a resident
      already drawn are reported as skipped.
    - All arithmetic is Decimal quantized to cents.
    - Contracts are processed sequentially in selection order, so errors
      and summaries are deterministic.

Failure modes:
    - Per-contract exceptions are captured as DrawdownError entries.
    - Failures of the SAVEPOINT machinery itself (lost connection)
      propagate to the caller as fatal.
"""

from collections.abc import Iterable, Sequence
from dataclasses import replace
from datetime import date, datetime, timedelta
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from sda_kernel.domain.clock import Clock
from sda_kernel.domain.eligibility import evaluate_eligibility, local_date
from sda_kernel.domain.rates import to_cents
from sda_kernel.domain.types import (
    ContractTerms,
    DrawdownError,
    DrawdownRunSummary,
    EligibilityResult,
    GeneratedTransaction,
    PlannedDrawdown,
)
from sda_kernel.exceptions import (
    ContractNotEligibleError,
    ContractNotFoundError,
    InsufficientBalanceError,
    InvalidDrawdownAmountError,
    SdaKernelError,
)
from sda_kernel.logging_config import get_logger
from sda_kernel.models.funding_contract import FundingContract
from sda_kernel.models.transaction import Transaction, TransactionStatus
from sda_kernel.selectors.contract_selector import ContractSelector
from sda_kernel.services.base import SYSTEM_ACTOR_ID, BaseService
from sda_kernel.services.identifier_allocator import (
    TRANSACTION_NAMESPACE,
    IdentifierAllocator,
)

logger = get_logger("services.drawdown_generator")

DUPLICATE_RESIDENT_CODE = "DUPLICATE_RESIDENT_CONTRACT"
UNHANDLED_CODE = "UNHANDLED_EXCEPTION"


class DrawdownGenerator(BaseService[Transaction]):
    """
    Generates automated drawdown transactions for eligible contracts.

    Contract:
        ``generate()`` takes the eligibility results from ContractSelector
        and returns a DrawdownRunSummary.  ``preview()`` and
        ``preview_days()`` plan drawdowns without writing anything.

    Non-goals:
        - Does NOT call ``session.commit()`` -- the run guard owns the
          transaction.
        - Does NOT decide whether today's run already happened.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        allocator: IdentifierAllocator | None = None,
        actor_id: UUID = SYSTEM_ACTOR_ID,
    ):
        super().__init__(session, clock)
        self._allocator = allocator or IdentifierAllocator(session)
        self._actor_id = actor_id

    # -------------------------------------------------------------------------
    # Generation
    # -------------------------------------------------------------------------

    def run(self, organization_id: UUID, as_of: datetime, timezone: str) -> DrawdownRunSummary:
        """Select eligible contracts at ``as_of`` and generate their drawdowns."""
        run_date = local_date(as_of, timezone)
        eligible = ContractSelector(self.session).find_eligible_on(organization_id, run_date)
        return self.generate(organization_id, eligible, run_date)

    def generate(
        self,
        organization_id: UUID,
        eligible: Sequence[EligibilityResult],
        run_date: date,
    ) -> DrawdownRunSummary:
        """Draw down every contract in ``eligible`` in order."""
        drawn_residents: set[UUID] = set()
        transactions: list[GeneratedTransaction] = []
        errors: list[DrawdownError] = []
        breakdown: dict[str, int] = {}
        skipped = 0
        failed = 0
        total = Decimal("0.00")

        for result in eligible:
            if result.resident_id in drawn_residents:
                skipped += 1
                errors.append(
                    DrawdownError(
                        contract_id=result.contract_id,
                        resident_id=result.resident_id,
                        code=DUPLICATE_RESIDENT_CODE,
                        message="Skipped: duplicate contract for same resident",
                    )
                )
                logger.warning(
                    "drawdown_duplicate_resident_skipped",
                    extra={
                        "contract_id": str(result.contract_id),
                        "resident_id": str(result.resident_id),
                    },
                )
                continue

            savepoint = self.session.begin_nested()
            try:
                generated = self._draw_contract(organization_id, result.contract_id, run_date)
                savepoint.commit()
            except Exception as exc:
                savepoint.rollback()
                failed += 1
                code = exc.code if isinstance(exc, SdaKernelError) else UNHANDLED_CODE
                errors.append(
                    DrawdownError(
                        contract_id=result.contract_id,
                        resident_id=result.resident_id,
                        code=code,
                        message=str(exc),
                    )
                )
                logger.warning(
                    "drawdown_contract_failed",
                    extra={
                        "contract_id": str(result.contract_id),
                        "resident_id": str(result.resident_id),
                        "error_code": code,
                        "error_message": str(exc),
                    },
                )
                continue

            drawn_residents.add(result.resident_id)
            transactions.append(generated)
            total += generated.amount
            rate = generated.drawdown_rate.value
            breakdown[rate] = breakdown.get(rate, 0) + 1

        summary = DrawdownRunSummary(
            processed_contracts=len(eligible),
            successful_transactions=len(transactions),
            failed_transactions=failed,
            skipped_contracts=skipped,
            total_amount=to_cents(total),
            frequency_breakdown=breakdown,
            errors=tuple(errors),
            transactions=tuple(transactions),
        )
        logger.info(
            "drawdown_run_completed",
            extra={
                "organization_id": str(organization_id),
                "run_date": run_date.isoformat(),
                "processed": summary.processed_contracts,
                "successful": summary.successful_transactions,
                "failed": summary.failed_transactions,
                "skipped": summary.skipped_contracts,
                "total_amount": str(summary.total_amount),
                "status": summary.status.value,
            },
        )
        return summary

    def _draw_contract(
        self,
        organization_id: UUID,
        contract_id: UUID,
        run_date: date,
    ) -> GeneratedTransaction:
        """Draw one contract.  Runs inside the caller's SAVEPOINT."""
        contract = self.session.execute(
            select(FundingContract)
            .where(
                FundingContract.organization_id == organization_id,
                FundingContract.id == contract_id,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if contract is None:
            raise ContractNotFoundError(str(contract_id))

        # Re-check against the locked row
        terms = ContractTerms.from_model(contract)
        verdict = evaluate_eligibility(terms, run_date)
        if not verdict.is_eligible:
            raise ContractNotEligibleError(str(contract_id), list(verdict.reasons))

        amount = verdict.drawdown_amount
        if amount is None or amount <= 0:
            raise InvalidDrawdownAmountError(str(contract_id), amount)
        if terms.current_balance < amount:
            raise InsufficientBalanceError(str(contract_id), terms.current_balance, amount)

        occurred_at = self.clock.now_utc()
        rate = terms.drawdown_rate

        def insert(transaction_number: str) -> Transaction:
            txn = Transaction(
                organization_id=organization_id,
                transaction_number=transaction_number,
                resident_id=contract.resident_id,
                contract_id=contract.id,
                amount=amount,
                occurred_at=occurred_at,
                service_code=contract.support_item_code,
                description=f"Automated {rate.value} drawdown",
                status=TransactionStatus.DRAFT.value,
                is_automated=True,
                created_by_id=self._actor_id,
            )
            self.session.add(txn)
            return txn

        txn = self._allocator.allocate(
            TRANSACTION_NAMESPACE, Transaction.transaction_number, insert
        )

        balance_after = to_cents(terms.current_balance - amount)
        contract.current_balance = balance_after
        contract.last_drawdown_date = run_date
        contract.updated_by_id = self._actor_id
        self.session.flush()

        logger.info(
            "drawdown_transaction_created",
            extra={
                "contract_id": str(contract.id),
                "transaction_number": txn.transaction_number,
                "amount": str(amount),
                "balance_after": str(balance_after),
            },
        )
        return GeneratedTransaction(
            transaction_id=txn.id,
            transaction_number=txn.transaction_number,
            contract_id=contract.id,
            resident_id=contract.resident_id,
            amount=amount,
            drawdown_rate=rate,
            balance_after=balance_after,
        )

    # -------------------------------------------------------------------------
    # Preview (read-only)
    # -------------------------------------------------------------------------

    def preview(
        self,
        organization_id: UUID,
        as_of: datetime,
        timezone: str,
    ) -> list[PlannedDrawdown]:
        """Drawdowns a cycle at ``as_of`` would generate.  Writes nothing."""
        run_date = local_date(as_of, timezone)
        terms = ContractSelector(self.session).candidate_terms(organization_id)
        return plan_drawdowns(terms, run_date)

    def preview_days(
        self,
        organization_id: UUID,
        as_of: datetime,
        timezone: str,
        days: int = 3,
    ) -> dict[date, list[PlannedDrawdown]]:
        """Planned drawdowns for ``days`` consecutive local days from ``as_of``.

        Each day's plan assumes the previous days' drawdowns happened.
        """
        start = local_date(as_of, timezone)
        terms = ContractSelector(self.session).candidate_terms(organization_id)
        return plan_drawdown_days(terms, start, days)


# =============================================================================
# Planning (pure)
# =============================================================================


def plan_drawdowns(terms: Iterable[ContractTerms], run_date: date) -> list[PlannedDrawdown]:
    """Pure: the drawdowns due on ``run_date``, one per resident."""
    planned: list[PlannedDrawdown] = []
    residents: set[UUID] = set()
    for contract in terms:
        if contract.resident_id in residents:
            continue
        verdict = evaluate_eligibility(contract, run_date)
        if not verdict.is_eligible or verdict.drawdown_amount is None:
            continue
        residents.add(contract.resident_id)
        planned.append(
            PlannedDrawdown(
                run_date=run_date,
                contract_id=contract.contract_id,
                resident_id=contract.resident_id,
                drawdown_rate=contract.drawdown_rate,
                amount=verdict.drawdown_amount,
                balance_before=contract.current_balance,
                balance_after=to_cents(contract.current_balance - verdict.drawdown_amount),
            )
        )
    return planned


def plan_drawdown_days(
    terms: Iterable[ContractTerms],
    start: date,
    days: int,
) -> dict[date, list[PlannedDrawdown]]:
    """Pure: day-by-day plan, carrying balances and last drawdown dates forward."""
    current = {t.contract_id: t for t in terms}
    order = list(current)
    plan: dict[date, list[PlannedDrawdown]] = {}
    for offset in range(days):
        day = start + timedelta(days=offset)
        planned = plan_drawdowns((current[cid] for cid in order), day)
        plan[day] = planned
        for item in planned:
            before = current[item.contract_id]
            current[item.contract_id] = replace(
                before,
                current_balance=item.balance_after,
                last_drawdown_date=day,
            )
    return plan
