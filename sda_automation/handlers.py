"""
Request handlers -- the trigger surface of the engine.

Contract:
    Every handler returns an ``ApiResponse`` envelope and never raises.
    Each handler call is one unit of work: it opens a session, commits on
    success and rolls back on any error.

Error mapping:
    - ``*NotFoundError``                       -> 404
    - ``IdentifierAllocationExhaustedError``   -> 503 (transient contention)
    - other ``SdaKernelError`` / ``ValueError`` -> 400 (business rule or input)
    - anything else                             -> 500
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from contextlib import contextmanager
from dataclasses import asdict, dataclass
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, Generator, TypeVar
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from sda_config.schema import AutomationSettings
from sda_kernel.domain.clock import Clock, SystemClock
from sda_kernel.domain.rates import calculate_contract_rates
from sda_kernel.domain.reconciliation_policy import (
    classify_response_status,
    resolve_claim_status,
)
from sda_kernel.domain.types import ClaimFilters, ReconciliationTotals, TransactionOutcome
from sda_kernel.exceptions import (
    ClaimNotFoundError,
    ContractNotFoundError,
    IdentifierAllocationExhaustedError,
    SdaKernelError,
    TransactionNotFoundError,
)
from sda_kernel.logging_config import LogContext, get_logger
from sda_kernel.models.claim import ClaimStatus
from sda_kernel.models.transaction import Transaction, TransactionStatus
from sda_kernel.services.claim_lifecycle import ClaimLifecycleManager
from sda_kernel.services.claim_packager import ClaimPackager
from sda_kernel.services.drawdown_generator import DrawdownGenerator

from sda_automation.services.run_guard import BillingCycleRunner, CycleResult

logger = get_logger("automation.handlers")

T = TypeVar("T")

_NOT_FOUND = (ClaimNotFoundError, ContractNotFoundError, TransactionNotFoundError)


@dataclass(frozen=True)
class ApiResponse:
    """Response envelope returned by every handler."""

    success: bool
    data: Any = None
    error: str | None = None
    error_code: str | None = None
    status_code: int = 200

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def status_for(exc: Exception) -> int:
    if isinstance(exc, _NOT_FOUND):
        return 404
    if isinstance(exc, IdentifierAllocationExhaustedError):
        return 503
    if isinstance(exc, (SdaKernelError, ValueError, InvalidOperation)):
        return 400
    return 500


def error_response(exc: Exception) -> ApiResponse:
    status = status_for(exc)
    code = exc.code if isinstance(exc, SdaKernelError) else None
    if status == 500:
        logger.exception("handler_unexpected_error")
        message = "Internal server error"
    else:
        logger.warning(
            "handler_request_rejected",
            extra={"error_code": code, "error_message": str(exc), "status_code": status},
        )
        message = str(exc)
    return ApiResponse(success=False, error=message, error_code=code, status_code=status)


def _cycle_payload(result: CycleResult) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "organization_id": str(result.organization_id),
        "run_date": result.run_date.isoformat(),
        "status": result.status,
        "skip_reason": result.skip_reason.value if result.skip_reason else None,
        "execution_time_ms": result.execution_time_ms,
        "error": result.error,
    }
    summary = result.summary
    if summary is not None:
        payload.update(
            processed_contracts=summary.processed_contracts,
            successful_transactions=summary.successful_transactions,
            failed_transactions=summary.failed_transactions,
            skipped_contracts=summary.skipped_contracts,
            total_amount=str(summary.total_amount),
            average_amount=str(summary.average_amount),
            frequency_breakdown=dict(summary.frequency_breakdown),
            errors=[e.to_dict() for e in summary.errors],
            transaction_numbers=[t.transaction_number for t in summary.transactions],
        )
    return payload


class RequestHandlers:
    """Handlers bound to a session factory, a clock and a billing-cycle runner."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        runner: BillingCycleRunner | None = None,
        clock: Clock | None = None,
    ):
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._runner = runner or BillingCycleRunner(session_factory, clock=self._clock)

    @contextmanager
    def _unit_of_work(self) -> Generator[Session, None, None]:
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def _handle(self, operation: Callable[[], T], status_code: int = 200) -> ApiResponse:
        try:
            data = operation()
        except Exception as exc:
            return error_response(exc)
        return ApiResponse(success=True, data=data, status_code=status_code)

    # -------------------------------------------------------------------------
    # Billing cycle
    # -------------------------------------------------------------------------

    def trigger_billing_run(
        self,
        settings_list: Iterable[AutomationSettings],
        force: bool = False,
    ) -> ApiResponse:
        """Cron / run-now entrypoint.  Per-organization failures are in the payload."""
        return self._handle(
            lambda: [_cycle_payload(r) for r in self._runner.run_all(settings_list, force=force)]
        )

    def reset_todays_log(self, settings: AutomationSettings) -> ApiResponse:
        return self._handle(lambda: {"deleted": self._runner.reset_today(settings)})

    def preview_drawdowns(self, settings: AutomationSettings, days: int = 1) -> ApiResponse:
        """Drawdowns the next ``days`` cycles would generate.  Writes nothing."""

        def operation() -> dict[str, Any]:
            if days < 1:
                raise ValueError("days must be at least 1")
            with self._unit_of_work() as session:
                plan = DrawdownGenerator(session, clock=self._clock).preview_days(
                    settings.organization_id,
                    self._clock.now_utc(),
                    settings.timezone,
                    days=days,
                )
            return {
                day.isoformat(): [
                    {
                        "contract_id": str(p.contract_id),
                        "resident_id": str(p.resident_id),
                        "drawdown_rate": p.drawdown_rate.value,
                        "amount": str(p.amount),
                        "balance_before": str(p.balance_before),
                        "balance_after": str(p.balance_after),
                    }
                    for p in planned
                ]
                for day, planned in plan.items()
            }

        return self._handle(operation)

    def calculate_rates(
        self,
        amount: Decimal,
        start_date: date | None,
        end_date: date | None,
    ) -> ApiResponse:
        def operation() -> dict[str, Any]:
            value = Decimal(str(amount)) if amount is not None else None
            rate = calculate_contract_rates("unsaved", value, start_date, end_date)
            return {
                "daily_rate": str(rate.daily_rate),
                "weekly_rate": str(rate.weekly_rate),
                "fortnightly_rate": str(rate.fortnightly_rate),
                "total_days": rate.total_days,
            }

        return self._handle(operation)

    # -------------------------------------------------------------------------
    # Claims
    # -------------------------------------------------------------------------

    def eligible_transactions(
        self,
        organization_id: UUID,
        filters: ClaimFilters,
        timezone_name: str = "UTC",
    ) -> ApiResponse:
        def operation() -> dict[str, Any]:
            with self._unit_of_work() as session:
                views = ClaimPackager(session, clock=self._clock).find_eligible_transactions(
                    organization_id, filters, timezone_name
                )
            total = sum((v.amount for v in views), Decimal("0.00"))
            return {
                "transaction_count": len(views),
                "total_amount": str(total),
                "transactions": [
                    {
                        "id": str(v.transaction_id),
                        "transaction_number": v.transaction_number,
                        "resident_id": str(v.resident_id),
                        "amount": str(v.amount),
                        "occurred_at": v.occurred_at.isoformat(),
                    }
                    for v in views
                ],
            }

        return self._handle(operation)

    def create_claim(
        self,
        organization_id: UUID,
        filters: ClaimFilters,
        actor_id: UUID,
        timezone_name: str = "UTC",
    ) -> ApiResponse:
        def operation() -> dict[str, Any]:
            with LogContext.bind(organization_id=str(organization_id), actor_id=str(actor_id)):
                with self._unit_of_work() as session:
                    package = ClaimPackager(session, clock=self._clock).create_claim(
                        organization_id, filters, actor_id, timezone_name
                    )
            return {
                "claim_id": str(package.claim_id),
                "claim_number": package.claim_number,
                "transaction_count": package.transaction_count,
                "total_amount": str(package.total_amount),
            }

        return self._handle(operation, status_code=201)

    def transition_claim(
        self,
        organization_id: UUID,
        claim_id: UUID,
        target: str,
        actor_id: UUID,
    ) -> ApiResponse:
        def operation() -> dict[str, Any]:
            status = ClaimStatus(target)
            with self._unit_of_work() as session:
                claim = ClaimLifecycleManager(session, clock=self._clock).transition(
                    organization_id, claim_id, status, actor_id
                )
                return {"claim_id": str(claim.id), "status": claim.status}

        return self._handle(operation)

    def submit_claim(
        self,
        organization_id: UUID,
        claim_id: UUID,
        actor_id: UUID,
        automated: bool = False,
    ) -> ApiResponse:
        def operation() -> dict[str, Any]:
            with self._unit_of_work() as session:
                claim = ClaimLifecycleManager(session, clock=self._clock).mark_submitted(
                    organization_id, claim_id, actor_id, automated=automated
                )
                return {"claim_id": str(claim.id), "status": claim.status}

        return self._handle(operation)

    def record_claim_export(
        self,
        organization_id: UUID,
        claim_id: UUID,
        actor_id: UUID,
    ) -> ApiResponse:
        def operation() -> dict[str, Any]:
            with self._unit_of_work() as session:
                claim = ClaimLifecycleManager(session, clock=self._clock).record_file_generated(
                    organization_id, claim_id, actor_id
                )
                return {
                    "claim_id": str(claim.id),
                    "status": claim.status,
                    "file_generated_at": claim.file_generated_at.isoformat(),
                }

        return self._handle(operation)

    def upload_claim_response(
        self,
        organization_id: UUID,
        claim_id: UUID,
        actor_id: UUID,
        file_name: str,
        rows: Iterable[Mapping[str, Any]],
    ) -> ApiResponse:
        """
        Apply parsed regulator response rows to a claim.

        Each row carries ``transaction_id`` and ``status`` and optionally
        ``note``.  Rows that match no transaction on the claim count as
        unmatched; unknown statuses, repeated rows for a transaction
        already settled by this file and transactions that are not
        picked_up count as errors.  The claim moves to the status the
        reconciliation policy resolves.
        """

        def operation() -> dict[str, Any]:
            rows_list = list(rows)
            with LogContext.bind(claim_id=str(claim_id)), self._unit_of_work() as session:
                manager = ClaimLifecycleManager(session, clock=self._clock)
                claim = manager.get_claim(organization_id, claim_id)
                linked = {
                    str(t.id): t
                    for t in session.execute(
                        select(Transaction).where(Transaction.claim_id == claim.id)
                    ).scalars()
                }

                outcomes: list[TransactionOutcome] = []
                results: list[dict[str, Any]] = []
                unmatched = errors = 0
                seen: set[str] = set()
                for row in rows_list:
                    txn_key = str(row.get("transaction_id", "")).strip()
                    txn = linked.get(txn_key)
                    verdict = classify_response_status(row.get("status"))
                    if txn is None:
                        unmatched += 1
                        results.append({"transaction_id": txn_key, "result": "unmatched"})
                        continue
                    if txn_key in seen:
                        errors += 1
                        results.append(
                            {"transaction_id": txn_key, "result": "error", "error": "Duplicate row"}
                        )
                        continue
                    if verdict == "error":
                        errors += 1
                        results.append(
                            {
                                "transaction_id": txn_key,
                                "result": "error",
                                "error": f"Unknown status: {row.get('status')}",
                            }
                        )
                        continue
                    if txn.status_enum != TransactionStatus.PICKED_UP:
                        errors += 1
                        results.append(
                            {
                                "transaction_id": txn_key,
                                "result": "error",
                                "error": f"Transaction is {txn.status}",
                            }
                        )
                        continue
                    outcomes.append(
                        TransactionOutcome(
                            transaction_id=txn.id,
                            paid=verdict == "paid",
                            note=row.get("note") or None,
                        )
                    )
                    seen.add(txn_key)
                    results.append({"transaction_id": txn_key, "result": verdict})

                applied = manager.apply_transaction_outcomes(
                    organization_id, claim.id, outcomes, actor_id
                )
                totals = ReconciliationTotals(
                    total_processed=len(rows_list),
                    total_paid=applied.total_paid,
                    total_rejected=applied.total_rejected,
                    total_errors=errors,
                    total_unmatched=unmatched,
                )
                target = resolve_claim_status(totals, claim.transaction_count)
                manager.record_reconciliation(
                    organization_id,
                    claim.id,
                    uploaded_by_id=actor_id,
                    file_name=file_name,
                    totals=totals,
                    results={"rows": results},
                    target_status=None if target == claim.status_enum else target,
                )
                return {
                    "claim_id": str(claim.id),
                    "status": claim.status,
                    "total_processed": totals.total_processed,
                    "total_paid": totals.total_paid,
                    "total_rejected": totals.total_rejected,
                    "total_errors": totals.total_errors,
                    "total_unmatched": totals.total_unmatched,
                }

        return self._handle(operation)

    def simulate_completion(
        self,
        organization_id: UUID,
        claim_id: UUID,
        actor_id: UUID,
    ) -> ApiResponse:
        """Mark every picked-up transaction on the claim as paid."""

        def operation() -> dict[str, Any]:
            with self._unit_of_work() as session:
                moved = ClaimLifecycleManager(session, clock=self._clock).mark_transactions_paid(
                    organization_id, claim_id, actor_id
                )
            return {"updated_count": moved}

        return self._handle(operation)
