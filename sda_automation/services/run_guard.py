"""
BillingCycleRunner -- at-most-once-per-day billing cycle guard.

Contract:
    ``run(settings)`` decides whether an organization's billing cycle
    should execute now, executes it in a single database transaction, and
    records exactly one AutomationLog row for the local run date.  Each
    invocation is short-lived; an external trigger (cron, HTTP) calls it.

Architecture: sda_automation/services.  Drives sda_kernel selectors and
    services; owns the transaction boundary (commit / rollback / close).

Invariants enforced:
    - At most one AutomationLog per (organization_id, local run_date),
      backed by the UNIQUE constraint.  A lost race rolls back the whole
      cycle, including its transactions, and reports ``already_ran_today``.
    - A fatal error rolls back, writes no log, attempts the failure
      notification, and re-raises.
    - Notifications go out only after commit and never fail the run.
    - All timestamps come from the injected Clock; durations use
      ``time.monotonic()``.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import date
from enum import Enum
from uuid import UUID, uuid4

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from sda_config.schema import AutomationSettings, EngineSettings
from sda_kernel.domain.clock import Clock, SystemClock
from sda_kernel.domain.eligibility import is_run_minute, local_date
from sda_kernel.domain.types import DrawdownRunSummary
from sda_kernel.logging_config import LogContext, get_logger
from sda_kernel.models.automation_log import AutomationLog, RunStatus
from sda_kernel.selectors.contract_selector import ContractSelector
from sda_kernel.services.drawdown_generator import DrawdownGenerator
from sda_kernel.services.identifier_allocator import (
    IdentifierAllocator,
    is_unique_violation,
)

from sda_automation.notifications import LoggingNotifier, NotificationResult, Notifier
from sda_automation.summary import build_run_summary

logger = get_logger("automation.run_guard")


class CycleOutcome(str, Enum):
    """What happened to one organization's cycle."""

    COMPLETED = "completed"
    SKIPPED = "skipped"
    FAILED = "failed"


class SkipReason(str, Enum):
    AUTOMATION_DISABLED = "automation_disabled"
    NOT_SCHEDULED_TIME = "not_scheduled_time"
    ALREADY_RAN_TODAY = "already_ran_today"


@dataclass(frozen=True)
class CycleResult:
    """Result of one ``run()`` call for one organization."""

    organization_id: UUID
    run_date: date
    outcome: CycleOutcome
    skip_reason: SkipReason | None = None
    summary: DrawdownRunSummary | None = None
    log_id: UUID | None = None
    execution_time_ms: int = 0
    notification: NotificationResult | None = None
    error: str | None = None

    @property
    def status(self) -> str:
        """``skipped``, ``failed`` or the run status of a completed cycle."""
        if self.outcome == CycleOutcome.COMPLETED and self.summary is not None:
            return self.summary.status.value
        return self.outcome.value


class BillingCycleRunner:
    """Runs the daily billing cycle for one or more organizations.

    Non-goals:
        - NOT a scheduler: no threads, no polling loop.
        - Does NOT read configuration; settings are passed in.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        clock: Clock | None = None,
        notifier: Notifier | None = None,
        engine_settings: EngineSettings | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._notifier = notifier or LoggingNotifier()
        self._engine = engine_settings or EngineSettings()
        self._sleep = sleep

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def run(self, settings: AutomationSettings, force: bool = False) -> CycleResult:
        """
        Execute the cycle for one organization if it is due.

        ``force`` bypasses the run-minute check only; the once-per-day
        guard still applies.

        Raises:
            Exception: any fatal error, after rollback and the failure
                notification.
        """
        now = self._clock.now_utc()
        run_date = local_date(now, settings.timezone)
        organization_id = settings.organization_id

        with LogContext.bind(organization_id=str(organization_id), run_id=str(uuid4())):
            if not settings.enabled:
                return self._skipped(settings, run_date, SkipReason.AUTOMATION_DISABLED)
            if not force and not is_run_minute(now, settings.run_time, settings.timezone):
                return self._skipped(settings, run_date, SkipReason.NOT_SCHEDULED_TIME)

            session = self._session_factory()
            try:
                if self._already_ran(session, organization_id, run_date):
                    session.rollback()
                    return self._skipped(settings, run_date, SkipReason.ALREADY_RAN_TODAY)

                started = time.monotonic()
                summary = self._execute(session, organization_id, run_date)
                elapsed_ms = int((time.monotonic() - started) * 1000)

                narrative = build_run_summary(
                    summary, settings.organization_name, now, settings.timezone
                )
                log = AutomationLog(
                    organization_id=organization_id,
                    run_date=run_date,
                    executed_at=now,
                    status=summary.status.value,
                    contracts_processed=summary.processed_contracts,
                    contracts_skipped=summary.skipped_contracts,
                    contracts_failed=summary.failed_transactions,
                    transactions_created=summary.successful_transactions,
                    total_amount=summary.total_amount,
                    execution_time_ms=elapsed_ms,
                    errors_json=[e.to_dict() for e in summary.errors],
                    summary=narrative,
                )
                session.add(log)
                session.flush()
                log_id = log.id
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                if is_unique_violation(exc):
                    logger.warning(
                        "billing_cycle_lost_race",
                        extra={"run_date": run_date.isoformat()},
                    )
                    return self._skipped(settings, run_date, SkipReason.ALREADY_RAN_TODAY)
                self._report_fatal(settings, run_date, exc)
                raise
            except Exception as exc:
                session.rollback()
                self._report_fatal(settings, run_date, exc)
                raise
            finally:
                session.close()

            logger.info(
                "billing_cycle_completed",
                extra={
                    "run_date": run_date.isoformat(),
                    "status": summary.status.value,
                    "transactions_created": summary.successful_transactions,
                    "total_amount": str(summary.total_amount),
                    "duration_ms": elapsed_ms,
                },
            )
            notification = self._notify_completion(settings, summary, narrative)
            return CycleResult(
                organization_id=organization_id,
                run_date=run_date,
                outcome=CycleOutcome.COMPLETED,
                summary=summary,
                log_id=log_id,
                execution_time_ms=elapsed_ms,
                notification=notification,
            )

    def run_all(
        self,
        settings_list: Iterable[AutomationSettings],
        force: bool = False,
    ) -> list[CycleResult]:
        """Run every organization in turn; one fatal failure does not stop the rest."""
        results: list[CycleResult] = []
        for settings in settings_list:
            try:
                results.append(self.run(settings, force=force))
            except Exception as exc:
                results.append(
                    CycleResult(
                        organization_id=settings.organization_id,
                        run_date=local_date(self._clock.now_utc(), settings.timezone),
                        outcome=CycleOutcome.FAILED,
                        error=str(exc),
                    )
                )

        logger.info(
            "billing_cycle_batch_completed",
            extra={
                "organizations": len(results),
                "completed": sum(r.outcome == CycleOutcome.COMPLETED for r in results),
                "skipped": sum(r.outcome == CycleOutcome.SKIPPED for r in results),
                "failed": sum(r.outcome == CycleOutcome.FAILED for r in results),
            },
        )
        return results

    def reset_today(self, settings: AutomationSettings) -> bool:
        """Delete today's log row so the cycle can run again.

        Transactions created by the earlier run are left in place.
        Returns True when a row was deleted.
        """
        run_date = local_date(self._clock.now_utc(), settings.timezone)
        session = self._session_factory()
        try:
            result = session.execute(
                delete(AutomationLog).where(
                    AutomationLog.organization_id == settings.organization_id,
                    AutomationLog.run_date == run_date,
                )
            )
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

        deleted = result.rowcount > 0
        logger.info(
            "billing_cycle_log_reset",
            extra={
                "organization_id": str(settings.organization_id),
                "run_date": run_date.isoformat(),
                "deleted": deleted,
            },
        )
        return deleted

    def last_log(self, settings: AutomationSettings) -> AutomationLog | None:
        """Most recent run log for the organization (detached)."""
        session = self._session_factory()
        try:
            log = session.execute(
                select(AutomationLog)
                .where(AutomationLog.organization_id == settings.organization_id)
                .order_by(AutomationLog.run_date.desc())
                .limit(1)
            ).scalar_one_or_none()
            if log is not None:
                session.expunge(log)
            return log
        finally:
            session.close()

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _already_ran(self, session: Session, organization_id: UUID, run_date: date) -> bool:
        return (
            session.execute(
                select(AutomationLog.id).where(
                    AutomationLog.organization_id == organization_id,
                    AutomationLog.run_date == run_date,
                )
            ).first()
            is not None
        )

    def _execute(
        self,
        session: Session,
        organization_id: UUID,
        run_date: date,
    ) -> DrawdownRunSummary:
        allocator = IdentifierAllocator(
            session,
            max_attempts=self._engine.id_max_attempts,
            backoff_seconds=self._engine.id_backoff_seconds,
            sleep=self._sleep,
        )
        eligible = ContractSelector(session).find_eligible_on(organization_id, run_date)
        generator = DrawdownGenerator(session, clock=self._clock, allocator=allocator)
        return generator.generate(organization_id, eligible, run_date)

    def _skipped(
        self,
        settings: AutomationSettings,
        run_date: date,
        reason: SkipReason,
    ) -> CycleResult:
        logger.info(
            "billing_cycle_skipped",
            extra={"run_date": run_date.isoformat(), "reason": reason.value},
        )
        return CycleResult(
            organization_id=settings.organization_id,
            run_date=run_date,
            outcome=CycleOutcome.SKIPPED,
            skip_reason=reason,
        )

    def _notify_completion(
        self,
        settings: AutomationSettings,
        summary: DrawdownRunSummary,
        narrative: str,
    ) -> NotificationResult | None:
        wanted = {
            RunStatus.SUCCESS: settings.notify_on_success,
            RunStatus.PARTIAL: settings.notify_on_partial,
            RunStatus.FAILED: settings.notify_on_failure,
        }[summary.status]
        if not wanted:
            return None
        return self._notifier.send_completion_report(settings, summary, narrative)

    def _report_fatal(
        self,
        settings: AutomationSettings,
        run_date: date,
        exc: Exception,
    ) -> None:
        logger.exception(
            "billing_cycle_failed",
            extra={"run_date": run_date.isoformat(), "error_message": str(exc)},
        )
        if settings.notify_on_failure:
            self._notifier.send_failure_report(settings, str(exc))
