"""
Pure contract eligibility rules for scheduled drawdowns.

Contract:
    ``evaluate_eligibility(terms, as_of_date)`` and ``is_run_minute()`` are
    PURE -- no I/O, no side effects.  The caller supplies the instant and
    the organization timezone; all calendar comparisons use the local date
    in that timezone.

Architecture: sda_kernel/domain.  ZERO I/O.

Rules (all must pass):
    1. status      -- contract is Active
    2. automation  -- auto drawdown is enabled
    3. balance     -- balance > 0 and covers the drawdown amount
    4. date        -- start_date <= local date <= end_date (if set)
    5. cadence     -- the next occurrence implied by drawdown_rate and
                      last_drawdown_date has arrived
"""

from __future__ import annotations

from datetime import date, datetime, timedelta
from decimal import Decimal
from zoneinfo import ZoneInfo

from sda_kernel.domain.rates import drawdown_amount, next_monthly_due
from sda_kernel.domain.types import ContractTerms, EligibilityChecks, EligibilityResult
from sda_kernel.exceptions import InvalidContractRateError
from sda_kernel.models.funding_contract import ContractStatus, DrawdownRate

_CADENCE_DAYS = {
    DrawdownRate.DAILY: 1,
    DrawdownRate.WEEKLY: 7,
    DrawdownRate.FORTNIGHTLY: 14,
}


# =============================================================================
# Run-time gate
# =============================================================================


def local_now(now: datetime, timezone_name: str) -> datetime:
    """Convert an aware instant into wall-clock time in the given timezone."""
    return now.astimezone(ZoneInfo(timezone_name))


def local_date(now: datetime, timezone_name: str) -> date:
    """Calendar date of an instant in the given timezone."""
    return local_now(now, timezone_name).date()


def is_run_minute(now: datetime, run_time: str, timezone_name: str) -> bool:
    """True when local wall-clock HH:MM equals the configured run time."""
    local = local_now(now, timezone_name)
    return local.strftime("%H:%M") == run_time


# =============================================================================
# Cadence
# =============================================================================


def next_due_date(terms: ContractTerms) -> date:
    """Date the next drawdown becomes due.

    A contract that has never been drawn is due from its start date.
    """
    last = terms.last_drawdown_date
    if last is None:
        return terms.start_date
    if terms.drawdown_rate == DrawdownRate.MONTHLY:
        return next_monthly_due(terms.start_date, last)
    return last + timedelta(days=_CADENCE_DAYS[terms.drawdown_rate])


# =============================================================================
# Evaluation
# =============================================================================


def evaluate_eligibility(terms: ContractTerms, as_of_date: date) -> EligibilityResult:
    """Evaluate every rule for one contract on one local date."""
    reasons: list[str] = []

    status_check = terms.status == ContractStatus.ACTIVE
    if not status_check:
        reasons.append(
            f"Contract status is '{terms.status.value}', must be 'Active'"
        )

    automation_check = terms.auto_drawdown
    if not automation_check:
        reasons.append("Automation is not enabled for this contract")

    amount: Decimal | None = None
    balance_check = terms.current_balance > 0
    if not balance_check:
        reasons.append("Contract has insufficient balance")
    try:
        amount = drawdown_amount(terms)
    except InvalidContractRateError as exc:
        balance_check = False
        reasons.append(f"Drawdown amount cannot be determined: {exc.reason}")
    if amount is not None and balance_check and terms.current_balance < amount:
        balance_check = False
        reasons.append(
            f"Balance ({terms.current_balance}) is less than drawdown amount ({amount})"
        )

    date_check = True
    if as_of_date < terms.start_date:
        date_check = False
        reasons.append(f"Contract has not started yet (starts {terms.start_date.isoformat()})")
    if terms.end_date is not None and as_of_date > terms.end_date:
        date_check = False
        reasons.append(f"Contract has ended (ended {terms.end_date.isoformat()})")

    due = next_due_date(terms)
    cadence_check = as_of_date >= due
    if not cadence_check:
        reasons.append(
            f"Next {terms.drawdown_rate.value} drawdown is not due until {due.isoformat()}"
        )

    return EligibilityResult(
        contract_id=terms.contract_id,
        resident_id=terms.resident_id,
        as_of_date=as_of_date,
        checks=EligibilityChecks(
            status_check=status_check,
            automation_check=automation_check,
            balance_check=balance_check,
            date_check=date_check,
            cadence_check=cadence_check,
        ),
        reasons=tuple(reasons),
        drawdown_amount=amount,
        next_due_date=due,
    )


def is_eligible(terms: ContractTerms, now: datetime, timezone_name: str) -> bool:
    """Convenience wrapper: evaluate at an instant in a timezone."""
    return evaluate_eligibility(terms, local_date(now, timezone_name)).is_eligible
