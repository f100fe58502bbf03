"""
Contract rate arithmetic.

Contract:
    Pure Decimal functions.  No I/O, no floats.  Every monetary result is
    quantized to cents with ROUND_HALF_UP.

Architecture: sda_kernel/domain.  ZERO I/O.
"""

from __future__ import annotations

import calendar
from datetime import date
from decimal import ROUND_HALF_UP, Decimal

from sda_kernel.domain.types import ContractRate, ContractTerms
from sda_kernel.exceptions import InvalidContractRateError
from sda_kernel.models.funding_contract import DrawdownRate

CENT = Decimal("0.01")

_DAYS_PER_PERIOD = {
    DrawdownRate.DAILY: 1,
    DrawdownRate.WEEKLY: 7,
    DrawdownRate.FORTNIGHTLY: 14,
}


def to_cents(amount: Decimal) -> Decimal:
    """Quantize an amount to cents (ROUND_HALF_UP)."""
    return Decimal(amount).quantize(CENT, rounding=ROUND_HALF_UP)


def calculate_contract_rates(
    contract_id: str,
    amount: Decimal,
    start_date: date | None,
    end_date: date | None,
) -> ContractRate:
    """Derive the daily rate from the contract amount and its duration.

    Duration counts both start and end dates.

    Raises:
        InvalidContractRateError: amount not positive, dates missing, or
            end date not after start date.
    """
    if amount is None or Decimal(amount) <= 0:
        raise InvalidContractRateError(contract_id, "Contract amount must be greater than 0")
    if start_date is None:
        raise InvalidContractRateError(contract_id, "Contract start date is required")
    if end_date is None:
        raise InvalidContractRateError(
            contract_id, "Contract end date is required for automatic calculation"
        )
    if start_date >= end_date:
        raise InvalidContractRateError(contract_id, "End date must be after start date")

    total_days = (end_date - start_date).days + 1
    daily = Decimal(amount) / total_days
    return ContractRate(
        daily_rate=to_cents(daily),
        weekly_rate=to_cents(daily * 7),
        fortnightly_rate=to_cents(daily * 14),
        total_days=total_days,
    )


def daily_rate_for(terms: ContractTerms) -> Decimal:
    """Daily cost for a contract: the stored cost, else the derived rate."""
    if terms.daily_support_item_cost is not None and terms.daily_support_item_cost > 0:
        return to_cents(terms.daily_support_item_cost)
    rate = calculate_contract_rates(
        str(terms.contract_id),
        terms.original_amount,
        terms.start_date,
        terms.end_date,
    )
    return rate.daily_rate


# =============================================================================
# Monthly calendar arithmetic
# =============================================================================


def add_months(start: date, months: int, anchor_day: int | None = None) -> date:
    """Same calendar day ``months`` later, clamped at month end.

    ``anchor_day`` restores the intended day after an earlier clamp, e.g.
    a contract anchored on the 31st that last ran on 29 Feb is next due on
    31 Mar.
    """
    day = anchor_day or start.day
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day, last_day))


def monthly_anchor_day(start_date: date, last_drawdown_date: date | None) -> int:
    """Calendar day a monthly contract recurs on.

    The last drawdown day is used unless it sits on a clamped month end
    and the contract started on a later day of the month.
    """
    if last_drawdown_date is None:
        return start_date.day
    last_day = calendar.monthrange(last_drawdown_date.year, last_drawdown_date.month)[1]
    if last_drawdown_date.day == last_day and start_date.day > last_drawdown_date.day:
        return start_date.day
    return last_drawdown_date.day


def next_monthly_due(start_date: date, last_drawdown_date: date | None) -> date:
    """Next monthly due date after the last drawdown (or the start date)."""
    if last_drawdown_date is None:
        return start_date
    anchor = monthly_anchor_day(start_date, last_drawdown_date)
    return add_months(last_drawdown_date, 1, anchor)


def period_days(terms: ContractTerms) -> int:
    """Number of days one drawdown covers for the contract cadence.

    Monthly drawdowns cover the days in the elapsed monthly cycle: from
    the last drawdown (or the start date) to the next monthly due date.
    """
    rate = terms.drawdown_rate
    if rate in _DAYS_PER_PERIOD:
        return _DAYS_PER_PERIOD[rate]
    base = terms.last_drawdown_date or terms.start_date
    anchor = monthly_anchor_day(terms.start_date, terms.last_drawdown_date)
    return (add_months(base, 1, anchor) - base).days


def drawdown_amount(terms: ContractTerms) -> Decimal:
    """Amount of one drawdown: daily rate times the days the cadence covers.

    Raises:
        InvalidContractRateError: no stored cost and no derivable rate.
    """
    return to_cents(daily_rate_for(terms) * period_days(terms))
