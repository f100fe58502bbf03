"""Tests for contract rate arithmetic (sda_kernel/domain/rates.py)."""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from sda_kernel.domain.rates import (
    add_months,
    calculate_contract_rates,
    drawdown_amount,
    period_days,
    to_cents,
)
from sda_kernel.domain.types import ContractTerms
from sda_kernel.exceptions import InvalidContractRateError
from sda_kernel.models.funding_contract import ContractStatus, DrawdownRate


def _terms(rate: DrawdownRate, **overrides) -> ContractTerms:
    values = dict(
        contract_id=uuid4(),
        resident_id=uuid4(),
        status=ContractStatus.ACTIVE,
        auto_drawdown=True,
        drawdown_rate=rate,
        original_amount=Decimal("3650.00"),
        current_balance=Decimal("3650.00"),
        start_date=date(2024, 1, 1),
        end_date=date(2024, 12, 31),
        daily_support_item_cost=Decimal("12.50"),
    )
    values.update(overrides)
    return ContractTerms(**values)


class TestCalculateContractRates:

    def test_inclusive_day_count(self):
        rate = calculate_contract_rates("c", Decimal("3650.00"), date(2023, 1, 1), date(2023, 12, 31))
        assert rate.total_days == 365
        assert rate.daily_rate == Decimal("10.00")
        assert rate.weekly_rate == Decimal("70.00")
        assert rate.fortnightly_rate == Decimal("140.00")

    def test_rounds_half_up(self):
        rate = calculate_contract_rates("c", Decimal("1000.00"), date(2024, 1, 1), date(2024, 1, 3))
        assert rate.daily_rate == Decimal("333.33")
        assert rate.weekly_rate == Decimal("2333.33")
        assert rate.fortnightly_rate == Decimal("4666.67")

    def test_weekly_from_unrounded_daily(self):
        rate = calculate_contract_rates("c", Decimal("3650.00"), date(2024, 1, 1), date(2024, 12, 31))
        assert rate.total_days == 366
        assert rate.daily_rate == Decimal("9.97")
        assert rate.weekly_rate == Decimal("69.81")

    @pytest.mark.parametrize(
        "amount, start, end, reason",
        [
            (Decimal("0"), date(2024, 1, 1), date(2024, 2, 1), "greater than 0"),
            (Decimal("-5"), date(2024, 1, 1), date(2024, 2, 1), "greater than 0"),
            (None, date(2024, 1, 1), date(2024, 2, 1), "greater than 0"),
            (Decimal("100"), None, date(2024, 2, 1), "start date is required"),
            (Decimal("100"), date(2024, 1, 1), None, "end date is required"),
            (Decimal("100"), date(2024, 2, 1), date(2024, 2, 1), "after start date"),
            (Decimal("100"), date(2024, 3, 1), date(2024, 2, 1), "after start date"),
        ],
    )
    def test_invalid_inputs(self, amount, start, end, reason):
        with pytest.raises(InvalidContractRateError) as exc_info:
            calculate_contract_rates("c-9", amount, start, end)
        assert reason in exc_info.value.reason
        assert exc_info.value.contract_id == "c-9"


class TestDrawdownAmount:

    @pytest.mark.parametrize(
        "rate, expected",
        [
            (DrawdownRate.DAILY, Decimal("12.50")),
            (DrawdownRate.WEEKLY, Decimal("87.50")),
            (DrawdownRate.FORTNIGHTLY, Decimal("175.00")),
        ],
    )
    def test_fixed_periods(self, rate, expected):
        assert drawdown_amount(_terms(rate)) == expected

    def test_monthly_uses_cycle_length(self):
        terms = _terms(DrawdownRate.MONTHLY, last_drawdown_date=date(2024, 2, 1))
        assert period_days(terms) == 29
        assert drawdown_amount(terms) == Decimal("362.50")

    def test_monthly_first_cycle_from_start(self):
        terms = _terms(DrawdownRate.MONTHLY, start_date=date(2024, 4, 1))
        assert period_days(terms) == 30

    def test_derived_when_cost_missing(self):
        terms = _terms(DrawdownRate.WEEKLY, daily_support_item_cost=None)
        assert drawdown_amount(terms) == Decimal("69.79")

    def test_derived_requires_end_date(self):
        terms = _terms(DrawdownRate.DAILY, daily_support_item_cost=None, end_date=None)
        with pytest.raises(InvalidContractRateError):
            drawdown_amount(terms)


class TestCalendarHelpers:

    def test_add_months_clamps(self):
        assert add_months(date(2024, 1, 31), 1) == date(2024, 2, 29)
        assert add_months(date(2023, 1, 31), 1) == date(2023, 2, 28)

    def test_add_months_crosses_year(self):
        assert add_months(date(2024, 12, 15), 1) == date(2025, 1, 15)

    def test_anchor_day_restored(self):
        assert add_months(date(2024, 2, 29), 1, anchor_day=31) == date(2024, 3, 31)

    def test_to_cents(self):
        assert to_cents(Decimal("1.005")) == Decimal("1.01")
        assert to_cents(Decimal("1.004")) == Decimal("1.00")
