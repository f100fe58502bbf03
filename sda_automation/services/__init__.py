"""Billing-cycle services."""

from sda_automation.services.run_guard import (
    BillingCycleRunner,
    CycleOutcome,
    CycleResult,
    SkipReason,
)

__all__ = [
    "BillingCycleRunner",
    "CycleOutcome",
    "CycleResult",
    "SkipReason",
]
