"""
Narrative summary of a billing-cycle run.

Pure text formatting over ``DrawdownRunSummary``.  The narrative is stored
on the AutomationLog row and used as the plain-text notification body.
"""

from __future__ import annotations

from datetime import datetime
from zoneinfo import ZoneInfo

from sda_kernel.domain.types import DrawdownRunSummary

MAX_LISTED_ERRORS = 10


def _plural(count: int, word: str) -> str:
    return f"{count} {word}" if count == 1 else f"{count} {word}s"


def build_run_summary(
    summary: DrawdownRunSummary,
    organization_name: str,
    executed_at: datetime,
    timezone_name: str,
) -> str:
    """
    Render the operator-facing narrative for a run.

    Sections: SUMMARY, FREQUENCY BREAKDOWN (only when transactions were
    created), ERRORS (the first ten, then a count of the rest).
    """
    local = executed_at.astimezone(ZoneInfo(timezone_name))
    lines = [
        f"Automated Billing Run - {organization_name}",
        local.strftime("%A, %d %B %Y at %H:%M %Z"),
        "",
        "SUMMARY",
        f"- Contracts Processed: {summary.processed_contracts}",
        f"- Successful Transactions: {summary.successful_transactions}",
        f"- Failed Transactions: {summary.failed_transactions}",
        f"- Skipped Contracts: {summary.skipped_contracts}",
        f"- Total Amount: ${summary.total_amount:,.2f}",
        f"- Status: {summary.status.value}",
        "",
    ]

    if summary.frequency_breakdown:
        lines.append("FREQUENCY BREAKDOWN")
        for rate, count in sorted(summary.frequency_breakdown.items()):
            lines.append(f"- {rate}: {_plural(count, 'transaction')}")
        lines.append("")

    if summary.errors:
        lines.append(f"ERRORS ({len(summary.errors)})")
        for index, error in enumerate(summary.errors[:MAX_LISTED_ERRORS], start=1):
            lines.append(f"{index}. Contract {error.contract_id}: {error.message}")
        remaining = len(summary.errors) - MAX_LISTED_ERRORS
        if remaining > 0:
            lines.append(f"... and {remaining} more errors")
    else:
        lines.append("No errors encountered")

    return "\n".join(lines) + "\n"


def completion_subject(summary: DrawdownRunSummary) -> str:
    if summary.failed_transactions > 0:
        return (
            f"Automation Run Completed with Errors - "
            f"{summary.successful_transactions} Success, "
            f"{summary.failed_transactions} Failed"
        )
    return (
        f"Automation Run Completed Successfully - "
        f"{_plural(summary.successful_transactions, 'Transaction')} Created"
    )


FAILURE_SUBJECT = "Automation Run Failed - Critical Error"
