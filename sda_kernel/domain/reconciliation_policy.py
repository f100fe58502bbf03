"""
Reconciliation policy: map regulator responses onto statuses.

This is business policy applied by callers of ClaimLifecycleManager; the
manager itself never infers a claim status from totals.

Architecture: sda_kernel/domain.  ZERO I/O.
"""

from __future__ import annotations

from sda_kernel.domain.types import ReconciliationTotals
from sda_kernel.models.claim import ClaimStatus

PAID_RESPONSES = frozenset({"success", "approved", "paid"})
REJECTED_RESPONSES = frozenset({"rejected", "denied"})


def classify_response_status(response_status: str | None) -> str:
    """Classify one response line as ``paid``, ``rejected`` or ``error``."""
    normalized = (response_status or "").strip().lower()
    if normalized in PAID_RESPONSES:
        return "paid"
    if normalized in REJECTED_RESPONSES:
        return "rejected"
    return "error"


def resolve_claim_status(
    totals: ReconciliationTotals,
    transaction_count: int,
) -> ClaimStatus:
    """Claim status implied by reconciliation totals.

    All paid -> PAID; all rejected -> REJECTED; some paid with any
    rejections or errors -> PARTIALLY_PAID; otherwise PROCESSED.
    """
    if transaction_count > 0 and totals.total_paid == transaction_count:
        return ClaimStatus.PAID
    if transaction_count > 0 and totals.total_rejected == transaction_count:
        return ClaimStatus.REJECTED
    if totals.total_paid > 0 and (totals.total_rejected > 0 or totals.total_errors > 0):
        return ClaimStatus.PARTIALLY_PAID
    return ClaimStatus.PROCESSED
