"""Tests for the regulator response policy helpers."""

import pytest

from sda_kernel.domain.reconciliation_policy import (
    classify_response_status,
    resolve_claim_status,
)
from sda_kernel.domain.types import ReconciliationTotals
from sda_kernel.models.claim import ClaimStatus


class TestClassifyResponseStatus:

    @pytest.mark.parametrize("raw", ["success", "Approved", " PAID "])
    def test_paid(self, raw):
        assert classify_response_status(raw) == "paid"

    @pytest.mark.parametrize("raw", ["rejected", "Denied"])
    def test_rejected(self, raw):
        assert classify_response_status(raw) == "rejected"

    @pytest.mark.parametrize("raw", ["pending", "", None])
    def test_anything_else_is_error(self, raw):
        assert classify_response_status(raw) == "error"


class TestResolveClaimStatus:

    def test_all_paid(self):
        totals = ReconciliationTotals(total_processed=3, total_paid=3)
        assert resolve_claim_status(totals, 3) == ClaimStatus.PAID

    def test_all_rejected(self):
        totals = ReconciliationTotals(total_processed=2, total_rejected=2)
        assert resolve_claim_status(totals, 2) == ClaimStatus.REJECTED

    def test_mixed(self):
        totals = ReconciliationTotals(total_processed=3, total_paid=2, total_rejected=1)
        assert resolve_claim_status(totals, 3) == ClaimStatus.PARTIALLY_PAID

    def test_paid_with_errors(self):
        totals = ReconciliationTotals(total_processed=3, total_paid=2, total_errors=1)
        assert resolve_claim_status(totals, 3) == ClaimStatus.PARTIALLY_PAID

    def test_incomplete_response(self):
        totals = ReconciliationTotals(total_processed=1, total_paid=1)
        assert resolve_claim_status(totals, 3) == ClaimStatus.PROCESSED

    def test_nothing_matched(self):
        totals = ReconciliationTotals(total_unmatched=4)
        assert resolve_claim_status(totals, 3) == ClaimStatus.PROCESSED

    def test_empty_claim_never_paid(self):
        assert resolve_claim_status(ReconciliationTotals(), 0) == ClaimStatus.PROCESSED
