"""
Tests for ClaimPackager.

Covers selection filters (resident, local-day date bounds, include_all),
the picked_up move, aggregate maintenance, and compensation: a claim
never survives with zero linked transactions.
"""

from dataclasses import replace
from datetime import UTC, date, datetime
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import select

from sda_kernel.domain.types import ClaimFilters
from sda_kernel.exceptions import ClaimPackagingError, NoEligibleTransactionsError
from sda_kernel.models.claim import Claim, ClaimStatus
from sda_kernel.models.transaction import TransactionStatus
from sda_kernel.services.claim_packager import ClaimPackager, recalculate_claim_aggregates
from tests.conftest import TEST_ACTOR_ID


def _claims(session):
    return list(session.execute(select(Claim)).scalars())


# =============================================================================
# Packaging
# =============================================================================


class TestCreateClaim:

    @pytest.fixture
    def resident(self):
        return uuid4()

    @pytest.fixture
    def matching(self, make_transaction, resident):
        return [
            make_transaction(amount=Decimal("100.00"), resident_id=resident,
                             occurred_at=datetime(2024, 1, 5, 3, 0, tzinfo=UTC)),
            make_transaction(amount=Decimal("50.00"), resident_id=resident,
                             occurred_at=datetime(2024, 1, 12, 3, 0, tzinfo=UTC)),
            make_transaction(amount=Decimal("25.00"), resident_id=resident,
                             occurred_at=datetime(2024, 2, 1, 3, 0, tzinfo=UTC)),
        ]

    @pytest.fixture
    def noise(self, make_transaction, resident):
        return [
            # Other resident
            make_transaction(amount=Decimal("999.00")),
            # Before date_from
            make_transaction(amount=Decimal("11.00"), resident_id=resident,
                             occurred_at=datetime(2023, 12, 31, 3, 0, tzinfo=UTC)),
            # Already picked up
            make_transaction(amount=Decimal("12.00"), resident_id=resident,
                             status=TransactionStatus.PICKED_UP),
        ]

    def test_packages_resident_since_date(self, session, org_id, resident, matching, noise, deterministic_clock):
        packager = ClaimPackager(session, clock=deterministic_clock)
        filters = ClaimFilters(resident_id=resident, date_from=date(2024, 1, 1))

        package = packager.create_claim(org_id, filters, TEST_ACTOR_ID)

        assert package.total_amount == Decimal("175.00")
        assert package.transaction_count == 3
        assert package.claim_number == "CLM-0000001"
        assert set(package.transaction_ids) == {t.id for t in matching}
        for txn in matching:
            assert txn.status == TransactionStatus.PICKED_UP.value
            assert txn.claim_id == package.claim_id
        for txn in noise:
            assert txn.claim_id is None

    def test_claim_row(self, session, org_id, resident, matching, deterministic_clock):
        filters = ClaimFilters(resident_id=resident)
        package = ClaimPackager(session, clock=deterministic_clock).create_claim(
            org_id, filters, TEST_ACTOR_ID
        )

        claim = session.get(Claim, package.claim_id)
        assert claim.status == ClaimStatus.DRAFT.value
        assert claim.transaction_count == 3
        assert claim.total_amount == Decimal("175.00")
        assert claim.filters_json["resident_id"] == str(resident)
        assert claim.created_by_id == TEST_ACTOR_ID

    def test_preview_matches_packaging(self, session, org_id, resident, matching, noise):
        packager = ClaimPackager(session)
        filters = ClaimFilters(resident_id=resident, date_from=date(2024, 1, 1))
        views = packager.find_eligible_transactions(org_id, filters)
        assert [v.amount for v in views] == [
            Decimal("100.00"), Decimal("50.00"), Decimal("25.00"),
        ]
        assert _claims(session) == []

    def test_include_all_ignores_filters(self, session, org_id, resident, matching, noise):
        filters = ClaimFilters(resident_id=uuid4(), include_all=True)
        package = ClaimPackager(session).create_claim(org_id, filters, TEST_ACTOR_ID)
        # Three matching, the other resident and the pre-date draft
        assert package.transaction_count == 5

    def test_consecutive_claims_take_disjoint_transactions(self, session, org_id, resident, matching):
        packager = ClaimPackager(session)
        first = packager.create_claim(org_id, ClaimFilters(include_all=True), TEST_ACTOR_ID)
        with pytest.raises(NoEligibleTransactionsError):
            packager.create_claim(org_id, ClaimFilters(include_all=True), TEST_ACTOR_ID)
        assert [c.id for c in _claims(session)] == [first.claim_id]

    def test_other_organization_not_selected(self, session, org_id, make_transaction):
        make_transaction(organization_id=uuid4())
        with pytest.raises(NoEligibleTransactionsError):
            ClaimPackager(session).create_claim(org_id, ClaimFilters(include_all=True), TEST_ACTOR_ID)


class TestDateFilters:
    """date_to is inclusive to the end of the local day."""

    def test_date_to_in_local_timezone(self, session, org_id, make_transaction):
        # 23:30 on 10 Feb in Sydney
        inside = make_transaction(occurred_at=datetime(2024, 2, 10, 12, 30, tzinfo=UTC))
        # 01:00 on 11 Feb in Sydney
        make_transaction(occurred_at=datetime(2024, 2, 10, 14, 0, tzinfo=UTC))

        filters = ClaimFilters(date_to=date(2024, 2, 10))
        views = ClaimPackager(session).find_eligible_transactions(
            org_id, filters, "Australia/Sydney"
        )
        assert [v.transaction_id for v in views] == [inside.id]

    def test_date_to_in_utc(self, session, org_id, make_transaction):
        make_transaction(occurred_at=datetime(2024, 2, 10, 12, 30, tzinfo=UTC))
        make_transaction(occurred_at=datetime(2024, 2, 10, 23, 59, tzinfo=UTC))
        make_transaction(occurred_at=datetime(2024, 2, 11, 0, 0, tzinfo=UTC))

        views = ClaimPackager(session).find_eligible_transactions(
            org_id, ClaimFilters(date_to=date(2024, 2, 10))
        )
        assert len(views) == 2


# =============================================================================
# Compensation
# =============================================================================


class TestCompensation:

    def test_empty_selection_leaves_no_claim(self, session, org_id, captured_logs):
        filters = ClaimFilters(resident_id=uuid4())
        with pytest.raises(NoEligibleTransactionsError) as exc_info:
            ClaimPackager(session).create_claim(org_id, filters, TEST_ACTOR_ID)

        assert exc_info.value.filters["resident_id"] == str(filters.resident_id)
        assert _claims(session) == []
        assert any(r["message"] == "claim_compensated" for r in captured_logs())

    def test_link_mismatch_rolls_back(self, session, org_id, make_transaction):
        """A selection that no longer matches the table deletes the claim."""
        real = make_transaction()
        packager = ClaimPackager(session)
        stale = replace(packager.find_eligible_transactions(org_id, ClaimFilters())[0],
                        transaction_id=uuid4())
        original = packager._selector.find_drafts
        packager._selector.find_drafts = lambda *args: original(*args) + [stale]

        with pytest.raises(ClaimPackagingError) as exc_info:
            packager.create_claim(org_id, ClaimFilters(), TEST_ACTOR_ID)

        assert "expected to link 2" in exc_info.value.reason
        assert _claims(session) == []
        session.refresh(real)
        assert real.status == TransactionStatus.DRAFT.value
        assert real.claim_id is None

    def test_unexpected_link_error_wrapped(self, session, org_id, make_transaction):
        make_transaction()

        class BrokenPackager(ClaimPackager):
            def _link_transactions(self, claim, transaction_ids, actor_id):
                raise RuntimeError("connection reset")

        with pytest.raises(ClaimPackagingError) as exc_info:
            BrokenPackager(session).create_claim(org_id, ClaimFilters(), TEST_ACTOR_ID)

        assert exc_info.value.reason == "connection reset"
        assert isinstance(exc_info.value.__cause__, RuntimeError)
        assert _claims(session) == []

    def test_find_empty_claims(self, session, org_id, make_transaction):
        make_transaction()
        packager = ClaimPackager(session)
        packager.create_claim(org_id, ClaimFilters(), TEST_ACTOR_ID)
        orphan = Claim(
            organization_id=org_id,
            claim_number="CLM-0000099",
            transaction_count=0,
            total_amount=Decimal("0"),
            status=ClaimStatus.DRAFT.value,
            created_by_id=TEST_ACTOR_ID,
        )
        session.add(orphan)
        session.flush()

        assert packager.find_empty_claims(org_id) == [orphan.id]


# =============================================================================
# Aggregates
# =============================================================================


class TestRecalculateAggregates:

    def test_cancelled_excluded(self, session, org_id, make_transaction):
        make_transaction(amount=Decimal("40.00"))
        package = ClaimPackager(session).create_claim(org_id, ClaimFilters(), TEST_ACTOR_ID)
        extra = make_transaction(
            amount=Decimal("60.00"),
            status=TransactionStatus.CANCELLED,
            claim_id=package.claim_id,
        )

        aggregates = recalculate_claim_aggregates(session, package.claim_id)

        assert extra.claim_id == package.claim_id
        assert aggregates.transaction_count == 1
        assert aggregates.total_amount == Decimal("40.00")

    def test_missing_claim_returns_zero(self, session):
        aggregates = recalculate_claim_aggregates(session, uuid4())
        assert aggregates.transaction_count == 0
        assert aggregates.total_amount == Decimal("0.00")
