"""
Tests for sda_kernel.services.identifier_allocator.

Covers identifier parsing and formatting (lettered TXN series, plain CLM
series, legacy suffixed forms) and the allocate-with-retry loop: a lost
race is retried against a fresh scan, exhaustion raises, and non-unique
integrity errors are not retried.

Races are simulated with an allocator whose scan returns stale results.
"""

from datetime import UTC, datetime
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from sda_kernel.exceptions import IdentifierAllocationExhaustedError, IdentifierError
from sda_kernel.models.claim import Claim, ClaimStatus
from sda_kernel.models.transaction import Transaction, TransactionStatus
from sda_kernel.services.identifier_allocator import (
    CLAIM_NAMESPACE,
    TRANSACTION_NAMESPACE,
    IdentifierAllocator,
    IdentifierNamespace,
    next_identifier,
)
from tests.conftest import TEST_ACTOR_ID


class StaleScanAllocator(IdentifierAllocator):
    """Allocator whose scan returns nothing on the listed (1-based) calls."""

    def __init__(self, session, stale_calls, **kwargs):
        super().__init__(session, **kwargs)
        self._stale_calls = set(stale_calls)
        self.scans = 0

    def _existing_identifiers(self, namespace, column):
        self.scans += 1
        if self.scans in self._stale_calls:
            return []
        return super()._existing_identifiers(namespace, column)


def _txn_insert(session, org_id, amount=Decimal("25.00")):
    def insert(number: str) -> Transaction:
        txn = Transaction(
            organization_id=org_id,
            transaction_number=number,
            resident_id=uuid4(),
            amount=amount,
            occurred_at=datetime(2024, 2, 15, 2, 0, tzinfo=UTC),
            status=TransactionStatus.DRAFT.value,
            is_automated=True,
            created_by_id=TEST_ACTOR_ID,
        )
        session.add(txn)
        return txn

    return insert


# =============================================================================
# Pure formatting
# =============================================================================


class TestNextIdentifier:

    def test_empty_namespace_starts_series(self):
        assert next_identifier(TRANSACTION_NAMESPACE, []) == "TXN-A000001"
        assert next_identifier(CLAIM_NAMESPACE, []) == "CLM-0000001"

    def test_unparseable_only_starts_series(self):
        assert next_identifier(TRANSACTION_NAMESPACE, ["TXN-legacy", "TXN-", ""]) == "TXN-A000001"

    def test_legacy_suffix_is_parsed(self):
        """A decorated legacy id still counts toward the maximum."""
        existing = ["TXN-A000041", "TXN-A000042-99", "TXN-A000007"]
        assert next_identifier(TRANSACTION_NAMESPACE, existing) == "TXN-A000043"

    def test_letter_rolls_over(self):
        assert next_identifier(TRANSACTION_NAMESPACE, ["TXN-A999999"]) == "TXN-B000001"

    def test_later_letter_wins(self):
        existing = ["TXN-A999000", "TXN-B000003"]
        assert next_identifier(TRANSACTION_NAMESPACE, existing) == "TXN-B000004"

    def test_claim_series(self):
        assert next_identifier(CLAIM_NAMESPACE, ["CLM-0000009", "CLM-0000010"]) == "CLM-0000011"

    def test_other_prefix_ignored(self):
        assert next_identifier(CLAIM_NAMESPACE, ["TXN-A000500"]) == "CLM-0000001"

    def test_lettered_series_exhausted(self):
        with pytest.raises(IdentifierError):
            next_identifier(TRANSACTION_NAMESPACE, ["TXN-Z999999"])

    def test_parse_roundtrip_positions(self):
        ns = IdentifierNamespace(prefix="INV", width=3, lettered=True)
        assert ns.parse("INV-A001") == 1
        assert ns.parse("INV-B001") == 1000
        assert ns.format(1000) == "INV-B001"
        assert ns.parse("INV-A000") is None


# =============================================================================
# Allocation against the database
# =============================================================================


class TestAllocate:

    def test_first_allocation(self, session, org_id):
        allocator = IdentifierAllocator(session)
        txn = allocator.allocate(
            TRANSACTION_NAMESPACE, Transaction.transaction_number, _txn_insert(session, org_id)
        )
        assert txn.transaction_number == "TXN-A000001"

    def test_continues_after_legacy_suffix(self, session, org_id, make_transaction):
        make_transaction(transaction_number="TXN-A000042-99")
        allocator = IdentifierAllocator(session)
        txn = allocator.allocate(
            TRANSACTION_NAMESPACE, Transaction.transaction_number, _txn_insert(session, org_id)
        )
        assert txn.transaction_number == "TXN-A000043"

    def test_sequential_allocations_are_distinct(self, session, org_id):
        allocator = IdentifierAllocator(session)
        numbers = [
            allocator.allocate(
                TRANSACTION_NAMESPACE,
                Transaction.transaction_number,
                _txn_insert(session, org_id),
            ).transaction_number
            for _ in range(3)
        ]
        assert numbers == ["TXN-A000001", "TXN-A000002", "TXN-A000003"]

    def test_peek_does_not_insert(self, session, org_id, make_transaction):
        make_transaction(transaction_number="TXN-A000005")
        allocator = IdentifierAllocator(session)
        assert allocator.peek(TRANSACTION_NAMESPACE, Transaction.transaction_number) == "TXN-A000006"
        count = len(session.execute(select(Transaction.id)).all())
        assert count == 1

    def test_scan_reads_top_of_series_only(self, session, org_id, make_transaction):
        for n in range(1, 11):
            make_transaction(transaction_number=f"TXN-A{n:06d}")
        make_transaction(transaction_number="TXN-B000001")
        make_transaction(transaction_number="TXN-B000002-07")
        make_transaction(transaction_number="TXN-manual")
        allocator = IdentifierAllocator(session, scan_limit=3)

        scanned = allocator._existing_identifiers(
            TRANSACTION_NAMESPACE, Transaction.transaction_number
        )
        txn = allocator.allocate(
            TRANSACTION_NAMESPACE, Transaction.transaction_number, _txn_insert(session, org_id)
        )

        assert scanned == ["TXN-manual", "TXN-B000002-07", "TXN-B000001"]
        assert txn.transaction_number == "TXN-B000003"

    def test_lost_race_retries_with_fresh_scan(self, session, org_id, make_transaction, captured_logs):
        """A stale scan proposes a taken number; the retry picks the next free one."""
        make_transaction(transaction_number="TXN-A000001")
        sleeps: list[float] = []
        allocator = StaleScanAllocator(session, stale_calls={1}, sleep=sleeps.append)

        txn = allocator.allocate(
            TRANSACTION_NAMESPACE, Transaction.transaction_number, _txn_insert(session, org_id)
        )

        assert txn.transaction_number == "TXN-A000002"
        assert allocator.scans == 2
        assert sleeps == [pytest.approx(0.1)]
        assert any(r["message"] == "identifier_conflict_retry" for r in captured_logs())

    def test_conflict_keeps_surrounding_work(self, session, org_id, make_transaction, make_contract):
        contract = make_contract()
        make_transaction(transaction_number="TXN-A000001")
        allocator = StaleScanAllocator(session, stale_calls={1}, sleep=lambda s: None)

        allocator.allocate(
            TRANSACTION_NAMESPACE, Transaction.transaction_number, _txn_insert(session, org_id)
        )

        session.flush()
        assert session.get(type(contract), contract.id) is not None
        numbers = sorted(session.execute(select(Transaction.transaction_number)).scalars())
        assert numbers == ["TXN-A000001", "TXN-A000002"]

    def test_exhaustion_raises(self, session, org_id, make_transaction):
        make_transaction(transaction_number="TXN-A000001")
        sleeps: list[float] = []
        allocator = StaleScanAllocator(
            session, stale_calls=range(1, 10), max_attempts=5, sleep=sleeps.append
        )

        with pytest.raises(IdentifierAllocationExhaustedError) as exc_info:
            allocator.allocate(
                TRANSACTION_NAMESPACE, Transaction.transaction_number, _txn_insert(session, org_id)
            )

        assert exc_info.value.attempts == 5
        assert exc_info.value.last_candidate == "TXN-A000001"
        # Backoff grows linearly and there is no sleep after the last attempt
        assert sleeps == [pytest.approx(0.1 * n) for n in range(1, 5)]
        numbers = list(session.execute(select(Transaction.transaction_number)).scalars())
        assert numbers == ["TXN-A000001"]

    def test_non_unique_integrity_error_not_retried(self, session, org_id):
        allocator = StaleScanAllocator(session, stale_calls=set(), sleep=lambda s: None)

        with pytest.raises(IntegrityError):
            allocator.allocate(
                TRANSACTION_NAMESPACE,
                Transaction.transaction_number,
                _txn_insert(session, org_id, amount=Decimal("0")),
            )
        assert allocator.scans == 1

    def test_claim_numbers(self, session, org_id):
        allocator = IdentifierAllocator(session)

        def insert(number: str) -> Claim:
            claim = Claim(
                organization_id=org_id,
                claim_number=number,
                filters_json={},
                transaction_count=0,
                total_amount=Decimal("0"),
                status=ClaimStatus.DRAFT.value,
                created_by_id=TEST_ACTOR_ID,
            )
            session.add(claim)
            return claim

        first = allocator.allocate(CLAIM_NAMESPACE, Claim.claim_number, insert)
        second = allocator.allocate(CLAIM_NAMESPACE, Claim.claim_number, insert)
        assert (first.claim_number, second.claim_number) == ("CLM-0000001", "CLM-0000002")

    def test_rejects_zero_attempts(self, session):
        with pytest.raises(ValueError):
            IdentifierAllocator(session, max_attempts=0)

    def test_rejects_zero_scan_limit(self, session):
        with pytest.raises(ValueError):
            IdentifierAllocator(session, scan_limit=0)
