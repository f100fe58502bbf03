"""Tests for TransactionService: manual creation and cancellation."""

from decimal import Decimal
from uuid import uuid4

import pytest

from sda_kernel.domain.types import ClaimFilters
from sda_kernel.exceptions import (
    ContractNotEligibleError,
    ContractNotFoundError,
    InsufficientBalanceError,
    InvalidDrawdownAmountError,
    InvalidTransactionTransitionError,
    TransactionNotFoundError,
)
from sda_kernel.models.claim import Claim
from sda_kernel.models.funding_contract import ContractStatus
from sda_kernel.models.transaction import Transaction, TransactionStatus
from sda_kernel.services.claim_packager import ClaimPackager
from sda_kernel.services.transaction_service import TransactionService
from tests.conftest import TEST_ACTOR_ID


@pytest.fixture
def service(session, deterministic_clock):
    return TransactionService(session, clock=deterministic_clock)


class TestCreateManual:

    def test_creates_draft_and_draws_balance(self, session, service, org_id, make_contract, deterministic_clock):
        contract = make_contract(current_balance=Decimal("100.00"))

        view = service.create_manual(
            org_id, contract.id, Decimal("40"), TEST_ACTOR_ID, description="Late fee"
        )

        assert view.transaction_number == "TXN-A000001"
        assert view.amount == Decimal("40.00")
        assert view.status == TransactionStatus.DRAFT.value
        assert view.is_automated is False
        assert view.service_code == contract.support_item_code
        assert view.occurred_at == deterministic_clock.now_utc()
        assert contract.current_balance == Decimal("60.00")

    def test_shares_number_series(self, service, org_id, make_contract, make_transaction):
        contract = make_contract()
        make_transaction(transaction_number="TXN-A000007")
        view = service.create_manual(org_id, contract.id, Decimal("5"), TEST_ACTOR_ID)
        assert view.transaction_number == "TXN-A000008"

    def test_insufficient_balance(self, service, org_id, make_contract):
        contract = make_contract(current_balance=Decimal("10.00"))
        with pytest.raises(InsufficientBalanceError) as exc_info:
            service.create_manual(org_id, contract.id, Decimal("10.01"), TEST_ACTOR_ID)
        assert exc_info.value.balance == Decimal("10.00")
        assert contract.current_balance == Decimal("10.00")

    @pytest.mark.parametrize("amount", [Decimal("0"), Decimal("-1"), Decimal("0.004")])
    def test_non_positive_amount(self, service, org_id, make_contract, amount):
        contract = make_contract()
        with pytest.raises(InvalidDrawdownAmountError):
            service.create_manual(org_id, contract.id, amount, TEST_ACTOR_ID)

    def test_inactive_contract(self, service, org_id, make_contract):
        contract = make_contract(status=ContractStatus.EXPIRED)
        with pytest.raises(ContractNotEligibleError):
            service.create_manual(org_id, contract.id, Decimal("5"), TEST_ACTOR_ID)

    def test_unknown_contract(self, service, org_id):
        with pytest.raises(ContractNotFoundError):
            service.create_manual(org_id, uuid4(), Decimal("5"), TEST_ACTOR_ID)


class TestCancel:

    def test_restores_balance(self, session, service, org_id, make_contract):
        contract = make_contract(current_balance=Decimal("100.00"))
        view = service.create_manual(org_id, contract.id, Decimal("30"), TEST_ACTOR_ID)

        cancelled = service.cancel(org_id, view.transaction_id, TEST_ACTOR_ID, reason="entered twice")

        assert cancelled.status == TransactionStatus.CANCELLED.value
        assert contract.current_balance == Decimal("100.00")
        assert session.get(Transaction, view.transaction_id).note == "Cancelled: entered twice"

    def test_restore_capped_at_original(self, service, org_id, make_contract, make_transaction):
        contract = make_contract(current_balance=Decimal("3640.00"))
        txn = make_transaction(amount=Decimal("50.00"), contract_id=contract.id)

        service.cancel(org_id, txn.id, TEST_ACTOR_ID)

        assert contract.current_balance == Decimal("3650.00")

    def test_updates_claim_aggregates(self, session, service, org_id, make_transaction):
        make_transaction(amount=Decimal("100.00"))
        second = make_transaction(amount=Decimal("25.00"))
        package = ClaimPackager(session).create_claim(
            org_id, ClaimFilters(include_all=True), TEST_ACTOR_ID
        )

        service.cancel(org_id, second.id, TEST_ACTOR_ID)

        claim = session.get(Claim, package.claim_id)
        assert claim.transaction_count == 1
        assert claim.total_amount == Decimal("100.00")

    def test_terminal_transaction(self, service, org_id, make_transaction):
        txn = make_transaction(status=TransactionStatus.PAID)
        with pytest.raises(InvalidTransactionTransitionError):
            service.cancel(org_id, txn.id, TEST_ACTOR_ID)

    def test_cancel_twice(self, service, org_id, make_transaction):
        txn = make_transaction()
        service.cancel(org_id, txn.id, TEST_ACTOR_ID)
        with pytest.raises(InvalidTransactionTransitionError):
            service.cancel(org_id, txn.id, TEST_ACTOR_ID)

    def test_unknown_transaction(self, service, org_id):
        with pytest.raises(TransactionNotFoundError):
            service.cancel(org_id, uuid4(), TEST_ACTOR_ID)
