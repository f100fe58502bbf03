"""
TransactionService -- manual billing transactions against a contract.

Responsibility:
    Creates manual draft transactions (allocating a transaction number and
    decrementing the contract balance) and cancels transactions (restoring
    the balance and refreshing the aggregates of any linked claim).

Architecture position:
    Kernel > Services.  Shares the IdentifierAllocator with the drawdown
    generator so manual and automated rows draw from one number series.

Invariants enforced:
    - current_balance stays within [0, original_amount]: creation refuses
      amounts above the balance, cancellation caps the restored balance
      at the original amount.
    - Status changes follow TRANSACTION_TRANSITIONS.
    - Flush-only: never commits or rolls back the session.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from sda_kernel.domain.clock import Clock
from sda_kernel.domain.rates import to_cents
from sda_kernel.domain.types import TransactionView
from sda_kernel.exceptions import (
    ContractNotEligibleError,
    ContractNotFoundError,
    InsufficientBalanceError,
    InvalidDrawdownAmountError,
    InvalidTransactionTransitionError,
    TransactionNotFoundError,
)
from sda_kernel.logging_config import get_logger
from sda_kernel.models.funding_contract import ContractStatus, FundingContract
from sda_kernel.models.transaction import Transaction, TransactionStatus
from sda_kernel.services.base import BaseService
from sda_kernel.services.claim_packager import recalculate_claim_aggregates
from sda_kernel.services.identifier_allocator import (
    TRANSACTION_NAMESPACE,
    IdentifierAllocator,
)

logger = get_logger("services.transaction")


class TransactionService(BaseService[Transaction]):
    """Manual transaction creation and cancellation."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        allocator: IdentifierAllocator | None = None,
    ):
        super().__init__(session, clock)
        self._allocator = allocator or IdentifierAllocator(session)

    def _locked_contract(self, organization_id: UUID, contract_id: UUID) -> FundingContract:
        contract = self.session.execute(
            select(FundingContract)
            .where(
                FundingContract.organization_id == organization_id,
                FundingContract.id == contract_id,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if contract is None:
            raise ContractNotFoundError(str(contract_id))
        return contract

    def create_manual(
        self,
        organization_id: UUID,
        contract_id: UUID,
        amount: Decimal,
        actor_id: UUID,
        occurred_at: datetime | None = None,
        description: str | None = None,
        service_code: str | None = None,
    ) -> TransactionView:
        """
        Create a draft transaction and draw its amount from the contract.

        Raises:
            ContractNotFoundError, ContractNotEligibleError (contract not
            Active), InvalidDrawdownAmountError, InsufficientBalanceError,
            IdentifierAllocationExhaustedError
        """
        contract = self._locked_contract(organization_id, contract_id)
        if contract.status_enum != ContractStatus.ACTIVE:
            raise ContractNotEligibleError(
                str(contract.id),
                [f"Contract status is {contract.contract_status}"],
            )

        amount = to_cents(Decimal(amount))
        if amount <= 0:
            raise InvalidDrawdownAmountError(str(contract.id), amount)
        balance = Decimal(contract.current_balance)
        if balance < amount:
            raise InsufficientBalanceError(str(contract.id), balance, amount)

        when = occurred_at or self.clock.now_utc()

        def insert(transaction_number: str) -> Transaction:
            txn = Transaction(
                organization_id=organization_id,
                transaction_number=transaction_number,
                resident_id=contract.resident_id,
                contract_id=contract.id,
                amount=amount,
                occurred_at=when,
                service_code=service_code or contract.support_item_code,
                description=description,
                status=TransactionStatus.DRAFT.value,
                is_automated=False,
                created_by_id=actor_id,
            )
            self.session.add(txn)
            return txn

        txn = self._allocator.allocate(
            TRANSACTION_NAMESPACE, Transaction.transaction_number, insert
        )
        contract.current_balance = to_cents(balance - amount)
        contract.updated_by_id = actor_id
        self.session.flush()

        logger.info(
            "manual_transaction_created",
            extra={
                "contract_id": str(contract.id),
                "transaction_number": txn.transaction_number,
                "amount": str(amount),
            },
        )
        return TransactionView.from_model(txn)

    def cancel(
        self,
        organization_id: UUID,
        transaction_id: UUID,
        actor_id: UUID,
        reason: str | None = None,
    ) -> TransactionView:
        """
        Cancel a draft or picked-up transaction.

        Its amount goes back to the contract balance, capped at the
        contract's original amount.  A linked claim's aggregates are
        recalculated.

        Raises:
            TransactionNotFoundError, InvalidTransactionTransitionError
        """
        txn = self.session.execute(
            select(Transaction).where(
                Transaction.organization_id == organization_id,
                Transaction.id == transaction_id,
            )
        ).scalar_one_or_none()
        if txn is None:
            raise TransactionNotFoundError(str(transaction_id))
        if not txn.can_transition_to(TransactionStatus.CANCELLED):
            raise InvalidTransactionTransitionError(
                str(txn.id), txn.status, TransactionStatus.CANCELLED.value
            )

        txn.status = TransactionStatus.CANCELLED.value
        txn.updated_by_id = actor_id
        if reason:
            txn.append_note(f"Cancelled: {reason}")

        if txn.contract_id is not None:
            contract = self._locked_contract(organization_id, txn.contract_id)
            restored = Decimal(contract.current_balance) + Decimal(txn.amount)
            contract.current_balance = to_cents(min(restored, Decimal(contract.original_amount)))
            contract.updated_by_id = actor_id

        self.session.flush()
        if txn.claim_id is not None:
            recalculate_claim_aggregates(self.session, txn.claim_id)

        logger.info(
            "transaction_cancelled",
            extra={
                "transaction_number": txn.transaction_number,
                "amount": str(txn.amount),
                "claim_id": str(txn.claim_id) if txn.claim_id else None,
            },
        )
        return TransactionView.from_model(txn)
