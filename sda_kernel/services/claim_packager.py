"""
ClaimPackager -- bind draft transactions to a new regulator claim.

Responsibility:
    Allocates a claim number, inserts the claim in DRAFT, selects matching
    draft transactions, and moves them to picked_up with the claim id set.
    Maintains the claim's denormalized aggregates.

Architecture position:
    Kernel > Services.  Called by the claim request handlers.

Invariants enforced:
    - A claim never exists with zero linked transactions: an empty
      selection deletes the claim before NoEligibleTransactionsError is
      raised.
    - Linking failure is compensated: the link SAVEPOINT is rolled back and
      the claim row is deleted explicitly before ClaimPackagingError is
      raised.
    - transaction_count / total_amount equal the count and sum of linked,
      non-cancelled transactions.  ``recalculate_claim_aggregates`` is
      called at every point that changes claim membership or transaction
      status.

Failure modes:
    - NoEligibleTransactionsError when filters match nothing.
    - ClaimPackagingError when the bulk link fails.
    - The compensation is not crash-safe: a process crash between linking
      and the compensating delete can leave an empty claim behind, which
      ``find_empty_claims`` reports for cleanup.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from sda_kernel.domain.clock import Clock
from sda_kernel.domain.rates import to_cents
from sda_kernel.domain.types import (
    ClaimAggregates,
    ClaimFilters,
    ClaimPackage,
    TransactionView,
)
from sda_kernel.exceptions import ClaimPackagingError, NoEligibleTransactionsError
from sda_kernel.logging_config import LogContext, get_logger
from sda_kernel.models.claim import Claim, ClaimStatus
from sda_kernel.models.transaction import Transaction, TransactionStatus
from sda_kernel.selectors.transaction_selector import TransactionSelector
from sda_kernel.services.base import BaseService
from sda_kernel.services.identifier_allocator import CLAIM_NAMESPACE, IdentifierAllocator

logger = get_logger("services.claim_packager")


def recalculate_claim_aggregates(session: Session, claim_id: UUID) -> ClaimAggregates:
    """
    Recompute and store a claim's transaction_count and total_amount.

    Sums in Decimal over linked transactions whose status is not
    cancelled.  Flushes; never commits.
    """
    amounts = session.execute(
        select(Transaction.amount).where(
            Transaction.claim_id == claim_id,
            Transaction.status != TransactionStatus.CANCELLED.value,
        )
    ).scalars().all()
    aggregates = ClaimAggregates(
        transaction_count=len(amounts),
        total_amount=to_cents(sum((Decimal(a) for a in amounts), Decimal("0"))),
    )
    claim = session.get(Claim, claim_id)
    if claim is not None:
        claim.transaction_count = aggregates.transaction_count
        claim.total_amount = aggregates.total_amount
        session.flush()
    return aggregates


class ClaimPackager(BaseService[Claim]):
    """
    Packages draft transactions into claims.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
        - Does NOT produce the regulator payment file.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        allocator: IdentifierAllocator | None = None,
    ):
        super().__init__(session, clock)
        self._allocator = allocator or IdentifierAllocator(session)
        self._selector = TransactionSelector(session)

    def find_eligible_transactions(
        self,
        organization_id: UUID,
        filters: ClaimFilters,
        timezone_name: str = "UTC",
    ) -> list[TransactionView]:
        """Transactions a claim with these filters would pick up.  Read-only."""
        return self._selector.find_drafts(organization_id, filters, timezone_name)

    def create_claim(
        self,
        organization_id: UUID,
        filters: ClaimFilters,
        actor_id: UUID,
        timezone_name: str = "UTC",
    ) -> ClaimPackage:
        """
        Create a claim and bind every matching draft transaction to it.

        Raises:
            NoEligibleTransactionsError: nothing matched; no claim remains.
            ClaimPackagingError: linking failed; no claim remains.
            IdentifierAllocationExhaustedError: claim number contention.
        """
        created_at = self.clock.now_utc()

        def insert(claim_number: str) -> Claim:
            claim = Claim(
                organization_id=organization_id,
                claim_number=claim_number,
                filters_json=filters.to_json(),
                transaction_count=0,
                total_amount=Decimal("0.00"),
                status=ClaimStatus.DRAFT.value,
                created_by_id=actor_id,
            )
            self.session.add(claim)
            return claim

        claim = self._allocator.allocate(CLAIM_NAMESPACE, Claim.claim_number, insert)

        with LogContext.bind(claim_id=str(claim.id)):
            selected = self._selector.find_drafts(organization_id, filters, timezone_name)
            if not selected:
                self._delete_claim(claim)
                logger.info(
                    "claim_packaging_empty",
                    extra={"claim_number": claim.claim_number, "filters": filters.to_json()},
                )
                raise NoEligibleTransactionsError(filters.to_json())

            transaction_ids = [t.transaction_id for t in selected]
            savepoint = self.session.begin_nested()
            try:
                self._link_transactions(claim, transaction_ids, actor_id)
                savepoint.commit()
            except ClaimPackagingError:
                savepoint.rollback()
                self._delete_claim(claim)
                raise
            except Exception as exc:
                savepoint.rollback()
                self._delete_claim(claim)
                logger.error(
                    "claim_packaging_failed",
                    extra={"claim_number": claim.claim_number, "error_message": str(exc)},
                )
                raise ClaimPackagingError(claim.claim_number, str(exc)) from exc

            aggregates = recalculate_claim_aggregates(self.session, claim.id)
            logger.info(
                "claim_packaged",
                extra={
                    "claim_number": claim.claim_number,
                    "transaction_count": aggregates.transaction_count,
                    "total_amount": str(aggregates.total_amount),
                },
            )

        return ClaimPackage(
            claim_id=claim.id,
            claim_number=claim.claim_number,
            transaction_count=aggregates.transaction_count,
            total_amount=aggregates.total_amount,
            transaction_ids=tuple(transaction_ids),
            created_at=created_at,
        )

    def _link_transactions(
        self,
        claim: Claim,
        transaction_ids: list[UUID],
        actor_id: UUID,
    ) -> None:
        """Bulk move the selection from draft to picked_up under the claim."""
        result = self.session.execute(
            update(Transaction)
            .where(
                Transaction.id.in_(transaction_ids),
                Transaction.status == TransactionStatus.DRAFT.value,
                Transaction.claim_id.is_(None),
            )
            .values(
                status=TransactionStatus.PICKED_UP.value,
                claim_id=claim.id,
                updated_by_id=actor_id,
            )
            .execution_options(synchronize_session="fetch")
        )
        if result.rowcount != len(transaction_ids):
            raise ClaimPackagingError(
                claim.claim_number,
                f"expected to link {len(transaction_ids)} transactions, "
                f"linked {result.rowcount}",
            )
        self.session.flush()

    def _delete_claim(self, claim: Claim) -> None:
        """Compensating action: remove a claim that must not survive."""
        self.session.delete(claim)
        self.session.flush()
        logger.warning(
            "claim_compensated",
            extra={"claim_number": claim.claim_number},
        )

    def find_empty_claims(self, organization_id: UUID) -> list[UUID]:
        """Claims with no linked transactions (left by an interrupted packaging)."""
        linked = (
            select(func.count(Transaction.id))
            .where(Transaction.claim_id == Claim.id)
            .scalar_subquery()
        )
        return list(
            self.session.execute(
                select(Claim.id).where(
                    Claim.organization_id == organization_id,
                    linked == 0,
                )
            ).scalars()
        )
