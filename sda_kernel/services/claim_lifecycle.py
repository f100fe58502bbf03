"""
ClaimLifecycleManager -- validated claim status transitions and settlement.

Responsibility:
    Applies claim status changes against the CLAIM_TRANSITIONS allow-list,
    records submission and file-generation metadata, appends
    reconciliation records, and settles picked-up transactions.

Architecture position:
    Kernel > Services.  Called by the claim request handlers.

Invariants enforced:
    - Every status change is validated before anything is written; an
      invalid request leaves the claim untouched.
    - Only picked_up transactions are ever moved to paid or rejected.
    - ClaimReconciliation rows are append-only.
    - Claim aggregates are recalculated after any transaction status change.

Non-goals:
    - Does NOT infer a claim status from reconciliation totals; see
      sda_kernel.domain.reconciliation_policy for the policy callers apply.
    - Does NOT parse regulator response files.
"""

from collections.abc import Iterable
from typing import Any
from uuid import UUID

from sqlalchemy import select, update

from sda_kernel.domain.types import ReconciliationTotals, TransactionOutcome
from sda_kernel.exceptions import (
    ClaimNotFoundError,
    DuplicateTransactionOutcomeError,
    InvalidClaimTransitionError,
    InvalidTransactionTransitionError,
    TransactionNotFoundError,
)
from sda_kernel.logging_config import get_logger
from sda_kernel.models.claim import Claim, ClaimReconciliation, ClaimStatus
from sda_kernel.models.transaction import Transaction, TransactionStatus
from sda_kernel.services.base import BaseService
from sda_kernel.services.claim_packager import recalculate_claim_aggregates

logger = get_logger("services.claim_lifecycle")


class ClaimLifecycleManager(BaseService[Claim]):
    """State machine over Claim.status."""

    def get_claim(self, organization_id: UUID, claim_id: UUID) -> Claim:
        claim = self.session.execute(
            select(Claim).where(
                Claim.organization_id == organization_id,
                Claim.id == claim_id,
            )
        ).scalar_one_or_none()
        if claim is None:
            raise ClaimNotFoundError(str(claim_id))
        return claim

    def _check_transition(self, claim: Claim, target: ClaimStatus) -> None:
        if not claim.can_transition_to(target):
            logger.warning(
                "claim_transition_rejected",
                extra={
                    "claim_id": str(claim.id),
                    "from_status": claim.status,
                    "to_status": target.value,
                },
            )
            raise InvalidClaimTransitionError(str(claim.id), claim.status, target.value)

    def _apply(self, claim: Claim, target: ClaimStatus, actor_id: UUID) -> None:
        previous = claim.status
        claim.status = target.value
        claim.updated_by_id = actor_id
        self.session.flush()
        logger.info(
            "claim_status_changed",
            extra={
                "claim_id": str(claim.id),
                "from_status": previous,
                "to_status": target.value,
            },
        )

    def transition(
        self,
        organization_id: UUID,
        claim_id: UUID,
        target: ClaimStatus,
        actor_id: UUID,
    ) -> Claim:
        """
        Move a claim to ``target`` if the allow-list permits it.

        Raises:
            ClaimNotFoundError, InvalidClaimTransitionError
        """
        claim = self.get_claim(organization_id, claim_id)
        self._check_transition(claim, target)
        self._apply(claim, target, actor_id)
        return claim

    def mark_submitted(
        self,
        organization_id: UUID,
        claim_id: UUID,
        actor_id: UUID,
        automated: bool = False,
    ) -> Claim:
        """Record submission to the regulator (manual or by automation)."""
        target = ClaimStatus.AUTOMATION_SUBMITTED if automated else ClaimStatus.SUBMITTED
        claim = self.get_claim(organization_id, claim_id)
        self._check_transition(claim, target)
        claim.submitted_at = self.clock.now_utc()
        claim.submitted_by_id = actor_id
        self._apply(claim, target, actor_id)
        return claim

    def record_file_generated(
        self,
        organization_id: UUID,
        claim_id: UUID,
        actor_id: UUID,
    ) -> Claim:
        """
        Record that the submission file was generated.

        A draft claim moves to in_progress; regenerating the file for an
        in_progress claim only refreshes the metadata.

        Raises:
            InvalidClaimTransitionError: claim is past in_progress, or a
                linked transaction is no longer picked_up.
        """
        claim = self.get_claim(organization_id, claim_id)
        if claim.status_enum not in (ClaimStatus.DRAFT, ClaimStatus.IN_PROGRESS):
            raise InvalidClaimTransitionError(
                str(claim.id), claim.status, ClaimStatus.IN_PROGRESS.value
            )
        unsettled = self.session.execute(
            select(Transaction.id).where(
                Transaction.claim_id == claim.id,
                Transaction.status != TransactionStatus.PICKED_UP.value,
                Transaction.status != TransactionStatus.CANCELLED.value,
            )
        ).scalars().all()
        if unsettled:
            raise InvalidClaimTransitionError(
                str(claim.id), claim.status, ClaimStatus.IN_PROGRESS.value
            )

        claim.file_generated_at = self.clock.now_utc()
        claim.file_generated_by_id = actor_id
        if claim.status_enum == ClaimStatus.DRAFT:
            self._apply(claim, ClaimStatus.IN_PROGRESS, actor_id)
        else:
            claim.updated_by_id = actor_id
            self.session.flush()
        return claim

    def record_reconciliation(
        self,
        organization_id: UUID,
        claim_id: UUID,
        uploaded_by_id: UUID,
        file_name: str,
        totals: ReconciliationTotals,
        results: dict[str, Any] | None = None,
        target_status: ClaimStatus | None = None,
    ) -> ClaimReconciliation:
        """
        Append a reconciliation record and optionally move the claim.

        ``target_status`` is chosen by the caller; it is validated against
        the allow-list before the record is written.
        """
        claim = self.get_claim(organization_id, claim_id)
        if target_status is not None:
            self._check_transition(claim, target_status)

        record = ClaimReconciliation(
            claim_id=claim.id,
            organization_id=organization_id,
            uploaded_by_id=uploaded_by_id,
            file_name=file_name,
            total_processed=totals.total_processed,
            total_paid=totals.total_paid,
            total_rejected=totals.total_rejected,
            total_errors=totals.total_errors,
            total_unmatched=totals.total_unmatched,
            results_json=results,
            created_at=self.clock.now_utc(),
        )
        self.session.add(record)
        self.session.flush()
        logger.info(
            "claim_reconciliation_recorded",
            extra={
                "claim_id": str(claim.id),
                "file_name": file_name,
                "total_paid": totals.total_paid,
                "total_rejected": totals.total_rejected,
                "total_errors": totals.total_errors,
            },
        )

        if target_status is not None:
            self._apply(claim, target_status, uploaded_by_id)
        return record

    def reconciliation_history(self, organization_id: UUID, claim_id: UUID) -> list[ClaimReconciliation]:
        claim = self.get_claim(organization_id, claim_id)
        return list(
            self.session.execute(
                select(ClaimReconciliation)
                .where(ClaimReconciliation.claim_id == claim.id)
                .order_by(ClaimReconciliation.created_at)
            ).scalars()
        )

    def apply_transaction_outcomes(
        self,
        organization_id: UUID,
        claim_id: UUID,
        outcomes: Iterable[TransactionOutcome],
        actor_id: UUID,
    ) -> ReconciliationTotals:
        """
        Settle individual picked-up transactions as paid or rejected.

        All outcomes are validated before any is applied.

        Raises:
            TransactionNotFoundError: outcome names a transaction not on
                this claim.
            DuplicateTransactionOutcomeError: a transaction appears twice.
            InvalidTransactionTransitionError: transaction is not picked_up.
        """
        claim = self.get_claim(organization_id, claim_id)
        outcomes = list(outcomes)
        rows = {
            txn.id: txn
            for txn in self.session.execute(
                select(Transaction).where(Transaction.claim_id == claim.id)
            ).scalars()
        }

        seen: set[UUID] = set()
        for outcome in outcomes:
            txn = rows.get(outcome.transaction_id)
            if txn is None:
                raise TransactionNotFoundError(str(outcome.transaction_id))
            if txn.id in seen:
                raise DuplicateTransactionOutcomeError(str(txn.id))
            seen.add(txn.id)
            target = TransactionStatus.PAID if outcome.paid else TransactionStatus.REJECTED
            if txn.status_enum != TransactionStatus.PICKED_UP:
                raise InvalidTransactionTransitionError(str(txn.id), txn.status, target.value)

        paid = rejected = 0
        for outcome in outcomes:
            txn = rows[outcome.transaction_id]
            if outcome.paid:
                txn.status = TransactionStatus.PAID.value
                paid += 1
            else:
                txn.status = TransactionStatus.REJECTED.value
                rejected += 1
            if outcome.note:
                txn.append_note(outcome.note)
            txn.updated_by_id = actor_id

        self.session.flush()
        recalculate_claim_aggregates(self.session, claim.id)
        logger.info(
            "claim_transaction_outcomes_applied",
            extra={"claim_id": str(claim.id), "paid": paid, "rejected": rejected},
        )
        return ReconciliationTotals(
            total_processed=len(outcomes),
            total_paid=paid,
            total_rejected=rejected,
        )

    def mark_transactions_paid(
        self,
        organization_id: UUID,
        claim_id: UUID,
        actor_id: UUID,
    ) -> int:
        """Bulk-settle every picked_up transaction on the claim as paid.

        Transactions in any other status are left alone.  Returns the
        number moved.
        """
        claim = self.get_claim(organization_id, claim_id)
        result = self.session.execute(
            update(Transaction)
            .where(
                Transaction.claim_id == claim.id,
                Transaction.status == TransactionStatus.PICKED_UP.value,
            )
            .values(status=TransactionStatus.PAID.value, updated_by_id=actor_id)
            .execution_options(synchronize_session="fetch")
        )
        moved = result.rowcount
        self.session.flush()
        recalculate_claim_aggregates(self.session, claim.id)
        logger.info(
            "claim_transactions_marked_paid",
            extra={"claim_id": str(claim.id), "moved": moved},
        )
        return moved
