"""
Module: sda_kernel.selectors.transaction_selector
Responsibility: Read-only queries over billing transactions: draft
    selection for claim packaging and per-claim listings.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - Date filters are interpreted as local calendar days in the supplied
      timezone; ``date_to`` is inclusive to the end of that day.
    - occurred_at is stored in UTC; bounds are converted to UTC before
      binding.
"""

from datetime import date, datetime, time, timedelta, timezone
from uuid import UUID
from zoneinfo import ZoneInfo

from sqlalchemy import select

from sda_kernel.domain.types import ClaimFilters, TransactionView
from sda_kernel.models.transaction import Transaction, TransactionStatus
from sda_kernel.selectors.base import BaseSelector


def day_start_utc(day: date, timezone_name: str) -> datetime:
    """Midnight at the start of a local day, as a UTC instant."""
    local = datetime.combine(day, time.min, tzinfo=ZoneInfo(timezone_name))
    return local.astimezone(timezone.utc)


class TransactionSelector(BaseSelector[Transaction]):
    """Queries for billing transactions."""

    def draft_query(
        self,
        organization_id: UUID,
        filters: ClaimFilters,
        timezone_name: str = "UTC",
    ):
        """SELECT for draft, unclaimed transactions matching the filters."""
        stmt = select(Transaction).where(
            Transaction.organization_id == organization_id,
            Transaction.status == TransactionStatus.DRAFT.value,
            Transaction.claim_id.is_(None),
        )
        if not filters.include_all:
            if filters.resident_id is not None:
                stmt = stmt.where(Transaction.resident_id == filters.resident_id)
            if filters.date_from is not None:
                stmt = stmt.where(
                    Transaction.occurred_at >= day_start_utc(filters.date_from, timezone_name)
                )
            if filters.date_to is not None:
                end_exclusive = day_start_utc(
                    filters.date_to + timedelta(days=1), timezone_name
                )
                stmt = stmt.where(Transaction.occurred_at < end_exclusive)
        return stmt.order_by(Transaction.occurred_at, Transaction.transaction_number)

    def find_drafts(
        self,
        organization_id: UUID,
        filters: ClaimFilters,
        timezone_name: str = "UTC",
    ) -> list[TransactionView]:
        rows = self.session.execute(
            self.draft_query(organization_id, filters, timezone_name)
        ).scalars()
        return [TransactionView.from_model(row) for row in rows]

    def for_claim(self, claim_id: UUID) -> list[TransactionView]:
        rows = self.session.execute(
            select(Transaction)
            .where(Transaction.claim_id == claim_id)
            .order_by(Transaction.occurred_at, Transaction.transaction_number)
        ).scalars()
        return [TransactionView.from_model(row) for row in rows]

    def get(self, organization_id: UUID, transaction_id: UUID) -> TransactionView | None:
        row = self.session.execute(
            select(Transaction).where(
                Transaction.organization_id == organization_id,
                Transaction.id == transaction_id,
            )
        ).scalar_one_or_none()
        return TransactionView.from_model(row) if row else None
