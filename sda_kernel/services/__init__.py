"""Services for the SDA kernel (write side)."""

from sda_kernel.services.base import SYSTEM_ACTOR_ID, BaseService
from sda_kernel.services.claim_lifecycle import ClaimLifecycleManager
from sda_kernel.services.claim_packager import ClaimPackager, recalculate_claim_aggregates
from sda_kernel.services.contract_service import FundingContractService
from sda_kernel.services.drawdown_generator import (
    DrawdownGenerator,
    plan_drawdown_days,
    plan_drawdowns,
)
from sda_kernel.services.identifier_allocator import (
    CLAIM_NAMESPACE,
    TRANSACTION_NAMESPACE,
    IdentifierAllocator,
    IdentifierNamespace,
    next_identifier,
)
from sda_kernel.services.transaction_service import TransactionService

__all__ = [
    "BaseService",
    "CLAIM_NAMESPACE",
    "ClaimLifecycleManager",
    "ClaimPackager",
    "DrawdownGenerator",
    "FundingContractService",
    "IdentifierAllocator",
    "IdentifierNamespace",
    "SYSTEM_ACTOR_ID",
    "TRANSACTION_NAMESPACE",
    "TransactionService",
    "next_identifier",
    "plan_drawdown_days",
    "plan_drawdowns",
    "recalculate_claim_aggregates",
]
