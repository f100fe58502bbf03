"""Domain models for the SDA kernel."""

from sda_kernel.models.automation_log import AutomationLog, RunStatus
from sda_kernel.models.claim import (
    CLAIM_TRANSITIONS,
    Claim,
    ClaimReconciliation,
    ClaimStatus,
)
from sda_kernel.models.funding_contract import (
    CONTRACT_TRANSITIONS,
    ContractStatus,
    DrawdownRate,
    FundingContract,
    FundingType,
)
from sda_kernel.models.transaction import (
    TRANSACTION_TRANSITIONS,
    Transaction,
    TransactionStatus,
)

__all__ = [
    "AutomationLog",
    "RunStatus",
    "Claim",
    "ClaimReconciliation",
    "ClaimStatus",
    "CLAIM_TRANSITIONS",
    "FundingContract",
    "FundingType",
    "DrawdownRate",
    "ContractStatus",
    "CONTRACT_TRANSITIONS",
    "Transaction",
    "TransactionStatus",
    "TRANSACTION_TRANSITIONS",
]
