"""Read-only selectors for the SDA kernel."""

from sda_kernel.selectors.base import BaseSelector
from sda_kernel.selectors.contract_selector import ContractSelector
from sda_kernel.selectors.transaction_selector import TransactionSelector

__all__ = [
    "BaseSelector",
    "ContractSelector",
    "TransactionSelector",
]
