"""
Typed exception hierarchy for the SDA kernel.

Every error carries a machine-readable ``code`` class attribute and the
structured data a caller needs (contract id, requested amount, claim
status) as instance attributes, so handlers and logs never parse messages.

    SdaKernelError (base)
    |
    +-- IdentifierError
    |   +-- IdentifierAllocationExhaustedError
    |
    +-- ContractError
    |   +-- ContractNotFoundError
    |   +-- InvalidContractTransitionError
    |   +-- InsufficientBalanceError
    |   +-- InvalidDrawdownAmountError
    |   +-- ContractNotEligibleError
    |   +-- InvalidContractRateError
    |
    +-- TransactionError
    |   +-- TransactionNotFoundError
    |   +-- InvalidTransactionTransitionError
    |   +-- DuplicateTransactionOutcomeError
    |
    +-- ClaimError
        +-- ClaimNotFoundError
        +-- NoEligibleTransactionsError
        +-- ClaimPackagingError
        +-- InvalidClaimTransitionError

Category        | Code                          | When Raised
----------------|-------------------------------|-----------------------------------------
Identifier      | IDENTIFIER_ALLOCATION_EXHAUSTED | Unique conflicts on every retry
----------------|-------------------------------|-----------------------------------------
Contract        | CONTRACT_NOT_FOUND            | Contract ID doesn't exist in the org
                | INVALID_CONTRACT_TRANSITION   | Status change not in allow-list
                | INSUFFICIENT_BALANCE          | Balance below the requested amount
                | INVALID_DRAWDOWN_AMOUNT       | Amount zero, negative or unset
                | CONTRACT_NOT_ELIGIBLE         | Contract failed an eligibility rule
                | INVALID_CONTRACT_RATE         | Rate cannot be derived from the contract
----------------|-------------------------------|-----------------------------------------
Transaction     | TRANSACTION_NOT_FOUND         | Transaction ID doesn't exist in the org
                | INVALID_TRANSACTION_TRANSITION| Status change not in allow-list
                | DUPLICATE_TRANSACTION_OUTCOME | Same transaction settled twice in one batch
----------------|-------------------------------|-----------------------------------------
Claim           | CLAIM_NOT_FOUND               | Claim ID doesn't exist in the org
                | NO_ELIGIBLE_TRANSACTIONS      | Filters matched no draft transactions
                | CLAIM_PACKAGING_FAILED        | Linking failed; claim was compensated
                | INVALID_CLAIM_TRANSITION      | Status change not in allow-list
"""

from decimal import Decimal


class SdaKernelError(Exception):
    """Base exception for all SDA kernel errors."""

    code: str = "SDA_KERNEL_ERROR"


# Identifier allocation


class IdentifierError(SdaKernelError):
    """Base exception for identifier allocation errors."""

    code: str = "IDENTIFIER_ERROR"


class IdentifierAllocationExhaustedError(IdentifierError):
    """
    Every allocation attempt lost a uniqueness race.

    Fatal for the single unit of work that requested the identifier.
    """

    code: str = "IDENTIFIER_ALLOCATION_EXHAUSTED"

    def __init__(self, prefix: str, attempts: int, last_candidate: str | None):
        self.prefix = prefix
        self.attempts = attempts
        self.last_candidate = last_candidate
        super().__init__(
            f"Could not allocate a {prefix} identifier after {attempts} attempts "
            f"(last candidate {last_candidate})"
        )


# Funding contracts


class ContractError(SdaKernelError):
    """Base exception for funding contract errors."""

    code: str = "CONTRACT_ERROR"


class ContractNotFoundError(ContractError):
    """Funding contract with given ID was not found."""

    code: str = "CONTRACT_NOT_FOUND"

    def __init__(self, contract_id: str):
        self.contract_id = contract_id
        super().__init__(f"Funding contract not found: {contract_id}")


class InvalidContractTransitionError(ContractError):
    """Requested contract status change is not allowed."""

    code: str = "INVALID_CONTRACT_TRANSITION"

    def __init__(self, contract_id: str, from_status: str, to_status: str):
        self.contract_id = contract_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Contract {contract_id} cannot move from {from_status} to {to_status}"
        )


class InsufficientBalanceError(ContractError):
    """Contract balance does not cover the requested drawdown."""

    code: str = "INSUFFICIENT_BALANCE"

    def __init__(self, contract_id: str, balance: Decimal, requested: Decimal):
        self.contract_id = contract_id
        self.balance = balance
        self.requested = requested
        super().__init__(
            f"Insufficient balance on contract {contract_id}: "
            f"balance {balance}, requested {requested}"
        )


class InvalidDrawdownAmountError(ContractError):
    """Drawdown amount is zero, negative, or could not be determined."""

    code: str = "INVALID_DRAWDOWN_AMOUNT"

    def __init__(self, contract_id: str, amount: Decimal | None):
        self.contract_id = contract_id
        self.amount = amount
        super().__init__(
            f"Invalid drawdown amount for contract {contract_id}: {amount}"
        )


class ContractNotEligibleError(ContractError):
    """Contract failed one or more eligibility rules."""

    code: str = "CONTRACT_NOT_ELIGIBLE"

    def __init__(self, contract_id: str, reasons: list[str]):
        self.contract_id = contract_id
        self.reasons = reasons
        super().__init__(
            f"Contract {contract_id} is not eligible: {'; '.join(reasons)}"
        )


class InvalidContractRateError(ContractError):
    """A daily rate cannot be derived from the contract terms."""

    code: str = "INVALID_CONTRACT_RATE"

    def __init__(self, contract_id: str, reason: str):
        self.contract_id = contract_id
        self.reason = reason
        super().__init__(f"Cannot derive rate for contract {contract_id}: {reason}")


# Transactions


class TransactionError(SdaKernelError):
    """Base exception for billing transaction errors."""

    code: str = "TRANSACTION_ERROR"


class TransactionNotFoundError(TransactionError):
    """Transaction with given ID was not found."""

    code: str = "TRANSACTION_NOT_FOUND"

    def __init__(self, transaction_id: str):
        self.transaction_id = transaction_id
        super().__init__(f"Transaction not found: {transaction_id}")


class InvalidTransactionTransitionError(TransactionError):
    """Requested transaction status change is not allowed."""

    code: str = "INVALID_TRANSACTION_TRANSITION"

    def __init__(self, transaction_id: str, from_status: str, to_status: str):
        self.transaction_id = transaction_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Transaction {transaction_id} cannot move from {from_status} to {to_status}"
        )


class DuplicateTransactionOutcomeError(TransactionError):
    """The same transaction was settled more than once in one batch."""

    code: str = "DUPLICATE_TRANSACTION_OUTCOME"

    def __init__(self, transaction_id: str):
        self.transaction_id = transaction_id
        super().__init__(f"Transaction {transaction_id} appears more than once in the outcomes")


# Claims


class ClaimError(SdaKernelError):
    """Base exception for claim errors."""

    code: str = "CLAIM_ERROR"


class ClaimNotFoundError(ClaimError):
    """Claim with given ID was not found."""

    code: str = "CLAIM_NOT_FOUND"

    def __init__(self, claim_id: str):
        self.claim_id = claim_id
        super().__init__(f"Claim not found: {claim_id}")


class NoEligibleTransactionsError(ClaimError):
    """
    Packaging filters matched no draft transactions.

    The claim created for the attempt has already been removed.
    """

    code: str = "NO_ELIGIBLE_TRANSACTIONS"

    def __init__(self, filters: dict):
        self.filters = filters
        super().__init__("No eligible transactions found for the selected criteria")


class ClaimPackagingError(ClaimError):
    """Linking transactions to a new claim failed; the claim was deleted."""

    code: str = "CLAIM_PACKAGING_FAILED"

    def __init__(self, claim_number: str, reason: str):
        self.claim_number = claim_number
        self.reason = reason
        super().__init__(f"Failed to package claim {claim_number}: {reason}")


class InvalidClaimTransitionError(ClaimError):
    """Requested claim status change is not in the allow-list."""

    code: str = "INVALID_CLAIM_TRANSITION"

    def __init__(self, claim_id: str, from_status: str, to_status: str):
        self.claim_id = claim_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Claim {claim_id} cannot move from {from_status} to {to_status}"
        )
