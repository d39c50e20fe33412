"""
Escrow ledger error taxonomy.

Every error carries a machine-readable ``kind`` and a human-readable
``message`` so the HTTP layer can return a structured body.
"""

from typing import Any, Dict, Iterable, Optional


class LedgerError(Exception):
    """Base exception for escrow ledger errors."""

    kind = "LEDGER_ERROR"
    retryable = False

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        body = {"kind": self.kind, "message": self.message}
        if self.details:
            body["details"] = self.details
        return body


class NotFoundError(LedgerError):
    """Raised when a transaction, project or project-professional link does not resolve."""

    kind = "NOT_FOUND"

    def __init__(self, entity: str, entity_id: str):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(
            f"{entity} not found: {entity_id}",
            {"entity": entity, "entity_id": entity_id}
        )


class InvalidTransactionTypeError(LedgerError):
    """Raised when an operation is applied to a transaction of the wrong type."""

    kind = "INVALID_TRANSACTION_TYPE"

    def __init__(self, transaction_id: str, actual: str, expected: Iterable[str]):
        self.transaction_id = transaction_id
        self.actual = actual
        self.expected = sorted(expected)
        super().__init__(
            f"Transaction {transaction_id} has type '{actual}', expected one of {self.expected}",
            {"transaction_id": transaction_id, "actual": actual, "expected": self.expected}
        )


class AlreadyTerminalError(LedgerError):
    """Raised when an operation targets a transaction with action_complete=True."""

    kind = "ALREADY_TERMINAL"

    def __init__(self, transaction_id: str, status: Optional[str] = None):
        self.transaction_id = transaction_id
        self.status = status
        super().__init__(
            f"Transaction {transaction_id} is already complete (status: {status})",
            {"transaction_id": transaction_id, "status": status}
        )


class InvalidAmountError(LedgerError):
    """Raised when an amount is negative, non-numeric, or zero where money must move."""

    kind = "INVALID_AMOUNT"


class UnauthorizedError(LedgerError):
    """Raised when a money-moving operation has no actor identifier."""

    kind = "UNAUTHORIZED"


class TransientStoreError(LedgerError):
    """Network, timeout or lock-contention failure from the persistence layer."""

    kind = "TRANSIENT_STORE_FAILURE"
    retryable = True

    def __init__(self, message: str, original_error: Optional[BaseException] = None):
        self.original_error = original_error
        super().__init__(message)


class InvalidTransactionStateError(LedgerError):
    """Raised when a requested status / action_complete combination breaks the transaction invariants."""

    kind = "INVALID_TRANSACTION_STATE"


class InsufficientEscrowError(LedgerError):
    """Raised when a debit exceeds the escrow currently held for the project."""

    kind = "INSUFFICIENT_ESCROW"

    def __init__(self, project_id: str, escrow_held, amount):
        self.project_id = project_id
        super().__init__(
            f"Project {project_id} holds {escrow_held} in escrow, cannot debit {amount}",
            {"project_id": project_id, "escrow_held": str(escrow_held), "amount": str(amount)}
        )
