"""
Transaction type policy table.

Each transaction type declares its initial status, whether it starts
action-complete, and whether confirming it moves escrow money.
"""

from dataclasses import dataclass
from typing import Dict, FrozenSet, Optional, Tuple

from escrow_core.domain import (
    TransactionType, TransactionStatus, LedgerDirection, TransactionDraft
)
from escrow_core.errors import InvalidTransactionStateError, InvalidTransactionTypeError


@dataclass(frozen=True)
class TransactionTypePolicy:
    default_status: TransactionStatus
    default_action_complete: bool
    ledger_direction: Optional[LedgerDirection] = None
    default_description: str = ""

    @property
    def informational(self) -> bool:
        return self.default_status == TransactionStatus.INFO


TRANSACTION_TYPE_POLICIES: Dict[TransactionType, TransactionTypePolicy] = {
    TransactionType.QUOTATION_ACCEPTED: TransactionTypePolicy(
        default_status=TransactionStatus.INFO,
        default_action_complete=True,
        default_description="Quotation accepted",
    ),
    TransactionType.ESCROW_DEPOSIT_REQUEST: TransactionTypePolicy(
        default_status=TransactionStatus.PENDING,
        default_action_complete=False,
        default_description="Escrow deposit requested",
    ),
    TransactionType.ESCROW_DEPOSIT: TransactionTypePolicy(
        default_status=TransactionStatus.PENDING,
        default_action_complete=False,
        ledger_direction=LedgerDirection.CREDIT,
        default_description="Escrow deposit for project initiation",
    ),
    TransactionType.ESCROW_DEPOSIT_CONFIRMATION: TransactionTypePolicy(
        default_status=TransactionStatus.PENDING,
        default_action_complete=False,
        ledger_direction=LedgerDirection.CREDIT,
        default_description="Escrow deposit awaiting confirmation",
    ),
    TransactionType.PAYMENT_REQUEST: TransactionTypePolicy(
        default_status=TransactionStatus.PENDING,
        default_action_complete=False,
        default_description="Advance payment request from professional",
    ),
    TransactionType.ADVANCE_PAYMENT_APPROVAL: TransactionTypePolicy(
        default_status=TransactionStatus.PENDING,
        default_action_complete=False,
        default_description="Advance payment approved",
    ),
    TransactionType.ADVANCE_PAYMENT_REJECTION: TransactionTypePolicy(
        default_status=TransactionStatus.PENDING,
        default_action_complete=False,
        default_description="Advance payment rejected",
    ),
    TransactionType.RELEASE_PAYMENT: TransactionTypePolicy(
        default_status=TransactionStatus.PENDING,
        default_action_complete=False,
        ledger_direction=LedgerDirection.DEBIT,
        default_description="Release advance payment to professional",
    ),
}

# Operation -> transaction types it accepts
CONFIRMABLE_DEPOSIT_TYPES: FrozenSet[TransactionType] = frozenset({
    TransactionType.ESCROW_DEPOSIT,
    TransactionType.ESCROW_DEPOSIT_CONFIRMATION,
})
ADVANCE_REQUEST_TYPES: FrozenSet[TransactionType] = frozenset({TransactionType.PAYMENT_REQUEST})
RELEASABLE_TYPES: FrozenSet[TransactionType] = frozenset({TransactionType.RELEASE_PAYMENT})


def policy_for(transaction_type: TransactionType) -> TransactionTypePolicy:
    return TRANSACTION_TYPE_POLICIES[TransactionType(transaction_type)]


def resolve_initial_state(draft: TransactionDraft) -> Tuple[TransactionStatus, bool]:
    """
    Decide the initial (status, action_complete) for a draft.

    Explicit values on the draft win over the type defaults. An ``info``
    status is always action-complete; asking for ``info`` with
    ``action_complete=False`` is rejected.
    """
    policy = policy_for(draft.type)
    status = draft.status or policy.default_status

    if status == TransactionStatus.INFO:
        if draft.action_complete is False:
            raise InvalidTransactionStateError("Informational transactions are always action_complete")
        return status, True

    if draft.action_complete is not None:
        return status, draft.action_complete
    if policy.informational:
        # Non-info status on an informational type: still an open record
        return status, False
    return status, policy.default_action_complete


def require_type(transaction_id: str, actual: TransactionType, accepted: FrozenSet[TransactionType]) -> None:
    if TransactionType(actual) not in accepted:
        raise InvalidTransactionTypeError(
            transaction_id,
            TransactionType(actual).value,
            [t.value for t in accepted],
        )
