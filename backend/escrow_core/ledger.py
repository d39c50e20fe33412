"""
ESCROW LEDGER & BALANCE CONSISTENCY

The running escrow_held on a project is a cache of the ledger, never the
source of truth:

    escrow_held == SUM(credit amounts) - SUM(debit amounts)

Every credit/debit comes from exactly one transaction reaching a terminal,
money-moving state. The three writes

    1. transaction update (guarded: only while action_complete is False)
    2. ledger entry insert
    3. escrow_held compare-and-set

run inside a single unit of work. If any step fails, none is visible.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, FrozenSet, Iterable, Optional, Tuple
import logging

from escrow_core.domain import (
    EscrowStatement, FinancialTransaction, LedgerDirection, LedgerEntry,
    ReconciliationReport, TransactionType
)
from escrow_core.errors import (
    AlreadyTerminalError, InsufficientEscrowError, NotFoundError, TransientStoreError
)
from escrow_core.financial_precision import (
    round_financial, safe_add, subtract_with_floor, validate_positive
)
from escrow_core.resilience import RetryPolicy, retry_with_backoff
from escrow_core.stores import LedgerStore, ProjectBalanceStore, TransactionStore, UnitOfWork
from escrow_core.transaction_policy import policy_for, require_type

logger = logging.getLogger(__name__)

DEFAULT_CURRENCY = "HKD"


def ledger_balance(entries: Iterable[LedgerEntry]) -> Decimal:
    """Signed sum of ledger entries: credits minus debits."""
    return round_financial(safe_add(*(e.signed_amount for e in entries)))


class EscrowLedger:
    """Atomic ledger + balance mutations and read-only escrow views."""

    # Tolerance for reconciliation (0.01 = 1 cent)
    TOLERANCE = Decimal('0.01')

    def __init__(
        self,
        transaction_store: TransactionStore,
        ledger_store: LedgerStore,
        balance_store: ProjectBalanceStore,
        unit_of_work: UnitOfWork,
        currency: str = DEFAULT_CURRENCY,
        retry_policy: Optional[RetryPolicy] = None
    ):
        self.transaction_store = transaction_store
        self.ledger_store = ledger_store
        self.balance_store = balance_store
        self.unit_of_work = unit_of_work
        self.currency = currency
        self.retry_policy = retry_policy or RetryPolicy()

    # =========================================================================
    # ATOMIC MOVEMENT
    # =========================================================================

    async def post_movement(
        self,
        transaction_id: str,
        accepted_types: FrozenSet[TransactionType],
        actor_id: str,
        transaction_changes: Dict[str, Any],
        description: Optional[str] = None
    ) -> Tuple[FinancialTransaction, LedgerEntry, Decimal]:
        """
        Move a transaction to its terminal state and post its ledger entry.

        Returns (updated transaction, ledger entry, new escrow_held).
        Raises NotFoundError, InvalidTransactionTypeError, AlreadyTerminalError,
        InvalidAmountError, InsufficientEscrowError (debit larger than escrow_held);
        storage failures abort the whole unit.
        """
        async with self.unit_of_work.atomic() as session:
            transaction = await self.transaction_store.get(transaction_id, session=session)
            if transaction is None:
                raise NotFoundError("Transaction", transaction_id)

            require_type(transaction.id, transaction.type, accepted_types)
            if transaction.action_complete:
                raise AlreadyTerminalError(transaction.id, transaction.status.value)

            direction = policy_for(transaction.type).ledger_direction
            amount = validate_positive(transaction.amount, "amount")

            balance = await self.balance_store.get_balance(transaction.project_id, session=session)
            if balance is None:
                raise NotFoundError("Project", transaction.project_id)
            if direction == LedgerDirection.DEBIT and amount > balance.escrow_held:
                raise InsufficientEscrowError(transaction.project_id, balance.escrow_held, amount)

            # 1. Guarded transaction update
            updated = await self.transaction_store.update_if_open(
                transaction.id,
                transaction_changes,
                session=session
            )
            if updated is None:
                # Another request completed it between our read and write
                raise AlreadyTerminalError(transaction.id)

            # 2. Ledger entry
            entry = LedgerEntry(
                project_id=transaction.project_id,
                project_professional_id=transaction.project_professional_id,
                transaction_id=transaction.id,
                direction=direction,
                amount=amount,
                currency=self.currency,
                description=description or transaction.description,
                created_by=actor_id,
            )
            await self.ledger_store.insert(entry, session=session)

            # 3. Balance cache
            new_balance = await self._apply_to_balance(
                transaction.project_id, balance.escrow_held, direction, amount, entry.created_at, session
            )

        logger.info(
            f"[LEDGER] {direction.value} {amount} {self.currency} for project={transaction.project_id} "
            f"tx={transaction.id} -> escrow_held={new_balance}"
        )
        return updated, entry, new_balance

    async def _apply_to_balance(
        self,
        project_id: str,
        current: Decimal,
        direction: LedgerDirection,
        amount: Decimal,
        now: datetime,
        session
    ) -> Decimal:
        if direction == LedgerDirection.CREDIT:
            new_value = round_financial(current + amount)
        else:
            new_value = subtract_with_floor(current, amount)

        swapped = await self.balance_store.compare_and_set_escrow_held(
            project_id, current, new_value, now, session=session
        )
        if not swapped:
            raise TransientStoreError(
                f"Escrow balance for project {project_id} changed concurrently"
            )
        return new_value

    # =========================================================================
    # READ-ONLY VIEWS
    # =========================================================================

    async def get_escrow_statement(self, project_id: str) -> EscrowStatement:
        """Full ordered ledger plus the project's balance fields (audit display)."""
        balance = await retry_with_backoff(
            lambda: self.balance_store.get_balance(project_id),
            self.retry_policy,
            "get_project_balance"
        )
        if balance is None:
            raise NotFoundError("Project", project_id)

        entries = await retry_with_backoff(
            lambda: self.ledger_store.list_for_project(project_id),
            self.retry_policy,
            "list_ledger_entries"
        )
        return EscrowStatement(
            project_id=project_id,
            currency=self.currency,
            ledger=entries,
            balance=balance.escrow_held,
            required=balance.escrow_required,
            approved_budget=balance.approved_budget,
            ledger_balance=ledger_balance(entries),
            balance_updated_at=balance.escrow_held_updated_at,
        )

    async def reconcile_project(self, project_id: str) -> ReconciliationReport:
        """Compare escrow_held against the ledger. Reports only, never fixes."""
        statement = await self.get_escrow_statement(project_id)
        difference = round_financial(statement.balance - statement.ledger_balance)
        consistent = abs(difference) < self.TOLERANCE

        if not consistent:
            logger.warning(
                f"[LEDGER] Reconciliation mismatch for project={project_id}: "
                f"escrow_held={statement.balance}, ledger={statement.ledger_balance}, diff={difference}"
            )

        return ReconciliationReport(
            project_id=project_id,
            escrow_held=statement.balance,
            ledger_balance=statement.ledger_balance,
            difference=difference,
            entry_count=len(statement.ledger),
            consistent=consistent,
        )
