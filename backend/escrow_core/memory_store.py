"""
In-memory adapters for the escrow ledger stores.

Used for local runs (LEDGER_STORE_BACKEND=memory) and the test suite.
Atomic units are serialised with an asyncio.Lock; on error the state
snapshot taken at entry is restored.
"""

from contextlib import asynccontextmanager
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple
import asyncio
import logging

from escrow_core.domain import (
    FinancialTransaction, LedgerEntry, ProjectBalance, ProjectContext,
    ProjectProfessionalLink, TransactionTotal
)
from escrow_core.financial_precision import round_financial, ZERO
from escrow_core.stores import (
    UnitOfWork, TransactionStore, LedgerStore, ProjectBalanceStore, ProjectDirectory,
    PROJECT_TRANSACTIONS_LIMIT
)

logger = logging.getLogger(__name__)


class MemoryDatabase:
    """Holds every collection; shared by the memory stores."""

    def __init__(self):
        self.transactions: Dict[str, FinancialTransaction] = {}
        self.ledger_entries: List[LedgerEntry] = []
        self.balances: Dict[str, ProjectBalance] = {}
        self.projects: Dict[str, ProjectContext] = {}
        self.project_professionals: Dict[str, ProjectProfessionalLink] = {}
        self.lock = asyncio.Lock()

    def snapshot(self) -> Tuple:
        # Records are replaced, never mutated in place, so shallow copies suffice
        return (
            dict(self.transactions),
            list(self.ledger_entries),
            dict(self.balances),
        )

    def restore(self, snapshot: Tuple) -> None:
        self.transactions, self.ledger_entries, self.balances = (
            dict(snapshot[0]), list(snapshot[1]), dict(snapshot[2])
        )

    def add_project(
        self,
        context: ProjectContext,
        balance: Optional[ProjectBalance] = None
    ) -> None:
        self.projects[context.project_id] = context
        self.balances[context.project_id] = balance or ProjectBalance(project_id=context.project_id)

    def add_project_professional(self, link: ProjectProfessionalLink) -> None:
        self.project_professionals[link.id] = link


class MemoryUnitOfWork(UnitOfWork):

    def __init__(self, database: MemoryDatabase):
        self.database = database

    @asynccontextmanager
    async def atomic(self):
        async with self.database.lock:
            snapshot = self.database.snapshot()
            try:
                yield self.database
            except BaseException:
                self.database.restore(snapshot)
                logger.info("[TRANSACTION] Memory unit of work rolled back")
                raise


class MemoryTransactionStore(TransactionStore):

    def __init__(self, database: MemoryDatabase):
        self.database = database

    async def insert(self, transaction, session=None):
        if transaction.id in self.database.transactions:
            raise ValueError(f"Duplicate transaction id: {transaction.id}")
        self.database.transactions[transaction.id] = transaction
        return transaction

    async def get(self, transaction_id, session=None):
        return self.database.transactions.get(transaction_id)

    async def list_for_project(self, project_id, limit=PROJECT_TRANSACTIONS_LIMIT, session=None):
        rows = [
            (position, t) for position, t in enumerate(self.database.transactions.values())
            if t.project_id == project_id
        ]
        # Insertion order breaks created_at ties
        rows.sort(key=lambda row: (row[1].created_at, row[0]), reverse=True)
        return [t for _, t in rows[:limit]]

    async def update(self, transaction_id, changes: Dict[str, Any], session=None):
        current = self.database.transactions.get(transaction_id)
        if current is None:
            return None
        updated = FinancialTransaction.model_validate({**current.model_dump(), **changes})
        self.database.transactions[transaction_id] = updated
        return updated

    async def update_if_open(self, transaction_id, changes: Dict[str, Any], session=None):
        current = self.database.transactions.get(transaction_id)
        if current is None or current.action_complete:
            return None
        return await self.update(transaction_id, changes, session=session)

    async def aggregate_totals(self, project_id, session=None):
        totals: Dict[Tuple, Decimal] = {}
        for t in self.database.transactions.values():
            if t.project_id != project_id:
                continue
            key = (t.type, t.status)
            totals[key] = totals.get(key, ZERO) + t.amount
        return [
            TransactionTotal(type=k[0], status=k[1], total=round_financial(v))
            for k, v in totals.items()
        ]


class MemoryLedgerStore(LedgerStore):

    def __init__(self, database: MemoryDatabase):
        self.database = database

    async def insert(self, entry, session=None):
        # Same guarantee as the unique transaction_id index in MongoDB
        if any(e.transaction_id == entry.transaction_id for e in self.database.ledger_entries):
            raise ValueError(f"Duplicate ledger entry for transaction: {entry.transaction_id}")
        self.database.ledger_entries.append(entry)
        return entry

    async def list_for_project(self, project_id, session=None):
        return [e for e in self.database.ledger_entries if e.project_id == project_id]


class MemoryProjectBalanceStore(ProjectBalanceStore):

    def __init__(self, database: MemoryDatabase):
        self.database = database

    async def get_balance(self, project_id, session=None):
        return self.database.balances.get(project_id)

    async def compare_and_set_escrow_held(
        self,
        project_id: str,
        expected: Decimal,
        new_value: Decimal,
        updated_at: datetime,
        session=None
    ) -> bool:
        current = self.database.balances.get(project_id)
        if current is None or current.escrow_held != expected:
            return False
        self.database.balances[project_id] = current.model_copy(update={
            "escrow_held": round_financial(new_value),
            "escrow_held_updated_at": updated_at,
        })
        return True

    async def set_award_terms(self, project_id, approved_budget, escrow_required, session=None):
        current = self.database.balances.get(project_id)
        if current is None:
            return False
        self.database.balances[project_id] = current.model_copy(update={
            "approved_budget": round_financial(approved_budget),
            "escrow_required": round_financial(escrow_required),
        })
        return True

    async def list_project_ids(self):
        return sorted(self.database.balances)


class MemoryProjectDirectory(ProjectDirectory):

    def __init__(self, database: MemoryDatabase):
        self.database = database

    async def get_project(self, project_id):
        return self.database.projects.get(project_id)

    async def get_project_professional(self, link_id):
        return self.database.project_professionals.get(link_id)
