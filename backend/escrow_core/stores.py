"""
Typed repository interfaces for the escrow ledger.

Every method takes an optional ``session``: the handle yielded by
``UnitOfWork.atomic()``. Calls made with the same session are all-or-nothing.
"""

from abc import ABC, abstractmethod
from contextlib import AbstractAsyncContextManager
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from escrow_core.domain import (
    FinancialTransaction, LedgerEntry, ProjectBalance, ProjectContext,
    ProjectProfessionalLink, TransactionTotal
)

PROJECT_TRANSACTIONS_LIMIT = 1000


class UnitOfWork(ABC):
    """Native all-or-nothing primitive of the storage layer."""

    @abstractmethod
    def atomic(self) -> AbstractAsyncContextManager:
        """Async context manager yielding a session; commits on clean exit, aborts on error."""


class TransactionStore(ABC):

    @abstractmethod
    async def insert(self, transaction: FinancialTransaction, session=None) -> FinancialTransaction:
        ...

    @abstractmethod
    async def get(self, transaction_id: str, session=None) -> Optional[FinancialTransaction]:
        ...

    @abstractmethod
    async def list_for_project(
        self,
        project_id: str,
        limit: int = PROJECT_TRANSACTIONS_LIMIT,
        session=None
    ) -> List[FinancialTransaction]:
        """Newest first, at most ``limit`` rows."""

    @abstractmethod
    async def update(
        self,
        transaction_id: str,
        changes: Dict[str, Any],
        session=None
    ) -> Optional[FinancialTransaction]:
        ...

    @abstractmethod
    async def update_if_open(
        self,
        transaction_id: str,
        changes: Dict[str, Any],
        session=None
    ) -> Optional[FinancialTransaction]:
        """
        Apply ``changes`` only while the transaction is not action-complete.
        Returns None when the guard did not match.
        """

    @abstractmethod
    async def aggregate_totals(self, project_id: str, session=None) -> List[TransactionTotal]:
        """Sum of amounts grouped by (type, status)."""


class LedgerStore(ABC):

    @abstractmethod
    async def insert(self, entry: LedgerEntry, session=None) -> LedgerEntry:
        ...

    @abstractmethod
    async def list_for_project(self, project_id: str, session=None) -> List[LedgerEntry]:
        """Oldest first."""


class ProjectBalanceStore(ABC):

    @abstractmethod
    async def get_balance(self, project_id: str, session=None) -> Optional[ProjectBalance]:
        ...

    @abstractmethod
    async def compare_and_set_escrow_held(
        self,
        project_id: str,
        expected: Decimal,
        new_value: Decimal,
        updated_at: datetime,
        session=None
    ) -> bool:
        """Write ``new_value`` only if escrow_held still equals ``expected``."""

    @abstractmethod
    async def set_award_terms(
        self,
        project_id: str,
        approved_budget: Decimal,
        escrow_required: Decimal,
        session=None
    ) -> bool:
        ...

    @abstractmethod
    async def list_project_ids(self) -> List[str]:
        ...


class ProjectDirectory(ABC):
    """Read-only project and project-professional lookups."""

    @abstractmethod
    async def get_project(self, project_id: str) -> Optional[ProjectContext]:
        ...

    @abstractmethod
    async def get_project_professional(self, link_id: str) -> Optional[ProjectProfessionalLink]:
        ...
