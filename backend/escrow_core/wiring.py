"""
Service wiring for the escrow ledger.

Builds the engine, ledger, aggregator and integrity job on top of either
the MongoDB adapters or the in-memory adapters.
"""

from dataclasses import dataclass
from typing import Optional
import logging

from escrow_core.integrity_job import EscrowIntegrityJob
from escrow_core.ledger import EscrowLedger, DEFAULT_CURRENCY
from escrow_core.lifecycle_engine import TransactionLifecycleEngine
from escrow_core.memory_store import (
    MemoryDatabase, MemoryLedgerStore, MemoryProjectBalanceStore,
    MemoryProjectDirectory, MemoryTransactionStore, MemoryUnitOfWork
)
from escrow_core.notifier import BestEffortNotifier
from escrow_core.resilience import RetryPolicy
from escrow_core.stores import (
    LedgerStore, ProjectBalanceStore, ProjectDirectory, TransactionStore, UnitOfWork
)
from escrow_core.summary import FinancialSummaryAggregator

logger = logging.getLogger(__name__)


@dataclass
class EscrowServices:
    engine: TransactionLifecycleEngine
    ledger: EscrowLedger
    summary: FinancialSummaryAggregator
    integrity_job: EscrowIntegrityJob


def build_services(
    transaction_store: TransactionStore,
    ledger_store: LedgerStore,
    balance_store: ProjectBalanceStore,
    directory: ProjectDirectory,
    unit_of_work: UnitOfWork,
    notifier: Optional[BestEffortNotifier] = None,
    retry_policy: Optional[RetryPolicy] = None,
    currency: str = DEFAULT_CURRENCY
) -> EscrowServices:
    retry_policy = retry_policy or RetryPolicy()
    ledger = EscrowLedger(
        transaction_store, ledger_store, balance_store, unit_of_work,
        currency=currency, retry_policy=retry_policy
    )
    engine = TransactionLifecycleEngine(
        transaction_store, balance_store, directory, unit_of_work, ledger,
        notifier=notifier, retry_policy=retry_policy
    )
    return EscrowServices(
        engine=engine,
        ledger=ledger,
        summary=FinancialSummaryAggregator(transaction_store, retry_policy),
        integrity_job=EscrowIntegrityJob(ledger),
    )


def build_memory_services(
    database: Optional[MemoryDatabase] = None,
    **kwargs
) -> EscrowServices:
    database = database or MemoryDatabase()
    logger.info("[WIRING] Using in-memory escrow ledger stores")
    return build_services(
        MemoryTransactionStore(database),
        MemoryLedgerStore(database),
        MemoryProjectBalanceStore(database),
        MemoryProjectDirectory(database),
        MemoryUnitOfWork(database),
        **kwargs
    )


def build_mongo_services(client, db, **kwargs) -> EscrowServices:
    from escrow_core.mongo_store import (
        MongoLedgerStore, MongoProjectBalanceStore, MongoProjectDirectory,
        MongoTransactionStore, MongoUnitOfWork
    )
    logger.info(f"[WIRING] Using MongoDB escrow ledger stores ({db.name})")
    return build_services(
        MongoTransactionStore(db),
        MongoLedgerStore(db),
        MongoProjectBalanceStore(db),
        MongoProjectDirectory(db),
        MongoUnitOfWork(client),
        **kwargs
    )
