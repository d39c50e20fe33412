"""
MongoDB (motor) adapters for the escrow ledger stores.

Collections:
- financial_transactions  (amounts as Decimal128, _id = uuid string)
- escrow_ledger_entries   (append only, unique per transaction_id)
- projects                (escrow_held, escrow_required, approved_budget)
- project_professionals / professionals / clients (read only)

Atomic units use a MongoDB multi-document transaction, which requires a
replica set deployment.
"""

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.errors import ConnectionFailure, ExecutionTimeout, PyMongoError
from bson import Decimal128
from contextlib import asynccontextmanager, contextmanager
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional
import logging

from escrow_core.domain import (
    FinancialTransaction, LedgerEntry, ProjectBalance, ProjectContext,
    ProjectProfessionalLink, TransactionTotal
)
from escrow_core.errors import TransientStoreError
from escrow_core.financial_precision import to_decimal128, round_financial, to_decimal
from escrow_core.stores import (
    UnitOfWork, TransactionStore, LedgerStore, ProjectBalanceStore, ProjectDirectory,
    PROJECT_TRANSACTIONS_LIMIT
)

logger = logging.getLogger(__name__)


# =============================================================================
# DOCUMENT CONVERSION
# =============================================================================

def to_bson_value(value: Any) -> Any:
    """Convert pydantic field values into BSON-encodable values."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Decimal):
        return to_decimal128(value)
    if isinstance(value, dict):
        return {k: to_bson_value(v) for k, v in value.items()}
    if isinstance(value, list):
        return [to_bson_value(v) for v in value]
    return value


def model_to_doc(model) -> Dict[str, Any]:
    doc = to_bson_value(model.model_dump())
    doc["_id"] = doc.pop("id")
    return doc


def doc_to_fields(doc: Dict[str, Any]) -> Dict[str, Any]:
    fields = dict(doc)
    fields["id"] = str(fields.pop("_id"))
    return fields


@contextmanager
def translate_store_errors(operation: str):
    """Map transient PyMongo failures onto TransientStoreError."""
    try:
        yield
    except (ConnectionFailure, ExecutionTimeout) as e:
        raise TransientStoreError(f"{operation} failed: {e}", original_error=e) from e
    except PyMongoError as e:
        if e.has_error_label("TransientTransactionError"):
            raise TransientStoreError(f"{operation} conflicted: {e}", original_error=e) from e
        if e.has_error_label("UnknownTransactionCommitResult"):
            raise TransientStoreError(f"{operation} commit outcome unknown: {e}", original_error=e) from e
        raise


# =============================================================================
# UNIT OF WORK
# =============================================================================

class MongoUnitOfWork(UnitOfWork):

    def __init__(self, client: AsyncIOMotorClient):
        self.client = client

    @asynccontextmanager
    async def atomic(self):
        # Covers session start and the commit run on leaving start_transaction()
        with translate_store_errors("commit unit of work"):
            async with await self.client.start_session() as session:
                async with session.start_transaction():
                    # Transaction commits on clean exit, aborts on exception
                    yield session


# =============================================================================
# TRANSACTION STORE
# =============================================================================

class MongoTransactionStore(TransactionStore):

    def __init__(self, db: AsyncIOMotorDatabase):
        self.collection = db.financial_transactions

    async def insert(self, transaction, session=None):
        with translate_store_errors("insert transaction"):
            await self.collection.insert_one(model_to_doc(transaction), session=session)
        return transaction

    async def get(self, transaction_id, session=None):
        with translate_store_errors("get transaction"):
            doc = await self.collection.find_one({"_id": transaction_id}, session=session)
        return FinancialTransaction.model_validate(doc_to_fields(doc)) if doc else None

    async def list_for_project(self, project_id, limit=PROJECT_TRANSACTIONS_LIMIT, session=None):
        with translate_store_errors("list transactions"):
            cursor = self.collection.find(
                {"project_id": project_id},
                session=session
            ).sort([("created_at", DESCENDING), ("_id", DESCENDING)]).limit(limit)
            docs = await cursor.to_list(length=limit)
        return [FinancialTransaction.model_validate(doc_to_fields(d)) for d in docs]

    async def update(self, transaction_id, changes: Dict[str, Any], session=None):
        return await self._find_and_update({"_id": transaction_id}, changes, session)

    async def update_if_open(self, transaction_id, changes: Dict[str, Any], session=None):
        return await self._find_and_update(
            {"_id": transaction_id, "action_complete": False},
            changes,
            session
        )

    async def _find_and_update(self, query, changes, session) -> Optional[FinancialTransaction]:
        with translate_store_errors("update transaction"):
            doc = await self.collection.find_one_and_update(
                query,
                {"$set": to_bson_value(changes)},
                return_document=ReturnDocument.AFTER,
                session=session
            )
        return FinancialTransaction.model_validate(doc_to_fields(doc)) if doc else None

    async def aggregate_totals(self, project_id, session=None):
        pipeline = [
            {"$match": {"project_id": project_id}},
            {
                "$group": {
                    "_id": {"type": "$type", "status": "$status"},
                    "total": {"$sum": "$amount"}
                }
            }
        ]
        with translate_store_errors("aggregate transactions"):
            rows = await self.collection.aggregate(pipeline, session=session).to_list(length=None)
        return [
            TransactionTotal(
                type=row["_id"]["type"],
                status=row["_id"]["status"],
                total=round_financial(to_decimal(row.get("total")))
            )
            for row in rows
        ]


# =============================================================================
# LEDGER STORE (APPEND ONLY)
# =============================================================================

class MongoLedgerStore(LedgerStore):

    def __init__(self, db: AsyncIOMotorDatabase):
        self.collection = db.escrow_ledger_entries

    async def insert(self, entry, session=None):
        with translate_store_errors("insert ledger entry"):
            await self.collection.insert_one(model_to_doc(entry), session=session)
        return entry

    async def list_for_project(self, project_id, session=None):
        with translate_store_errors("list ledger entries"):
            cursor = self.collection.find(
                {"project_id": project_id},
                session=session
            ).sort([("created_at", ASCENDING), ("_id", ASCENDING)])
            docs = await cursor.to_list(length=None)
        return [LedgerEntry.model_validate(doc_to_fields(d)) for d in docs]


# =============================================================================
# PROJECT BALANCE STORE
# =============================================================================

class MongoProjectBalanceStore(ProjectBalanceStore):

    def __init__(self, db: AsyncIOMotorDatabase):
        self.collection = db.projects

    async def get_balance(self, project_id, session=None):
        with translate_store_errors("get project balance"):
            doc = await self.collection.find_one(
                {"_id": project_id},
                {"escrow_held": 1, "escrow_required": 1, "approved_budget": 1, "escrow_held_updated_at": 1},
                session=session
            )
        if not doc:
            return None
        return ProjectBalance(
            project_id=str(doc["_id"]),
            escrow_held=doc.get("escrow_held") or 0,
            escrow_required=doc.get("escrow_required") or 0,
            approved_budget=doc.get("approved_budget") or 0,
            escrow_held_updated_at=doc.get("escrow_held_updated_at"),
        )

    async def compare_and_set_escrow_held(
        self,
        project_id: str,
        expected: Decimal,
        new_value: Decimal,
        updated_at: datetime,
        session=None
    ) -> bool:
        query: Dict[str, Any] = {"_id": project_id}
        if round_financial(expected) == 0:
            # Projects created before the ledger existed carry no escrow_held field
            query["$or"] = [
                {"escrow_held": to_decimal128(expected)},
                {"escrow_held": {"$exists": False}},
                {"escrow_held": None},
            ]
        else:
            query["escrow_held"] = to_decimal128(expected)

        with translate_store_errors("update escrow balance"):
            result = await self.collection.update_one(
                query,
                {"$set": {
                    "escrow_held": to_decimal128(new_value),
                    "escrow_held_updated_at": updated_at,
                }},
                session=session
            )
        return result.matched_count == 1

    async def set_award_terms(self, project_id, approved_budget, escrow_required, session=None):
        with translate_store_errors("set award terms"):
            result = await self.collection.update_one(
                {"_id": project_id},
                {"$set": {
                    "approved_budget": to_decimal128(approved_budget),
                    "escrow_required": to_decimal128(escrow_required),
                    "updated_at": datetime.utcnow(),
                }},
                session=session
            )
        return result.matched_count == 1

    async def list_project_ids(self):
        with translate_store_errors("list projects"):
            ids = await self.collection.distinct("_id")
        return sorted(str(i) for i in ids)


# =============================================================================
# PROJECT DIRECTORY (READ ONLY)
# =============================================================================

class MongoProjectDirectory(ProjectDirectory):

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db

    async def get_project(self, project_id):
        with translate_store_errors("get project"):
            project = await self.db.projects.find_one({"_id": project_id})
            if not project:
                return None
            client = None
            if project.get("client_id"):
                client = await self.db.clients.find_one({"_id": project["client_id"]})
        return ProjectContext(
            project_id=str(project["_id"]),
            project_name=project.get("project_name") or "Project",
            client_id=project.get("client_id"),
            client_email=(client or {}).get("email"),
        )

    async def get_project_professional(self, link_id):
        with translate_store_errors("get project professional"):
            link = await self.db.project_professionals.find_one({"_id": link_id})
            if not link:
                return None
            professional = await self.db.professionals.find_one({"_id": link.get("professional_id")}) or {}
        return ProjectProfessionalLink(
            id=str(link["_id"]),
            project_id=link["project_id"],
            professional_id=str(link.get("professional_id")),
            professional_name=professional.get("full_name") or professional.get("business_name"),
            professional_email=professional.get("email"),
        )


# =============================================================================
# INDEXES
# =============================================================================

async def ensure_indexes(db: AsyncIOMotorDatabase) -> None:
    """Create the indexes the ledger relies on. Safe to call repeatedly."""
    await db.financial_transactions.create_index(
        [("project_id", ASCENDING), ("created_at", DESCENDING)],
        name="idx_fin_tx_project_created"
    )
    await db.financial_transactions.create_index(
        [("project_id", ASCENDING), ("type", ASCENDING), ("status", ASCENDING)],
        name="idx_fin_tx_project_type_status"
    )
    await db.escrow_ledger_entries.create_index(
        [("project_id", ASCENDING), ("created_at", ASCENDING)],
        name="idx_ledger_project_created"
    )
    # One ledger entry per money-moving transaction
    await db.escrow_ledger_entries.create_index(
        [("transaction_id", ASCENDING)],
        unique=True,
        name="idx_ledger_transaction_unique"
    )
    logger.info("[MONGO] Escrow ledger indexes ensured")
