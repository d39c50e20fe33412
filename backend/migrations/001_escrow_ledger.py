#!/usr/bin/env python3
"""
MIGRATION SCRIPT: Escrow Ledger Foundation

Creates:
1. financial_transactions collection
2. escrow_ledger_entries collection (append only)
3. messages collection
4. Ledger indexes (including one ledger entry per transaction)

Backfills:
- projects.escrow_held / escrow_required / approved_budget as Decimal128 zero where missing

Run: python migrations/001_escrow_ledger.py
"""

import asyncio
import os
import sys
from datetime import datetime

# Add backend to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from motor.motor_asyncio import AsyncIOMotorClient
from bson import Decimal128
from dotenv import load_dotenv

from escrow_core.mongo_store import ensure_indexes

load_dotenv()

COLLECTIONS = ["financial_transactions", "escrow_ledger_entries", "messages"]
BALANCE_FIELDS = ["escrow_held", "escrow_required", "approved_budget"]


async def run_migration():
    """Execute the escrow ledger migration."""

    mongo_url = os.environ.get('MONGO_URL', 'mongodb://localhost:27017/?replicaSet=rs0')
    db_name = os.environ.get('DB_NAME', 'renovation_marketplace')

    print(f"Connecting to: {mongo_url}")
    print(f"Database: {db_name}")

    client = AsyncIOMotorClient(mongo_url)
    db = client[db_name]

    try:
        # Test connection
        await client.admin.command('ping')
        print("✓ Connected to MongoDB")

        existing = await db.list_collection_names()
        print(f"Existing collections: {existing}")

        # =====================================================
        # 1. Create collections
        # =====================================================
        for name in COLLECTIONS:
            if name not in existing:
                await db.create_collection(name)
                print(f"✓ Created {name} collection")
            else:
                print(f"• {name} collection already exists")

        # =====================================================
        # 2. Indexes
        # =====================================================
        await ensure_indexes(db)
        print("✓ Ledger indexes ensured")

        # =====================================================
        # 3. Backfill project balance fields
        # =====================================================
        backfilled = {}
        for field in BALANCE_FIELDS:
            result = await db.projects.update_many(
                {"$or": [{field: {"$exists": False}}, {field: None}]},
                {"$set": {field: Decimal128("0.00")}}
            )
            backfilled[field] = result.modified_count
            print(f"✓ Backfilled {field} on {result.modified_count} projects")

        # =====================================================
        # 4. Record migration
        # =====================================================
        migration_record = {
            "migration_id": "001_escrow_ledger",
            "applied_at": datetime.utcnow(),
            "collections": COLLECTIONS,
            "backfilled": backfilled,
            "status": "success"
        }

        await db.migrations.update_one(
            {"migration_id": "001_escrow_ledger"},
            {"$set": migration_record},
            upsert=True
        )
        print("\n✓ Migration record saved")

        print("\n" + "="*50)
        print("MIGRATION COMPLETE: Escrow Ledger Foundation")
        print("="*50)

        return {
            "status": "success",
            "collections": COLLECTIONS,
            "backfilled": backfilled
        }

    except Exception as e:
        print(f"\n✗ Migration failed: {str(e)}")
        raise
    finally:
        client.close()


if __name__ == "__main__":
    result = asyncio.run(run_migration())
    print(f"\nResult: {result}")
