"""
Seed script for the escrow ledger.

Creates:
- 1 Client
- 1 Professional
- 1 Project (escrow balances at zero)
- 1 Project-professional link

Prints ready-to-use bearer tokens for the client, professional and an admin.
"""

import asyncio
from motor.motor_asyncio import AsyncIOMotorClient
from bson import Decimal128
from datetime import datetime
import os
from pathlib import Path
from dotenv import load_dotenv
import sys

# Add parent directory to path for imports
sys.path.append(str(Path(__file__).parent))

from auth import create_access_token
from escrow_core.domain import new_id
from escrow_core.mongo_store import ensure_indexes

# Load environment
ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

# MongoDB connection
mongo_url = os.environ['MONGO_URL']
db_name = os.environ.get('DB_NAME', 'renovation_marketplace')


async def seed_database():
    """Seed the database with a demo project"""

    client = AsyncIOMotorClient(mongo_url)
    db = client[db_name]

    print("🌱 Starting database seeding...")

    try:
        await ensure_indexes(db)

        # ============================================
        # 1. CLIENT AND PROFESSIONAL
        # ============================================
        print("👤 Creating client and professional...")

        client_doc = await db.clients.find_one({"email": "client@example.com"})
        if client_doc:
            print("   ⚠️  Client already exists. Skipping...")
            client_id = client_doc["_id"]
        else:
            client_id = new_id()
            await db.clients.insert_one({
                "_id": client_id,
                "email": "client@example.com",
                "full_name": "Demo Client",
                "created_at": datetime.utcnow()
            })
            print(f"   ✅ Client created: {client_id}")

        professional_doc = await db.professionals.find_one({"email": "pro@example.com"})
        if professional_doc:
            print("   ⚠️  Professional already exists. Skipping...")
            professional_id = professional_doc["_id"]
        else:
            professional_id = new_id()
            await db.professionals.insert_one({
                "_id": professional_id,
                "email": "pro@example.com",
                "full_name": "Demo Renovations Ltd",
                "created_at": datetime.utcnow()
            })
            print(f"   ✅ Professional created: {professional_id}")

        # ============================================
        # 2. PROJECT
        # ============================================
        print("🏠 Creating project...")

        project_doc = await db.projects.find_one({"client_id": client_id})
        if project_doc:
            print("   ⚠️  Project already exists. Skipping...")
            project_id = project_doc["_id"]
        else:
            project_id = new_id()
            await db.projects.insert_one({
                "_id": project_id,
                "client_id": client_id,
                "project_name": "Kitchen Renovation",
                "escrow_held": Decimal128("0.00"),
                "escrow_required": Decimal128("0.00"),
                "approved_budget": Decimal128("0.00"),
                "created_at": datetime.utcnow()
            })
            print(f"   ✅ Project created: {project_id}")

        # ============================================
        # 3. PROJECT-PROFESSIONAL LINK
        # ============================================
        link_doc = await db.project_professionals.find_one({
            "project_id": project_id,
            "professional_id": professional_id
        })
        if link_doc:
            link_id = link_doc["_id"]
        else:
            link_id = new_id()
            await db.project_professionals.insert_one({
                "_id": link_id,
                "project_id": project_id,
                "professional_id": professional_id,
                "status": "quoted",
                "created_at": datetime.utcnow()
            })
            print(f"   ✅ Project-professional link created: {link_id}")

        tokens = {
            "client": create_access_token({"user_id": client_id, "role": "client"}),
            "professional": create_access_token({"user_id": professional_id, "role": "professional"}),
            "admin": create_access_token({"user_id": "admin", "role": "admin"}),
        }

        print("\n" + "="*60)
        print("✨ DATABASE SEEDING COMPLETE ✨")
        print("="*60)
        print(f"\n🏠 Project ID: {project_id}")
        print(f"🔗 Project-Professional ID: {link_id}")
        for role, token in tokens.items():
            print(f"🔑 {role} token: {token}")
        print("\n📖 API Documentation: http://localhost:8001/docs")
        print("="*60)

    except Exception as e:
        print(f"\n❌ Error during seeding: {str(e)}")
        raise
    finally:
        client.close()


if __name__ == "__main__":
    asyncio.run(seed_database())
