from fastapi import FastAPI, APIRouter
from dotenv import load_dotenv
from starlette.middleware.cors import CORSMiddleware
from motor.motor_asyncio import AsyncIOMotorClient
from pathlib import Path
from datetime import datetime
import os
import logging

from escrow_core import (
    BestEffortNotifier, RetryPolicy, build_memory_services, build_mongo_services
)
from escrow_core.notifier import DEFAULT_NOTIFICATION_TIMEOUT_SECONDS
from financial_routes import create_financial_routes
from notification_service import MongoChatCollaborator
from permissions import PermissionChecker

ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# ============================================
# CONFIGURATION
# ============================================
STORE_BACKEND = os.environ.get('LEDGER_STORE_BACKEND', 'mongo').lower()
ESCROW_CURRENCY = os.environ.get('ESCROW_CURRENCY', 'HKD')
APP_BASE_URL = os.environ.get('APP_BASE_URL', 'http://localhost:3000')
NOTIFICATION_TIMEOUT = float(
    os.environ.get('NOTIFICATION_TIMEOUT_SECONDS', DEFAULT_NOTIFICATION_TIMEOUT_SECONDS)
)
CORS_ORIGINS = [o.strip() for o in os.environ.get('CORS_ORIGINS', '*').split(',') if o.strip()]

retry_policy = RetryPolicy.from_env()

# ============================================
# STORES AND SERVICES
# ============================================
client = None
db = None

if STORE_BACKEND == 'memory':
    notifier = BestEffortNotifier(app_base_url=APP_BASE_URL, timeout=NOTIFICATION_TIMEOUT)
    services = build_memory_services(
        notifier=notifier, retry_policy=retry_policy, currency=ESCROW_CURRENCY
    )
elif STORE_BACKEND == 'mongo':
    # MongoDB connection
    mongo_url = os.environ['MONGO_URL']
    client = AsyncIOMotorClient(mongo_url)
    db = client[os.environ.get('DB_NAME', 'renovation_marketplace')]
    notifier = BestEffortNotifier(
        chat=MongoChatCollaborator(db),
        app_base_url=APP_BASE_URL,
        timeout=NOTIFICATION_TIMEOUT
    )
    services = build_mongo_services(
        client, db, notifier=notifier, retry_policy=retry_policy, currency=ESCROW_CURRENCY
    )
else:
    raise RuntimeError(f"Unknown LEDGER_STORE_BACKEND: {STORE_BACKEND}")

permission_checker = PermissionChecker()

# Create the main app
app = FastAPI(
    title="Renovation Marketplace - Escrow Ledger",
    version="1.0.0",
    description="Financial transaction lifecycle and escrow ledger"
)

# Create router with /api prefix
api_router = APIRouter(prefix="/api")


@api_router.get("/health")
async def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "timestamp": datetime.utcnow(),
        "version": "1.0.0",
        "store_backend": STORE_BACKEND,
        "currency": ESCROW_CURRENCY
    }


# Include router in main app
app.include_router(api_router)

# Include financial ledger routes
app.include_router(create_financial_routes(services, permission_checker))

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_credentials=True,
    allow_origins=CORS_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
async def ensure_ledger_indexes():
    if db is not None:
        from escrow_core.mongo_store import ensure_indexes
        await ensure_indexes(db)
    logger.info(f"[STARTUP] Escrow ledger ready (backend={STORE_BACKEND}, currency={ESCROW_CURRENCY})")


@app.on_event("shutdown")
async def shutdown_db_client():
    if client is not None:
        client.close()
