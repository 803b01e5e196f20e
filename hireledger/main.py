"""
HireLedger - Main Application

FastAPI backend with:
- A relational ledger (PostgreSQL; SQLite in tests) for wallets,
  commissions, subscriptions, refunds and settlements
- MongoDB for the admin audit trail
- JWT authentication with company / consultant / candidate / admin roles

Run: uvicorn hireledger.main:app --reload
"""

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from hireledger.api.routes import api_router
from hireledger.core.config import get_settings
from hireledger.core.exceptions import LedgerError, ledger_error_handler
from hireledger.core.logging import setup_logging
from hireledger.db.mongodb import init_mongo_indexes, test_mongo_connection
from hireledger.db.postgres import init_schema, test_postgres_connection

settings = get_settings()
setup_logging()

logger = logging.getLogger(__name__)

# Create FastAPI app
app = FastAPI(
    title="HireLedger",
    description="""
    Billing and commission ledger for a recruitment marketplace.

    ## Features
    - **Wallets**: Prepaid company wallets and consultant earnings wallets
    - **Jobs**: Service packages paid from the wallet, placement commissions on hire
    - **Subscriptions**: Plans with job quotas, renewals and sales commissions
    - **Withdrawals**: Consultant payout requests with admin approval
    - **Refunds**: Partial and full refunds with commission reversal
    - **Revenue**: Monthly regional revenue and licensee settlements

    ## Databases
    - PostgreSQL: Ledger (accounts, transactions, commissions, settlements)
    - MongoDB: Audit trail of admin actions
    """,
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc"
)

# Service-layer errors carry their own status code
app.add_exception_handler(LedgerError, ledger_error_handler)

# CORS middleware (allow all for development)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API routes
app.include_router(api_router, prefix="/api")


# Startup event
@app.on_event("startup")
async def startup_event():
    """
    Create missing tables and the audit indexes.
    A schema failure aborts startup; missing audit indexes are only logged.
    """
    init_schema()
    logger.info("schema_initialized")
    try:
        init_mongo_indexes()
    except Exception as e:
        logger.warning("mongodb_index_initialization_failed error=%s", e)


@app.get("/", tags=["Health"])
async def root():
    return {"status": "healthy", "app": "HireLedger"}


@app.get("/health", tags=["Health"])
async def health_check():
    """Detailed health check."""
    return {
        "status": "healthy",
        "postgres": "connected" if test_postgres_connection() else "disconnected",
        "mongodb": "connected" if test_mongo_connection() else "disconnected"
    }
