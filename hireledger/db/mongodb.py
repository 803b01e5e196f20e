"""
MongoDB Connection Utility

MongoDB stores the append-only audit trail:
- Attribution locks and overrides
- Admin wallet adjustments, freezes and transfers
- Refund and withdrawal decisions

WHY MongoDB for these?
- Schema-flexible: every audited action carries a different payload
- Append-only: entries are never joined or updated
- Keeps audit volume out of the ledger database
"""
import logging

from pymongo import MongoClient
from pymongo.database import Database
from pymongo.collection import Collection

from hireledger.core.config import get_settings

logger = logging.getLogger(__name__)

settings = get_settings()

# Global client (connection pooling handled internally by pymongo)
_client: MongoClient = None
_db: Database = None


def get_mongo_client() -> MongoClient:
    """Get or create MongoDB client (singleton pattern)"""
    global _client
    if _client is None:
        _client = MongoClient(settings.mongodb_uri, serverSelectionTimeoutMS=settings.mongodb_timeout_ms)
    return _client


def get_mongo_db() -> Database:
    """Get the audit database"""
    global _db
    if _db is None:
        client = get_mongo_client()
        _db = client[settings.mongodb_db]
    return _db


def get_collection(name: str) -> Collection:
    """
    Get a specific collection.
    Collections we use:
    - audit_events: one document per audited action
    """
    db = get_mongo_db()
    return db[name]


def test_mongo_connection() -> bool:
    """
    Test if MongoDB is reachable.
    Returns True if connection successful, False otherwise.
    """
    try:
        client = get_mongo_client()
        # ping command checks connection
        client.admin.command('ping')
        return True
    except Exception as e:
        logger.warning("mongodb_connection_failed error=%s", e)
        return False


# Collection name constants (avoid typos)
COLLECTIONS = {
    "audit_events": "audit_events",
}


def init_mongo_indexes():
    """
    Create indexes for audit lookups.
    Call this once during app startup.
    """
    db = get_mongo_db()

    # History queries: one entity, newest first
    db[COLLECTIONS["audit_events"]].create_index([
        ("entity_type", 1),
        ("entity_id", 1),
        ("created_at", -1)
    ])
    db[COLLECTIONS["audit_events"]].create_index("actor_id")

    logger.info("mongodb_indexes_created")
