"""
Database module - relational ledger store and MongoDB audit store.
"""
from hireledger.db.postgres import get_db_session, init_schema, test_postgres_connection
from hireledger.db.mongodb import get_mongo_db, test_mongo_connection

__all__ = [
    "get_db_session",
    "init_schema",
    "test_postgres_connection",
    "get_mongo_db",
    "test_mongo_connection"
]
