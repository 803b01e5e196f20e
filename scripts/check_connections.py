#!/usr/bin/env python3
"""
Connection Check Script

Run this to verify the ledger database and the audit store are reachable.
Usage: python scripts/check_connections.py
"""
import sys
sys.path.insert(0, '.')

from hireledger.db.postgres import test_postgres_connection
from hireledger.db.mongodb import test_mongo_connection
from hireledger.core.config import get_settings


def main():
    settings = get_settings()
    print("=" * 50)
    print("HIRELEDGER - CONNECTION CHECK")
    print("=" * 50)

    # Ledger database
    print("\n[1] Testing ledger database...")
    if settings.database_url:
        print(f"    URL: {settings.database_url.split('@')[-1]}")
    else:
        print(f"    URL: postgresql://{settings.postgres_user}:****@{settings.postgres_host}:{settings.postgres_port}/{settings.postgres_db}")
    if test_postgres_connection():
        print("    ✅ Database: CONNECTED")
    else:
        print("    ❌ Database: FAILED")

    # Audit store
    print("\n[2] Testing MongoDB...")
    print(f"    URI: {settings.mongodb_uri}")
    print(f"    Database: {settings.mongodb_db}")
    if test_mongo_connection():
        print("    ✅ MongoDB: CONNECTED")
    else:
        print("    ❌ MongoDB: FAILED (audit entries will not be written)")

    print("\n" + "=" * 50)
    print("Connection check complete!")
    print("=" * 50)


if __name__ == "__main__":
    main()
