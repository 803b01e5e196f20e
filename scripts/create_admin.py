#!/usr/bin/env python3
"""
Create a platform admin account.

Admins cannot self-register through the API.
Usage: python scripts/create_admin.py admin@example.com 'a-long-password'
"""
import sys
sys.path.insert(0, '.')

from hireledger.core.auth import hash_password
from hireledger.db.postgres import get_db_session, fetch_one, init_schema
from hireledger.models.enums import UserRole
from hireledger.utils.dates import utcnow


def main():
    if len(sys.argv) != 3:
        print("Usage: python scripts/create_admin.py <email> <password>")
        sys.exit(1)
    email, password = sys.argv[1], sys.argv[2]
    if len(password) < 8:
        print("❌ Password must be at least 8 characters")
        sys.exit(1)

    init_schema()
    with get_db_session() as db:
        if fetch_one(db, "SELECT user_id FROM users WHERE email = :email", {"email": email}):
            print(f"❌ {email} is already registered")
            sys.exit(1)
        user = fetch_one(
            db,
            """
                INSERT INTO users (email, password_hash, role, is_active, created_at)
                VALUES (:email, :password_hash, :role, :active, :now)
                RETURNING user_id
            """,
            {"email": email, "password_hash": hash_password(password), "role": UserRole.admin.value,
             "active": True, "now": utcnow()}
        )

    print(f"✅ Admin created: user_id={user['user_id']} email={email}")


if __name__ == "__main__":
    main()
