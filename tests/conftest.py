"""
Shared test fixtures for the HireLedger test suite.

Points the ledger at a throwaway SQLite file before any hireledger import,
swaps the MongoDB audit collection for an in-memory one, and provides a
Seeder for the rows most tests need (licensees, regions, consultants,
companies, candidates, funded wallets).
"""

import os
import re
import tempfile

# === Set environment BEFORE any hireledger imports ===
_TEST_DIR = tempfile.mkdtemp(prefix="hireledger-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TEST_DIR, 'ledger.db')}"
os.environ["JWT_SECRET_KEY"] = "test-secret-key"
os.environ.setdefault("MONGODB_TIMEOUT_MS", "200")

from types import SimpleNamespace
from typing import Optional

import pytest
from bson import ObjectId
from fastapi.testclient import TestClient

from hireledger.core.auth import create_access_token, hash_password
from hireledger.db.postgres import SessionLocal, engine, fetch_one
from hireledger.db.schema import metadata
from hireledger.main import app
from hireledger.models.enums import AccountOwner, TransactionType, UserRole
from hireledger.services import audit_service
from hireledger.services.wallet_service import WalletService
from hireledger.utils.dates import utcnow


# ---------------------------------------------------------------------------
# In-memory audit collection
# ---------------------------------------------------------------------------


class FakeCursor:
    def __init__(self, docs):
        self.docs = docs

    def sort(self, key, direction):
        self.docs = sorted(self.docs, key=lambda d: d[key], reverse=direction < 0)
        return self

    def limit(self, n):
        self.docs = self.docs[:n]
        return self

    def __iter__(self):
        return iter(self.docs)


class FakeAuditCollection:
    """The slice of pymongo's Collection the audit service uses."""

    def __init__(self):
        self.docs = []

    def insert_one(self, doc):
        stored = dict(doc, _id=ObjectId())
        self.docs.append(stored)
        return SimpleNamespace(inserted_id=stored["_id"])

    def find(self, query):
        def matches(doc):
            for key, expected in query.items():
                if isinstance(expected, dict) and "$regex" in expected:
                    if not re.match(expected["$regex"], doc.get(key) or ""):
                        return False
                elif doc.get(key) != expected:
                    return False
            return True

        return FakeCursor([dict(d) for d in self.docs if matches(d)])

    def actions(self):
        return [d["action"] for d in self.docs]


@pytest.fixture(autouse=True)
def audit_log(monkeypatch):
    collection = FakeAuditCollection()
    monkeypatch.setattr(audit_service, "get_collection", lambda name: collection)
    monkeypatch.setattr(audit_service, "_audit_service", None)
    return collection


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def fresh_schema():
    metadata.drop_all(engine)
    metadata.create_all(engine)
    yield


@pytest.fixture
def db():
    """One open transaction; services never commit, so tests see their writes."""
    session = SessionLocal()
    yield session
    session.rollback()
    session.close()


class Seeder:
    """Inserts the rows services expect to exist."""

    def __init__(self, db):
        self.db = db
        self._seq = 0

    def _next(self) -> int:
        self._seq += 1
        return self._seq

    def user(self, role: UserRole, email: Optional[str] = None, password: str = "password123") -> dict:
        return fetch_one(
            self.db,
            """
                INSERT INTO users (email, password_hash, role, is_active, created_at)
                VALUES (:email, :password_hash, :role, :active, :now)
                RETURNING user_id, email, role
            """,
            {
                "email": email or f"{role.value}{self._next()}@example.com",
                "password_hash": hash_password(password), "role": role.value, "active": True, "now": utcnow()
            }
        )

    def licensee(self, share_percent: float = 20.0, status: str = "ACTIVE") -> dict:
        return fetch_one(
            self.db,
            """
                INSERT INTO licensees (name, email, revenue_share_percent, status, created_at)
                VALUES (:name, :email, :share, :status, :now)
                RETURNING licensee_id, name, revenue_share_percent, status
            """,
            {"name": f"Licensee {self._next()}", "email": None, "share": share_percent,
             "status": status, "now": utcnow()}
        )

    def region(self, licensee_id: Optional[int] = None) -> dict:
        n = self._next()
        return fetch_one(
            self.db,
            """
                INSERT INTO regions (name, code, licensee_id, is_active, created_at)
                VALUES (:name, :code, :licensee_id, :active, :now)
                RETURNING region_id, name, code, licensee_id
            """,
            {"name": f"Region {n}", "code": f"R{n}", "licensee_id": licensee_id, "active": True, "now": utcnow()}
        )

    def consultant(self, region_id: Optional[int] = None, role: str = "CONSULTANT",
                   rate: Optional[float] = None) -> dict:
        user = self.user(UserRole.consultant)
        consultant = fetch_one(
            self.db,
            """
                INSERT INTO consultants (user_id, full_name, role, region_id, default_commission_rate, status, created_at)
                VALUES (:user_id, :name, :role, :region_id, :rate, 'ACTIVE', :now)
                RETURNING consultant_id, user_id, full_name, region_id
            """,
            {"user_id": user["user_id"], "name": f"Consultant {user['user_id']}", "role": role,
             "region_id": region_id, "rate": rate, "now": utcnow()}
        )
        return {**consultant, "email": user["email"]}

    def sales_agent(self, region_id: Optional[int] = None, rate: Optional[float] = None) -> dict:
        return self.consultant(region_id=region_id, role="SALES_AGENT", rate=rate)

    def company(self, region_id: Optional[int] = None, sales_agent_id: Optional[int] = None) -> dict:
        user = self.user(UserRole.company)
        company = fetch_one(
            self.db,
            """
                INSERT INTO companies (user_id, company_name, region_id, sales_agent_id, attribution_locked, created_at)
                VALUES (:user_id, :name, :region_id, :sales_agent_id, :locked, :now)
                RETURNING company_id, user_id, company_name, region_id, sales_agent_id
            """,
            {"user_id": user["user_id"], "name": f"Company {user['user_id']}", "region_id": region_id,
             "sales_agent_id": sales_agent_id, "locked": False, "now": utcnow()}
        )
        return {**company, "email": user["email"]}

    def candidate(self) -> dict:
        user = self.user(UserRole.candidate)
        candidate = fetch_one(
            self.db,
            """
                INSERT INTO candidates (user_id, full_name, created_at)
                VALUES (:user_id, :name, :now)
                RETURNING candidate_id, user_id
            """,
            {"user_id": user["user_id"], "name": f"Candidate {user['user_id']}", "now": utcnow()}
        )
        return {**candidate, "email": user["email"]}

    def admin(self) -> dict:
        return self.user(UserRole.admin)

    def fund(self, company_id: int, amount_cents: int) -> dict:
        """Top up a company wallet; returns the account."""
        wallet = WalletService(self.db)
        account = wallet.get_or_create_account(AccountOwner.company, company_id)
        return wallet.credit(
            account["account_id"], amount_cents, TransactionType.wallet_topup, "Test top-up",
            reference_type="PAYMENT"
        )["account"]

    def commit(self):
        """Release the SQLite write lock before API calls open their own sessions."""
        self.db.commit()


@pytest.fixture
def seed(db):
    return Seeder(db)


# ---------------------------------------------------------------------------
# API
# ---------------------------------------------------------------------------


@pytest.fixture
def client():
    # No context manager: startup would try to reach MongoDB
    return TestClient(app)


@pytest.fixture
def auth_headers():
    """Factory: Authorization header for a user id."""

    def _factory(user_id: int) -> dict:
        token = create_access_token({"sub": str(user_id)})
        return {"Authorization": f"Bearer {token}"}

    return _factory
