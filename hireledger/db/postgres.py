from contextlib import contextmanager
import logging

from sqlalchemy import create_engine, event, text
from sqlalchemy.orm import sessionmaker, Session

from hireledger.core.config import get_settings
from hireledger.db.schema import metadata

logger = logging.getLogger(__name__)

settings = get_settings()


def _engine_options(url: str) -> dict:
    if url.startswith("sqlite"):
        # Test database; connections are shared across the TestClient threads
        return {"connect_args": {"check_same_thread": False}}
    # pool_size=5: maintain 5 connections ready
    # max_overflow=10: allow 10 extra connections under load
    return {"pool_size": 5, "max_overflow": 10, "pool_pre_ping": True}


engine = create_engine(settings.sqlalchemy_url, **_engine_options(settings.sqlalchemy_url))

if engine.dialect.name == "sqlite":
    # pysqlite defers BEGIN on its own, which breaks SAVEPOINT; emit it ourselves
    @event.listens_for(engine, "connect")
    def _sqlite_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _sqlite_begin(conn):
        conn.exec_driver_sql("BEGIN")

# Session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@contextmanager
def get_db_session():
    """
    Context manager for database sessions.
    Everything executed inside the block is one transaction.
    Usage:
        with get_db_session() as db:
            WalletService(db).credit(...)
    """
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def init_schema() -> None:
    """Create all tables that do not exist yet."""
    metadata.create_all(engine)


def test_postgres_connection() -> bool:
    """
    Test if the database is reachable.
    Returns True if connection successful, False otherwise.
    """
    try:
        with get_db_session() as db:
            result = db.execute(text("SELECT 1 as test"))
            row = result.fetchone()
            return row[0] == 1
    except Exception as e:
        logger.warning("database_connection_failed error=%s", e)
        return False


def lock_clause(db: Session) -> str:
    """
    Row-lock suffix for SELECTs that precede a balance mutation.
    SQLite serializes writers on its own and has no FOR UPDATE.
    """
    if db.get_bind().dialect.name == "sqlite":
        return ""
    return " FOR UPDATE"


def fetch_one(db: Session, sql: str, params: dict = None):
    """Run a query inside an open session and return the first row as a dict (or None)."""
    row = db.execute(text(sql), params or {}).mappings().first()
    return dict(row) if row else None


def fetch_all(db: Session, sql: str, params: dict = None) -> list:
    """Run a query inside an open session and return all rows as dicts."""
    return [dict(r) for r in db.execute(text(sql), params or {}).mappings().all()]

