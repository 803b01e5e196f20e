"""
Audit Service - append-only audit trail in MongoDB.

Collection:
    audit_events - one document per audited action

Document shape:
    {
        "entity_type": "company" | "virtual_account" | "refund" | "withdrawal" | ...,
        "entity_id": <relational id>,
        "action": "ATTRIBUTION_LOCKED", "ADMIN_ADJUSTMENT", ...,
        "actor_id": <user id or None for system jobs>,
        "data": {...action specific payload...},
        "created_at": datetime
    }

Entries are written next to, not inside, the relational transaction.
Services pass their session: the event is held on it and only written
once the outermost transaction commits. A rolled back transaction or
savepoint drops the events recorded inside it. A failed write is logged;
it never undoes the business change it describes.
"""

import logging
from typing import Optional, List, Dict, Any

from pymongo.collection import Collection
from sqlalchemy import event
from sqlalchemy.orm import Session

from hireledger.db.mongodb import get_collection, COLLECTIONS
from hireledger.db.postgres import SessionLocal
from hireledger.utils.dates import utcnow

logger = logging.getLogger(__name__)

# session.info key for events waiting on a commit
PENDING_EVENTS = "audit_pending_events"


# ============================================================
# HELPER: Convert ObjectId to string for JSON serialization
# ============================================================

def serialize_doc(doc: dict) -> dict:
    """Convert MongoDB document to JSON-serializable dict."""
    if doc is None:
        return None
    if "_id" in doc:
        doc["_id"] = str(doc["_id"])
    return doc


def serialize_docs(docs: list) -> list:
    """Convert list of MongoDB documents to JSON-serializable list."""
    return [serialize_doc(doc) for doc in docs]


class AuditLogService:
    """
    Handles audit event storage and lookup.
    """

    def __init__(self):
        self.collection: Collection = get_collection(COLLECTIONS["audit_events"])

    def record(
        self,
        entity_type: str,
        entity_id: int,
        action: str,
        actor_id: Optional[int] = None,
        data: Optional[Dict[str, Any]] = None,
        db: Optional[Session] = None
    ) -> Optional[str]:
        """
        Insert an audit event.

        With db, the event waits on the session and is written after its
        transaction commits; nothing is returned.

        Returns:
            MongoDB ObjectId as string, or None when the store is unreachable
        """
        doc = {
            "entity_type": entity_type,
            "entity_id": entity_id,
            "action": action,
            "actor_id": actor_id,
            "data": data or {},
            "created_at": utcnow()
        }
        if db is not None:
            db.info.setdefault(PENDING_EVENTS, []).append((db.get_nested_transaction(), doc))
            return None
        return self.insert(doc)

    def insert(self, doc: dict) -> Optional[str]:
        entity_type, entity_id, action = doc["entity_type"], doc["entity_id"], doc["action"]
        try:
            result = self.collection.insert_one(doc)
        except Exception:
            logger.exception("audit_write_failed entity=%s:%s action=%s", entity_type, entity_id, action)
            return None
        return str(result.inserted_id)

    def history(self, entity_type: str, entity_id: int, action_prefix: str = None, limit: int = 50) -> List[dict]:
        """Fetch audit events for one entity, newest first."""
        query: Dict[str, Any] = {"entity_type": entity_type, "entity_id": entity_id}
        if action_prefix:
            query["action"] = {"$regex": f"^{action_prefix}"}
        docs = self.collection.find(query).sort("created_at", -1).limit(limit)
        return serialize_docs(list(docs))


# ============================================================
# SINGLETON INSTANCE
# ============================================================

_audit_service = None


def get_audit_service() -> AuditLogService:
    global _audit_service
    if _audit_service is None:
        _audit_service = AuditLogService()
    return _audit_service


# ============================================================
# SESSION HOOKS
# ============================================================

def _inside(transaction, ancestor) -> bool:
    while transaction is not None:
        if transaction is ancestor:
            return True
        transaction = transaction.parent
    return False


@event.listens_for(SessionLocal, "after_commit")
def _write_pending_events(session: Session):
    # Releasing a savepoint also fires after_commit; wait for the outermost commit
    if session.in_nested_transaction():
        return
    pending = session.info.pop(PENDING_EVENTS, [])
    if pending:
        service = get_audit_service()
        for _, doc in pending:
            service.insert(doc)


@event.listens_for(SessionLocal, "after_soft_rollback")
def _drop_rolled_back_events(session: Session, previous_transaction):
    pending = session.info.get(PENDING_EVENTS)
    if not pending:
        return
    if previous_transaction.parent is None:
        session.info.pop(PENDING_EVENTS, None)
        return
    session.info[PENDING_EVENTS] = [
        (savepoint, doc) for savepoint, doc in pending if not _inside(savepoint, previous_transaction)
    ]
