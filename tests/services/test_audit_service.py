"""Tests for when audit events reach the audit store."""

import pytest
from sqlalchemy import text

from hireledger.db.postgres import get_db_session
from hireledger.services.attribution_service import AttributionService
from hireledger.services.audit_service import get_audit_service


class TestDirectRecord:
    def test_without_session_writes_at_once(self, audit_log):
        event_id = get_audit_service().record("virtual_account", 1, "STATUS_CHANGED", actor_id=9)
        assert event_id is not None
        assert audit_log.actions() == ["STATUS_CHANGED"]

    def test_history_newest_first(self, audit_log):
        service = get_audit_service()
        service.record("company", 3, "ATTRIBUTION_LOCKED")
        service.record("company", 3, "ATTRIBUTION_OVERRIDDEN")
        service.record("company", 4, "ATTRIBUTION_LOCKED")

        history = service.history("company", 3, action_prefix="ATTRIBUTION")
        assert [e["action"] for e in history] == ["ATTRIBUTION_OVERRIDDEN", "ATTRIBUTION_LOCKED"]


class TestSessionBoundEvents:
    def test_written_only_after_commit(self, db, audit_log):
        get_audit_service().record("refund", 1, "REFUND_APPROVED", actor_id=2, db=db)
        assert audit_log.docs == []

        db.commit()
        assert audit_log.actions() == ["REFUND_APPROVED"]

    def test_dropped_on_rollback(self, db, audit_log):
        db.execute(text("SELECT 1"))
        get_audit_service().record("refund", 1, "REFUND_APPROVED", db=db)
        db.rollback()
        db.commit()
        assert audit_log.docs == []

    def test_rolled_back_savepoint_drops_only_its_events(self, db, audit_log):
        audit = get_audit_service()
        audit.record("withdrawal", 1, "WITHDRAWAL_APPROVED", db=db)

        savepoint = db.begin_nested()
        audit.record("withdrawal", 2, "WITHDRAWAL_APPROVED", db=db)
        savepoint.rollback()

        with db.begin_nested():
            audit.record("withdrawal", 3, "WITHDRAWAL_APPROVED", db=db)
        assert audit_log.docs == []

        db.commit()
        assert [d["entity_id"] for d in audit_log.docs] == [1, 3]

    def test_failed_request_leaves_no_trace(self, seed, audit_log):
        agent = seed.sales_agent()
        company = seed.company(sales_agent_id=agent["consultant_id"])
        seed.commit()

        with pytest.raises(RuntimeError):
            with get_db_session() as db:
                AttributionService(db).lock_for_sale(company["company_id"])
                raise RuntimeError("payment provider timeout")

        assert audit_log.docs == []
        with get_db_session() as db:
            assert AttributionService(db).get(company["company_id"])["attribution_locked"] is False

    def test_committed_request_is_audited(self, seed, audit_log):
        admin = seed.admin()
        agent = seed.sales_agent()
        company = seed.company(sales_agent_id=agent["consultant_id"])
        seed.commit()

        with get_db_session() as db:
            AttributionService(db).lock(company["company_id"], admin["user_id"])

        assert audit_log.actions() == ["ATTRIBUTION_LOCKED"]
