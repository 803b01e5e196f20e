"""Tests for sales agent attribution."""

import pytest

from hireledger.core.exceptions import InvalidStateError, NotFoundError, ValidationError
from hireledger.services.attribution_service import AttributionService


@pytest.fixture
def attribution(db):
    return AttributionService(db)


class TestAttribution:
    def test_get(self, seed, attribution):
        agent = seed.sales_agent()
        company = seed.company(sales_agent_id=agent["consultant_id"])

        info = attribution.get(company["company_id"])

        assert info["sales_agent_id"] == agent["consultant_id"]
        assert info["sales_agent_name"] == agent["full_name"]
        assert info["attribution_locked"] is False

    def test_unknown_company(self, attribution):
        with pytest.raises(NotFoundError):
            attribution.get(404)

    def test_lock_once(self, db, seed, attribution, audit_log):
        admin = seed.admin()
        agent = seed.sales_agent()
        company = seed.company(sales_agent_id=agent["consultant_id"])

        locked = attribution.lock(company["company_id"], admin["user_id"])

        assert locked["attribution_locked"] is True
        assert locked["attribution_locked_at"] is not None
        assert attribution.is_commission_eligible(company["company_id"], agent["consultant_id"])
        with pytest.raises(InvalidStateError):
            attribution.lock(company["company_id"], admin["user_id"])
        db.commit()
        assert audit_log.actions() == ["ATTRIBUTION_LOCKED"]

    def test_unlocked_company_is_not_eligible(self, seed, attribution):
        agent = seed.sales_agent()
        company = seed.company(sales_agent_id=agent["consultant_id"])
        assert attribution.is_commission_eligible(company["company_id"], agent["consultant_id"]) is False

    def test_lock_for_sale_without_agent_does_nothing(self, seed, attribution, audit_log):
        company = seed.company()
        row = attribution.lock_for_sale(company["company_id"])
        assert not row["attribution_locked"]
        assert audit_log.docs == []

    def test_override(self, db, seed, attribution):
        admin = seed.admin()
        first, second = seed.sales_agent(), seed.sales_agent()
        company = seed.company(sales_agent_id=first["consultant_id"])
        attribution.lock(company["company_id"], admin["user_id"])

        overridden = attribution.override(
            company["company_id"], second["consultant_id"], admin["user_id"], "Agent left the company"
        )

        assert overridden["sales_agent_id"] == second["consultant_id"]
        assert overridden["attribution_locked"] is True
        db.commit()
        history = attribution.history(company["company_id"])
        assert [e["action"] for e in history] == ["ATTRIBUTION_OVERRIDDEN", "ATTRIBUTION_LOCKED"]
        assert history[0]["data"]["previous_sales_agent_id"] == first["consultant_id"]
        assert isinstance(history[0]["_id"], str)

    def test_override_needs_reason_and_consultant(self, seed, attribution):
        admin = seed.admin()
        company = seed.company()
        with pytest.raises(ValidationError):
            attribution.override(company["company_id"], 1, admin["user_id"], "")
        with pytest.raises(NotFoundError):
            attribution.override(company["company_id"], 999, admin["user_id"], "Reason")
