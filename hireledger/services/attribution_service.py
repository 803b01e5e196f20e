"""
Attribution Service - which sales agent owns a company.

A company's sales agent is recorded at signup (companies.sales_agent_id).
The attribution is locked on the first paid sale, or by an admin, and
from then on decides who earns sales commissions. Every lock and
override is written to the audit trail.
"""

import logging
from typing import Optional, List

from sqlalchemy import text
from sqlalchemy.orm import Session

from hireledger.core.exceptions import InvalidStateError, NotFoundError, ValidationError
from hireledger.db.postgres import fetch_one, lock_clause
from hireledger.services.audit_service import get_audit_service
from hireledger.utils.dates import utcnow

logger = logging.getLogger(__name__)

COMPANY_ATTRIBUTION_SQL = """
    SELECT c.company_id, c.company_name, c.region_id, c.sales_agent_id, c.referred_by,
           c.attribution_locked, c.attribution_locked_at, s.full_name AS sales_agent_name
    FROM companies c
    LEFT JOIN consultants s ON c.sales_agent_id = s.consultant_id
    WHERE c.company_id = :company_id
"""


class AttributionService:

    def __init__(self, db: Session):
        self.db = db

    def get(self, company_id: int) -> dict:
        company = fetch_one(self.db, COMPANY_ATTRIBUTION_SQL, {"company_id": company_id})
        if not company:
            raise NotFoundError(f"Company {company_id} not found")
        company["attribution_locked"] = bool(company["attribution_locked"])
        return company

    def _lock_company_row(self, company_id: int) -> dict:
        company = fetch_one(
            self.db,
            """SELECT company_id, region_id, sales_agent_id, attribution_locked, attribution_locked_at
               FROM companies WHERE company_id = :id""" + lock_clause(self.db),
            {"id": company_id}
        )
        if not company:
            raise NotFoundError(f"Company {company_id} not found")
        return company

    def _set_locked(self, company_id: int, sales_agent_id: Optional[int] = None):
        now = utcnow()
        if sales_agent_id is None:
            self.db.execute(
                text("UPDATE companies SET attribution_locked = :locked, attribution_locked_at = :now WHERE company_id = :id"),
                {"locked": True, "now": now, "id": company_id}
            )
        else:
            self.db.execute(
                text("""
                    UPDATE companies
                    SET sales_agent_id = :agent, attribution_locked = :locked, attribution_locked_at = :now
                    WHERE company_id = :id
                """),
                {"agent": sales_agent_id, "locked": True, "now": now, "id": company_id}
            )
        return now

    def lock(self, company_id: int, admin_id: int) -> dict:
        """Lock attribution by hand. Fails when it is already locked."""
        company = self._lock_company_row(company_id)
        if company["attribution_locked"]:
            raise InvalidStateError("Attribution is already locked")

        self._set_locked(company_id)
        logger.info("attribution_locked company_id=%s sales_agent_id=%s", company_id, company["sales_agent_id"])
        get_audit_service().record(
            "company", company_id, "ATTRIBUTION_LOCKED", actor_id=admin_id,
            data={"sales_agent_id": company["sales_agent_id"], "trigger": "admin"},
            db=self.db
        )
        return self.get(company_id)

    def lock_for_sale(self, company_id: int) -> dict:
        """
        Lock the company row and, on its first paid sale, the attribution.
        Returns the (locked) company row.
        """
        company = self._lock_company_row(company_id)
        if company["sales_agent_id"] and not company["attribution_locked"]:
            company["attribution_locked"] = True
            company["attribution_locked_at"] = self._set_locked(company_id)
            logger.info("attribution_locked company_id=%s sales_agent_id=%s trigger=first_sale",
                        company_id, company["sales_agent_id"])
            get_audit_service().record(
                "company", company_id, "ATTRIBUTION_LOCKED",
                data={"sales_agent_id": company["sales_agent_id"], "trigger": "first_sale"},
                db=self.db
            )
        return company

    def override(self, company_id: int, consultant_id: int, admin_id: int, reason: str) -> dict:
        """Reassign the company to another sales agent and lock it there."""
        if not reason or not reason.strip():
            raise ValidationError("An override reason is required")

        consultant = fetch_one(
            self.db, "SELECT consultant_id, status FROM consultants WHERE consultant_id = :id", {"id": consultant_id}
        )
        if not consultant:
            raise NotFoundError(f"Consultant {consultant_id} not found")

        company = self._lock_company_row(company_id)
        previous = company["sales_agent_id"]
        self._set_locked(company_id, sales_agent_id=consultant_id)

        logger.info("attribution_overridden company_id=%s from=%s to=%s", company_id, previous, consultant_id)
        get_audit_service().record(
            "company", company_id, "ATTRIBUTION_OVERRIDDEN", actor_id=admin_id,
            data={"previous_sales_agent_id": previous, "new_sales_agent_id": consultant_id, "reason": reason},
            db=self.db
        )
        return self.get(company_id)

    def is_commission_eligible(self, company_id: int, sales_agent_id: int) -> bool:
        company = fetch_one(
            self.db,
            "SELECT sales_agent_id, attribution_locked FROM companies WHERE company_id = :id",
            {"id": company_id}
        )
        if not company:
            return False
        return bool(company["attribution_locked"]) and company["sales_agent_id"] == sales_agent_id

    def history(self, company_id: int) -> List[dict]:
        return get_audit_service().history("company", company_id, action_prefix="ATTRIBUTION", limit=50)
