"""
Settlement Service - paying licensees their share of regional revenue.

generate() rolls every pending, unsettled monthly revenue row of a
licensee up to a period end into one PENDING settlement and links the
rows to it; a linked row is never picked up again. mark_paid() closes
the settlement and its rows.
"""

import logging
from datetime import datetime
from typing import Optional, List, Dict, Any

from sqlalchemy import text
from sqlalchemy.orm import Session

from hireledger.core.exceptions import InvalidStateError, LedgerError, NotFoundError, ValidationError
from hireledger.db.postgres import fetch_all, fetch_one, lock_clause
from hireledger.models.enums import LicenseeStatus, RevenueStatus, SettlementStatus
from hireledger.services.revenue_service import REVENUE_COLUMNS
from hireledger.utils.dates import month_bounds, utcnow

logger = logging.getLogger(__name__)

SETTLEMENT_COLUMNS = """
    settlement_id, licensee_id, period_start, period_end, total_revenue_cents,
    licensee_share_cents, platform_share_cents, status, payment_date, reference, generated_at
"""


class SettlementService:

    def __init__(self, db: Session):
        self.db = db

    def generate(self, licensee_id: int, period_end: datetime) -> Optional[dict]:
        """
        Settle the licensee's unsettled revenue up to the end of period_end's
        month. Returns None when there is nothing to settle.
        """
        licensee = fetch_one(
            self.db, "SELECT licensee_id, status FROM licensees WHERE licensee_id = :id", {"id": licensee_id}
        )
        if not licensee:
            raise NotFoundError(f"Licensee {licensee_id} not found")

        _, end = month_bounds(period_end)
        rows = fetch_all(
            self.db,
            f"""SELECT {REVENUE_COLUMNS} FROM regional_revenue
                WHERE licensee_id = :licensee_id AND status = :status AND settlement_id IS NULL
                  AND period_end <= :end
                ORDER BY period_start""" + lock_clause(self.db),
            {"licensee_id": licensee_id, "status": RevenueStatus.pending.value, "end": end}
        )
        if not rows:
            return None

        settlement = fetch_one(
            self.db,
            f"""
                INSERT INTO settlements (licensee_id, period_start, period_end, total_revenue_cents,
                    licensee_share_cents, platform_share_cents, status, generated_at)
                VALUES (:licensee_id, :start, :end, :total, :licensee_share, :platform_share, :status, :now)
                RETURNING {SETTLEMENT_COLUMNS}
            """,
            {
                "licensee_id": licensee_id,
                "start": min(r["period_start"] for r in rows),
                "end": end,
                "total": sum(r["total_revenue_cents"] for r in rows),
                "licensee_share": sum(r["licensee_share_cents"] for r in rows),
                "platform_share": sum(r["platform_share_cents"] for r in rows),
                "status": SettlementStatus.pending.value,
                "now": utcnow(),
            }
        )
        revenue_ids = [r["revenue_id"] for r in rows]
        for revenue_id in revenue_ids:
            self.db.execute(
                text("UPDATE regional_revenue SET settlement_id = :s, updated_at = :now WHERE revenue_id = :id"),
                {"s": settlement["settlement_id"], "now": utcnow(), "id": revenue_id}
            )

        logger.info("settlement_generated settlement_id=%s licensee_id=%s revenue_rows=%s licensee_share_cents=%s",
                    settlement["settlement_id"], licensee_id, revenue_ids, settlement["licensee_share_cents"])
        settlement["revenue_ids"] = revenue_ids
        return settlement

    def mark_paid(self, settlement_id: int, reference: str) -> dict:
        if not reference:
            raise ValidationError("A payment reference is required")
        settlement = fetch_one(
            self.db,
            f"SELECT {SETTLEMENT_COLUMNS} FROM settlements WHERE settlement_id = :id" + lock_clause(self.db),
            {"id": settlement_id}
        )
        if not settlement:
            raise NotFoundError(f"Settlement {settlement_id} not found")
        if settlement["status"] != SettlementStatus.pending.value:
            raise InvalidStateError(f"Settlement is already {settlement['status']}")

        now = utcnow()
        paid = fetch_one(
            self.db,
            f"""UPDATE settlements SET status = :status, payment_date = :now, reference = :ref
                WHERE settlement_id = :id RETURNING {SETTLEMENT_COLUMNS}""",
            {"status": SettlementStatus.paid.value, "now": now, "ref": reference, "id": settlement_id}
        )
        self.db.execute(
            text("""UPDATE regional_revenue SET status = :status, paid_at = :now, updated_at = :now
                    WHERE settlement_id = :id"""),
            {"status": RevenueStatus.paid.value, "now": now, "id": settlement_id}
        )
        logger.info("settlement_paid settlement_id=%s reference=%s", settlement_id, reference)
        return paid

    def get(self, settlement_id: int) -> dict:
        settlement = fetch_one(
            self.db, f"SELECT {SETTLEMENT_COLUMNS} FROM settlements WHERE settlement_id = :id", {"id": settlement_id}
        )
        if not settlement:
            raise NotFoundError(f"Settlement {settlement_id} not found")
        settlement["revenue"] = fetch_all(
            self.db,
            f"SELECT {REVENUE_COLUMNS} FROM regional_revenue WHERE settlement_id = :id ORDER BY period_start",
            {"id": settlement_id}
        )
        return settlement

    def list_pending(self, licensee_id: Optional[int] = None) -> List[dict]:
        return self._list(licensee_id, SettlementStatus.pending.value, limit=100)

    def list_by_licensee(self, licensee_id: Optional[int], status: Optional[str] = None, limit: int = 50) -> List[dict]:
        return self._list(licensee_id, status, limit)

    def _list(self, licensee_id: Optional[int], status: Optional[str], limit: int) -> List[dict]:
        where = ["1 = 1"]
        params: Dict[str, Any] = {}
        if licensee_id is not None:
            where.append("licensee_id = :licensee_id"); params["licensee_id"] = licensee_id
        if status:
            where.append("status = :status"); params["status"] = status
        return fetch_all(
            self.db,
            f"""SELECT {SETTLEMENT_COLUMNS} FROM settlements WHERE {" AND ".join(where)}
                ORDER BY generated_at DESC, settlement_id DESC LIMIT {int(limit)}""",
            params
        )

    def generate_all(self, period_end: datetime) -> Dict[str, Any]:
        licensees = fetch_all(
            self.db, "SELECT licensee_id FROM licensees WHERE status = :status ORDER BY licensee_id",
            {"status": LicenseeStatus.active.value}
        )
        generated, errors = [], []
        for licensee in licensees:
            try:
                settlement = self.generate(licensee["licensee_id"], period_end)
            except LedgerError as e:
                errors.append({"licensee_id": licensee["licensee_id"], "error": e.message})
                continue
            if settlement:
                generated.append(settlement["settlement_id"])
        return {"generated": generated, "errors": errors}

    def stats(self) -> Dict[str, Any]:
        rows = fetch_all(
            self.db,
            """SELECT status, COUNT(*) AS count, COALESCE(SUM(licensee_share_cents), 0) AS licensee_share,
                      COALESCE(SUM(platform_share_cents), 0) AS platform_share
               FROM settlements GROUP BY status"""
        )
        by_status = {r["status"]: r for r in rows}
        empty = {"count": 0, "licensee_share": 0, "platform_share": 0}
        pending = by_status.get(SettlementStatus.pending.value, empty)
        paid = by_status.get(SettlementStatus.paid.value, empty)
        return {
            "total_settlements": sum(r["count"] for r in rows),
            "pending_count": pending["count"],
            "pending_licensee_share_cents": int(pending["licensee_share"]),
            "paid_count": paid["count"],
            "paid_licensee_share_cents": int(paid["licensee_share"]),
            "platform_share_cents": int(pending["platform_share"]) + int(paid["platform_share"]),
        }
