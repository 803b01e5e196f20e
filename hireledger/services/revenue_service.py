"""
Regional Revenue Service - monthly revenue per region and the licensee's cut.

Revenue is read from the wallet ledger of the region's companies:

    subscription revenue = SUBSCRIPTION_PURCHASE + SUBSCRIPTION_RENEWAL debits
    job revenue          = JOB_POSTING_DEDUCTION debits for a job
    refunds              = JOB_REFUND + SUBSCRIPTION_REFUND credits
    total                = subscription + job - refunds

Wallet top-ups are not revenue; the money is recognised when it is spent.
The licensee share is the licensee's revenue_share_percent of the total
while the licensee is ACTIVE; the platform keeps the rest.
"""

import logging
from datetime import datetime
from typing import Optional, List, Dict, Any

from sqlalchemy import text
from sqlalchemy.orm import Session

from hireledger.core.exceptions import LedgerError, NotFoundError
from hireledger.db.postgres import fetch_all, fetch_one
from hireledger.models.enums import AccountOwner, LicenseeStatus, RevenueStatus, TransactionType
from hireledger.utils.dates import add_months, month_bounds, utcnow
from hireledger.utils.money import apply_percent

logger = logging.getLogger(__name__)

REVENUE_COLUMNS = """
    revenue_id, region_id, licensee_id, period_start, period_end, subscription_revenue_cents,
    job_revenue_cents, refunds_cents, total_revenue_cents, licensee_share_cents,
    platform_share_cents, status, settlement_id, paid_at, created_at, updated_at
"""

# Ledger rows of the region's company wallets inside the period
REGION_LEDGER_SQL = """
    SELECT COALESCE(SUM(t.amount_cents), 0)
    FROM virtual_transactions t
    JOIN virtual_accounts a ON t.account_id = a.account_id
    JOIN companies c ON a.owner_type = :owner_type AND a.owner_id = c.company_id
    WHERE c.region_id = :region_id
      AND t.created_at >= :start AND t.created_at <= :end
"""


def previous_month(now: Optional[datetime] = None) -> datetime:
    """First day of the month before now."""
    start, _ = month_bounds(now or utcnow())
    return add_months(start, -1)


class RegionalRevenueService:

    def __init__(self, db: Session):
        self.db = db

    def _ledger_sum(self, region_id: int, start: datetime, end: datetime, direction: str,
                    types: List[TransactionType], reference_type: Optional[str] = None) -> int:
        type_list = ", ".join(f"'{t.value}'" for t in types)
        sql = REGION_LEDGER_SQL + f" AND t.direction = :direction AND t.type IN ({type_list})"
        params = {
            "owner_type": AccountOwner.company.value, "region_id": region_id,
            "start": start, "end": end, "direction": direction
        }
        if reference_type:
            sql += " AND t.reference_type = :reference_type"
            params["reference_type"] = reference_type
        return int(self.db.execute(text(sql), params).scalar())

    def calculate_monthly(self, region_id: int, month: datetime) -> Dict[str, Any]:
        region = fetch_one(
            self.db,
            """SELECT r.region_id, r.licensee_id, l.revenue_share_percent, l.status AS licensee_status
               FROM regions r LEFT JOIN licensees l ON r.licensee_id = l.licensee_id
               WHERE r.region_id = :id""",
            {"id": region_id}
        )
        if not region:
            raise NotFoundError(f"Region {region_id} not found")

        start, end = month_bounds(month)
        subscription_revenue = self._ledger_sum(
            region_id, start, end, "DEBIT",
            [TransactionType.subscription_purchase, TransactionType.subscription_renewal]
        )
        job_revenue = self._ledger_sum(
            region_id, start, end, "DEBIT", [TransactionType.job_posting_deduction], reference_type="JOB"
        )
        refunds = self._ledger_sum(
            region_id, start, end, "CREDIT", [TransactionType.job_refund, TransactionType.subscription_refund]
        )
        total = subscription_revenue + job_revenue - refunds

        licensee_share = 0
        if region["licensee_id"] and region["licensee_status"] == LicenseeStatus.active.value:
            licensee_share = apply_percent(total, region["revenue_share_percent"] or 0)

        return {
            "region_id": region_id,
            "licensee_id": region["licensee_id"],
            "period_start": start,
            "period_end": end,
            "subscription_revenue_cents": subscription_revenue,
            "job_revenue_cents": job_revenue,
            "refunds_cents": refunds,
            "total_revenue_cents": total,
            "licensee_share_cents": licensee_share,
            "platform_share_cents": total - licensee_share,
        }

    def create_or_update_monthly(self, region_id: int, month: datetime) -> Optional[dict]:
        """
        Store the month's figures. Months without any activity are skipped;
        rows that are already settled or paid are returned unchanged.
        """
        figures = self.calculate_monthly(region_id, month)
        existing = fetch_one(
            self.db,
            f"SELECT {REVENUE_COLUMNS} FROM regional_revenue WHERE region_id = :r AND period_start = :start",
            {"r": region_id, "start": figures["period_start"]}
        )

        if existing and (existing["status"] == RevenueStatus.paid.value or existing["settlement_id"]):
            logger.info("regional_revenue_locked revenue_id=%s", existing["revenue_id"])
            return existing

        no_activity = not (figures["subscription_revenue_cents"] or figures["job_revenue_cents"] or figures["refunds_cents"])
        if no_activity and not existing:
            return None

        now = utcnow()
        params = {**figures, "now": now, "status": RevenueStatus.pending.value}
        if existing:
            row = fetch_one(
                self.db,
                f"""
                    UPDATE regional_revenue
                    SET licensee_id = :licensee_id, subscription_revenue_cents = :subscription_revenue_cents,
                        job_revenue_cents = :job_revenue_cents, refunds_cents = :refunds_cents,
                        total_revenue_cents = :total_revenue_cents, licensee_share_cents = :licensee_share_cents,
                        platform_share_cents = :platform_share_cents, updated_at = :now
                    WHERE revenue_id = :revenue_id
                    RETURNING {REVENUE_COLUMNS}
                """,
                {**params, "revenue_id": existing["revenue_id"]}
            )
        else:
            row = fetch_one(
                self.db,
                f"""
                    INSERT INTO regional_revenue (region_id, licensee_id, period_start, period_end,
                        subscription_revenue_cents, job_revenue_cents, refunds_cents, total_revenue_cents,
                        licensee_share_cents, platform_share_cents, status, created_at, updated_at)
                    VALUES (:region_id, :licensee_id, :period_start, :period_end,
                        :subscription_revenue_cents, :job_revenue_cents, :refunds_cents, :total_revenue_cents,
                        :licensee_share_cents, :platform_share_cents, :status, :now, :now)
                    RETURNING {REVENUE_COLUMNS}
                """,
                params
            )
        logger.info("regional_revenue_recorded region_id=%s period=%s total_cents=%s",
                    region_id, figures["period_start"].strftime("%Y-%m"), figures["total_revenue_cents"])
        return row

    def process_all_regions(self, month: datetime) -> Dict[str, Any]:
        regions = fetch_all(
            self.db, "SELECT region_id FROM regions WHERE is_active = :active ORDER BY region_id", {"active": True}
        )
        processed, errors = [], []
        for region in regions:
            try:
                row = self.create_or_update_monthly(region["region_id"], month)
            except LedgerError as e:
                errors.append({"region_id": region["region_id"], "error": e.message})
                continue
            if row:
                processed.append(row["revenue_id"])
        return {"processed": processed, "errors": errors}

    def list_pending(self, licensee_id: Optional[int] = None) -> List[dict]:
        params: Dict[str, Any] = {"status": RevenueStatus.pending.value}
        licensee_filter = ""
        if licensee_id is not None:
            licensee_filter = "AND licensee_id = :licensee_id"
            params["licensee_id"] = licensee_id
        return fetch_all(
            self.db,
            f"""SELECT {REVENUE_COLUMNS} FROM regional_revenue
                WHERE status = :status AND settlement_id IS NULL {licensee_filter}
                ORDER BY period_start, region_id""",
            params
        )

    def list_by_region(self, region_id: int, status: Optional[str] = None, limit: int = 12) -> List[dict]:
        params: Dict[str, Any] = {"region_id": region_id}
        status_filter = ""
        if status:
            status_filter = "AND status = :status"
            params["status"] = status
        return fetch_all(
            self.db,
            f"""SELECT {REVENUE_COLUMNS} FROM regional_revenue WHERE region_id = :region_id {status_filter}
                ORDER BY period_start DESC LIMIT {int(limit)}""",
            params
        )

    @staticmethod
    def previous_month(now: Optional[datetime] = None) -> datetime:
        return previous_month(now)
