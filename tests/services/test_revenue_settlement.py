"""Tests for monthly regional revenue and licensee settlements."""

from datetime import datetime

import pytest
from sqlalchemy import text

from hireledger.core.exceptions import InvalidStateError, NotFoundError, ValidationError
from hireledger.models.enums import SubscriptionPlanType
from hireledger.services.job_payment_service import JobPaymentService
from hireledger.services.job_service import JobService
from hireledger.services.refund_service import RefundService
from hireledger.services.revenue_service import RegionalRevenueService, previous_month
from hireledger.services.settlement_service import SettlementService
from hireledger.services.subscription_service import SubscriptionService
from hireledger.utils.dates import utcnow


@pytest.fixture
def revenue(db):
    return RegionalRevenueService(db)


@pytest.fixture
def settlements(db):
    return SettlementService(db)


@pytest.fixture
def busy_region(db, seed):
    """
    A region of a 20% licensee with one month of activity:
    $1,000 subscription + $1,990 job package - $90 refund (top-ups excluded).
    """
    licensee = seed.licensee(share_percent=20)
    region = seed.region(licensee["licensee_id"])
    company = seed.company(region_id=region["region_id"])
    seed.fund(company["company_id"], 300000)

    SubscriptionService(db).create(company["company_id"], SubscriptionPlanType.small, "Small", 100000)
    job = JobService(db).create_job(company["company_id"], "Engineer")
    payment = JobPaymentService(db).pay_for_job_from_wallet(company["company_id"], job["job_id"], "shortlisting")

    refunds = RefundService(db)
    refund = refunds.create_request(company["company_id"], payment["transaction"]["transaction_id"], 9000, "Partial")
    refunds.approve(refund["refund_id"], seed.admin()["user_id"])
    return {"licensee": licensee, "region": region, "company": company}


def test_previous_month():
    assert previous_month(datetime(2024, 1, 15)) == datetime(2023, 12, 1)
    assert previous_month(datetime(2024, 3, 31, 23, 59)) == datetime(2024, 2, 1)


class TestMonthlyRevenue:
    def test_calculate(self, revenue, busy_region):
        figures = revenue.calculate_monthly(busy_region["region"]["region_id"], utcnow())

        assert figures["subscription_revenue_cents"] == 100000
        assert figures["job_revenue_cents"] == 199000
        assert figures["refunds_cents"] == 9000
        assert figures["total_revenue_cents"] == 290000
        assert figures["licensee_share_cents"] == 58000
        assert figures["platform_share_cents"] == 232000

    def test_inactive_licensee_gets_nothing(self, db, seed, revenue, busy_region):
        db.execute(
            text("UPDATE licensees SET status = 'SUSPENDED' WHERE licensee_id = :id"),
            {"id": busy_region["licensee"]["licensee_id"]}
        )
        figures = revenue.calculate_monthly(busy_region["region"]["region_id"], utcnow())
        assert figures["licensee_share_cents"] == 0
        assert figures["platform_share_cents"] == 290000

    def test_unknown_region(self, revenue):
        with pytest.raises(NotFoundError):
            revenue.calculate_monthly(999, utcnow())

    def test_quiet_month_is_skipped(self, seed, revenue):
        region = seed.region(seed.licensee()["licensee_id"])
        assert revenue.create_or_update_monthly(region["region_id"], utcnow()) is None

    def test_recalculation_updates_same_row(self, revenue, busy_region):
        region_id = busy_region["region"]["region_id"]
        first = revenue.create_or_update_monthly(region_id, utcnow())
        second = revenue.create_or_update_monthly(region_id, utcnow())

        assert second["revenue_id"] == first["revenue_id"]
        assert len(revenue.list_by_region(region_id)) == 1

    def test_process_all_regions(self, seed, revenue, busy_region):
        seed.region()
        result = revenue.process_all_regions(utcnow())
        assert len(result["processed"]) == 1
        assert result["errors"] == []
        assert len(revenue.list_pending(busy_region["licensee"]["licensee_id"])) == 1


class TestSettlements:
    def test_generate_and_pay(self, revenue, settlements, busy_region):
        licensee_id = busy_region["licensee"]["licensee_id"]
        row = revenue.create_or_update_monthly(busy_region["region"]["region_id"], utcnow())

        settlement = settlements.generate(licensee_id, utcnow())

        assert settlement["status"] == "PENDING"
        assert settlement["licensee_share_cents"] == 58000
        assert settlement["revenue_ids"] == [row["revenue_id"]]
        assert settlements.generate(licensee_id, utcnow()) is None
        assert revenue.list_pending(licensee_id) == []

        paid = settlements.mark_paid(settlement["settlement_id"], "WIRE-77")

        assert paid["status"] == "PAID"
        detail = settlements.get(settlement["settlement_id"])
        assert [r["status"] for r in detail["revenue"]] == ["PAID"]
        with pytest.raises(InvalidStateError):
            settlements.mark_paid(settlement["settlement_id"], "WIRE-78")

    def test_paid_revenue_is_never_recalculated(self, revenue, settlements, busy_region):
        region_id = busy_region["region"]["region_id"]
        revenue.create_or_update_monthly(region_id, utcnow())
        settlement = settlements.generate(busy_region["licensee"]["licensee_id"], utcnow())
        settlements.mark_paid(settlement["settlement_id"], "WIRE-1")

        again = revenue.create_or_update_monthly(region_id, utcnow())
        assert again["status"] == "PAID"
        assert again["settlement_id"] == settlement["settlement_id"]

    def test_nothing_to_settle(self, seed, settlements):
        licensee = seed.licensee()
        assert settlements.generate(licensee["licensee_id"], utcnow()) is None

    def test_unknown_licensee(self, settlements):
        with pytest.raises(NotFoundError):
            settlements.generate(404, utcnow())

    def test_reference_required(self, settlements):
        with pytest.raises(ValidationError):
            settlements.mark_paid(1, "")

    def test_generate_all_and_stats(self, revenue, settlements, busy_region):
        revenue.process_all_regions(utcnow())

        result = settlements.generate_all(utcnow())

        assert len(result["generated"]) == 1
        stats = settlements.stats()
        assert stats["pending_count"] == 1
        assert stats["pending_licensee_share_cents"] == 58000
        assert stats["platform_share_cents"] == 232000
        assert len(settlements.list_by_licensee(None)) == 1
