"""Tests for subscription purchase, usage and renewal."""

from datetime import timedelta

import pytest

from hireledger.core.exceptions import (
    InsufficientFundsError, InvalidStateError, PermissionDeniedError, ValidationError
)
from hireledger.models.enums import AccountOwner, BillingCycle, SubscriptionPlanType
from hireledger.services.job_service import JobService
from hireledger.services.subscription_service import SubscriptionService, discounted_price
from hireledger.services.wallet_service import WalletService
from hireledger.utils.dates import utcnow


@pytest.fixture
def subscriptions(db):
    return SubscriptionService(db)


def company_balance(db, company_id):
    return WalletService(db).get_account_by_owner(AccountOwner.company, company_id)["balance_cents"]


def test_discounted_price():
    assert discounted_price(100000, 10) == 90000
    assert discounted_price(99999, 0) == 99999


class TestCreate:
    def test_paid_from_wallet(self, db, seed, subscriptions):
        company = seed.company()
        seed.fund(company["company_id"], 200000)

        result = subscriptions.create(
            company["company_id"], SubscriptionPlanType.small, "Small", 100000,
            job_quota=5, discount_percent=10
        )

        subscription = result["subscription"]
        assert subscription["status"] == "ACTIVE"
        assert subscription["price_paid_cents"] == 90000
        assert subscription["prepaid_balance_cents"] == 90000
        assert result["transaction"]["type"] == "SUBSCRIPTION_PURCHASE"
        assert result["commission"] is None
        assert company_balance(db, company["company_id"]) == 110000

    def test_payment_reference_tops_up_first(self, db, seed, subscriptions):
        company = seed.company()
        result = subscriptions.create(
            company["company_id"], SubscriptionPlanType.medium, "Medium", 50000, payment_reference="CARD-1"
        )
        assert result["transaction"]["amount_cents"] == 50000
        assert company_balance(db, company["company_id"]) == 0

    def test_payment_reference_is_not_reused(self, db, seed, subscriptions):
        company = seed.company()
        first = subscriptions.create(
            company["company_id"], SubscriptionPlanType.medium, "Medium", 50000, payment_reference="CARD-1"
        )
        subscriptions.cancel(first["subscription"]["subscription_id"], reason="Downgrade")

        with pytest.raises(InvalidStateError):
            subscriptions.create(
                company["company_id"], SubscriptionPlanType.small, "Small", 50000, payment_reference="CARD-1"
            )

    def test_insufficient_wallet(self, seed, subscriptions):
        company = seed.company()
        with pytest.raises(InsufficientFundsError):
            subscriptions.create(company["company_id"], SubscriptionPlanType.small, "Small", 100000)

    def test_free_plan(self, seed, subscriptions):
        company = seed.company()
        result = subscriptions.create(company["company_id"], SubscriptionPlanType.ats_lite, "ATS Lite", 0)
        assert result["transaction"] is None
        assert result["subscription"]["status"] == "ACTIVE"

    def test_one_active_per_company(self, seed, subscriptions):
        company = seed.company()
        subscriptions.create(company["company_id"], SubscriptionPlanType.ats_lite, "ATS Lite", 0)
        with pytest.raises(InvalidStateError):
            subscriptions.create(company["company_id"], SubscriptionPlanType.ats_lite, "ATS Lite", 0)

    @pytest.mark.parametrize("kwargs", [
        {"base_price_cents": -1},
        {"base_price_cents": 100, "discount_percent": 120},
        {"base_price_cents": 100, "job_quota": 0},
    ])
    def test_invalid_input(self, seed, subscriptions, kwargs):
        company = seed.company()
        with pytest.raises(ValidationError):
            subscriptions.create(company["company_id"], SubscriptionPlanType.custom, "Custom", **kwargs)

    def test_sales_agent_earns_commission(self, db, seed, subscriptions):
        agent = seed.sales_agent()
        company = seed.company(sales_agent_id=agent["consultant_id"])
        seed.fund(company["company_id"], 100000)

        result = subscriptions.create(company["company_id"], SubscriptionPlanType.small, "Small", 100000)

        assert result["commission"]["consultant_id"] == agent["consultant_id"]
        assert result["commission"]["amount_cents"] == 10000
        assert result["commission"]["transaction_id"] == result["transaction"]["transaction_id"]


class TestUsage:
    def test_job_posting_consumes_quota(self, db, seed, subscriptions):
        company = seed.company()
        seed.fund(company["company_id"], 100000)
        subscription = subscriptions.create(
            company["company_id"], SubscriptionPlanType.small, "Small", 100000, job_quota=2
        )["subscription"]

        job = JobService(db).create_job(
            company["company_id"], "Engineer", subscription_id=subscription["subscription_id"]
        )

        assert job["payment_status"] == "PAID"
        assert job["payment_amount_cents"] == 50000
        stats = subscriptions.get_with_stats(subscription["subscription_id"])["stats"]
        assert stats["jobs_posted"] == 1
        assert stats["jobs_remaining"] == 1
        assert stats["usage_percent"] == 50.0

    def test_quota_reached(self, db, seed, subscriptions):
        company = seed.company()
        subscription = subscriptions.create(
            company["company_id"], SubscriptionPlanType.ats_lite, "ATS Lite", 0, job_quota=1
        )["subscription"]
        subscriptions.process_job_posting(subscription["subscription_id"], company["company_id"], "First")
        with pytest.raises(InvalidStateError, match="quota"):
            subscriptions.process_job_posting(subscription["subscription_id"], company["company_id"], "Second")

    def test_other_company(self, seed, subscriptions):
        owner, other = seed.company(), seed.company()
        subscription = subscriptions.create(owner["company_id"], SubscriptionPlanType.ats_lite, "ATS Lite", 0)["subscription"]
        with pytest.raises(PermissionDeniedError):
            subscriptions.process_job_posting(subscription["subscription_id"], other["company_id"], "Job")

    def test_cancel(self, seed, subscriptions):
        company = seed.company()
        subscription = subscriptions.create(company["company_id"], SubscriptionPlanType.ats_lite, "ATS Lite", 0)["subscription"]

        cancelled = subscriptions.cancel(subscription["subscription_id"], "No longer hiring")

        assert cancelled["status"] == "CANCELLED"
        assert not cancelled["auto_renew"]
        assert subscriptions.get_active(company["company_id"]) is None
        with pytest.raises(InvalidStateError):
            subscriptions.cancel(subscription["subscription_id"])


class TestRenewal:
    def _lapsed(self, seed, subscriptions, funds, auto_renew=True):
        company = seed.company()
        seed.fund(company["company_id"], funds)
        subscription = subscriptions.create(
            company["company_id"], SubscriptionPlanType.small, "Small", 30000,
            billing_cycle=BillingCycle.monthly, auto_renew=auto_renew,
            start_date=utcnow() - timedelta(days=40)
        )["subscription"]
        return company, subscription

    def test_renew_extends_period(self, db, seed, subscriptions):
        company, subscription = self._lapsed(seed, subscriptions, 60000)

        result = subscriptions.renew(subscription["subscription_id"])

        assert result["renewed"] is True
        assert result["transaction"]["type"] == "SUBSCRIPTION_RENEWAL"
        assert str(result["subscription"]["start_date"])[:10] == str(subscription["end_date"])[:10]
        assert result["subscription"]["jobs_used"] == 0
        assert company_balance(db, company["company_id"]) == 0

    def test_failed_renewal_is_recorded(self, db, seed, subscriptions):
        company, subscription = self._lapsed(seed, subscriptions, 30000)

        result = subscriptions.renew(subscription["subscription_id"])

        assert result["renewed"] is False
        assert "Insufficient" in result["reason"]
        assert result["subscription"]["renewal_failed_at"] is not None
        assert result["subscription"]["status"] == "ACTIVE"

    def test_renew_requires_auto_renew(self, seed, subscriptions):
        _, subscription = self._lapsed(seed, subscriptions, 30000, auto_renew=False)
        with pytest.raises(InvalidStateError):
            subscriptions.renew(subscription["subscription_id"])

    def test_renew_due(self, db, seed, subscriptions):
        _, funded = self._lapsed(seed, subscriptions, 60000)
        _, broke = self._lapsed(seed, subscriptions, 30000)
        _, manual = self._lapsed(seed, subscriptions, 30000, auto_renew=False)

        result = subscriptions.renew_due()

        assert result["renewed"] == [funded["subscription_id"]]
        assert result["failed"] == [broke["subscription_id"]]
        assert result["expired"] == [manual["subscription_id"]]
        assert subscriptions.get(manual["subscription_id"])["status"] == "EXPIRED"
        assert subscriptions.get(broke["subscription_id"])["renewal_failure_reason"]
