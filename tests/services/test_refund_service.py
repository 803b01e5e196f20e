"""Tests for company refund requests."""

import pytest

from hireledger.core.exceptions import (
    InvalidStateError, NotFoundError, PermissionDeniedError, ValidationError
)
from hireledger.models.enums import AccountOwner, SubscriptionPlanType
from hireledger.services.commission_service import CommissionService
from hireledger.services.job_payment_service import JobPaymentService
from hireledger.services.job_service import JobService
from hireledger.services.refund_service import RefundService
from hireledger.services.subscription_service import SubscriptionService
from hireledger.services.wallet_service import WalletService


@pytest.fixture
def refunds(db):
    return RefundService(db)


@pytest.fixture
def paid_job(db, seed):
    """A shortlisting job paid from the wallet, with a sales agent commission."""
    agent = seed.sales_agent()
    company = seed.company(sales_agent_id=agent["consultant_id"])
    seed.fund(company["company_id"], 199000)
    job = JobService(db).create_job(company["company_id"], "Engineer")
    payment = JobPaymentService(db).pay_for_job_from_wallet(company["company_id"], job["job_id"], "shortlisting")
    return {
        "company": company, "agent": agent, "job": payment["job"],
        "transaction": payment["transaction"], "commission": payment["commission"],
    }


def balance(db, owner_type, owner_id):
    return WalletService(db).get_account_by_owner(owner_type, owner_id, with_transactions=False)["balance_cents"]


class TestCreateRequest:
    def test_partial_requests_up_to_the_charge(self, refunds, paid_job):
        company_id = paid_job["company"]["company_id"]
        txn_id = paid_job["transaction"]["transaction_id"]

        first = refunds.create_request(company_id, txn_id, 100000, "Role cancelled")
        assert first["status"] == "PENDING"
        assert first["transaction_type"] == "JOB_PAYMENT"

        with pytest.raises(ValidationError, match="refundable"):
            refunds.create_request(company_id, txn_id, 99001, "More")
        refunds.create_request(company_id, txn_id, 99000, "Rest")

    def test_only_own_transactions(self, seed, refunds, paid_job):
        other = seed.company()
        with pytest.raises(PermissionDeniedError):
            refunds.create_request(other["company_id"], paid_job["transaction"]["transaction_id"], 100, "Mine")

    def test_credits_are_not_refundable(self, db, seed, refunds):
        company = seed.company()
        seed.fund(company["company_id"], 5000)
        topup = WalletService(db).list_transactions(type="WALLET_TOPUP")["transactions"][0]
        with pytest.raises(ValidationError):
            refunds.create_request(company["company_id"], topup["transaction_id"], 100, "Undo")

    def test_unknown_transaction(self, seed, refunds):
        company = seed.company()
        with pytest.raises(NotFoundError):
            refunds.create_request(company["company_id"], 999, 100, "Missing")

    @pytest.mark.parametrize("amount,reason", [(0, "Reason"), (100, "  ")])
    def test_invalid_input(self, refunds, paid_job, amount, reason):
        with pytest.raises(ValidationError):
            refunds.create_request(
                paid_job["company"]["company_id"], paid_job["transaction"]["transaction_id"], amount, reason
            )


class TestApprove:
    def test_partial_refund_keeps_commission(self, db, seed, refunds, paid_job):
        admin = seed.admin()
        company_id = paid_job["company"]["company_id"]
        refund = refunds.create_request(company_id, paid_job["transaction"]["transaction_id"], 50000, "Partial")

        result = refunds.approve(refund["refund_id"], admin["user_id"])

        assert result["refund"]["status"] == "APPROVED"
        assert result["transaction"]["type"] == "JOB_REFUND"
        assert result["commission_reversal"] is None
        assert balance(db, AccountOwner.company, company_id) == 50000
        assert CommissionService(db).get(paid_job["commission"]["commission_id"])["status"] == "CONFIRMED"

    def test_full_refund_reverses_commission_and_job(self, db, seed, refunds, paid_job, audit_log):
        admin = seed.admin()
        refund = refunds.create_request(
            paid_job["company"]["company_id"], paid_job["transaction"]["transaction_id"], 199000, "Cancelled"
        )

        result = refunds.approve(refund["refund_id"], admin["user_id"], notes="OK")

        assert result["commission_reversal"]["reversed"] == [paid_job["commission"]["commission_id"]]
        assert balance(db, AccountOwner.consultant, paid_job["agent"]["consultant_id"]) == 0
        assert JobService(db).get_job(paid_job["job"]["job_id"])["payment_status"] == "REFUNDED"
        db.commit()
        assert "REFUND_APPROVED" in audit_log.actions()

    def test_full_subscription_refund_cancels_subscription(self, db, seed, refunds):
        admin = seed.admin()
        company = seed.company()
        seed.fund(company["company_id"], 40000)
        created = SubscriptionService(db).create(company["company_id"], SubscriptionPlanType.small, "Small", 40000)
        refund = refunds.create_request(
            company["company_id"], created["transaction"]["transaction_id"], 40000, "Wrong plan"
        )

        result = refunds.approve(refund["refund_id"], admin["user_id"])

        assert result["transaction"]["type"] == "SUBSCRIPTION_REFUND"
        subscription = SubscriptionService(db).get(created["subscription"]["subscription_id"])
        assert subscription["status"] == "CANCELLED"

    def test_decided_refund_cannot_change(self, seed, refunds, paid_job):
        admin = seed.admin()
        refund = refunds.create_request(
            paid_job["company"]["company_id"], paid_job["transaction"]["transaction_id"], 1000, "Oops"
        )
        refunds.reject(refund["refund_id"], admin["user_id"], "Not eligible")

        with pytest.raises(InvalidStateError):
            refunds.approve(refund["refund_id"], admin["user_id"])
        with pytest.raises(InvalidStateError):
            refunds.reject(refund["refund_id"], admin["user_id"], "Again")


class TestQueries:
    def test_stats_and_pending(self, seed, refunds, paid_job):
        admin = seed.admin()
        company_id = paid_job["company"]["company_id"]
        txn_id = paid_job["transaction"]["transaction_id"]
        approved = refunds.create_request(company_id, txn_id, 1000, "One")
        rejected = refunds.create_request(company_id, txn_id, 2000, "Two")
        pending = refunds.create_request(company_id, txn_id, 3000, "Three")
        refunds.approve(approved["refund_id"], admin["user_id"])
        refunds.reject(rejected["refund_id"], admin["user_id"], "No")

        stats = refunds.stats()

        assert stats["total_requests"] == 3
        assert stats["pending_amount_cents"] == 3000
        assert stats["approved_amount_cents"] == 1000
        assert stats["approval_rate"] == 50.0
        assert [r["refund_id"] for r in refunds.list_pending()] == [pending["refund_id"]]
        assert len(refunds.list_for_company(company_id)) == 3
