"""Tests for consultant withdrawal requests and payouts."""

import pytest
from sqlalchemy import text

from hireledger.core.exceptions import (
    InsufficientFundsError, InvalidStateError, PermissionDeniedError, ValidationError
)
from hireledger.models.enums import AccountOwner
from hireledger.services.commission_service import CommissionService
from hireledger.services.wallet_service import WalletService
from hireledger.services.withdrawal_service import WithdrawalService


@pytest.fixture
def withdrawals(db):
    return WithdrawalService(db)


@pytest.fixture
def earner(db, seed):
    """A consultant with three confirmed commissions: $30, $40, $50."""
    consultant = seed.consultant()
    service = CommissionService(db)
    ids = [service.award(consultant["consultant_id"], cents)["commission_id"] for cents in (3000, 4000, 5000)]
    return {**consultant, "commission_ids": ids}


class TestRequest:
    def test_balance(self, withdrawals, earner):
        balance = withdrawals.wallet_balance(earner["consultant_id"])
        assert balance["available_cents"] == 12000
        assert balance["wallet_balance_cents"] == 12000
        assert balance["minimum_withdrawal_cents"] == 5000

    def test_by_commission_ids(self, withdrawals, earner):
        first, _, third = earner["commission_ids"]
        withdrawal = withdrawals.request(earner["consultant_id"], commission_ids=[first, third])

        assert withdrawal["status"] == "PENDING"
        assert withdrawal["amount_cents"] == 8000
        assert withdrawal["commission_ids"] == [first, third]
        assert withdrawals.calculate_balance(earner["consultant_id"])["available_cents"] == 4000

    def test_amount_within_one_cent_of_selection(self, withdrawals, earner):
        first, second, _ = earner["commission_ids"]
        withdrawal = withdrawals.request(earner["consultant_id"], amount_cents=7001, commission_ids=[first, second])
        assert withdrawal["amount_cents"] == 7000

    def test_amount_mismatch(self, withdrawals, earner):
        first, second, _ = earner["commission_ids"]
        with pytest.raises(ValidationError):
            withdrawals.request(earner["consultant_id"], amount_cents=7500, commission_ids=[first, second])

    def test_oldest_first_by_amount(self, withdrawals, earner):
        withdrawal = withdrawals.request(earner["consultant_id"], amount_cents=7000)
        assert withdrawal["commission_ids"] == earner["commission_ids"][:2]

    def test_amount_not_matching_a_run(self, withdrawals, earner):
        with pytest.raises(ValidationError):
            withdrawals.request(earner["consultant_id"], amount_cents=6000)

    def test_amount_above_available(self, withdrawals, earner):
        with pytest.raises(InsufficientFundsError):
            withdrawals.request(earner["consultant_id"], amount_cents=20000)

    def test_below_minimum(self, withdrawals, earner):
        with pytest.raises(ValidationError, match="Minimum"):
            withdrawals.request(earner["consultant_id"], commission_ids=[earner["commission_ids"][0]])

    def test_commission_cannot_be_requested_twice(self, withdrawals, earner):
        third = earner["commission_ids"][2]
        withdrawals.request(earner["consultant_id"], commission_ids=[third])
        with pytest.raises(ValidationError):
            withdrawals.request(earner["consultant_id"], commission_ids=[third])

    def test_nothing_requested(self, withdrawals, earner):
        with pytest.raises(ValidationError):
            withdrawals.request(earner["consultant_id"])


class TestLifecycle:
    def test_approve_and_pay(self, db, seed, withdrawals, earner, audit_log):
        admin = seed.admin()
        withdrawal = withdrawals.request(earner["consultant_id"], commission_ids=earner["commission_ids"][1:])

        withdrawals.approve(withdrawal["withdrawal_id"], admin["user_id"])
        withdrawals.start_processing(withdrawal["withdrawal_id"], admin["user_id"])
        paid = withdrawals.process_payment(withdrawal["withdrawal_id"], "WIRE-001", admin_id=admin["user_id"])

        assert paid["status"] == "COMPLETED"
        assert paid["transaction_id"] is not None
        account = WalletService(db).get_account_by_owner(AccountOwner.consultant, earner["consultant_id"])
        assert account["balance_cents"] == 3000
        statuses = {c["commission_id"]: c["status"] for c in CommissionService(db).list_for_consultant(earner["consultant_id"])}
        assert statuses[earner["commission_ids"][0]] == "CONFIRMED"
        assert statuses[earner["commission_ids"][1]] == "PAID"
        assert statuses[earner["commission_ids"][2]] == "PAID"
        assert withdrawals.calculate_balance(earner["consultant_id"])["total_withdrawn_cents"] == 9000
        db.commit()
        assert audit_log.actions() == ["WITHDRAWAL_APPROVED", "WITHDRAWAL_COMPLETED"]

    def test_pending_cannot_be_paid(self, withdrawals, earner):
        withdrawal = withdrawals.request(earner["consultant_id"], commission_ids=earner["commission_ids"])
        with pytest.raises(InvalidStateError):
            withdrawals.process_payment(withdrawal["withdrawal_id"], "WIRE-001")

    def test_payout_refused_when_a_commission_was_paid_directly(self, db, seed, withdrawals, earner):
        admin = seed.admin()
        withdrawal = withdrawals.request(earner["consultant_id"], commission_ids=earner["commission_ids"][1:])
        withdrawals.approve(withdrawal["withdrawal_id"], admin["user_id"])
        db.execute(
            text("UPDATE commissions SET status = 'PAID' WHERE commission_id = :id"),
            {"id": earner["commission_ids"][1]}
        )

        with pytest.raises(InvalidStateError, match="no longer CONFIRMED"):
            withdrawals.process_payment(withdrawal["withdrawal_id"], "WIRE-002", admin_id=admin["user_id"])

        account = WalletService(db).get_account_by_owner(AccountOwner.consultant, earner["consultant_id"])
        assert account["balance_cents"] == 12000
        assert withdrawals.get(withdrawal["withdrawal_id"])["status"] == "APPROVED"

    def test_reject_releases_commissions(self, seed, withdrawals, earner):
        admin = seed.admin()
        withdrawal = withdrawals.request(earner["consultant_id"], commission_ids=earner["commission_ids"])

        with pytest.raises(ValidationError):
            withdrawals.reject(withdrawal["withdrawal_id"], admin["user_id"], " ")
        rejected = withdrawals.reject(withdrawal["withdrawal_id"], admin["user_id"], "Bank details missing")

        assert rejected["status"] == "REJECTED"
        assert withdrawals.calculate_balance(earner["consultant_id"])["available_cents"] == 12000

    def test_cancel_only_own_pending(self, seed, withdrawals, earner):
        other = seed.consultant()
        withdrawal = withdrawals.request(earner["consultant_id"], commission_ids=earner["commission_ids"])

        with pytest.raises(PermissionDeniedError):
            withdrawals.cancel(withdrawal["withdrawal_id"], other["consultant_id"])
        cancelled = withdrawals.cancel(withdrawal["withdrawal_id"], earner["consultant_id"])
        assert cancelled["status"] == "CANCELLED"
        with pytest.raises(InvalidStateError):
            withdrawals.cancel(withdrawal["withdrawal_id"], earner["consultant_id"])

    def test_list_pending_includes_open_states(self, seed, withdrawals, earner):
        admin = seed.admin()
        first = withdrawals.request(earner["consultant_id"], commission_ids=[earner["commission_ids"][2]])
        second = withdrawals.request(earner["consultant_id"], commission_ids=earner["commission_ids"][:2])
        withdrawals.approve(second["withdrawal_id"], admin["user_id"])

        pending = withdrawals.list_pending()
        assert [w["withdrawal_id"] for w in pending] == [first["withdrawal_id"], second["withdrawal_id"]]
        assert pending[0]["consultant_name"] == earner["full_name"]
