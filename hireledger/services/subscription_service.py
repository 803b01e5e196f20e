"""
Subscription Service - prepaid hiring plans paid from the company wallet.

Funding model:
- purchase: price after discount is debited (SUBSCRIPTION_PURCHASE). When
  the purchase arrives with an external payment reference the same amount
  is first credited as a WALLET_TOPUP.
- job postings: consume one job of the quota and price / quota of the
  prepaid balance. No wallet movement; the money was taken at purchase.
- renewal: debits SUBSCRIPTION_RENEWAL for a new cycle. An unfunded
  renewal is recorded on the subscription and reported, not raised.

Every paid purchase or renewal pays the company's sales agent a
SUBSCRIPTION_SALE commission in the same transaction.
"""

import logging
from datetime import datetime
from typing import Optional, List, Dict, Any

from sqlalchemy import text
from sqlalchemy.orm import Session

from hireledger.core.config import get_settings
from hireledger.core.exceptions import (
    InvalidStateError, LedgerError, NotFoundError, PermissionDeniedError, ValidationError
)
from hireledger.db.postgres import fetch_all, fetch_one, lock_clause
from hireledger.models.enums import (
    AccountOwner, BillingCycle, CommissionType, SubscriptionPlanType, SubscriptionStatus, TransactionType
)
from hireledger.services.commission_service import CommissionService
from hireledger.services.wallet_service import WalletService
from hireledger.utils.dates import add_months, as_datetime, utcnow
from hireledger.utils.money import apply_percent, format_money

logger = logging.getLogger(__name__)

SUBSCRIPTION_COLUMNS = """
    subscription_id, company_id, name, plan_type, status, base_price_cents, price_paid_cents,
    currency, billing_cycle, discount_percent, start_date, end_date, renewal_date, job_quota,
    jobs_used, prepaid_balance_cents, auto_renew, renewal_failed_at, renewal_failure_reason,
    cancelled_at, notes, created_at
"""

CYCLE_MONTHS = {
    BillingCycle.monthly.value: 1,
    BillingCycle.annual.value: 12,
}


def discounted_price(base_price_cents: int, discount_percent: float) -> int:
    return base_price_cents - apply_percent(base_price_cents, discount_percent or 0)


class SubscriptionService:

    def __init__(self, db: Session):
        self.db = db
        self.settings = get_settings()
        self.wallet = WalletService(db)
        self.commissions = CommissionService(db)

    # ============================================================
    # PURCHASE
    # ============================================================

    def create(self, company_id: int, plan_type: SubscriptionPlanType, name: str, base_price_cents: int,
               billing_cycle: BillingCycle = BillingCycle.monthly, job_quota: Optional[int] = None,
               discount_percent: float = 0, auto_renew: bool = True, start_date: Optional[datetime] = None,
               payment_reference: Optional[str] = None, notes: Optional[str] = None,
               created_by: Optional[int] = None) -> Dict[str, Any]:
        """
        Buy a subscription for a company.

        Returns {"subscription", "transaction", "commission"}; transaction and
        commission are None for free plans.
        """
        if base_price_cents < 0:
            raise ValidationError("Subscription price cannot be negative")
        if not 0 <= (discount_percent or 0) <= 100:
            raise ValidationError("Discount must be between 0 and 100 percent")
        if job_quota is not None and job_quota <= 0:
            raise ValidationError("Job quota must be positive")

        company = fetch_one(
            self.db, "SELECT company_id, company_name FROM companies WHERE company_id = :id", {"id": company_id}
        )
        if not company:
            raise NotFoundError(f"Company {company_id} not found")
        if self.get_active(company_id):
            raise InvalidStateError("Company already has an active subscription")

        cycle = billing_cycle.value if hasattr(billing_cycle, "value") else billing_cycle
        price = discounted_price(base_price_cents, discount_percent)
        start = start_date or utcnow()
        end = add_months(start, CYCLE_MONTHS[cycle])

        account = self.wallet.get_or_create_account(AccountOwner.company, company_id)
        if payment_reference and price > 0:
            self.wallet.credit(
                account["account_id"], price, TransactionType.wallet_topup,
                f"Payment {payment_reference} for {name} subscription",
                reference_type="PAYMENT", created_by=created_by, external_reference=payment_reference
            )

        subscription = fetch_one(
            self.db,
            f"""
                INSERT INTO subscriptions (company_id, name, plan_type, status, base_price_cents,
                    price_paid_cents, currency, billing_cycle, discount_percent, start_date, end_date,
                    renewal_date, job_quota, jobs_used, prepaid_balance_cents, auto_renew, notes, created_at)
                VALUES (:company_id, :name, :plan_type, :status, :base_price, :price, :currency, :cycle,
                    :discount, :start, :end, :end, :quota, 0, :price, :auto_renew, :notes, :now)
                RETURNING {SUBSCRIPTION_COLUMNS}
            """,
            {
                "company_id": company_id, "name": name,
                "plan_type": plan_type.value if hasattr(plan_type, "value") else plan_type,
                "status": SubscriptionStatus.active.value, "base_price": base_price_cents, "price": price,
                "currency": self.settings.currency, "cycle": cycle, "discount": discount_percent or 0,
                "start": start, "end": end, "quota": job_quota, "auto_renew": auto_renew,
                "notes": notes, "now": utcnow()
            }
        )
        subscription_id = subscription["subscription_id"]

        transaction = commission = None
        if price > 0:
            posted = self.wallet.debit(
                account["account_id"], price, TransactionType.subscription_purchase,
                f"{name} subscription ({cycle.lower()})",
                reference_type="SUBSCRIPTION", reference_id=subscription_id,
                subscription_id=subscription_id, created_by=created_by
            )
            transaction = posted["transaction"]
            commission = self.commissions.process_sales_commission(
                company_id, price, f"Subscription sale: {name} for {company['company_name']}",
                subscription_id=subscription_id, type=CommissionType.subscription_sale,
                transaction_id=transaction["transaction_id"]
            )

        logger.info("subscription_created subscription_id=%s company_id=%s price_cents=%s",
                    subscription_id, company_id, price)
        return {"subscription": subscription, "transaction": transaction, "commission": commission}

    # ============================================================
    # USAGE
    # ============================================================

    def process_job_posting(self, subscription_id: int, company_id: int, job_title: str) -> Dict[str, Any]:
        """Consume one job of the subscription's quota."""
        subscription = self._lock(subscription_id)
        if subscription["company_id"] != company_id:
            raise PermissionDeniedError("Subscription belongs to another company")
        if subscription["status"] != SubscriptionStatus.active.value:
            raise InvalidStateError(f"Subscription is {subscription['status']}")
        if as_datetime(subscription["end_date"]) < utcnow():
            raise InvalidStateError("Subscription period has ended")

        quota = subscription["job_quota"]
        if quota is not None and subscription["jobs_used"] >= quota:
            raise InvalidStateError(f"Job quota of {quota} reached for this subscription")

        deducted = subscription["price_paid_cents"] // quota if quota else 0
        deducted = min(deducted, subscription["prepaid_balance_cents"])

        updated = fetch_one(
            self.db,
            f"""
                UPDATE subscriptions
                SET jobs_used = jobs_used + 1, prepaid_balance_cents = prepaid_balance_cents - :deducted
                WHERE subscription_id = :id
                RETURNING {SUBSCRIPTION_COLUMNS}
            """,
            {"deducted": deducted, "id": subscription_id}
        )
        logger.info("subscription_job_posted subscription_id=%s job=%r jobs_used=%s",
                    subscription_id, job_title, updated["jobs_used"])
        return {"subscription": updated, "deducted_cents": deducted}

    # ============================================================
    # RENEWAL
    # ============================================================

    def renew(self, subscription_id: int, created_by: Optional[int] = None) -> Dict[str, Any]:
        """
        Renew for one more billing cycle.

        Returns {"renewed": True, "subscription", "transaction", "commission"}
        or, when the wallet cannot cover the price, {"renewed": False,
        "reason"} after recording the failure on the subscription.
        """
        subscription = self._lock(subscription_id)
        if subscription["status"] != SubscriptionStatus.active.value:
            raise InvalidStateError(f"Subscription is {subscription['status']}")
        if not subscription["auto_renew"]:
            raise InvalidStateError("Auto-renew is disabled for this subscription")

        price = discounted_price(subscription["base_price_cents"], subscription["discount_percent"])
        account = self.wallet.get_or_create_account(AccountOwner.company, subscription["company_id"])

        if account["balance_cents"] < price:
            reason = (
                f"Insufficient wallet balance. Available: {format_money(account['balance_cents'])}, "
                f"Required: {format_money(price)}"
            )
            self.db.execute(
                text("""UPDATE subscriptions SET renewal_failed_at = :now, renewal_failure_reason = :reason
                        WHERE subscription_id = :id"""),
                {"now": utcnow(), "reason": reason, "id": subscription_id}
            )
            logger.warning("subscription_renewal_failed subscription_id=%s reason=insufficient_funds", subscription_id)
            return {"renewed": False, "reason": reason, "subscription": self.get(subscription_id)}

        start = as_datetime(subscription["end_date"])
        end = add_months(start, CYCLE_MONTHS[subscription["billing_cycle"]])

        transaction = None
        if price > 0:
            posted = self.wallet.debit(
                account["account_id"], price, TransactionType.subscription_renewal,
                f"{subscription['name']} renewal {start.date().isoformat()} - {end.date().isoformat()}",
                reference_type="SUBSCRIPTION", reference_id=subscription_id,
                subscription_id=subscription_id, created_by=created_by
            )
            transaction = posted["transaction"]

        renewed = fetch_one(
            self.db,
            f"""
                UPDATE subscriptions
                SET start_date = :start, end_date = :end, renewal_date = :end, jobs_used = 0,
                    prepaid_balance_cents = :price, price_paid_cents = :price,
                    renewal_failed_at = NULL, renewal_failure_reason = NULL
                WHERE subscription_id = :id
                RETURNING {SUBSCRIPTION_COLUMNS}
            """,
            {"start": start, "end": end, "price": price, "id": subscription_id}
        )

        commission = None
        if transaction:
            commission = self.commissions.process_sales_commission(
                subscription["company_id"], price, f"Subscription renewal: {subscription['name']}",
                subscription_id=subscription_id, type=CommissionType.subscription_sale,
                transaction_id=transaction["transaction_id"]
            )

        logger.info("subscription_renewed subscription_id=%s end_date=%s", subscription_id, end.isoformat())
        return {"renewed": True, "subscription": renewed, "transaction": transaction, "commission": commission}

    def renew_due(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Maintenance: renew auto-renew subscriptions past their renewal date
        and expire the ones that will not renew.
        """
        now = now or utcnow()
        due = fetch_all(
            self.db,
            """SELECT subscription_id, auto_renew FROM subscriptions
               WHERE status = :status AND renewal_date <= :now ORDER BY subscription_id""",
            {"status": SubscriptionStatus.active.value, "now": now}
        )

        result = {"renewed": [], "failed": [], "expired": [], "errors": []}
        for row in due:
            subscription_id = row["subscription_id"]
            if not row["auto_renew"]:
                self.db.execute(
                    text("UPDATE subscriptions SET status = :status WHERE subscription_id = :id"),
                    {"status": SubscriptionStatus.expired.value, "id": subscription_id}
                )
                result["expired"].append(subscription_id)
                continue
            try:
                # One failed renewal rolls back only its own writes
                with self.db.begin_nested():
                    outcome = self.renew(subscription_id)
            except LedgerError as e:
                result["errors"].append({"subscription_id": subscription_id, "error": e.message})
                continue
            if outcome["renewed"]:
                result["renewed"].append(subscription_id)
            else:
                result["failed"].append(subscription_id)

        logger.info("subscription_renewals_processed renewed=%s failed=%s expired=%s",
                    len(result["renewed"]), len(result["failed"]), len(result["expired"]))
        return result

    # ============================================================
    # CANCEL / QUERIES
    # ============================================================

    def cancel(self, subscription_id: int, reason: Optional[str] = None,
               company_id: Optional[int] = None) -> dict:
        subscription = self._lock(subscription_id)
        if company_id is not None and subscription["company_id"] != company_id:
            raise PermissionDeniedError("Subscription belongs to another company")
        if subscription["status"] != SubscriptionStatus.active.value:
            raise InvalidStateError(f"Subscription is already {subscription['status']}")

        cancelled = fetch_one(
            self.db,
            f"""
                UPDATE subscriptions
                SET status = :status, cancelled_at = :now, auto_renew = :auto_renew,
                    notes = COALESCE(:reason, notes)
                WHERE subscription_id = :id
                RETURNING {SUBSCRIPTION_COLUMNS}
            """,
            {
                "status": SubscriptionStatus.cancelled.value, "now": utcnow(), "auto_renew": False,
                "reason": reason, "id": subscription_id
            }
        )
        logger.info("subscription_cancelled subscription_id=%s", subscription_id)
        return cancelled

    def get(self, subscription_id: int) -> dict:
        subscription = fetch_one(
            self.db,
            f"SELECT {SUBSCRIPTION_COLUMNS} FROM subscriptions WHERE subscription_id = :id",
            {"id": subscription_id}
        )
        if not subscription:
            raise NotFoundError(f"Subscription {subscription_id} not found")
        return subscription

    def get_with_stats(self, subscription_id: int, company_id: Optional[int] = None) -> dict:
        subscription = self.get(subscription_id)
        if company_id is not None and subscription["company_id"] != company_id:
            raise PermissionDeniedError("Subscription belongs to another company")

        quota = subscription["job_quota"]
        used = subscription["jobs_used"]
        days_left = (as_datetime(subscription["end_date"]) - utcnow()).days
        jobs_posted = self.db.execute(
            text("SELECT COUNT(*) FROM jobs WHERE subscription_id = :id"), {"id": subscription_id}
        ).scalar()

        subscription["stats"] = {
            "jobs_posted": jobs_posted,
            "jobs_remaining": None if quota is None else max(quota - used, 0),
            "usage_percent": None if not quota else round(used / quota * 100, 1),
            "days_remaining": max(days_left, 0),
        }
        return subscription

    def get_active(self, company_id: int) -> Optional[dict]:
        return fetch_one(
            self.db,
            f"""SELECT {SUBSCRIPTION_COLUMNS} FROM subscriptions
                WHERE company_id = :company_id AND status = :status
                ORDER BY start_date DESC, subscription_id DESC LIMIT 1""",
            {"company_id": company_id, "status": SubscriptionStatus.active.value}
        )

    def list_for_company(self, company_id: int) -> List[dict]:
        return fetch_all(
            self.db,
            f"""SELECT {SUBSCRIPTION_COLUMNS} FROM subscriptions WHERE company_id = :id
                ORDER BY created_at DESC, subscription_id DESC""",
            {"id": company_id}
        )

    def _lock(self, subscription_id: int) -> dict:
        subscription = fetch_one(
            self.db,
            f"SELECT {SUBSCRIPTION_COLUMNS} FROM subscriptions WHERE subscription_id = :id" + lock_clause(self.db),
            {"id": subscription_id}
        )
        if not subscription:
            raise NotFoundError(f"Subscription {subscription_id} not found")
        return subscription
