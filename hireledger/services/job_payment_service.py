"""
Job Payment Service - recruitment service packages paid from the wallet.

Packages:
    self-managed      free
    shortlisting      service_fee_shortlisting
    full-service      service_fee_full_service
    executive-search  service_fee_executive_search
"""

import logging
from typing import Optional, Dict, Any

from sqlalchemy.orm import Session

from hireledger.core.config import get_settings
from hireledger.core.exceptions import InvalidStateError, NotFoundError, PermissionDeniedError, ValidationError
from hireledger.db.postgres import fetch_one, lock_clause
from hireledger.models.enums import (
    AccountOwner, CommissionType, JobStatus, PACKAGE_HIRING_MODE, PaymentStatus, ServicePackage, TransactionType
)
from hireledger.services.commission_service import CommissionService
from hireledger.services.job_service import JOB_COLUMNS
from hireledger.services.wallet_service import WalletService
from hireledger.utils.dates import utcnow
from hireledger.utils.money import to_cents

logger = logging.getLogger(__name__)


def _package(package) -> ServicePackage:
    try:
        return ServicePackage(package)
    except ValueError:
        raise ValidationError(f"Unknown service package: {package}") from None


class JobPaymentService:

    def __init__(self, db: Session):
        self.db = db
        self.settings = get_settings()
        self.wallet = WalletService(db)

    def get_payment_amount(self, package) -> int:
        fees = {
            ServicePackage.self_managed: 0,
            ServicePackage.shortlisting: to_cents(self.settings.service_fee_shortlisting),
            ServicePackage.full_service: to_cents(self.settings.service_fee_full_service),
            ServicePackage.executive_search: to_cents(self.settings.service_fee_executive_search),
        }
        return fees[_package(package)]

    def requires_payment(self, package) -> bool:
        return self.get_payment_amount(package) > 0

    def check_can_post_job(self, company_id: int, package) -> Dict[str, Any]:
        required = self.get_payment_amount(package)
        account = self.wallet.get_or_create_account(AccountOwner.company, company_id)
        balance = account["balance_cents"]
        return {
            "can_post": balance >= required,
            "balance_cents": balance,
            "required_cents": required,
            "shortfall_cents": max(required - balance, 0),
            "currency": self.settings.currency,
        }

    def pay_for_job_from_wallet(self, company_id: int, job_id: int, package,
                                user_id: Optional[int] = None) -> Dict[str, Any]:
        """
        Charge the package fee to the company wallet, mark the job paid and
        pay the sales agent's RECRUITMENT_SERVICE commission. A consultant
        already on the job gets the placement commission recalculated for
        the paid package.
        """
        package = _package(package)
        amount = self.get_payment_amount(package)
        if amount <= 0:
            raise ValidationError(f"The {package.value} package does not require payment")

        job = fetch_one(
            self.db,
            """SELECT job_id, company_id, title, status, payment_status, assigned_consultant_id
               FROM jobs WHERE job_id = :id""" + lock_clause(self.db),
            {"id": job_id}
        )
        if not job:
            raise NotFoundError(f"Job {job_id} not found")
        if job["company_id"] != company_id:
            raise PermissionDeniedError("Job belongs to another company")
        if job["payment_status"] != PaymentStatus.unpaid.value:
            raise InvalidStateError(f"Job payment is already {job['payment_status']}")

        account = self.wallet.get_or_create_account(AccountOwner.company, company_id)
        posted = self.wallet.debit(
            account["account_id"], amount, TransactionType.job_posting_deduction,
            f"{package.value} package for job: {job['title']}",
            reference_type="JOB", reference_id=job_id, job_id=job_id, created_by=user_id
        )

        updated_job = fetch_one(
            self.db,
            f"""
                UPDATE jobs SET payment_status = :status, payment_amount_cents = :amount,
                    payment_completed_at = :now, hiring_mode = :mode
                WHERE job_id = :id
                RETURNING {JOB_COLUMNS}
            """,
            {
                "status": PaymentStatus.paid.value, "amount": amount, "now": utcnow(),
                "mode": PACKAGE_HIRING_MODE[package].value, "id": job_id
            }
        )

        commissions = CommissionService(self.db)
        commission = commissions.process_sales_commission(
            company_id, amount, f"Recruitment service ({package.value}) for job: {job['title']}",
            job_id=job_id, type=CommissionType.recruitment_service,
            transaction_id=posted["transaction"]["transaction_id"]
        )

        # The hiring mode and fee just changed; the open placement commission follows them
        placement = None
        if job["assigned_consultant_id"] and job["status"] == JobStatus.open.value:
            placement = commissions.create_for_job_assignment(
                job_id, job["assigned_consultant_id"], service_fee_cents=amount
            )

        logger.info("job_payment_completed job_id=%s company_id=%s amount_cents=%s", job_id, company_id, amount)
        return {
            "job": updated_job,
            "transaction": posted["transaction"],
            "balance_cents": posted["account"]["balance_cents"],
            "commission": commission,
            "placement_commission": placement,
        }
