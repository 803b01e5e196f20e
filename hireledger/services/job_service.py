"""
Job Service - the slice of the job/application lifecycle that drives money.

- jobs posted under a subscription consume its quota
- assigning a consultant opens a PENDING placement commission
- hiring a candidate fills the job and confirms its commissions in the
  same transaction
"""

import logging
from typing import Optional, List, Dict, Any

from sqlalchemy import text
from sqlalchemy.orm import Session

from hireledger.core.exceptions import InvalidStateError, NotFoundError, PermissionDeniedError, ValidationError
from hireledger.db.postgres import fetch_all, fetch_one, lock_clause
from hireledger.models.enums import ApplicationStatus, HiringMode, JobStatus, PaymentStatus
from hireledger.services.commission_service import CommissionService
from hireledger.services.subscription_service import SubscriptionService
from hireledger.utils.dates import utcnow

logger = logging.getLogger(__name__)

JOB_COLUMNS = """
    job_id, company_id, region_id, title, hiring_mode, status, assigned_consultant_id,
    subscription_id, payment_status, payment_amount_cents, payment_completed_at, created_at
"""

APPLICATION_COLUMNS = "application_id, job_id, candidate_id, status, applied_at, updated_at"


class JobService:

    def __init__(self, db: Session):
        self.db = db

    # ============================================================
    # JOBS
    # ============================================================

    def create_job(self, company_id: int, title: str, hiring_mode: HiringMode = HiringMode.self_managed,
                   subscription_id: Optional[int] = None) -> dict:
        company = fetch_one(
            self.db, "SELECT company_id, region_id FROM companies WHERE company_id = :id", {"id": company_id}
        )
        if not company:
            raise NotFoundError(f"Company {company_id} not found")
        if not title or not title.strip():
            raise ValidationError("Job title is required")

        payment_status, payment_amount = PaymentStatus.unpaid.value, None
        if subscription_id is not None:
            posting = SubscriptionService(self.db).process_job_posting(subscription_id, company_id, title)
            payment_status, payment_amount = PaymentStatus.paid.value, posting["deducted_cents"]

        job = fetch_one(
            self.db,
            f"""
                INSERT INTO jobs (company_id, region_id, title, hiring_mode, status, subscription_id,
                    payment_status, payment_amount_cents, created_at)
                VALUES (:company_id, :region_id, :title, :mode, :status, :subscription_id,
                    :payment_status, :payment_amount, :now)
                RETURNING {JOB_COLUMNS}
            """,
            {
                "company_id": company_id, "region_id": company["region_id"], "title": title,
                "mode": hiring_mode.value if hasattr(hiring_mode, "value") else hiring_mode,
                "status": JobStatus.open.value, "subscription_id": subscription_id,
                "payment_status": payment_status, "payment_amount": payment_amount, "now": utcnow()
            }
        )
        logger.info("job_created job_id=%s company_id=%s subscription_id=%s", job["job_id"], company_id, subscription_id)
        return job

    def get_job(self, job_id: int) -> dict:
        job = fetch_one(self.db, f"SELECT {JOB_COLUMNS} FROM jobs WHERE job_id = :id", {"id": job_id})
        if not job:
            raise NotFoundError(f"Job {job_id} not found")
        return job

    def list_company_jobs(self, company_id: int) -> List[dict]:
        return fetch_all(
            self.db,
            f"SELECT {JOB_COLUMNS} FROM jobs WHERE company_id = :id ORDER BY created_at DESC, job_id DESC",
            {"id": company_id}
        )

    def list_consultant_jobs(self, consultant_id: int) -> List[dict]:
        return fetch_all(
            self.db,
            f"SELECT {JOB_COLUMNS} FROM jobs WHERE assigned_consultant_id = :id ORDER BY created_at DESC, job_id DESC",
            {"id": consultant_id}
        )

    def assign_consultant(self, job_id: int, consultant_id: int,
                          service_fee_cents: Optional[int] = None) -> Dict[str, Any]:
        """Assign (or reassign) a consultant and open the placement commission."""
        job = fetch_one(self.db, f"SELECT {JOB_COLUMNS} FROM jobs WHERE job_id = :id" + lock_clause(self.db), {"id": job_id})
        if not job:
            raise NotFoundError(f"Job {job_id} not found")
        if job["status"] != JobStatus.open.value:
            raise InvalidStateError(f"Job is {job['status']}")

        consultant = fetch_one(
            self.db, "SELECT consultant_id, status FROM consultants WHERE consultant_id = :id", {"id": consultant_id}
        )
        if not consultant:
            raise NotFoundError(f"Consultant {consultant_id} not found")
        if consultant["status"] != "ACTIVE":
            raise InvalidStateError("Consultant is not active")

        updated = fetch_one(
            self.db,
            f"UPDATE jobs SET assigned_consultant_id = :consultant_id WHERE job_id = :id RETURNING {JOB_COLUMNS}",
            {"consultant_id": consultant_id, "id": job_id}
        )
        commission = CommissionService(self.db).create_for_job_assignment(job_id, consultant_id, service_fee_cents)
        logger.info("job_assigned job_id=%s consultant_id=%s", job_id, consultant_id)
        return {"job": updated, "commission": commission}

    # ============================================================
    # APPLICATIONS
    # ============================================================

    def apply(self, job_id: int, candidate_id: int) -> dict:
        job = self.get_job(job_id)
        if job["status"] != JobStatus.open.value:
            raise InvalidStateError("Job is not accepting applications")

        existing = fetch_one(
            self.db,
            "SELECT application_id FROM applications WHERE job_id = :job_id AND candidate_id = :candidate_id",
            {"job_id": job_id, "candidate_id": candidate_id}
        )
        if existing:
            raise InvalidStateError("Already applied to this job")

        now = utcnow()
        return fetch_one(
            self.db,
            f"""
                INSERT INTO applications (job_id, candidate_id, status, applied_at, updated_at)
                VALUES (:job_id, :candidate_id, :status, :now, :now)
                RETURNING {APPLICATION_COLUMNS}
            """,
            {"job_id": job_id, "candidate_id": candidate_id, "status": ApplicationStatus.new.value, "now": now}
        )

    def update_application_status(self, application_id: int, status: ApplicationStatus,
                                  company_id: Optional[int] = None, consultant_id: Optional[int] = None,
                                  actor_user_id: Optional[int] = None) -> Dict[str, Any]:
        """
        Move an application through the pipeline.

        Only the job's company or its assigned consultant may do this. HIRED
        is final: the job becomes FILLED and its pending commissions are
        confirmed and credited.
        """
        application = fetch_one(
            self.db,
            f"SELECT {APPLICATION_COLUMNS} FROM applications WHERE application_id = :id" + lock_clause(self.db),
            {"id": application_id}
        )
        if not application:
            raise NotFoundError(f"Application {application_id} not found")

        job = self.get_job(application["job_id"])
        is_owner = company_id is not None and job["company_id"] == company_id
        is_assigned = consultant_id is not None and job["assigned_consultant_id"] == consultant_id
        if not (is_owner or is_assigned):
            raise PermissionDeniedError("Only the job's company or assigned consultant can update applications")

        new_status = ApplicationStatus(status)
        if application["status"] == ApplicationStatus.hired.value:
            raise InvalidStateError("Application is already HIRED")

        updated = fetch_one(
            self.db,
            f"""UPDATE applications SET status = :status, updated_at = :now
                WHERE application_id = :id RETURNING {APPLICATION_COLUMNS}""",
            {"status": new_status.value, "now": utcnow(), "id": application_id}
        )

        confirmed = []
        if new_status == ApplicationStatus.hired:
            self.db.execute(
                text("UPDATE jobs SET status = :status WHERE job_id = :id"),
                {"status": JobStatus.filled.value, "id": job["job_id"]}
            )
            confirmed = CommissionService(self.db).confirm_for_job(job["job_id"], confirmed_by=actor_user_id)
            logger.info("candidate_hired application_id=%s job_id=%s commissions_confirmed=%s",
                        application_id, job["job_id"], len(confirmed))

        return {"application": updated, "confirmed_commissions": confirmed}

    def list_applications(self, job_id: int) -> List[dict]:
        return fetch_all(
            self.db,
            f"SELECT {APPLICATION_COLUMNS} FROM applications WHERE job_id = :id ORDER BY applied_at, application_id",
            {"id": job_id}
        )

    def list_candidate_applications(self, candidate_id: int) -> List[dict]:
        return fetch_all(
            self.db,
            f"""SELECT a.application_id, a.job_id, a.candidate_id, a.status, a.applied_at, a.updated_at,
                       j.title AS job_title
                FROM applications a JOIN jobs j ON a.job_id = j.job_id
                WHERE a.candidate_id = :id ORDER BY a.applied_at DESC""",
            {"id": candidate_id}
        )
