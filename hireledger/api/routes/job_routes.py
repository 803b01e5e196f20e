"""
Job Routes

POST /jobs - Create job posting (company only; optional subscription quota)
GET /jobs/payment-check - Can the wallet pay for a service package? (company only)
GET /jobs/{job_id} - Get job details
POST /jobs/{job_id}/pay - Pay the service package from the wallet (company only)
POST /jobs/{job_id}/apply - Apply to job (candidate only)
GET /jobs/{job_id}/applications - Applications for a job (owner company or assigned consultant)
PUT /jobs/applications/{application_id}/status - Move an application (owner company or assigned consultant)
"""

from typing import List

from fastapi import APIRouter, HTTPException, Depends, Query

from hireledger.db.postgres import get_db_session, fetch_one
from hireledger.core.auth import get_current_user, get_current_candidate, get_current_company
from hireledger.models.enums import ServicePackage, UserRole
from hireledger.schemas.schemas import (
    ApplicationResponse, ApplicationStatusUpdate, ApplicationUpdateResponse, CommissionResponse,
    JobCreate, JobPaymentCheck, JobPaymentRequest, JobPaymentResponse, JobResponse, TransactionResponse
)
from hireledger.services.job_payment_service import JobPaymentService
from hireledger.services.job_service import JobService
from hireledger.utils.money import from_cents

router = APIRouter(prefix="/jobs", tags=["Jobs"])


def _pipeline_actor(db, user: dict) -> dict:
    """company_id / consultant_id of a user acting on a job pipeline."""
    if user["role"] == UserRole.company.value:
        row = fetch_one(db, "SELECT company_id FROM companies WHERE user_id = :id", {"id": user["user_id"]})
        return {"company_id": row["company_id"] if row else None}
    if user["role"] == UserRole.consultant.value:
        row = fetch_one(db, "SELECT consultant_id FROM consultants WHERE user_id = :id", {"id": user["user_id"]})
        return {"consultant_id": row["consultant_id"] if row else None}
    raise HTTPException(status_code=403, detail="Companies and consultants only")


@router.post("", response_model=JobResponse, status_code=201)
async def create_job(job: JobCreate, company: dict = Depends(get_current_company)):
    """
    Create a new job posting. Only companies can create jobs.

    With subscription_id the job consumes one job of that subscription's
    quota and counts as paid.
    """
    with get_db_session() as db:
        created = JobService(db).create_job(
            company["company_id"], job.title, hiring_mode=job.hiring_mode, subscription_id=job.subscription_id
        )
    return JobResponse.from_row(created)


@router.get("/payment-check", response_model=JobPaymentCheck)
async def check_payment(
    package: ServicePackage = Query(...),
    company: dict = Depends(get_current_company)
):
    """Whether the company wallet covers a service package."""
    with get_db_session() as db:
        check = JobPaymentService(db).check_can_post_job(company["company_id"], package)
    return JobPaymentCheck.from_row(check)


@router.get("/{job_id}", response_model=JobResponse)
async def get_job(job_id: int, user: dict = Depends(get_current_user)):
    with get_db_session() as db:
        job = JobService(db).get_job(job_id)
    return JobResponse.from_row(job)


@router.post("/{job_id}/pay", response_model=JobPaymentResponse)
async def pay_for_job(job_id: int, data: JobPaymentRequest, company: dict = Depends(get_current_company)):
    """Pay a recruitment service package for this job from the company wallet."""
    with get_db_session() as db:
        result = JobPaymentService(db).pay_for_job_from_wallet(
            company["company_id"], job_id, data.package, user_id=company["user_id"]
        )

    commission = result["commission"]
    return JobPaymentResponse(
        job=JobResponse.from_row(result["job"]),
        transaction=TransactionResponse.from_row(result["transaction"]),
        balance=from_cents(result["balance_cents"]),
        commission=CommissionResponse.from_row(commission) if commission else None
    )


@router.post("/{job_id}/apply", response_model=ApplicationResponse, status_code=201)
async def apply_to_job(job_id: int, candidate: dict = Depends(get_current_candidate)):
    """Apply to an open job. One application per candidate and job."""
    with get_db_session() as db:
        application = JobService(db).apply(job_id, candidate["candidate_id"])
    return ApplicationResponse(**application)


@router.get("/{job_id}/applications", response_model=List[ApplicationResponse])
async def list_job_applications(job_id: int, user: dict = Depends(get_current_user)):
    with get_db_session() as db:
        service = JobService(db)
        job = service.get_job(job_id)
        actor = _pipeline_actor(db, user)
        is_owner = actor.get("company_id") is not None and job["company_id"] == actor["company_id"]
        is_assigned = (
            actor.get("consultant_id") is not None and job["assigned_consultant_id"] == actor["consultant_id"]
        )
        if not (is_owner or is_assigned):
            raise HTTPException(status_code=403, detail="Not your job")
        rows = service.list_applications(job_id)
    return [ApplicationResponse(**r) for r in rows]


@router.put("/applications/{application_id}/status", response_model=ApplicationUpdateResponse)
async def update_application_status(
    application_id: int,
    data: ApplicationStatusUpdate,
    user: dict = Depends(get_current_user)
):
    """
    Move an application through the pipeline.

    HIRED fills the job and confirms its placement commission; the
    consultant's wallet is credited in the same transaction.
    """
    with get_db_session() as db:
        actor = _pipeline_actor(db, user)
        result = JobService(db).update_application_status(
            application_id, data.status, actor_user_id=user["user_id"], **actor
        )

    return ApplicationUpdateResponse(
        application=ApplicationResponse(**result["application"]),
        confirmed_commissions=[CommissionResponse.from_row(c) for c in result["confirmed_commissions"]]
    )
