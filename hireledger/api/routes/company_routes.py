"""
Company Routes

POST /companies/profile - Create company profile (opens the company wallet)
GET /companies/profile - Get own profile
GET /companies/wallet - Wallet balance with recent transactions
POST /companies/wallet/topup - Credit an external payment to the wallet
GET /companies/wallet/transactions - Wallet ledger with filters
GET /companies/jobs - Get company's jobs
"""

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, HTTPException, Depends, Query
from sqlalchemy import text

from hireledger.db.postgres import get_db_session, fetch_one
from hireledger.core.auth import get_current_user, get_current_company
from hireledger.models.enums import AccountOwner, TransactionType, UserRole
from hireledger.schemas.schemas import (
    AccountResponse, CompanyCreate, CompanyResponse, JobResponse, MessageResponse,
    TransactionListResponse, TransactionResponse, WalletTopup
)
from hireledger.services.job_service import JobService
from hireledger.services.wallet_service import WalletService
from hireledger.utils.dates import utcnow
from hireledger.utils.money import to_cents

router = APIRouter(prefix="/companies", tags=["Companies"])


@router.post("/profile", response_model=MessageResponse, status_code=201)
async def create_profile(data: CompanyCreate, user: dict = Depends(get_current_user)):
    """Create company profile. User must be registered as company."""
    if user["role"] != UserRole.company.value:
        raise HTTPException(status_code=403, detail="Only company accounts can create company profiles")

    with get_db_session() as db:
        result = db.execute(
            text("SELECT company_id FROM companies WHERE user_id = :id"),
            {"id": user["user_id"]}
        )
        if result.fetchone():
            raise HTTPException(status_code=400, detail="Profile already exists")

        if data.region_id is not None and not fetch_one(
            db, "SELECT region_id FROM regions WHERE region_id = :id", {"id": data.region_id}
        ):
            raise HTTPException(status_code=400, detail="Unknown region")
        if data.sales_agent_id is not None and not fetch_one(
            db, "SELECT consultant_id FROM consultants WHERE consultant_id = :id", {"id": data.sales_agent_id}
        ):
            raise HTTPException(status_code=400, detail="Unknown sales agent")

        company = fetch_one(
            db,
            """
                INSERT INTO companies (user_id, company_name, region_id, sales_agent_id, referred_by,
                    attribution_locked, created_at)
                VALUES (:user_id, :company_name, :region_id, :sales_agent_id, :referred_by, :locked, :now)
                RETURNING company_id
            """,
            {
                "user_id": user["user_id"],
                "company_name": data.company_name,
                "region_id": data.region_id,
                "sales_agent_id": data.sales_agent_id,
                "referred_by": data.referred_by,
                "locked": False,
                "now": utcnow()
            }
        )
        WalletService(db).get_or_create_account(AccountOwner.company, company["company_id"])

    return MessageResponse(message="Company profile created successfully")


@router.get("/profile", response_model=CompanyResponse)
async def get_profile(company: dict = Depends(get_current_company)):
    """Get current company's profile."""
    with get_db_session() as db:
        row = fetch_one(
            db,
            """
                SELECT c.company_id, c.user_id, c.company_name, u.email, c.region_id, c.sales_agent_id,
                       c.attribution_locked, c.created_at
                FROM companies c JOIN users u ON c.user_id = u.user_id
                WHERE c.company_id = :id
            """,
            {"id": company["company_id"]}
        )

    return CompanyResponse(**row)


@router.get("/wallet", response_model=AccountResponse)
async def get_wallet(company: dict = Depends(get_current_company)):
    """Company wallet with its 10 most recent transactions."""
    with get_db_session() as db:
        wallet = WalletService(db)
        account = wallet.get_or_create_account(AccountOwner.company, company["company_id"])
        account = wallet.get_account(account["account_id"])
    return AccountResponse.from_account(account)


@router.post("/wallet/topup", response_model=TransactionResponse, status_code=201)
async def topup_wallet(data: WalletTopup, company: dict = Depends(get_current_company)):
    """
    Credit a completed external payment to the wallet.

    The payment processor is outside this service; payment_reference is
    the processor's id for the charge.
    """
    with get_db_session() as db:
        wallet = WalletService(db)
        account = wallet.get_or_create_account(AccountOwner.company, company["company_id"])
        posted = wallet.credit(
            account["account_id"], to_cents(data.amount), TransactionType.wallet_topup,
            f"Wallet top-up ({data.payment_reference})",
            reference_type="PAYMENT", created_by=company["user_id"], external_reference=data.payment_reference
        )
    return TransactionResponse.from_row(posted["transaction"])


@router.get("/wallet/transactions", response_model=TransactionListResponse)
async def list_wallet_transactions(
    company: dict = Depends(get_current_company),
    type: Optional[TransactionType] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0)
):
    """Company wallet ledger, newest first."""
    with get_db_session() as db:
        wallet = WalletService(db)
        account = wallet.get_or_create_account(AccountOwner.company, company["company_id"])
        page = wallet.list_transactions(
            account_id=account["account_id"], type=type, start_date=start_date, end_date=end_date,
            limit=limit, offset=offset
        )

    return TransactionListResponse(
        transactions=[TransactionResponse.from_row(t) for t in page["transactions"]],
        total=page["total"], limit=page["limit"], offset=page["offset"], has_more=page["has_more"]
    )


@router.get("/jobs", response_model=List[JobResponse])
async def get_company_jobs(company: dict = Depends(get_current_company)):
    """Get all jobs posted by this company."""
    with get_db_session() as db:
        jobs = JobService(db).list_company_jobs(company["company_id"])
    return [JobResponse.from_row(j) for j in jobs]
