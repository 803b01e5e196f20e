"""
Consultant Routes

POST /consultants/profile - Create consultant profile (opens the consultant wallet)
GET /consultants/profile - Get own profile
GET /consultants/jobs - Jobs assigned to me
GET /consultants/commissions - My commissions
GET /consultants/earnings - Earnings summary by status
GET /consultants/wallet - Wallet balance with recent transactions
GET /consultants/balance - Withdrawable balance and available commissions
POST /consultants/withdrawals - Request a withdrawal
GET /consultants/withdrawals - My withdrawal requests
POST /consultants/withdrawals/{id}/cancel - Cancel a pending withdrawal
"""

from typing import List, Optional

from fastapi import APIRouter, HTTPException, Depends
from sqlalchemy import text

from hireledger.db.postgres import get_db_session, fetch_one
from hireledger.core.auth import get_current_user, get_current_consultant
from hireledger.models.enums import AccountOwner, CommissionStatus, CommissionType, UserRole, WithdrawalStatus
from hireledger.schemas.schemas import (
    AccountResponse, AvailableCommission, BalanceResponse, CommissionBucket, CommissionResponse,
    ConsultantCreate, ConsultantResponse, EarningsSummary, JobResponse, MessageResponse,
    WithdrawalCreate, WithdrawalResponse
)
from hireledger.services.commission_service import CommissionService
from hireledger.services.job_service import JobService
from hireledger.services.wallet_service import WalletService
from hireledger.services.withdrawal_service import WithdrawalService
from hireledger.utils.dates import utcnow
from hireledger.utils.money import from_cents, to_cents

router = APIRouter(prefix="/consultants", tags=["Consultants"])


@router.post("/profile", response_model=MessageResponse, status_code=201)
async def create_profile(data: ConsultantCreate, user: dict = Depends(get_current_user)):
    """Create consultant profile. Commission rates are set by an admin."""
    if user["role"] != UserRole.consultant.value:
        raise HTTPException(status_code=403, detail="Only consultant accounts can create consultant profiles")

    with get_db_session() as db:
        result = db.execute(
            text("SELECT consultant_id FROM consultants WHERE user_id = :id"),
            {"id": user["user_id"]}
        )
        if result.fetchone():
            raise HTTPException(status_code=400, detail="Profile already exists")

        consultant = fetch_one(
            db,
            """
                INSERT INTO consultants (user_id, full_name, role, region_id, status, created_at)
                VALUES (:user_id, :full_name, :role, :region_id, 'ACTIVE', :now)
                RETURNING consultant_id
            """,
            {
                "user_id": user["user_id"], "full_name": data.full_name,
                "role": data.role.value, "region_id": data.region_id, "now": utcnow()
            }
        )
        WalletService(db).get_or_create_account(AccountOwner.consultant, consultant["consultant_id"])

    return MessageResponse(message="Consultant profile created successfully")


@router.get("/profile", response_model=ConsultantResponse)
async def get_profile(consultant: dict = Depends(get_current_consultant)):
    """Get current consultant's profile."""
    with get_db_session() as db:
        row = fetch_one(
            db,
            """SELECT consultant_id, user_id, full_name, role, region_id, default_commission_rate, status, created_at
               FROM consultants WHERE consultant_id = :id""",
            {"id": consultant["consultant_id"]}
        )
    return ConsultantResponse(**row)


@router.get("/jobs", response_model=List[JobResponse])
async def get_assigned_jobs(consultant: dict = Depends(get_current_consultant)):
    with get_db_session() as db:
        jobs = JobService(db).list_consultant_jobs(consultant["consultant_id"])
    return [JobResponse.from_row(j) for j in jobs]


@router.get("/commissions", response_model=List[CommissionResponse])
async def get_commissions(
    consultant: dict = Depends(get_current_consultant),
    status: Optional[CommissionStatus] = None,
    type: Optional[CommissionType] = None
):
    """My commissions, newest first."""
    with get_db_session() as db:
        rows = CommissionService(db).list_for_consultant(consultant["consultant_id"], status=status, type=type)
    return [CommissionResponse.from_row(r) for r in rows]


@router.get("/earnings", response_model=EarningsSummary)
async def get_earnings(consultant: dict = Depends(get_current_consultant)):
    with get_db_session() as db:
        summary = CommissionService(db).earnings_summary(consultant["consultant_id"])

    return EarningsSummary(
        pending=CommissionBucket.from_row(summary["pending"]),
        confirmed=CommissionBucket.from_row(summary["confirmed"]),
        paid=CommissionBucket.from_row(summary["paid"]),
        cancelled=CommissionBucket.from_row(summary["cancelled"]),
        total_earned=from_cents(summary["total_earned_cents"]),
        available=from_cents(summary["available_cents"])
    )


@router.get("/wallet", response_model=AccountResponse)
async def get_wallet(consultant: dict = Depends(get_current_consultant)):
    with get_db_session() as db:
        wallet = WalletService(db)
        account = wallet.get_or_create_account(AccountOwner.consultant, consultant["consultant_id"])
        account = wallet.get_account(account["account_id"])
    return AccountResponse.from_account(account)


@router.get("/balance", response_model=BalanceResponse)
async def get_balance(consultant: dict = Depends(get_current_consultant)):
    """Withdrawable balance: confirmed commissions not held by another request."""
    with get_db_session() as db:
        balance = WithdrawalService(db).wallet_balance(consultant["consultant_id"])

    return BalanceResponse.from_row(
        balance,
        available_commissions=[AvailableCommission.from_row(c) for c in balance["available_commissions"]]
    )


@router.post("/withdrawals", response_model=WithdrawalResponse, status_code=201)
async def request_withdrawal(data: WithdrawalCreate, consultant: dict = Depends(get_current_consultant)):
    """
    Request a payout.

    Send commission_ids to withdraw exactly those commissions, or an
    amount to withdraw the oldest available commissions adding up to it.
    """
    with get_db_session() as db:
        withdrawal = WithdrawalService(db).request(
            consultant["consultant_id"],
            amount_cents=to_cents(data.amount) if data.amount is not None else None,
            commission_ids=data.commission_ids,
            payment_method=data.payment_method,
            notes=data.notes
        )
    return WithdrawalResponse.from_row(withdrawal)


@router.get("/withdrawals", response_model=List[WithdrawalResponse])
async def list_withdrawals(
    consultant: dict = Depends(get_current_consultant),
    status: Optional[WithdrawalStatus] = None
):
    with get_db_session() as db:
        rows = WithdrawalService(db).list_for_consultant(
            consultant["consultant_id"], status=status.value if status else None
        )
    return [WithdrawalResponse.from_row(r) for r in rows]


@router.post("/withdrawals/{withdrawal_id}/cancel", response_model=WithdrawalResponse)
async def cancel_withdrawal(withdrawal_id: int, consultant: dict = Depends(get_current_consultant)):
    """Cancel one of my pending withdrawals; its commissions become available again."""
    with get_db_session() as db:
        withdrawal = WithdrawalService(db).cancel(withdrawal_id, consultant["consultant_id"])
    return WithdrawalResponse.from_row(withdrawal)
