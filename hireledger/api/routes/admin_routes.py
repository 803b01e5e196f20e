"""
Admin Routes (platform admin only)

Setup:
POST /admin/licensees, GET /admin/licensees
POST /admin/regions, GET /admin/regions
PUT /admin/consultants/{id}/rate - Consultant's default commission rate
POST /admin/jobs/{job_id}/assign - Assign a consultant (opens placement commission)

Wallets:
GET /admin/wallets/{account_id}
GET /admin/wallets/owner/{owner_type}/{owner_id}
GET /admin/transactions - Ledger search
POST /admin/wallets/{account_id}/adjust - Manual credit/debit (audited)
PUT /admin/wallets/{account_id}/status - Freeze / unfreeze / close (audited)
POST /admin/wallets/transfer
GET /admin/wallets/{account_id}/verify - Integrity check of one account
GET /admin/ledger/verify - Integrity check of every account

Commissions & withdrawals:
GET /admin/commissions
POST /admin/commissions/award
POST /admin/commissions/pay - Direct payout outside the withdrawal flow
POST /admin/commissions/expire - Cancel expired pending commissions
GET /admin/withdrawals/pending
POST /admin/withdrawals/{id}/approve | /reject | /processing | /process

Refunds:
GET /admin/refunds/pending, GET /admin/refunds/stats
POST /admin/refunds/{id}/approve | /reject

Attribution:
GET /admin/attribution/{company_id}, GET /admin/attribution/{company_id}/history
POST /admin/attribution/{company_id}/lock | /override

Billing jobs:
POST /admin/subscriptions/renew-due
POST /admin/revenue/process, GET /admin/revenue/pending, GET /admin/revenue/regions/{region_id}
POST /admin/settlements/generate, GET /admin/settlements, GET /admin/settlements/stats
GET /admin/settlements/{id}, POST /admin/settlements/{id}/pay
"""

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, HTTPException, Depends, Query

from hireledger.db.postgres import get_db_session, fetch_all, fetch_one
from hireledger.core.auth import get_current_admin
from hireledger.core.exceptions import NotFoundError
from hireledger.models.enums import (
    AccountOwner, CommissionStatus, CommissionType, Direction, RevenueStatus, SettlementStatus, TransactionType
)
from hireledger.schemas.schemas import (
    AccountResponse, AccountStatusUpdate, AssignConsultantRequest, AssignmentResponse, AttributionOverride,
    AttributionResponse, AuditEntryResponse, CommissionAward, CommissionPayRequest, CommissionPayResult,
    CommissionResponse, ConsultantRateUpdate, ConsultantResponse, ExpiryResult, IntegrityReport,
    IntegritySummary, JobResponse, LicenseeCreate, LicenseeResponse, RefundApprovalResponse, RefundApprove,
    RefundReject, RefundResponse, RefundStats, RegionCreate, RegionResponse, RegionalRevenueResponse,
    RenewalRunResult, RevenueProcessRequest, RevenueProcessResult, ReversalResult, SettlementGenerate,
    SettlementGenerateResult, SettlementPay, SettlementResponse, SettlementStats, TransactionListResponse,
    TransactionResponse, TransferRequest, TransferResponse, WalletAdjustment, WithdrawalProcess,
    WithdrawalReject, WithdrawalResponse
)
from hireledger.services.attribution_service import AttributionService
from hireledger.services.audit_service import get_audit_service
from hireledger.services.commission_service import CommissionService
from hireledger.services.job_service import JobService
from hireledger.services.refund_service import RefundService
from hireledger.services.revenue_service import RegionalRevenueService, previous_month
from hireledger.services.settlement_service import SettlementService
from hireledger.services.subscription_service import SubscriptionService
from hireledger.services.wallet_service import WalletService
from hireledger.services.withdrawal_service import WithdrawalService
from hireledger.utils.dates import parse_month, utcnow
from hireledger.utils.money import normalize_rate, to_cents

router = APIRouter(prefix="/admin", tags=["Admin"])


# ============================================================
# SETUP
# ============================================================

@router.post("/licensees", response_model=LicenseeResponse, status_code=201)
async def create_licensee(data: LicenseeCreate, admin: dict = Depends(get_current_admin)):
    with get_db_session() as db:
        row = fetch_one(
            db,
            """
                INSERT INTO licensees (name, email, revenue_share_percent, status, created_at)
                VALUES (:name, :email, :share, 'ACTIVE', :now)
                RETURNING licensee_id, name, email, revenue_share_percent, status
            """,
            {"name": data.name, "email": data.email, "share": data.revenue_share_percent, "now": utcnow()}
        )
    return LicenseeResponse(**row)


@router.get("/licensees", response_model=List[LicenseeResponse])
async def list_licensees(admin: dict = Depends(get_current_admin)):
    with get_db_session() as db:
        rows = fetch_all(
            db, "SELECT licensee_id, name, email, revenue_share_percent, status FROM licensees ORDER BY licensee_id"
        )
    return [LicenseeResponse(**r) for r in rows]


@router.post("/regions", response_model=RegionResponse, status_code=201)
async def create_region(data: RegionCreate, admin: dict = Depends(get_current_admin)):
    with get_db_session() as db:
        if fetch_one(db, "SELECT region_id FROM regions WHERE code = :code", {"code": data.code}):
            raise HTTPException(status_code=400, detail="Region code already exists")
        row = fetch_one(
            db,
            """
                INSERT INTO regions (name, code, licensee_id, is_active, created_at)
                VALUES (:name, :code, :licensee_id, :active, :now)
                RETURNING region_id, name, code, licensee_id, is_active
            """,
            {"name": data.name, "code": data.code, "licensee_id": data.licensee_id, "active": True, "now": utcnow()}
        )
    return RegionResponse(**row)


@router.get("/regions", response_model=List[RegionResponse])
async def list_regions(admin: dict = Depends(get_current_admin)):
    with get_db_session() as db:
        rows = fetch_all(db, "SELECT region_id, name, code, licensee_id, is_active FROM regions ORDER BY region_id")
    return [RegionResponse(**r) for r in rows]


@router.put("/consultants/{consultant_id}/rate", response_model=ConsultantResponse)
async def set_consultant_rate(consultant_id: int, data: ConsultantRateUpdate, admin: dict = Depends(get_current_admin)):
    """Set a consultant's default commission rate (0.10 or 10 both mean 10%)."""
    with get_db_session() as db:
        row = fetch_one(
            db,
            """UPDATE consultants SET default_commission_rate = :rate WHERE consultant_id = :id
               RETURNING consultant_id, user_id, full_name, role, region_id, default_commission_rate, status, created_at""",
            {"rate": normalize_rate(data.default_commission_rate), "id": consultant_id}
        )
        if not row:
            raise NotFoundError(f"Consultant {consultant_id} not found")
    return ConsultantResponse(**row)


@router.post("/jobs/{job_id}/assign", response_model=AssignmentResponse)
async def assign_consultant(job_id: int, data: AssignConsultantRequest, admin: dict = Depends(get_current_admin)):
    """Assign or reassign a job's consultant. A previous consultant's pending commission is cancelled."""
    with get_db_session() as db:
        result = JobService(db).assign_consultant(
            job_id, data.consultant_id,
            service_fee_cents=to_cents(data.service_fee) if data.service_fee is not None else None
        )
    commission = result["commission"]
    return AssignmentResponse(
        job=JobResponse.from_row(result["job"]),
        commission=CommissionResponse.from_row(commission) if commission else None
    )


# ============================================================
# WALLETS
# ============================================================

@router.get("/wallets/{account_id}", response_model=AccountResponse)
async def get_wallet(account_id: int, admin: dict = Depends(get_current_admin)):
    with get_db_session() as db:
        account = WalletService(db).get_account(account_id)
    return AccountResponse.from_account(account)


@router.get("/wallets/owner/{owner_type}/{owner_id}", response_model=AccountResponse)
async def get_wallet_by_owner(owner_type: AccountOwner, owner_id: int, admin: dict = Depends(get_current_admin)):
    with get_db_session() as db:
        account = WalletService(db).get_account_by_owner(owner_type, owner_id)
    if not account:
        raise HTTPException(status_code=404, detail="Wallet not found")
    return AccountResponse.from_account(account)


@router.get("/transactions", response_model=TransactionListResponse)
async def search_transactions(
    admin: dict = Depends(get_current_admin),
    account_id: Optional[int] = None,
    type: Optional[TransactionType] = None,
    direction: Optional[Direction] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    min_amount: Optional[float] = Query(None, ge=0),
    max_amount: Optional[float] = Query(None, ge=0),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0)
):
    with get_db_session() as db:
        page = WalletService(db).list_transactions(
            account_id=account_id, type=type, direction=direction, start_date=start_date, end_date=end_date,
            min_amount_cents=to_cents(min_amount) if min_amount is not None else None,
            max_amount_cents=to_cents(max_amount) if max_amount is not None else None,
            limit=limit, offset=offset
        )
    return TransactionListResponse(
        transactions=[TransactionResponse.from_row(t) for t in page["transactions"]],
        total=page["total"], limit=page["limit"], offset=page["offset"], has_more=page["has_more"]
    )


@router.post("/wallets/{account_id}/adjust", response_model=TransactionResponse, status_code=201)
async def adjust_wallet(account_id: int, data: WalletAdjustment, admin: dict = Depends(get_current_admin)):
    """Manual ADMIN_ADJUSTMENT credit or debit."""
    amount = to_cents(data.amount)
    with get_db_session() as db:
        wallet = WalletService(db)
        post = wallet.credit if data.direction == Direction.credit else wallet.debit
        posted = post(
            account_id, amount, TransactionType.admin_adjustment, data.description,
            reference_type="ADMIN", created_by=admin["user_id"]
        )

    get_audit_service().record(
        "virtual_account", account_id, "ADMIN_ADJUSTMENT", actor_id=admin["user_id"],
        data={"direction": data.direction.value, "amount_cents": amount, "description": data.description,
              "transaction_id": posted["transaction"]["transaction_id"]}
    )
    return TransactionResponse.from_row(posted["transaction"])


@router.put("/wallets/{account_id}/status", response_model=AccountResponse)
async def set_wallet_status(account_id: int, data: AccountStatusUpdate, admin: dict = Depends(get_current_admin)):
    with get_db_session() as db:
        WalletService(db).set_status(account_id, data.status)
        account = WalletService(db).get_account(account_id)

    get_audit_service().record(
        "virtual_account", account_id, "STATUS_CHANGED", actor_id=admin["user_id"], data={"status": data.status.value}
    )
    return AccountResponse.from_account(account)


@router.post("/wallets/transfer", response_model=TransferResponse)
async def transfer(data: TransferRequest, admin: dict = Depends(get_current_admin)):
    with get_db_session() as db:
        result = WalletService(db).transfer(
            data.from_account_id, data.to_account_id, to_cents(data.amount), data.description,
            reference_type="ADMIN", created_by=admin["user_id"]
        )

    get_audit_service().record(
        "virtual_account", data.from_account_id, "TRANSFER", actor_id=admin["user_id"],
        data={"to_account_id": data.to_account_id, "amount_cents": to_cents(data.amount)}
    )
    return TransferResponse(
        from_account=AccountResponse.from_account(result["from_account"]),
        to_account=AccountResponse.from_account(result["to_account"]),
        debit_transaction=TransactionResponse.from_row(result["debit_transaction"]),
        credit_transaction=TransactionResponse.from_row(result["credit_transaction"])
    )


@router.get("/wallets/{account_id}/verify", response_model=IntegrityReport)
async def verify_wallet(account_id: int, admin: dict = Depends(get_current_admin)):
    with get_db_session() as db:
        report = WalletService(db).verify_integrity(account_id)
    return IntegrityReport.from_row(report)


@router.get("/ledger/verify", response_model=IntegritySummary)
async def verify_ledger(admin: dict = Depends(get_current_admin)):
    """Check every account; only invalid accounts are listed."""
    with get_db_session() as db:
        summary = WalletService(db).verify_all()
    return IntegritySummary(
        checked=summary["checked"], invalid=summary["invalid"],
        accounts=[IntegrityReport.from_row(r) for r in summary["accounts"]]
    )


# ============================================================
# COMMISSIONS
# ============================================================

@router.get("/commissions", response_model=List[CommissionResponse])
async def list_commissions(
    admin: dict = Depends(get_current_admin),
    consultant_id: Optional[int] = None,
    region_id: Optional[int] = None,
    job_id: Optional[int] = None,
    status: Optional[CommissionStatus] = None,
    type: Optional[CommissionType] = None,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0)
):
    with get_db_session() as db:
        rows = CommissionService(db).list(
            consultant_id=consultant_id, region_id=region_id, job_id=job_id, status=status, type=type,
            limit=limit, offset=offset
        )
    return [CommissionResponse.from_row(r) for r in rows]


@router.post("/commissions/award", response_model=CommissionResponse, status_code=201)
async def award_commission(data: CommissionAward, admin: dict = Depends(get_current_admin)):
    with get_db_session() as db:
        commission = CommissionService(db).award(
            data.consultant_id, to_cents(data.amount), type=data.type, description=data.description,
            job_id=data.job_id, subscription_id=data.subscription_id, created_by=admin["user_id"]
        )
    return CommissionResponse.from_row(commission)


@router.post("/commissions/pay", response_model=CommissionPayResult)
async def pay_commissions(data: CommissionPayRequest, admin: dict = Depends(get_current_admin)):
    with get_db_session() as db:
        result = CommissionService(db).mark_paid(
            data.commission_ids, data.payment_reference, created_by=admin["user_id"]
        )
    return CommissionPayResult(**result)


@router.post("/commissions/expire", response_model=ExpiryResult)
async def expire_commissions(admin: dict = Depends(get_current_admin)):
    with get_db_session() as db:
        result = CommissionService(db).expire_pending()
    return ExpiryResult(**result)


# ============================================================
# WITHDRAWALS
# ============================================================

@router.get("/withdrawals/pending", response_model=List[WithdrawalResponse])
async def list_pending_withdrawals(region_id: Optional[int] = None, admin: dict = Depends(get_current_admin)):
    with get_db_session() as db:
        rows = WithdrawalService(db).list_pending(region_id=region_id)
    return [WithdrawalResponse.from_row(r) for r in rows]


@router.post("/withdrawals/{withdrawal_id}/approve", response_model=WithdrawalResponse)
async def approve_withdrawal(withdrawal_id: int, admin: dict = Depends(get_current_admin)):
    with get_db_session() as db:
        row = WithdrawalService(db).approve(withdrawal_id, admin["user_id"])
    return WithdrawalResponse.from_row(row)


@router.post("/withdrawals/{withdrawal_id}/reject", response_model=WithdrawalResponse)
async def reject_withdrawal(withdrawal_id: int, data: WithdrawalReject, admin: dict = Depends(get_current_admin)):
    with get_db_session() as db:
        row = WithdrawalService(db).reject(withdrawal_id, admin["user_id"], data.reason)
    return WithdrawalResponse.from_row(row)


@router.post("/withdrawals/{withdrawal_id}/processing", response_model=WithdrawalResponse)
async def start_withdrawal_processing(withdrawal_id: int, admin: dict = Depends(get_current_admin)):
    with get_db_session() as db:
        row = WithdrawalService(db).start_processing(withdrawal_id, admin["user_id"])
    return WithdrawalResponse.from_row(row)


@router.post("/withdrawals/{withdrawal_id}/process", response_model=WithdrawalResponse)
async def process_withdrawal(withdrawal_id: int, data: WithdrawalProcess, admin: dict = Depends(get_current_admin)):
    """Record the payout: debits the consultant wallet and marks the commissions PAID."""
    with get_db_session() as db:
        row = WithdrawalService(db).process_payment(
            withdrawal_id, data.payment_reference, admin_notes=data.admin_notes, admin_id=admin["user_id"]
        )
    return WithdrawalResponse.from_row(row)


# ============================================================
# REFUNDS
# ============================================================

@router.get("/refunds/pending", response_model=List[RefundResponse])
async def list_pending_refunds(
    admin: dict = Depends(get_current_admin),
    company_id: Optional[int] = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0)
):
    with get_db_session() as db:
        rows = RefundService(db).list_pending(company_id=company_id, limit=limit, offset=offset)
    return [RefundResponse.from_row(r) for r in rows]


@router.get("/refunds/stats", response_model=RefundStats)
async def refund_stats(
    admin: dict = Depends(get_current_admin),
    company_id: Optional[int] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None
):
    with get_db_session() as db:
        stats = RefundService(db).stats(company_id=company_id, start_date=start_date, end_date=end_date)
    return RefundStats.from_row(stats)


@router.post("/refunds/{refund_id}/approve", response_model=RefundApprovalResponse)
async def approve_refund(refund_id: int, data: RefundApprove, admin: dict = Depends(get_current_admin)):
    """Credit the refund; a fully refunded charge also reverses its commissions."""
    with get_db_session() as db:
        result = RefundService(db).approve(
            refund_id, admin["user_id"], notes=data.admin_notes, payment_reference=data.payment_reference
        )
    reversal = result["commission_reversal"]
    return RefundApprovalResponse(
        refund=RefundResponse.from_row(result["refund"]),
        transaction=TransactionResponse.from_row(result["transaction"]),
        commission_reversal=ReversalResult(**reversal) if reversal else None
    )


@router.post("/refunds/{refund_id}/reject", response_model=RefundResponse)
async def reject_refund(refund_id: int, data: RefundReject, admin: dict = Depends(get_current_admin)):
    with get_db_session() as db:
        row = RefundService(db).reject(refund_id, admin["user_id"], data.reason)
    return RefundResponse.from_row(row)


# ============================================================
# ATTRIBUTION
# ============================================================

@router.get("/attribution/{company_id}", response_model=AttributionResponse)
async def get_attribution(company_id: int, admin: dict = Depends(get_current_admin)):
    with get_db_session() as db:
        row = AttributionService(db).get(company_id)
    return AttributionResponse(**row)


@router.post("/attribution/{company_id}/lock", response_model=AttributionResponse)
async def lock_attribution(company_id: int, admin: dict = Depends(get_current_admin)):
    with get_db_session() as db:
        row = AttributionService(db).lock(company_id, admin["user_id"])
    return AttributionResponse(**row)


@router.post("/attribution/{company_id}/override", response_model=AttributionResponse)
async def override_attribution(company_id: int, data: AttributionOverride, admin: dict = Depends(get_current_admin)):
    with get_db_session() as db:
        row = AttributionService(db).override(company_id, data.consultant_id, admin["user_id"], data.reason)
    return AttributionResponse(**row)


@router.get("/attribution/{company_id}/history", response_model=List[AuditEntryResponse])
async def attribution_history(company_id: int, admin: dict = Depends(get_current_admin)):
    with get_db_session() as db:
        entries = AttributionService(db).history(company_id)
    return [
        AuditEntryResponse(
            event_id=e["_id"], action=e["action"], actor_id=e.get("actor_id"),
            data=e.get("data") or {}, created_at=e["created_at"]
        )
        for e in entries
    ]


# ============================================================
# BILLING JOBS
# ============================================================

@router.post("/subscriptions/renew-due", response_model=RenewalRunResult)
async def renew_due_subscriptions(admin: dict = Depends(get_current_admin)):
    with get_db_session() as db:
        result = SubscriptionService(db).renew_due()
    return RenewalRunResult(**result)


@router.post("/revenue/process", response_model=RevenueProcessResult)
async def process_revenue(data: RevenueProcessRequest, admin: dict = Depends(get_current_admin)):
    """Compute monthly revenue for every region (default: previous month)."""
    month = parse_month(data.month) if data.month else previous_month()
    with get_db_session() as db:
        result = RegionalRevenueService(db).process_all_regions(month)
    return RevenueProcessResult(month=month.strftime("%Y-%m"), **result)


@router.get("/revenue/pending", response_model=List[RegionalRevenueResponse])
async def list_pending_revenue(licensee_id: Optional[int] = None, admin: dict = Depends(get_current_admin)):
    with get_db_session() as db:
        rows = RegionalRevenueService(db).list_pending(licensee_id=licensee_id)
    return [RegionalRevenueResponse.from_row(r) for r in rows]


@router.get("/revenue/regions/{region_id}", response_model=List[RegionalRevenueResponse])
async def list_region_revenue(
    region_id: int,
    admin: dict = Depends(get_current_admin),
    status: Optional[RevenueStatus] = None,
    limit: int = Query(12, ge=1, le=120)
):
    with get_db_session() as db:
        rows = RegionalRevenueService(db).list_by_region(region_id, status=status.value if status else None, limit=limit)
    return [RegionalRevenueResponse.from_row(r) for r in rows]


@router.post("/settlements/generate", response_model=SettlementGenerateResult)
async def generate_settlements(data: SettlementGenerate, admin: dict = Depends(get_current_admin)):
    """Settle unsettled revenue up to period_end (default: previous month) for one or all licensees."""
    period_end = parse_month(data.period_end) if data.period_end else previous_month()
    with get_db_session() as db:
        service = SettlementService(db)
        if data.licensee_id is not None:
            settlement = service.generate(data.licensee_id, period_end)
            result = {"generated": [settlement["settlement_id"]] if settlement else [], "errors": []}
        else:
            result = service.generate_all(period_end)
    return SettlementGenerateResult(**result)


@router.get("/settlements", response_model=List[SettlementResponse])
async def list_settlements(
    admin: dict = Depends(get_current_admin),
    licensee_id: Optional[int] = None,
    status: Optional[SettlementStatus] = None,
    limit: int = Query(50, ge=1, le=200)
):
    with get_db_session() as db:
        rows = SettlementService(db).list_by_licensee(
            licensee_id, status=status.value if status else None, limit=limit
        )
    return [SettlementResponse.from_row(r) for r in rows]


@router.get("/settlements/stats", response_model=SettlementStats)
async def settlement_stats(admin: dict = Depends(get_current_admin)):
    with get_db_session() as db:
        stats = SettlementService(db).stats()
    return SettlementStats.from_row(stats)


@router.get("/settlements/{settlement_id}", response_model=SettlementResponse)
async def get_settlement(settlement_id: int, admin: dict = Depends(get_current_admin)):
    with get_db_session() as db:
        settlement = SettlementService(db).get(settlement_id)
    return SettlementResponse.from_row(
        settlement, revenue=[RegionalRevenueResponse.from_row(r) for r in settlement["revenue"]]
    )


@router.post("/settlements/{settlement_id}/pay", response_model=SettlementResponse)
async def pay_settlement(settlement_id: int, data: SettlementPay, admin: dict = Depends(get_current_admin)):
    with get_db_session() as db:
        SettlementService(db).mark_paid(settlement_id, data.reference)
        settlement = SettlementService(db).get(settlement_id)
    return SettlementResponse.from_row(
        settlement, revenue=[RegionalRevenueResponse.from_row(r) for r in settlement["revenue"]]
    )
