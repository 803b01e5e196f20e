"""
Pydantic Schemas - Request/Response Validation

All API request and response schemas in one file for simplicity.

Amounts cross the API in dollars (floats); services work in integer
cents. LedgerModel.from_row() does the conversion for responses and
routes call to_cents() on request amounts.
"""

from pydantic import BaseModel, EmailStr, Field
from typing import Optional, List, Any, Dict
from datetime import datetime

from hireledger.models.enums import (
    AccountStatus, ApplicationStatus, BillingCycle, CommissionType, ConsultantRole, Direction,
    HiringMode, ServicePackage, SubscriptionPlanType, UserRole
)
from hireledger.utils.money import from_cents


class LedgerModel(BaseModel):
    """Response model built from a service row; *_cents columns become dollars."""

    @classmethod
    def from_row(cls, row: dict, **extra):
        data = {}
        for key, value in row.items():
            if key.endswith("_cents"):
                key, value = key[:-len("_cents")], None if value is None else from_cents(value)
            if key in cls.model_fields:
                data[key] = value
        data.update(extra)
        return cls(**data)


class MessageResponse(BaseModel):
    message: str
    success: bool = True


# ============================================================
# AUTH SCHEMAS
# ============================================================

class RegisterRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=8)
    role: UserRole

class LoginRequest(BaseModel):
    email: EmailStr
    password: str

class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user_id: int
    role: str

class UserResponse(BaseModel):
    user_id: int
    email: str
    role: str
    is_active: bool
    created_at: datetime


# ============================================================
# PROFILE SCHEMAS
# ============================================================

class CompanyCreate(BaseModel):
    company_name: str = Field(..., min_length=2, max_length=200)
    region_id: Optional[int] = None
    sales_agent_id: Optional[int] = None
    referred_by: Optional[str] = Field(None, max_length=100)

class CompanyResponse(BaseModel):
    company_id: int
    user_id: int
    company_name: str
    email: str
    region_id: Optional[int] = None
    sales_agent_id: Optional[int] = None
    attribution_locked: bool = False
    created_at: datetime

class ConsultantCreate(BaseModel):
    full_name: str = Field(..., min_length=2, max_length=100)
    role: ConsultantRole = ConsultantRole.consultant
    region_id: Optional[int] = None

class ConsultantResponse(BaseModel):
    consultant_id: int
    user_id: int
    full_name: str
    role: str
    region_id: Optional[int] = None
    default_commission_rate: Optional[float] = None
    status: str
    created_at: datetime

class ConsultantRateUpdate(BaseModel):
    default_commission_rate: float = Field(..., ge=0, le=100)

class CandidateCreate(BaseModel):
    full_name: str = Field(..., min_length=2, max_length=100)

class CandidateResponse(BaseModel):
    candidate_id: int
    user_id: int
    full_name: str
    created_at: datetime

class LicenseeCreate(BaseModel):
    name: str = Field(..., min_length=2, max_length=200)
    email: Optional[EmailStr] = None
    revenue_share_percent: float = Field(..., ge=0, le=100)

class LicenseeResponse(BaseModel):
    licensee_id: int
    name: str
    email: Optional[str] = None
    revenue_share_percent: float
    status: str

class RegionCreate(BaseModel):
    name: str = Field(..., min_length=2, max_length=100)
    code: str = Field(..., min_length=2, max_length=20)
    licensee_id: Optional[int] = None

class RegionResponse(BaseModel):
    region_id: int
    name: str
    code: str
    licensee_id: Optional[int] = None
    is_active: bool


# ============================================================
# WALLET SCHEMAS
# ============================================================

class TransactionResponse(LedgerModel):
    transaction_id: int
    account_id: int
    type: str
    direction: str
    amount: float
    balance_after: float
    description: str
    reference_type: Optional[str] = None
    reference_id: Optional[int] = None
    job_id: Optional[int] = None
    subscription_id: Optional[int] = None
    commission_id: Optional[int] = None
    external_reference: Optional[str] = None
    owner_type: Optional[str] = None
    owner_id: Optional[int] = None
    status: str
    created_at: datetime

class TransactionListResponse(BaseModel):
    transactions: List[TransactionResponse]
    total: int
    limit: int
    offset: int
    has_more: bool

class AccountResponse(LedgerModel):
    account_id: int
    owner_type: str
    owner_id: int
    balance: float
    total_credits: float
    total_debits: float
    status: str
    created_at: datetime
    updated_at: datetime
    recent_transactions: List[TransactionResponse] = []

    @classmethod
    def from_account(cls, account: dict):
        recent = [TransactionResponse.from_row(t) for t in account.get("recent_transactions", [])]
        return cls.from_row({k: v for k, v in account.items() if k != "recent_transactions"},
                            recent_transactions=recent)

class WalletAdjustment(BaseModel):
    amount: float = Field(..., gt=0)
    direction: Direction
    description: str = Field(..., min_length=3)

class WalletTopup(BaseModel):
    amount: float = Field(..., gt=0)
    payment_reference: str = Field(..., min_length=3, max_length=100)

class AccountStatusUpdate(BaseModel):
    status: AccountStatus

class TransferRequest(BaseModel):
    from_account_id: int
    to_account_id: int
    amount: float = Field(..., gt=0)
    description: str = Field(..., min_length=3)

class TransferResponse(BaseModel):
    from_account: AccountResponse
    to_account: AccountResponse
    debit_transaction: TransactionResponse
    credit_transaction: TransactionResponse

class IntegrityReport(LedgerModel):
    account_id: int
    owner_type: str
    owner_id: int
    stored_balance: float
    calculated_balance: float
    ledger_balance: float
    total_credits: float
    total_debits: float
    transaction_count: int
    is_valid: bool
    issues: List[str] = []

class IntegritySummary(BaseModel):
    checked: int
    invalid: int
    accounts: List[IntegrityReport]


# ============================================================
# COMMISSION SCHEMAS
# ============================================================

class CommissionResponse(LedgerModel):
    commission_id: int
    consultant_id: int
    region_id: Optional[int] = None
    company_id: Optional[int] = None
    job_id: Optional[int] = None
    subscription_id: Optional[int] = None
    type: str
    amount: float
    rate: Optional[float] = None
    status: str
    description: Optional[str] = None
    confirmed_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    payment_reference: Optional[str] = None
    expiry_date: Optional[datetime] = None
    notes: Optional[str] = None
    created_at: datetime

class CommissionAward(BaseModel):
    consultant_id: int
    amount: float = Field(..., gt=0)
    type: CommissionType = CommissionType.custom
    description: Optional[str] = None
    job_id: Optional[int] = None
    subscription_id: Optional[int] = None

class CommissionPayRequest(BaseModel):
    commission_ids: List[int] = Field(..., min_length=1)
    payment_reference: str = Field(..., min_length=3, max_length=100)

class CommissionPayResult(BaseModel):
    processed: List[int]
    errors: List[Dict[str, Any]]

class CommissionBucket(LedgerModel):
    count: int
    amount: float

class EarningsSummary(BaseModel):
    pending: CommissionBucket
    confirmed: CommissionBucket
    paid: CommissionBucket
    cancelled: CommissionBucket
    total_earned: float
    available: float

class ReversalResult(BaseModel):
    cancelled: List[int]
    reversed: List[int]
    skipped: List[Dict[str, Any]]

class ExpiryResult(BaseModel):
    expired: int
    commission_ids: List[int]


# ============================================================
# WITHDRAWAL SCHEMAS
# ============================================================

class WithdrawalCreate(BaseModel):
    amount: Optional[float] = Field(None, gt=0)
    commission_ids: Optional[List[int]] = None
    payment_method: str = Field("BANK_TRANSFER", max_length=30)
    notes: Optional[str] = None

class WithdrawalResponse(LedgerModel):
    withdrawal_id: int
    consultant_id: int
    consultant_name: Optional[str] = None
    amount: float
    status: str
    payment_method: str
    notes: Optional[str] = None
    commission_ids: List[int] = []
    processed_at: Optional[datetime] = None
    payment_reference: Optional[str] = None
    admin_notes: Optional[str] = None
    rejected_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    created_at: datetime

class WithdrawalReject(BaseModel):
    reason: str = Field(..., min_length=3)

class WithdrawalProcess(BaseModel):
    payment_reference: str = Field(..., min_length=3, max_length=100)
    admin_notes: Optional[str] = None

class AvailableCommission(LedgerModel):
    commission_id: int
    type: str
    amount: float
    description: Optional[str] = None
    job_id: Optional[int] = None
    subscription_id: Optional[int] = None
    confirmed_at: Optional[datetime] = None

class BalanceResponse(LedgerModel):
    available: float
    pending: float
    total_earned: float
    total_withdrawn: float
    wallet_balance: float
    minimum_withdrawal: float
    available_commissions: List[AvailableCommission] = []


# ============================================================
# SUBSCRIPTION SCHEMAS
# ============================================================

class SubscriptionCreate(BaseModel):
    plan_type: SubscriptionPlanType
    name: str = Field(..., min_length=2, max_length=100)
    base_price: float = Field(..., ge=0)
    billing_cycle: BillingCycle = BillingCycle.monthly
    job_quota: Optional[int] = Field(None, ge=1)
    discount_percent: float = Field(0, ge=0, le=100)
    auto_renew: bool = True
    start_date: Optional[datetime] = None
    payment_reference: Optional[str] = Field(None, max_length=100)
    notes: Optional[str] = None

class SubscriptionStats(BaseModel):
    jobs_posted: int
    jobs_remaining: Optional[int] = None
    usage_percent: Optional[float] = None
    days_remaining: int

class SubscriptionResponse(LedgerModel):
    subscription_id: int
    company_id: int
    name: str
    plan_type: str
    status: str
    base_price: float
    price_paid: float
    currency: str
    billing_cycle: str
    discount_percent: float
    start_date: datetime
    end_date: datetime
    renewal_date: Optional[datetime] = None
    job_quota: Optional[int] = None
    jobs_used: int
    prepaid_balance: float
    auto_renew: bool
    renewal_failed_at: Optional[datetime] = None
    renewal_failure_reason: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    stats: Optional[SubscriptionStats] = None
    created_at: datetime

class SubscriptionPurchaseResponse(BaseModel):
    subscription: SubscriptionResponse
    transaction: Optional[TransactionResponse] = None
    commission: Optional[CommissionResponse] = None

class RenewalResponse(BaseModel):
    renewed: bool
    reason: Optional[str] = None
    subscription: SubscriptionResponse
    transaction: Optional[TransactionResponse] = None
    commission: Optional[CommissionResponse] = None

class SubscriptionCancel(BaseModel):
    reason: Optional[str] = None

class RenewalRunResult(BaseModel):
    renewed: List[int]
    failed: List[int]
    expired: List[int]
    errors: List[Dict[str, Any]]


# ============================================================
# JOB SCHEMAS
# ============================================================

class JobCreate(BaseModel):
    title: str = Field(..., min_length=3, max_length=200)
    hiring_mode: HiringMode = HiringMode.self_managed
    subscription_id: Optional[int] = None

class JobResponse(LedgerModel):
    job_id: int
    company_id: int
    region_id: Optional[int] = None
    title: str
    hiring_mode: str
    status: str
    assigned_consultant_id: Optional[int] = None
    subscription_id: Optional[int] = None
    payment_status: str
    payment_amount: Optional[float] = None
    payment_completed_at: Optional[datetime] = None
    created_at: datetime

class JobPaymentRequest(BaseModel):
    package: ServicePackage

class JobPaymentCheck(LedgerModel):
    can_post: bool
    balance: float
    required: float
    shortfall: float
    currency: str

class JobPaymentResponse(LedgerModel):
    job: JobResponse
    transaction: TransactionResponse
    balance: float
    commission: Optional[CommissionResponse] = None

class AssignConsultantRequest(BaseModel):
    consultant_id: int
    service_fee: Optional[float] = Field(None, ge=0)

class AssignmentResponse(BaseModel):
    job: JobResponse
    commission: Optional[CommissionResponse] = None


# ============================================================
# APPLICATION SCHEMAS
# ============================================================

class ApplicationResponse(BaseModel):
    application_id: int
    job_id: int
    candidate_id: int
    job_title: Optional[str] = None
    status: str
    applied_at: datetime
    updated_at: datetime

class ApplicationStatusUpdate(BaseModel):
    status: ApplicationStatus

class ApplicationUpdateResponse(BaseModel):
    application: ApplicationResponse
    confirmed_commissions: List[CommissionResponse] = []


# ============================================================
# REFUND SCHEMAS
# ============================================================

class RefundCreate(BaseModel):
    transaction_id: int
    amount: float = Field(..., gt=0)
    reason: str = Field(..., min_length=3)

class RefundResponse(LedgerModel):
    refund_id: int
    company_id: int
    transaction_id: int
    transaction_type: str
    amount: float
    reason: str
    status: str
    processed_at: Optional[datetime] = None
    admin_notes: Optional[str] = None
    payment_reference: Optional[str] = None
    rejected_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    credit_transaction_id: Optional[int] = None
    created_at: datetime

class RefundApprove(BaseModel):
    admin_notes: Optional[str] = None
    payment_reference: Optional[str] = Field(None, max_length=100)

class RefundReject(BaseModel):
    reason: str = Field(..., min_length=3)

class RefundApprovalResponse(BaseModel):
    refund: RefundResponse
    transaction: TransactionResponse
    commission_reversal: Optional[ReversalResult] = None

class RefundStats(LedgerModel):
    total_requests: int
    pending: int
    approved: int
    rejected: int
    pending_amount: float
    approved_amount: float
    approval_rate: float


# ============================================================
# ATTRIBUTION SCHEMAS
# ============================================================

class AttributionResponse(BaseModel):
    company_id: int
    company_name: str
    sales_agent_id: Optional[int] = None
    sales_agent_name: Optional[str] = None
    referred_by: Optional[str] = None
    attribution_locked: bool
    attribution_locked_at: Optional[datetime] = None

class AttributionOverride(BaseModel):
    consultant_id: int
    reason: str = Field(..., min_length=3)

class AuditEntryResponse(BaseModel):
    event_id: str
    action: str
    actor_id: Optional[int] = None
    data: Dict[str, Any] = {}
    created_at: datetime


# ============================================================
# REVENUE & SETTLEMENT SCHEMAS
# ============================================================

class RegionalRevenueResponse(LedgerModel):
    revenue_id: int
    region_id: int
    licensee_id: Optional[int] = None
    period_start: datetime
    period_end: datetime
    subscription_revenue: float
    job_revenue: float
    refunds: float
    total_revenue: float
    licensee_share: float
    platform_share: float
    status: str
    settlement_id: Optional[int] = None
    paid_at: Optional[datetime] = None

class RevenueProcessRequest(BaseModel):
    month: Optional[str] = Field(None, pattern=r"^\d{4}-\d{2}$")

class RevenueProcessResult(BaseModel):
    month: str
    processed: List[int]
    errors: List[Dict[str, Any]]

class SettlementGenerate(BaseModel):
    licensee_id: Optional[int] = None
    period_end: Optional[str] = Field(None, pattern=r"^\d{4}-\d{2}$")

class SettlementResponse(LedgerModel):
    settlement_id: int
    licensee_id: int
    period_start: datetime
    period_end: datetime
    total_revenue: float
    licensee_share: float
    platform_share: float
    status: str
    payment_date: Optional[datetime] = None
    reference: Optional[str] = None
    generated_at: datetime
    revenue: List[RegionalRevenueResponse] = []

class SettlementGenerateResult(BaseModel):
    generated: List[int]
    errors: List[Dict[str, Any]]

class SettlementPay(BaseModel):
    reference: str = Field(..., min_length=3, max_length=100)

class SettlementStats(LedgerModel):
    total_settlements: int
    pending_count: int
    pending_licensee_share: float
    paid_count: int
    paid_licensee_share: float
    platform_share: float
