"""
Domain enumerations shared by services, routes and schemas.

Values are the strings stored in the database.
"""

from enum import Enum


# ============================================================
# USERS
# ============================================================

class UserRole(str, Enum):
    company = "company"
    consultant = "consultant"
    candidate = "candidate"
    admin = "admin"


class ConsultantRole(str, Enum):
    consultant = "CONSULTANT"
    sales_agent = "SALES_AGENT"
    consultant_360 = "CONSULTANT_360"


class LicenseeStatus(str, Enum):
    active = "ACTIVE"
    suspended = "SUSPENDED"
    terminated = "TERMINATED"


# ============================================================
# WALLET
# ============================================================

class AccountOwner(str, Enum):
    company = "COMPANY"
    consultant = "CONSULTANT"
    platform = "PLATFORM"


class AccountStatus(str, Enum):
    active = "ACTIVE"
    frozen = "FROZEN"
    closed = "CLOSED"


class TransactionType(str, Enum):
    admin_adjustment = "ADMIN_ADJUSTMENT"
    wallet_topup = "WALLET_TOPUP"
    subscription_purchase = "SUBSCRIPTION_PURCHASE"
    subscription_renewal = "SUBSCRIPTION_RENEWAL"
    job_posting_deduction = "JOB_POSTING_DEDUCTION"
    job_refund = "JOB_REFUND"
    subscription_refund = "SUBSCRIPTION_REFUND"
    commission_earned = "COMMISSION_EARNED"
    commission_reversal = "COMMISSION_REVERSAL"
    commission_withdrawal = "COMMISSION_WITHDRAWAL"
    transfer_in = "TRANSFER_IN"
    transfer_out = "TRANSFER_OUT"


class Direction(str, Enum):
    credit = "CREDIT"
    debit = "DEBIT"


# ============================================================
# COMMISSIONS & WITHDRAWALS
# ============================================================

class CommissionType(str, Enum):
    placement = "PLACEMENT"
    subscription_sale = "SUBSCRIPTION_SALE"
    recruitment_service = "RECRUITMENT_SERVICE"
    custom = "CUSTOM"


class CommissionStatus(str, Enum):
    pending = "PENDING"
    confirmed = "CONFIRMED"
    paid = "PAID"
    cancelled = "CANCELLED"


class WithdrawalStatus(str, Enum):
    pending = "PENDING"
    approved = "APPROVED"
    processing = "PROCESSING"
    completed = "COMPLETED"
    rejected = "REJECTED"
    cancelled = "CANCELLED"


# Withdrawals in these states no longer hold their commissions
RELEASED_WITHDRAWAL_STATUSES = (WithdrawalStatus.rejected.value, WithdrawalStatus.cancelled.value)


# ============================================================
# JOBS
# ============================================================

class HiringMode(str, Enum):
    self_managed = "SELF_MANAGED"
    shortlisting = "SHORTLISTING"
    full_service = "FULL_SERVICE"
    executive_search = "EXECUTIVE_SEARCH"


class ServicePackage(str, Enum):
    self_managed = "self-managed"
    shortlisting = "shortlisting"
    full_service = "full-service"
    executive_search = "executive-search"


PACKAGE_HIRING_MODE = {
    ServicePackage.self_managed: HiringMode.self_managed,
    ServicePackage.shortlisting: HiringMode.shortlisting,
    ServicePackage.full_service: HiringMode.full_service,
    ServicePackage.executive_search: HiringMode.executive_search,
}


class JobStatus(str, Enum):
    open = "OPEN"
    closed = "CLOSED"
    filled = "FILLED"


class PaymentStatus(str, Enum):
    unpaid = "UNPAID"
    paid = "PAID"
    refunded = "REFUNDED"


class ApplicationStatus(str, Enum):
    new = "NEW"
    screening = "SCREENING"
    interview = "INTERVIEW"
    offer = "OFFER"
    hired = "HIRED"
    rejected = "REJECTED"
    withdrawn = "WITHDRAWN"


# ============================================================
# SUBSCRIPTIONS, REFUNDS, REVENUE
# ============================================================

class SubscriptionPlanType(str, Enum):
    ats_lite = "ATS_LITE"
    small = "SMALL"
    medium = "MEDIUM"
    large = "LARGE"
    enterprise = "ENTERPRISE"
    custom = "CUSTOM"


class BillingCycle(str, Enum):
    monthly = "MONTHLY"
    annual = "ANNUAL"


class SubscriptionStatus(str, Enum):
    active = "ACTIVE"
    cancelled = "CANCELLED"
    expired = "EXPIRED"


class RefundStatus(str, Enum):
    pending = "PENDING"
    approved = "APPROVED"
    rejected = "REJECTED"


class RefundTransactionType(str, Enum):
    job_payment = "JOB_PAYMENT"
    subscription_bill = "SUBSCRIPTION_BILL"


class RevenueStatus(str, Enum):
    pending = "PENDING"
    paid = "PAID"


class SettlementStatus(str, Enum):
    pending = "PENDING"
    paid = "PAID"
