"""
Relational schema - declared with SQLAlchemy Core so the same DDL runs on
PostgreSQL (production) and SQLite (tests).

Money columns are BigInteger cents. Queries elsewhere are plain SQL via
text(); these Table objects exist only to create the schema.
"""

from sqlalchemy import (
    BigInteger, Boolean, Column, DateTime, Float, ForeignKey, Integer,
    MetaData, String, Table, Text, UniqueConstraint, Index
)

metadata = MetaData()


users = Table(
    "users", metadata,
    Column("user_id", Integer, primary_key=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("password_hash", String(255), nullable=False),
    Column("role", String(20), nullable=False),
    Column("is_active", Boolean, nullable=False, default=True),
    Column("created_at", DateTime, nullable=False),
)

licensees = Table(
    "licensees", metadata,
    Column("licensee_id", Integer, primary_key=True),
    Column("name", String(200), nullable=False),
    Column("email", String(255)),
    Column("revenue_share_percent", Float, nullable=False, default=0),
    Column("status", String(20), nullable=False, default="ACTIVE"),
    Column("created_at", DateTime, nullable=False),
)

regions = Table(
    "regions", metadata,
    Column("region_id", Integer, primary_key=True),
    Column("name", String(100), nullable=False),
    Column("code", String(20), nullable=False, unique=True),
    Column("licensee_id", Integer, ForeignKey("licensees.licensee_id")),
    Column("is_active", Boolean, nullable=False, default=True),
    Column("created_at", DateTime, nullable=False),
)

consultants = Table(
    "consultants", metadata,
    Column("consultant_id", Integer, primary_key=True),
    Column("user_id", Integer, ForeignKey("users.user_id"), nullable=False, unique=True),
    Column("full_name", String(100), nullable=False),
    Column("role", String(20), nullable=False, default="CONSULTANT"),
    Column("region_id", Integer, ForeignKey("regions.region_id")),
    Column("default_commission_rate", Float),
    Column("status", String(20), nullable=False, default="ACTIVE"),
    Column("created_at", DateTime, nullable=False),
)

companies = Table(
    "companies", metadata,
    Column("company_id", Integer, primary_key=True),
    Column("user_id", Integer, ForeignKey("users.user_id"), nullable=False, unique=True),
    Column("company_name", String(200), nullable=False),
    Column("region_id", Integer, ForeignKey("regions.region_id")),
    Column("sales_agent_id", Integer, ForeignKey("consultants.consultant_id")),
    Column("referred_by", String(100)),
    Column("attribution_locked", Boolean, nullable=False, default=False),
    Column("attribution_locked_at", DateTime),
    Column("created_at", DateTime, nullable=False),
)

candidates = Table(
    "candidates", metadata,
    Column("candidate_id", Integer, primary_key=True),
    Column("user_id", Integer, ForeignKey("users.user_id"), nullable=False, unique=True),
    Column("full_name", String(100), nullable=False),
    Column("created_at", DateTime, nullable=False),
)

subscriptions = Table(
    "subscriptions", metadata,
    Column("subscription_id", Integer, primary_key=True),
    Column("company_id", Integer, ForeignKey("companies.company_id"), nullable=False),
    Column("name", String(100), nullable=False),
    Column("plan_type", String(20), nullable=False),
    Column("status", String(20), nullable=False),
    Column("base_price_cents", BigInteger, nullable=False),
    Column("price_paid_cents", BigInteger, nullable=False),
    Column("currency", String(3), nullable=False),
    Column("billing_cycle", String(10), nullable=False),
    Column("discount_percent", Float, nullable=False, default=0),
    Column("start_date", DateTime, nullable=False),
    Column("end_date", DateTime, nullable=False),
    Column("renewal_date", DateTime),
    Column("job_quota", Integer),
    Column("jobs_used", Integer, nullable=False, default=0),
    Column("prepaid_balance_cents", BigInteger, nullable=False, default=0),
    Column("auto_renew", Boolean, nullable=False, default=True),
    Column("renewal_failed_at", DateTime),
    Column("renewal_failure_reason", Text),
    Column("cancelled_at", DateTime),
    Column("notes", Text),
    Column("created_at", DateTime, nullable=False),
)

jobs = Table(
    "jobs", metadata,
    Column("job_id", Integer, primary_key=True),
    Column("company_id", Integer, ForeignKey("companies.company_id"), nullable=False),
    Column("region_id", Integer, ForeignKey("regions.region_id")),
    Column("title", String(200), nullable=False),
    Column("hiring_mode", String(20), nullable=False),
    Column("status", String(20), nullable=False),
    Column("assigned_consultant_id", Integer, ForeignKey("consultants.consultant_id")),
    Column("subscription_id", Integer, ForeignKey("subscriptions.subscription_id")),
    Column("payment_status", String(20), nullable=False, default="UNPAID"),
    Column("payment_amount_cents", BigInteger),
    Column("payment_completed_at", DateTime),
    Column("created_at", DateTime, nullable=False),
)

applications = Table(
    "applications", metadata,
    Column("application_id", Integer, primary_key=True),
    Column("job_id", Integer, ForeignKey("jobs.job_id"), nullable=False),
    Column("candidate_id", Integer, ForeignKey("candidates.candidate_id"), nullable=False),
    Column("status", String(20), nullable=False),
    Column("applied_at", DateTime, nullable=False),
    Column("updated_at", DateTime, nullable=False),
    UniqueConstraint("job_id", "candidate_id", name="uq_application_job_candidate"),
)

virtual_accounts = Table(
    "virtual_accounts", metadata,
    Column("account_id", Integer, primary_key=True),
    Column("owner_type", String(20), nullable=False),
    Column("owner_id", Integer, nullable=False),
    Column("balance_cents", BigInteger, nullable=False, default=0),
    Column("total_credits_cents", BigInteger, nullable=False, default=0),
    Column("total_debits_cents", BigInteger, nullable=False, default=0),
    Column("status", String(20), nullable=False),
    Column("created_at", DateTime, nullable=False),
    Column("updated_at", DateTime, nullable=False),
    UniqueConstraint("owner_type", "owner_id", name="uq_virtual_account_owner"),
)

virtual_transactions = Table(
    "virtual_transactions", metadata,
    Column("transaction_id", Integer, primary_key=True),
    Column("account_id", Integer, ForeignKey("virtual_accounts.account_id"), nullable=False),
    Column("type", String(30), nullable=False),
    Column("direction", String(10), nullable=False),
    Column("amount_cents", BigInteger, nullable=False),
    Column("balance_after_cents", BigInteger, nullable=False),
    Column("description", Text, nullable=False),
    Column("reference_type", String(30)),
    Column("reference_id", Integer),
    Column("job_id", Integer),
    Column("subscription_id", Integer),
    Column("commission_id", Integer),
    Column("created_by", Integer),
    # Payment processor id for money that came from outside (top-ups)
    Column("external_reference", String(100)),
    Column("status", String(20), nullable=False),
    Column("created_at", DateTime, nullable=False),
    Index("ix_virtual_transactions_account", "account_id", "transaction_id"),
    UniqueConstraint("account_id", "type", "external_reference", name="uq_transaction_external_reference"),
)

commissions = Table(
    "commissions", metadata,
    Column("commission_id", Integer, primary_key=True),
    Column("consultant_id", Integer, ForeignKey("consultants.consultant_id"), nullable=False),
    Column("region_id", Integer, ForeignKey("regions.region_id")),
    Column("company_id", Integer, ForeignKey("companies.company_id")),
    Column("job_id", Integer, ForeignKey("jobs.job_id")),
    Column("subscription_id", Integer, ForeignKey("subscriptions.subscription_id")),
    Column("type", String(30), nullable=False),
    Column("amount_cents", BigInteger, nullable=False),
    Column("rate", Float),
    Column("status", String(20), nullable=False),
    Column("description", Text),
    Column("credited", Boolean, nullable=False, default=False),
    Column("confirmed_at", DateTime),
    Column("paid_at", DateTime),
    Column("payment_reference", String(100)),
    Column("expiry_date", DateTime),
    Column("notes", Text),
    # Charge the commission was earned on (sales commissions only)
    Column("transaction_id", Integer, ForeignKey("virtual_transactions.transaction_id")),
    Column("created_at", DateTime, nullable=False),
    Index("ix_commissions_consultant_status", "consultant_id", "status"),
    UniqueConstraint("type", "transaction_id", name="uq_commission_type_transaction"),
)

commission_withdrawals = Table(
    "commission_withdrawals", metadata,
    Column("withdrawal_id", Integer, primary_key=True),
    Column("consultant_id", Integer, ForeignKey("consultants.consultant_id"), nullable=False),
    Column("amount_cents", BigInteger, nullable=False),
    Column("status", String(20), nullable=False),
    Column("payment_method", String(30), nullable=False),
    Column("notes", Text),
    Column("processed_by", Integer),
    Column("processed_at", DateTime),
    Column("payment_reference", String(100)),
    Column("admin_notes", Text),
    Column("rejected_by", Integer),
    Column("rejected_at", DateTime),
    Column("rejection_reason", Text),
    Column("transaction_id", Integer, ForeignKey("virtual_transactions.transaction_id")),
    Column("created_at", DateTime, nullable=False),
)

withdrawal_commissions = Table(
    "withdrawal_commissions", metadata,
    Column("withdrawal_id", Integer, ForeignKey("commission_withdrawals.withdrawal_id"), primary_key=True),
    Column("commission_id", Integer, ForeignKey("commissions.commission_id"), primary_key=True),
)

refund_requests = Table(
    "refund_requests", metadata,
    Column("refund_id", Integer, primary_key=True),
    Column("company_id", Integer, ForeignKey("companies.company_id"), nullable=False),
    Column("transaction_id", Integer, ForeignKey("virtual_transactions.transaction_id"), nullable=False),
    Column("transaction_type", String(30), nullable=False),
    Column("amount_cents", BigInteger, nullable=False),
    Column("reason", Text, nullable=False),
    Column("status", String(20), nullable=False),
    Column("processed_by", Integer),
    Column("processed_at", DateTime),
    Column("admin_notes", Text),
    Column("payment_reference", String(100)),
    Column("rejected_by", Integer),
    Column("rejected_at", DateTime),
    Column("rejection_reason", Text),
    Column("credit_transaction_id", Integer),
    Column("created_at", DateTime, nullable=False),
)

settlements = Table(
    "settlements", metadata,
    Column("settlement_id", Integer, primary_key=True),
    Column("licensee_id", Integer, ForeignKey("licensees.licensee_id"), nullable=False),
    Column("period_start", DateTime, nullable=False),
    Column("period_end", DateTime, nullable=False),
    Column("total_revenue_cents", BigInteger, nullable=False),
    Column("licensee_share_cents", BigInteger, nullable=False),
    Column("platform_share_cents", BigInteger, nullable=False),
    Column("status", String(20), nullable=False),
    Column("payment_date", DateTime),
    Column("reference", String(100)),
    Column("generated_at", DateTime, nullable=False),
)

regional_revenue = Table(
    "regional_revenue", metadata,
    Column("revenue_id", Integer, primary_key=True),
    Column("region_id", Integer, ForeignKey("regions.region_id"), nullable=False),
    Column("licensee_id", Integer, ForeignKey("licensees.licensee_id")),
    Column("period_start", DateTime, nullable=False),
    Column("period_end", DateTime, nullable=False),
    Column("subscription_revenue_cents", BigInteger, nullable=False),
    Column("job_revenue_cents", BigInteger, nullable=False),
    Column("refunds_cents", BigInteger, nullable=False),
    Column("total_revenue_cents", BigInteger, nullable=False),
    Column("licensee_share_cents", BigInteger, nullable=False),
    Column("platform_share_cents", BigInteger, nullable=False),
    Column("status", String(20), nullable=False),
    Column("settlement_id", Integer, ForeignKey("settlements.settlement_id")),
    Column("paid_at", DateTime),
    Column("created_at", DateTime, nullable=False),
    Column("updated_at", DateTime, nullable=False),
    UniqueConstraint("region_id", "period_start", name="uq_regional_revenue_period"),
)
