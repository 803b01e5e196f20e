"""
Refund Service - companies asking for wallet charges back.

A refund request points at one DEBIT on the company's own wallet:
JOB_POSTING_DEDUCTION (a job package) or SUBSCRIPTION_PURCHASE /
SUBSCRIPTION_RENEWAL (a subscription bill). Partial refunds are allowed
as long as approved plus pending refunds never exceed the charge.

Approval credits the wallet back. Once a charge is fully refunded the
commissions earned on it are reversed; a refunded job is marked
REFUNDED and a refunded subscription is cancelled.
"""

import logging
from typing import Optional, List, Dict, Any

from sqlalchemy import text
from sqlalchemy.orm import Session

from hireledger.core.exceptions import (
    InvalidStateError, NotFoundError, PermissionDeniedError, ValidationError
)
from hireledger.db.postgres import fetch_all, fetch_one, lock_clause
from hireledger.models.enums import (
    AccountOwner, Direction, PaymentStatus, RefundStatus, RefundTransactionType,
    SubscriptionStatus, TransactionType
)
from hireledger.services.audit_service import get_audit_service
from hireledger.services.commission_service import CommissionService
from hireledger.services.subscription_service import SubscriptionService
from hireledger.services.wallet_service import WalletService
from hireledger.utils.dates import utcnow
from hireledger.utils.money import format_money

logger = logging.getLogger(__name__)

REFUND_COLUMNS = """
    refund_id, company_id, transaction_id, transaction_type, amount_cents, reason, status,
    processed_by, processed_at, admin_notes, payment_reference, rejected_by, rejected_at,
    rejection_reason, credit_transaction_id, created_at
"""

REFUNDABLE_TYPES = {
    TransactionType.job_posting_deduction.value: RefundTransactionType.job_payment,
    TransactionType.subscription_purchase.value: RefundTransactionType.subscription_bill,
    TransactionType.subscription_renewal.value: RefundTransactionType.subscription_bill,
}

CREDIT_TYPES = {
    RefundTransactionType.job_payment.value: TransactionType.job_refund,
    RefundTransactionType.subscription_bill.value: TransactionType.subscription_refund,
}


class RefundService:

    def __init__(self, db: Session):
        self.db = db
        self.wallet = WalletService(db)

    def _refunded_cents(self, transaction_id: int, statuses) -> int:
        placeholders = ", ".join(f"'{s.value}'" for s in statuses)
        return int(self.db.execute(
            text(f"""SELECT COALESCE(SUM(amount_cents), 0) FROM refund_requests
                     WHERE transaction_id = :txn AND status IN ({placeholders})"""),
            {"txn": transaction_id}
        ).scalar())

    def _company_charge(self, company_id: int, transaction_id: int, lock: bool = False) -> dict:
        sql = """
            SELECT t.*, a.owner_type, a.owner_id
            FROM virtual_transactions t JOIN virtual_accounts a ON t.account_id = a.account_id
            WHERE t.transaction_id = :id
        """
        if lock:
            sql += lock_clause(self.db)
        transaction = fetch_one(self.db, sql, {"id": transaction_id})
        if not transaction:
            raise NotFoundError(f"Transaction {transaction_id} not found")
        if transaction["owner_type"] != AccountOwner.company.value or transaction["owner_id"] != company_id:
            raise PermissionDeniedError("Transaction does not belong to this company")
        return transaction

    # ============================================================
    # COMPANY ACTIONS
    # ============================================================

    def create_request(self, company_id: int, transaction_id: int, amount_cents: int, reason: str) -> dict:
        if amount_cents <= 0:
            raise ValidationError("Refund amount must be positive")
        if not reason or not reason.strip():
            raise ValidationError("A refund reason is required")

        transaction = self._company_charge(company_id, transaction_id, lock=True)
        if transaction["direction"] != Direction.debit.value or transaction["type"] not in REFUNDABLE_TYPES:
            raise ValidationError(f"{transaction['type']} transactions cannot be refunded")

        already = self._refunded_cents(transaction_id, [RefundStatus.approved, RefundStatus.pending])
        refundable = transaction["amount_cents"] - already
        if amount_cents > refundable:
            raise ValidationError(
                f"Refund exceeds the refundable amount. Refundable: {format_money(refundable)}, "
                f"Requested: {format_money(amount_cents)}"
            )

        refund = fetch_one(
            self.db,
            f"""
                INSERT INTO refund_requests (company_id, transaction_id, transaction_type, amount_cents,
                    reason, status, created_at)
                VALUES (:company_id, :txn, :txn_type, :amount, :reason, :status, :now)
                RETURNING {REFUND_COLUMNS}
            """,
            {
                "company_id": company_id, "txn": transaction_id,
                "txn_type": REFUNDABLE_TYPES[transaction["type"]].value, "amount": amount_cents,
                "reason": reason, "status": RefundStatus.pending.value, "now": utcnow()
            }
        )
        logger.info("refund_requested refund_id=%s company_id=%s transaction_id=%s amount_cents=%s",
                    refund["refund_id"], company_id, transaction_id, amount_cents)
        return refund

    # ============================================================
    # ADMIN ACTIONS
    # ============================================================

    def approve(self, refund_id: int, admin_id: int, notes: Optional[str] = None,
                payment_reference: Optional[str] = None) -> Dict[str, Any]:
        """
        Credit the refund to the company wallet.

        Returns {"refund", "transaction", "commission_reversal"};
        commission_reversal is None unless the charge is now fully refunded.
        """
        refund = self._lock(refund_id)
        if refund["status"] != RefundStatus.pending.value:
            raise InvalidStateError(f"Refund is {refund['status']}")

        charge = self._company_charge(refund["company_id"], refund["transaction_id"])
        credit_type = CREDIT_TYPES[refund["transaction_type"]]
        posted = self.wallet.credit(
            charge["account_id"], refund["amount_cents"], credit_type,
            f"Refund #{refund_id}: {refund['reason']}",
            reference_type="REFUND", reference_id=refund_id, job_id=charge["job_id"],
            subscription_id=charge["subscription_id"], created_by=admin_id
        )

        now = utcnow()
        approved = fetch_one(
            self.db,
            f"""
                UPDATE refund_requests
                SET status = :status, processed_by = :admin, processed_at = :now, admin_notes = :notes,
                    payment_reference = :ref, credit_transaction_id = :credit_txn
                WHERE refund_id = :id
                RETURNING {REFUND_COLUMNS}
            """,
            {
                "status": RefundStatus.approved.value, "admin": admin_id, "now": now, "notes": notes,
                "ref": payment_reference, "credit_txn": posted["transaction"]["transaction_id"], "id": refund_id
            }
        )

        reversal = None
        refunded = self._refunded_cents(charge["transaction_id"], [RefundStatus.approved])
        if refunded >= charge["amount_cents"]:
            reversal = self._reverse_charge(charge, admin_id)

        logger.info("refund_approved refund_id=%s amount_cents=%s full_refund=%s",
                    refund_id, refund["amount_cents"], reversal is not None)
        get_audit_service().record(
            "refund", refund_id, "REFUND_APPROVED", actor_id=admin_id,
            data={"amount_cents": refund["amount_cents"], "transaction_id": charge["transaction_id"],
                  "full_refund": reversal is not None},
            db=self.db
        )
        return {"refund": approved, "transaction": posted["transaction"], "commission_reversal": reversal}

    def _reverse_charge(self, charge: dict, admin_id: int) -> Dict[str, Any]:
        commissions = CommissionService(self.db)
        reason = f"charge #{charge['transaction_id']} fully refunded"

        if charge["type"] == TransactionType.job_posting_deduction.value:
            job_id = charge["job_id"] or charge["reference_id"]
            reversal = commissions.reverse_for_reference(reason, job_id=job_id, created_by=admin_id)
            self.db.execute(
                text("UPDATE jobs SET payment_status = :status WHERE job_id = :id"),
                {"status": PaymentStatus.refunded.value, "id": job_id}
            )
            return reversal

        reversal = commissions.reverse_for_reference(
            reason, transaction_id=charge["transaction_id"], created_by=admin_id
        )
        subscription_id = charge["subscription_id"]
        if subscription_id:
            subscriptions = SubscriptionService(self.db)
            if subscriptions.get(subscription_id)["status"] == SubscriptionStatus.active.value:
                subscriptions.cancel(subscription_id, reason=f"Cancelled: {reason}")
        return reversal

    def reject(self, refund_id: int, admin_id: int, reason: str) -> dict:
        if not reason or not reason.strip():
            raise ValidationError("A rejection reason is required")
        refund = self._lock(refund_id)
        if refund["status"] != RefundStatus.pending.value:
            raise InvalidStateError(f"Refund is {refund['status']}")

        rejected = fetch_one(
            self.db,
            f"""
                UPDATE refund_requests
                SET status = :status, rejected_by = :admin, rejected_at = :now, rejection_reason = :reason
                WHERE refund_id = :id
                RETURNING {REFUND_COLUMNS}
            """,
            {"status": RefundStatus.rejected.value, "admin": admin_id, "now": utcnow(), "reason": reason, "id": refund_id}
        )
        logger.info("refund_rejected refund_id=%s", refund_id)
        get_audit_service().record(
            "refund", refund_id, "REFUND_REJECTED", actor_id=admin_id, data={"reason": reason}, db=self.db
        )
        return rejected

    # ============================================================
    # QUERIES
    # ============================================================

    def get(self, refund_id: int) -> dict:
        refund = fetch_one(self.db, f"SELECT {REFUND_COLUMNS} FROM refund_requests WHERE refund_id = :id", {"id": refund_id})
        if not refund:
            raise NotFoundError(f"Refund request {refund_id} not found")
        return refund

    def list_pending(self, company_id: Optional[int] = None, limit: int = 50, offset: int = 0) -> List[dict]:
        params: Dict[str, Any] = {"status": RefundStatus.pending.value}
        company_filter = ""
        if company_id is not None:
            company_filter = "AND company_id = :company_id"
            params["company_id"] = company_id
        return fetch_all(
            self.db,
            f"""SELECT {REFUND_COLUMNS} FROM refund_requests WHERE status = :status {company_filter}
                ORDER BY created_at, refund_id LIMIT {int(limit)} OFFSET {int(offset)}""",
            params
        )

    def list_for_company(self, company_id: int) -> List[dict]:
        return fetch_all(
            self.db,
            f"""SELECT {REFUND_COLUMNS} FROM refund_requests WHERE company_id = :id
                ORDER BY created_at DESC, refund_id DESC""",
            {"id": company_id}
        )

    def stats(self, company_id: Optional[int] = None, start_date=None, end_date=None) -> Dict[str, Any]:
        where = ["1 = 1"]
        params: Dict[str, Any] = {}
        if company_id is not None:
            where.append("company_id = :company_id"); params["company_id"] = company_id
        if start_date:
            where.append("created_at >= :start_date"); params["start_date"] = start_date
        if end_date:
            where.append("created_at <= :end_date"); params["end_date"] = end_date

        rows = fetch_all(
            self.db,
            f"""SELECT status, COUNT(*) AS count, COALESCE(SUM(amount_cents), 0) AS amount
                FROM refund_requests WHERE {" AND ".join(where)} GROUP BY status""",
            params
        )
        by_status = {r["status"]: r for r in rows}

        def count(status):
            return by_status[status.value]["count"] if status.value in by_status else 0

        def amount(status):
            return int(by_status[status.value]["amount"]) if status.value in by_status else 0

        decided = count(RefundStatus.approved) + count(RefundStatus.rejected)
        return {
            "total_requests": sum(r["count"] for r in rows),
            "pending": count(RefundStatus.pending),
            "approved": count(RefundStatus.approved),
            "rejected": count(RefundStatus.rejected),
            "pending_amount_cents": amount(RefundStatus.pending),
            "approved_amount_cents": amount(RefundStatus.approved),
            "approval_rate": round(count(RefundStatus.approved) / decided * 100, 1) if decided else 0.0,
        }

    def _lock(self, refund_id: int) -> dict:
        refund = fetch_one(
            self.db,
            f"SELECT {REFUND_COLUMNS} FROM refund_requests WHERE refund_id = :id" + lock_clause(self.db),
            {"id": refund_id}
        )
        if not refund:
            raise NotFoundError(f"Refund request {refund_id} not found")
        return refund
