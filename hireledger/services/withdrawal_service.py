"""
Withdrawal Service - consultants cashing out confirmed commissions.

Lifecycle:
    PENDING -> APPROVED -> (PROCESSING) -> COMPLETED
    PENDING -> REJECTED | CANCELLED

A withdrawal holds its commissions from the moment it is requested until
it is rejected or cancelled, so the same commission can never be
requested twice. The consultant wallet is only debited when the payout
is processed; that is also when the commissions become PAID.
"""

import logging
from typing import Optional, List, Dict, Any

from sqlalchemy import text
from sqlalchemy.orm import Session

from hireledger.core.config import get_settings
from hireledger.core.exceptions import (
    InsufficientFundsError, InvalidStateError, NotFoundError, PermissionDeniedError, ValidationError
)
from hireledger.db.postgres import fetch_all, fetch_one, lock_clause
from hireledger.models.enums import AccountOwner, CommissionStatus, TransactionType, WithdrawalStatus
from hireledger.services.audit_service import get_audit_service
from hireledger.services.commission_service import CommissionService
from hireledger.services.wallet_service import WalletService
from hireledger.utils.dates import utcnow
from hireledger.utils.money import format_money, to_cents

logger = logging.getLogger(__name__)

WITHDRAWAL_COLUMNS = """
    withdrawal_id, consultant_id, amount_cents, status, payment_method, notes, processed_by,
    processed_at, payment_reference, admin_notes, rejected_by, rejected_at, rejection_reason,
    transaction_id, created_at
"""

# Statuses an admin still has to act on
OPEN_STATUSES = (WithdrawalStatus.pending.value, WithdrawalStatus.approved.value, WithdrawalStatus.processing.value)


class WithdrawalService:

    def __init__(self, db: Session):
        self.db = db
        self.settings = get_settings()
        self.wallet = WalletService(db)
        self.commissions = CommissionService(db)

    @property
    def minimum_cents(self) -> int:
        return to_cents(self.settings.minimum_withdrawal)

    # ============================================================
    # BALANCES
    # ============================================================

    def calculate_balance(self, consultant_id: int) -> Dict[str, Any]:
        commissions = fetch_all(
            self.db,
            """SELECT commission_id, job_id, subscription_id, type, amount_cents, status, description,
                      confirmed_at, created_at
               FROM commissions WHERE consultant_id = :id
               ORDER BY confirmed_at, commission_id""",
            {"id": consultant_id}
        )
        held = self.commissions.held_commission_ids()

        available = [
            c for c in commissions
            if c["status"] == CommissionStatus.confirmed.value and c["commission_id"] not in held
        ]
        withdrawn = self.db.execute(
            text("""SELECT COALESCE(SUM(amount_cents), 0) FROM commission_withdrawals
                    WHERE consultant_id = :id AND status = :status"""),
            {"id": consultant_id, "status": WithdrawalStatus.completed.value}
        ).scalar()

        return {
            "available_cents": sum(c["amount_cents"] for c in available),
            "pending_cents": sum(c["amount_cents"] for c in commissions if c["status"] == CommissionStatus.pending.value),
            "total_earned_cents": sum(
                c["amount_cents"] for c in commissions if c["status"] != CommissionStatus.cancelled.value
            ),
            "total_withdrawn_cents": int(withdrawn),
            "available_commissions": available,
        }

    def wallet_balance(self, consultant_id: int) -> Dict[str, Any]:
        account = self.wallet.get_or_create_account(AccountOwner.consultant, consultant_id)
        balance = self.calculate_balance(consultant_id)
        balance["wallet_balance_cents"] = account["balance_cents"]
        balance["minimum_withdrawal_cents"] = self.minimum_cents
        return balance

    # ============================================================
    # CONSULTANT ACTIONS
    # ============================================================

    def request(self, consultant_id: int, amount_cents: Optional[int] = None,
                commission_ids: Optional[List[int]] = None, payment_method: str = "BANK_TRANSFER",
                notes: Optional[str] = None) -> dict:
        """
        Request a payout of available commissions.

        With commission_ids, exactly those commissions are withdrawn. Without
        them, the oldest available commissions are taken until they add up
        to amount; an amount that no oldest-first run adds up to is refused.
        """
        consultant = fetch_one(
            self.db, "SELECT consultant_id FROM consultants WHERE consultant_id = :id", {"id": consultant_id}
        )
        if not consultant:
            raise NotFoundError(f"Consultant {consultant_id} not found")

        # Serializes concurrent requests by the same consultant
        self.wallet.lock_owner_account(AccountOwner.consultant, consultant_id)

        balance = self.calculate_balance(consultant_id)
        available = balance["available_commissions"]

        if commission_ids:
            by_id = {c["commission_id"]: c for c in available}
            missing = [cid for cid in commission_ids if cid not in by_id]
            if missing:
                raise ValidationError(f"Commissions not available for withdrawal: {missing}")
            selected = [by_id[cid] for cid in dict.fromkeys(commission_ids)]
            total = sum(c["amount_cents"] for c in selected)
            if amount_cents is not None and abs(amount_cents - total) > 1:
                raise ValidationError(
                    f"Amount {format_money(amount_cents)} does not match selected commissions total {format_money(total)}"
                )
        else:
            if amount_cents is None:
                raise ValidationError("Either an amount or commission ids are required")
            if amount_cents > balance["available_cents"]:
                raise InsufficientFundsError(
                    f"Insufficient available balance. Available: {format_money(balance['available_cents'])}, "
                    f"Requested: {format_money(amount_cents)}"
                )
            selected, total = [], 0
            for commission in available:
                selected.append(commission)
                total += commission["amount_cents"]
                if total >= amount_cents - 1:
                    break
            if abs(total - amount_cents) > 1:
                raise ValidationError(
                    f"Amount must equal a run of available commissions, oldest first "
                    f"(nearest total: {format_money(total)})"
                )

        if not selected:
            raise ValidationError("No commissions selected")
        if total < self.minimum_cents:
            raise ValidationError(f"Minimum withdrawal amount is {format_money(self.minimum_cents)}")

        withdrawal = fetch_one(
            self.db,
            f"""
                INSERT INTO commission_withdrawals (consultant_id, amount_cents, status, payment_method, notes, created_at)
                VALUES (:consultant_id, :amount, :status, :method, :notes, :now)
                RETURNING {WITHDRAWAL_COLUMNS}
            """,
            {
                "consultant_id": consultant_id, "amount": total, "status": WithdrawalStatus.pending.value,
                "method": payment_method, "notes": notes, "now": utcnow()
            }
        )
        for commission in selected:
            self.db.execute(
                text("INSERT INTO withdrawal_commissions (withdrawal_id, commission_id) VALUES (:w, :c)"),
                {"w": withdrawal["withdrawal_id"], "c": commission["commission_id"]}
            )

        logger.info("withdrawal_requested withdrawal_id=%s consultant_id=%s amount_cents=%s commissions=%s",
                    withdrawal["withdrawal_id"], consultant_id, total, [c["commission_id"] for c in selected])
        withdrawal["commission_ids"] = [c["commission_id"] for c in selected]
        return withdrawal

    def cancel(self, withdrawal_id: int, consultant_id: int) -> dict:
        withdrawal = self._lock(withdrawal_id)
        if withdrawal["consultant_id"] != consultant_id:
            raise PermissionDeniedError("Not your withdrawal request")
        self._require_status(withdrawal, WithdrawalStatus.pending)
        updated = self._update(withdrawal_id, "status = :status", {"status": WithdrawalStatus.cancelled.value})
        logger.info("withdrawal_cancelled withdrawal_id=%s", withdrawal_id)
        return updated

    # ============================================================
    # ADMIN ACTIONS
    # ============================================================

    def approve(self, withdrawal_id: int, admin_id: int) -> dict:
        withdrawal = self._lock(withdrawal_id)
        self._require_status(withdrawal, WithdrawalStatus.pending)
        updated = self._update(
            withdrawal_id, "status = :status, processed_by = :admin",
            {"status": WithdrawalStatus.approved.value, "admin": admin_id}
        )
        self._audit(withdrawal_id, "WITHDRAWAL_APPROVED", admin_id, {"amount_cents": withdrawal["amount_cents"]})
        return updated

    def reject(self, withdrawal_id: int, admin_id: int, reason: str) -> dict:
        if not reason or not reason.strip():
            raise ValidationError("A rejection reason is required")
        withdrawal = self._lock(withdrawal_id)
        self._require_status(withdrawal, WithdrawalStatus.pending)
        updated = self._update(
            withdrawal_id,
            "status = :status, rejected_by = :admin, rejected_at = :now, rejection_reason = :reason",
            {"status": WithdrawalStatus.rejected.value, "admin": admin_id, "now": utcnow(), "reason": reason}
        )
        self._audit(withdrawal_id, "WITHDRAWAL_REJECTED", admin_id, {"reason": reason})
        return updated

    def start_processing(self, withdrawal_id: int, admin_id: int) -> dict:
        withdrawal = self._lock(withdrawal_id)
        self._require_status(withdrawal, WithdrawalStatus.approved)
        return self._update(
            withdrawal_id, "status = :status, processed_by = :admin",
            {"status": WithdrawalStatus.processing.value, "admin": admin_id}
        )

    def process_payment(self, withdrawal_id: int, payment_reference: str, admin_notes: Optional[str] = None,
                        admin_id: Optional[int] = None) -> dict:
        """
        Record the external payout: debit the wallet, mark the commissions
        PAID and complete the withdrawal.
        """
        if not payment_reference:
            raise ValidationError("A payment reference is required")
        withdrawal = self._lock(withdrawal_id)
        self._require_status(withdrawal, WithdrawalStatus.approved, WithdrawalStatus.processing)

        account = self.wallet.lock_owner_account(AccountOwner.consultant, withdrawal["consultant_id"])
        not_payable = fetch_all(
            self.db,
            """SELECT c.commission_id, c.status FROM commissions c
               JOIN withdrawal_commissions wc ON wc.commission_id = c.commission_id
               WHERE wc.withdrawal_id = :w AND c.status != :confirmed
               ORDER BY c.commission_id""",
            {"w": withdrawal_id, "confirmed": CommissionStatus.confirmed.value}
        )
        if not_payable:
            raise InvalidStateError(
                "Withdrawal includes commissions that are no longer CONFIRMED: "
                + ", ".join(f"#{c['commission_id']} ({c['status']})" for c in not_payable)
            )

        posted = self.wallet.debit(
            account["account_id"], withdrawal["amount_cents"], TransactionType.commission_withdrawal,
            f"Withdrawal #{withdrawal_id} paid ({payment_reference})",
            reference_type="WITHDRAWAL", reference_id=withdrawal_id, created_by=admin_id
        )

        now = utcnow()
        self.db.execute(
            text("""
                UPDATE commissions SET status = :status, paid_at = :now, payment_reference = :ref
                WHERE commission_id IN (SELECT commission_id FROM withdrawal_commissions WHERE withdrawal_id = :w)
            """),
            {"status": CommissionStatus.paid.value, "now": now, "ref": payment_reference, "w": withdrawal_id}
        )
        updated = self._update(
            withdrawal_id,
            """status = :status, processed_at = :now, payment_reference = :ref, admin_notes = :notes,
               transaction_id = :txn, processed_by = COALESCE(processed_by, :admin)""",
            {
                "status": WithdrawalStatus.completed.value, "now": now, "ref": payment_reference,
                "notes": admin_notes, "txn": posted["transaction"]["transaction_id"], "admin": admin_id
            }
        )
        self._audit(withdrawal_id, "WITHDRAWAL_COMPLETED", admin_id,
                    {"amount_cents": withdrawal["amount_cents"], "payment_reference": payment_reference})
        return updated

    # ============================================================
    # QUERIES
    # ============================================================

    def get(self, withdrawal_id: int) -> dict:
        withdrawal = fetch_one(
            self.db,
            f"SELECT {WITHDRAWAL_COLUMNS} FROM commission_withdrawals WHERE withdrawal_id = :id",
            {"id": withdrawal_id}
        )
        if not withdrawal:
            raise NotFoundError(f"Withdrawal {withdrawal_id} not found")
        withdrawal["commission_ids"] = self._commission_ids(withdrawal_id)
        return withdrawal

    def list_for_consultant(self, consultant_id: int, status: Optional[str] = None) -> List[dict]:
        params = {"id": consultant_id}
        status_filter = ""
        if status:
            status_filter = "AND status = :status"
            params["status"] = status
        rows = fetch_all(
            self.db,
            f"""SELECT {WITHDRAWAL_COLUMNS} FROM commission_withdrawals
                WHERE consultant_id = :id {status_filter} ORDER BY created_at DESC, withdrawal_id DESC""",
            params
        )
        for row in rows:
            row["commission_ids"] = self._commission_ids(row["withdrawal_id"])
        return rows

    def list_pending(self, region_id: Optional[int] = None) -> List[dict]:
        """Withdrawals awaiting an admin (pending, approved or processing)."""
        params: Dict[str, Any] = {}
        region_filter = ""
        if region_id is not None:
            region_filter = "AND c.region_id = :region_id"
            params["region_id"] = region_id
        statuses = ", ".join(f"'{s}'" for s in OPEN_STATUSES)
        rows = fetch_all(
            self.db,
            f"""
                SELECT w.*, c.full_name AS consultant_name, c.region_id
                FROM commission_withdrawals w JOIN consultants c ON w.consultant_id = c.consultant_id
                WHERE w.status IN ({statuses}) {region_filter}
                ORDER BY w.created_at, w.withdrawal_id
            """,
            params
        )
        for row in rows:
            row["commission_ids"] = self._commission_ids(row["withdrawal_id"])
        return rows

    # ============================================================
    # HELPERS
    # ============================================================

    def _lock(self, withdrawal_id: int) -> dict:
        withdrawal = fetch_one(
            self.db,
            f"SELECT {WITHDRAWAL_COLUMNS} FROM commission_withdrawals WHERE withdrawal_id = :id" + lock_clause(self.db),
            {"id": withdrawal_id}
        )
        if not withdrawal:
            raise NotFoundError(f"Withdrawal {withdrawal_id} not found")
        return withdrawal

    @staticmethod
    def _require_status(withdrawal: dict, *allowed: WithdrawalStatus):
        if withdrawal["status"] not in [s.value for s in allowed]:
            raise InvalidStateError(
                f"Withdrawal is {withdrawal['status']}; expected {' or '.join(s.value for s in allowed)}"
            )

    def _update(self, withdrawal_id: int, assignments: str, params: dict) -> dict:
        updated = fetch_one(
            self.db,
            f"""UPDATE commission_withdrawals SET {assignments}
                WHERE withdrawal_id = :withdrawal_id RETURNING {WITHDRAWAL_COLUMNS}""",
            {**params, "withdrawal_id": withdrawal_id}
        )
        updated["commission_ids"] = self._commission_ids(withdrawal_id)
        logger.info("withdrawal_updated withdrawal_id=%s status=%s", withdrawal_id, updated["status"])
        return updated

    def _commission_ids(self, withdrawal_id: int) -> List[int]:
        return [
            r["commission_id"] for r in fetch_all(
                self.db,
                "SELECT commission_id FROM withdrawal_commissions WHERE withdrawal_id = :w ORDER BY commission_id",
                {"w": withdrawal_id}
            )
        ]

    def _audit(self, withdrawal_id: int, action: str, admin_id: Optional[int], data: dict):
        get_audit_service().record("withdrawal", withdrawal_id, action, actor_id=admin_id, data=data, db=self.db)
