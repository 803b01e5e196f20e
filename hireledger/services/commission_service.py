"""
Commission Service - placement and sales commissions.

Two kinds of commission:

- PLACEMENT: created PENDING when a consultant is assigned to a paid job,
  CONFIRMED when a candidate is hired on that job, CANCELLED on
  reassignment, refund or expiry.
- SUBSCRIPTION_SALE / RECRUITMENT_SERVICE: earned by the company's sales
  agent on every paid sale inside the attribution window. Confirmed at once.

A confirmed commission is credited to the consultant's virtual account
(COMMISSION_EARNED) in the same transaction that confirms it, so the
consultant wallet always equals credited confirmed commissions that have
not been paid out yet.
"""

import logging
from typing import Optional, List, Dict, Any

from sqlalchemy import text
from sqlalchemy.orm import Session

from hireledger.core.config import get_settings
from hireledger.core.exceptions import (
    InsufficientFundsError, InvalidStateError, LedgerError, NotFoundError, ValidationError
)
from hireledger.db.postgres import fetch_all, fetch_one, lock_clause
from hireledger.models.enums import (
    AccountOwner, CommissionStatus, CommissionType, HiringMode, TransactionType,
    RELEASED_WITHDRAWAL_STATUSES
)
from hireledger.services.attribution_service import AttributionService
from hireledger.services.wallet_service import WalletService
from hireledger.utils.dates import add_months, as_datetime, utcnow
from hireledger.utils.money import apply_rate, normalize_rate, to_cents

logger = logging.getLogger(__name__)

# Commissions attached to a withdrawal that is still in flight
HELD_COMMISSIONS_SQL = f"""
    SELECT wc.commission_id
    FROM withdrawal_commissions wc
    JOIN commission_withdrawals w ON wc.withdrawal_id = w.withdrawal_id
    WHERE w.status NOT IN ({", ".join(f"'{s}'" for s in RELEASED_WITHDRAWAL_STATUSES)})
"""

COMMISSION_COLUMNS = """
    commission_id, consultant_id, region_id, company_id, job_id, subscription_id, type,
    amount_cents, rate, status, description, credited, confirmed_at, paid_at,
    payment_reference, expiry_date, notes, transaction_id, created_at
"""


def _value(enum_or_str) -> str:
    return enum_or_str.value if hasattr(enum_or_str, "value") else enum_or_str


class CommissionService:

    def __init__(self, db: Session):
        self.db = db
        self.settings = get_settings()
        self.wallet = WalletService(db)

    # ============================================================
    # CALCULATION
    # ============================================================

    def mode_rate(self, hiring_mode: HiringMode) -> float:
        rates = {
            HiringMode.self_managed.value: 0.0,
            HiringMode.shortlisting.value: self.settings.commission_rate_shortlisting,
            HiringMode.full_service.value: self.settings.commission_rate_full_service,
            HiringMode.executive_search.value: self.settings.commission_rate_executive_search,
        }
        mode = _value(hiring_mode)
        if mode not in rates:
            raise ValidationError(f"Unknown hiring mode: {mode}")
        return normalize_rate(rates[mode])

    def mode_service_fee(self, hiring_mode: HiringMode) -> int:
        fees = {
            HiringMode.self_managed.value: 0,
            HiringMode.shortlisting.value: to_cents(self.settings.service_fee_shortlisting),
            HiringMode.full_service.value: to_cents(self.settings.service_fee_full_service),
            HiringMode.executive_search.value: to_cents(self.settings.service_fee_executive_search),
        }
        return fees.get(_value(hiring_mode), 0)

    def calculate_commission_amount(self, hiring_mode: HiringMode, service_fee_cents: Optional[int] = None) -> int:
        """
        Placement commission for a job's hiring mode.

        SELF_MANAGED jobs earn nothing; otherwise the service fee (or the
        configured fee for the mode) times the mode's rate.
        """
        if _value(hiring_mode) == HiringMode.self_managed.value:
            return 0
        fee = service_fee_cents if service_fee_cents is not None else self.mode_service_fee(hiring_mode)
        return apply_rate(fee, self.mode_rate(hiring_mode))

    def calculate_commission(self, consultant_id: int, base_amount_cents: int) -> Dict[str, Any]:
        """Commission at the consultant's own rate, or the configured default."""
        consultant = fetch_one(
            self.db,
            "SELECT default_commission_rate FROM consultants WHERE consultant_id = :id",
            {"id": consultant_id}
        )
        if not consultant:
            raise NotFoundError(f"Consultant {consultant_id} not found")

        rate = consultant["default_commission_rate"]
        if rate is None:
            rate = self.settings.default_commission_rate
        rate = normalize_rate(rate)
        return {"amount_cents": apply_rate(base_amount_cents, rate), "rate": rate}

    # ============================================================
    # INTERNAL HELPERS
    # ============================================================

    def _insert(self, consultant_id: int, type: CommissionType, amount_cents: int, status: CommissionStatus,
                description: str, rate: Optional[float] = None, region_id: Optional[int] = None,
                company_id: Optional[int] = None, job_id: Optional[int] = None,
                subscription_id: Optional[int] = None, expiry_date=None,
                transaction_id: Optional[int] = None) -> dict:
        return fetch_one(
            self.db,
            f"""
                INSERT INTO commissions (consultant_id, region_id, company_id, job_id, subscription_id,
                    type, amount_cents, rate, status, description, credited, expiry_date,
                    transaction_id, created_at)
                VALUES (:consultant_id, :region_id, :company_id, :job_id, :subscription_id,
                    :type, :amount, :rate, :status, :description, :credited, :expiry_date,
                    :transaction_id, :now)
                RETURNING {COMMISSION_COLUMNS}
            """,
            {
                "consultant_id": consultant_id, "region_id": region_id, "company_id": company_id,
                "job_id": job_id, "subscription_id": subscription_id, "type": _value(type),
                "amount": amount_cents, "rate": rate, "status": _value(status), "description": description,
                "credited": False, "expiry_date": expiry_date, "transaction_id": transaction_id,
                "now": utcnow()
            }
        )

    def _confirm_and_credit(self, commission: dict, created_by: Optional[int] = None) -> dict:
        """Mark a commission CONFIRMED and credit it to the consultant's wallet."""
        now = utcnow()
        confirmed = fetch_one(
            self.db,
            f"""
                UPDATE commissions SET status = :status, confirmed_at = :now, credited = :credited
                WHERE commission_id = :id
                RETURNING {COMMISSION_COLUMNS}
            """,
            {"status": CommissionStatus.confirmed.value, "now": now, "credited": True, "id": commission["commission_id"]}
        )
        account = self.wallet.get_or_create_account(AccountOwner.consultant, commission["consultant_id"])
        if commission["amount_cents"] > 0:
            self.wallet.credit(
                account["account_id"], commission["amount_cents"], TransactionType.commission_earned,
                commission["description"] or f"Commission #{commission['commission_id']}",
                reference_type="COMMISSION", reference_id=commission["commission_id"],
                job_id=commission["job_id"], subscription_id=commission["subscription_id"],
                commission_id=commission["commission_id"], created_by=created_by
            )
        logger.info(
            "commission_confirmed commission_id=%s consultant_id=%s amount_cents=%s",
            commission["commission_id"], commission["consultant_id"], commission["amount_cents"]
        )
        return confirmed

    def _cancel(self, commission_id: int, note: str) -> dict:
        return fetch_one(
            self.db,
            f"""
                UPDATE commissions SET status = :status, notes = :note
                WHERE commission_id = :id
                RETURNING {COMMISSION_COLUMNS}
            """,
            {"status": CommissionStatus.cancelled.value, "note": note, "id": commission_id}
        )

    def held_commission_ids(self) -> set:
        return {r["commission_id"] for r in fetch_all(self.db, HELD_COMMISSIONS_SQL)}

    def _lock_consultants(self, consultant_ids) -> None:
        """
        Take the consultant account locks that withdrawal requests hold
        while they pick commissions. Id order, so two callers cannot deadlock.
        """
        for consultant_id in sorted(set(consultant_ids)):
            self.wallet.lock_owner_account(AccountOwner.consultant, consultant_id)

    def get(self, commission_id: int) -> dict:
        commission = fetch_one(
            self.db,
            f"SELECT {COMMISSION_COLUMNS} FROM commissions WHERE commission_id = :id",
            {"id": commission_id}
        )
        if not commission:
            raise NotFoundError(f"Commission {commission_id} not found")
        return commission

    # ============================================================
    # PLACEMENT COMMISSIONS
    # ============================================================

    def create_for_job_assignment(self, job_id: int, consultant_id: int,
                                  service_fee_cents: Optional[int] = None) -> Optional[dict]:
        """
        Create (or move) the PENDING placement commission when a consultant
        is assigned to a job.

        - same consultant, still pending: amount is recalculated
        - another consultant pending: that commission is cancelled
        - SELF_MANAGED jobs: no commission
        """
        job = fetch_one(
            self.db,
            "SELECT job_id, company_id, region_id, title, hiring_mode FROM jobs WHERE job_id = :id",
            {"id": job_id}
        )
        if not job:
            raise NotFoundError(f"Job {job_id} not found")

        amount = self.calculate_commission_amount(job["hiring_mode"], service_fee_cents)
        rate = self.mode_rate(job["hiring_mode"])
        expiry = add_months(utcnow(), self.settings.placement_commission_expiry_months)

        existing = fetch_all(
            self.db,
            f"""SELECT {COMMISSION_COLUMNS} FROM commissions
                WHERE job_id = :job_id AND type = :type AND status = :status""" + lock_clause(self.db),
            {"job_id": job_id, "type": CommissionType.placement.value, "status": CommissionStatus.pending.value}
        )

        kept = None
        for commission in existing:
            if commission["consultant_id"] == consultant_id and amount > 0:
                kept = fetch_one(
                    self.db,
                    f"""
                        UPDATE commissions SET amount_cents = :amount, rate = :rate, expiry_date = :expiry
                        WHERE commission_id = :id
                        RETURNING {COMMISSION_COLUMNS}
                    """,
                    {"amount": amount, "rate": rate, "expiry": expiry, "id": commission["commission_id"]}
                )
            else:
                self._cancel(commission["commission_id"], f"Job reassigned to consultant {consultant_id}")
                logger.info("commission_cancelled commission_id=%s reason=reassigned", commission["commission_id"])

        if kept or amount == 0:
            return kept

        commission = self._insert(
            consultant_id, CommissionType.placement, amount, CommissionStatus.pending,
            f"Placement commission for job: {job['title']}", rate=rate, region_id=job["region_id"],
            company_id=job["company_id"], job_id=job_id, expiry_date=expiry
        )
        logger.info("commission_created commission_id=%s job_id=%s consultant_id=%s amount_cents=%s",
                    commission["commission_id"], job_id, consultant_id, amount)
        return commission

    def confirm_for_job(self, job_id: int, confirmed_by: Optional[int] = None) -> List[dict]:
        """Confirm and credit every PENDING commission on a job (candidate hired)."""
        pending = fetch_all(
            self.db,
            f"""SELECT {COMMISSION_COLUMNS} FROM commissions
                WHERE job_id = :job_id AND status = :status ORDER BY commission_id""" + lock_clause(self.db),
            {"job_id": job_id, "status": CommissionStatus.pending.value}
        )
        return [self._confirm_and_credit(c, created_by=confirmed_by) for c in pending]

    def award(self, consultant_id: int, amount_cents: int, type: CommissionType = CommissionType.custom,
              description: Optional[str] = None, job_id: Optional[int] = None,
              subscription_id: Optional[int] = None, created_by: Optional[int] = None) -> dict:
        """Admin-awarded commission, confirmed and credited immediately."""
        if amount_cents <= 0:
            raise ValidationError("Commission amount must be positive")
        consultant = fetch_one(
            self.db, "SELECT consultant_id, region_id FROM consultants WHERE consultant_id = :id", {"id": consultant_id}
        )
        if not consultant:
            raise NotFoundError(f"Consultant {consultant_id} not found")

        commission = self._insert(
            consultant_id, type, amount_cents, CommissionStatus.pending,
            description or "Commission awarded by admin", region_id=consultant["region_id"],
            job_id=job_id, subscription_id=subscription_id
        )
        return self._confirm_and_credit(commission, created_by=created_by)

    # ============================================================
    # SALES COMMISSIONS
    # ============================================================

    def process_sales_commission(self, company_id: int, base_amount_cents: int, description: str,
                                 job_id: Optional[int] = None, subscription_id: Optional[int] = None,
                                 type: CommissionType = CommissionType.subscription_sale,
                                 transaction_id: Optional[int] = None) -> Optional[dict]:
        """
        Pay the company's sales agent for a sale.

        Returns the commission, or None when no commission is due (no sales
        agent, outside the attribution window, zero amount). A second call
        for the same charge returns the existing commission.
        """
        company = AttributionService(self.db).lock_for_sale(company_id)
        sales_agent_id = company["sales_agent_id"]
        if not sales_agent_id:
            logger.info("sales_commission_skipped company_id=%s reason=no_sales_agent", company_id)
            return None

        locked_at = as_datetime(company["attribution_locked_at"])
        window_end = add_months(locked_at, self.settings.sales_commission_window_months)
        if utcnow() > window_end:
            logger.info("sales_commission_skipped company_id=%s reason=window_expired", company_id)
            return None

        if transaction_id is not None:
            existing = fetch_one(
                self.db,
                f"SELECT {COMMISSION_COLUMNS} FROM commissions WHERE type = :type AND transaction_id = :txn",
                {"type": _value(type), "txn": transaction_id}
            )
        elif job_id is not None:
            existing = fetch_one(
                self.db,
                f"SELECT {COMMISSION_COLUMNS} FROM commissions WHERE type = :type AND job_id = :job_id",
                {"type": _value(type), "job_id": job_id}
            )
        else:
            existing = fetch_one(
                self.db,
                f"SELECT {COMMISSION_COLUMNS} FROM commissions WHERE type = :type AND subscription_id = :sub_id",
                {"type": _value(type), "sub_id": subscription_id}
            )
        if existing:
            return existing

        calculated = self.calculate_commission(sales_agent_id, base_amount_cents)
        if calculated["amount_cents"] <= 0:
            return None

        commission = self._insert(
            sales_agent_id, type, calculated["amount_cents"], CommissionStatus.pending, description,
            rate=calculated["rate"], region_id=company["region_id"], company_id=company_id,
            job_id=job_id, subscription_id=subscription_id, transaction_id=transaction_id
        )
        return self._confirm_and_credit(commission)

    # ============================================================
    # REVERSAL, PAYOUT, EXPIRY
    # ============================================================

    def reverse_for_reference(self, reason: str, job_id: Optional[int] = None,
                              subscription_id: Optional[int] = None, transaction_id: Optional[int] = None,
                              created_by: Optional[int] = None) -> Dict[str, Any]:
        """
        Undo the commissions earned on a job, a subscription or one charge.

        PENDING ones are cancelled. CONFIRMED ones are cancelled and their
        wallet credit taken back (COMMISSION_REVERSAL), unless a withdrawal
        already holds them. PAID and held commissions are reported in
        "skipped" for manual follow-up.
        """
        if transaction_id is not None:
            where, params = "transaction_id = :ref", {"ref": transaction_id}
        elif job_id is not None:
            where, params = "job_id = :ref", {"ref": job_id}
        elif subscription_id is not None:
            where, params = "subscription_id = :ref", {"ref": subscription_id}
        else:
            raise ValidationError("A job, subscription or transaction reference is required")

        owners = fetch_all(
            self.db,
            f"SELECT DISTINCT consultant_id FROM commissions WHERE {where} AND status != :cancelled",
            {**params, "cancelled": CommissionStatus.cancelled.value}
        )
        self._lock_consultants(r["consultant_id"] for r in owners)

        commissions = fetch_all(
            self.db,
            f"""SELECT {COMMISSION_COLUMNS} FROM commissions
                WHERE {where} AND status != :cancelled ORDER BY commission_id""" + lock_clause(self.db),
            {**params, "cancelled": CommissionStatus.cancelled.value}
        )
        held = self.held_commission_ids()
        result = {"cancelled": [], "reversed": [], "skipped": []}

        for commission in commissions:
            commission_id = commission["commission_id"]
            status = commission["status"]

            if status == CommissionStatus.pending.value:
                self._cancel(commission_id, f"Cancelled: {reason}")
                result["cancelled"].append(commission_id)
                continue
            if status == CommissionStatus.paid.value:
                result["skipped"].append({"commission_id": commission_id, "reason": "already paid"})
                continue
            if commission_id in held:
                result["skipped"].append({"commission_id": commission_id, "reason": "held by a withdrawal"})
                continue

            if commission["credited"] and commission["amount_cents"] > 0:
                account = self.wallet.get_or_create_account(AccountOwner.consultant, commission["consultant_id"])
                try:
                    self.wallet.debit(
                        account["account_id"], commission["amount_cents"], TransactionType.commission_reversal,
                        f"Commission #{commission_id} reversed: {reason}",
                        reference_type="COMMISSION", reference_id=commission_id, job_id=commission["job_id"],
                        subscription_id=commission["subscription_id"], commission_id=commission_id,
                        created_by=created_by
                    )
                except InsufficientFundsError as e:
                    result["skipped"].append({"commission_id": commission_id, "reason": e.message})
                    continue
            self._cancel(commission_id, f"Reversed: {reason}")
            result["reversed"].append(commission_id)

        logger.info(
            "commissions_reversed %s cancelled=%s reversed=%s skipped=%s",
            where.replace(":ref", str(params["ref"])), result["cancelled"], result["reversed"],
            [s["commission_id"] for s in result["skipped"]]
        )
        return result

    def mark_paid(self, commission_ids: List[int], payment_reference: str,
                  created_by: Optional[int] = None) -> Dict[str, Any]:
        """
        Pay confirmed commissions out directly, outside the withdrawal flow.
        Each id is processed on its own; failures are collected, not raised.
        """
        processed, errors = [], []

        for commission_id in commission_ids:
            try:
                with self.db.begin_nested():
                    owner = fetch_one(
                        self.db, "SELECT consultant_id FROM commissions WHERE commission_id = :id", {"id": commission_id}
                    )
                    if not owner:
                        raise NotFoundError(f"Commission {commission_id} not found")
                    self._lock_consultants([owner["consultant_id"]])

                    commission = fetch_one(
                        self.db,
                        f"SELECT {COMMISSION_COLUMNS} FROM commissions WHERE commission_id = :id" + lock_clause(self.db),
                        {"id": commission_id}
                    )
                    if commission["status"] != CommissionStatus.confirmed.value:
                        raise InvalidStateError(f"Commission is {commission['status']}, only CONFIRMED can be paid")
                    if commission_id in self.held_commission_ids():
                        raise InvalidStateError("Commission is held by a withdrawal request")

                    if commission["credited"] and commission["amount_cents"] > 0:
                        account = self.wallet.get_or_create_account(AccountOwner.consultant, commission["consultant_id"])
                        self.wallet.debit(
                            account["account_id"], commission["amount_cents"], TransactionType.commission_withdrawal,
                            f"Commission #{commission_id} paid out ({payment_reference})",
                            reference_type="COMMISSION", reference_id=commission_id,
                            commission_id=commission_id, created_by=created_by
                        )
                    self.db.execute(
                        text("""
                            UPDATE commissions SET status = :status, paid_at = :now, payment_reference = :ref
                            WHERE commission_id = :id
                        """),
                        {"status": CommissionStatus.paid.value, "now": utcnow(), "ref": payment_reference, "id": commission_id}
                    )
                processed.append(commission_id)
            except LedgerError as e:
                errors.append({"commission_id": commission_id, "error": e.message})

        logger.info("commissions_marked_paid processed=%s errors=%s", processed, len(errors))
        return {"processed": processed, "errors": errors}

    def expire_pending(self, now=None) -> Dict[str, Any]:
        """Cancel PENDING commissions whose expiry date has passed."""
        now = now or utcnow()
        expired = fetch_all(
            self.db,
            """SELECT commission_id FROM commissions
               WHERE status = :status AND expiry_date IS NOT NULL AND expiry_date < :now""",
            {"status": CommissionStatus.pending.value, "now": now}
        )
        ids = [r["commission_id"] for r in expired]
        for commission_id in ids:
            self._cancel(commission_id, f"Expired on {now.date().isoformat()}")
        if ids:
            logger.info("commissions_expired count=%s ids=%s", len(ids), ids)
        return {"expired": len(ids), "commission_ids": ids}

    # ============================================================
    # QUERIES
    # ============================================================

    def list(self, consultant_id: Optional[int] = None, region_id: Optional[int] = None,
             job_id: Optional[int] = None, status: Optional[str] = None, type: Optional[str] = None,
             limit: int = 50, offset: int = 0) -> List[dict]:
        where = ["1 = 1"]
        params: Dict[str, Any] = {}
        if consultant_id is not None:
            where.append("consultant_id = :consultant_id"); params["consultant_id"] = consultant_id
        if region_id is not None:
            where.append("region_id = :region_id"); params["region_id"] = region_id
        if job_id is not None:
            where.append("job_id = :job_id"); params["job_id"] = job_id
        if status:
            where.append("status = :status"); params["status"] = _value(status)
        if type:
            where.append("type = :type"); params["type"] = _value(type)

        return fetch_all(
            self.db,
            f"""SELECT {COMMISSION_COLUMNS} FROM commissions WHERE {" AND ".join(where)}
                ORDER BY created_at DESC, commission_id DESC LIMIT {int(limit)} OFFSET {int(offset)}""",
            params
        )

    def list_for_consultant(self, consultant_id: int, status: Optional[str] = None,
                            type: Optional[str] = None) -> List[dict]:
        return self.list(consultant_id=consultant_id, status=status, type=type, limit=500)

    def earnings_summary(self, consultant_id: int) -> Dict[str, Any]:
        rows = fetch_all(
            self.db,
            """SELECT status, COUNT(*) AS count, COALESCE(SUM(amount_cents), 0) AS amount
               FROM commissions WHERE consultant_id = :id GROUP BY status""",
            {"id": consultant_id}
        )
        by_status = {r["status"]: {"count": r["count"], "amount_cents": int(r["amount"])} for r in rows}
        empty = {"count": 0, "amount_cents": 0}

        held = self.held_commission_ids()
        confirmed = fetch_all(
            self.db,
            "SELECT commission_id, amount_cents FROM commissions WHERE consultant_id = :id AND status = :status",
            {"id": consultant_id, "status": CommissionStatus.confirmed.value}
        )
        available = sum(c["amount_cents"] for c in confirmed if c["commission_id"] not in held)

        summary = {s.value.lower(): by_status.get(s.value, empty) for s in CommissionStatus}
        summary["total_earned_cents"] = sum(
            v["amount_cents"] for k, v in by_status.items() if k != CommissionStatus.cancelled.value
        )
        summary["available_cents"] = available
        return summary
