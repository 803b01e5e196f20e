"""
Virtual Wallet Service - double-entry style ledger of virtual accounts.

Every company and consultant owns at most one virtual account. Money only
moves through credit(), debit() and transfer(); each call:

1. locks the account row (SELECT ... FOR UPDATE),
2. checks the account is ACTIVE (and, for debits, funded),
3. updates balance and running totals,
4. appends a transaction row carrying balance_after.

so that for every account

    balance == total_credits - total_debits
            == sum(credit rows) - sum(debit rows)
            == balance_after of the latest row

verify_integrity() checks exactly that.

The service never commits: it runs inside the caller's session so a
wallet movement and the business change that caused it succeed or fail
together.
"""

import logging
from typing import Optional, List, Dict, Any

from sqlalchemy import text
from sqlalchemy.orm import Session

from hireledger.core.exceptions import (
    InsufficientFundsError, InvalidStateError, NotFoundError, ValidationError
)
from hireledger.db.postgres import fetch_all, fetch_one, lock_clause
from hireledger.models.enums import AccountOwner, AccountStatus, Direction, TransactionType
from hireledger.utils.dates import utcnow
from hireledger.utils.money import format_money

logger = logging.getLogger(__name__)

ACCOUNT_COLUMNS = """
    account_id, owner_type, owner_id, balance_cents, total_credits_cents,
    total_debits_cents, status, created_at, updated_at
"""

TRANSACTION_COLUMNS = """
    transaction_id, account_id, type, direction, amount_cents, balance_after_cents,
    description, reference_type, reference_id, job_id, subscription_id, commission_id,
    created_by, external_reference, status, created_at
"""


def _value(enum_or_str) -> str:
    return enum_or_str.value if hasattr(enum_or_str, "value") else enum_or_str


class WalletService:

    def __init__(self, db: Session):
        self.db = db

    # ============================================================
    # ACCOUNTS
    # ============================================================

    def get_or_create_account(self, owner_type: AccountOwner, owner_id: int, initial_balance_cents: int = 0,
                              created_by: Optional[int] = None) -> dict:
        """
        Get the owner's account, creating it on first use.
        A positive initial balance is booked as an ADMIN_ADJUSTMENT credit.
        """
        owner_type = _value(owner_type)
        now = utcnow()
        result = self.db.execute(
            text("""
                INSERT INTO virtual_accounts (owner_type, owner_id, balance_cents, total_credits_cents,
                    total_debits_cents, status, created_at, updated_at)
                VALUES (:owner_type, :owner_id, 0, 0, 0, :status, :now, :now)
                ON CONFLICT (owner_type, owner_id) DO NOTHING
            """),
            {"owner_type": owner_type, "owner_id": owner_id, "status": AccountStatus.active.value, "now": now}
        )
        account = self.get_account_by_owner(owner_type, owner_id, with_transactions=False)

        if result.rowcount == 1:
            logger.info("wallet_account_created account_id=%s owner=%s:%s", account["account_id"], owner_type, owner_id)
            if initial_balance_cents > 0:
                posted = self.credit(
                    account["account_id"], initial_balance_cents, TransactionType.admin_adjustment,
                    "Initial account balance", created_by=created_by
                )
                account = posted["account"]
        return account

    def get_account(self, account_id: int, with_transactions: bool = True) -> dict:
        account = fetch_one(
            self.db,
            f"SELECT {ACCOUNT_COLUMNS} FROM virtual_accounts WHERE account_id = :id",
            {"id": account_id}
        )
        if not account:
            raise NotFoundError(f"Virtual account {account_id} not found")
        if with_transactions:
            account["recent_transactions"] = self._recent_transactions(account_id)
        return account

    def get_account_by_owner(self, owner_type: AccountOwner, owner_id: int,
                             with_transactions: bool = True) -> Optional[dict]:
        account = fetch_one(
            self.db,
            f"SELECT {ACCOUNT_COLUMNS} FROM virtual_accounts WHERE owner_type = :t AND owner_id = :o",
            {"t": _value(owner_type), "o": owner_id}
        )
        if account and with_transactions:
            account["recent_transactions"] = self._recent_transactions(account["account_id"])
        return account

    def _recent_transactions(self, account_id: int, limit: int = 10) -> List[dict]:
        return fetch_all(
            self.db,
            f"""SELECT {TRANSACTION_COLUMNS} FROM virtual_transactions
                WHERE account_id = :id ORDER BY transaction_id DESC LIMIT {int(limit)}""",
            {"id": account_id}
        )

    def _lock_account(self, account_id: int) -> dict:
        account = fetch_one(
            self.db,
            f"SELECT {ACCOUNT_COLUMNS} FROM virtual_accounts WHERE account_id = :id" + lock_clause(self.db),
            {"id": account_id}
        )
        if not account:
            raise NotFoundError(f"Virtual account {account_id} not found")
        return account

    def lock_owner_account(self, owner_type: AccountOwner, owner_id: int) -> dict:
        """Lock (creating if needed) an owner's account to serialize work on it."""
        account = self.get_or_create_account(owner_type, owner_id)
        return self._lock_account(account["account_id"])

    # ============================================================
    # MONEY MOVEMENT
    # ============================================================

    def credit(self, account_id: int, amount_cents: int, type: TransactionType, description: str,
               **refs) -> Dict[str, Any]:
        """
        Add funds. Returns {"account": ..., "transaction": ...}.

        An external_reference already credited to the account with the same
        type is refused, so a replayed payment is only booked once.
        """
        if amount_cents <= 0:
            raise ValidationError("Credit amount must be positive")
        return self._post(account_id, amount_cents, type, Direction.credit, description, **refs)

    def debit(self, account_id: int, amount_cents: int, type: TransactionType, description: str,
              **refs) -> Dict[str, Any]:
        """Deduct funds. Raises InsufficientFundsError when the balance does not cover it."""
        if amount_cents <= 0:
            raise ValidationError("Debit amount must be positive")
        return self._post(account_id, amount_cents, type, Direction.debit, description, **refs)

    def _post(self, account_id: int, amount_cents: int, type: TransactionType, direction: Direction,
              description: str, reference_type: Optional[str] = None, reference_id: Optional[int] = None,
              job_id: Optional[int] = None, subscription_id: Optional[int] = None,
              commission_id: Optional[int] = None, created_by: Optional[int] = None,
              external_reference: Optional[str] = None) -> Dict[str, Any]:
        account = self._lock_account(account_id)

        if account["status"] != AccountStatus.active.value:
            raise InvalidStateError(f"Virtual account {account_id} is not active (status: {account['status']})")

        if external_reference and fetch_one(
            self.db,
            """SELECT transaction_id FROM virtual_transactions
               WHERE account_id = :id AND type = :type AND external_reference = :ref""",
            {"id": account_id, "type": _value(type), "ref": external_reference}
        ):
            raise InvalidStateError(f"Payment {external_reference} has already been credited")

        balance = account["balance_cents"]
        credits = account["total_credits_cents"]
        debits = account["total_debits_cents"]

        if direction == Direction.debit:
            if balance < amount_cents:
                raise InsufficientFundsError(
                    f"Insufficient balance. Available: {format_money(balance)}, "
                    f"Required: {format_money(amount_cents)}"
                )
            balance -= amount_cents
            debits += amount_cents
        else:
            balance += amount_cents
            credits += amount_cents

        now = utcnow()
        updated = fetch_one(
            self.db,
            f"""
                UPDATE virtual_accounts
                SET balance_cents = :balance, total_credits_cents = :credits,
                    total_debits_cents = :debits, updated_at = :now
                WHERE account_id = :id
                RETURNING {ACCOUNT_COLUMNS}
            """,
            {"balance": balance, "credits": credits, "debits": debits, "now": now, "id": account_id}
        )

        transaction = fetch_one(
            self.db,
            f"""
                INSERT INTO virtual_transactions (account_id, type, direction, amount_cents,
                    balance_after_cents, description, reference_type, reference_id, job_id,
                    subscription_id, commission_id, created_by, external_reference, status, created_at)
                VALUES (:account_id, :type, :direction, :amount, :balance_after, :description,
                    :reference_type, :reference_id, :job_id, :subscription_id, :commission_id,
                    :created_by, :external_reference, 'COMPLETED', :now)
                RETURNING {TRANSACTION_COLUMNS}
            """,
            {
                "account_id": account_id, "type": _value(type), "direction": direction.value,
                "amount": amount_cents, "balance_after": balance, "description": description,
                "reference_type": reference_type, "reference_id": reference_id, "job_id": job_id,
                "subscription_id": subscription_id, "commission_id": commission_id,
                "created_by": created_by, "external_reference": external_reference, "now": now
            }
        )

        logger.info(
            "wallet_%s account_id=%s type=%s amount_cents=%s balance_cents=%s",
            direction.value.lower(), account_id, _value(type), amount_cents, balance
        )
        return {"account": updated, "transaction": transaction}

    def transfer(self, from_account_id: int, to_account_id: int, amount_cents: int, description: str,
                 reference_type: Optional[str] = None, reference_id: Optional[int] = None,
                 created_by: Optional[int] = None) -> Dict[str, Any]:
        if amount_cents <= 0:
            raise ValidationError("Transfer amount must be positive")
        if from_account_id == to_account_id:
            raise ValidationError("Cannot transfer to the same account")

        # Lock in id order so two opposite transfers cannot deadlock
        first, second = sorted([from_account_id, to_account_id])
        locked = {first: self._lock_account(first), second: self._lock_account(second)}
        source, destination = locked[from_account_id], locked[to_account_id]

        if source["status"] != AccountStatus.active.value:
            raise InvalidStateError("Source account is not active")
        if destination["status"] != AccountStatus.active.value:
            raise InvalidStateError("Destination account is not active")

        refs = {"reference_type": reference_type, "reference_id": reference_id, "created_by": created_by}
        debit = self.debit(
            from_account_id, amount_cents, TransactionType.transfer_out,
            f"{description} (to {destination['owner_type']} #{destination['owner_id']})", **refs
        )
        credit = self.credit(
            to_account_id, amount_cents, TransactionType.transfer_in,
            f"{description} (from {source['owner_type']} #{source['owner_id']})", **refs
        )
        return {
            "from_account": debit["account"],
            "to_account": credit["account"],
            "debit_transaction": debit["transaction"],
            "credit_transaction": credit["transaction"],
        }

    # ============================================================
    # QUERIES
    # ============================================================

    def get_transaction(self, transaction_id: int) -> dict:
        transaction = fetch_one(
            self.db,
            f"SELECT {TRANSACTION_COLUMNS} FROM virtual_transactions WHERE transaction_id = :id",
            {"id": transaction_id}
        )
        if not transaction:
            raise NotFoundError(f"Transaction {transaction_id} not found")
        return transaction

    def list_transactions(self, account_id: Optional[int] = None, type: Optional[str] = None,
                          direction: Optional[str] = None, start_date=None, end_date=None,
                          min_amount_cents: Optional[int] = None, max_amount_cents: Optional[int] = None,
                          limit: int = 50, offset: int = 0) -> Dict[str, Any]:
        where = ["1 = 1"]
        params: Dict[str, Any] = {}

        if account_id is not None:
            where.append("t.account_id = :account_id"); params["account_id"] = account_id
        if type:
            where.append("t.type = :type"); params["type"] = _value(type)
        if direction:
            where.append("t.direction = :direction"); params["direction"] = _value(direction)
        if start_date:
            where.append("t.created_at >= :start_date"); params["start_date"] = start_date
        if end_date:
            where.append("t.created_at <= :end_date"); params["end_date"] = end_date
        if min_amount_cents is not None:
            where.append("t.amount_cents >= :min_amount"); params["min_amount"] = min_amount_cents
        if max_amount_cents is not None:
            where.append("t.amount_cents <= :max_amount"); params["max_amount"] = max_amount_cents

        clause = " AND ".join(where)
        total = self.db.execute(
            text(f"SELECT COUNT(*) FROM virtual_transactions t WHERE {clause}"), params
        ).scalar()
        rows = fetch_all(
            self.db,
            f"""
                SELECT t.*, a.owner_type, a.owner_id
                FROM virtual_transactions t JOIN virtual_accounts a ON t.account_id = a.account_id
                WHERE {clause}
                ORDER BY t.transaction_id DESC LIMIT {int(limit)} OFFSET {int(offset)}
            """,
            params
        )
        return {
            "transactions": rows,
            "total": total,
            "limit": limit,
            "offset": offset,
            "has_more": offset + limit < total,
        }

    def check_balance(self, account_id: int, required_cents: int) -> bool:
        account = self.get_account(account_id, with_transactions=False)
        if account["status"] != AccountStatus.active.value:
            return False
        return account["balance_cents"] >= required_cents

    def set_status(self, account_id: int, status: AccountStatus) -> dict:
        self._lock_account(account_id)
        account = fetch_one(
            self.db,
            f"""UPDATE virtual_accounts SET status = :status, updated_at = :now
                WHERE account_id = :id RETURNING {ACCOUNT_COLUMNS}""",
            {"status": _value(status), "now": utcnow(), "id": account_id}
        )
        logger.info("wallet_status_changed account_id=%s status=%s", account_id, _value(status))
        return account

    # ============================================================
    # INTEGRITY
    # ============================================================

    def verify_integrity(self, account_id: int) -> Dict[str, Any]:
        """
        Recompute the account from its transaction rows.

        Checks stored totals, the sum of rows, the latest balance_after and
        that every row's balance_after follows from the previous one.
        """
        account = self.get_account(account_id, with_transactions=False)
        rows = fetch_all(
            self.db,
            """SELECT direction, amount_cents, balance_after_cents FROM virtual_transactions
               WHERE account_id = :id ORDER BY transaction_id""",
            {"id": account_id}
        )

        ledger_credits = 0
        ledger_debits = 0
        running = 0
        broken_chain = 0
        for row in rows:
            if row["direction"] == Direction.credit.value:
                ledger_credits += row["amount_cents"]
                running += row["amount_cents"]
            else:
                ledger_debits += row["amount_cents"]
                running -= row["amount_cents"]
            if running != row["balance_after_cents"]:
                broken_chain += 1

        stored = account["balance_cents"]
        calculated = account["total_credits_cents"] - account["total_debits_cents"]
        last_balance_after = rows[-1]["balance_after_cents"] if rows else 0
        issues = []
        if stored != calculated:
            issues.append("balance does not equal total credits minus total debits")
        if account["total_credits_cents"] != ledger_credits or account["total_debits_cents"] != ledger_debits:
            issues.append("stored totals do not match transaction rows")
        if stored != last_balance_after:
            issues.append("balance does not match latest transaction balance_after")
        if broken_chain:
            issues.append(f"{broken_chain} transaction(s) with inconsistent balance_after")

        return {
            "account_id": account_id,
            "owner_type": account["owner_type"],
            "owner_id": account["owner_id"],
            "stored_balance_cents": stored,
            "calculated_balance_cents": calculated,
            "ledger_balance_cents": ledger_credits - ledger_debits,
            "total_credits_cents": account["total_credits_cents"],
            "total_debits_cents": account["total_debits_cents"],
            "transaction_count": len(rows),
            "is_valid": not issues,
            "issues": issues,
        }

    def verify_all(self) -> Dict[str, Any]:
        account_ids = [r["account_id"] for r in fetch_all(self.db, "SELECT account_id FROM virtual_accounts ORDER BY account_id")]
        reports = [self.verify_integrity(account_id) for account_id in account_ids]
        invalid = [r for r in reports if not r["is_valid"]]
        if invalid:
            logger.warning("ledger_integrity_failed invalid_accounts=%s", [r["account_id"] for r in invalid])
        return {"checked": len(reports), "invalid": len(invalid), "accounts": invalid}
