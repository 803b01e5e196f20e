#!/usr/bin/env python3
"""
Ledger Integrity Check

Recomputes every wallet from its transaction rows and reports accounts
whose stored balance or totals disagree. Exits 1 when any account is invalid.
Run: python scripts/verify_ledger.py
"""
import sys
sys.path.insert(0, '.')

from hireledger.db.postgres import get_db_session
from hireledger.services.wallet_service import WalletService
from hireledger.utils.money import format_money


def main():
    print("=" * 50)
    print("HIRELEDGER - LEDGER INTEGRITY")
    print("=" * 50)

    with get_db_session() as db:
        summary = WalletService(db).verify_all()

    print(f"\n    Accounts checked: {summary['checked']}")
    if not summary["invalid"]:
        print("    ✅ All balances match their transactions")
        return

    print(f"    ❌ Invalid accounts: {summary['invalid']}")
    for report in summary["accounts"]:
        print(f"\n    Account {report['account_id']} ({report['owner_type']} {report['owner_id']})")
        print(f"      stored={format_money(report['stored_balance_cents'])} "
              f"calculated={format_money(report['calculated_balance_cents'])}")
        for issue in report["issues"]:
            print(f"      - {issue}")
    sys.exit(1)


if __name__ == "__main__":
    main()
