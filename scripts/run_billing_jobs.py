#!/usr/bin/env python3
"""
Periodic Billing Jobs

Runs, in order:
1. Expire pending placement commissions past their expiry date
2. Renew due subscriptions (and expire those without auto-renew)
3. Compute last month's regional revenue
4. Generate licensee settlements up to last month

Each step is its own transaction. Schedule it daily (cron, systemd timer).
Run: python scripts/run_billing_jobs.py [YYYY-MM]
"""
import sys
sys.path.insert(0, '.')

from hireledger.core.logging import setup_logging
from hireledger.db.postgres import get_db_session
from hireledger.services.commission_service import CommissionService
from hireledger.services.revenue_service import RegionalRevenueService, previous_month
from hireledger.services.settlement_service import SettlementService
from hireledger.services.subscription_service import SubscriptionService
from hireledger.utils.dates import parse_month


def main():
    setup_logging()
    month = parse_month(sys.argv[1]) if len(sys.argv) > 1 else previous_month()

    print("=" * 50)
    print(f"HIRELEDGER - BILLING JOBS ({month:%Y-%m})")
    print("=" * 50)

    print("\n[1] Expiring pending commissions...")
    with get_db_session() as db:
        result = CommissionService(db).expire_pending()
    print(f"    ✅ Expired: {result['expired']}")

    print("\n[2] Renewing due subscriptions...")
    with get_db_session() as db:
        result = SubscriptionService(db).renew_due()
    print(f"    ✅ Renewed: {len(result['renewed'])}  Expired: {len(result['expired'])}")
    if result["failed"]:
        print(f"    ⚠️  Renewal failed (wallet): {result['failed']}")
    for error in result["errors"]:
        print(f"    ❌ {error}")

    print("\n[3] Computing regional revenue...")
    with get_db_session() as db:
        result = RegionalRevenueService(db).process_all_regions(month)
    print(f"    ✅ Revenue rows: {len(result['processed'])}")
    for error in result["errors"]:
        print(f"    ❌ {error}")

    print("\n[4] Generating settlements...")
    with get_db_session() as db:
        result = SettlementService(db).generate_all(month)
    print(f"    ✅ Settlements: {result['generated']}")
    for error in result["errors"]:
        print(f"    ❌ {error}")

    print("\n" + "=" * 50)
    print("Billing jobs complete!")
    print("=" * 50)


if __name__ == "__main__":
    main()
