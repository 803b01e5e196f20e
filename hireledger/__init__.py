"""
HireLedger
Billing and commission ledger for a recruitment marketplace.

Architecture:
- PostgreSQL: Wallets, transactions, commissions, subscriptions, settlements
- MongoDB: Audit trail of admin actions
- All money is integer cents; the API speaks dollars
"""

__version__ = "1.0.0"
