"""
Subscription Routes

POST /subscriptions - Buy a subscription, paid from the company wallet
GET /subscriptions - My subscriptions
GET /subscriptions/active - My active subscription
GET /subscriptions/{id} - Subscription with usage stats
POST /subscriptions/{id}/renew - Renew now (402 when the wallet cannot cover it)
POST /subscriptions/{id}/cancel - Cancel
"""

from typing import List, Optional

from fastapi import APIRouter, HTTPException, Depends

from hireledger.db.postgres import get_db_session
from hireledger.core.auth import get_current_company
from hireledger.core.exceptions import PermissionDeniedError
from hireledger.schemas.schemas import (
    CommissionResponse, RenewalResponse, SubscriptionCancel, SubscriptionCreate,
    SubscriptionPurchaseResponse, SubscriptionResponse, SubscriptionStats, TransactionResponse
)
from hireledger.services.subscription_service import SubscriptionService
from hireledger.utils.money import to_cents

router = APIRouter(prefix="/subscriptions", tags=["Subscriptions"])


def _subscription(row: dict) -> SubscriptionResponse:
    stats = row.get("stats")
    return SubscriptionResponse.from_row(row, stats=SubscriptionStats(**stats) if stats else None)


@router.post("", response_model=SubscriptionPurchaseResponse, status_code=201)
async def create_subscription(data: SubscriptionCreate, company: dict = Depends(get_current_company)):
    """
    Buy a subscription.

    The price after discount is debited from the wallet. Send the
    payment_reference of an external payment to credit it first.
    """
    with get_db_session() as db:
        result = SubscriptionService(db).create(
            company["company_id"], data.plan_type, data.name, to_cents(data.base_price),
            billing_cycle=data.billing_cycle, job_quota=data.job_quota,
            discount_percent=data.discount_percent, auto_renew=data.auto_renew,
            start_date=data.start_date, payment_reference=data.payment_reference,
            notes=data.notes, created_by=company["user_id"]
        )

    return SubscriptionPurchaseResponse(
        subscription=_subscription(result["subscription"]),
        transaction=TransactionResponse.from_row(result["transaction"]) if result["transaction"] else None,
        commission=CommissionResponse.from_row(result["commission"]) if result["commission"] else None
    )


@router.get("", response_model=List[SubscriptionResponse])
async def list_subscriptions(company: dict = Depends(get_current_company)):
    with get_db_session() as db:
        rows = SubscriptionService(db).list_for_company(company["company_id"])
    return [_subscription(r) for r in rows]


@router.get("/active", response_model=Optional[SubscriptionResponse])
async def get_active_subscription(company: dict = Depends(get_current_company)):
    with get_db_session() as db:
        row = SubscriptionService(db).get_active(company["company_id"])
    return _subscription(row) if row else None


@router.get("/{subscription_id}", response_model=SubscriptionResponse)
async def get_subscription(subscription_id: int, company: dict = Depends(get_current_company)):
    with get_db_session() as db:
        row = SubscriptionService(db).get_with_stats(subscription_id, company_id=company["company_id"])
    return _subscription(row)


@router.post("/{subscription_id}/renew", response_model=RenewalResponse)
async def renew_subscription(subscription_id: int, company: dict = Depends(get_current_company)):
    """Renew for another billing cycle from the wallet."""
    with get_db_session() as db:
        service = SubscriptionService(db)
        if service.get(subscription_id)["company_id"] != company["company_id"]:
            raise PermissionDeniedError("Subscription belongs to another company")
        result = service.renew(subscription_id, created_by=company["user_id"])

    # The failure is committed on the subscription before reporting it
    if not result["renewed"]:
        raise HTTPException(status_code=402, detail=result["reason"])

    return RenewalResponse(
        renewed=True,
        subscription=_subscription(result["subscription"]),
        transaction=TransactionResponse.from_row(result["transaction"]) if result["transaction"] else None,
        commission=CommissionResponse.from_row(result["commission"]) if result["commission"] else None
    )


@router.post("/{subscription_id}/cancel", response_model=SubscriptionResponse)
async def cancel_subscription(
    subscription_id: int,
    data: SubscriptionCancel,
    company: dict = Depends(get_current_company)
):
    with get_db_session() as db:
        row = SubscriptionService(db).cancel(subscription_id, reason=data.reason, company_id=company["company_id"])
    return _subscription(row)
