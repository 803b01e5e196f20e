"""
Refund Routes

POST /refunds - Request a refund of a wallet charge (company only)
GET /refunds - My refund requests
"""

from typing import List

from fastapi import APIRouter, Depends

from hireledger.db.postgres import get_db_session
from hireledger.core.auth import get_current_company
from hireledger.schemas.schemas import RefundCreate, RefundResponse
from hireledger.services.refund_service import RefundService
from hireledger.utils.money import to_cents

router = APIRouter(prefix="/refunds", tags=["Refunds"])


@router.post("", response_model=RefundResponse, status_code=201)
async def request_refund(data: RefundCreate, company: dict = Depends(get_current_company)):
    """
    Request a refund of a job package or subscription charge.

    Partial refunds are allowed up to what has not already been refunded
    or requested.
    """
    with get_db_session() as db:
        refund = RefundService(db).create_request(
            company["company_id"], data.transaction_id, to_cents(data.amount), data.reason
        )
    return RefundResponse.from_row(refund)


@router.get("", response_model=List[RefundResponse])
async def list_refunds(company: dict = Depends(get_current_company)):
    with get_db_session() as db:
        rows = RefundService(db).list_for_company(company["company_id"])
    return [RefundResponse.from_row(r) for r in rows]
