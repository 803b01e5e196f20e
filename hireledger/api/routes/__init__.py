"""
API Routes - Combines all route modules into single router.
"""

from fastapi import APIRouter

from hireledger.api.routes.auth_routes import router as auth_router
from hireledger.api.routes.company_routes import router as company_router
from hireledger.api.routes.consultant_routes import router as consultant_router
from hireledger.api.routes.candidate_routes import router as candidate_router
from hireledger.api.routes.job_routes import router as job_router
from hireledger.api.routes.subscription_routes import router as subscription_router
from hireledger.api.routes.refund_routes import router as refund_router
from hireledger.api.routes.admin_routes import router as admin_router

# Main API router
api_router = APIRouter()

# Include all sub-routers
api_router.include_router(auth_router)
api_router.include_router(company_router)
api_router.include_router(consultant_router)
api_router.include_router(candidate_router)
api_router.include_router(job_router)
api_router.include_router(subscription_router)
api_router.include_router(refund_router)
api_router.include_router(admin_router)
