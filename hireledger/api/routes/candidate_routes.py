"""
Candidate Routes

POST /candidates/profile - Create candidate profile
GET /candidates/profile - Get own profile
GET /candidates/applications - Get my applications
"""

from typing import List

from fastapi import APIRouter, HTTPException, Depends
from sqlalchemy import text

from hireledger.db.postgres import get_db_session, fetch_one
from hireledger.core.auth import get_current_user, get_current_candidate
from hireledger.models.enums import UserRole
from hireledger.schemas.schemas import (
    ApplicationResponse, CandidateCreate, CandidateResponse, MessageResponse
)
from hireledger.services.job_service import JobService
from hireledger.utils.dates import utcnow

router = APIRouter(prefix="/candidates", tags=["Candidates"])


@router.post("/profile", response_model=MessageResponse, status_code=201)
async def create_profile(data: CandidateCreate, user: dict = Depends(get_current_user)):
    """Create candidate profile. User must be registered as candidate."""
    if user["role"] != UserRole.candidate.value:
        raise HTTPException(status_code=403, detail="Only candidate accounts can create candidate profiles")

    with get_db_session() as db:
        result = db.execute(
            text("SELECT candidate_id FROM candidates WHERE user_id = :id"),
            {"id": user["user_id"]}
        )
        if result.fetchone():
            raise HTTPException(status_code=400, detail="Profile already exists")

        db.execute(
            text("INSERT INTO candidates (user_id, full_name, created_at) VALUES (:user_id, :full_name, :now)"),
            {"user_id": user["user_id"], "full_name": data.full_name, "now": utcnow()}
        )

    return MessageResponse(message="Candidate profile created successfully")


@router.get("/profile", response_model=CandidateResponse)
async def get_profile(candidate: dict = Depends(get_current_candidate)):
    with get_db_session() as db:
        row = fetch_one(
            db,
            "SELECT candidate_id, user_id, full_name, created_at FROM candidates WHERE candidate_id = :id",
            {"id": candidate["candidate_id"]}
        )
    return CandidateResponse(**row)


@router.get("/applications", response_model=List[ApplicationResponse])
async def get_my_applications(candidate: dict = Depends(get_current_candidate)):
    """Get all my job applications with status."""
    with get_db_session() as db:
        rows = JobService(db).list_candidate_applications(candidate["candidate_id"])
    return [ApplicationResponse(**r) for r in rows]
