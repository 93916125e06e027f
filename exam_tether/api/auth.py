"""
Student login endpoint
"""
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
import logging

from exam_tether.api.deps import require_ready
from exam_tether.database import get_db
from exam_tether.schemas.auth import LoginRequest, LoginResponse, StudentProfile
from exam_tether.services.exam_service import exam_service, StudentNotFoundError

router = APIRouter(prefix="/api", tags=["auth"], dependencies=[Depends(require_ready)])
logger = logging.getLogger(__name__)


@router.post("/login", response_model=LoginResponse)
async def login(request: LoginRequest, db: Session = Depends(get_db)):
    """
    Log a student in by enrollment number (NIS)

    Issues a new session token and drops the student's previous session.
    """
    nis = (request.nis or "").strip()
    if not nis:
        raise HTTPException(status_code=400, detail="NIS is required")

    try:
        token, student = exam_service.login(db, nis)
    except StudentNotFoundError:
        raise HTTPException(
            status_code=404,
            detail="NIS not found. Make sure your NIS is registered.",
        )

    return LoginResponse(token=token, student=StudentProfile.model_validate(student))
