"""
Assignment endpoints (state and session gated)
"""
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from typing import List
import logging

from exam_tether.api.deps import get_current_student
from exam_tether.database import get_db
from exam_tether.schemas.assignment import (
    AssignmentSummary,
    AssignmentSubmissionRequest,
    AssignmentSubmissionResponse,
)
from exam_tether.services.exam_service import (
    exam_service,
    AssignmentNotFoundError,
    AlreadySubmittedError,
)

router = APIRouter(prefix="/api/assignments", tags=["assignments"])
logger = logging.getLogger(__name__)


@router.get("", response_model=List[AssignmentSummary])
async def list_assignments(
    student_id: str = Depends(get_current_student),
    db: Session = Depends(get_db),
):
    return exam_service.list_assignments(db, student_id)


@router.post("/{assignment_id}/submit", response_model=AssignmentSubmissionResponse)
async def submit_assignment(
    assignment_id: str,
    submission: AssignmentSubmissionRequest,
    student_id: str = Depends(get_current_student),
    db: Session = Depends(get_db),
):
    """Hand in a free-text answer; one submission per student"""
    answer_text = (submission.answer_text or "").strip()
    if not answer_text:
        raise HTTPException(status_code=400, detail="Answer must not be empty")

    try:
        exam_service.submit_assignment(db, assignment_id, student_id, answer_text)
    except AssignmentNotFoundError:
        raise HTTPException(status_code=404, detail="Assignment not found")
    except AlreadySubmittedError:
        raise HTTPException(status_code=400, detail="You have already submitted this assignment.")

    return AssignmentSubmissionResponse(message="Assignment submitted!")
