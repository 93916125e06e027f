"""
Quiz delivery and submission endpoints (state and session gated)
"""
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from typing import List
import logging

from exam_tether.api.deps import get_current_student
from exam_tether.database import get_db
from exam_tether.schemas.quiz import (
    QuizSummary,
    QuizInfo,
    QuizDetailResponse,
    QuizSubmission,
    QuizGradingResponse,
)
from exam_tether.services.exam_service import (
    exam_service,
    QuizNotFoundError,
    AlreadySubmittedError,
)

router = APIRouter(prefix="/api/quizzes", tags=["quizzes"])
logger = logging.getLogger(__name__)

ALREADY_SUBMITTED = "You have already submitted this quiz."


@router.get("", response_model=List[QuizSummary])
async def list_quizzes(
    student_id: str = Depends(get_current_student),
    db: Session = Depends(get_db),
):
    """Quizzes with the calling student's submission status and score"""
    return exam_service.list_quizzes(db, student_id)


@router.get("/{quiz_id}", response_model=QuizDetailResponse)
async def get_quiz(
    quiz_id: str,
    student_id: str = Depends(get_current_student),
    db: Session = Depends(get_db),
):
    """
    Quiz questions for taking the exam

    - Correct answers are never included
    - Randomized quizzes come back in a new order on every request
    """
    try:
        quiz, questions = exam_service.get_quiz_for_student(db, quiz_id, student_id)
    except QuizNotFoundError:
        raise HTTPException(status_code=404, detail="Quiz not found")
    except AlreadySubmittedError:
        raise HTTPException(status_code=400, detail=ALREADY_SUBMITTED)

    return QuizDetailResponse(quiz=QuizInfo.model_validate(quiz), questions=questions)


@router.post("/{quiz_id}/submit", response_model=QuizGradingResponse)
async def submit_quiz(
    quiz_id: str,
    submission: QuizSubmission,
    student_id: str = Depends(get_current_student),
    db: Session = Depends(get_db),
):
    """
    Submit and grade a quiz

    Grading strategy:
    - Multiple choice: case-insensitive exact match
    - Essay: stored for the teacher, scores 0 here
    """
    if not isinstance(submission.answers, dict):
        raise HTTPException(status_code=400, detail="Invalid answer format")

    try:
        result = exam_service.submit_quiz(db, quiz_id, student_id, submission.answers)
    except QuizNotFoundError:
        raise HTTPException(status_code=404, detail="Quiz not found")
    except AlreadySubmittedError:
        raise HTTPException(status_code=400, detail=ALREADY_SUBMITTED)

    return QuizGradingResponse(
        message="Answers saved!",
        total_score=result.total_score,
        max_score=result.max_score,
        percentage=result.percentage,
    )
