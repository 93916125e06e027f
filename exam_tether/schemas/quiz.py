"""
Pydantic schemas for quiz delivery and submission
"""
from pydantic import BaseModel, Field
from typing import List, Dict, Any, Optional


class QuizScore(BaseModel):
    total_score: int
    max_score: int


class QuizSummary(BaseModel):
    """Quiz list entry annotated with the caller's submission status"""
    id: str
    title: str
    description: Optional[str] = None
    subject: Optional[str] = None
    class_name: Optional[str] = None
    duration_minutes: Optional[int] = None
    submitted: bool
    score: Optional[QuizScore] = None


class QuizInfo(BaseModel):
    id: str
    title: str
    description: Optional[str] = None
    subject: Optional[str] = None
    class_name: Optional[str] = None
    duration_minutes: Optional[int] = None

    class Config:
        from_attributes = True


class PublicQuestion(BaseModel):
    """Question as shown to students - no correct answer"""
    id: str
    quiz_id: str
    question_text: str
    question_type: str
    options: Optional[List[Any]] = None
    points: Optional[int] = None
    order_index: Optional[int] = None
    image_url: Optional[str] = None
    passage_text: Optional[str] = None


class QuizDetailResponse(BaseModel):
    quiz: QuizInfo
    questions: List[PublicQuestion]


class QuizSubmission(BaseModel):
    """Schema for quiz submission"""
    answers: Optional[Dict[str, Any]] = Field(None, description="{question_id: answer}")


class QuizGradingResponse(BaseModel):
    """Response after quiz grading"""
    message: str
    total_score: int
    max_score: int
    percentage: int
