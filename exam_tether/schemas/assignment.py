"""
Pydantic schemas for assignments
"""
from pydantic import BaseModel
from typing import Optional


class AssignmentSummary(BaseModel):
    id: str
    title: str
    description: Optional[str] = None
    type: Optional[str] = None
    due_date: Optional[str] = None
    subject: Optional[str] = None
    class_name: Optional[str] = None
    submitted: bool


class AssignmentSubmissionRequest(BaseModel):
    answer_text: Optional[str] = None


class AssignmentSubmissionResponse(BaseModel):
    message: str
