"""
Pydantic schemas for server state and teacher endpoints
"""
from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime


class ServerStateResponse(BaseModel):
    """Polled by the teacher's browser while a download runs"""
    state: str
    teacher_name: Optional[str] = None
    download_time: Optional[str] = None
    progress: str = ""
    error: Optional[str] = None


class TeacherSetupRequest(BaseModel):
    """Teacher identification that starts a download"""
    nip: Optional[str] = Field(None, description="Teacher employee number (NIP)")


class TeacherSetupResponse(BaseModel):
    message: str
    state: str


class UploadResponse(BaseModel):
    """Per-category upload counts; skipped rows are included in failed"""
    quiz_uploaded: int
    quiz_failed: int
    quiz_skipped: int
    quiz_total: int
    assign_uploaded: int
    assign_failed: int
    assign_skipped: int
    assign_total: int
    total_uploaded: int
    total_failed: int
    total_pending: int


class TeacherStatus(BaseModel):
    teacher_name: str
    download_time: str
    students: int
    quizzes: int
    assignments: int
    quiz_submissions: int
    assignment_submissions: int
    active_sessions: int
    pending_upload: int


class QuizResult(BaseModel):
    quiz_id: str
    student_id: str
    total_score: int
    max_score: int
    submitted_at: Optional[datetime] = None
    uploaded: bool
    nama: str
    kelas: Optional[str] = None
    quiz_title: str
    subject: Optional[str] = None


class AssignmentResult(BaseModel):
    assignment_id: str
    student_id: str
    answer_text: Optional[str] = None
    submitted_at: Optional[datetime] = None
    uploaded: bool
    nama: str
    kelas: Optional[str] = None
    assignment_title: str
    subject: Optional[str] = None


class TeacherResults(BaseModel):
    quiz_results: List[QuizResult]
    assignment_results: List[AssignmentResult]
