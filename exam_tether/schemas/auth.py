"""
Pydantic schemas for student login
"""
from pydantic import BaseModel, Field
from typing import Optional


class LoginRequest(BaseModel):
    nis: Optional[str] = Field(None, description="Student enrollment number (NIS)")


class StudentProfile(BaseModel):
    """Public part of a student row"""
    id: str
    nis: Optional[str] = None
    nama: str
    kelas: Optional[str] = None

    class Config:
        from_attributes = True


class LoginResponse(BaseModel):
    token: str
    student: StudentProfile
