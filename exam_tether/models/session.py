"""
Student session model - bearer tokens issued at login
"""
from sqlalchemy import Column, String, Integer, DateTime
from datetime import datetime
from exam_tether.database import Base


class StudentSession(Base):
    """
    Sessions table - a student has at most one row; login replaces it
    """
    __tablename__ = "sessions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    student_id = Column(String, nullable=False, index=True)
    token = Column(String, unique=True, nullable=False, index=True)
    created_at = Column(DateTime, default=datetime.now)

    def __repr__(self):
        return f"<StudentSession(student_id={self.student_id})>"
