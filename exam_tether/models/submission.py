"""
Submission models - locally captured results waiting for upload
"""
from sqlalchemy import Column, String, Integer, Boolean, Text, DateTime, JSON, UniqueConstraint
from datetime import datetime
from exam_tether.database import Base


class QuizSubmission(Base):
    """
    Quiz submissions table - one row per (quiz, student), enforced by the store
    """
    __tablename__ = "quiz_submissions"
    __table_args__ = (
        UniqueConstraint("quiz_id", "student_id", name="uq_quiz_submissions_quiz_student"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    quiz_id = Column(String, nullable=False, index=True)
    student_id = Column(String, nullable=False, index=True)
    answers = Column(JSON)  # [{question_id, answer, is_correct, score}]
    total_score = Column(Integer, default=0)
    max_score = Column(Integer, default=0)
    submitted_at = Column(DateTime, default=datetime.now)
    uploaded = Column(Boolean, default=False, nullable=False)

    def __repr__(self):
        return f"<QuizSubmission(quiz_id={self.quiz_id}, student_id={self.student_id}, score={self.total_score}/{self.max_score})>"


class AssignmentSubmission(Base):
    """
    Assignment submissions table - one row per (assignment, student)
    """
    __tablename__ = "assignment_submissions"
    __table_args__ = (
        UniqueConstraint("assignment_id", "student_id", name="uq_assignment_submissions_assignment_student"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    assignment_id = Column(String, nullable=False, index=True)
    student_id = Column(String, nullable=False)
    answer_text = Column(Text)
    submitted_at = Column(DateTime, default=datetime.now)
    uploaded = Column(Boolean, default=False, nullable=False)

    def __repr__(self):
        return f"<AssignmentSubmission(assignment_id={self.assignment_id}, student_id={self.student_id})>"
