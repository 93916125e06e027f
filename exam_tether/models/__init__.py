"""
Database models package
"""
from exam_tether.models.student import Student
from exam_tether.models.quiz import Quiz, Question
from exam_tether.models.assignment import Assignment
from exam_tether.models.submission import QuizSubmission, AssignmentSubmission
from exam_tether.models.session import StudentSession
from exam_tether.models.meta import Meta

__all__ = [
    "Student",
    "Quiz",
    "Question",
    "Assignment",
    "QuizSubmission",
    "AssignmentSubmission",
    "StudentSession",
    "Meta",
]
