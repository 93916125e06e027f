"""
Teacher dashboard service - local store statistics and collected results
"""
import logging
from typing import Any, Dict, List
from sqlalchemy.orm import Session
from sqlalchemy import func

from exam_tether.models import (
    Student,
    Quiz,
    Assignment,
    QuizSubmission,
    AssignmentSubmission,
    StudentSession,
)
from exam_tether.models.meta import get_meta, META_TEACHER_NAME, META_DOWNLOAD_TIME

logger = logging.getLogger(__name__)


class DashboardService:
    """Read-only views over the local store for the teacher's browser"""

    def get_status(self, db: Session) -> Dict[str, Any]:
        """
        Counts of cached data, collected submissions and pending uploads

        Args:
            db: Database session

        Returns:
            Dictionary matching the TeacherStatus schema
        """

        def count(column, *criteria) -> int:
            query = db.query(func.count(column))
            if criteria:
                query = query.filter(*criteria)
            return query.scalar() or 0

        pending_quiz = count(QuizSubmission.id, QuizSubmission.uploaded.is_(False))
        pending_assignment = count(AssignmentSubmission.id, AssignmentSubmission.uploaded.is_(False))

        return {
            "teacher_name": get_meta(db, META_TEACHER_NAME) or "-",
            "download_time": get_meta(db, META_DOWNLOAD_TIME) or "-",
            "students": count(Student.id),
            "quizzes": count(Quiz.id),
            "assignments": count(Assignment.id),
            "quiz_submissions": count(QuizSubmission.id),
            "assignment_submissions": count(AssignmentSubmission.id),
            "active_sessions": count(StudentSession.id),
            "pending_upload": pending_quiz + pending_assignment,
        }

    def get_results(self, db: Session) -> Dict[str, List[Dict[str, Any]]]:
        """Every submission joined with student and quiz/assignment labels, newest first"""

        quiz_rows = (
            db.query(QuizSubmission, Student, Quiz)
            .join(Student, QuizSubmission.student_id == Student.id)
            .join(Quiz, QuizSubmission.quiz_id == Quiz.id)
            .order_by(QuizSubmission.submitted_at.desc(), QuizSubmission.id.desc())
            .all()
        )

        assignment_rows = (
            db.query(AssignmentSubmission, Student, Assignment)
            .join(Student, AssignmentSubmission.student_id == Student.id)
            .join(Assignment, AssignmentSubmission.assignment_id == Assignment.id)
            .order_by(AssignmentSubmission.submitted_at.desc(), AssignmentSubmission.id.desc())
            .all()
        )

        return {
            "quiz_results": [
                {
                    "quiz_id": sub.quiz_id,
                    "student_id": sub.student_id,
                    "total_score": sub.total_score,
                    "max_score": sub.max_score,
                    "submitted_at": sub.submitted_at,
                    "uploaded": sub.uploaded,
                    "nama": student.nama,
                    "kelas": student.kelas,
                    "quiz_title": quiz.title,
                    "subject": quiz.subject,
                }
                for sub, student, quiz in quiz_rows
            ],
            "assignment_results": [
                {
                    "assignment_id": sub.assignment_id,
                    "student_id": sub.student_id,
                    "answer_text": sub.answer_text,
                    "submitted_at": sub.submitted_at,
                    "uploaded": sub.uploaded,
                    "nama": student.nama,
                    "kelas": student.kelas,
                    "assignment_title": assignment.title,
                    "subject": assignment.subject,
                }
                for sub, student, assignment in assignment_rows
            ],
        }


# Global instance
dashboard_service = DashboardService()
