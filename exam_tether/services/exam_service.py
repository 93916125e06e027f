"""
Exam engine - student login, quiz delivery, grading and submissions

Grading strategy:
- Multiple choice: case-insensitive exact match, full points or zero
- Essay: recorded ungraded (is_correct None, score 0); graded by the teacher later
"""
import logging
import math
import random
import secrets
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from exam_tether.models import (
    Student,
    Quiz,
    Question,
    Assignment,
    QuizSubmission,
    AssignmentSubmission,
    StudentSession,
)
from exam_tether.models.quiz import QUESTION_TYPE_MULTIPLE_CHOICE, DEFAULT_QUESTION_POINTS

logger = logging.getLogger(__name__)

TOKEN_BYTES = 32


class StudentNotFoundError(Exception):
    pass


class QuizNotFoundError(Exception):
    pass


class AssignmentNotFoundError(Exception):
    pass


class AlreadySubmittedError(Exception):
    pass


@dataclass
class GradingResult:
    total_score: int
    max_score: int
    percentage: int
    answers: List[Dict[str, Any]]


def percentage_of(total_score: float, max_score: float) -> int:
    """Rounded half up; 0 when there is nothing to score"""
    if max_score <= 0:
        return 0
    return int(math.floor(total_score / max_score * 100 + 0.5))


def shuffled(items: List[Any], rng: Optional[random.Random] = None) -> List[Any]:
    """Fisher-Yates shuffle of a copy"""
    rng = rng or random
    result = list(items)
    for i in range(len(result) - 1, 0, -1):
        j = rng.randint(0, i)
        result[i], result[j] = result[j], result[i]
    return result


def _is_unique_violation(error: IntegrityError) -> bool:
    return "UNIQUE" in str(error.orig).upper()


class ExamService:
    """Student-facing exam operations against the local store"""

    # Login

    def login(self, db: Session, nis: str) -> Tuple[str, Student]:
        """
        Open a session for the student with this enrollment number

        Any previous session of the student is removed, so only the newest
        device stays logged in.

        Raises:
            StudentNotFoundError: NIS not in the downloaded roster
        """
        student = db.query(Student).filter(Student.nis == nis).first()
        if not student:
            raise StudentNotFoundError(nis)

        token = secrets.token_hex(TOKEN_BYTES)

        db.query(StudentSession).filter(StudentSession.student_id == student.id).delete()
        db.add(StudentSession(student_id=student.id, token=token))
        db.commit()

        logger.info(f"Student logged in: {student.nama} ({student.nis})")
        return token, student

    def resolve_session(self, db: Session, token: str) -> Optional[str]:
        """Student id for a session token, or None"""
        session = db.query(StudentSession).filter(StudentSession.token == token).first()
        return session.student_id if session else None

    # Quizzes

    def list_quizzes(self, db: Session, student_id: str) -> List[Dict[str, Any]]:
        quizzes = db.query(Quiz).order_by(Quiz.title).all()
        submissions = (
            db.query(QuizSubmission.quiz_id, QuizSubmission.total_score, QuizSubmission.max_score)
            .filter(QuizSubmission.student_id == student_id)
            .all()
        )
        scores = {s.quiz_id: {"total_score": s.total_score, "max_score": s.max_score} for s in submissions}

        return [
            {
                "id": quiz.id,
                "title": quiz.title,
                "description": quiz.description,
                "subject": quiz.subject,
                "class_name": quiz.class_name,
                "duration_minutes": quiz.duration_minutes,
                "submitted": quiz.id in scores,
                "score": scores.get(quiz.id),
            }
            for quiz in quizzes
        ]

    def has_submitted_quiz(self, db: Session, quiz_id: str, student_id: str) -> bool:
        return (
            db.query(QuizSubmission.id)
            .filter(QuizSubmission.quiz_id == quiz_id, QuizSubmission.student_id == student_id)
            .first()
            is not None
        )

    def get_quiz_for_student(
        self,
        db: Session,
        quiz_id: str,
        student_id: str,
        rng: Optional[random.Random] = None,
    ) -> Tuple[Quiz, List[Dict[str, Any]]]:
        """
        Quiz with its questions, stripped of correct answers

        Randomized quizzes are reshuffled on every call.

        Raises:
            QuizNotFoundError: unknown quiz
            AlreadySubmittedError: the student already has a submission
        """
        quiz = db.get(Quiz, quiz_id)
        if not quiz:
            raise QuizNotFoundError(quiz_id)

        if self.has_submitted_quiz(db, quiz_id, student_id):
            raise AlreadySubmittedError(quiz_id)

        questions = (
            db.query(Question)
            .filter(Question.quiz_id == quiz_id)
            .order_by(Question.order_index, Question.id)
            .all()
        )

        public_questions = [
            {
                "id": q.id,
                "quiz_id": q.quiz_id,
                "question_text": q.question_text,
                "question_type": q.question_type,
                "options": q.options,
                "points": q.points,
                "order_index": q.order_index,
                "image_url": q.image_url,
                "passage_text": q.passage_text,
            }
            for q in questions
        ]

        if quiz.is_randomized:
            public_questions = shuffled(public_questions, rng)

        return quiz, public_questions

    def grade(self, questions: List[Question], answers: Dict[str, Any]) -> GradingResult:
        """
        Grade raw answers against the stored keys

        Args:
            questions: Every question of the quiz
            answers: {question_id: raw answer}; missing answers count as empty
        """
        total_score = 0
        max_score = 0
        graded = []

        for question in questions:
            points = question.points or DEFAULT_QUESTION_POINTS
            max_score += points

            raw = answers.get(question.id)
            answer = "" if raw is None else str(raw)

            if question.question_type == QUESTION_TYPE_MULTIPLE_CHOICE and question.correct_answer:
                is_correct = answer.upper() == question.correct_answer.upper()
                score = points if is_correct else 0
            else:
                is_correct = None
                score = 0

            total_score += score
            graded.append(
                {
                    "question_id": question.id,
                    "answer": answer,
                    "is_correct": is_correct,
                    "score": score,
                }
            )

        return GradingResult(
            total_score=total_score,
            max_score=max_score,
            percentage=percentage_of(total_score, max_score),
            answers=graded,
        )

    def submit_quiz(self, db: Session, quiz_id: str, student_id: str, answers: Dict[str, Any]) -> GradingResult:
        """
        Grade and store a quiz submission

        The pre-check is only a fast path; the unique constraint on
        (quiz_id, student_id) decides when two submissions race.

        Raises:
            QuizNotFoundError: unknown quiz
            AlreadySubmittedError: a submission already exists
        """
        if not db.get(Quiz, quiz_id):
            raise QuizNotFoundError(quiz_id)

        if self.has_submitted_quiz(db, quiz_id, student_id):
            raise AlreadySubmittedError(quiz_id)

        questions = db.query(Question).filter(Question.quiz_id == quiz_id).all()
        result = self.grade(questions, answers)

        db.add(
            QuizSubmission(
                quiz_id=quiz_id,
                student_id=student_id,
                answers=result.answers,
                total_score=result.total_score,
                max_score=result.max_score,
            )
        )
        try:
            db.commit()
        except IntegrityError as e:
            db.rollback()
            if _is_unique_violation(e):
                raise AlreadySubmittedError(quiz_id) from e
            raise

        student = db.get(Student, student_id)
        logger.info(
            f"Quiz submission received: {student.nama if student else 'Unknown'} - "
            f"score {result.total_score}/{result.max_score}"
        )
        return result

    # Assignments

    def list_assignments(self, db: Session, student_id: str) -> List[Dict[str, Any]]:
        assignments = db.query(Assignment).order_by(Assignment.due_date, Assignment.title).all()
        submitted = {
            row.assignment_id
            for row in db.query(AssignmentSubmission.assignment_id)
            .filter(AssignmentSubmission.student_id == student_id)
            .all()
        }

        return [
            {
                "id": a.id,
                "title": a.title,
                "description": a.description,
                "type": a.type,
                "due_date": a.due_date,
                "subject": a.subject,
                "class_name": a.class_name,
                "submitted": a.id in submitted,
            }
            for a in assignments
        ]

    def submit_assignment(self, db: Session, assignment_id: str, student_id: str, answer_text: str) -> None:
        """
        Store a free-text assignment answer

        Raises:
            AssignmentNotFoundError: unknown assignment
            AlreadySubmittedError: a submission already exists
        """
        if not db.get(Assignment, assignment_id):
            raise AssignmentNotFoundError(assignment_id)

        existing = (
            db.query(AssignmentSubmission.id)
            .filter(
                AssignmentSubmission.assignment_id == assignment_id,
                AssignmentSubmission.student_id == student_id,
            )
            .first()
        )
        if existing:
            raise AlreadySubmittedError(assignment_id)

        db.add(AssignmentSubmission(assignment_id=assignment_id, student_id=student_id, answer_text=answer_text))
        try:
            db.commit()
        except IntegrityError as e:
            db.rollback()
            if _is_unique_violation(e):
                raise AlreadySubmittedError(assignment_id) from e
            raise

        student = db.get(Student, student_id)
        logger.info(f"Assignment received: {student.nama if student else 'Unknown'}")


# Global instance
exam_service = ExamService()
