"""
Quiz and question models - cached quizzes with their question sets
"""
from sqlalchemy import Column, String, Integer, Boolean, Text, JSON, ForeignKey
from sqlalchemy.orm import relationship
from exam_tether.database import Base


QUESTION_TYPE_MULTIPLE_CHOICE = "MULTIPLE_CHOICE"
QUESTION_TYPE_ESSAY = "ESSAY"

DEFAULT_QUESTION_POINTS = 10


class Quiz(Base):
    """
    Quizzes table - subject/class labels are denormalized from the teaching assignment
    """
    __tablename__ = "quizzes"

    id = Column(String, primary_key=True)
    title = Column(String, nullable=False)
    description = Column(Text)
    subject = Column(String)
    class_name = Column(String)
    duration_minutes = Column(Integer, default=30)
    is_randomized = Column(Boolean, default=True)

    questions = relationship("Question", back_populates="quiz", order_by="Question.order_index")

    def __repr__(self):
        return f"<Quiz(id={self.id}, title={self.title})>"


class Question(Base):
    """
    Quiz questions table - correct_answer never leaves the server
    """
    __tablename__ = "quiz_questions"

    id = Column(String, primary_key=True)
    quiz_id = Column(String, ForeignKey("quizzes.id"), nullable=False, index=True)
    question_text = Column(Text, nullable=False)
    question_type = Column(String, default=QUESTION_TYPE_MULTIPLE_CHOICE)
    options = Column(JSON)  # ["A. ...", "B. ..."] for multiple choice only
    correct_answer = Column(Text)
    points = Column(Integer, default=DEFAULT_QUESTION_POINTS)
    order_index = Column(Integer, default=0)
    image_url = Column(Text)  # local /images/... path
    passage_text = Column(Text)

    quiz = relationship("Quiz", back_populates="questions")

    def __repr__(self):
        return f"<Question(id={self.id}, quiz_id={self.quiz_id}, type={self.question_type})>"
