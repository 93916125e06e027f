"""
Assignment model - non-quiz coursework
"""
from sqlalchemy import Column, String, Text
from exam_tether.database import Base


class Assignment(Base):
    """
    Assignments table - cached, replaced on every download
    """
    __tablename__ = "assignments"

    id = Column(String, primary_key=True)
    title = Column(String, nullable=False)
    description = Column(Text)
    type = Column(String, default="TUGAS")
    due_date = Column(String)
    subject = Column(String)
    class_name = Column(String)

    def __repr__(self):
        return f"<Assignment(id={self.id}, title={self.title})>"
