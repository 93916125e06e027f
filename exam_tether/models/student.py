"""
Student model - cached roster for the downloaded classes
"""
from sqlalchemy import Column, String
from exam_tether.database import Base


class Student(Base):
    """
    Students table - replaced wholesale on every download
    """
    __tablename__ = "students"

    id = Column(String, primary_key=True)
    nis = Column(String, unique=True, index=True)  # enrollment number used to log in
    nama = Column(String, nullable=False)
    kelas = Column(String)

    def to_public(self) -> dict:
        return {"id": self.id, "nis": self.nis, "nama": self.nama, "kelas": self.kelas}

    def __repr__(self):
        return f"<Student(id={self.id}, nis={self.nis})>"
