"""
Meta model - process-wide key/value facts that survive restarts
"""
from sqlalchemy import Column, String, Text
from sqlalchemy.orm import Session
from typing import Optional
from exam_tether.database import Base


META_TEACHER_ID = "teacher_id"
META_TEACHER_NAME = "teacher_name"
META_TEACHER_NIP = "teacher_nip"
META_DOWNLOAD_TIME = "download_time"
META_DOWNLOAD_STATUS = "download_status"

DOWNLOAD_STATUS_IN_PROGRESS = "in_progress"
DOWNLOAD_STATUS_COMPLETE = "complete"


class Meta(Base):
    __tablename__ = "meta"

    key = Column(String, primary_key=True)
    value = Column(Text)

    def __repr__(self):
        return f"<Meta(key={self.key}, value={self.value})>"


def get_meta(db: Session, key: str) -> Optional[str]:
    row = db.get(Meta, key)
    return row.value if row else None


def set_meta(db: Session, key: str, value: Optional[str]) -> None:
    """Insert or replace; caller commits"""
    db.merge(Meta(key=key, value=value))
