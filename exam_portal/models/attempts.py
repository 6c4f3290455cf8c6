# exam_portal/models/attempts.py
import uuid

from sqlalchemy import Column, String, DateTime, Index, func
from exam_portal.db.session import Base


class MockAttempt(Base):
    __tablename__ = "mock_attempts"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    student_id = Column(String(64), nullable=False, index=True)
    paper_id = Column(String(64), nullable=True)

    status = Column(String(20), nullable=False, default="not_started")  # not_started|in_progress|completed|expired
    overall_deadline = Column(DateTime(timezone=True), nullable=True)   # center close / scheduled end
    completed_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (
        Index('ix_mock_attempts_student_id_created_at', 'student_id', 'created_at'),
    )
