# exam_portal/models/attempt_modules.py
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, func
from exam_portal.db.session import Base


class AttemptModule(Base):
    __tablename__ = "attempt_modules"

    # one row per (attempt, module_type); the composite key makes lazy creation idempotent
    attempt_id = Column(String(36), ForeignKey("mock_attempts.id"), primary_key=True)
    module_type = Column(String(20), primary_key=True)  # listening|reading|writing|speaking

    status = Column(String(20), nullable=False, default="not_started")  # not_started|in_progress|completed|expired
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    allowed_duration = Column(Integer, nullable=False)  # seconds
    sequence_index = Column(Integer, nullable=False)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=True, onupdate=func.now())
