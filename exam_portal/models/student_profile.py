# exam_portal/models/student_profile.py
# student profile table owned by the center admin side; looked up by the auth email
from sqlalchemy import Column, String, DateTime, Enum, text
from exam_portal.db.session import Base


class StudentProfile(Base):
    __tablename__ = "student_profiles"
    student_id = Column(String(64), primary_key=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    name = Column(String(100))
    center_id = Column(String(64), nullable=True)
    status = Column(
        Enum("active", "blocked", name="student_status", native_enum=False),
        nullable=False,
        server_default=text("'active'")
    )
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=text("CURRENT_TIMESTAMP"))
