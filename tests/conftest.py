import os
import tempfile
import time
from datetime import datetime, timezone

# settings are read at import time, so point them at a throwaway SQLite file first
_DB_DIR = tempfile.mkdtemp(prefix="exam_portal_tests_")
os.environ["DATABASE_URL"] = f"sqlite:///{_DB_DIR}/test.db"
os.environ["SUPABASE_JWT_SECRET"] = "test-jwt-secret"
os.environ["SUPABASE_ISSUER"] = ""
os.environ["SUPABASE_JWT_AUDIENCE"] = "authenticated"

import pytest
from fastapi.testclient import TestClient
from jose import jwt

from exam_portal.config import settings
from exam_portal.db.session import Base, SessionLocal, engine
from exam_portal.deps import get_access_service
from exam_portal.main import app
from exam_portal.models.attempt_modules import AttemptModule
from exam_portal.models.attempts import MockAttempt
from exam_portal.models.student_profile import StudentProfile
from exam_portal.services.access_service import AccessValidationService
from exam_portal.services.module_policy import ModuleType, allowed_duration, sequence_index
from exam_portal.services.session_clock import FrozenClock

T0 = datetime(2026, 3, 2, 9, 0, 0, tzinfo=timezone.utc)

STUDENT_ID = "stu-0001"
STUDENT_EMAIL = "student@example.com"
OTHER_STUDENT_ID = "stu-0002"
OTHER_EMAIL = "other@example.com"


@pytest.fixture(autouse=True)
def schema():
    Base.metadata.create_all(engine)
    yield
    Base.metadata.drop_all(engine)


@pytest.fixture
def clock():
    return FrozenClock(T0)


@pytest.fixture
def cfg():
    return settings.model_copy(update={
        "sequencing_enabled": True,
        "store_retry_attempts": 3,
        "store_retry_base_delay": 0.0,
        "store_retry_max_delay": 0.0,
    })


@pytest.fixture
def service(cfg, clock):
    return AccessValidationService(SessionLocal, cfg=cfg, clock=clock)


@pytest.fixture
def students():
    with SessionLocal() as db:
        db.add_all([
            StudentProfile(student_id=STUDENT_ID, email=STUDENT_EMAIL, name="Test Student", center_id="center-1"),
            StudentProfile(student_id=OTHER_STUDENT_ID, email=OTHER_EMAIL, name="Other Student", center_id="center-1"),
        ])
        db.commit()


@pytest.fixture
def make_attempt():
    def _make(student_id=STUDENT_ID, status="not_started", overall_deadline=None):
        with SessionLocal() as db:
            attempt = MockAttempt(student_id=student_id, status=status, overall_deadline=overall_deadline)
            db.add(attempt)
            db.commit()
            return attempt.id
    return _make


@pytest.fixture
def seed_module(cfg):
    def _seed(attempt_id, module_type: ModuleType, status, started_at=None, completed_at=None):
        with SessionLocal() as db:
            db.add(AttemptModule(
                attempt_id=attempt_id,
                module_type=module_type.value,
                status=status,
                started_at=started_at,
                completed_at=completed_at,
                allowed_duration=allowed_duration(module_type, cfg),
                sequence_index=sequence_index(module_type),
            ))
            db.commit()
    return _seed


@pytest.fixture
def read_module():
    def _read(attempt_id, module_type: ModuleType):
        with SessionLocal() as db:
            return db.get(AttemptModule, (attempt_id, module_type.value))
    return _read


@pytest.fixture
def read_attempt():
    def _read(attempt_id):
        with SessionLocal() as db:
            return db.get(MockAttempt, attempt_id)
    return _read


def make_token(email=STUDENT_EMAIL, sub="auth-user-1", secret="test-jwt-secret"):
    claims = {
        "sub": sub,
        "email": email,
        "aud": "authenticated",
        "exp": int(time.time()) + 3600,
    }
    return jwt.encode(claims, secret, algorithm="HS256")


@pytest.fixture
def auth_headers():
    return {"Authorization": f"Bearer {make_token()}"}


@pytest.fixture
def client(service, students):
    app.dependency_overrides[get_access_service] = lambda: service
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
