"""
HTTP surface: auth, status codes and response bodies.
"""
from datetime import timedelta

from exam_portal.db.session import SessionLocal
from exam_portal.models.student_profile import StudentProfile
from exam_portal.services.access_service import AccessValidationService, StoreUnavailable
from exam_portal.services.module_policy import ModuleType

from conftest import OTHER_STUDENT_ID, T0, make_token


def _access(client, attempt_id, module, headers):
    return client.post(f"/api/attempts/{attempt_id}/modules/{module}/access", headers=headers)


def test_health(client):
    assert client.get("/").json() == {"ok": True}


# ---------- auth ----------

def test_missing_token(client, make_attempt):
    attempt_id = make_attempt()

    r = _access(client, attempt_id, "listening", headers={})

    assert r.status_code == 401


def test_token_signed_with_wrong_secret(client, make_attempt):
    attempt_id = make_attempt()
    headers = {"Authorization": f"Bearer {make_token(secret='not-the-secret')}"}

    assert _access(client, attempt_id, "listening", headers).status_code == 401


def test_token_without_student_profile(client, make_attempt):
    attempt_id = make_attempt()
    headers = {"Authorization": f"Bearer {make_token(email='stranger@example.com')}"}

    r = _access(client, attempt_id, "listening", headers)

    assert r.status_code == 403
    assert r.json() == {"detail": {"message": "access_denied"}}


def test_blocked_student(client, make_attempt):
    with SessionLocal() as db:
        db.add(StudentProfile(student_id="stu-0099", email="blocked@example.com", status="blocked"))
        db.commit()
    attempt_id = make_attempt(student_id="stu-0099")
    headers = {"Authorization": f"Bearer {make_token(email='blocked@example.com')}"}

    r = _access(client, attempt_id, "listening", headers)

    assert r.status_code == 403
    assert r.json() == {"detail": {"message": "account_blocked"}}


def test_me(client, auth_headers):
    r = client.get("/api/auth/me", headers=auth_headers)

    assert r.status_code == 200
    assert r.json() == {
        "student_id": "stu-0001",
        "email": "student@example.com",
        "name": "Test Student",
        "center_id": "center-1",
        "status": "active",
    }


def test_logout(client):
    assert client.post("/api/auth/logout").status_code == 204


# ---------- module access ----------

def test_enter_module(client, auth_headers, make_attempt):
    attempt_id = make_attempt()

    r = _access(client, attempt_id, "listening", auth_headers)

    assert r.status_code == 200
    body = r.json()
    assert body["allowed"] is True
    assert body["remaining_seconds"] == 1800
    assert body["module_status"] == "in_progress"
    assert body["reason"] is None


def test_denial_is_a_normal_response(client, auth_headers, make_attempt):
    attempt_id = make_attempt()

    r = _access(client, attempt_id, "reading", auth_headers)

    assert r.status_code == 200
    body = r.json()
    assert body["allowed"] is False
    assert body["reason"] == "NOT_YET_ELIGIBLE"
    assert body["redirect_hint"] == f"/mock-test/attempts/{attempt_id}"


def test_foreign_and_missing_attempts_look_the_same(client, auth_headers, make_attempt):
    foreign = make_attempt(student_id=OTHER_STUDENT_ID)

    r1 = _access(client, foreign, "listening", auth_headers)
    r2 = _access(client, "no-such-attempt", "listening", auth_headers)

    assert r1.status_code == r2.status_code == 403
    assert r1.json() == r2.json() == {"detail": {"message": "access_denied"}}


def test_store_outage_returns_503(client, auth_headers, make_attempt, monkeypatch):
    attempt_id = make_attempt()

    def down(self, *args):
        raise StoreUnavailable("database is locked")

    monkeypatch.setattr(AccessValidationService, "validate_access", down)

    r = _access(client, attempt_id, "listening", auth_headers)

    assert r.status_code == 503
    assert r.json() == {"detail": {"message": "try_again"}}


# ---------- submission ----------

def test_complete(client, auth_headers, make_attempt, clock):
    attempt_id = make_attempt()
    _access(client, attempt_id, "listening", auth_headers)
    clock.advance(120)

    r = client.post(f"/api/attempts/{attempt_id}/modules/listening/complete", headers=auth_headers)
    again = client.post(f"/api/attempts/{attempt_id}/modules/listening/complete", headers=auth_headers)

    assert r.status_code == 200
    assert r.json()["outcome"] == "completed"
    assert r.json()["attempt_status"] == "in_progress"
    assert again.status_code == 200
    assert again.json()["outcome"] == "already_completed"
    assert again.json()["completed_at"] == r.json()["completed_at"]


def test_complete_unentered_module_conflicts(client, auth_headers, make_attempt):
    attempt_id = make_attempt()

    r = client.post(f"/api/attempts/{attempt_id}/modules/writing/complete", headers=auth_headers)

    assert r.status_code == 409
    assert r.json()["success"] is False
    assert r.json()["outcome"] == "not_started"


# ---------- heartbeat ----------

def test_heartbeat_warns_near_the_end(client, auth_headers, make_attempt, clock):
    attempt_id = make_attempt()
    _access(client, attempt_id, "listening", auth_headers)
    clock.advance(1800 - 200)

    r = client.post(f"/api/attempts/{attempt_id}/modules/listening/heartbeat", headers=auth_headers)

    assert r.status_code == 200
    assert r.json() == {
        "screen": "time_warning",
        "phase": "warning",
        "remaining_seconds": 200,
        "countdown": "03:20",
        "resync_after_seconds": 30,
        "message": None,
        "redirect_hint": None,
    }


def test_heartbeat_after_expiry_blocks(client, auth_headers, make_attempt, clock):
    attempt_id = make_attempt()
    _access(client, attempt_id, "listening", auth_headers)
    clock.advance(1800)

    r = client.post(f"/api/attempts/{attempt_id}/modules/listening/heartbeat", headers=auth_headers)

    assert r.status_code == 200
    assert r.json()["screen"] == "blocked"
    assert r.json()["redirect_hint"] == f"/mock-test/attempts/{attempt_id}/summary"


def test_heartbeat_foreign_attempt(client, auth_headers, make_attempt):
    foreign = make_attempt(student_id=OTHER_STUDENT_ID)

    r = client.post(f"/api/attempts/{foreign}/modules/listening/heartbeat", headers=auth_headers)

    assert r.status_code == 403
    assert r.json()["screen"] == "blocked"
    assert r.json()["redirect_hint"] == "/auth/login"


def test_heartbeat_store_outage(client, auth_headers, make_attempt, monkeypatch):
    attempt_id = make_attempt()

    def down(self, *args):
        raise StoreUnavailable("database is locked")

    monkeypatch.setattr(AccessValidationService, "validate_access", down)

    r = client.post(f"/api/attempts/{attempt_id}/modules/listening/heartbeat", headers=auth_headers)

    assert r.status_code == 503
    assert r.json()["screen"] == "retry"


def test_heartbeat_get_does_not_start_timer(client, auth_headers, make_attempt, read_module):
    attempt_id = make_attempt()

    r = client.get(f"/api/attempts/{attempt_id}/modules/listening/heartbeat", headers=auth_headers)

    assert r.status_code == 405
    assert read_module(attempt_id, ModuleType.LISTENING) is None


# ---------- overview ----------

def test_overview(client, auth_headers, make_attempt, clock):
    attempt_id = make_attempt(overall_deadline=T0 + timedelta(hours=3))
    _access(client, attempt_id, "listening", auth_headers)
    clock.advance(60)

    r = client.get(f"/api/attempts/{attempt_id}", headers=auth_headers)

    assert r.status_code == 200
    body = r.json()
    assert body["status"] == "in_progress"
    assert body["attempt_remaining_seconds"] == 3 * 3600 - 60
    assert [m["module_type"] for m in body["modules"]] == ["listening", "reading", "writing", "speaking"]
    assert [m["available"] for m in body["modules"]] == [True, False, False, False]
    assert body["modules"][0]["remaining_seconds"] == 1740
