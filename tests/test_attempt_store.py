from datetime import timedelta

import pytest
from sqlalchemy import func, select

from exam_portal.db.session import SessionLocal
from exam_portal.models.attempt_modules import AttemptModule
from exam_portal.services.attempt_store import AttemptStore
from exam_portal.services.module_policy import AttemptStatus, ModuleStatus, ModuleType

from conftest import T0

LISTENING = ModuleType.LISTENING


def test_get_attempt_missing():
    with SessionLocal() as db:
        assert AttemptStore(db).get_attempt("nope") is None


def test_get_or_create_is_idempotent(make_attempt):
    attempt_id = make_attempt()

    with SessionLocal() as db:
        store = AttemptStore(db)
        first = store.get_or_create_module_record(attempt_id, LISTENING, 1800, 0)
        second = store.get_or_create_module_record(attempt_id, LISTENING, 999, 0)
        db.commit()

    with SessionLocal() as db:
        count = db.execute(select(func.count()).select_from(AttemptModule)).scalar_one()

    assert count == 1
    assert first.status == ModuleStatus.NOT_STARTED
    # the existing row wins; a later policy value never rewrites it
    assert second.allowed_duration == 1800


def test_attempt_snapshot_includes_module_statuses(make_attempt, seed_module):
    attempt_id = make_attempt()
    seed_module(attempt_id, LISTENING, "completed", started_at=T0, completed_at=T0)

    with SessionLocal() as db:
        attempt = AttemptStore(db).get_attempt(attempt_id)

    assert attempt.module_statuses == {LISTENING: ModuleStatus.COMPLETED}


def test_cas_applies_once(make_attempt):
    attempt_id = make_attempt()

    with SessionLocal() as db:
        store = AttemptStore(db)
        store.get_or_create_module_record(attempt_id, LISTENING, 1800, 0)
        first = store.cas_update_module_status(
            attempt_id, LISTENING, ModuleStatus.NOT_STARTED, ModuleStatus.IN_PROGRESS, started_at=T0,
        )
        second = store.cas_update_module_status(
            attempt_id, LISTENING, ModuleStatus.NOT_STARTED, ModuleStatus.IN_PROGRESS,
            started_at=T0 + timedelta(seconds=30),
        )
        db.commit()
        record = store.get_module_record(attempt_id, LISTENING)

    assert first is True
    assert second is False
    assert record.status == ModuleStatus.IN_PROGRESS
    assert record.started_at == T0


def test_cas_rejects_illegal_transition(make_attempt):
    attempt_id = make_attempt()

    with SessionLocal() as db:
        store = AttemptStore(db)
        store.get_or_create_module_record(attempt_id, LISTENING, 1800, 0)
        with pytest.raises(ValueError):
            store.cas_update_module_status(attempt_id, LISTENING, ModuleStatus.COMPLETED, ModuleStatus.IN_PROGRESS)


def test_cas_never_restamps_started_at(make_attempt, seed_module):
    attempt_id = make_attempt()
    # inconsistent row: not_started but already stamped; the guard must still hold
    seed_module(attempt_id, LISTENING, "not_started", started_at=T0)

    with SessionLocal() as db:
        applied = AttemptStore(db).cas_update_module_status(
            attempt_id, LISTENING, ModuleStatus.NOT_STARTED, ModuleStatus.IN_PROGRESS,
            started_at=T0 + timedelta(minutes=5),
        )

    assert applied is False


def test_cas_attempt_status(make_attempt):
    attempt_id = make_attempt()

    with SessionLocal() as db:
        store = AttemptStore(db)
        assert store.cas_update_attempt_status(attempt_id, [AttemptStatus.NOT_STARTED], AttemptStatus.IN_PROGRESS)
        assert not store.cas_update_attempt_status(attempt_id, [AttemptStatus.NOT_STARTED], AttemptStatus.IN_PROGRESS)
        db.commit()
        assert store.get_attempt(attempt_id).status == AttemptStatus.IN_PROGRESS


def test_create_attempt_derives_deadline():
    closes = T0 + timedelta(hours=2)

    with SessionLocal() as db:
        store = AttemptStore(db)
        scheduled = store.create_attempt("stu-0001", paper_id="paper-7", scheduled_at=T0, duration_minutes=165)
        capped = store.create_attempt("stu-0001", scheduled_at=T0, duration_minutes=165, center_closes_at=closes)
        open_ended = store.create_attempt("stu-0001")
        db.commit()

        assert store.get_attempt(scheduled.attempt_id).overall_deadline == T0 + timedelta(minutes=165)
        assert store.get_attempt(capped.attempt_id).overall_deadline == closes

    assert scheduled.status == AttemptStatus.NOT_STARTED
    assert open_ended.overall_deadline is None
