# exam_portal/services/attempt_store.py
"""
Attempt store over SQLAlchemy.

Every method is atomic at the granularity of one row:
- module records are created with INSERT .. ON CONFLICT DO NOTHING on the
  (attempt_id, module_type) key, so concurrent first requests create one row
- status changes are compare-and-set: UPDATE .. WHERE status = :expected,
  and the caller checks whether a row was actually changed
Reads use populate_existing so a re-read after a lost CAS sees the row the
winner committed, not the session's cached copy.
"""
import logging
from datetime import datetime
from typing import Dict, Iterable, Optional

from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from exam_portal.models.attempt_modules import AttemptModule
from exam_portal.models.attempts import MockAttempt
from exam_portal.services.access_decision import AttemptState, ModuleState
from exam_portal.services.module_policy import (
    AttemptStatus,
    ModuleStatus,
    ModuleType,
    is_valid_transition,
    parse_module_type,
)
from exam_portal.services.session_clock import StoreClock, as_utc, derive_overall_deadline

logger = logging.getLogger(__name__)

_INSERTS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


def module_state(row: AttemptModule) -> ModuleState:
    return ModuleState(
        module_type=ModuleType(row.module_type),
        status=ModuleStatus(row.status),
        allowed_duration=int(row.allowed_duration),
        sequence_index=int(row.sequence_index),
        started_at=as_utc(row.started_at),
        completed_at=as_utc(row.completed_at),
    )


class AttemptStore:
    """Query/command interface for attempts and their module records."""

    def __init__(self, db: Session, clock=None):
        self.db = db
        self.clock = clock or StoreClock()

    def now(self) -> datetime:
        return self.clock.now(self.db)

    # ---------- attempts ----------

    def get_attempt(self, attempt_id: str) -> Optional[AttemptState]:
        row = self.db.execute(
            select(MockAttempt)
            .where(MockAttempt.id == attempt_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if row is None:
            return None
        return AttemptState(
            attempt_id=row.id,
            student_id=str(row.student_id),
            status=AttemptStatus(row.status),
            overall_deadline=as_utc(row.overall_deadline),
            module_statuses={
                m.module_type: m.status for m in self.list_module_records(attempt_id).values()
            },
        )

    def create_attempt(
        self,
        student_id: str,
        paper_id: Optional[str] = None,
        scheduled_at: Optional[datetime] = None,
        duration_minutes: Optional[int] = None,
        center_closes_at: Optional[datetime] = None,
    ) -> AttemptState:
        """
        Enrollment-side entry point. The deadline is scheduled start plus
        test duration, capped by the center's closing time.
        """
        deadline = None
        if scheduled_at is not None and duration_minutes is not None:
            deadline = derive_overall_deadline(scheduled_at, duration_minutes, center_closes_at)
        elif center_closes_at is not None:
            deadline = as_utc(center_closes_at)

        row = MockAttempt(
            student_id=student_id,
            paper_id=paper_id,
            status=AttemptStatus.NOT_STARTED.value,
            overall_deadline=deadline,
        )
        self.db.add(row)
        self.db.flush()
        logger.info("[STORE] created attempt=%s student=%s deadline=%s", row.id, student_id, deadline)
        return self.get_attempt(row.id)

    def cas_update_attempt_status(
        self,
        attempt_id: str,
        expected_statuses: Iterable[AttemptStatus],
        new_status: AttemptStatus,
        completed_at: Optional[datetime] = None,
    ) -> bool:
        values = {"status": new_status.value}
        if completed_at is not None:
            values["completed_at"] = completed_at
        result = self.db.execute(
            update(MockAttempt)
            .where(
                MockAttempt.id == attempt_id,
                MockAttempt.status.in_([s.value for s in expected_statuses]),
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        applied = result.rowcount == 1
        logger.debug("[STORE] attempt %s -> %s applied=%s", attempt_id, new_status.value, applied)
        return applied

    # ---------- module records ----------

    def get_module_record(self, attempt_id: str, module_type: ModuleType) -> Optional[ModuleState]:
        row = self.db.execute(
            select(AttemptModule)
            .where(
                AttemptModule.attempt_id == attempt_id,
                AttemptModule.module_type == module_type.value,
            )
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        return module_state(row) if row is not None else None

    def list_module_records(self, attempt_id: str) -> Dict[ModuleType, ModuleState]:
        rows = self.db.execute(
            select(AttemptModule)
            .where(AttemptModule.attempt_id == attempt_id)
            .order_by(AttemptModule.sequence_index)
            .execution_options(populate_existing=True)
        ).scalars().all()
        records = {}
        for row in rows:
            if parse_module_type(row.module_type) is None:
                logger.warning("[STORE] skipping unknown module_type=%r on attempt %s", row.module_type, attempt_id)
                continue
            records[ModuleType(row.module_type)] = module_state(row)
        return records

    def get_or_create_module_record(
        self,
        attempt_id: str,
        module_type: ModuleType,
        allowed_duration: int,
        sequence_index: int,
    ) -> ModuleState:
        existing = self.get_module_record(attempt_id, module_type)
        if existing is not None:
            return existing

        dialect = self.db.get_bind().dialect.name
        insert = _INSERTS.get(dialect)
        if insert is None:
            raise RuntimeError(f"unsupported attempt store dialect: {dialect}")

        stmt = (
            insert(AttemptModule)
            .values(
                attempt_id=attempt_id,
                module_type=module_type.value,
                status=ModuleStatus.NOT_STARTED.value,
                allowed_duration=int(allowed_duration),
                sequence_index=int(sequence_index),
            )
            .on_conflict_do_nothing(index_elements=["attempt_id", "module_type"])
        )
        result = self.db.execute(stmt)
        if result.rowcount == 1:
            logger.info("[STORE] created module record attempt=%s module=%s", attempt_id, module_type.value)

        return self.get_module_record(attempt_id, module_type)

    def cas_update_module_status(
        self,
        attempt_id: str,
        module_type: ModuleType,
        expected_status: ModuleStatus,
        new_status: ModuleStatus,
        started_at: Optional[datetime] = None,
        completed_at: Optional[datetime] = None,
    ) -> bool:
        """
        Conditional status change. Returns False when the row is no longer
        in expected_status (another request got there first).
        """
        if not is_valid_transition(expected_status, new_status):
            raise ValueError(f"illegal module transition {expected_status.value} -> {new_status.value}")

        conditions = [
            AttemptModule.attempt_id == attempt_id,
            AttemptModule.module_type == module_type.value,
            AttemptModule.status == expected_status.value,
        ]
        values = {"status": new_status.value}
        if started_at is not None:
            # started_at is stamped once and never overwritten
            conditions.append(AttemptModule.started_at.is_(None))
            values["started_at"] = started_at
        if completed_at is not None:
            conditions.append(AttemptModule.completed_at.is_(None))
            values["completed_at"] = completed_at

        result = self.db.execute(
            update(AttemptModule)
            .where(*conditions)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        applied = result.rowcount == 1
        logger.debug(
            "[STORE] module %s/%s %s -> %s applied=%s",
            attempt_id, module_type.value, expected_status.value, new_status.value, applied,
        )
        return applied
