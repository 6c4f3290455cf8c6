# exam_portal/services/access_service.py
"""
Module access validation service.
- validate_access: read, decide, compare-and-set write, all in one transaction
- complete_module: idempotent submission
- attempt_overview: read-only module list for the module selector page

Policy denials come back as values. Identity problems and store outages
are raised as AccessError subclasses; only StoreUnavailable is retried.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from sqlalchemy.exc import DBAPIError, OperationalError, TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from exam_portal.config import Settings, settings as default_settings
from exam_portal.services.access_decision import (
    TRANSITION_STATUSES,
    Allowed,
    AttemptState,
    CompletionDecision,
    CompletionOutcome,
    Decision,
    Denied,
    ModuleState,
    Transition,
    Verdict,
    decide,
    decide_completion,
)
from exam_portal.services.attempt_store import AttemptStore
from exam_portal.services.module_policy import (
    SUMMARY_ROUTE,
    AttemptStatus,
    DenyReason,
    ModuleStatus,
    ModuleType,
    allowed_duration,
    parse_module_type,
    redirect_hint,
    required_modules,
    sequence_index,
)
from exam_portal.services.session_clock import is_attempt_expired, remaining_seconds, seconds_until

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger("exam_portal.audit")


# ---------- Errors ----------

class AccessError(Exception):
    code = "ACCESS_ERROR"

    def __init__(self, message: str = "", attempt_id: Optional[str] = None):
        super().__init__(message or self.code)
        self.attempt_id = attempt_id


class AttemptNotFound(AccessError):
    code = "ATTEMPT_NOT_FOUND"


class AccessForbidden(AccessError):
    code = "FORBIDDEN"


class StoreUnavailable(AccessError):
    """Transient; safe to retry with backoff."""
    code = "STORE_UNAVAILABLE"


# ---------- Results ----------

@dataclass
class ValidationResult:
    attempt_id: str
    module_type: str
    verdict: Verdict
    server_time: datetime
    module_status: Optional[ModuleStatus] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    attempt_remaining_seconds: Optional[int] = None
    overall_deadline: Optional[datetime] = None

    @property
    def allowed(self) -> bool:
        return isinstance(self.verdict, Allowed)

    @property
    def reason(self) -> Optional[DenyReason]:
        return self.verdict.reason if isinstance(self.verdict, Denied) else None

    @property
    def remaining_seconds(self) -> Optional[int]:
        return self.verdict.remaining_seconds if isinstance(self.verdict, Allowed) else None

    @property
    def redirect_hint(self) -> Optional[str]:
        if isinstance(self.verdict, Denied):
            return redirect_hint(self.verdict.reason, self.attempt_id)
        return None


@dataclass
class CompletionResult:
    attempt_id: str
    module_type: str
    outcome: CompletionOutcome
    attempt_status: AttemptStatus
    completed_at: Optional[datetime] = None

    @property
    def success(self) -> bool:
        return CompletionDecision(self.outcome).success

    @property
    def redirect_hint(self) -> Optional[str]:
        if self.outcome in (CompletionOutcome.EXPIRED, CompletionOutcome.ALREADY_COMPLETED, CompletionOutcome.COMPLETED):
            return SUMMARY_ROUTE.format(attempt_id=self.attempt_id)
        return None


@dataclass
class ModuleOverview:
    module_type: ModuleType
    status: ModuleStatus
    sequence_index: int
    allowed_duration: int
    available: bool
    remaining_seconds: int
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


@dataclass
class AttemptOverview:
    attempt_id: str
    status: AttemptStatus
    server_time: datetime
    overall_deadline: Optional[datetime] = None
    attempt_remaining_seconds: Optional[int] = None
    modules: List[ModuleOverview] = field(default_factory=list)


# ---------- Service ----------

class AccessValidationService:
    """
    Transactional boundary around the decision engine.

    Each call opens its own short session, so a retry replays the whole
    read-decide-write. Nothing is cached between calls.
    """

    def __init__(self, session_factory: Callable[[], Session], cfg: Settings = default_settings, clock=None):
        self.session_factory = session_factory
        self.cfg = cfg
        self.clock = clock

    # ---- public API ----

    def validate_access(self, attempt_id: str, module_type: str, student_id: str) -> ValidationResult:
        result = self._with_retry(self._validate_once, attempt_id, module_type, student_id)
        if isinstance(result.verdict, Denied):
            audit_logger.warning(
                "[AUDIT] access denied attempt=%s module=%s student=%s reason=%s",
                attempt_id, module_type, student_id, result.verdict.reason.value,
            )
        else:
            logger.info(
                "[ACCESS] allowed attempt=%s module=%s remaining=%s",
                attempt_id, module_type, result.verdict.remaining_seconds,
            )
        return result

    def complete_module(self, attempt_id: str, module_type: str, student_id: str) -> CompletionResult:
        result = self._with_retry(self._complete_once, attempt_id, module_type, student_id)
        if result.success:
            logger.info("[ACCESS] submit attempt=%s module=%s outcome=%s", attempt_id, module_type, result.outcome.value)
        else:
            audit_logger.warning(
                "[AUDIT] submit rejected attempt=%s module=%s student=%s outcome=%s",
                attempt_id, module_type, student_id, result.outcome.value,
            )
        return result

    def attempt_overview(self, attempt_id: str, student_id: str) -> AttemptOverview:
        return self._with_retry(self._overview_once, attempt_id, student_id)

    # ---- retry / error translation ----

    def _with_retry(self, fn, *args):
        retrying = Retrying(
            stop=stop_after_attempt(max(1, self.cfg.store_retry_attempts)),
            wait=wait_exponential(multiplier=self.cfg.store_retry_base_delay, max=self.cfg.store_retry_max_delay),
            retry=retry_if_exception_type(StoreUnavailable),
            before_sleep=self._log_retry,
            reraise=True,
        )
        try:
            for attempt in retrying:
                with attempt:
                    result = self._translate_store_errors(fn, *args)
        except StoreUnavailable as e:
            logger.error("[STORE] giving up after %d attempts: %s", self.cfg.store_retry_attempts, e)
            raise
        except (AttemptNotFound, AccessForbidden) as e:
            # student_id is the last argument of every transaction
            audit_logger.error("[AUDIT] %s attempt=%s student=%s", e.code, e.attempt_id, args[-1])
            raise
        return result

    @staticmethod
    def _log_retry(retry_state):
        logger.warning(
            "[STORE] attempt %d failed (%s), retrying",
            retry_state.attempt_number, retry_state.outcome.exception(),
        )

    @staticmethod
    def _translate_store_errors(fn, *args):
        try:
            return fn(*args)
        except (OperationalError, PoolTimeoutError) as e:
            raise StoreUnavailable(str(e)) from e
        except DBAPIError as e:
            if e.connection_invalidated:
                raise StoreUnavailable(str(e)) from e
            raise

    # ---- helpers ----

    def _load_owned_attempt(self, store: AttemptStore, attempt_id: str, student_id: str) -> AttemptState:
        attempt = store.get_attempt(attempt_id)
        if attempt is None:
            raise AttemptNotFound("attempt not found", attempt_id=attempt_id)
        if str(attempt.student_id) != str(student_id):
            raise AccessForbidden("attempt belongs to another student", attempt_id=attempt_id)
        return attempt

    def _known_module(self, module_type: str) -> Optional[ModuleType]:
        module = parse_module_type(module_type)
        if module is None or module not in required_modules(self.cfg):
            return None
        return module

    @staticmethod
    def _apply_module_transition(store: AttemptStore, attempt_id: str, record: ModuleState,
                                 transition: Transition, now: datetime) -> bool:
        expected, new = TRANSITION_STATUSES[transition]
        started_at = now if transition == Transition.START else None
        completed_at = None
        if transition == Transition.COMPLETE:
            completed_at = max(now, record.started_at) if record.started_at else now
        return store.cas_update_module_status(
            attempt_id, record.module_type, expected, new,
            started_at=started_at, completed_at=completed_at,
        )

    @staticmethod
    def _apply_attempt_transition(store: AttemptStore, attempt_id: str, new_status: AttemptStatus,
                                  now: datetime) -> None:
        if new_status == AttemptStatus.IN_PROGRESS:
            expected = [AttemptStatus.NOT_STARTED]
        else:
            expected = [AttemptStatus.NOT_STARTED, AttemptStatus.IN_PROGRESS]
        completed_at = now if new_status == AttemptStatus.COMPLETED else None
        # losing this race is fine: someone else already moved the attempt forward
        store.cas_update_attempt_status(attempt_id, expected, new_status, completed_at=completed_at)

    # ---- one transaction each ----

    def _validate_once(self, attempt_id: str, module_type: str, student_id: str) -> ValidationResult:
        with self.session_factory() as db:
            store = AttemptStore(db, self.clock)
            attempt = self._load_owned_attempt(store, attempt_id, student_id)
            now = store.now()
            module = self._known_module(module_type)
            required = required_modules(self.cfg)
            record = None

            if module is None:
                decision = Decision(Denied(DenyReason.UNKNOWN_MODULE))
            else:
                for _ in range(max(1, self.cfg.cas_max_rounds)):
                    record = store.get_or_create_module_record(
                        attempt_id, module, allowed_duration(module, self.cfg), sequence_index(module),
                    )
                    attempt = store.get_attempt(attempt_id)
                    decision = decide(attempt, record, module, now, self.cfg.sequencing_enabled, required)
                    if decision.module_transition is None:
                        break
                    if self._apply_module_transition(store, attempt_id, record, decision.module_transition, now):
                        break
                    logger.info(
                        "[ACCESS] lost race on %s/%s (%s), re-reading",
                        attempt_id, module.value, decision.module_transition.value,
                    )
                else:
                    raise StoreUnavailable("module record kept changing under contention", attempt_id=attempt_id)
                record = store.get_module_record(attempt_id, module)

            if decision.attempt_transition is not None:
                self._apply_attempt_transition(store, attempt_id, decision.attempt_transition, now)
            db.commit()

        return ValidationResult(
            attempt_id=attempt_id,
            module_type=module_type,
            verdict=decision.verdict,
            server_time=now,
            module_status=record.status if record else None,
            started_at=record.started_at if record else None,
            completed_at=record.completed_at if record else None,
            attempt_remaining_seconds=seconds_until(attempt.overall_deadline, now),
            overall_deadline=attempt.overall_deadline,
        )

    def _complete_once(self, attempt_id: str, module_type: str, student_id: str) -> CompletionResult:
        with self.session_factory() as db:
            store = AttemptStore(db, self.clock)
            attempt = self._load_owned_attempt(store, attempt_id, student_id)
            now = store.now()
            module = self._known_module(module_type)
            record = None

            if module is None:
                decision = CompletionDecision(CompletionOutcome.UNKNOWN_MODULE)
            else:
                for _ in range(max(1, self.cfg.cas_max_rounds)):
                    record = store.get_module_record(attempt_id, module)
                    if record is None:
                        # never entered, so there is nothing to submit
                        decision = CompletionDecision(CompletionOutcome.NOT_STARTED)
                        break
                    decision = decide_completion(record, now, self.cfg.submit_grace_seconds, attempt)
                    if decision.module_transition is None:
                        break
                    if self._apply_module_transition(store, attempt_id, record, decision.module_transition, now):
                        break
                    logger.info("[ACCESS] lost submit race on %s/%s, re-reading", attempt_id, module.value)
                else:
                    raise StoreUnavailable("module record kept changing under contention", attempt_id=attempt_id)
                record = store.get_module_record(attempt_id, module)

            attempt_status = attempt.status
            if decision.attempt_transition is not None:
                self._apply_attempt_transition(store, attempt_id, decision.attempt_transition, now)
                attempt_status = store.get_attempt(attempt_id).status
            elif decision.success:
                attempt_status = self._complete_attempt_if_done(store, attempt, now)
            db.commit()

        return CompletionResult(
            attempt_id=attempt_id,
            module_type=module_type,
            outcome=decision.outcome,
            attempt_status=attempt_status,
            completed_at=record.completed_at if record else None,
        )

    def _complete_attempt_if_done(self, store: AttemptStore, attempt: AttemptState, now: datetime) -> AttemptStatus:
        attempt_id = attempt.attempt_id
        records = store.list_module_records(attempt_id)
        done = all(
            m in records and records[m].status == ModuleStatus.COMPLETED
            for m in required_modules(self.cfg)
        )
        grace = timedelta(seconds=self.cfg.submit_grace_seconds)
        if is_attempt_expired(attempt.overall_deadline, now - grace):
            # the deadline passed before the last module came in
            self._apply_attempt_transition(store, attempt_id, AttemptStatus.EXPIRED, now)
        elif done:
            self._apply_attempt_transition(store, attempt_id, AttemptStatus.COMPLETED, now)
        return store.get_attempt(attempt_id).status

    def _overview_once(self, attempt_id: str, student_id: str) -> AttemptOverview:
        with self.session_factory() as db:
            store = AttemptStore(db, self.clock)
            attempt = self._load_owned_attempt(store, attempt_id, student_id)
            now = store.now()
            records = store.list_module_records(attempt_id)
            required = required_modules(self.cfg)

            modules = []
            for module in required:
                record = records.get(module) or ModuleState(
                    module_type=module,
                    status=ModuleStatus.NOT_STARTED,
                    allowed_duration=allowed_duration(module, self.cfg),
                    sequence_index=sequence_index(module),
                )
                # read-only: the verdict is used for display, its transitions are dropped
                verdict = decide(attempt, record, module, now, self.cfg.sequencing_enabled, required).verdict
                if record.status in (ModuleStatus.COMPLETED, ModuleStatus.EXPIRED):
                    left = 0
                else:
                    left = remaining_seconds(record.started_at, record.allowed_duration, now)
                modules.append(ModuleOverview(
                    module_type=module,
                    status=record.status,
                    sequence_index=record.sequence_index,
                    allowed_duration=record.allowed_duration,
                    available=isinstance(verdict, Allowed),
                    remaining_seconds=left,
                    started_at=record.started_at,
                    completed_at=record.completed_at,
                ))

        return AttemptOverview(
            attempt_id=attempt_id,
            status=attempt.status,
            server_time=now,
            overall_deadline=attempt.overall_deadline,
            attempt_remaining_seconds=seconds_until(attempt.overall_deadline, now),
            modules=modules,
        )
