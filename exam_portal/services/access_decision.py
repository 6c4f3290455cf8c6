# exam_portal/services/access_decision.py
"""
Module access decision engine.

decide() maps (attempt, module record, module type, now) to a verdict and
the state transitions the caller must apply. It never touches the store:
the validation service owns every write and applies them with
compare-and-set.

Rules, first match wins:
  0. module type outside the policy            -> Denied(UNKNOWN_MODULE)
  1. module COMPLETED                          -> Denied(ALREADY_COMPLETED)
  2. attempt EXPIRED or past overall_deadline  -> Denied(ATTEMPT_EXPIRED)
  3. sequencing on and an earlier module open  -> Denied(NOT_YET_ELIGIBLE)
  4. module NOT_STARTED                        -> Allowed(full duration), START
  5. module IN_PROGRESS                        -> Allowed(left) or Denied(EXPIRED), EXPIRE
  6. module EXPIRED                            -> Denied(EXPIRED)
"""
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, Optional, Union

from exam_portal.services.module_policy import (
    MODULE_ORDER,
    TERMINAL_STATUSES,
    AttemptStatus,
    DenyReason,
    ModuleStatus,
    ModuleType,
)
from exam_portal.services.session_clock import (
    is_attempt_expired,
    is_module_expired,
    remaining_seconds,
)


# ---------- Snapshots ----------

@dataclass(frozen=True)
class ModuleState:
    module_type: ModuleType
    status: ModuleStatus
    allowed_duration: int
    sequence_index: int
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


@dataclass(frozen=True)
class AttemptState:
    attempt_id: str
    student_id: str
    status: AttemptStatus
    overall_deadline: Optional[datetime] = None
    # statuses of every module record that exists for the attempt
    module_statuses: Dict[ModuleType, ModuleStatus] = field(default_factory=dict)


# ---------- Verdicts ----------

@dataclass(frozen=True)
class Allowed:
    remaining_seconds: int
    allowed: bool = field(default=True, init=False)


@dataclass(frozen=True)
class Denied:
    reason: DenyReason
    allowed: bool = field(default=False, init=False)


Verdict = Union[Allowed, Denied]


class Transition(str, Enum):
    START = "start"
    EXPIRE = "expire"
    COMPLETE = "complete"


# expected status -> new status for each module transition
TRANSITION_STATUSES = {
    Transition.START: (ModuleStatus.NOT_STARTED, ModuleStatus.IN_PROGRESS),
    Transition.EXPIRE: (ModuleStatus.IN_PROGRESS, ModuleStatus.EXPIRED),
    Transition.COMPLETE: (ModuleStatus.IN_PROGRESS, ModuleStatus.COMPLETED),
}


@dataclass(frozen=True)
class Decision:
    verdict: Verdict
    module_transition: Optional[Transition] = None
    attempt_transition: Optional[AttemptStatus] = None


class CompletionOutcome(str, Enum):
    # same lowercase vocabulary as module and attempt statuses
    COMPLETED = "completed"
    ALREADY_COMPLETED = "already_completed"
    NOT_STARTED = "not_started"
    EXPIRED = "expired"
    UNKNOWN_MODULE = "unknown_module"


SUCCESSFUL_COMPLETIONS = frozenset({CompletionOutcome.COMPLETED, CompletionOutcome.ALREADY_COMPLETED})


@dataclass(frozen=True)
class CompletionDecision:
    outcome: CompletionOutcome
    module_transition: Optional[Transition] = None
    attempt_transition: Optional[AttemptStatus] = None

    @property
    def success(self) -> bool:
        return self.outcome in SUCCESSFUL_COMPLETIONS


# ---------- Rules ----------

def _earlier_module_open(attempt: AttemptState, record: ModuleState, required) -> bool:
    for module_type in required:
        if MODULE_ORDER.index(module_type) >= record.sequence_index:
            continue
        status = attempt.module_statuses.get(module_type, ModuleStatus.NOT_STARTED)
        if status != ModuleStatus.COMPLETED:
            return True
    return False


def decide(
    attempt: AttemptState,
    record: Optional[ModuleState],
    module_type: Optional[ModuleType],
    now: datetime,
    sequencing_enabled: bool = True,
    required=MODULE_ORDER,
) -> Decision:
    if module_type is None or record is None or module_type not in required:
        return Decision(Denied(DenyReason.UNKNOWN_MODULE))

    if record.status == ModuleStatus.COMPLETED:
        return Decision(Denied(DenyReason.ALREADY_COMPLETED))

    if attempt.status == AttemptStatus.EXPIRED or is_attempt_expired(attempt.overall_deadline, now):
        attempt_transition = None
        if attempt.status not in TERMINAL_STATUSES:
            attempt_transition = AttemptStatus.EXPIRED
        return Decision(Denied(DenyReason.ATTEMPT_EXPIRED), attempt_transition=attempt_transition)

    if sequencing_enabled and _earlier_module_open(attempt, record, required):
        return Decision(Denied(DenyReason.NOT_YET_ELIGIBLE))

    if record.status == ModuleStatus.NOT_STARTED:
        attempt_transition = None
        if attempt.status == AttemptStatus.NOT_STARTED:
            attempt_transition = AttemptStatus.IN_PROGRESS
        return Decision(
            Allowed(int(record.allowed_duration)),
            module_transition=Transition.START,
            attempt_transition=attempt_transition,
        )

    if record.status == ModuleStatus.IN_PROGRESS:
        if is_module_expired(record.started_at, record.allowed_duration, now):
            return Decision(Denied(DenyReason.EXPIRED), module_transition=Transition.EXPIRE)
        return Decision(Allowed(remaining_seconds(record.started_at, record.allowed_duration, now)))

    return Decision(Denied(DenyReason.EXPIRED))


def decide_completion(
    record: Optional[ModuleState],
    now: datetime,
    grace_seconds: int = 0,
    attempt: Optional[AttemptState] = None,
) -> CompletionDecision:
    """
    Submission path. A finished module is success, not an error.

    A module ends at the earlier of its own timer and the attempt's
    overall_deadline; both get the same grace for late auto-submits.
    """
    if record is None:
        return CompletionDecision(CompletionOutcome.UNKNOWN_MODULE)
    if record.status == ModuleStatus.COMPLETED:
        return CompletionDecision(CompletionOutcome.ALREADY_COMPLETED)
    if record.status == ModuleStatus.NOT_STARTED:
        return CompletionDecision(CompletionOutcome.NOT_STARTED)
    if record.status == ModuleStatus.EXPIRED:
        return CompletionDecision(CompletionOutcome.EXPIRED)

    if attempt is not None and is_attempt_expired(attempt.overall_deadline, now - timedelta(seconds=grace_seconds)):
        attempt_transition = None
        if attempt.status not in TERMINAL_STATUSES:
            attempt_transition = AttemptStatus.EXPIRED
        return CompletionDecision(
            CompletionOutcome.EXPIRED,
            module_transition=Transition.EXPIRE,
            attempt_transition=attempt_transition,
        )

    # late force-submits from the client timer still count inside the grace window
    if is_module_expired(record.started_at, record.allowed_duration + grace_seconds, now):
        return CompletionDecision(CompletionOutcome.EXPIRED, module_transition=Transition.EXPIRE)
    return CompletionDecision(CompletionOutcome.COMPLETED, module_transition=Transition.COMPLETE)
