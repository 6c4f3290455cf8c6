# exam_portal/services/module_policy.py
"""
Module policy constants.
- module types, their fixed order, and per-type allowed durations
- status vocabularies for attempts and module records
- denial reasons and where the UI should send the student for each
"""
from enum import Enum
from typing import Dict, Optional

from exam_portal.config import Settings, settings as default_settings


class ModuleType(str, Enum):
    LISTENING = "listening"
    READING = "reading"
    WRITING = "writing"
    SPEAKING = "speaking"


class ModuleStatus(str, Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    EXPIRED = "expired"


# attempts share the same lifecycle vocabulary
AttemptStatus = ModuleStatus

TERMINAL_STATUSES = frozenset({ModuleStatus.COMPLETED, ModuleStatus.EXPIRED})

ALLOWED_TRANSITIONS: Dict[ModuleStatus, frozenset] = {
    ModuleStatus.NOT_STARTED: frozenset({ModuleStatus.IN_PROGRESS}),
    ModuleStatus.IN_PROGRESS: frozenset({ModuleStatus.COMPLETED, ModuleStatus.EXPIRED}),
    ModuleStatus.COMPLETED: frozenset(),
    ModuleStatus.EXPIRED: frozenset(),
}


class DenyReason(str, Enum):
    ALREADY_COMPLETED = "ALREADY_COMPLETED"
    EXPIRED = "EXPIRED"
    NOT_YET_ELIGIBLE = "NOT_YET_ELIGIBLE"
    ATTEMPT_EXPIRED = "ATTEMPT_EXPIRED"
    UNKNOWN_MODULE = "UNKNOWN_MODULE"


# listening -> reading -> writing -> speaking
MODULE_ORDER = (
    ModuleType.LISTENING,
    ModuleType.READING,
    ModuleType.WRITING,
    ModuleType.SPEAKING,
)

SUMMARY_ROUTE = "/mock-test/attempts/{attempt_id}/summary"
OVERVIEW_ROUTE = "/mock-test/attempts/{attempt_id}"
LOGIN_ROUTE = "/auth/login"

REDIRECT_ROUTES: Dict[DenyReason, str] = {
    DenyReason.ALREADY_COMPLETED: SUMMARY_ROUTE,
    DenyReason.EXPIRED: SUMMARY_ROUTE,
    DenyReason.ATTEMPT_EXPIRED: SUMMARY_ROUTE,
    DenyReason.NOT_YET_ELIGIBLE: OVERVIEW_ROUTE,
    DenyReason.UNKNOWN_MODULE: OVERVIEW_ROUTE,
}

DENY_MESSAGES: Dict[DenyReason, str] = {
    DenyReason.ALREADY_COMPLETED: "You have already completed this module.",
    DenyReason.EXPIRED: "The time for this module has ended. You can no longer access the questions.",
    DenyReason.NOT_YET_ELIGIBLE: "Finish the previous module before starting this one.",
    DenyReason.ATTEMPT_EXPIRED: "This test has ended. You can no longer access the questions.",
    DenyReason.UNKNOWN_MODULE: "This module is not part of your test.",
}


def parse_module_type(value: str) -> Optional[ModuleType]:
    """Unknown or malformed names map to None instead of raising."""
    try:
        return ModuleType(str(value).strip().lower())
    except ValueError:
        return None


def sequence_index(module_type: ModuleType) -> int:
    return MODULE_ORDER.index(module_type)


def allowed_duration(module_type: ModuleType, cfg: Settings = default_settings) -> int:
    """Allowed time in seconds for a module type. Not configurable per student."""
    durations = {
        ModuleType.LISTENING: cfg.listening_duration_seconds,
        ModuleType.READING: cfg.reading_duration_seconds,
        ModuleType.WRITING: cfg.writing_duration_seconds,
        ModuleType.SPEAKING: cfg.speaking_duration_seconds,
    }
    return int(durations[module_type])


def required_modules(cfg: Settings = default_settings) -> tuple:
    wanted = {parse_module_type(m) for m in cfg.required_modules}
    return tuple(m for m in MODULE_ORDER if m in wanted)


def is_valid_transition(current: ModuleStatus, new: ModuleStatus) -> bool:
    return new in ALLOWED_TRANSITIONS[current]


def redirect_hint(reason: DenyReason, attempt_id: str) -> str:
    return REDIRECT_ROUTES[reason].format(attempt_id=attempt_id)
