# exam_portal/services/ui_advisory.py
"""
What the exam page should show for a validation result.

This is a projection of server state for the client timer and screens.
It grants nothing: a countdown reaching zero only means "validate again".
"""
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from exam_portal.config import Settings, settings as default_settings
from exam_portal.services.module_policy import DENY_MESSAGES, LOGIN_ROUTE
from exam_portal.services.session_clock import effective_remaining

RETRY_MESSAGE = "We could not reach the exam server. Please try again."
ACCESS_DENIED_MESSAGE = "Access denied."


class Screen(str, Enum):
    RENDER_MODULE = "render_module"
    TIME_WARNING = "time_warning"
    SAFETY_SAVE = "safety_save"   # auto-save answers before the hard stop
    BLOCKED = "blocked"
    RETRY = "retry"


class TimerPhase(str, Enum):
    NORMAL = "normal"
    WARNING = "warning"
    SAFETY = "safety"
    EXPIRED = "expired"


@dataclass(frozen=True)
class Advisory:
    screen: Screen
    phase: TimerPhase
    remaining_seconds: Optional[int] = None
    countdown: Optional[str] = None
    resync_after_seconds: Optional[int] = None
    message: Optional[str] = None
    redirect_hint: Optional[str] = None


def format_countdown(seconds: Optional[int]) -> Optional[str]:
    """MM:SS; minutes keep counting past 60."""
    if seconds is None:
        return None
    seconds = max(0, int(seconds))
    return f"{seconds // 60:02d}:{seconds % 60:02d}"


def timer_phase(seconds: int, cfg: Settings = default_settings) -> TimerPhase:
    if seconds <= 0:
        return TimerPhase.EXPIRED
    if seconds <= cfg.safety_threshold_seconds:
        return TimerPhase.SAFETY
    if seconds <= cfg.time_warning_threshold_seconds:
        return TimerPhase.WARNING
    return TimerPhase.NORMAL


_PHASE_SCREENS = {
    TimerPhase.NORMAL: Screen.RENDER_MODULE,
    TimerPhase.WARNING: Screen.TIME_WARNING,
    TimerPhase.SAFETY: Screen.SAFETY_SAVE,
}


def advise(result, cfg: Settings = default_settings) -> Advisory:
    """Map a ValidationResult to the screen, countdown and next re-check."""
    if not result.allowed:
        return Advisory(
            screen=Screen.BLOCKED,
            phase=TimerPhase.EXPIRED,
            remaining_seconds=0,
            countdown=format_countdown(0),
            message=DENY_MESSAGES[result.reason],
            redirect_hint=result.redirect_hint,
        )

    left = effective_remaining(result.remaining_seconds, result.attempt_remaining_seconds)
    phase = timer_phase(left, cfg)
    if phase == TimerPhase.EXPIRED:
        # the overall deadline runs out first; the next call will be denied
        return Advisory(
            screen=Screen.SAFETY_SAVE,
            phase=phase,
            remaining_seconds=0,
            countdown=format_countdown(0),
            resync_after_seconds=0,
        )

    return Advisory(
        screen=_PHASE_SCREENS[phase],
        phase=phase,
        remaining_seconds=left,
        countdown=format_countdown(left),
        resync_after_seconds=min(cfg.heartbeat_interval_seconds, left),
    )


def advise_store_unavailable(cfg: Settings = default_settings) -> Advisory:
    # an outage is never shown as a lock-out
    return Advisory(
        screen=Screen.RETRY,
        phase=TimerPhase.NORMAL,
        resync_after_seconds=cfg.heartbeat_interval_seconds,
        message=RETRY_MESSAGE,
    )


def advise_access_denied() -> Advisory:
    return Advisory(
        screen=Screen.BLOCKED,
        phase=TimerPhase.EXPIRED,
        message=ACCESS_DENIED_MESSAGE,
        redirect_hint=LOGIN_ROUTE,
    )
