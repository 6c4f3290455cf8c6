# exam_portal/services/session_clock.py
"""
Authoritative time and expiry arithmetic.
- now() always comes from the database, never from a client timestamp
- DB values are normalised to timezone-aware UTC
- remaining time is rounded up so an Allowed verdict never reports 0
"""
import math
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes; everything stored is UTC
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class StoreClock:
    """Reads now() from the attempt store so every instance shares one clock."""

    def now(self, db: Session) -> datetime:
        value = db.execute(select(func.now())).scalar_one()
        if isinstance(value, str):
            # SQLite CURRENT_TIMESTAMP comes back as text on some drivers
            value = datetime.fromisoformat(value)
        return as_utc(value)


class FrozenClock:
    """Fixed clock for tests and tooling. advance() moves it forward."""

    def __init__(self, start: datetime):
        self.current = as_utc(start)

    def now(self, db: Optional[Session] = None) -> datetime:
        return self.current

    def advance(self, seconds: float) -> datetime:
        self.current = self.current + timedelta(seconds=seconds)
        return self.current


def elapsed_seconds(started_at: datetime, now: datetime) -> float:
    # clamp clock jitter between instances so elapsed never runs backwards
    return max(0.0, (as_utc(now) - as_utc(started_at)).total_seconds())


def remaining_seconds(started_at: Optional[datetime], duration: int, now: datetime) -> int:
    if started_at is None:
        return int(duration)
    left = duration - elapsed_seconds(started_at, now)
    if left <= 0:
        return 0
    return int(math.ceil(left))


def is_module_expired(started_at: Optional[datetime], duration: int, now: datetime) -> bool:
    if started_at is None:
        return False
    return elapsed_seconds(started_at, now) >= duration


def seconds_until(deadline: Optional[datetime], now: datetime) -> Optional[int]:
    if deadline is None:
        return None
    left = (as_utc(deadline) - as_utc(now)).total_seconds()
    return max(0, int(math.ceil(left)))


def is_attempt_expired(deadline: Optional[datetime], now: datetime) -> bool:
    if deadline is None:
        return False
    return as_utc(now) > as_utc(deadline)


def derive_overall_deadline(
    scheduled_at: datetime,
    duration_minutes: int,
    center_closes_at: Optional[datetime] = None,
) -> datetime:
    """
    Absolute cutoff for an attempt: scheduled start + test duration,
    capped by the center's closing time when it is earlier.
    """
    deadline = as_utc(scheduled_at) + timedelta(minutes=duration_minutes)
    if center_closes_at is not None and as_utc(center_closes_at) < deadline:
        return as_utc(center_closes_at)
    return deadline


def effective_remaining(module_remaining: Optional[int], attempt_remaining: Optional[int]) -> Optional[int]:
    """The earlier of the module end and the overall deadline."""
    values = [v for v in (module_remaining, attempt_remaining) if v is not None]
    if not values:
        return None
    return min(values)
