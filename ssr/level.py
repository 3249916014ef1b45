"""Per-task review history and the NotStarted/Started state machine.

A :class:`Level` is an immutable value. ``NotStarted`` is a level with no
history; once the first grade is recorded the level is ``Started`` and stays
so for the lifetime of the task. Everything a scheduling policy needs (memory
state, box index, ease factor) is derived from :attr:`Level.history`.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, NamedTuple, Optional, Tuple

if TYPE_CHECKING:
    from ssr.policy import SchedulingPolicy

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Normalise *value* to a UTC timezone aware datetime."""

    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utc_now() -> datetime:
    return datetime.now(tz=timezone.utc)


def parse_datetime(value: Any) -> Optional[datetime]:
    """Convert a JSON field into a :class:`datetime` in UTC."""

    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1]
        return ensure_utc(datetime.fromisoformat(text))
    raise TypeError(f"Cannot interpret {value!r} as a datetime")


def format_datetime(value: Optional[datetime]) -> Optional[str]:
    """Serialise a datetime in ISO-8601 format (UTC) for JSON storage."""

    if value is None:
        return None
    return ensure_utc(value).isoformat().replace("+00:00", "Z")


def days_between(first: datetime, second: datetime) -> int:
    """Whole calendar days from *first* to *second* (UTC dates)."""

    days = (ensure_utc(second).date() - ensure_utc(first).date()).days
    if days < 0:
        raise ValueError("A review cannot happen before the previous one")
    return days


class Review(NamedTuple):
    grade: int
    elapsed_days: int


History = Tuple[Review, ...]


@dataclass(frozen=True)
class Level:
    """Review history of one task.

    Parameters
    ----------
    history:
        Ordered ``(grade, elapsed_days)`` pairs; empty while not started.
    last_review_at:
        Timestamp of the most recent review, ``None`` while not started.
    """

    history: History = ()
    last_review_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        history = tuple(Review(int(grade), int(elapsed)) for grade, elapsed in self.history)
        if bool(history) != (self.last_review_at is not None):
            raise ValueError("A started level needs both a history and a last review time")
        if history and history[0].elapsed_days != 0:
            raise ValueError("The first review must have elapsed_days == 0")
        if any(review.elapsed_days < 0 for review in history):
            raise ValueError("elapsed_days must be non-negative")
        object.__setattr__(self, "history", history)
        if self.last_review_at is not None:
            object.__setattr__(self, "last_review_at", ensure_utc(self.last_review_at))

    @classmethod
    def not_started(cls) -> "Level":
        return cls()

    @property
    def is_started(self) -> bool:
        return bool(self.history)

    @property
    def last_grade(self) -> Optional[int]:
        return self.history[-1].grade if self.history else None

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------
    def add_repetition(self, grade: int, review_time: datetime) -> "Level":
        """Return the level after recording *grade* at *review_time*."""

        review_time = ensure_utc(review_time)
        if not self.is_started:
            return Level((Review(int(grade), 0),), review_time)
        assert self.last_review_at is not None
        elapsed = days_between(self.last_review_at, review_time)
        return Level(self.history + (Review(int(grade), elapsed),), review_time)

    def next_repetition(
        self, policy: "SchedulingPolicy", shared: Any, retrievability_goal: float
    ) -> datetime:
        if not self.is_started:
            return EPOCH
        assert self.last_review_at is not None and self.last_grade is not None
        interval = policy.interval_for(shared, self.history, self.last_grade, retrievability_goal)
        return self.last_review_at + interval

    def next_states(
        self,
        policy: "SchedulingPolicy",
        shared: Any,
        retrievability_goal: float,
        now: datetime,
    ) -> Dict[int, timedelta]:
        """Preview the interval every candidate grade would lead to."""

        elapsed = days_between(self.last_review_at, now) if self.last_review_at else 0
        previews: Dict[int, timedelta] = {}
        for grade in policy.grade_candidates():
            history = self.history + (Review(int(grade), elapsed),)
            previews[int(grade)] = policy.interval_for(shared, history, grade, retrievability_goal)
        return previews

    def long_term_history(self) -> Optional[History]:
        """History usable for fitting: at least one review on a later day."""

        if any(review.elapsed_days != 0 for review in self.history):
            return self.history
        return None

    # ------------------------------------------------------------------
    # Serialisation helpers
    # ------------------------------------------------------------------
    def to_storage(self) -> Optional[Dict[str, Any]]:
        if not self.is_started:
            return None
        return {
            "last_grade": self.last_grade,
            "last_review_at": format_datetime(self.last_review_at),
            "history": [[review.grade, review.elapsed_days] for review in self.history],
        }

    @classmethod
    def from_storage(cls, payload: Optional[Mapping[str, Any]]) -> "Level":
        if not payload:
            return cls()
        raw_history = payload.get("history") or []
        history: List[Review] = [Review(int(grade), int(elapsed)) for grade, elapsed in raw_history]
        return cls(tuple(history), parse_datetime(payload.get("last_review_at")))


__all__ = [
    "EPOCH",
    "History",
    "Level",
    "Review",
    "days_between",
    "ensure_utc",
    "format_datetime",
    "parse_datetime",
    "utc_now",
]
