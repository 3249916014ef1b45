"""Scheduling policy contract shared by every algorithm."""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Sequence

from ssr.errors import OptimizeFailed
from ssr.level import History, Level


def format_interval(interval: timedelta) -> str:
    """Short human label for an interval: hours below a day, days otherwise."""

    days = interval.total_seconds() / 86400.0
    if days < 1:
        return f"{days * 24:.1f}h"
    return f"{days:.1f}d"


class SchedulingPolicy(ABC):
    """Turns grading outcomes into levels and levels into intervals.

    Policies are stateless; any per-pool parameters live in the *shared
    state* object the pool owns and passes to every call.
    """

    name: str = ""

    # ------------------------------------------------------------------
    # Grades
    # ------------------------------------------------------------------
    @abstractmethod
    def wrong_grades(self) -> Sequence[int]:
        """Grades offered after an incorrect answer."""

    @abstractmethod
    def correct_grades(self) -> Sequence[int]:
        """Grades offered after a correct answer."""

    @abstractmethod
    def grade_label(self, grade: int) -> str:
        """Name of *grade* as shown to the user."""

    def grade_candidates(self) -> List[int]:
        return [int(grade) for grade in self.wrong_grades()] + [
            int(grade) for grade in self.correct_grades()
        ]

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------
    @abstractmethod
    def interval_for(
        self, shared: Any, history: History, grade: int, retrievability_goal: float
    ) -> timedelta:
        """Interval until the next review implied by *history*.

        *history* already contains the review graded *grade*.
        """

    def update(self, level: Level, grade: int, review_time: datetime) -> Level:
        if int(grade) not in self.grade_candidates():
            raise ValueError(f"Grade {grade!r} is not valid for the {self.name} policy")
        return level.add_repetition(int(grade), review_time)

    # ------------------------------------------------------------------
    # Shared state
    # ------------------------------------------------------------------
    def default_shared_state(self) -> Any:
        return ()

    def shared_state_to_storage(self, shared: Any) -> List[float]:
        return []

    def shared_state_from_storage(self, payload: Any) -> Any:
        return ()

    def optimize(self, shared: Any, levels: Iterable[Level]) -> Any:
        raise OptimizeFailed(f"The {self.name} policy has no parameters to optimise")

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


def get_policy(name: str) -> SchedulingPolicy:
    """Return the policy registered under *name*."""

    from ssr.fsrs_engine import FSRSPolicy
    from ssr.leitner import LeitnerPolicy
    from ssr.sm2 import SuperMemo2Policy

    registry: Dict[str, type] = {
        FSRSPolicy.name: FSRSPolicy,
        LeitnerPolicy.name: LeitnerPolicy,
        SuperMemo2Policy.name: SuperMemo2Policy,
    }
    try:
        return registry[name]()
    except KeyError:
        raise ValueError(f"Unknown scheduling policy: {name!r}") from None


__all__ = ["SchedulingPolicy", "format_interval", "get_policy"]
