"""Python implementation of the FSRS-5 memory model.

The memory state of a task (stability ``S`` in days and difficulty ``D`` in
``[1, 10]``) is never stored: it is replayed from the task's review history
with the current weights every time it is needed, so the history stays the
single source of truth. Replays are memoised on the immutable
``(history, weights)`` pair.
"""

from __future__ import annotations

import json
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import IntEnum
from functools import lru_cache
from pathlib import Path
from typing import (
    TYPE_CHECKING,
    Any,
    Dict,
    Iterable,
    List,
    Mapping,
    NamedTuple,
    Optional,
    Sequence,
    Tuple,
    Union,
)

from ssr.level import History, Level, days_between
from ssr.policy import SchedulingPolicy

if TYPE_CHECKING:
    from ssr.optimizer import FSRSOptimizer

DECAY = -0.5
FACTOR = 19.0 / 81.0
MAXIMUM_INTERVAL_DAYS = 36500
S_MIN = 0.01
D_MIN = 1.0
D_MAX = 10.0
WEIGHT_COUNT = 19

DEFAULT_WEIGHTS: Tuple[float, ...] = (
    0.40255,
    1.18385,
    3.173,
    15.69105,
    7.1949,
    0.5345,
    1.4604,
    0.0046,
    1.54575,
    0.1192,
    1.01925,
    1.9395,
    0.11,
    0.29605,
    2.2698,
    0.2315,
    2.9898,
    0.51655,
    0.6621,
)


class Rating(IntEnum):
    AGAIN = 1
    HARD = 2
    GOOD = 3
    EASY = 4


@dataclass(frozen=True)
class Weights:
    """The 19 FSRS-5 parameters shared by every task of a pool."""

    values: Tuple[float, ...] = DEFAULT_WEIGHTS
    version: str = "fsrs-5-default"

    def __post_init__(self) -> None:
        values = tuple(float(value) for value in self.values)
        if len(values) != WEIGHT_COUNT:
            raise ValueError(f"FSRS needs exactly {WEIGHT_COUNT} weights, got {len(values)}")
        if not all(math.isfinite(value) for value in values):
            raise ValueError("FSRS weights must be finite numbers")
        object.__setattr__(self, "values", values)

    def __getitem__(self, index: int) -> float:
        return self.values[index]

    def __len__(self) -> int:
        return len(self.values)

    def to_storage(self) -> Dict[str, Any]:
        return {"w_version": self.version, "weights": list(self.values)}

    @classmethod
    def from_storage(cls, payload: Union[Mapping[str, Any], Sequence[float], None]) -> "Weights":
        if not payload:
            return cls()
        if isinstance(payload, Mapping):
            return cls(
                tuple(payload["weights"]),
                str(payload.get("w_version") or "fsrs-5-default"),
            )
        return cls(tuple(payload))


def load_weights(path: Union[str, Path]) -> Weights:
    """Load a weight preset from a JSON file ``{"w_version", "weights"}``."""

    path = Path(path)
    with path.open("r", encoding="utf-8") as handle:
        payload = json.load(handle)
    version = str(payload.get("w_version") or path.stem)
    return Weights(tuple(float(x) for x in payload["weights"]), version)


class MemoryState(NamedTuple):
    stability: float
    difficulty: float


# ---------------------------------------------------------------------------
# Core FSRS equations
# ---------------------------------------------------------------------------

def constrain_difficulty(value: float) -> float:
    return min(max(value, D_MIN), D_MAX)


def retrievability(elapsed_days: float, stability: float) -> float:
    """Probability of recall after *elapsed_days* for a memory of *stability*."""

    return math.pow(1 + FACTOR * elapsed_days / max(stability, S_MIN), DECAY)


def next_interval(stability: float, retrievability_goal: float) -> float:
    """Days until retrievability falls to *retrievability_goal*."""

    if not 0 < retrievability_goal < 1:
        raise ValueError("retrievability_goal must be within (0, 1)")
    interval = stability / FACTOR * (math.pow(retrievability_goal, 1 / DECAY) - 1)
    return min(max(interval, 0.0), MAXIMUM_INTERVAL_DAYS)


def init_stability(grade: int, w: Sequence[float]) -> float:
    return max(w[int(grade) - 1], S_MIN)


def init_difficulty(grade: int, w: Sequence[float]) -> float:
    return constrain_difficulty(w[4] - math.exp(w[5] * (int(grade) - 1)) + 1)


def linear_damping(delta_d: float, old_d: float) -> float:
    return delta_d * (10 - old_d) / 9


def mean_reversion(initial: float, current: float, w: Sequence[float]) -> float:
    return w[7] * initial + (1 - w[7]) * current


def next_difficulty(difficulty: float, grade: int, w: Sequence[float]) -> float:
    delta = -w[6] * (int(grade) - 3)
    next_d = difficulty + linear_damping(delta, difficulty)
    return constrain_difficulty(mean_reversion(init_difficulty(Rating.EASY, w), next_d, w))


def next_recall_stability(
    difficulty: float, stability: float, recall: float, grade: int, w: Sequence[float]
) -> float:
    hard_penalty = w[15] if grade == Rating.HARD else 1.0
    easy_bonus = w[16] if grade == Rating.EASY else 1.0
    return stability * (
        1
        + math.exp(w[8])
        * (11 - difficulty)
        * math.pow(stability, -w[9])
        * (math.exp((1 - recall) * w[10]) - 1)
        * hard_penalty
        * easy_bonus
    )


def next_forget_stability(
    difficulty: float, stability: float, recall: float, w: Sequence[float]
) -> float:
    s_min = stability / math.exp(w[17] * w[18])
    value = (
        w[11]
        * math.pow(difficulty, -w[12])
        * (math.pow(stability + 1, w[13]) - 1)
        * math.exp((1 - recall) * w[14])
    )
    return min(value, s_min)


def next_short_term_stability(stability: float, grade: int, w: Sequence[float]) -> float:
    return stability * math.exp(w[17] * (int(grade) - 3 + w[18]))


def replay_memory_state(history: Iterable[Tuple[int, int]], w: Sequence[float]) -> MemoryState:
    """Run the FSRS recurrences over *history* and return the final state."""

    reviews = iter(history)
    try:
        first_grade, _ = next(reviews)
    except StopIteration:
        raise ValueError("Cannot derive a memory state from an empty history") from None
    stability = init_stability(first_grade, w)
    difficulty = init_difficulty(first_grade, w)
    for grade, elapsed_days in reviews:
        if elapsed_days == 0:
            stability = next_short_term_stability(stability, grade, w)
        else:
            recall = retrievability(elapsed_days, stability)
            if grade == Rating.AGAIN:
                stability = next_forget_stability(difficulty, stability, recall, w)
            else:
                stability = next_recall_stability(difficulty, stability, recall, grade, w)
        difficulty = next_difficulty(difficulty, grade, w)
        stability = min(max(stability, S_MIN), MAXIMUM_INTERVAL_DAYS)
    return MemoryState(stability, difficulty)


@lru_cache(maxsize=4096)
def memory_state(history: History, weights: Weights) -> MemoryState:
    return replay_memory_state(history, weights.values)


# ---------------------------------------------------------------------------
# Policy
# ---------------------------------------------------------------------------

class FSRSPolicy(SchedulingPolicy):
    """Memory-model scheduling: review when recall probability hits the goal."""

    name = "fsrs"

    def __init__(self, optimizer: Optional["FSRSOptimizer"] = None) -> None:
        self.optimizer = optimizer

    def wrong_grades(self) -> List[int]:
        return [Rating.AGAIN]

    def correct_grades(self) -> List[int]:
        return [Rating.HARD, Rating.GOOD, Rating.EASY]

    def grade_label(self, grade: int) -> str:
        return Rating(grade).name.title()

    def interval_for(
        self, shared: Weights, history: History, grade: int, retrievability_goal: float
    ) -> timedelta:
        if history:
            stability = memory_state(tuple(history), shared).stability
        else:
            stability = init_stability(grade, shared.values)
        return timedelta(days=next_interval(stability, retrievability_goal))

    def retrievability(self, shared: Weights, level: Level, now: datetime) -> float:
        """Current recall probability of a task, 1.0 before its first review."""

        if not level.is_started or level.last_review_at is None:
            return 1.0
        state = memory_state(level.history, shared)
        return retrievability(days_between(level.last_review_at, now), state.stability)

    def default_shared_state(self) -> Weights:
        return Weights()

    def shared_state_to_storage(self, shared: Weights) -> Dict[str, Any]:  # type: ignore[override]
        return shared.to_storage()

    def shared_state_from_storage(self, payload: Any) -> Weights:
        return Weights.from_storage(payload)

    def optimize(self, shared: Weights, levels: Iterable[Level]) -> Weights:
        from ssr.optimizer import optimize_weights

        return optimize_weights(levels, initial=shared, optimizer=self.optimizer).weights


__all__ = [
    "DEFAULT_WEIGHTS",
    "FSRSPolicy",
    "MemoryState",
    "Rating",
    "Weights",
    "constrain_difficulty",
    "init_difficulty",
    "init_stability",
    "load_weights",
    "memory_state",
    "next_difficulty",
    "next_forget_stability",
    "next_interval",
    "next_recall_stability",
    "next_short_term_stability",
    "replay_memory_state",
    "retrievability",
]
