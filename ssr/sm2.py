"""SuperMemo-2 ease-factor scheduling."""

from __future__ import annotations

from datetime import timedelta
from enum import IntEnum
from typing import Iterable, List, NamedTuple, Tuple

from ssr.level import History
from ssr.policy import SchedulingPolicy

INITIAL_EASE_FACTOR = 2.5
MIN_EASE_FACTOR = 1.3
PASSING_QUALITY = 3


class Quality(IntEnum):
    COMPLETE_BLACKOUT = 0
    INCORRECT_BUT_REMEMBERED = 1
    INCORRECT_SEEMED_EASY = 2
    SERIOUS_DIFFICULTY = 3
    HESITATION = 4
    PERFECT = 5


QUALITY_LABELS = {
    Quality.COMPLETE_BLACKOUT: "complete blackout",
    Quality.INCORRECT_BUT_REMEMBERED: "incorrect response, but correct remembered",
    Quality.INCORRECT_SEEMED_EASY: "incorrect response, but seemed easy to recall",
    Quality.SERIOUS_DIFFICULTY: "recalled with serious difficulty",
    Quality.HESITATION: "correct, but after hesitation",
    Quality.PERFECT: "perfect response",
}


class Sm2State(NamedTuple):
    ease_factor: float
    interval_days: int
    repetitions: int


def next_ease_factor(ease_factor: float, quality: int) -> float:
    miss = 5 - quality
    return max(ease_factor + 0.1 - miss * (0.08 + miss * 0.02), MIN_EASE_FACTOR)


def sm2_state(history: Iterable[Tuple[int, int]]) -> Sm2State:
    """Replay the classical SM-2 recurrence over *history*."""

    ease_factor = INITIAL_EASE_FACTOR
    interval = 0
    repetitions = 0
    for quality, _ in history:
        if quality >= PASSING_QUALITY:
            if repetitions == 0:
                interval = 1
            elif repetitions == 1:
                interval = 6
            else:
                interval = int(round(interval * ease_factor))
            repetitions += 1
        else:
            repetitions = 0
            interval = 1
        ease_factor = next_ease_factor(ease_factor, quality)
    return Sm2State(ease_factor, interval, repetitions)


class SuperMemo2Policy(SchedulingPolicy):
    name = "sm2"

    def wrong_grades(self) -> List[int]:
        return [
            Quality.COMPLETE_BLACKOUT,
            Quality.INCORRECT_BUT_REMEMBERED,
            Quality.INCORRECT_SEEMED_EASY,
        ]

    def correct_grades(self) -> List[int]:
        return [Quality.SERIOUS_DIFFICULTY, Quality.HESITATION, Quality.PERFECT]

    def grade_label(self, grade: int) -> str:
        return QUALITY_LABELS[Quality(grade)]

    def interval_for(
        self, shared: object, history: History, grade: int, retrievability_goal: float
    ) -> timedelta:
        return timedelta(days=sm2_state(history).interval_days)


__all__ = [
    "INITIAL_EASE_FACTOR",
    "MIN_EASE_FACTOR",
    "Quality",
    "Sm2State",
    "SuperMemo2Policy",
    "next_ease_factor",
    "sm2_state",
]
