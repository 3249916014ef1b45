"""Leitner box scheduling."""

from __future__ import annotations

from datetime import timedelta
from enum import IntEnum
from typing import Iterable, List, Tuple

from ssr.level import History
from ssr.policy import SchedulingPolicy

BOX_INTERVALS: Tuple[timedelta, ...] = tuple(timedelta(days=2 ** box) for box in range(7))


class Answer(IntEnum):
    INCORRECT = 0
    CORRECT = 1


def box_for(history: Iterable[Tuple[int, int]]) -> int:
    """Box index after replaying *history*: promote on correct, reset on incorrect."""

    box = 0
    last_box = len(BOX_INTERVALS) - 1
    for grade, _ in history:
        if grade == Answer.CORRECT:
            box = min(box + 1, last_box)
        else:
            box = 0
    return box


class LeitnerPolicy(SchedulingPolicy):
    name = "leitner"

    def wrong_grades(self) -> List[int]:
        return [Answer.INCORRECT]

    def correct_grades(self) -> List[int]:
        return [Answer.CORRECT]

    def grade_label(self, grade: int) -> str:
        return "OK"

    def interval_for(
        self, shared: object, history: History, grade: int, retrievability_goal: float
    ) -> timedelta:
        return BOX_INTERVALS[box_for(history)]


__all__ = ["Answer", "BOX_INTERVALS", "LeitnerPolicy", "box_for"]
