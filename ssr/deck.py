"""Import question/answer decks from spreadsheets."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional, Tuple, Union

import pandas as pd

from ssr.blocks import BlocksWithAnswer, Placeholder, paragraph
from ssr.facade import Facade

logger = logging.getLogger(__name__)

QUESTION_COLUMNS = ("Question", "Vocab:")
ANSWER_COLUMNS = ("Answer", "Translation:")
EXCEL_SUFFIXES = (".xlsx", ".xls")


def _pick_column(columns: List[str], candidates: Tuple[str, ...]) -> Optional[str]:
    for name in candidates:
        if name in columns:
            return name
    return None


def _read_frame(path: Path) -> pd.DataFrame:
    if path.suffix.lower() in EXCEL_SUFFIXES:
        return pd.read_excel(path)
    return pd.read_csv(path)


def card_exercise(question: str, answer: str) -> BlocksWithAnswer:
    """A one-paragraph exercise: the question followed by a blank."""

    return BlocksWithAnswer((paragraph(f"{question} ", Placeholder()),), ((answer,),))


def read_deck(path: Union[str, Path]) -> List[BlocksWithAnswer]:
    """Read exercises from a CSV or Excel deck.

    Rows are read until the first one with a blank question.
    """

    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Deck file not found: {path}")

    frame = _read_frame(path)
    columns = [str(column) for column in frame.columns]
    question_column = _pick_column(columns, QUESTION_COLUMNS)
    answer_column = _pick_column(columns, ANSWER_COLUMNS)
    if question_column is None or answer_column is None:
        raise ValueError(
            f"Deck {path.name} needs {'/'.join(QUESTION_COLUMNS)} and "
            f"{'/'.join(ANSWER_COLUMNS)} columns"
        )

    exercises: List[BlocksWithAnswer] = []
    for _, row in frame.iterrows():
        question = row.get(question_column)
        if pd.isna(question) or not str(question).strip():
            break
        answer = row.get(answer_column)
        if pd.isna(answer):
            answer = ""
        exercises.append(card_exercise(str(question).strip(), str(answer).strip()))
    logger.debug(f"Read {len(exercises)} exercises from {path}")
    return exercises


def import_deck(facade: Facade, path: Union[str, Path]) -> List[str]:
    """Add every exercise of the deck at *path* to *facade*; return the new ids."""

    task_ids = [facade.create_task(exercise) for exercise in read_deck(path)]
    logger.info(f"Imported {len(task_ids)} tasks from {Path(path).name} into pool {facade.name!r}")
    return task_ids


__all__ = ["card_exercise", "import_deck", "read_deck"]
