"""Spaced-repetition scheduling engine."""

from .blocks import BlocksWithAnswer, OneOf, Paragraph, Placeholder, Text, paragraph
from .errors import (
    InteractionFailed,
    InvalidResponse,
    NoTask,
    NoTaskToComplete,
    NotFound,
    OptimizeFailed,
    SsrError,
    StorageError,
)
from .facade import Facade, StatelessFacade
from .fsrs_engine import FSRSPolicy, Weights
from .leitner import LeitnerPolicy
from .level import Level
from .policy import SchedulingPolicy, get_policy
from .sm2 import SuperMemo2Policy
from .storage import load_facade, save_facade
from .task import StatelessTask, Task

__all__ = [
    "BlocksWithAnswer",
    "FSRSPolicy",
    "Facade",
    "InteractionFailed",
    "InvalidResponse",
    "LeitnerPolicy",
    "Level",
    "NoTask",
    "NoTaskToComplete",
    "NotFound",
    "OneOf",
    "OptimizeFailed",
    "Paragraph",
    "Placeholder",
    "SchedulingPolicy",
    "SsrError",
    "StatelessFacade",
    "StatelessTask",
    "StorageError",
    "SuperMemo2Policy",
    "Task",
    "Text",
    "Weights",
    "get_policy",
    "load_facade",
    "paragraph",
    "save_facade",
]
