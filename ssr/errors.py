"""Exceptions raised by the scheduling engine."""

from __future__ import annotations

from datetime import timedelta


class SsrError(Exception):
    """Base class for every error surfaced by :mod:`ssr`."""


class InteractionFailed(SsrError):
    """The interaction callback raised; the original error is ``__cause__``."""


class NotFound(SsrError, LookupError):
    """A stateless task's content is missing from the content store."""

    def __init__(self, content_id: object) -> None:
        super().__init__(f"No content stored for id {content_id!r}")
        self.content_id = content_id


class NoTask(SsrError):
    """The pool holds no tasks at all."""


class NoTaskToComplete(SsrError):
    """Tasks exist but none is due yet."""

    def __init__(self, time_until_next: timedelta) -> None:
        hours = time_until_next.total_seconds() / 3600.0
        super().__init__(f"Next task is due in {hours:.2f}h")
        self.time_until_next = time_until_next


class OptimizeFailed(SsrError):
    """Parameter fitting had no data or did not converge."""


class InvalidResponse(SsrError, ValueError):
    """A response could not be interpreted (e.g. no valid choice selected)."""


class StorageError(SsrError):
    """A persisted snapshot could not be read or decoded."""


__all__ = [
    "InteractionFailed",
    "InvalidResponse",
    "NoTask",
    "NoTaskToComplete",
    "NotFound",
    "OptimizeFailed",
    "SsrError",
    "StorageError",
]
