"""Snapshot files for task pools."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Mapping, MutableMapping, Optional, Union

from ssr.errors import StorageError
from ssr.facade import Facade, StatelessFacade
from ssr.policy import SchedulingPolicy
from ssr.task import ContentStore

logger = logging.getLogger(__name__)

DEFAULT_STORAGE_PATH = Path("storage.json")

PathLike = Union[str, Path]


def _ensure_parent(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def _load_json(path: Path) -> MutableMapping[str, Any]:
    try:
        with path.open("r", encoding="utf-8") as handle:
            payload = json.load(handle)
    except FileNotFoundError:
        raise
    except (OSError, ValueError) as exc:
        raise StorageError(f"Cannot read snapshot {path}: {exc}") from exc
    if not isinstance(payload, dict):
        raise StorageError(f"Snapshot {path} does not contain a JSON object")
    return payload


def _write_json(path: Path, payload: Mapping[str, Any]) -> None:
    """Write *payload* next to *path* and rename it into place."""

    _ensure_parent(path)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            json.dump(payload, handle, indent=4, ensure_ascii=False)
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise


def save_facade(facade: Facade, path: PathLike = DEFAULT_STORAGE_PATH) -> Path:
    path = Path(path)
    _write_json(path, facade.to_storage_dict())
    logger.info(f"Saved pool {facade.name!r} ({facade.tasks_total()} tasks) to {path}")
    return path


def load_facade(
    path: PathLike = DEFAULT_STORAGE_PATH,
    *,
    policy: Optional[SchedulingPolicy] = None,
) -> Facade:
    """Restore a pool written by :func:`save_facade`.

    A missing file raises :class:`FileNotFoundError`; anything unreadable or
    malformed raises :class:`StorageError`.
    """

    path = Path(path)
    payload = _load_json(path)
    try:
        facade = Facade.from_storage(payload, policy=policy)
    except (KeyError, TypeError, ValueError) as exc:
        raise StorageError(f"Snapshot {path} is malformed: {exc}") from exc
    logger.info(f"Loaded pool {facade.name!r} ({facade.tasks_total()} tasks) from {path}")
    return facade


def load_stateless_facade(
    path: PathLike,
    store: ContentStore,
    *,
    policy: Optional[SchedulingPolicy] = None,
) -> StatelessFacade:
    path = Path(path)
    payload = _load_json(path)
    try:
        facade = StatelessFacade.from_storage(payload, store, policy=policy)
    except (KeyError, TypeError, ValueError) as exc:
        raise StorageError(f"Snapshot {path} is malformed: {exc}") from exc
    logger.info(f"Loaded stateless pool {facade.name!r} from {path}")
    return facade


__all__ = ["DEFAULT_STORAGE_PATH", "load_facade", "load_stateless_facade", "save_facade"]
