"""Task pool management: due tracking and one-task-at-a-time completion."""

from __future__ import annotations

import logging
import random
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple, Union

from ssr.blocks import BlocksWithAnswer
from ssr.errors import InteractionFailed, NoTask, NoTaskToComplete
from ssr.fsrs_engine import FSRSPolicy
from ssr.level import ensure_utc, utc_now
from ssr.policy import SchedulingPolicy, get_policy
from ssr.task import ContentStore, Interaction, StatelessTask, Task

logger = logging.getLogger(__name__)

DEFAULT_DESIRED_RETENTION = 0.85
RECALL_LOOKAHEAD = timedelta(seconds=10)

AnyTask = Union[Task, StatelessTask]


def new_task_id() -> str:
    return uuid.uuid4().hex


def _validate_retention(desired_retention: float) -> float:
    value = float(desired_retention)
    if not 0.0 < value < 1.0:
        raise ValueError("desired retention must be within (0, 1)")
    return value


@dataclass
class TaskWrapper:
    task: AnyTask
    task_id: str = field(default_factory=new_task_id)

    def to_storage(self) -> Dict[str, Any]:
        return {"id": self.task_id, "task": self.task.to_storage()}


class Facade:
    """A named pool of tasks scheduled by one policy.

    Every task lives in exactly one of two lists: :attr:`tasks_pool` (not
    yet due) or :attr:`tasks_to_recall` (due). A task being completed is
    temporarily in neither and is always put back into :attr:`tasks_pool`.
    """

    def __init__(
        self,
        name: str,
        policy: Optional[SchedulingPolicy] = None,
        desired_retention: float = DEFAULT_DESIRED_RETENTION,
        shared_state: Any = None,
        *,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.name = name
        self.policy = policy or FSRSPolicy()
        self.desired_retention = _validate_retention(desired_retention)
        self.shared_state = (
            shared_state if shared_state is not None else self.policy.default_shared_state()
        )
        self.tasks_pool: List[TaskWrapper] = []
        self.tasks_to_recall: List[TaskWrapper] = []
        self._rng = rng or random.Random()

    # ------------------------------------------------------------------
    # Pool contents
    # ------------------------------------------------------------------
    def _wrappers(self) -> Iterator[TaskWrapper]:
        yield from self.tasks_pool
        yield from self.tasks_to_recall

    def iter_tasks(self) -> Iterator[Tuple[str, AnyTask]]:
        for wrapper in self._wrappers():
            yield wrapper.task_id, wrapper.task

    def get(self, task_id: str) -> Optional[AnyTask]:
        for wrapper in self._wrappers():
            if wrapper.task_id == task_id:
                return wrapper.task
        return None

    def tasks_total(self) -> int:
        return len(self.tasks_pool) + len(self.tasks_to_recall)

    def tasks_to_complete(self) -> int:
        return len(self.tasks_to_recall)

    def insert(self, task: AnyTask) -> str:
        if not isinstance(task, Task):
            raise TypeError("A pool only holds Task instances, use StatelessFacade for content ids")
        wrapper = TaskWrapper(task)
        self.tasks_pool.append(wrapper)
        logger.debug(f"Inserted task {wrapper.task_id} into pool {self.name!r}")
        return wrapper.task_id

    def create_task(self, blocks_with_answer: BlocksWithAnswer) -> str:
        return self.insert(Task.from_blocks(blocks_with_answer))

    def remove(self, task_id: str) -> bool:
        for queue in (self.tasks_to_recall, self.tasks_pool):
            for index, wrapper in enumerate(queue):
                if wrapper.task_id == task_id:
                    del queue[index]
                    logger.debug(f"Removed task {task_id} from pool {self.name!r}")
                    return True
        return False

    # ------------------------------------------------------------------
    # Due tracking
    # ------------------------------------------------------------------
    @staticmethod
    def _now(now: Optional[datetime]) -> datetime:
        return ensure_utc(now) if now is not None else utc_now()

    def _next_repetition(self, task: AnyTask) -> datetime:
        return task.next_repetition(self.policy, self.shared_state, self.desired_retention)

    def find_tasks_to_recall(self, now: Optional[datetime] = None) -> None:
        """Move every task due by ``now + RECALL_LOOKAHEAD`` into the due list."""

        horizon = self._now(now) + RECALL_LOOKAHEAD
        still_pending: List[TaskWrapper] = []
        for wrapper in self.tasks_pool:
            if self._next_repetition(wrapper.task) <= horizon:
                self.tasks_to_recall.append(wrapper)
            else:
                still_pending.append(wrapper)
        self.tasks_pool = still_pending

    def reload_all_tasks_timings(self, now: Optional[datetime] = None) -> None:
        self.tasks_pool.extend(self.tasks_to_recall)
        self.tasks_to_recall = []
        self.find_tasks_to_recall(now)

    def until_next_repetition(self, now: Optional[datetime] = None) -> Optional[timedelta]:
        """``None`` for an empty pool, zero when a task is due, else the shortest wait."""

        if self.tasks_total() == 0:
            return None
        if self.tasks_to_recall:
            return timedelta(0)
        current = self._now(now)
        return min(
            max(self._next_repetition(wrapper.task) - current, timedelta(0))
            for wrapper in self.tasks_pool
        )

    # ------------------------------------------------------------------
    # Completion
    # ------------------------------------------------------------------
    def _take_random_task(self) -> Optional[TaskWrapper]:
        if not self.tasks_to_recall:
            return None
        index = self._rng.randrange(len(self.tasks_to_recall))
        return self.tasks_to_recall.pop(index)

    def _complete(self, task: AnyTask, interaction: Interaction, now: datetime) -> int:
        if not isinstance(task, Task):
            raise TypeError(f"Cannot complete {type(task).__name__} in a stateful pool")
        return task.complete(
            self.policy, self.shared_state, self.desired_retention, interaction, now=now
        )

    def complete_task(self, interaction: Interaction, now: Optional[datetime] = None) -> str:
        """Complete one randomly chosen due task and return its id.

        Raises :class:`NoTask` for an empty pool, :class:`NoTaskToComplete`
        when nothing is due and :class:`InteractionFailed` when the callback
        raises :class:`OSError`. The task always returns to the pool.
        """

        current = self._now(now)
        self.find_tasks_to_recall(current)
        wrapper = self._take_random_task()
        if wrapper is None:
            until = self.until_next_repetition(current)
            if until is None:
                raise NoTask(f"Pool {self.name!r} has no tasks")
            raise NoTaskToComplete(until)

        try:
            grade = self._complete(wrapper.task, interaction, current)
        except OSError as exc:
            raise InteractionFailed(f"Interaction failed for task {wrapper.task_id}") from exc
        finally:
            self.tasks_pool.append(wrapper)

        logger.info(f"Completed task {wrapper.task_id} in pool {self.name!r} with grade {grade}")
        return wrapper.task_id

    # ------------------------------------------------------------------
    # Pool-wide settings
    # ------------------------------------------------------------------
    def set_desired_retention(self, desired_retention: float, now: Optional[datetime] = None) -> None:
        self.desired_retention = _validate_retention(desired_retention)
        self.reload_all_tasks_timings(now)

    def optimize(self, now: Optional[datetime] = None) -> None:
        """Refit the shared state; on failure the pool is left unchanged."""

        levels = [wrapper.task.level for wrapper in self._wrappers()]
        self.shared_state = self.policy.optimize(self.shared_state, levels)
        logger.info(f"Optimized shared state of pool {self.name!r}")
        self.reload_all_tasks_timings(now)

    def migrate(self, policy: SchedulingPolicy) -> "Facade":
        """Rebuild the pool under *policy*; all review history is discarded."""

        migrated = Facade(self.name, policy, self.desired_retention, rng=self._rng)
        for _, task in self.iter_tasks():
            if not isinstance(task, Task):
                raise TypeError(f"Cannot migrate {type(task).__name__} in a stateful pool")
            migrated.create_task(task.get_blocks())
        logger.info(
            f"Migrated pool {self.name!r} from {self.policy.name} to {policy.name} "
            f"({migrated.tasks_total()} tasks)"
        )
        return migrated

    # ------------------------------------------------------------------
    # Serialisation helpers
    # ------------------------------------------------------------------
    def to_storage_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "policy": self.policy.name,
            "desired_retention": self.desired_retention,
            "shared_state": self.policy.shared_state_to_storage(self.shared_state),
            "tasks_pool": [wrapper.to_storage() for wrapper in self.tasks_pool],
            "tasks_to_recall": [wrapper.to_storage() for wrapper in self.tasks_to_recall],
        }

    @staticmethod
    def _load_wrappers(records: Iterable[Mapping[str, Any]], loader: Any) -> List[TaskWrapper]:
        return [TaskWrapper(loader(record["task"]), str(record["id"])) for record in records]

    def _check_unique_ids(self) -> None:
        seen = set()
        for wrapper in self._wrappers():
            if wrapper.task_id in seen:
                raise ValueError(f"Task id {wrapper.task_id!r} appears more than once in the snapshot")
            seen.add(wrapper.task_id)

    @classmethod
    def from_storage(
        cls,
        payload: Mapping[str, Any],
        *,
        policy: Optional[SchedulingPolicy] = None,
        rng: Optional[random.Random] = None,
    ) -> "Facade":
        policy = policy or get_policy(str(payload.get("policy", FSRSPolicy.name)))
        facade = cls(
            str(payload.get("name", "")),
            policy,
            float(payload.get("desired_retention", DEFAULT_DESIRED_RETENTION)),
            policy.shared_state_from_storage(payload.get("shared_state")),
            rng=rng,
        )
        facade.tasks_pool = cls._load_wrappers(payload.get("tasks_pool", []), Task.from_storage)
        facade.tasks_to_recall = cls._load_wrappers(
            payload.get("tasks_to_recall", []), Task.from_storage
        )
        facade._check_unique_ids()
        return facade


class StatelessFacade(Facade):
    """Pool of :class:`StatelessTask` whose content lives in a store.

    Tasks are identified by their content id; new tasks start out due.
    """

    def __init__(
        self,
        owner: Any,
        policy: Optional[SchedulingPolicy],
        store: ContentStore,
        desired_retention: float = DEFAULT_DESIRED_RETENTION,
        content_ids: Sequence[Any] = (),
        shared_state: Any = None,
        *,
        rng: Optional[random.Random] = None,
    ) -> None:
        super().__init__(str(owner), policy, desired_retention, shared_state, rng=rng)
        self.owner = owner
        self.store = store
        for content_id in content_ids:
            self.add_content(content_id)

    def add_content(self, content_id: Any) -> str:
        task_id = str(content_id)
        if self.get(task_id) is not None:
            raise ValueError(f"Content {content_id!r} is already in the pool")
        self.tasks_to_recall.append(TaskWrapper(StatelessTask(content_id), task_id))
        return task_id

    def insert(self, task: AnyTask) -> str:
        if not isinstance(task, StatelessTask):
            raise TypeError("A stateless pool only holds StatelessTask instances")
        task_id = str(task.content_id)
        if self.get(task_id) is not None:
            raise ValueError(f"Content {task.content_id!r} is already in the pool")
        self.tasks_pool.append(TaskWrapper(task, task_id))
        return task_id

    def create_task(self, blocks_with_answer: BlocksWithAnswer) -> str:
        raise TypeError("Stateless tasks are created from content ids, see add_content()")

    def _complete(self, task: AnyTask, interaction: Interaction, now: datetime) -> int:
        if not isinstance(task, StatelessTask):
            raise TypeError(f"Cannot complete {type(task).__name__} in a stateless pool")
        return task.complete(
            self.policy,
            self.shared_state,
            self.desired_retention,
            self.store,
            interaction,
            now=now,
        )

    def migrate(self, policy: SchedulingPolicy) -> "StatelessFacade":
        content_ids = [wrapper.task.content_id for wrapper in self._wrappers()]  # type: ignore[union-attr]
        return StatelessFacade(
            self.owner, policy, self.store, self.desired_retention, content_ids, rng=self._rng
        )

    def to_storage_dict(self) -> Dict[str, Any]:
        data = super().to_storage_dict()
        data["owner"] = self.owner
        return data

    @classmethod
    def from_storage(  # type: ignore[override]
        cls,
        payload: Mapping[str, Any],
        store: ContentStore,
        *,
        policy: Optional[SchedulingPolicy] = None,
        rng: Optional[random.Random] = None,
    ) -> "StatelessFacade":
        policy = policy or get_policy(str(payload.get("policy", FSRSPolicy.name)))
        facade = cls(
            payload.get("owner", payload.get("name", "")),
            policy,
            store,
            float(payload.get("desired_retention", DEFAULT_DESIRED_RETENTION)),
            shared_state=policy.shared_state_from_storage(payload.get("shared_state")),
            rng=rng,
        )
        facade.tasks_pool = cls._load_wrappers(
            payload.get("tasks_pool", []), StatelessTask.from_storage
        )
        facade.tasks_to_recall = cls._load_wrappers(
            payload.get("tasks_to_recall", []), StatelessTask.from_storage
        )
        facade._check_unique_ids()
        return facade


__all__ = [
    "DEFAULT_DESIRED_RETENTION",
    "Facade",
    "RECALL_LOOKAHEAD",
    "StatelessFacade",
    "TaskWrapper",
    "new_task_id",
]
