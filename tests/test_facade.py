import random
import sys
from collections import Counter
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from ssr.blocks import BlocksWithAnswer, OneOf, Placeholder, paragraph
from ssr.errors import InteractionFailed, NoTask, NoTaskToComplete, NotFound, OptimizeFailed
from ssr.facade import RECALL_LOOKAHEAD, Facade, StatelessFacade
from ssr.fsrs_engine import FSRSPolicy, Weights
from ssr.leitner import LeitnerPolicy
from ssr.level import Level
from ssr.optimizer import FSRSOptimizer
from ssr.task import StatelessTask, Task

NOW = datetime(2024, 1, 1, 12, tzinfo=timezone.utc)


def exercise(number: int) -> BlocksWithAnswer:
    return BlocksWithAnswer((paragraph(f"Q{number} ", Placeholder()),), [[f"A{number}"]])


class Learner:
    """Answers every question correctly and picks a fixed feedback option."""

    def __init__(self, choice: int = 1, correct: bool = True):
        self.choice = choice
        self.correct = correct
        self.calls = 0

    def __call__(self, blocks):
        self.calls += 1
        if isinstance(blocks[-1], OneOf):
            return [[] for _ in blocks[:-1]] + [[str(self.choice)]]
        question = blocks[0].items[0].text.strip()
        return [[f"A{question[1:]}" if self.correct else "no idea"]]


class BrokenConnection:
    def __call__(self, blocks):
        raise ConnectionResetError("peer went away")


def make_facade(count: int = 3, **kwargs) -> Facade:
    facade = Facade("geography", rng=random.Random(42), **kwargs)
    for number in range(count):
        facade.create_task(exercise(number))
    return facade


def assert_membership(facade: Facade) -> None:
    ids = [wrapper.task_id for wrapper in facade.tasks_pool + facade.tasks_to_recall]
    assert all(count == 1 for count in Counter(ids).values())
    assert len(ids) == facade.tasks_total()


def test_empty_pool_has_no_task():
    facade = Facade("empty")
    assert facade.until_next_repetition(NOW) is None
    with pytest.raises(NoTask):
        facade.complete_task(Learner(), now=NOW)


def test_new_tasks_become_due_on_refresh():
    facade = make_facade()
    assert facade.tasks_to_complete() == 0
    facade.find_tasks_to_recall(NOW)
    assert facade.tasks_to_complete() == 3
    assert facade.until_next_repetition(NOW) == timedelta(0)


def test_find_tasks_to_recall_is_idempotent():
    facade = make_facade()
    facade.find_tasks_to_recall(NOW)
    before = ([w.task_id for w in facade.tasks_pool], [w.task_id for w in facade.tasks_to_recall])
    facade.find_tasks_to_recall(NOW)
    after = ([w.task_id for w in facade.tasks_pool], [w.task_id for w in facade.tasks_to_recall])
    assert before == after


def test_complete_task_records_grade_and_returns_task_to_pool():
    facade = make_facade()
    task_id = facade.complete_task(Learner(choice=1), now=NOW)

    task = facade.get(task_id)
    assert task.level.history == ((3, 0),)
    assert task_id in [wrapper.task_id for wrapper in facade.tasks_pool]
    assert facade.tasks_to_complete() == 2
    assert_membership(facade)


def test_every_due_task_is_completed_once_then_wait_is_reported():
    facade = make_facade()
    completed = {facade.complete_task(Learner(), now=NOW) for _ in range(3)}
    assert completed == {task_id for task_id, _ in facade.iter_tasks()}

    expected_wait = min(
        task.next_repetition(facade.policy, facade.shared_state, facade.desired_retention) - NOW
        for _, task in facade.iter_tasks()
    )
    with pytest.raises(NoTaskToComplete) as excinfo:
        facade.complete_task(Learner(), now=NOW)
    assert excinfo.value.time_until_next == expected_wait
    assert facade.until_next_repetition(NOW) == expected_wait
    assert_membership(facade)


def test_lookahead_counts_tasks_due_within_ten_seconds():
    facade = make_facade(count=1)
    facade.complete_task(Learner(), now=NOW)
    _, task = next(facade.iter_tasks())
    due = task.next_repetition(facade.policy, facade.shared_state, facade.desired_retention)

    facade.find_tasks_to_recall(due - RECALL_LOOKAHEAD - timedelta(seconds=1))
    assert facade.tasks_to_complete() == 0
    facade.find_tasks_to_recall(due - RECALL_LOOKAHEAD)
    assert facade.tasks_to_complete() == 1


def test_failed_interaction_keeps_level_and_membership():
    facade = make_facade(count=1)
    task_id, task = next(facade.iter_tasks())

    with pytest.raises(InteractionFailed) as excinfo:
        facade.complete_task(BrokenConnection(), now=NOW)

    assert isinstance(excinfo.value.__cause__, ConnectionResetError)
    assert task.level == Level()
    assert [wrapper.task_id for wrapper in facade.tasks_pool] == [task_id]
    assert facade.tasks_to_recall == []
    facade.find_tasks_to_recall(NOW)
    assert facade.tasks_to_complete() == 1


def test_invalid_feedback_still_returns_task():
    facade = make_facade(count=1)
    with pytest.raises(ValueError):
        facade.complete_task(Learner(choice=5), now=NOW)
    assert facade.tasks_total() == 1
    assert_membership(facade)


def test_remove_and_get():
    facade = make_facade(count=2)
    task_id = facade.insert(Task.from_blocks(exercise(9)))
    assert facade.get(task_id) is not None
    assert facade.remove(task_id)
    assert facade.get(task_id) is None
    assert not facade.remove(task_id)
    assert facade.tasks_total() == 2


@pytest.mark.parametrize("goal", [0.0, 1.0, 1.2])
def test_desired_retention_is_validated(goal):
    with pytest.raises(ValueError):
        make_facade().set_desired_retention(goal)
    with pytest.raises(ValueError):
        Facade("bad", desired_retention=goal)


def test_higher_retention_brings_next_review_closer():
    facade = make_facade(count=1)
    facade.complete_task(Learner(), now=NOW)
    relaxed = facade.until_next_repetition(NOW)
    facade.set_desired_retention(0.97, now=NOW)
    assert facade.desired_retention == 0.97
    assert facade.until_next_repetition(NOW) < relaxed


def test_optimize_without_history_fails_and_keeps_weights():
    facade = make_facade()
    weights = facade.shared_state
    with pytest.raises(OptimizeFailed):
        facade.optimize(now=NOW)
    assert facade.shared_state is weights


def test_optimize_with_leitner_fails():
    facade = make_facade(policy=LeitnerPolicy())
    with pytest.raises(OptimizeFailed):
        facade.optimize(now=NOW)
    assert facade.shared_state == ()


def test_optimize_replaces_weights_on_success():
    policy = FSRSPolicy(optimizer=FSRSOptimizer(max_iterations=5000, tolerance=1e-3))
    facade = Facade("history", policy, rng=random.Random(1))
    histories = [
        ((3, 0), (3, 3), (3, 8), (1, 20), (3, 1)),
        ((3, 0), (1, 2), (3, 1), (3, 3)),
        ((4, 0), (3, 10), (3, 25)),
        ((2, 0), (1, 1), (3, 1), (1, 4)),
        ((3, 0), (3, 0), (3, 2), (3, 6)),
    ]
    for number, history in enumerate(histories):
        task = Task.from_blocks(exercise(number))
        task.level = Level(history, NOW)
        facade.insert(task)

    facade.optimize(now=NOW)

    assert isinstance(facade.shared_state, Weights)
    assert facade.shared_state.version == "optimized"
    assert_membership(facade)


def test_migrate_rebuilds_tasks_without_history():
    facade = make_facade(desired_retention=0.9)
    for _ in range(3):
        facade.complete_task(Learner(), now=NOW)

    migrated = facade.migrate(LeitnerPolicy())

    assert migrated.name == facade.name
    assert migrated.desired_retention == 0.9
    assert migrated.policy.name == "leitner"
    assert migrated.shared_state == ()
    assert migrated.tasks_total() == 3
    assert all(not task.level.is_started for _, task in migrated.iter_tasks())
    assert Counter(task.input_blocks for _, task in migrated.iter_tasks()) == Counter(
        task.input_blocks for _, task in facade.iter_tasks()
    )


def test_snapshot_round_trip_preserves_lists():
    facade = make_facade(count=4)
    facade.complete_task(Learner(), now=NOW)
    facade.complete_task(Learner(correct=False, choice=0), now=NOW)

    restored = Facade.from_storage(facade.to_storage_dict())

    assert restored.name == facade.name
    assert restored.desired_retention == facade.desired_retention
    assert restored.shared_state == facade.shared_state
    assert [(w.task_id, w.task) for w in restored.tasks_pool] == [
        (w.task_id, w.task) for w in facade.tasks_pool
    ]
    assert [(w.task_id, w.task) for w in restored.tasks_to_recall] == [
        (w.task_id, w.task) for w in facade.tasks_to_recall
    ]


def test_stateful_pool_rejects_stateless_tasks():
    facade = make_facade(count=1)
    with pytest.raises(TypeError):
        facade.insert(StatelessTask("card-1"))
    assert facade.tasks_total() == 1
    assert Facade.from_storage(facade.to_storage_dict()).tasks_total() == 1


@pytest.mark.parametrize("second_list", ["tasks_pool", "tasks_to_recall"])
def test_snapshot_with_repeated_id_is_rejected(second_list):
    facade = make_facade(count=1)
    payload = facade.to_storage_dict()
    payload[second_list] = payload[second_list] + list(payload["tasks_pool"])
    with pytest.raises(ValueError):
        Facade.from_storage(payload)


def test_snapshot_records_policy_name():
    payload = make_facade(policy=LeitnerPolicy()).to_storage_dict()
    assert payload["policy"] == "leitner"
    assert isinstance(Facade.from_storage(payload).policy, LeitnerPolicy)


class DictStore:
    def __init__(self, content):
        self.content = content

    def get_blocks(self, content_id):
        return self.content.get(content_id)


def make_store(*numbers):
    content = {}
    for number in numbers:
        item = exercise(number)
        content[f"card-{number}"] = (item.blocks, item.answer, [])
    return DictStore(content)


def test_stateless_pool_starts_due_and_completes_from_store():
    store = make_store(1, 2)
    facade = StatelessFacade(
        "user-1", FSRSPolicy(), store, content_ids=["card-1", "card-2"], rng=random.Random(3)
    )
    assert facade.tasks_to_complete() == 2

    task_id = facade.complete_task(Learner(), now=NOW)

    assert task_id in {"card-1", "card-2"}
    assert facade.get(task_id).level.is_started
    assert_membership(facade)


def test_stateless_pool_missing_content_propagates():
    facade = StatelessFacade("user-1", FSRSPolicy(), make_store(), content_ids=["card-1"])
    with pytest.raises(NotFound):
        facade.complete_task(Learner(), now=NOW)
    assert facade.tasks_total() == 1


def test_stateless_pool_rejects_duplicate_content():
    facade = StatelessFacade("user-1", FSRSPolicy(), make_store(1), content_ids=["card-1"])
    with pytest.raises(ValueError):
        facade.add_content("card-1")


def test_stateless_migrate_and_snapshot():
    store = make_store(1, 2)
    facade = StatelessFacade("user-1", FSRSPolicy(), store, content_ids=["card-1", "card-2"])
    facade.complete_task(Learner(), now=NOW)

    migrated = facade.migrate(LeitnerPolicy())
    assert sorted(task_id for task_id, _ in migrated.iter_tasks()) == ["card-1", "card-2"]
    assert migrated.tasks_to_complete() == 2

    restored = StatelessFacade.from_storage(facade.to_storage_dict(), store)
    assert restored.owner == "user-1"
    assert dict(restored.iter_tasks()) == dict(facade.iter_tasks())
