import json
import random
import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from ssr.blocks import BlocksWithAnswer, OneOf, Placeholder, paragraph
from ssr.errors import StorageError
from ssr.facade import Facade, StatelessFacade
from ssr.fsrs_engine import FSRSPolicy
from ssr.sm2 import SuperMemo2Policy
from ssr.storage import load_facade, load_stateless_facade, save_facade

NOW = datetime(2024, 1, 1, 12, tzinfo=timezone.utc)


def answer_good(blocks):
    if isinstance(blocks[-1], OneOf):
        return [[] for _ in blocks[:-1]] + [["1"]]
    return [["Straße"]]


def make_facade(policy=None) -> Facade:
    facade = Facade("deutsch", policy, rng=random.Random(5))
    for word in ("Straße", "Brücke"):
        facade.create_task(BlocksWithAnswer((paragraph(f"{word} means ", Placeholder()),), [[word]]))
    return facade


def test_save_and_load_round_trip(tmp_path):
    facade = make_facade()
    facade.complete_task(answer_good, now=NOW)
    path = tmp_path / "nested" / "pool.json"

    save_facade(facade, path)
    restored = load_facade(path)

    assert restored.to_storage_dict() == facade.to_storage_dict()


def test_snapshot_is_indented_utf8_json(tmp_path):
    path = save_facade(make_facade(), tmp_path / "pool.json")
    text = path.read_text(encoding="utf-8")
    assert "Straße" in text
    assert '\n    "name": "deutsch"' in text
    assert json.loads(text)["policy"] == "fsrs"


def test_save_leaves_no_temporary_files(tmp_path):
    save_facade(make_facade(), tmp_path / "pool.json")
    save_facade(make_facade(SuperMemo2Policy()), tmp_path / "pool.json")
    assert [p.name for p in tmp_path.iterdir()] == ["pool.json"]
    assert load_facade(tmp_path / "pool.json").policy.name == "sm2"


def test_load_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_facade(tmp_path / "missing.json")


@pytest.mark.parametrize(
    "content",
    [
        "{not json",
        "[1, 2, 3]",
        json.dumps({"name": "x", "policy": "anki"}),
        json.dumps({"name": "x", "policy": "fsrs", "shared_state": {"weights": [1.0]}}),
        json.dumps({"name": "x", "tasks_pool": [{"task": {}}]}),
    ],
)
def test_load_malformed_snapshot(tmp_path, content):
    path = tmp_path / "pool.json"
    path.write_text(content, encoding="utf-8")
    with pytest.raises(StorageError):
        load_facade(path)


def test_load_with_explicit_policy(tmp_path):
    path = save_facade(make_facade(), tmp_path / "pool.json")
    assert isinstance(load_facade(path, policy=FSRSPolicy()).policy, FSRSPolicy)


class DictStore:
    def get_blocks(self, content_id):
        return None


def test_stateless_snapshot(tmp_path):
    facade = StatelessFacade(42, FSRSPolicy(), DictStore(), content_ids=[1, 2])
    path = save_facade(facade, tmp_path / "stateless.json")
    restored = load_stateless_facade(path, DictStore())
    assert restored.owner == 42
    assert sorted(task.content_id for _, task in restored.iter_tasks()) == [1, 2]


def test_load_rejects_task_in_both_lists(tmp_path):
    payload = make_facade().to_storage_dict()
    payload["tasks_to_recall"] = [payload["tasks_pool"][0]]
    path = tmp_path / "pool.json"
    path.write_text(json.dumps(payload), encoding="utf-8")
    with pytest.raises(StorageError):
        load_facade(path)
