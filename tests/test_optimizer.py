import math
import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from ssr.errors import OptimizeFailed
from ssr.fsrs_engine import FSRSPolicy, Weights
from ssr.level import Level, Review
from ssr.optimizer import (
    PARAM_BOUNDS,
    FSRSOptimizer,
    Sample,
    collect_histories,
    extract_first_long_term_reviews,
    optimize_weights,
    training_samples,
)

NOW = datetime(2024, 6, 1, tzinfo=timezone.utc)


def history(*pairs):
    return tuple(Review(grade, elapsed) for grade, elapsed in pairs)


TRAINING_HISTORIES = [
    history((3, 0), (3, 3), (3, 8), (1, 20), (3, 1)),
    history((3, 0), (1, 2), (3, 1), (3, 3)),
    history((4, 0), (3, 10), (3, 25)),
    history((2, 0), (1, 1), (3, 1), (1, 4)),
    history((3, 0), (3, 0), (3, 2), (3, 6)),
    history((3, 0), (3, 4), (1, 12), (3, 2), (3, 5)),
]


def test_first_long_term_prefix_is_extracted():
    prefixes = extract_first_long_term_reviews(
        [
            history((3, 0), (3, 0), (3, 2), (3, 5)),
            history((3, 0), (3, 4)),
            history((3, 0), (3, 0)),
        ]
    )
    assert prefixes == [history((3, 0), (3, 0), (3, 2))]


def test_collect_histories_skips_unstarted_and_same_day_levels():
    levels = [
        Level(),
        Level(history((3, 0), (3, 0)), NOW),
        Level(history((3, 0), (3, 2), (3, 5)), NOW),
    ]
    assert collect_histories(levels) == [
        history((3, 0), (3, 2), (3, 5)),
        history((3, 0), (3, 2)),
    ]


def test_first_long_term_prefix_adds_a_distinct_sample():
    levels = [Level(history((3, 0), (3, 0), (3, 2), (3, 5)), NOW)]

    samples = training_samples(collect_histories(levels))

    assert samples == [
        Sample(history((3, 0), (3, 0), (3, 2)), 5, True),
        Sample(history((3, 0), (3, 0)), 2, True),
    ]
    assert len(set(samples)) == len(samples)


def test_each_history_is_scored_on_its_last_review():
    samples = training_samples(
        [
            history((3, 0), (1, 4), (3, 1)),
            history((3, 0), (3, 3), (1, 0)),
            history((3, 0),),
        ]
    )
    assert samples == [Sample(history((3, 0), (1, 4)), 1, True)]


def test_optimize_weights_without_history_fails():
    with pytest.raises(OptimizeFailed):
        optimize_weights([Level(), Level(history((3, 0)), NOW)])


def test_fit_stays_within_bounds_and_does_not_increase_loss():
    result = FSRSOptimizer(max_iterations=5000, tolerance=1e-3).fit(TRAINING_HISTORIES)

    assert result.final_loss <= result.initial_loss
    assert result.improvement_percent >= 0
    assert result.samples > 0
    assert result.weights.version == "optimized"
    for value, (low, high) in zip(result.weights.values, PARAM_BOUNDS):
        assert low <= value <= high
        assert math.isfinite(value)


def test_fit_clips_out_of_range_starting_weights():
    start = Weights((500.0,) + Weights().values[1:])
    result = FSRSOptimizer(max_iterations=5000, tolerance=1e-3).fit(TRAINING_HISTORIES, start)
    assert result.weights[0] <= PARAM_BOUNDS[0][1]


def test_fit_exhausting_iterations_fails():
    with pytest.raises(OptimizeFailed):
        FSRSOptimizer(max_iterations=1, tolerance=0.0).fit(TRAINING_HISTORIES)


def test_fit_without_long_term_reviews_fails():
    with pytest.raises(OptimizeFailed):
        FSRSOptimizer().fit([history((3, 0), (3, 0))])


def test_policy_optimize_returns_new_weights():
    policy = FSRSPolicy(optimizer=FSRSOptimizer(max_iterations=5000, tolerance=1e-3))
    levels = [Level(item, NOW) for item in TRAINING_HISTORIES]
    weights = policy.optimize(Weights(), levels)
    assert isinstance(weights, Weights)
    assert len(weights) == 19
