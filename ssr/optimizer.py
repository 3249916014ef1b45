"""FSRS weight fitting from accumulated review histories.

Every history contributes one training point, its last review, when that
review came on a later day (``elapsed_days > 0``): the model predicts recall
probability from the memory state replayed over the preceding reviews and is
scored against whether the review was passed (any grade above *Again*).
Prefixes ending at the first long-term review are added as extra histories so
the early transition is scored too. The weights minimising the mean binary
cross-entropy, plus a small L2 pull towards the default preset, are found by
projected gradient descent with finite-difference gradients.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Iterable, List, NamedTuple, Optional, Sequence, Tuple

from ssr.errors import OptimizeFailed
from ssr.fsrs_engine import DEFAULT_WEIGHTS, Rating, Weights, replay_memory_state, retrievability
from ssr.level import History, Level

logger = logging.getLogger(__name__)

# Clipping ranges for the 19 FSRS-5 weights.
PARAM_BOUNDS: Tuple[Tuple[float, float], ...] = (
    (0.01, 100.0),  # w[0]: initial stability Again
    (0.01, 100.0),  # w[1]: initial stability Hard
    (0.01, 100.0),  # w[2]: initial stability Good
    (0.01, 100.0),  # w[3]: initial stability Easy
    (1.0, 10.0),  # w[4]: initial difficulty
    (0.001, 4.0),  # w[5]: initial difficulty grade scaling
    (0.001, 4.0),  # w[6]: difficulty step
    (0.001, 0.75),  # w[7]: difficulty mean reversion
    (0.0, 4.5),  # w[8]: recall stability scale
    (0.0, 0.8),  # w[9]: recall stability saturation
    (0.001, 3.5),  # w[10]: recall retrievability gain
    (0.001, 5.0),  # w[11]: forget stability scale
    (0.001, 0.25),  # w[12]: forget difficulty exponent
    (0.001, 0.9),  # w[13]: forget stability exponent
    (0.0, 4.0),  # w[14]: forget retrievability gain
    (0.0, 1.0),  # w[15]: hard penalty
    (1.0, 6.0),  # w[16]: easy bonus
    (0.0, 2.0),  # w[17]: short-term scale
    (0.0, 2.0),  # w[18]: short-term offset
)

EPSILON = 1e-7


@dataclass
class OptimizationResult:
    weights: Weights
    initial_loss: float
    final_loss: float
    iterations: int
    samples: int

    @property
    def improvement_percent(self) -> float:
        if self.initial_loss <= 0:
            return 0.0
        return (self.initial_loss - self.final_loss) / self.initial_loss * 100


def extract_first_long_term_reviews(histories: Iterable[History]) -> List[History]:
    """Prefixes ending at the first review made on a later day.

    Only prefixes strictly shorter than their history are returned; they add
    the first short-to-long-term transition as an extra training signal.
    """

    prefixes: List[History] = []
    for history in histories:
        prefix: List = []
        for review in history:
            prefix.append(review)
            if review.elapsed_days >= 1:
                break
        if not prefix or prefix[-1].elapsed_days < 1 or len(prefix) == len(history):
            continue
        prefixes.append(tuple(prefix))
    return prefixes


def collect_histories(levels: Iterable[Level]) -> List[History]:
    histories = [history for history in (level.long_term_history() for level in levels) if history]
    histories.extend(extract_first_long_term_reviews(histories))
    return histories


class Sample(NamedTuple):
    prefix: History
    elapsed_days: int
    recalled: bool


def training_samples(histories: Sequence[History]) -> List[Sample]:
    """One sample per history: its last review, predicted from the reviews before it.

    Histories whose last review happened on the same day as the previous one
    carry no long-term signal and are skipped.
    """

    samples: List[Sample] = []
    for history in histories:
        if len(history) < 2:
            continue
        target = history[-1]
        if target.elapsed_days <= 0:
            continue
        samples.append(Sample(history[:-1], target.elapsed_days, target.grade > Rating.AGAIN))
    return samples


class FSRSOptimizer:
    """Fits FSRS weights by minimising log-loss on observed recalls."""

    def __init__(
        self,
        *,
        max_iterations: int = 1000,
        learning_rate: float = 0.05,
        tolerance: float = 1e-5,
        regularization_strength: float = 0.01,
        gradient_step: float = 1e-4,
    ) -> None:
        self.max_iterations = max_iterations
        self.learning_rate = learning_rate
        self.tolerance = tolerance
        self.regularization = regularization_strength
        self.gradient_step = gradient_step

    def _compute_loss(self, w: Sequence[float], samples: Sequence[Sample]) -> float:
        total = 0.0
        for sample in samples:
            try:
                state = replay_memory_state(sample.prefix, w)
                predicted = retrievability(sample.elapsed_days, state.stability)
            except (OverflowError, ValueError, ZeroDivisionError):
                return float("inf")
            predicted = min(max(predicted, EPSILON), 1 - EPSILON)
            if sample.recalled:
                total -= math.log(predicted)
            else:
                total -= math.log(1 - predicted)
        loss = total / len(samples)

        if self.regularization > 0:
            penalty = sum(
                ((value - default) / (high - low)) ** 2
                for value, default, (low, high) in zip(w, DEFAULT_WEIGHTS, PARAM_BOUNDS)
            )
            loss += self.regularization * penalty / len(w)
        return loss

    def _compute_gradient(
        self, w: Sequence[float], samples: Sequence[Sample], base_loss: float
    ) -> List[float]:
        gradient = [0.0] * len(w)
        for i in range(len(w)):
            shifted = list(w)
            shifted[i] += self.gradient_step
            gradient[i] = (self._compute_loss(shifted, samples) - base_loss) / self.gradient_step
        return gradient

    @staticmethod
    def _clip(w: Sequence[float]) -> List[float]:
        return [min(max(value, low), high) for value, (low, high) in zip(w, PARAM_BOUNDS)]

    def fit(self, histories: Sequence[History], initial: Optional[Weights] = None) -> OptimizationResult:
        samples = training_samples(histories)
        if not samples:
            raise OptimizeFailed("No review history with a long-term interval to learn from")

        w = self._clip((initial or Weights()).values)
        loss = self._compute_loss(w, samples)
        if not math.isfinite(loss):
            raise OptimizeFailed("Loss is not finite for the starting weights")
        initial_loss = loss
        learning_rate = self.learning_rate

        for iteration in range(1, self.max_iterations + 1):
            gradient = self._compute_gradient(w, samples, loss)
            if not all(math.isfinite(g) for g in gradient):
                raise OptimizeFailed("Gradient is not finite")
            candidate = self._clip([value - learning_rate * g for value, g in zip(w, gradient)])
            candidate_loss = self._compute_loss(candidate, samples)

            if math.isfinite(candidate_loss) and candidate_loss <= loss:
                improvement = loss - candidate_loss
                w, loss = candidate, candidate_loss
                if improvement < self.tolerance:
                    return self._result(w, initial_loss, loss, iteration, len(samples))
                learning_rate *= 1.2
            else:
                learning_rate *= 0.5
                if learning_rate < 1e-8:
                    return self._result(w, initial_loss, loss, iteration, len(samples))

        raise OptimizeFailed(
            f"Optimisation did not converge within {self.max_iterations} iterations"
        )

    @staticmethod
    def _result(
        w: Sequence[float], initial_loss: float, final_loss: float, iterations: int, samples: int
    ) -> OptimizationResult:
        logger.info(
            f"Converged at iteration {iterations}: loss {initial_loss:.4f} -> {final_loss:.4f} "
            f"on {samples} reviews"
        )
        return OptimizationResult(
            weights=Weights(tuple(w), "optimized"),
            initial_loss=initial_loss,
            final_loss=final_loss,
            iterations=iterations,
            samples=samples,
        )


def optimize_weights(
    levels: Iterable[Level],
    initial: Optional[Weights] = None,
    optimizer: Optional[FSRSOptimizer] = None,
) -> OptimizationResult:
    """Fit new weights for the levels of a pool; raises :class:`OptimizeFailed`."""

    histories = collect_histories(levels)
    if not histories:
        raise OptimizeFailed("No started task has a long-term review history")
    logger.info(f"Optimizing FSRS weights on {len(histories)} review histories")
    return (optimizer or FSRSOptimizer()).fit(histories, initial=initial)


__all__ = [
    "FSRSOptimizer",
    "OptimizationResult",
    "PARAM_BOUNDS",
    "Sample",
    "collect_histories",
    "extract_first_long_term_reviews",
    "optimize_weights",
    "training_samples",
]
