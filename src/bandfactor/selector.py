# selector.py
"""
Weighted algorithm choice for the hybrid band.

Weights start from fixed priors, are biased by the bit size of the input and
learn from outcomes: a success adds ``lr / (time_ms + 1)``, a failure
multiplies by ``1 - lr``. Weights are renormalised after every update.
"""
from __future__ import annotations

import time
from collections import deque
from dataclasses import dataclass, field
from statistics import fmean

ALGORITHMS = ("trial_division", "pollard_rho", "ecm", "quadratic_sieve", "gnfs", "distributed")

PRIOR_WEIGHTS: dict[str, float] = {
    "trial_division": 0.1,
    "pollard_rho": 0.2,
    "ecm": 0.3,
    "quadratic_sieve": 0.25,
    "gnfs": 0.1,
    "distributed": 0.05,
}

# (upper bit bound exclusive, multipliers)
SIZE_BIAS: tuple[tuple[int | None, dict[str, float]], ...] = (
    (1200, {"pollard_rho": 2.0, "trial_division": 1.5}),
    (1600, {"ecm": 2.0, "quadratic_sieve": 1.5}),
    (None, {"gnfs": 2.0, "distributed": 2.0}),
)


@dataclass(frozen=True)
class AlgorithmPerformance:
    algorithm: str
    bit_size: int
    success: bool
    processing_time_ms: float
    timestamp: float = field(default_factory=time.time)


def _normalise(weights: dict[str, float]) -> dict[str, float]:
    total = sum(weights.values())
    if total <= 0:
        return {k: 1.0 / len(weights) for k in weights}
    return {k: v / total for k, v in weights.items()}


class AdaptiveSelector:
    def __init__(self, learning_rate: float = 0.1, history_size: int = 1000,
                 priors: dict[str, float] | None = None):
        self.learning_rate = learning_rate
        self.weights = _normalise(dict(priors or PRIOR_WEIGHTS))
        self.history: deque[AlgorithmPerformance] = deque(maxlen=history_size)

    @staticmethod
    def bias(bit_size: int) -> dict[str, float]:
        for bound, mult in SIZE_BIAS:
            if bound is None or bit_size < bound:
                return mult
        return {}

    def scores(self, bit_size: int) -> dict[str, float]:
        mult = self.bias(bit_size)
        return {a: w * mult.get(a, 1.0) for a, w in self.weights.items()}

    def ranking(self, bit_size: int, exclude=()) -> list[str]:
        scores = self.scores(bit_size)
        order = sorted(scores, key=lambda a: (-scores[a], ALGORITHMS.index(a) if a in ALGORITHMS else 99))
        return [a for a in order if a not in exclude]

    def select(self, bit_size: int, exclude=()) -> str | None:
        ranked = self.ranking(bit_size, exclude)
        return ranked[0] if ranked else None

    def update(self, algorithm: str, success: bool, processing_time_ms: float, bit_size: int = 0) -> dict[str, float]:
        if algorithm not in self.weights:
            raise KeyError(algorithm)
        lr = self.learning_rate
        if success:
            self.weights[algorithm] += lr / (processing_time_ms + 1.0)
        else:
            self.weights[algorithm] *= (1.0 - lr)
        self.weights = _normalise(self.weights)
        self.history.append(AlgorithmPerformance(algorithm, bit_size, success, processing_time_ms))
        return dict(self.weights)

    def analysis(self) -> dict[str, dict[str, float]]:
        """Per-algorithm attempts, success rate and mean time over the retained history."""
        out: dict[str, dict[str, float]] = {}
        for algo in self.weights:
            runs = [p for p in self.history if p.algorithm == algo]
            wins = sum(1 for p in runs if p.success)
            out[algo] = {
                "attempts": len(runs),
                "success_rate": wins / len(runs) if runs else 0.0,
                "average_time_ms": fmean(p.processing_time_ms for p in runs) if runs else 0.0,
                "weight": self.weights[algo],
            }
        return out
