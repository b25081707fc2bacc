# metrics.py
"""
Per-strategy counters and the scoring functions that turn them into
``BandMetrics``.

The formulas are reporting heuristics, not algorithmic contracts. Each one is
a plain function of a ``MetricInputs`` snapshot and can be swapped on a
``MetricsScorer`` instance.
"""
from __future__ import annotations

import math
import statistics
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field

from bandfactor.context import BandMetrics
from bandfactor.utility import clamp


@dataclass
class StrategyCounters:
    operations: int = 0
    successes: int = 0
    failures: int = 0
    total_time_ms: float = 0.0
    durations: deque = field(default_factory=lambda: deque(maxlen=100))

    @property
    def average_time_ms(self) -> float:
        return self.total_time_ms / self.operations if self.operations else 0.0

    @property
    def success_rate(self) -> float:
        return self.successes / self.operations if self.operations else 1.0

    def record(self, duration_ms: float, success: bool) -> None:
        self.operations += 1
        if success:
            self.successes += 1
        else:
            self.failures += 1
        self.total_time_ms += duration_ms
        self.durations.append(duration_ms)

    def as_dict(self) -> dict[str, float]:
        return {
            "operations": self.operations,
            "successes": self.successes,
            "failures": self.failures,
            "total_time_ms": self.total_time_ms,
            "average_time_ms": self.average_time_ms,
        }


@dataclass(frozen=True)
class MetricInputs:
    duration_ms: float
    acceleration: float
    memory_usage: int
    caching: bool
    operations: int
    successes: int
    failures: int
    durations: tuple[float, ...]

    @property
    def success_rate(self) -> float:
        return self.successes / self.operations if self.operations else 1.0


def coefficient_of_variation(values) -> float:
    vals = [v for v in values if v >= 0]
    if len(vals) < 2:
        return 0.0
    mean = statistics.fmean(vals)
    if mean <= 0:
        return 0.0
    return statistics.pstdev(vals) / mean


# --- default scoring functions -------------------------------------------------

def score_throughput(m: MetricInputs) -> float:
    return min(10000.0, 1000.0 / m.duration_ms) if m.duration_ms > 0 else 1000.0


def score_cache_hit_rate(m: MetricInputs) -> float:
    if not m.caching:
        return 0.0
    pressure = 1.2 if m.memory_usage < 50_000_000 else 0.8
    return max(0.5, min(0.95, 0.8 * m.success_rate * pressure))


def score_error_rate(m: MetricInputs) -> float:
    return clamp(m.failures / max(1, m.operations), 0.001, 0.1)


def efficiency(m: MetricInputs) -> float:
    return m.success_rate * (1 + math.log10(m.acceleration))


def score_prime_generation(m: MetricInputs) -> int:
    return math.floor(500 * m.acceleration * efficiency(m))


def score_factorization_rate(m: MetricInputs) -> int:
    return math.floor(100 * m.acceleration * efficiency(m))


def score_spectral_efficiency(m: MetricInputs) -> float:
    return clamp(0.8 + m.acceleration / 50 + 0.1 * m.success_rate, 0.7, 0.99)


def score_distribution_balance(m: MetricInputs) -> float:
    return clamp(0.9 + 0.05 * m.success_rate, 0.85, 0.99)


def score_precision(m: MetricInputs) -> float:
    return clamp(0.999 - 2 * score_error_rate(m), 0.95, 0.9999)


def score_stability(m: MetricInputs) -> float:
    return clamp(0.98 - coefficient_of_variation(m.durations), 0.9, 0.999)


def score_convergence(m: MetricInputs) -> float:
    return clamp(0.9 + 0.05 * m.success_rate, 0.85, 0.99)


@dataclass
class MetricsScorer:
    throughput: Callable[[MetricInputs], float] = score_throughput
    cache_hit_rate: Callable[[MetricInputs], float] = score_cache_hit_rate
    error_rate: Callable[[MetricInputs], float] = score_error_rate
    prime_generation: Callable[[MetricInputs], int] = score_prime_generation
    factorization_rate: Callable[[MetricInputs], int] = score_factorization_rate
    spectral_efficiency: Callable[[MetricInputs], float] = score_spectral_efficiency
    distribution_balance: Callable[[MetricInputs], float] = score_distribution_balance
    precision: Callable[[MetricInputs], float] = score_precision
    stability: Callable[[MetricInputs], float] = score_stability
    convergence: Callable[[MetricInputs], float] = score_convergence

    def band_metrics(self, m: MetricInputs) -> BandMetrics:
        return BandMetrics(
            throughput=self.throughput(m),
            latency=m.duration_ms,
            memory_usage=m.memory_usage,
            cache_hit_rate=self.cache_hit_rate(m),
            acceleration_factor=m.acceleration,
            error_rate=self.error_rate(m),
            prime_generation=self.prime_generation(m),
            factorization_rate=self.factorization_rate(m),
            spectral_efficiency=self.spectral_efficiency(m),
            distribution_balance=self.distribution_balance(m),
            precision=self.precision(m),
            stability=self.stability(m),
            convergence=self.convergence(m),
        )
