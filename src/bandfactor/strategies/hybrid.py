# strategies/hybrid.py
"""
1025-2048 bit inputs factored by an adaptively chosen algorithm.

The attempt loop asks the ``AdaptiveSelector`` for the best algorithm for the
largest pending composite and lets it split everything it can. The outcome
is fed back into the weights. The loop ends after the first algorithm that
splits anything, when the selector repeats itself, or after
``MAX_ALGORITHM_ATTEMPTS`` choices. Whatever is left goes through the fallback
chain: the multi-test primality verdict first, then Williams p+1, SQUFOF and
advanced trial division.
"""
from __future__ import annotations

import logging
import math
import time
from statistics import fmean, pstdev

from bandfactor.algorithms import (
    divide_out,
    ecm,
    gnfs_standin,
    pollard_rho,
    quadratic_sieve,
    smallest_divisor,
    split_completely,
    squfof,
    williams_p_plus_1,
)
from bandfactor.bands import Band, ProcessingStrategy, band_of, bit_length
from bandfactor.context import FactorizationResult
from bandfactor.errors import (
    AlgorithmExhaustedError,
    BandConfigurationError,
    CollaboratorNotConfiguredError,
    InputValidationError,
)
from bandfactor.operations import (
    AdaptiveFactorOp,
    AlgorithmSelectionOp,
    CrossBandOptimizeOp,
    FactorOp,
    IsPrimeOp,
    PerformanceAnalysisOp,
    UpdateWeightsOp,
)
from bandfactor.primality import deterministic_primality, is_probable_prime
from bandfactor.registry import strategy
from bandfactor.runtime import CFG
from bandfactor.selector import AdaptiveSelector
from bandfactor.strategies.base import BandStrategy
from bandfactor.strategies.parallel_sieve import first_divisor_task
from bandfactor.utility import Deadline, perfect_power

logger = logging.getLogger(__name__)

TRIAL_LIMIT = 1 << 20
RHO_ITERATIONS = 1_000_000
ECM_CURVES = 20
ECM_B1 = 11000


@strategy(band=Band.ULTRASONIC_1, name=ProcessingStrategy.HYBRID_STRATEGY)
class HybridStrategy(BandStrategy):
    ACCELERATION = 35.0
    MEMORY_ESTIMATE = 256 * 1024 * 1024
    OPERATIONS = (FactorOp, IsPrimeOp, AdaptiveFactorOp, AlgorithmSelectionOp, PerformanceAnalysisOp,
                  UpdateWeightsOp, CrossBandOptimizeOp)

    def __init__(self, *args, **kw):
        super().__init__(*args, **kw)
        self.selector = AdaptiveSelector(
            learning_rate=float(CFG("HYBRID.LEARNING_RATE", 0.1)),
            history_size=int(CFG("HYBRID.HISTORY_SIZE", 1000)),
        )
        self.max_attempts = int(CFG("HYBRID.MAX_ALGORITHM_ATTEMPTS", 3))
        self.adaptive_successes = 0
        self.fallback_usage = 0
        self.cross_band_optimizations = 0

    def handlers(self):
        return {
            **super().handlers(),
            AdaptiveFactorOp: lambda op, dl: self._factorize(op.n, dl),
            AlgorithmSelectionOp: lambda op, dl: self.algorithm_selection(op.n),
            PerformanceAnalysisOp: lambda op, dl: self.performance_analysis(),
            UpdateWeightsOp: lambda op, dl: self.update_weights(op.algorithm, op.success, op.processing_time_ms),
            CrossBandOptimizeOp: lambda op, dl: self.cross_band_optimize(op.numbers),
        }

    # --- algorithms ----------------------------------------------------------

    def _pool_fan_out(self, m: int) -> int | None:
        pool = self._require("worker_pool", "distributed")
        tasks = [("rho", m, s, RHO_ITERATIONS // 4) for s in range(1, 5)]
        tasks += [("ecm", m, self.rng.randrange(6, 1 << 32), ECM_B1) for _ in range(8)]
        results = pool.map_ordered(first_divisor_task, tasks, fallback=lambda *a: None)
        return next((d for d in results if d), None)

    def _run(self, algorithm: str, m: int, deadline: Deadline) -> int | None:
        if algorithm == "trial_division":
            return smallest_divisor(m, TRIAL_LIMIT, deadline)
        if algorithm == "pollard_rho":
            return pollard_rho(m, self.rng, max_iterations=RHO_ITERATIONS, deadline=deadline)
        if algorithm == "ecm":
            return ecm(m, curves=ECM_CURVES, b1=ECM_B1, rng=self.rng, deadline=deadline)
        if algorithm == "quadratic_sieve":
            return quadratic_sieve(m, deadline=deadline)
        if algorithm == "gnfs":
            return gnfs_standin(m, deadline=deadline)
        if algorithm == "distributed":
            return self._pool_fan_out(m)
        raise InputValidationError(f"unknown algorithm '{algorithm}'")

    # --- attempt loop --------------------------------------------------------

    def _settle(self, m: int, fmap: dict[int, int], pending: list[int]) -> None:
        """Prime pieces go to ``fmap``; composites are queued."""
        if m == 1:
            return
        if is_probable_prime(m, self.rng):
            fmap[m] = fmap.get(m, 0) + 1
            return
        pp = perfect_power(m)
        if pp is not None:
            base, k = pp
            for _ in range(k):
                self._settle(base, fmap, pending)
            return
        pending.append(m)

    def _attempt(self, algorithm: str, pending: list[int], fmap: dict[int, int], deadline: Deadline) -> bool:
        """Split every pending composite as far as ``algorithm`` gets; unsplit ones stay pending."""
        queue, pending[:] = list(pending), []
        split = False
        while queue:
            deadline.check()
            m = queue.pop()
            try:
                d = self._run(algorithm, m, deadline)
            except ArithmeticError as e:
                logger.debug("%s raised on %d-bit input: %s", algorithm, m.bit_length(), e)
                d = None
            except CollaboratorNotConfiguredError as e:
                logger.warning("%s attempt skipped: %s", algorithm, e)
                pending.append(m)
                pending.extend(queue)
                return split
            if not d or not 1 < d < m:
                pending.append(m)
                continue
            split = True
            if is_probable_prime(d, self.rng):
                self._settle(divide_out(m, d, fmap), fmap, queue)
            else:
                self._settle(d, fmap, queue)
                self._settle(m // d, fmap, queue)
        return split

    def _adaptive(self, pending: list[int], fmap: dict[int, int], deadline: Deadline, used: list[str]) -> None:
        """Selector-driven attempts; raises ``AlgorithmExhaustedError`` when composites remain."""
        while pending and len(used) < self.max_attempts:
            bits = bit_length(max(pending))
            algorithm = self.selector.select(bits)
            if algorithm is None or algorithm in used:
                break
            used.append(algorithm)
            t0 = time.perf_counter()
            ok = self._attempt(algorithm, pending, fmap, deadline)
            self.selector.update(algorithm, ok, (time.perf_counter() - t0) * 1000.0, bits)
            if ok:
                self.adaptive_successes += 1
                break
        if pending:
            raise AlgorithmExhaustedError(used, pending)

    def _factorize(self, n: int, deadline: Deadline) -> FactorizationResult:
        fmap: dict[int, int] = {}
        pending: list[int] = []
        self._settle(n, fmap, pending)
        used: list[str] = []
        try:
            self._adaptive(pending, fmap, deadline, used)
        except AlgorithmExhaustedError as e:
            logger.debug("fallback chain: %s", e)
            self.fallback_usage += 1
            fallback: list[str] = []
            unsplit: list[int] = []
            for m in e.remaining:
                self._fallback(m, fmap, deadline, fallback, unsplit)
            tag = f"hybrid-adaptive({','.join(used)})"
            if fallback:
                tag += f"+fallback({','.join(dict.fromkeys(fallback))})"
            return self._result(n, fmap, tag, unsplit)
        return self._result(n, fmap, f"hybrid-adaptive({','.join(used)})")

    def _fallback(self, m: int, fmap: dict[int, int], deadline: Deadline, methods: list[str],
                  unsplit: list[int]) -> None:
        if deterministic_primality(m, self.rng):
            fmap[m] = fmap.get(m, 0) + 1
            methods.append("deterministic-primality")
            return
        split_completely(m, [
            ("williams-p+1", lambda x: williams_p_plus_1(x, deadline=deadline)),
            ("continued-fraction", lambda x: squfof(x, deadline=deadline)),
            ("advanced-trial-division", lambda x: smallest_divisor(x, TRIAL_LIMIT, deadline)),
        ], fmap, rng=self.rng, deadline=deadline, methods=methods, unsplit=unsplit)

    def is_prime(self, n: int, deadline: Deadline) -> bool:
        return deterministic_primality(n, self.rng)

    # --- selector surface ----------------------------------------------------

    def algorithm_selection(self, n: int) -> dict:
        bits = bit_length(n)
        return {"algorithm": self.selector.select(bits), "bit_size": bits,
                "scores": self.selector.scores(bits)}

    def performance_analysis(self) -> dict:
        return {
            "algorithms": self.selector.analysis(),
            "weights": dict(self.selector.weights),
            "history_size": len(self.selector.history),
            "adaptive_successes": self.adaptive_successes,
            "fallback_usage": self.fallback_usage,
            "cross_band_optimizations": self.cross_band_optimizations,
        }

    def update_weights(self, algorithm: str, success: bool, processing_time_ms: float) -> dict[str, float]:
        try:
            return self.selector.update(algorithm, bool(success), float(processing_time_ms))
        except KeyError:
            raise InputValidationError(f"unknown algorithm '{algorithm}'") from None

    def cross_band_optimize(self, numbers) -> dict:
        if not numbers:
            raise InputValidationError("crossBandOptimize needs at least one number")
        recs = []
        for n in numbers:
            if isinstance(n, bool) or not isinstance(n, int) or n < 1:
                raise InputValidationError(f"expected a positive integer, got {n!r}")
            bits = bit_length(n)
            try:
                band = band_of(bits, max_bits=self.config.max_bits)
            except BandConfigurationError:
                band = None
            recs.append({"n": n, "bits": bits, "band": band.name if band else None,
                         "strategy": band.strategy.value if band else None,
                         "algorithm": self.selector.select(bits)})
        sizes = [r["bits"] for r in recs]
        spread = pstdev(sizes)
        avg = fmean(sizes)
        preprocessing = ["sort_by_size"] if spread > 100 else []
        self.cross_band_optimizations += 1
        return {
            "recommendations": recs,
            "average_bit_size": avg,
            "bit_size_spread": spread,
            "estimated_complexity": avg * math.log(len(sizes)) if len(sizes) > 1 else avg,
            "batch_size_adjustment": 0.5 if spread > 100 else 1.0,
            "recommended_preprocessing": preprocessing,
            "algorithm_override": "gnfs" if avg > 1800 else None,
        }

    def process_batch(self, numbers, deadline):
        if len(numbers) > 1:
            self.cross_band_optimize(numbers)
        return [self.factorize(n, deadline) for n in numbers]
