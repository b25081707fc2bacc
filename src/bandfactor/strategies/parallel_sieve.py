# strategies/parallel_sieve.py
"""
129-256 bit inputs on a bounded worker pool.

Work is cut into independent segments (trial-division ranges, rho seeds,
ECM curves, sub-batches), fanned out with ``WorkerPool.map_ordered`` and
reassembled by index. Tasks are module-level functions over plain ints so the
same code runs on a thread or a process pool.
"""
from __future__ import annotations

import logging
import math
import random

from bandfactor.algorithms import (
    divide_out,
    ecm_curve,
    quadratic_sieve,
    rho_with_seed,
    split_completely,
    trial_segment,
)
from bandfactor.bands import Band, ProcessingStrategy
from bandfactor.context import FactorizationResult
from bandfactor.errors import InputValidationError
from bandfactor.operations import BatchFactorOp, DistributedFactorOp, FactorOp, IsPrimeOp, ParallelSieveOp
from bandfactor.primality import is_probable_prime
from bandfactor.registry import strategy
from bandfactor.runtime import CFG
from bandfactor.sieves import segmented_sieve
from bandfactor.strategies.base import BandStrategy
from bandfactor.utility import Deadline

logger = logging.getLogger(__name__)

MAX_RANGE = 50_000_000


def sieve_task(lo: int, hi: int) -> list[int]:
    return segmented_sieve(lo, hi, segment_size=65536)


def first_divisor_task(kind: str, n: int, param: int, budget: int) -> int | None:
    """One independent splitting attempt: ``rho`` with seed ``param`` or ``ecm`` with sigma ``param``."""
    if kind == "rho":
        return rho_with_seed(n, param, budget)
    return ecm_curve(n, param, budget)


def factor_task(n: int, trial_limit: int, seeds: int, curves: int, b1: int,
                seed: int) -> tuple[dict[int, int], list[int]]:
    """Whole sequential pipeline for one batch member; runs inside a worker. Returns (fmap, unsplit)."""
    fmap: dict[int, int] = {}
    rest = n
    for p in trial_segment(n, 2, min(math.isqrt(n), trial_limit)):
        rest = divide_out(rest, p, fmap)
    rng = random.Random(seed)
    splitters = [(f"rho[{s}]", lambda m, s=s: rho_with_seed(m, s, 200_000)) for s in range(1, seeds + 1)]
    splitters.append(("ecm", lambda m: next(
        (d for d in (ecm_curve(m, rng.randrange(6, 1 << 32), b1) for _ in range(curves)) if d), None)))
    splitters.append(("qs", lambda m: quadratic_sieve(m)))
    unsplit: list[int] = []
    if rest > 1:
        split_completely(rest, splitters, fmap, rng=rng, unsplit=unsplit)
    return fmap, unsplit


@strategy(band=Band.UPPER_MID, name=ProcessingStrategy.PARALLEL_SIEVE)
class ParallelSieveStrategy(BandStrategy):
    """Parallel trial division, multi-seed rho, ECM curves and a small QS on a worker pool."""

    ACCELERATION = 12.0
    MEMORY_ESTIMATE = 64 * 1024 * 1024
    OPERATIONS = (FactorOp, IsPrimeOp, BatchFactorOp, ParallelSieveOp, DistributedFactorOp)

    def __init__(self, *args, **kw):
        super().__init__(*args, **kw)
        self.segment_size = int(CFG("PARALLEL.SEGMENT_SIZE", 65536))
        self.trial_limit = int(CFG("PARALLEL.TRIAL_LIMIT", 1_000_000))
        self.rho_seeds = int(CFG("PARALLEL.RHO_SEEDS", 4))
        self.ecm_curves = int(CFG("PARALLEL.ECM_CURVES", 8))
        self.ecm_b1 = int(CFG("PARALLEL.ECM_B1", 2000))
        self.batch_size = int(CFG("PARALLEL.BATCH_SIZE", 16))
        self.rho_budget = 400_000

    def handlers(self):
        return {
            **super().handlers(),
            BatchFactorOp: lambda op, dl: self.process_batch([self._check_number(n) for n in op.numbers], dl),
            ParallelSieveOp: lambda op, dl: self.parallel_sieve(op.start, op.end, dl),
            DistributedFactorOp: lambda op, dl: self.distributed_factor(op.n, dl),
        }

    @property
    def pool(self):
        return self._require("worker_pool", "parallel execution")

    # --- stages --------------------------------------------------------------

    def _parallel_trial(self, n: int, fmap: dict[int, int], deadline: Deadline) -> int:
        limit = min(math.isqrt(n), self.trial_limit)
        args = [(n, lo, min(lo + self.segment_size - 1, limit))
                for lo in range(2, limit + 1, self.segment_size)]
        rest = n
        for found in self.pool.map_ordered(trial_segment, args, fallback=trial_segment, deadline=deadline):
            for p in found:
                rest = divide_out(rest, p, fmap)
        return rest

    def _fan_out(self, tasks: list[tuple], deadline: Deadline) -> int | None:
        """Run independent splitting attempts in parallel; first divisor in task order wins."""
        results = self.pool.map_ordered(first_divisor_task, tasks, fallback=lambda *a: None, deadline=deadline)
        return next((d for d in results if d), None)

    def _rho_splitter(self, deadline: Deadline):
        def run(m: int) -> int | None:
            return self._fan_out([("rho", m, s, self.rho_budget) for s in range(1, self.rho_seeds + 1)], deadline)
        return run

    def _ecm_splitter(self, deadline: Deadline):
        def run(m: int) -> int | None:
            sigmas = [self.rng.randrange(6, 1 << 32) for _ in range(self.ecm_curves)]
            return self._fan_out([("ecm", m, s, self.ecm_b1) for s in sigmas], deadline)
        return run

    def _factorize(self, n: int, deadline: Deadline) -> FactorizationResult:
        fmap: dict[int, int] = {}
        rest = self._parallel_trial(n, fmap, deadline)
        methods = ["parallel-trial"]
        unsplit: list[int] = []
        if rest > 1:
            split_completely(rest, [
                ("parallel-rho", self._rho_splitter(deadline)),
                ("ecm", self._ecm_splitter(deadline)),
                ("quadratic-sieve", lambda m: quadratic_sieve(m, deadline=deadline)),
            ], fmap, rng=self.rng, deadline=deadline, methods=methods, unsplit=unsplit)
        return self._result(n, fmap, "+".join(dict.fromkeys(methods)), unsplit)

    def distributed_factor(self, n: int, deadline: Deadline) -> FactorizationResult:
        """Rho seeds and ECM curves raced in one fan-out instead of one after another."""
        fmap: dict[int, int] = {}
        rest = self._parallel_trial(n, fmap, deadline)

        def mixed(m: int) -> int | None:
            tasks = [("rho", m, s, self.rho_budget) for s in range(1, self.rho_seeds + 1)]
            tasks += [("ecm", m, self.rng.randrange(6, 1 << 32), self.ecm_b1) for _ in range(self.ecm_curves)]
            return self._fan_out(tasks, deadline)

        methods = ["parallel-trial"]
        unsplit: list[int] = []
        if rest > 1:
            split_completely(rest, [("fan-out", mixed),
                                    ("quadratic-sieve", lambda m: quadratic_sieve(m, deadline=deadline))],
                             fmap, rng=self.rng, deadline=deadline, methods=methods, unsplit=unsplit)
        return self._result(n, fmap, "distributed(" + ",".join(dict.fromkeys(methods)) + ")", unsplit)

    def parallel_sieve(self, start: int, end: int, deadline: Deadline) -> list[int]:
        if end < start:
            raise InputValidationError(f"empty range [{start}, {end}]")
        if end - start > MAX_RANGE:
            raise InputValidationError(f"range wider than {MAX_RANGE}")
        args = [(lo, min(lo + self.segment_size - 1, end)) for lo in range(start, end + 1, self.segment_size)]
        out: list[int] = []
        for chunk in self.pool.map_ordered(sieve_task, args, fallback=sieve_task, deadline=deadline):
            out.extend(chunk)
        return out

    def is_prime(self, n: int, deadline: Deadline) -> bool:
        return is_probable_prime(n, self.rng)

    def process_batch(self, numbers, deadline):
        """Sub-batches of ``batch_size`` go to the pool; output order follows input order."""
        results: list[FactorizationResult | None] = [None] * len(numbers)
        pending: list[int] = []
        for i, n in enumerate(numbers):
            hit = self.cache.get(n) if self.cache is not None else None
            if hit is not None:
                results[i] = FactorizationResult(n=n, factors=hit.factors, method="cache-hit", cached=True,
                                                 unsplit=hit.unsplit)
            else:
                pending.append(i)
        for start in range(0, len(pending), self.batch_size):
            deadline.check()
            idxs = pending[start:start + self.batch_size]
            args = [(numbers[i], self.trial_limit, self.rho_seeds, self.ecm_curves, self.ecm_b1,
                     self.rng.getrandbits(32)) for i in idxs]
            outcomes = self.pool.map_ordered(factor_task, args, fallback=factor_task, deadline=deadline)
            for i, (fmap, unsplit) in zip(idxs, outcomes):
                res = self._result(numbers[i], fmap, "parallel-batch", unsplit)
                if self.cache is not None:
                    self.cache.set(numbers[i], res)
                results[i] = res
        return results
