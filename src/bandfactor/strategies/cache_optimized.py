# strategies/cache_optimized.py
from __future__ import annotations

import logging
import math

from bandfactor.algorithms import divide_out, pollard_rho, smallest_divisor, trial_division
from bandfactor.bands import Band, ProcessingStrategy
from bandfactor.context import FactorizationResult
from bandfactor.errors import InputValidationError
from bandfactor.operations import FactorOp, GeneratePrimesOp, IsPrimeOp, PrimeCountOp
from bandfactor.primality import miller_rabin
from bandfactor.registry import strategy
from bandfactor.runtime import CFG
from bandfactor.sieves import segmented_sieve, small_primes
from bandfactor.strategies.base import BandStrategy
from bandfactor.utility import Deadline

logger = logging.getLogger(__name__)

MAX_RANGE = 10_000_000


@strategy(band=Band.BASS, name=ProcessingStrategy.CACHE_OPTIMIZED)
class CacheOptimizedStrategy(BandStrategy):
    """
    Memoized factoring for 33-64 bit words.

    A small-prime table (primes below 65536) handles most cofactors. Sieve
    segments up to the precompute limit are cached by segment index so range
    queries and repeated factorizations reuse them. Whatever survives both is
    split with rho and, failing that, plain trial division.
    """

    ACCELERATION = 5.0
    MEMORY_ESTIMATE = 4 * 1024 * 1024
    OPERATIONS = (FactorOp, IsPrimeOp, GeneratePrimesOp, PrimeCountOp)

    def __init__(self, *args, **kw):
        super().__init__(*args, **kw)
        self.segment_size = int(CFG("SIEVE.SEGMENT_SIZE", 4096))
        self.precompute_limit = int(CFG("SIEVE.PRECOMPUTE_LIMIT", 1_000_000))
        self.small_limit = int(CFG("SIEVE.SMALL_PRIME_LIMIT", 65536))
        self.segment_cache = None
        if self.cache is not None:
            self.segment_cache = self.collaborators.cache_provider(
                max(16, self.precompute_limit // self.segment_size + 1))
        self.segment_hits = 0

    def handlers(self):
        return {
            **super().handlers(),
            GeneratePrimesOp: lambda op, dl: self.generate_primes(op.start, op.end, dl),
            PrimeCountOp: lambda op, dl: len(self.generate_primes(2, op.limit, dl)),
        }

    # --- segments ------------------------------------------------------------

    def _segment(self, index: int, deadline: Deadline) -> list[int]:
        if self.segment_cache is not None:
            hit = self.segment_cache.get(index)
            if hit is not None:
                self.segment_hits += 1
                return hit
        lo = index * self.segment_size
        primes = segmented_sieve(lo, lo + self.segment_size - 1,
                                 segment_size=self.segment_size, deadline=deadline)
        if self.segment_cache is not None:
            self.segment_cache.set(index, primes)
        return primes

    def generate_primes(self, start: int, end: int, deadline: Deadline) -> list[int]:
        if end < start:
            raise InputValidationError(f"empty range [{start}, {end}]")
        if end - start > MAX_RANGE:
            raise InputValidationError(f"range wider than {MAX_RANGE}")
        out: list[int] = []
        for idx in range(max(start, 0) // self.segment_size, end // self.segment_size + 1):
            deadline.check()
            out.extend(p for p in self._segment(idx, deadline) if start <= p <= end)
        return out

    # --- factoring -----------------------------------------------------------

    def _factorize(self, n: int, deadline: Deadline) -> FactorizationResult:
        fmap: dict[int, int] = {}
        rest, settled = trial_division(n, small_primes(self.small_limit), fmap, deadline)
        method = "cached-trial"
        if not settled:
            first = self.small_limit // self.segment_size
            for idx in range(first, self.precompute_limit // self.segment_size + 1):
                seg = self._segment(idx, deadline)
                rest, settled = trial_division(
                    rest, (p for p in seg if p > self.small_limit), fmap, deadline)
                if settled or (seg and seg[-1] ** 2 > rest):
                    settled = True
                    break
            method = "cached-sieve"
        if rest > 1:
            self._split_remainder(rest, fmap, deadline)
            if not settled:
                method += "+remainder"
        return self._result(n, fmap, method)

    def _split_remainder(self, m: int, fmap: dict[int, int], deadline: Deadline) -> None:
        stack = [m]
        while stack:
            m = stack.pop()
            if m == 1:
                continue
            if miller_rabin(m, rng=self.rng):
                fmap[m] = fmap.get(m, 0) + 1
                continue
            d = pollard_rho(m, self.rng, deadline=deadline, max_iterations=1_000_000)
            if d is None:
                logger.debug("rho missed %d-bit remainder; falling back to trial division", m.bit_length())
                d = smallest_divisor(m, math.isqrt(m), deadline)
            if d is None:
                fmap[m] = fmap.get(m, 0) + 1
                continue
            if miller_rabin(d, rng=self.rng):
                stack.append(divide_out(m, d, fmap))
            else:
                stack.extend([d, m // d])

    def is_prime(self, n: int, deadline: Deadline) -> bool:
        if self.cache is not None:
            hit = self.cache.get(("prime", n))
            if hit is not None:
                return hit
        verdict = miller_rabin(n, rng=self.rng)
        if self.cache is not None:
            self.cache.set(("prime", n), verdict)
        return verdict

    def process_batch(self, numbers, deadline):
        # each distinct value is factored once
        done: dict[int, FactorizationResult] = {}
        for n in numbers:
            if n not in done:
                done[n] = self.factorize(n, deadline)
        return [done[n] for n in numbers]
