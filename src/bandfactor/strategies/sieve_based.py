# strategies/sieve_based.py
from __future__ import annotations

import math

from bandfactor.algorithms import ecm, pollard_rho, smallest_divisor, split_completely, trial_division
from bandfactor.bands import Band, ProcessingStrategy
from bandfactor.context import FactorizationResult
from bandfactor.errors import InputValidationError
from bandfactor.operations import FactorOp, IsPrimeOp, NextPrimeOp, PrimeCountOp, SieveRangeOp
from bandfactor.primality import next_prime
from bandfactor.registry import strategy
from bandfactor.runtime import CFG
from bandfactor.sieves import WHEEL210_PRIMES, primes_in_range
from bandfactor.strategies.base import BandStrategy
from bandfactor.utility import Deadline

MAX_RANGE = 10_000_000
FALLBACK_TRIAL_LIMIT = 10_000_000


@strategy(band=Band.MIDRANGE, name=ProcessingStrategy.SIEVE_BASED)
class SieveBasedStrategy(BandStrategy):
    """
    65-128 bit inputs: wheel-primed trial division, a full sieve when the
    remainder is small enough, Pollard rho otherwise with ECM behind it for
    factors too large for rho.
    """

    ACCELERATION = 8.0
    MEMORY_ESTIMATE = 16 * 1024 * 1024
    OPERATIONS = (FactorOp, IsPrimeOp, SieveRangeOp, PrimeCountOp, NextPrimeOp)

    def __init__(self, *args, **kw):
        super().__init__(*args, **kw)
        self.segment_size = int(CFG("SIEVE.SEGMENT_SIZE", 4096))
        self.atkin_threshold = int(CFG("SIEVE.ATKIN_THRESHOLD", 1_000_000))
        self.sieve_limit = int(CFG("SIEVE.SIEVE_REMAINDER_LIMIT", 10_000_000))
        self.ecm_curves = int(CFG("SIEVE.ECM_CURVES", 25))
        self.ecm_b1 = int(CFG("SIEVE.ECM_B1", 11000))

    def handlers(self):
        return {
            **super().handlers(),
            SieveRangeOp: lambda op, dl: self.sieve_range(op.start, op.end, dl),
            PrimeCountOp: lambda op, dl: len(self.sieve_range(2, op.limit, dl)),
            NextPrimeOp: lambda op, dl: next_prime(op.n, self.rng),
        }

    def sieve_range(self, start: int, end: int, deadline: Deadline) -> list[int]:
        if end < start:
            raise InputValidationError(f"empty range [{start}, {end}]")
        if end - start > MAX_RANGE:
            raise InputValidationError(f"range wider than {MAX_RANGE}")
        return [p for p in primes_in_range(start, end, segment_size=self.segment_size,
                                           atkin_threshold=self.atkin_threshold, deadline=deadline)
                if p >= start]

    def _factorize(self, n: int, deadline: Deadline) -> FactorizationResult:
        fmap: dict[int, int] = {}
        rest, settled = trial_division(n, WHEEL210_PRIMES, fmap, deadline)
        if settled:
            if rest > 1:
                fmap[rest] = fmap.get(rest, 0) + 1
            return self._result(n, fmap, "wheel-210")

        if rest <= self.sieve_limit:
            primes = primes_in_range(2, math.isqrt(rest), segment_size=self.segment_size,
                                     atkin_threshold=self.atkin_threshold, deadline=deadline)
            rest, _ = trial_division(rest, primes, fmap, deadline)
            if rest > 1:
                fmap[rest] = fmap.get(rest, 0) + 1
            return self._result(n, fmap, "wheel-210+sieve")

        methods: list[str] = []
        unsplit: list[int] = []
        split_completely(rest, [
            ("pollard-rho", lambda m: pollard_rho(m, self.rng, deadline=deadline)),
            ("ecm", lambda m: ecm(m, curves=self.ecm_curves, b1=self.ecm_b1, rng=self.rng, deadline=deadline)),
            ("trial-division", lambda m: smallest_divisor(m, FALLBACK_TRIAL_LIMIT, deadline)),
        ], fmap, rng=self.rng, deadline=deadline, methods=methods, unsplit=unsplit)
        tag = "+".join(["wheel-210", *dict.fromkeys(methods)])
        return self._result(n, fmap, tag, unsplit)
