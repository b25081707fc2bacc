# strategies/direct.py
from __future__ import annotations

from bandfactor.algorithms import trial_division, wheel_factorization
from bandfactor.bands import Band, ProcessingStrategy
from bandfactor.context import FactorizationResult
from bandfactor.operations import FactorOp, IsPrimeOp, NextPrimeOp, PrimeFactorsOp
from bandfactor.primality import miller_rabin, next_prime
from bandfactor.registry import strategy
from bandfactor.sieves import small_primes
from bandfactor.strategies.base import BandStrategy
from bandfactor.utility import Deadline

SMALL_LIMIT = 1000
SMALL_PRIME_SET = frozenset(small_primes(SMALL_LIMIT))


@strategy(band=Band.ULTRABASS, name=ProcessingStrategy.DIRECT_COMPUTATION)
class DirectComputationStrategy(BandStrategy):
    """Plain arithmetic for numbers up to 32 bits: trial division, then the mod-30 wheel."""

    ACCELERATION = 2.5
    MEMORY_ESTIMATE = 64 * 1024
    OPERATIONS = (FactorOp, IsPrimeOp, NextPrimeOp, PrimeFactorsOp)

    def handlers(self):
        return {
            **super().handlers(),
            NextPrimeOp: lambda op, dl: next_prime(op.n, self.rng),
            PrimeFactorsOp: lambda op, dl: [f.prime for f in self.factorize(op.n, dl).factors],
        }

    def _factorize(self, n: int, deadline: Deadline) -> FactorizationResult:
        fmap: dict[int, int] = {}
        if n <= SMALL_LIMIT:
            rest, _ = trial_division(n, small_primes(SMALL_LIMIT), fmap, deadline)
            if rest > 1:
                fmap[rest] = fmap.get(rest, 0) + 1
            return self._result(n, fmap, "trial-division")
        wheel_factorization(n, fmap, deadline)
        return self._result(n, fmap, "wheel-30")

    def is_prime(self, n: int, deadline: Deadline) -> bool:
        if n <= SMALL_LIMIT:
            return n in SMALL_PRIME_SET
        # the fixed base set is exact below 2^64
        return miller_rabin(n, rng=self.rng)
