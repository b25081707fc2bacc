# strategies/spectral.py
"""
2049+ bit inputs: spectral heuristics followed by algebraic identities.

The bit-signal spectrum of the input decides the primary heuristic: a
centroid above ``SPECTRAL.CENTROID_THRESHOLD`` selects the period-finding
simulation, anything else the lattice heuristic. When neither splits the
number the algebraic methods run (perfect powers, cyclotomic values
``b^k +- 1``, Aurifeuillean factors). A composite that survives all of them is
recorded as a prime factor.
"""
from __future__ import annotations

import logging
import math

import gmpy2
from gmpy2 import mpz
from sympy.polys.domains import ZZ
from sympy.polys.matrices import DomainMatrix

from bandfactor import spectrum
from bandfactor.algorithms import split_completely
from bandfactor.bands import Band, ProcessingStrategy, bit_length
from bandfactor.collaborators import LRUCache
from bandfactor.context import FactorizationResult
from bandfactor.errors import InputValidationError
from bandfactor.operations import (
    AlgebraicNumberTheoryOp,
    FactorOp,
    IsPrimeOp,
    LatticeReductionOp,
    QuantumSimulationOp,
    SpectralAnalysisOp,
    SpectralFactorOp,
    TransformOptimizationOp,
)
from bandfactor.primality import deterministic_primality
from bandfactor.registry import strategy
from bandfactor.runtime import CFG
from bandfactor.sieves import small_primes
from bandfactor.strategies.base import BandStrategy
from bandfactor.utility import Deadline, perfect_power

logger = logging.getLogger(__name__)

MAX_PERIOD = 1000
MAX_LATTICE_DIM = 20
LATTICE_SCALE = 1 << 10
CYCLOTOMIC_K = range(3, 101)
CYCLOTOMIC_BASES = (2, 3, 5, 7, 10)
AURIFEUILLEAN_BASES = (2, 3, 5, 6, 7, 10, 11, 12)


# -----------------------------------------------------------------------------
#  Heuristics (pure functions over ints)
# -----------------------------------------------------------------------------

def period_search(n: int, *, deadline: Deadline | None = None) -> tuple[int | None, int | None]:
    """
    Classical stand-in for quantum period finding with base 2.

    Walks x = 2^h mod n for h = 1 .. r_max/2 with r_max = min(1000, 2*bits)
    and tests gcd(x -+ 1, n) at every even candidate period r = 2h. Returns
    ``(divisor, period)``; either may be None.
    """
    if n % 2 == 0:
        return (2, None) if n > 2 else (None, None)
    N = mpz(n)
    r_max = min(MAX_PERIOD, 2 * n.bit_length())
    x = mpz(1)
    for h in range(1, r_max // 2 + 1):
        if deadline is not None:
            deadline.tick()
        x = (x * 2) % N
        if x == 1:
            return None, h
        for g in (gmpy2.gcd(x - 1, N), gmpy2.gcd(x + 1, N)):
            if 1 < g < N:
                return int(g), 2 * h
    return None, None


def lattice_dimension(n: int) -> int:
    return max(2, min(MAX_LATTICE_DIM, n.bit_length() // 100))


def lattice_basis(n: int, dim: int) -> tuple[list[int], list[list[int]]]:
    """Schnorr-style basis: unit rows tagged with scaled log p_i, plus a row for log n."""
    primes = list(small_primes(128)[:dim])
    rows = []
    for i, p in enumerate(primes):
        row = [0] * (dim + 1)
        row[i] = 1
        row[dim] = round(LATTICE_SCALE * math.log(p))
        rows.append(row)
    rows.append([0] * dim + [round(LATTICE_SCALE * math.log(n))])
    return primes, rows


def lll_reduce(rows: list[list[int]]) -> list[list[int]]:
    m = DomainMatrix([[ZZ(v) for v in row] for row in rows], (len(rows), len(rows[0])), ZZ)
    return [[int(v) for v in row] for row in m.lll().to_list()]


def lattice_search(n: int) -> tuple[int | None, dict]:
    """
    Reduce the basis and test every short vector as an exponent relation
    u = prod p^e (e > 0), v = prod p^-e (e < 0) against n.
    """
    dim = lattice_dimension(n)
    primes, rows = lattice_basis(n, dim)
    reduced = lll_reduce(rows)
    info = {"dimension": dim, "shortest_norm": min(math.sqrt(sum(v * v for v in r)) for r in reduced)}
    for row in reduced:
        u = v = 1
        for p, e in zip(primes, row[:dim]):
            if e > 0:
                u *= p ** e
            elif e < 0:
                v *= p ** -e
        for cand in (u - v, u + v, u, v, *row):
            g = math.gcd(cand, n)
            if 1 < g < n:
                return g, info
    return None, info


def cyclotomic_search(n: int, *, deadline: Deadline | None = None) -> int | None:
    N = mpz(n)
    for k in CYCLOTOMIC_K:
        root = gmpy2.iroot(N, k)[0]
        bases = (*CYCLOTOMIC_BASES, int(root)) if root > 1 else CYCLOTOMIC_BASES
        for b in bases:
            if deadline is not None:
                deadline.tick()
            x = gmpy2.powmod(b, k, N)
            for g in (gmpy2.gcd(x - 1, N), gmpy2.gcd(x + 1, N)):
                if 1 < g < N:
                    return int(g)
    return None


def _aurifeuillean_pairs(base: int, limit_bits: int):
    """(L, M) with base^(...) + 1 = L * M for the bases with a closed form."""
    if base == 2:
        # 2^(4k+2) + 1 = (2^(2k+1) - 2^(k+1) + 1)(2^(2k+1) + 2^(k+1) + 1)
        for k in range(1, limit_bits // 2):
            a, b = 1 << (2 * k + 1), 1 << (k + 1)
            yield a - b + 1, a + b + 1
    elif base == 3:
        # 3^(6k+3) + 1 = (3^(2k+1) + 1)(3^(2k+1) - 3^(k+1) + 1)(3^(2k+1) + 3^(k+1) + 1)
        k = 0
        while (2 * k + 1) * 1.585 < limit_bits:
            a, b = 3 ** (2 * k + 1), 3 ** (k + 1)
            yield a - b + 1, a + b + 1
            k += 1


def aurifeuillean_search(n: int, *, deadline: Deadline | None = None) -> int | None:
    bits = n.bit_length()
    for base in AURIFEUILLEAN_BASES:
        if base in (2, 3):
            for L, M in _aurifeuillean_pairs(base, bits):
                if deadline is not None:
                    deadline.tick()
                for g in (math.gcd(L, n), math.gcd(M, n)):
                    if 1 < g < n:
                        return g
        else:
            x = pow(base, n % 1000, n)
            g = math.gcd(x - 1, n)
            if 1 < g < n:
                return g
    return None


# -----------------------------------------------------------------------------
#  Strategy
# -----------------------------------------------------------------------------

@strategy(band=Band.ULTRASONIC_2, name=ProcessingStrategy.SPECTRAL_TRANSFORM)
class SpectralTransformStrategy(BandStrategy):
    ACCELERATION = 50.0
    MEMORY_ESTIMATE = 512 * 1024 * 1024
    OPERATIONS = (FactorOp, IsPrimeOp, SpectralFactorOp, SpectralAnalysisOp, QuantumSimulationOp,
                  LatticeReductionOp, AlgebraicNumberTheoryOp, TransformOptimizationOp)

    def __init__(self, *args, **kw):
        super().__init__(*args, **kw)
        self.window = str(CFG("SPECTRAL.WINDOW", "hamming"))
        self.signal_length = int(CFG("SPECTRAL.SIGNAL_LENGTH", spectrum.DEFAULT_LENGTH))
        self.rolloff = float(CFG("SPECTRAL.ROLLOFF", 0.85))
        self.centroid_threshold = float(CFG("SPECTRAL.CENTROID_THRESHOLD", 0.01))
        if self.window not in spectrum.WINDOWS:
            raise InputValidationError(f"unknown window '{self.window}'")
        self._analyses = LRUCache(256)
        self.spectral_analyses = 0
        self.quantum_simulations = 0
        self.lattice_reductions = 0
        self.algebraic_operations = 0

    def handlers(self):
        return {
            **super().handlers(),
            SpectralFactorOp: lambda op, dl: self.spectral_factor(op.n, dl),
            SpectralAnalysisOp: lambda op, dl: self.spectral_analysis(op.n, op.window),
            QuantumSimulationOp: lambda op, dl: self.quantum_simulation(op.n, dl),
            LatticeReductionOp: lambda op, dl: self.lattice_reduction(op.n, dl),
            AlgebraicNumberTheoryOp: lambda op, dl: self.algebraic(op.n, dl),
            TransformOptimizationOp: lambda op, dl: self.transform_optimization(op.n),
        }

    # --- analysis ------------------------------------------------------------

    def analyze(self, n: int, window: str | None = None) -> spectrum.SpectralFeatures:
        name = window or self.window
        key = (n, name)
        hit = self._analyses.get(key)
        if hit is not None:
            return hit
        try:
            features = spectrum.analyze(n, window_name=name, length=self.signal_length, rolloff=self.rolloff)
        except ValueError as e:
            raise InputValidationError(str(e)) from None
        self.spectral_analyses += 1
        self._analyses.set(key, features)
        return features

    def _branch(self, features: spectrum.SpectralFeatures) -> str:
        return "quantum-simulation" if features.centroid > self.centroid_threshold else "lattice-reduction"

    def spectral_analysis(self, n: int, window: str | None = None) -> dict:
        features = self.analyze(n, window)
        return {**features.as_dict(), "branch": self._branch(features)}

    # --- splitters -----------------------------------------------------------

    def _quantum(self, m: int, deadline: Deadline) -> int | None:
        self.quantum_simulations += 1
        return period_search(m, deadline=deadline)[0]

    def _lattice(self, m: int, deadline: Deadline) -> int | None:
        deadline.check()
        self.lattice_reductions += 1
        return lattice_search(m)[0]

    def _algebraic(self, m: int, deadline: Deadline) -> tuple[int | None, str | None]:
        self.algebraic_operations += 1
        pp = perfect_power(m)
        if pp is not None:
            return pp[0], "perfect-power"
        d = cyclotomic_search(m, deadline=deadline)
        if d:
            return d, "cyclotomic"
        d = aurifeuillean_search(m, deadline=deadline)
        if d:
            return d, "aurifeuillean"
        return None, None

    # --- factoring -----------------------------------------------------------

    def _factorize(self, n: int, deadline: Deadline) -> FactorizationResult:
        return self._spectral(n, deadline)[0]

    def _spectral(self, n: int, deadline: Deadline) -> tuple[FactorizationResult, spectrum.SpectralFeatures]:
        features = self.analyze(n)
        branch = self._branch(features)
        primary = self._quantum if branch == "quantum-simulation" else self._lattice
        fmap: dict[int, int] = {}
        methods: list[str] = []
        unsplit: list[int] = []
        split_completely(n, [
            (branch, lambda m: primary(m, deadline)),
            ("algebraic", lambda m: self._algebraic(m, deadline)[0]),
        ], fmap, rng=self.rng, deadline=deadline, methods=methods, unsplit=unsplit)
        tag = "spectral-transform"
        if methods:
            tag += f"({','.join(dict.fromkeys(methods))})"
        return self._result(n, fmap, tag, unsplit), features

    def spectral_factor(self, n: int, deadline: Deadline) -> dict:
        result, features = self._spectral(n, deadline)
        return {"result": result, "analysis": features.as_dict(), "branch": self._branch(features)}

    def is_prime(self, n: int, deadline: Deadline) -> bool:
        return deterministic_primality(n, self.rng)

    # --- single-method operations -------------------------------------------

    def quantum_simulation(self, n: int, deadline: Deadline) -> dict:
        self.quantum_simulations += 1
        d, period = period_search(n, deadline=deadline)
        return {"factor": d, "period": period, "max_period": min(MAX_PERIOD, 2 * bit_length(n))}

    def lattice_reduction(self, n: int, deadline: Deadline) -> dict:
        deadline.check()
        self.lattice_reductions += 1
        d, info = lattice_search(n)
        return {"factor": d, **info}

    def algebraic(self, n: int, deadline: Deadline) -> dict:
        d, method = self._algebraic(n, deadline)
        return {"factor": d, "method": method}

    def transform_optimization(self, n: int) -> dict:
        best, bandwidths = spectrum.recommend_window(n, length=self.signal_length)
        bits = bit_length(n)
        size = min(8192, max(spectrum.DEFAULT_LENGTH, 1 << (bits - 1).bit_length()))
        return {
            "recommended_window": best,
            "bandwidths": bandwidths,
            "recommended_transform_size": size,
            "current_window": self.window,
        }

    def statistics(self):
        return {
            **super().statistics(),
            "spectral_analyses": self.spectral_analyses,
            "quantum_simulations": self.quantum_simulations,
            "lattice_reductions": self.lattice_reductions,
            "algebraic_operations": self.algebraic_operations,
        }
