# bands.py
"""
Bit-length bands and the classifier that maps integers onto them.

Every positive integer falls into exactly one of eight contiguous bands.
The first band starts at 1 bit so small inputs are classified as well; the
last band ends at ``max_bits`` (4096 unless configured otherwise). Anything
outside that span is a configuration problem, not a silent default.
"""
from __future__ import annotations

import math
from collections import Counter, OrderedDict
from dataclasses import dataclass, field
from enum import Enum, IntEnum

from bandfactor.errors import BandConfigurationError, UnknownStrategyError

DEFAULT_MAX_BITS = 4096
COMPLEXITY_GROWTH_CAP = 512.0


class Band(IntEnum):
    ULTRABASS = 1
    BASS = 2
    MIDRANGE = 3
    UPPER_MID = 4
    TREBLE = 5
    SUPER_TREBLE = 6
    ULTRASONIC_1 = 7
    ULTRASONIC_2 = 8

    @property
    def min_bits(self) -> int:
        return BIT_RANGES[self][0]

    @property
    def max_bits(self) -> int:
        return BIT_RANGES[self][1]

    @property
    def expected_acceleration(self) -> float:
        return EXPECTED_ACCELERATION[self]

    @property
    def memory_per_op(self) -> int:
        return MEMORY_PER_OP[self]

    @property
    def cache_size(self) -> int:
        return CACHE_SIZES[self]

    @property
    def strategy(self) -> ProcessingStrategy:
        return STRATEGY_FOR_BAND[self]

    def contains(self, bits: int) -> bool:
        lo, hi = BIT_RANGES[self]
        return lo <= bits <= hi


class ProcessingStrategy(str, Enum):
    DIRECT_COMPUTATION = "direct_computation"
    CACHE_OPTIMIZED = "cache_optimized"
    SIEVE_BASED = "sieve_based"
    PARALLEL_SIEVE = "parallel_sieve"
    STREAMING_PRIME = "streaming_prime"
    DISTRIBUTED_SIEVE = "distributed_sieve"
    HYBRID_STRATEGY = "hybrid_strategy"
    SPECTRAL_TRANSFORM = "spectral_transform"

    @classmethod
    def parse(cls, name: str | ProcessingStrategy) -> ProcessingStrategy:
        if isinstance(name, cls):
            return name
        key = str(name).strip().lower().replace("-", "_")
        for member in cls:
            if member.value == key or member.name.lower() == key:
                return member
        raise UnknownStrategyError(f"unknown processing strategy '{name}'")


# --- Band tables -------------------------------------------------------------

BIT_RANGES: dict[Band, tuple[int, int]] = {
    Band.ULTRABASS: (1, 32),
    Band.BASS: (33, 64),
    Band.MIDRANGE: (65, 128),
    Band.UPPER_MID: (129, 256),
    Band.TREBLE: (257, 512),
    Band.SUPER_TREBLE: (513, 1024),
    Band.ULTRASONIC_1: (1025, 2048),
    Band.ULTRASONIC_2: (2049, DEFAULT_MAX_BITS),
}

# classifier-level expectations; strategies carry their own measured factors
EXPECTED_ACCELERATION: dict[Band, float] = {
    Band.ULTRABASS: 2.5,
    Band.BASS: 5.0,
    Band.MIDRANGE: 7.0,
    Band.UPPER_MID: 9.0,
    Band.TREBLE: 11.0,
    Band.SUPER_TREBLE: 13.0,
    Band.ULTRASONIC_1: 10.0,
    Band.ULTRASONIC_2: 6.0,
}

MEMORY_PER_OP: dict[Band, int] = {b: 256 << i for i, b in enumerate(Band)}
CACHE_SIZES: dict[Band, int] = {b: 1024 << i for i, b in enumerate(Band)}

STRATEGY_FOR_BAND: dict[Band, ProcessingStrategy] = {
    Band.ULTRABASS: ProcessingStrategy.DIRECT_COMPUTATION,
    Band.BASS: ProcessingStrategy.CACHE_OPTIMIZED,
    Band.MIDRANGE: ProcessingStrategy.SIEVE_BASED,
    Band.UPPER_MID: ProcessingStrategy.PARALLEL_SIEVE,
    Band.TREBLE: ProcessingStrategy.STREAMING_PRIME,
    Band.SUPER_TREBLE: ProcessingStrategy.DISTRIBUTED_SIEVE,
    Band.ULTRASONIC_1: ProcessingStrategy.HYBRID_STRATEGY,
    Band.ULTRASONIC_2: ProcessingStrategy.SPECTRAL_TRANSFORM,
}
BAND_FOR_STRATEGY: dict[ProcessingStrategy, Band] = {s: b for b, s in STRATEGY_FOR_BAND.items()}

_OPTIMAL_FOR: dict[Band, tuple[str, ...]] = {
    Band.ULTRABASS: ("small primes", "direct arithmetic"),
    Band.BASS: ("repeated queries", "64-bit words"),
    Band.MIDRANGE: ("sieving", "semiprimes with balanced factors"),
    Band.UPPER_MID: ("batch factoring", "multi-core hosts"),
    Band.TREBLE: ("prime streams", "memory-bounded pipelines"),
    Band.SUPER_TREBLE: ("redundant verification", "cluster fan-out"),
    Band.ULTRASONIC_1: ("mixed workloads", "algorithm selection"),
    Band.ULTRASONIC_2: ("structured numbers", "heuristic search"),
}

_LIMITATIONS: dict[Band, tuple[str, ...]] = {
    Band.ULTRABASS: ("sequential only",),
    Band.BASS: ("cache memory grows with distinct inputs",),
    Band.MIDRANGE: ("rho is probabilistic",),
    Band.UPPER_MID: ("pool start-up overhead",),
    Band.TREBLE: ("blocks under backpressure",),
    Band.SUPER_TREBLE: ("simulated nodes by default",),
    Band.ULTRASONIC_1: ("best-effort for large balanced semiprimes",),
    Band.ULTRASONIC_2: ("may treat unfactorable composites as prime",),
}


def bit_length(n: int) -> int:
    return int(n).bit_length()


def band_of(bits: int, *, max_bits: int = DEFAULT_MAX_BITS) -> Band:
    """Total lookup over the eight ranges; raises for 0 or bits above ``max_bits``."""
    if bits < 1 or bits > max_bits:
        raise BandConfigurationError(
            f"bit length {bits} is outside the supported span [1, {max_bits}]"
        )
    for band in Band:
        lo, hi = BIT_RANGES[band]
        if lo <= bits <= hi:
            return band
    # only reachable when max_bits was raised past the last table entry
    return Band.ULTRASONIC_2


def neighbors(band: Band) -> list[Band]:
    out = []
    if band > Band.ULTRABASS:
        out.append(Band(band - 1))
    if band < Band.ULTRASONIC_2:
        out.append(Band(band + 1))
    return out


def band_distance(a: Band, b: Band) -> int:
    return abs(int(a) - int(b))


# -----------------------------------------------------------------------------
#  Classification
# -----------------------------------------------------------------------------

@dataclass(frozen=True)
class NumberCharacteristics:
    bit_size: int
    prime_density: float
    factorization_complexity: float
    cache_locality: float
    parallelization_potential: float


@dataclass(frozen=True)
class BandClassification:
    band: Band
    bit_size: int
    confidence: float
    alternatives: tuple[Band, ...]
    characteristics: NumberCharacteristics


@dataclass
class BatchClassification:
    individual: list[BandClassification]
    optimal: Band
    distribution: dict[Band, int] = field(default_factory=dict)
    confidence: float = 0.0


def characteristics_of(bits: int) -> NumberCharacteristics:
    # density from the prime number theorem, 1/ln(2^bits), scaled into [0, 1]
    density = min(1.0, max(0.0, 100.0 / (bits * math.log(2))))
    # capped to stay in float range; complexity saturates at 1 well below the cap
    growth = 1.1 ** min(bits / 32, COMPLEXITY_GROWTH_CAP)
    complexity = min(1.0, (math.log2(max(bits, 1)) / 12) * growth)
    return NumberCharacteristics(
        bit_size=bits,
        prime_density=density,
        factorization_complexity=complexity,
        cache_locality=max(0.0, 1 - bits / DEFAULT_MAX_BITS),
        parallelization_potential=min(1.0, bits / 512),
    )


def classification_confidence(band: Band, ch: NumberCharacteristics) -> float:
    lo, hi = BIT_RANGES[band]
    confidence = 0.5
    if lo <= ch.bit_size <= hi:
        span = max(1, hi - lo)
        position = (ch.bit_size - lo) / span
        confidence = 0.7 + 0.3 * (1 - abs(0.5 - position) * 2)
    confidence *= 1 + ch.cache_locality * 0.1
    confidence *= 1 + ch.parallelization_potential * 0.1
    confidence *= 1 - ch.factorization_complexity * 0.1
    return min(1.0, max(0.0, confidence))


def band_alternatives(band: Band, ch: NumberCharacteristics) -> tuple[Band, ...]:
    alts = neighbors(band)
    if ch.parallelization_potential > 0.7:
        alts += [Band.UPPER_MID, Band.SUPER_TREBLE]
    if ch.cache_locality > 0.8:
        alts.append(Band.BASS)
    seen: list[Band] = []
    for b in alts:
        if b != band and b not in seen:
            seen.append(b)
    return tuple(seen)


class BandClassifier:
    """
    Classify integers into bands, memoizing the last ``cache_size`` results.

    Parameters
    ----------
    cache_size : int
        Capacity of the LRU classification cache.
    max_bits : int
        Upper end of the last band. Larger inputs raise
        ``BandConfigurationError``.
    """

    def __init__(self, cache_size: int = 1000, max_bits: int = DEFAULT_MAX_BITS):
        self.cache_size = max(1, int(cache_size))
        self.max_bits = int(max_bits)
        self._cache: OrderedDict[int, BandClassification] = OrderedDict()
        self.hits = 0
        self.misses = 0

    def classify(self, n: int) -> BandClassification:
        n = int(n)
        cached = self._cache.get(n)
        if cached is not None:
            self.hits += 1
            self._cache.move_to_end(n)
            return cached
        self.misses += 1

        bits = bit_length(abs(n))
        band = band_of(bits, max_bits=self.max_bits)
        ch = characteristics_of(bits)
        result = BandClassification(
            band=band,
            bit_size=bits,
            confidence=classification_confidence(band, ch),
            alternatives=band_alternatives(band, ch),
            characteristics=ch,
        )
        self._cache[n] = result
        if len(self._cache) > self.cache_size:
            self._cache.popitem(last=False)
        return result

    def band_for(self, n: int) -> Band:
        return self.classify(n).band

    def classify_batch(self, numbers: list[int]) -> BatchClassification:
        individual = [self.classify(n) for n in numbers]
        dist = Counter(c.band for c in individual)
        if not dist:
            return BatchClassification(individual=[], optimal=Band.MIDRANGE)
        # ties resolve to the lowest band
        optimal = max(sorted(dist), key=lambda b: dist[b])
        relevant = [c.confidence for c in individual if c.band == optimal]
        return BatchClassification(
            individual=individual,
            optimal=optimal,
            distribution=dict(dist),
            confidence=sum(relevant) / len(relevant),
        )

    def band_metrics(self, band: Band) -> dict[str, object]:
        relevant = [c for c in self._cache.values() if c.band == band]
        avg = sum(c.confidence for c in relevant) / len(relevant) if relevant else 0.0
        return {
            "performance": {
                "expected_acceleration": band.expected_acceleration,
                "memory_usage": band.memory_per_op,
                "cache_size": band.cache_size,
            },
            "characteristics": {
                "bit_range": (band.min_bits, band.max_bits),
                "optimal_for": list(_OPTIMAL_FOR[band]),
                "limitations": list(_LIMITATIONS[band]),
            },
            "usage": {
                "classifications": len(relevant),
                "average_confidence": avg,
            },
        }

    def statistics(self) -> dict[str, object]:
        total = self.hits + self.misses
        dist = Counter(c.band for c in self._cache.values())
        return {
            "total_classifications": total,
            "cache_hits": self.hits,
            "cache_misses": self.misses,
            "cache_efficiency": self.hits / total if total else 0.0,
            "cached_entries": len(self._cache),
            "band_distribution": {b.name: dist.get(b, 0) for b in Band},
        }

    def clear_cache(self) -> None:
        self._cache.clear()
        self.hits = 0
        self.misses = 0
