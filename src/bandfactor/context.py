# context.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from bandfactor.bands import Band, band_of, bit_length


@dataclass(frozen=True)
class ResourceBudget:
    memory: int = 64 * 1024 * 1024   # bytes
    cpu: int = 1                     # core hint


@dataclass(frozen=True)
class Constraints:
    time_ms: int | None = None       # per-call deadline; falls back to strategy timeout
    max_memory: int | None = None


@dataclass(frozen=True)
class ProcessingContext:
    """
    Immutable per-call context handed to ``BandStrategy.process``.

    ``band`` is mandatory; ``for_number`` derives it from the input's bit
    length when the caller does not want to pick one.
    """
    band: Band | None
    bit_size: int = 0
    workload: str = "factorization"
    resources: ResourceBudget = field(default_factory=ResourceBudget)
    constraints: Constraints = field(default_factory=Constraints)

    @classmethod
    def for_number(cls, n: int, **kw: Any) -> ProcessingContext:
        bits = bit_length(abs(int(n)))
        band = kw.pop("band", None) or band_of(bits)
        return cls(band=band, bit_size=bits, **kw)


@dataclass(frozen=True, order=True)
class Factor:
    prime: int
    exponent: int = 1

    def value(self) -> int:
        return self.prime ** self.exponent


@dataclass(frozen=True)
class FactorizationResult:
    """
    Payload for factor requests: the factor list plus how it was found.

    ``unsplit`` lists composites every algorithm gave up on; they stay in
    ``factors`` with their multiplicity so the product is still ``n``.
    """
    n: int
    factors: tuple[Factor, ...]
    method: str = ""
    cached: bool = False
    unsplit: tuple[int, ...] = ()

    @property
    def is_complete(self) -> bool:
        return not self.unsplit

    def as_dict(self) -> dict[int, int]:
        return {f.prime: f.exponent for f in self.factors}

    def product(self) -> int:
        return product_of(self.factors)


@dataclass(frozen=True)
class BandMetrics:
    throughput: float = 0.0
    latency: float = 0.0
    memory_usage: int = 0
    cache_hit_rate: float = 0.0
    acceleration_factor: float = 0.0
    error_rate: float = 0.0
    prime_generation: int = 0
    factorization_rate: int = 0
    spectral_efficiency: float = 0.0
    distribution_balance: float = 0.0
    precision: float = 0.0
    stability: float = 0.0
    convergence: float = 0.0


@dataclass(frozen=True)
class QualityMetrics:
    precision: float = 0.0
    accuracy: float = 0.0
    completeness: float = 0.0
    consistency: float = 0.0
    reliability: float = 0.0


SUCCESS_QUALITY = QualityMetrics(
    precision=0.999, accuracy=0.997, completeness=1.0, consistency=0.995, reliability=0.998
)
FAILED_QUALITY = QualityMetrics()


@dataclass(frozen=True)
class ProcessingResult:
    success: bool
    metrics: BandMetrics
    quality: QualityMetrics
    result: Any = None
    error: str | None = None
    error_type: str | None = None

    def unwrap(self) -> Any:
        if not self.success:
            raise RuntimeError(f"{self.error_type}: {self.error}")
        return self.result


# --- Factor helpers ----------------------------------------------------------

def product_of(factors) -> int:
    out = 1
    for f in factors:
        out *= f.prime ** f.exponent
    return out


def factors_from_map(fmap: dict[int, int]) -> tuple[Factor, ...]:
    return tuple(Factor(int(p), int(e)) for p, e in sorted(fmap.items()) if e > 0)
