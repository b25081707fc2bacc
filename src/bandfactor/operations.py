# operations.py
"""
Typed operation requests.

Each request is a small frozen dataclass tagged with a wire name (``kind``).
Strategies declare the closed set of variants they accept; ``parse_operation``
turns a ``{"type": ..., **params}`` mapping into the matching variant.
"""
from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, fields
from typing import Any, ClassVar

from bandfactor.errors import InputValidationError, UnknownOperationError, UnsupportedInputTypeError

OPERATION_TYPES: dict[str, type[Operation]] = {}


def _op(kind: str):
    def deco(cls):
        cls.kind = kind
        OPERATION_TYPES[kind] = cls
        return cls
    return deco


@dataclass(frozen=True)
class Operation:
    kind: ClassVar[str] = ""


@dataclass(frozen=True)
class NumberOperation(Operation):
    """Requests about a single integer; ``n`` is checked against the band range."""
    n: int


# --- shared ---------------------------------------------------------------------

@_op("factor")
@dataclass(frozen=True)
class FactorOp(NumberOperation):
    pass


@_op("isPrime")
@dataclass(frozen=True)
class IsPrimeOp(NumberOperation):
    pass


@_op("nextPrime")
@dataclass(frozen=True)
class NextPrimeOp(NumberOperation):
    pass


@_op("primeFactors")
@dataclass(frozen=True)
class PrimeFactorsOp(NumberOperation):
    pass


# --- ranges & counts ---------------------------------------------------------------

@_op("generatePrimes")
@dataclass(frozen=True)
class GeneratePrimesOp(Operation):
    start: int
    end: int


@_op("primeCount")
@dataclass(frozen=True)
class PrimeCountOp(Operation):
    limit: int


@_op("sieveRange")
@dataclass(frozen=True)
class SieveRangeOp(Operation):
    start: int
    end: int


# --- parallel -------------------------------------------------------------------------

@_op("batchFactor")
@dataclass(frozen=True)
class BatchFactorOp(Operation):
    numbers: tuple[int, ...]


@_op("parallelSieve")
@dataclass(frozen=True)
class ParallelSieveOp(Operation):
    start: int
    end: int


@_op("distributedFactor")
@dataclass(frozen=True)
class DistributedFactorOp(NumberOperation):
    pass


# --- streaming ------------------------------------------------------------------------

@_op("streamingFactor")
@dataclass(frozen=True)
class StreamingFactorOp(NumberOperation):
    pass


@_op("generatePrimeStream")
@dataclass(frozen=True)
class GeneratePrimeStreamOp(Operation):
    start: int
    count: int


@_op("streamingSieve")
@dataclass(frozen=True)
class StreamingSieveOp(Operation):
    start: int
    end: int


@_op("batchStreamProcess")
@dataclass(frozen=True)
class BatchStreamProcessOp(Operation):
    numbers: tuple[int, ...]


@_op("primeGeneration")
@dataclass(frozen=True)
class PrimeGenerationOp(Operation):
    count: int
    bit_size: int


# --- distributed ----------------------------------------------------------------------

@_op("distributedSieve")
@dataclass(frozen=True)
class DistributedSieveOp(Operation):
    start: int
    end: int


@_op("networkStatus")
@dataclass(frozen=True)
class NetworkStatusOp(Operation):
    pass


@_op("consensusPrimality")
@dataclass(frozen=True)
class ConsensusPrimalityOp(Operation):
    """Not range-guarded: any positive integer can be put to a vote."""
    n: int


@_op("faultTolerantOperation")
@dataclass(frozen=True)
class FaultTolerantOp(NumberOperation):
    operation: str = "factor"


# --- hybrid ---------------------------------------------------------------------------

@_op("adaptiveFactor")
@dataclass(frozen=True)
class AdaptiveFactorOp(NumberOperation):
    pass


@_op("algorithmSelection")
@dataclass(frozen=True)
class AlgorithmSelectionOp(NumberOperation):
    pass


@_op("performanceAnalysis")
@dataclass(frozen=True)
class PerformanceAnalysisOp(Operation):
    pass


@_op("updateWeights")
@dataclass(frozen=True)
class UpdateWeightsOp(Operation):
    algorithm: str
    success: bool
    processing_time_ms: float = 0.0


@_op("crossBandOptimize")
@dataclass(frozen=True)
class CrossBandOptimizeOp(Operation):
    numbers: tuple[int, ...] = field(default_factory=tuple)


# --- spectral -------------------------------------------------------------------------

@_op("spectralFactor")
@dataclass(frozen=True)
class SpectralFactorOp(NumberOperation):
    pass


@_op("spectralAnalysis")
@dataclass(frozen=True)
class SpectralAnalysisOp(NumberOperation):
    window: str | None = None


@_op("quantumSimulation")
@dataclass(frozen=True)
class QuantumSimulationOp(NumberOperation):
    pass


@_op("latticeReduction")
@dataclass(frozen=True)
class LatticeReductionOp(NumberOperation):
    pass


@_op("algebraicNumberTheory")
@dataclass(frozen=True)
class AlgebraicNumberTheoryOp(NumberOperation):
    pass


@_op("transformOptimization")
@dataclass(frozen=True)
class TransformOptimizationOp(NumberOperation):
    pass


# -----------------------------------------------------------------------------
#  Parsing
# -----------------------------------------------------------------------------

def _coerce(name: str, value: Any) -> Any:
    if name in ("n", "start", "end", "limit", "count", "bit_size"):
        if isinstance(value, bool) or not isinstance(value, (int, str)):
            raise InputValidationError(f"parameter '{name}' must be an integer")
        try:
            return int(value)
        except ValueError:
            raise InputValidationError(f"parameter '{name}' must be an integer") from None
    if name == "numbers":
        if not isinstance(value, (list, tuple)):
            raise InputValidationError("parameter 'numbers' must be a list of integers")
        return tuple(int(v) for v in value)
    return value


_ALIASES = {"bitSize": "bit_size", "number": "n", "value": "n", "processingTime": "processing_time_ms"}


def parse_operation(request: Mapping[str, Any]) -> Operation:
    """
    ``{"type": "generatePrimes", "start": 10, "end": 100}`` → ``GeneratePrimesOp(10, 100)``.
    """
    if not isinstance(request, Mapping):
        raise UnsupportedInputTypeError(f"unsupported request shape {type(request).__name__}")
    kind = request.get("type")
    if not isinstance(kind, str):
        raise UnsupportedInputTypeError("operation request needs a string 'type'")
    cls = OPERATION_TYPES.get(kind)
    if cls is None:
        raise UnknownOperationError(f"unknown operation '{kind}'")
    params = {_ALIASES.get(k, k): v for k, v in request.items() if k != "type"}
    names = {f.name for f in fields(cls)}
    extra = set(params) - names
    if extra:
        raise InputValidationError(f"{kind}: unexpected parameter(s) {sorted(extra)}")
    try:
        return cls(**{k: _coerce(k, v) for k, v in params.items()})
    except TypeError as e:
        raise InputValidationError(f"{kind}: {e}") from None
