# strategies/base.py
"""
Execution contract shared by every band strategy.

``process`` is the only public entry point. It validates the call shape,
guards the band range, runs the work under retry-with-backoff inside a
timeout race, updates the running counters and always returns a
``ProcessingResult``; exceptions never leave it.
"""
from __future__ import annotations

import logging
import random
import time
from collections.abc import Callable, Mapping, Sequence
from typing import Any, ClassVar

from bandfactor.bands import Band, ProcessingStrategy, bit_length
from bandfactor.collaborators import Collaborators
from bandfactor.config import EngineConfig
from bandfactor.context import (
    FAILED_QUALITY,
    SUCCESS_QUALITY,
    FactorizationResult,
    ProcessingContext,
    ProcessingResult,
    factors_from_map,
)
from bandfactor.errors import (
    CollaboratorNotConfiguredError,
    InputValidationError,
    NodeFailureError,
    OutOfBandRangeError,
    UnknownOperationError,
    UnsupportedInputTypeError,
)
from bandfactor.metrics import MetricInputs, MetricsScorer, StrategyCounters
from bandfactor.operations import FactorOp, IsPrimeOp, NumberOperation, Operation, parse_operation
from bandfactor.primality import miller_rabin
from bandfactor.utility import Deadline, race_with_timeout, retry_with_backoff

logger = logging.getLogger(__name__)

# Errors worth another attempt inside one process() call.
TRANSIENT_ERRORS: tuple[type[BaseException], ...] = (NodeFailureError,)


class BandStrategy:
    BAND: ClassVar[Band]
    NAME: ClassVar[ProcessingStrategy]
    ACCELERATION: ClassVar[float] = 1.0
    MEMORY_ESTIMATE: ClassVar[int] = 1024 * 1024
    OPERATIONS: ClassVar[tuple[type[Operation], ...]] = (FactorOp, IsPrimeOp)

    def __init__(self, config: EngineConfig | None = None, collaborators: Collaborators | None = None,
                 *, rng: random.Random | None = None, scorer: MetricsScorer | None = None):
        self.config = config or EngineConfig()
        self.collaborators = collaborators or Collaborators()
        self.rng = rng or random.Random(self.config.seed)
        self.scorer = scorer or MetricsScorer()
        self.counters = StrategyCounters()
        self.cache = None
        if self.config.enable_caching and self.collaborators.cache_provider is not None:
            self.cache = self.collaborators.cache_provider(self.config.cache_size)
        self._handlers: dict[type[Operation], Callable[[Any, Deadline], Any]] = self.handlers()
        missing = [op.kind for op in self.OPERATIONS if op not in self._handlers]
        if missing:
            raise TypeError(f"{type(self).__name__} declares operations without handlers: {missing}")

    # --- overridables --------------------------------------------------------

    def handlers(self) -> dict[type[Operation], Callable[[Any, Deadline], Any]]:
        return {
            FactorOp: lambda op, dl: self.factorize(op.n, dl),
            IsPrimeOp: lambda op, dl: self.is_prime(op.n, dl),
        }

    def _factorize(self, n: int, deadline: Deadline) -> FactorizationResult:
        raise NotImplementedError

    def is_prime(self, n: int, deadline: Deadline) -> bool:
        return miller_rabin(n, 20, self.rng)

    def process_batch(self, numbers: list[int], deadline: Deadline) -> list[FactorizationResult]:
        return [self.factorize(n, deadline) for n in numbers]

    @property
    def memory_estimate(self) -> int:
        return self.MEMORY_ESTIMATE

    # --- contract ------------------------------------------------------------

    def supports(self, band: Band | int) -> bool:
        try:
            return Band(band) == self.BAND
        except ValueError:
            return False

    def process(self, value: Any, context: ProcessingContext | None) -> ProcessingResult:
        start = time.perf_counter()
        try:
            if value is None:
                raise InputValidationError("input is required")
            if context is None or getattr(context, "band", None) is None:
                raise InputValidationError("processing context with a band is required")
            work = self._prepare(value)
            timeout_ms = context.constraints.time_ms or self.config.timeout_ms
            deadline = Deadline(timeout_ms)

            def attempt() -> Any:
                return retry_with_backoff(lambda: work(deadline), attempts=self.config.retry_attempts,
                                          retry_on=TRANSIENT_ERRORS)

            result = race_with_timeout(attempt, timeout_ms, deadline)
        except Exception as e:
            duration = (time.perf_counter() - start) * 1000.0
            self.counters.record(duration, False)
            logger.debug("%s failed after %.1f ms: %s: %s", self.NAME.value, duration, type(e).__name__, e)
            return ProcessingResult(
                success=False,
                metrics=self._metrics(duration),
                quality=FAILED_QUALITY,
                error=str(e) or type(e).__name__,
                error_type=type(e).__name__,
            )
        duration = (time.perf_counter() - start) * 1000.0
        self.counters.record(duration, True)
        return ProcessingResult(success=True, result=result, metrics=self._metrics(duration),
                                quality=SUCCESS_QUALITY)

    def _prepare(self, value: Any) -> Callable[[Deadline], Any]:
        """Validate the call shape up front; returns the deferred work."""
        if isinstance(value, bool):
            raise UnsupportedInputTypeError("booleans are not numbers to factor")
        if isinstance(value, int):
            op = FactorOp(value)
        elif isinstance(value, (list, tuple)):
            numbers = [self._check_number(v) for v in value]
            return lambda dl: self.process_batch(numbers, dl)
        elif isinstance(value, Operation):
            op = value
        elif isinstance(value, Mapping):
            op = parse_operation(value)
        else:
            raise UnsupportedInputTypeError(f"unsupported input type {type(value).__name__}")

        handler = self._handlers.get(type(op))
        if handler is None or type(op) not in self.OPERATIONS:
            raise UnknownOperationError(f"{self.NAME.value} does not support '{op.kind}'")
        if isinstance(op, NumberOperation):
            self._check_number(op.n)
        return lambda dl: handler(op, dl)

    def _check_number(self, n: Any) -> int:
        if isinstance(n, bool) or not isinstance(n, int):
            raise UnsupportedInputTypeError(f"expected an integer, got {type(n).__name__}")
        if n < 1:
            raise InputValidationError(f"expected a positive integer, got {n}")
        bits = bit_length(n)
        lo, hi = self.bit_range()
        if not lo <= bits <= hi:
            raise OutOfBandRangeError(bits, self.BAND.name, lo, hi)
        return n

    def bit_range(self) -> tuple[int, int]:
        lo, hi = self.BAND.min_bits, self.BAND.max_bits
        if self.BAND is Band.ULTRASONIC_2:
            # the top band stretches to the configured ceiling
            hi = max(hi, int(self.config.max_bits))
        return lo, hi

    def _require(self, name: str, operation: str = "") -> Any:
        handle = getattr(self.collaborators, name, None)
        if handle is None:
            raise CollaboratorNotConfiguredError(name, operation)
        return handle

    # --- shared helpers ------------------------------------------------------

    def factorize(self, n: int, deadline: Deadline) -> FactorizationResult:
        if self.cache is not None:
            hit = self.cache.get(n)
            if hit is not None:
                return FactorizationResult(n=n, factors=hit.factors, method="cache-hit", cached=True,
                                           unsplit=hit.unsplit)
        res = self._factorize(n, deadline)
        if self.cache is not None:
            self.cache.set(n, res)
        return res

    def _result(self, n: int, fmap: dict[int, int], method: str,
                unsplit: Sequence[int] = ()) -> FactorizationResult:
        return FactorizationResult(n=n, factors=factors_from_map(fmap), method=method,
                                   unsplit=tuple(sorted(set(unsplit))))

    def _metrics(self, duration_ms: float):
        c = self.counters
        return self.scorer.band_metrics(MetricInputs(
            duration_ms=duration_ms,
            acceleration=self.ACCELERATION,
            memory_usage=self.memory_estimate,
            caching=self.cache is not None,
            operations=c.operations,
            successes=c.successes,
            failures=c.failures,
            durations=tuple(c.durations),
        ))

    def statistics(self) -> dict[str, Any]:
        stats: dict[str, Any] = {"strategy": self.NAME.value, "band": self.BAND.name, **self.counters.as_dict()}
        if self.cache is not None:
            stats["cache_entries"] = len(self.cache)
            stats["cache_hit_rate"] = getattr(self.cache, "hit_rate", 0.0)
        return stats
