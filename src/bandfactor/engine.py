# engine.py
"""
Classify-then-route facade.

``Engine`` owns one classifier, one registry and one strategy instance per
band (created on first use, so per-strategy caches survive across calls).
``process`` never raises; routing problems come back as failed results just
like strategy failures do.
"""
from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Mapping
from typing import Any

from bandfactor.bands import BAND_FOR_STRATEGY, Band, BandClassifier, ProcessingStrategy, bit_length
from bandfactor.collaborators import Collaborators
from bandfactor.config import EngineConfig
from bandfactor.context import (
    FAILED_QUALITY,
    BandMetrics,
    Constraints,
    ProcessingContext,
    ProcessingResult,
)
from bandfactor.errors import (
    BandFactorError,
    InputValidationError,
    UnknownStrategyError,
    UnsupportedInputTypeError,
)
from bandfactor.metrics import MetricsScorer
from bandfactor.operations import Operation, parse_operation
from bandfactor.registry import StrategyRegistry
from bandfactor.runtime import CFG
from bandfactor.strategies.base import BandStrategy

logger = logging.getLogger(__name__)


def _failed(e: BaseException) -> ProcessingResult:
    return ProcessingResult(
        success=False,
        metrics=BandMetrics(),
        quality=FAILED_QUALITY,
        error=str(e) or type(e).__name__,
        error_type=type(e).__name__,
    )


def collaborators_from_runtime() -> Collaborators:
    return Collaborators.defaults(
        pool_kind=str(CFG("POOL.KIND", "thread")),
        min_workers=int(CFG("POOL.MIN_WORKERS", 2)),
        max_workers=int(CFG("POOL.MAX_WORKERS", 8)),
        task_timeout_s=float(CFG("POOL.TASK_TIMEOUT_S", 30.0)),
        threshold=float(CFG("STREAMING.BACKPRESSURE_THRESHOLD", 0.85)),
        poll_interval_s=float(CFG("STREAMING.POLL_INTERVAL_MS", 100)) / 1000.0,
        max_memory=int(CFG("STREAMING.MAX_MEMORY_MB", 1024)) << 20,
    )


class Engine:
    def __init__(self, config: EngineConfig | None = None, collaborators: Collaborators | None = None,
                 *, registry: StrategyRegistry | None = None, scorer: MetricsScorer | None = None):
        self.config = config or EngineConfig()
        self.collaborators = collaborators if collaborators is not None else Collaborators.defaults()
        self.registry = registry or StrategyRegistry(self.config, self.collaborators, scorer=scorer)
        self.classifier = BandClassifier(cache_size=self.config.cache_size, max_bits=self.config.max_bits)
        self._strategies: dict[Band, BandStrategy] = {}
        self.requests = 0
        self.failures = 0

    @classmethod
    def from_runtime(cls, **overrides: Any) -> Engine:
        return cls(EngineConfig.from_runtime(**overrides), collaborators_from_runtime())

    # --- routing -------------------------------------------------------------

    def _override(self) -> Band | None:
        if self.config.band is not None:
            try:
                return Band(int(self.config.band))
            except ValueError:
                raise UnknownStrategyError(f"no band {self.config.band!r}") from None
        if self.config.strategy:
            return BAND_FOR_STRATEGY[ProcessingStrategy.parse(self.config.strategy)]
        return None

    def _band_for_number(self, n: Any) -> Band:
        if isinstance(n, bool) or not isinstance(n, int):
            raise UnsupportedInputTypeError(f"cannot route {type(n).__name__} input by size")
        if n < 1:
            raise InputValidationError(f"expected a positive integer, got {n}")
        return self.classifier.band_for(n)

    def route(self, value: Any) -> Band:
        """Band that will handle ``value``: the configured override, else by bit length."""
        forced = self._override()
        if forced is not None:
            return forced
        if isinstance(value, Mapping):
            value = parse_operation(value)
        if isinstance(value, Operation):
            n = getattr(value, "n", None)
            if n is None:
                raise InputValidationError(f"operation '{value.kind}' needs an explicit band or strategy")
            return self._band_for_number(n)
        if isinstance(value, (list, tuple)):
            bands = {self._band_for_number(n) for n in value}
            if len(bands) != 1:
                raise InputValidationError("mixed-band batch; use process_batch")
            return bands.pop()
        return self._band_for_number(value)

    def strategy_for(self, band: Band) -> BandStrategy:
        band = Band(band)
        strat = self._strategies.get(band)
        if strat is None:
            strat = self.registry.create_for(band)
            self._strategies[band] = strat
        return strat

    # --- entry points --------------------------------------------------------

    def process(self, value: Any, *, timeout_ms: int | None = None) -> ProcessingResult:
        self.requests += 1
        try:
            band = self.route(value)
            strat = self.strategy_for(band)
        except BandFactorError as e:
            self.failures += 1
            logger.debug("routing failed: %s", e)
            return _failed(e)
        bits = bit_length(value) if isinstance(value, int) and not isinstance(value, bool) else 0
        ctx = ProcessingContext(band=band, bit_size=bits, constraints=Constraints(time_ms=timeout_ms))
        result = strat.process(value, ctx)
        if not result.success:
            self.failures += 1
        return result

    def process_batch(self, numbers: list[int], *, timeout_ms: int | None = None) -> list[ProcessingResult]:
        """
        Group by band, run one batch call per band and hand results back in
        input order. A failed group fails each of its members.
        """
        out: list[ProcessingResult | None] = [None] * len(numbers)
        groups: dict[Band, list[int]] = defaultdict(list)
        for i, n in enumerate(numbers):
            try:
                forced = self._override()
                groups[forced if forced is not None else self._band_for_number(n)].append(i)
            except BandFactorError as e:
                out[i] = _failed(e)
        for band in sorted(groups):
            idxs = groups[band]
            self.requests += 1
            try:
                strat = self.strategy_for(band)
            except BandFactorError as e:
                for i in idxs:
                    out[i] = _failed(e)
                continue
            ctx = ProcessingContext(band=band, constraints=Constraints(time_ms=timeout_ms))
            res = strat.process([numbers[i] for i in idxs], ctx)
            if not res.success:
                self.failures += 1
                for i in idxs:
                    out[i] = res
                continue
            for i, item in zip(idxs, res.result):
                out[i] = ProcessingResult(success=True, metrics=res.metrics, quality=res.quality, result=item)
        return out

    def statistics(self) -> dict[str, Any]:
        return {
            "requests": self.requests,
            "failures": self.failures,
            "classifier": self.classifier.statistics(),
            "strategies": {b.name: s.statistics() for b, s in sorted(self._strategies.items())},
        }

    def shutdown(self) -> None:
        self.collaborators.shutdown()

    def __enter__(self) -> Engine:
        return self

    def __exit__(self, *exc) -> None:
        self.shutdown()
