# src/bandfactor/registry.py
from __future__ import annotations

import inspect
import logging
import pkgutil
import random
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass, field
from importlib import import_module

from bandfactor.bands import BAND_FOR_STRATEGY, Band, ProcessingStrategy
from bandfactor.collaborators import Collaborators
from bandfactor.config import EngineConfig
from bandfactor.errors import UnknownStrategyError
from bandfactor.metrics import MetricsScorer

logger = logging.getLogger(__name__)

STRATEGY_PACKAGE = "bandfactor.strategies"


# ---------- Decorator (only tags the class; no side effects) ----------


def strategy(*, band: Band, name: ProcessingStrategy, description: str = ""):
    def deco(cls):
        cls.__is_strategy__ = True
        cls.BAND = band
        cls.NAME = name
        cls.description = description or (inspect.getdoc(cls) or "").split("\n")[0]
        return cls
    return deco


def _is_strategy(obj) -> bool:
    return inspect.isclass(obj) and obj.__dict__.get("__is_strategy__", False)


# --------------------- Discovery → Index ----------------------


@dataclass
class Index:
    factories: dict[Band, type] = field(default_factory=OrderedDict)   # band -> strategy class
    sources: dict[Band, str] = field(default_factory=dict)             # band -> module name
    failed: list[tuple[str, str]] = field(default_factory=list)        # (module, error)


def discover(package: str = STRATEGY_PACKAGE) -> Index:
    """Import every module of ``package`` and index the tagged strategy classes by band."""
    index = Index()
    pkg = import_module(package)
    for info in sorted(pkgutil.iter_modules(pkg.__path__), key=lambda m: m.name):
        modname = f"{package}.{info.name}"
        try:
            mod = import_module(modname)
        except ImportError as e:
            index.failed.append((modname, str(e)))
            logger.warning("skipping strategy module %s: %s", modname, e)
            continue
        for _, obj in inspect.getmembers(mod, _is_strategy):
            if obj.__module__ != mod.__name__:
                continue
            if obj.BAND in index.factories:
                logger.warning("duplicate strategy for %s in %s; keeping %s",
                               obj.BAND.name, modname, index.sources[obj.BAND])
                continue
            index.factories[obj.BAND] = obj
            index.sources[obj.BAND] = modname
    return index


class StrategyRegistry:
    """
    Maps bands and processing-strategy names to strategy factories.

    Shared collaborators and the engine config are injected into every
    instance the registry creates. Each call creates a fresh instance, so
    callers that want shared caches should keep the instance they get.
    """

    def __init__(self, config: EngineConfig | None = None, collaborators: Collaborators | None = None,
                 *, scorer: MetricsScorer | None = None, autodiscover: bool = True):
        self.config = config or EngineConfig()
        self.collaborators = collaborators or Collaborators()
        self.scorer = scorer
        self._factories: dict[Band, Callable[..., object]] = {}
        if autodiscover:
            for band, cls in discover().factories.items():
                self.register(band, cls)

    def register(self, band: Band, factory: Callable[..., object]) -> None:
        self._factories[Band(band)] = factory

    def unregister(self, band: Band) -> None:
        self._factories.pop(Band(band), None)

    def bands(self) -> list[Band]:
        return sorted(self._factories)

    def is_registered(self, band: Band) -> bool:
        return band in self._factories

    def create_for(self, band: Band | int, *, rng: random.Random | None = None):
        try:
            key = Band(band)
        except ValueError:
            raise UnknownStrategyError(f"no band {band!r}") from None
        factory = self._factories.get(key)
        if factory is None:
            raise UnknownStrategyError(f"no strategy registered for band {key.name}")
        if rng is None and self.config.seed is not None:
            # distinct but reproducible stream per band
            rng = random.Random(self.config.seed * 31 + int(key))
        return factory(self.config, self.collaborators, rng=rng, scorer=self.scorer)

    def create_for_strategy_name(self, name: str | ProcessingStrategy, *, rng: random.Random | None = None):
        return self.create_for(BAND_FOR_STRATEGY[ProcessingStrategy.parse(name)], rng=rng)
