from __future__ import annotations

from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as _pkg_version

# Version
try:
    __version__ = _pkg_version("bandfactor")
except PackageNotFoundError:
    __version__ = "0+unknown"

# Public API re-exports
from .bands import Band, BandClassifier, ProcessingStrategy, band_of
from .config import EngineConfig, load_settings
from .context import FactorizationResult, ProcessingContext, ProcessingResult
from .engine import Engine
from .registry import StrategyRegistry, discover
from .runtime import APPLY, CFG
from .workspace import workspace_dir

__all__ = [
    "APPLY",
    "CFG",
    "Band",
    "BandClassifier",
    "Engine",
    "EngineConfig",
    "FactorizationResult",
    "ProcessingContext",
    "ProcessingResult",
    "ProcessingStrategy",
    "StrategyRegistry",
    "__version__",
    "band_of",
    "discover",
    "load_settings",
    "workspace_dir"
]
