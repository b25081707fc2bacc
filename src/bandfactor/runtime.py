# runtime.py
"""
Process-wide view of the active profile.

The CLI loads a profile and hands it to ``APPLY``; everything else reads
single values with ``CFG("SECTION.KEY", default)``. The runtime lives in a
``ContextVar``, so threads started by a strategy see a fresh, empty runtime:
strategies read their settings in ``__init__`` on the caller's thread.
"""
from __future__ import annotations

from collections.abc import Mapping
from contextvars import ContextVar
from dataclasses import dataclass, field
from importlib.util import find_spec
from typing import Any

from colorama import Fore, Style

REQUIRED_MODULES = ("gmpy2", "sympy", "numpy", "psutil")


@dataclass
class Runtime:
    profile_name: str = "default"
    settings: dict[str, Any] = field(default_factory=dict)
    debug: bool = False       # tracebacks + DEBUG logging in the CLI
    seed: int | None = None   # seeds every injected random source

    def apply(self, settings: Any) -> None:
        """Take a ``Settings`` object or a plain section dict."""
        data = settings.as_dict() if hasattr(settings, "as_dict") else settings
        if not isinstance(data, Mapping):
            raise TypeError(f"cannot apply settings of type {type(settings).__name__}")
        self.profile_name = getattr(settings, "name", None) or "default"
        self.settings = dict(data)

        debug = self.get("BEHAVIOUR.DEBUG")
        if isinstance(debug, bool):
            self.debug = debug
        seed = self.get("ENGINE.SEED")
        if isinstance(seed, int) and not isinstance(seed, bool):
            self.seed = seed

    def get(self, key: str, default: Any = None) -> Any:
        """Dotted lookups, e.g. 'DISTRIBUTED.REDUNDANCY'."""
        node: Any = self.settings
        for part in key.split(".") if key else ():
            if not isinstance(node, Mapping) or part not in node:
                return default
            node = node[part]
        return node if key else default


_current_runtime: ContextVar[Runtime | None] = ContextVar("bandfactor_runtime", default=None)


def current() -> Runtime:
    rt = _current_runtime.get()
    if rt is None:
        rt = Runtime()
        _current_runtime.set(rt)
    return rt


def reset() -> None:
    _current_runtime.set(None)


def APPLY(settings: Any) -> None:
    current().apply(settings)


def CFG(key: str, default: Any = None) -> Any:
    return current().get(key, default)


def ensure_runtime_deps(strict: bool = True) -> bool:
    """
    Check that the numeric stack can be imported, without importing it.
    Prints an install hint when something is missing; with ``strict`` the
    caller should stop.
    """
    missing = [name for name in REQUIRED_MODULES if find_spec(name) is None]
    if not missing:
        return True
    print(f"{Fore.RED}{Style.BRIGHT}\nMissing dependencies:{Style.RESET_ALL} {', '.join(missing)}")
    print(f"Install with: {Fore.YELLOW}pip install {' '.join(missing)}{Style.RESET_ALL}")
    return not strict
