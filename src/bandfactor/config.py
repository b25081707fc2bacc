# config.py
"""
Profiles and the engine options derived from them.

A profile is a TOML file with one table per section (``[ENGINE]``,
``[POOL]``, ``[DISTRIBUTED]`` ...) and an optional ``[_PROFILE_]`` table that
names and describes it. Profiles are looked up in the workspace by name or
loaded from an explicit ``.toml`` path.
"""
from __future__ import annotations

from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any

try:
    import tomllib as toml
except ImportError:
    import tomli as toml  # type: ignore

from bandfactor.errors import UserInputError
from bandfactor.runtime import CFG
from bandfactor.workspace import ensure_workspace_seeded, profiles_dir

PROFILE_META = "_PROFILE_"


@dataclass
class Settings:
    """Section tables of one profile; ``runtime.APPLY`` consumes ``as_dict()``."""
    data: dict[str, Any]
    name: str
    description: str
    _source: Path | None = None

    def as_dict(self) -> dict[str, Any]:
        return self.data


# --- I/O -------------------------------------------------------------------

def _load_toml(path: Path) -> dict[str, Any]:
    # the decoder message already carries "(at line L, column C)"
    try:
        return toml.loads(path.read_text(encoding="utf-8"))
    except toml.TOMLDecodeError as e:
        raise UserInputError(f"profile {path.name} is not valid TOML: {e}") from None
    except (OSError, UnicodeDecodeError) as e:
        raise UserInputError(f"cannot read profile {path}: {e}") from None


def _split_profile_data(raw: dict[str, Any], fallback_name: str) -> tuple[dict[str, Any], str, str]:
    meta = raw.pop(PROFILE_META, None) or {}
    name = str(meta.get("name") or fallback_name)
    description = " ".join(str(meta.get("description", "")).split()) or "(no description)"
    return raw, name, description


# --- Public API ------------------------------------------------------------

def list_profiles() -> list[str]:
    ensure_workspace_seeded()
    return sorted(p.stem for p in profiles_dir().glob("*.toml"))


def load_settings(name_or_path: str | Path | None = None) -> Settings:
    """
    Load a profile by name from the workspace, or from an explicit ``.toml``
    path. Missing files raise ``UserInputError``.
    """
    if name_or_path and str(name_or_path).lower().endswith(".toml"):
        path = Path(name_or_path).expanduser()
    else:
        ensure_workspace_seeded()
        path = profiles_dir() / f"{name_or_path or 'default'}.toml"
    if not path.exists():
        raise UserInputError(f"profile '{name_or_path or 'default'}' not found at {path}")

    data, name, description = _split_profile_data(_load_toml(path), path.stem)
    return Settings(data=data, name=name, description=description, _source=path)


@dataclass
class EngineConfig:
    """
    Recognized strategy options.

    ``band`` / ``strategy`` force a particular strategy instead of routing by
    bit length. ``seed`` feeds the injected ``random.Random``.
    """
    enable_caching: bool = True
    cache_size: int = 1000
    retry_attempts: int = 3
    timeout_ms: int = 30000
    band: int | None = None
    strategy: str | None = None
    seed: int | None = None
    max_bits: int = 4096

    @classmethod
    def from_runtime(cls, **overrides: Any) -> EngineConfig:
        cfg = cls(
            enable_caching=bool(CFG("ENGINE.ENABLE_CACHING", True)),
            cache_size=int(CFG("ENGINE.CACHE_SIZE", 1000)),
            retry_attempts=int(CFG("ENGINE.RETRY_ATTEMPTS", 3)),
            timeout_ms=int(CFG("ENGINE.TIMEOUT_MS", 30000)),
            seed=CFG("ENGINE.SEED", None),
            max_bits=int(CFG("ENGINE.MAX_BITS", 4096)),
        )
        known = {f.name for f in fields(cls)}
        for k, v in overrides.items():
            if k not in known:
                raise UserInputError(f"unknown engine option '{k}'")
            if v is not None:
                setattr(cfg, k, v)
        return cfg
