from __future__ import annotations

import os
import shutil
from importlib.resources import as_file
from importlib.resources import files as pkg_files
from pathlib import Path


def workspace_dir() -> Path:
    env = os.environ.get("BANDFACTOR_HOME")
    if env:
        return Path(env).expanduser().resolve()
    return (Path.home() / ".bandfactor").resolve()


def profiles_dir() -> Path:
    return workspace_dir() / "profiles"


def seed_workspace(*, overwrite: bool = False) -> tuple[Path, int]:
    """
    Copy the packaged profiles into the user's workspace.

    overwrite=False → copy-if-missing
    overwrite=True  → force replace

    Returns: (workspace_path, files_copied)
    """
    dst = profiles_dir()
    dst.mkdir(parents=True, exist_ok=True)
    copied = 0
    with as_file(pkg_files("bandfactor") / "profiles") as real:
        for p in Path(real).glob("*.toml"):
            target = dst / p.name
            if overwrite or not target.exists():
                shutil.copy2(p, target)
                copied += 1
    return workspace_dir(), copied


def ensure_workspace_seeded() -> Path:
    if not any(profiles_dir().glob("*.toml")):
        seed_workspace()
    return workspace_dir()
