# tests/conftest.py
from __future__ import annotations

import random

import pytest

from bandfactor.collaborators import (
    BackpressureController,
    Collaborators,
    MemoryManager,
    WorkerPool,
    lru_cache_provider,
)
from bandfactor.config import EngineConfig
from bandfactor.runtime import reset as reset_runtime

SEED = 20240607


# ---------- isolation ---------------------------------------------------------


@pytest.fixture(autouse=True)
def _isolated_runtime(tmp_path, monkeypatch):
    """Fresh runtime (code defaults only) and a throwaway workspace for every test."""
    monkeypatch.setenv("BANDFACTOR_HOME", str(tmp_path / "home"))
    reset_runtime()
    yield
    reset_runtime()


# ---------- shared handles ----------------------------------------------------


@pytest.fixture
def rng():
    return random.Random(SEED)


@pytest.fixture
def config():
    return EngineConfig(seed=SEED, timeout_ms=60_000)


@pytest.fixture(scope="session")
def pool():
    p = WorkerPool(4, kind="thread")
    yield p
    p.shutdown()


@pytest.fixture
def collaborators(pool):
    """Thread pool and a memory view that never reports pressure."""
    mm = MemoryManager(max_memory=1 << 30, usage_source=lambda: 0)
    return Collaborators(
        cache_provider=lru_cache_provider(),
        worker_pool=pool,
        memory_manager=mm,
        backpressure=BackpressureController(0.85, level_source=mm.usage_ratio, poll_interval_s=0.001),
    )


@pytest.fixture
def make_strategy(config, collaborators):
    """Build a strategy class with the shared config, collaborators and a seeded rng."""
    def make(cls, *, cfg=None, collab=None, **kw):
        return cls(cfg or config, collab if collab is not None else collaborators,
                   rng=random.Random(SEED), **kw)
    return make
