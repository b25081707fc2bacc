# tests/test_collaborators.py
from __future__ import annotations

import time

import pytest

from bandfactor.algorithms import trial_segment
from bandfactor.collaborators import (
    BackpressureController,
    Collaborators,
    LRUCache,
    MemoryManager,
    WorkerPool,
    lru_cache_provider,
)
from bandfactor.errors import StrategyTimeoutError
from bandfactor.utility import Deadline

# ---------- cache -------------------------------------------------------------


def test_lru_cache_evicts_least_recent():
    c = LRUCache(2)
    c.set("a", 1)
    c.set("b", 2)
    assert c.get("a") == 1            # a is now most recent
    c.set("c", 3)
    assert "b" not in c and "a" in c
    assert c.evictions == 1
    assert c.get("b", "gone") == "gone"
    assert c.hit_rate == 0.5


def test_lru_cache_ttl():
    c = LRUCache(4, ttl_s=0.05)
    c.set(1, "x")
    assert c.get(1) == "x"
    time.sleep(0.1)
    assert c.get(1) is None
    assert len(c) == 0


def test_cache_provider_builds_independent_caches():
    make = lru_cache_provider()
    a, b = make(3), make(5)
    a.set(1, 1)
    assert 1 not in b
    assert (a.capacity, b.capacity) == (3, 5)


# ---------- worker pool -------------------------------------------------------


def _boom(x):
    raise ValueError(x)


def test_map_ordered_keeps_input_order(pool):
    n = 3 * 5 * 17 * 257 * 65537
    args = [(n, lo, lo + 99) for lo in range(2, 1000, 100)]
    out = pool.map_ordered(trial_segment, args, max_in_flight=3)
    assert [p for chunk in out for p in chunk] == [3, 5, 17, 257]


def test_map_ordered_falls_back_on_failure(pool, caplog):
    out = pool.map_ordered(_boom, [(1,), (2,)], fallback=lambda x: -x)
    assert out == [-1, -2]
    assert "pool task 0 failed" in caplog.text


def test_map_ordered_without_fallback_raises(pool):
    with pytest.raises(StrategyTimeoutError):
        pool.map_ordered(_boom, [(1,)])


def test_map_ordered_honours_deadline(pool):
    d = Deadline(None)
    d.cancel()
    with pytest.raises(StrategyTimeoutError):
        pool.map_ordered(abs, [(-1,)], deadline=d)


def test_map_ordered_budget_is_per_task():
    # four 0.1 s tasks on one worker take 0.4 s together but each fits a 0.25 s budget
    with WorkerPool(1, kind="thread") as p:
        out = p.map_ordered(time.sleep, [(0.1,)] * 4, timeout=0.25, max_in_flight=4)
        assert out == [None] * 4
        assert p.stats()["timed_out"] == 0


def test_map_ordered_reruns_timed_out_task_sequentially(caplog):
    with WorkerPool(1, kind="thread") as p:
        out = p.map_ordered(time.sleep, [(0.3,)], timeout=0.02, fallback=lambda s: f"slept {s} inline")
        stats = p.stats()
    assert out == ["slept 0.3 inline"]
    assert stats["timed_out"] == 1 and stats["completed"] == 0
    assert "pool task 0 timed out" in caplog.text


def test_submit_timeout_and_stats():
    with WorkerPool(1, kind="thread") as p:
        assert p.submit(pow, 2, 10) == 1024
        with pytest.raises(StrategyTimeoutError):
            p.submit(time.sleep, 0.5, timeout=0.01)
        stats = p.stats()
    assert stats["completed"] == 1
    assert stats["timed_out"] == 1


def test_pool_rejects_unknown_kind():
    with pytest.raises(ValueError):
        WorkerPool(2, kind="fiber")


# ---------- memory & backpressure ---------------------------------------------


@pytest.mark.parametrize("usage,expected", [(0.9, 512), (0.6, 1024), (0.1, 2048)])
def test_optimal_buffer_size(usage, expected):
    mm = MemoryManager(max_memory=1000, min_buffer=256, max_buffer=4096)
    assert mm.get_optimal_buffer_size(1024, usage_hint=usage) == expected


def test_buffer_size_is_clamped():
    mm = MemoryManager(max_memory=1000, min_buffer=256, max_buffer=4096, usage_source=lambda: 0)
    assert mm.get_optimal_buffer_size(4096) == 4096
    assert mm.usage_ratio() == 0.0
    mm.trigger_gc()
    assert mm.gc_runs == 1


def test_memory_manager_reads_rss_by_default():
    assert MemoryManager().current_usage() > 0


def test_backpressure_waits_until_level_drops():
    levels = iter([0.95, 0.9, 0.2])
    slept: list[float] = []
    bp = BackpressureController(0.85, level_source=lambda: next(levels), poll_interval_s=0.25,
                                sleep=slept.append)
    assert bp.wait_for_capacity() == 2
    assert slept == [0.25, 0.25]


def test_backpressure_pause_resume_and_report():
    bp = BackpressureController(0.5, sleep=lambda s: None)
    bp.report(0.7)
    assert bp.under_pressure()
    bp.report(0.1)
    bp.pause()
    bp.pause()
    assert bp.under_pressure() and bp.pauses == 1
    bp.resume()
    assert bp.wait_for_capacity() == 0


def test_backpressure_wait_respects_deadline():
    bp = BackpressureController(0.5, sleep=lambda s: None)
    bp.pause()
    d = Deadline(None)
    d.cancel()
    with pytest.raises(StrategyTimeoutError):
        bp.wait_for_capacity(d)


def test_default_collaborators():
    c = Collaborators.defaults(max_workers=2, task_timeout_s=1.5, max_memory=1 << 20)
    try:
        assert c.worker_pool.size <= 2
        assert c.worker_pool.task_timeout_s == 1.5
        assert c.memory_manager.max_memory == 1 << 20
        assert c.cache_provider(10).capacity == 10
        assert c.backpressure.threshold == 0.85
    finally:
        c.shutdown()
