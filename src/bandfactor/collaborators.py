# collaborators.py
"""
Shared resources injected into strategies by the registry.

Strategies only rely on the small surface used here: a cache with
``get``/``set``, a pool with ``submit``/``map_ordered``, a backpressure
controller exposing a level ratio plus pause/resume, and a memory manager with
``get_optimal_buffer_size``/``trigger_gc``. Any object with the same methods
can be passed instead.
"""
from __future__ import annotations

import gc
import logging
import os
import threading
import time
from collections import OrderedDict
from collections.abc import Callable, Hashable, Sequence
from concurrent.futures import Executor, ProcessPoolExecutor, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeout
from dataclasses import dataclass
from typing import Any

import psutil

from bandfactor.errors import StrategyTimeoutError
from bandfactor.utility import Deadline, clamp

logger = logging.getLogger(__name__)

_MISSING = object()


# -----------------------------------------------------------------------------
#  Cache
# -----------------------------------------------------------------------------

class LRUCache:
    """Bounded least-recently-used map with optional time-to-live."""

    def __init__(self, capacity: int = 1000, ttl_s: float | None = None):
        self.capacity = max(1, int(capacity))
        self.ttl_s = ttl_s
        self._data: OrderedDict[Hashable, tuple[float, Any]] = OrderedDict()
        self.hits = 0
        self.misses = 0
        self.evictions = 0

    def get(self, key: Hashable, default: Any = None) -> Any:
        item = self._data.get(key, _MISSING)
        if item is _MISSING:
            self.misses += 1
            return default
        stamp, value = item
        if self.ttl_s is not None and time.monotonic() - stamp > self.ttl_s:
            del self._data[key]
            self.misses += 1
            return default
        self._data.move_to_end(key)
        self.hits += 1
        return value

    def set(self, key: Hashable, value: Any) -> None:
        self._data[key] = (time.monotonic(), value)
        self._data.move_to_end(key)
        while len(self._data) > self.capacity:
            self._data.popitem(last=False)
            self.evictions += 1

    def __contains__(self, key: Hashable) -> bool:
        return key in self._data

    def __len__(self) -> int:
        return len(self._data)

    def clear(self) -> None:
        self._data.clear()

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0


def lru_cache_provider(ttl_s: float | None = None) -> Callable[[int], LRUCache]:
    def make(capacity: int) -> LRUCache:
        return LRUCache(capacity, ttl_s=ttl_s)
    return make


# -----------------------------------------------------------------------------
#  Worker pool
# -----------------------------------------------------------------------------

def default_pool_size(min_workers: int = 2, max_workers: int = 8) -> int:
    return int(clamp(os.cpu_count() or min_workers, min_workers, max_workers))


class WorkerPool:
    """
    Bounded pool over ``concurrent.futures``.

    ``kind="thread"`` (default) keeps everything in-process; ``kind="process"``
    gives real parallelism for the pure module-level task functions in
    ``bandfactor.algorithms``. Tasks never receive strategy objects, only
    their own copies of the input segment.
    """

    def __init__(self, size: int | None = None, *, kind: str = "thread",
                 min_workers: int = 2, max_workers: int = 8, task_timeout_s: float | None = 30.0):
        if kind not in ("thread", "process"):
            raise ValueError(f"unknown pool kind '{kind}'")
        self.size = size or default_pool_size(min_workers, max_workers)
        self.kind = kind
        self.task_timeout_s = task_timeout_s
        self._executor: Executor | None = None
        self._lock = threading.Lock()
        self.submitted = 0
        self.completed = 0
        self.failed = 0
        self.timed_out = 0

    def _ensure(self) -> Executor:
        with self._lock:
            if self._executor is None:
                if self.kind == "process":
                    self._executor = ProcessPoolExecutor(max_workers=self.size)
                else:
                    self._executor = ThreadPoolExecutor(max_workers=self.size,
                                                        thread_name_prefix="bandfactor-pool")
            return self._executor

    def submit(self, fn: Callable[..., Any], *args: Any, timeout: float | None = None) -> Any:
        """Run one task and wait for it; raises ``StrategyTimeoutError`` on expiry."""
        fut = self._ensure().submit(fn, *args)
        self.submitted += 1
        try:
            result = fut.result(timeout=timeout if timeout is not None else self.task_timeout_s)
        except FuturesTimeout:
            fut.cancel()
            self.timed_out += 1
            raise StrategyTimeoutError(f"pool task {getattr(fn, '__name__', fn)} timed out") from None
        except Exception:
            self.failed += 1
            raise
        self.completed += 1
        return result

    def map_ordered(self, fn: Callable[..., Any], arg_list: Sequence[tuple], *,
                    timeout: float | None = None,
                    fallback: Callable[..., Any] | None = None,
                    deadline: Deadline | None = None,
                    max_in_flight: int | None = None) -> list[Any]:
        """
        Run ``fn(*args)`` for every tuple and return results in input order.

        At most ``max_in_flight`` (default 2 * size) tasks are queued at once.
        A task that fails or exceeds ``timeout`` is recomputed sequentially
        with ``fallback(*args)`` when given, otherwise its error propagates.
        """
        ex = self._ensure()
        per_task = timeout if timeout is not None else self.task_timeout_s
        window = max_in_flight or 2 * self.size
        results: list[Any] = [None] * len(arg_list)
        for base in range(0, len(arg_list), window):
            if deadline is not None:
                deadline.check()
            chunk = arg_list[base:base + window]
            futs = {ex.submit(fn, *args): base + i for i, args in enumerate(chunk)}
            self.submitted += len(futs)
            redo: list[int] = []
            # per-task budget, counted from the previous collection
            for fut, idx in futs.items():
                try:
                    results[idx] = fut.result(timeout=per_task)
                    self.completed += 1
                except FuturesTimeout:
                    fut.cancel()
                    self.timed_out += 1
                    logger.warning("pool task %d timed out after %ss", idx, per_task)
                    redo.append(idx)
                except Exception as e:
                    self.failed += 1
                    logger.warning("pool task %d failed: %s", idx, e)
                    redo.append(idx)
            for idx in sorted(redo):
                if fallback is None:
                    raise StrategyTimeoutError(f"pool task {idx} did not complete")
                results[idx] = fallback(*arg_list[idx])
        return results

    def stats(self) -> dict[str, int]:
        return {
            "size": self.size,
            "submitted": self.submitted,
            "completed": self.completed,
            "failed": self.failed,
            "timed_out": self.timed_out,
        }

    def shutdown(self, wait: bool = True) -> None:
        with self._lock:
            if self._executor is not None:
                self._executor.shutdown(wait=wait, cancel_futures=True)
                self._executor = None

    def __enter__(self) -> WorkerPool:
        return self

    def __exit__(self, *exc) -> None:
        self.shutdown()


# -----------------------------------------------------------------------------
#  Memory & backpressure
# -----------------------------------------------------------------------------

class MemoryManager:
    """Process-memory view backed by psutil, with buffer sizing hints."""

    def __init__(self, max_memory: int = 1 << 30, *, min_buffer: int = 1024, max_buffer: int = 1 << 20,
                 usage_source: Callable[[], int] | None = None):
        self.max_memory = int(max_memory)
        self.min_buffer = min_buffer
        self.max_buffer = max_buffer
        self._usage_source = usage_source
        self.gc_runs = 0

    def current_usage(self) -> int:
        if self._usage_source is not None:
            return int(self._usage_source())
        return int(psutil.Process().memory_info().rss)

    def usage_ratio(self) -> float:
        return self.current_usage() / self.max_memory if self.max_memory else 0.0

    def get_optimal_buffer_size(self, current: int, usage_hint: float | None = None) -> int:
        """Halve the buffer under pressure (> 0.8), double it when idle (< 0.5)."""
        hint = self.usage_ratio() if usage_hint is None else usage_hint
        if hint > 0.8:
            size = current // 2
        elif hint < 0.5:
            size = current * 2
        else:
            size = current
        return int(clamp(size, self.min_buffer, self.max_buffer))

    def trigger_gc(self) -> int:
        self.gc_runs += 1
        return gc.collect()


class BackpressureController:
    """
    Buffer-level signal with pause/resume.

    The level comes from ``level_source`` (e.g. ``MemoryManager.usage_ratio``)
    or from the last ``report()`` call. ``wait_for_capacity`` blocks intake
    while the level is above ``threshold`` or the controller is paused.
    """

    def __init__(self, threshold: float = 0.85, *, level_source: Callable[[], float] | None = None,
                 poll_interval_s: float = 0.1, sleep: Callable[[float], Any] = time.sleep):
        self.threshold = threshold
        self.poll_interval_s = poll_interval_s
        self._source = level_source
        self._level = 0.0
        self._paused = threading.Event()
        self._sleep = sleep
        self.pauses = 0
        self.waits = 0

    def report(self, level: float) -> None:
        self._level = float(level)

    def level(self) -> float:
        return float(self._source()) if self._source is not None else self._level

    @property
    def paused(self) -> bool:
        return self._paused.is_set()

    def pause(self) -> None:
        if not self._paused.is_set():
            self.pauses += 1
        self._paused.set()

    def resume(self) -> None:
        self._paused.clear()

    def under_pressure(self) -> bool:
        return self.paused or self.level() > self.threshold

    def wait_for_capacity(self, deadline: Deadline | None = None,
                          on_wait: Callable[[], None] | None = None) -> int:
        """Poll until intake may continue; returns the number of polls spent."""
        polls = 0
        while self.under_pressure():
            if deadline is not None:
                deadline.check()
            if on_wait is not None:
                on_wait()
            polls += 1
            self.waits += 1
            self._sleep(self.poll_interval_s)
        return polls


@dataclass
class Collaborators:
    """Handles the registry injects; any of them may be None."""
    cache_provider: Callable[[int], Any] | None = None
    worker_pool: WorkerPool | None = None
    memory_manager: MemoryManager | None = None
    backpressure: BackpressureController | None = None

    @classmethod
    def defaults(cls, *, pool_kind: str = "thread", min_workers: int = 2, max_workers: int = 8,
                 task_timeout_s: float | None = 30.0, threshold: float = 0.85,
                 poll_interval_s: float = 0.1, max_memory: int = 1 << 30) -> Collaborators:
        mm = MemoryManager(max_memory=max_memory)
        return cls(
            cache_provider=lru_cache_provider(),
            worker_pool=WorkerPool(kind=pool_kind, min_workers=min_workers, max_workers=max_workers,
                                   task_timeout_s=task_timeout_s),
            memory_manager=mm,
            backpressure=BackpressureController(threshold, level_source=mm.usage_ratio,
                                                poll_interval_s=poll_interval_s),
        )

    def shutdown(self) -> None:
        if self.worker_pool is not None:
            self.worker_pool.shutdown()
