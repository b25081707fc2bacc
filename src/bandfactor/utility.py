# utility.py
from __future__ import annotations

import logging
import math
import threading
import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeout
from typing import Any, TypeVar

import gmpy2

from bandfactor.errors import StrategyTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Long loops call Deadline.tick(); a real check happens every CHECK_EVERY ticks.
CHECK_EVERY = 1000


# -----------------------------------------------------------------------------
#  Cancellation
# -----------------------------------------------------------------------------

class Deadline:
    """
    Wall-clock deadline plus a cancellation flag.

    Algorithms call ``tick()`` inside hot loops (cheap, checks every
    ``every`` calls) or ``check()`` at natural boundaries. Either raises
    ``StrategyTimeoutError`` once the budget is spent or ``cancel()`` was
    called from another thread.
    """

    def __init__(self, timeout_ms: float | None = None, *, every: int = CHECK_EVERY):
        self.timeout_ms = timeout_ms
        self._expires = None if timeout_ms is None else time.perf_counter() + timeout_ms / 1000.0
        self._cancelled = threading.Event()
        self._every = max(1, every)
        self._ticks = 0

    @classmethod
    def never(cls) -> Deadline:
        return cls(None)

    def remaining_s(self) -> float | None:
        if self._expires is None:
            return None
        return max(0.0, self._expires - time.perf_counter())

    @property
    def expired(self) -> bool:
        if self._cancelled.is_set():
            return True
        return self._expires is not None and time.perf_counter() >= self._expires

    def cancel(self) -> None:
        self._cancelled.set()

    def check(self) -> None:
        if self._cancelled.is_set():
            raise StrategyTimeoutError("operation cancelled")
        if self._expires is not None and time.perf_counter() >= self._expires:
            raise StrategyTimeoutError(f"operation exceeded {self.timeout_ms:.0f} ms")

    def tick(self) -> None:
        self._ticks += 1
        if self._ticks % self._every == 0:
            self.check()

    def child(self, timeout_ms: float | None) -> Deadline:
        """A deadline no later than this one."""
        rem = self.remaining_s()
        if timeout_ms is None and rem is None:
            d = Deadline(None, every=self._every)
        else:
            budgets = [x for x in (timeout_ms, None if rem is None else rem * 1000.0) if x is not None]
            d = Deadline(min(budgets), every=self._every)
        if self._cancelled.is_set():
            d.cancel()
        return d


# -----------------------------------------------------------------------------
#  Execution combinators
# -----------------------------------------------------------------------------

def retry_with_backoff(fn: Callable[[], T], *, attempts: int = 3, base_delay_ms: float = 100.0,
                       retry_on: tuple[type[BaseException], ...] = (Exception,),
                       sleep: Callable[[float], Any] = time.sleep) -> T:
    """
    Call ``fn`` until it succeeds, at most ``attempts`` times.

    After failed attempt k (0-based) waits 2**k * base_delay_ms. Exceptions not
    in ``retry_on`` propagate immediately; the last failure is re-raised.
    """
    attempts = max(1, int(attempts))
    for attempt in range(attempts):
        try:
            return fn()
        except retry_on as e:
            if attempt == attempts - 1:
                raise
            delay = (2 ** attempt) * base_delay_ms / 1000.0
            logger.debug("attempt %d/%d failed (%s); retrying in %.3fs", attempt + 1, attempts, e, delay)
            sleep(delay)
    raise AssertionError("unreachable")


def race_with_timeout(fn: Callable[[], T], timeout_ms: float | None,
                      deadline: Deadline | None = None) -> T:
    """
    Run ``fn`` on a helper thread and wait at most ``timeout_ms``.

    On expiry the work is abandoned, not killed: ``deadline`` (if given) is
    cancelled so cooperative loops inside ``fn`` stop at their next check,
    and ``StrategyTimeoutError`` is raised here.
    """
    if timeout_ms is None:
        return fn()
    ex = ThreadPoolExecutor(max_workers=1, thread_name_prefix="bandfactor-race")
    fut = ex.submit(fn)
    try:
        return fut.result(timeout=timeout_ms / 1000.0)
    except FuturesTimeout:
        if deadline is not None:
            deadline.cancel()
        raise StrategyTimeoutError(f"operation exceeded {timeout_ms:.0f} ms") from None
    finally:
        ex.shutdown(wait=False)


# -----------------------------------------------------------------------------
#  Integer helpers
# -----------------------------------------------------------------------------

def is_square(n: int) -> bool:
    return n >= 0 and bool(gmpy2.is_square(n))


def isqrt(n: int) -> int:
    return math.isqrt(n)


def clamp(x: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, x))


def perfect_power(n: int) -> tuple[int, int] | None:
    """Return (base, k) with base**k == n and k >= 2 maximal, or None."""
    if n < 4:
        return None
    best = None
    for k in range(2, n.bit_length() + 1):
        root, exact = gmpy2.iroot(n, k)
        if exact:
            best = (int(root), k)
        if root < 2:
            break
    return best
