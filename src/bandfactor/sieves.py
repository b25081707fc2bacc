# sieves.py
from __future__ import annotations

import math
from collections.abc import Iterator
from functools import lru_cache

from bandfactor.utility import Deadline

# Offsets of the mod-30 wheel starting at 7: 7, 11, 13, 17, 19, 23, 29, 31, 37, ...
WHEEL30_GAPS = (4, 2, 4, 2, 4, 6, 2, 6)
WHEEL30_BASIS = (2, 3, 5)

# Primes below the 2*3*5*7 = 210 wheel, used to prime trial division in band 3.
WHEEL210_PRIMES = (
    2, 3, 5, 7, 11, 13, 17, 19, 23, 29, 31, 37, 41, 43, 47, 53, 59, 61, 67, 71,
    73, 79, 83, 89, 97, 101, 103, 107, 109, 113, 127, 131, 137, 139, 149, 151,
    157, 163, 167, 173, 179, 181, 191, 193, 197, 199,
)


@lru_cache(maxsize=8)
def small_primes(limit: int) -> tuple[int, ...]:
    """All primes <= limit (sieve of Eratosthenes)."""
    if limit < 2:
        return ()
    sieve = bytearray([1]) * (limit + 1)
    sieve[0] = sieve[1] = 0
    for i in range(2, math.isqrt(limit) + 1):
        if sieve[i]:
            sieve[i * i::i] = bytearray(len(range(i * i, limit + 1, i)))
    return tuple(i for i, flag in enumerate(sieve) if flag)


def segmented_sieve(lo: int, hi: int, *, segment_size: int = 4096,
                    deadline: Deadline | None = None) -> list[int]:
    """
    Primes in the inclusive range [lo, hi], sieving one segment at a time.

    Base primes go up to isqrt(hi); each segment uses ``segment_size`` bytes.
    """
    lo = max(lo, 2)
    if hi < lo:
        return []
    base = small_primes(math.isqrt(hi))
    out: list[int] = []
    start = lo
    while start <= hi:
        if deadline is not None:
            deadline.check()
        end = min(start + segment_size - 1, hi)
        seg = bytearray([1]) * (end - start + 1)
        for p in base:
            if p * p > end:
                break
            first = max(p * p, ((start + p - 1) // p) * p)
            if first > end:
                continue
            seg[first - start::p] = bytearray(len(range(first, end + 1, p)))
        out.extend(start + i for i, flag in enumerate(seg) if flag)
        start = end + 1
    return out


def sieve_of_atkin(limit: int) -> list[int]:
    """Primes <= limit using the Atkin quadratic-form sieve."""
    if limit < 2:
        return []
    if limit < 5:
        return [p for p in (2, 3) if p <= limit]
    flags = bytearray(limit + 1)
    r = math.isqrt(limit) + 1
    for x in range(1, r):
        xx = x * x
        for y in range(1, r):
            yy = y * y
            n = 4 * xx + yy
            if n <= limit and n % 12 in (1, 5):
                flags[n] ^= 1
            n = 3 * xx + yy
            if n <= limit and n % 12 == 7:
                flags[n] ^= 1
            n = 3 * xx - yy
            if x > y and n <= limit and n % 12 == 11:
                flags[n] ^= 1
    for i in range(5, r):
        if flags[i]:
            sq = i * i
            for k in range(sq, limit + 1, sq):
                flags[k] = 0
    return [2, 3] + [i for i in range(5, limit + 1) if flags[i]]


def primes_in_range(lo: int, hi: int, *, segment_size: int = 4096,
                    atkin_threshold: int = 1_000_000,
                    deadline: Deadline | None = None) -> list[int]:
    """Pick Atkin for one-shot tables above ``atkin_threshold``, segments otherwise."""
    if lo <= 2 and hi > atkin_threshold:
        return sieve_of_atkin(hi)
    return segmented_sieve(lo, hi, segment_size=segment_size, deadline=deadline)


def wheel30(start: int = 7) -> Iterator[int]:
    """Candidates coprime to 30, from the first one >= start (never ends)."""
    base = start - (start - 7) % 30 if start >= 7 else 7
    offsets = [7]
    for g in WHEEL30_GAPS[:-1]:
        offsets.append(offsets[-1] + g)
    while True:
        for off in offsets:
            c = base + off - 7
            if c >= start:
                yield c
        base += 30


def prime_stream(start: int = 2, *, limit: int | None = None, chunk: int = 8192,
                 deadline: Deadline | None = None) -> Iterator[int]:
    """
    Lazily yield primes >= start, sieving ``chunk`` numbers at a time.
    Stops after ``limit`` when given.
    """
    lo = max(2, start)
    while limit is None or lo <= limit:
        hi = lo + chunk - 1
        if limit is not None:
            hi = min(hi, limit)
        yield from segmented_sieve(lo, hi, segment_size=chunk, deadline=deadline)
        lo = hi + 1


def count_primes(limit: int, *, segment_size: int = 4096) -> int:
    if limit < 2:
        return 0
    total = 0
    lo = 2
    while lo <= limit:
        hi = min(lo + segment_size * 64 - 1, limit)
        total += len(segmented_sieve(lo, hi, segment_size=segment_size))
        lo = hi + 1
    return total
