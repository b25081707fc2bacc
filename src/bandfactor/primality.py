# primality.py
"""
Probabilistic and deterministic primality tests.

Random witnesses always come from a caller-supplied ``random.Random`` so a
seeded engine gives reproducible answers.
"""
from __future__ import annotations

import logging
import random

import gmpy2

logger = logging.getLogger(__name__)

SMALL_PRIMES = (2, 3, 5, 7, 11, 13, 17, 19, 23, 29, 31, 37, 41, 43, 47, 53, 59, 61, 67, 71, 73, 79, 83, 89, 97)

# Bases that make Miller-Rabin deterministic below 2^64 (Jaeschke / Sinclair).
DETERMINISTIC_BASES_64 = (2, 325, 9375, 28178, 450775, 9780504, 1795265022)


def _small_check(n: int) -> bool | None:
    """Settle tiny or obviously composite n; None means 'keep testing'."""
    if n < 2:
        return False
    for p in SMALL_PRIMES:
        if n == p:
            return True
        if n % p == 0:
            return False
    return None


def _decompose(n: int) -> tuple[int, int]:
    d = n - 1
    s = 0
    while d % 2 == 0:
        d //= 2
        s += 1
    return d, s


def _strong_witness(a: int, d: int, s: int, n: int) -> bool:
    """True when ``a`` proves n composite."""
    x = gmpy2.powmod(a, d, n)
    if x == 1 or x == n - 1:
        return False
    for _ in range(s - 1):
        x = gmpy2.powmod(x, 2, n)
        if x == n - 1:
            return False
    return True


def miller_rabin(n: int, rounds: int = 20, rng: random.Random | None = None) -> bool:
    """
    Miller-Rabin with ``rounds`` random witnesses.

    Deterministic for n < 2^64 (fixed base set); probabilistic above that with
    error at most 4^-rounds.
    """
    n = int(n)
    small = _small_check(n)
    if small is not None:
        return small
    d, s = _decompose(n)
    if n < (1 << 64):
        return not any(_strong_witness(a % n, d, s, n) for a in DETERMINISTIC_BASES_64 if a % n)
    rng = rng or random.Random()
    for _ in range(rounds):
        a = rng.randrange(2, n - 1)
        if _strong_witness(a, d, s, n):
            return False
    return True


def fermat_test(n: int, rounds: int = 10, rng: random.Random | None = None) -> bool:
    n = int(n)
    small = _small_check(n)
    if small is not None:
        return small
    rng = rng or random.Random()
    for _ in range(rounds):
        a = rng.randrange(2, n - 1)
        if gmpy2.powmod(a, n - 1, n) != 1:
            return False
    return True


def jacobi(a: int, n: int) -> int:
    return int(gmpy2.jacobi(a, n))


def solovay_strassen(n: int, rounds: int = 20, rng: random.Random | None = None) -> bool:
    n = int(n)
    small = _small_check(n)
    if small is not None:
        return small
    rng = rng or random.Random()
    for _ in range(rounds):
        a = rng.randrange(2, n - 1)
        j = jacobi(a, n) % n
        if j == 0 or gmpy2.powmod(a, (n - 1) // 2, n) != j:
            return False
    return True


def is_probable_prime(n: int, rng: random.Random | None = None, rounds: int = 20) -> bool:
    return miller_rabin(n, rounds=rounds, rng=rng)


def deterministic_primality(n: int, rng: random.Random | None = None) -> bool:
    """
    Multi-test verdict used once every factoring algorithm has given up:
    50 Miller-Rabin rounds, 20 Solovay-Strassen rounds and 10 Fermat rounds
    must all agree.
    """
    rng = rng or random.Random()
    verdicts = (
        miller_rabin(n, 50, rng),
        solovay_strassen(n, 20, rng),
        fermat_test(n, 10, rng),
    )
    if len(set(verdicts)) > 1:
        logger.warning("primality tests disagree for %d-bit input: %s", int(n).bit_length(), verdicts)
    return all(verdicts)


def next_prime(n: int, rng: random.Random | None = None) -> int:
    """Smallest prime strictly greater than n."""
    n = int(n)
    if n < 2:
        return 2
    c = n + 1 if n % 2 == 0 else n + 2
    while not miller_rabin(c, rng=rng):
        c += 2
    return c


def random_prime(bits: int, rng: random.Random) -> int:
    """Uniform-ish random prime with exactly ``bits`` bits."""
    if bits < 2:
        raise ValueError("a prime needs at least 2 bits")
    if bits == 2:
        return rng.choice((2, 3))
    while True:
        c = rng.getrandbits(bits) | (1 << (bits - 1)) | 1
        if miller_rabin(c, rng=rng):
            return c
