# algorithms.py
"""
Factoring kernels shared by the band strategies.

Every function here works on plain ints (gmpy2 ``mpz`` internally), takes an
optional ``Deadline`` for cooperative cancellation and returns either a
non-trivial divisor or ``None``. Functions without a ``deadline`` parameter are
bounded by an iteration budget and are safe to ship to a worker process.
"""
from __future__ import annotations

import logging
import math
import random
from collections import defaultdict
from collections.abc import Callable, Iterable

import gmpy2
from gmpy2 import mpz
from sympy.ntheory import legendre_symbol, sqrt_mod

from bandfactor.primality import is_probable_prime
from bandfactor.sieves import segmented_sieve, small_primes, wheel30
from bandfactor.utility import Deadline, perfect_power

logger = logging.getLogger(__name__)

Splitter = Callable[[int], "int | None"]


# -----------------------------------------------------------------------------
#  Exponent accumulation
# -----------------------------------------------------------------------------

def divide_out(n: int, p: int, fmap: dict[int, int]) -> int:
    """Divide every power of ``p`` out of ``n``, adding the exponent to ``fmap``."""
    if p < 2 or n % p:
        return n
    e = 0
    while n % p == 0:
        n //= p
        e += 1
    fmap[p] = fmap.get(p, 0) + e
    return n


def trial_division(n: int, primes: Iterable[int], fmap: dict[int, int],
                   deadline: Deadline | None = None) -> tuple[int, bool]:
    """
    Divide ``n`` by each prime in turn.

    Returns ``(remainder, settled)``. ``settled`` is True when the remainder is
    1 or provably prime because p*p exceeded it before the primes ran out.
    """
    for p in primes:
        if n == 1:
            return 1, True
        if p * p > n:
            return n, True
        if deadline is not None:
            deadline.tick()
        if n % p == 0:
            n = divide_out(n, p, fmap)
    return n, n == 1


def wheel_factorization(n: int, fmap: dict[int, int], deadline: Deadline | None = None) -> int:
    """Complete factorization by 2, 3, 5 then the mod-30 wheel; returns 1."""
    for p in (2, 3, 5):
        n = divide_out(n, p, fmap)
    for c in wheel30(7):
        if n == 1:
            break
        if c * c > n:
            fmap[n] = fmap.get(n, 0) + 1
            n = 1
            break
        if deadline is not None:
            deadline.tick()
        if n % c == 0:
            n = divide_out(n, c, fmap)
    return n


def smallest_divisor(n: int, limit: int, deadline: Deadline | None = None) -> int | None:
    """First divisor <= limit found by wheel trial division (advanced trial division)."""
    for p in (2, 3, 5):
        if n % p == 0 and n != p:
            return p
    bound = min(limit, math.isqrt(n))
    for c in wheel30(7):
        if c > bound:
            return None
        if deadline is not None:
            deadline.tick()
        if n % c == 0:
            return c
    return None


def trial_segment(n: int, lo: int, hi: int) -> list[int]:
    """Primes in [lo, hi] dividing n. Pure; used as a worker-pool task."""
    return [p for p in segmented_sieve(lo, hi, segment_size=65536) if n % p == 0]


# -----------------------------------------------------------------------------
#  Pollard rho (Brent's cycle detection)
# -----------------------------------------------------------------------------

def pollard_rho(n: int, rng: random.Random | None = None, *, c: int | None = None,
                start: int | None = None, max_iterations: int = 2_000_000,
                deadline: Deadline | None = None) -> int | None:
    """
    Brent's variant of Pollard's rho on f(x) = x^2 + c.

    Gives up (returns None) after ``max_iterations`` steps or when the cycle
    closes without a proper divisor.
    """
    n = int(n)
    if n % 2 == 0:
        return 2
    if n < 4:
        return None
    rng = rng or random.Random()
    N = mpz(n)
    y = mpz(start if start is not None else rng.randrange(1, n))
    cc = mpz(c if c is not None else rng.randrange(1, n - 1))
    m = 128
    g = r = q = mpz(1)
    x = ys = y
    steps = 0
    while g == 1:
        x = y
        for _ in range(int(r)):
            y = (y * y + cc) % N
        k = 0
        while k < r and g == 1:
            ys = y
            for _ in range(min(m, int(r) - k)):
                y = (y * y + cc) % N
                q = q * abs(x - y) % N
            g = gmpy2.gcd(q, N)
            k += m
        steps += int(r)
        r *= 2
        if deadline is not None:
            deadline.check()
        if steps > max_iterations:
            return None
    if g == N:
        # backtrack one step at a time from the last saved position
        g = mpz(1)
        for _ in range(int(r)):
            ys = (ys * ys + cc) % N
            g = gmpy2.gcd(abs(x - ys), N)
            if g > 1:
                break
    if 1 < g < N:
        return int(g)
    return None


def rho_with_seed(n: int, seed: int, max_iterations: int = 500_000) -> int | None:
    """Deterministic rho on x^2 + seed starting at 2; pool-safe."""
    return pollard_rho(n, c=seed, start=2, max_iterations=max_iterations)


# -----------------------------------------------------------------------------
#  Elliptic Curve Method (Montgomery curves, Suyama parametrisation, stage 1)
# -----------------------------------------------------------------------------

def _xdbl(x, z, a24, n):
    t1 = (x + z) * (x + z) % n
    t2 = (x - z) * (x - z) % n
    t3 = t1 - t2
    return t1 * t2 % n, t3 * (t2 + a24 * t3) % n


def _xadd(x1, z1, x2, z2, xd, zd, n):
    u = (x1 - z1) * (x2 + z2)
    v = (x1 + z1) * (x2 - z2)
    s = u + v
    d = u - v
    return zd * s * s % n, xd * d * d % n


def _ladder(k: int, x, z, a24, n):
    """Montgomery ladder: [k](x:z)."""
    if k == 1:
        return x, z
    x0, z0 = x, z
    x1, z1 = _xdbl(x, z, a24, n)
    for bit in bin(k)[3:]:
        if bit == "1":
            x0, z0 = _xadd(x1, z1, x0, z0, x, z, n)
            x1, z1 = _xdbl(x1, z1, a24, n)
        else:
            x1, z1 = _xadd(x0, z0, x1, z1, x, z, n)
            x0, z0 = _xdbl(x0, z0, a24, n)
    return x0, z0


def ecm_curve(n: int, sigma: int, b1: int) -> int | None:
    """One ECM stage-1 curve. Pure; used as a worker-pool task."""
    N = mpz(n)
    s = mpz(sigma) % N
    u = (s * s - 5) % N
    v = (4 * s) % N
    x = gmpy2.powmod(u, 3, N)
    z = gmpy2.powmod(v, 3, N)
    num = gmpy2.powmod(v - u, 3, N) * (3 * u + v) % N
    den = 16 * x * v % N
    g = gmpy2.gcd(den, N)
    if 1 < g < N:
        return int(g)
    if g == N:
        return None
    a24 = num * gmpy2.invert(den, N) % N
    for p in small_primes(b1):
        pe = p
        while pe * p <= b1:
            pe *= p
        x, z = _ladder(pe, x, z, a24, N)
    g = gmpy2.gcd(z, N)
    if 1 < g < N:
        return int(g)
    return None


def ecm(n: int, *, curves: int = 10, b1: int = 10000, rng: random.Random | None = None,
        deadline: Deadline | None = None) -> int | None:
    rng = rng or random.Random()
    for _ in range(curves):
        if deadline is not None:
            deadline.check()
        d = ecm_curve(n, rng.randrange(6, 1 << 32), b1)
        if d:
            return d
    return None


# -----------------------------------------------------------------------------
#  Quadratic sieve (small inputs only)
# -----------------------------------------------------------------------------

def _factor_base(n: int, bound: int) -> tuple[list[tuple[int, tuple[int, ...]]], int | None]:
    fb: list[tuple[int, tuple[int, ...]]] = []
    for p in small_primes(bound):
        if n % p == 0:
            return fb, p
        if p == 2:
            fb.append((2, (n % 2,)))
            continue
        if legendre_symbol(n % p, p) == 1:
            fb.append((p, tuple(sqrt_mod(n % p, p, all_roots=True))))
    return fb, None


def _sieve_block(n: int, fb, primes, x0: int, length: int, slack: float):
    logs = [0.0] * length
    for p, roots in fb:
        lp = math.log2(p)
        for r in roots:
            for pos in range((r - x0) % p, length, p):
                logs[pos] += lp
    rels = []
    for i, s in enumerate(logs):
        x = x0 + i
        q = x * x - n
        if q <= 0 or s < math.log2(q) - slack:
            continue
        mask = 0
        expo: dict[int, int] = {}
        for j, p in enumerate(primes):
            if q % p:
                continue
            e = 0
            while q % p == 0:
                q //= p
                e += 1
            expo[p] = e
            if e & 1:
                mask |= 1 << j
        if q == 1:
            rels.append((x, expo, mask))
    return rels


def _dependencies(masks: list[int]) -> list[int]:
    """GF(2) null space of the relation rows, as bitmasks over relation indices."""
    rows = list(masks)
    combos = [1 << i for i in range(len(rows))]
    used: set[int] = set()
    width = max((m.bit_length() for m in rows), default=0)
    for col in range(width):
        bit = 1 << col
        piv = next((i for i in range(len(rows)) if i not in used and rows[i] & bit), None)
        if piv is None:
            continue
        used.add(piv)
        for i in range(len(rows)):
            if i != piv and rows[i] & bit:
                rows[i] ^= rows[piv]
                combos[i] ^= combos[piv]
    return [combos[i] for i in range(len(rows)) if rows[i] == 0]


def quadratic_sieve(n: int, *, max_bits: int = 100, deadline: Deadline | None = None) -> int | None:
    """
    Basic single-polynomial quadratic sieve.

    Only attempted for n up to ``max_bits``; larger inputs return None at once.
    """
    n = int(n)
    if n.bit_length() > max_bits or n < 4:
        return None
    if n % 2 == 0:
        return 2
    r = math.isqrt(n)
    if r * r == n:
        return r
    ln = math.log(n)
    bound = max(60, int(2.0 * math.exp(0.55 * math.sqrt(ln * math.log(ln)))))
    for _ in range(4):
        fb, hit = _factor_base(n, bound)
        if hit is not None and hit != n:
            return hit
        primes = [p for p, _ in fb]
        need = len(primes) + 10
        window = 4000 + 80 * len(primes)
        slack = math.log2(bound) + 1
        x0 = r + 1
        rels = []
        offset = 0
        while len(rels) < need and offset < 40 * window:
            if deadline is not None:
                deadline.check()
            rels += _sieve_block(n, fb, primes, x0 + offset, window, slack)
            offset += window
        if len(rels) >= need:
            for dep in _dependencies([m for _, _, m in rels]):
                a = 1
                total: dict[int, int] = defaultdict(int)
                for i, (x, expo, _) in enumerate(rels):
                    if dep >> i & 1:
                        a = a * x % n
                        for p, e in expo.items():
                            total[p] += e
                b = 1
                for p, e in total.items():
                    b = b * pow(p, e // 2, n) % n
                g = math.gcd(a - b, n)
                if 1 < g < n:
                    return g
        bound = int(bound * 1.5)
    return None


def fermat_method(n: int, max_steps: int = 100_000) -> int | None:
    """Difference of squares; finds factors close to sqrt(n)."""
    if n % 2 == 0:
        return 2 if n > 2 else None
    a = gmpy2.isqrt(n)
    if a * a < n:
        a += 1
    for _ in range(max_steps):
        b2 = a * a - n
        if gmpy2.is_square(b2):
            d = int(a - gmpy2.isqrt(b2))
            return d if 1 < d < n else None
        a += 1
    return None


# -----------------------------------------------------------------------------
#  Williams p+1 and continued-fraction (SQUFOF)
# -----------------------------------------------------------------------------

def _lucas_v(k: int, a, n):
    x, y = a, (a * a - 2) % n
    for bit in bin(k)[3:]:
        if bit == "1":
            x, y = (x * y - a) % n, (y * y - 2) % n
        else:
            x, y = (x * x - 2) % n, (x * y - a) % n
    return x


def williams_p_plus_1(n: int, *, b1: int = 20000, seeds: Iterable[int] = (3, 5, 7, 9, 11, 13),
                      deadline: Deadline | None = None) -> int | None:
    N = mpz(n)
    primes = small_primes(b1)
    for seed in seeds:
        v = mpz(seed)
        for i, p in enumerate(primes):
            pe = p
            while pe * p <= b1:
                pe *= p
            v = _lucas_v(pe, v, N)
            if i % 256 == 255:
                if deadline is not None:
                    deadline.check()
                g = gmpy2.gcd(v - 2, N)
                if 1 < g < N:
                    return int(g)
        g = gmpy2.gcd(v - 2, N)
        if 1 < g < N:
            return int(g)
    return None


SQUFOF_MULTIPLIERS = (1, 3, 5, 7, 11, 15, 21, 33, 35, 55, 77, 105, 165, 231, 385, 1155)


def squfof(n: int, *, max_iterations: int = 200_000, deadline: Deadline | None = None) -> int | None:
    """Shanks' square forms factorization over the continued fraction of sqrt(kn)."""
    n = int(n)
    if n % 2 == 0:
        return 2
    s = math.isqrt(n)
    if s * s == n:
        return s
    for k in SQUFOF_MULTIPLIERS:
        d = k * n
        p0 = math.isqrt(d)
        q = d - p0 * p0
        if q == 0:
            g = math.gcd(p0, n)
            if 1 < g < n:
                return g
            continue
        pprev = p = p0
        qprev = 1
        bound = min(max_iterations, 3 * int(2 * math.sqrt(2 * math.sqrt(d))) + 1)
        r = 0
        found = False
        for i in range(2, bound):
            b = (p0 + p) // q
            p = b * q - p
            qq = q
            q = qprev + b * (pprev - p)
            r = math.isqrt(q)
            if i % 2 == 0 and r * r == q:
                found = True
                break
            qprev, pprev = qq, p
            if deadline is not None:
                deadline.tick()
        if not found or r == 0:
            continue
        b = (p0 - p) // r
        pprev = p = b * r + p
        qprev = r
        q = (d - pprev * pprev) // qprev
        if q == 0:
            continue
        for _ in range(bound):
            b = (p0 + p) // q
            pprev = p
            p = b * q - p
            qq = q
            q = qprev + b * (pprev - p)
            qprev = qq
            if p == pprev or q == 0:
                break
        g = math.gcd(n, p)
        if 1 < g < n:
            return g
    return None


# -----------------------------------------------------------------------------
#  Number-field sieve stand-in
# -----------------------------------------------------------------------------

GNFS_PHASES = ("polynomial", "sieving", "linear_algebra", "square_root")


def gnfs_standin(n: int, *, degree: int | None = None, sieve_bound: int = 2000,
                 deadline: Deadline | None = None,
                 on_phase: Callable[[str], None] | None = None) -> int | None:
    """
    Best-effort stand-in shaped like the number field sieve pipeline.

    Polynomial selection uses a base-m expansion of n; the "sieving" phase
    looks for rational values a - b*m sharing a factor with n. There is no
    algebraic side, so only inputs with a lucky gcd are split.
    """
    n = int(n)
    bits = n.bit_length()
    deg = degree or (3 if bits < 330 else 4 if bits < 660 else 5)
    if on_phase:
        on_phase(GNFS_PHASES[0])
    m = int(gmpy2.iroot(mpz(n), deg)[0])
    coeffs = []
    rest = n
    for _ in range(deg + 1):
        rest, c = divmod(rest, m)
        coeffs.append(c)
    for c in (*coeffs, m, m + 1):
        g = math.gcd(c, n)
        if 1 < g < n:
            return g

    if on_phase:
        on_phase(GNFS_PHASES[1])
    for b in range(1, 16):
        for a in range(-sieve_bound, sieve_bound + 1):
            if deadline is not None:
                deadline.tick()
            v = a - b * m
            if v == 0 or math.gcd(a, b) != 1:
                continue
            g = math.gcd(v, n)
            if 1 < g < n:
                return g

    # nothing to solve without algebraic relations
    if on_phase:
        on_phase(GNFS_PHASES[2])
        on_phase(GNFS_PHASES[3])
    return None


# -----------------------------------------------------------------------------
#  Driver
# -----------------------------------------------------------------------------

def split_completely(n: int, splitters: list[tuple[str, Splitter]], fmap: dict[int, int], *,
                     rng: random.Random | None = None, deadline: Deadline | None = None,
                     methods: list[str] | None = None, unsplit: list[int] | None = None) -> dict[int, int]:
    """
    Factor ``n`` into ``fmap`` by recursive splitting.

    Each composite is offered to ``splitters`` in order; the first non-trivial
    divisor wins and its name is appended to ``methods``. A composite no
    splitter can break still goes into ``fmap`` (so the product stays ``n``)
    and is appended to ``unsplit``.
    """
    rng = rng or random.Random()
    stack = [int(n)]
    while stack:
        m = stack.pop()
        if m == 1:
            continue
        if deadline is not None:
            deadline.check()
        if is_probable_prime(m, rng):
            fmap[m] = fmap.get(m, 0) + 1
            continue
        pp = perfect_power(m)
        if pp is not None:
            base, k = pp
            stack.extend([base] * k)
            continue
        for name, fn in splitters:
            try:
                d = fn(m)
            except ArithmeticError as e:
                logger.debug("%s failed on %d-bit input: %s", name, m.bit_length(), e)
                d = None
            if d and 1 < d < m:
                if methods is not None:
                    methods.append(name)
                if is_probable_prime(d, rng):
                    stack.append(divide_out(m, d, fmap))
                else:
                    stack.extend([d, m // d])
                break
        else:
            logger.warning("leaving %d-bit composite unsplit", m.bit_length())
            fmap[m] = fmap.get(m, 0) + 1
            if unsplit is not None:
                unsplit.append(m)
    return fmap
