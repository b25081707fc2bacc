# strategies/streaming.py
from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from itertools import islice

from bandfactor.algorithms import (
    divide_out,
    ecm,
    fermat_method,
    gnfs_standin,
    pollard_rho,
    quadratic_sieve,
    split_completely,
)
from bandfactor.bands import Band, ProcessingStrategy
from bandfactor.context import FactorizationResult
from bandfactor.errors import InputValidationError
from bandfactor.operations import (
    BatchStreamProcessOp,
    FactorOp,
    GeneratePrimeStreamOp,
    IsPrimeOp,
    PrimeGenerationOp,
    StreamingFactorOp,
    StreamingSieveOp,
)
from bandfactor.primality import random_prime
from bandfactor.registry import strategy
from bandfactor.runtime import CFG
from bandfactor.sieves import prime_stream, segmented_sieve
from bandfactor.strategies.base import BandStrategy
from bandfactor.utility import Deadline

logger = logging.getLogger(__name__)


@strategy(band=Band.TREBLE, name=ProcessingStrategy.STREAMING_PRIME)
class StreamingPrimeStrategy(BandStrategy):
    """
    257-512 bit inputs processed as bounded streams.

    Every chunk boundary is a backpressure checkpoint: while the controller
    reports a level above its threshold the strategy stops taking chunks,
    asks the memory manager for a collection and polls until the level drops
    or the deadline expires.
    """

    ACCELERATION = 18.0
    OPERATIONS = (FactorOp, IsPrimeOp, StreamingFactorOp, GeneratePrimeStreamOp, StreamingSieveOp,
                  BatchStreamProcessOp, PrimeGenerationOp)

    def __init__(self, *args, **kw):
        super().__init__(*args, **kw)
        self.chunk_size = int(CFG("STREAMING.CHUNK_SIZE", 8192))
        self.buffer_size = int(CFG("STREAMING.BUFFER_SIZE", 32768))
        self.max_stream_size = int(CFG("STREAMING.MAX_STREAM_SIZE", 1 << 20))
        self.trial_limit = int(CFG("STREAMING.TRIAL_LIMIT", 200_000))
        self.ecm_curves = int(CFG("STREAMING.ECM_CURVES", 10))
        self.ecm_b1 = int(CFG("STREAMING.ECM_B1", 10000))
        self.qs_limit = int(CFG("STREAMING.QS_LIMIT", 100_000))
        self.chunks_processed = 0

    @property
    def memory_estimate(self) -> int:
        return self.buffer_size * 8

    def handlers(self):
        return {
            **super().handlers(),
            StreamingFactorOp: lambda op, dl: self.streaming_factor(op.n, dl),
            GeneratePrimeStreamOp: lambda op, dl: self.generate_prime_stream(op.start, op.count, dl),
            StreamingSieveOp: lambda op, dl: self.streaming_sieve(op.start, op.end, dl),
            BatchStreamProcessOp: lambda op, dl: self.process_batch(
                [self._check_number(n) for n in op.numbers], dl),
            PrimeGenerationOp: lambda op, dl: self.prime_generation(op.count, op.bit_size, dl),
        }

    # --- flow control --------------------------------------------------------

    def _checkpoint(self, deadline: Deadline) -> int:
        bp = self._require("backpressure", "streaming")
        mm = self.collaborators.memory_manager
        waits = bp.wait_for_capacity(deadline, on_wait=mm.trigger_gc if mm is not None else None)
        if waits:
            logger.info("stream paused for %d polls under backpressure", waits)
        if mm is not None:
            self.chunk_size = mm.get_optimal_buffer_size(self.chunk_size, bp.level())
        return waits

    def _chunked(self, items: Iterable, deadline: Deadline) -> Iterator[list]:
        it = iter(items)
        while True:
            self._checkpoint(deadline)
            chunk = list(islice(it, self.chunk_size))
            if not chunk:
                return
            self.chunks_processed += 1
            yield chunk

    # --- factoring -----------------------------------------------------------

    def _streaming_trial(self, n: int, fmap: dict[int, int], deadline: Deadline) -> tuple[int, bool]:
        rest = n
        stream = prime_stream(2, limit=self.trial_limit, chunk=self.chunk_size, deadline=deadline)
        for chunk in self._chunked(stream, deadline):
            for p in chunk:
                if p * p > rest:
                    return rest, True
                if rest % p == 0:
                    rest = divide_out(rest, p, fmap)
            if rest == 1:
                return 1, True
        return rest, False

    def _qs_standin(self, m: int, deadline: Deadline) -> int | None:
        d = quadratic_sieve(m, deadline=deadline)
        if d is None:
            d = fermat_method(m, max_steps=self.qs_limit)
        return d

    def _factorize(self, n: int, deadline: Deadline) -> FactorizationResult:
        report = self._run(n, deadline)
        return report["result"]

    def _run(self, n: int, deadline: Deadline) -> dict:
        fmap: dict[int, int] = {}
        before = self.chunks_processed
        rest, settled = self._streaming_trial(n, fmap, deadline)
        methods = ["streaming-trial"]
        unsplit: list[int] = []
        if settled:
            if rest > 1:
                fmap[rest] = fmap.get(rest, 0) + 1
        else:
            split_completely(rest, [
                ("streaming-rho", lambda m: pollard_rho(m, self.rng, deadline=deadline, max_iterations=500_000)),
                ("ecm", lambda m: ecm(m, curves=self.ecm_curves, b1=self.ecm_b1, rng=self.rng, deadline=deadline)),
                ("quadratic-sieve", lambda m: self._qs_standin(m, deadline)),
                ("gnfs", lambda m: gnfs_standin(m, deadline=deadline)),
            ], fmap, rng=self.rng, deadline=deadline, methods=methods, unsplit=unsplit)
        return {
            "result": self._result(n, fmap, "+".join(dict.fromkeys(methods)), unsplit),
            "chunks": self.chunks_processed - before,
        }

    def streaming_factor(self, n: int, deadline: Deadline) -> dict:
        return self._run(n, deadline)

    # --- prime streams -------------------------------------------------------

    def generate_prime_stream(self, start: int, count: int, deadline: Deadline) -> list[int]:
        if count < 0 or count > self.max_stream_size:
            raise InputValidationError(f"count must be in [0, {self.max_stream_size}]")
        out: list[int] = []
        stream = prime_stream(start, chunk=self.chunk_size, deadline=deadline)
        for chunk in self._chunked(islice(stream, count), deadline):
            out.extend(chunk)
        return out

    def streaming_sieve(self, start: int, end: int, deadline: Deadline) -> list[int]:
        if end < start:
            raise InputValidationError(f"empty range [{start}, {end}]")
        if end - start > self.max_stream_size * 16:
            raise InputValidationError("range too wide for one stream")
        out: list[int] = []
        lo = start
        while lo <= end:
            self._checkpoint(deadline)
            hi = min(lo + self.chunk_size - 1, end)
            out.extend(segmented_sieve(lo, hi, segment_size=self.chunk_size, deadline=deadline))
            self.chunks_processed += 1
            lo = hi + 1
        return out

    def process_batch(self, numbers, deadline):
        out: list[FactorizationResult] = []
        for chunk in self._chunked(numbers, deadline):
            out.extend(self.factorize(n, deadline) for n in chunk)
        return out

    def prime_generation(self, count: int, bit_size: int, deadline: Deadline) -> list[int]:
        if not 0 <= count <= 1000:
            raise InputValidationError("count must be between 0 and 1000")
        if not 2 <= bit_size <= Band.TREBLE.max_bits:
            raise InputValidationError(f"bit_size must be between 2 and {Band.TREBLE.max_bits}")
        out = []
        for _ in range(count):
            deadline.check()
            out.append(random_prime(bit_size, self.rng))
        return out
