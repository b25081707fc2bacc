# strategies/distributed.py
"""
513-1024 bit inputs fanned out to a cluster with redundancy and voting.

Every unit of work (a trial-division segment, one ECM curve, the GNFS
stand-in, a primality check) becomes a ``DistributedTask`` executed on the
best ``REDUNDANCY`` available nodes. Divisor candidates are accepted by
consensus; primality is decided by vote. Node faults are absorbed by the
redundancy unless ``FAULT_TOLERANCE`` is off, in which case they propagate.

Task functions are module-level and take plain ints so the ``pool`` transport
can ship them to a process pool unchanged.
"""
from __future__ import annotations

import logging
import math
import random

from bandfactor.algorithms import divide_out, ecm_curve, gnfs_standin, split_completely, trial_segment
from bandfactor.bands import Band, ProcessingStrategy
from bandfactor.context import FactorizationResult
from bandfactor.errors import (
    ConsensusFailureError,
    InputValidationError,
    NoAvailableNodesError,
    NodeFailureError,
    UnknownOperationError,
)
from bandfactor.network import Cluster, PoolTransport, SimulatedTransport, make_nodes
from bandfactor.operations import (
    ConsensusPrimalityOp,
    DistributedFactorOp,
    DistributedSieveOp,
    FactorOp,
    FaultTolerantOp,
    IsPrimeOp,
    NetworkStatusOp,
)
from bandfactor.primality import miller_rabin
from bandfactor.registry import strategy
from bandfactor.runtime import CFG
from bandfactor.sieves import segmented_sieve
from bandfactor.strategies.base import BandStrategy
from bandfactor.utility import Deadline, retry_with_backoff

logger = logging.getLogger(__name__)

MAX_RANGE = 10_000_000
FAULT_RETRIES = 3
CLUSTER_ERRORS = (NodeFailureError, NoAvailableNodesError, ConsensusFailureError)


# --- tasks ---------------------------------------------------------------------

def sieve_segment_task(lo: int, hi: int) -> list[int]:
    return segmented_sieve(lo, hi, segment_size=65536)


def ecm_task(n: int, sigma: int, b1: int) -> list[int]:
    d = ecm_curve(n, sigma, b1)
    return [d] if d else []


def gnfs_task(n: int, sieve_bound: int) -> list[int]:
    d = gnfs_standin(n, sieve_bound=sieve_bound)
    return [d] if d else []


def primality_task(n: int, rounds: int, seed: int) -> bool:
    return miller_rabin(n, rounds, random.Random(seed))


@strategy(band=Band.SUPER_TREBLE, name=ProcessingStrategy.DISTRIBUTED_SIEVE)
class DistributedSieveStrategy(BandStrategy):
    ACCELERATION = 25.0
    MEMORY_ESTIMATE = 128 * 1024 * 1024
    OPERATIONS = (FactorOp, IsPrimeOp, DistributedFactorOp, DistributedSieveOp, NetworkStatusOp,
                  ConsensusPrimalityOp, FaultTolerantOp)

    def __init__(self, *args, transport=None, **kw):
        super().__init__(*args, **kw)
        self.mode = str(CFG("DISTRIBUTED.MODE", "simulated"))
        self.node_count = int(CFG("DISTRIBUTED.NODES", 8))
        self.max_nodes = int(CFG("DISTRIBUTED.MAX_NODES", 32))
        self.redundancy = int(CFG("DISTRIBUTED.REDUNDANCY", 3))
        self.threshold = float(CFG("DISTRIBUTED.CONSENSUS_THRESHOLD", 0.67))
        self.segment_size = int(CFG("DISTRIBUTED.SEGMENT_SIZE", 65536))
        self.comm_timeout_ms = int(CFG("DISTRIBUTED.COMMUNICATION_TIMEOUT_MS", 30000))
        self.fault_tolerance = bool(CFG("DISTRIBUTED.FAULT_TOLERANCE", True))
        self.trial_limit = int(CFG("DISTRIBUTED.TRIAL_LIMIT", 262144))
        self.ecm_tasks = int(CFG("DISTRIBUTED.ECM_TASKS", 20))
        self.ecm_b1 = int(CFG("DISTRIBUTED.ECM_B1", 2000))
        self.gnfs_bound = int(CFG("DISTRIBUTED.GNFS_SIEVE_BOUND", 2000))
        if self.mode not in ("simulated", "pool"):
            raise InputValidationError(f"unknown distributed mode '{self.mode}'")
        self._transport = transport
        self._cluster: Cluster | None = None

    def handlers(self):
        return {
            **super().handlers(),
            DistributedFactorOp: lambda op, dl: self.factorize(op.n, dl),
            DistributedSieveOp: lambda op, dl: self.distributed_sieve(op.start, op.end, dl),
            NetworkStatusOp: lambda op, dl: self.cluster.status(),
            ConsensusPrimalityOp: lambda op, dl: self.consensus_primality(op.n, dl),
            FaultTolerantOp: lambda op, dl: self.fault_tolerant(op.operation, op.n, dl),
        }

    # --- cluster -------------------------------------------------------------

    @property
    def cluster(self) -> Cluster:
        """Built on first use so a missing worker pool only fails the operations that need it."""
        if self._cluster is None:
            transport = self._transport
            if transport is None:
                if self.mode == "pool":
                    transport = PoolTransport(self._require("worker_pool", "distributed pool mode"))
                else:
                    transport = SimulatedTransport(random.Random(self.rng.getrandbits(32)))
            self._cluster = Cluster(
                transport,
                make_nodes(self.node_count, random.Random(self.rng.getrandbits(32))),
                redundancy=self.redundancy,
                consensus_threshold=self.threshold,
                fault_tolerance=self.fault_tolerance,
                communication_timeout_ms=self.comm_timeout_ms,
                max_nodes=self.max_nodes,
            )
        return self._cluster

    def _agreed(self, kind: str, fn, args: tuple, deadline: Deadline) -> list[int]:
        deadline.check()
        cluster = self.cluster
        return cluster.consensus_values(cluster.run(cluster.new_task(kind), fn, args))

    # --- factoring -----------------------------------------------------------

    def _distributed_trial(self, n: int, fmap: dict[int, int], deadline: Deadline) -> int:
        limit = min(math.isqrt(n), self.trial_limit)
        rest = n
        for lo in range(2, limit + 1, self.segment_size):
            hi = min(lo + self.segment_size - 1, limit)
            for p in self._agreed("trial", trial_segment, (n, lo, hi), deadline):
                rest = divide_out(rest, p, fmap)
        return rest

    def _ecm_splitter(self, deadline: Deadline):
        def run(m: int) -> int | None:
            for _ in range(self.ecm_tasks):
                sigma = self.rng.randrange(6, 1 << 32)
                found = self._agreed("ecm", ecm_task, (m, sigma, self.ecm_b1), deadline)
                if found:
                    return found[0]
            return None
        return run

    def _gnfs_splitter(self, deadline: Deadline):
        def run(m: int) -> int | None:
            found = self._agreed("gnfs", gnfs_task, (m, self.gnfs_bound), deadline)
            return found[0] if found else None
        return run

    def _factorize(self, n: int, deadline: Deadline) -> FactorizationResult:
        self.cluster.begin_operation()
        fmap: dict[int, int] = {}
        rest = self._distributed_trial(n, fmap, deadline)
        methods = ["distributed-trial"]
        unsplit: list[int] = []
        if rest > 1:
            split_completely(rest, [
                ("distributed-ecm", self._ecm_splitter(deadline)),
                ("distributed-gnfs", self._gnfs_splitter(deadline)),
            ], fmap, rng=self.rng, deadline=deadline, methods=methods, unsplit=unsplit)
        return self._result(n, fmap, "+".join(dict.fromkeys(methods)), unsplit)

    # --- other operations ----------------------------------------------------

    def distributed_sieve(self, start: int, end: int, deadline: Deadline) -> list[int]:
        if end < start:
            raise InputValidationError(f"empty range [{start}, {end}]")
        if end - start > MAX_RANGE:
            raise InputValidationError(f"range wider than {MAX_RANGE}")
        self.cluster.begin_operation()
        out: list[int] = []
        for lo in range(start, end + 1, self.segment_size):
            hi = min(lo + self.segment_size - 1, end)
            out.extend(self._agreed("sieve", sieve_segment_task, (lo, hi), deadline))
        return out

    def consensus_primality(self, n: int, deadline: Deadline, rounds: int = 20) -> bool:
        if isinstance(n, bool) or not isinstance(n, int) or n < 1:
            raise InputValidationError(f"expected a positive integer, got {n!r}")
        deadline.check()
        cluster = self.cluster
        cluster.begin_operation()
        results = cluster.run(cluster.new_task("primality"), primality_task,
                              (n, rounds, self.rng.getrandbits(32)))
        return cluster.vote([bool(r.value) for r in results])

    def is_prime(self, n: int, deadline: Deadline) -> bool:
        return self.consensus_primality(n, deadline)

    def fault_tolerant(self, operation: str, n: int, deadline: Deadline):
        """Run ``operation`` on ``n``, retrying cluster-level failures with doubling backoff."""
        runners = {
            "factor": lambda: self.factorize(n, deadline),
            "isPrime": lambda: self.consensus_primality(n, deadline),
            "consensusPrimality": lambda: self.consensus_primality(n, deadline),
        }
        run = runners.get(operation)
        if run is None:
            raise UnknownOperationError(f"faultTolerantOperation cannot run '{operation}'")
        return retry_with_backoff(run, attempts=FAULT_RETRIES, retry_on=CLUSTER_ERRORS)

    def statistics(self):
        stats = super().statistics()
        if self._cluster is not None:
            stats["network"] = self._cluster.metrics.as_dict()
        return stats
