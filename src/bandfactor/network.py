# network.py
"""
Redundant task execution with voting.

A ``Cluster`` owns a set of ``ProcessingNode`` records and hands each task to
the best ``redundancy`` available nodes through a transport. Two transports
share one interface:

* ``SimulatedTransport`` executes the task in-process and only books a
  simulated latency; it is deterministic for a seeded ``random.Random`` and
  can be told to fail specific nodes.
* ``PoolTransport`` executes each replica on a ``WorkerPool``.

Which one is used is a configuration choice (``DISTRIBUTED.MODE``).
"""
from __future__ import annotations

import itertools
import logging
import math
import random
import time
from collections import Counter
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from bandfactor.collaborators import WorkerPool
from bandfactor.errors import ConsensusFailureError, NoAvailableNodesError, NodeFailureError

logger = logging.getLogger(__name__)

RESULT_CONFIDENCE = 0.95


class NodeStatus(str, Enum):
    AVAILABLE = "available"
    BUSY = "busy"
    FAILED = "failed"
    DISCONNECTED = "disconnected"


@dataclass
class ProcessingNode:
    id: str
    memory: int          # bytes
    cpu_cores: int
    network: float       # Mbit/s
    status: NodeStatus = NodeStatus.AVAILABLE
    load: float = 0.0
    completed: int = 0
    failures: int = 0

    @property
    def score(self) -> float:
        return self.memory / 1e6 + self.cpu_cores - self.load


@dataclass
class DistributedTask:
    id: str
    type: str
    redundancy: int
    timeout_ms: int
    assigned: list[str] = field(default_factory=list)
    retries: int = 0


@dataclass(frozen=True)
class NodeResult:
    node_id: str
    value: Any
    confidence: float
    latency_ms: float


@dataclass
class NetworkMetrics:
    total_tasks: int = 0
    completed_tasks: int = 0
    failed_tasks: int = 0
    average_latency_ms: float = 0.0
    node_failures: int = 0
    consensus_agreements: int = 0
    _latency_samples: int = 0

    def add_latency(self, ms: float) -> None:
        self._latency_samples += 1
        self.average_latency_ms += (ms - self.average_latency_ms) / self._latency_samples

    def as_dict(self) -> dict[str, float]:
        return {
            "total_tasks": self.total_tasks,
            "completed_tasks": self.completed_tasks,
            "failed_tasks": self.failed_tasks,
            "average_network_latency_ms": self.average_latency_ms,
            "node_failures": self.node_failures,
            "consensus_agreements": self.consensus_agreements,
        }


# -----------------------------------------------------------------------------
#  Transports
# -----------------------------------------------------------------------------

class SimulatedTransport:
    """Runs tasks locally; latency is drawn from ``latency_ms`` and only recorded."""

    def __init__(self, rng: random.Random | None = None, *, latency_ms: tuple[float, float] = (1.0, 5.0),
                 fail_nodes: Iterable[str] = (), failure_rate: float = 0.0):
        self.rng = rng or random.Random()
        self.latency_ms = latency_ms
        self.fail_nodes = set(fail_nodes)
        self.failure_rate = failure_rate

    def execute(self, node: ProcessingNode, fn: Callable[..., Any], args: tuple,
                timeout_s: float | None) -> tuple[Any, float]:
        latency = self.rng.uniform(*self.latency_ms)
        if node.id in self.fail_nodes or (self.failure_rate and self.rng.random() < self.failure_rate):
            raise NodeFailureError(node.id, "simulated fault")
        return fn(*args), latency


class PoolTransport:
    """Runs every replica on a worker pool; latency is measured wall-clock."""

    def __init__(self, pool: WorkerPool):
        self.pool = pool

    def execute(self, node: ProcessingNode, fn: Callable[..., Any], args: tuple,
                timeout_s: float | None) -> tuple[Any, float]:
        t0 = time.perf_counter()
        value = self.pool.submit(fn, *args, timeout=timeout_s)
        return value, (time.perf_counter() - t0) * 1000.0


# -----------------------------------------------------------------------------
#  Cluster
# -----------------------------------------------------------------------------

def make_nodes(count: int, rng: random.Random) -> list[ProcessingNode]:
    return [
        ProcessingNode(
            id=f"node-{i:02d}",
            memory=rng.randrange(2, 17) * 1_000_000_000,
            cpu_cores=rng.choice((2, 4, 8, 16)),
            network=rng.choice((100.0, 1000.0, 10000.0)),
        )
        for i in range(count)
    ]


class Cluster:
    def __init__(self, transport, nodes: list[ProcessingNode], *, redundancy: int = 3,
                 consensus_threshold: float = 0.67, fault_tolerance: bool = True,
                 communication_timeout_ms: int = 30000, max_nodes: int = 32):
        if len(nodes) > max_nodes:
            raise ValueError(f"at most {max_nodes} nodes are supported")
        self.transport = transport
        self.nodes = {n.id: n for n in nodes}
        self.redundancy = max(1, redundancy)
        self.threshold = consensus_threshold
        self.fault_tolerance = fault_tolerance
        self.timeout_ms = communication_timeout_ms
        self.metrics = NetworkMetrics()
        self._ids = itertools.count(1)

    def begin_operation(self) -> None:
        """Failed nodes are only excluded for the operation in which they failed."""
        for node in self.nodes.values():
            if node.status == NodeStatus.FAILED:
                node.status = NodeStatus.AVAILABLE

    def available(self) -> list[ProcessingNode]:
        ready = [n for n in self.nodes.values() if n.status == NodeStatus.AVAILABLE]
        return sorted(ready, key=lambda n: (-n.score, n.id))

    def new_task(self, kind: str, redundancy: int | None = None) -> DistributedTask:
        return DistributedTask(id=f"task-{next(self._ids)}", type=kind,
                               redundancy=redundancy or self.redundancy, timeout_ms=self.timeout_ms)

    def assign(self, task: DistributedTask) -> list[ProcessingNode]:
        chosen = self.available()[:task.redundancy]
        if not chosen:
            raise NoAvailableNodesError(f"no available nodes for {task.type} task {task.id}")
        task.assigned = [n.id for n in chosen]
        return chosen

    def run(self, task: DistributedTask, fn: Callable[..., Any], args: tuple) -> list[NodeResult]:
        """Execute ``fn(*args)`` once per assigned node and collect the replies."""
        self.metrics.total_tasks += 1
        results: list[NodeResult] = []
        for node in self.assign(task):
            node.status = NodeStatus.BUSY
            node.load += 1
            try:
                value, latency = self.transport.execute(node, fn, args, self.timeout_ms / 1000.0)
            except Exception as e:
                node.status = NodeStatus.FAILED
                node.failures += 1
                self.metrics.node_failures += 1
                if not self.fault_tolerance:
                    self.metrics.failed_tasks += 1
                    raise
                logger.warning("%s failed on %s: %s", task.id, node.id, e)
                continue
            finally:
                node.load -= 1
            node.status = NodeStatus.AVAILABLE
            node.completed += 1
            self.metrics.add_latency(latency)
            results.append(NodeResult(node.id, value, RESULT_CONFIDENCE, latency))
        if not results:
            self.metrics.failed_tasks += 1
            raise ConsensusFailureError(f"every replica of {task.id} failed")
        self.metrics.completed_tasks += 1
        return results

    # --- result selection ------------------------------------------------------

    @staticmethod
    def best(results: list[NodeResult]) -> NodeResult:
        return max(results, key=lambda r: r.confidence)

    def consensus_values(self, results: list[NodeResult]) -> list[Any]:
        """Candidates reported by at least ceil(len(results) * threshold) replicas."""
        need = math.ceil(len(results) * self.threshold)
        counts: Counter = Counter()
        for r in results:
            counts.update(set(r.value or ()))
        accepted = sorted(v for v, c in counts.items() if c >= need)
        if accepted:
            self.metrics.consensus_agreements += 1
        return accepted

    def vote(self, verdicts: list[bool]) -> bool:
        yes = sum(1 for v in verdicts if v)
        no = len(verdicts) - yes
        total = yes + no
        if total == 0 or max(yes, no) / total < self.threshold:
            raise ConsensusFailureError(f"no consensus: {yes} true / {no} false")
        self.metrics.consensus_agreements += 1
        return yes >= no

    def status(self) -> dict[str, Any]:
        return {
            "nodes": [
                {"id": n.id, "status": n.status.value, "score": round(n.score, 2),
                 "load": n.load, "completed": n.completed, "failures": n.failures}
                for n in self.nodes.values()
            ],
            "available": len(self.available()),
            "redundancy": self.redundancy,
            "consensus_threshold": self.threshold,
            "metrics": self.metrics.as_dict(),
        }
