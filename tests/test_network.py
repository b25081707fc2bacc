# tests/test_network.py
from __future__ import annotations

import random

import pytest

from bandfactor.errors import ConsensusFailureError, NoAvailableNodesError, NodeFailureError
from bandfactor.network import (
    Cluster,
    NodeResult,
    NodeStatus,
    PoolTransport,
    SimulatedTransport,
    make_nodes,
)


def _cluster(fail=(), **kw) -> Cluster:
    rng = random.Random(11)
    return Cluster(SimulatedTransport(rng, fail_nodes=fail), make_nodes(4, rng), **kw)


def test_make_nodes_is_reproducible():
    a = make_nodes(5, random.Random(3))
    b = make_nodes(5, random.Random(3))
    assert [(n.id, n.memory, n.cpu_cores) for n in a] == [(n.id, n.memory, n.cpu_cores) for n in b]
    assert [n.id for n in a] == ["node-00", "node-01", "node-02", "node-03", "node-04"]


def test_available_orders_by_score():
    c = _cluster()
    scores = [n.score for n in c.available()]
    assert scores == sorted(scores, reverse=True)


def test_run_replicates_task():
    c = _cluster(redundancy=3)
    task = c.new_task("isPrime")
    results = c.run(task, pow, (2, 10))
    assert [r.value for r in results] == [1024] * 3
    assert len(task.assigned) == 3
    m = c.metrics.as_dict()
    assert (m["total_tasks"], m["completed_tasks"]) == (1, 1)
    assert m["average_network_latency_ms"] > 0


def test_failed_replica_is_skipped_then_restored():
    c = _cluster(redundancy=3)
    top = c.available()[0].id
    c.transport.fail_nodes.add(top)
    results = c.run(c.new_task("factor"), abs, (-7,))
    assert len(results) == 2
    assert c.nodes[top].status is NodeStatus.FAILED
    assert c.metrics.node_failures == 1
    c.begin_operation()
    assert c.nodes[top].status is NodeStatus.AVAILABLE


def test_every_replica_failing_is_a_consensus_failure():
    c = _cluster(fail={f"node-{i:02d}" for i in range(4)})
    with pytest.raises(ConsensusFailureError):
        c.run(c.new_task("factor"), abs, (1,))
    assert c.metrics.failed_tasks == 1


def test_fault_tolerance_off_propagates_node_failure():
    c = _cluster(fault_tolerance=False)
    c.transport.fail_nodes.add(c.available()[0].id)
    with pytest.raises(NodeFailureError):
        c.run(c.new_task("factor"), abs, (1,))


def test_no_available_nodes():
    c = _cluster()
    for node in c.nodes.values():
        node.status = NodeStatus.DISCONNECTED
    with pytest.raises(NoAvailableNodesError):
        c.run(c.new_task("factor"), abs, (1,))


def test_cluster_size_limit():
    with pytest.raises(ValueError):
        Cluster(SimulatedTransport(), make_nodes(5, random.Random(0)), max_nodes=4)


# ---------- result selection --------------------------------------------------


def _replies(*values):
    return [NodeResult(f"node-{i:02d}", v, 0.95, 1.0) for i, v in enumerate(values)]


@pytest.mark.parametrize("threshold,expected", [(0.67, [3]), (0.6, [3, 5])])
def test_consensus_values(threshold, expected):
    c = _cluster(consensus_threshold=threshold)
    assert c.consensus_values(_replies([3, 5], [3, 5], [3, 7])) == expected
    assert c.metrics.consensus_agreements == 1


@pytest.mark.parametrize("verdicts,threshold,expected", [
    ([True, True, True], 0.67, True),
    ([False, False, False], 0.67, False),
    ([True, True, False], 0.6, True),
])
def test_vote(verdicts, threshold, expected):
    assert _cluster(consensus_threshold=threshold).vote(verdicts) is expected


@pytest.mark.parametrize("verdicts", [[True, True, False], []])
def test_vote_without_majority_fails(verdicts):
    with pytest.raises(ConsensusFailureError):
        _cluster(consensus_threshold=0.67).vote(verdicts)


def test_best_picks_highest_confidence():
    replies = [NodeResult("a", 1, 0.5, 1.0), NodeResult("b", 2, 0.9, 1.0)]
    assert Cluster.best(replies).node_id == "b"


def test_pool_transport(pool):
    c = Cluster(PoolTransport(pool), make_nodes(3, random.Random(2)), redundancy=2)
    results = c.run(c.new_task("sum"), sum, ((1, 2, 3),))
    assert [r.value for r in results] == [6, 6]
    status = c.status()
    assert len(status["nodes"]) == 3
    assert status["available"] == 3
