# tests/test_strategies.py
"""
Per-band strategy behaviour through the public ``process`` contract.

Every factorization is checked two ways: the product of the reported factors
is the input, and every reported factor is prime according to sympy.
"""
from __future__ import annotations

from itertools import islice

import pytest
from sympy import isprime, nextprime, primerange

from bandfactor.bands import Band
from bandfactor.collaborators import BackpressureController, Collaborators, MemoryManager, lru_cache_provider
from bandfactor.context import Constraints, ProcessingContext, product_of
from bandfactor.errors import AlgorithmExhaustedError, InputValidationError, NodeFailureError
from bandfactor.operations import (
    AlgebraicNumberTheoryOp,
    AlgorithmSelectionOp,
    BatchFactorOp,
    ConsensusPrimalityOp,
    CrossBandOptimizeOp,
    DistributedFactorOp,
    DistributedSieveOp,
    FactorOp,
    FaultTolerantOp,
    GeneratePrimesOp,
    GeneratePrimeStreamOp,
    IsPrimeOp,
    LatticeReductionOp,
    NetworkStatusOp,
    NextPrimeOp,
    ParallelSieveOp,
    PerformanceAnalysisOp,
    PrimeCountOp,
    PrimeFactorsOp,
    PrimeGenerationOp,
    QuantumSimulationOp,
    SieveRangeOp,
    SpectralAnalysisOp,
    SpectralFactorOp,
    StreamingFactorOp,
    TransformOptimizationOp,
    UpdateWeightsOp,
)
from bandfactor.runtime import APPLY
from bandfactor.selector import AdaptiveSelector
from bandfactor.spectrum import WINDOWS
from bandfactor.strategies.cache_optimized import CacheOptimizedStrategy
from bandfactor.strategies.direct import DirectComputationStrategy
from bandfactor.strategies.distributed import DistributedSieveStrategy
from bandfactor.strategies.hybrid import HybridStrategy
from bandfactor.strategies.parallel_sieve import ParallelSieveStrategy
from bandfactor.strategies.sieve_based import SieveBasedStrategy
from bandfactor.strategies.spectral import SpectralTransformStrategy
from bandfactor.strategies.streaming import StreamingPrimeStrategy

M61 = 2**61 - 1
M127 = 2**127 - 1
M521 = 2**521 - 1
M607 = 2**607 - 1
M2203 = 2**2203 - 1


def run(strategy, value, *, timeout_ms=None):
    ctx = ProcessingContext(band=strategy.BAND, constraints=Constraints(time_ms=timeout_ms))
    return strategy.process(value, ctx)


def assert_factors(res, n, expected=None):
    assert res.success, f"{res.error_type}: {res.error}"
    fr = res.result
    assert fr.n == n
    assert product_of(fr.factors) == n
    assert fr.is_complete and fr.unsplit == ()
    assert all(isprime(f.prime) for f in fr.factors)
    if expected is not None:
        assert fr.as_dict() == expected
    return fr


# ---------- contract shared by every strategy ---------------------------------


@pytest.mark.parametrize("value,error_type", [
    (None, "InputValidationError"),
    (True, "UnsupportedInputTypeError"),
    ("360", "UnsupportedInputTypeError"),
    (2.5, "UnsupportedInputTypeError"),
    (0, "InputValidationError"),
    (2**40, "OutOfBandRangeError"),
    (GeneratePrimesOp(1, 10), "UnknownOperationError"),
    ({"type": "teleport"}, "UnknownOperationError"),
    ([5, 2**40], "OutOfBandRangeError"),
], ids=["none", "bool", "str", "float", "zero", "out-of-band", "foreign-op", "unknown-op", "batch-out-of-band"])
def test_process_reports_failures_without_raising(make_strategy, value, error_type):
    res = run(make_strategy(DirectComputationStrategy), value)
    assert not res.success
    assert res.error_type == error_type
    assert res.quality.accuracy == 0.0


def test_process_requires_context_with_band(make_strategy):
    s = make_strategy(DirectComputationStrategy)
    assert s.process(10, None).error_type == "InputValidationError"
    assert s.process(10, ProcessingContext(band=None)).error_type == "InputValidationError"


def test_supports_only_own_band(make_strategy):
    s = make_strategy(SieveBasedStrategy)
    assert s.supports(Band.MIDRANGE) and s.supports(3)
    assert not s.supports(Band.BASS)
    assert not s.supports(42)


def test_transient_node_failures_are_retried(make_strategy):
    class Flaky(DirectComputationStrategy):
        calls = 0

        def _factorize(self, n, deadline):
            Flaky.calls += 1
            if Flaky.calls < 3:
                raise NodeFailureError("node-00", "flap")
            return super()._factorize(n, deadline)

    res = run(make_strategy(Flaky), 360)
    assert_factors(res, 360, {2: 3, 3: 2, 5: 1})
    assert Flaky.calls == 3


def test_retries_give_up_after_configured_attempts(make_strategy, config):
    class Down(DirectComputationStrategy):
        calls = 0

        def _factorize(self, n, deadline):
            Down.calls += 1
            raise NodeFailureError("node-01")

    config.retry_attempts = 2
    res = run(make_strategy(Down, cfg=config), 12)
    assert res.error_type == "NodeFailureError"
    assert Down.calls == 2


def test_counters_and_metrics(make_strategy):
    s = make_strategy(DirectComputationStrategy)
    ok = run(s, 97)
    run(s, 0)
    stats = s.statistics()
    assert (stats["operations"], stats["successes"], stats["failures"]) == (2, 1, 1)
    assert ok.metrics.acceleration_factor == DirectComputationStrategy.ACCELERATION
    assert ok.metrics.latency >= 0.0
    assert ok.quality.completeness == 1.0


# ---------- band 1: direct computation ----------------------------------------

BAND1 = [1, 2, 97, 360, 2**20 + 7, 2**31 - 1, 4294967291, 2**32 - 1, 111546435]


@pytest.mark.parametrize("n", BAND1)
def test_direct_factorization(make_strategy, n):
    fr = assert_factors(run(make_strategy(DirectComputationStrategy), n), n)
    assert fr.method == ("trial-division" if n <= 1000 else "wheel-30")


def test_direct_small_operations(make_strategy):
    s = make_strategy(DirectComputationStrategy)
    assert run(s, IsPrimeOp(97)).result is True
    assert run(s, IsPrimeOp(4294967291)).result is True
    assert run(s, IsPrimeOp(1)).result is False
    assert run(s, NextPrimeOp(100)).result == 101
    assert run(s, PrimeFactorsOp(360)).result == [2, 3, 5]
    assert run(s, {"type": "nextPrime", "n": 7919}).result == 7927


def test_direct_batch(make_strategy):
    res = run(make_strategy(DirectComputationStrategy), [12, 97, 1])
    assert [r.as_dict() for r in res.result] == [{2: 2, 3: 1}, {97: 1}, {}]


# ---------- band 2: cache optimized -------------------------------------------


@pytest.mark.parametrize("n,expected,method", [
    (600851475143, {71: 1, 839: 1, 1471: 1, 6857: 1}, "cached-trial"),
    (2**64 - 1, {3: 1, 5: 1, 17: 1, 257: 1, 641: 1, 65537: 1, 6700417: 1}, "cached-sieve"),
    (1000000007 * 998244353, {998244353: 1, 1000000007: 1}, "cached-sieve+remainder"),
    (M61, {M61: 1}, None),
])
def test_cache_optimized_factorization(make_strategy, n, expected, method):
    fr = assert_factors(run(make_strategy(CacheOptimizedStrategy), n), n, expected)
    if method:
        assert fr.method == method


def test_cache_hit_on_repeat(make_strategy):
    s = make_strategy(CacheOptimizedStrategy)
    first = run(s, 600851475143).result
    second = run(s, 600851475143).result
    assert (first.cached, second.cached) == (False, True)
    assert second.method == "cache-hit"
    assert second.factors == first.factors
    assert s.statistics()["cache_entries"] >= 1


def test_caching_can_be_disabled(make_strategy, config):
    config.enable_caching = False
    s = make_strategy(CacheOptimizedStrategy, cfg=config)
    run(s, 600851475143)
    assert run(s, 600851475143).result.cached is False
    assert s.cache is None


def test_cache_optimized_prime_queries(make_strategy):
    s = make_strategy(CacheOptimizedStrategy)
    assert run(s, IsPrimeOp(M61)).result is True
    assert run(s, IsPrimeOp(M61)).result is True      # second answer from cache
    assert run(s, GeneratePrimesOp(100, 200)).result == list(primerange(100, 201))
    assert run(s, PrimeCountOp(100_000)).result == 9592
    assert run(s, GeneratePrimesOp(200, 100)).error_type == "InputValidationError"
    assert s.segment_hits > 0


def test_cache_optimized_batch_deduplicates(make_strategy):
    n = 600851475143
    res = run(make_strategy(CacheOptimizedStrategy), [n, n, M61])
    assert [r.n for r in res.result] == [n, n, M61]


# ---------- band 3: sieve based -----------------------------------------------


def test_sieve_based_semiprime(make_strategy):
    p, q = nextprime(2**34), nextprime(2**35)
    fr = assert_factors(run(make_strategy(SieveBasedStrategy), p * q), p * q, {p: 1, q: 1})
    assert fr.method == "wheel-210+pollard-rho"


@pytest.mark.parametrize("n,method", [
    (2**64 + 1, "wheel-210+pollard-rho"),
    (2**89 - 1, "wheel-210"),
    (2**64 * 1009 * 1013, "wheel-210+sieve"),
    (2**128 - 1, None),
    (3**60 * 7, "wheel-210"),
])
def test_sieve_based_factorization(make_strategy, n, method):
    fr = assert_factors(run(make_strategy(SieveBasedStrategy), n), n)
    if method:
        assert fr.method == method


def _gives_up(*args, **kw):
    return None


def test_sieve_based_reaches_ecm_when_rho_gives_up(make_strategy, monkeypatch):
    monkeypatch.setattr("bandfactor.strategies.sieve_based.pollard_rho", _gives_up)
    p, q = nextprime(2**32), nextprime(2**60)
    fr = assert_factors(run(make_strategy(SieveBasedStrategy), p * q), p * q, {p: 1, q: 1})
    assert fr.method == "wheel-210+ecm"


def test_sieve_based_marks_composite_it_cannot_split(make_strategy, monkeypatch, caplog):
    # 116 bits with a 54-bit smallest factor
    n = 11911122068301817 * 3567144091739894257
    for name in ("pollard_rho", "ecm", "smallest_divisor"):
        monkeypatch.setattr(f"bandfactor.strategies.sieve_based.{name}", _gives_up)
    res = run(make_strategy(SieveBasedStrategy), n)
    assert res.success
    fr = res.result
    assert not fr.is_complete
    assert fr.unsplit == (n,)
    assert fr.as_dict() == {n: 1}
    assert fr.product() == n
    assert "leaving 116-bit composite unsplit" in caplog.text


def test_sieve_based_ranges(make_strategy):
    s = make_strategy(SieveBasedStrategy)
    lo = 10**9
    assert run(s, SieveRangeOp(lo, lo + 1000)).result == list(primerange(lo, lo + 1001))
    assert run(s, PrimeCountOp(1000)).result == 168
    assert run(s, NextPrimeOp(2**64)).result == 2**64 + 13
    assert run(s, SieveRangeOp(0, 10**8)).error_type == "InputValidationError"


# ---------- band 4: parallel sieve --------------------------------------------

N4 = 524287 * 2147483647 * M127


def test_parallel_factorization(make_strategy):
    fr = assert_factors(run(make_strategy(ParallelSieveStrategy), N4), N4,
                        {524287: 1, 2147483647: 1, M127: 1})
    assert fr.method.startswith("parallel-trial")


def test_parallel_distributed_factor(make_strategy):
    fr = assert_factors(run(make_strategy(ParallelSieveStrategy), DistributedFactorOp(N4)), N4)
    assert fr.method.startswith("distributed(parallel-trial")


def test_parallel_batch_keeps_order(make_strategy):
    other = 65537 * 2147483647 * M127
    res = run(make_strategy(ParallelSieveStrategy), BatchFactorOp((N4, other, N4)))
    assert res.success, res.error
    assert [r.n for r in res.result] == [N4, other, N4]
    assert res.result[1].as_dict() == {65537: 1, 2147483647: 1, M127: 1}
    assert res.result[0].method == "parallel-batch"


def test_parallel_sieve_range(make_strategy):
    res = run(make_strategy(ParallelSieveStrategy), ParallelSieveOp(1000, 200_000))
    assert res.result == list(primerange(1000, 200_001))


def test_parallel_needs_worker_pool(make_strategy):
    res = run(make_strategy(ParallelSieveStrategy, collab=Collaborators()), N4)
    assert res.error_type == "CollaboratorNotConfiguredError"
    assert "worker_pool" in res.error


# ---------- band 5: streaming -------------------------------------------------

N5 = 1000003 * nextprime(2**300)


def test_streaming_factorization(make_strategy):
    fr = assert_factors(run(make_strategy(StreamingPrimeStrategy), N5), N5)
    assert "streaming-rho" in fr.method
    assert fr.method.startswith("streaming-trial")


def test_streaming_factor_reports_chunks(make_strategy):
    report = run(make_strategy(StreamingPrimeStrategy), StreamingFactorOp(N5)).result
    assert report["chunks"] >= 1
    assert product_of(report["result"].factors) == N5


def test_streaming_prime_streams(make_strategy):
    s = make_strategy(StreamingPrimeStrategy)
    got = run(s, GeneratePrimeStreamOp(10**6, 50)).result
    assert got == list(islice(primerange(10**6, 2 * 10**6), 50))
    primes = run(s, PrimeGenerationOp(3, 64)).result
    assert len(primes) == 3 and all(p.bit_length() == 64 and isprime(p) for p in primes)
    assert run(s, PrimeGenerationOp(1001, 64)).error_type == "InputValidationError"
    assert run(s, PrimeGenerationOp(1, 513)).error_type == "InputValidationError"
    assert run(s, {"type": "streamingSieve", "start": 100, "end": 300}).result == list(primerange(100, 301))


def test_streaming_blocks_under_backpressure(make_strategy, pool):
    mm = MemoryManager(usage_source=lambda: 0)
    bp = BackpressureController(0.85, level_source=mm.usage_ratio, poll_interval_s=0.001)
    bp.pause()
    collab = Collaborators(lru_cache_provider(), pool, mm, bp)
    res = run(make_strategy(StreamingPrimeStrategy, collab=collab), N5, timeout_ms=100)
    assert res.error_type == "StrategyTimeoutError"
    assert bp.waits > 0


def test_streaming_needs_backpressure(make_strategy):
    res = run(make_strategy(StreamingPrimeStrategy, collab=Collaborators()), N5)
    assert res.error_type == "CollaboratorNotConfiguredError"


# ---------- band 6: distributed -----------------------------------------------

N6 = 3 * 5 * 65537 * M521


def test_distributed_factorization(make_strategy):
    fr = assert_factors(run(make_strategy(DistributedSieveStrategy), N6), N6,
                        {3: 1, 5: 1, 65537: 1, M521: 1})
    assert fr.method == "distributed-trial"


def test_consensus_primality_is_not_range_guarded(make_strategy):
    s = make_strategy(DistributedSieveStrategy)
    res = run(s, ConsensusPrimalityOp(M61))
    assert res.result is True
    assert s.cluster.metrics.consensus_agreements == 1
    assert run(s, IsPrimeOp(M521)).result is True
    assert s.statistics()["network"]["total_tasks"] == 2


def test_network_status_lists_nodes(make_strategy):
    status = run(make_strategy(DistributedSieveStrategy), NetworkStatusOp()).result
    assert len(status["nodes"]) == 8
    assert status["redundancy"] == 3


def test_distributed_sieve(make_strategy):
    res = run(make_strategy(DistributedSieveStrategy), DistributedSieveOp(100, 1000))
    assert res.result == list(primerange(100, 1001))


def test_every_node_failing_is_reported(make_strategy):
    s = make_strategy(DistributedSieveStrategy)
    s.cluster.transport.fail_nodes.update(s.cluster.nodes)
    res = run(s, ConsensusPrimalityOp(M61))
    assert res.error_type == "ConsensusFailureError"


def test_single_fault_is_absorbed(make_strategy):
    s = make_strategy(DistributedSieveStrategy)
    s.cluster.transport.fail_nodes.add(s.cluster.available()[0].id)
    assert run(s, ConsensusPrimalityOp(M61)).result is True
    assert s.cluster.metrics.node_failures == 1


def test_fault_tolerance_off_propagates_node_failure(make_strategy, config):
    APPLY({"DISTRIBUTED": {"FAULT_TOLERANCE": False}})
    config.retry_attempts = 1
    s = make_strategy(DistributedSieveStrategy, cfg=config)
    s.cluster.transport.fail_nodes.add(s.cluster.available()[0].id)
    assert run(s, ConsensusPrimalityOp(M61)).error_type == "NodeFailureError"


def test_fault_tolerant_operation(make_strategy):
    s = make_strategy(DistributedSieveStrategy)
    assert run(s, FaultTolerantOp(M521, "isPrime")).result is True
    assert run(s, FaultTolerantOp(M521, "spectralFactor")).error_type == "UnknownOperationError"


def test_pool_mode_needs_worker_pool(make_strategy):
    APPLY({"DISTRIBUTED": {"MODE": "pool"}})
    s = make_strategy(DistributedSieveStrategy, collab=Collaborators())
    assert run(s, ConsensusPrimalityOp(M61)).error_type == "CollaboratorNotConfiguredError"


def test_pool_mode_runs_on_worker_pool(make_strategy):
    APPLY({"DISTRIBUTED": {"MODE": "pool"}})
    s = make_strategy(DistributedSieveStrategy)
    assert run(s, ConsensusPrimalityOp(M61)).result is True


# ---------- band 7: hybrid ----------------------------------------------------

N7 = 1000003 * 2147483647 * nextprime(2**1050)


def test_hybrid_adaptive_factorization(make_strategy):
    s = make_strategy(HybridStrategy)
    fr = assert_factors(run(s, N7), N7)
    assert fr.method == "hybrid-adaptive(pollard_rho)"
    analysis = run(s, PerformanceAnalysisOp()).result
    assert analysis["adaptive_successes"] == 1
    assert analysis["algorithms"]["pollard_rho"]["attempts"] == 1


def test_hybrid_timeout(make_strategy):
    res = run(make_strategy(HybridStrategy), M607 * M521, timeout_ms=200)
    assert not res.success
    assert res.error_type == "StrategyTimeoutError"


def test_hybrid_selector_operations(make_strategy):
    s = make_strategy(HybridStrategy)
    sel = run(s, AlgorithmSelectionOp(N7)).result
    assert sel["algorithm"] == "pollard_rho"
    weights = run(s, UpdateWeightsOp("ecm", True, 5.0)).result
    assert sum(weights.values()) == pytest.approx(1.0)
    assert run(s, UpdateWeightsOp("shor", True, 1.0)).error_type == "InputValidationError"


def test_hybrid_falls_back_when_portfolio_is_exhausted(make_strategy):
    APPLY({"HYBRID": {"MAX_ALGORITHM_ATTEMPTS": 0}})
    s = make_strategy(HybridStrategy)
    n = 1000003 * nextprime(2**1050)
    fr = assert_factors(run(s, n), n)
    assert fr.method.startswith("hybrid-adaptive()+fallback(")
    assert run(s, PerformanceAnalysisOp()).result["fallback_usage"] == 1

    e = AlgorithmExhaustedError(["ecm", "gnfs"], [15, 21])
    assert str(e) == "ecm, gnfs left 2 composite(s) unsplit"
    assert e.remaining == (15, 21)


def test_hybrid_distributed_without_pool_is_a_failed_attempt(make_strategy, caplog):
    s = make_strategy(HybridStrategy, collab=Collaborators(cache_provider=lru_cache_provider()))
    s.selector = AdaptiveSelector(priors={"distributed": 0.9, "pollard_rho": 0.1})
    fr = assert_factors(run(s, N7), N7)
    assert fr.method.startswith("hybrid-adaptive(distributed)+fallback(")
    assert "collaborator 'worker_pool' is not configured (needed by distributed)" in caplog.text
    stats = run(s, PerformanceAnalysisOp()).result["algorithms"]["distributed"]
    assert stats["attempts"] == 1 and stats["success_rate"] == 0.0


def test_cross_band_optimize(make_strategy):
    s = make_strategy(HybridStrategy)
    plan = run(s, CrossBandOptimizeOp((10, 2**100, 2**1500))).result
    assert [r["band"] for r in plan["recommendations"]] == ["ULTRABASS", "MIDRANGE", "ULTRASONIC_1"]
    assert plan["recommended_preprocessing"] == ["sort_by_size"]
    assert run(s, CrossBandOptimizeOp(())).error_type == "InputValidationError"


# ---------- band 8: spectral --------------------------------------------------

N8 = M61 * M2203


def test_spectral_factorization(make_strategy):
    fr = assert_factors(run(make_strategy(SpectralTransformStrategy), N8), N8, {M61: 1, M2203: 1})
    assert fr.method == "spectral-transform(quantum-simulation)"


def test_spectral_operations(make_strategy):
    s = make_strategy(SpectralTransformStrategy)
    assert run(s, IsPrimeOp(2**2203 + 1)).result is False
    q = run(s, QuantumSimulationOp(N8)).result
    assert q["factor"] == M61 and q["period"] == 122
    a = run(s, SpectralAnalysisOp(N8, "blackman")).result
    assert a["window"] == "blackman" and a["branch"] == "quantum-simulation"
    assert run(s, SpectralAnalysisOp(N8, "triangle")).error_type == "InputValidationError"
    t = run(s, TransformOptimizationOp(N8)).result
    assert t["recommended_window"] in WINDOWS
    assert t["recommended_transform_size"] == 4096
    report = run(s, SpectralFactorOp(N8)).result
    assert product_of(report["result"].factors) == N8


def test_spectral_algebraic_and_lattice(make_strategy):
    s = make_strategy(SpectralTransformStrategy)
    n = 2**2400 + 1
    alg = run(s, AlgebraicNumberTheoryOp(n)).result
    assert alg["method"] == "cyclotomic"
    assert n % alg["factor"] == 0
    lat = run(s, LatticeReductionOp(N8)).result
    assert lat["dimension"] == 20
    assert lat["factor"] is None or N8 % lat["factor"] == 0
    stats = s.statistics()
    assert stats["algebraic_operations"] == 1 and stats["lattice_reductions"] == 1


def test_spectral_unknown_window_rejected(make_strategy):
    APPLY({"SPECTRAL": {"WINDOW": "triangle"}})
    with pytest.raises(InputValidationError):
        make_strategy(SpectralTransformStrategy)


def test_factor_op_routes_like_plain_int(make_strategy):
    s = make_strategy(DirectComputationStrategy)
    assert run(s, FactorOp(360)).result.as_dict() == run(s, 360).result.as_dict()
