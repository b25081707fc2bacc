# tests/test_bands.py
from __future__ import annotations

import pytest

from bandfactor.bands import (
    BAND_FOR_STRATEGY,
    BIT_RANGES,
    STRATEGY_FOR_BAND,
    Band,
    BandClassifier,
    ProcessingStrategy,
    band_distance,
    band_of,
    characteristics_of,
    neighbors,
)
from bandfactor.errors import BandConfigurationError, UnknownStrategyError

# ---------- band table --------------------------------------------------------

BAND_EDGES = [
    (1, Band.ULTRABASS),
    (32, Band.ULTRABASS),
    (33, Band.BASS),
    (64, Band.BASS),
    (65, Band.MIDRANGE),
    (128, Band.MIDRANGE),
    (129, Band.UPPER_MID),
    (256, Band.UPPER_MID),
    (257, Band.TREBLE),
    (512, Band.TREBLE),
    (513, Band.SUPER_TREBLE),
    (1024, Band.SUPER_TREBLE),
    (1025, Band.ULTRASONIC_1),
    (2048, Band.ULTRASONIC_1),
    (2049, Band.ULTRASONIC_2),
    (4096, Band.ULTRASONIC_2),
]


@pytest.mark.parametrize("bits,band", BAND_EDGES, ids=[f"{b}bits" for b, _ in BAND_EDGES])
def test_band_of_edges(bits, band):
    assert band_of(bits) is band
    assert band.contains(bits)


def test_ranges_are_contiguous_and_ordered():
    prev_hi = 0
    for band in Band:
        lo, hi = BIT_RANGES[band]
        assert lo == prev_hi + 1
        assert (band.min_bits, band.max_bits) == (lo, hi)
        prev_hi = hi
    assert [int(b) for b in Band] == list(range(1, 9))


@pytest.mark.parametrize("bits", [0, 4097, 10_000])
def test_band_of_rejects_unsupported_lengths(bits):
    with pytest.raises(BandConfigurationError):
        band_of(bits)


def test_band_of_honours_raised_limit():
    assert band_of(5000, max_bits=8192) is Band.ULTRASONIC_2


def test_strategy_mapping_is_one_to_one():
    assert len(set(STRATEGY_FOR_BAND.values())) == len(Band)
    for band in Band:
        assert BAND_FOR_STRATEGY[band.strategy] is band


@pytest.mark.parametrize("name,expected", [
    ("sieve_based", ProcessingStrategy.SIEVE_BASED),
    ("SPECTRAL-TRANSFORM", ProcessingStrategy.SPECTRAL_TRANSFORM),
    ("hybrid_strategy", ProcessingStrategy.HYBRID_STRATEGY),
    (ProcessingStrategy.DIRECT_COMPUTATION, ProcessingStrategy.DIRECT_COMPUTATION),
])
def test_strategy_name_parsing(name, expected):
    assert ProcessingStrategy.parse(name) is expected


def test_unknown_strategy_name():
    with pytest.raises(UnknownStrategyError):
        ProcessingStrategy.parse("quantum_annealing")


def test_neighbors_and_distance():
    assert neighbors(Band.ULTRABASS) == [Band.BASS]
    assert neighbors(Band.ULTRASONIC_2) == [Band.ULTRASONIC_1]
    assert neighbors(Band.TREBLE) == [Band.UPPER_MID, Band.SUPER_TREBLE]
    assert band_distance(Band.BASS, Band.ULTRASONIC_1) == 5


# ---------- classifier --------------------------------------------------------


def test_classify_reports_band_and_bits():
    clf = BandClassifier()
    c = clf.classify(2**61 - 1)
    assert c.band is Band.BASS
    assert c.bit_size == 61
    assert 0.0 <= c.confidence <= 1.0
    assert c.band not in c.alternatives
    assert Band.ULTRABASS in c.alternatives and Band.MIDRANGE in c.alternatives


def test_confidence_peaks_mid_band():
    clf = BandClassifier()
    mid = clf.classify(1 << 47).confidence      # 48 bits, middle of 33-64
    edge = clf.classify(1 << 32).confidence     # 33 bits, lower edge
    assert mid > edge


def test_classifier_cache_hits_and_eviction():
    clf = BandClassifier(cache_size=2)
    clf.classify(10)
    clf.classify(10)
    assert (clf.hits, clf.misses) == (1, 1)
    clf.classify(11)
    clf.classify(12)                  # evicts 10
    clf.classify(10)
    stats = clf.statistics()
    assert stats["cache_misses"] == 4
    assert stats["cached_entries"] == 2
    clf.clear_cache()
    assert clf.statistics()["total_classifications"] == 0


def test_classify_batch_picks_majority_band():
    clf = BandClassifier()
    batch = clf.classify_batch([3, 5, 7, 2**40, 2**100])
    assert batch.optimal is Band.ULTRABASS
    assert batch.distribution[Band.ULTRABASS] == 3
    assert len(batch.individual) == 5
    assert 0.0 < batch.confidence <= 1.0


def test_classify_batch_empty():
    assert BandClassifier().classify_batch([]).individual == []


def test_band_metrics_shape():
    clf = BandClassifier()
    clf.classify(2**70 + 1)
    m = clf.band_metrics(Band.MIDRANGE)
    assert m["characteristics"]["bit_range"] == (65, 128)
    assert m["usage"]["classifications"] == 1
    assert m["performance"]["memory_usage"] == Band.MIDRANGE.memory_per_op


def test_classifier_rejects_too_large():
    with pytest.raises(BandConfigurationError):
        BandClassifier(max_bits=64).classify(2**64)


def test_classifier_follows_raised_ceiling():
    clf = BandClassifier(max_bits=8192)
    c = clf.classify((1 << 5000) + 1)
    assert c.band is Band.ULTRASONIC_2
    assert c.bit_size == 5001
    assert 0.0 <= c.confidence <= 1.0


def test_characteristics_of_huge_bit_counts():
    ch = characteristics_of(1_000_000)
    assert ch.factorization_complexity == 1.0
    assert ch.cache_locality == 0.0
    big = BandClassifier(max_bits=300_000).classify(1 << 250_000)
    assert big.band is Band.ULTRASONIC_2
    assert 0.0 <= big.confidence <= 1.0
