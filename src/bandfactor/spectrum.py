# spectrum.py
"""
Bit-signal spectra.

A number's binary digits (most significant first) are treated as a 0/1
signal, zero-padded to ``length`` samples, windowed and transformed with
``numpy.fft``. The features mirror the usual audio descriptors: spectral
centroid, bandwidth, rolloff, zero-crossing rate and dominant peaks.
Frequencies are normalised bin indices ``k / length`` over the full FFT.
"""
from __future__ import annotations

from dataclasses import dataclass

import numpy as np

WINDOWS = ("hamming", "blackman", "kaiser", "rectangular")

DEFAULT_LENGTH = 4096
PEAK_FLOOR = 0.1
MAX_PEAKS = 10
KAISER_BETA = 8.6  # sidelobes close to a Blackman window


@dataclass(frozen=True)
class SpectralFeatures:
    window: str
    length: int
    centroid: float
    bandwidth: float
    rolloff: float
    zero_crossing_rate: float
    dominant_frequencies: tuple[float, ...]
    energy: float

    def as_dict(self) -> dict:
        return {
            "window": self.window,
            "length": self.length,
            "spectral_centroid": self.centroid,
            "spectral_bandwidth": self.bandwidth,
            "spectral_rolloff": self.rolloff,
            "zero_crossing_rate": self.zero_crossing_rate,
            "dominant_frequencies": list(self.dominant_frequencies),
            "energy": self.energy,
        }


def window(name: str, length: int) -> np.ndarray:
    if name == "hamming":
        return np.hamming(length)
    if name == "blackman":
        return np.blackman(length)
    if name == "kaiser":
        return np.kaiser(length, KAISER_BETA)
    if name == "rectangular":
        return np.ones(length)
    raise ValueError(f"unknown window '{name}' (expected one of {', '.join(WINDOWS)})")


def bit_signal(n: int, length: int = DEFAULT_LENGTH) -> np.ndarray:
    bits = np.frombuffer(format(int(n), "b").encode("ascii"), dtype=np.uint8) - ord("0")
    size = max(length, bits.size)
    out = np.zeros(size, dtype=float)
    out[:bits.size] = bits
    return out


def zero_crossing_rate(x: np.ndarray) -> float:
    if x.size < 2:
        return 0.0
    neg = x < 0
    return float(np.count_nonzero(neg[1:] != neg[:-1])) / (x.size - 1)


def dominant_peaks(mags: np.ndarray, freqs: np.ndarray, floor: float = PEAK_FLOOR,
                   limit: int = MAX_PEAKS) -> tuple[float, ...]:
    """Local maxima above ``floor`` of the global maximum, strongest first."""
    if mags.size < 3:
        return ()
    mid = mags[1:-1]
    is_peak = (mid > mags[:-2]) & (mid > mags[2:]) & (mid > floor * mags.max())
    idx = np.nonzero(is_peak)[0] + 1
    idx = idx[np.argsort(-mags[idx], kind="stable")][:limit]
    return tuple(float(freqs[i]) for i in idx)


def analyze(n: int, *, window_name: str = "hamming", length: int = DEFAULT_LENGTH,
            rolloff: float = 0.85) -> SpectralFeatures:
    signal = bit_signal(n, length)
    spectrum = np.fft.fft(signal * window(window_name, signal.size))
    mags = np.abs(spectrum)
    freqs = np.arange(signal.size) / signal.size
    total = mags.sum()
    if total > 0:
        centroid = float((freqs * mags).sum() / total)
        bandwidth = float(np.sqrt((((freqs - centroid) ** 2) * mags).sum() / total))
    else:
        centroid = bandwidth = 0.0
    power = mags ** 2
    energy = float(power.sum())
    if energy > 0:
        cut = int(np.searchsorted(np.cumsum(power), rolloff * energy))
        roll = float(freqs[min(cut, freqs.size - 1)])
    else:
        roll = float(freqs[-1])
    return SpectralFeatures(
        window=window_name,
        length=int(signal.size),
        centroid=centroid,
        bandwidth=bandwidth,
        rolloff=roll,
        zero_crossing_rate=zero_crossing_rate(spectrum.real),
        dominant_frequencies=dominant_peaks(mags, freqs),
        energy=energy,
    )


def recommend_window(n: int, *, length: int = DEFAULT_LENGTH) -> tuple[str, dict[str, float]]:
    """Window whose spectrum is most concentrated (narrowest bandwidth) for ``n``."""
    scores = {w: analyze(n, window_name=w, length=length).bandwidth for w in WINDOWS}
    return min(scores, key=lambda w: (scores[w], WINDOWS.index(w))), scores
