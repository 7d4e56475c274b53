"""Band-limited Goertzel power matrix for the detector.

Only the bins inside the requested band are evaluated, so cost scales with the
band of interest rather than with the full FFT size.
"""

from __future__ import annotations

import math

import numpy as np

from batcall.detection.types import PowerMatrix
from batcall.errors import EmptyBandError, WindowTooSmallError
from batcall.util.math import db10

from .windowing import frame_view, get_window

# Frames evaluated per Goertzel pass; bounds the (frames, bins) working arrays.
FRAME_CHUNK = 1024


def goertzel_energy(frames: np.ndarray, freqs_hz: np.ndarray, sample_rate: float) -> np.ndarray:
    """Return the single-frequency energy of every frame at every target frequency.

    ``frames`` is (num_frames, frame_len) or a single 1D frame; the result is
    (num_frames, len(freqs_hz)). Each column runs the second-order Goertzel
    recurrence ``s[n] = x[n] + 2cos(w) s[n-1] - s[n-2]`` over the frame.
    """
    x = np.atleast_2d(np.asarray(frames, dtype=np.float64))
    w = 2.0 * np.pi * np.asarray(freqs_hz, dtype=np.float64) / float(sample_rate)
    coeff = 2.0 * np.cos(w)
    s1 = np.zeros((x.shape[0], w.size), dtype=np.float64)
    s2 = np.zeros_like(s1)
    for n in range(x.shape[1]):
        s0 = x[:, n : n + 1] + coeff * s1 - s2
        s2 = s1
        s1 = s0
    real = s1 - s2 * np.cos(w)
    imag = s2 * np.sin(w)
    return real * real + imag * imag


def band_bins_hz(sample_rate: float, fft_size: int, flow_khz: float, fhigh_khz: float) -> np.ndarray:
    """Frequencies (Hz) of the FFT bins falling inside [flow_khz, fhigh_khz]."""
    resolution = float(sample_rate) / float(fft_size)
    min_bin = max(0, int(math.floor(flow_khz * 1000.0 / resolution)))
    max_bin = min(fft_size // 2, int(math.floor(fhigh_khz * 1000.0 / resolution)))
    if max_bin < min_bin:
        raise EmptyBandError(flow_khz, fhigh_khz, resolution)
    return np.arange(min_bin, max_bin + 1, dtype=np.float64) * resolution


def frame_power_db(
    frames: np.ndarray,
    sample_rate: float,
    freq_bins_hz: np.ndarray,
    window: np.ndarray,
    norm_size: int,
) -> np.ndarray:
    """Window, remove DC and return 10*log10(energy / norm_size) per frame and bin."""
    windowed = np.atleast_2d(np.asarray(frames, dtype=np.float64)) * window
    windowed = windowed - windowed.mean(axis=1, keepdims=True)
    energy = goertzel_energy(windowed, freq_bins_hz, sample_rate)
    # rms^2 == energy; PSD normalised by the transform length
    return db10(energy / float(norm_size))


def compute_power_matrix(
    samples: np.ndarray,
    sample_rate: float,
    flow_khz: float,
    fhigh_khz: float,
    *,
    fft_size: int = 1024,
    hop_percent: float = 3.125,
    window_type: str = "hann",
) -> PowerMatrix:
    """Return the per-frame power matrix of ``samples`` restricted to the band.

    Raises WindowTooSmallError when the hop size rounds below one sample or the
    FFT size exceeds the buffer, and EmptyBandError when no bin falls in the band.
    """
    x = np.asarray(samples, dtype=np.float64)
    if x.ndim != 1:
        raise ValueError(f"expected mono samples, got shape {x.shape}")
    fft_size = int(fft_size)
    hop_size = int(math.floor(fft_size * (hop_percent / 100.0)))
    if hop_size < 1 or fft_size > x.size:
        raise WindowTooSmallError(fft_size, hop_size, x.size)

    freq_bins = band_bins_hz(sample_rate, fft_size, flow_khz, fhigh_khz)
    frames = frame_view(x, fft_size, hop_size)
    num_frames = frames.shape[0]
    window = get_window(window_type, fft_size)

    power_db = np.empty((num_frames, freq_bins.size), dtype=np.float64)
    for start in range(0, num_frames, FRAME_CHUNK):
        stop = min(start + FRAME_CHUNK, num_frames)
        power_db[start:stop] = frame_power_db(frames[start:stop], sample_rate, freq_bins, window, fft_size)

    frame_starts = np.arange(num_frames, dtype=np.float64) * hop_size
    time_frames = (frame_starts + fft_size / 2.0) / float(sample_rate)
    return PowerMatrix(
        power_db=power_db,
        freq_bins_hz=freq_bins,
        time_frames_s=time_frames,
        freq_resolution_hz=float(sample_rate) / float(fft_size),
    )
