"""Window functions and hop-aligned frame views over a sample buffer."""

from __future__ import annotations

import numpy as np
from scipy.signal import windows

from batcall.util.logging import get_logger

logger = get_logger(__name__)


def get_window(window_type: str, n: int) -> np.ndarray:
    """Return a symmetric window of length ``n``.

    Supported names: hann, hamming, blackman, triangular (zero end points),
    rectangular, gauss (sigma = (n - 1) / 4). Unknown names fall back to hann.
    """
    n = int(n)
    if n <= 0:
        return np.zeros(0, dtype=np.float64)
    name = str(window_type or "hann").lower()
    if name == "hann":
        return windows.hann(n, sym=True)
    if name == "hamming":
        return windows.hamming(n, sym=True)
    if name == "blackman":
        return windows.blackman(n, sym=True)
    if name == "triangular":
        return windows.bartlett(n, sym=True)
    if name == "rectangular":
        return windows.boxcar(n, sym=True)
    if name == "gauss":
        return windows.gaussian(n, std=max((n - 1) / 4.0, 1e-12), sym=True)
    logger.warning("Unknown window type %r, using hann", window_type)
    return windows.hann(n, sym=True)


def frame_view(samples: np.ndarray, frame_size: int, hop_size: int) -> np.ndarray:
    """Return a read-only (num_frames, frame_size) view of hop-aligned frames.

    Frame ``i`` starts at sample ``i * hop_size``; a trailing partial frame is
    dropped. Returns an empty (0, frame_size) array when the buffer is shorter
    than one frame.
    """
    x = np.asarray(samples)
    if x.ndim != 1:
        raise ValueError("frame_view only supports 1D arrays")
    if x.size < frame_size:
        return np.empty((0, frame_size), dtype=x.dtype)
    return np.lib.stride_tricks.sliding_window_view(x, frame_size)[:: int(hop_size)]
