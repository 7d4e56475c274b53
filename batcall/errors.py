"""Exception hierarchy for batcall.

Degenerate audio never raises out of the detection engine: spectrum errors are
caught there and turned into an empty result. These classes exist so the
estimator can say *why* it produced nothing and so the CLI can map failures
to exit codes.
"""

from __future__ import annotations


class BatCallError(Exception):
    """Base class for all batcall errors."""


class SpectrumError(BatCallError):
    """The power matrix could not be computed for the given window."""


class WindowTooSmallError(SpectrumError):
    """FFT size exceeds the buffer, or the hop size rounds down to zero."""

    def __init__(self, fft_size: int, hop_size: int, num_samples: int):
        self.fft_size = int(fft_size)
        self.hop_size = int(hop_size)
        self.num_samples = int(num_samples)
        super().__init__(
            f"window too small: fft_size={self.fft_size} hop_size={self.hop_size} samples={self.num_samples}"
        )


class EmptyBandError(SpectrumError):
    """The requested frequency band contains no FFT bins."""

    def __init__(self, flow_khz: float, fhigh_khz: float, resolution_hz: float):
        self.flow_khz = float(flow_khz)
        self.fhigh_khz = float(fhigh_khz)
        self.resolution_hz = float(resolution_hz)
        super().__init__(
            f"band {self.flow_khz:.3f}-{self.fhigh_khz:.3f} kHz holds no bins at {self.resolution_hz:.1f} Hz resolution"
        )


class AudioReadError(BatCallError):
    """The CLI could not decode the requested audio file."""
