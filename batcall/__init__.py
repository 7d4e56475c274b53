"""
batcall: bat echolocation call detection and parameter measurement.

This package turns a mono audio buffer plus a frequency band of interest into
validated call records:
- Band-limited Goertzel power matrix (dsp.spectrum)
- Frame segmentation against a global-max-relative threshold (dsp.segmentation)
- Edge threshold search, frequency measurement, anti-rebounce end frame and
  knee detection (detection.*)
- Noise-floor relative SNR scoring (detection.quality)

Usage:
    from batcall import BatCallDetector
    detector = BatCallDetector()
    calls = detector.detect(samples, 256000, 10.0, 120.0)
"""
from __future__ import annotations

__version__ = "0.1.0"

from batcall.detection.engine import BatCallDetector, detect_calls
from batcall.detection.types import BatCall, CallQuality, CallType
from batcall.io.profiles import DetectionConfig

__all__ = [
    "BatCall",
    "BatCallDetector",
    "CallQuality",
    "CallType",
    "DetectionConfig",
    "detect_calls",
    "__version__",
]
