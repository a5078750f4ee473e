"""Feature extraction (SRP).
Provides: ExtractorConfig, extract, feature_dimension and the luminance helpers.

Every strategy resamples to the configured canonical size first, so a vector
computed today is comparable with one computed when the model was trained.
"""

from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import asdict, dataclass

import numpy as np
from PIL import Image

from .constants import CANONICAL_SIZE, FEATURE_STRATEGY, HISTOGRAM_BINS, LUMA_WEIGHTS, RESAMPLE_METHOD
from .errors import ExtractionError

STRATEGIES = ("grayscale", "stats", "histogram")
_RESAMPLE = {
    "nearest": Image.Resampling.NEAREST,
    "bilinear": Image.Resampling.BILINEAR,
}


@dataclass(frozen=True)
class ExtractorConfig:
    """Fixed extraction settings; part of the identity of every trained model."""

    strategy: str = FEATURE_STRATEGY
    canonical_width: int = CANONICAL_SIZE
    canonical_height: int = CANONICAL_SIZE
    resample: str = RESAMPLE_METHOD
    bins: int = HISTOGRAM_BINS

    def __post_init__(self) -> None:
        if self.strategy not in STRATEGIES:
            raise ValueError(f"Unknown feature strategy: {self.strategy!r} (expected one of {STRATEGIES})")
        if self.resample not in _RESAMPLE:
            raise ValueError(f"Unknown resample method: {self.resample!r}")
        if self.canonical_width <= 0 or self.canonical_height <= 0:
            raise ValueError("Canonical size must be positive")
        if self.bins <= 0:
            raise ValueError("Histogram bin count must be positive")

    @classmethod
    def from_settings(cls, settings: dict) -> ExtractorConfig:
        size = int(settings.get("canonical_size", CANONICAL_SIZE))
        return cls(
            strategy=str(settings.get("feature_strategy", FEATURE_STRATEGY)),
            canonical_width=size,
            canonical_height=size,
            resample=str(settings.get("resample", RESAMPLE_METHOD)),
            bins=int(settings.get("histogram_bins", HISTOGRAM_BINS)),
        )

    @property
    def dimension(self) -> int:
        if self.strategy == "grayscale":
            return self.canonical_width * self.canonical_height
        if self.strategy == "stats":
            return 2
        return self.bins

    def feature_hash(self) -> str:
        """Stable hash of the extraction config.

        Used to detect a model trained with different extraction settings even when
        the dimension happens to match.
        """
        data = json.dumps(asdict(self), sort_keys=True)
        return hashlib.sha256(data.encode()).hexdigest()[:16]


DEFAULT_CONFIG = ExtractorConfig()


def feature_dimension(config: ExtractorConfig = DEFAULT_CONFIG) -> int:
    return config.dimension


def _is_empty(pixels) -> bool:
    if pixels is None:
        return True
    if isinstance(pixels, np.ndarray):
        return pixels.size == 0
    return len(pixels) == 0


def _as_array(pixels, width: int, height: int) -> np.ndarray:
    """Coerce a pixel buffer into a (height, width, channels) uint8 array."""
    if isinstance(pixels, np.ndarray) and pixels.ndim in (2, 3):
        arr = pixels
        if arr.ndim == 2:
            arr = arr[:, :, np.newaxis]
        if arr.shape[0] != height or arr.shape[1] != width:
            raise ExtractionError(f"Pixel array shape {arr.shape} does not match {width}x{height}")
    else:
        if isinstance(pixels, (bytes, bytearray, memoryview)):
            flat = np.frombuffer(pixels, dtype=np.uint8)
        else:
            flat = np.asarray(pixels).reshape(-1)
        n_pixels = width * height
        channels, rest = divmod(flat.size, n_pixels)
        if rest or channels not in (1, 2, 3, 4):
            raise ExtractionError(f"Buffer of {flat.size} values is not {width}x{height} with 1-4 channels")
        arr = flat.reshape(height, width, channels)
    if arr.shape[2] not in (1, 2, 3, 4):
        raise ExtractionError(f"Unsupported channel count: {arr.shape[2]}")
    return np.clip(arr, 0, 255).astype(np.uint8)


def _resample(arr: np.ndarray, config: ExtractorConfig) -> np.ndarray:
    # alpha is not part of the signal
    color = arr[:, :, :3] if arr.shape[2] >= 3 else arr[:, :, :1]
    target = (config.canonical_width, config.canonical_height)
    if (color.shape[1], color.shape[0]) == target:
        return color
    img = Image.fromarray(np.ascontiguousarray(color[:, :, 0] if color.shape[2] == 1 else color))
    resized = np.asarray(img.resize(target, resample=_RESAMPLE[config.resample]), dtype=np.uint8)
    if resized.ndim == 2:
        resized = resized[:, :, np.newaxis]
    return resized


def luminance(arr: np.ndarray) -> np.ndarray:
    """Per-pixel luminance normalized to [0,1]."""
    if arr.shape[2] == 1:
        return arr[:, :, 0].astype(np.float64) / 255.0
    r, g, b = (arr[:, :, i].astype(np.float64) for i in range(3))
    return (LUMA_WEIGHTS[0] * r + LUMA_WEIGHTS[1] * g + LUMA_WEIGHTS[2] * b) / 255.0


def _compute_histogram(gray: np.ndarray, bins: int) -> np.ndarray:
    counts, _ = np.histogram(gray, bins=bins, range=(0.0, 1.0))
    return counts.astype(np.float64) / float(gray.size)


def extract(pixels, width: int, height: int, config: ExtractorConfig = DEFAULT_CONFIG) -> np.ndarray:
    """Turn a raw 8-bit pixel buffer into the configured feature vector.

    Pure and deterministic. A zero-pixel input yields the all-zero vector.
    Raises ExtractionError only for buffers whose size does not describe a
    width x height image.
    """
    if width <= 0 or height <= 0 or _is_empty(pixels):
        logging.debug("[features] Zero-pixel input -> zero vector (dim=%d)", config.dimension)
        return np.zeros(config.dimension, dtype=np.float64)

    arr = _resample(_as_array(pixels, width, height), config)
    gray = luminance(arr)

    if config.strategy == "grayscale":
        vec = gray.reshape(-1)
    elif config.strategy == "stats":
        vec = np.array([gray.mean(), gray.std()], dtype=np.float64)
    else:
        vec = _compute_histogram(gray, config.bins)
    return np.clip(vec, 0.0, 1.0)


__all__ = ["ExtractorConfig", "DEFAULT_CONFIG", "STRATEGIES", "extract", "feature_dimension", "luminance"]
