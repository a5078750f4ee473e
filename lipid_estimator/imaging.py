"""Image decode boundary: encoded bytes/files -> raw 8-bit pixel buffers -> features."""

from __future__ import annotations

import io
import logging
import os
from dataclasses import dataclass

import numpy as np
from PIL import Image, UnidentifiedImageError

from .errors import ExtractionError
from .features import DEFAULT_CONFIG, ExtractorConfig, extract
from .tasks import CancelToken, ProgressCallback, run_list


@dataclass(frozen=True)
class PixelBuffer:
    """Decoded RGB image as a (height, width, 3) uint8 array."""

    pixels: np.ndarray
    width: int
    height: int

    @property
    def channels(self) -> int:
        return int(self.pixels.shape[2]) if self.pixels.ndim == 3 else 1


def decode_image(data: bytes) -> PixelBuffer:
    if not data:
        raise ExtractionError("Empty image data")
    try:
        with Image.open(io.BytesIO(data)) as img:
            img.load()
            rgb = img.convert("RGB")
    except (UnidentifiedImageError, OSError, ValueError) as e:
        raise ExtractionError(f"Could not decode image: {e}") from e
    arr = np.asarray(rgb, dtype=np.uint8)
    return PixelBuffer(pixels=arr, width=rgb.width, height=rgb.height)


def load_image(path: str) -> PixelBuffer:
    try:
        with open(path, "rb") as f:
            data = f.read()
    except OSError as e:
        raise ExtractionError(f"Could not read {path}: {e}") from e
    return decode_image(data)


def extract_file(path: str, config: ExtractorConfig = DEFAULT_CONFIG) -> np.ndarray:
    buf = load_image(path)
    feats = extract(buf.pixels, buf.width, buf.height, config)
    logging.debug(f"[imaging] Extracted {len(feats)} features for {os.path.basename(path)}")
    return feats


def batch_extract(
    paths: list[str],
    config: ExtractorConfig = DEFAULT_CONFIG,
    *,
    progress: ProgressCallback | None = None,
    cancel: CancelToken | None = None,
):
    """Extract every path; failing images are skipped and reported.

    Returns (results, report) where results[i] is the vector for paths[i] or
    None when that image failed or was not reached before cancellation.
    """
    logging.info(f"[imaging] Batch extraction start: {len(paths)} images (strategy={config.strategy})")
    results: list[np.ndarray | None] = [None] * len(paths)
    indexed = list(enumerate(paths))

    def _work(item):
        idx, path = item
        results[idx] = extract_file(path, config)

    report = run_list(
        "extract",
        indexed,
        _work,
        describe=lambda item: os.path.basename(item[1]),
        progress=progress,
        cancel=cancel,
    )
    if report.skipped:
        logging.warning(f"[imaging] {report.skipped}/{len(paths)} images could not be extracted")
    logging.info(f"[imaging] Batch extraction complete: {report.processed} extracted, {report.skipped} skipped")
    return results, report


__all__ = ["PixelBuffer", "decode_image", "load_image", "extract_file", "batch_extract"]
