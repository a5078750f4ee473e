"""Dataset store module.
Single responsibility: hold the labeled samples of one session, validate what
goes in, and hand the whole collection to persistence after every mutation.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Callable, Iterable
from typing import Any

import numpy as np

from .constants import DATASET_VERSION
from .domain import BatchReport, Dataset, Sample, check_label, utc_now
from .errors import ValidationError


def dataset_to_dict(dataset: Dataset) -> dict[str, Any]:
    return {
        "version": dataset.version,
        "createdAt": dataset.created_at,
        "updatedAt": dataset.updated_at,
        "samples": [s.to_dict() for s in dataset.samples],
    }


def parse_samples(raw_samples) -> tuple[list[Sample], BatchReport]:
    """Build Sample objects from serialized entries, reporting malformed ones."""
    report = BatchReport()
    samples: list[Sample] = []
    if not isinstance(raw_samples, list):
        raise ValidationError("samples must be a list")
    for idx, raw in enumerate(raw_samples):
        if not isinstance(raw, dict):
            report.record_skip(f"#{idx}", "malformed sample")
            continue
        try:
            samples.append(Sample.from_dict(raw))
            report.record_ok()
        except (TypeError, ValueError):
            report.record_skip(str(raw.get("filename") or f"#{idx}"), "malformed sample")
    return samples, report


def dataset_from_dict(raw: dict[str, Any]) -> tuple[Dataset, BatchReport]:
    if not isinstance(raw, dict):
        raise ValidationError("dataset document must be an object")
    samples, report = parse_samples(raw.get("samples", []))
    dataset = Dataset(
        version=int(raw.get("version", DATASET_VERSION)),
        created_at=str(raw.get("createdAt") or utc_now()),
        updated_at=str(raw.get("updatedAt") or utc_now()),
        samples=samples,
    )
    return dataset, report


class DatasetStore:
    """Append-only, mergeable sample collection for one feature dimension.

    Responsible ONLY for validation + in-memory CRUD; persistence is delegated
    to the on_change hook, which fires after every mutation.
    """

    def __init__(
        self,
        dimension: int,
        dataset: Dataset | None = None,
        on_change: Callable[[Dataset], None] | None = None,
    ):
        self.dimension = dimension
        self.dataset = dataset if dataset is not None else Dataset()
        self.on_change = on_change

    # ---------------- Internal helpers -----------------
    def _touch(self):
        self.dataset.updated_at = utc_now()
        if self.on_change is not None:
            self.on_change(self.dataset)

    def validate(self, sample: Sample):
        if sample.dimension != self.dimension:
            raise ValidationError("feature dimension mismatch")
        if not all(math.isfinite(v) for v in sample.features):
            raise ValidationError("features contain non-finite values")
        check_label(sample.label)

    def _accept(self, samples: Iterable[Sample], report: BatchReport) -> int:
        accepted = 0
        for idx, sample in enumerate(samples):
            try:
                self.validate(sample)
            except ValidationError as e:
                report.record_skip(sample.filename or sample.id or f"#{idx}", str(e))
                continue
            self.dataset.samples.append(sample)
            report.record_ok()
            accepted += 1
        return accepted

    # ---------------- Public API -----------------
    @property
    def samples(self) -> list[Sample]:
        return self.dataset.samples

    def __len__(self) -> int:
        return len(self.dataset.samples)

    def append(self, sample: Sample) -> Sample:
        """Append one sample; raises ValidationError and leaves the store unchanged on failure."""
        self.validate(sample)
        self.dataset.samples.append(sample)
        logging.debug("[dataset] Appended %s label=%.2f", sample.filename or sample.id, sample.label)
        self._touch()
        return sample

    def append_batch(self, samples: Iterable[Sample]) -> BatchReport:
        """Append every valid sample; invalid ones are rejected individually."""
        report = BatchReport()
        accepted = self._accept(samples, report)
        if report.skipped:
            logging.warning("[dataset] Rejected %d samples: %s", report.skipped, report.reason_counts())
        logging.info("[dataset] Appended %d samples (total=%d)", accepted, len(self))
        if accepted:
            self._touch()
        return report

    def merge(self, other: Dataset | Iterable[Sample]) -> BatchReport:
        """Concatenate other's samples after ours, in order. No deduplication."""
        incoming = other.samples if isinstance(other, Dataset) else list(other)
        report = BatchReport()
        accepted = self._accept(incoming, report)
        logging.info("[dataset] Merged %d/%d samples (total=%d)", accepted, len(incoming), len(self))
        if accepted:
            self._touch()
        return report

    def clear(self):
        removed = len(self)
        self.dataset.samples = []
        logging.info("[dataset] Cleared %d samples", removed)
        self._touch()

    def stats(self) -> dict[str, Any]:
        labels = np.asarray([s.label for s in self.dataset.samples], dtype=np.float64)
        stats: dict[str, Any] = {
            "count": int(labels.size),
            "dimension": self.dimension,
            "createdAt": self.dataset.created_at,
            "updatedAt": self.dataset.updated_at,
        }
        if labels.size:
            stats.update(
                {
                    "label_mean": float(labels.mean()),
                    "label_std": float(labels.std()),
                    "label_min": float(labels.min()),
                    "label_max": float(labels.max()),
                }
            )
        return stats

    def to_document(self) -> dict[str, Any]:
        return dataset_to_dict(self.dataset)

    @classmethod
    def from_document(
        cls, dimension: int, raw: dict[str, Any], on_change: Callable[[Dataset], None] | None = None
    ) -> tuple[DatasetStore, BatchReport]:
        """Rebuild a store from a serialized dataset; malformed or invalid samples are reported, not kept."""
        incoming, report = dataset_from_dict(raw)
        store = cls(dimension, Dataset(version=incoming.version, created_at=incoming.created_at))
        report.processed = 0
        report.extend(store.merge(incoming))
        store.dataset.updated_at = incoming.updated_at
        store.on_change = on_change
        return store, report


__all__ = ["DatasetStore", "dataset_to_dict", "dataset_from_dict", "parse_samples"]
