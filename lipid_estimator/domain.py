from __future__ import annotations

import math
import numbers
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from .constants import DATASET_VERSION, LABEL_MAX, LABEL_MIN, SCHEMA_VERSION
from .errors import ValidationError


def utc_now() -> str:
    """ISO-8601 UTC timestamp used for every createdAt/updatedAt field."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds")


def new_sample_id() -> str:
    return uuid.uuid4().hex


def check_label(label) -> float:
    """Return the label as float or raise ValidationError with the reason."""
    if isinstance(label, bool) or not isinstance(label, numbers.Real) or math.isnan(label):
        raise ValidationError("label is not numeric")
    if not (LABEL_MIN <= label <= LABEL_MAX):
        raise ValidationError("label out of range")
    return float(label)


@dataclass(frozen=True)
class Sample:
    """One labeled image: its feature vector and the user-given percentage."""

    features: tuple[float, ...]
    label: float
    filename: str = ""
    id: str = field(default_factory=new_sample_id)
    created_at: str = field(default_factory=utc_now)

    @classmethod
    def create(cls, features, label: float, filename: str = "") -> Sample:
        return cls(features=tuple(float(v) for v in features), label=label, filename=filename)

    @property
    def dimension(self) -> int:
        return len(self.features)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "filename": self.filename,
            "label": self.label,
            "features": list(self.features),
            "createdAt": self.created_at,
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> Sample:
        return cls(
            features=tuple(float(v) for v in raw.get("features", [])),
            label=raw.get("label"),
            filename=str(raw.get("filename") or raw.get("name") or ""),
            id=str(raw.get("id") or new_sample_id()),
            created_at=str(raw.get("createdAt") or utc_now()),
        )


@dataclass
class Dataset:
    version: int = DATASET_VERSION
    created_at: str = field(default_factory=utc_now)
    updated_at: str = field(default_factory=utc_now)
    samples: list[Sample] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.samples)


@dataclass
class ModelState:
    """Learned parameters of a regressor (or a k-NN marker with no weights)."""

    kind: str
    feature_dimension: int
    weights: list[float] = field(default_factory=list)
    bias: float = 0.0
    learning_rate: float = 0.01
    trained_sample_count: int = 0
    last_updated: str = field(default_factory=utc_now)
    schema_version: int = SCHEMA_VERSION
    feature_hash: str | None = None


@dataclass
class BatchReport:
    """Counts of processed vs skipped items, with a reason per skipped item."""

    processed: int = 0
    skipped: int = 0
    reasons: list[tuple[str, str]] = field(default_factory=list)
    cancelled: bool = False

    def record_ok(self, n: int = 1):
        self.processed += n

    def record_skip(self, item: str, reason: str):
        self.skipped += 1
        self.reasons.append((item, reason))

    def extend(self, other: BatchReport):
        self.processed += other.processed
        self.skipped += other.skipped
        self.reasons.extend(other.reasons)
        self.cancelled = self.cancelled or other.cancelled

    def reason_counts(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for _, reason in self.reasons:
            counts[reason] = counts.get(reason, 0) + 1
        return counts

    def to_dict(self) -> dict[str, Any]:
        return {
            "processed": self.processed,
            "skipped": self.skipped,
            "reasons": [{"item": item, "reason": reason} for item, reason in self.reasons],
            "cancelled": self.cancelled,
        }


@dataclass(frozen=True)
class Outcome:
    """Success/failure of an import, export or persistence call."""

    ok: bool
    reason: str | None = None
    value: Any = None

    @classmethod
    def success(cls, value: Any = None) -> Outcome:
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, reason: str) -> Outcome:
        return cls(ok=False, reason=reason)
