"""Weighted k-NN estimator built on top of the labeled dataset."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

import numpy as np

from .constants import DEFAULT_K, KNN_EPSILON
from .domain import Sample
from .errors import ValidationError


class WeightedKNNEstimator:
    """Inverse-distance weighted k-NN over a growing sample list.

    Holds no trained parameters: its model is the sample list itself, which it
    reads but never mutates.
    """

    def __init__(self, samples: Sequence[Sample], k: int = DEFAULT_K, eps: float = KNN_EPSILON):
        self.samples = samples
        self.k = k
        self.eps = eps

    def _distances(self, x) -> np.ndarray:
        feat = np.asarray(x, dtype=np.float64).reshape(-1)
        X = np.asarray([s.features for s in self.samples], dtype=np.float64)
        if X.shape[1] != feat.size:
            raise ValidationError(f"feature dimension mismatch: got {feat.size}, expected {X.shape[1]}")
        return np.linalg.norm(X - feat, axis=1)

    def neighbors(self, x, k: int | None = None) -> list[dict[str, Any]]:
        """The chosen neighbors, nearest first, with their inverse-distance weights."""
        if not self.samples:
            return []
        k = self.k if k is None else k
        dists = self._distances(x)
        k = max(1, min(k, len(dists)))
        # stable sort: equal distances keep insertion order
        order = np.argsort(dists, kind="stable")[:k]
        return [
            {
                "index": int(i),
                "filename": self.samples[i].filename,
                "label": float(self.samples[i].label),
                "distance": float(dists[i]),
                "weight": 1.0 / (float(dists[i]) + self.eps),
            }
            for i in order
        ]

    def predict(self, x, k: int | None = None) -> float | None:
        """Weighted mean label of the k nearest samples, or None for an empty dataset."""
        if not self.samples:
            return None
        k = self.k if k is None else k
        dists = self._distances(x)

        exact = np.flatnonzero(dists == 0.0)
        if exact.size:
            return float(self.samples[int(exact[0])].label)

        k = max(1, min(k, len(dists)))
        order = np.argsort(dists, kind="stable")[:k]
        weights = 1.0 / (dists[order] + self.eps)
        labels = np.asarray([self.samples[i].label for i in order], dtype=np.float64)
        total = float(weights.sum())
        if not np.isfinite(total) or total <= 0.0:
            return float(labels[0])
        return float(np.dot(weights, labels) / total)


__all__ = ["WeightedKNNEstimator"]
