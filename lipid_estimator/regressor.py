"""Online-learning regressor: a single linear or logistic unit trained by per-sample SGD.

Predictions live in percent units. The gradient is always taken on the
unclamped score, so samples at 0% or 100% keep producing updates.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field

import numpy as np

from .constants import DEFAULT_LEARNING_RATE, INIT_WEIGHT_SCALE, LABEL_MAX, LABEL_MIN
from .domain import BatchReport, ModelState, Sample, check_label, utc_now
from .errors import ValidationError
from .tasks import CancelToken, ProgressCallback, ProgressReporter

TRAINABLE_KINDS = ("linear", "logistic")

EpochCallback = Callable[[int, dict], None]


def initialize_state(
    kind: str,
    feature_dimension: int,
    learning_rate: float = DEFAULT_LEARNING_RATE,
    seed: int | None = None,
    scale: float = INIT_WEIGHT_SCALE,
    feature_hash: str | None = None,
) -> ModelState:
    """Create a fresh, untrained ModelState.

    Weights are zero unless a seed is given, in which case they are drawn
    uniformly from [-scale, scale] with numpy's seeded generator. The same seed
    always yields the same weights.
    """
    if kind not in TRAINABLE_KINDS + ("knn",):
        raise ValueError(f"Unknown model kind: {kind!r}")
    if kind == "knn":
        weights: list[float] = []
    elif seed is None:
        weights = [0.0] * feature_dimension
    else:
        rng = np.random.default_rng(seed)
        weights = rng.uniform(-scale, scale, size=feature_dimension).tolist()
    logging.info("[regressor] New %s state dim=%d lr=%g seed=%s", kind, feature_dimension, learning_rate, seed)
    return ModelState(
        kind=kind,
        feature_dimension=feature_dimension,
        weights=weights,
        bias=0.0,
        learning_rate=float(learning_rate),
        trained_sample_count=0,
        feature_hash=feature_hash,
    )


def sigmoid(z: float) -> float:
    z = max(-500.0, min(500.0, z))
    return 1.0 / (1.0 + math.exp(-z))


def _unpack(sample) -> tuple:
    if isinstance(sample, Sample):
        return sample.features, sample.label, sample.filename or sample.id
    features, label = sample[0], sample[1]
    name = sample[2] if len(sample) > 2 else ""
    return features, label, name


@dataclass
class TrainingResult:
    """Encapsulates batch training output."""

    report: BatchReport
    epochs_run: int = 0
    updates: int = 0
    history: dict[str, list[float]] = field(default_factory=lambda: {"loss": [], "mae": []})

    @property
    def final_loss(self) -> float | None:
        return self.history["loss"][-1] if self.history["loss"] else None


class OnlineRegressor:
    """Linear or logistic unit operating on a ModelState it does not own."""

    def __init__(self, state: ModelState):
        if state.kind not in TRAINABLE_KINDS:
            raise ValueError(f"OnlineRegressor cannot operate on kind={state.kind!r}")
        self.state = state

    @property
    def dimension(self) -> int:
        return self.state.feature_dimension

    def _vector(self, x) -> np.ndarray:
        try:
            arr = np.asarray(x, dtype=np.float64).reshape(-1)
        except (TypeError, ValueError) as e:
            raise ValidationError("features are not numeric") from e
        if arr.size != self.dimension:
            raise ValidationError(f"feature dimension mismatch: got {arr.size}, expected {self.dimension}")
        if not np.isfinite(arr).all():
            raise ValidationError("features contain non-finite values")
        return arr

    def _weights(self) -> np.ndarray:
        return np.asarray(self.state.weights, dtype=np.float64)

    def score(self, x) -> float:
        """Unclamped linear score b + w.x."""
        return float(self.state.bias + np.dot(self._weights(), self._vector(x)))

    def predict(self, x) -> float:
        z = self.score(x)
        if self.state.kind == "logistic":
            return sigmoid(z) * 100.0
        if math.isnan(z):
            logging.warning("[regressor] Non-finite score; weights have diverged (lr=%g)", self.state.learning_rate)
            return 0.0
        return min(LABEL_MAX, max(LABEL_MIN, z))

    def train_on_sample(self, x, target_percent) -> float:
        """Apply one SGD step toward target_percent and return the error term.

        Raises ValidationError (state untouched) for a bad label or feature vector.
        """
        target = check_label(target_percent)
        vec = self._vector(x)
        w = self._weights()
        z = float(self.state.bias + np.dot(w, vec))
        if self.state.kind == "logistic":
            y = sigmoid(z)
            error = y - target / 100.0
            error_term = error * y * (1.0 - y)
        else:
            error_term = z - target

        lr = self.state.learning_rate
        new_w = w - lr * error_term * vec
        # single assignment so readers see either the old or the new vector
        self.state.weights = new_w.tolist()
        self.state.bias = self.state.bias - lr * error_term
        self.state.trained_sample_count += 1
        self.state.last_updated = utc_now()
        return error_term

    def evaluate(self, samples: Iterable) -> dict[str, float]:
        """Mean squared and absolute error (percent units) over valid samples."""
        errors = []
        for sample in samples:
            features, label, _ = _unpack(sample)
            errors.append(self.predict(features) - float(label))
        if not errors:
            return {"loss": float("nan"), "mae": float("nan")}
        arr = np.asarray(errors)
        return {"loss": float(np.mean(arr**2)), "mae": float(np.mean(np.abs(arr)))}

    def train_batch(
        self,
        samples: Iterable,
        epochs: int = 1,
        learning_rate: float | None = None,
        *,
        shuffle_seed: int | None = None,
        on_epoch_end: EpochCallback | None = None,
        progress: ProgressCallback | None = None,
        cancel: CancelToken | None = None,
    ) -> TrainingResult:
        """Per-sample SGD over `epochs` passes in insertion order.

        Invalid samples are skipped once, with a reason, and never abort the batch.
        Shuffling happens only when shuffle_seed is given, so runs are replayable.
        """
        if learning_rate is not None:
            self.state.learning_rate = float(learning_rate)

        report = BatchReport()
        valid = []
        for sample in samples:
            features, label, name = _unpack(sample)
            try:
                check_label(label)
                self._vector(features)
            except ValidationError as e:
                report.record_skip(name or f"#{len(valid) + report.skipped}", str(e))
                continue
            valid.append((features, label, name))

        if report.skipped:
            logging.warning(
                "[regressor] Skipped %d invalid samples: %s", report.skipped, report.reason_counts()
            )
        result = TrainingResult(report=report)
        if not valid:
            logging.info("[regressor] No valid samples to train on")
            return result

        logging.info(
            "[regressor] Training %s unit: samples=%d epochs=%d lr=%g shuffle_seed=%s",
            self.state.kind, len(valid), epochs, self.state.learning_rate, shuffle_seed,
        )
        rng = np.random.default_rng(shuffle_seed) if shuffle_seed is not None else None
        reporter = ProgressReporter("train", progress)
        reporter.set_total(len(valid) * max(0, epochs))

        for epoch in range(epochs):
            order = rng.permutation(len(valid)) if rng is not None else range(len(valid))
            for idx in order:
                if cancel is not None and cancel.cancelled:
                    report.cancelled = True
                    break
                features, label, _ = valid[idx]
                self.train_on_sample(features, label)
                result.updates += 1
                reporter.advance(1)
            if report.cancelled:
                logging.info("[regressor] Training cancelled during epoch %d after %d updates", epoch + 1, result.updates)
                break
            result.epochs_run = epoch + 1
            logs = self.evaluate(valid)
            result.history["loss"].append(logs["loss"])
            result.history["mae"].append(logs["mae"])
            logging.debug("[regressor] Epoch %d/%d loss=%.4f mae=%.4f", epoch + 1, epochs, logs["loss"], logs["mae"])
            if on_epoch_end is not None:
                on_epoch_end(epoch, logs)

        report.record_ok(len(valid) if result.epochs_run else min(result.updates, len(valid)))
        logging.info(
            "[regressor] Training finished: epochs=%d updates=%d applied=%d skipped=%d final_loss=%s",
            result.epochs_run, result.updates, report.processed, report.skipped, result.final_loss,
        )
        return result


__all__ = ["OnlineRegressor", "TrainingResult", "initialize_state", "check_label", "sigmoid", "TRAINABLE_KINDS"]
