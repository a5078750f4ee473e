"""Interface for estimators so the session can train/predict without caring which one it holds.

Three estimators share the feature contract:
  linear / logistic -> OnlineRegressor over a ModelState
  knn               -> WeightedKNNEstimator over the dataset samples
  network engine    -> any NetworkEngine (scikit-learn MLP shipped), pluggable
"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable, Sequence
from typing import Any, Protocol, runtime_checkable

import joblib
import numpy as np
from sklearn.neural_network import MLPRegressor

from .constants import DEFAULT_K, LABEL_MAX, LABEL_MIN, NETWORK_MODEL_NAME
from .domain import BatchReport, ModelState, Sample, check_label
from .errors import TrainingCancelled, ValidationError
from .knn import WeightedKNNEstimator
from .regressor import OnlineRegressor, TrainingResult
from .tasks import CancelToken


@runtime_checkable
class Estimator(Protocol):
    """Common capability set: optional training plus prediction in percent."""

    supports_training: bool

    def train(self, samples: Sequence[Sample], **kwargs) -> TrainingResult:
        ...

    def predict(self, x) -> float | None:
        ...


class RegressorEstimator:
    supports_training = True

    def __init__(self, state: ModelState):
        self.regressor = OnlineRegressor(state)

    def train(self, samples: Sequence[Sample], **kwargs) -> TrainingResult:
        return self.regressor.train_batch(samples, **kwargs)

    def predict(self, x) -> float | None:
        return self.regressor.predict(x)


class KNNEstimator:
    supports_training = False

    def __init__(self, samples: Sequence[Sample], k: int = DEFAULT_K):
        self.knn = WeightedKNNEstimator(samples, k=k)

    def train(self, samples: Sequence[Sample], **kwargs) -> TrainingResult:
        # the dataset is the model
        report = BatchReport()
        report.record_ok(len(samples))
        return TrainingResult(report=report)

    def predict(self, x) -> float | None:
        return self.knn.predict(x)


def build_estimator(state: ModelState, samples: Sequence[Sample], k: int = DEFAULT_K) -> Estimator:
    """Pick the estimator implementation from ModelState.kind."""
    if state.kind == "knn":
        return KNNEstimator(samples, k=k)
    return RegressorEstimator(state)


# ------------------------------ Network engine ---------------------------- #


@runtime_checkable
class NetworkEngine(Protocol):
    """Opaque network trainer working on already-extracted feature vectors."""

    def build(self) -> Any:
        ...

    def fit(self, handle: Any, X, y, epochs: int, batch_size: int, on_epoch_end: Callable | None = None) -> dict:
        ...

    def predict(self, handle: Any, x) -> float:
        ...

    def save(self, handle: Any, uri: str) -> None:
        ...

    def load(self, uri: str) -> Any:
        ...


class SklearnNetworkEngine:
    """MLP regressor on fractions (label/100), trained epoch by epoch with partial_fit."""

    def __init__(self, hidden_layer_sizes=(64,), learning_rate: float = 0.0005, random_state: int = 42):
        self.hidden_layer_sizes = tuple(hidden_layer_sizes)
        self.learning_rate = learning_rate
        self.random_state = random_state

    def build(self) -> MLPRegressor:
        return MLPRegressor(
            hidden_layer_sizes=self.hidden_layer_sizes,
            activation="relu",
            solver="adam",
            learning_rate_init=self.learning_rate,
            random_state=self.random_state,
        )

    def fit(self, handle: MLPRegressor, X, y, epochs: int, batch_size: int, on_epoch_end: Callable | None = None) -> dict:
        X_arr = np.asarray(X, dtype=np.float64)
        y_arr = np.asarray(y, dtype=np.float64) / 100.0
        batch_size = max(1, int(batch_size))
        history: dict[str, list[float]] = {"loss": [], "mae": []}
        for epoch in range(epochs):
            for start in range(0, len(X_arr), batch_size):
                handle.partial_fit(X_arr[start : start + batch_size], y_arr[start : start + batch_size])
            pred = handle.predict(X_arr)
            logs = {
                "loss": float(np.mean((pred - y_arr) ** 2)),
                "mae": float(np.mean(np.abs(pred - y_arr))),
            }
            history["loss"].append(logs["loss"])
            history["mae"].append(logs["mae"])
            logging.debug("[network] Epoch %d/%d loss=%.4f mae=%.4f", epoch + 1, epochs, logs["loss"], logs["mae"])
            if on_epoch_end is not None:
                on_epoch_end(epoch, logs)
        return history

    def predict(self, handle: MLPRegressor, x) -> float:
        vec = np.asarray(x, dtype=np.float64).reshape(1, -1)
        return float(handle.predict(vec)[0]) * 100.0

    def save(self, handle: MLPRegressor, uri: str) -> None:
        parent = os.path.dirname(uri)
        if parent:
            os.makedirs(parent, exist_ok=True)
        joblib.dump({"model": handle, "name": NETWORK_MODEL_NAME, "n_features": handle.n_features_in_}, uri)
        logging.info("[network] Saved model to %s", uri)

    def load(self, uri: str) -> MLPRegressor:
        data = joblib.load(uri)
        logging.info("[network] Loaded model from %s", uri)
        return data["model"]


class NetworkEstimator:
    """Adapts a NetworkEngine to the train/predict contract of the other estimators."""

    supports_training = True

    def __init__(self, engine: NetworkEngine | None = None, epochs: int = 20, batch_size: int = 8, handle: Any = None):
        self.engine = engine or SklearnNetworkEngine()
        self.epochs = epochs
        self.batch_size = batch_size
        self.handle = handle
        self.dimension: int | None = None

    def train(
        self,
        samples: Sequence[Sample],
        on_epoch_end: Callable | None = None,
        cancel: CancelToken | None = None,
        **kwargs,
    ) -> TrainingResult:
        report = BatchReport()
        X, y = [], []
        for idx, sample in enumerate(samples):
            try:
                label = check_label(sample.label)
            except ValidationError as e:
                report.record_skip(sample.filename or f"#{idx}", str(e))
                continue
            if self.dimension is not None and sample.dimension != self.dimension:
                report.record_skip(sample.filename or f"#{idx}", "feature dimension mismatch")
                continue
            self.dimension = sample.dimension
            X.append(sample.features)
            y.append(label)
        result = TrainingResult(report=report)
        if not X:
            return result
        if self.handle is None:
            self.handle = self.engine.build()
        epochs = int(kwargs.get("epochs") or self.epochs)

        def _epoch_end(epoch, logs):
            result.history["loss"].append(float(logs["loss"]))
            result.history["mae"].append(float(logs["mae"]))
            if on_epoch_end is not None:
                on_epoch_end(epoch, logs)
            if cancel is not None and cancel.cancelled:
                raise TrainingCancelled(f"cancelled after epoch {epoch + 1}")

        try:
            self.engine.fit(self.handle, X, y, epochs, self.batch_size, _epoch_end)
        except TrainingCancelled as e:
            logging.info("[network] Training %s", e)
            report.cancelled = True
        report.record_ok(len(X))
        result.epochs_run = len(result.history["loss"])
        result.updates = result.epochs_run * len(X)
        return result

    def predict(self, x) -> float | None:
        if self.handle is None:
            return None
        value = self.engine.predict(self.handle, x)
        return min(LABEL_MAX, max(LABEL_MIN, value))

    def save(self, uri: str) -> None:
        if self.handle is None:
            raise ValidationError("network has not been trained")
        self.engine.save(self.handle, uri)

    def load(self, uri: str) -> NetworkEstimator:
        self.handle = self.engine.load(uri)
        return self


__all__ = [
    "Estimator",
    "RegressorEstimator",
    "KNNEstimator",
    "build_estimator",
    "NetworkEngine",
    "SklearnNetworkEngine",
    "NetworkEstimator",
]
