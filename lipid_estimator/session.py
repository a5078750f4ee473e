"""Session context: the single owner of a Dataset and a ModelState.

Every user-facing operation (labeling, training, prediction, import/export)
goes through a Session instance instead of module-level globals, so several
independent sessions can live side by side (tests, batch jobs, a GUI).
Operations that can fail on user input return an Outcome or a BatchReport
rather than raising.
"""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Iterable
from typing import Any

import numpy as np

from .codec import dumps_state, export_state, import_state
from .constants import DEFAULT_EPOCHS, DEFAULT_K, MIN_TRAINING_SAMPLES, STATE_KEY
from .dataset import DatasetStore, dataset_from_dict
from .domain import BatchReport, Dataset, ModelState, Outcome, Sample, utc_now
from .errors import CorruptStateError, ValidationError
from .estimators import NetworkEngine, NetworkEstimator, build_estimator
from .features import DEFAULT_CONFIG, ExtractorConfig, extract
from .imaging import decode_image, extract_file
from .knn import WeightedKNNEstimator
from .regressor import OnlineRegressor, TrainingResult, initialize_state
from .settings import load_settings
from .storage import DirectoryStore, KeyValueStore, MemoryStore, StateRepository, dumps_document, parse_document
from .tasks import CancelToken, ProgressCallback, run_list


class Session:
    def __init__(
        self,
        store: KeyValueStore | None = None,
        config: ExtractorConfig = DEFAULT_CONFIG,
        key: str = STATE_KEY,
        autoload: bool = True,
    ):
        self.config = config
        self.dimension = config.dimension
        self.feature_hash = config.feature_hash()
        self.repository = StateRepository(store if store is not None else MemoryStore(), key)
        self.model_state: ModelState | None = None
        self.dataset_store = DatasetStore(self.dimension, on_change=self._on_dataset_change)
        self.last_warning: str | None = None
        if autoload:
            self.load()

    @classmethod
    def from_settings(cls, settings: dict | None = None) -> Session:
        settings = settings or load_settings()
        store = DirectoryStore(settings["storage_dir"])
        return cls(store=store, config=ExtractorConfig.from_settings(settings))

    # ---------------- Persistence -----------------
    @property
    def dataset(self) -> Dataset:
        return self.dataset_store.dataset

    def load(self) -> str | None:
        """Load the stored document; damaged parts fall back to fresh defaults with a warning."""
        loaded = self.repository.load(self.dimension, self.feature_hash)
        warnings = [loaded.warning] if loaded.warning else []

        kept = []
        for sample in loaded.dataset.samples:
            try:
                self.dataset_store.validate(sample)
                kept.append(sample)
            except ValidationError as e:
                logging.debug("[session] Dropping stored sample %s: %s", sample.filename or sample.id, e)
        if len(kept) != len(loaded.dataset.samples):
            warnings.append(f"{len(loaded.dataset.samples) - len(kept)} stored samples failed validation")
        loaded.dataset.samples = kept

        self.dataset_store.dataset = loaded.dataset
        self.model_state = loaded.model_state
        self.last_warning = "; ".join(warnings) or None
        if self.last_warning:
            logging.warning("[session] %s", self.last_warning)
        return self.last_warning

    def persist(self) -> Outcome:
        return self.repository.save(self.dataset, self.model_state)

    def _on_dataset_change(self, dataset: Dataset):
        self.persist()

    # ---------------- Features -----------------
    def extract(self, pixels, width: int, height: int) -> np.ndarray:
        return extract(pixels, width, height, self.config)

    def extract_bytes(self, data: bytes) -> np.ndarray:
        buf = decode_image(data)
        return extract(buf.pixels, buf.width, buf.height, self.config)

    # ---------------- Labeling -----------------
    def add_sample(self, features, label, filename: str = "", learn: bool = False) -> Outcome:
        """Append one labeled vector; with learn=True also apply one online update."""
        try:
            sample = Sample.create(features, label, filename)
            self.dataset_store.append(sample)
        except (ValidationError, TypeError, ValueError) as e:
            logging.warning("[session] Sample %s rejected: %s", filename or "<unnamed>", e)
            return Outcome.failure(str(e))
        if learn:
            self._learn_one(sample)
        return Outcome.success(sample)

    def add_samples(self, samples: Iterable[Sample]) -> BatchReport:
        return self.dataset_store.append_batch(samples)

    def add_images(
        self,
        items: Iterable[tuple[str, Any]],
        *,
        progress: ProgressCallback | None = None,
        cancel: CancelToken | None = None,
    ) -> BatchReport:
        """Extract and label (path, percent) pairs; bad images or labels are skipped individually."""
        pending: list[Sample] = []

        def _work(item):
            path, label = item
            pending.append(Sample.create(extract_file(path, self.config), label, os.path.basename(path)))

        report = run_list(
            "label",
            items,
            _work,
            describe=lambda item: os.path.basename(item[0]),
            progress=progress,
            cancel=cancel,
        )
        append_report = self.dataset_store.append_batch(pending)
        # extraction successes only count once they pass dataset validation
        report.processed = append_report.processed
        report.skipped += append_report.skipped
        report.reasons.extend(append_report.reasons)
        return report

    def clear_dataset(self):
        """Remove every sample. The model state is deliberately left alone."""
        self.dataset_store.clear()

    def stats(self) -> dict[str, Any]:
        stats = self.dataset_store.stats()
        stats["feature_strategy"] = self.config.strategy
        if self.model_state is not None:
            stats["model"] = {
                "kind": self.model_state.kind,
                "trained_sample_count": self.model_state.trained_sample_count,
                "last_updated": self.model_state.last_updated,
            }
        else:
            stats["model"] = None
        return stats

    # ---------------- Training -----------------
    def _ensure_state(self, kind: str, learning_rate: float | None, seed: int | None) -> ModelState:
        state = self.model_state
        if state is None or state.kind != kind:
            if state is not None:
                logging.info("[session] Switching model kind %s -> %s", state.kind, kind)
            kwargs = {"learning_rate": learning_rate} if learning_rate is not None else {}
            state = initialize_state(kind, self.dimension, seed=seed, feature_hash=self.feature_hash, **kwargs)
            self.model_state = state
        return state

    def _learn_one(self, sample: Sample):
        state = self._ensure_state(self.model_state.kind if self.model_state else "linear", None, None)
        if state.kind == "knn":
            state.trained_sample_count = len(self.dataset_store)
            state.last_updated = utc_now()
        else:
            OnlineRegressor(state).train_on_sample(sample.features, sample.label)
        self.persist()

    def train(
        self,
        kind: str | None = None,
        epochs: int = DEFAULT_EPOCHS,
        learning_rate: float | None = None,
        *,
        seed: int | None = None,
        shuffle_seed: int | None = None,
        on_epoch_end=None,
        progress: ProgressCallback | None = None,
        cancel: CancelToken | None = None,
        min_samples: int = MIN_TRAINING_SAMPLES,
    ) -> TrainingResult | None:
        """Batch-train the session model on the whole dataset.

        Returns None when the dataset is too small to start a run.
        """
        samples = self.dataset_store.samples
        if len(samples) < min_samples:
            logging.info("[session] Insufficient labeled samples (need %d). Got %d", min_samples, len(samples))
            return None
        kind = kind or (self.model_state.kind if self.model_state else "linear")
        state = self._ensure_state(kind, learning_rate, seed)
        estimator = build_estimator(state, samples)
        result = estimator.train(
            samples,
            epochs=epochs,
            learning_rate=learning_rate,
            shuffle_seed=shuffle_seed,
            on_epoch_end=on_epoch_end,
            progress=progress,
            cancel=cancel,
        )
        if not estimator.supports_training:
            state.trained_sample_count = len(samples)
            state.last_updated = utc_now()
        self.persist()
        return result

    def train_network(
        self,
        engine: NetworkEngine | None = None,
        epochs: int = DEFAULT_EPOCHS,
        batch_size: int = 8,
        on_epoch_end=None,
        cancel: CancelToken | None = None,
        save_to: str | None = None,
    ) -> tuple[NetworkEstimator, TrainingResult]:
        """Fit a network-engine estimator on the dataset (it is not part of ModelState)."""
        estimator = NetworkEstimator(engine, epochs=epochs, batch_size=batch_size)
        result = estimator.train(self.dataset_store.samples, on_epoch_end=on_epoch_end, cancel=cancel)
        if save_to and estimator.handle is not None:
            estimator.save(save_to)
        return estimator, result

    # ---------------- Prediction -----------------
    def predict(self, features, k: int = DEFAULT_K) -> float | None:
        """Percent estimate from the session model; k-NN over the dataset when no model exists."""
        if self.model_state is None or self.model_state.kind == "knn":
            return self.predict_knn(features, k)
        return OnlineRegressor(self.model_state).predict(features)

    def predict_knn(self, features, k: int = DEFAULT_K) -> float | None:
        return WeightedKNNEstimator(self.dataset_store.samples, k=k).predict(features)

    def analyze_images(
        self,
        paths: list[str],
        *,
        k: int = DEFAULT_K,
        progress: ProgressCallback | None = None,
        cancel: CancelToken | None = None,
    ) -> tuple[dict[str, float | None], BatchReport]:
        results: dict[str, float | None] = {}

        def _work(path):
            results[path] = self.predict(extract_file(path, self.config), k=k)

        report = run_list("analyze", paths, _work, describe=os.path.basename, progress=progress, cancel=cancel)
        return results, report

    # ---------------- Model import/export -----------------
    def export_model(self) -> Outcome:
        if self.model_state is None:
            return Outcome.failure("No model state to export")
        return Outcome.success(export_state(self.model_state))

    def export_model_text(self) -> Outcome:
        if self.model_state is None:
            return Outcome.failure("No model state to export")
        return Outcome.success(dumps_state(self.model_state))

    def import_model(self, document) -> Outcome:
        """Replace the model state from a dict or JSON text; the live state survives any rejection."""
        try:
            if isinstance(document, (str, bytes)):
                document = json.loads(document)
            state = import_state(document, self.dimension, self.feature_hash)
        except ValidationError as e:
            return Outcome.failure(str(e))
        except ValueError as e:
            return Outcome.failure(f"Model state is not valid JSON: {e}")
        # only adopt the state once it is durable
        saved = self.repository.save(self.dataset, state)
        if not saved.ok:
            return saved
        self.model_state = state
        return Outcome.success(state)

    def reset_model(self):
        self.model_state = None
        self.persist()

    # ---------------- Document import/export -----------------
    def export_document(self) -> str:
        return dumps_document(self.dataset, self.model_state)

    def import_document(self, text: str | bytes) -> Outcome:
        """Merge samples from an exported document and adopt its model state, if any.

        The whole document is checked before anything changes: an unparsable
        document or an invalid model state leaves the session untouched.
        Individual bad samples are skipped and listed in the returned report.
        """
        try:
            doc = parse_document(text)
            incoming, parse_report = dataset_from_dict(doc)
            state = None
            if doc.get("modelState") is not None:
                state = import_state(doc["modelState"], self.dimension, self.feature_hash)
        except (CorruptStateError, ValidationError, TypeError, ValueError) as e:
            logging.warning("[session] Import rejected: %s", e)
            return Outcome.failure(str(e))

        # parsed entries only count once they are merged
        report = BatchReport(skipped=parse_report.skipped, reasons=list(parse_report.reasons))
        report.extend(self.dataset_store.merge(incoming))
        if state is not None:
            self.model_state = state
            self.persist()
        logging.info("[session] Imported document: %d merged, %d skipped", report.processed, report.skipped)
        return Outcome.success(report)


__all__ = ["Session"]
