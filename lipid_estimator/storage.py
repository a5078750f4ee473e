"""Persistence module: key-value backends and the combined session document.

Single responsibility: turn (Dataset, ModelState) into one JSON document and
back. Validation of individual samples and states is handled by the dataset
store and the codec; this module only decides what to keep when a stored
document is damaged.
"""

from __future__ import annotations

import json
import logging
import os
import re
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from .codec import export_state, import_state
from .constants import DATASET_VERSION, STATE_KEY
from .dataset import dataset_from_dict, dataset_to_dict
from .domain import Dataset, ModelState, Outcome, utc_now
from .errors import CorruptStateError, ValidationError


@runtime_checkable
class KeyValueStore(Protocol):
    """Durable storage backend."""

    def get(self, key: str) -> bytes | None:
        ...

    def set(self, key: str, value: bytes) -> None:
        ...


class MemoryStore:
    def __init__(self):
        self._data: dict[str, bytes] = {}

    def get(self, key: str) -> bytes | None:
        return self._data.get(key)

    def set(self, key: str, value: bytes) -> None:
        self._data[key] = bytes(value)

    def delete(self, key: str) -> None:
        self._data.pop(key, None)


_UNSAFE_KEY = re.compile(r"[^A-Za-z0-9._-]")


class DirectoryStore:
    """One file per key under a root directory (created on first write)."""

    def __init__(self, root: str):
        self.root = os.path.abspath(os.path.expanduser(root))

    def _path(self, key: str) -> str:
        return os.path.join(self.root, _UNSAFE_KEY.sub("_", key) + ".json")

    def get(self, key: str) -> bytes | None:
        path = self._path(key)
        try:
            with open(path, "rb") as f:
                return f.read()
        except FileNotFoundError:
            return None

    def set(self, key: str, value: bytes) -> None:
        if not os.path.isdir(self.root):
            os.makedirs(self.root, exist_ok=True)
            logging.debug(f"[storage] Created store directory: {self.root}")
        path = self._path(key)
        # write-then-rename so a crash never leaves a half-written document
        tmp = path + ".tmp"
        try:
            with open(tmp, "wb") as f:
                f.write(value)
            os.replace(tmp, path)
        except OSError:
            if os.path.exists(tmp):
                os.remove(tmp)
            raise
        logging.debug(f"[storage] Wrote {len(value)} bytes to {path}")

    def delete(self, key: str) -> None:
        try:
            os.remove(self._path(key))
        except FileNotFoundError:
            pass


@dataclass
class LoadedState:
    dataset: Dataset
    model_state: ModelState | None
    warning: str | None = None


def build_document(dataset: Dataset, state: ModelState | None) -> dict:
    doc = dataset_to_dict(dataset)
    doc["modelState"] = export_state(state) if state is not None else None
    return doc


def dumps_document(dataset: Dataset, state: ModelState | None) -> str:
    return json.dumps(build_document(dataset, state), indent=2, ensure_ascii=False)


def parse_document(text: str | bytes) -> dict:
    """Parse a persisted document; raises CorruptStateError when unusable."""
    try:
        doc = json.loads(text)
    except (UnicodeDecodeError, ValueError) as e:
        raise CorruptStateError(f"Document is not valid JSON: {e}") from e
    # legacy layout: a bare list of samples
    if isinstance(doc, list):
        doc = {"version": DATASET_VERSION, "samples": doc, "modelState": None}
    if not isinstance(doc, dict) or not isinstance(doc.get("samples", []), list):
        raise CorruptStateError("Document must be an object with a 'samples' list")
    return doc


def read_document(doc: dict, expected_dimension: int, expected_feature_hash: str | None = None) -> LoadedState:
    """Turn a parsed document into live objects, dropping an invalid modelState with a warning."""
    try:
        dataset, report = dataset_from_dict(doc)
    except (ValidationError, TypeError, ValueError) as e:
        raise CorruptStateError(f"Invalid dataset section: {e}") from e
    warnings = []
    if report.skipped:
        warnings.append(f"{report.skipped} malformed samples dropped")

    state = None
    raw_state = doc.get("modelState")
    if raw_state is not None:
        try:
            state = import_state(raw_state, expected_dimension, expected_feature_hash)
        except ValidationError as e:
            warnings.append(f"Stored model state ignored: {e}")
    return LoadedState(dataset=dataset, model_state=state, warning="; ".join(warnings) or None)


class StateRepository:
    """Load/save the session document under one key. Last writer wins."""

    def __init__(self, store: KeyValueStore, key: str = STATE_KEY):
        self.store = store
        self.key = key

    def load(self, expected_dimension: int, expected_feature_hash: str | None = None) -> LoadedState:
        raw = self.store.get(self.key)
        if raw is None:
            logging.debug("[storage] No document under %s; starting new dataset", self.key)
            return LoadedState(dataset=Dataset(), model_state=None)
        try:
            loaded = read_document(parse_document(raw), expected_dimension, expected_feature_hash)
        except CorruptStateError as e:
            logging.warning("[storage] Corrupt document under %s, starting fresh: %s", self.key, e)
            return LoadedState(dataset=Dataset(), model_state=None, warning=f"Corrupt stored state: {e}")
        if loaded.warning:
            logging.warning("[storage] %s", loaded.warning)
        logging.info(
            "[storage] Loaded %d samples, model=%s",
            len(loaded.dataset),
            loaded.model_state.kind if loaded.model_state else None,
        )
        return loaded

    def save(self, dataset: Dataset, state: ModelState | None) -> Outcome:
        try:
            text = dumps_document(dataset, state)
            self.store.set(self.key, text.encode("utf-8"))
        except (OSError, TypeError, ValueError) as e:
            logging.error("[storage] Failed saving document %s: %s", self.key, e)
            return Outcome.failure(f"Could not save state: {e}")
        logging.debug("[storage] Saved %d samples at %s", len(dataset), utc_now())
        return Outcome.success()


__all__ = [
    "KeyValueStore",
    "MemoryStore",
    "DirectoryStore",
    "StateRepository",
    "LoadedState",
    "build_document",
    "dumps_document",
    "parse_document",
    "read_document",
]
