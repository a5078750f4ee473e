"""Model state codec: export, validate and import ModelState documents.

Rejects mismatches instead of coercing them: a state trained against one
feature layout gives plausible-looking but wrong answers against another.
"""

from __future__ import annotations

import json
import logging
import math
import numbers
from typing import Any

from .constants import MODEL_KINDS, SUPPORTED_SCHEMA_VERSIONS
from .domain import ModelState, utc_now
from .errors import ValidationError


def export_state(state: ModelState) -> dict[str, Any]:
    """Serialize a ModelState verbatim (camelCase keys, JSON-ready)."""
    doc = {
        "kind": state.kind,
        "schemaVersion": state.schema_version,
        "featureDimension": state.feature_dimension,
        "weights": [float(w) for w in state.weights],
        "bias": float(state.bias),
        "learningRate": float(state.learning_rate),
        "trainedSampleCount": int(state.trained_sample_count),
        "lastUpdated": state.last_updated,
    }
    if state.feature_hash is not None:
        doc["featureHash"] = state.feature_hash
    return doc


def _is_number(value) -> bool:
    return isinstance(value, numbers.Real) and not isinstance(value, bool) and math.isfinite(value)


def validate_state_document(
    doc: Any, expected_dimension: int, expected_feature_hash: str | None = None
) -> list[str]:
    """Check a state document against the current environment.

    Returns: list of mismatch reasons (empty when the document is importable)
    """
    if not isinstance(doc, dict):
        return ["Invalid model state format"]

    mismatches = []
    version = doc.get("schemaVersion")
    if version not in SUPPORTED_SCHEMA_VERSIONS:
        mismatches.append(f"Unsupported schema version: {version}")

    kind = doc.get("kind")
    if kind not in MODEL_KINDS:
        mismatches.append(f"Unknown model kind: {kind}")

    dim = doc.get("featureDimension")
    if not isinstance(dim, int) or isinstance(dim, bool):
        mismatches.append(f"Invalid feature dimension: {dim}")
    elif dim != expected_dimension:
        mismatches.append(f"Feature dimension: {dim} != {expected_dimension}")

    weights = doc.get("weights")
    if not isinstance(weights, list) or not all(_is_number(w) for w in weights):
        mismatches.append("Weights must be a list of finite numbers")
    elif kind != "knn" and isinstance(dim, int) and len(weights) != dim:
        mismatches.append(f"Weight count: {len(weights)} != feature dimension {dim}")
    elif kind == "knn" and weights:
        mismatches.append("k-NN state must not carry weights")

    for key in ("bias", "learningRate"):
        if not _is_number(doc.get(key)):
            mismatches.append(f"Invalid {key}: {doc.get(key)}")

    count = doc.get("trainedSampleCount", 0)
    if not isinstance(count, int) or isinstance(count, bool) or count < 0:
        mismatches.append(f"Invalid trainedSampleCount: {count}")

    stored_hash = doc.get("featureHash")
    if stored_hash and expected_feature_hash and stored_hash != expected_feature_hash:
        mismatches.append(f"Feature extractor changed (hash: {stored_hash} -> {expected_feature_hash})")

    return mismatches


def import_state(doc: Any, expected_dimension: int, expected_feature_hash: str | None = None) -> ModelState:
    """Build a ModelState from a document, raising ValidationError on any mismatch."""
    mismatches = validate_state_document(doc, expected_dimension, expected_feature_hash)
    if mismatches:
        for mismatch in mismatches:
            logging.warning("[codec] Model state rejected: %s", mismatch)
        raise ValidationError(mismatches)
    state = ModelState(
        kind=doc["kind"],
        feature_dimension=doc["featureDimension"],
        weights=[float(w) for w in doc["weights"]],
        bias=float(doc["bias"]),
        learning_rate=float(doc["learningRate"]),
        trained_sample_count=int(doc.get("trainedSampleCount", 0)),
        last_updated=str(doc.get("lastUpdated") or utc_now()),
        schema_version=doc["schemaVersion"],
        feature_hash=doc.get("featureHash"),
    )
    logging.info(
        "[codec] Imported %s state dim=%d trained=%d", state.kind, state.feature_dimension, state.trained_sample_count
    )
    return state


def dumps_state(state: ModelState) -> str:
    return json.dumps(export_state(state), indent=2, ensure_ascii=False)


def loads_state(text: str | bytes, expected_dimension: int, expected_feature_hash: str | None = None) -> ModelState:
    try:
        doc = json.loads(text)
    except (UnicodeDecodeError, ValueError) as e:
        raise ValidationError(f"Model state is not valid JSON: {e}") from e
    return import_state(doc, expected_dimension, expected_feature_hash)


__all__ = ["export_state", "import_state", "validate_state_document", "dumps_state", "loads_state"]
