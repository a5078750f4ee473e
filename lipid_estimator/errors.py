"""Error taxonomy shared by extraction, training and persistence."""

from __future__ import annotations


class EstimatorError(Exception):
    """Base class for every error raised by lipid_estimator."""


class ValidationError(EstimatorError):
    """Input failed a schema, dimension or label check.

    Carries every mismatch found so callers can report them all at once.
    """

    def __init__(self, reasons: list[str] | str):
        if isinstance(reasons, str):
            reasons = [reasons]
        self.reasons = list(reasons)
        super().__init__("; ".join(self.reasons))


class CorruptStateError(EstimatorError):
    """A persisted document could not be parsed."""


class ExtractionError(EstimatorError):
    """A specific image could not be decoded or turned into features."""


class TrainingCancelled(EstimatorError):
    """Raised inside batch loops to stop after the current item."""


__all__ = ["EstimatorError", "ValidationError", "CorruptStateError", "ExtractionError", "TrainingCancelled"]
