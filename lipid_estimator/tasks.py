from __future__ import annotations

"""Synchronous batch runner with progress reporting and cancellation.

Batch work (extraction, labeling, analysis) runs item by item on the caller's
thread. Between items the runner reports progress through a callback, which is
the point where a host event loop can keep itself responsive, and checks a
CancelToken so the batch can stop after the current item.

- Progress emits (name, current, total, detail) where total==0 => indeterminate.
- A failure local to one item is recorded in the BatchReport and the batch continues.
"""
import logging
from collections.abc import Callable, Iterable

from .domain import BatchReport
from .errors import EstimatorError, TrainingCancelled

ProgressCallback = Callable[[str, int, int, str], None]


class CancelToken:
    __slots__ = ("_cancelled",)

    def __init__(self):
        self._cancelled = False

    def cancel(self):
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


class ProgressReporter:
    __slots__ = ("_callback", "_current", "_total", "_name", "_detail")

    def __init__(self, name: str, callback: ProgressCallback | None = None):
        self._callback = callback
        self._name = name
        self._current = 0
        self._total = 0
        self._detail = ""

    @property
    def current(self) -> int:
        return self._current

    @property
    def total(self) -> int:
        return self._total

    def _emit(self):
        if self._callback is not None:
            self._callback(self._name, self._current, self._total, self._detail)

    def set_total(self, total: int):
        total = int(total) if total and total > 0 else 0
        self._total = total
        self._emit()

    def advance(self, delta: int = 1):
        self._current += int(delta)
        if self._total and self._current > self._total:
            self._current = self._total
        self._emit()

    def update(self, current: int, total: int | None = None):
        self._current = max(0, int(current))
        if total is not None:
            self._total = int(total) if total > 0 else 0
        self._emit()

    def detail(self, text: str):
        self._detail = text or ""
        self._emit()


def run_list(
    name: str,
    items: Iterable,
    work: Callable[[object], None],
    *,
    describe: Callable[[object], str] = str,
    progress: ProgressCallback | None = None,
    cancel: CancelToken | None = None,
) -> BatchReport:
    """Apply ``work`` to every item, recording per-item failures instead of raising."""
    report = BatchReport()
    reporter = ProgressReporter(name, progress)
    seq = list(items) if items else []
    reporter.set_total(len(seq))
    for it in seq:
        if cancel is not None and cancel.cancelled:
            logging.info(f"[tasks] '{name}' cancelled after {reporter.current}/{len(seq)} items")
            report.cancelled = True
            break
        try:
            work(it)
            report.record_ok()
        except TrainingCancelled as e:
            logging.info(f"[tasks] '{name}' stopped by {describe(it)}: {e}")
            report.cancelled = True
            break
        except EstimatorError as e:
            logging.debug(f"[tasks] '{name}' item {describe(it)} skipped: {e}")
            report.record_skip(describe(it), str(e))
        reporter.advance(1)
    return report


__all__ = ["CancelToken", "ProgressReporter", "ProgressCallback", "run_list"]
