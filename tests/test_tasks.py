"""Tests for the synchronous batch runner."""
from __future__ import annotations

import pytest

from lipid_estimator.errors import ExtractionError, TrainingCancelled
from lipid_estimator.tasks import CancelToken, ProgressReporter, run_list


def test_progress_reporter_emits():
    events = []
    reporter = ProgressReporter('job', lambda *a: events.append(a))
    reporter.set_total(2)
    reporter.detail('working')
    reporter.advance()
    reporter.advance(5)
    assert events[0] == ('job', 0, 2, '')
    assert events[-1] == ('job', 2, 2, 'working')
    reporter.update(0, total=0)
    assert reporter.total == 0


def test_run_list_records_failures():
    seen = []

    def work(item):
        if item == 'bad':
            raise ExtractionError('cannot decode')
        seen.append(item)

    report = run_list('job', ['a', 'bad', 'b'], work)
    assert seen == ['a', 'b']
    assert report.processed == 2
    assert report.to_dict()['reasons'] == [{'item': 'bad', 'reason': 'cannot decode'}]


def test_run_list_propagates_programming_errors():
    def work(item):
        raise KeyError(item)

    with pytest.raises(KeyError):
        run_list('job', [1], work)


def test_run_list_stops_on_cancel():
    token = CancelToken()
    seen = []

    def work(item):
        seen.append(item)
        if item == 2:
            token.cancel()

    report = run_list('job', [1, 2, 3, 4], work, cancel=token)
    assert seen == [1, 2]
    assert report.cancelled is True
    assert report.processed == 2


def test_work_can_stop_the_batch():
    seen = []

    def work(item):
        if item == 'stop':
            raise TrainingCancelled('user abort')
        seen.append(item)

    report = run_list('job', ['a', 'stop', 'b'], work)
    assert seen == ['a']
    assert report.cancelled is True
    assert report.skipped == 0
