"""Tests for the Session context: labeling, training, prediction, import/export."""
from __future__ import annotations

import json
import os

import numpy as np
import pytest

from lipid_estimator.codec import export_state
from lipid_estimator.constants import STATE_KEY
from lipid_estimator.domain import Dataset
from lipid_estimator.features import ExtractorConfig
from lipid_estimator.regressor import initialize_state
from lipid_estimator.session import Session
from lipid_estimator.settings import load_settings
from lipid_estimator.storage import MemoryStore, dumps_document
from lipid_estimator.tasks import CancelToken


def _fill(session, sample_factory, labels=(20, 40, 60)):
    report = session.add_samples(sample_factory(list(labels)))
    assert report.skipped == 0
    return report


class TestLabeling:
    def test_add_sample_persists(self, session, store):
        outcome = session.add_sample(np.full(16, 0.1), 35.0, 'a.png')
        assert outcome.ok
        assert outcome.value.filename == 'a.png'
        reopened = Session(store=store)
        assert [s.label for s in reopened.dataset.samples] == [35.0]

    def test_invalid_sample_is_rejected(self, session, store):
        outcome = session.add_sample(np.full(16, 0.1), 150.0)
        assert not outcome.ok
        assert outcome.reason == 'label out of range'
        assert len(session.dataset) == 0
        assert store.get(STATE_KEY) is None

    def test_add_sample_with_online_update(self, session):
        session.add_sample(np.full(16, 0.1), 50.0, learn=True)
        assert session.model_state.kind == 'linear'
        assert session.model_state.trained_sample_count == 1
        assert session.model_state.bias > 0.0

    def test_add_images_partial_failure(self, session, make_image, tmp_path):
        white = make_image('white.png', color=(255, 255, 255))
        black = make_image('black.png', color=(0, 0, 0))
        bad = tmp_path / 'bad.png'
        bad.write_bytes(b'garbage')
        report = session.add_images([(white, 20), (str(bad), 30), (black, 150)])
        assert report.processed == 1
        assert report.skipped == 2
        reasons = dict(report.reasons)
        assert reasons['black.png'] == 'label out of range'
        assert 'bad.png' in reasons
        assert [s.filename for s in session.dataset.samples] == ['white.png']

    def test_clear_dataset_keeps_model(self, session, sample_factory):
        _fill(session, sample_factory)
        session.train('linear', epochs=2)
        state = session.model_state
        session.clear_dataset()
        assert len(session.dataset) == 0
        assert session.model_state is state

    def test_stats(self, session, sample_factory):
        assert session.stats()['model'] is None
        _fill(session, sample_factory)
        session.train('linear', epochs=1)
        stats = session.stats()
        assert stats['count'] == 3
        assert stats['feature_strategy'] == 'histogram'
        assert stats['model']['kind'] == 'linear'
        assert stats['model']['trained_sample_count'] == 3


class TestTraining:
    def test_needs_minimum_samples(self, session, sample_factory):
        _fill(session, sample_factory, labels=(10, 20))
        assert session.train('linear') is None
        assert session.model_state is None

    def test_train_linear_persists_state(self, session, store, sample_factory):
        _fill(session, sample_factory)
        result = session.train('linear', epochs=5, seed=4)
        assert result.report.processed == 3
        assert result.epochs_run == 5
        state = session.model_state
        assert state.trained_sample_count == 15
        assert state.feature_hash == session.feature_hash
        assert Session(store=store).model_state == state

    def test_switching_kind_starts_new_state(self, session, sample_factory):
        _fill(session, sample_factory)
        session.train('linear', epochs=1)
        session.train('logistic', epochs=1)
        assert session.model_state.kind == 'logistic'
        assert session.model_state.trained_sample_count == 3

    def test_train_knn(self, session, sample_factory):
        samples = sample_factory([20, 40, 60])
        session.add_samples(samples)
        result = session.train('knn')
        assert result.report.processed == 3
        assert session.model_state.kind == 'knn'
        assert session.model_state.weights == []
        assert session.model_state.trained_sample_count == 3
        assert session.predict(samples[1].features) == 40.0

    def test_cancelled_training(self, session, sample_factory):
        _fill(session, sample_factory)
        token = CancelToken()
        token.cancel()
        result = session.train('linear', epochs=3, cancel=token)
        assert result.report.cancelled
        assert result.updates == 0
        assert session.model_state.trained_sample_count == 0


class TestPrediction:
    def test_empty_session_predicts_none(self, session):
        assert session.predict(np.zeros(16)) is None

    def test_knn_fallback_without_model(self, session, sample_factory):
        samples = sample_factory([20, 40, 60])
        session.add_samples(samples)
        assert session.model_state is None
        assert session.predict(samples[2].features) == 60.0

    def test_model_prediction_is_clamped(self, session, sample_factory):
        _fill(session, sample_factory)
        session.train('linear', epochs=3)
        value = session.predict(np.full(16, 0.5))
        assert 0.0 <= value <= 100.0

    def test_analyze_images(self, session, make_image, tmp_path):
        white = make_image('white.png', color=(255, 255, 255))
        black = make_image('black.png', color=(0, 0, 0))
        session.add_images([(white, 80), (black, 5)])
        bad = tmp_path / 'bad.png'
        bad.write_bytes(b'garbage')
        results, report = session.analyze_images([white, black, str(bad)])
        assert results[white] == 80.0
        assert results[black] == 5.0
        assert str(bad) not in results
        assert report.processed == 2
        assert report.skipped == 1


class TestModelImportExport:
    def test_export_without_model_fails(self, session):
        assert not session.export_model().ok
        assert not session.export_model_text().ok

    def test_round_trip_between_sessions(self, session, sample_factory):
        _fill(session, sample_factory)
        session.train('linear', epochs=4, seed=2)
        text = session.export_model_text().value

        other = Session(store=MemoryStore())
        outcome = other.import_model(text)
        assert outcome.ok
        query = np.linspace(0, 0.2, 16)
        assert other.predict(query) == session.predict(query)

    def test_dimension_mismatch_keeps_previous_state(self, session, sample_factory):
        _fill(session, sample_factory)
        session.train('linear', epochs=2)
        before = export_state(session.model_state)
        outcome = session.import_model(export_state(initialize_state('linear', 10)))
        assert not outcome.ok
        assert 'Feature dimension: 10 != 16' in outcome.reason
        assert export_state(session.model_state) == before

    def test_extractor_change_is_rejected(self, session):
        other_hash = ExtractorConfig(resample='nearest').feature_hash()
        outcome = session.import_model(export_state(initialize_state('linear', 16, feature_hash=other_hash)))
        assert not outcome.ok
        assert session.model_state is None

    def test_invalid_json_is_rejected(self, session):
        outcome = session.import_model('{broken')
        assert not outcome.ok
        assert 'not valid JSON' in outcome.reason

    def test_reset_model(self, session, store, sample_factory):
        _fill(session, sample_factory)
        session.train('linear', epochs=1)
        session.reset_model()
        assert Session(store=store).model_state is None


class TestDocumentImportExport:
    def test_merge_three_into_five(self, session, sample_factory):
        source = Session(store=MemoryStore())
        _fill(source, sample_factory, labels=(1, 2, 3))
        session.add_samples(sample_factory([4, 5, 6, 7, 8], prefix='t'))

        outcome = session.import_document(source.export_document())
        assert outcome.ok
        assert outcome.value.processed == 3
        assert len(session.dataset) == 8
        expected = [4, 5, 6, 7, 8, 1, 2, 3]
        assert [s.label for s in session.dataset.samples] == expected

    def test_import_adopts_model_state(self, session, sample_factory):
        source = Session(store=MemoryStore())
        _fill(source, sample_factory)
        source.train('linear', epochs=2)
        assert session.import_document(source.export_document()).ok
        assert session.model_state == source.model_state

    def test_invalid_model_state_rejects_whole_document(self, session, sample_factory):
        text = dumps_document(Dataset(samples=sample_factory([1, 2])), initialize_state('linear', 10))
        outcome = session.import_document(text)
        assert not outcome.ok
        assert len(session.dataset) == 0

    def test_garbage_is_rejected(self, session):
        assert not session.import_document(b'\x89PNG not json').ok

    def test_bad_samples_are_reported(self, session, sample_factory):
        good = [s.to_dict() for s in sample_factory([10, 20])]
        bad_label = dict(good[0], id='x', label=150)
        text = '{"samples": %s}' % json.dumps(good + [bad_label, 'junk'])
        outcome = session.import_document(text)
        assert outcome.ok
        assert outcome.value.processed == 2
        assert outcome.value.skipped == 2


class TestPersistence:
    def test_corrupt_state_recovers(self, store, sample_factory):
        store.set(STATE_KEY, b'not json at all')
        session = Session(store=store)
        assert 'Corrupt' in session.last_warning
        assert len(session.dataset) == 0
        session.add_samples(sample_factory([10]))
        assert Session(store=store).last_warning is None

    def test_wrong_dimension_samples_dropped_on_load(self, store, sample_factory):
        samples = sample_factory([10]) + sample_factory([20], dim=8)
        store.set(STATE_KEY, dumps_document(Dataset(samples=samples), None).encode())
        session = Session(store=store)
        assert len(session.dataset) == 1
        assert '1 stored samples failed validation' in session.last_warning

    def test_from_settings_uses_directory_store(self, tmp_path, sample_factory):
        settings = load_settings(str(tmp_path / 'missing.json'))
        settings['storage_dir'] = str(tmp_path / 'state')
        session = Session.from_settings(settings)
        session.add_samples(sample_factory([10]))
        assert os.path.exists(tmp_path / 'state' / f'{STATE_KEY}.json')
        assert len(Session.from_settings(settings).dataset) == 1


class FailingStore(MemoryStore):
    def set(self, key, value):
        raise OSError('read-only')


def test_import_model_keeps_state_when_save_fails():
    session = Session(store=FailingStore())
    doc = export_state(initialize_state('linear', 16, seed=3, feature_hash=session.feature_hash))
    outcome = session.import_model(doc)
    assert not outcome.ok
    assert 'read-only' in outcome.reason
    assert session.model_state is None
