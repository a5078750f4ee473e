"""Tests for key-value backends and the persisted session document."""
from __future__ import annotations

import json
import os

import pytest

from lipid_estimator.constants import STATE_KEY
from lipid_estimator.domain import Dataset
from lipid_estimator.errors import CorruptStateError
from lipid_estimator.regressor import initialize_state
from lipid_estimator.storage import DirectoryStore, MemoryStore, StateRepository, dumps_document, parse_document


class FailingStore(MemoryStore):
    def set(self, key, value):
        raise OSError('disk full')


def test_memory_store():
    store = MemoryStore()
    assert store.get('k') is None
    store.set('k', b'v')
    assert store.get('k') == b'v'
    store.delete('k')
    assert store.get('k') is None


def test_directory_store_creates_root(tmp_path):
    root = tmp_path / 'nested' / 'state'
    store = DirectoryStore(str(root))
    assert store.get(STATE_KEY) is None
    store.set(STATE_KEY, b'{}')
    assert (root / f'{STATE_KEY}.json').read_bytes() == b'{}'
    assert store.get(STATE_KEY) == b'{}'
    assert not any(name.endswith('.tmp') for name in os.listdir(root))


def test_directory_store_sanitizes_keys(tmp_path):
    store = DirectoryStore(str(tmp_path))
    store.set('../escape/me', b'x')
    assert store.get('../escape/me') == b'x'
    assert os.listdir(tmp_path) == ['.._escape_me.json']


def test_repository_round_trip(sample_factory):
    repo = StateRepository(MemoryStore())
    dataset = Dataset(samples=sample_factory([10, 20]))
    state = initialize_state('linear', 16, seed=1)
    assert repo.save(dataset, state).ok

    loaded = repo.load(16)
    assert loaded.warning is None
    assert loaded.dataset.samples == dataset.samples
    assert loaded.model_state == state


def test_missing_document_starts_fresh():
    loaded = StateRepository(MemoryStore()).load(16)
    assert len(loaded.dataset) == 0
    assert loaded.model_state is None
    assert loaded.warning is None


def test_corrupt_document_recovers_with_warning():
    store = MemoryStore()
    store.set(STATE_KEY, b'\x00{{{ not json')
    loaded = StateRepository(store).load(16)
    assert len(loaded.dataset) == 0
    assert loaded.model_state is None
    assert 'Corrupt' in loaded.warning


def test_legacy_sample_list_is_accepted(sample_factory):
    store = MemoryStore()
    store.set(STATE_KEY, json.dumps([s.to_dict() for s in sample_factory([5, 6])]).encode())
    loaded = StateRepository(store).load(16)
    assert len(loaded.dataset) == 2
    assert loaded.model_state is None


def test_incompatible_model_state_is_dropped(sample_factory):
    store = MemoryStore()
    text = dumps_document(Dataset(samples=sample_factory([5])), initialize_state('linear', 10))
    store.set(STATE_KEY, text.encode())
    loaded = StateRepository(store).load(16)
    assert len(loaded.dataset) == 1
    assert loaded.model_state is None
    assert 'Stored model state ignored' in loaded.warning


def test_save_failure_returns_outcome():
    outcome = StateRepository(FailingStore()).save(Dataset(), None)
    assert not outcome.ok
    assert 'disk full' in outcome.reason


def test_last_writer_wins(sample_factory):
    store = MemoryStore()
    a, b = StateRepository(store), StateRepository(store)
    a.save(Dataset(samples=sample_factory([1])), None)
    b.save(Dataset(samples=sample_factory([1, 2, 3])), None)
    assert len(a.load(16).dataset) == 3


def test_parse_document_rejects_non_documents():
    with pytest.raises(CorruptStateError):
        parse_document('42')
    with pytest.raises(CorruptStateError):
        parse_document('{"samples": 3}')
    assert parse_document('[]')['samples'] == []


def test_directory_store_cleans_up_failed_write(tmp_path, monkeypatch):
    store = DirectoryStore(str(tmp_path))
    store.set('k', b'old')

    def _fail(src, dst):
        raise OSError('rename failed')

    monkeypatch.setattr(os, 'replace', _fail)
    with pytest.raises(OSError):
        store.set('k', b'new')
    monkeypatch.undo()
    assert os.listdir(tmp_path) == ['k.json']
    assert store.get('k') == b'old'
