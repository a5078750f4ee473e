import logging

import numpy as np
import pytest
from PIL import Image

from lipid_estimator.domain import Sample
from lipid_estimator.features import ExtractorConfig
from lipid_estimator.session import Session
from lipid_estimator.storage import MemoryStore

# Configure logging for tests so [component] messages are visible on failures.
handler = logging.StreamHandler()
formatter = logging.Formatter('%(asctime)s %(levelname)s %(name)s: %(message)s')
handler.setFormatter(formatter)
root = logging.getLogger()
if not root.handlers:
	root.addHandler(handler)
root.setLevel(logging.DEBUG)

# Reduce verbosity for noisy external libraries
logging.getLogger('PIL').setLevel(logging.WARNING)


def make_samples(labels, dim=16, prefix='s'):
	"""Samples with distinct, deterministic feature vectors."""
	samples = []
	for i, label in enumerate(labels):
		features = np.full(dim, 0.01 * (i + 1))
		features[i % dim] += 0.5
		samples.append(Sample.create(features, label, f'{prefix}{i}.png'))
	return samples


@pytest.fixture
def gradient_pixels():
	"""32x24 RGB buffer whose luminance ramps left to right."""
	width, height = 32, 24
	ramp = np.linspace(0, 255, width, dtype=np.float64)
	arr = np.repeat(ramp[np.newaxis, :], height, axis=0)
	rgb = np.stack([arr, arr, arr], axis=2).astype(np.uint8)
	return rgb, width, height


@pytest.fixture
def make_image(tmp_path):
	def _make(name, color=(128, 128, 128), size=(32, 24), fmt='PNG'):
		path = tmp_path / name
		Image.new('RGB', size, color).save(path, fmt)
		return str(path)
	return _make


@pytest.fixture
def store():
	return MemoryStore()


@pytest.fixture
def session(store):
	return Session(store=store)


@pytest.fixture
def stats_config():
	return ExtractorConfig(strategy='stats')


@pytest.fixture
def sample_factory():
	return make_samples
