"""Project-wide constants for the lipid droplet estimator.

Centralizes magic numbers and configuration values to avoid duplication
and keep training and inference on the same feature contract.
"""

# Feature extraction
CANONICAL_SIZE = 128
"""Edge length (pixels) every image is resampled to before feature computation"""

RESAMPLE_METHOD = "bilinear"
"""Resampling used when resizing to the canonical size ('nearest' or 'bilinear')"""

FEATURE_STRATEGY = "histogram"
"""Default extraction strategy ('grayscale', 'stats' or 'histogram')"""

HISTOGRAM_BINS = 16
"""Number of equal-width luminance bins for the histogram strategy"""

LUMA_WEIGHTS = (0.299, 0.587, 0.114)
"""RGB -> luminance coefficients"""

# Model state
SCHEMA_VERSION = 1
"""Current model-state schema version"""

SUPPORTED_SCHEMA_VERSIONS = (1,)
"""Schema versions the codec is able to import"""

MODEL_KINDS = ("linear", "logistic", "knn")
"""Tags accepted in ModelState.kind"""

DEFAULT_LEARNING_RATE = 0.01
"""Learning rate used when a training call does not pass one"""

DEFAULT_EPOCHS = 20
"""Epochs for batch training when the caller does not pass one"""

INIT_WEIGHT_SCALE = 0.01
"""Half-width of the uniform range used for seeded weight initialization"""

MIN_TRAINING_SAMPLES = 3
"""Minimum dataset size before a training run is started"""

# Labels
LABEL_MIN = 0.0
LABEL_MAX = 100.0

# k-NN
DEFAULT_K = 5
"""Neighbors averaged by the weighted k-NN estimator"""

KNN_EPSILON = 1e-6
"""Added to distances before inverting them into weights"""

# Persistence
DATASET_VERSION = 1
"""Version tag written into the persisted document"""

STATE_KEY = "lipid_dataset_v1"
"""Key under which the combined dataset/model document is stored"""

NETWORK_MODEL_NAME = "lipid-droplet-model-v1"
"""Base name for saved network-engine models"""

DEFAULT_STORAGE_DIR = "~/.lipid-estimator"
"""Default directory for the file-backed key-value store"""
