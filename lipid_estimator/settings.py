import json
import logging
import os

from .constants import (
    CANONICAL_SIZE,
    DEFAULT_EPOCHS,
    DEFAULT_K,
    DEFAULT_LEARNING_RATE,
    DEFAULT_STORAGE_DIR,
    FEATURE_STRATEGY,
    HISTOGRAM_BINS,
    RESAMPLE_METHOD,
)

CONFIG_PATH = os.environ.get("LIPID_ESTIMATOR_CONFIG", os.path.expanduser("~/.lipid_estimator_config.json"))

DEFAULT_SETTINGS = {
    "storage_dir": os.path.expanduser(DEFAULT_STORAGE_DIR),
    "feature_strategy": FEATURE_STRATEGY,
    "canonical_size": CANONICAL_SIZE,
    "resample": RESAMPLE_METHOD,
    "histogram_bins": HISTOGRAM_BINS,
    "model_kind": "linear",
    "learning_rate": DEFAULT_LEARNING_RATE,
    "epochs": DEFAULT_EPOCHS,
    "knn_k": DEFAULT_K,
    "init_seed": None,
}

# Environment variable -> settings key
ENV_OVERRIDES = {
    "LIPID_FEATURE_STRATEGY": "feature_strategy",
    "LIPID_STORAGE_DIR": "storage_dir",
}


def _read_config(path):
    if not os.path.exists(path):
        return {}
    with open(path, encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError(f"Config root must be an object: {path}")
    return data


def load_settings(path=None):
    """Load settings: defaults, then config file, then environment overrides."""
    settings = DEFAULT_SETTINGS.copy()
    path = path or CONFIG_PATH

    try:
        settings.update(_read_config(path))
    except (OSError, ValueError) as e:
        logging.warning(f"Could not load settings from {path}: {e}")

    for env_key, key in ENV_OVERRIDES.items():
        value = os.environ.get(env_key)
        if value:
            settings[key] = value

    settings["storage_dir"] = os.path.expanduser(str(settings["storage_dir"]))
    return settings


def get_setting(key, default=None, path=None):
    """Utility function to get a single setting value"""
    return load_settings(path).get(key, default)


def set_setting(key, value, path=None):
    """Utility function to set a single setting value"""
    path = path or CONFIG_PATH
    try:
        settings = _read_config(path)
        settings[key] = value

        parent = os.path.dirname(path)
        if parent:
            os.makedirs(parent, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(settings, f, indent=2)
    except (OSError, ValueError) as e:
        logging.error(f"Could not save setting {key}: {e}")
        return False
    return True
