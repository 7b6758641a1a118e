"""
config_loader.py
-----------------
Singleton config loader. Reads config.yaml once and caches it.

The detectors never read this module themselves at import time: callers ask
for a typed config object here and inject it, so nothing depends on load order.
"""

import os
import yaml
from typing import Any, Dict

from config.settings import AnomalyConfig, DetectionConfig, build_config
from core.models import Category, CategoryRegistry, CategoryType


_CONFIG_CACHE: Dict[str, Any] = {}


def load_config(config_path: str | None = None) -> Dict[str, Any]:
    """
    Load and cache the YAML configuration file.

    Args:
        config_path: Path to config.yaml. Defaults to config/ relative to this file.

    Returns:
        Full config dictionary.
    """
    global _CONFIG_CACHE

    if _CONFIG_CACHE:
        return _CONFIG_CACHE

    if config_path is None:
        config_path = os.path.join(os.path.dirname(__file__), "config.yaml")

    if not os.path.exists(config_path):
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, "r") as f:
        _CONFIG_CACHE = yaml.safe_load(f) or {}

    return _CONFIG_CACHE


def get_anomaly_config() -> AnomalyConfig:
    """Returns the anomaly_detection block as an AnomalyConfig."""
    return build_config(AnomalyConfig, load_config()["anomaly_detection"], "anomaly_detection")


def get_detection_config() -> DetectionConfig:
    """Returns the recurring_detection block as a DetectionConfig."""
    return build_config(DetectionConfig, load_config()["recurring_detection"], "recurring_detection")


def get_category_registry() -> CategoryRegistry:
    """
    Builds the category registry from the categories block.

    Raises:
        KeyError: If the default category is not among the entries.
        ValueError: If an entry has an unknown category type.
    """
    block = load_config()["categories"]
    categories = [
        Category(id=str(e["id"]), name=str(e["name"]), type=CategoryType(e["type"]))
        for e in block["entries"]
    ]
    return CategoryRegistry.from_categories(categories, default_id=block["default_category"])


def reset_config() -> None:
    """Clears cached config. Useful for testing."""
    global _CONFIG_CACHE
    _CONFIG_CACHE = {}
