"""
settings.py
------------
Typed, immutable configuration objects for the two detection passes.

The loader in config_loader.py builds these from config.yaml. Callers that
need different thresholds construct their own instance (or use
dataclasses.replace on the loaded one) and pass it to the detector.
"""

from dataclasses import dataclass, fields
from typing import Any, Dict, Type, TypeVar


ConfigT = TypeVar("ConfigT")

# Names that mark a charge as a likely subscription. config.yaml may override.
SUBSCRIPTION_KEYWORDS: tuple[str, ...] = (
    "netflix", "spotify", "amazon prime", "youtube", "google", "apple",
    "microsoft", "adobe", "dropbox", "zoom", "slack", "notion", "canva",
    "gym", "fitness", "club", "membership", "subscription", "monthly",
    "annual", "yearly", "weekly", "insurance", "utility", "electric",
    "water", "gas", "internet", "phone", "mobile", "broadband", "dth",
    "hosting", "domain", "cloud", "saas", "patreon", "github", "gitlab",
)


@dataclass(frozen=True)
class AnomalyConfig:
    """Thresholds for the anomaly pass."""

    amount_std_dev_threshold: float = 2.5
    min_transactions_for_stats: int = 5
    duplicate_merchant_similarity: float = 0.8
    duplicate_window_hours: float = 48
    frequency_threshold_24h: int = 3
    frequency_threshold_7d: int = 5


@dataclass(frozen=True)
class DetectionConfig:
    """Thresholds for the recurring payment pass."""

    min_occurrences: int = 2
    min_occurrences_yearly: int = 1
    amount_variance: float = 0.10
    interval_tolerance: float = 7
    inactive_after_missed: float = 2
    confidence_threshold: float = 0.7
    exclude_variable_amounts: bool = True
    subscription_keywords: tuple[str, ...] = SUBSCRIPTION_KEYWORDS


def build_config(config_cls: Type[ConfigT], section: Dict[str, Any], section_name: str) -> ConfigT:
    """
    Builds a frozen config dataclass from a YAML section.

    Raises:
        ValueError: If the section contains keys the dataclass does not define.
    """
    known = {f.name for f in fields(config_cls)}
    unknown = sorted(set(section) - known)
    if unknown:
        raise ValueError(
            f"Unknown keys in '{section_name}': {unknown}. "
            f"Allowed: {sorted(known)}"
        )

    values = dict(section)
    if "subscription_keywords" in values:
        values["subscription_keywords"] = tuple(
            str(kw).lower() for kw in values["subscription_keywords"] or ()
        )
    return config_cls(**values)
