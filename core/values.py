"""
values.py
----------
Coercion of caller-supplied transaction fields.

Both detection passes are total functions: a date or amount that cannot be
resolved excludes that transaction from the check at hand instead of raising.
Every check goes through these helpers for that reason.
"""

import math
from typing import Any

import pandas as pd


def to_timestamp(value: Any) -> pd.Timestamp | None:
    """
    Resolves a date-like value to a naive pandas Timestamp.

    Timezone-aware values are converted to UTC before the zone is dropped so
    that mixed inputs stay comparable. Returns None when the value is missing
    or cannot be parsed.
    """
    if value is None or isinstance(value, bool):
        return None
    try:
        ts = pd.Timestamp(value)
    except (TypeError, ValueError, OverflowError):
        return None
    if pd.isna(ts):
        return None
    if ts.tzinfo is not None:
        ts = ts.tz_convert("UTC").tz_localize(None)
    return ts


def to_amount(value: Any) -> float | None:
    """Returns the value as a finite float, or None."""
    if value is None or isinstance(value, bool):
        return None
    try:
        amount = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(amount):
        return None
    return amount


def hours_between(a: pd.Timestamp, b: pd.Timestamp) -> float:
    """Absolute distance between two timestamps in hours."""
    return abs((a - b).total_seconds()) / 3600.0


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))
