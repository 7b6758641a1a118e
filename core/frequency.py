"""
frequency.py
-------------
Interval analysis and cadence classification for a merchant group.

Cadence is read from the average gap between consecutive charges, tested
against fixed bands in order. The first band that contains the average AND
whose spread is acceptable wins; gaps that fit no band leave the group
unclassified.
"""

from typing import Any, Iterable, List

import numpy as np

from config.settings import DetectionConfig
from core.models import Frequency, FrequencyAnalysis
from core.values import round_half_up, to_timestamp


# Nominal period of each cadence in days
EXPECTED_INTERVAL_DAYS: dict[Frequency, int] = {
    Frequency.WEEKLY: 7,
    Frequency.MONTHLY: 30,
    Frequency.QUARTERLY: 91,
    Frequency.YEARLY: 365,
}

# Band half-widths in days. Monthly comes from DetectionConfig.interval_tolerance.
_FIXED_TOLERANCES: dict[Frequency, float] = {
    Frequency.WEEKLY: 2,
    Frequency.QUARTERLY: 14,
    Frequency.YEARLY: 30,
}

# Interval std-dev may be at most this multiple of the band tolerance
SPREAD_FACTOR = 1.5

SECONDS_PER_DAY = 86400


def _bands(config: DetectionConfig) -> list[tuple[Frequency, int, float]]:
    return [
        (Frequency.WEEKLY, EXPECTED_INTERVAL_DAYS[Frequency.WEEKLY], _FIXED_TOLERANCES[Frequency.WEEKLY]),
        (Frequency.MONTHLY, EXPECTED_INTERVAL_DAYS[Frequency.MONTHLY], config.interval_tolerance),
        (Frequency.QUARTERLY, EXPECTED_INTERVAL_DAYS[Frequency.QUARTERLY], _FIXED_TOLERANCES[Frequency.QUARTERLY]),
        (Frequency.YEARLY, EXPECTED_INTERVAL_DAYS[Frequency.YEARLY], _FIXED_TOLERANCES[Frequency.YEARLY]),
    ]


def calculate_intervals(dates: Iterable[Any]) -> List[int]:
    """
    Whole-day gaps between consecutive dates, oldest first.

    Same-day (or otherwise non-positive) gaps are dropped, and so are dates
    that cannot be parsed.
    """
    timestamps = sorted(ts for ts in (to_timestamp(d) for d in dates) if ts is not None)

    intervals: List[int] = []
    for prev, curr in zip(timestamps, timestamps[1:]):
        days = round_half_up((curr - prev).total_seconds() / SECONDS_PER_DAY)
        if days > 0:
            intervals.append(days)
    return intervals


def detect_frequency(intervals: List[int], config: DetectionConfig) -> FrequencyAnalysis:
    """
    Classify a list of day gaps into a canonical frequency.

    Returns a FrequencyAnalysis whose interval_variance is the gap std-dev
    normalized by the band's expected interval (1.0 when unclassified).
    """
    if not intervals:
        return FrequencyAnalysis(frequency=None, interval_variance=1.0, avg_interval=0.0)

    values = np.asarray(intervals, dtype=float)
    avg_interval = float(values.mean())
    spread = float(values.std())

    for frequency, expected, tolerance in _bands(config):
        if abs(avg_interval - expected) <= tolerance and spread <= tolerance * SPREAD_FACTOR:
            return FrequencyAnalysis(
                frequency=frequency,
                interval_variance=spread / expected,
                avg_interval=avg_interval,
            )

    return FrequencyAnalysis(frequency=None, interval_variance=1.0, avg_interval=avg_interval)
