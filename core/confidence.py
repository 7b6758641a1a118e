"""
confidence.py
--------------
Confidence that a merchant group is a genuine recurring payment.

Score = 0.5 base
      + occurrence bonus           (0 .. +0.3)
      + amount consistency         (-0.1 .. +0.2)
      + interval consistency       (-0.1 .. +0.2)
      + subscription keyword bonus (0 or +0.1)
clamped to [0, 1]. A variable amount (when excluded by config) or a missing
cadence forces the score to 0.
"""

from typing import Sequence

import numpy as np

from config.settings import DetectionConfig
from core.models import ConfidenceResult, FrequencyAnalysis, Transaction
from core.values import to_amount


BASE_SCORE = 0.5
KEYWORD_BONUS = 0.1

# (minimum occurrences, bonus), checked top-down
OCCURRENCE_BONUSES = [(6, 0.3), (4, 0.2), (3, 0.1), (2, 0.05)]

# Normalized interval std-dev bands
INTERVAL_BANDS = [(0.1, 0.2), (0.2, 0.15), (0.3, 0.1)]

INCONSISTENCY_PENALTY = -0.1


def occurrence_bonus(count: int) -> float:
    return next((bonus for minimum, bonus in OCCURRENCE_BONUSES if count >= minimum), 0.0)


def amount_variance(transactions: Sequence[Transaction]) -> float:
    """Coefficient of variation of absolute amounts; 1.0 when it cannot be computed."""
    amounts = [abs(a) for a in (to_amount(t.amount) for t in transactions) if a is not None]
    if not amounts:
        return 1.0
    values = np.asarray(amounts, dtype=float)
    mean = float(values.mean())
    if mean <= 0:
        return 1.0
    return float(values.std()) / mean


def has_subscription_keyword(transactions: Sequence[Transaction], keywords: Sequence[str]) -> bool:
    """Checks the group's representative name (its first transaction) for a known keyword."""
    if not transactions:
        return False
    name = transactions[0].merchant_or_description.lower()
    return any(kw in name for kw in keywords)


def calculate_confidence(
    transactions: Sequence[Transaction],
    analysis: FrequencyAnalysis,
    config: DetectionConfig,
) -> ConfidenceResult:
    """
    Score a merchant group. Deterministic and pure.

    Args:
        transactions: The group's transactions, in input order.
        analysis: Output of detect_frequency for the group's intervals.
        config: Detection thresholds and subscription keywords.
    """
    bonus = occurrence_bonus(len(transactions))
    amount_cv = amount_variance(transactions)

    if config.exclude_variable_amounts and amount_cv > config.amount_variance:
        return ConfidenceResult(
            score=0.0, amount_variance=amount_cv, interval_variance=1.0, occurrence_bonus=bonus
        )

    if analysis.frequency is None:
        return ConfidenceResult(
            score=0.0,
            amount_variance=amount_cv,
            interval_variance=analysis.interval_variance,
            occurrence_bonus=bonus,
        )

    score = BASE_SCORE + bonus

    if amount_cv < 0.05:
        score += 0.2
    elif amount_cv < 0.10:
        score += 0.15
    elif amount_cv < config.amount_variance:
        score += 0.1
    else:
        score += INCONSISTENCY_PENALTY

    score += next(
        (adj for limit, adj in INTERVAL_BANDS if analysis.interval_variance < limit),
        INCONSISTENCY_PENALTY,
    )

    if has_subscription_keyword(transactions, config.subscription_keywords):
        score += KEYWORD_BONUS

    return ConfidenceResult(
        score=max(0.0, min(1.0, score)),
        amount_variance=amount_cv,
        interval_variance=analysis.interval_variance,
        occurrence_bonus=bonus,
    )
