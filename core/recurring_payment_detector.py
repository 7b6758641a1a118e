"""
recurring_payment_detector.py
------------------------------
Subscription and recurring charge detection.

Answers one question per merchant:

    "Is there a periodic charge here, how sure are we, and when is the next one?"

Output: a RecurringPayment per qualifying merchant group. The detector is
stateless; every call recomputes the full set from the transaction list, and
the caller replaces (or diffs) its previous results.

Design decisions:
    - Grouping is by merchant identity (see core/merchant.py), first match
      wins, in input order.
    - Cadence is read from the average gap between charges (core/frequency.py).
    - Confidence is a weighted heuristic (core/confidence.py).
    - Next-date prediction is calendar-aware: one month after Jan 31 is the
      last day of February, not March 2 or 3.
"""

import logging
import uuid
from datetime import datetime
from typing import Iterable, List, Sequence

import numpy as np
import pandas as pd
from dateutil.relativedelta import relativedelta

from config.config_loader import get_detection_config
from config.settings import DetectionConfig
from core.confidence import calculate_confidence
from core.frequency import EXPECTED_INTERVAL_DAYS, SECONDS_PER_DAY, calculate_intervals, detect_frequency
from core.merchant import choose_display_name, group_transactions_by_merchant, normalize_merchant_name
from core.models import (
    ExcludedMerchant,
    Frequency,
    MerchantGroup,
    RecurringPayment,
    RecurringStatus,
)
from core.values import round_half_up, to_amount, to_timestamp

logger = logging.getLogger(__name__)


# One interval unit per cadence, for next-date prediction
NEXT_DATE_STEP: dict[Frequency, relativedelta] = {
    Frequency.WEEKLY: relativedelta(days=7),
    Frequency.MONTHLY: relativedelta(months=1),
    Frequency.QUARTERLY: relativedelta(months=3),
    Frequency.YEARLY: relativedelta(years=1),
}

# Monthly equivalents
WEEKS_PER_MONTH = 4.33
MONTHLY_FACTOR: dict[Frequency, float] = {
    Frequency.WEEKLY: WEEKS_PER_MONTH,
    Frequency.MONTHLY: 1.0,
    Frequency.QUARTERLY: 1 / 3,
    Frequency.YEARLY: 1 / 12,
}


class RecurringPaymentDetector:
    """
    Detects recurring payment patterns in a transaction list.

    Usage:
        detector = RecurringPaymentDetector(config)
        payments = detector.detect(transactions, excluded_merchants=excluded)
    """

    def __init__(self, config: DetectionConfig | None = None):
        self.config = config if config is not None else get_detection_config()

    # -------------------------------------------------------------------------
    # PUBLIC INTERFACE
    # -------------------------------------------------------------------------

    def detect(
        self,
        transactions: Sequence,
        excluded_merchants: Iterable[ExcludedMerchant | str] = (),
        as_of: datetime | None = None,
    ) -> List[RecurringPayment]:
        """
        Run recurring payment detection.

        Args:
            transactions: Full transaction list, in the caller's order.
            excluded_merchants: "Not recurring" decisions. Payments whose
                normalized name contains, or is contained in, an excluded name
                are dropped.
            as_of: Reference time for the active/inactive decision. Defaults
                to now.

        Returns:
            Active payments first, then by latest amount, highest first.
        """
        reference = to_timestamp(as_of) if as_of is not None else None
        if reference is None:
            reference = pd.Timestamp(datetime.now())

        groups = group_transactions_by_merchant(transactions)
        results: List[RecurringPayment] = []

        for group in groups:
            payment = self._build_recurring_payment(group, reference)
            if payment is not None:
                results.append(payment)

        results = filter_excluded(results, excluded_merchants)
        results.sort(key=lambda p: (not p.is_active, -p.latest_amount))

        logger.debug(
            f"Recurring scan: {len(groups):,} merchant groups, {len(results):,} recurring payments."
        )
        return results

    # -------------------------------------------------------------------------
    # INTERNAL: RECURRING PAYMENT CONSTRUCTION
    # -------------------------------------------------------------------------

    def _build_recurring_payment(self, group: MerchantGroup, reference: pd.Timestamp) -> RecurringPayment | None:
        """
        Builds a RecurringPayment from one merchant group.

        Returns None if the group fails the occurrence gate, has no cadence,
        or scores below the confidence threshold.
        """
        txns = group.transactions
        count = len(txns)

        # The yearly minimum is the lowest bar; anything under it is out
        if count < min(self.config.min_occurrences, self.config.min_occurrences_yearly):
            return None

        # --- Cadence ---
        analysis = detect_frequency(calculate_intervals(t.date for t in txns), self.config)
        frequency = analysis.frequency

        if count < self.config.min_occurrences and frequency is not Frequency.YEARLY:
            return None

        # --- Confidence ---
        confidence = calculate_confidence(txns, analysis, self.config)
        if frequency is None or confidence.score < self.config.confidence_threshold:
            return None

        # --- Timeline & amounts ---
        dated = []
        for index, t in enumerate(txns):
            ts = to_timestamp(t.date)
            if ts is not None:
                dated.append((ts, index, to_amount(t.amount)))
        if not dated:
            return None

        dated.sort(key=lambda item: (item[0], item[1]))
        first_seen = dated[0][0]
        last_seen = dated[-1][0]

        amounts = [abs(a) for a in (to_amount(t.amount) for t in txns) if a is not None]
        if not amounts:
            return None
        latest_amount = next((abs(a) for _, _, a in reversed(dated) if a is not None), amounts[-1])
        average_amount = float(np.mean(amounts))

        is_active = is_active_payment(last_seen, frequency, self.config, reference)
        next_expected = predict_next_date(last_seen, frequency) if is_active else None

        return RecurringPayment(
            id=str(uuid.uuid4()),
            merchant_name=choose_display_name(group.original_names),
            normalized_name=group.normalized_name,
            original_merchant_names=tuple(group.original_names),
            category=txns[0].category_id,
            latest_amount=latest_amount,
            average_amount=average_amount,
            frequency=frequency,
            confidence=confidence.score,
            first_seen=first_seen.to_pydatetime(),
            last_seen=last_seen.to_pydatetime(),
            occurrence_count=count,
            is_active=is_active,
            status=RecurringStatus.ACTIVE if is_active else RecurringStatus.INACTIVE,
            next_expected_date=next_expected,
            transaction_ids=tuple(t.id for t in txns),
        )


# -----------------------------------------------------------------------------
# Activity, prediction, exclusions
# -----------------------------------------------------------------------------

def is_active_payment(
    last_seen: datetime, frequency: Frequency, config: DetectionConfig, as_of: datetime | None = None
) -> bool:
    """
    Still charging? Active while the days since last_seen stay within one
    expected interval plus a grace period of inactive_after_missed intervals.
    """
    reference = to_timestamp(as_of) if as_of is not None else None
    if reference is None:
        reference = pd.Timestamp(datetime.now())
    last = to_timestamp(last_seen)
    if last is None:
        return False

    expected = EXPECTED_INTERVAL_DAYS[frequency]
    grace = expected * config.inactive_after_missed
    days_since = round_half_up((reference - last).total_seconds() / SECONDS_PER_DAY)
    return days_since <= expected + grace


def predict_next_date(last_seen: datetime, frequency: Frequency) -> datetime | None:
    """
    Adds one interval unit to last_seen, respecting month lengths and leap years.
    Returns None when last_seen cannot be resolved to a date.
    """
    last = to_timestamp(last_seen)
    if last is None:
        return None
    return last.to_pydatetime() + NEXT_DATE_STEP[frequency]


def filter_excluded(
    payments: Iterable[RecurringPayment], excluded_merchants: Iterable[ExcludedMerchant | str]
) -> List[RecurringPayment]:
    """
    Drops payments whose normalized name overlaps an excluded name in either
    direction. Excluded names are normalized first, so a display spelling
    such as "NETFLIX.COM" excludes the "netflix com" group.
    """
    excluded = []
    for entry in excluded_merchants:
        name = entry.normalized_name if isinstance(entry, ExcludedMerchant) else str(entry)
        name = normalize_merchant_name(name)
        if name:
            excluded.append(name)

    if not excluded:
        return list(payments)

    kept = []
    for p in payments:
        own = p.normalized_name.lower()
        if any(ex in own or own in ex for ex in excluded):
            continue
        kept.append(p)
    return kept


# -----------------------------------------------------------------------------
# Monthly equivalents
# -----------------------------------------------------------------------------

def get_monthly_amount(amount: float, frequency: Frequency) -> float:
    """Converts a per-occurrence amount to a monthly figure."""
    return amount * MONTHLY_FACTOR.get(frequency, 1.0)


def get_total_monthly_recurring(payments: Iterable[RecurringPayment]) -> float:
    """Monthly cost of all active recurring payments."""
    return sum(
        get_monthly_amount(p.latest_amount, p.frequency)
        for p in payments
        if p.is_active
    )
