"""
anomaly_checks.py
------------------
Concrete anomaly checks. One class per finding kind.

Each check encodes its own rule:
    AmountCheck    -> z-score of |amount| against the category's stats
    DuplicateCheck -> same amount, similar description, close in time
    FrequencyCheck -> too many charges to one merchant in 24h / 7d

All thresholds come from AnomalyConfig.
"""

from typing import List

from checks.base_check import BaseAnomalyCheck, DetectionContext, PreparedTransaction
from config.settings import AnomalyConfig
from core.models import AnomalyDetail, AnomalyType, FrequencyPeriod
from core.similarity import string_similarity
from core.values import hours_between


# Amounts within a cent count as equal
AMOUNT_MATCH_TOLERANCE = 0.01

HOURS_24 = 24
HOURS_7D = 24 * 7


class AmountCheck(BaseAnomalyCheck):
    """
    Flags expenses far from their category's typical amount.

    Only categories with statistics (enough samples, non-zero spread) are
    tested. High and low findings are mutually exclusive by construction.
    """

    name = "amount"
    requires_amount = True

    def _evaluate(self, entry: PreparedTransaction, context: DetectionContext) -> AnomalyDetail | None:
        stats = context.category_stats.get(entry.transaction.category_id)
        if stats is None or stats.std_dev == 0:
            return None

        deviation = (entry.amount - stats.mean) / stats.std_dev
        threshold = self.config.amount_std_dev_threshold

        if deviation > threshold:
            return AnomalyDetail.for_amount(AnomalyType.HIGH_AMOUNT, deviation)
        if deviation < -threshold:
            return AnomalyDetail.for_amount(AnomalyType.LOW_AMOUNT, deviation)
        return None


class DuplicateCheck(BaseAnomalyCheck):
    """
    Flags a likely double charge.

    A candidate is another expense within the duplicate window, with the same
    amount (to the cent) and a description at least
    duplicate_merchant_similarity alike. duplicate_of is the first candidate
    in input order, not the nearest in time.
    """

    name = "duplicate"
    requires_timestamp = True
    requires_amount = True

    def _evaluate(self, entry: PreparedTransaction, context: DetectionContext) -> AnomalyDetail | None:
        description = entry.transaction.description
        for other in self._others(entry, context):
            if other.amount is None:
                continue
            if abs(other.amount - entry.amount) > AMOUNT_MATCH_TOLERANCE:
                continue
            if hours_between(other.timestamp, entry.timestamp) > self.config.duplicate_window_hours:
                continue
            if string_similarity(other.transaction.description, description) < self.config.duplicate_merchant_similarity:
                continue
            return AnomalyDetail.for_duplicate(other.transaction.id)
        return None


class FrequencyCheck(BaseAnomalyCheck):
    """
    Flags bursts of charges to one merchant.

    Counts include the transaction itself. The 24h window takes priority over
    the 7d window when both thresholds are met.
    """

    name = "frequency"
    requires_timestamp = True

    def _evaluate(self, entry: PreparedTransaction, context: DetectionContext) -> AnomalyDetail | None:
        if not entry.merchant_key:
            return None

        count_24h = 1
        count_7d = 1
        for other in self._others(entry, context):
            if other.merchant_key != entry.merchant_key:
                continue
            hours = hours_between(other.timestamp, entry.timestamp)
            if hours <= HOURS_24:
                count_24h += 1
            if hours <= HOURS_7D:
                count_7d += 1

        if count_24h >= self.config.frequency_threshold_24h:
            return AnomalyDetail.for_frequency(count_24h, FrequencyPeriod.TWENTY_FOUR_HOURS)
        if count_7d >= self.config.frequency_threshold_7d:
            return AnomalyDetail.for_frequency(count_7d, FrequencyPeriod.SEVEN_DAYS)
        return None


def get_all_checks(config: AnomalyConfig) -> List[BaseAnomalyCheck]:
    """Returns one instance of each check, in the order findings are reported."""
    return [
        AmountCheck(config),
        DuplicateCheck(config),
        FrequencyCheck(config),
    ]
