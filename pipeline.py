"""
pipeline.py
------------
Main orchestration layer. Wires together:
    1. AnomalyDetector           ->  annotated transactions
    2. RecurringPaymentDetector  ->  RecurringPayments
    3. Caller-side scan state    ->  exclusions, last scan time, in-flight guard
    4. Output serialization      ->  pandas DataFrames

The detectors are pure and stateless. Everything that has to survive between
scans (the "not recurring" list, the latest results) lives here, owned by the
caller's SignalsPipeline instance.

Usage:
    from pipeline import SignalsPipeline

    pipeline = SignalsPipeline()
    result = pipeline.run(transactions)
"""

import logging
import threading
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import List, Optional, Sequence

import pandas as pd

from config.config_loader import get_anomaly_config, get_detection_config
from config.settings import AnomalyConfig, DetectionConfig
from core.anomaly_detector import AnomalyDetector, summarize_anomalies
from core.merchant import normalize_merchant_name
from core.models import AnomalySummary, ExcludedMerchant, RecurringPayment, Transaction
from core.recurring_payment_detector import RecurringPaymentDetector, get_total_monthly_recurring
from core.values import to_timestamp

logger = logging.getLogger(__name__)


ANOMALY_COLUMNS = [
    "id", "date", "description", "merchant", "amount", "category",
    "is_anomaly", "anomaly_types", "amount_deviation", "duplicate_of",
    "frequency_count", "frequency_period", "anomaly_dismissed",
]

RECURRING_COLUMNS = [
    "id", "merchant_name", "normalized_name", "original_merchant_names",
    "category", "latest_amount", "average_amount", "frequency", "confidence",
    "first_seen", "last_seen", "occurrence_count", "is_active", "status",
    "next_expected_date", "transaction_ids",
]


@dataclass(frozen=True)
class SignalsResult:
    """Everything one full run produces."""
    transactions: List[Transaction]
    recurring_payments: List[RecurringPayment]
    anomaly_summary: AnomalySummary
    scanned_at: datetime = field(default_factory=datetime.now)


class SignalsPipeline:
    """
    End-to-end anomaly + recurring payment pipeline.

    Holds the state a caller needs between scans. Only one recurring scan runs
    at a time: a second request while one is in flight is ignored.
    """

    def __init__(
        self,
        anomaly_config: AnomalyConfig | None = None,
        detection_config: DetectionConfig | None = None,
    ):
        """
        Args:
            anomaly_config: Anomaly thresholds. Defaults to config.yaml.
            detection_config: Recurring thresholds. Defaults to config.yaml.
        """
        self.anomaly_config = anomaly_config or get_anomaly_config()
        self.detection_config = detection_config or get_detection_config()
        self.anomaly_detector = AnomalyDetector(self.anomaly_config)
        self.recurring_detector = RecurringPaymentDetector(self.detection_config)

        self.recurring_payments: List[RecurringPayment] = []
        self.excluded_merchants: List[ExcludedMerchant] = []
        self.last_scanned: Optional[datetime] = None
        self._scan_lock = threading.Lock()

        logger.info(
            f"Pipeline initialized. "
            f"Checks: {[c.name for c in self.anomaly_detector.checks]}. "
            f"Confidence threshold: {self.detection_config.confidence_threshold}."
        )

    # -------------------------------------------------------------------------
    # PUBLIC INTERFACE
    # -------------------------------------------------------------------------

    def run(self, transactions: Sequence[Transaction], as_of: datetime | None = None) -> SignalsResult:
        """
        Run both passes.

        Args:
            transactions: Caller's transaction list.
            as_of: Reference time for active/inactive decisions. Defaults to now.

        Returns:
            SignalsResult with annotated transactions, recurring payments and
            the anomaly review summary. recurring_payments is empty if another
            scan was already in flight.
        """
        logger.info(f"Pipeline starting. Input: {len(transactions):,} transactions.")

        # --- Stage 1: Anomaly detection ---
        annotated = self.detect_anomalies(transactions)
        summary = summarize_anomalies(annotated)
        logger.info(f"Stage 1 complete. Anomalies awaiting review: {summary.count:,}.")

        # --- Stage 2: Recurring payment detection ---
        payments = self.scan_transactions(transactions, as_of=as_of)
        if payments is None:
            payments = []
        logger.info(f"Stage 2 complete. Recurring payments: {len(payments):,}.")

        return SignalsResult(
            transactions=annotated,
            recurring_payments=list(payments),
            anomaly_summary=summary,
        )

    def detect_anomalies(self, transactions: Sequence[Transaction]) -> List[Transaction]:
        return self.anomaly_detector.detect(transactions)

    def scan_transactions(
        self, transactions: Sequence[Transaction], as_of: datetime | None = None
    ) -> Optional[List[RecurringPayment]]:
        """
        Recompute recurring payments and store them, exclusions applied.

        Returns:
            The new results, or None if a scan was already running.
        """
        if not self._scan_lock.acquire(blocking=False):
            logger.warning("Recurring scan already in progress; ignoring new request.")
            return None

        try:
            payments = self.recurring_detector.detect(
                transactions,
                excluded_merchants=self.excluded_merchants,
                as_of=as_of,
            )
            self.recurring_payments = payments
            self.last_scanned = datetime.now()
        finally:
            self._scan_lock.release()

        return list(payments)

    @property
    def is_scanning(self) -> bool:
        return self._scan_lock.locked()

    # -------------------------------------------------------------------------
    # RESULT MANAGEMENT
    # -------------------------------------------------------------------------

    def update_payment(self, payment_id: str, **changes) -> Optional[RecurringPayment]:
        """
        Structurally update one stored payment.

        Returns:
            The updated payment, or None if no payment has that id.
        """
        updated = None
        payments = []
        for p in self.recurring_payments:
            if p.id == payment_id:
                p = replace(p, **changes)
                updated = p
            payments.append(p)
        self.recurring_payments = payments
        return updated

    def mark_as_not_recurring(self, payment_id: str, normalized_name: str) -> None:
        """Remove a payment and exclude its merchant from all later scans."""
        self.excluded_merchants.append(
            ExcludedMerchant(normalized_name=normalize_merchant_name(normalized_name), excluded_at=datetime.now())
        )
        self.recurring_payments = [p for p in self.recurring_payments if p.id != payment_id]
        logger.info(f"Merchant '{normalized_name}' excluded from recurring detection.")

    def clear_excluded_merchants(self) -> None:
        self.excluded_merchants = []

    def get_active_payments(self) -> List[RecurringPayment]:
        return [p for p in self.recurring_payments if p.is_active]

    def get_inactive_payments(self) -> List[RecurringPayment]:
        return [p for p in self.recurring_payments if not p.is_active]

    def get_total_monthly_recurring(self) -> float:
        return get_total_monthly_recurring(self.recurring_payments)


# -----------------------------------------------------------------------------
# OUTPUT SERIALIZATION
# -----------------------------------------------------------------------------

def _format_date(value) -> str:
    ts = to_timestamp(value)
    if ts is None:
        return "" if value is None else str(value)
    return ts.strftime("%Y-%m-%d")


def anomalies_to_frame(transactions: Sequence[Transaction]) -> pd.DataFrame:
    """Flat DataFrame of annotated transactions, one row each, input order."""
    if not transactions:
        return pd.DataFrame(columns=ANOMALY_COLUMNS)

    rows = []
    for t in transactions:
        details = t.anomaly_details
        rows.append({
            "id": t.id,
            "date": _format_date(t.date),
            "description": t.description,
            "merchant": t.merchant or "",
            "amount": t.amount,
            "category": t.category_id,
            "is_anomaly": bool(t.is_anomaly),
            "anomaly_types": "|".join(a.value for a in t.anomaly_types),
            "amount_deviation": details.amount_deviation if details else None,
            "duplicate_of": details.duplicate_of if details else None,
            "frequency_count": details.frequency_count if details else None,
            "frequency_period": details.frequency_period.value if details and details.frequency_period else None,
            "anomaly_dismissed": t.anomaly_dismissed,
        })
    return pd.DataFrame(rows, columns=ANOMALY_COLUMNS)


def recurring_payments_to_frame(payments: Sequence[RecurringPayment]) -> pd.DataFrame:
    """Flat DataFrame of recurring payments, in the detector's order."""
    if not payments:
        return pd.DataFrame(columns=RECURRING_COLUMNS)

    rows = []
    for p in payments:
        rows.append({
            "id": p.id,
            "merchant_name": p.merchant_name,
            "normalized_name": p.normalized_name,
            "original_merchant_names": " | ".join(p.original_merchant_names),
            "category": p.category,
            "latest_amount": round(p.latest_amount, 2),
            "average_amount": round(p.average_amount, 2),
            "frequency": p.frequency.value,
            "confidence": round(p.confidence, 4),
            "first_seen": _format_date(p.first_seen),
            "last_seen": _format_date(p.last_seen),
            "occurrence_count": p.occurrence_count,
            "is_active": p.is_active,
            "status": p.status.value,
            "next_expected_date": _format_date(p.next_expected_date) if p.next_expected_date else "",
            "transaction_ids": "|".join(p.transaction_ids),
        })
    return pd.DataFrame(rows, columns=RECURRING_COLUMNS)
