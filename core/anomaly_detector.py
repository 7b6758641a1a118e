"""
anomaly_detector.py
--------------------
Flags transactions that deserve a second look.

There is no state machine: each transaction is run through independent
checks (see checks/anomaly_checks.py) against the full list and the
per-category statistics computed at the start of the run.

Output: the input list, in order, with every element replaced by an
annotated copy. The caller's transactions are never mutated.

Cost: the duplicate and frequency checks scan every expense for every
expense, O(N^2).
"""

import logging
from collections import Counter
from dataclasses import replace
from typing import Iterable, List, Sequence

from checks.anomaly_checks import get_all_checks
from checks.base_check import DetectionContext, PreparedTransaction
from config.config_loader import get_anomaly_config
from config.settings import AnomalyConfig
from core.category_stats import calculate_category_stats
from core.models import AnomalyDetail, AnomalyDetails, AnomalySummary, Transaction

logger = logging.getLogger(__name__)


class AnomalyDetector:
    """
    Runs the amount, duplicate and frequency checks over a transaction list.

    Usage:
        detector = AnomalyDetector(config)
        annotated = detector.detect(transactions)
    """

    def __init__(self, config: AnomalyConfig | None = None):
        self.config = config if config is not None else get_anomaly_config()
        self.checks = get_all_checks(self.config)

    # -------------------------------------------------------------------------
    # PUBLIC INTERFACE
    # -------------------------------------------------------------------------

    def detect(self, transactions: Sequence[Transaction]) -> List[Transaction]:
        """
        Annotate every transaction with its anomaly findings.

        Transactions with findings get is_anomaly=True, the finding types in
        check order, and the merged details. Transactions without findings get
        is_anomaly=False and no details. anomaly_dismissed is carried over
        unchanged either way.
        """
        transactions = list(transactions)
        prepared = [PreparedTransaction.from_transaction(t) for t in transactions]
        stats = calculate_category_stats(transactions, self.config.min_transactions_for_stats)
        context = DetectionContext.build(prepared, stats)

        annotated: List[Transaction] = []
        flagged = 0
        for entry in prepared:
            findings = self.findings_for(entry, context)
            if findings:
                flagged += 1
            annotated.append(self._annotate(entry.transaction, findings))

        logger.debug(
            f"Anomaly scan: {len(transactions):,} transactions, "
            f"{len(context.expenses):,} expenses, {flagged:,} flagged."
        )
        return annotated

    def findings_for(self, entry: PreparedTransaction, context: DetectionContext) -> List[AnomalyDetail]:
        """Runs every check on one prepared transaction."""
        findings = []
        for check in self.checks:
            detail = check.check(entry, context)
            if detail is not None:
                findings.append(detail)
        return findings

    # -------------------------------------------------------------------------
    # INTERNAL
    # -------------------------------------------------------------------------

    @staticmethod
    def _annotate(txn: Transaction, findings: List[AnomalyDetail]) -> Transaction:
        if not findings:
            return replace(txn, is_anomaly=False, anomaly_types=(), anomaly_details=None)
        return replace(
            txn,
            is_anomaly=True,
            anomaly_types=tuple(f.type for f in findings),
            anomaly_details=AnomalyDetails.merge(findings),
        )


# -----------------------------------------------------------------------------
# Review queue helpers
# -----------------------------------------------------------------------------

def summarize_anomalies(transactions: Iterable[Transaction]) -> AnomalySummary:
    """Counts anomalies still awaiting review (flagged and not dismissed)."""
    active = [t for t in transactions if t.is_anomaly and not t.anomaly_dismissed]
    type_counts = Counter(a_type for t in active for a_type in t.anomaly_types)
    return AnomalySummary(count=len(active), type_counts=dict(type_counts))


def _set_dismissed(transactions: Iterable[Transaction], transaction_id: str, dismissed: bool) -> List[Transaction]:
    return [
        replace(t, anomaly_dismissed=dismissed) if t.id == transaction_id else t
        for t in transactions
    ]


def dismiss_anomaly(transactions: Iterable[Transaction], transaction_id: str) -> List[Transaction]:
    """Returns a new list with the anomaly on transaction_id marked as reviewed."""
    return _set_dismissed(transactions, transaction_id, True)


def restore_anomaly(transactions: Iterable[Transaction], transaction_id: str) -> List[Transaction]:
    """Undoes dismiss_anomaly."""
    return _set_dismissed(transactions, transaction_id, False)
