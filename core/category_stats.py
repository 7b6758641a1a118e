"""
category_stats.py
------------------
Per-category amount statistics for the amount anomaly check.

Only expenses count. Statistics are population mean and standard deviation
of absolute amounts, recomputed on every run and never persisted.
"""

import logging
from typing import Dict, Iterable

import pandas as pd

from core.models import CategoryStats, Transaction
from core.values import to_amount

logger = logging.getLogger(__name__)


def calculate_category_stats(
    transactions: Iterable[Transaction], min_transactions: int = 5
) -> Dict[str, CategoryStats]:
    """
    Build category id -> CategoryStats from expense transactions.

    Categories with fewer than min_transactions samples, or whose amounts are
    all identical (std-dev 0), are omitted: a z-score is meaningless there.
    Transactions without a usable amount are not sampled.
    """
    rows = []
    for txn in transactions:
        if not txn.is_expense:
            continue
        amount = to_amount(txn.amount)
        if amount is None:
            continue
        rows.append({"category_id": txn.category_id, "amount": abs(amount)})

    if not rows:
        return {}

    df = pd.DataFrame(rows)
    grouped = df.groupby("category_id", sort=False)["amount"].agg(
        count="count",
        mean="mean",
        std_dev=lambda s: s.std(ddof=0),
    )

    stats: Dict[str, CategoryStats] = {}
    for category_id, row in grouped.iterrows():
        if row["count"] < min_transactions or not row["std_dev"] > 0:
            continue
        stats[str(category_id)] = CategoryStats(
            count=int(row["count"]),
            mean=float(row["mean"]),
            std_dev=float(row["std_dev"]),
        )

    logger.debug(f"Category stats built for {len(stats)} of {len(grouped)} categories.")
    return stats
