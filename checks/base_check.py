"""
base_check.py
--------------
Abstract base class for all per-transaction anomaly checks.

Each concrete check (amount, duplicate, frequency) inherits from this.
Shared logic lives here so it is never duplicated:
    - the expense-only gate
    - skipping transactions whose date or amount cannot be resolved
    - the DetectionContext every check reads from

Concrete checks only need to implement _evaluate().
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

import pandas as pd

from config.settings import AnomalyConfig
from core.merchant import extract_merchant_key
from core.models import AnomalyDetail, CategoryStats, Transaction
from core.values import to_amount, to_timestamp


@dataclass(frozen=True)
class PreparedTransaction:
    """A transaction with its date, amount and merchant key resolved once per run."""

    transaction: Transaction
    timestamp: Optional[pd.Timestamp]
    amount: Optional[float]           # absolute
    merchant_key: str

    @classmethod
    def from_transaction(cls, txn: Transaction) -> "PreparedTransaction":
        amount = to_amount(txn.amount)
        return cls(
            transaction=txn,
            timestamp=to_timestamp(txn.date),
            amount=abs(amount) if amount is not None else None,
            merchant_key=extract_merchant_key(txn.description),
        )


@dataclass(frozen=True)
class DetectionContext:
    """
    Everything a check may consult besides the transaction under test.

    expenses holds every expense in input order; checks scan all of it, which
    makes a full run O(N^2) in the number of expenses.
    """

    expenses: List[PreparedTransaction] = field(default_factory=list)
    category_stats: Dict[str, CategoryStats] = field(default_factory=dict)

    @classmethod
    def build(
        cls, prepared: Sequence[PreparedTransaction], category_stats: Dict[str, CategoryStats]
    ) -> "DetectionContext":
        return cls(
            expenses=[p for p in prepared if p.transaction.is_expense],
            category_stats=category_stats,
        )


class BaseAnomalyCheck(ABC):
    """
    Abstract base for anomaly checks.

    Subclasses set the requires_* flags for the fields they cannot work
    without and implement _evaluate(). A transaction missing a required field
    is skipped by that check only.
    """

    name: str = "base"
    requires_timestamp: bool = False
    requires_amount: bool = False

    def __init__(self, config: AnomalyConfig):
        self.config = config

    # -------------------------------------------------------------------------
    # PUBLIC INTERFACE
    # -------------------------------------------------------------------------

    def check(self, entry: PreparedTransaction, context: DetectionContext) -> AnomalyDetail | None:
        """
        Run this check against one transaction.

        Returns:
            AnomalyDetail if the transaction is flagged, None otherwise.
        """
        if not entry.transaction.is_expense:
            return None
        if self.requires_timestamp and entry.timestamp is None:
            return None
        if self.requires_amount and entry.amount is None:
            return None
        return self._evaluate(entry, context)

    # -------------------------------------------------------------------------
    # ABSTRACT METHODS
    # -------------------------------------------------------------------------

    @abstractmethod
    def _evaluate(self, entry: PreparedTransaction, context: DetectionContext) -> AnomalyDetail | None:
        ...

    # -------------------------------------------------------------------------
    # SHARED HELPERS
    # -------------------------------------------------------------------------

    @staticmethod
    def _others(entry: PreparedTransaction, context: DetectionContext):
        """Every other expense with a usable timestamp, in input order."""
        own_id = entry.transaction.id
        for other in context.expenses:
            if other.transaction.id == own_id or other.timestamp is None:
                continue
            yield other

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"
