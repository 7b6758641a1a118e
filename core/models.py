"""
models.py
----------
Core domain models. These are the typed contracts between engine layers.

- Transaction: caller-owned input record. Frozen; the anomaly pass returns
  annotated copies made with dataclasses.replace.

- AnomalyDetail / AnomalyDetails: why a transaction was flagged.

- MerchantGroup, FrequencyAnalysis, ConfidenceResult: intermediate results of
  the recurring pass. Rebuilt on every run.

- RecurringPayment: output of the recurring pass. Regenerated each run;
  callers reconcile across runs by merchant name, not id.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Any, Iterable, Mapping, Optional

from core.values import to_amount


UNCATEGORIZED = "uncategorized"


# -----------------------------------------------------------------------------
# Enums
# -----------------------------------------------------------------------------

class TransactionType(str, Enum):
    """Direction of money flow from the account's point of view."""
    CREDIT = "credit"
    DEBIT = "debit"


class CategoryType(str, Enum):
    """Economic type of a category for aggregation purposes."""
    INCOME = "income"
    EXPENSE = "expense"
    EXCLUDED = "excluded"    # Transfers, investments: neither income nor spend


class AnomalyType(str, Enum):
    HIGH_AMOUNT = "high_amount"
    LOW_AMOUNT = "low_amount"
    DUPLICATE = "duplicate"
    UNUSUAL_FREQUENCY = "unusual_frequency"


class FrequencyPeriod(str, Enum):
    TWENTY_FOUR_HOURS = "24h"
    SEVEN_DAYS = "7d"


class Frequency(str, Enum):
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"


class RecurringStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


ANOMALY_LABELS: dict[AnomalyType, str] = {
    AnomalyType.HIGH_AMOUNT: "unusually high amount",
    AnomalyType.LOW_AMOUNT: "unusually low amount",
    AnomalyType.DUPLICATE: "potential duplicate",
    AnomalyType.UNUSUAL_FREQUENCY: "unusual frequency",
}


# -----------------------------------------------------------------------------
# Categories
# -----------------------------------------------------------------------------

@dataclass(frozen=True)
class Category:
    id: str
    name: str
    type: CategoryType


@dataclass(frozen=True)
class CategoryRegistry:
    """
    Immutable id -> Category lookup.

    Built from configuration and handed to whoever turns raw records into
    transactions. Unknown ids resolve to the default category.
    """

    categories: Mapping[str, Category]
    default_id: str

    @classmethod
    def from_categories(cls, categories: Iterable[Category], default_id: str) -> "CategoryRegistry":
        index = {c.id: c for c in categories}
        if default_id not in index:
            raise KeyError(
                f"Default category '{default_id}' is not registered. "
                f"Available: {sorted(index)}"
            )
        return cls(categories=MappingProxyType(index), default_id=default_id)

    @property
    def default(self) -> Category:
        return self.categories[self.default_id]

    def get(self, category_id: str | None) -> Category:
        if category_id is None:
            return self.default
        return self.categories.get(str(category_id), self.default)

    def __len__(self) -> int:
        return len(self.categories)


# -----------------------------------------------------------------------------
# Anomaly findings
# -----------------------------------------------------------------------------

@dataclass(frozen=True)
class AnomalyDetail:
    """
    One structured reason a transaction was flagged.

    Use the for_* constructors: each kind of finding only carries its own
    fields.
    """

    type: AnomalyType
    amount_deviation: Optional[float] = None      # z-score, amount findings only
    duplicate_of: Optional[str] = None            # transaction id, duplicate findings only
    frequency_count: Optional[int] = None
    frequency_period: Optional[FrequencyPeriod] = None

    @classmethod
    def for_amount(cls, anomaly_type: AnomalyType, deviation: float) -> "AnomalyDetail":
        if anomaly_type not in (AnomalyType.HIGH_AMOUNT, AnomalyType.LOW_AMOUNT):
            raise ValueError(f"Not an amount anomaly: {anomaly_type}")
        return cls(type=anomaly_type, amount_deviation=deviation)

    @classmethod
    def for_duplicate(cls, duplicate_of: str) -> "AnomalyDetail":
        return cls(type=AnomalyType.DUPLICATE, duplicate_of=duplicate_of)

    @classmethod
    def for_frequency(cls, count: int, period: FrequencyPeriod) -> "AnomalyDetail":
        return cls(
            type=AnomalyType.UNUSUAL_FREQUENCY,
            frequency_count=count,
            frequency_period=period,
        )


@dataclass(frozen=True)
class AnomalyDetails:
    """Details merged across every finding on one transaction."""

    amount_deviation: Optional[float] = None
    duplicate_of: Optional[str] = None
    frequency_count: Optional[int] = None
    frequency_period: Optional[FrequencyPeriod] = None

    @classmethod
    def merge(cls, findings: Iterable[AnomalyDetail]) -> "AnomalyDetails":
        values: dict[str, Any] = {}
        for f in findings:
            if f.amount_deviation is not None:
                values["amount_deviation"] = f.amount_deviation
            if f.duplicate_of is not None:
                values["duplicate_of"] = f.duplicate_of
            if f.frequency_count is not None:
                values["frequency_count"] = f.frequency_count
                values["frequency_period"] = f.frequency_period
        return cls(**values)


@dataclass(frozen=True)
class AnomalySummary:
    """Review-queue view of a transaction list: non-dismissed anomalies only."""

    count: int
    type_counts: dict[AnomalyType, int] = field(default_factory=dict)


# -----------------------------------------------------------------------------
# Transaction
# -----------------------------------------------------------------------------

def _blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, float):
        return value != value
    return isinstance(value, str) and not value.strip()


_TRUE_STRINGS = {"true", "1", "yes", "y"}


def _flag(value: Any) -> bool:
    """Reads a boolean flag that may arrive as text (CSV, JSON)."""
    if _blank(value):
        return False
    if isinstance(value, str):
        return value.strip().lower() in _TRUE_STRINGS
    return bool(value)


@dataclass(frozen=True)
class Transaction:
    """
    A caller-owned transaction.

    amount is the absolute value; direction comes from type. date and amount
    are kept as supplied: checks that cannot resolve them skip the transaction.
    """

    id: str
    date: Any
    description: str
    amount: Any
    type: TransactionType
    category: Optional[Category] = None
    merchant: Optional[str] = None

    # Annotations written by the anomaly pass
    is_anomaly: Optional[bool] = None
    anomaly_types: tuple[AnomalyType, ...] = ()
    anomaly_details: Optional[AnomalyDetails] = None
    anomaly_dismissed: bool = False

    @property
    def is_credit(self) -> bool:
        return self.type is TransactionType.CREDIT

    @property
    def is_debit(self) -> bool:
        return self.type is TransactionType.DEBIT

    @property
    def category_type(self) -> Optional[CategoryType]:
        return self.category.type if self.category is not None else None

    @property
    def is_income(self) -> bool:
        return self.category_type is CategoryType.INCOME

    @property
    def is_expense(self) -> bool:
        return self.category_type is CategoryType.EXPENSE

    @property
    def is_excluded(self) -> bool:
        return self.category_type is CategoryType.EXCLUDED

    @property
    def category_id(self) -> str:
        return self.category.id if self.category is not None else UNCATEGORIZED

    @property
    def signed_amount(self) -> Optional[float]:
        """Negative for debits. None when the amount cannot be resolved."""
        amount = to_amount(self.amount)
        if amount is None:
            return None
        return -abs(amount) if self.is_debit else abs(amount)

    @property
    def merchant_or_description(self) -> str:
        return self.merchant or self.description or ""

    @classmethod
    def from_record(cls, record: Mapping[str, Any], registry: CategoryRegistry) -> "Transaction":
        """
        Builds a Transaction from a plain mapping (CSV row, JSON object).

        A signed amount is accepted: when "type" is missing, negative amounts
        are read as debits. The stored amount is always absolute.

        Raises:
            KeyError: If the record has no "id".
        """
        raw_amount = record.get("amount")
        amount = to_amount(raw_amount)

        raw_type = record.get("type")
        if not _blank(raw_type) and str(raw_type).lower() in {t.value for t in TransactionType}:
            txn_type = TransactionType(str(raw_type).lower())
        elif amount is not None and amount > 0:
            txn_type = TransactionType.CREDIT
        else:
            txn_type = TransactionType.DEBIT

        raw_category = record.get("category")
        merchant = record.get("merchant")
        description = record.get("description")
        dismissed = record.get("anomaly_dismissed")

        return cls(
            id=str(record["id"]),
            date=record.get("date"),
            description="" if _blank(description) else str(description),
            amount=abs(amount) if amount is not None else raw_amount,
            type=txn_type,
            category=registry.get(None if _blank(raw_category) else raw_category),
            merchant=None if _blank(merchant) else str(merchant),
            anomaly_dismissed=_flag(dismissed),
        )


# -----------------------------------------------------------------------------
# Recurring pass
# -----------------------------------------------------------------------------

@dataclass(frozen=True)
class CategoryStats:
    count: int
    mean: float
    std_dev: float


@dataclass
class MerchantGroup:
    normalized_name: str
    original_names: list[str] = field(default_factory=list)
    transactions: list[Transaction] = field(default_factory=list)


@dataclass(frozen=True)
class FrequencyAnalysis:
    frequency: Optional[Frequency]
    interval_variance: float         # interval std-dev / expected interval
    avg_interval: float


@dataclass(frozen=True)
class ConfidenceResult:
    score: float
    amount_variance: float           # amount std-dev / mean amount
    interval_variance: float
    occurrence_bonus: float


@dataclass(frozen=True)
class RecurringPayment:
    """
    One detected subscription or periodic charge.

    Produced by RecurringPaymentDetector for each merchant group that passes
    the occurrence, frequency and confidence gates.
    """

    # Identity
    id: str
    merchant_name: str                       # Display spelling
    normalized_name: str                     # Group key, used for exclusions
    original_merchant_names: tuple[str, ...]
    category: str

    # Amounts
    latest_amount: float
    average_amount: float

    # Cadence
    frequency: Frequency
    confidence: float                        # 0.0 - 1.0

    # Timeline
    first_seen: datetime
    last_seen: datetime
    occurrence_count: int
    is_active: bool
    status: RecurringStatus
    next_expected_date: Optional[datetime] = None

    # Evidence
    transaction_ids: tuple[str, ...] = ()


@dataclass(frozen=True)
class ExcludedMerchant:
    """A user's "not recurring" decision. Applied as a post-filter on every scan."""

    normalized_name: str
    excluded_at: datetime
