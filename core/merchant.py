"""
merchant.py
------------
Merchant identity: canonical names, matching, and grouping.

Grouping key is the normalized merchant (or description when no merchant is
set). A transaction joins the FIRST existing group whose key matches, so the
result depends on input order; the same list in the same order always yields
the same groups.
"""

import logging
import re
from typing import Iterable, List

from core.models import MerchantGroup, Transaction

logger = logging.getLogger(__name__)


# Removed from the end of a name, repeatedly. Multi-word entries come first.
MERCHANT_SUFFIXES = [
    "pvt ltd", "private limited", "ltd", "limited", "inc", "incorporated",
    "corp", "corporation", "co", "company", "llc", "llp", "gmbh",
    "subscription", "payment", "charge", "billing", "auto", "recurring",
]

# First words that never identify a merchant on their own.
COMMON_WORDS = {"the", "and", "for", "inc", "ltd"}

_NON_ALNUM_RE = re.compile(r"[^a-z0-9\s]")
_WHITESPACE_RE = re.compile(r"\s+")
_PREFIX_RE = re.compile(
    r"^(?:bill\s+payment(?:\s+to)?|payment(?:\s+(?:to|for))?|purchase(?:\s+(?:at|from))?|sub)\s+"
)
_SUFFIX_RE = re.compile(
    r"\s+(?:" + "|".join(re.escape(s) for s in MERCHANT_SUFFIXES) + r")$"
)

# Card-network style codes in front of the merchant: "AMZN *", "SQ *", "GOOG "
_CODE_PREFIX_RE = re.compile(r"^[a-z]{2,4}\s*\*?\s*", re.IGNORECASE)
_LEADING_DIGITS_RE = re.compile(r"^\d+\s+")


def normalize_merchant_name(name: str | None) -> str:
    """
    Canonicalize a merchant name or description for grouping.

    Lowercases, turns punctuation into spaces, drops leading payment phrasing
    ("payment to", "purchase at", "sub ") and trailing legal or billing words
    ("ltd", "inc", "subscription", ...). Never fails; empty input gives "".

    Idempotent: normalizing an already normalized name returns it unchanged.
    """
    if not name:
        return ""

    normalized = _NON_ALNUM_RE.sub(" ", str(name).lower())
    normalized = _WHITESPACE_RE.sub(" ", normalized).strip()

    stripped = _PREFIX_RE.sub("", normalized, count=1)
    while stripped != normalized:
        normalized = stripped
        stripped = _PREFIX_RE.sub("", normalized, count=1)

    stripped = _SUFFIX_RE.sub("", normalized)
    while stripped != normalized:
        normalized = stripped
        stripped = _SUFFIX_RE.sub("", normalized)

    return normalized.strip()


def merchants_match(name1: str | None, name2: str | None) -> bool:
    """
    Whether two names likely refer to the same merchant.

    True on exact match after normalization, when one contains the other
    ("netflix com" / "netflix"), or when the first significant word agrees.
    """
    norm1 = normalize_merchant_name(name1)
    norm2 = normalize_merchant_name(name2)

    if not norm1 or not norm2:
        return False

    if norm1 == norm2:
        return True

    if norm1 in norm2 or norm2 in norm1:
        return True

    words1 = [w for w in norm1.split(" ") if len(w) > 2]
    words2 = [w for w in norm2.split(" ") if len(w) > 2]
    if words1 and words2 and words1[0] == words2[0]:
        return words1[0] not in COMMON_WORDS

    return False


def extract_merchant_key(description: str | None) -> str:
    """
    Simplified merchant key used by the frequency check.

    Strips a leading 2-4 letter code and any leading store number, then keeps
    the first three words.
    """
    if not description:
        return ""
    text = _CODE_PREFIX_RE.sub("", description, count=1)
    text = _LEADING_DIGITS_RE.sub("", text, count=1)
    return " ".join(text.split()[:3]).lower()


def choose_display_name(original_names: Iterable[str]) -> str:
    """Shortest spelling longer than 3 characters, else the shortest one."""
    names = list(original_names)
    if not names:
        return "Unknown Merchant"
    if len(names) == 1:
        return names[0]

    by_length = sorted(names, key=len)
    return next((n for n in by_length if len(n) > 3), by_length[0])


def group_transactions_by_merchant(transactions: Iterable[Transaction]) -> List[MerchantGroup]:
    """
    Cluster expense transactions by merchant identity, in input order.

    Transactions whose name normalizes to "" are left out.
    """
    groups: dict[str, MerchantGroup] = {}

    for txn in transactions:
        if not txn.is_expense:
            continue

        merchant_name = txn.merchant_or_description
        normalized = normalize_merchant_name(merchant_name)
        if not normalized:
            continue

        matched_key = next((key for key in groups if merchants_match(normalized, key)), None)

        if matched_key is None:
            groups[normalized] = MerchantGroup(
                normalized_name=normalized,
                original_names=[merchant_name],
                transactions=[txn],
            )
            continue

        group = groups[matched_key]
        group.transactions.append(txn)
        if merchant_name not in group.original_names:
            group.original_names.append(merchant_name)

    logger.debug(f"Grouped transactions into {len(groups)} merchant groups.")
    return list(groups.values())
