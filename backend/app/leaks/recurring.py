"""
Recurring charge detection.

Groups a flat transaction list by normalized merchant, measures the gaps between successive
charges and keeps only groups whose mean gap lands inside one of a fixed set of cadence bands.

This module must be PURE: no IO, no clock, no global state.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .types import Frequency, RecurringSeries, Transaction, normalize_merchant

MIN_CHARGES = 3

# Inclusive day-count bands; checked in order, first match wins.
INTERVAL_BANDS: Tuple[Tuple[Frequency, float, float], ...] = (
    ("weekly", 6, 9),
    ("bi-weekly", 13, 16),
    ("monthly", 28, 32),
    ("quarterly", 88, 92),
    ("annual", 363, 367),
)


def group_by_merchant(transactions: Iterable[Transaction]) -> Dict[str, List[Transaction]]:
    groups: Dict[str, List[Transaction]] = {}
    for txn in transactions:
        groups.setdefault(normalize_merchant(txn.merchant_name), []).append(txn)
    return groups


def interval_days(ordered: Sequence[Transaction]) -> List[int]:
    """Whole-day gaps between successive charges of an already date-sorted group."""
    return [(later.date - earlier.date).days for earlier, later in zip(ordered, ordered[1:])]


def classify_interval(
    avg_interval: float,
    bands: Sequence[Tuple[Frequency, float, float]] = INTERVAL_BANDS,
) -> Optional[Frequency]:
    for frequency, low, high in bands:
        if low <= avg_interval <= high:
            return frequency
    return None


def _series_for_group(
    merchant: str,
    txns: List[Transaction],
    bands: Sequence[Tuple[Frequency, float, float]],
) -> Optional[RecurringSeries]:
    ordered = sorted(txns, key=lambda t: t.date)
    gaps = interval_days(ordered)
    avg_interval = sum(gaps) / len(gaps)

    # no rounding to the nearest band: an off-cadence group is simply not recurring
    frequency = classify_interval(avg_interval, bands)
    if frequency is None:
        return None

    total = sum((t.amount for t in ordered), Decimal("0"))
    return RecurringSeries(
        merchant=merchant,
        transactions=tuple(ordered),
        frequency=frequency,
        average_amount=total / len(ordered),
    )


def detect_recurring_charges(
    transactions: Iterable[Transaction],
    *,
    min_charges: int = MIN_CHARGES,
    bands: Sequence[Tuple[Frequency, float, float]] = INTERVAL_BANDS,
) -> List[RecurringSeries]:
    """
    Find recurring series in one audit's transactions.

    Groups with fewer than `min_charges` members are dropped before any interval math; values
    below MIN_CHARGES are raised to it, since two charges are never evidence of recurrence. Output
    is ordered by merchant key so repeated runs over the same input compare equal.
    """
    min_charges = max(min_charges, MIN_CHARGES)
    recurring: List[RecurringSeries] = []
    groups = group_by_merchant(transactions)
    for merchant in sorted(groups):
        txns = groups[merchant]
        if len(txns) < min_charges:
            continue
        series = _series_for_group(merchant, txns, bands)
        if series is not None:
            recurring.append(series)
    return recurring
