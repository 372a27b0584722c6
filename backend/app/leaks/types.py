"""
Leaks - core record types.

Responsibility:
- Define the immutable records passed between detection and classification.

Design notes:
- Amounts are Decimal magnitudes; sign/direction is resolved before a Transaction is built.
- RecurringSeries is produced fresh per detection run and never persisted on its own.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date
from decimal import Decimal
from typing import Any, Dict, Literal, Optional, Tuple, Union

Frequency = Literal["weekly", "bi-weekly", "monthly", "quarterly", "annual"]
LeakType = Literal["zombie", "duplicate", "free_alternative", "unused"]

Number = Union[int, float, str, Decimal]


def to_decimal(value: Number) -> Decimal:
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(repr(value))
    return Decimal(str(value).strip())


def normalize_merchant(name: Optional[str]) -> str:
    """Identity key for grouping: lowercase, surrounding whitespace trimmed. Nothing fuzzier."""
    return (name or "").lower().strip()


@dataclass(frozen=True)
class Transaction:
    id: str
    date: date
    amount: Decimal
    merchant_name: str
    categories: Tuple[str, ...] = ()

    def __post_init__(self) -> None:
        amount = to_decimal(self.amount)
        if amount < 0:
            raise ValueError(f"transaction {self.id} has a negative amount; pass magnitudes")
        object.__setattr__(self, "amount", amount)
        object.__setattr__(self, "categories", tuple(self.categories or ()))


@dataclass(frozen=True)
class RecurringSeries:
    merchant: str                         # normalized merchant key
    transactions: Tuple[Transaction, ...]  # ascending by date
    frequency: Frequency
    average_amount: Decimal

    @property
    def charge_count(self) -> int:
        return len(self.transactions)

    @property
    def last_charge_date(self) -> date:
        return self.transactions[-1].date

    def to_prompt_dict(self) -> Dict[str, Any]:
        return {
            "merchant": self.merchant,
            "frequency": self.frequency,
            "avg_amount": str(self.average_amount.quantize(Decimal("0.01"))),
            "last_charge": self.last_charge_date.isoformat(),
            "charge_count": self.charge_count,
            "transactions": [
                {"date": txn.date.isoformat(), "amount": str(txn.amount), "merchant_name": txn.merchant_name}
                for txn in self.transactions
            ],
        }


@dataclass(frozen=True)
class LeakFinding:
    """A classified leak, ready to persist. Created by the AI or fallback classifier only."""
    audit_id: Optional[str]
    leak_type: str
    merchant_name: str
    monthly_cost: Decimal
    annual_cost: Decimal
    description: str
    recommendation: str
    confidence_score: Decimal
    last_charge_date: Optional[date] = None
    evidence: Dict[str, Any] = field(default_factory=dict)

    def with_audit(self, audit_id: str) -> "LeakFinding":
        return replace(self, audit_id=audit_id, evidence=dict(self.evidence))
