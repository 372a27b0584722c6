from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


AI_LEAK_TYPES = ("zombie", "duplicate", "free_alternative", "unused")


class AILeakItem(BaseModel):
    """
    One leak as returned by the AI classifier.

    Model output is untrusted: unknown fields are ignored, confidence is clamped into [0, 1],
    negative costs are rejected and a missing monthly/annual figure is derived from the other.
    """
    model_config = ConfigDict(extra="ignore")

    merchant_name: str = Field(..., min_length=1)
    leak_type: str
    monthly_cost: Optional[Decimal] = None
    annual_cost: Optional[Decimal] = None
    description: str = ""
    recommendation: str = ""
    confidence_score: Decimal = Decimal("0.5")

    @field_validator("leak_type")
    @classmethod
    def _known_leak_type(cls, value: str) -> str:
        normalized = (value or "").strip().lower()
        if normalized not in AI_LEAK_TYPES:
            raise ValueError(f"unsupported leak_type {value!r}")
        return normalized

    @field_validator("monthly_cost", "annual_cost")
    @classmethod
    def _non_negative(cls, value: Optional[Decimal]) -> Optional[Decimal]:
        if value is not None and value < 0:
            raise ValueError("costs must be non-negative")
        return value

    @field_validator("confidence_score")
    @classmethod
    def _clamp_confidence(cls, value: Decimal) -> Decimal:
        return min(max(value, Decimal("0")), Decimal("1"))

    @model_validator(mode="after")
    def _fill_costs(self) -> "AILeakItem":
        if self.monthly_cost is None and self.annual_cost is None:
            raise ValueError("monthly_cost or annual_cost is required")
        if self.annual_cost is None:
            self.annual_cost = self.monthly_cost * 12
        if self.monthly_cost is None:
            self.monthly_cost = self.annual_cost / 12
        return self


class TransactionContract(BaseModel):
    id: str
    audit_id: str
    transaction_id: str
    date: date
    amount: Decimal
    merchant_name: str
    category: List[str] = Field(default_factory=list)
    is_recurring: bool = False
    recurring_frequency: Optional[str] = None


class LeakContract(BaseModel):
    id: Optional[str] = None
    audit_id: str
    leak_type: str
    merchant_name: str
    monthly_cost: Decimal
    annual_cost: Decimal
    last_charge_date: Optional[date] = None
    description: str
    recommendation: str
    confidence_score: Optional[Decimal] = None
    evidence: Optional[Dict[str, Any]] = None


class AuditContract(BaseModel):
    id: str
    email: str
    company_name: Optional[str] = None
    status: str
    total_waste_found: Optional[Decimal] = None
    report_url: Optional[str] = None
    created_at: datetime
    completed_at: Optional[datetime] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class AuditSummaryContract(BaseModel):
    audit_id: str
    status: str
    transaction_count: int
    recurring_transaction_count: int
    leak_count: int
    leaks_by_type: Dict[str, int]
    total_monthly_waste: Decimal
    total_annual_waste: Decimal


class TransactionPageContract(BaseModel):
    data: List[TransactionContract]
    page: int
    page_size: int
    total_count: int
    total_pages: int
