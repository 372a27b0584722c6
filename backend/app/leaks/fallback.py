"""
Rule-based leak classification used when the AI classifier is unavailable.

Three independent rules per series; any combination may fire for the same series:
  free_alternative : merchant matches well-known free software          (confidence 0.95)
  zombie           : last charge more than ZOMBIE_DAYS days ago          (confidence 0.75)
  unused           : monthly cost above HIGH_COST_MONTHLY                (confidence 0.60)
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Iterable, List, Optional, Sequence, Tuple

from .types import LeakFinding, RecurringSeries

FREE_TOOLS: Tuple[str, ...] = ("vscode", "winzip", "winrar", "vlc", "7-zip")
ZOMBIE_DAYS = 90
HIGH_COST_MONTHLY = Decimal("100")

_TWELVE = Decimal("12")


def monthly_cost(series: RecurringSeries) -> Decimal:
    if series.frequency == "monthly":
        return series.average_amount
    return series.average_amount / _TWELVE


def _evidence(series: RecurringSeries, rule: str) -> dict:
    return {
        "fallback_rule": rule,
        "ai_analysis": False,
        "frequency": series.frequency,
        "charge_count": series.charge_count,
        "transaction_ids": [txn.id for txn in series.transactions],
    }


def _leak(
    series: RecurringSeries,
    *,
    leak_type: str,
    monthly: Decimal,
    description: str,
    recommendation: str,
    confidence: str,
    rule: str,
) -> LeakFinding:
    return LeakFinding(
        audit_id=None,
        leak_type=leak_type,
        merchant_name=series.merchant,
        monthly_cost=monthly,
        annual_cost=monthly * _TWELVE,
        description=description,
        recommendation=recommendation,
        confidence_score=Decimal(confidence),
        last_charge_date=series.last_charge_date,
        evidence=_evidence(series, rule),
    )


def classify_series(
    series: RecurringSeries,
    *,
    today: date,
    free_tools: Sequence[str] = FREE_TOOLS,
) -> List[LeakFinding]:
    leaks: List[LeakFinding] = []
    merchant = series.merchant.lower()
    monthly = monthly_cost(series)

    if any(tool in merchant for tool in free_tools):
        leaks.append(
            _leak(
                series,
                leak_type="free_alternative",
                monthly=monthly,
                description="Paying for software that has a free alternative",
                recommendation="Cancel subscription and use free version",
                confidence="0.95",
                rule="free_tool_match",
            )
        )

    days_since_last = (today - series.last_charge_date).days
    if days_since_last > ZOMBIE_DAYS:
        leaks.append(
            _leak(
                series,
                leak_type="zombie",
                monthly=monthly,
                description=f"No charges in last {days_since_last} days - likely unused",
                recommendation="Review usage and consider canceling",
                confidence="0.75",
                rule="stale_last_charge",
            )
        )

    if monthly > HIGH_COST_MONTHLY:
        leaks.append(
            _leak(
                series,
                leak_type="unused",
                monthly=monthly,
                description=f"High-cost subscription (${monthly:.2f}/month) - verify active usage",
                recommendation="Review team usage and consider downgrading if underutilized",
                confidence="0.60",
                rule="high_monthly_cost",
            )
        )

    return leaks


def classify_fallback(
    series_list: Iterable[RecurringSeries],
    *,
    today: Optional[date] = None,
    audit_id: Optional[str] = None,
) -> List[LeakFinding]:
    """Pure, synchronous substitute for the AI classifier."""
    today = today or date.today()
    leaks: List[LeakFinding] = []
    for series in series_list:
        for leak in classify_series(series, today=today):
            leaks.append(leak.with_audit(audit_id) if audit_id else leak)
    return leaks
