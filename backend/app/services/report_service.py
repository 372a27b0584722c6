from __future__ import annotations

import asyncio
import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from backend.app.integrations.base import ReportSender
from backend.app.models import Leak
from backend.app.services.audit_service import mark_report_sent, require_audit

logger = logging.getLogger(__name__)


class LoggingReportSender:
    """Default report delivery: writes the report headline to the log instead of sending mail."""

    async def send_report(self, *, to: Optional[str], subject: str, report: Dict[str, Any]) -> None:
        logger.info("Report for %s: %s (%d leaks)", to, subject, len(report.get("leaks", [])))


def _money(value: Optional[Decimal]) -> str:
    return f"{(value or Decimal('0')):,.2f}"


def build_report(db: Session, audit_id: str) -> Dict[str, Any]:
    audit = require_audit(db, audit_id)
    leaks: List[Leak] = list(
        db.execute(
            select(Leak).where(Leak.audit_id == audit_id).order_by(Leak.annual_cost.desc(), Leak.merchant_name.asc())
        ).scalars()
    )
    total = audit.total_waste_found or sum((leak.annual_cost for leak in leaks), Decimal("0"))
    return {
        "audit_id": audit.id,
        "to": audit.email,
        "subject": f"Your SaaS Leak Report: ${_money(total)} Found",
        "company_name": audit.company_name,
        "total_waste_found": total,
        "leaks": [
            {
                "merchant_name": leak.merchant_name,
                "leak_type": leak.leak_type,
                "monthly_cost": leak.monthly_cost,
                "annual_cost": leak.annual_cost,
                "description": leak.description,
                "recommendation": leak.recommendation,
            }
            for leak in leaks
        ],
    }


async def send_audit_report(session_factory: sessionmaker, audit_id: str, sender: ReportSender) -> Dict[str, Any]:
    """Build the report for a completed audit, hand it to the sender and record delivery."""
    def _build() -> Dict[str, Any]:
        with session_factory() as db:
            return build_report(db, audit_id)

    def _record_sent() -> None:
        with session_factory() as db:
            mark_report_sent(db, audit_id)

    report = await asyncio.to_thread(_build)
    await sender.send_report(to=report["to"], subject=report["subject"], report=report)
    await asyncio.to_thread(_record_sent)
    logger.info("Report sent for audit %s", audit_id)
    return report
