from __future__ import annotations

import asyncio
import math
from collections import Counter
from decimal import Decimal
from typing import Any, Dict, List

from sqlalchemy import func, select
from sqlalchemy.orm import sessionmaker

from backend.app.models import Leak, TransactionRecord
from backend.app.resilience.cache import TTLCache
from backend.app.services.audit_service import require_audit, serialize_audit
from backend.app.services.transaction_service import serialize_transaction

DETAILS_TRANSACTION_LIMIT = 100


def summary_cache_key(audit_id: str) -> str:
    return f"audit_summary_{audit_id}"


def serialize_leak(leak: Leak) -> Dict[str, Any]:
    return {
        "id": leak.id,
        "audit_id": leak.audit_id,
        "leak_type": leak.leak_type,
        "merchant_name": leak.merchant_name,
        "monthly_cost": leak.monthly_cost,
        "annual_cost": leak.annual_cost,
        "last_charge_date": leak.last_charge_date,
        "description": leak.description,
        "recommendation": leak.recommendation,
        "confidence_score": leak.confidence_score,
        "evidence": leak.evidence,
    }


class AuditQueryService:
    """
    Read side of an audit: summary (cached), details and paginated transactions.

    Each read runs on a worker thread with its own session, so the independent reads behind
    `get_audit_details` run concurrently.
    """

    def __init__(self, session_factory: sessionmaker, cache: TTLCache, summary_ttl: float = 60):
        self.session_factory = session_factory
        self.cache = cache
        self.summary_ttl = summary_ttl

    def _summary(self, audit_id: str) -> Dict[str, Any]:
        with self.session_factory() as db:
            audit = require_audit(db, audit_id)
            transaction_count = db.execute(
                select(func.count(TransactionRecord.id)).where(TransactionRecord.audit_id == audit_id)
            ).scalar_one()
            recurring_count = db.execute(
                select(func.count(TransactionRecord.id)).where(
                    TransactionRecord.audit_id == audit_id,
                    TransactionRecord.is_recurring.is_(True),
                )
            ).scalar_one()
            leaks = list(db.execute(select(Leak).where(Leak.audit_id == audit_id)).scalars())

            return {
                "audit_id": audit.id,
                "status": audit.status,
                "transaction_count": int(transaction_count),
                "recurring_transaction_count": int(recurring_count),
                "leak_count": len(leaks),
                "leaks_by_type": dict(Counter(leak.leak_type for leak in leaks)),
                "total_monthly_waste": sum((leak.monthly_cost for leak in leaks), Decimal("0")),
                "total_annual_waste": sum((leak.annual_cost for leak in leaks), Decimal("0")),
            }

    async def get_audit_summary(self, audit_id: str) -> Dict[str, Any]:
        return await self.cache.get_or_set(
            summary_cache_key(audit_id),
            lambda: asyncio.to_thread(self._summary, audit_id),
            self.summary_ttl,
        )

    def invalidate(self, audit_id: str) -> None:
        self.cache.delete(summary_cache_key(audit_id))

    def _audit(self, audit_id: str) -> Dict[str, Any]:
        with self.session_factory() as db:
            return serialize_audit(require_audit(db, audit_id))

    def _leaks(self, audit_id: str) -> List[Dict[str, Any]]:
        with self.session_factory() as db:
            rows = db.execute(
                select(Leak).where(Leak.audit_id == audit_id).order_by(Leak.annual_cost.desc(), Leak.merchant_name.asc())
            ).scalars()
            return [serialize_leak(row) for row in rows]

    def _transactions(self, audit_id: str, offset: int, limit: int) -> List[Dict[str, Any]]:
        with self.session_factory() as db:
            rows = db.execute(
                select(TransactionRecord)
                .where(TransactionRecord.audit_id == audit_id)
                .order_by(TransactionRecord.date.desc(), TransactionRecord.id.asc())
                .offset(offset)
                .limit(limit)
            ).scalars()
            return [serialize_transaction(row) for row in rows]

    def _transaction_count(self, audit_id: str) -> int:
        with self.session_factory() as db:
            require_audit(db, audit_id)
            return int(
                db.execute(
                    select(func.count(TransactionRecord.id)).where(TransactionRecord.audit_id == audit_id)
                ).scalar_one()
            )

    async def get_audit_details(self, audit_id: str) -> Dict[str, Any]:
        audit, leaks, transactions = await asyncio.gather(
            asyncio.to_thread(self._audit, audit_id),
            asyncio.to_thread(self._leaks, audit_id),
            asyncio.to_thread(self._transactions, audit_id, 0, DETAILS_TRANSACTION_LIMIT),
        )
        return {"audit": audit, "leaks": leaks, "transactions": transactions}

    async def get_paginated_transactions(self, audit_id: str, page: int = 1, page_size: int = 50) -> Dict[str, Any]:
        if page < 1:
            raise ValueError("page must be at least 1")
        if page_size < 1:
            raise ValueError("page_size must be at least 1")

        offset = (page - 1) * page_size
        total_count, data = await asyncio.gather(
            asyncio.to_thread(self._transaction_count, audit_id),
            asyncio.to_thread(self._transactions, audit_id, offset, page_size),
        )
        return {
            "data": data,
            "page": page,
            "page_size": page_size,
            "total_count": total_count,
            "total_pages": math.ceil(total_count / page_size),
        }
