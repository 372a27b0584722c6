from __future__ import annotations

import asyncio
import math
from datetime import date, timedelta
from decimal import Decimal

import pytest
from fastapi import HTTPException

from backend.app.leaks.types import Transaction
from backend.app.models import Leak
from backend.app.resilience.cache import TTLCache
from backend.app.services import audit_service, transaction_service
from backend.app.services.query_service import AuditQueryService, summary_cache_key


def _seed(session_factory, *, transactions=23):
    with session_factory() as db:
        audit = audit_service.create_audit(db, email="cfo@example.com")
        rows = [
            transaction_service.to_row(
                audit.id,
                Transaction(
                    id=f"t{i}",
                    date=date(2024, 1, 1) + timedelta(days=i),
                    amount=Decimal("5.00"),
                    merchant_name=f"Vendor {i % 4}",
                ),
            )
            for i in range(transactions)
        ]
        audit_id = audit.id
    transaction_service.insert_rows(session_factory, rows)
    with session_factory() as db:
        db.add_all(
            [
                Leak(audit_id=audit_id, leak_type="zombie", merchant_name="asana", monthly_cost=Decimal("20.00"),
                     annual_cost=Decimal("240.00"), description="stale", recommendation="cancel"),
                Leak(audit_id=audit_id, leak_type="unused", merchant_name="datadog", monthly_cost=Decimal("450.00"),
                     annual_cost=Decimal("5400.00"), description="expensive", recommendation="downgrade"),
                Leak(audit_id=audit_id, leak_type="zombie", merchant_name="loom", monthly_cost=Decimal("10.00"),
                     annual_cost=Decimal("120.00"), description="stale", recommendation="cancel"),
            ]
        )
        db.commit()
    return audit_id


def test_summary_aggregates_and_is_cached(session_factory):
    audit_id = _seed(session_factory)
    cache = TTLCache()
    queries = AuditQueryService(session_factory, cache, summary_ttl=60)

    summary = asyncio.run(queries.get_audit_summary(audit_id))

    assert summary["transaction_count"] == 23
    assert summary["recurring_transaction_count"] == 0
    assert summary["leak_count"] == 3
    assert summary["leaks_by_type"] == {"zombie": 2, "unused": 1}
    assert summary["total_monthly_waste"] == Decimal("480.00")
    assert summary["total_annual_waste"] == Decimal("5760.00")
    assert summary_cache_key(audit_id) in cache

    # cached value is served even though the underlying rows changed
    with session_factory() as db:
        db.query(Leak).delete()
        db.commit()
    assert asyncio.run(queries.get_audit_summary(audit_id))["leak_count"] == 3

    queries.invalidate(audit_id)
    assert asyncio.run(queries.get_audit_summary(audit_id))["leak_count"] == 0


def test_details_reads_audit_leaks_and_first_transactions(session_factory):
    audit_id = _seed(session_factory, transactions=120)
    queries = AuditQueryService(session_factory, TTLCache())

    details = asyncio.run(queries.get_audit_details(audit_id))

    assert details["audit"]["id"] == audit_id
    assert [leak["merchant_name"] for leak in details["leaks"]] == ["datadog", "asana", "loom"]
    assert len(details["transactions"]) == 100
    assert details["transactions"][0]["date"] == date(2024, 1, 1) + timedelta(days=119)


@pytest.mark.parametrize("page_size", [1, 5, 7, 23, 50])
def test_pages_are_contiguous_and_non_overlapping(session_factory, page_size):
    audit_id = _seed(session_factory)
    queries = AuditQueryService(session_factory, TTLCache())

    first = asyncio.run(queries.get_paginated_transactions(audit_id, page=1, page_size=page_size))
    assert first["total_count"] == 23
    assert first["total_pages"] == math.ceil(23 / page_size)

    seen = []
    for page in range(1, first["total_pages"] + 1):
        result = asyncio.run(queries.get_paginated_transactions(audit_id, page=page, page_size=page_size))
        seen.extend(row["transaction_id"] for row in result["data"])

    assert len(seen) == len(set(seen)) == 23
    assert seen[0] == "t22"


def test_page_past_the_end_is_empty(session_factory):
    audit_id = _seed(session_factory)
    queries = AuditQueryService(session_factory, TTLCache())

    result = asyncio.run(queries.get_paginated_transactions(audit_id, page=9, page_size=10))

    assert result["data"] == []
    assert result["total_pages"] == 3


def test_invalid_paging_and_unknown_audit(session_factory):
    queries = AuditQueryService(session_factory, TTLCache())

    with pytest.raises(ValueError):
        asyncio.run(queries.get_paginated_transactions("any", page=0))
    with pytest.raises(HTTPException) as exc_info:
        asyncio.run(queries.get_audit_summary("missing"))
    assert exc_info.value.status_code == 404
