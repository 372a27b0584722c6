"""
Audit pipeline stages.

fetch_transactions -> detect_leaks -> report

Each stage is a plain coroutine over a PipelineContext. A stage that fails hands the error to
the ErrorHandler, records the failure and recovery action on the audit, and re-raises so the
caller (HTTP route or job runner) sees it. Report delivery is the exception: it is retried and
then only logged, because the leaks are already stored by the time it runs.
"""
from __future__ import annotations

import asyncio
import logging
from datetime import timedelta
from decimal import Decimal
from typing import Any, Dict, List, Sequence, Tuple

from fastapi import HTTPException
from sqlalchemy import delete

from backend.app.context import PipelineContext
from backend.app.leaks.csv_upload import parse_transaction_csv
from backend.app.leaks.fallback import classify_fallback
from backend.app.leaks.recurring import detect_recurring_charges
from backend.app.leaks.types import LeakFinding, RecurringSeries, Transaction
from backend.app.models import Leak
from backend.app.resilience.errors import NoTransactionsError
from backend.app.resilience.retry import retry_async
from backend.app.resilience.timing import measure_async
from backend.app.services import audit_service, transaction_service
from backend.app.services.query_service import summary_cache_key
from backend.app.services.report_service import send_audit_report

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")


def bank_cache_key(access_token: str, start: Any, end: Any) -> str:
    return f"plaid_tx_{access_token}_{start.isoformat()}_{end.isoformat()}"


async def _fail(ctx: PipelineContext, audit_id: str, exc: BaseException, stage: str) -> None:
    recovery = await ctx.error_handler.handle(exc, {"audit_id": audit_id, "stage": stage})

    def _mark() -> None:
        with ctx.session_factory() as db:
            audit_service.mark_failed(db, audit_id, exc, recovery, stage=stage)

    await asyncio.to_thread(_mark)
    ctx.cache.delete(summary_cache_key(audit_id))


# -------------------------
# Stage: fetch transactions
# -------------------------

def _begin_fetch(ctx: PipelineContext, audit_id: str) -> str:
    with ctx.session_factory() as db:
        audit = audit_service.require_audit(db, audit_id)
        if not audit.plaid_access_token:
            raise HTTPException(400, "No access token found")
        audit_service.mark_status(db, audit_id, "analyzing")
        return audit.plaid_access_token


async def _fetch_from_bank(ctx: PipelineContext, access_token: str) -> List[Transaction]:
    end = ctx.today()
    start = end - timedelta(days=ctx.settings.lookback_days)
    breaker = ctx.breaker("plaid")

    async def fetch() -> List[Transaction]:
        return await measure_async(
            "plaid_fetch_transactions",
            lambda: ctx.bank.fetch_transactions(access_token, start, end),
            slow_after=ctx.settings.slow_operation_seconds,
        )

    async def attempt() -> List[Transaction]:
        return await breaker.execute(
            lambda: ctx.cache.get_or_set(
                bank_cache_key(access_token, start, end),
                fetch,
                ctx.settings.bank_fetch_cache_ttl,
            )
        )

    return await retry_async(attempt, settings=ctx.settings.retry, sleep=ctx.sleep, label="plaid fetch")


async def fetch_transactions(ctx: PipelineContext, audit_id: str) -> Dict[str, Any]:
    access_token = await asyncio.to_thread(_begin_fetch, ctx, audit_id)

    try:
        transactions = await _fetch_from_bank(ctx, access_token)
        stored = await transaction_service.store_transactions(
            ctx.session_factory, ctx.transaction_batcher, audit_id, transactions
        )
    except Exception as exc:
        await _fail(ctx, audit_id, exc, "fetch_transactions")
        raise

    logger.info("Audit %s: fetched %d transactions, stored %d new", audit_id, len(transactions), stored)
    return {"success": True, "transaction_count": len(transactions), "stored_count": stored}


# -------------------------
# Stage: detect leaks
# -------------------------

def _load_for_detection(ctx: PipelineContext, audit_id: str) -> List[Transaction]:
    with ctx.session_factory() as db:
        audit_service.require_audit(db, audit_id)
        return transaction_service.load_transactions(db, audit_id)


async def _classify(
    ctx: PipelineContext,
    series: Sequence[RecurringSeries],
    audit_id: str,
) -> Tuple[List[LeakFinding], str]:
    classifier = ctx.ai_classifier
    if classifier is not None and await asyncio.to_thread(lambda: classifier.available):
        return await classifier.classify(series, audit_id), "ai"
    return classify_fallback(series, today=ctx.today(), audit_id=audit_id), "fallback"


def _store_results(
    ctx: PipelineContext,
    audit_id: str,
    series: Sequence[RecurringSeries],
    leaks: Sequence[LeakFinding],
    source: str,
) -> Decimal:
    total = sum((leak.annual_cost.quantize(CENTS) for leak in leaks), Decimal("0"))
    with ctx.session_factory() as db:
        transaction_service.mark_recurring(db, audit_id, series)
        # re-running detection replaces the previous findings
        db.execute(delete(Leak).where(Leak.audit_id == audit_id))
        db.add_all(
            Leak(
                audit_id=audit_id,
                leak_type=leak.leak_type,
                merchant_name=leak.merchant_name,
                monthly_cost=leak.monthly_cost.quantize(CENTS),
                annual_cost=leak.annual_cost.quantize(CENTS),
                last_charge_date=leak.last_charge_date,
                description=leak.description,
                recommendation=leak.recommendation,
                confidence_score=leak.confidence_score.quantize(CENTS),
                evidence=leak.evidence,
            )
            for leak in leaks
        )
        db.flush()
        audit_service.mark_completed(
            db,
            audit_id,
            total,
            classification_source=source,
            recurring_series=len(series),
        )
    return total


async def trigger_report(ctx: PipelineContext, audit_id: str) -> bool:
    """Send the audit report, retrying transient failures. Never raises."""
    try:
        await retry_async(
            lambda: send_audit_report(ctx.session_factory, audit_id, ctx.report_sender),
            settings=ctx.settings.retry,
            sleep=ctx.sleep,
            label="report delivery",
        )
    except Exception as exc:
        logger.error("Report generation failed for audit %s: %s", audit_id, exc)
        return False
    return True


async def detect_leaks(ctx: PipelineContext, audit_id: str) -> Dict[str, Any]:
    transactions = await asyncio.to_thread(_load_for_detection, ctx, audit_id)

    try:
        if not transactions:
            raise NoTransactionsError(audit_id)

        series = detect_recurring_charges(transactions)
        logger.info("Audit %s: %d recurring series in %d transactions", audit_id, len(series), len(transactions))

        leaks, source = await _classify(ctx, series, audit_id)
        total = await asyncio.to_thread(_store_results, ctx, audit_id, series, leaks, source)
    except Exception as exc:
        await _fail(ctx, audit_id, exc, "detect_leaks")
        raise

    ctx.cache.delete(summary_cache_key(audit_id))
    report_sent = await trigger_report(ctx, audit_id)

    return {
        "success": True,
        "leaks_found": len(leaks),
        "total_waste": total,
        "recurring_series": len(series),
        "classification_source": source,
        "report_sent": report_sent,
    }


# -------------------------
# Manual upload and full run
# -------------------------

async def ingest_csv(ctx: PipelineContext, audit_id: str, text: str) -> Dict[str, Any]:
    """Store transactions from an uploaded CSV export, then run leak detection on them."""
    def _begin() -> None:
        with ctx.session_factory() as db:
            audit_service.mark_status(db, audit_id, "analyzing", ingest_source="manual_upload")

    try:
        transactions = parse_transaction_csv(text)
    except ValueError as exc:
        raise HTTPException(400, f"invalid csv: {exc}") from exc

    await asyncio.to_thread(_begin)
    try:
        stored = await transaction_service.store_transactions(
            ctx.session_factory, ctx.transaction_batcher, audit_id, transactions
        )
    except Exception as exc:
        await _fail(ctx, audit_id, exc, "ingest_csv")
        raise

    result = await detect_leaks(ctx, audit_id)
    result["transaction_count"] = len(transactions)
    result["stored_count"] = stored
    return result


async def run_audit(ctx: PipelineContext, audit_id: str) -> Dict[str, Any]:
    fetched = await fetch_transactions(ctx, audit_id)
    detected = await detect_leaks(ctx, audit_id)
    return {**detected, "transaction_count": fetched["transaction_count"]}
