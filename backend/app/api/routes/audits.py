from __future__ import annotations

import logging
from typing import Any, Awaitable, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from backend.app.api.deps import get_pipeline_context
from backend.app.context import PipelineContext
from backend.app.domain.contracts import AuditContract, AuditSummaryContract, TransactionPageContract
from backend.app.resilience.errors import classify_error, recovery_for
from backend.app.services import audit_service, pipeline_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/audits", tags=["audits"])


class AuditCreateIn(BaseModel):
    email: str = Field(..., min_length=3)
    company_name: Optional[str] = None
    plaid_access_token: Optional[str] = None
    plaid_item_id: Optional[str] = None


async def _run_stage(stage: Awaitable[Dict[str, Any]]) -> Any:
    try:
        return await stage
    except HTTPException:
        raise
    except Exception as exc:
        logger.warning("Pipeline stage failed: %s", exc)
        recovery = recovery_for(exc)
        return JSONResponse(
            status_code=500,
            content=jsonable_encoder(
                {
                    "success": False,
                    "error": str(exc),
                    "kind": classify_error(exc).value,
                    "recovery": recovery.as_dict(),
                }
            ),
        )


@router.post("", response_model=AuditContract)
def create_audit(req: AuditCreateIn, ctx: PipelineContext = Depends(get_pipeline_context)):
    with ctx.session_factory() as db:
        audit = audit_service.create_audit(
            db,
            email=req.email,
            company_name=req.company_name,
            plaid_access_token=req.plaid_access_token,
            plaid_item_id=req.plaid_item_id,
        )
        return audit_service.serialize_audit(audit)


@router.get("/{audit_id}", response_model=AuditContract)
def get_audit(audit_id: str, ctx: PipelineContext = Depends(get_pipeline_context)):
    with ctx.session_factory() as db:
        return audit_service.serialize_audit(audit_service.require_audit(db, audit_id))


@router.post("/{audit_id}/fetch-transactions")
async def fetch_transactions(audit_id: str, ctx: PipelineContext = Depends(get_pipeline_context)):
    return await _run_stage(pipeline_service.fetch_transactions(ctx, audit_id))


@router.post("/{audit_id}/detect-leaks")
async def detect_leaks(audit_id: str, ctx: PipelineContext = Depends(get_pipeline_context)):
    return await _run_stage(pipeline_service.detect_leaks(ctx, audit_id))


@router.post("/{audit_id}/run")
async def run_audit(audit_id: str, ctx: PipelineContext = Depends(get_pipeline_context)):
    return await _run_stage(pipeline_service.run_audit(ctx, audit_id))


@router.post("/{audit_id}/upload-csv")
async def upload_csv(
    audit_id: str,
    request: Request,
    ctx: PipelineContext = Depends(get_pipeline_context),
):
    raw = await request.body()
    try:
        text = raw.decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        raise HTTPException(400, "csv must be utf-8 text") from exc
    return await _run_stage(pipeline_service.ingest_csv(ctx, audit_id, text))


@router.get("/{audit_id}/summary", response_model=AuditSummaryContract)
async def get_summary(audit_id: str, ctx: PipelineContext = Depends(get_pipeline_context)):
    return await ctx.queries.get_audit_summary(audit_id)


@router.get("/{audit_id}/details")
async def get_details(audit_id: str, ctx: PipelineContext = Depends(get_pipeline_context)):
    return await ctx.queries.get_audit_details(audit_id)


@router.get("/{audit_id}/transactions", response_model=TransactionPageContract)
async def list_transactions(
    audit_id: str,
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=500),
    ctx: PipelineContext = Depends(get_pipeline_context),
):
    return await ctx.queries.get_paginated_transactions(audit_id, page=page, page_size=page_size)
