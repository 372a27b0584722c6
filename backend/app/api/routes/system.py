from __future__ import annotations

from fastapi import APIRouter, Depends

from backend.app.api.deps import get_pipeline_context
from backend.app.context import PipelineContext

router = APIRouter(prefix="/system", tags=["system"])


@router.get("/breakers")
def get_breakers(ctx: PipelineContext = Depends(get_pipeline_context)):
    return {"breakers": ctx.breaker_snapshots()}


@router.get("/health")
def health():
    return {"ok": True}
