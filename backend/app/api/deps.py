# backend/app/api/deps.py
from __future__ import annotations

from backend.app.context import PipelineContext, get_default_context


def get_pipeline_context() -> PipelineContext:
    """
    Pipeline context dependency.

    Routes never build breakers, caches or providers themselves; tests swap the whole context
    with app.dependency_overrides[get_pipeline_context].
    """
    return get_default_context()
