from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Awaitable, Callable, Dict, Optional, Union

from sqlalchemy.orm import sessionmaker

from backend.app.config import Settings, load_settings
from backend.app.db import SessionLocal
from backend.app.integrations import get_bank_provider
from backend.app.integrations.anthropic_ai import AnthropicCompletionProvider, anthropic_is_configured
from backend.app.integrations.base import BankDataProvider, CompletionProvider, ReportSender
from backend.app.leaks.ai_classifier import AILeakClassifier
from backend.app.resilience.batch import BatchProcessor
from backend.app.resilience.cache import TTLCache
from backend.app.resilience.circuit_breaker import CircuitBreaker, utcnow
from backend.app.resilience.durable_breaker import DurableCircuitBreaker
from backend.app.services.error_service import ErrorHandler
from backend.app.services.query_service import AuditQueryService
from backend.app.services.report_service import LoggingReportSender
from backend.app.services.transaction_service import build_transaction_batcher

logger = logging.getLogger(__name__)

Breaker = Union[CircuitBreaker, DurableCircuitBreaker]


@dataclass
class PipelineContext:
    """
    Everything a pipeline stage needs, built once per process.

    Breakers, the cache and the insert batcher are owned here rather than living as module
    globals, so tests build an isolated context per case.
    """
    settings: Settings
    session_factory: sessionmaker
    bank: BankDataProvider
    ai_classifier: Optional[AILeakClassifier]
    breakers: Dict[str, Breaker]
    cache: TTLCache
    transaction_batcher: BatchProcessor
    error_handler: ErrorHandler
    queries: AuditQueryService
    report_sender: ReportSender
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    today: Callable[[], date] = date.today

    def breaker(self, name: str) -> Breaker:
        return self.breakers[name]

    def breaker_snapshots(self) -> Dict[str, Dict[str, Any]]:
        return {name: breaker.snapshot() for name, breaker in self.breakers.items()}


def build_context(
    session_factory: sessionmaker,
    *,
    settings: Optional[Settings] = None,
    bank: Optional[BankDataProvider] = None,
    completion: Optional[CompletionProvider] = None,
    report_sender: Optional[ReportSender] = None,
    clock: Callable[[], datetime] = utcnow,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    today: Callable[[], date] = date.today,
) -> PipelineContext:
    settings = settings or load_settings()
    cache = TTLCache()

    breakers: Dict[str, Breaker] = {
        name: CircuitBreaker(name, breaker_settings, clock=clock)
        for name, breaker_settings in settings.breakers.items()
    }
    if settings.durable_ai_breaker:
        breakers["anthropic"] = DurableCircuitBreaker(
            "anthropic",
            session_factory,
            settings.durable_ai_breaker_settings,
            clock=clock,
        )

    if completion is None and anthropic_is_configured():
        completion = AnthropicCompletionProvider(
            model=settings.anthropic_model,
            max_tokens=settings.anthropic_max_tokens,
        )

    ai_classifier: Optional[AILeakClassifier] = None
    if completion is not None:
        ai_classifier = AILeakClassifier(
            completion,
            breakers.setdefault("anthropic", CircuitBreaker("anthropic", settings.breaker("anthropic"), clock=clock)),
            cache=cache,
            cache_ttl=settings.ai_response_cache_ttl,
            slow_after=settings.slow_operation_seconds,
        )
    else:
        logger.info("ANTHROPIC_API_KEY not set; leak classification uses the rule-based fallback")

    return PipelineContext(
        settings=settings,
        session_factory=session_factory,
        bank=bank or get_bank_provider("plaid", page_size=settings.plaid_page_size),
        ai_classifier=ai_classifier,
        breakers=breakers,
        cache=cache,
        transaction_batcher=build_transaction_batcher(session_factory, settings),
        error_handler=ErrorHandler(session_factory),
        queries=AuditQueryService(session_factory, cache, settings.audit_summary_cache_ttl),
        report_sender=report_sender or LoggingReportSender(),
        sleep=sleep,
        today=today,
    )


_default_context: Optional[PipelineContext] = None


def get_default_context() -> PipelineContext:
    """Process-wide context bound to the application database."""
    global _default_context
    if _default_context is None:
        _default_context = build_context(SessionLocal)
    return _default_context
