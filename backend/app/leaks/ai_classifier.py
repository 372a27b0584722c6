"""
AI-backed leak classification.

The recurring series are serialized into a prompt, sent to the completion capability through
the AI circuit breaker, and the first JSON array found in the reply is mapped into leaks.
`classify` never raises: an open circuit, a timeout, a provider error or an unparseable reply
all resolve to an empty list and a logged diagnostic.
"""

from __future__ import annotations

import hashlib
import json
import logging
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence, Union

from pydantic import ValidationError

from backend.app.domain.contracts import AILeakItem
from backend.app.resilience.cache import TTLCache
from backend.app.resilience.errors import ParseFailureError
from backend.app.resilience.timing import measure_async

from .types import LeakFinding, RecurringSeries, normalize_merchant

if TYPE_CHECKING:
    from backend.app.integrations.base import CompletionProvider
    from backend.app.resilience.circuit_breaker import CircuitBreaker
    from backend.app.resilience.durable_breaker import DurableCircuitBreaker

logger = logging.getLogger(__name__)

PROMPT_TEMPLATE = """You are analyzing recurring SaaS subscriptions for waste. Here are the recurring charges found:

{charges}

For each charge, determine:
1. Is it likely a SaaS subscription?
2. What type of leak is it? (zombie, duplicate, free_alternative, or none if legitimate)
3. Monthly cost estimate
4. Description of the waste
5. Recommendation for what to do

Return ONLY a JSON array of leaks in this exact format:
[
  {{
    "merchant_name": "exact merchant name",
    "leak_type": "zombie|duplicate|free_alternative|none",
    "monthly_cost": 99.00,
    "annual_cost": 1188.00,
    "description": "Brief description of the issue",
    "recommendation": "Specific action to take",
    "confidence_score": 0.85
  }}
]

Only include items where leak_type is NOT "none". Be conservative - only flag clear waste."""


def build_prompt(series: Sequence[RecurringSeries]) -> str:
    charges = json.dumps([s.to_prompt_dict() for s in series], indent=2)
    return PROMPT_TEMPLATE.format(charges=charges)


def extract_json_array(text: str) -> List[Any]:
    """
    Parse the first well-formed JSON array embedded in free text.

    Surrounding prose is ignored. Raises ParseFailureError when no '[' starts a decodable array.
    """
    decoder = json.JSONDecoder()
    start = text.find("[")
    while start != -1:
        try:
            value, _ = decoder.raw_decode(text, start)
        except json.JSONDecodeError:
            value = None
        if isinstance(value, list):
            return value
        start = text.find("[", start + 1)
    raise ParseFailureError("No JSON array found in AI response")


def _prompt_cache_key(prompt: str) -> str:
    return "anthropic_" + hashlib.sha256(prompt.encode("utf-8")).hexdigest()


class AILeakClassifier:
    def __init__(
        self,
        provider: CompletionProvider,
        breaker: Union[CircuitBreaker, DurableCircuitBreaker],
        *,
        cache: Optional[TTLCache] = None,
        cache_ttl: float = 7200,
        slow_after: float = 5.0,
    ):
        self.provider = provider
        self.breaker = breaker
        self.cache = cache
        self.cache_ttl = cache_ttl
        self.slow_after = slow_after

    @property
    def available(self) -> bool:
        return self.breaker.allows_request()

    async def _request_items(self, prompt: str) -> List[Any]:
        """Ask the model and return the raw array it answered with; only parsed arrays are cached."""
        async def call() -> List[Any]:
            text = await measure_async(
                "ai_classification",
                lambda: self.breaker.execute(lambda: self.provider.complete(prompt)),
                slow_after=self.slow_after,
            )
            return extract_json_array(text)

        if self.cache is None:
            return await call()
        return await self.cache.get_or_set(_prompt_cache_key(prompt), call, self.cache_ttl)

    def to_leaks(
        self,
        items: Sequence[Any],
        audit_id: str,
        series: Sequence[RecurringSeries] = (),
    ) -> List[LeakFinding]:
        by_merchant: Dict[str, RecurringSeries] = {s.merchant: s for s in series}

        leaks: List[LeakFinding] = []
        for raw in items:
            if not isinstance(raw, dict):
                logger.warning("Skipping non-object AI leak item: %r", raw)
                continue
            if str(raw.get("leak_type", "")).strip().lower() == "none":
                continue
            try:
                item = AILeakItem.model_validate(raw)
            except ValidationError as exc:
                logger.warning("Skipping invalid AI leak item for %s: %s", raw.get("merchant_name"), exc.errors())
                continue

            matched = by_merchant.get(normalize_merchant(item.merchant_name))
            evidence: Dict[str, Any] = {"ai_analysis": True}
            if matched is not None:
                evidence["transaction_ids"] = [txn.id for txn in matched.transactions]
                evidence["frequency"] = matched.frequency
            leaks.append(
                LeakFinding(
                    audit_id=audit_id,
                    leak_type=item.leak_type,
                    merchant_name=item.merchant_name,
                    monthly_cost=item.monthly_cost or Decimal("0"),
                    annual_cost=item.annual_cost or Decimal("0"),
                    description=item.description,
                    recommendation=item.recommendation,
                    confidence_score=item.confidence_score,
                    last_charge_date=matched.last_charge_date if matched else None,
                    evidence=evidence,
                )
            )
        return leaks

    async def classify(self, series: Sequence[RecurringSeries], audit_id: str) -> List[LeakFinding]:
        if not series:
            return []

        prompt = build_prompt(series)
        try:
            items = await self._request_items(prompt)
            return self.to_leaks(items, audit_id, series)
        except Exception as exc:
            logger.error("AI analysis error for audit %s: %s", audit_id, exc)
            return []
