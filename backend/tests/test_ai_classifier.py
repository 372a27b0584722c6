from __future__ import annotations

import asyncio
import json
from datetime import date, timedelta
from decimal import Decimal

import pytest

from backend.app.config import BreakerSettings
from backend.app.leaks.ai_classifier import AILeakClassifier, build_prompt, extract_json_array
from backend.app.leaks.types import RecurringSeries, Transaction
from backend.app.resilience.cache import TTLCache
from backend.app.resilience.circuit_breaker import BreakerState, CircuitBreaker
from backend.app.resilience.errors import ParseFailureError, UnrecoverableError


def _series(merchant="slack", amount="80.00"):
    start = date(2024, 1, 5)
    txns = tuple(
        Transaction(
            id=f"{merchant}-{i}",
            date=start + timedelta(days=30 * i),
            amount=Decimal(amount),
            merchant_name=merchant.title(),
        )
        for i in range(3)
    )
    return RecurringSeries(merchant=merchant, transactions=txns, frequency="monthly", average_amount=Decimal(amount))


def _classifier(provider, *, failure_threshold=3, cache=None):
    breaker = CircuitBreaker("anthropic", BreakerSettings(failure_threshold=failure_threshold, timeout=1.0))
    return AILeakClassifier(provider, breaker, cache=cache)


def _reply(items):
    return "Here is my analysis:\n" + json.dumps(items) + "\nLet me know if you need more."


SLACK_DUPLICATE = {
    "merchant_name": "slack",
    "leak_type": "duplicate",
    "monthly_cost": 80.0,
    "annual_cost": 960.0,
    "description": "Two Slack workspaces billed",
    "recommendation": "Consolidate workspaces",
    "confidence_score": 0.85,
}


def test_non_json_reply_resolves_to_empty(fake_completion):
    classifier = _classifier(fake_completion("This is not JSON."))

    assert asyncio.run(classifier.classify([_series()], "audit-1")) == []


def test_empty_series_does_not_call_provider(fake_completion):
    provider = fake_completion("[]")
    classifier = _classifier(provider)

    assert asyncio.run(classifier.classify([], "audit-1")) == []
    assert provider.prompts == []


def test_prose_wrapped_array_is_parsed_and_tagged(fake_completion):
    series = _series()
    classifier = _classifier(fake_completion(_reply([SLACK_DUPLICATE])))

    (leak,) = asyncio.run(classifier.classify([series], "audit-1"))

    assert leak.audit_id == "audit-1"
    assert leak.leak_type == "duplicate"
    assert leak.annual_cost == Decimal("960")
    assert float(leak.confidence_score) == pytest.approx(0.85)
    assert leak.evidence["ai_analysis"] is True
    assert leak.evidence["transaction_ids"] == [t.id for t in series.transactions]
    assert leak.last_charge_date == series.last_charge_date


def test_none_and_invalid_items_are_dropped(fake_completion):
    items = [
        dict(SLACK_DUPLICATE, leak_type="none"),
        dict(SLACK_DUPLICATE, leak_type="mystery"),
        dict(SLACK_DUPLICATE, monthly_cost=-5),
        "not an object",
        dict(SLACK_DUPLICATE, merchant_name="zoom", leak_type="zombie", annual_cost=None, monthly_cost=15, confidence_score=3),
    ]
    classifier = _classifier(fake_completion(_reply(items)))

    (leak,) = asyncio.run(classifier.classify([_series()], "audit-1"))

    assert leak.merchant_name == "zoom"
    assert leak.annual_cost == Decimal("180")
    assert leak.confidence_score == Decimal("1")
    assert "transaction_ids" not in leak.evidence


def test_provider_failure_resolves_to_empty(fake_completion):
    classifier = _classifier(fake_completion(UnrecoverableError("boom", service="anthropic")))

    assert asyncio.run(classifier.classify([_series()], "audit-1")) == []
    assert classifier.breaker.failure_count == 1


def test_open_circuit_resolves_to_empty_without_calling_provider(fake_completion):
    provider = fake_completion(UnrecoverableError("boom", service="anthropic"))
    classifier = _classifier(provider, failure_threshold=1)

    assert asyncio.run(classifier.classify([_series()], "audit-1")) == []
    assert classifier.breaker.state is BreakerState.OPEN
    assert classifier.available is False

    assert asyncio.run(classifier.classify([_series()], "audit-2")) == []
    assert len(provider.prompts) == 1


def test_identical_prompts_are_served_from_cache(fake_completion):
    provider = fake_completion(_reply([SLACK_DUPLICATE]))
    classifier = _classifier(provider, cache=TTLCache())

    first = asyncio.run(classifier.classify([_series()], "audit-1"))
    second = asyncio.run(classifier.classify([_series()], "audit-2"))

    assert len(provider.prompts) == 1
    assert [leak.audit_id for leak in first + second] == ["audit-1", "audit-2"]


def test_prompt_lists_series_and_instructs_conservative_output():
    prompt = build_prompt([_series()])

    assert '"merchant": "slack"' in prompt
    assert '"charge_count": 3' in prompt
    assert "Be conservative" in prompt
    assert 'leak_type is NOT "none"' in prompt


def test_extract_json_array_skips_brackets_in_prose():
    assert extract_json_array('See [note] below: [{"a": 1}] done') == [{"a": 1}]
    with pytest.raises(ParseFailureError):
        extract_json_array("no arrays here")


def test_unparseable_reply_is_not_cached(fake_completion):
    provider = fake_completion("This is not JSON.", _reply([SLACK_DUPLICATE]))
    cache = TTLCache()
    classifier = _classifier(provider, cache=cache)

    assert asyncio.run(classifier.classify([_series()], "audit-1")) == []
    assert len(cache) == 0

    (leak,) = asyncio.run(classifier.classify([_series()], "audit-1"))
    assert leak.leak_type == "duplicate"
    assert len(provider.prompts) == 2
    assert len(cache) == 1
