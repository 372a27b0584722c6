from __future__ import annotations

import asyncio
import json
from datetime import date
from decimal import Decimal

import httpx
import pytest

from backend.app.integrations.plaid import PlaidBankDataProvider, PlaidClient, to_transaction
from backend.app.resilience.errors import (
    AuthExpiredError,
    DependencyTimeoutError,
    RateLimitedError,
    UnrecoverableError,
)


@pytest.fixture(autouse=True)
def plaid_env(monkeypatch):
    monkeypatch.setenv("PLAID_CLIENT_ID", "client-id")
    monkeypatch.setenv("PLAID_SECRET", "secret")


def _provider(handler, page_size=2):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="https://plaid.test")
    return PlaidBankDataProvider(client=PlaidClient(base_url="https://plaid.test", client=client), page_size=page_size)


def _raw(i, amount=9.99, **extra):
    return {"transaction_id": f"t{i}", "date": f"2024-01-{i + 1:02d}", "amount": amount, "merchant_name": "Spotify", **extra}


def _fetch(provider):
    return asyncio.run(provider.fetch_transactions("access-token", date(2024, 1, 1), date(2024, 12, 31)))


def test_paginates_by_offset_until_total_is_reached():
    pages = {0: [_raw(0), _raw(1)], 2: [_raw(2)]}
    seen = []

    def handler(request):
        body = json.loads(request.content)
        seen.append(body)
        offset = body["options"]["offset"]
        return httpx.Response(200, json={"transactions": pages[offset], "total_transactions": 3})

    txns = _fetch(_provider(handler))

    assert [t.id for t in txns] == ["t0", "t1", "t2"]
    assert [b["options"] for b in seen] == [{"offset": 0, "count": 2}, {"offset": 2, "count": 2}]
    assert seen[0]["client_id"] == "client-id"
    assert seen[0]["access_token"] == "access-token"
    assert seen[0]["start_date"] == "2024-01-01"


def test_stops_on_short_page_without_total():
    calls = []

    def handler(request):
        calls.append(1)
        return httpx.Response(200, json={"transactions": [_raw(0)]})

    assert len(_fetch(_provider(handler))) == 1
    assert len(calls) == 1


def test_amounts_are_magnitudes_and_merchant_falls_back():
    txn = to_transaction({"transaction_id": "t9", "date": "2024-03-01", "amount": -42.5, "name": "Refund Co"})
    assert txn.amount == Decimal("42.5")
    assert txn.merchant_name == "Refund Co"
    assert txn.categories == ()

    unknown = to_transaction({"transaction_id": "t10", "date": "2024-03-01", "amount": 1})
    assert unknown.merchant_name == "Unknown"

    assert to_transaction({"transaction_id": "t11", "amount": 1}) is None


@pytest.mark.parametrize(
    "status, body, expected",
    [
        (400, {"error_code": "ITEM_LOGIN_REQUIRED", "error_message": "login required"}, AuthExpiredError),
        (429, {"error_code": "RATE_LIMIT_EXCEEDED", "error_message": "slow down"}, RateLimitedError),
        (400, {"error_code": "INVALID_FIELD", "error_message": "bad"}, UnrecoverableError),
    ],
)
def test_error_responses_become_tagged_errors(status, body, expected):
    provider = _provider(lambda request: httpx.Response(status, json=body))

    with pytest.raises(expected) as exc_info:
        _fetch(provider)
    assert type(exc_info.value) is expected
    assert exc_info.value.service == "plaid"


def test_server_errors_are_transient():
    provider = _provider(lambda request: httpx.Response(503, json={"error_message": "maintenance"}))

    with pytest.raises(UnrecoverableError) as exc_info:
        _fetch(provider)
    assert exc_info.value.transient is True


def test_timeouts_become_dependency_timeouts():
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(DependencyTimeoutError):
        _fetch(_provider(handler))
