from __future__ import annotations

import os
from datetime import date, datetime
from typing import Any, List, Optional

import httpx

from backend.app.leaks.types import Transaction
from backend.app.resilience.errors import (
    AuthExpiredError,
    DependencyTimeoutError,
    LeakDetectorError,
    RateLimitedError,
    UnrecoverableError,
)


PLAID_ENV_URLS = {
    "sandbox": "https://sandbox.plaid.com",
    "development": "https://development.plaid.com",
    "production": "https://production.plaid.com",
}

AUTH_EXPIRED_CODES = {"ITEM_LOGIN_REQUIRED", "INVALID_ACCESS_TOKEN", "ITEM_LOCKED", "PENDING_EXPIRATION"}
RATE_LIMIT_CODES = {"RATE_LIMIT_EXCEEDED", "RATE_LIMIT"}

MAX_PAGE_SIZE = 500


def plaid_is_configured() -> bool:
    return bool(os.getenv("PLAID_CLIENT_ID") and os.getenv("PLAID_SECRET"))


def plaid_environment() -> str:
    return (os.getenv("PLAID_ENV") or "sandbox").strip().lower()


def plaid_base_url() -> str:
    override = os.getenv("PLAID_BASE_URL")
    if override:
        return override
    return PLAID_ENV_URLS.get(plaid_environment(), PLAID_ENV_URLS["sandbox"])


def _build_httpx_client(base_url: str) -> httpx.AsyncClient:
    return httpx.AsyncClient(base_url=base_url, timeout=20.0)


def _parse_plaid_date(value: Optional[str]) -> Optional[date]:
    if not value:
        return None
    try:
        if "T" in value:
            return datetime.fromisoformat(value.replace("Z", "+00:00")).date()
        return date.fromisoformat(value)
    except ValueError:
        return None


def _error_from_response(response: httpx.Response) -> LeakDetectorError:
    try:
        body = response.json()
    except ValueError:
        body = {}
    error_code = str(body.get("error_code") or "")
    error_type = str(body.get("error_type") or "")
    message = body.get("error_message") or f"Plaid request failed with HTTP {response.status_code}"
    detail = f"{error_code or error_type or response.status_code}: {message}"

    if error_code in AUTH_EXPIRED_CODES:
        return AuthExpiredError(detail, service="plaid")
    if response.status_code == 429 or error_code in RATE_LIMIT_CODES or error_type == "RATE_LIMIT_EXCEEDED":
        retry_after = response.headers.get("Retry-After")
        return RateLimitedError(detail, service="plaid", retry_after=float(retry_after) if retry_after else None)
    return UnrecoverableError(detail, service="plaid", transient=response.status_code >= 500)


class PlaidClient:
    def __init__(self, *, base_url: Optional[str] = None, client: Optional[httpx.AsyncClient] = None):
        self.base_url = base_url or plaid_base_url()
        self._client = client or _build_httpx_client(self.base_url)

    def _auth_payload(self) -> dict:
        client_id = os.getenv("PLAID_CLIENT_ID")
        secret = os.getenv("PLAID_SECRET")
        if not client_id or not secret:
            raise RuntimeError("PLAID_CLIENT_ID and PLAID_SECRET must be configured.")
        return {"client_id": client_id, "secret": secret}

    async def post(self, path: str, payload: dict) -> dict:
        request_payload = {**self._auth_payload(), **payload}
        try:
            response = await self._client.post(path, json=request_payload)
        except httpx.TimeoutException as exc:
            raise DependencyTimeoutError(f"Plaid {path} timed out", service="plaid") from exc
        except httpx.TransportError as exc:
            raise UnrecoverableError(f"Plaid {path} transport error: {exc}", service="plaid", transient=True) from exc

        if response.status_code >= 400:
            raise _error_from_response(response)
        return response.json()

    async def aclose(self) -> None:
        await self._client.aclose()


def to_transaction(txn: dict) -> Optional[Transaction]:
    txn_id = txn.get("transaction_id") or txn.get("id")
    txn_date = _parse_plaid_date(txn.get("date")) or _parse_plaid_date(txn.get("authorized_date"))
    if not txn_id or txn_date is None:
        return None
    categories: Any = txn.get("category") or []
    if not categories and isinstance(txn.get("personal_finance_category"), dict):
        primary = txn["personal_finance_category"].get("primary")
        categories = [primary] if primary else []
    return Transaction(
        id=str(txn_id),
        date=txn_date,
        # Plaid signs outflows positive and inflows negative; downstream only sees magnitudes
        amount=abs(float(txn.get("amount") or 0.0)),
        merchant_name=txn.get("merchant_name") or txn.get("name") or "Unknown",
        categories=tuple(str(c) for c in categories),
    )


class PlaidBankDataProvider:
    provider = "plaid"

    def __init__(self, *, client: Optional[PlaidClient] = None, page_size: int = MAX_PAGE_SIZE):
        self.client = client or PlaidClient()
        self.page_size = min(page_size, MAX_PAGE_SIZE)

    async def fetch_transactions(self, access_token: str, start_date: date, end_date: date) -> List[Transaction]:
        transactions: List[Transaction] = []
        offset = 0
        has_more = True

        while has_more:
            response = await self.client.post(
                "/transactions/get",
                {
                    "access_token": access_token,
                    "start_date": start_date.isoformat(),
                    "end_date": end_date.isoformat(),
                    "options": {"offset": offset, "count": self.page_size},
                },
            )
            page = response.get("transactions", [])
            for raw in page:
                txn = to_transaction(raw)
                if txn is not None:
                    transactions.append(txn)

            total = response.get("total_transactions")
            offset += len(page)
            if total is not None:
                has_more = offset < int(total) and bool(page)
            else:
                has_more = len(page) == self.page_size

        return transactions
