from __future__ import annotations

import os

from backend.app.integrations.base import BankDataProvider, CompletionProvider, ProviderName, ReportSender
from backend.app.integrations.plaid import PlaidBankDataProvider, plaid_is_configured
from backend.app.integrations.plaid_stub import PlaidStubBankDataProvider


def get_bank_provider(provider: ProviderName = "plaid", *, page_size: int = 500) -> BankDataProvider:
    key = (provider or "").strip().lower()
    if key != "plaid":
        raise ValueError(f"unsupported provider: {provider}")
    if os.getenv("PLAID_USE_STUB", "").lower() == "true" or not plaid_is_configured():
        return PlaidStubBankDataProvider()
    return PlaidBankDataProvider(page_size=page_size)


__all__ = [
    "BankDataProvider",
    "CompletionProvider",
    "ProviderName",
    "ReportSender",
    "get_bank_provider",
]
