from __future__ import annotations

from datetime import date
from typing import Any, Dict, List, Optional, Protocol, Sequence

from backend.app.leaks.types import Transaction


ProviderName = str


class BankDataProvider(Protocol):
    provider: ProviderName

    async def fetch_transactions(self, access_token: str, start_date: date, end_date: date) -> List[Transaction]:
        ...


class CompletionProvider(Protocol):
    provider: ProviderName

    async def complete(self, prompt: str) -> str:
        ...


class ReportSender(Protocol):
    async def send_report(self, *, to: Optional[str], subject: str, report: Dict[str, Any]) -> None:
        ...


def first_text_block(content: Sequence[Any]) -> str:
    """Return the text of the first text-bearing block in an SDK message payload."""
    for block in content or ():
        text = getattr(block, "text", None)
        if text is None and isinstance(block, dict):
            text = block.get("text")
        if text:
            return text
    return ""
