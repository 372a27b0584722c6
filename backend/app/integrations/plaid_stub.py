from __future__ import annotations

from datetime import date, timedelta
from typing import List

from backend.app.leaks.types import Transaction


class PlaidStubBankDataProvider:
    """Offline stand-in used when Plaid credentials are absent or PLAID_USE_STUB=true."""

    provider = "plaid"

    def __init__(self, *, anchor: date = date(2024, 6, 15)):
        self.anchor = anchor

    async def fetch_transactions(self, access_token: str, start_date: date, end_date: date) -> List[Transaction]:
        _ = access_token
        sample: List[Transaction] = []
        for i in range(6):
            sample.append(
                Transaction(
                    id=f"stub_spotify_{i}",
                    date=self.anchor - timedelta(days=30 * i),
                    amount="9.99",
                    merchant_name="Spotify",
                    categories=("Service", "Subscription"),
                )
            )
            sample.append(
                Transaction(
                    id=f"stub_winzip_{i}",
                    date=self.anchor - timedelta(days=30 * i + 3),
                    amount="29.95",
                    merchant_name="WinZip Pro",
                    categories=("Service", "Software"),
                )
            )
        for i in range(3):
            sample.append(
                Transaction(
                    id=f"stub_datadog_{i}",
                    date=self.anchor - timedelta(days=30 * i + 120),
                    amount="450.00",
                    merchant_name="Datadog",
                    categories=("Service", "Software"),
                )
            )
        sample.append(
            Transaction(
                id="stub_coffee_0",
                date=self.anchor - timedelta(days=2),
                amount="42.15",
                merchant_name="Coffee Supply Co",
            )
        )
        return [txn for txn in sample if start_date <= txn.date <= end_date]
