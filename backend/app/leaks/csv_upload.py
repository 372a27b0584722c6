"""
Manual CSV ingest, the substitute path when the bank-data provider is unavailable.

Expected layout (header row first, then positional columns):
    date,description,amount
    2024-01-10,Spotify,9.99

Design notes:
- Rows missing any of the three values are skipped, like blank trailing lines.
- Amounts are stored as magnitudes; exports that sign outflows negative are accepted.
- Row ids come from the row content plus its occurrence count, so re-uploading the same
  export is idempotent while a different export never collides with stored rows.
- Everything after this is pure; this module only parses text.
"""

from __future__ import annotations

import csv
import hashlib
import io
from collections import Counter
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Dict, List, Tuple

from .types import Transaction


def row_id(txn_date: date, description: str, amount: Decimal, occurrence: int) -> str:
    digest = hashlib.sha1(f"{txn_date.isoformat()}|{description}|{amount}".encode("utf-8")).hexdigest()
    return f"csv-{digest[:16]}-{occurrence}"


def _parse_amount(value: str) -> Decimal:
    """
    Supports "1234.56", "1,234.56", " -59.99 " and "$9.99".
    """
    cleaned = value.strip().replace(",", "").replace("$", "")
    return abs(Decimal(cleaned))


def parse_transaction_csv(text: str) -> List[Transaction]:
    """
    Parse an uploaded CSV export into transactions.

    Raises:
        ValueError: for a row whose date or amount cannot be parsed (with line number)
    """
    items: List[Transaction] = []
    seen: Dict[Tuple[date, str, Decimal], int] = Counter()
    reader = csv.reader(io.StringIO(text or ""))

    # line 1 is the header
    next(reader, None)
    for line_no, row in enumerate(reader, start=2):
        values = [cell.strip() for cell in row[:3]]
        if len(values) < 3 or not all(values):
            continue
        raw_date, description, raw_amount = values
        try:
            txn_date = date.fromisoformat(raw_date)
            amount = _parse_amount(raw_amount)
        except (ValueError, InvalidOperation) as e:
            raise ValueError(f"CSV parse error on line {line_no}: {row} ({e})") from e

        key = (txn_date, description, amount)
        seen[key] += 1
        items.append(
            Transaction(
                id=row_id(txn_date, description, amount, seen[key]),
                date=txn_date,
                amount=amount,
                merchant_name=description,
                categories=(),
            )
        )

    return items
