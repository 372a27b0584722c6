# tools/generate_demo_csv.py
from __future__ import annotations

import csv
import random
from dataclasses import dataclass
from datetime import date, timedelta
from pathlib import Path
from typing import List, Optional, Tuple


@dataclass(frozen=True)
class Subscription:
    name: str
    amount: float
    every_days: int
    cancelled_after: Optional[date] = None  # last month the card was still charged


SUBSCRIPTIONS: List[Subscription] = [
    Subscription("Slack", 87.50, 30),
    Subscription("Notion", 48.00, 30),
    Subscription("Datadog", 450.00, 30),
    Subscription("WinZip Pro", 29.95, 30),
    Subscription("GitHub", 21.00, 30),
    Subscription("Zoom", 15.99, 30, cancelled_after=date(2025, 3, 31)),
    Subscription("JetBrains", 779.00, 365),
    Subscription("Figma Weekly Seats", 12.00, 7),
]

ONE_OFF = ["Team lunch", "Office supplies", "Uber", "Conference ticket", "Coffee"]


def charge_dates(sub: Subscription, start: date, end: date, rng: random.Random):
    """
    Charge dates on the subscription's cadence with a day or so of billing jitter.
    Jitter stays inside the detector's interval bands.
    """
    d = start + timedelta(days=rng.randint(0, 6))
    last = min(end, sub.cancelled_after) if sub.cancelled_after else end
    while d <= last:
        yield d
        jitter = rng.randint(-1, 1) if sub.every_days >= 30 else 0
        d += timedelta(days=sub.every_days + jitter)


def write_csv(path: Path, rows: List[Tuple[str, str, float]]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", newline="", encoding="utf-8") as f:
        w = csv.writer(f)
        w.writerow(["date", "description", "amount"])
        for r in rows:
            w.writerow(r)


def generate(start: date, end: date, seed: int = 7) -> List[Tuple[str, str, float]]:
    rng = random.Random(seed)
    rows: List[Tuple[str, str, float]] = []

    for sub in SUBSCRIPTIONS:
        for d in charge_dates(sub, start, end, rng):
            rows.append((d.isoformat(), sub.name, sub.amount))

    # a few irregular card charges per week
    d = start
    while d <= end:
        for _ in range(rng.randint(0, 3)):
            rows.append((d.isoformat(), rng.choice(ONE_OFF), round(rng.uniform(4, 220), 2)))
        d += timedelta(days=7)

    rows.sort(key=lambda r: r[0])
    return rows


if __name__ == "__main__":
    out = Path("tools/out/demo_subscriptions.csv")
    rows = generate(start=date(2024, 1, 1), end=date(2025, 12, 31), seed=42)
    write_csv(out, rows)
    print(f"Wrote {len(rows)} rows to {out}")
