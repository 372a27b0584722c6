from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Sequence, Set

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from backend.app.config import Settings
from backend.app.leaks.types import RecurringSeries, Transaction
from backend.app.models import TransactionRecord, uuid_str
from backend.app.resilience.batch import BatchProcessor

logger = logging.getLogger(__name__)


def to_row(audit_id: str, txn: Transaction) -> Dict[str, Any]:
    return {
        "id": uuid_str(),
        "audit_id": audit_id,
        "transaction_id": txn.id,
        "date": txn.date,
        "amount": txn.amount,
        "merchant_name": txn.merchant_name,
        "category": list(txn.categories),
    }


def existing_transaction_ids(db: Session, audit_id: str) -> Set[str]:
    rows = db.execute(
        select(TransactionRecord.transaction_id).where(TransactionRecord.audit_id == audit_id)
    ).scalars()
    return set(rows)


def insert_rows(session_factory: sessionmaker, rows: List[Dict[str, Any]]) -> List[str]:
    """Insert a batch of transaction rows in one transaction; returns the row ids in order."""
    with session_factory() as db:
        db.add_all(TransactionRecord(**row) for row in rows)
        db.commit()
    return [row["id"] for row in rows]


def build_transaction_batcher(session_factory: sessionmaker, settings: Settings) -> BatchProcessor:
    async def process(rows: List[Dict[str, Any]]) -> List[str]:
        inserted = await asyncio.to_thread(insert_rows, session_factory, rows)
        logger.info("Inserted %d transactions", len(inserted))
        return inserted

    return BatchProcessor(
        process,
        max_batch_size=settings.transaction_batch_size,
        max_wait_time=settings.transaction_batch_wait,
        name="transaction_insert",
    )


async def store_transactions(
    session_factory: sessionmaker,
    batcher: BatchProcessor,
    audit_id: str,
    transactions: Sequence[Transaction],
) -> int:
    """
    Persist provider transactions for an audit through the insert batcher.

    Transactions whose provider id is already stored for the audit are skipped, so repeating
    a fetch does not duplicate rows. Returns the number of newly stored transactions.
    """
    def _known() -> Set[str]:
        with session_factory() as db:
            return existing_transaction_ids(db, audit_id)

    known = await asyncio.to_thread(_known)
    rows: List[Dict[str, Any]] = []
    for txn in transactions:
        if txn.id in known:
            continue
        known.add(txn.id)
        rows.append(to_row(audit_id, txn))

    if not rows:
        return 0
    inserted = await batcher.add_many(rows)
    return len(inserted)


def load_transactions(db: Session, audit_id: str) -> List[Transaction]:
    """Stored transactions as domain records. The domain id is the stored row id."""
    rows = db.execute(
        select(TransactionRecord)
        .where(TransactionRecord.audit_id == audit_id)
        .order_by(TransactionRecord.date.asc(), TransactionRecord.id.asc())
    ).scalars()
    return [
        Transaction(
            id=row.id,
            date=row.date,
            amount=row.amount,
            merchant_name=row.merchant_name,
            categories=tuple(row.category or ()),
        )
        for row in rows
    ]


def mark_recurring(db: Session, audit_id: str, series_list: Sequence[RecurringSeries]) -> int:
    frequency_by_id: Dict[str, str] = {}
    for series in series_list:
        for txn in series.transactions:
            frequency_by_id[txn.id] = series.frequency

    if not frequency_by_id:
        return 0

    rows = db.execute(
        select(TransactionRecord).where(
            TransactionRecord.audit_id == audit_id,
            TransactionRecord.id.in_(list(frequency_by_id)),
        )
    ).scalars()
    marked = 0
    for row in rows:
        row.is_recurring = True
        row.recurring_frequency = frequency_by_id[row.id]
        marked += 1
    db.flush()
    return marked


def serialize_transaction(row: TransactionRecord) -> Dict[str, Any]:
    return {
        "id": row.id,
        "audit_id": row.audit_id,
        "transaction_id": row.transaction_id,
        "date": row.date,
        "amount": row.amount,
        "merchant_name": row.merchant_name,
        "category": list(row.category or []),
        "is_recurring": bool(row.is_recurring),
        "recurring_frequency": row.recurring_frequency,
    }
