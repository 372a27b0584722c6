from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    JSON,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.app.db import Base


# -------------------------
# Helpers
# -------------------------

def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def uuid_str() -> str:
    return str(uuid.uuid4())


AUDIT_STATUSES = ("payment_received", "bank_connected", "analyzing", "completed", "failed")
LEAK_TYPES = ("zombie", "duplicate", "free_alternative", "unused")


# -------------------------
# Core models
# -------------------------

class Audit(Base):
    """
    One end-to-end run of the pipeline for one customer's transaction history.
    """
    __tablename__ = "audits"
    __table_args__ = (
        Index("ix_audits_email", "email"),
        Index("ix_audits_status", "status"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=uuid_str)
    email: Mapped[str] = mapped_column(String(320), nullable=False)
    company_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)

    plaid_access_token: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    plaid_item_id: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)

    status: Mapped[str] = mapped_column(String(40), nullable=False, default="payment_received")
    total_waste_found: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    report_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # "metadata" is reserved on declarative classes
    meta: Mapped[dict] = mapped_column("metadata", JSON, nullable=False, default=dict)

    transactions = relationship(
        "TransactionRecord",
        back_populates="audit",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    leaks = relationship(
        "Leak",
        back_populates="audit",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class TransactionRecord(Base):
    """
    Bank transaction stored against an audit. Never mutated after insert apart from the
    recurring markers written by leak detection.
    """
    __tablename__ = "transactions"
    __table_args__ = (
        Index("ix_transactions_audit_id", "audit_id"),
        Index("ix_transactions_date", "date"),
        Index("ix_transactions_merchant", "merchant_name"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=uuid_str)
    audit_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("audits.id", ondelete="CASCADE"),
        nullable=False,
    )

    transaction_id: Mapped[str] = mapped_column(String(120), nullable=False)  # provider id
    date: Mapped[date] = mapped_column(Date, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    merchant_name: Mapped[str] = mapped_column(String(300), nullable=False)
    category: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)

    is_recurring: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    recurring_frequency: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    audit = relationship("Audit", back_populates="transactions")


class Leak(Base):
    __tablename__ = "leaks"
    __table_args__ = (Index("ix_leaks_audit_id", "audit_id"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=uuid_str)
    audit_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("audits.id", ondelete="CASCADE"),
        nullable=False,
    )

    leak_type: Mapped[str] = mapped_column(String(40), nullable=False)  # zombie/duplicate/free_alternative/unused
    merchant_name: Mapped[str] = mapped_column(String(300), nullable=False)
    monthly_cost: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    annual_cost: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    last_charge_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    description: Mapped[str] = mapped_column(Text, nullable=False)
    recommendation: Mapped[str] = mapped_column(Text, nullable=False)
    confidence_score: Mapped[Optional[Decimal]] = mapped_column(Numeric(3, 2), nullable=True)
    evidence: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    audit = relationship("Audit", back_populates="leaks")


class CircuitBreakerState(Base):
    """
    Durable breaker record, shared by every process pointed at the same database.
    Updates are last-write-wins.
    """
    __tablename__ = "circuit_breaker_states"

    service_name: Mapped[str] = mapped_column(String(80), primary_key=True)
    state: Mapped[str] = mapped_column(String(20), nullable=False, default="CLOSED")
    failure_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    success_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_failure_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    next_attempt_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)


class ErrorLog(Base):
    """
    Append-only record of handled pipeline errors, kept for later analysis.
    """
    __tablename__ = "errors"
    __table_args__ = (Index("ix_errors_created_at", "created_at"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=uuid_str)
    error_type: Mapped[str] = mapped_column(String(120), nullable=False)
    kind: Mapped[str] = mapped_column(String(40), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    stack: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    context: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
