from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, Optional

from fastapi import HTTPException
from sqlalchemy.orm import Session

from backend.app.models import Audit, utcnow
from backend.app.resilience.errors import RecoveryAction


def require_audit(db: Session, audit_id: str) -> Audit:
    audit = db.get(Audit, audit_id)
    if not audit:
        raise HTTPException(404, "audit not found")
    return audit


def create_audit(
    db: Session,
    *,
    email: str,
    company_name: Optional[str] = None,
    plaid_access_token: Optional[str] = None,
    plaid_item_id: Optional[str] = None,
) -> Audit:
    audit = Audit(
        email=email,
        company_name=company_name,
        plaid_access_token=plaid_access_token,
        plaid_item_id=plaid_item_id,
        status="bank_connected" if plaid_access_token else "payment_received",
        meta={},
    )
    db.add(audit)
    db.commit()
    db.refresh(audit)
    return audit


def _merge_meta(audit: Audit, updates: Dict[str, Any]) -> None:
    # reassign so the JSON column is flagged dirty
    meta = dict(audit.meta or {})
    meta.update(updates)
    audit.meta = meta


def mark_status(db: Session, audit_id: str, status: str, **meta: Any) -> Audit:
    audit = require_audit(db, audit_id)
    audit.status = status
    if meta:
        _merge_meta(audit, meta)
    db.commit()
    return audit


def mark_failed(db: Session, audit_id: str, exc: BaseException, recovery: RecoveryAction, *, stage: str) -> None:
    audit = db.get(Audit, audit_id)
    if audit is None:
        return
    audit.status = "failed"
    _merge_meta(
        audit,
        {
            "error": str(exc),
            "failed_stage": stage,
            "recovery": recovery.as_dict(),
        },
    )
    db.commit()


def mark_completed(db: Session, audit_id: str, total_waste: Decimal, **meta: Any) -> Audit:
    audit = require_audit(db, audit_id)
    audit.status = "completed"
    audit.total_waste_found = total_waste
    audit.completed_at = utcnow()
    _merge_meta(audit, meta)
    db.commit()
    return audit


def mark_report_sent(db: Session, audit_id: str) -> None:
    audit = require_audit(db, audit_id)
    audit.report_url = "email_sent"
    _merge_meta(audit, {"report_sent_at": utcnow().isoformat()})
    db.commit()


def serialize_audit(audit: Audit) -> Dict[str, Any]:
    return {
        "id": audit.id,
        "email": audit.email,
        "company_name": audit.company_name,
        "status": audit.status,
        "total_waste_found": audit.total_waste_found,
        "report_url": audit.report_url,
        "created_at": audit.created_at,
        "completed_at": audit.completed_at,
        "metadata": dict(audit.meta or {}),
    }
