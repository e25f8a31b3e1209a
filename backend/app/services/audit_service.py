from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from backend.app.models import AuditLog


def log_audit_event(
    db: Session,
    *,
    apartment_id: str,
    event_type: str,
    actor: str,
    reason: Optional[str] = None,
    before: Optional[Dict[str, Any]] = None,
    after: Optional[Dict[str, Any]] = None,
    alert_id: Optional[str] = None,
) -> AuditLog:
    row = AuditLog(
        apartment_id=apartment_id,
        event_type=event_type,
        actor=actor,
        reason=reason,
        before_state=before,
        after_state=after,
        alert_id=alert_id,
    )
    db.add(row)
    db.flush()
    return row


def list_audit_events(
    db: Session,
    apartment_id: str,
    *,
    limit: int = 100,
    event_type: Optional[str] = None,
    since: Optional[datetime] = None,
) -> List[Dict[str, Any]]:
    query = select(AuditLog).where(AuditLog.apartment_id == apartment_id)
    if event_type:
        query = query.where(AuditLog.event_type == event_type)
    if since:
        query = query.where(AuditLog.created_at >= since)

    rows = (
        db.execute(query.order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).limit(limit))
        .scalars()
        .all()
    )
    return [
        {
            "id": row.id,
            "apartment_id": row.apartment_id,
            "event_type": row.event_type,
            "actor": row.actor,
            "reason": row.reason,
            "alert_id": row.alert_id,
            "before_state": row.before_state,
            "after_state": row.after_state,
            "created_at": row.created_at,
        }
        for row in rows
    ]
