from __future__ import annotations

from datetime import timedelta
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from backend.app.api.deps import get_alert_manager, get_settings, http_error
from backend.app.config import MeteringSettings
from backend.app.db import get_db
from backend.app.domain.errors import MeteringError
from backend.app.services import escalation_service, monitoring_service
from backend.app.services.alert_service import AlertManager

router = APIRouter(prefix="/api/cron", tags=["cron"])


@router.post("/leak-escalation")
def run_leak_escalation(
    older_than_hours: Optional[float] = Query(None, gt=0),
    db: Session = Depends(get_db),
    manager: AlertManager = Depends(get_alert_manager),
    settings: MeteringSettings = Depends(get_settings),
):
    hours = older_than_hours if older_than_hours is not None else settings.escalation_after_hours
    try:
        summary = escalation_service.run_escalation_sweep(
            db,
            manager,
            older_than=timedelta(hours=hours),
        )
    except MeteringError as exc:
        raise http_error(exc) from exc
    return {
        "checked_at": summary.checked_at,
        "escalated_alert_ids": summary.escalated_alert_ids,
        "failed_alert_ids": summary.failed_alert_ids,
    }


@router.post("/leak-pulse")
def run_leak_pulse(
    db: Session = Depends(get_db),
    manager: AlertManager = Depends(get_alert_manager),
    settings: MeteringSettings = Depends(get_settings),
):
    apartment_ids = monitoring_service.list_monitored_apartments(db)
    try:
        results = monitoring_service.pulse_many(db, apartment_ids, manager, settings=settings)
    except MeteringError as exc:
        raise http_error(exc) from exc
    return {
        "apartments": len(results),
        "created_alert_ids": [aid for r in results for aid in r["created_alert_ids"]],
    }
