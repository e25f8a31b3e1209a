from __future__ import annotations

from datetime import timedelta
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from backend.app.api.deps import get_alert_manager, http_error
from backend.app.db import get_db
from backend.app.domain.contracts import LeakAlertView, ResolveAlertRequest
from backend.app.domain.errors import MeteringError
from backend.app.domain.metering import AlertStatus, LeakTrigger
from backend.app.services import alert_service, monitoring_service
from backend.app.services.alert_service import AlertManager

router = APIRouter(prefix="/api", tags=["alerts"])


@router.get("/apartments/{apartment_id}/alerts", response_model=List[LeakAlertView])
def list_apartment_alerts(
    apartment_id: str,
    status: Optional[AlertStatus] = Query(None),
    trigger: Optional[LeakTrigger] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_db),
):
    try:
        monitoring_service.require_apartment(db, apartment_id)
    except MeteringError as exc:
        raise http_error(exc) from exc
    rows = alert_service.list_alerts(
        db,
        apartment_id=apartment_id,
        trigger=trigger,
        status=status,
        limit=limit,
    )
    return [alert_service.to_view(row) for row in rows]


@router.post("/alerts/{alert_id}/resolve", response_model=LeakAlertView)
def resolve_alert(
    alert_id: str,
    req: Optional[ResolveAlertRequest] = None,
    db: Session = Depends(get_db),
    manager: AlertManager = Depends(get_alert_manager),
):
    try:
        alert = manager.resolve(db, alert_id, note=req.note if req else None)
    except MeteringError as exc:
        raise http_error(exc) from exc
    return alert_service.to_view(alert)


@router.get("/alerts/stale", response_model=List[LeakAlertView])
def list_stale_alerts(
    older_than_hours: float = Query(24.0, gt=0),
    db: Session = Depends(get_db),
    manager: AlertManager = Depends(get_alert_manager),
):
    rows = manager.list_stale_active_alerts(db, timedelta(hours=older_than_hours))
    return [alert_service.to_view(row) for row in rows]
