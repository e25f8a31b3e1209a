from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from backend.app.api.deps import get_alert_manager, get_settings, http_error
from backend.app.config import MeteringSettings
from backend.app.db import get_db
from backend.app.domain.contracts import ReadingIngestRequest
from backend.app.domain.errors import MeteringError
from backend.app.services import monitoring_service
from backend.app.services.alert_service import AlertManager

router = APIRouter(prefix="/api", tags=["readings"])


@router.post("/readings")
def ingest_readings(
    req: ReadingIngestRequest,
    db: Session = Depends(get_db),
    manager: AlertManager = Depends(get_alert_manager),
    settings: MeteringSettings = Depends(get_settings),
):
    summary = monitoring_service.ingest_readings(db, req.readings)
    try:
        pulses = [
            monitoring_service.pulse(db, apartment_id, manager, settings=settings)
            for apartment_id in summary.apartment_ids
        ]
    except MeteringError as exc:
        raise http_error(exc) from exc
    return {
        "accepted": summary.accepted,
        "duplicates": summary.duplicates,
        "rejected": summary.rejected,
        "apartment_ids": summary.apartment_ids,
        "created_alert_ids": [aid for p in pulses for aid in p["created_alert_ids"]],
    }
