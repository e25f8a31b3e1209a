from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from backend.app.api.deps import get_reconciler, http_error
from backend.app.db import get_db
from backend.app.domain.contracts import ReconciliationReport, ReconciliationRequest
from backend.app.domain.errors import MeteringError
from backend.app.services import billing_service, monitoring_service
from backend.app.services.billing_service import BillingReconciler

router = APIRouter(prefix="/api/apartments", tags=["reconciliation"])


@router.post("/{apartment_id}/reconciliation", response_model=ReconciliationReport)
def create_reconciliation(
    apartment_id: str,
    req: ReconciliationRequest,
    db: Session = Depends(get_db),
    reconciler: BillingReconciler = Depends(get_reconciler),
):
    try:
        return reconciler.calculate_and_store(db, apartment_id, req.period_start, req.period_end)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except MeteringError as exc:
        raise http_error(exc) from exc


@router.get("/{apartment_id}/reconciliation", response_model=ReconciliationReport)
def get_reconciliation(
    apartment_id: str,
    period_start: datetime = Query(...),
    period_end: datetime = Query(...),
    db: Session = Depends(get_db),
):
    try:
        monitoring_service.require_apartment(db, apartment_id)
    except MeteringError as exc:
        raise http_error(exc) from exc
    report = billing_service.get_stored_report(db, apartment_id, period_start, period_end)
    if report is None:
        raise HTTPException(status_code=404, detail="reconciliation report not found")
    return report
