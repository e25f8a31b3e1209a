# backend/app/api/deps.py
from __future__ import annotations

from functools import lru_cache

from fastapi import Depends, HTTPException
from sqlalchemy.orm import Session

from backend.app.config import MeteringSettings
from backend.app.db import get_db
from backend.app.domain.errors import (
    AlertNotFound,
    AlertPersistenceError,
    ApartmentNotFound,
    MeteringError,
    ScanCancelled,
    ScanLimitExceeded,
    TariffNotFound,
)
from backend.app.integrations import build_notification_gateway
from backend.app.integrations.base import NotificationGateway
from backend.app.services.advance_service import SqlAdvanceConfig
from backend.app.services.alert_service import AlertManager
from backend.app.services.billing_service import BillingReconciler
from backend.app.services.tariff_service import SqlTariffCatalog


@lru_cache(maxsize=1)
def get_settings() -> MeteringSettings:
    return MeteringSettings.from_env()


@lru_cache(maxsize=1)
def _gateway_for(settings: MeteringSettings) -> NotificationGateway:
    return build_notification_gateway(settings)


def get_gateway(settings: MeteringSettings = Depends(get_settings)) -> NotificationGateway:
    """
    One gateway per process. Tests override this dependency with a
    RecordingPushGateway.
    """
    return _gateway_for(settings)


def get_alert_manager(gateway: NotificationGateway = Depends(get_gateway)) -> AlertManager:
    return AlertManager(gateway)


def get_reconciler(
    db: Session = Depends(get_db),
    settings: MeteringSettings = Depends(get_settings),
) -> BillingReconciler:
    # Catalogs share the request session so the whole report reads one snapshot.
    return BillingReconciler(
        SqlTariffCatalog(db),
        SqlAdvanceConfig(db),
        max_scan_rows=settings.scan_max_rows,
    )


_STATUS_BY_ERROR = (
    (ApartmentNotFound, 404),
    (AlertNotFound, 404),
    (TariffNotFound, 422),
    (ScanLimitExceeded, 413),
    (ScanCancelled, 503),
    (AlertPersistenceError, 503),
)


def http_error(exc: MeteringError) -> HTTPException:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return HTTPException(status_code=status_code, detail=str(exc))
    return HTTPException(status_code=500, detail=str(exc))
