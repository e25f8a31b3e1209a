from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
import logging
from typing import Any, Dict, Iterable, List, Optional, Set

from sqlalchemy import select
from sqlalchemy.orm import Session

from backend.app.config import MeteringSettings
from backend.app.domain.contracts import MeterReadingRecord
from backend.app.domain.errors import ApartmentNotFound
from backend.app.models import Apartment, Meter, as_utc, utcnow
from backend.app.services import reading_service
from backend.app.services.alert_service import AlertManager
from backend.app.services.reading_service import ScanBudget
from backend.app.signals.leak import GuardRunResult, run_apartment_leak_guards

logger = logging.getLogger(__name__)


@dataclass
class IngestSummary:
    accepted: int = 0
    duplicates: int = 0
    rejected: List[Dict[str, Any]] = field(default_factory=list)
    apartment_ids: List[str] = field(default_factory=list)


def require_apartment(db: Session, apartment_id: str) -> Apartment:
    apartment = db.get(Apartment, apartment_id)
    if not apartment:
        raise ApartmentNotFound(apartment_id)
    return apartment


def ingest_readings(db: Session, records: Iterable[MeterReadingRecord]) -> IngestSummary:
    """Append cumulative readings. Repeats of (meter, timestamp) are skipped.

    Readings for unknown meters are rejected and reported, not raised, so one
    bad row does not sink a batch from the collector.
    """
    summary = IngestSummary()
    meters: Dict[str, Optional[Meter]] = {}
    touched: Set[str] = set()

    for record in records:
        if record.meter_id not in meters:
            meters[record.meter_id] = db.get(Meter, record.meter_id)
        meter = meters[record.meter_id]
        if meter is None:
            logger.warning("Rejected reading for unknown meter_id=%s", record.meter_id)
            summary.rejected.append(
                {
                    "meter_id": record.meter_id,
                    "recorded_at": as_utc(record.recorded_at).isoformat(),
                    "reason": "unknown_meter",
                }
            )
            continue

        inserted = reading_service.append_reading(
            db,
            meter_id=meter.id,
            recorded_at=record.recorded_at,
            value=record.value,
        )
        if inserted:
            summary.accepted += 1
            touched.add(meter.apartment_id)
        else:
            summary.duplicates += 1

    db.commit()
    summary.apartment_ids = sorted(touched)
    if summary.accepted or summary.rejected:
        logger.info(
            "Ingested readings accepted=%s duplicates=%s rejected=%s apartments=%s",
            summary.accepted,
            summary.duplicates,
            len(summary.rejected),
            len(summary.apartment_ids),
        )
    return summary


def _meter_window(
    db: Session,
    meter: Meter,
    settings: MeteringSettings,
    now: datetime,
    budget: Optional[ScanBudget],
):
    """Readings the guards need: the history window ending at the newest reading."""
    latest = reading_service.latest_reading_at_or_before(db, meter.id, now)
    if latest is None:
        return []
    since = as_utc(latest.recorded_at) - timedelta(days=settings.detector_history_days)
    return reading_service.load_readings(
        db,
        meter.id,
        since=since,
        until=latest.recorded_at,
        budget=budget,
    )


def _summarize_guards(guards: Iterable[GuardRunResult]) -> List[Dict[str, Any]]:
    return [
        {
            "guard_id": row.guard_id,
            "trigger": row.trigger.value,
            "ran": row.ran,
            "skipped_reason": row.skipped_reason,
            "fired": row.fired,
            "severity": row.severity.value if row.severity else None,
            "evidence_keys": row.evidence_keys,
        }
        for row in guards
    ]


def pulse(
    db: Session,
    apartment_id: str,
    manager: AlertManager,
    *,
    settings: Optional[MeteringSettings] = None,
    now: Optional[datetime] = None,
    budget: Optional[ScanBudget] = None,
) -> Dict[str, Any]:
    """Run the leak guards over the monitored meters of one apartment.

    Burst and drip are judged per meter, the volume guard on the meters
    combined. Each alert request goes through ``AlertManager.create``, so
    re-running the pulse on unchanged data only reports the already ACTIVE
    alerts. One budget bounds the reads of every meter.
    """
    settings = settings or MeteringSettings()
    require_apartment(db, apartment_id)
    now = as_utc(now) or utcnow()
    budget = budget or ScanBudget(max_rows=settings.scan_max_rows)

    meters = reading_service.list_meters(db, apartment_id, types=settings.leak_meter_types)
    windows = {meter.id: _meter_window(db, meter, settings, now, budget) for meter in meters}
    summary = run_apartment_leak_guards(apartment_id, windows, settings=settings)

    created_ids: List[str] = []
    existing_ids: List[str] = []
    for request in summary.alerts:
        result = manager.create(
            db,
            request.apartment_id,
            request.severity,
            request.trigger,
            request.metadata,
        )
        if result.alert is None:
            continue
        bucket = created_ids if result.created else existing_ids
        if result.alert.id not in bucket:
            bucket.append(result.alert.id)

    meter_results = [
        {
            "meter_id": meter.id,
            "meter_type": meter.type,
            "points": len(windows[meter.id]),
            "guards": _summarize_guards(summary.meters[meter.id].guards),
        }
        for meter in meters
    ]

    logger.info(
        "Leak pulse apartment_id=%s meters=%s created=%s existing=%s",
        apartment_id,
        len(meters),
        len(created_ids),
        len(existing_ids),
    )
    return {
        "apartment_id": apartment_id,
        "ran_at": now,
        "meters": meter_results,
        "apartment_guards": _summarize_guards(summary.apartment_guards),
        "created_alert_ids": created_ids,
        "existing_alert_ids": existing_ids,
    }


def pulse_many(
    db: Session,
    apartment_ids: Iterable[str],
    manager: AlertManager,
    *,
    settings: Optional[MeteringSettings] = None,
    now: Optional[datetime] = None,
) -> List[Dict[str, Any]]:
    results = []
    for apartment_id in apartment_ids:
        results.append(pulse(db, apartment_id, manager, settings=settings, now=now))
    return results


def list_monitored_apartments(db: Session) -> List[str]:
    return list(
        db.execute(select(Apartment.id).order_by(Apartment.id.asc())).scalars().all()
    )
