from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
import logging
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from backend.app.domain.contracts import (
    BurstMetadata,
    DripMetadata,
    LeakAlertView,
    VolumeMetadata,
    parse_alert_metadata,
)
from backend.app.domain.errors import AlertNotFound, AlertPersistenceError, ApartmentNotFound
from backend.app.domain.metering import AlertStatus, LeakTrigger, PushRecipient, Severity
from backend.app.integrations.base import NotificationGateway
from backend.app.models import Apartment, LeakAlert, as_utc, as_utc_naive, utcnow
from backend.app.services import audit_service

logger = logging.getLogger(__name__)

AlertMetadataValue = Union[BurstMetadata, DripMetadata, VolumeMetadata]

ROUTING: Dict[Severity, tuple] = {
    Severity.HIGH: (PushRecipient.RESIDENT, PushRecipient.BOARD),
    Severity.MEDIUM: (PushRecipient.RESIDENT,),
    Severity.LOW: (PushRecipient.RESIDENT,),
}

ESCALATABLE_SEVERITIES = (Severity.LOW, Severity.MEDIUM)


@dataclass(frozen=True)
class NotificationOutcome:
    recipient: PushRecipient
    delivered: bool
    error: Optional[str] = None


@dataclass(frozen=True)
class AlertCreateResult:
    alert: Optional[LeakAlert]
    created: bool
    notifications: List[NotificationOutcome] = field(default_factory=list)


def serialize_alert(alert: LeakAlert) -> Dict[str, Any]:
    return {
        "id": alert.id,
        "apartment_id": alert.apartment_id,
        "severity": alert.severity,
        "trigger": alert.trigger,
        "status": alert.status,
        "metadata": alert.metadata_json,
        "created_at": alert.created_at.isoformat() if alert.created_at else None,
        "escalated_at": alert.escalated_at.isoformat() if alert.escalated_at else None,
        "resolved_at": alert.resolved_at.isoformat() if alert.resolved_at else None,
        "resolution_note": alert.resolution_note,
    }


def to_view(alert: LeakAlert) -> LeakAlertView:
    return LeakAlertView(
        id=alert.id,
        apartment_id=alert.apartment_id,
        severity=Severity(alert.severity),
        trigger=LeakTrigger(alert.trigger),
        status=AlertStatus(alert.status),
        metadata=parse_alert_metadata(alert.metadata_json),
        created_at=as_utc(alert.created_at),
        escalated_at=as_utc(alert.escalated_at),
        resolved_at=as_utc(alert.resolved_at),
        resolution_note=alert.resolution_note,
    )


def _coerce_metadata(trigger: LeakTrigger, metadata: Union[AlertMetadataValue, dict]) -> AlertMetadataValue:
    if isinstance(metadata, dict):
        metadata = parse_alert_metadata({"trigger": trigger.value, **metadata})
    if metadata.trigger != trigger.value:
        raise ValueError(f"metadata for {metadata.trigger} cannot describe a {trigger.value} alert")
    return metadata


def find_active_alert(db: Session, apartment_id: str, trigger: LeakTrigger) -> Optional[LeakAlert]:
    return (
        db.execute(
            select(LeakAlert).where(
                LeakAlert.apartment_id == apartment_id,
                LeakAlert.trigger == LeakTrigger(trigger).value,
                LeakAlert.status == AlertStatus.ACTIVE.value,
            )
        )
        .scalars()
        .first()
    )


def get_alert(db: Session, alert_id: str) -> LeakAlert:
    alert = db.get(LeakAlert, alert_id)
    if not alert:
        raise AlertNotFound(alert_id)
    return alert


def list_alerts(
    db: Session,
    *,
    apartment_id: Optional[str] = None,
    trigger: Optional[LeakTrigger] = None,
    status: Optional[AlertStatus] = None,
    limit: int = 100,
) -> List[LeakAlert]:
    stmt = select(LeakAlert)
    if apartment_id:
        stmt = stmt.where(LeakAlert.apartment_id == apartment_id)
    if trigger:
        stmt = stmt.where(LeakAlert.trigger == LeakTrigger(trigger).value)
    if status:
        stmt = stmt.where(LeakAlert.status == AlertStatus(status).value)
    stmt = stmt.order_by(LeakAlert.created_at.desc(), LeakAlert.id.desc()).limit(limit)
    return list(db.execute(stmt).scalars().all())


def _insert_active_alert(
    db: Session,
    *,
    apartment_id: str,
    severity: Severity,
    trigger: LeakTrigger,
    metadata: AlertMetadataValue,
    created_at: datetime,
) -> Optional[LeakAlert]:
    """Insert under a savepoint. Returns None when another writer already holds the ACTIVE slot."""
    alert = LeakAlert(
        apartment_id=apartment_id,
        severity=severity.value,
        trigger=trigger.value,
        status=AlertStatus.ACTIVE.value,
        metadata_json=metadata.model_dump(mode="json"),
        created_at=as_utc_naive(created_at),
    )
    try:
        with db.begin_nested():
            db.add(alert)
            db.flush()
    except IntegrityError:
        return None
    return alert


def _push_text(alert: LeakAlert, recipient: PushRecipient) -> tuple[str, str]:
    severity = Severity(alert.severity)
    if severity == Severity.HIGH:
        if recipient == PushRecipient.BOARD:
            return (
                "Water leak alarm",
                f"A major leak was detected in apartment {alert.apartment_id}.",
            )
        return (
            "Critical water leak detected",
            "A major leak was detected in your apartment. Shut off the water main now.",
        )
    if recipient == PushRecipient.BOARD:
        return (
            "Unresolved water consumption anomaly",
            f"Apartment {alert.apartment_id} has had an unresolved {alert.trigger} alert "
            f"since {alert.created_at.isoformat() if alert.created_at else 'unknown'}.",
        )
    if LeakTrigger(alert.trigger) == LeakTrigger.GUARDIAN:
        return (
            "Unusual water consumption",
            "Your water use today is well above your usual level. Check taps and appliances.",
        )
    return (
        "Unusual water consumption",
        "We noticed small continuous water use. Please check your fixtures.",
    )


class AlertManager:
    """Deduplicates, persists and routes leak alerts.

    ``create`` is idempotent per (apartment, trigger) while an alert is
    ACTIVE. The conditional unique index on leak_alerts is what makes the
    check-then-insert safe when ingestion runs in several processes.
    Persistence problems surface as ``AlertPersistenceError``; there is no
    internal retry.
    """

    def __init__(
        self,
        gateway: NotificationGateway,
        *,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.gateway = gateway
        self.clock = clock

    def create(
        self,
        db: Session,
        apartment_id: str,
        severity: Severity,
        trigger: LeakTrigger,
        metadata: Union[AlertMetadataValue, dict],
    ) -> AlertCreateResult:
        severity = Severity(severity)
        trigger = LeakTrigger(trigger)
        metadata = _coerce_metadata(trigger, metadata)

        try:
            if db.get(Apartment, apartment_id) is None:
                raise ApartmentNotFound(apartment_id)

            existing = find_active_alert(db, apartment_id, trigger)
            if existing:
                return AlertCreateResult(alert=existing, created=False)

            alert = _insert_active_alert(
                db,
                apartment_id=apartment_id,
                severity=severity,
                trigger=trigger,
                metadata=metadata,
                created_at=self.clock(),
            )
            if alert is None:
                logger.info(
                    "Concurrent ACTIVE %s alert already exists for apartment_id=%s",
                    trigger.value,
                    apartment_id,
                )
                return AlertCreateResult(alert=find_active_alert(db, apartment_id, trigger), created=False)

            audit_service.log_audit_event(
                db,
                apartment_id=apartment_id,
                event_type="leak_alert_created",
                actor="system",
                reason=trigger.value,
                before=None,
                after=serialize_alert(alert),
                alert_id=alert.id,
            )
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            raise AlertPersistenceError(
                f"alert persistence failed for apartment {apartment_id} ({trigger.value})"
            ) from exc

        logger.info(
            "Leak alert created alert_id=%s apartment_id=%s trigger=%s severity=%s",
            alert.id,
            apartment_id,
            trigger.value,
            severity.value,
        )
        return AlertCreateResult(alert=alert, created=True, notifications=self._route(alert))

    def _route(self, alert: LeakAlert) -> List[NotificationOutcome]:
        return [
            self.notify(alert, recipient) for recipient in ROUTING[Severity(alert.severity)]
        ]

    def notify(
        self,
        alert: LeakAlert,
        recipient: PushRecipient,
        *,
        gateway: Optional[NotificationGateway] = None,
    ) -> NotificationOutcome:
        title, message = _push_text(alert, recipient)
        gateway = gateway or self.gateway
        try:
            result = gateway.send_push(recipient, title, message)
        except Exception as exc:
            # Fire-and-forget: the alert is already stored and the gateway is not retried.
            logger.warning(
                "Push to %s failed for alert_id=%s: %s",
                recipient.value,
                alert.id,
                exc,
            )
            return NotificationOutcome(recipient=recipient, delivered=False, error=str(exc))
        if not result.delivered:
            logger.warning(
                "Push to %s not delivered for alert_id=%s: %s",
                recipient.value,
                alert.id,
                result.error,
            )
        return NotificationOutcome(recipient=recipient, delivered=result.delivered, error=result.error)

    def list_stale_active_alerts(
        self,
        db: Session,
        older_than: timedelta,
        *,
        now: Optional[datetime] = None,
        severities: Optional[Iterable[Severity]] = None,
        include_escalated: bool = True,
    ) -> List[LeakAlert]:
        """ACTIVE alerts created at least ``older_than`` ago, oldest first."""
        now = as_utc(now) or self.clock()
        cutoff = as_utc_naive(now - older_than)
        stmt = select(LeakAlert).where(
            LeakAlert.status == AlertStatus.ACTIVE.value,
            LeakAlert.created_at <= cutoff,
        )
        if severities is not None:
            stmt = stmt.where(LeakAlert.severity.in_([Severity(s).value for s in severities]))
        if not include_escalated:
            stmt = stmt.where(LeakAlert.escalated_at.is_(None))
        stmt = stmt.order_by(LeakAlert.created_at.asc(), LeakAlert.id.asc())
        return list(db.execute(stmt).scalars().all())

    def resolve(
        self,
        db: Session,
        alert_id: str,
        *,
        note: Optional[str] = None,
        actor: str = "board",
    ) -> LeakAlert:
        alert = get_alert(db, alert_id)
        if alert.status == AlertStatus.RESOLVED.value:
            return alert
        before = serialize_alert(alert)
        try:
            alert.status = AlertStatus.RESOLVED.value
            alert.resolved_at = as_utc_naive(self.clock())
            alert.resolution_note = note
            audit_service.log_audit_event(
                db,
                apartment_id=alert.apartment_id,
                event_type="leak_alert_resolved",
                actor=actor,
                reason=note,
                before=before,
                after=serialize_alert(alert),
                alert_id=alert.id,
            )
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            raise AlertPersistenceError(f"resolving alert {alert_id} failed") from exc
        return alert

    def mark_escalated(self, db: Session, alert_id: str) -> LeakAlert:
        alert = get_alert(db, alert_id)
        if alert.escalated_at is not None:
            return alert
        before = serialize_alert(alert)
        try:
            alert.escalated_at = as_utc_naive(self.clock())
            audit_service.log_audit_event(
                db,
                apartment_id=alert.apartment_id,
                event_type="leak_alert_escalated",
                actor="system",
                reason="unresolved",
                before=before,
                after=serialize_alert(alert),
                alert_id=alert.id,
            )
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            raise AlertPersistenceError(f"escalating alert {alert_id} failed") from exc
        return alert
