from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
import logging
from typing import List, Optional

from sqlalchemy.orm import Session

from backend.app.domain.metering import PushRecipient
from backend.app.integrations.base import NotificationGateway
from backend.app.models import as_utc, utcnow
from backend.app.services.alert_service import ESCALATABLE_SEVERITIES, AlertManager

logger = logging.getLogger(__name__)


@dataclass
class EscalationSummary:
    checked_at: datetime
    escalated_alert_ids: List[str] = field(default_factory=list)
    failed_alert_ids: List[str] = field(default_factory=list)


def run_escalation_sweep(
    db: Session,
    manager: AlertManager,
    gateway: Optional[NotificationGateway] = None,
    *,
    older_than: timedelta = timedelta(hours=24),
    now: Optional[datetime] = None,
) -> EscalationSummary:
    """Tell the board about LOW/MEDIUM alerts left unresolved for ``older_than``.

    HIGH alerts already went to the board on creation. An alert is stamped
    ``escalated_at`` only once the push is delivered; an undelivered one is
    picked up again by the next sweep.
    """
    now = as_utc(now) or utcnow()
    summary = EscalationSummary(checked_at=now)

    stale = manager.list_stale_active_alerts(
        db,
        older_than,
        now=now,
        severities=ESCALATABLE_SEVERITIES,
        include_escalated=False,
    )
    for alert in stale:
        outcome = manager.notify(alert, PushRecipient.BOARD, gateway=gateway)
        if not outcome.delivered:
            summary.failed_alert_ids.append(alert.id)
            continue
        manager.mark_escalated(db, alert.id)
        summary.escalated_alert_ids.append(alert.id)

    if stale:
        logger.info(
            "Escalation sweep escalated=%s failed=%s",
            len(summary.escalated_alert_ids),
            len(summary.failed_alert_ids),
        )
    return summary
