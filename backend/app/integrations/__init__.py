from __future__ import annotations

from backend.app.config import MeteringSettings
from backend.app.integrations.base import NotificationGateway, PushResult
from backend.app.integrations.push_http import HttpPushGateway
from backend.app.integrations.push_stub import LoggingPushGateway, RecordingPushGateway


def build_notification_gateway(settings: MeteringSettings) -> NotificationGateway:
    """Pick the push implementation once, at the composition root."""
    if settings.push_gateway_url:
        return HttpPushGateway(
            base_url=settings.push_gateway_url,
            token=settings.push_gateway_token,
            timeout=settings.push_timeout_seconds,
        )
    return LoggingPushGateway()


__all__ = [
    "HttpPushGateway",
    "LoggingPushGateway",
    "NotificationGateway",
    "PushResult",
    "RecordingPushGateway",
    "build_notification_gateway",
]
