from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
import logging
from typing import List

from backend.app.domain.metering import PushRecipient
from backend.app.integrations.base import PushResult

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LoggingPushGateway:
    """Dev gateway: writes the push to the log instead of delivering it."""

    name = "logging"

    def send_push(self, recipient: PushRecipient, title: str, message: str) -> PushResult:
        logger.info("[PUSH to %s] %s: %s", PushRecipient(recipient).value, title, message)
        return PushResult(recipient=PushRecipient(recipient), delivered=True, sent_at=utcnow())


@dataclass(frozen=True)
class SentPush:
    recipient: PushRecipient
    title: str
    message: str


class RecordingPushGateway:
    """Keeps every push in memory. Used by tests and the simulation harness."""

    name = "recording"

    def __init__(self, *, fail: bool = False):
        self.sent: List[SentPush] = []
        self.fail = fail

    def send_push(self, recipient: PushRecipient, title: str, message: str) -> PushResult:
        if self.fail:
            raise ConnectionError("push gateway unavailable")
        self.sent.append(SentPush(recipient=PushRecipient(recipient), title=title, message=message))
        return PushResult(recipient=PushRecipient(recipient), delivered=True, sent_at=utcnow())

    def recipients(self) -> List[PushRecipient]:
        return [push.recipient for push in self.sent]
