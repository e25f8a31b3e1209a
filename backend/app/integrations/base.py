from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Protocol

from backend.app.domain.metering import PushRecipient


@dataclass(frozen=True)
class PushResult:
    recipient: PushRecipient
    delivered: bool
    sent_at: datetime
    error: Optional[str] = None


class NotificationGateway(Protocol):
    """Push delivery. Fire-and-forget: callers never retry."""

    name: str

    def send_push(self, recipient: PushRecipient, title: str, message: str) -> PushResult:
        ...
