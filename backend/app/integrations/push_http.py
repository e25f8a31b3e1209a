from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from backend.app.domain.metering import PushRecipient
from backend.app.integrations.base import PushResult


def _build_httpx_client(base_url: str, timeout: float):
    import httpx  # local import to avoid hard dependency at import time

    return httpx.Client(base_url=base_url, timeout=timeout)


class HttpPushGateway:
    """Posts pushes to an HTTP push relay (Expo/FCM bridge).

    Delivery problems come back as ``PushResult(delivered=False)``; transport
    errors propagate so the caller can log them.
    """

    name = "http"

    def __init__(
        self,
        *,
        base_url: str,
        token: Optional[str] = None,
        timeout: float = 10.0,
        client: Optional[Any] = None,
    ):
        self.base_url = base_url
        self.token = token
        self._client = client or _build_httpx_client(base_url, timeout)

    def _headers(self) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def send_push(self, recipient: PushRecipient, title: str, message: str) -> PushResult:
        recipient = PushRecipient(recipient)
        resp = self._client.post(
            "/push",
            json={"recipient": recipient.value, "title": title, "message": message},
            headers=self._headers(),
        )
        sent_at = datetime.now(timezone.utc)
        if resp.status_code >= 400:
            return PushResult(
                recipient=recipient,
                delivered=False,
                sent_at=sent_at,
                error=f"push relay returned {resp.status_code}",
            )
        return PushResult(recipient=recipient, delivered=True, sent_at=sent_at)

    def close(self) -> None:
        self._client.close()
