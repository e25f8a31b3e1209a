from __future__ import annotations

import json
import logging

import httpx

from backend.app.config import MeteringSettings
from backend.app.domain.metering import PushRecipient
from backend.app.integrations import (
    HttpPushGateway,
    LoggingPushGateway,
    RecordingPushGateway,
    build_notification_gateway,
)


def _gateway(handler, token="secret") -> HttpPushGateway:
    client = httpx.Client(base_url="https://push.example.test", transport=httpx.MockTransport(handler))
    return HttpPushGateway(base_url="https://push.example.test", token=token, client=client)


def test_http_gateway_posts_push():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["auth"] = request.headers.get("Authorization")
        seen["body"] = json.loads(request.content)
        return httpx.Response(202, json={"queued": True})

    result = _gateway(handler).send_push(PushRecipient.BOARD, "Water leak alarm", "Apartment A 1")

    assert result.delivered is True
    assert result.recipient == PushRecipient.BOARD
    assert seen["path"] == "/push"
    assert seen["auth"] == "Bearer secret"
    assert seen["body"] == {"recipient": "BOARD", "title": "Water leak alarm", "message": "Apartment A 1"}


def test_http_gateway_reports_relay_errors():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503)

    result = _gateway(handler).send_push(PushRecipient.RESIDENT, "t", "m")

    assert result.delivered is False
    assert "503" in result.error


def test_http_gateway_without_token_sends_no_auth_header():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["auth"] = request.headers.get("Authorization")
        return httpx.Response(200)

    _gateway(handler, token=None).send_push(PushRecipient.RESIDENT, "t", "m")

    assert seen["auth"] is None


def test_logging_gateway_logs_the_push(caplog):
    with caplog.at_level(logging.INFO, logger="backend.app.integrations.push_stub"):
        result = LoggingPushGateway().send_push(PushRecipient.RESIDENT, "Leak", "Check taps")

    assert result.delivered is True
    assert "[PUSH to RESIDENT] Leak: Check taps" in caplog.text


def test_recording_gateway_keeps_pushes():
    gateway = RecordingPushGateway()
    gateway.send_push(PushRecipient.RESIDENT, "a", "b")
    gateway.send_push(PushRecipient.BOARD, "c", "d")

    assert gateway.recipients() == [PushRecipient.RESIDENT, PushRecipient.BOARD]


def test_gateway_choice_follows_settings():
    assert isinstance(build_notification_gateway(MeteringSettings()), LoggingPushGateway)

    gateway = build_notification_gateway(MeteringSettings(push_gateway_url="https://push.example.test"))
    try:
        assert isinstance(gateway, HttpPushGateway)
    finally:
        gateway.close()
