from __future__ import annotations

import inspect
import os

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

from backend.app.api.routes import alerts as alert_routes
from backend.app.api.routes import reconciliation as reconciliation_routes
from backend.app.services import (
    alert_service,
    billing_service,
    escalation_service,
    monitoring_service,
    reading_service,
)
from backend.app.signals import leak


CORE_MODULES = [
    leak,
    alert_service,
    billing_service,
    escalation_service,
    monitoring_service,
    reading_service,
]


def test_core_does_not_depend_on_the_web_layer() -> None:
    for module in CORE_MODULES:
        source = inspect.getsource(module)
        assert "fastapi" not in source, module.__name__
        assert "HTTPException" not in source, module.__name__


def test_core_does_not_pick_a_push_implementation() -> None:
    for module in CORE_MODULES:
        source = inspect.getsource(module)
        assert "HttpPushGateway" not in source, module.__name__
        assert "LoggingPushGateway" not in source, module.__name__


def test_detector_is_pure() -> None:
    source = inspect.getsource(leak)
    assert "sqlalchemy" not in source
    assert "Session" not in source


def test_routes_delegate_to_services() -> None:
    resolve_source = inspect.getsource(alert_routes.resolve_alert)
    reconcile_source = inspect.getsource(reconciliation_routes.create_reconciliation)

    assert "manager.resolve" in resolve_source
    assert "reconciler.calculate_and_store" in reconcile_source
