from __future__ import annotations

from datetime import datetime, timedelta, timezone

from backend.app.domain.metering import AdvanceCategory, MeterType, PushRecipient
from backend.app.main import app
from backend.tests.factories import add_readings, create_apartment, create_meter, set_advance, set_tariff


# Pulses run on the wall clock, so readings must not be in the future.
NOW = datetime.now(timezone.utc).replace(microsecond=0) - timedelta(hours=2)


def _iso(value: datetime) -> str:
    return value.isoformat()


def test_health(api_client):
    resp = api_client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


def test_ingest_then_alert_then_resolve(api_client, db_session, recording_gateway):
    apt = create_apartment(db_session)
    meter = create_meter(db_session, apt, MeterType.WATER_COLD)
    db_session.commit()

    payload = {
        "readings": [
            {"meter_id": meter.id, "recorded_at": _iso(NOW - timedelta(hours=2)), "value": "1000"},
            {"meter_id": meter.id, "recorded_at": _iso(NOW - timedelta(hours=1)), "value": "1010"},
            {"meter_id": meter.id, "recorded_at": _iso(NOW), "value": "1620"},
        ]
    }
    resp = api_client.post("/api/readings", json=payload)
    assert resp.status_code == 200
    body = resp.json()
    assert body["accepted"] == 3
    assert body["apartment_ids"] == [apt.id]
    assert body["created_alert_ids"]
    assert PushRecipient.BOARD in recording_gateway.recipients()

    resp = api_client.get(f"/api/apartments/{apt.id}/alerts", params={"trigger": "DEFENDER"})
    assert resp.status_code == 200
    alerts = resp.json()
    assert len(alerts) == 1
    assert alerts[0]["severity"] == "HIGH"
    assert alerts[0]["metadata"]["trigger"] == "DEFENDER"
    assert alerts[0]["metadata"]["flow_rate"] == 610

    resp = api_client.post(f"/api/alerts/{alerts[0]['id']}/resolve", json={"note": "main valve closed"})
    assert resp.status_code == 200
    assert resp.json()["status"] == "RESOLVED"

    resp = api_client.get(f"/api/apartments/{apt.id}/alerts", params={"status": "ACTIVE", "trigger": "DEFENDER"})
    assert resp.json() == []


def test_alerts_for_unknown_apartment_404(api_client):
    assert api_client.get("/api/apartments/missing/alerts").status_code == 404
    assert api_client.post("/api/alerts/missing/resolve").status_code == 404


def test_stale_alerts_endpoint(api_client, db_session):
    apt = create_apartment(db_session)
    meter = create_meter(db_session, apt, MeterType.WATER_COLD)
    db_session.commit()
    # The alert is stamped with the wall clock, so nothing is a day old yet.
    api_client.post(
        "/api/readings",
        json={
            "readings": [
                {"meter_id": meter.id, "recorded_at": _iso(NOW), "value": "0"},
                {"meter_id": meter.id, "recorded_at": _iso(NOW + timedelta(hours=1)), "value": "900"},
            ]
        },
    )

    resp = api_client.get("/api/alerts/stale", params={"older_than_hours": 24})
    assert resp.status_code == 200
    assert resp.json() == []


def test_escalation_cron_runs(api_client):
    resp = api_client.post("/api/cron/leak-escalation")
    assert resp.status_code == 200
    assert resp.json()["escalated_alert_ids"] == []


def test_reconciliation_zero_meter_apartment_returns_zero_report(api_client, db_session):
    apt = create_apartment(db_session)
    db_session.commit()

    resp = api_client.post(
        f"/api/apartments/{apt.id}/reconciliation",
        json={"period_start": "2026-01-01T00:00:00Z", "period_end": "2026-02-01T00:00:00Z"},
    )

    assert resp.status_code == 200
    summary = resp.json()["summary"]
    assert float(summary["total_actual_cost"]) == 0
    assert float(summary["total_balance"]) == 0


def test_reconciliation_store_and_fetch(api_client, db_session):
    apt = create_apartment(db_session)
    meter = create_meter(db_session, apt, MeterType.ELECTRICITY)
    start = datetime(2026, 1, 1, tzinfo=timezone.utc)
    end = datetime(2026, 2, 1, tzinfo=timezone.utc)
    add_readings(db_session, meter, [(start, "1000"), (end, "1350.5")])
    set_tariff(db_session, MeterType.ELECTRICITY, "0.1234")
    set_advance(db_session, apt, AdvanceCategory.ELECTRICITY, "30.00")
    db_session.commit()

    period = {"period_start": _iso(start), "period_end": _iso(end)}
    created = api_client.post(f"/api/apartments/{apt.id}/reconciliation", json=period)
    fetched = api_client.get(f"/api/apartments/{apt.id}/reconciliation", params=period)

    assert created.status_code == 200
    assert fetched.status_code == 200
    assert float(fetched.json()["per_type"]["ELECTRICITY"]["balance"]) == 13.25
    assert fetched.json()["summary"] == created.json()["summary"]


def test_reconciliation_errors_map_to_status_codes(api_client, db_session):
    apt = create_apartment(db_session)
    create_meter(db_session, apt, MeterType.WATER_HOT)
    db_session.commit()
    period = {"period_start": "2026-01-01T00:00:00Z", "period_end": "2026-02-01T00:00:00Z"}

    assert api_client.post("/api/apartments/missing/reconciliation", json=period).status_code == 404
    # WATER_HOT meter without a tariff.
    assert api_client.post(f"/api/apartments/{apt.id}/reconciliation", json=period).status_code == 422
    inverted = {"period_start": period["period_end"], "period_end": period["period_start"]}
    assert api_client.post(f"/api/apartments/{apt.id}/reconciliation", json=inverted).status_code == 400
    assert api_client.get(f"/api/apartments/{apt.id}/reconciliation", params=period).status_code == 404


def test_routes_are_registered():
    paths = app.openapi()["paths"]

    assert set(paths["/api/readings"]) == {"post"}
    assert set(paths["/api/cron/leak-escalation"]) == {"post"}
    assert set(paths["/api/cron/leak-pulse"]) == {"post"}
    assert set(paths["/api/apartments/{apartment_id}/reconciliation"]) == {"get", "post"}
    assert set(paths["/api/alerts/{alert_id}/resolve"]) == {"post"}
    assert "get" in paths["/health"]
