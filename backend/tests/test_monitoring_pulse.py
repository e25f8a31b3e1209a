from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import select

from backend.app.config import MeteringSettings
from backend.app.domain.contracts import MeterReadingRecord
from backend.app.domain.errors import ApartmentNotFound, ScanLimitExceeded
from backend.app.domain.metering import LeakTrigger, MeterType, PushRecipient
from backend.app.models import LeakAlert
from backend.app.services import monitoring_service
from backend.app.services.alert_service import AlertManager
from backend.app.services.reading_service import ScanBudget
from backend.app.sim.leak_scenarios import ScenarioKind, seed_scenario
from backend.tests.factories import add_readings, create_apartment, create_meter, hourly


NOW = datetime(2026, 6, 1, 12, 0, tzinfo=timezone.utc)


def _triggers(db, apartment_id: str) -> set[str]:
    rows = db.execute(select(LeakAlert).where(LeakAlert.apartment_id == apartment_id)).scalars().all()
    return {row.trigger for row in rows}


def test_ingest_reports_duplicates_and_unknown_meters(db_session):
    apt = create_apartment(db_session)
    meter = create_meter(db_session, apt, MeterType.WATER_COLD)
    db_session.commit()

    records = [
        MeterReadingRecord(meter_id=meter.id, recorded_at=NOW, value=Decimal("10")),
        MeterReadingRecord(meter_id=meter.id, recorded_at=NOW, value=Decimal("10")),
        MeterReadingRecord(meter_id=meter.id, recorded_at=NOW + timedelta(hours=1), value=Decimal("12")),
        MeterReadingRecord(meter_id="no-such-meter", recorded_at=NOW, value=Decimal("1")),
    ]
    summary = monitoring_service.ingest_readings(db_session, records)

    assert summary.accepted == 2
    assert summary.duplicates == 1
    assert [r["meter_id"] for r in summary.rejected] == ["no-such-meter"]
    assert summary.apartment_ids == [apt.id]


def test_pulse_creates_burst_alert_once(db_session, recording_gateway):
    apt = create_apartment(db_session)
    meter = create_meter(db_session, apt, MeterType.WATER_COLD)
    db_session.commit()
    seed_scenario(db_session, meter.id, ScenarioKind.BURST, now=NOW)
    manager = AlertManager(recording_gateway)

    first = monitoring_service.pulse(db_session, apt.id, manager, now=NOW)
    second = monitoring_service.pulse(db_session, apt.id, manager, now=NOW)

    assert LeakTrigger.DEFENDER.value in _triggers(db_session, apt.id)
    assert first["created_alert_ids"]
    assert second["created_alert_ids"] == []
    assert sorted(second["existing_alert_ids"]) == sorted(first["created_alert_ids"])
    assert PushRecipient.BOARD in recording_gateway.recipients()


def test_pulse_detects_high_usage_from_stored_history(db_session, recording_gateway):
    apt = create_apartment(db_session)
    meter = create_meter(db_session, apt, MeterType.WATER_HOT)
    db_session.commit()
    seed_scenario(db_session, meter.id, ScenarioKind.HIGH_USAGE, now=NOW)

    result = monitoring_service.pulse(db_session, apt.id, AlertManager(recording_gateway), now=NOW)

    assert LeakTrigger.GUARDIAN.value in _triggers(db_session, apt.id)
    guards = {g["guard_id"]: g for g in result["apartment_guards"]}
    assert guards["detect_volume_spike"]["fired"] is True


def test_pulse_ignores_electricity_meters(db_session, recording_gateway):
    apt = create_apartment(db_session)
    meter = create_meter(db_session, apt, MeterType.ELECTRICITY)
    add_readings(db_session, meter, hourly(NOW - timedelta(hours=2), ["1000", "1010", "1620"]))
    db_session.commit()

    result = monitoring_service.pulse(db_session, apt.id, AlertManager(recording_gateway), now=NOW)

    assert result["meters"] == []
    assert _triggers(db_session, apt.id) == set()


def test_pulse_only_sees_readings_up_to_now(db_session, recording_gateway):
    apt = create_apartment(db_session)
    meter = create_meter(db_session, apt, MeterType.WATER_COLD)
    add_readings(db_session, meter, hourly(NOW - timedelta(hours=1), ["1000", "1010", "1620"]))
    db_session.commit()

    monitoring_service.pulse(db_session, apt.id, AlertManager(recording_gateway), now=NOW)

    assert LeakTrigger.DEFENDER.value not in _triggers(db_session, apt.id)


def test_pulse_respects_settings(db_session, recording_gateway):
    apt = create_apartment(db_session)
    meter = create_meter(db_session, apt, MeterType.ELECTRICITY)
    add_readings(db_session, meter, hourly(NOW - timedelta(hours=2), ["1000", "1010", "1620"]))
    db_session.commit()
    settings = MeteringSettings(leak_meter_types=(MeterType.ELECTRICITY,))

    monitoring_service.pulse(db_session, apt.id, AlertManager(recording_gateway), settings=settings, now=NOW)

    assert LeakTrigger.DEFENDER.value in _triggers(db_session, apt.id)


def test_pulse_unknown_apartment_raises(db_session, recording_gateway):
    with pytest.raises(ApartmentNotFound):
        monitoring_service.pulse(db_session, "missing", AlertManager(recording_gateway), now=NOW)


def _daily_then_hourly(daily_use: str, last_day_per_hour: str) -> list[tuple[datetime, str]]:
    # 30 days read daily, then the last day read hourly, ending at NOW.
    window_start = NOW - timedelta(hours=24)
    history_start = window_start - timedelta(days=30)
    rows = [(history_start + timedelta(days=d), str(Decimal(daily_use) * d)) for d in range(31)]
    base = Decimal(daily_use) * 30
    rows.extend(
        (window_start + timedelta(hours=h), str(base + Decimal(last_day_per_hour) * h))
        for h in range(1, 25)
    )
    return rows


def test_volume_guard_judges_the_apartment_total(db_session, recording_gateway):
    # Hot water goes 12 -> 72 a day and cold 168 -> 108: the apartment stays at 180.
    apt = create_apartment(db_session)
    hot = create_meter(db_session, apt, MeterType.WATER_HOT)
    cold = create_meter(db_session, apt, MeterType.WATER_COLD)
    add_readings(db_session, hot, _daily_then_hourly("12", "3"))
    add_readings(db_session, cold, _daily_then_hourly("168", "4.5"))
    db_session.commit()

    result = monitoring_service.pulse(db_session, apt.id, AlertManager(recording_gateway), now=NOW)

    assert LeakTrigger.GUARDIAN.value not in _triggers(db_session, apt.id)
    guards = {g["guard_id"]: g for g in result["apartment_guards"]}
    assert guards["detect_volume_spike"]["ran"] is True
    assert guards["detect_volume_spike"]["fired"] is False
    per_meter = {g["guard_id"] for m in result["meters"] for g in m["guards"]}
    assert per_meter == {"detect_burst", "detect_drip"}


def test_volume_guard_fires_once_for_a_combined_spike(db_session, recording_gateway):
    # 12 + 168 = 180 a day, then 72 + 300 = 372.
    apt = create_apartment(db_session)
    hot = create_meter(db_session, apt, MeterType.WATER_HOT)
    cold = create_meter(db_session, apt, MeterType.WATER_COLD)
    add_readings(db_session, hot, _daily_then_hourly("12", "3"))
    add_readings(db_session, cold, _daily_then_hourly("168", "12.5"))
    db_session.commit()

    monitoring_service.pulse(db_session, apt.id, AlertManager(recording_gateway), now=NOW)

    rows = db_session.execute(
        select(LeakAlert).where(
            LeakAlert.apartment_id == apt.id,
            LeakAlert.trigger == LeakTrigger.GUARDIAN.value,
        )
    ).scalars().all()
    assert len(rows) == 1
    assert rows[0].metadata_json["projected_daily"] == 372
    assert rows[0].metadata_json["baseline_daily_average"] == 180
    assert sorted(rows[0].metadata_json["meter_ids"]) == sorted([hot.id, cold.id])


def test_pulse_budget_covers_every_meter(db_session, recording_gateway):
    apt = create_apartment(db_session)
    for meter_type in (MeterType.WATER_HOT, MeterType.WATER_COLD):
        meter = create_meter(db_session, apt, meter_type)
        add_readings(db_session, meter, hourly(NOW - timedelta(hours=3), ["10", "11", "12", "13"]))
    db_session.commit()

    # Each meter alone fits in five rows, both together do not.
    with pytest.raises(ScanLimitExceeded):
        monitoring_service.pulse(
            db_session,
            apt.id,
            AlertManager(recording_gateway),
            now=NOW,
            budget=ScanBudget(max_rows=5),
        )
