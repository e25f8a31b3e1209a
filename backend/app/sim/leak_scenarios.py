# backend/app/sim/leak_scenarios.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from backend.app.config import MeteringSettings
from backend.app.domain.metering import LeakTrigger
from backend.app.models import as_utc, utcnow
from backend.app.services import reading_service
from backend.app.signals.leak import LeakRunSummary, ReadingPoint, run_leak_guards_with_summary


class ScenarioKind(str, Enum):
    BURST = "BURST"
    DRIP = "DRIP"
    HIGH_USAGE = "HIGH_USAGE"


@dataclass(frozen=True)
class LeakScenario:
    kind: ScenarioKind
    label: str
    # the guard this series is built to trip; others may fire as well
    expected_trigger: LeakTrigger
    points: List[ReadingPoint]


def _burst(now: datetime) -> List[ReadingPoint]:
    # 10 units in the first hour, then 610 in the next.
    values = [1000.0, 1010.0, 1620.0]
    start = now - timedelta(hours=len(values) - 1)
    return [ReadingPoint(recorded_at=start + timedelta(hours=i), value=v) for i, v in enumerate(values)]


def _drip(now: datetime) -> List[ReadingPoint]:
    # Six hourly readings climbing 5 units/h, never pausing.
    start = now - timedelta(hours=5)
    return [ReadingPoint(recorded_at=start + timedelta(hours=i), value=200.0 + 5.0 * i) for i in range(6)]


def _high_usage(now: datetime) -> List[ReadingPoint]:
    # 30 days at 150/day, read daily, then a day read hourly at 100/h.
    window_start = now - timedelta(hours=24)
    history_start = window_start - timedelta(days=30)
    points = [
        ReadingPoint(recorded_at=history_start + timedelta(days=d), value=150.0 * d)
        for d in range(31)
    ]
    base = points[-1].value
    points.extend(
        ReadingPoint(recorded_at=window_start + timedelta(hours=h), value=base + 100.0 * h)
        for h in range(1, 25)
    )
    return points


_BUILDERS = {
    ScenarioKind.BURST: ("Burst pipe", LeakTrigger.DEFENDER, _burst),
    ScenarioKind.DRIP: ("Dripping tap", LeakTrigger.SENTINEL, _drip),
    ScenarioKind.HIGH_USAGE: ("Running toilet all day", LeakTrigger.GUARDIAN, _high_usage),
}


def build_scenario(kind: ScenarioKind, *, now: Optional[datetime] = None) -> LeakScenario:
    """Deterministic reading series ending at ``now``."""
    kind = ScenarioKind(kind)
    now = as_utc(now) or utcnow()
    label, trigger, builder = _BUILDERS[kind]
    return LeakScenario(kind=kind, label=label, expected_trigger=trigger, points=builder(now))


def simulate_leak(
    apartment_id: str,
    kind: ScenarioKind,
    *,
    settings: Optional[MeteringSettings] = None,
    now: Optional[datetime] = None,
) -> LeakRunSummary:
    """Run the guards over a scenario directly, without touching the store."""
    scenario = build_scenario(kind, now=now)
    return run_leak_guards_with_summary(apartment_id, scenario.points, settings=settings)


def seed_scenario(
    db: Session,
    meter_id: str,
    kind: ScenarioKind,
    *,
    now: Optional[datetime] = None,
) -> Dict[str, int]:
    """Write a scenario's readings for one meter, for demos and end-to-end runs."""
    scenario = build_scenario(kind, now=now)
    inserted = 0
    for point in scenario.points:
        if reading_service.append_reading(
            db,
            meter_id=meter_id,
            recorded_at=point.recorded_at,
            value=Decimal(str(point.value)),
        ):
            inserted += 1
    db.commit()
    return {"inserted": inserted, "points": len(scenario.points)}
