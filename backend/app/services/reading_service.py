from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
import threading
import time
from typing import Iterable, Iterator, List, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from backend.app.domain.errors import ScanCancelled, ScanLimitExceeded
from backend.app.domain.metering import MeterType
from backend.app.models import Meter, MeterReading, as_utc_naive


@dataclass
class ScanBudget:
    """Bounds the historical scans of one run by row count, wall-clock deadline
    and a cancel flag.

    The row count accumulates over every scan the budget is passed to, so one
    budget shared across an apartment's meters bounds the whole run.
    ``deadline`` is a ``time.monotonic()`` value.
    """

    max_rows: int = 50_000
    deadline: Optional[float] = None
    cancel_event: Optional[threading.Event] = None
    rows_seen: int = field(default=0, init=False)

    @classmethod
    def with_timeout(
        cls,
        seconds: float,
        *,
        max_rows: int = 50_000,
        cancel_event: Optional[threading.Event] = None,
    ) -> "ScanBudget":
        return cls(max_rows=max_rows, deadline=time.monotonic() + seconds, cancel_event=cancel_event)

    def check(self) -> None:
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise ScanCancelled("reading scan cancelled")
        if self.deadline is not None and time.monotonic() > self.deadline:
            raise ScanCancelled("reading scan deadline passed")
        if self.rows_seen > self.max_rows:
            raise ScanLimitExceeded(self.max_rows)

    def consume(self, rows: int = 1) -> None:
        self.rows_seen += rows
        self.check()


def list_meters(
    db: Session,
    apartment_id: str,
    types: Optional[Iterable[MeterType]] = None,
) -> List[Meter]:
    stmt = select(Meter).where(Meter.apartment_id == apartment_id)
    if types is not None:
        stmt = stmt.where(Meter.type.in_([MeterType(t).value for t in types]))
    return list(db.execute(stmt.order_by(Meter.type.asc(), Meter.id.asc())).scalars().all())


def append_reading(
    db: Session,
    *,
    meter_id: str,
    recorded_at: datetime,
    value: Decimal,
) -> bool:
    """Append one cumulative reading. A repeat of (meter, timestamp) is a no-op."""
    recorded_at = as_utc_naive(recorded_at)
    existing = db.execute(
        select(MeterReading.id).where(
            MeterReading.meter_id == meter_id,
            MeterReading.recorded_at == recorded_at,
        )
    ).scalar_one_or_none()
    if existing:
        return False

    try:
        with db.begin_nested():
            db.add(
                MeterReading(
                    meter_id=meter_id,
                    recorded_at=recorded_at,
                    value=Decimal(str(value)),
                )
            )
            db.flush()
    except IntegrityError:
        return False
    return True


def latest_reading_at_or_before(db: Session, meter_id: str, at: datetime) -> Optional[MeterReading]:
    return (
        db.execute(
            select(MeterReading)
            .where(
                MeterReading.meter_id == meter_id,
                MeterReading.recorded_at <= as_utc_naive(at),
            )
            .order_by(MeterReading.recorded_at.desc())
            .limit(1)
        )
        .scalars()
        .first()
    )


def iter_readings(
    db: Session,
    meter_id: str,
    *,
    since: Optional[datetime] = None,
    until: Optional[datetime] = None,
    budget: Optional[ScanBudget] = None,
    batch_size: int = 500,
) -> Iterator[MeterReading]:
    """Stream a meter's readings ascending, checking the budget per row."""
    stmt = select(MeterReading).where(MeterReading.meter_id == meter_id)
    if since is not None:
        stmt = stmt.where(MeterReading.recorded_at >= as_utc_naive(since))
    if until is not None:
        stmt = stmt.where(MeterReading.recorded_at <= as_utc_naive(until))
    stmt = stmt.order_by(MeterReading.recorded_at.asc()).execution_options(yield_per=batch_size)

    if budget is not None:
        budget.check()
    for row in db.execute(stmt).scalars():
        if budget is not None:
            budget.consume()
        yield row


def count_decreases(
    db: Session,
    meter_id: str,
    *,
    since: datetime,
    until: datetime,
) -> int:
    """Number of falling steps (meter replacements) between two instants, counted in SQL."""
    previous = func.lag(MeterReading.value, type_=MeterReading.value.type).over(
        order_by=MeterReading.recorded_at.asc()
    )
    step = (MeterReading.value - previous).label("step")
    steps = (
        select(step)
        .where(
            MeterReading.meter_id == meter_id,
            MeterReading.recorded_at >= as_utc_naive(since),
            MeterReading.recorded_at <= as_utc_naive(until),
        )
        .subquery()
    )
    return int(
        db.execute(select(func.count()).select_from(steps).where(steps.c.step < 0)).scalar_one()
    )


def load_readings(
    db: Session,
    meter_id: str,
    *,
    since: Optional[datetime] = None,
    until: Optional[datetime] = None,
    budget: Optional[ScanBudget] = None,
) -> List[MeterReading]:
    return list(iter_readings(db, meter_id, since=since, until=until, budget=budget))
