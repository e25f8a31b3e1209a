from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
import logging
from typing import Dict, Optional

from sqlalchemy import select, text
from sqlalchemy.orm import Session

from backend.app.domain.contracts import ReconciliationReport, ReconciliationSummary, TypeBreakdown
from backend.app.domain.errors import ApartmentNotFound
from backend.app.domain.metering import WATER_METER_TYPES, MeterType
from backend.app.models import Apartment, Meter, ReconciliationReportRecord, as_utc, as_utc_naive
from backend.app.services import reading_service
from backend.app.services.advance_service import AdvanceConfig
from backend.app.services.reading_service import ScanBudget
from backend.app.services.tariff_service import TariffCatalog

logger = logging.getLogger(__name__)

DAYS_PER_MONTH = Decimal("30.44")
SECONDS_PER_DAY = Decimal("86400")
CENT = Decimal("0.01")
CONSUMPTION_UNIT = Decimal("0.001")
ZERO = Decimal("0")


def _money(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def _units(value: Decimal) -> Decimal:
    return value.quantize(CONSUMPTION_UNIT, rounding=ROUND_HALF_UP)


def months_between(period_start: datetime, period_end: datetime) -> int:
    """Equivalent month count for advance accrual, never less than one."""
    seconds = Decimal(str((period_end - period_start).total_seconds()))
    months = (seconds / (DAYS_PER_MONTH * SECONDS_PER_DAY)).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return max(1, int(months))


@dataclass(frozen=True)
class MeterConsumption:
    meter_id: str
    meter_type: MeterType
    consumption: Decimal
    missing_readings: bool = False
    resets: int = 0


def _begin_snapshot(db: Session) -> None:
    # One consistent view for every read of the run. SQLite transactions are
    # already serializable; Postgres needs it asked for before the first query.
    if db.get_bind().dialect.name == "postgresql" and not db.in_transaction():
        db.execute(text("SET TRANSACTION ISOLATION LEVEL REPEATABLE READ READ ONLY"))


def _end_snapshot(db: Session) -> None:
    # The Postgres snapshot is READ ONLY; close it before writing.
    if db.get_bind().dialect.name == "postgresql":
        db.rollback()


def _empty_report(apartment_id: str, period_start: datetime, period_end: datetime, months: int) -> ReconciliationReport:
    return ReconciliationReport(
        apartment_id=apartment_id,
        period_start=period_start,
        period_end=period_end,
        months=months,
        per_type={t: TypeBreakdown() for t in MeterType},
        summary=ReconciliationSummary(),
    )


class BillingReconciler:
    """Utility-cost reconciliation ("tasaus") for one apartment and period.

    Consumption comes from cumulative meter readings, cost from the tariff
    catalog at the period end, and the flat monthly advances are accrued over
    the period and set against the cost. The shared WATER advance is split
    between hot and cold water in proportion to their cost.

    Money is ``Decimal`` throughout and quantized to cents. The cold water
    share of the advance is whatever the hot share leaves, so the two always
    add back up to the water advance.
    """

    def __init__(
        self,
        tariffs: TariffCatalog,
        advances: AdvanceConfig,
        *,
        max_scan_rows: int = 50_000,
    ):
        self.tariffs = tariffs
        self.advances = advances
        self.max_scan_rows = max_scan_rows

    def meter_consumption(
        self,
        db: Session,
        meter: Meter,
        period_start: datetime,
        period_end: datetime,
        *,
        budget: ScanBudget,
    ) -> MeterConsumption:
        meter_type = MeterType(meter.type)
        start_reading = reading_service.latest_reading_at_or_before(db, meter.id, period_start)
        end_reading = reading_service.latest_reading_at_or_before(db, meter.id, period_end)
        if start_reading is None or end_reading is None:
            logger.warning(
                "Missing %s reading for meter_id=%s apartment_id=%s in %s..%s; consumption counted as 0",
                "start" if start_reading is None else "end",
                meter.id,
                meter.apartment_id,
                period_start.isoformat(),
                period_end.isoformat(),
            )
            return MeterConsumption(meter.id, meter_type, ZERO, missing_readings=True)

        budget.check()
        if not reading_service.count_decreases(
            db, meter.id, since=start_reading.recorded_at, until=end_reading.recorded_at
        ):
            return MeterConsumption(
                meter.id, meter_type, Decimal(end_reading.value) - Decimal(start_reading.value)
            )

        # A falling counter is a replaced meter, never negative consumption:
        # walk the span and sum only the positive steps.
        consumed = ZERO
        resets = 0
        previous: Optional[Decimal] = None
        for row in reading_service.iter_readings(
            db,
            meter.id,
            since=start_reading.recorded_at,
            until=end_reading.recorded_at,
            budget=budget,
        ):
            value = Decimal(row.value)
            if previous is not None:
                step = value - previous
                if step < 0:
                    resets += 1
                else:
                    consumed += step
            previous = value

        if resets:
            logger.warning(
                "Meter reset detected %s time(s) on meter_id=%s apartment_id=%s; falling steps ignored",
                resets,
                meter.id,
                meter.apartment_id,
            )
        return MeterConsumption(meter.id, meter_type, consumed, resets=resets)

    def calculate(
        self,
        db: Session,
        apartment_id: str,
        period_start: datetime,
        period_end: datetime,
        *,
        budget: Optional[ScanBudget] = None,
    ) -> ReconciliationReport:
        period_start = as_utc(period_start)
        period_end = as_utc(period_end)
        if period_end < period_start:
            raise ValueError("period_end must not be before period_start")

        _begin_snapshot(db)
        apartment = db.get(Apartment, apartment_id)
        if not apartment:
            raise ApartmentNotFound(apartment_id)

        months = months_between(period_start, period_end)
        meters = reading_service.list_meters(db, apartment_id)
        if not meters:
            logger.info("Apartment %s has no meters; reconciliation is all zero", apartment_id)
            return _empty_report(apartment_id, period_start, period_end, months)

        budget = budget or ScanBudget(max_rows=self.max_scan_rows)
        consumption: Dict[MeterType, Decimal] = {t: ZERO for t in MeterType}
        for meter in meters:
            usage = self.meter_consumption(db, meter, period_start, period_end, budget=budget)
            consumption[usage.meter_type] += usage.consumption

        present_types = {MeterType(m.type) for m in meters}
        cost: Dict[MeterType, Decimal] = {t: ZERO for t in MeterType}
        for meter_type in MeterType:
            if meter_type not in present_types:
                continue
            price = self.tariffs.get_price(
                meter_type,
                period_end,
                housing_company_id=apartment.housing_company_id,
            )
            cost[meter_type] = _money(consumption[meter_type] * price)

        advance = self.advances.get(apartment_id)
        paid = self._allocate_advances(apartment_id, cost, advance.water * months, advance.electricity * months)

        per_type: Dict[MeterType, TypeBreakdown] = {}
        for meter_type in MeterType:
            per_type[meter_type] = TypeBreakdown(
                consumption=_units(consumption[meter_type]),
                actual_cost=cost[meter_type],
                paid_advance=paid[meter_type],
                balance=cost[meter_type] - paid[meter_type],
            )

        summary = ReconciliationSummary(
            total_actual_cost=sum((b.actual_cost for b in per_type.values()), ZERO),
            total_paid_advance=sum((b.paid_advance for b in per_type.values()), ZERO),
            total_balance=sum((b.balance for b in per_type.values()), ZERO),
        )
        return ReconciliationReport(
            apartment_id=apartment_id,
            period_start=period_start,
            period_end=period_end,
            months=months,
            per_type=per_type,
            summary=summary,
        )

    def _allocate_advances(
        self,
        apartment_id: str,
        cost: Dict[MeterType, Decimal],
        water_advance: Decimal,
        electricity_advance: Decimal,
    ) -> Dict[MeterType, Decimal]:
        water_advance = _money(water_advance)
        paid = {
            MeterType.WATER_HOT: ZERO,
            MeterType.WATER_COLD: ZERO,
            MeterType.ELECTRICITY: _money(electricity_advance),
        }
        water_cost = sum((cost[t] for t in WATER_METER_TYPES), ZERO)
        if water_cost > 0:
            hot_ratio = cost[MeterType.WATER_HOT] / water_cost
            paid[MeterType.WATER_HOT] = _money(water_advance * hot_ratio)
            paid[MeterType.WATER_COLD] = water_advance - paid[MeterType.WATER_HOT]
        elif water_advance > 0:
            logger.warning(
                "Water advance %s for apartment_id=%s left unallocated: no water cost in period",
                water_advance,
                apartment_id,
            )
        return paid

    def calculate_and_store(
        self,
        db: Session,
        apartment_id: str,
        period_start: datetime,
        period_end: datetime,
        *,
        budget: Optional[ScanBudget] = None,
    ) -> ReconciliationReport:
        report = self.calculate(db, apartment_id, period_start, period_end, budget=budget)
        _end_snapshot(db)
        db.add(
            ReconciliationReportRecord(
                apartment_id=apartment_id,
                period_start=as_utc_naive(report.period_start),
                period_end=as_utc_naive(report.period_end),
                report_json=report.model_dump(mode="json"),
            )
        )
        db.commit()
        return report


def get_stored_report(
    db: Session,
    apartment_id: str,
    period_start: datetime,
    period_end: datetime,
) -> Optional[ReconciliationReport]:
    record = (
        db.execute(
            select(ReconciliationReportRecord)
            .where(
                ReconciliationReportRecord.apartment_id == apartment_id,
                ReconciliationReportRecord.period_start == as_utc_naive(period_start),
                ReconciliationReportRecord.period_end == as_utc_naive(period_end),
            )
            .order_by(ReconciliationReportRecord.computed_at.desc())
            .limit(1)
        )
        .scalars()
        .first()
    )
    if record is None:
        return None
    return ReconciliationReport.model_validate(record.report_json)

