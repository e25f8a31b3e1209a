from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Annotated, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter

from backend.app.domain.metering import AlertStatus, LeakTrigger, MeterType, Severity


# -------------------------
# Ingestion
# -------------------------

class MeterReadingRecord(BaseModel):
    meter_id: str
    recorded_at: datetime
    value: Decimal


class ReadingIngestRequest(BaseModel):
    readings: List[MeterReadingRecord]


# -------------------------
# Alert metadata, one shape per trigger
# -------------------------

class BurstMetadata(BaseModel):
    trigger: Literal["DEFENDER"] = "DEFENDER"
    meter_id: Optional[str] = None
    reason: str = "Instantaneous flow spike detected"
    flow_rate: float
    threshold: float
    interval_hours: float


class DripMetadata(BaseModel):
    trigger: Literal["SENTINEL"] = "SENTINEL"
    meter_id: Optional[str] = None
    reason: str = "Continuous flow detected (non-zero minimum)"
    min_flow_rate: float
    threshold: float
    window_points: int


class VolumeMetadata(BaseModel):
    trigger: Literal["GUARDIAN"] = "GUARDIAN"
    meter_id: Optional[str] = None
    # every meter summed into the apartment totals
    meter_ids: List[str] = Field(default_factory=list)
    reason: str = "Projected daily volume far above trailing average"
    projected_daily: float
    baseline_daily_average: float
    multiplier: float
    baseline_days: float


AlertMetadata = Annotated[
    Union[BurstMetadata, DripMetadata, VolumeMetadata],
    Field(discriminator="trigger"),
]

ALERT_METADATA_ADAPTER: TypeAdapter = TypeAdapter(AlertMetadata)


def parse_alert_metadata(raw: dict) -> Union[BurstMetadata, DripMetadata, VolumeMetadata]:
    return ALERT_METADATA_ADAPTER.validate_python(raw)


class LeakAlertView(BaseModel):
    id: str
    apartment_id: str
    severity: Severity
    trigger: LeakTrigger
    status: AlertStatus
    metadata: AlertMetadata
    created_at: datetime
    escalated_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    resolution_note: Optional[str] = None


class ResolveAlertRequest(BaseModel):
    note: Optional[str] = None


# -------------------------
# Reconciliation ("tasaus")
# -------------------------

class TypeBreakdown(BaseModel):
    consumption: Decimal = Decimal("0")
    actual_cost: Decimal = Decimal("0")
    paid_advance: Decimal = Decimal("0")
    balance: Decimal = Decimal("0")


class ReconciliationSummary(BaseModel):
    total_actual_cost: Decimal = Decimal("0")
    total_paid_advance: Decimal = Decimal("0")
    total_balance: Decimal = Decimal("0")


class ReconciliationReport(BaseModel):
    apartment_id: str
    period_start: datetime
    period_end: datetime
    months: int
    per_type: Dict[MeterType, TypeBreakdown]
    summary: ReconciliationSummary


class ReconciliationRequest(BaseModel):
    period_start: datetime
    period_end: datetime
