from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import InvalidOperation
import logging
import math
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Union

from backend.app.config import MeteringSettings
from backend.app.domain.contracts import BurstMetadata, DripMetadata, VolumeMetadata
from backend.app.domain.metering import LeakTrigger, Severity

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReadingPoint:
    recorded_at: datetime
    value: float


@dataclass(frozen=True)
class AlertRequest:
    apartment_id: str
    severity: Severity
    trigger: LeakTrigger
    metadata: Union[BurstMetadata, DripMetadata, VolumeMetadata]


@dataclass(frozen=True)
class FlowInterval:
    start: ReadingPoint
    end: ReadingPoint

    @property
    def hours(self) -> float:
        return (self.end.recorded_at - self.start.recorded_at).total_seconds() / 3600.0

    @property
    def delta(self) -> float:
        return self.end.value - self.start.value

    @property
    def is_reset(self) -> bool:
        return self.delta < 0

    @property
    def rate(self) -> Optional[float]:
        """Units per hour, or None when the interval cannot carry a rate.

        Duplicate timestamps, clock skew and meter replacements (a falling
        counter) never yield a rate.
        """
        hours = self.hours
        if hours <= 0 or self.is_reset:
            return None
        return self.delta / hours


@dataclass(frozen=True)
class GuardRunResult:
    guard_id: str
    trigger: LeakTrigger
    ran: bool
    skipped_reason: Optional[str]
    fired: bool
    severity: Optional[Severity]
    evidence_keys: List[str]


@dataclass(frozen=True)
class LeakRunSummary:
    alerts: List[AlertRequest]
    guards: List[GuardRunResult]


GuardRunner = Callable[[str, List[ReadingPoint], MeteringSettings, Optional[str]], List[AlertRequest]]


@dataclass(frozen=True)
class GuardDefinition:
    guard_id: str
    trigger: LeakTrigger
    min_points: Callable[[MeteringSettings], int]
    runner: GuardRunner


def _normalize_dt(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _coerce_point(raw: object) -> Optional[ReadingPoint]:
    recorded_at = getattr(raw, "recorded_at", None)
    value = getattr(raw, "value", None)
    if not isinstance(recorded_at, datetime) or value is None:
        return None
    try:
        numeric = float(value)
    except (TypeError, ValueError, OverflowError, InvalidOperation):
        return None
    if not math.isfinite(numeric):
        return None
    return ReadingPoint(recorded_at=_normalize_dt(recorded_at), value=numeric)


def clean_series(points: Iterable[object]) -> List[ReadingPoint]:
    """Drop malformed points and sort ascending by time.

    Accepts anything with ``recorded_at`` and ``value`` attributes
    (``ReadingPoint``, ORM ``MeterReading`` rows, ingestion records).
    """
    cleaned: List[ReadingPoint] = []
    for raw in points or []:
        point = _coerce_point(raw)
        if point is not None:
            cleaned.append(point)
    cleaned.sort(key=lambda pt: pt.recorded_at)
    return cleaned


def flow_intervals(series: List[ReadingPoint]) -> List[FlowInterval]:
    return [FlowInterval(start=series[i - 1], end=series[i]) for i in range(1, len(series))]


def detect_burst(
    apartment_id: str,
    points: Iterable[object],
    *,
    threshold: float = 500.0,
    meter_id: Optional[str] = None,
) -> List[AlertRequest]:
    series = clean_series(points)
    if len(series) < 2:
        return []

    last = FlowInterval(start=series[-2], end=series[-1])
    rate = last.rate
    if rate is None:
        if last.is_reset:
            logger.debug("Meter reset on meter_id=%s, burst check skipped", meter_id)
        return []
    if rate <= threshold:
        return []

    return [
        AlertRequest(
            apartment_id=apartment_id,
            severity=Severity.HIGH,
            trigger=LeakTrigger.DEFENDER,
            metadata=BurstMetadata(
                meter_id=meter_id,
                flow_rate=rate,
                threshold=threshold,
                interval_hours=round(last.hours, 4),
            ),
        )
    ]


def detect_drip(
    apartment_id: str,
    points: Iterable[object],
    *,
    threshold: float = 2.0,
    window: int = 5,
    min_points: int = 3,
    meter_id: Optional[str] = None,
) -> List[AlertRequest]:
    series = clean_series(points)
    recent = series[-window:] if window > 0 else []
    if len(recent) < max(2, min_points):
        return []

    rates = [iv.rate for iv in flow_intervals(recent) if iv.rate is not None]
    # Every interval a minimum-sized window needs must carry a rate.
    if len(rates) < max(1, min_points - 1):
        return []

    min_flow = min(rates)
    if min_flow <= threshold:
        return []

    return [
        AlertRequest(
            apartment_id=apartment_id,
            severity=Severity.LOW,
            trigger=LeakTrigger.SENTINEL,
            metadata=DripMetadata(
                meter_id=meter_id,
                min_flow_rate=min_flow,
                threshold=threshold,
                window_points=len(recent),
            ),
        )
    ]


def _volume(intervals: Iterable[FlowInterval]) -> tuple[float, float]:
    """Total consumption and the hours it covers, over rate-carrying intervals only."""
    consumed = 0.0
    hours = 0.0
    for iv in intervals:
        if iv.rate is None:
            continue
        consumed += iv.delta
        hours += iv.hours
    return consumed, hours


@dataclass(frozen=True)
class VolumeProfile:
    projected_daily: float
    baseline_daily: float
    baseline_days: float


def volume_profile(
    series: List[ReadingPoint],
    *,
    anchor: Optional[datetime] = None,
    projection_hours: float = 24.0,
    min_projection_hours: float = 3.0,
    baseline_days: int = 30,
    min_baseline_days: float = 7.0,
) -> Optional[VolumeProfile]:
    """Projected and trailing daily volume of one meter, or None without enough coverage.

    The projection window is the last ``projection_hours`` before ``anchor``
    (the latest reading by default); the baseline is the ``baseline_days``
    before that. Intervals that straddle the boundary belong to neither side.
    """
    if len(series) < 2:
        return None

    latest = anchor or series[-1].recorded_at
    window_start = latest - timedelta(hours=projection_hours)
    baseline_start = window_start - timedelta(days=baseline_days)

    intervals = [iv for iv in flow_intervals(series) if iv.end.recorded_at <= latest]
    projection = [iv for iv in intervals if iv.start.recorded_at >= window_start]
    baseline = [
        iv
        for iv in intervals
        if iv.start.recorded_at >= baseline_start and iv.end.recorded_at <= window_start
    ]

    projected_volume, projected_hours = _volume(projection)
    if projected_hours < min_projection_hours or projected_hours <= 0:
        return None
    baseline_volume, baseline_hours = _volume(baseline)
    covered_days = baseline_hours / 24.0
    if covered_days < min_baseline_days or covered_days <= 0:
        return None

    return VolumeProfile(
        projected_daily=projected_volume / projected_hours * 24.0,
        baseline_daily=baseline_volume / covered_days,
        baseline_days=covered_days,
    )


def _volume_alert(
    apartment_id: str,
    profiles: Dict[str, VolumeProfile],
    *,
    multiplier: float,
    min_daily_volume: float,
    meter_id: Optional[str],
) -> List[AlertRequest]:
    if not profiles:
        return []
    projected_daily = sum(p.projected_daily for p in profiles.values())
    baseline_daily = sum(p.baseline_daily for p in profiles.values())
    if baseline_daily <= 0:
        return []
    if projected_daily < min_daily_volume:
        return []
    if projected_daily <= multiplier * baseline_daily:
        return []

    return [
        AlertRequest(
            apartment_id=apartment_id,
            severity=Severity.MEDIUM,
            trigger=LeakTrigger.GUARDIAN,
            metadata=VolumeMetadata(
                meter_id=meter_id,
                meter_ids=sorted(k for k in profiles if k is not None),
                projected_daily=round(projected_daily, 3),
                baseline_daily_average=round(baseline_daily, 3),
                multiplier=multiplier,
                baseline_days=round(min(p.baseline_days for p in profiles.values()), 2),
            ),
        )
    ]


def detect_volume_spike(
    apartment_id: str,
    points: Iterable[object],
    *,
    multiplier: float = 2.0,
    projection_hours: float = 24.0,
    min_projection_hours: float = 3.0,
    baseline_days: int = 30,
    min_baseline_days: float = 7.0,
    min_daily_volume: float = 50.0,
    meter_id: Optional[str] = None,
) -> List[AlertRequest]:
    """Projected daily volume of one series against its trailing daily average."""
    profile = volume_profile(
        clean_series(points),
        projection_hours=projection_hours,
        min_projection_hours=min_projection_hours,
        baseline_days=baseline_days,
        min_baseline_days=min_baseline_days,
    )
    profiles = {meter_id: profile} if profile is not None else {}
    return _volume_alert(
        apartment_id,
        profiles,
        multiplier=multiplier,
        min_daily_volume=min_daily_volume,
        meter_id=meter_id,
    )


def detect_apartment_volume_spike(
    apartment_id: str,
    series_by_meter: Mapping[str, Iterable[object]],
    *,
    multiplier: float = 2.0,
    projection_hours: float = 24.0,
    min_projection_hours: float = 3.0,
    baseline_days: int = 30,
    min_baseline_days: float = 7.0,
    min_daily_volume: float = 50.0,
) -> List[AlertRequest]:
    """Apartment-wide projected daily volume against the apartment's trailing average.

    Each meter's projection and baseline are summed, so use moving between hot
    and cold water does not read as a spike. All meters share one window,
    anchored at the newest reading of any of them; a meter without coverage on
    both sides is left out of both sums.
    """
    cleaned = {meter_id: clean_series(points) for meter_id, points in series_by_meter.items()}
    latest = [series[-1].recorded_at for series in cleaned.values() if series]
    if not latest:
        return []
    anchor = max(latest)

    profiles: Dict[str, VolumeProfile] = {}
    for meter_id, series in cleaned.items():
        profile = volume_profile(
            series,
            anchor=anchor,
            projection_hours=projection_hours,
            min_projection_hours=min_projection_hours,
            baseline_days=baseline_days,
            min_baseline_days=min_baseline_days,
        )
        if profile is not None:
            profiles[meter_id] = profile

    return _volume_alert(
        apartment_id,
        profiles,
        multiplier=multiplier,
        min_daily_volume=min_daily_volume,
        meter_id=next(iter(profiles)) if len(profiles) == 1 else None,
    )


def _volume_kwargs(settings: MeteringSettings) -> Dict[str, float]:
    return {
        "multiplier": settings.guardian_multiplier,
        "projection_hours": settings.guardian_projection_hours,
        "min_projection_hours": settings.guardian_min_projection_hours,
        "baseline_days": settings.guardian_baseline_days,
        "min_baseline_days": settings.guardian_min_baseline_days,
        "min_daily_volume": settings.guardian_min_daily_volume,
    }


def _run_burst(apartment_id, series, settings, meter_id):
    return detect_burst(
        apartment_id,
        series,
        threshold=settings.burst_threshold_per_hour,
        meter_id=meter_id,
    )


def _run_drip(apartment_id, series, settings, meter_id):
    return detect_drip(
        apartment_id,
        series,
        threshold=settings.drip_threshold_per_hour,
        window=settings.sentinel_window,
        min_points=settings.sentinel_min_points,
        meter_id=meter_id,
    )


def _run_volume(apartment_id, series, settings, meter_id):
    return detect_volume_spike(apartment_id, series, meter_id=meter_id, **_volume_kwargs(settings))


GUARD_DEFINITIONS: List[GuardDefinition] = [
    GuardDefinition("detect_burst", LeakTrigger.DEFENDER, lambda s: 2, _run_burst),
    GuardDefinition("detect_drip", LeakTrigger.SENTINEL, lambda s: max(2, s.sentinel_min_points), _run_drip),
    GuardDefinition("detect_volume_spike", LeakTrigger.GUARDIAN, lambda s: 3, _run_volume),
]

# Guards judged on the apartment's combined meters rather than meter by meter.
APARTMENT_TRIGGERS = (LeakTrigger.GUARDIAN,)

_SEVERITY_RANK = {Severity.LOW: 0, Severity.MEDIUM: 1, Severity.HIGH: 2}


def _skipped(guard: GuardDefinition) -> GuardRunResult:
    return GuardRunResult(
        guard_id=guard.guard_id,
        trigger=guard.trigger,
        ran=False,
        skipped_reason="insufficient_points",
        fired=False,
        severity=None,
        evidence_keys=[],
    )


def _ran(guard: GuardDefinition, alerts: List[AlertRequest]) -> GuardRunResult:
    fired = bool(alerts)
    strongest = None
    if fired:
        strongest = max((a.severity for a in alerts), key=lambda sev: _SEVERITY_RANK[sev])
    evidence_keys = sorted(
        {k for a in alerts for k in a.metadata.model_dump(exclude_none=True).keys()}
    )
    return GuardRunResult(
        guard_id=guard.guard_id,
        trigger=guard.trigger,
        ran=True,
        skipped_reason=None,
        fired=fired,
        severity=strongest,
        evidence_keys=evidence_keys,
    )


def run_leak_guards_with_summary(
    apartment_id: str,
    points: Iterable[object],
    *,
    settings: Optional[MeteringSettings] = None,
    meter_id: Optional[str] = None,
    triggers: Optional[Iterable[LeakTrigger]] = None,
) -> LeakRunSummary:
    settings = settings or MeteringSettings()
    series = clean_series(points)
    wanted = set(triggers) if triggers is not None else None

    all_alerts: List[AlertRequest] = []
    guard_results: List[GuardRunResult] = []

    for guard in GUARD_DEFINITIONS:
        if wanted is not None and guard.trigger not in wanted:
            continue
        if len(series) < guard.min_points(settings):
            guard_results.append(_skipped(guard))
            continue

        alerts = guard.runner(apartment_id, series, settings, meter_id)
        guard_results.append(_ran(guard, alerts))
        all_alerts.extend(alerts)

    return LeakRunSummary(alerts=all_alerts, guards=guard_results)


def run_leak_guards(
    apartment_id: str,
    points: Iterable[object],
    *,
    settings: Optional[MeteringSettings] = None,
    meter_id: Optional[str] = None,
) -> List[AlertRequest]:
    return run_leak_guards_with_summary(
        apartment_id,
        points,
        settings=settings,
        meter_id=meter_id,
    ).alerts


@dataclass(frozen=True)
class ApartmentRunSummary:
    alerts: List[AlertRequest]
    meters: Dict[str, LeakRunSummary]
    apartment_guards: List[GuardRunResult]


def run_apartment_leak_guards(
    apartment_id: str,
    series_by_meter: Mapping[str, Iterable[object]],
    *,
    settings: Optional[MeteringSettings] = None,
) -> ApartmentRunSummary:
    """Burst and drip guards per meter, the volume guard over the apartment's meters combined."""
    settings = settings or MeteringSettings()
    cleaned = {meter_id: clean_series(points) for meter_id, points in series_by_meter.items()}
    meter_triggers = [g.trigger for g in GUARD_DEFINITIONS if g.trigger not in APARTMENT_TRIGGERS]

    all_alerts: List[AlertRequest] = []
    meters: Dict[str, LeakRunSummary] = {}
    for meter_id, series in cleaned.items():
        summary = run_leak_guards_with_summary(
            apartment_id,
            series,
            settings=settings,
            meter_id=meter_id,
            triggers=meter_triggers,
        )
        meters[meter_id] = summary
        all_alerts.extend(summary.alerts)

    apartment_guards: List[GuardRunResult] = []
    for guard in GUARD_DEFINITIONS:
        if guard.trigger not in APARTMENT_TRIGGERS:
            continue
        if not any(len(series) >= guard.min_points(settings) for series in cleaned.values()):
            apartment_guards.append(_skipped(guard))
            continue
        alerts = detect_apartment_volume_spike(apartment_id, cleaned, **_volume_kwargs(settings))
        apartment_guards.append(_ran(guard, alerts))
        all_alerts.extend(alerts)

    return ApartmentRunSummary(alerts=all_alerts, meters=meters, apartment_guards=apartment_guards)
