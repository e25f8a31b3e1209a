from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Optional, Tuple

from dotenv import load_dotenv

from backend.app.domain.metering import WATER_METER_TYPES, MeterType

load_dotenv()


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return float(raw.strip())


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return int(raw.strip())


def _env_str(name: str) -> Optional[str]:
    raw = (os.getenv(name) or "").strip()
    return raw or None


def _env_meter_types(name: str, default: Tuple[MeterType, ...]) -> Tuple[MeterType, ...]:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return tuple(MeterType(part.strip().upper()) for part in raw.split(",") if part.strip())


@dataclass(frozen=True)
class MeteringSettings:
    # DEFENDER
    burst_threshold_per_hour: float = 500.0

    # SENTINEL
    drip_threshold_per_hour: float = 2.0
    sentinel_window: int = 5
    sentinel_min_points: int = 3

    # GUARDIAN
    guardian_multiplier: float = 2.0
    guardian_projection_hours: float = 24.0
    guardian_min_projection_hours: float = 3.0
    guardian_baseline_days: int = 30
    guardian_min_baseline_days: float = 7.0
    guardian_min_daily_volume: float = 50.0

    # Which meters are watched for leaks.
    leak_meter_types: Tuple[MeterType, ...] = WATER_METER_TYPES

    # Escalation of unresolved LOW/MEDIUM alerts to the board.
    escalation_after_hours: float = 24.0

    # Upper bound on rows a single reading scan may touch.
    scan_max_rows: int = 50_000

    # Push gateway. No URL means notifications are only logged.
    push_gateway_url: Optional[str] = None
    push_gateway_token: Optional[str] = field(default=None, repr=False)
    push_timeout_seconds: float = 10.0

    @property
    def detector_history_days(self) -> float:
        """How far back the monitor must read for every guard to have its inputs."""
        return self.guardian_baseline_days + self.guardian_projection_hours / 24.0

    @classmethod
    def from_env(cls) -> "MeteringSettings":
        defaults = cls()
        return cls(
            burst_threshold_per_hour=_env_float(
                "METERING_BURST_THRESHOLD_PER_HOUR", defaults.burst_threshold_per_hour
            ),
            drip_threshold_per_hour=_env_float(
                "METERING_DRIP_THRESHOLD_PER_HOUR", defaults.drip_threshold_per_hour
            ),
            sentinel_window=_env_int("METERING_SENTINEL_WINDOW", defaults.sentinel_window),
            sentinel_min_points=_env_int("METERING_SENTINEL_MIN_POINTS", defaults.sentinel_min_points),
            guardian_multiplier=_env_float("METERING_GUARDIAN_MULTIPLIER", defaults.guardian_multiplier),
            guardian_projection_hours=_env_float(
                "METERING_GUARDIAN_PROJECTION_HOURS", defaults.guardian_projection_hours
            ),
            guardian_min_projection_hours=_env_float(
                "METERING_GUARDIAN_MIN_PROJECTION_HOURS", defaults.guardian_min_projection_hours
            ),
            guardian_baseline_days=_env_int(
                "METERING_GUARDIAN_BASELINE_DAYS", defaults.guardian_baseline_days
            ),
            guardian_min_baseline_days=_env_float(
                "METERING_GUARDIAN_MIN_BASELINE_DAYS", defaults.guardian_min_baseline_days
            ),
            guardian_min_daily_volume=_env_float(
                "METERING_GUARDIAN_MIN_DAILY_VOLUME", defaults.guardian_min_daily_volume
            ),
            leak_meter_types=_env_meter_types("METERING_LEAK_METER_TYPES", defaults.leak_meter_types),
            escalation_after_hours=_env_float(
                "METERING_ESCALATION_AFTER_HOURS", defaults.escalation_after_hours
            ),
            scan_max_rows=_env_int("METERING_SCAN_MAX_ROWS", defaults.scan_max_rows),
            push_gateway_url=_env_str("PUSH_GATEWAY_URL"),
            push_gateway_token=_env_str("PUSH_GATEWAY_TOKEN"),
            push_timeout_seconds=_env_float("PUSH_GATEWAY_TIMEOUT_SECONDS", defaults.push_timeout_seconds),
        )
