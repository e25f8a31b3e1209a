from __future__ import annotations

from enum import Enum


class MeterType(str, Enum):
    WATER_HOT = "WATER_HOT"
    WATER_COLD = "WATER_COLD"
    ELECTRICITY = "ELECTRICITY"


class AdvanceCategory(str, Enum):
    WATER = "WATER"
    ELECTRICITY = "ELECTRICITY"


class Severity(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class LeakTrigger(str, Enum):
    DEFENDER = "DEFENDER"
    SENTINEL = "SENTINEL"
    GUARDIAN = "GUARDIAN"


class AlertStatus(str, Enum):
    ACTIVE = "ACTIVE"
    RESOLVED = "RESOLVED"


class PushRecipient(str, Enum):
    RESIDENT = "RESIDENT"
    BOARD = "BOARD"
    MAINTENANCE = "MAINTENANCE"


WATER_METER_TYPES = (MeterType.WATER_HOT, MeterType.WATER_COLD)
