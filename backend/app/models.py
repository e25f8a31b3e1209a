from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    Date,
    DateTime,
    ForeignKey,
    Index,
    JSON,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.app.db import Base


# -------------------------
# Helpers
# -------------------------

def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc_naive(value: datetime) -> datetime:
    """DateTime columns hold naive UTC."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def db_utcnow() -> datetime:
    return as_utc_naive(utcnow())


def uuid_str() -> str:
    return str(uuid.uuid4())


# -------------------------
# Buildings and meters
# -------------------------

class HousingCompany(Base):
    __tablename__ = "housing_companies"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=uuid_str)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=db_utcnow, nullable=False)

    apartments = relationship(
        "Apartment",
        back_populates="housing_company",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class Apartment(Base):
    __tablename__ = "apartments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=uuid_str)
    housing_company_id: Mapped[Optional[str]] = mapped_column(
        String(36),
        ForeignKey("housing_companies.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    label: Mapped[str] = mapped_column(String(60), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=db_utcnow, nullable=False)

    housing_company = relationship("HousingCompany", back_populates="apartments")
    meters = relationship(
        "Meter",
        back_populates="apartment",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class Meter(Base):
    """
    Physical utility meter. type: WATER_HOT | WATER_COLD | ELECTRICITY
    """
    __tablename__ = "meters"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=uuid_str)
    apartment_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("apartments.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    serial: Mapped[Optional[str]] = mapped_column(String(80), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=db_utcnow, nullable=False)

    apartment = relationship("Apartment", back_populates="meters")


class MeterReading(Base):
    """
    Append-only cumulative counter values. Never updated after insert.
    """
    __tablename__ = "meter_readings"
    __table_args__ = (
        UniqueConstraint("meter_id", "recorded_at", name="uq_meter_readings_meter_recorded_at"),
        Index("ix_meter_readings_meter_recorded_at", "meter_id", "recorded_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=uuid_str)
    meter_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("meters.id", ondelete="CASCADE"),
        nullable=False,
    )
    recorded_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    value: Mapped[Decimal] = mapped_column(Numeric(14, 3), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=db_utcnow, nullable=False)


# -------------------------
# Tariffs and advances
# -------------------------

class TariffRate(Base):
    """
    Effective-dated unit price. A NULL housing_company_id is the global fallback.
    """
    __tablename__ = "tariff_rates"
    __table_args__ = (
        UniqueConstraint(
            "housing_company_id", "type", "valid_from", name="uq_tariff_rates_company_type_valid_from"
        ),
        Index("ix_tariff_rates_type_valid_from", "type", "valid_from"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=uuid_str)
    housing_company_id: Mapped[Optional[str]] = mapped_column(
        String(36),
        ForeignKey("housing_companies.id", ondelete="CASCADE"),
        nullable=True,
    )
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    price_per_unit: Mapped[Decimal] = mapped_column(Numeric(14, 4), nullable=False)
    valid_from: Mapped[date] = mapped_column(Date, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=db_utcnow, nullable=False)


class AdvancePayment(Base):
    """
    Monthly advance per category. WATER covers both hot and cold sub-meters.
    """
    __tablename__ = "advance_payments"
    __table_args__ = (
        UniqueConstraint("apartment_id", "category", name="uq_advance_payments_apartment_category"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=uuid_str)
    apartment_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("apartments.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    category: Mapped[str] = mapped_column(String(20), nullable=False)
    monthly_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=db_utcnow, nullable=False)


# -------------------------
# Alerts and reports
# -------------------------

class LeakAlert(Base):
    __tablename__ = "leak_alerts"
    __table_args__ = (
        # At most one ACTIVE alert per (apartment, trigger). The conditional
        # unique index makes check-then-insert safe across processes.
        Index(
            "uq_leak_alerts_active_apartment_trigger",
            "apartment_id",
            "trigger",
            unique=True,
            sqlite_where=text("status = 'ACTIVE'"),
            postgresql_where=text("status = 'ACTIVE'"),
        ),
        Index("ix_leak_alerts_status_created_at", "status", "created_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=uuid_str)
    apartment_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("apartments.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    severity: Mapped[str] = mapped_column(String(10), nullable=False)
    trigger: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(10), nullable=False, default="ACTIVE")
    metadata_json: Mapped[dict] = mapped_column(JSON, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=db_utcnow, nullable=False)
    escalated_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    resolution_note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)


class ReconciliationReportRecord(Base):
    """
    One row per reconciliation run. Rows are never updated.
    """
    __tablename__ = "reconciliation_reports"
    __table_args__ = (
        Index(
            "ix_reconciliation_reports_apartment_period",
            "apartment_id",
            "period_start",
            "period_end",
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=uuid_str)
    apartment_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("apartments.id", ondelete="CASCADE"),
        nullable=False,
    )
    period_start: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    period_end: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    report_json: Mapped[dict] = mapped_column(JSON, nullable=False)
    computed_at: Mapped[datetime] = mapped_column(DateTime, default=db_utcnow, nullable=False)


class AuditLog(Base):
    """
    Append-only audit log for leak alert lifecycle changes.
    """
    __tablename__ = "audit_logs"
    __table_args__ = (
        Index("ix_audit_logs_apartment_id", "apartment_id"),
        Index("ix_audit_logs_created_at", "created_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=uuid_str)

    apartment_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("apartments.id", ondelete="CASCADE"),
        nullable=False,
    )

    event_type: Mapped[str] = mapped_column(String(80), nullable=False)
    actor: Mapped[str] = mapped_column(String(40), nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)

    alert_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True, index=True)

    before_state: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    after_state: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=db_utcnow, nullable=False)
