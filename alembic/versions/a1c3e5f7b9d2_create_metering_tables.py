"""create metering tables

Revision ID: a1c3e5f7b9d2
Revises:
Create Date: 2026-10-12 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "a1c3e5f7b9d2"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _has_table(name: str) -> bool:
    return sa.inspect(op.get_bind()).has_table(name)


def upgrade() -> None:
    if not _has_table("housing_companies"):
        op.create_table(
            "housing_companies",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.PrimaryKeyConstraint("id"),
        )

    if not _has_table("apartments"):
        op.create_table(
            "apartments",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("housing_company_id", sa.String(length=36), nullable=True),
            sa.Column("label", sa.String(length=60), nullable=False),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.ForeignKeyConstraint(["housing_company_id"], ["housing_companies.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_apartments_housing_company_id", "apartments", ["housing_company_id"], unique=False)

    if not _has_table("meters"):
        op.create_table(
            "meters",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("apartment_id", sa.String(length=36), nullable=False),
            sa.Column("type", sa.String(length=20), nullable=False),
            sa.Column("serial", sa.String(length=80), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.ForeignKeyConstraint(["apartment_id"], ["apartments.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_meters_apartment_id", "meters", ["apartment_id"], unique=False)

    if not _has_table("meter_readings"):
        op.create_table(
            "meter_readings",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("meter_id", sa.String(length=36), nullable=False),
            sa.Column("recorded_at", sa.DateTime(), nullable=False),
            sa.Column("value", sa.Numeric(14, 3), nullable=False),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.ForeignKeyConstraint(["meter_id"], ["meters.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("meter_id", "recorded_at", name="uq_meter_readings_meter_recorded_at"),
        )
        op.create_index(
            "ix_meter_readings_meter_recorded_at",
            "meter_readings",
            ["meter_id", "recorded_at"],
            unique=False,
        )

    if not _has_table("tariff_rates"):
        op.create_table(
            "tariff_rates",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("housing_company_id", sa.String(length=36), nullable=True),
            sa.Column("type", sa.String(length=20), nullable=False),
            sa.Column("price_per_unit", sa.Numeric(14, 4), nullable=False),
            sa.Column("valid_from", sa.Date(), nullable=False),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.ForeignKeyConstraint(["housing_company_id"], ["housing_companies.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint(
                "housing_company_id",
                "type",
                "valid_from",
                name="uq_tariff_rates_company_type_valid_from",
            ),
        )
        op.create_index("ix_tariff_rates_type_valid_from", "tariff_rates", ["type", "valid_from"], unique=False)

    if not _has_table("advance_payments"):
        op.create_table(
            "advance_payments",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("apartment_id", sa.String(length=36), nullable=False),
            sa.Column("category", sa.String(length=20), nullable=False),
            sa.Column("monthly_amount", sa.Numeric(12, 2), nullable=False),
            sa.Column("updated_at", sa.DateTime(), nullable=False),
            sa.ForeignKeyConstraint(["apartment_id"], ["apartments.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("apartment_id", "category", name="uq_advance_payments_apartment_category"),
        )
        op.create_index("ix_advance_payments_apartment_id", "advance_payments", ["apartment_id"], unique=False)

    if not _has_table("leak_alerts"):
        op.create_table(
            "leak_alerts",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("apartment_id", sa.String(length=36), nullable=False),
            sa.Column("severity", sa.String(length=10), nullable=False),
            sa.Column("trigger", sa.String(length=20), nullable=False),
            sa.Column("status", sa.String(length=10), nullable=False),
            sa.Column("metadata_json", sa.JSON(), nullable=False),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.Column("escalated_at", sa.DateTime(), nullable=True),
            sa.Column("resolved_at", sa.DateTime(), nullable=True),
            sa.Column("resolution_note", sa.Text(), nullable=True),
            sa.ForeignKeyConstraint(["apartment_id"], ["apartments.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_leak_alerts_apartment_id", "leak_alerts", ["apartment_id"], unique=False)
        op.create_index("ix_leak_alerts_status_created_at", "leak_alerts", ["status", "created_at"], unique=False)
        op.create_index(
            "uq_leak_alerts_active_apartment_trigger",
            "leak_alerts",
            ["apartment_id", "trigger"],
            unique=True,
            sqlite_where=sa.text("status = 'ACTIVE'"),
            postgresql_where=sa.text("status = 'ACTIVE'"),
        )

    if not _has_table("reconciliation_reports"):
        op.create_table(
            "reconciliation_reports",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("apartment_id", sa.String(length=36), nullable=False),
            sa.Column("period_start", sa.DateTime(), nullable=False),
            sa.Column("period_end", sa.DateTime(), nullable=False),
            sa.Column("report_json", sa.JSON(), nullable=False),
            sa.Column("computed_at", sa.DateTime(), nullable=False),
            sa.ForeignKeyConstraint(["apartment_id"], ["apartments.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index(
            "ix_reconciliation_reports_apartment_period",
            "reconciliation_reports",
            ["apartment_id", "period_start", "period_end"],
            unique=False,
        )

    if not _has_table("audit_logs"):
        op.create_table(
            "audit_logs",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("apartment_id", sa.String(length=36), nullable=False),
            sa.Column("event_type", sa.String(length=80), nullable=False),
            sa.Column("actor", sa.String(length=40), nullable=False),
            sa.Column("reason", sa.String(length=200), nullable=True),
            sa.Column("alert_id", sa.String(length=36), nullable=True),
            sa.Column("before_state", sa.JSON(), nullable=True),
            sa.Column("after_state", sa.JSON(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.ForeignKeyConstraint(["apartment_id"], ["apartments.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_audit_logs_apartment_id", "audit_logs", ["apartment_id"], unique=False)
        op.create_index("ix_audit_logs_created_at", "audit_logs", ["created_at"], unique=False)
        op.create_index("ix_audit_logs_alert_id", "audit_logs", ["alert_id"], unique=False)


def downgrade() -> None:
    op.drop_table("audit_logs")
    op.drop_table("reconciliation_reports")
    op.drop_index("uq_leak_alerts_active_apartment_trigger", table_name="leak_alerts")
    op.drop_table("leak_alerts")
    op.drop_table("advance_payments")
    op.drop_table("tariff_rates")
    op.drop_table("meter_readings")
    op.drop_table("meters")
    op.drop_table("apartments")
    op.drop_table("housing_companies")
