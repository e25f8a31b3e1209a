from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Protocol

from sqlalchemy import select
from sqlalchemy.orm import Session

from backend.app.domain.metering import AdvanceCategory
from backend.app.models import AdvancePayment, db_utcnow


@dataclass(frozen=True)
class AdvanceAmounts:
    water: Decimal = Decimal("0")
    electricity: Decimal = Decimal("0")


class AdvanceConfig(Protocol):
    def get(self, apartment_id: str) -> AdvanceAmounts:
        ...


class SqlAdvanceConfig:
    """Monthly advances per apartment. A category with no row had no advance collected."""

    def __init__(self, db: Session):
        self.db = db

    def get(self, apartment_id: str) -> AdvanceAmounts:
        rows = (
            self.db.execute(select(AdvancePayment).where(AdvancePayment.apartment_id == apartment_id))
            .scalars()
            .all()
        )
        amounts = {row.category: Decimal(row.monthly_amount) for row in rows}
        return AdvanceAmounts(
            water=amounts.get(AdvanceCategory.WATER.value, Decimal("0")),
            electricity=amounts.get(AdvanceCategory.ELECTRICITY.value, Decimal("0")),
        )


def set_advance(
    db: Session,
    *,
    apartment_id: str,
    category: AdvanceCategory,
    monthly_amount: Decimal,
) -> AdvancePayment:
    category = AdvanceCategory(category)
    row = (
        db.execute(
            select(AdvancePayment).where(
                AdvancePayment.apartment_id == apartment_id,
                AdvancePayment.category == category.value,
            )
        )
        .scalars()
        .first()
    )
    if row is None:
        row = AdvancePayment(apartment_id=apartment_id, category=category.value)
        db.add(row)
    row.monthly_amount = Decimal(str(monthly_amount))
    row.updated_at = db_utcnow()
    db.flush()
    return row
