from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Optional, Protocol, Union

from sqlalchemy import select
from sqlalchemy.orm import Session

from backend.app.domain.errors import TariffNotFound
from backend.app.domain.metering import MeterType
from backend.app.models import TariffRate


class TariffCatalog(Protocol):
    def get_price(
        self,
        utility_type: MeterType,
        as_of: Union[date, datetime],
        *,
        housing_company_id: Optional[str] = None,
    ) -> Decimal:
        ...


def _as_date(value: Union[date, datetime]) -> date:
    if isinstance(value, datetime):
        return value.date()
    return value


class SqlTariffCatalog:
    """Effective-dated tariff lookup against the tariff_rates table.

    Resolves the most recent rate with ``valid_from <= as_of``. A housing
    company's own rates win over global rows (``housing_company_id IS NULL``).
    A miss raises ``TariffNotFound``; pricing at zero would understate bills.
    """

    def __init__(self, db: Session):
        self.db = db

    def _latest(self, utility_type: MeterType, as_of: date, housing_company_id: Optional[str]):
        stmt = select(TariffRate).where(
            TariffRate.type == MeterType(utility_type).value,
            TariffRate.valid_from <= as_of,
        )
        if housing_company_id is None:
            stmt = stmt.where(TariffRate.housing_company_id.is_(None))
        else:
            stmt = stmt.where(TariffRate.housing_company_id == housing_company_id)
        return (
            # Several rows on one day: the most recently entered wins.
            self.db.execute(
                stmt.order_by(
                    TariffRate.valid_from.desc(),
                    TariffRate.created_at.desc(),
                    TariffRate.id.desc(),
                ).limit(1)
            )
            .scalars()
            .first()
        )

    def get_price(
        self,
        utility_type: MeterType,
        as_of: Union[date, datetime],
        *,
        housing_company_id: Optional[str] = None,
    ) -> Decimal:
        as_of_date = _as_date(as_of)
        rate = None
        if housing_company_id is not None:
            rate = self._latest(utility_type, as_of_date, housing_company_id)
        if rate is None:
            rate = self._latest(utility_type, as_of_date, None)
        if rate is None:
            raise TariffNotFound(MeterType(utility_type).value, as_of_date, housing_company_id)
        return Decimal(rate.price_per_unit)


def set_rate(
    db: Session,
    *,
    utility_type: MeterType,
    price_per_unit: Decimal,
    valid_from: date,
    housing_company_id: Optional[str] = None,
) -> TariffRate:
    row = TariffRate(
        housing_company_id=housing_company_id,
        type=MeterType(utility_type).value,
        price_per_unit=Decimal(str(price_per_unit)),
        valid_from=valid_from,
    )
    db.add(row)
    db.flush()
    return row
