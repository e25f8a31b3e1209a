from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from backend.app.domain.errors import TariffNotFound
from backend.app.domain.metering import AdvanceCategory, MeterType
from backend.app.models import HousingCompany, TariffRate
from backend.app.services.advance_service import SqlAdvanceConfig
from backend.app.services.tariff_service import SqlTariffCatalog
from backend.tests.factories import create_apartment, set_advance, set_tariff


def test_latest_effective_rate_wins(db_session):
    set_tariff(db_session, MeterType.WATER_HOT, "5.10", valid_from=date(2025, 1, 1))
    set_tariff(db_session, MeterType.WATER_HOT, "5.60", valid_from=date(2026, 1, 15))
    db_session.commit()
    catalog = SqlTariffCatalog(db_session)

    assert catalog.get_price(MeterType.WATER_HOT, date(2026, 1, 14)) == Decimal("5.10")
    assert catalog.get_price(MeterType.WATER_HOT, date(2026, 1, 15)) == Decimal("5.60")
    assert catalog.get_price(
        MeterType.WATER_HOT, datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
    ) == Decimal("5.60")


def test_company_rate_overrides_global(db_session):
    company = HousingCompany(name="As Oy Rantapuisto")
    db_session.add(company)
    db_session.flush()
    set_tariff(db_session, MeterType.ELECTRICITY, "0.15")
    set_tariff(db_session, MeterType.ELECTRICITY, "0.12", company_id=company.id)
    db_session.commit()
    catalog = SqlTariffCatalog(db_session)

    assert catalog.get_price(MeterType.ELECTRICITY, date(2026, 2, 1), housing_company_id=company.id) == Decimal("0.12")
    assert catalog.get_price(MeterType.ELECTRICITY, date(2026, 2, 1), housing_company_id="other") == Decimal("0.15")
    assert catalog.get_price(MeterType.ELECTRICITY, date(2026, 2, 1)) == Decimal("0.15")


def test_missing_rate_raises(db_session):
    set_tariff(db_session, MeterType.WATER_COLD, "4.00", valid_from=date(2026, 6, 1))
    db_session.commit()
    catalog = SqlTariffCatalog(db_session)

    with pytest.raises(TariffNotFound):
        catalog.get_price(MeterType.WATER_COLD, date(2026, 5, 31))
    with pytest.raises(TariffNotFound):
        catalog.get_price(MeterType.ELECTRICITY, date(2026, 7, 1))


def test_advances_default_to_zero(db_session):
    apt = create_apartment(db_session)
    db_session.commit()

    amounts = SqlAdvanceConfig(db_session).get(apt.id)

    assert amounts.water == 0
    assert amounts.electricity == 0


def test_set_advance_updates_in_place(db_session):
    apt = create_apartment(db_session)
    set_advance(db_session, apt, AdvanceCategory.WATER, "25.00")
    set_advance(db_session, apt, AdvanceCategory.WATER, "28.50")
    set_advance(db_session, apt, AdvanceCategory.ELECTRICITY, "40.00")
    db_session.commit()

    amounts = SqlAdvanceConfig(db_session).get(apt.id)

    assert amounts.water == Decimal("28.50")
    assert amounts.electricity == Decimal("40.00")


def test_duplicate_global_rates_resolve_to_the_newest_entry(db_session):
    # NULL company ids do not collide in the unique constraint.
    for price, entered in (("0.20", datetime(2026, 1, 2)), ("0.18", datetime(2026, 1, 5))):
        db_session.add(
            TariffRate(
                housing_company_id=None,
                type=MeterType.ELECTRICITY.value,
                price_per_unit=Decimal(price),
                valid_from=date(2026, 1, 1),
                created_at=entered,
            )
        )
    db_session.commit()

    price = SqlTariffCatalog(db_session).get_price(MeterType.ELECTRICITY, date(2026, 2, 1))

    assert price == Decimal("0.18")
