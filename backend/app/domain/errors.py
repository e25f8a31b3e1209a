from __future__ import annotations


class MeteringError(Exception):
    """Base class for errors raised by the metering core."""


class ApartmentNotFound(MeteringError):
    def __init__(self, apartment_id: str):
        super().__init__(f"apartment not found: {apartment_id}")
        self.apartment_id = apartment_id


class AlertNotFound(MeteringError):
    def __init__(self, alert_id: str):
        super().__init__(f"leak alert not found: {alert_id}")
        self.alert_id = alert_id


class TariffNotFound(MeteringError):
    """No tariff row is valid for the requested type and date.

    Raised instead of pricing at zero: a silent zero would understate the bill.
    """

    def __init__(self, utility_type: str, as_of, housing_company_id=None):
        scope = f" for housing company {housing_company_id}" if housing_company_id else ""
        super().__init__(f"no tariff configured for {utility_type} as of {as_of}{scope}")
        self.utility_type = utility_type
        self.as_of = as_of
        self.housing_company_id = housing_company_id


class AlertPersistenceError(MeteringError):
    """Persisting a leak alert failed. The caller owns retry of the whole batch."""


class ScanLimitExceeded(MeteringError):
    def __init__(self, max_rows: int):
        super().__init__(f"reading scan exceeded row budget of {max_rows}")
        self.max_rows = max_rows


class ScanCancelled(MeteringError):
    pass
