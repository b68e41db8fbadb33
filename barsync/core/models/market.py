"""Market-related enums and types."""

from enum import Enum


class TimeFrame(str, Enum):
    """Bar sampling granularity supported by the upstream gateway."""

    MINUTE_1 = "1min"
    MINUTE_5 = "5min"
    MINUTE_15 = "15min"
    MINUTE_30 = "30min"
    HOUR_1 = "1hour"
    HOUR_4 = "4hour"
    HOUR_8 = "8hour"
    DAY_1 = "1day"

    @property
    def interval_seconds(self) -> int:
        """Expected spacing between consecutive bars."""
        return _TIMEFRAME_SECONDS[self]


_TIMEFRAME_SECONDS: dict[TimeFrame, int] = {
    TimeFrame.MINUTE_1: 60,
    TimeFrame.MINUTE_5: 5 * 60,
    TimeFrame.MINUTE_15: 15 * 60,
    TimeFrame.MINUTE_30: 30 * 60,
    TimeFrame.HOUR_1: 60 * 60,
    TimeFrame.HOUR_4: 4 * 60 * 60,
    TimeFrame.HOUR_8: 8 * 60 * 60,
    TimeFrame.DAY_1: 24 * 60 * 60,
}


class Period(str, Enum):
    """Lookback periods understood by the upstream history endpoint."""

    DAY_1 = "1D"
    DAY_5 = "5D"
    WEEK_1 = "1W"
    MONTH_1 = "1M"
    MONTH_3 = "3M"
    MONTH_6 = "6M"
    YEAR_1 = "1Y"
    YEAR_2 = "2Y"

    @property
    def days(self) -> int:
        return _PERIOD_DAYS[self]


_PERIOD_DAYS: dict[Period, int] = {
    Period.DAY_1: 1,
    Period.DAY_5: 5,
    Period.WEEK_1: 7,
    Period.MONTH_1: 30,
    Period.MONTH_3: 90,
    Period.MONTH_6: 180,
    Period.YEAR_1: 365,
    Period.YEAR_2: 730,
}


class SecurityType(str, Enum):
    """Security types accepted by contract search."""

    STOCK = "STK"
    OPTION = "OPT"
    FUTURE = "FUT"
    FOREX = "CASH"
    BOND = "BOND"
    CFD = "CFD"
    COMMODITY = "CMDTY"
    CRYPTO = "CRYPTO"
    WARRANT = "WAR"
    FUND = "FUND"
    INDEX = "IND"
    COMBO = "BAG"


DEFAULT_SEC_TYPE = SecurityType.STOCK.value
DEFAULT_EXCHANGE = "SMART"
DEFAULT_CURRENCY = "USD"
