"""
Aggregation windows.

A window is built per request from the organization, a time range and an
optional grouping granularity; it is never persisted.
"""

from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import Optional, Union

from .errors import ValidationError


class Granularity(str, Enum):
    """Grouping granularity of a window"""
    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    QUARTER = "quarter"
    YEAR = "year"


class Period(str, Enum):
    """Revenue trend periods"""
    YEAR = "year"
    QUARTER = "quarter"
    MONTH = "month"
    WEEK = "week"


# A period picks both the date range and the bucket size inside it
PERIOD_GRANULARITY = {
    Period.YEAR: Granularity.MONTH,
    Period.QUARTER: Granularity.WEEK,
    Period.MONTH: Granularity.DAY,
    Period.WEEK: Granularity.DAY,
}


def utcnow() -> datetime:
    """Naive UTC now"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def shift_months(moment: datetime, months: int) -> datetime:
    """First day of the month `months` away from the month containing `moment`"""
    index = moment.year * 12 + (moment.month - 1) + months
    return datetime(index // 12, index % 12 + 1, 1)


def _as_datetime(value: Union[date, datetime]) -> datetime:
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return value
    return datetime(value.year, value.month, value.day)


def validate_window_days(days) -> int:
    if isinstance(days, bool) or not isinstance(days, int):
        raise ValidationError("Window length must be a whole number of days")
    if days <= 0:
        raise ValidationError("Window length must be greater than zero")
    return days


@dataclass(frozen=True)
class AggregationWindow:
    """Half-open [start, end) range for one organization"""
    org_id: str
    start: datetime
    end: datetime
    granularity: Optional[Granularity] = None

    @property
    def days(self) -> float:
        return (self.end - self.start) / timedelta(days=1)

    @classmethod
    def trailing(cls, org_id: str, now: datetime, days: int) -> "AggregationWindow":
        """The last `days` days up to now"""
        days = validate_window_days(days)
        try:
            start = now - timedelta(days=days)
            # the comparison window must fit as well
            start - timedelta(days=days)
        except OverflowError:
            raise ValidationError("Window length reaches past the supported date range") from None
        return cls(org_id=org_id, start=start, end=now)

    def previous(self) -> "AggregationWindow":
        """Equal-length window ending where this one starts"""
        length = self.end - self.start
        return AggregationWindow(
            org_id=self.org_id,
            start=self.start - length,
            end=self.start,
            granularity=self.granularity,
        )

    @classmethod
    def for_period(
        cls,
        org_id: str,
        period: Union[str, Period],
        now: datetime,
        year: Optional[int] = None,
        quarter: Optional[int] = None,
        month: Optional[int] = None,
        week_start: Optional[Union[date, datetime]] = None,
    ) -> "AggregationWindow":
        """
        Build the range for a revenue trend period.

        year and month default to the calendar values of `now`, quarter to
        the quarter containing `now`. Weekly trends need an explicit
        week_start.
        """
        try:
            period = Period(period)
        except ValueError:
            allowed = [p.value for p in Period]
            raise ValidationError(f"Period must be one of: {allowed}") from None

        year = now.year if year is None else year
        if isinstance(year, bool) or not isinstance(year, int) or not 1 <= year <= 9998:
            raise ValidationError("Year must be between 1 and 9998")

        if period == Period.YEAR:
            start = datetime(year, 1, 1)
            end = datetime(year + 1, 1, 1)
        elif period == Period.QUARTER:
            quarter = (now.month - 1) // 3 + 1 if quarter is None else quarter
            if isinstance(quarter, bool) or not isinstance(quarter, int) or not 1 <= quarter <= 4:
                raise ValidationError("Quarter must be between 1 and 4")
            start = datetime(year, (quarter - 1) * 3 + 1, 1)
            end = shift_months(start, 3)
        elif period == Period.MONTH:
            month = now.month if month is None else month
            if isinstance(month, bool) or not isinstance(month, int) or not 1 <= month <= 12:
                raise ValidationError("Month must be between 1 and 12")
            start = datetime(year, month, 1)
            end = shift_months(start, 1)
        else:
            if week_start is None:
                raise ValidationError("start_date is required for weekly trends")
            start = _as_datetime(week_start)
            end = start + timedelta(days=7)

        return cls(
            org_id=org_id,
            start=start,
            end=end,
            granularity=PERIOD_GRANULARITY[period],
        )
