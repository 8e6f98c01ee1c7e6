from dataclasses import dataclass
from datetime import date, datetime, time, timezone
from typing import Optional
from zoneinfo import ZoneInfo


@dataclass(frozen=True)
class Period:
    """Half-open ``[start, end)`` range of naive UTC timestamps."""

    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        if self.start > self.end:
            raise ValueError("Start must not be after end")

    def contains(self, moment: datetime) -> bool:
        return self.start <= moment < self.end


def _local_midnight_utc(day: date, tz: ZoneInfo) -> datetime:
    local = datetime.combine(day, time.min, tzinfo=tz)
    return local.astimezone(timezone.utc).replace(tzinfo=None)


def _next_month(year: int, month: int) -> date:
    if month == 12:
        return date(year + 1, 1, 1)
    return date(year, month + 1, 1)


def month_period(year: int, month: int, tz_name: str = "UTC") -> Period:
    """Calendar month in ``tz_name`` expressed as a UTC range."""
    if not 1 <= month <= 12:
        raise ValueError("Month must be between 1 and 12")
    tz = ZoneInfo(tz_name)
    return Period(
        _local_midnight_utc(date(year, month, 1), tz),
        _local_midnight_utc(_next_month(year, month), tz),
    )


def resolve_month(
    year: Optional[int],
    month: Optional[int],
    tz_name: str = "UTC",
    *,
    today: Optional[date] = None,
) -> Period:
    today = today or datetime.now(ZoneInfo(tz_name)).date()
    return month_period(
        today.year if year is None else year,
        today.month if month is None else month,
        tz_name,
    )
