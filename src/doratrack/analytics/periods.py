"""Calendar bucketing for period metrics."""

from __future__ import annotations

import calendar
from datetime import UTC, date, datetime, time, timedelta

from pydantic import BaseModel

from doratrack.models.base import PeriodType


class Period(BaseModel):
    """Inclusive calendar-day bucket."""

    start: date
    end: date

    @property
    def start_at(self) -> datetime:
        return datetime.combine(self.start, time.min, tzinfo=UTC)

    @property
    def end_at(self) -> datetime:
        return datetime.combine(self.end, time.max, tzinfo=UTC)

    @property
    def days(self) -> int:
        return (self.end - self.start).days + 1


def _add_month(day: date) -> date:
    if day.month == 12:
        return date(day.year + 1, 1, 1)
    return date(day.year, day.month + 1, 1)


def iter_periods(
    range_start: date,
    range_end: date,
    period_type: PeriodType | str | None,
) -> list[Period]:
    """Split ``[range_start, range_end]`` into buckets.

    Weekly and biweekly buckets start on the Monday on or before
    ``range_start``; monthly buckets start on the first of the month. The
    last bucket is clipped to ``range_end``. Unknown granularity yields no
    buckets.
    """
    if period_type is None:
        return []
    try:
        kind = PeriodType(period_type)
    except ValueError:
        return []

    periods: list[Period] = []
    if kind in (PeriodType.WEEKLY, PeriodType.BIWEEKLY):
        length = 7 if kind == PeriodType.WEEKLY else 14
        cursor = range_start - timedelta(days=range_start.weekday())
        while cursor <= range_end:
            end = min(cursor + timedelta(days=length - 1), range_end)
            periods.append(Period(start=cursor, end=end))
            cursor += timedelta(days=length)
        return periods

    cursor = range_start.replace(day=1)
    while cursor <= range_end:
        last_day = calendar.monthrange(cursor.year, cursor.month)[1]
        end = min(cursor.replace(day=last_day), range_end)
        periods.append(Period(start=cursor, end=end))
        cursor = _add_month(cursor)
    return periods
