from __future__ import annotations

import calendar
import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Mapping

from dateutil.parser import isoparse
from dateutil.relativedelta import relativedelta

from nevermiss.domain.entities import (
    CompositePattern,
    CustomPattern,
    DailyPattern,
    MonthlyPattern,
    RecurrencePattern,
    WeekOfMonthPattern,
    WeeklyPattern,
    YearlyPattern,
)
from nevermiss.domain.enums import LAST_WEEK_OF_MONTH, DateType, RecurrenceUnit
from nevermiss.domain.errors import InvalidPatternError, NeverMissError, UnsupportedRecurrenceError
from nevermiss.domain.patterns import parse_pattern
from nevermiss.services import lunar_service

logger = logging.getLogger(__name__)

PREVIEW_FALLBACK = timedelta(days=7)


def parse_instant(value: str | datetime) -> datetime:
    """Parse an ISO instant into an aware UTC datetime. Naive input is UTC."""
    if isinstance(value, datetime):
        instant = value
    else:
        try:
            instant = isoparse(value.strip())
        except (AttributeError, ValueError) as exc:
            raise InvalidPatternError(f"not an ISO-8601 instant: {value!r}") from exc
    if instant.tzinfo is None:
        return instant.replace(tzinfo=timezone.utc)
    return instant.astimezone(timezone.utc)


def format_instant(value: datetime) -> str:
    instant = parse_instant(value)
    timespec = "seconds" if instant.microsecond == 0 else "milliseconds"
    return instant.isoformat(timespec=timespec).replace("+00:00", "Z")


def js_weekday(value: date) -> int:
    """Weekday with 0 for Sunday."""
    return (value.weekday() + 1) % 7


def nth_weekday_of_month(year: int, month: int, week_day: int, week_of_month: int) -> date:
    """Nth ``week_day`` (0=Sunday) of a month; week 5 is the last occurrence."""
    last_day = calendar.monthrange(year, month)[1]
    if week_of_month == LAST_WEEK_OF_MONTH:
        last_wd = js_weekday(date(year, month, last_day))
        return date(year, month, last_day - (last_wd - week_day) % 7)

    first = 1 + (week_day - js_weekday(date(year, month, 1))) % 7
    return date(year, month, first + (week_of_month - 1) * 7)


def _at(anchor: datetime, day: date) -> datetime:
    return datetime.combine(day, anchor.timetz())


class RecurrenceCalculator:
    """Maps an anchor instant and a recurrence pattern to the other end of a cycle.

    All arithmetic happens on aware UTC datetimes and keeps the anchor's time
    of day. With ``DateType.LUNAR`` month and year steps follow the lunar
    calendar; day and week steps are the same in both calendars.
    """

    def due_date_for(
        self,
        start: datetime,
        pattern: RecurrencePattern | Mapping[str, Any],
        date_type: DateType | str = DateType.SOLAR,
    ) -> datetime:
        pattern = parse_pattern(pattern)
        start = parse_instant(start)
        lunar = DateType(date_type) == DateType.LUNAR

        match pattern:
            case DailyPattern():
                due = start + timedelta(days=pattern.value)
            case WeeklyPattern(week_day=None):
                due = start + timedelta(weeks=pattern.value)
            case WeeklyPattern():
                # Anchored weekdays ignore value: the next matching day, never today.
                ahead = (pattern.week_day - js_weekday(start)) % 7 or 7
                due = start + timedelta(days=ahead)
            case MonthlyPattern(month_day=None):
                due = self._shift(start, RecurrenceUnit.MONTHS, pattern.value, lunar)
            case MonthlyPattern():
                shifted = self._shift(start, RecurrenceUnit.MONTHS, 1, lunar)
                due = self._on_month_day(shifted, pattern.month_day, lunar)
            case YearlyPattern():
                due = self._shift(
                    start, RecurrenceUnit.YEARS, pattern.value, lunar, pattern.is_leap_month
                )
            case WeekOfMonthPattern():
                due = self._week_of_month_after(start, pattern)
            case CustomPattern():
                due = self._shift(start, pattern.unit, pattern.value, lunar, pattern.is_leap_month)
            case CompositePattern():
                due = self._composite_due(start, pattern, lunar)
            case _:
                raise UnsupportedRecurrenceError(f"unsupported recurrence pattern: {pattern!r}")

        logger.debug("Due date for %s from %s (%s): %s", pattern.type, start, date_type, due)
        return due

    def start_date_for(
        self,
        due: datetime,
        pattern: RecurrencePattern | Mapping[str, Any],
        date_type: DateType | str = DateType.SOLAR,
    ) -> datetime:
        """Single-step inverse of ``due_date_for``.

        Exact for the plain interval patterns. Weekly and monthly patterns
        anchored to a weekday or month day step back a single period. For
        ``weekOfMonth`` it returns
        the same Nth weekday ``value`` years earlier, and for composite patterns
        the enabled offsets are subtracted in reverse.
        """
        pattern = parse_pattern(pattern)
        due = parse_instant(due)
        lunar = DateType(date_type) == DateType.LUNAR

        match pattern:
            case DailyPattern():
                start = due - timedelta(days=pattern.value)
            case WeeklyPattern(week_day=None):
                start = due - timedelta(weeks=pattern.value)
            case WeeklyPattern():
                start = due - timedelta(weeks=1)
            case MonthlyPattern(month_day=None):
                start = self._shift(due, RecurrenceUnit.MONTHS, -pattern.value, lunar)
            case MonthlyPattern():
                start = self._shift(due, RecurrenceUnit.MONTHS, -1, lunar)
            case YearlyPattern():
                start = self._shift(
                    due, RecurrenceUnit.YEARS, -pattern.value, lunar, pattern.is_leap_month
                )
            case WeekOfMonthPattern():
                day = nth_weekday_of_month(
                    due.year - pattern.value, pattern.month, pattern.week_day, pattern.week_of_month
                )
                start = _at(due, day)
            case CustomPattern():
                start = self._shift(due, pattern.unit, -pattern.value, lunar, pattern.is_leap_month)
            case CompositePattern():
                start = self._composite_start(due, pattern, lunar)
            case _:
                raise UnsupportedRecurrenceError(f"unsupported recurrence pattern: {pattern!r}")

        logger.debug("Start date for %s from %s (%s): %s", pattern.type, due, date_type, start)
        return start

    @staticmethod
    def _shift(
        anchor: datetime, unit: RecurrenceUnit, amount: int, lunar: bool, leap_month: bool = False
    ) -> datetime:
        if unit == RecurrenceUnit.DAYS:
            return anchor + timedelta(days=amount)
        if unit == RecurrenceUnit.WEEKS:
            return anchor + timedelta(weeks=amount)
        if unit == RecurrenceUnit.MONTHS:
            if lunar:
                return lunar_service.shift_lunar_months(anchor, amount)
            return anchor + relativedelta(months=amount)
        if unit == RecurrenceUnit.YEARS:
            if lunar:
                return lunar_service.shift_lunar_years(anchor, amount, prefer_leap=leap_month)
            return anchor + relativedelta(years=amount)
        raise UnsupportedRecurrenceError(f"unsupported recurrence unit: {unit!r}")

    @staticmethod
    def _on_month_day(anchor: datetime, month_day: int, lunar: bool) -> datetime:
        if lunar:
            current = lunar_service.solar_to_lunar(anchor)
            length = lunar_service.get_lunar_month_days(current.year, current.month, current.is_leap)
            day = lunar_service.lunar_to_solar(
                current.year, current.month, min(month_day, length), current.is_leap
            )
            return _at(anchor, day)
        last_day = calendar.monthrange(anchor.year, anchor.month)[1]
        return anchor.replace(day=min(month_day, last_day))

    @staticmethod
    def _week_of_month_after(start: datetime, pattern: WeekOfMonthPattern) -> datetime:
        def occurrence(year: int) -> datetime:
            day = nth_weekday_of_month(year, pattern.month, pattern.week_day, pattern.week_of_month)
            return _at(start, day)

        candidate = occurrence(start.year)
        if candidate <= start:
            candidate = occurrence(start.year + 1)
        return candidate

    def _composite_due(self, start: datetime, pattern: CompositePattern, lunar: bool) -> datetime:
        due = start
        if pattern.years_enabled and pattern.years:
            due = self._shift(due, RecurrenceUnit.YEARS, pattern.years, lunar, pattern.is_leap_month)
        if pattern.months_enabled and pattern.months:
            due = self._shift(due, RecurrenceUnit.MONTHS, pattern.months, lunar)

        if pattern.uses_week_of_month:
            following = due + relativedelta(months=1)
            day = nth_weekday_of_month(
                following.year, following.month, pattern.week_day, pattern.week_of_month
            )
            return _at(due, day)

        days = _composite_day_offset(pattern)
        return due + timedelta(days=days)

    def _composite_start(self, due: datetime, pattern: CompositePattern, lunar: bool) -> datetime:
        start = due
        if pattern.uses_week_of_month:
            start = start - relativedelta(months=1)
        else:
            start = start - timedelta(days=_composite_day_offset(pattern))
        if pattern.months_enabled and pattern.months:
            start = self._shift(start, RecurrenceUnit.MONTHS, -pattern.months, lunar)
        if pattern.years_enabled and pattern.years:
            start = self._shift(
                start, RecurrenceUnit.YEARS, -pattern.years, lunar, pattern.is_leap_month
            )
        return start


def _composite_day_offset(pattern: CompositePattern) -> int:
    if pattern.year_day_enabled and pattern.year_day:
        return pattern.year_day
    if pattern.month_day_enabled and pattern.month_day:
        return pattern.month_day
    return 0


def resolve_anchor(text: str | datetime, date_type: DateType | str = DateType.SOLAR) -> datetime:
    """Turn boundary input into a UTC instant.

    Lunar input may be Chinese-numeral text, which lands on midnight UTC of the
    matching solar day, or an ISO instant, which keeps its time of day.
    """
    if isinstance(text, datetime) or DateType(date_type) == DateType.SOLAR:
        return parse_instant(text)
    if lunar_service.looks_like_iso(text):
        return parse_instant(text)
    lunar = lunar_service.parse_lunar_date(text)
    day = lunar_service.lunar_to_solar(lunar.year, lunar.month, lunar.day, lunar.is_leap)
    return datetime.combine(day, time(0, 0), tzinfo=timezone.utc)


_DEFAULT_CALCULATOR = RecurrenceCalculator()


def calculate_due_date(
    start_date: str | datetime,
    pattern: RecurrencePattern | Mapping[str, Any],
    date_type: DateType | str = DateType.SOLAR,
) -> str:
    anchor = resolve_anchor(start_date, date_type)
    return format_instant(_DEFAULT_CALCULATOR.due_date_for(anchor, pattern, date_type))


def calculate_start_date(
    due_date: str | datetime,
    pattern: RecurrencePattern | Mapping[str, Any],
    date_type: DateType | str = DateType.SOLAR,
) -> str:
    anchor = resolve_anchor(due_date, date_type)
    return format_instant(_DEFAULT_CALCULATOR.start_date_for(anchor, pattern, date_type))


def preview_due_date(
    start_date: str | datetime,
    pattern: RecurrencePattern | Mapping[str, Any],
    date_type: DateType | str = DateType.SOLAR,
) -> str:
    """Lossy variant for live form previews: a week after the start on any error."""
    try:
        return calculate_due_date(start_date, pattern, date_type)
    except NeverMissError as exc:
        logger.warning("Preview for %r fell back to +7 days: %s", pattern, exc)
    try:
        anchor = resolve_anchor(start_date, date_type)
    except NeverMissError:
        anchor = datetime.now(timezone.utc)
    return format_instant(anchor + PREVIEW_FALLBACK)
