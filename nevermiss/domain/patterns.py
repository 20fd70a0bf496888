"""Conversion between the stored recurrence dict and pattern variants.

The stored form is the camelCase mapping used by the task forms, e.g.
``{"type": "weekly", "value": 1, "weekDay": 3}``.
"""
from __future__ import annotations

from typing import Any, Mapping

from .entities import (
    CompositePattern,
    CustomPattern,
    DailyPattern,
    MonthlyPattern,
    RecurrencePattern,
    WeekOfMonthPattern,
    WeeklyPattern,
    YearlyPattern,
)
from .enums import RecurrenceType
from .errors import InvalidPatternError, UnsupportedRecurrenceError

_PATTERN_TYPES = (
    DailyPattern,
    WeeklyPattern,
    MonthlyPattern,
    YearlyPattern,
    WeekOfMonthPattern,
    CustomPattern,
    CompositePattern,
)


def _int_or_none(data: Mapping[str, Any], key: str) -> int | None:
    value = data.get(key)
    if value is None:
        return None
    if isinstance(value, bool):
        raise InvalidPatternError(f"{key} must be an integer, got {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise InvalidPatternError(f"{key} must be an integer, got {value!r}") from exc


def parse_pattern(data: Mapping[str, Any] | RecurrencePattern) -> RecurrencePattern:
    if isinstance(data, _PATTERN_TYPES):
        return data
    if not isinstance(data, Mapping):
        raise InvalidPatternError(f"recurrence pattern must be a mapping, got {type(data).__name__}")

    raw_type = data.get("type")
    try:
        kind = RecurrenceType(raw_type)
    except ValueError as exc:
        raise UnsupportedRecurrenceError(f"unsupported recurrence type: {raw_type!r}") from exc

    value = _int_or_none(data, "value")
    common = {
        "value": 1 if value is None else value,
        "is_leap_month": bool(data.get("isLeapMonth", False)),
    }

    if kind == RecurrenceType.DAILY:
        return DailyPattern(**common)
    if kind == RecurrenceType.WEEKLY:
        return WeeklyPattern(week_day=_int_or_none(data, "weekDay"), **common)
    if kind == RecurrenceType.MONTHLY:
        return MonthlyPattern(month_day=_int_or_none(data, "monthDay"), **common)
    if kind == RecurrenceType.YEARLY:
        return YearlyPattern(year_day=_int_or_none(data, "yearDay"), **common)
    if kind == RecurrenceType.WEEK_OF_MONTH:
        return WeekOfMonthPattern(
            month=_int_or_none(data, "month"),
            week_of_month=_int_or_none(data, "weekOfMonth"),
            week_day=_int_or_none(data, "weekDay"),
            **common,
        )
    if kind == RecurrenceType.CUSTOM:
        return CustomPattern(unit=data.get("unit"), **common)
    return CompositePattern(
        years=_int_or_none(data, "year"),
        years_enabled=bool(data.get("yearEnabled", False)),
        months=_int_or_none(data, "month"),
        months_enabled=bool(data.get("monthEnabled", False)),
        month_day=_int_or_none(data, "monthDay"),
        month_day_enabled=bool(data.get("monthDayEnabled", False)),
        year_day=_int_or_none(data, "yearDay"),
        year_day_enabled=bool(data.get("yearDayEnabled", False)),
        week_day=_int_or_none(data, "weekDay"),
        week_day_enabled=bool(data.get("weekDayEnabled", False)),
        week_of_month=_int_or_none(data, "weekOfMonth"),
        week_of_month_enabled=bool(data.get("weekOfMonthEnabled", False)),
        **common,
    )


def pattern_to_dict(pattern: RecurrencePattern) -> dict[str, Any]:
    data: dict[str, Any] = {"type": pattern.type.value, "value": pattern.value}
    if pattern.is_leap_month:
        data["isLeapMonth"] = True

    match pattern:
        case WeeklyPattern(week_day=week_day) if week_day is not None:
            data["weekDay"] = week_day
        case MonthlyPattern(month_day=month_day) if month_day is not None:
            data["monthDay"] = month_day
        case YearlyPattern(year_day=year_day) if year_day is not None:
            data["yearDay"] = year_day
        case WeekOfMonthPattern():
            data.update(
                month=pattern.month,
                weekOfMonth=pattern.week_of_month,
                weekDay=pattern.week_day,
            )
        case CustomPattern():
            data["unit"] = pattern.unit.value
        case CompositePattern():
            for key, value, enabled in (
                ("year", pattern.years, pattern.years_enabled),
                ("month", pattern.months, pattern.months_enabled),
                ("monthDay", pattern.month_day, pattern.month_day_enabled),
                ("yearDay", pattern.year_day, pattern.year_day_enabled),
                ("weekDay", pattern.week_day, pattern.week_day_enabled),
                ("weekOfMonth", pattern.week_of_month, pattern.week_of_month_enabled),
            ):
                if value is not None:
                    data[key] = value
                data[f"{key}Enabled"] = enabled
    return data
