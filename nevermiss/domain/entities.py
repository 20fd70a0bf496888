from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Union

from .enums import (
    LAST_WEEK_OF_MONTH,
    CycleStatus,
    DateType,
    HistoryAction,
    RecurrenceType,
    RecurrenceUnit,
    ReminderUnit,
)
from .errors import InvalidPatternError, UnsupportedRecurrenceError


def _require_positive(value: int) -> None:
    if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
        raise InvalidPatternError(f"recurrence value must be a positive integer, got {value!r}")


def _require_range(name: str, value: int | None, low: int, high: int) -> None:
    if value is None:
        return
    if not isinstance(value, int) or isinstance(value, bool) or not low <= value <= high:
        raise InvalidPatternError(f"{name} must be between {low} and {high}, got {value!r}")


@dataclass(frozen=True, kw_only=True)
class DailyPattern:
    value: int = 1
    is_leap_month: bool = False

    type = RecurrenceType.DAILY

    def __post_init__(self) -> None:
        _require_positive(self.value)


@dataclass(frozen=True, kw_only=True)
class WeeklyPattern:
    value: int = 1
    week_day: Optional[int] = None
    is_leap_month: bool = False

    type = RecurrenceType.WEEKLY

    def __post_init__(self) -> None:
        _require_positive(self.value)
        _require_range("weekDay", self.week_day, 0, 6)


@dataclass(frozen=True, kw_only=True)
class MonthlyPattern:
    value: int = 1
    month_day: Optional[int] = None
    is_leap_month: bool = False

    type = RecurrenceType.MONTHLY

    def __post_init__(self) -> None:
        _require_positive(self.value)
        _require_range("monthDay", self.month_day, 1, 31)


@dataclass(frozen=True, kw_only=True)
class YearlyPattern:
    value: int = 1
    year_day: Optional[int] = None
    is_leap_month: bool = False

    type = RecurrenceType.YEARLY

    def __post_init__(self) -> None:
        _require_positive(self.value)
        _require_range("yearDay", self.year_day, 1, 366)


@dataclass(frozen=True, kw_only=True)
class WeekOfMonthPattern:
    """Nth weekday of a fixed month, e.g. the second Sunday of May."""

    month: int
    week_of_month: int
    week_day: int
    value: int = 1
    is_leap_month: bool = False

    type = RecurrenceType.WEEK_OF_MONTH

    def __post_init__(self) -> None:
        _require_positive(self.value)
        if self.month is None or self.week_of_month is None or self.week_day is None:
            raise InvalidPatternError("weekOfMonth requires month, weekOfMonth and weekDay")
        _require_range("month", self.month, 1, 12)
        _require_range("weekOfMonth", self.week_of_month, 1, LAST_WEEK_OF_MONTH)
        _require_range("weekDay", self.week_day, 0, 6)


@dataclass(frozen=True, kw_only=True)
class CustomPattern:
    unit: RecurrenceUnit
    value: int = 1
    is_leap_month: bool = False

    type = RecurrenceType.CUSTOM

    def __post_init__(self) -> None:
        _require_positive(self.value)
        if self.unit is None:
            raise InvalidPatternError("custom recurrence requires a unit")
        try:
            object.__setattr__(self, "unit", RecurrenceUnit(self.unit))
        except ValueError as exc:
            raise UnsupportedRecurrenceError(f"unsupported recurrence unit: {self.unit!r}") from exc


@dataclass(frozen=True, kw_only=True)
class CompositePattern:
    """Independently enabled offsets added cumulatively to the start date.

    ``years`` and ``months`` are offsets. ``month_day`` and ``year_day`` are
    day offsets; the first enabled one wins. When both ``week_of_month`` and
    ``week_day`` are enabled the day offsets are ignored and the due date is
    the Nth weekday of the month after the shifted start.
    """

    value: int = 1
    years: Optional[int] = None
    years_enabled: bool = False
    months: Optional[int] = None
    months_enabled: bool = False
    month_day: Optional[int] = None
    month_day_enabled: bool = False
    year_day: Optional[int] = None
    year_day_enabled: bool = False
    week_day: Optional[int] = None
    week_day_enabled: bool = False
    week_of_month: Optional[int] = None
    week_of_month_enabled: bool = False
    is_leap_month: bool = False

    type = RecurrenceType.COMPOSITE

    def __post_init__(self) -> None:
        _require_positive(self.value)
        _require_range("year", self.years, 0, 100)
        _require_range("month", self.months, 0, 1200)
        _require_range("monthDay", self.month_day, 0, 31)
        _require_range("yearDay", self.year_day, 0, 366)
        _require_range("weekDay", self.week_day, 0, 6)
        _require_range("weekOfMonth", self.week_of_month, 1, LAST_WEEK_OF_MONTH)
        if not (
            (self.years_enabled and self.years)
            or (self.months_enabled and self.months)
            or (self.month_day_enabled and self.month_day)
            or (self.year_day_enabled and self.year_day)
            or self.uses_week_of_month
        ):
            raise InvalidPatternError("composite recurrence must enable at least one offset")

    @property
    def uses_week_of_month(self) -> bool:
        return (
            self.week_of_month_enabled
            and self.week_day_enabled
            and self.week_of_month is not None
            and self.week_day is not None
        )


RecurrencePattern = Union[
    DailyPattern,
    WeeklyPattern,
    MonthlyPattern,
    YearlyPattern,
    WeekOfMonthPattern,
    CustomPattern,
    CompositePattern,
]


@dataclass(frozen=True)
class TaskCycleEntity:
    id: int | None
    task_id: int
    start_date: datetime
    due_date: datetime
    date_type: DateType
    is_completed: bool
    is_overdue: bool
    completed_date: Optional[datetime]
    created_at: datetime

    def status(self, now: datetime) -> CycleStatus:
        if self.is_completed:
            return CycleStatus.COMPLETED
        if self.is_overdue or now > self.due_date:
            return CycleStatus.OVERDUE
        return CycleStatus.PENDING


@dataclass(frozen=True)
class TaskEntity:
    id: int | None
    title: str
    recurrence_pattern: RecurrencePattern
    date_type: DateType = DateType.SOLAR
    auto_restart: bool = True
    is_active: bool = True
    description: str = ""
    reminder_offset: int = 0
    reminder_unit: ReminderUnit = ReminderUnit.MINUTES
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    current_cycle: Optional[TaskCycleEntity] = None


@dataclass(frozen=True)
class TaskHistoryEntity:
    id: int | None
    task_id: int
    cycle_id: int | None
    action: HistoryAction
    timestamp: datetime


@dataclass(frozen=True)
class LunarDate:
    year: int
    month: int
    day: int
    is_leap: bool = False
    zodiac: str = ""


@dataclass(frozen=True)
class LunarInfo:
    lunar_date: str
    lunar_year: int
    lunar_month: int
    lunar_day: int
    is_leap_month: bool
    zodiac: str
    gan_zhi: str
    lunar_festival: str
    solar_term: str
