from __future__ import annotations

from enum import StrEnum


class RecurrenceType(StrEnum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"
    WEEK_OF_MONTH = "weekOfMonth"
    CUSTOM = "custom"
    COMPOSITE = "composite"


class RecurrenceUnit(StrEnum):
    DAYS = "days"
    WEEKS = "weeks"
    MONTHS = "months"
    YEARS = "years"


class DateType(StrEnum):
    SOLAR = "solar"
    LUNAR = "lunar"


class LunarUnit(StrEnum):
    DAY = "day"
    MONTH = "month"
    YEAR = "year"


class ReminderUnit(StrEnum):
    MINUTES = "minutes"
    HOURS = "hours"
    DAYS = "days"


class OverdueAction(StrEnum):
    RESET = "reset"
    CONTINUE = "continue"
    SKIP = "skip"


class CycleStatus(StrEnum):
    PENDING = "pending"
    OVERDUE = "overdue"
    COMPLETED = "completed"


class HistoryAction(StrEnum):
    CREATED = "created"
    COMPLETED = "completed"
    OVERDUE = "overdue"
    SKIPPED = "skipped"
    RESET = "reset"
    CONTINUED = "continued"


LAST_WEEK_OF_MONTH = 5
