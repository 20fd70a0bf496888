from __future__ import annotations


class NeverMissError(Exception):
    """Base class for every error raised by the recurrence core."""


class InvalidPatternError(NeverMissError, ValueError):
    """A recurrence pattern violates its declared invariants."""


class UnsupportedRecurrenceError(NeverMissError, ValueError):
    """The pattern type/unit combination is not implemented."""


class InvalidLunarDateError(NeverMissError, ValueError):
    """Lunar input is out of the supported range or names a missing leap month."""


class OutOfRangeError(InvalidLunarDateError):
    """A solar date falls outside the 1900-2100 lunar table."""


class CollaboratorFailure(NeverMissError):
    """Storage or notification scheduling failed after the calculation succeeded."""

    def __init__(self, message: str, cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.cause = cause
