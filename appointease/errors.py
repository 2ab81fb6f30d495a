from __future__ import annotations


class SchedulingError(Exception):
    """Base class for every recoverable scheduling failure."""


class FormatError(SchedulingError, ValueError):
    pass


class DayOverflowError(SchedulingError, ValueError):
    """Time arithmetic left the 00:00-23:59 window of a single day."""


class GenerationEmptyError(SchedulingError):
    def __init__(self, message: str = "No slots could be generated. Check your start/end times and duration.") -> None:
        super().__init__(message)


class ValidationError(SchedulingError):
    def __init__(self, message: str, errors: dict[str, str] | None = None) -> None:
        super().__init__(message)
        self.errors = errors or {}


class CollaboratorError(SchedulingError):
    def __init__(self, message: str, operation: str | None = None) -> None:
        super().__init__(message)
        self.operation = operation
