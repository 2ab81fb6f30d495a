from __future__ import annotations

import re
from dataclasses import dataclass
from typing import TYPE_CHECKING

from ..errors import DayOverflowError, FormatError

if TYPE_CHECKING:
    from ..schemas import SlotDescriptor

MINUTES_PER_DAY = 24 * 60

_TIME_RE = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


@dataclass(frozen=True, order=True)
class TimeOfDay:
    hour: int
    minute: int

    def __post_init__(self) -> None:
        if not 0 <= self.hour <= 23 or not 0 <= self.minute <= 59:
            raise DayOverflowError(f"{self.hour:02d}:{self.minute:02d} is outside a single day")

    @classmethod
    def from_minutes(cls, minutes: int) -> TimeOfDay:
        if not 0 <= minutes < MINUTES_PER_DAY:
            raise DayOverflowError(f"{minutes} minutes past midnight is outside a single day")
        return cls(minutes // 60, minutes % 60)

    @property
    def minutes(self) -> int:
        return self.hour * 60 + self.minute

    def __str__(self) -> str:
        return format_time(self)


def parse_time(text: str) -> TimeOfDay:
    """Parse a strict 24-hour ``HH:MM`` string."""
    if not isinstance(text, str):
        raise FormatError(f"Expected an HH:MM string, got {type(text).__name__}")
    match = _TIME_RE.match(text.strip())
    if not match:
        raise FormatError(f"Invalid time {text!r}. Use HH:MM (24h).")
    return TimeOfDay(int(match.group(1)), int(match.group(2)))


def add_minutes(t: TimeOfDay, n: int) -> TimeOfDay:
    # No wraparound: leaving the day raises DayOverflowError.
    return TimeOfDay.from_minutes(t.minutes + n)


def format_time(t: TimeOfDay) -> str:
    return f"{t.hour:02d}:{t.minute:02d}"


def compare(a: TimeOfDay, b: TimeOfDay) -> int:
    return (a.minutes > b.minutes) - (a.minutes < b.minutes)


def minutes_between(a: TimeOfDay, b: TimeOfDay) -> int:
    return b.minutes - a.minutes


def format_slot_label(slot: SlotDescriptor) -> str:
    return f"{slot.date.strftime('%a %b %d')}, {format_time(slot.start)}-{format_time(slot.end)}"
