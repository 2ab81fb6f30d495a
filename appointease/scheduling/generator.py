"""
Slot generation.

Turns a day's working hours into consecutive, equally sized slots separated
by a fixed gap. A slot ending exactly at the end of the window is included.
"""

from __future__ import annotations

from datetime import date
from typing import List, Optional

from ..schemas import BulkSlotRequest, SlotDescriptor
from .timeofday import TimeOfDay, add_minutes


def generate_slots(
    day: date,
    day_start: TimeOfDay,
    day_end: TimeOfDay,
    duration_minutes: int,
    gap_minutes: int,
    title: str,
    description: Optional[str] = None,
) -> List[SlotDescriptor]:
    """
    Generate the slots that fit in ``[day_start, day_end]``.

    Returns an empty list when not even one slot fits; callers decide
    whether that is an error.
    """
    if duration_minutes <= 0:
        raise ValueError("duration_minutes must be positive")
    if gap_minutes < 0:
        raise ValueError("gap_minutes cannot be negative")

    slots: List[SlotDescriptor] = []
    # Work in minutes so a cursor running past midnight ends the loop
    # instead of raising.
    cursor = day_start.minutes
    while True:
        slot_end = cursor + duration_minutes
        if slot_end > day_end.minutes:
            break
        start = TimeOfDay.from_minutes(cursor)
        slots.append(
            SlotDescriptor(
                date=day,
                start=start,
                end=TimeOfDay.from_minutes(slot_end),
                title=title,
                description=description,
                duration_minutes=duration_minutes,
            )
        )
        cursor = slot_end + gap_minutes
    return slots


def generate_from_request(request: BulkSlotRequest) -> List[SlotDescriptor]:
    return generate_slots(
        request.date,
        request.day_start,
        request.day_end,
        request.duration_minutes,
        request.gap_minutes,
        request.title,
        request.description,
    )


def build_single_slot(
    day: date,
    start: TimeOfDay,
    duration_minutes: int,
    title: str,
    description: Optional[str] = None,
) -> SlotDescriptor:
    # End time follows from start + duration; passing midnight raises DayOverflowError.
    return SlotDescriptor(
        date=day,
        start=start,
        end=add_minutes(start, duration_minutes),
        title=title,
        description=description,
        duration_minutes=duration_minutes,
    )
