"""
Availability aggregation.

Reduces the slots of a date to a tri-state occupancy summary and a month
of such summaries to a per-day map for calendar rendering.
"""

from __future__ import annotations

import calendar
from datetime import date
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from ..schemas import DayAvailability, DayStatus, MonthAvailability, PersistedSlot, SlotStatus


def summarize_day(slots: Sequence[PersistedSlot]) -> DayAvailability:
    """Blocked slots count toward ``total`` only."""
    available = sum(1 for slot in slots if slot.status == SlotStatus.AVAILABLE)
    booked = sum(1 for slot in slots if slot.status == SlotStatus.BOOKED)
    return DayAvailability(available=available, booked=booked, total=len(slots))


def blocked_count(info: DayAvailability) -> int:
    return info.total - info.available - info.booked


def classify_day(info: Optional[DayAvailability]) -> DayStatus:
    """
    Classify a day for its calendar dot.

    A day made only of blocked slots falls through to ``AVAILABLE``.
    """
    if info is None or info.total == 0:
        return DayStatus.NONE
    if info.booked == info.total:
        return DayStatus.BOOKED
    if info.available > 0 and info.booked > 0:
        return DayStatus.MIXED
    return DayStatus.AVAILABLE


def summarize_month(slots_by_date: Mapping[date, Sequence[PersistedSlot]]) -> MonthAvailability:
    return {day: summarize_day(slots) for day, slots in slots_by_date.items()}


def group_by_date(slots: Iterable[PersistedSlot]) -> Dict[date, List[PersistedSlot]]:
    grouped: Dict[date, List[PersistedSlot]] = {}
    for slot in slots:
        grouped.setdefault(slot.date, []).append(slot)
    return grouped


def month_bounds(year: int, month: int) -> Tuple[date, date]:
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, 1), date(year, month, last_day)
