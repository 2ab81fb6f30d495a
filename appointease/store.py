from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import List, Tuple, Union

from .errors import ValidationError
from .scheduling.availability import classify_day, summarize_day
from .schemas import DayAvailability, DayStatus, MonthAvailability, PersistedSlot, SlotStatus, ViewStateSnapshot


@dataclass(frozen=True)
class FetchSlots:
    date: date


@dataclass(frozen=True)
class FetchAvailability:
    year: int
    month: int


Effect = Union[FetchSlots, FetchAvailability]


@dataclass
class SchedulingViewState:
    view_month: Tuple[int, int]
    selected_date: date | None = None
    slots: List[PersistedSlot] = field(default_factory=list)
    month_availability: MonthAvailability = field(default_factory=dict)
    selected_slot: PersistedSlot | None = None


def _check_month(year: int, month: int) -> None:
    if not 1 <= month <= 12:
        raise ValidationError(f"Invalid month {month}", {"month": "Month must be between 1 and 12"})
    if not 1 <= year <= 9999:
        raise ValidationError(f"Invalid year {year}", {"year": "Year is out of range"})


class SchedulingStore:
    """
    Owns the view state of one scheduling session.

    Every transition is synchronous and returns the fetches it implies;
    executing them is the caller's job.
    """

    def __init__(self, today: date | None = None) -> None:
        today = today or date.today()
        self._state = SchedulingViewState(view_month=(today.year, today.month))

    @property
    def state(self) -> SchedulingViewState:
        return self._state

    def select_date(self, day: date) -> List[Effect]:
        self._state.selected_date = day
        self._state.view_month = (day.year, day.month)
        self._state.selected_slot = None
        return [FetchSlots(day), FetchAvailability(day.year, day.month)]

    def set_view_month(self, year: int, month: int) -> List[Effect]:
        _check_month(year, month)
        self._state.view_month = (year, month)
        return [FetchAvailability(year, month)]

    def next_month(self) -> List[Effect]:
        year, month = self._state.view_month
        if month == 12:
            return self.set_view_month(year + 1, 1)
        return self.set_view_month(year, month + 1)

    def previous_month(self) -> List[Effect]:
        year, month = self._state.view_month
        if month == 1:
            return self.set_view_month(year - 1, 12)
        return self.set_view_month(year, month - 1)

    def refresh_effects(self) -> List[Effect]:
        effects: List[Effect] = []
        if self._state.selected_date is not None:
            effects.append(FetchSlots(self._state.selected_date))
        effects.append(FetchAvailability(*self._state.view_month))
        return effects

    def apply_slot_list_result(self, day: date, slots: List[PersistedSlot]) -> bool:
        # Results for a date that is no longer selected are stale.
        if day != self._state.selected_date:
            return False
        self._state.slots = list(slots)
        return True

    def apply_availability_result(self, year: int, month: int, availability: MonthAvailability) -> bool:
        if (year, month) != self._state.view_month:
            return False
        self._state.month_availability = dict(availability)
        return True

    def select_slot_for_booking(self, slot: PersistedSlot) -> bool:
        if slot.status != SlotStatus.AVAILABLE:
            return False
        self._state.selected_slot = slot
        return True

    def clear_selected_slot(self) -> None:
        self._state.selected_slot = None

    def find_slot(self, slot_id: str) -> PersistedSlot | None:
        return next((slot for slot in self._state.slots if slot.id == slot_id), None)

    def day_summary(self) -> DayAvailability | None:
        if self._state.selected_date is None:
            return None
        return summarize_day(self._state.slots)

    def day_status(self, day: date) -> DayStatus:
        return classify_day(self._state.month_availability.get(day))

    def snapshot(self) -> ViewStateSnapshot:
        state = self._state
        year, month = state.view_month
        return ViewStateSnapshot(
            selected_date=state.selected_date,
            view_year=year,
            view_month=month,
            slots=[slot.to_wire() for slot in state.slots],
            month_availability={day.isoformat(): info for day, info in state.month_availability.items()},
            day_statuses={day.isoformat(): classify_day(info) for day, info in state.month_availability.items()},
            day_summary=self.day_summary(),
            selected_slot=state.selected_slot.to_wire() if state.selected_slot else None,
        )
