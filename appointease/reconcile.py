"""
Mutation reconciliation.

Every mutation (create, delete, book) runs the same protocol against the
persistence collaborator:

1. issue the mutation; on failure leave the store untouched and raise;
2. on success refetch the selected date's slots and the viewed month's
   availability concurrently;
3. apply both through the store's staleness guards.

The store never predicts post-mutation state locally.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Callable, Iterable, List, Optional, Sequence

from .db.repository import SlotRepository
from .errors import CollaboratorError, GenerationEmptyError, ValidationError
from .events import event_failed, event_slot_booked, event_slot_deleted, event_slots_created
from .scheduling.generator import generate_from_request
from .schemas import (
    ActivityEvent,
    BulkSlotRequest,
    ClientInfo,
    PersistedSlot,
    SlotDescriptor,
    SlotStatus,
    validate_client_info,
)
from .store import Effect, FetchSlots, SchedulingStore

logger = logging.getLogger(__name__)


@dataclass
class MutationOutcome:
    action: str
    notice: str
    slots: List[PersistedSlot] = field(default_factory=list)
    event: Optional[ActivityEvent] = None


class SchedulingController:
    def __init__(
        self,
        repository: SlotRepository,
        store: Optional[SchedulingStore] = None,
        *,
        allow_past_dates: bool = False,
        today: Optional[Callable[[], date]] = None,
    ) -> None:
        self.repository = repository
        self._today = today or date.today
        self.store = store or SchedulingStore(today=self._today())
        self.allow_past_dates = allow_past_dates
        self.events: List[ActivityEvent] = []

    def _record(self, event: ActivityEvent) -> ActivityEvent:
        self.events.append(event)
        return event

    # Fetching

    async def refresh_slots(self, day: date) -> None:
        try:
            slots = await self.repository.fetch_slots_for_date(day)
        except CollaboratorError as exc:
            if day != self.store.state.selected_date:
                logger.debug("Ignored failed slot fetch for superseded date %s: %s", day, exc)
                return
            # Nothing trustworthy left to show for this date.
            self.store.apply_slot_list_result(day, [])
            self._record(event_failed("fetch_slots", f"Failed to load slots: {exc}"))
            raise
        if not self.store.apply_slot_list_result(day, slots):
            logger.debug("Discarded stale slot list for %s", day)

    async def refresh_availability(self, year: int, month: int) -> None:
        # Best effort: the calendar keeps its previous dots on failure.
        try:
            availability = await self.repository.fetch_month_availability(year, month)
        except CollaboratorError as exc:
            logger.warning("Could not load availability for %04d-%02d: %s", year, month, exc)
            return
        if not self.store.apply_availability_result(year, month, availability):
            logger.debug("Discarded stale availability for %04d-%02d", year, month)

    async def _run_effect(self, effect: Effect) -> None:
        if isinstance(effect, FetchSlots):
            await self.refresh_slots(effect.date)
        else:
            await self.refresh_availability(effect.year, effect.month)

    async def _run_effects(self, effects: Iterable[Effect]) -> List[BaseException]:
        results = await asyncio.gather(
            *(self._run_effect(effect) for effect in effects), return_exceptions=True
        )
        return [result for result in results if isinstance(result, BaseException)]

    async def _run_or_raise(self, effects: Iterable[Effect]) -> None:
        errors = await self._run_effects(effects)
        if errors:
            raise errors[0]

    async def _reconcile(self) -> None:
        for error in await self._run_effects(self.store.refresh_effects()):
            if not isinstance(error, CollaboratorError):
                raise error
            # The mutation itself succeeded; the failed refresh is already in the event feed.
            logger.warning("Refresh after mutation failed: %s", error)

    # Navigation

    async def select_date(self, day: date) -> None:
        if not self.allow_past_dates and day < self._today():
            raise ValidationError("Past dates cannot be selected", {"date": "Pick today or a later date"})
        await self._run_or_raise(self.store.select_date(day))

    async def set_view_month(self, year: int, month: int) -> None:
        await self._run_or_raise(self.store.set_view_month(year, month))

    async def next_month(self) -> None:
        await self._run_or_raise(self.store.next_month())

    async def previous_month(self) -> None:
        await self._run_or_raise(self.store.previous_month())

    async def refresh(self) -> None:
        await self._run_or_raise(self.store.refresh_effects())

    # Mutations

    async def create_slots(self, descriptors: Sequence[SlotDescriptor]) -> MutationOutcome:
        if not descriptors:
            raise GenerationEmptyError()
        try:
            if len(descriptors) == 1:
                created = [await self.repository.create_slot(descriptors[0])]
            else:
                created = await self.repository.create_slots_bulk(list(descriptors))
        except CollaboratorError as exc:
            self._record(event_failed("create_slots", f"Failed to add slot: {exc}"))
            raise
        event = self._record(event_slots_created(created))
        await self._reconcile()
        notice = "Time slot added" if len(descriptors) == 1 else f"{len(created)} slots created"
        return MutationOutcome("create_slots", notice, created, event)

    async def create_slot(self, descriptor: SlotDescriptor) -> MutationOutcome:
        return await self.create_slots([descriptor])

    def preview_bulk(self, request: BulkSlotRequest) -> List[SlotDescriptor]:
        return generate_from_request(request)

    async def generate_and_create(self, request: BulkSlotRequest) -> MutationOutcome:
        descriptors = generate_from_request(request)
        if not descriptors:
            raise GenerationEmptyError()
        return await self.create_slots(descriptors)

    async def delete_slot(self, slot_id: str) -> MutationOutcome:
        slot = self.store.find_slot(slot_id)
        if slot is not None and slot.status == SlotStatus.BOOKED:
            raise ValidationError("Booked slots are locked", {"slot": "Booked slots cannot be deleted"})
        try:
            await self.repository.delete_slot(slot_id)
        except CollaboratorError as exc:
            self._record(event_failed("delete_slot", f"Failed to delete: {exc}"))
            raise
        event = self._record(event_slot_deleted(slot_id, slot))
        await self._reconcile()
        return MutationOutcome("delete_slot", "Slot deleted", [slot] if slot else [], event)

    def select_slot(self, slot_id: str) -> bool:
        slot = self.store.find_slot(slot_id)
        if slot is None:
            return False
        return self.store.select_slot_for_booking(slot)

    def clear_selected_slot(self) -> None:
        self.store.clear_selected_slot()

    async def book_selected_slot(self, form: ClientInfo | dict) -> Optional[MutationOutcome]:
        slot = self.store.state.selected_slot
        if slot is None:
            return None
        client = validate_client_info(form)
        try:
            await self.repository.book_slot(slot.id, client)
        except CollaboratorError as exc:
            # selected_slot stays so the same booking can be retried.
            self._record(event_failed("book_slot", f"Booking failed: {exc}"))
            raise
        self.store.clear_selected_slot()
        event = self._record(event_slot_booked(slot, client))
        await self._reconcile()
        return MutationOutcome("book_slot", "Appointment confirmed", [slot], event)
