import asyncio
import copy
from datetime import date

import httpx
import pytest

from appointease.db.repository import HttpSlotRepository, InMemorySlotRepository
from appointease.errors import CollaboratorError, GenerationEmptyError, ValidationError
from appointease.reconcile import SchedulingController
from appointease.scheduling.generator import build_single_slot, generate_slots
from appointease.scheduling.timeofday import parse_time
from appointease.schemas import BulkSlotRequest, DayAvailability, DayStatus, SlotStatus

from test_availability import make_slot

TODAY = date(2030, 3, 14)
DAY = date(2030, 3, 20)
CLIENT = {"client_name": "Ada Lovelace", "client_email": "ada@example.com", "client_phone": "555-0100"}


class FailingRepository(InMemorySlotRepository):
    def __init__(self, fail_on=()):
        super().__init__()
        self.fail_on = set(fail_on)

    async def _maybe_fail(self, name):
        if name in self.fail_on:
            raise CollaboratorError(f"{name} exploded", name)

    async def fetch_slots_for_date(self, day):
        await self._maybe_fail("fetch_slots_for_date")
        return await super().fetch_slots_for_date(day)

    async def fetch_month_availability(self, year, month):
        await self._maybe_fail("fetch_month_availability")
        return await super().fetch_month_availability(year, month)

    async def create_slot(self, descriptor):
        await self._maybe_fail("create_slot")
        return await super().create_slot(descriptor)

    async def create_slots_bulk(self, descriptors):
        await self._maybe_fail("create_slots_bulk")
        return await super().create_slots_bulk(descriptors)

    async def delete_slot(self, slot_id):
        await self._maybe_fail("delete_slot")
        return await super().delete_slot(slot_id)

    async def book_slot(self, slot_id, client_info):
        await self._maybe_fail("book_slot")
        return await super().book_slot(slot_id, client_info)


def _bulk(day=DAY, start="09:00", end="12:00", duration=60):
    return BulkSlotRequest(
        date=day, start_time=start, end_time=end, duration_minutes=duration, gap_minutes=0, title="Consult"
    )


@pytest.mark.asyncio
async def test_select_date_loads_slots_and_month(controller, repository):
    repository.add(make_slot("a", day=DAY))
    repository.add(make_slot("b", SlotStatus.BOOKED, day=DAY, start="10:00", end="10:30"))
    await controller.select_date(DAY)
    state = controller.store.state
    assert [slot.id for slot in state.slots] == ["a", "b"]
    assert state.month_availability == {DAY: DayAvailability(available=1, booked=1, total=2)}


@pytest.mark.asyncio
async def test_past_dates_are_rejected_unless_allowed(repository):
    controller = SchedulingController(repository, today=lambda: TODAY)
    with pytest.raises(ValidationError):
        await controller.select_date(date(2030, 3, 1))
    assert controller.store.state.selected_date is None

    lenient = SchedulingController(repository, allow_past_dates=True, today=lambda: TODAY)
    await lenient.select_date(date(2030, 3, 1))
    assert lenient.store.state.selected_date == date(2030, 3, 1)


@pytest.mark.asyncio
async def test_bulk_create_reconciles(controller):
    await controller.select_date(DAY)
    outcome = await controller.generate_and_create(_bulk())
    assert outcome.notice == "3 slots created"
    assert len(controller.store.state.slots) == 3
    assert controller.store.state.month_availability[DAY] == DayAvailability(available=3, total=3)
    assert controller.events[-1].name == "create_slots"


@pytest.mark.asyncio
async def test_single_create_uses_create_slot(controller, repository):
    await controller.select_date(DAY)
    descriptor = build_single_slot(DAY, parse_time("14:00"), 45, "Consult")
    outcome = await controller.create_slot(descriptor)
    assert outcome.notice == "Time slot added"
    assert outcome.slots[0].end == parse_time("14:45")
    assert controller.store.state.slots == list(repository.store.values())


@pytest.mark.asyncio
async def test_empty_generation_makes_no_request(controller, repository):
    await controller.select_date(DAY)
    with pytest.raises(GenerationEmptyError):
        await controller.generate_and_create(_bulk(start="09:00", end="09:20", duration=30))
    assert repository.store == {}


@pytest.mark.asyncio
async def test_failed_bulk_create_leaves_state_untouched():
    repository = FailingRepository(fail_on={"create_slots_bulk"})
    controller = SchedulingController(repository, today=lambda: TODAY)
    repository.add(make_slot("a", day=DAY))
    await controller.select_date(DAY)
    before = copy.deepcopy((controller.store.state.slots, controller.store.state.month_availability))

    descriptors = generate_slots(DAY, parse_time("13:00"), parse_time("15:00"), 30, 0, "X")
    with pytest.raises(CollaboratorError):
        await controller.create_slots(descriptors)

    assert (controller.store.state.slots, controller.store.state.month_availability) == before
    assert controller.events[-1].status == "failed"


@pytest.mark.asyncio
async def test_delete_reconciles(controller, repository):
    repository.add(make_slot("a", day=DAY))
    await controller.select_date(DAY)
    outcome = await controller.delete_slot("a")
    assert outcome.notice == "Slot deleted"
    assert controller.store.state.slots == []
    assert controller.store.state.month_availability == {}


@pytest.mark.asyncio
async def test_delete_unknown_slot_surfaces_error(controller):
    await controller.select_date(DAY)
    with pytest.raises(CollaboratorError):
        await controller.delete_slot("missing")


@pytest.mark.asyncio
async def test_booked_slot_cannot_be_deleted(controller, repository):
    repository.add(make_slot("b", SlotStatus.BOOKED, day=DAY))
    await controller.select_date(DAY)
    with pytest.raises(ValidationError) as excinfo:
        await controller.delete_slot("b")
    assert "slot" in excinfo.value.errors
    assert list(repository.store) == ["b"]
    assert controller.events == []
    assert [slot.id for slot in controller.store.state.slots] == ["b"]


@pytest.mark.asyncio
async def test_booking_flow(controller, repository):
    repository.add(make_slot("a", day=DAY))
    await controller.select_date(DAY)
    assert controller.select_slot("a")

    outcome = await controller.book_selected_slot(CLIENT)
    assert outcome.notice == "Appointment confirmed"
    state = controller.store.state
    assert state.selected_slot is None
    assert state.slots[0].status == SlotStatus.BOOKED
    assert state.slots[0].booked_by == "Ada Lovelace"
    assert controller.store.day_status(DAY) == DayStatus.BOOKED


@pytest.mark.asyncio
async def test_booked_slot_cannot_be_selected(controller, repository):
    repository.add(make_slot("a", SlotStatus.BOOKED, day=DAY))
    repository.add(make_slot("b", day=DAY, start="11:00", end="11:30"))
    await controller.select_date(DAY)
    assert controller.select_slot("b")
    assert not controller.select_slot("a")
    assert controller.store.state.selected_slot.id == "b"
    assert not controller.select_slot("unknown")


@pytest.mark.asyncio
async def test_booking_without_selection_is_a_no_op(controller):
    assert await controller.book_selected_slot(CLIENT) is None


@pytest.mark.asyncio
async def test_booking_form_validation(controller, repository):
    repository.add(make_slot("a", day=DAY))
    await controller.select_date(DAY)
    controller.select_slot("a")
    with pytest.raises(ValidationError) as excinfo:
        await controller.book_selected_slot({"client_name": "  ", "client_email": "not-an-email"})
    assert set(excinfo.value.errors) == {"client_name", "client_email"}
    assert controller.store.state.selected_slot.id == "a"
    assert repository.store["a"].status == SlotStatus.AVAILABLE


@pytest.mark.asyncio
async def test_failed_booking_keeps_selection_for_retry():
    repository = FailingRepository(fail_on={"book_slot"})
    controller = SchedulingController(repository, today=lambda: TODAY)
    repository.add(make_slot("a", day=DAY))
    await controller.select_date(DAY)
    controller.select_slot("a")
    with pytest.raises(CollaboratorError):
        await controller.book_selected_slot(CLIENT)
    assert controller.store.state.selected_slot.id == "a"

    repository.fail_on.clear()
    outcome = await controller.book_selected_slot(CLIENT)
    assert outcome is not None
    assert controller.store.state.selected_slot is None


@pytest.mark.asyncio
async def test_availability_failure_is_best_effort():
    repository = FailingRepository(fail_on={"fetch_month_availability"})
    controller = SchedulingController(repository, today=lambda: TODAY)
    repository.add(make_slot("a", day=DAY))
    await controller.select_date(DAY)
    assert [slot.id for slot in controller.store.state.slots] == ["a"]
    assert controller.store.state.month_availability == {}


@pytest.mark.asyncio
async def test_slot_fetch_failure_is_reported_and_clears_list():
    repository = FailingRepository()
    controller = SchedulingController(repository, today=lambda: TODAY)
    repository.add(make_slot("a", day=DAY))
    await controller.select_date(DAY)
    repository.fail_on.add("fetch_slots_for_date")
    with pytest.raises(CollaboratorError):
        await controller.refresh()
    assert controller.store.state.slots == []
    assert controller.events[-1].name == "fetch_slots"


@pytest.mark.asyncio
async def test_mutation_succeeds_even_if_refresh_fails():
    repository = FailingRepository()
    controller = SchedulingController(repository, today=lambda: TODAY)
    await controller.select_date(DAY)
    repository.fail_on.add("fetch_slots_for_date")
    outcome = await controller.generate_and_create(_bulk())
    assert outcome.notice == "3 slots created"
    assert len(repository.store) == 3


class SlowRepository(InMemorySlotRepository):
    def __init__(self, slow_day):
        super().__init__()
        self.slow_day = slow_day
        self.release = asyncio.Event()

    async def fetch_slots_for_date(self, day):
        if day == self.slow_day:
            await self.release.wait()
        return await super().fetch_slots_for_date(day)


@pytest.mark.asyncio
async def test_late_response_for_superseded_date_is_ignored():
    first, second = date(2030, 3, 20), date(2030, 3, 21)
    repository = SlowRepository(slow_day=first)
    repository.add(make_slot("first", day=first))
    repository.add(make_slot("second", day=second))
    controller = SchedulingController(repository, today=lambda: TODAY)

    pending = asyncio.create_task(controller.select_date(first))
    await asyncio.sleep(0)
    await controller.select_date(second)
    repository.release.set()
    await pending

    assert controller.store.state.selected_date == second
    assert [slot.id for slot in controller.store.state.slots] == ["second"]


@pytest.mark.asyncio
async def test_month_navigation_fetches_availability(controller, repository):
    repository.add(make_slot("april", day=date(2030, 4, 2)))
    await controller.next_month()
    assert controller.store.state.view_month == (2030, 4)
    assert date(2030, 4, 2) in controller.store.state.month_availability
    await controller.previous_month()
    assert controller.store.state.month_availability == {}
    await controller.set_view_month(2030, 4)
    assert controller.store.day_status(date(2030, 4, 2)) == DayStatus.AVAILABLE


def test_preview_matches_generation(controller):
    preview = controller.preview_bulk(_bulk())
    assert [str(slot.start) for slot in preview] == ["09:00", "10:00", "11:00"]


class FlakySlowRepository(SlowRepository):
    async def fetch_slots_for_date(self, day):
        if day == self.slow_day:
            await self.release.wait()
            raise CollaboratorError("timed out", "fetch_slots_for_date")
        return await super().fetch_slots_for_date(day)


@pytest.mark.asyncio
async def test_late_failure_for_superseded_date_is_ignored():
    first, second = date(2030, 3, 20), date(2030, 3, 21)
    repository = FlakySlowRepository(slow_day=first)
    repository.add(make_slot("second", day=second))
    controller = SchedulingController(repository, today=lambda: TODAY)

    pending = asyncio.create_task(controller.select_date(first))
    await asyncio.sleep(0)
    await controller.select_date(second)
    repository.release.set()
    await pending

    assert controller.store.state.selected_date == second
    assert [slot.id for slot in controller.store.state.slots] == ["second"]
    assert not [event for event in controller.events if event.name == "fetch_slots"]


@pytest.mark.asyncio
async def test_day_with_legacy_booked_row_still_loads():
    rows = [
        {"id": "a", "date": "2030-03-20", "start_time": "09:00:00", "end_time": "09:30:00",
         "title": "Consult", "duration_minutes": 30, "status": "available"},
        {"id": "b", "date": "2030-03-20", "start_time": "10:00:00", "end_time": "10:30:00",
         "title": "Consult", "duration_minutes": 30, "status": "booked"},
    ]

    def handler(request):
        if request.url.path.endswith("/availability"):
            return httpx.Response(200, json={"data": {"2030-03-20": {"available": 1, "booked": 1, "total": 2}}})
        return httpx.Response(200, json={"data": rows})

    repository = HttpSlotRepository("https://slots.test/api", transport=httpx.MockTransport(handler))
    controller = SchedulingController(repository, today=lambda: TODAY)
    await controller.select_date(DAY)

    assert [slot.id for slot in controller.store.state.slots] == ["a", "b"]
    assert controller.store.day_summary() == DayAvailability(available=1, booked=1, total=2)
    assert controller.events == []
