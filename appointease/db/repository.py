from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Protocol

import httpx
from pydantic import ValidationError as PydanticValidationError

from ..errors import CollaboratorError
from ..scheduling.availability import group_by_date, month_bounds, summarize_month
from ..schemas import (
    ClientInfo,
    DayAvailability,
    MonthAvailability,
    PersistedSlot,
    SlotDescriptor,
    SlotStatus,
)

logger = logging.getLogger(__name__)


class SlotRepository(Protocol):
    async def fetch_slots_for_date(self, day: date) -> list[PersistedSlot]:
        ...

    async def fetch_month_availability(self, year: int, month: int) -> MonthAvailability:
        ...

    async def create_slot(self, descriptor: SlotDescriptor) -> PersistedSlot:
        ...

    async def create_slots_bulk(self, descriptors: list[SlotDescriptor]) -> list[PersistedSlot]:
        ...

    async def delete_slot(self, slot_id: str) -> None:
        ...

    async def book_slot(self, slot_id: str, client_info: ClientInfo) -> None:
        ...


def _persist(descriptor: SlotDescriptor) -> PersistedSlot:
    return PersistedSlot(id=uuid.uuid4().hex, status=SlotStatus.AVAILABLE, **dict(descriptor))


@dataclass
class InMemorySlotRepository:
    store: dict[str, PersistedSlot] = field(default_factory=dict)

    def add(self, slot: PersistedSlot) -> PersistedSlot:
        self.store[slot.id] = slot
        return slot

    async def fetch_slots_for_date(self, day: date) -> list[PersistedSlot]:
        slots = [slot for slot in self.store.values() if slot.date == day]
        return sorted(slots, key=lambda slot: slot.start)

    async def fetch_month_availability(self, year: int, month: int) -> MonthAvailability:
        first, last = month_bounds(year, month)
        in_month = [slot for slot in self.store.values() if first <= slot.date <= last]
        return summarize_month(group_by_date(in_month))

    async def create_slot(self, descriptor: SlotDescriptor) -> PersistedSlot:
        return self.add(_persist(descriptor))

    async def create_slots_bulk(self, descriptors: list[SlotDescriptor]) -> list[PersistedSlot]:
        if not descriptors:
            raise CollaboratorError("No slots provided", "create_slots_bulk")
        created = [_persist(descriptor) for descriptor in descriptors]
        for slot in created:
            self.add(slot)
        return created

    async def delete_slot(self, slot_id: str) -> None:
        slot = self.store.get(slot_id)
        if slot is None:
            raise CollaboratorError("Slot not found", "delete_slot")
        if slot.status == SlotStatus.BOOKED:
            raise CollaboratorError("Booked slots cannot be deleted", "delete_slot")
        del self.store[slot_id]

    async def book_slot(self, slot_id: str, client_info: ClientInfo) -> None:
        slot = self.store.get(slot_id)
        if slot is None:
            raise CollaboratorError("Slot not found", "book_slot")
        if slot.status != SlotStatus.AVAILABLE:
            raise CollaboratorError("Slot is not available", "book_slot")
        self.store[slot_id] = slot.model_copy(
            update={"status": SlotStatus.BOOKED, "booked_by": client_info.name}
        )


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and body.get("message"):
        return str(body["message"])
    return f"Request failed with status code {response.status_code}"


class HttpSlotRepository:
    """Talks to the slot REST API; every failure becomes ``CollaboratorError``."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    async def _request(self, operation: str, method: str, path: str, **kwargs: Any) -> Any:
        async with httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            transport=self.transport,
            headers={"Content-Type": "application/json"},
        ) as client:
            try:
                response = await client.request(method, path, **kwargs)
                response.raise_for_status()
            except httpx.HTTPStatusError as exc:
                raise CollaboratorError(_error_message(exc.response), operation) from exc
            except httpx.HTTPError as exc:
                raise CollaboratorError(str(exc) or "An unexpected error occurred", operation) from exc
        if not response.content:
            return None
        try:
            body = response.json()
        except ValueError as exc:
            raise CollaboratorError("Malformed response from slot API", operation) from exc
        return body.get("data") if isinstance(body, dict) else None

    def _parse_slot(self, operation: str, row: Any) -> PersistedSlot:
        try:
            return PersistedSlot.model_validate(row)
        except PydanticValidationError as exc:
            logger.warning("Rejected slot payload from %s: %s", operation, exc)
            raise CollaboratorError("Malformed slot data from slot API", operation) from exc

    def _parse_slots(self, operation: str, rows: Any) -> list[PersistedSlot]:
        # One unreadable row must not hide the rest of the day.
        slots: list[PersistedSlot] = []
        for row in rows or []:
            try:
                slots.append(PersistedSlot.model_validate(row))
            except PydanticValidationError as exc:
                logger.warning("Skipped unreadable slot from %s: %s", operation, exc)
        return slots

    async def fetch_slots_for_date(self, day: date) -> list[PersistedSlot]:
        rows = await self._request("fetch_slots_for_date", "GET", "/slots", params={"date": day.isoformat()})
        return self._parse_slots("fetch_slots_for_date", rows)

    async def fetch_month_availability(self, year: int, month: int) -> MonthAvailability:
        data = await self._request(
            "fetch_month_availability",
            "GET",
            "/slots/availability",
            params={"year": year, "month": month},
        )
        try:
            return {
                date.fromisoformat(key): DayAvailability.model_validate(value)
                for key, value in (data or {}).items()
            }
        except (ValueError, PydanticValidationError) as exc:
            raise CollaboratorError("Malformed availability data from slot API", "fetch_month_availability") from exc

    async def create_slot(self, descriptor: SlotDescriptor) -> PersistedSlot:
        row = await self._request("create_slot", "POST", "/slots", json=descriptor.to_wire())
        return self._parse_slot("create_slot", row)

    async def create_slots_bulk(self, descriptors: list[SlotDescriptor]) -> list[PersistedSlot]:
        rows = await self._request(
            "create_slots_bulk",
            "POST",
            "/slots/bulk",
            json={"slots": [descriptor.to_wire() for descriptor in descriptors]},
        )
        return [self._parse_slot("create_slots_bulk", row) for row in rows or []]

    async def delete_slot(self, slot_id: str) -> None:
        await self._request("delete_slot", "DELETE", f"/slots/{slot_id}")

    async def book_slot(self, slot_id: str, client_info: ClientInfo) -> None:
        await self._request("book_slot", "POST", f"/slots/{slot_id}/book", json=client_info.to_wire())


def build_repository(settings) -> SlotRepository:
    if settings.slot_backend == "memory":
        return InMemorySlotRepository()
    if settings.slot_backend == "http":
        if not settings.slot_api_base_url:
            raise ValueError("Missing slot API configuration (SLOT_API_BASE_URL).")
        return HttpSlotRepository(settings.slot_api_base_url, timeout=settings.slot_api_timeout)
    raise ValueError(f"Unknown SLOT_BACKEND {settings.slot_backend!r} (expected 'memory' or 'http').")
