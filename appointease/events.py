from __future__ import annotations

import uuid
from datetime import datetime

from .scheduling.timeofday import format_slot_label
from .schemas import ActivityEvent, ClientInfo, PersistedSlot


def build_event(name: str, detail: str, status: str = "completed") -> ActivityEvent:
    return ActivityEvent(
        id=uuid.uuid4().hex,
        name=name,
        status=status,
        detail=detail,
        timestamp=datetime.utcnow(),
    )


def event_failed(name: str, message: str) -> ActivityEvent:
    return build_event(name, message, status="failed")


def event_slots_created(slots: list[PersistedSlot]) -> ActivityEvent:
    if len(slots) == 1:
        detail = f"Time slot added: {format_slot_label(slots[0])}"
    else:
        detail = f"{len(slots)} slots created"
    return build_event("create_slots", detail)


def event_slot_deleted(slot_id: str, slot: PersistedSlot | None = None) -> ActivityEvent:
    label = format_slot_label(slot) if slot else slot_id
    return build_event("delete_slot", f"Slot deleted: {label}")


def _mask_email(email: str) -> str:
    local, _, domain = email.partition("@")
    if len(local) <= 2:
        return email
    return f"{local[0]}***{local[-1]}@{domain}"


def event_slot_booked(slot: PersistedSlot, client: ClientInfo) -> ActivityEvent:
    detail = f"Appointment confirmed: {format_slot_label(slot)} for {client.name} ({_mask_email(client.email)})"
    return build_event("book_slot", detail)
