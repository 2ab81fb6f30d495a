import re
from datetime import date, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator, model_validator

from .errors import ValidationError
from .scheduling.timeofday import TimeOfDay, add_minutes, format_time, parse_time

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def coerce_time(value: Any) -> Any:
    # Backends echo times as HH:MM:SS; seconds are dropped.
    if isinstance(value, TimeOfDay):
        return value
    if isinstance(value, str):
        value = value.strip()
        if len(value) == 8 and value[5] == ":":
            value = value[:5]
    return parse_time(value)


class SlotStatus(str, Enum):
    AVAILABLE = "available"
    BOOKED = "booked"
    BLOCKED = "blocked"


class DayStatus(str, Enum):
    NONE = "none"
    AVAILABLE = "available"
    MIXED = "mixed"
    BOOKED = "booked"


class SlotFields(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, arbitrary_types_allowed=True)

    date: date
    start: TimeOfDay = Field(alias="start_time")
    end: TimeOfDay = Field(alias="end_time")
    title: str
    description: str | None = None
    duration_minutes: int = Field(gt=0)

    @field_validator("start", "end", mode="before")
    @classmethod
    def _parse_times(cls, value: Any) -> Any:
        return coerce_time(value)

    @field_serializer("start", "end")
    def _format_times(self, value: TimeOfDay) -> str:
        return format_time(value)

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class SlotDescriptor(SlotFields):
    @model_validator(mode="after")
    def _check_interval(self):
        if add_minutes(self.start, self.duration_minutes) != self.end:
            raise ValueError(
                f"end {format_time(self.end)} must equal start {format_time(self.start)} "
                f"+ {self.duration_minutes} minutes"
            )
        return self

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class PersistedSlot(SlotFields):
    """
    A slot as stored by the slot API.

    Only the interval order is checked: operators may edit the end time of a
    single slot, and older booked rows may lack ``booked_by``.
    """

    id: str
    status: SlotStatus = SlotStatus.AVAILABLE
    booked_by: str | None = None

    @model_validator(mode="after")
    def _check_order(self):
        if self.start >= self.end:
            raise ValueError(f"start {format_time(self.start)} must be before end {format_time(self.end)}")
        return self


class DayAvailability(BaseModel):
    model_config = ConfigDict(frozen=True)

    available: int = Field(default=0, ge=0)
    booked: int = Field(default=0, ge=0)
    total: int = Field(default=0, ge=0)

    @model_validator(mode="after")
    def _check_counts(self):
        if self.available + self.booked > self.total:
            raise ValueError("available + booked cannot exceed total")
        return self


MonthAvailability = dict[date, DayAvailability]


class ClientInfo(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str = Field(alias="client_name")
    email: str = Field(alias="client_email")
    phone: str | None = Field(default=None, alias="client_phone")
    notes: str | None = None

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True)


def validate_client_info(form: ClientInfo | dict) -> ClientInfo:
    """Check a booking form and return the cleaned ``ClientInfo``.

    Accepts either field names (``name``) or wire names (``client_name``).
    Raises ``ValidationError`` carrying one message per failing field.
    """
    if isinstance(form, ClientInfo):
        form = form.model_dump()
    name = (form.get("name") or form.get("client_name") or "").strip()
    email = (form.get("email") or form.get("client_email") or "").strip()
    phone = (form.get("phone") or form.get("client_phone") or "").strip() or None
    notes = (form.get("notes") or "").strip() or None

    errors: dict[str, str] = {}
    if not name:
        errors["client_name"] = "Name is required"
    if not email:
        errors["client_email"] = "Email is required"
    elif not EMAIL_RE.match(email):
        errors["client_email"] = "Enter a valid email address"
    if errors:
        raise ValidationError("Booking form is invalid", errors)
    return ClientInfo(name=name, email=email, phone=phone, notes=notes)


class BulkSlotRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, arbitrary_types_allowed=True)

    date: date
    day_start: TimeOfDay = Field(alias="start_time")
    day_end: TimeOfDay = Field(alias="end_time")
    duration_minutes: int = Field(gt=0)
    gap_minutes: int = Field(default=0, ge=0)
    title: str
    description: str | None = None

    @field_validator("day_start", "day_end", mode="before")
    @classmethod
    def _parse_times(cls, value: Any) -> Any:
        return coerce_time(value)


class ActivityEvent(BaseModel):
    id: str
    name: str
    status: str
    detail: str
    timestamp: datetime = Field(default_factory=datetime.utcnow)


class SessionStartResponse(BaseModel):
    session_id: str
    ws_url: str


class ViewStateSnapshot(BaseModel):
    selected_date: date | None
    view_year: int
    view_month: int
    slots: list[dict]
    month_availability: dict[str, DayAvailability]
    day_statuses: dict[str, DayStatus]
    day_summary: DayAvailability | None
    selected_slot: dict | None
