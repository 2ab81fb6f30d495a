from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Any, Dict, List

from dateutil import parser as date_parser
from fastapi import FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError

from .config import settings
from .db.repository import build_repository
from .errors import CollaboratorError, GenerationEmptyError, SchedulingError, ValidationError
from .reconcile import MutationOutcome
from .scheduling.generator import build_single_slot
from .schemas import ActivityEvent, BulkSlotRequest, SessionStartResponse, ViewStateSnapshot, coerce_time
from .sessions import InMemorySessionStore, SessionState

logging.basicConfig(level=settings.log_level.upper())
logger = logging.getLogger(__name__)

app = FastAPI(title="AppointEase Scheduling API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


class ConnectionManager:
    def __init__(self) -> None:
        self.active_connections: Dict[str, List[WebSocket]] = {}

    async def connect(self, session_id: str, websocket: WebSocket) -> None:
        await websocket.accept()
        self.active_connections.setdefault(session_id, []).append(websocket)

    def disconnect(self, session_id: str, websocket: WebSocket) -> None:
        connections = self.active_connections.get(session_id, [])
        if websocket in connections:
            connections.remove(websocket)
        if not connections:
            self.active_connections.pop(session_id, None)

    async def close_all(self, session_id: str) -> None:
        for websocket in self.active_connections.pop(session_id, []):
            await websocket.close(code=1000)

    async def broadcast(self, session_id: str, payload: dict) -> None:
        for websocket in list(self.active_connections.get(session_id, [])):
            await websocket.send_json(payload)


manager = ConnectionManager()
sessions = InMemorySessionStore(
    build_repository(settings),
    allow_past_dates=settings.allow_past_dates,
)


@app.exception_handler(SchedulingError)
async def scheduling_error_handler(request: Request, exc: SchedulingError) -> JSONResponse:
    status_code = 502 if isinstance(exc, CollaboratorError) else 422
    body: dict[str, Any] = {"message": str(exc)}
    if isinstance(exc, ValidationError) and exc.errors:
        body["errors"] = exc.errors
    if isinstance(exc, CollaboratorError):
        logger.info("Collaborator call %s failed: %s", exc.operation, exc)
    return JSONResponse(status_code=status_code, content=body)


@app.exception_handler(PydanticValidationError)
async def payload_error_handler(request: Request, exc: PydanticValidationError) -> JSONResponse:
    errors = {".".join(str(part) for part in error["loc"]) or "payload": error["msg"] for error in exc.errors()}
    return JSONResponse(status_code=422, content={"message": "Invalid payload", "errors": errors})


def _session(session_id: str) -> SessionState:
    session = sessions.get_session(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return session


def _normalize_date(value: Any, field_name: str = "date") -> date:
    if isinstance(value, date):
        return value
    if not value:
        raise ValidationError(f"{field_name} is required", {field_name: "Date is required"})
    try:
        return date_parser.parse(str(value)).date()
    except (ValueError, OverflowError) as exc:
        raise ValidationError(f"Invalid {field_name}", {field_name: "Use YYYY-MM-DD"}) from exc


def _int_field(payload: dict, key: str, default: int | None = None) -> int:
    value = payload.get(key, default)
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"Invalid {key}", {key: "Must be a whole number"}) from exc


async def _publish(session: SessionState, event: ActivityEvent | None = None) -> ViewStateSnapshot:
    snapshot = session.controller.store.snapshot()
    if event is not None:
        await manager.broadcast(session.session_id, {"type": "event", "payload": event.model_dump(mode="json")})
    await manager.broadcast(session.session_id, {"type": "state", "payload": snapshot.model_dump(mode="json")})
    return snapshot


async def _publish_failure(session: SessionState) -> None:
    # Failure events are recorded by the controller before it raises.
    if session.events and session.events[-1].status == "failed":
        await manager.broadcast(
            session.session_id,
            {"type": "event", "payload": session.events[-1].model_dump(mode="json")},
        )


async def _mutation_response(session: SessionState, outcome: MutationOutcome | None) -> dict:
    if outcome is None:
        return {"notice": None, "slots": [], "state": (await _publish(session)).model_dump(mode="json")}
    snapshot = await _publish(session, outcome.event)
    return {
        "notice": outcome.notice,
        "slots": [slot.to_wire() for slot in outcome.slots],
        "state": snapshot.model_dump(mode="json"),
    }


@app.get("/health")
async def health() -> dict:
    return {"status": "ok"}


@app.post("/session/start", response_model=SessionStartResponse)
async def start_session() -> SessionStartResponse:
    session = sessions.create_session()
    await session.controller.refresh()
    return SessionStartResponse(
        session_id=session.session_id,
        ws_url=f"{settings.ws_base_url}/session/{session.session_id}/stream",
    )


@app.delete("/session/{session_id}")
async def end_session(session_id: str) -> dict:
    _session(session_id)
    sessions.end_session(session_id)
    await manager.close_all(session_id)
    return {"status": "ended"}


@app.get("/session/{session_id}/state", response_model=ViewStateSnapshot)
async def get_state(session_id: str) -> ViewStateSnapshot:
    return _session(session_id).controller.store.snapshot()


@app.get("/session/{session_id}/events", response_model=list[ActivityEvent])
async def get_events(session_id: str) -> list[ActivityEvent]:
    return _session(session_id).events


@app.post("/session/{session_id}/date", response_model=ViewStateSnapshot)
async def select_date(session_id: str, payload: dict) -> ViewStateSnapshot:
    session = _session(session_id)
    day = _normalize_date(payload.get("date"))
    try:
        await session.controller.select_date(day)
    except CollaboratorError:
        await _publish_failure(session)
        await _publish(session)
        raise
    return await _publish(session)


@app.post("/session/{session_id}/month", response_model=ViewStateSnapshot)
async def set_month(session_id: str, payload: dict) -> ViewStateSnapshot:
    session = _session(session_id)
    await session.controller.set_view_month(_int_field(payload, "year"), _int_field(payload, "month"))
    return await _publish(session)


@app.post("/session/{session_id}/month/next", response_model=ViewStateSnapshot)
async def next_month(session_id: str) -> ViewStateSnapshot:
    session = _session(session_id)
    await session.controller.next_month()
    return await _publish(session)


@app.post("/session/{session_id}/month/previous", response_model=ViewStateSnapshot)
async def previous_month(session_id: str) -> ViewStateSnapshot:
    session = _session(session_id)
    await session.controller.previous_month()
    return await _publish(session)


def _target_date(session: SessionState, payload: dict) -> date:
    if payload.get("date"):
        return _normalize_date(payload["date"])
    selected = session.controller.store.state.selected_date
    if selected is None:
        raise ValidationError("Pick a date first", {"date": "Select a date from the calendar"})
    return selected


def _bulk_request(session: SessionState, payload: dict) -> BulkSlotRequest:
    return BulkSlotRequest(
        date=_target_date(session, payload),
        start_time=payload.get("start_time", settings.default_day_start),
        end_time=payload.get("end_time", settings.default_day_end),
        duration_minutes=_int_field(payload, "duration_minutes", settings.default_duration_minutes),
        gap_minutes=_int_field(payload, "gap_minutes", settings.default_gap_minutes),
        title=payload.get("title") or settings.default_slot_title,
        description=payload.get("description") or None,
    )


@app.post("/session/{session_id}/slots")
async def create_slot(session_id: str, payload: dict) -> dict:
    session = _session(session_id)
    descriptor = build_single_slot(
        _target_date(session, payload),
        coerce_time(payload.get("start_time", settings.default_day_start)),
        _int_field(payload, "duration_minutes", settings.default_duration_minutes),
        payload.get("title") or settings.default_slot_title,
        payload.get("description") or None,
    )
    try:
        outcome = await session.controller.create_slot(descriptor)
    except CollaboratorError:
        await _publish_failure(session)
        raise
    return await _mutation_response(session, outcome)


@app.post("/session/{session_id}/slots/preview")
async def preview_slots(session_id: str, payload: dict) -> dict:
    session = _session(session_id)
    descriptors = session.controller.preview_bulk(_bulk_request(session, payload))
    return {"count": len(descriptors), "slots": [descriptor.to_wire() for descriptor in descriptors]}


@app.post("/session/{session_id}/slots/bulk")
async def create_slots_bulk(session_id: str, payload: dict) -> dict:
    session = _session(session_id)
    request = _bulk_request(session, payload)
    try:
        outcome = await session.controller.generate_and_create(request)
    except CollaboratorError:
        await _publish_failure(session)
        raise
    except GenerationEmptyError:
        logger.info("Bulk parameters for %s produced no slots", request.date)
        raise
    return await _mutation_response(session, outcome)


@app.delete("/session/{session_id}/slots/{slot_id}")
async def delete_slot(session_id: str, slot_id: str) -> dict:
    session = _session(session_id)
    try:
        outcome = await session.controller.delete_slot(slot_id)
    except CollaboratorError:
        await _publish_failure(session)
        raise
    return await _mutation_response(session, outcome)


@app.post("/session/{session_id}/slots/{slot_id}/select", response_model=ViewStateSnapshot)
async def select_slot(session_id: str, slot_id: str) -> ViewStateSnapshot:
    session = _session(session_id)
    session.controller.select_slot(slot_id)
    return await _publish(session)


@app.delete("/session/{session_id}/selection", response_model=ViewStateSnapshot)
async def clear_selection(session_id: str) -> ViewStateSnapshot:
    session = _session(session_id)
    session.controller.clear_selected_slot()
    return await _publish(session)


@app.post("/session/{session_id}/book")
async def book_slot(session_id: str, payload: dict) -> dict:
    session = _session(session_id)
    try:
        outcome = await session.controller.book_selected_slot(payload)
    except CollaboratorError:
        await _publish_failure(session)
        raise
    return await _mutation_response(session, outcome)


@app.websocket("/session/{session_id}/stream")
async def session_stream(session_id: str, websocket: WebSocket) -> None:
    session = sessions.get_session(session_id)
    if session is None:
        await websocket.close(code=4404)
        return
    await manager.connect(session_id, websocket)
    await websocket.send_json(
        {"type": "state", "payload": session.controller.store.snapshot().model_dump(mode="json")}
    )
    try:
        while True:
            try:
                message = await websocket.receive_json()
            except ValueError:
                logger.debug("Ignored non-JSON frame on session %s", session_id)
                continue
            if isinstance(message, dict) and message.get("type") == "ping":
                await websocket.send_json({"type": "pong", "payload": {"at": datetime.utcnow().isoformat()}})
    except WebSocketDisconnect:
        pass
    finally:
        manager.disconnect(session_id, websocket)
