from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Callable, Dict, List, Optional

from .db.repository import SlotRepository
from .reconcile import SchedulingController
from .schemas import ActivityEvent


@dataclass
class SessionState:
    session_id: str
    controller: SchedulingController
    started_at: datetime = field(default_factory=datetime.utcnow)

    @property
    def events(self) -> List[ActivityEvent]:
        return self.controller.events


class InMemorySessionStore:
    """One scheduling controller per presentation session, all sharing a repository."""

    def __init__(
        self,
        repository: SlotRepository,
        *,
        allow_past_dates: bool = False,
        today: Optional[Callable[[], date]] = None,
    ) -> None:
        self.repository = repository
        self.allow_past_dates = allow_past_dates
        self.today = today
        self.sessions: Dict[str, SessionState] = {}

    def create_session(self) -> SessionState:
        session_id = uuid.uuid4().hex
        controller = SchedulingController(
            self.repository,
            allow_past_dates=self.allow_past_dates,
            today=self.today,
        )
        session = SessionState(session_id=session_id, controller=controller)
        self.sessions[session_id] = session
        return session

    def get_session(self, session_id: str) -> SessionState | None:
        return self.sessions.get(session_id)

    def end_session(self, session_id: str) -> None:
        self.sessions.pop(session_id, None)
