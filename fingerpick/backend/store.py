"""Session storage. Sessions live in memory only."""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import Protocol
import uuid

from fingerpick.backend.config import SessionConfig
from fingerpick.backend.exceptions import SessionNotFound
from fingerpick.backend.models import CreatedSession, Mode
from fingerpick.backend.session import Session
from fingerpick.backend.timers import TimerScheduler

logger = logging.getLogger(__name__)


class SessionStore(Protocol):
    def create_session(self, mode: Mode, scheduler: TimerScheduler) -> CreatedSession:
        """Create a session and return its id with the initial state."""

    def get_session(self, session_id: str) -> Session:
        """Return the session or raise ``SessionNotFound``."""

    def delete_session(self, session_id: str) -> None:
        """Close and drop the session or raise ``SessionNotFound``."""

    def session_ids(self) -> list[str]:
        """Ids of all live sessions."""


@dataclass
class InMemorySessionStore:
    config: SessionConfig = field(default_factory=SessionConfig)

    def __post_init__(self) -> None:
        self._sessions: dict[str, Session] = {}

    def create_session(self, mode: Mode, scheduler: TimerScheduler) -> CreatedSession:
        session_id = str(uuid.uuid4())
        session = Session(scheduler=scheduler, config=self.config, mode=mode)
        self._sessions[session_id] = session
        logger.info("Created session %s (mode=%s)", session_id, mode.value)
        return CreatedSession(session_id=session_id, state=session.snapshot())

    def get_session(self, session_id: str) -> Session:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        return session

    def delete_session(self, session_id: str) -> None:
        session = self._sessions.pop(session_id, None)
        if session is None:
            raise SessionNotFound(session_id)
        session.close()
        logger.info("Deleted session %s", session_id)

    def session_ids(self) -> list[str]:
        return list(self._sessions)
