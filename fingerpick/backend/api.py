"""FastAPI endpoints for session hosting, contact input and websocket sync."""

from __future__ import annotations

import asyncio
from collections import defaultdict
from concurrent.futures import Future
import logging
from typing import Any, Callable, Literal

from fastapi import Depends, FastAPI, HTTPException, Response, WebSocket, WebSocketDisconnect
from pydantic import BaseModel, Field, field_validator

from .config import load_settings
from .exceptions import SessionNotFound, UnknownMode
from .models import ExclusionZone, InputResult, Mode
from .session import Session
from .store import InMemorySessionStore, SessionStore
from .timers import AsyncioScheduler, TimerScheduler

logger = logging.getLogger(__name__)

SchedulerFactory = Callable[[], TimerScheduler]


class CreateSessionRequest(BaseModel):
    mode: str = Field(default=Mode.SELECT.value, min_length=1)


class CreateSessionResponse(BaseModel):
    session_id: str
    state: dict[str, Any]


class SessionStateResponse(BaseModel):
    state: dict[str, Any]
    events: list[dict[str, Any]] = Field(default_factory=list)
    accepted: bool = True


class PointPayload(BaseModel):
    x: float
    y: float


class ModePayload(BaseModel):
    mode: str = Field(min_length=1)


class ZonePayload(BaseModel):
    x: float
    y: float
    width: float = Field(gt=0)
    height: float = Field(gt=0)


class InputMessage(BaseModel):
    type: Literal[
        "contact.start",
        "contact.move",
        "contact.end",
        "contact.cancel",
        "tap",
        "mode",
        "advance",
        "reset",
    ]
    id: str | None = None
    x: float = 0.0
    y: float = 0.0
    mode: str | None = None

    @field_validator("id", mode="before")
    @classmethod
    def _id_as_str(cls, value: Any) -> Any:
        # HTTP routes receive ids as path strings
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value


def apply_input_message(session: Session, message: InputMessage) -> InputResult:
    """Route one websocket input message to the matching session callback."""
    if message.type.startswith("contact.") and message.id is None:
        raise ValueError(f"{message.type} needs a contact id")
    if message.type == "contact.start":
        return session.on_contact_start(message.id, message.x, message.y)
    if message.type == "contact.move":
        return session.on_contact_move(message.id, message.x, message.y)
    if message.type == "contact.end":
        return session.on_contact_end(message.id)
    if message.type == "contact.cancel":
        return session.on_contact_cancel(message.id)
    if message.type == "tap":
        return session.on_registration_tap(message.x, message.y)
    if message.type == "mode":
        return session.on_mode_change(message.mode or "")
    if message.type == "advance":
        return session.on_manual_advance()
    return session.reset()


class SessionWebSocketHub:
    def __init__(self) -> None:
        self._connections: dict[str, set[WebSocket]] = defaultdict(set)

    async def connect(self, session_id: str, websocket: WebSocket) -> None:
        await websocket.accept()
        self._connections[session_id].add(websocket)

    def disconnect(self, session_id: str, websocket: WebSocket) -> None:
        connections = self._connections.get(session_id)
        if connections is None:
            return
        connections.discard(websocket)
        if not connections:
            self._connections.pop(session_id, None)

    def has_connections(self, session_id: str) -> bool:
        return bool(self._connections.get(session_id))

    async def send_state(self, websocket: WebSocket, state: dict[str, Any]) -> None:
        await websocket.send_json({"type": "state.full", "state": state})

    async def broadcast_state(self, session_id: str, state: dict[str, Any]) -> None:
        stale_connections: list[WebSocket] = []
        for websocket in list(self._connections.get(session_id, set())):
            try:
                await self.send_state(websocket, state)
            except RuntimeError:
                stale_connections.append(websocket)
        for websocket in stale_connections:
            self.disconnect(session_id=session_id, websocket=websocket)

    async def close_all(self, session_id: str) -> None:
        for websocket in list(self._connections.pop(session_id, set())):
            try:
                await websocket.close(code=1000)
            except RuntimeError:
                continue


def _log_push_failure(future: Future) -> None:
    if future.cancelled():
        return
    exc = future.exception()
    if exc is not None:
        logger.error("Timer-driven state push failed", exc_info=exc)


def _default_store() -> SessionStore:
    return InMemorySessionStore(config=load_settings().session_config())


def _parse_mode(value: str) -> Mode:
    try:
        return Mode.parse(value)
    except UnknownMode as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc


def create_app(
    store: SessionStore | None = None,
    scheduler_factory: SchedulerFactory | None = None,
) -> FastAPI:
    app = FastAPI(title="Fingerpick Session API", version="0.1.0")
    session_store = store if store is not None else _default_store()
    make_scheduler: SchedulerFactory = scheduler_factory if scheduler_factory is not None else AsyncioScheduler
    websocket_hub = SessionWebSocketHub()
    app.state.websocket_hub = websocket_hub

    async def publish_state(session_id: str, state: dict[str, Any]) -> None:
        await websocket_hub.broadcast_state(session_id=session_id, state=state)

    app.state.publish_state = publish_state

    def get_store() -> SessionStore:
        return session_store

    def load_session(session_id: str, local_store: SessionStore) -> Session:
        try:
            return local_store.get_session(session_id)
        except SessionNotFound as exc:
            raise HTTPException(status_code=404, detail="Session not found") from exc

    def watch_timers(session_id: str, session: Session) -> None:
        loop = asyncio.get_running_loop()

        def on_timer_change(result: InputResult) -> None:
            if not websocket_hub.has_connections(session_id):
                return
            if loop.is_closed():
                logger.warning("Event loop for session %s is closed, dropping state push", session_id)
                return
            future = asyncio.run_coroutine_threadsafe(publish_state(session_id, result.state), loop)
            future.add_done_callback(_log_push_failure)

        session.add_listener(on_timer_change)

    async def respond(session_id: str, result: InputResult) -> SessionStateResponse:
        await publish_state(session_id=session_id, state=result.state)
        return SessionStateResponse(state=result.state, events=result.engine_events, accepted=result.accepted)

    @app.post("/api/sessions", response_model=CreateSessionResponse)
    async def create_session(
        payload: CreateSessionRequest,
        local_store: SessionStore = Depends(get_store),
    ) -> CreateSessionResponse:
        mode = _parse_mode(payload.mode)
        created = local_store.create_session(mode=mode, scheduler=make_scheduler())
        watch_timers(created.session_id, local_store.get_session(created.session_id))
        return CreateSessionResponse(session_id=created.session_id, state=created.state)

    @app.get("/api/sessions/{session_id}", response_model=SessionStateResponse)
    def get_session(
        session_id: str,
        local_store: SessionStore = Depends(get_store),
    ) -> SessionStateResponse:
        session = load_session(session_id, local_store)
        return SessionStateResponse(state=session.snapshot())

    @app.delete("/api/sessions/{session_id}", status_code=204)
    async def delete_session(
        session_id: str,
        local_store: SessionStore = Depends(get_store),
    ) -> Response:
        try:
            local_store.delete_session(session_id)
        except SessionNotFound as exc:
            raise HTTPException(status_code=404, detail="Session not found") from exc
        await websocket_hub.close_all(session_id)
        return Response(status_code=204)

    @app.post("/api/sessions/{session_id}/contacts/{contact_id}/start", response_model=SessionStateResponse)
    async def contact_start(
        session_id: str,
        contact_id: str,
        payload: PointPayload,
        local_store: SessionStore = Depends(get_store),
    ) -> SessionStateResponse:
        session = load_session(session_id, local_store)
        return await respond(session_id, session.on_contact_start(contact_id, payload.x, payload.y))

    @app.post("/api/sessions/{session_id}/contacts/{contact_id}/move", response_model=SessionStateResponse)
    async def contact_move(
        session_id: str,
        contact_id: str,
        payload: PointPayload,
        local_store: SessionStore = Depends(get_store),
    ) -> SessionStateResponse:
        session = load_session(session_id, local_store)
        return await respond(session_id, session.on_contact_move(contact_id, payload.x, payload.y))

    @app.post("/api/sessions/{session_id}/contacts/{contact_id}/end", response_model=SessionStateResponse)
    async def contact_end(
        session_id: str,
        contact_id: str,
        local_store: SessionStore = Depends(get_store),
    ) -> SessionStateResponse:
        session = load_session(session_id, local_store)
        return await respond(session_id, session.on_contact_end(contact_id))

    @app.post("/api/sessions/{session_id}/contacts/{contact_id}/cancel", response_model=SessionStateResponse)
    async def contact_cancel(
        session_id: str,
        contact_id: str,
        local_store: SessionStore = Depends(get_store),
    ) -> SessionStateResponse:
        session = load_session(session_id, local_store)
        return await respond(session_id, session.on_contact_cancel(contact_id))

    @app.post("/api/sessions/{session_id}/taps", response_model=SessionStateResponse)
    async def registration_tap(
        session_id: str,
        payload: PointPayload,
        local_store: SessionStore = Depends(get_store),
    ) -> SessionStateResponse:
        session = load_session(session_id, local_store)
        return await respond(session_id, session.on_registration_tap(payload.x, payload.y))

    @app.post("/api/sessions/{session_id}/mode", response_model=SessionStateResponse)
    async def change_mode(
        session_id: str,
        payload: ModePayload,
        local_store: SessionStore = Depends(get_store),
    ) -> SessionStateResponse:
        session = load_session(session_id, local_store)
        result = session.on_mode_change(_parse_mode(payload.mode))
        if not result.accepted:
            raise HTTPException(status_code=409, detail="Mode can only change while idle or registering")
        return await respond(session_id, result)

    @app.post("/api/sessions/{session_id}/advance", response_model=SessionStateResponse)
    async def manual_advance(
        session_id: str,
        local_store: SessionStore = Depends(get_store),
    ) -> SessionStateResponse:
        session = load_session(session_id, local_store)
        return await respond(session_id, session.on_manual_advance())

    @app.post("/api/sessions/{session_id}/reset", response_model=SessionStateResponse)
    async def reset_session(
        session_id: str,
        local_store: SessionStore = Depends(get_store),
    ) -> SessionStateResponse:
        session = load_session(session_id, local_store)
        return await respond(session_id, session.reset())

    @app.put("/api/sessions/{session_id}/zone", response_model=SessionStateResponse)
    async def set_zone(
        session_id: str,
        payload: ZonePayload,
        local_store: SessionStore = Depends(get_store),
    ) -> SessionStateResponse:
        session = load_session(session_id, local_store)
        zone = ExclusionZone(x=payload.x, y=payload.y, width=payload.width, height=payload.height)
        return await respond(session_id, session.set_exclusion_zone(zone))

    @app.delete("/api/sessions/{session_id}/zone", response_model=SessionStateResponse)
    async def clear_zone(
        session_id: str,
        local_store: SessionStore = Depends(get_store),
    ) -> SessionStateResponse:
        session = load_session(session_id, local_store)
        return await respond(session_id, session.set_exclusion_zone(None))

    @app.websocket("/ws/sessions/{session_id}")
    async def session_ws(
        websocket: WebSocket,
        session_id: str,
        local_store: SessionStore = Depends(get_store),
    ) -> None:
        try:
            session = local_store.get_session(session_id)
        except SessionNotFound:
            await websocket.close(code=1008)
            return

        await websocket_hub.connect(session_id=session_id, websocket=websocket)
        await websocket_hub.send_state(websocket=websocket, state=session.snapshot())

        try:
            while True:
                raw = await websocket.receive_json()
                try:
                    result = apply_input_message(session, InputMessage.model_validate(raw))
                except (ValueError, UnknownMode) as exc:
                    await websocket.send_json({"type": "error", "detail": str(exc)})
                    continue
                await publish_state(session_id=session_id, state=result.state)
        except WebSocketDisconnect:
            logger.debug("Websocket left session %s", session_id)
            websocket_hub.disconnect(session_id=session_id, websocket=websocket)

    return app


app = create_app()
