from __future__ import annotations

import json
import logging
from typing import Any, Awaitable, Callable, Dict, Iterable, Tuple

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.websockets import WebSocketState
from fastapi.middleware.cors import CORSMiddleware

from app.settings import settings
from errors import InvalidMessage, LobbyError, MissingActionKind, UnknownAction
from game import ROOMS, Outgoing, RoomRegistry, list_rooms_summary
from models import (
    CreateRoomRequest,
    Envelope,
    JoinRoomRequest,
    RoomTicket,
    StartGameRequest,
    strip_surrogates,
)

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Tien Len Lobby")
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins(),
    allow_methods=["*"],
    allow_headers=["*"],
    allow_credentials=True,
)

logger.info("[CORS] allow_origins: %s", settings.allowed_origins())


# ---------- REST ----------
@app.get("/api/rooms")
async def rooms():
    return list_rooms_summary()


@app.get("/health")
async def health():
    return {"status": "healthy"}


# ---------- WebSockets hub ----------
def event_text(value: Any) -> str:
    """Render a non-string event type the way a browser stringifies it."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, list):
        return ",".join(event_text(item) for item in value)
    if isinstance(value, dict):
        return "[object Object]"
    return str(value)


Handler = Callable[[Any, Dict[str, Any]], Awaitable[None]]


class Hub:
    """Maps inbound actions onto the room registry and fans the results out."""

    def __init__(self, registry: RoomRegistry):
        self.registry = registry
        self.handlers: Dict[str, Handler] = {
            "create_room": self.create_room,
            "join_room": self.join_room,
            "start_game": self.start_game,
        }

    async def connect(self, ws):
        await ws.accept()
        await self.send(ws, "hello", {"message": "connected"})

    async def disconnect(self, ws):
        await self.deliver(self.registry.disconnect(ws))

    async def send(self, ws, kind: str, data: dict):
        await self._send_envelope(ws, Envelope(type=kind, data=data))

    async def deliver(self, fanout: Iterable[Outgoing]):
        for item in fanout:
            await self._send_envelope(item.connection, item.envelope)

    async def _send_envelope(self, ws, envelope: Envelope):
        if ws.client_state != WebSocketState.CONNECTED:
            logger.debug("Dropped %s for a closed connection", envelope.type)
            return
        try:
            await ws.send_json(envelope.model_dump())
        except (RuntimeError, WebSocketDisconnect):
            logger.debug("Dropped %s, connection went away mid-send", envelope.type)

    async def receive(self, ws, raw: str):
        logger.debug("RECEIVED: %s", raw)
        try:
            kind, data = self.decode(raw)
            handler = self.handlers.get(kind)
            if handler is None:
                raise UnknownAction(kind)
            await handler(ws, data)
        except LobbyError as exc:
            logger.info("Rejected message: %s", exc)
            await self.send(ws, "error", {"message": str(exc)})

    @staticmethod
    def _reject_constant(name: str):
        raise ValueError(f"{name} is not valid JSON")

    @classmethod
    def decode(cls, raw: str) -> Tuple[str, Dict[str, Any]]:
        try:
            msg = json.loads(raw, parse_constant=cls._reject_constant)
        except (ValueError, RecursionError):
            raise InvalidMessage()
        if not isinstance(msg, dict):
            msg = {}
        kind = msg.get("type")
        # empty containers count as present, as they do for a browser client
        if kind in (None, False, 0, ""):
            raise MissingActionKind()
        if not isinstance(kind, str):
            kind = event_text(kind)
        kind = strip_surrogates(kind)
        data = msg.get("data")
        if not isinstance(data, dict):
            data = {}
        return kind, data

    # ---------- actions ----------
    async def create_room(self, ws, data: Dict[str, Any]):
        req = CreateRoomRequest.model_validate(data)
        seat = self.registry.create(req.display_name(), ws)
        ticket = RoomTicket(roomCode=seat.room_code, playerId=seat.player_id)
        await self.send(ws, "created_room", ticket.model_dump(by_alias=True))
        await self.deliver(seat.fanout)

    async def join_room(self, ws, data: Dict[str, Any]):
        req = JoinRoomRequest.model_validate(data)
        seat = self.registry.join(req.room_code, req.display_name(), ws)
        ticket = RoomTicket(roomCode=seat.room_code, playerId=seat.player_id)
        await self.send(ws, "joined_room", ticket.model_dump(by_alias=True))
        await self.deliver(seat.fanout)

    async def start_game(self, ws, data: Dict[str, Any]):
        req = StartGameRequest.model_validate(data)
        await self.deliver(self.registry.start_game(req.room_code, ws))


hub = Hub(ROOMS)


# ---------- WS endpoint ----------
@app.websocket("/")
async def ws_lobby(ws: WebSocket):
    await hub.connect(ws)
    try:
        while True:
            message = await ws.receive()
            if message["type"] == "websocket.disconnect":
                break
            raw = message.get("text")
            if raw is None:
                raw = (message.get("bytes") or b"").decode("utf-8", errors="replace")
            await hub.receive(ws, raw)
    except WebSocketDisconnect:
        logger.debug("Connection dropped while receiving")
    finally:
        await hub.disconnect(ws)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())
