"""
Lobby errors.

Every error is reported back to the sender only, as ``error{message}``; the
message of each class is the literal text clients see on the wire.
"""
from __future__ import annotations


class LobbyError(ValueError):
    message = "Lobby error"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.message)


# ---------- rooms ----------
class RoomNotFound(LobbyError):
    message = "Room not found"


class GameAlreadyStarted(LobbyError):
    """Join attempted after the deal."""
    message = "Game already started"


class RoomFull(LobbyError):
    message = "Room is full"


# ---------- start ----------
class NotInRoom(LobbyError):
    message = "Not in this room"


class NotHost(LobbyError):
    message = "Only host can start"


class NotEnoughPlayers(LobbyError):
    message = "Need at least 2 players"


class AlreadyStarted(LobbyError):
    """Second start on a room that is already playing."""
    message = "Game already started"


# ---------- protocol ----------
class InvalidMessage(LobbyError):
    message = "Invalid JSON"


class MissingActionKind(LobbyError):
    message = "Missing type"


class UnknownAction(LobbyError):
    def __init__(self, kind: str):
        self.kind = kind
        super().__init__(f"Unknown event: {kind}")
