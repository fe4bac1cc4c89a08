from __future__ import annotations
from typing import Any, Dict, List, Literal, Optional
from pydantic import BaseModel, Field, ConfigDict, PrivateAttr, field_validator

Suit = Literal["♠","♣","♦","♥"]
Rank = Literal["3","4","5","6","7","8","9","10","J","Q","K","A","2"]

RoomStatus = Literal["lobby", "playing"]

DEFAULT_PLAYER_NAME = "Player"
MAX_NAME_LENGTH = 20


class Card(BaseModel):
    rank: Rank
    suit: Suit

    model_config = ConfigDict(frozen=True)

    def __str__(self) -> str:
        return f"{self.rank}{self.suit}"


class Player(BaseModel):
    id: str
    name: str

    # websocket owned by the gateway; only used to address sends
    _connection: Any = PrivateAttr(default=None)

    @classmethod
    def seated(cls, player_id: str, name: str, connection: Any) -> "Player":
        player = cls(id=player_id, name=name)
        player._connection = connection
        return player

    @property
    def connection(self) -> Any:
        return self._connection


class PlayerCards(BaseModel):
    id: str
    name: str
    cards_count: int = Field(alias="cardsCount")

    model_config = ConfigDict(populate_by_name=True)


class RoomState(BaseModel):
    code: str
    status: RoomStatus
    host_id: Optional[str] = Field(default=None, alias="hostId")
    players: List[Player] = Field(default_factory=list)

    model_config = ConfigDict(populate_by_name=True)


class RoomSummary(BaseModel):
    code: str
    status: RoomStatus
    host_id: Optional[str] = Field(default=None, alias="hostId")
    players_count: int = Field(alias="playersCount")

    model_config = ConfigDict(populate_by_name=True)


class GameState(BaseModel):
    room_code: str = Field(alias="roomCode")
    turn_player_id: str = Field(alias="turnPlayerId")
    players: List[PlayerCards] = Field(default_factory=list)

    model_config = ConfigDict(populate_by_name=True)


class YourHand(BaseModel):
    room_code: str = Field(alias="roomCode")
    hand: List[str]

    model_config = ConfigDict(populate_by_name=True)


class RoomTicket(BaseModel):
    """Payload of ``created_room`` / ``joined_room``."""

    room_code: str = Field(alias="roomCode")
    player_id: str = Field(alias="playerId")

    model_config = ConfigDict(populate_by_name=True)


class Envelope(BaseModel):
    type: str
    data: Dict[str, Any] = Field(default_factory=dict)


# ---------- inbound payloads ----------
def strip_surrogates(text: str) -> str:
    """Drop lone surrogates, which cannot be encoded into a UTF-8 text frame."""
    return text.encode("utf-8", "ignore").decode("utf-8")


class _NamedRequest(BaseModel):
    name: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    @field_validator("name", mode="before")
    @classmethod
    def drop_non_string(cls, value):
        return strip_surrogates(value) if isinstance(value, str) else None

    def display_name(self) -> str:
        return (self.name or DEFAULT_PLAYER_NAME)[:MAX_NAME_LENGTH]


class _RoomCodeRequest(BaseModel):
    room_code: str = Field("", alias="roomCode")

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    @field_validator("room_code", mode="before")
    @classmethod
    def normalize_code(cls, value):
        if not isinstance(value, str):
            return ""
        return value.strip().upper()


class CreateRoomRequest(_NamedRequest):
    pass


class JoinRoomRequest(_RoomCodeRequest, _NamedRequest):
    pass


class StartGameRequest(_RoomCodeRequest):
    pass


class GameStarted(BaseModel):
    room_code: str = Field(alias="roomCode")

    model_config = ConfigDict(populate_by_name=True)
