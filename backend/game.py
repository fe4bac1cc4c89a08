from __future__ import annotations

import logging
import random
import secrets
import string
import threading
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, ClassVar, Dict, List, NamedTuple, Optional, Sequence, Tuple, TypeVar, Union

from pydantic import BaseModel

from errors import (
    AlreadyStarted,
    GameAlreadyStarted,
    NotEnoughPlayers,
    NotHost,
    NotInRoom,
    RoomFull,
    RoomNotFound,
)
from models import (
    Card,
    Envelope,
    GameStarted,
    GameState,
    Player,
    PlayerCards,
    RoomState,
    RoomSummary,
    YourHand,
)

logger = logging.getLogger(__name__)

# game order, lowest first
RANKS = ["3", "4", "5", "6", "7", "8", "9", "10", "J", "Q", "K", "A", "2"]
SUITS = ["♠", "♣", "♦", "♥"]

ROOM_CAPACITY = 4
MIN_PLAYERS = 2
HAND_SIZE = 13

ROOM_CODE_LENGTH = 6
ROOM_CODE_ALPHABET = string.ascii_uppercase + string.digits

OPENING_CARD = Card(rank="3", suit="♠")

T = TypeVar("T")


# ----------------------------------------------------------------------
# Deck
# ----------------------------------------------------------------------
def build_deck() -> List[Card]:
    return [Card(rank=rank, suit=suit) for rank in RANKS for suit in SUITS]


def shuffle(cards: Sequence[T], rng: Optional[random.Random] = None) -> List[T]:
    """Return a uniformly shuffled copy of ``cards`` (Fisher-Yates).

    ``rng`` defaults to the module-level generator; pass a seeded
    ``random.Random`` to get a reproducible deal.
    """
    randrange = (rng or random).randrange
    deck = list(cards)
    for i in range(len(deck) - 1, 0, -1):
        j = randrange(i + 1)
        deck[i], deck[j] = deck[j], deck[i]
    return deck


# ----------------------------------------------------------------------
# Room phases
# ----------------------------------------------------------------------
@dataclass
class Game:
    turn_player_id: str
    hands: Dict[str, List[Card]]
    # left undealt when fewer than four players sit
    stock: List[Card] = field(default_factory=list)
    last_play: Optional[List[Card]] = None


@dataclass(frozen=True)
class Lobby:
    status: ClassVar[str] = "lobby"


@dataclass(frozen=True)
class Playing:
    game: Game
    status: ClassVar[str] = "playing"


Phase = Union[Lobby, Playing]


@dataclass(frozen=True)
class Outgoing:
    """One envelope addressed to one connection."""

    connection: Any
    envelope: Envelope


def _envelope(kind: str, payload: BaseModel) -> Envelope:
    return Envelope(type=kind, data=payload.model_dump(by_alias=True))


class Room:
    def __init__(self, code: str, host: Player):
        self.code = code
        self.phase: Phase = Lobby()
        self.host_id: Optional[str] = host.id
        self.players: List[Player] = [host]
        self.lock = threading.RLock()
        # set once the last player leaves and the room is dropped from the registry
        self.closed = False

    @property
    def status(self) -> str:
        return self.phase.status

    @property
    def game(self) -> Optional[Game]:
        if isinstance(self.phase, Playing):
            return self.phase.game
        return None

    # ------------------------------------------------------------------
    # Roster
    # ------------------------------------------------------------------
    def index_of(self, connection: Any) -> int:
        for idx, player in enumerate(self.players):
            if player.connection is connection:
                return idx
        return -1

    def add_player(self, player: Player):
        if isinstance(self.phase, Playing):
            raise GameAlreadyStarted()
        if len(self.players) >= ROOM_CAPACITY:
            raise RoomFull()
        self.players.append(player)

    def remove_at(self, idx: int) -> Player:
        leaving = self.players.pop(idx)
        if self.host_id == leaving.id:
            self.host_id = self.players[0].id if self.players else None
        return leaving

    # ------------------------------------------------------------------
    # Lobby -> playing
    # ------------------------------------------------------------------
    def start(self, connection: Any, rng: Optional[random.Random] = None) -> Game:
        idx = self.index_of(connection)
        if idx == -1:
            raise NotInRoom()
        if self.players[idx].id != self.host_id:
            raise NotHost()
        if len(self.players) < MIN_PLAYERS:
            raise NotEnoughPlayers()
        if isinstance(self.phase, Playing):
            raise AlreadyStarted()

        deck = shuffle(build_deck(), rng)
        hands: Dict[str, List[Card]] = {}
        for player in self.players:
            hands[player.id] = deck[:HAND_SIZE]
            del deck[:HAND_SIZE]

        turn_player_id = next(
            (p.id for p in self.players if OPENING_CARD in hands[p.id]),
            self.players[0].id,
        )
        game = Game(turn_player_id=turn_player_id, hands=hands, stock=deck)
        self.phase = Playing(game)
        return game

    # ------------------------------------------------------------------
    # Payloads
    # ------------------------------------------------------------------
    def to_state(self) -> RoomState:
        return RoomState(
            code=self.code,
            status=self.status,
            hostId=self.host_id,
            players=list(self.players),
        )

    def to_summary(self) -> RoomSummary:
        return RoomSummary(
            code=self.code,
            status=self.status,
            hostId=self.host_id,
            playersCount=len(self.players),
        )

    def game_state(self) -> GameState:
        game = self.game
        if game is None:
            raise ValueError("Room is not playing")
        return GameState(
            roomCode=self.code,
            turnPlayerId=game.turn_player_id,
            players=[
                PlayerCards(id=p.id, name=p.name, cardsCount=len(game.hands.get(p.id, [])))
                for p in self.players
            ],
        )

    def broadcast(self, kind: str, payload: BaseModel) -> List[Outgoing]:
        envelope = _envelope(kind, payload)
        return [Outgoing(p.connection, envelope) for p in self.players]


# ----------------------------------------------------------------------
# Registry
# ----------------------------------------------------------------------
class Seat(NamedTuple):
    room_code: str
    player_id: str
    fanout: List[Outgoing]


def random_room_code() -> str:
    return "".join(secrets.choice(ROOM_CODE_ALPHABET) for _ in range(ROOM_CODE_LENGTH))


def new_player_id() -> str:
    return uuid.uuid4().hex


class RoomRegistry:
    """
    Process-wide map of room code -> Room.

    The registry lock only guards the map itself; each room serializes its own
    operations with ``room.lock``. A room lock may take the registry lock (to
    drop an emptied room), never the other way round.
    """

    def __init__(
        self,
        rng: Optional[random.Random] = None,
        code_factory: Callable[[], str] = random_room_code,
    ):
        self._rooms: Dict[str, Room] = {}
        self._lock = threading.Lock()
        self._rng = rng
        self._new_code = code_factory

    def __len__(self) -> int:
        with self._lock:
            return len(self._rooms)

    def __contains__(self, code: str) -> bool:
        with self._lock:
            return code in self._rooms

    def _snapshot(self) -> List[Room]:
        with self._lock:
            return list(self._rooms.values())

    def get(self, code: str) -> Room:
        with self._lock:
            room = self._rooms.get(code)
        if room is None:
            raise RoomNotFound()
        return room

    def summaries(self) -> List[RoomSummary]:
        summaries = []
        for room in self._snapshot():
            with room.lock:
                summaries.append(room.to_summary())
        return summaries

    # ------------------------------------------------------------------
    # Lobby operations
    # ------------------------------------------------------------------
    def create(self, name: str, connection: Any) -> Seat:
        host = Player.seated(new_player_id(), name, connection)
        with self._lock:
            code = self._new_code()
            while code in self._rooms:
                logger.warning("Room code collision detected, regenerating: %s", code)
                code = self._new_code()
            room = Room(code, host)
            fanout = room.broadcast("room_state", room.to_state())
            self._rooms[code] = room
        logger.info("Created room %s, host %s (%s)", code, host.id, host.name)
        return Seat(code, host.id, fanout)

    def join(self, code: str, name: str, connection: Any) -> Seat:
        room = self.get(code)
        with room.lock:
            if room.closed:
                raise RoomNotFound()
            player = Player.seated(new_player_id(), name, connection)
            room.add_player(player)
            fanout = room.broadcast("room_state", room.to_state())
        logger.info("Player %s (%s) joined room %s", player.id, player.name, code)
        return Seat(room.code, player.id, fanout)

    def find_by_connection(self, connection: Any) -> Optional[Tuple[Room, int]]:
        for room in self._snapshot():
            with room.lock:
                idx = room.index_of(connection)
                if idx != -1 and not room.closed:
                    return room, idx
        return None

    def leave(self, connection: Any) -> List[Outgoing]:
        found = self.find_by_connection(connection)
        if found is None:
            return []
        room, _ = found
        with room.lock:
            idx = room.index_of(connection)
            if idx == -1 or room.closed:
                return []
            leaving = room.remove_at(idx)
            logger.info("Player %s left room %s", leaving.id, room.code)
            if not room.players:
                room.closed = True
                with self._lock:
                    self._rooms.pop(room.code, None)
                logger.info("Room %s is empty, removed", room.code)
                return []
            return room.broadcast("room_state", room.to_state())

    def disconnect(self, connection: Any) -> List[Outgoing]:
        """Leave every room the connection is seated in."""
        fanout: List[Outgoing] = []
        while self.find_by_connection(connection) is not None:
            fanout.extend(self.leave(connection))
        return fanout

    # ------------------------------------------------------------------
    # Game start
    # ------------------------------------------------------------------
    def start_game(self, code: str, connection: Any) -> List[Outgoing]:
        room = self.get(code)
        with room.lock:
            if room.closed:
                raise RoomNotFound()
            game = room.start(connection, self._rng)
            fanout = [
                Outgoing(
                    p.connection,
                    _envelope(
                        "your_hand",
                        YourHand(roomCode=room.code, hand=[str(c) for c in game.hands[p.id]]),
                    ),
                )
                for p in room.players
            ]
            fanout += room.broadcast("game_state", room.game_state())
            fanout += room.broadcast("room_state", room.to_state())
            fanout += room.broadcast("game_started", GameStarted(roomCode=room.code))
        logger.info(
            "Game started in room %s with %d players, opening player %s",
            room.code,
            len(game.hands),
            game.turn_player_id,
        )
        return fanout


ROOMS = RoomRegistry()


def list_rooms_summary():
    return [s.model_dump(by_alias=True) for s in ROOMS.summaries()]
