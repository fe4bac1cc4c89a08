import importlib

import pytest
from fastapi.testclient import TestClient
from fastapi.websockets import WebSocketState

from game import RoomRegistry
from models import JoinRoomRequest

app_mod = importlib.import_module("main")
client = TestClient(app_mod.app)


def _connect(ws):
    hello = ws.receive_json()
    assert hello == {"type": "hello", "data": {"message": "connected"}}


def _create(ws, name="Alice"):
    ws.send_json({"type": "create_room", "data": {"name": name}})
    created = ws.receive_json()
    assert created["type"] == "created_room"
    state = ws.receive_json()
    assert state["type"] == "room_state"
    return created["data"], state["data"]


def test_health():
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"status": "healthy"}


def test_protocol_errors_keep_socket_open():
    with client.websocket_connect("/") as ws:
        _connect(ws)

        ws.send_text("{not json")
        assert ws.receive_json() == {"type": "error", "data": {"message": "Invalid JSON"}}

        ws.send_json({"data": {}})
        assert ws.receive_json() == {"type": "error", "data": {"message": "Missing type"}}

        ws.send_text("null")
        assert ws.receive_json()["data"]["message"] == "Missing type"

        ws.send_json({"type": "play_cards", "data": {}})
        assert ws.receive_json() == {
            "type": "error",
            "data": {"message": "Unknown event: play_cards"},
        }

        ws.send_json({"type": "join_room", "data": {"roomCode": "NOPE00"}})
        assert ws.receive_json()["data"]["message"] == "Room not found"

        # still usable after every error
        created, _ = _create(ws)
        assert len(created["roomCode"]) == 6


def test_create_room_defaults_and_truncates_name():
    with client.websocket_connect("/") as ws:
        _connect(ws)
        ws.send_json({"type": "create_room"})
        created = ws.receive_json()
        state = ws.receive_json()["data"]
        assert state["players"] == [{"id": created["data"]["playerId"], "name": "Player"}]

    with client.websocket_connect("/") as ws:
        _connect(ws)
        _, state = _create(ws, name="x" * 30)
        assert state["players"][0]["name"] == "x" * 20


def test_rooms_listing_includes_open_room():
    with client.websocket_connect("/") as ws:
        _connect(ws)
        created, _ = _create(ws)
        listing = client.get("/api/rooms").json()
        entry = next(r for r in listing if r["code"] == created["roomCode"])
        assert entry == {
            "code": created["roomCode"],
            "status": "lobby",
            "hostId": created["playerId"],
            "playersCount": 1,
        }


def test_alice_and_bob_play_through():
    with client.websocket_connect("/") as alice, client.websocket_connect("/") as bob:
        _connect(alice)
        _connect(bob)

        created, _ = _create(alice, "Alice")
        code, p1 = created["roomCode"], created["playerId"]

        # lower-case code with padding is accepted
        bob.send_json({"type": "join_room", "data": {"roomCode": f" {code.lower()} ", "name": "Bob"}})
        joined = bob.receive_json()
        assert joined["type"] == "joined_room"
        assert joined["data"]["roomCode"] == code
        p2 = joined["data"]["playerId"]
        assert p2 != p1

        for ws in (alice, bob):
            state = ws.receive_json()
            assert state["type"] == "room_state"
            assert state["data"]["hostId"] == p1
            assert [p["id"] for p in state["data"]["players"]] == [p1, p2]

        bob.send_json({"type": "start_game", "data": {"roomCode": code}})
        assert bob.receive_json()["data"]["message"] == "Only host can start"

        alice.send_json({"type": "start_game", "data": {"roomCode": code}})
        hands = []
        turn_ids = set()
        for ws in (alice, bob):
            hand = ws.receive_json()
            assert hand["type"] == "your_hand"
            assert len(hand["data"]["hand"]) == 13
            hands.append(hand["data"]["hand"])

            summary = ws.receive_json()
            assert summary["type"] == "game_state"
            assert [p["cardsCount"] for p in summary["data"]["players"]] == [13, 13]
            assert "hand" not in summary["data"]
            turn_ids.add(summary["data"]["turnPlayerId"])

            state = ws.receive_json()
            assert state["type"] == "room_state"
            assert state["data"]["status"] == "playing"

            assert ws.receive_json() == {"type": "game_started", "data": {"roomCode": code}}

        assert len(set(hands[0]) | set(hands[1])) == 26
        assert len(turn_ids) == 1
        (turn_id,) = turn_ids
        assert turn_id in (p1, p2)
        if "3♠" in hands[0]:
            assert turn_id == p1
        elif "3♠" in hands[1]:
            assert turn_id == p2

        with client.websocket_connect("/") as carol:
            _connect(carol)
            carol.send_json({"type": "join_room", "data": {"roomCode": code, "name": "Carol"}})
            assert carol.receive_json() == {
                "type": "error",
                "data": {"message": "Game already started"},
            }


def test_join_request_normalizes_payload():
    req = JoinRoomRequest.model_validate({"roomCode": " ab12cd ", "name": 42})
    assert req.room_code == "AB12CD"
    assert req.display_name() == "Player"

    req = JoinRoomRequest.model_validate({})
    assert req.room_code == ""
    assert req.display_name() == "Player"


# ---------- hub without a transport ----------
class FakeSocket:
    def __init__(self):
        self.client_state = WebSocketState.CONNECTING
        self.sent = []

    async def accept(self):
        self.client_state = WebSocketState.CONNECTED

    async def send_json(self, data):
        self.sent.append(data)

    def types(self):
        return [m["type"] for m in self.sent]


@pytest.fixture
def hub():
    return app_mod.Hub(RoomRegistry())


@pytest.mark.asyncio
async def test_hub_decodes_non_string_type(hub):
    ws = FakeSocket()
    await hub.connect(ws)
    await hub.receive(ws, '{"type": 5}')
    await hub.receive(ws, '{"type": ""}')
    await hub.receive(ws, "[1, 2]")
    assert [m["data"]["message"] for m in ws.sent[1:]] == [
        "Unknown event: 5",
        "Missing type",
        "Missing type",
    ]


@pytest.mark.asyncio
async def test_hub_treats_non_object_data_as_empty(hub):
    ws = FakeSocket()
    await hub.connect(ws)
    await hub.receive(ws, '{"type": "create_room", "data": "Alice"}')
    assert ws.types() == ["hello", "created_room", "room_state"]
    assert ws.sent[2]["data"]["players"][0]["name"] == "Player"


@pytest.mark.asyncio
async def test_hub_disconnect_hands_over_host(hub):
    alice, bob = FakeSocket(), FakeSocket()
    await hub.connect(alice)
    await hub.connect(bob)
    await hub.receive(alice, '{"type": "create_room", "data": {"name": "Alice"}}')
    code = alice.sent[1]["data"]["roomCode"]
    await hub.receive(bob, '{"type": "join_room", "data": {"roomCode": "%s", "name": "Bob"}}' % code)
    bob_id = bob.sent[1]["data"]["playerId"]

    alice.client_state = WebSocketState.DISCONNECTED
    await hub.disconnect(alice)

    last = bob.sent[-1]
    assert last["type"] == "room_state"
    assert last["data"]["hostId"] == bob_id
    assert [p["name"] for p in last["data"]["players"]] == ["Bob"]

    await hub.disconnect(bob)
    assert code not in hub.registry


@pytest.mark.asyncio
async def test_hub_drops_sends_to_closed_sockets(hub):
    alice, bob = FakeSocket(), FakeSocket()
    await hub.connect(alice)
    await hub.connect(bob)
    await hub.receive(alice, '{"type": "create_room", "data": {"name": "Alice"}}')
    code = alice.sent[1]["data"]["roomCode"]
    await hub.receive(bob, '{"type": "join_room", "data": {"roomCode": "%s"}}' % code)

    bob.client_state = WebSocketState.DISCONNECTED
    sent_before = len(bob.sent)
    await hub.receive(alice, '{"type": "start_game", "data": {"roomCode": "%s"}}' % code)

    assert len(bob.sent) == sent_before
    assert alice.types()[-4:] == ["your_hand", "game_state", "room_state", "game_started"]
    assert hub.registry.get(code).status == "playing"


def test_deeply_nested_message_is_invalid_json():
    with client.websocket_connect("/") as ws:
        _connect(ws)
        ws.send_text("[" * 100000 + "]" * 100000)
        assert ws.receive_json() == {"type": "error", "data": {"message": "Invalid JSON"}}

        ws.send_json({"type": "nope"})
        assert ws.receive_json()["data"]["message"] == "Unknown event: nope"


@pytest.mark.asyncio
@pytest.mark.parametrize("raw", ["NaN", "Infinity", "-Infinity", '{"type": NaN}'])
async def test_hub_rejects_non_finite_constants(hub, raw):
    ws = FakeSocket()
    await hub.connect(ws)
    await hub.receive(ws, raw)
    assert ws.sent[-1] == {"type": "error", "data": {"message": "Invalid JSON"}}


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "raw, message",
    [
        ('{"type": ["a", "b"]}', "Unknown event: a,b"),
        ('{"type": {}}', "Unknown event: [object Object]"),
        ('{"type": []}', "Unknown event: "),
        ('{"type": true}', "Unknown event: true"),
        ('{"type": 2.0}', "Unknown event: 2"),
        ('{"type": 0}', "Missing type"),
        ('{"type": false}', "Missing type"),
    ],
)
async def test_hub_renders_non_string_types(hub, raw, message):
    ws = FakeSocket()
    await hub.connect(ws)
    await hub.receive(ws, raw)
    assert ws.sent[-1]["data"]["message"] == message


@pytest.mark.asyncio
async def test_hub_strips_lone_surrogates(hub):
    ws = FakeSocket()
    await hub.connect(ws)
    await hub.receive(ws, '{"type": "create_room", "data": {"name": "A\\ud800b"}}')
    name = ws.sent[-1]["data"]["players"][0]["name"]
    assert name == "Ab"
    name.encode("utf-8")

    await hub.receive(ws, '{"type": "x\\udfff"}')
    assert ws.sent[-1]["data"]["message"] == "Unknown event: x"
