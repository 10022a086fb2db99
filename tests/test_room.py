import asyncio
import itertools
import random

import pytest

from conquest.errors import GameError, ResourceError, TurnError
from conquest.types import (
    BattleMode, Difficulty, DiplomacyPact, MiniBattleResult, Phase, Survivors,
)
from server import events
from server.room import GameRoom, RoomError, RoomRegistry
from server.settings import ServerSettings

FAST = ServerSettings(ai_step_delay=0, ai_attack_delay=0, ai_battle_delay=0, ai_turn_gap=0)


class CyclingDice:
    def __init__(self, *values):
        self.values = itertools.cycle(values)

    def randint(self, a, b):
        return next(self.values)


def game_events(member, kind=None):
    found = [m["data"] for m in member.outbox if m["event"] == events.GAME_EVENT]
    return [e for e in found if kind is None or e["type"] == kind]


def errors(member):
    return [m["data"] for m in member.outbox if m["event"] == events.ERROR]


@pytest.fixture
def room():
    return GameRoom("r1", FAST, rng=random.Random(4))


@pytest.fixture
def duo(room):
    alice = room.add_player("Alice")
    bob = room.add_player("Bob")
    room.set_ready(bob.player_id)
    room.start_game(alice.player_id)
    return room, alice, bob


@pytest.fixture
def versus_ai(room):
    alice = room.add_player("Alice")
    bot = room.add_ai(alice.player_id, Difficulty.HARD)
    room.start_game(alice.player_id)
    return room, alice, bot


# ── Lobby ────────────────────────────────────────────────────────────────────

def test_join_assigns_seats(room):
    alice = room.add_player("Alice")
    bob = room.add_player("Bob")
    assert (alice.player_id, bob.player_id) == ("player-0", "player-1")
    assert alice.is_host and not bob.is_host
    assert alice.key != bob.key and len(alice.key) == 32
    assert room.authenticate(bob.key) is bob
    with pytest.raises(RoomError) as err:
        room.authenticate("nope")
    assert err.value.status == 403
    lobby = [m for m in alice.outbox if m["event"] == events.LOBBY_UPDATE]
    assert len(lobby[-1]["data"]["players"]) == 2


def test_host_leaving_promotes_next_human(room):
    alice = room.add_player("Alice")
    room.add_ai(alice.player_id)
    bob = room.add_player("Bob")
    assert room.remove_player(alice.player_id) is False
    assert bob.is_host
    assert [m.player_id for m in room.members] == ["player-0", "player-1"]
    assert bob.player_id == "player-1"
    assert room.remove_player(bob.player_id) is True


def test_room_full():
    room = GameRoom("r2", ServerSettings(max_players=2))
    alice = room.add_player("Alice")
    room.add_player("Bob")
    with pytest.raises(RoomError) as err:
        room.add_player("Carol")
    assert err.value.status == 409
    with pytest.raises(RoomError):
        room.add_ai(alice.player_id)


def test_ai_members(room):
    alice = room.add_player("Alice")
    bob = room.add_player("Bob")
    with pytest.raises(RoomError) as err:
        room.add_ai(bob.player_id)
    assert err.value.status == 403
    bot = room.add_ai(alice.player_id, Difficulty.HARD)
    assert bot.name == "AI 1 (Hard)" and bot.is_ready and bot.key is None
    with pytest.raises(RoomError) as err:
        room.remove_ai(alice.player_id, bob.player_id)
    assert err.value.status == 400
    room.remove_ai(alice.player_id, bot.player_id)
    assert len(room.members) == 2


def test_start_requirements(room):
    alice = room.add_player("Alice")
    with pytest.raises(RoomError):
        room.start_game(alice.player_id)
    bob = room.add_player("Bob")
    with pytest.raises(RoomError) as err:
        room.start_game(bob.player_id)
    assert err.value.status == 403
    with pytest.raises(RoomError):
        room.start_game(alice.player_id)
    assert room.set_ready(bob.player_id) is True
    assert room.set_ready(bob.player_id) is False
    room.set_ready(bob.player_id)
    state = room.start_game(alice.player_id, BattleMode.TACTICAL)
    assert state.battle_mode == BattleMode.TACTICAL
    assert room.is_started
    with pytest.raises(RoomError):
        room.add_player("Late")
    with pytest.raises(RoomError):
        room.set_ready(bob.player_id)


def test_actions_need_a_started_game(room):
    alice = room.add_player("Alice")
    with pytest.raises(RoomError) as err:
        room.handle_setup_place(alice.player_id, "alaska")
    assert err.value.status == 409


# ── Game flow ────────────────────────────────────────────────────────────────

def test_start_pushes_private_views(duo):
    room, alice, bob = duo
    for member in (alice, bob):
        pushed = [m["data"] for m in member.outbox if m["event"] == events.GAME_STATE]
        assert pushed
        assert "deck" not in pushed[-1]
        assert pushed[-1]["phase"] == "setup"
    view = room.view(alice.player_id)
    assert view["players"][0]["name"] == "Alice"
    assert "deck" not in view


def test_rule_errors_go_to_the_actor_only(duo):
    room, alice, bob = duo
    before = room.state
    tid = before.player_territories(bob.player_id)[0].id
    with pytest.raises(TurnError):
        room.handle_setup_place(bob.player_id, tid)
    assert room.state is before
    assert errors(bob) == [{"message": "Not your turn", "category": "turn"}]
    assert errors(alice) == []


def test_setup_place_broadcasts(duo):
    room, alice, bob = duo
    tid = room.state.player_territories(alice.player_id)[0].id
    seen = len(bob.outbox)
    room.handle_setup_place(alice.player_id, tid)
    assert room.state.territories[tid].troops == 2
    assert room.state.current_player.id == bob.player_id
    fresh = room.messages(bob.player_id, after=seen)
    assert [m["event"] for m in fresh] == [events.GAME_STATE]


def test_attack_breaks_pact_atomically(duo, arrange):
    room, alice, bob = duo
    state = arrange(room.state, {"alaska": ("player-0", 10), "kamchatka": ("player-1", 2)})
    state.pacts.append(DiplomacyPact(id="pact-1", player_ids=("player-0", "player-1"),
                                     created_turn=1, is_active=True))
    room.state = state

    with pytest.raises(GameError):
        room.handle_attack(alice.player_id, "alaska", "china")
    assert room.state is state
    assert state.pacts[0].is_active
    assert game_events(bob, "pactBroken") == []

    result = room.handle_attack(alice.player_id, "alaska", "kamchatka")
    assert result["penalty"]["troops_lost"] == 1
    assert result["combat"] is not None
    assert room.state.pacts[0].broken_by == "player-0"
    kinds = [e["type"] for e in game_events(bob)]
    assert kinds[:2] == ["pactBroken", "combatResult"]


def test_card_award_is_private(duo, arrange):
    room, alice, bob = duo
    state = arrange(room.state, {"alaska": ("player-0", 3)})
    state.has_conquered_this_turn = True
    room.state = state
    room.handle_attack_done(alice.player_id)
    awarded = game_events(alice, "cardAwarded")
    assert len(awarded) == 1
    assert awarded[0]["card"] == room.state.player("player-0").cards[0].to_dict()
    assert game_events(bob, "cardAwarded") == []
    assert room.state.phase == Phase.FORTIFY


def test_pact_negotiation(duo):
    room, alice, bob = duo
    pact = room.handle_propose_pact(alice.player_id, bob.player_id)
    assert len(game_events(bob, "pactProposed")) == 1
    assert game_events(alice, "pactProposed") == []
    room.handle_accept_pact(bob.player_id, pact["id"])
    assert game_events(alice, "pactAccepted")[0]["pact"]["is_active"] is True
    penalty = room.handle_break_pact(bob.player_id, pact["id"])
    assert penalty["breaker_id"] == bob.player_id
    assert game_events(alice, "pactBroken")


def test_ai_rejects_pacts(versus_ai):
    room, alice, bot = versus_ai
    room.handle_propose_pact(alice.player_id, bot.player_id)
    assert room.state.pacts == []
    assert game_events(alice, "pactRejected")[0]["player_id"] == bot.player_id


def test_diplomacy_can_be_disabled(room):
    alice = room.add_player("Alice")
    bob = room.add_player("Bob")
    room.set_ready(bob.player_id)
    room.start_game(alice.player_id, diplomacy_enabled=False)
    with pytest.raises(ResourceError):
        room.handle_propose_pact(alice.player_id, bob.player_id)
    assert errors(alice)[0]["category"] == "resource"


def test_tactical_battle_through_room(room, arrange):
    alice = room.add_player("Alice")
    bob = room.add_player("Bob")
    room.set_ready(bob.player_id)
    room.start_game(alice.player_id, BattleMode.TACTICAL)
    room.state = arrange(room.state, {"alaska": ("player-0", 6), "kamchatka": ("player-1", 3)})

    opened = room.handle_attack(alice.player_id, "alaska", "kamchatka")
    battle = opened["battle"]
    assert game_events(bob, "miniBattleStart")[0]["battle"] == battle

    report = MiniBattleResult(battle["battle_id"], Survivors(2, 1, 0), Survivors(0, 0, 0))
    outcome = room.handle_battle_result(alice.player_id, report)
    assert outcome["conquered"] is True
    assert game_events(bob, "miniBattleEnd")[0]["conquered"] is True
    assert room.state.territories["kamchatka"].owner_id == "player-0"


@pytest.fixture
def tactical_duo(arrange):
    def build(settings=FAST):
        room = GameRoom("r3", settings, rng=random.Random(4))
        alice = room.add_player("Alice")
        bob = room.add_player("Bob")
        room.set_ready(bob.player_id)
        room.start_game(alice.player_id, BattleMode.TACTICAL)
        room.state = arrange(room.state, {"alaska": ("player-0", 6), "kamchatka": ("player-1", 3)})
        return room, alice, bob
    return build


def test_unreported_battle_is_simulated(tactical_duo):
    room, alice, bob = tactical_duo()
    battle_id = room.handle_attack(alice.player_id, "alaska", "kamchatka")["battle"]["battle_id"]

    assert room.expire_battle("battle-elsewhere") is False
    assert room.state.active_battle is not None
    assert room.expire_battle(battle_id) is True
    assert room.state.active_battle is None
    assert len(game_events(bob, "miniBattleEnd")) == 1
    assert all(t.troops >= 1 for t in room.state.territories.values())
    assert room.expire_battle(battle_id) is False

    room.handle_attack_done(alice.player_id)
    assert room.state.phase == Phase.FORTIFY


def test_battle_timer_settles_the_battle(tactical_duo):
    room, alice, bob = tactical_duo(FAST.model_copy(update={"battle_timeout": 0}))

    async def scenario():
        room.handle_attack(alice.player_id, "alaska", "kamchatka")
        assert room._battle_task is not None
        await room._battle_task

    asyncio.run(scenario())
    assert room.state.active_battle is None
    assert game_events(alice, "miniBattleEnd")


def test_reported_battle_outlives_its_timer(tactical_duo):
    room, alice, bob = tactical_duo()
    battle_id = room.handle_attack(alice.player_id, "alaska", "kamchatka")["battle"]["battle_id"]
    report = MiniBattleResult(battle_id, Survivors(2, 1, 0), Survivors(0, 0, 0))
    room.handle_battle_result(alice.player_id, report)
    settled = room.state
    assert room.expire_battle(battle_id) is False
    assert room.state is settled


def test_chat_and_subscribers(duo):
    room, alice, bob = duo

    async def scenario():
        q = room.subscribe(bob.player_id)
        room.handle_chat(alice.player_id, "hello")
        msg = q.get_nowait()
        room.unsubscribe(bob.player_id, q)
        return msg

    msg = asyncio.run(scenario())
    assert msg["data"] == {"type": "chatMessage", "player_id": "player-0", "message": "hello"}
    assert not bob.listeners


# ── AI turns ─────────────────────────────────────────────────────────────────

def test_ai_takes_its_turn(versus_ai, arrange):
    room, alice, bot = versus_ai
    south_america = ["venezuela", "peru", "brazil", "argentina"]
    room.state = arrange(room.state, {tid: ("player-0", 20) for tid in south_america},
                         default=("player-1", 3), phase=Phase.REINFORCE, current=1,
                         reinforcements={"player-1": 5})

    asyncio.run(room.run_ai_turns())

    assert room.state.current_player.id == alice.player_id
    assert room.state.phase == Phase.REINFORCE
    assert room.state.total_troops("player-1") == 30 * 3 + 5
    kinds = [e["type"] for e in game_events(alice)]
    assert kinds[0] == "aiTurnStart" and kinds[-1] == "aiTurnEnd"


def test_ai_wins_mid_turn(versus_ai, arrange):
    room, alice, bot = versus_ai
    room.state = arrange(room.state, {"kamchatka": ("player-0", 1)},
                         default=("player-1", 10), current=1)
    room._rng = CyclingDice(6, 6, 6, 1)

    asyncio.run(room.run_ai_turns())

    assert room.state.phase == Phase.GAME_OVER
    assert room.state.winner_id == bot.player_id
    assert game_events(alice, "playerEliminated")[0]["player_id"] == alice.player_id
    assert game_events(alice, "gameOver")[0]["winner_id"] == bot.player_id


def test_ai_is_scheduled_after_human_move(versus_ai):
    room, alice, bot = versus_ai

    async def scenario():
        tid = room.state.player_territories(alice.player_id)[0].id
        room.handle_setup_place(alice.player_id, tid)
        assert room._ai_task is not None
        await room._ai_task

    before = room.state.player(bot.player_id).reinforcements
    asyncio.run(scenario())
    assert room.state.current_player.id == alice.player_id
    assert room.state.player(bot.player_id).reinforcements == before - 1


@pytest.fixture
def bot_to_reinforce(versus_ai, arrange):
    room, alice, bot = versus_ai
    room.state = arrange(room.state, {"alaska": ("player-0", 3)}, default=("player-1", 2),
                         phase=Phase.REINFORCE, current=1, reinforcements={"player-1": 5})
    return room, alice, bot


def test_crashed_ai_turn_is_ended(bot_to_reinforce, monkeypatch):
    room, alice, bot = bot_to_reinforce

    def crash(*args, **kwargs):
        raise RuntimeError("planner crashed")

    monkeypatch.setattr("server.room.next_ai_step", crash)
    asyncio.run(room.run_ai_turns())

    assert room.state.current_player.id == alice.player_id
    assert room.state.phase == Phase.REINFORCE
    assert room.state.total_troops(bot.player_id) == 33 * 2 + 5
    assert [e["type"] for e in game_events(alice)] == ["aiTurnStart", "aiTurnEnd"]


def test_ai_step_limit_ends_the_turn(bot_to_reinforce, monkeypatch):
    room, alice, bot = bot_to_reinforce
    monkeypatch.setattr("server.room.MAX_AI_STEPS_PER_TURN", 1)
    asyncio.run(room.run_ai_turns())

    assert room.state.current_player.id == alice.player_id
    assert room.state.total_troops(bot.player_id) == 33 * 2 + 5
    assert room.state.player(bot.player_id).reinforcements == 0


def test_leaving_a_started_game_hands_the_seat_to_ai(duo):
    room, alice, bob = duo
    key = alice.key
    assert room.remove_player(alice.player_id) is False
    assert alice.has_left and alice.is_ai and alice.difficulty == Difficulty.MEDIUM
    assert bob.is_host and not alice.is_host
    assert room.state.player(alice.player_id) is not None
    assert alice.player_id in room.state.ai_player_ids
    with pytest.raises(RoomError):
        room.authenticate(key)
    with pytest.raises(RoomError) as err:
        room.remove_player(alice.player_id)
    assert err.value.status == 400
    assert room.remove_player(bob.player_id) is True


def test_departed_seat_keeps_playing(duo):
    room, alice, bob = duo
    before = room.state.player(alice.player_id).reinforcements

    async def scenario():
        room.remove_player(alice.player_id)
        assert room._ai_task is not None
        await room._ai_task

    asyncio.run(scenario())
    assert room.state.current_player.id == bob.player_id
    assert room.state.player(alice.player_id).reinforcements == before - 1
    assert game_events(bob, "aiTurnStart")[0]["player_id"] == alice.player_id


def test_closed_room_stops_ai(versus_ai, arrange):
    room, alice, bot = versus_ai
    room.state = arrange(room.state, {"kamchatka": ("player-0", 1)},
                         default=("player-1", 10), current=1)
    state = room.state
    room.close()
    asyncio.run(room.run_ai_turns())
    assert room.state is state


# ── Registry ─────────────────────────────────────────────────────────────────

def test_registry():
    rooms = RoomRegistry(FAST)
    room, host = rooms.create("Alice")
    assert host.is_host
    assert rooms.get(room.id) is room
    assert rooms.list() == [{"room_id": room.id, "players": 1, "max_players": 6,
                             "is_started": False, "phase": None}]
    rooms.remove(room.id)
    with pytest.raises(RoomError) as err:
        rooms.get(room.id)
    assert err.value.status == 404
