"""Game rooms: lobby, authoritative state, per-player pushes and AI turns."""
from __future__ import annotations
import asyncio
import logging
import random
import secrets
import uuid
from dataclasses import dataclass, field
from typing import Callable, Optional

from conquest import diplomacy, engine
from conquest.autoplay import AiStep, AiTurnProgress, forfeit_turn, next_ai_step
from conquest.errors import GameError, PhaseError, ResourceError
from conquest.mini_battle import simulate_battle
from conquest.types import (
    PLAYER_COLORS, BattleMode, Difficulty, GameConfig, GameState, MiniBattleResult,
    Phase, PlayerColor,
)
from server import events
from server.events import (
    AiTurnEndEvent, AiTurnStartEvent, CardAwardedEvent, ChatMessageEvent,
    CombatResultEvent, ErrorPayload, GameOverEvent, MiniBattleEndEvent,
    MiniBattleStartEvent, PactAcceptedEvent, PactBrokenEvent, PactProposedEvent,
    PactRejectedEvent, PlayerEliminatedEvent,
)
from server.settings import SETTINGS, ServerSettings

logger = logging.getLogger(__name__)

MAX_AI_STEPS_PER_TURN = 500


class RoomError(Exception):
    """Lobby, membership and auth problems. Carries an HTTP status."""

    def __init__(self, status: int, message: str):
        super().__init__(message)
        self.status = status
        self.message = message


@dataclass
class Member:
    player_id: str
    name: str
    color: PlayerColor
    key: Optional[str] = None  # None for AI players
    is_ready: bool = False
    is_host: bool = False
    is_ai: bool = False
    has_left: bool = False  # human who left a started game; an AI plays the seat
    difficulty: Optional[Difficulty] = None
    outbox: list[dict] = field(default_factory=list)
    listeners: list[asyncio.Queue] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"id": self.player_id, "name": self.name, "color": self.color.value,
                "is_ready": self.is_ready, "is_host": self.is_host, "is_ai": self.is_ai,
                "difficulty": self.difficulty.value if self.difficulty else None,
                "has_left": self.has_left}


class GameRoom:
    def __init__(self, room_id: str, settings: ServerSettings = SETTINGS,
                 rng: random.Random | None = None):
        self.id = room_id
        self.settings = settings
        self.members: list[Member] = []
        self.state: GameState | None = None
        self.config: GameConfig | None = None
        self._rng = rng or random.Random()
        self._ai_task: asyncio.Task | None = None
        self._closed = False
        self._ai_running = False
        self._battle_task: asyncio.Task | None = None

    # ── Membership ───────────────────────────────────────────────────────

    @property
    def max_players(self) -> int:
        return min(self.settings.max_players, len(PLAYER_COLORS))

    @property
    def is_started(self) -> bool:
        return self.state is not None

    @property
    def is_empty(self) -> bool:
        return not any(not m.is_ai for m in self.members)

    def member(self, player_id: str) -> Member:
        for m in self.members:
            if m.player_id == player_id:
                return m
        raise RoomError(404, f"Player {player_id} not in room")

    def authenticate(self, key: str) -> Member:
        for m in self.members:
            if m.key is not None and secrets.compare_digest(m.key, key):
                return m
        raise RoomError(403, "Invalid API key")

    def _renumber(self):
        # lobby ids and colours follow seat order, matching create_game
        for i, m in enumerate(self.members):
            m.player_id = f"player-{i}"
            m.color = PLAYER_COLORS[i]

    def _require_lobby(self):
        if self.is_started:
            raise RoomError(409, "Game already started")

    def _require_host(self, player_id: str):
        if not self.member(player_id).is_host:
            raise RoomError(403, "Only the host can do that")

    def add_player(self, name: str) -> Member:
        self._require_lobby()
        if len(self.members) >= self.max_players:
            raise RoomError(409, "Room is full")
        m = Member(player_id="", name=name, color=PLAYER_COLORS[0],
                   key=secrets.token_hex(16), is_host=self.is_empty)
        self.members.append(m)
        self._renumber()
        logger.info("%s joined room %s as %s", name, self.id, m.player_id)
        self.broadcast_lobby()
        return m

    def remove_player(self, player_id: str) -> bool:
        """Leave the room. Returns True when no humans are left.

        In the lobby the seat is freed. Once the game has started the seat
        stays in the game and a medium AI plays it from then on.
        """
        m = self.member(player_id)
        if m.is_ai:
            raise RoomError(400, "AI players cannot leave")
        if self.is_started:
            self._hand_seat_to_ai(m)
        else:
            self.members.remove(m)
            self._renumber()
        if m.is_host:
            m.is_host = False
            for other in self.members:
                if not other.is_ai:
                    other.is_host = True
                    break
        logger.info("%s left room %s", m.name, self.id)
        self.broadcast_lobby()
        return self.is_empty

    def _hand_seat_to_ai(self, m: Member):
        m.has_left = True
        m.is_ai = True
        m.difficulty = Difficulty.MEDIUM
        m.key = None
        m.listeners.clear()
        if self.state.phase == Phase.GAME_OVER:
            return
        state = self.state.fork()
        state.ai_player_ids = state.ai_player_ids + (m.player_id,)
        self._commit(state)

    def set_ready(self, player_id: str) -> bool:
        self._require_lobby()
        m = self.member(player_id)
        m.is_ready = not m.is_ready
        self.broadcast_lobby()
        return m.is_ready

    def add_ai(self, requester_id: str, difficulty: Difficulty = Difficulty.MEDIUM) -> Member:
        self._require_lobby()
        self._require_host(requester_id)
        if len(self.members) >= self.max_players:
            raise RoomError(409, "Room is full")
        n = sum(1 for m in self.members if m.is_ai) + 1
        m = Member(player_id="", name=f"AI {n} ({difficulty.value.title()})",
                   color=PLAYER_COLORS[0], is_ready=True, is_ai=True, difficulty=difficulty)
        self.members.append(m)
        self._renumber()
        self.broadcast_lobby()
        return m

    def remove_ai(self, requester_id: str, player_id: str):
        self._require_lobby()
        self._require_host(requester_id)
        m = self.member(player_id)
        if not m.is_ai:
            raise RoomError(400, "Not an AI player")
        self.members.remove(m)
        self._renumber()
        self.broadcast_lobby()

    def start_game(self, player_id: str, battle_mode: BattleMode = BattleMode.CLASSIC,
                   diplomacy_enabled: bool = True) -> GameState:
        self._require_lobby()
        self._require_host(player_id)
        if len(self.members) < 2:
            raise RoomError(409, "Need at least 2 players to start")
        if not all(m.is_host or m.is_ready for m in self.members):
            raise RoomError(409, "All players must be ready")

        self.config = GameConfig(
            max_players=self.max_players, battle_mode=battle_mode,
            diplomacy_enabled=diplomacy_enabled,
            pact_break_desertion_rate=self.settings.pact_break_desertion_rate,
        )
        ai_ids = tuple(m.player_id for m in self.members if m.is_ai)
        state = engine.create_game([m.name for m in self.members], self.config,
                                   rng=self._rng, ai_player_ids=ai_ids)
        logger.info("room %s started %s with %d players (%d AI), %s mode",
                    self.id, state.id, len(self.members), len(ai_ids), battle_mode.value)
        self._commit(state)
        self.broadcast_lobby()
        return state

    # ── Outbound messages ────────────────────────────────────────────────

    def lobby_dict(self) -> dict:
        return {"room_id": self.id, "players": [m.to_dict() for m in self.members],
                "max_players": self.max_players, "is_started": self.is_started}

    def send(self, member: Member, msg: dict):
        if member.is_ai:
            return
        member.outbox.append(msg)
        for q in member.listeners:
            q.put_nowait(msg)

    def broadcast(self, msg: dict):
        for m in self.members:
            self.send(m, msg)

    def broadcast_lobby(self):
        self.broadcast(events.message(events.LOBBY_UPDATE, self.lobby_dict()))

    def broadcast_state(self):
        if self.state is None:
            return
        for m in self.members:
            if not m.is_ai:
                view = engine.sanitize_for_client(self.state, m.player_id)
                self.send(m, events.message(events.GAME_STATE, view.to_dict()))

    def _event(self, event, to: Member | None = None):
        msg = events.message(events.GAME_EVENT, event)
        if to is None:
            self.broadcast(msg)
        else:
            self.send(to, msg)

    def _send_error(self, member: Member, err: GameError):
        self.send(member, events.message(
            events.ERROR, ErrorPayload(message=err.message, category=err.category)))

    def subscribe(self, player_id: str) -> asyncio.Queue:
        q: asyncio.Queue = asyncio.Queue()
        self.member(player_id).listeners.append(q)
        return q

    def unsubscribe(self, player_id: str, q: asyncio.Queue):
        for m in self.members:
            if q in m.listeners:
                m.listeners.remove(q)

    def messages(self, player_id: str, after: int = 0) -> list[dict]:
        return self.member(player_id).outbox[after:]

    def view(self, player_id: str) -> dict:
        self.member(player_id)
        if self.state is None:
            return {"lobby": self.lobby_dict()}
        return engine.sanitize_for_client(self.state, player_id).to_dict()

    # ── Game actions ─────────────────────────────────────────────────────

    def _commit(self, state: GameState):
        self.state = state
        self.broadcast_state()
        self._schedule_ai()

    def _run(self, player_id: str, action: Callable[[GameState], object]):
        """Run an engine call for a member, reporting rule errors to them only."""
        member = self.member(player_id)
        if self.state is None:
            raise RoomError(409, "Game has not started")
        try:
            return action(self.state)
        except GameError as e:
            self._send_error(member, e)
            raise

    def _announce_conquest(self, attacker_id: str, eliminated_id: str | None):
        if eliminated_id:
            self._event(PlayerEliminatedEvent(player_id=eliminated_id, eliminated_by=attacker_id))
        if self.state.phase == Phase.GAME_OVER:
            self._event(GameOverEvent(winner_id=self.state.winner_id))

    def handle_setup_place(self, player_id: str, territory_id: str):
        self._commit(self._run(player_id, lambda s: engine.setup_place_troop(s, player_id, territory_id)))

    def handle_reinforce_place(self, player_id: str, territory_id: str, count: int):
        self._commit(self._run(player_id, lambda s: engine.reinforce_place(s, player_id, territory_id, count)))

    def handle_trade_cards(self, player_id: str, card_ids: list[str]):
        self._commit(self._run(player_id, lambda s: engine.trade_cards(s, player_id, card_ids)))

    def handle_reinforce_done(self, player_id: str):
        self._commit(self._run(player_id, lambda s: engine.reinforce_done(s, player_id)))

    def handle_attack(self, player_id: str, from_id: str, to_id: str,
                      dice: int | None = None) -> dict:
        """Attack, breaking any pact with the defender first.

        The pact break and the attack commit together or not at all.
        """
        def act(state: GameState):
            penalty = pact = None
            target = state.territories.get(to_id)
            active = diplomacy.get_pact(state, player_id, target.owner_id) \
                if target is not None and target.owner_id else None
            if active is not None:
                state, penalty = diplomacy.break_pact(
                    state, active.id, player_id, self._desertion_rate())
                pact = next(p for p in state.pacts if p.id == active.id)
            return engine.attack(state, player_id, from_id, to_id, dice, rng=self._rng), pact, penalty

        result, pact, penalty = self._run(player_id, act)
        self.state = result.state
        if pact is not None:
            self._event(PactBrokenEvent(pact=pact.to_dict(), penalty=penalty.to_dict()))
        self._publish_attack(player_id, from_id, to_id, result)
        self._commit(result.state)
        if result.battle is not None:
            self._watch_battle(result.battle.battle_id)
        return {
            "combat": result.combat.to_dict() if result.combat else None,
            "battle": result.battle.to_dict() if result.battle else None,
            "eliminated": result.eliminated_id,
            "penalty": penalty.to_dict() if penalty else None,
        }

    def _publish_attack(self, player_id: str, from_id: str, to_id: str,
                        result: engine.AttackResult):
        if result.battle is not None:
            self._event(MiniBattleStartEvent(battle=result.battle.to_dict()))
            return
        self._event(CombatResultEvent(attacker_id=player_id, from_id=from_id, to_id=to_id,
                                      result=result.combat.to_dict()))
        if result.conquered:
            self._announce_conquest(player_id, result.eliminated_id)

    def handle_battle_result(self, player_id: str, result: MiniBattleResult) -> dict:
        outcome = self._run(player_id, lambda s: engine.resolve_battle(s, player_id, result))
        self.state = outcome.state
        self._publish_battle(outcome)
        self._commit(outcome.state)
        return {"conquered": outcome.conquered, "eliminated": outcome.eliminated_id,
                "attacker_losses": outcome.attacker_losses,
                "defender_losses": outcome.defender_losses}

    def _watch_battle(self, battle_id: str):
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return  # no loop; expire_battle can still be called directly
        self._battle_task = loop.create_task(self._expire_after(battle_id))

    async def _expire_after(self, battle_id: str):
        await asyncio.sleep(self.settings.battle_timeout)
        self.expire_battle(battle_id)

    def expire_battle(self, battle_id: str) -> bool:
        """Settle an unreported tactical battle with a server simulation.

        Does nothing unless `battle_id` is still the pending battle.
        """
        battle = self.state.active_battle if self.state is not None else None
        if self._closed or battle is None or battle.battle_id != battle_id:
            return False
        logger.info("battle %s in room %s timed out, simulating it", battle_id, self.id)
        outcome = engine.resolve_battle(self.state, battle.attacker.player_id,
                                        simulate_battle(battle, self._rng))
        self.state = outcome.state
        self._publish_battle(outcome)
        self._commit(outcome.state)
        return True

    def _publish_battle(self, outcome: engine.BattleOutcome):
        self._event(MiniBattleEndEvent(result=outcome.result.to_dict(),
                                       conquered=outcome.conquered))
        if outcome.conquered:
            self._announce_conquest(outcome.battle.attacker.player_id, outcome.eliminated_id)

    def handle_attack_move(self, player_id: str, from_id: str, to_id: str, count: int):
        self._commit(self._run(player_id, lambda s: engine.attack_move(s, player_id, from_id, to_id, count)))

    def handle_attack_done(self, player_id: str):
        before = self.state
        nxt = self._run(player_id, lambda s: engine.attack_done(s, player_id))
        self.state = nxt
        self._award_card(before, nxt, player_id)
        self._commit(nxt)

    def _award_card(self, before: GameState, after: GameState, player_id: str):
        old, new = before.player(player_id), after.player(player_id)
        if len(new.cards) > len(old.cards):
            self._event(CardAwardedEvent(player_id=player_id, card=new.cards[-1].to_dict()),
                        to=self.member(player_id))

    def handle_fortify(self, player_id: str, from_id: str, to_id: str, count: int):
        self._commit(self._run(player_id, lambda s: engine.fortify(s, player_id, from_id, to_id, count)))

    def handle_fortify_done(self, player_id: str):
        self._commit(self._run(player_id, lambda s: engine.fortify_done(s, player_id)))

    def handle_chat(self, player_id: str, message: str):
        self.member(player_id)
        self._event(ChatMessageEvent(player_id=player_id, message=message))

    # ── Diplomacy ────────────────────────────────────────────────────────

    def _desertion_rate(self) -> float:
        if self.config is not None:
            return self.config.pact_break_desertion_rate
        return self.settings.pact_break_desertion_rate

    def _require_diplomacy(self, state: GameState):
        if self.config is not None and not self.config.diplomacy_enabled:
            raise ResourceError("Diplomacy is disabled in this game")
        if state.phase == Phase.GAME_OVER:
            raise PhaseError("Game is over")

    def handle_propose_pact(self, player_id: str, target_id: str) -> dict:
        def act(state: GameState):
            self._require_diplomacy(state)
            return diplomacy.propose_pact(state, player_id, target_id)

        state, pact = self._run(player_id, act)
        target = self.member(target_id)
        if target.is_ai:
            # AI players do not negotiate
            state = diplomacy.reject_pact(state, pact.id, target_id)
            self._event(PactRejectedEvent(pact_id=pact.id, player_id=target_id))
        else:
            self._event(PactProposedEvent(pact=pact.to_dict()), to=target)
        self._commit(state)
        return pact.to_dict()

    def handle_accept_pact(self, player_id: str, pact_id: str) -> dict:
        def act(state: GameState):
            self._require_diplomacy(state)
            return diplomacy.accept_pact(state, pact_id, player_id)

        state = self._run(player_id, act)
        pact = next(p for p in state.pacts if p.id == pact_id)
        self._event(PactAcceptedEvent(pact=pact.to_dict()))
        self._commit(state)
        return pact.to_dict()

    def handle_reject_pact(self, player_id: str, pact_id: str):
        def act(state: GameState):
            self._require_diplomacy(state)
            return diplomacy.reject_pact(state, pact_id, player_id)

        state = self._run(player_id, act)
        self._event(PactRejectedEvent(pact_id=pact_id, player_id=player_id))
        self._commit(state)

    def handle_break_pact(self, player_id: str, pact_id: str) -> dict:
        def act(state: GameState):
            self._require_diplomacy(state)
            return diplomacy.break_pact(state, pact_id, player_id, self._desertion_rate())

        state, penalty = self._run(player_id, act)
        pact = next(p for p in state.pacts if p.id == pact_id)
        self._event(PactBrokenEvent(pact=pact.to_dict(), penalty=penalty.to_dict()))
        self._commit(state)
        return penalty.to_dict()

    # ── AI turns ─────────────────────────────────────────────────────────

    def _current_ai(self) -> Member | None:
        if self._closed or self.state is None or self.state.phase == Phase.GAME_OVER:
            return None
        pid = self.state.current_player.id
        if pid not in self.state.ai_player_ids:
            return None
        for m in self.members:
            if m.player_id == pid and m.is_ai:
                return m
        return None

    def _schedule_ai(self):
        if self._ai_running or self._current_ai() is None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return  # no loop to drive the AI; run_ai_turns must be awaited by the caller
        self._ai_task = loop.create_task(self.run_ai_turns())

    async def run_ai_turns(self):
        """Play AI turns until a human is up or the game ends."""
        if self._ai_running:
            return
        self._ai_running = True
        try:
            await self._ai_loop()
        finally:
            self._ai_running = False

    async def _ai_loop(self):
        while True:
            member = self._current_ai()
            if member is None:
                return
            pid = member.player_id
            self._event(AiTurnStartEvent(player_id=pid))
            try:
                finished = await self._play_ai_turn(member)
            except Exception:
                logger.exception("AI %s failed in room %s", pid, self.id)
                finished = False
            if not finished and self._current_ai() is member:
                try:
                    self._end_stalled_turn(member)
                except GameError:
                    logger.exception("could not end the turn of AI %s in room %s", pid, self.id)
                    self._event(AiTurnEndEvent(player_id=pid))
                    return
            self._event(AiTurnEndEvent(player_id=pid))
            await asyncio.sleep(self.settings.ai_turn_gap)

    async def _play_ai_turn(self, member: Member) -> bool:
        """Returns False when the turn had to be abandoned."""
        progress = AiTurnProgress()
        for _ in range(MAX_AI_STEPS_PER_TURN):
            if self._closed or self.state is None:
                return False
            step = next_ai_step(self.state, member.player_id, member.difficulty,
                                progress, self._rng)
            if step is None:
                return True
            self._apply_ai_step(member, step)
            await asyncio.sleep(self._delay_for(step))
        logger.warning("AI %s hit the step limit in room %s", member.player_id, self.id)
        return False

    def _end_stalled_turn(self, member: Member):
        pid = member.player_id
        logger.warning("ending the stalled turn of AI %s in room %s", pid, self.id)
        state = forfeit_turn(self.state, pid, self._rng)
        if state.phase == Phase.GAME_OVER:
            self._event(GameOverEvent(winner_id=state.winner_id))
        self._commit(state)

    def _delay_for(self, step: AiStep) -> float:
        if step.action == "attack":
            if step.attack.battle is not None:
                return self.settings.ai_battle_delay
            return self.settings.ai_attack_delay
        return self.settings.ai_step_delay

    def _apply_ai_step(self, member: Member, step: AiStep):
        pid = member.player_id
        logger.debug("AI %s: %s", pid, step.action)
        self.state = step.state
        if step.action == "attack":
            self._publish_attack(pid, step.from_id, step.to_id, step.attack)
        elif step.action == "battle":
            self._publish_battle(step.outcome)
        self._commit(step.state)

    def close(self):
        self._closed = True
        for task in (self._ai_task, self._battle_task):
            if task is not None and not task.done():
                task.cancel()


# ── Registry ─────────────────────────────────────────────────────────────────

class RoomRegistry:
    def __init__(self, settings: ServerSettings = SETTINGS):
        self.settings = settings
        self.rooms: dict[str, GameRoom] = {}

    def create(self, host_name: str) -> tuple[GameRoom, Member]:
        room_id = str(uuid.uuid4())[:8]
        room = GameRoom(room_id, self.settings)
        self.rooms[room_id] = room
        host = room.add_player(host_name)
        logger.info("room %s created by %s", room_id, host_name)
        return room, host

    def get(self, room_id: str) -> GameRoom:
        room = self.rooms.get(room_id)
        if room is None:
            raise RoomError(404, "Room not found")
        return room

    def remove(self, room_id: str):
        room = self.rooms.pop(room_id, None)
        if room is not None:
            room.close()
            logger.info("room %s closed", room_id)

    def list(self) -> list[dict]:
        return [{"room_id": r.id, "players": len(r.members), "max_players": r.max_players,
                 "is_started": r.is_started,
                 "phase": r.state.phase.value if r.state else None}
                for r in self.rooms.values()]
