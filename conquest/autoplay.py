"""Runs AI turns one engine call at a time.

Each call to next_ai_step re-reads the state it is given, asks the planner
for a fresh proposal and applies it through the same engine functions a
human uses. Callers can interleave other work between steps.
"""
from __future__ import annotations
import logging
import random
from dataclasses import dataclass
from typing import Optional

from . import engine
from .ai import MAX_PLANNED_ATTACKS, ai_attack, ai_fortify, ai_reinforce, ai_setup
from .errors import GameError
from .mini_battle import simulate_battle
from .types import Difficulty, GameState, Phase

logger = logging.getLogger(__name__)


@dataclass
class AiTurnProgress:
    """Per-turn bookkeeping for one AI player. Resets when the turn changes."""
    turn_number: int = 0
    attacks_made: int = 0
    attacks_halted: bool = False
    fortify_tried: bool = False

    def sync(self, state: GameState):
        if state.turn_number != self.turn_number:
            self.turn_number = state.turn_number
            self.attacks_made = 0
            self.attacks_halted = False
            self.fortify_tried = False


@dataclass(frozen=True)
class AiStep:
    action: str
    state: GameState
    attack: Optional[engine.AttackResult] = None
    outcome: Optional[engine.BattleOutcome] = None
    from_id: Optional[str] = None
    to_id: Optional[str] = None
    traded: tuple[str, ...] = ()
    placements: tuple[tuple[str, int], ...] = ()


def next_ai_step(state: GameState, player_id: str, difficulty: Difficulty,
                 progress: AiTurnProgress, rng: random.Random | None = None) -> AiStep | None:
    """Apply the next sub-step of `player_id`'s turn, or None if it isn't theirs."""
    if state.phase == Phase.GAME_OVER or state.current_player.id != player_id:
        return None
    progress.sync(state)

    if state.phase == Phase.SETUP:
        decision = ai_setup(state, player_id)
        return AiStep("setup_place", engine.setup_place_troop(state, player_id, decision.territory_id))

    if state.phase == Phase.REINFORCE:
        return _reinforce_step(state, player_id, difficulty)

    if state.phase == Phase.ATTACK:
        return _attack_step(state, player_id, difficulty, progress, rng)

    if not progress.fortify_tried:
        progress.fortify_tried = True
        decision = ai_fortify(state, player_id)
        if decision is not None:
            try:
                nxt = engine.fortify(state, player_id, decision.from_id, decision.to_id,
                                     decision.count)
                return AiStep("fortify", nxt)
            except GameError as e:
                logger.debug("%s skips fortify: %s", player_id, e.message)
    return AiStep("fortify_done", engine.fortify_done(state, player_id))


def _reinforce_step(state: GameState, player_id: str, difficulty: Difficulty) -> AiStep:
    player = state.current_player
    cards = engine.find_valid_card_set(player.cards)
    if cards is not None:
        ids = tuple(c.id for c in cards)
        return AiStep("trade_cards", engine.trade_cards(state, player_id, ids), traded=ids)

    if player.reinforcements > 0:
        decision = ai_reinforce(state, player_id, difficulty)
        nxt = state
        for tid, count in decision.placements:
            nxt = engine.reinforce_place(nxt, player_id, tid, count)
        return AiStep("reinforce", nxt, placements=tuple(decision.placements))

    return AiStep("reinforce_done", engine.reinforce_done(state, player_id))


def _attack_step(state: GameState, player_id: str, difficulty: Difficulty,
                 progress: AiTurnProgress, rng: random.Random | None) -> AiStep:
    battle = state.active_battle
    if battle is not None:
        outcome = engine.resolve_battle(state, player_id, simulate_battle(battle, rng))
        return AiStep("battle", outcome.state, outcome=outcome)

    if not progress.attacks_halted and progress.attacks_made < MAX_PLANNED_ATTACKS:
        decision = ai_attack(state, player_id, difficulty)
        if decision is not None:
            try:
                result = engine.attack(state, player_id, decision.from_id, decision.to_id, rng=rng)
            except GameError as e:
                logger.debug("%s stops attacking: %s", player_id, e.message)
                progress.attacks_halted = True
            else:
                progress.attacks_made += 1
                return AiStep("attack", result.state, attack=result,
                              from_id=decision.from_id, to_id=decision.to_id)

    return AiStep("attack_done", engine.attack_done(state, player_id))


def forfeit_turn(state: GameState, player_id: str,
                 rng: random.Random | None = None) -> GameState:
    """Run `player_id`'s turn to its end with the plainest legal moves.

    Used when a turn cannot be finished normally. The pool goes onto the
    first owned territory, a pending battle is simulated, no attacks or
    fortifies are made.
    """
    while state.phase != Phase.GAME_OVER and state.current_player.id == player_id:
        player = state.current_player
        if state.phase in (Phase.SETUP, Phase.REINFORCE) and player.reinforcements > 0:
            tid = state.player_territories(player_id)[0].id
            if state.phase == Phase.SETUP:
                state = engine.setup_place_troop(state, player_id, tid)
            else:
                state = engine.reinforce_place(state, player_id, tid, player.reinforcements)
        elif state.phase == Phase.REINFORCE:
            state = engine.reinforce_done(state, player_id)
        elif state.phase == Phase.ATTACK and state.active_battle is not None:
            battle = state.active_battle
            state = engine.resolve_battle(state, player_id, simulate_battle(battle, rng)).state
        elif state.phase == Phase.ATTACK:
            state = engine.attack_done(state, player_id)
        else:
            state = engine.fortify_done(state, player_id)
    return state
