"""AI opponent planner.

Read-only: every function looks at a GameState snapshot and returns a
proposal. Proposals go back through the engine like any human action; see
autoplay.py for the loop that executes them.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Optional
from .map_data import CONTINENTS
from .types import Difficulty, GameState, Phase

# minimum attacker/defender troop ratio before the AI will attack
ATTACK_THRESHOLDS = {Difficulty.EASY: 3.0, Difficulty.MEDIUM: 2.0, Difficulty.HARD: 1.5}
CONTINENT_GRAB_RATIO = 1.5
FOCUS_TARGETS = {Difficulty.MEDIUM: 3, Difficulty.HARD: 2}
MAX_PLANNED_ATTACKS = 5


@dataclass(frozen=True)
class SetupDecision:
    territory_id: str


@dataclass(frozen=True)
class ReinforceDecision:
    placements: list[tuple[str, int]] = field(default_factory=list)  # (territory, count)


@dataclass(frozen=True)
class AttackDecision:
    from_id: str
    to_id: str
    ratio: float


@dataclass(frozen=True)
class FortifyDecision:
    from_id: str
    to_id: str
    count: int


@dataclass
class AiTurnPlan:
    setup: Optional[SetupDecision] = None
    reinforce: Optional[ReinforceDecision] = None
    attacks: list[AttackDecision] = field(default_factory=list)
    fortify: Optional[FortifyDecision] = None


# ── Scoring ──────────────────────────────────────────────────────────────────

def border_threat(state: GameState, territory_id: str, player_id: str) -> int:
    """Number of neighbours not owned by the player."""
    t = state.territories[territory_id]
    return sum(1 for adj in t.adjacent_ids if state.territories[adj].owner_id != player_id)


def adjacent_enemy_troops(state: GameState, territory_id: str, player_id: str) -> int:
    t = state.territories[territory_id]
    return sum(state.territories[adj].troops for adj in t.adjacent_ids
               if state.territories[adj].owner_id != player_id)


def is_border(state: GameState, territory_id: str, player_id: str) -> bool:
    return border_threat(state, territory_id, player_id) > 0


def _owned(state: GameState, player_id: str) -> list[str]:
    return [t.id for t in state.player_territories(player_id)]


def _protected_by_pact(state: GameState, player_id: str, other_id: str | None) -> bool:
    return other_id is not None and any(
        p.is_active and p.involves(player_id, other_id) for p in state.pacts)


# ── Phase decisions ──────────────────────────────────────────────────────────

def ai_setup(state: GameState, player_id: str) -> SetupDecision | None:
    owned = _owned(state, player_id)
    if not owned:
        return None
    # max() keeps the first of equal scores
    best = max(owned, key=lambda tid: 10 * border_threat(state, tid, player_id)
               + adjacent_enemy_troops(state, tid, player_id))
    return SetupDecision(territory_id=best)


def ai_reinforce(state: GameState, player_id: str, difficulty: Difficulty) -> ReinforceDecision:
    player = state.player(player_id)
    if player is None or player.reinforcements <= 0:
        return ReinforceDecision()
    pool = player.reinforcements
    owned = _owned(state, player_id)
    if not owned:
        return ReinforceDecision()
    borders = [tid for tid in owned if is_border(state, tid, player_id)]
    if not borders:
        return ReinforceDecision([(owned[0], pool)])

    by_threat = sorted(borders, key=lambda tid: adjacent_enemy_troops(state, tid, player_id)
                       - state.territories[tid].troops, reverse=True)
    targets = borders if difficulty == Difficulty.EASY else by_threat[:FOCUS_TARGETS[difficulty]]

    placements = []
    per_target = max(1, pool // len(targets))
    for tid in targets:
        count = min(per_target, pool)
        if count <= 0:
            break
        placements.append((tid, count))
        pool -= count
    if pool > 0:
        # the remainder lands on the most threatened target
        placements.append((by_threat[0], pool))
    return ReinforceDecision(placements)


def ai_attack(state: GameState, player_id: str, difficulty: Difficulty,
              skip=()) -> AttackDecision | None:
    """Best attack above the difficulty threshold, ignoring targets in `skip`."""
    candidates = []
    for tid in _owned(state, player_id):
        src = state.territories[tid]
        if src.troops < 2:
            continue
        for adj in src.adjacent_ids:
            dst = state.territories[adj]
            if (dst.owner_id == player_id or adj in skip
                    or _protected_by_pact(state, player_id, dst.owner_id)):
                continue
            candidates.append(AttackDecision(tid, adj, src.troops / max(1, dst.troops)))
    if not candidates:
        return None

    candidates.sort(key=lambda c: c.ratio, reverse=True)
    best = candidates[0]
    if best.ratio < ATTACK_THRESHOLDS[difficulty]:
        return None

    if difficulty == Difficulty.HARD:
        for c in candidates:
            if c.ratio >= CONTINENT_GRAB_RATIO and _completes_continent(state, player_id, c.to_id):
                return c
    return best


def _completes_continent(state: GameState, player_id: str, territory_id: str) -> bool:
    continent = CONTINENTS[state.territories[territory_id].continent_id]
    missing = [tid for tid in continent.territory_ids
               if state.territories[tid].owner_id != player_id]
    return missing == [territory_id]


def ai_fortify(state: GameState, player_id: str) -> FortifyDecision | None:
    """Pull the biggest interior stack to the thinnest border.

    Connectivity is not checked; the engine rejects unconnected moves.
    """
    owned = _owned(state, player_id)
    interior = [tid for tid in owned if not is_border(state, tid, player_id)]
    borders = [tid for tid in owned if is_border(state, tid, player_id)]
    if not interior or not borders:
        return None
    sources = [tid for tid in interior if state.territories[tid].troops > 1]
    if not sources:
        return None
    src = max(sources, key=lambda tid: state.territories[tid].troops)
    dst = min(borders, key=lambda tid: state.territories[tid].troops)
    return FortifyDecision(src, dst, state.territories[src].troops - 1)


def plan_ai_turn(state: GameState, player_id: str, difficulty: Difficulty) -> AiTurnPlan:
    """Everything the AI would do from this snapshot.

    Attack proposals are scored against the same snapshot, one per target;
    the executor re-plans against fresh state before each real attack.
    """
    plan = AiTurnPlan()
    if state.phase == Phase.SETUP:
        plan.setup = ai_setup(state, player_id)
        return plan
    if state.phase == Phase.REINFORCE:
        plan.reinforce = ai_reinforce(state, player_id, difficulty)
    if state.phase in (Phase.REINFORCE, Phase.ATTACK):
        targeted: set[str] = set()
        for _ in range(MAX_PLANNED_ATTACKS):
            decision = ai_attack(state, player_id, difficulty, targeted)
            if decision is None:
                break
            plan.attacks.append(decision)
            targeted.add(decision.to_id)
    plan.fortify = ai_fortify(state, player_id)
    return plan
