"""Non-aggression pacts. Breaking one costs the breaker 5-10% of their troops."""
from __future__ import annotations
import logging
import math
import uuid
from dataclasses import replace
from .errors import OwnershipError, ResourceError
from .types import DiplomacyPact, GameState, PactBreakPenalty

logger = logging.getLogger(__name__)

MIN_DESERTION_RATE = 0.05
MAX_DESERTION_RATE = 0.10


def create_pact(player_a: str, player_b: str, current_turn: int,
                minimum_duration: int = 3) -> DiplomacyPact:
    """A new proposal. It stays inactive until the invited player accepts."""
    return DiplomacyPact(
        id=f"pact-{uuid.uuid4().hex[:12]}",
        player_ids=(player_a, player_b),
        created_turn=current_turn,
        minimum_duration=minimum_duration,
    )


# ── Queries ──────────────────────────────────────────────────────────────────

def have_pact(state: GameState, player_a: str, player_b: str) -> bool:
    return get_pact(state, player_a, player_b) is not None


def get_pact(state: GameState, player_a: str, player_b: str) -> DiplomacyPact | None:
    """The active pact between two players, in either order."""
    for p in state.pacts:
        if p.is_active and p.involves(player_a, player_b):
            return p
    return None


def _find(state: GameState, pact_id: str) -> tuple[int, DiplomacyPact]:
    for i, p in enumerate(state.pacts):
        if p.id == pact_id:
            return i, p
    raise ResourceError("Pact not found")


# ── Lifecycle ────────────────────────────────────────────────────────────────

def propose_pact(state: GameState, proposer_id: str,
                 target_id: str) -> tuple[GameState, DiplomacyPact]:
    if proposer_id == target_id:
        raise ResourceError("Cannot make a pact with yourself")
    for pid in (proposer_id, target_id):
        player = state.player(pid)
        if player is None:
            raise ResourceError(f"Player {pid} not found")
        if player.is_eliminated:
            raise ResourceError(f"Player {pid} is eliminated")
    for p in state.pacts:
        if p.involves(proposer_id, target_id) and (p.is_active or p.is_pending):
            raise ResourceError("Pact already exists")

    pact = create_pact(proposer_id, target_id, state.turn_number)
    nxt = state.fork()
    nxt.pacts.append(pact)
    return nxt, pact


def accept_pact(state: GameState, pact_id: str, player_id: str | None = None) -> GameState:
    """Activate a pending pact. When `player_id` is given it must be the invitee."""
    i, pact = _find(state, pact_id)
    if pact.is_active:
        raise ResourceError("Pact already active")
    if pact.broken_by is not None:
        raise ResourceError("Pact was broken")
    if player_id is not None and player_id != pact.player_ids[1]:
        raise OwnershipError("Only the invited player can accept this pact")
    nxt = state.fork()
    nxt.pacts[i] = replace(pact, is_active=True)
    return nxt


def reject_pact(state: GameState, pact_id: str, player_id: str | None = None) -> GameState:
    """Withdraw a pending proposal. Either party may reject it."""
    i, pact = _find(state, pact_id)
    if not pact.is_pending:
        raise ResourceError("Pact is not pending")
    if player_id is not None and player_id not in pact.player_ids:
        raise OwnershipError("Player not in this pact")
    nxt = state.fork()
    del nxt.pacts[i]
    return nxt


def break_pact(state: GameState, pact_id: str, breaker_id: str,
               desertion_rate: float) -> tuple[GameState, PactBreakPenalty]:
    """Deactivate a pact for good and make the breaker's troops desert.

    Losses are drained from the largest garrisons first and never leave a
    territory with fewer than 1 troop, so the actual loss can fall short of
    the requested one.
    """
    i, pact = _find(state, pact_id)
    if not pact.is_active:
        raise ResourceError("Pact is not active")
    if breaker_id not in pact.player_ids:
        raise OwnershipError("Player not in this pact")

    nxt = state.fork()
    nxt.pacts[i] = replace(pact, is_active=False, broken_by=breaker_id)

    rate = max(MIN_DESERTION_RATE, min(MAX_DESERTION_RATE, desertion_rate))
    owned = nxt.player_territories(breaker_id)
    to_lose = max(1, math.floor(sum(t.troops for t in owned) * rate))

    remaining = to_lose
    affected = []
    for t in sorted(owned, key=lambda t: t.troops, reverse=True):
        if remaining <= 0:
            break
        can_lose = t.troops - 1
        if can_lose <= 0:
            continue
        loss = min(remaining, can_lose)
        nxt.territories[t.id] = replace(t, troops=t.troops - loss)
        remaining -= loss
        affected.append(t.id)

    # ownership is untouched, but keep the cached count honest
    pi = nxt.player_index(breaker_id)
    if pi >= 0:
        nxt.players[pi] = replace(nxt.players[pi], territory_count=len(owned))

    penalty = PactBreakPenalty(breaker_id=breaker_id, desertion_rate=rate,
                               troops_lost=to_lose - remaining,
                               affected_territories=tuple(affected))
    logger.debug("pact %s broken by %s: %d troops deserted", pact_id, breaker_id,
                 penalty.troops_lost)
    return nxt, penalty
