"""Conquest game engine.

Phases: setup -> reinforce -> attack -> fortify -> (next player) reinforce -> ...
Every transition takes a GameState and returns a new one. Validation happens
before anything is written, and writes go to a fork of the input, so a
rejected action leaves the caller's state exactly as it was.
"""
from __future__ import annotations
import itertools
import logging
import random
import uuid
from collections import deque
from dataclasses import dataclass, replace
from typing import Optional

from .combat import (
    is_valid_attack_dice, max_attack_dice, max_defend_dice, resolve_combat, roll_dice,
)
from .errors import (
    AdjacencyError, CheatError, OwnershipError, PhaseError, QuantityError,
    ResourceError, TurnError,
)
from .map_data import TERRITORY_IDS, are_adjacent, build_continents, build_initial_territories
from .mini_battle import BattleValidation, create_mini_battle, validate_battle_result
from .reinforcements import calculate_reinforcements, card_set_bonus
from .types import (
    DEFAULT_CONFIG, HIDDEN_CARD, PLAYER_COLORS, BattleMode, CardType, CombatResult,
    GameConfig, GameState, MiniBattleResult, MiniBattleState, Phase, Player,
    Territory, TerritoryCard,
)

logger = logging.getLogger(__name__)

DECK_TYPES = [CardType.INFANTRY, CardType.CAVALRY, CardType.ARTILLERY]
WILD_CARD_IDS = ["wild-1", "wild-2"]


@dataclass(frozen=True)
class AttackResult:
    state: GameState
    combat: Optional[CombatResult] = None      # classic mode
    battle: Optional[MiniBattleState] = None   # tactical mode, awaiting a result
    eliminated_id: Optional[str] = None

    @property
    def conquered(self) -> bool:
        return self.combat is not None and self.combat.conquered


@dataclass(frozen=True)
class BattleOutcome:
    state: GameState
    battle: MiniBattleState
    result: MiniBattleResult
    validation: BattleValidation
    conquered: bool
    attacker_losses: int
    defender_losses: int
    eliminated_id: Optional[str] = None


# ── Creation ─────────────────────────────────────────────────────────────────

def create_deck(rng: random.Random | None = None) -> list[TerritoryCard]:
    """One card per territory, typed round-robin in map order, plus two wilds."""
    rng = rng or random
    cards = [TerritoryCard(id=f"card-{tid}", territory_id=tid, type=DECK_TYPES[i % 3])
             for i, tid in enumerate(TERRITORY_IDS)]
    cards += [TerritoryCard(id=wid, territory_id=None, type=CardType.WILD)
              for wid in WILD_CARD_IDS]
    rng.shuffle(cards)
    return cards


def create_game(player_names: list[str], config: GameConfig = DEFAULT_CONFIG,
                rng: random.Random | None = None,
                ai_player_ids: tuple[str, ...] = ()) -> GameState:
    rng = rng or random
    n = len(player_names)
    if n < config.min_players or n > config.max_players:
        raise QuantityError(
            f"Player count {n} outside range [{config.min_players}, {config.max_players}]")

    territories = build_initial_territories()
    deck = create_deck(rng)

    ids = [f"player-{i}" for i in range(n)]
    shuffled = list(TERRITORY_IDS)
    rng.shuffle(shuffled)
    for i, tid in enumerate(shuffled):
        territories[tid] = replace(territories[tid], owner_id=ids[i % n], troops=1)

    starting = config.starting_troops.get(n, 30)
    players = []
    for i, name in enumerate(player_names):
        owned = sum(1 for t in territories.values() if t.owner_id == ids[i])
        players.append(Player(id=ids[i], name=name, color=PLAYER_COLORS[i],
                              reinforcements=starting - owned, territory_count=owned))

    state = GameState(
        id=f"game-{uuid.uuid4().hex[:8]}",
        phase=Phase.SETUP,
        players=players,
        current_player_index=0,
        turn_number=1,
        territories=territories,
        continents=build_continents(),
        deck=deck,
        discard_pile=[],
        battle_mode=config.battle_mode,
        ai_player_ids=tuple(ai_player_ids),
    )
    logger.debug("created %s for %d players (%s)", state.id, n, config.battle_mode.value)
    return state


# ── Helpers ──────────────────────────────────────────────────────────────────

def _require_phase(state: GameState, phase: Phase):
    if state.phase != phase:
        raise PhaseError(f"Not in {phase.value} phase")


def _require_turn(state: GameState, player_id: str) -> Player:
    if state.player(player_id) is None:
        raise TurnError("Player not found")
    player = state.current_player
    if player.id != player_id:
        raise TurnError("Not your turn")
    return player


def _require_no_battle(state: GameState):
    if state.active_battle is not None:
        raise PhaseError("A tactical battle is in progress")


def _territory(state: GameState, territory_id: str) -> Territory:
    t = state.territories.get(territory_id)
    if t is None:
        raise OwnershipError(f"Territory {territory_id} not found")
    return t


def _own_pair(state: GameState, player_id: str, from_id: str,
              to_id: str) -> tuple[Territory, Territory]:
    src, dst = _territory(state, from_id), _territory(state, to_id)
    if src.owner_id != player_id or dst.owner_id != player_id:
        raise OwnershipError("You must own both territories")
    return src, dst


def _set_player(state: GameState, player: Player):
    state.players[state.player_index(player.id)] = player


def _move(state: GameState, from_id: str, to_id: str, count: int):
    src, dst = state.territories[from_id], state.territories[to_id]
    state.territories[from_id] = replace(src, troops=src.troops - count)
    state.territories[to_id] = replace(dst, troops=dst.troops + count)


def _advance_player(state: GameState):
    if not state.alive_players():
        return
    while True:
        state.current_player_index = (state.current_player_index + 1) % len(state.players)
        if not state.current_player.is_eliminated:
            return


def _update_territory_counts(state: GameState):
    counts = {p.id: 0 for p in state.players}
    for t in state.territories.values():
        if t.owner_id in counts:
            counts[t.owner_id] += 1
    for i, p in enumerate(state.players):
        if p.territory_count != counts[p.id]:
            state.players[i] = replace(p, territory_count=counts[p.id])


def _check_win(state: GameState):
    alive = state.alive_players()
    if len(alive) == 1:
        state.phase = Phase.GAME_OVER
        state.winner_id = alive[0].id
        logger.info("game %s over: %s wins on turn %d",
                    state.id, state.winner_id, state.turn_number)


def _conquer(state: GameState, attacker_id: str, to_id: str, troops_in: int) -> str | None:
    """Flip `to_id` to the attacker, settle elimination and the win check.

    Returns the id of the player eliminated by this conquest, if any.
    """
    dst = state.territories[to_id]
    defender_id = dst.owner_id
    state.territories[to_id] = replace(dst, owner_id=attacker_id, troops=troops_in)
    state.has_conquered_this_turn = True
    _update_territory_counts(state)

    eliminated = None
    defender = state.player(defender_id) if defender_id else None
    if defender is not None and defender.territory_count == 0:
        attacker = state.player(attacker_id)
        _set_player(state, replace(attacker, cards=attacker.cards + defender.cards))
        _set_player(state, replace(defender, is_eliminated=True, cards=()))
        eliminated = defender.id
        logger.debug("%s eliminated by %s", defender.id, attacker_id)

    _check_win(state)
    return eliminated


# ── Phase: Setup ─────────────────────────────────────────────────────────────

def setup_place_troop(state: GameState, player_id: str, territory_id: str) -> GameState:
    """Place one initial troop, then pass to the next player."""
    _require_phase(state, Phase.SETUP)
    player = _require_turn(state, player_id)
    if player.reinforcements <= 0:
        raise ResourceError("No reinforcements left")
    t = _territory(state, territory_id)
    if t.owner_id != player_id:
        raise OwnershipError("You don't own this territory")

    nxt = state.fork()
    nxt.territories[territory_id] = replace(t, troops=t.troops + 1)
    _set_player(nxt, replace(player, reinforcements=player.reinforcements - 1))
    _advance_player(nxt)

    if all(p.reinforcements <= 0 for p in nxt.players):
        nxt.phase = Phase.REINFORCE
        nxt.current_player_index = 0
        first = nxt.players[0]
        _set_player(nxt, replace(first, reinforcements=calculate_reinforcements(nxt, first.id)))
    else:
        # uneven starting pools: skip players who have placed everything
        while nxt.current_player.reinforcements <= 0:
            _advance_player(nxt)
    return nxt


# ── Phase: Reinforce ─────────────────────────────────────────────────────────

def reinforce_place(state: GameState, player_id: str, territory_id: str,
                    count: int) -> GameState:
    _require_phase(state, Phase.REINFORCE)
    player = _require_turn(state, player_id)
    if count < 1:
        raise QuantityError("Invalid troop count")
    if count > player.reinforcements:
        raise ResourceError("Not enough reinforcements")
    t = _territory(state, territory_id)
    if t.owner_id != player_id:
        raise OwnershipError("You don't own this territory")

    nxt = state.fork()
    nxt.territories[territory_id] = replace(t, troops=t.troops + count)
    _set_player(nxt, replace(player, reinforcements=player.reinforcements - count))
    return nxt


def reinforce_done(state: GameState, player_id: str) -> GameState:
    _require_phase(state, Phase.REINFORCE)
    player = _require_turn(state, player_id)
    if player.reinforcements > 0:
        raise ResourceError("Must place all reinforcements first")
    nxt = state.fork()
    nxt.phase = Phase.ATTACK
    return nxt


# ── Phase: Attack ────────────────────────────────────────────────────────────

def attack(state: GameState, player_id: str, from_id: str, to_id: str,
           attack_dice: int | None = None, rng: random.Random | None = None) -> AttackResult:
    """Attack an adjacent enemy territory.

    Classic mode rolls dice and settles the round right away. Tactical mode
    opens a mini-battle instead; troops only change once `resolve_battle`
    accepts a reported result.
    """
    _require_phase(state, Phase.ATTACK)
    _require_no_battle(state)
    _require_turn(state, player_id)
    src, dst = _territory(state, from_id), _territory(state, to_id)
    if src.owner_id != player_id:
        raise OwnershipError("You don't own the attacking territory")
    if dst.owner_id == player_id:
        raise OwnershipError("Cannot attack your own territory")
    if not are_adjacent(from_id, to_id):
        raise AdjacencyError("Territories are not adjacent")
    if src.troops < 2:
        raise QuantityError("Need at least 2 troops to attack")
    dice = max_attack_dice(src.troops) if attack_dice is None else attack_dice
    if not is_valid_attack_dice(dice, src.troops):
        raise QuantityError(f"Invalid attack dice count: {dice}")

    nxt = state.fork()

    if state.battle_mode == BattleMode.TACTICAL:
        battle = create_mini_battle(player_id, from_id, src.troops - 1,
                                    dst.owner_id, to_id, dst.troops)
        nxt.active_battle = battle
        return AttackResult(state=nxt, battle=battle)

    combat = resolve_combat(roll_dice(dice, rng), roll_dice(max_defend_dice(dst.troops), rng))
    src = replace(src, troops=src.troops - combat.attacker_losses)
    dst = replace(dst, troops=dst.troops - combat.defender_losses)
    nxt.territories[from_id] = src
    nxt.territories[to_id] = dst

    eliminated = None
    if dst.troops <= 0:
        combat = replace(combat, conquered=True)
        # the dice that won move in; attackers never lose troops in a conquering roll
        nxt.territories[from_id] = replace(src, troops=src.troops - dice)
        eliminated = _conquer(nxt, player_id, to_id, dice)

    return AttackResult(state=nxt, combat=combat, eliminated_id=eliminated)


def resolve_battle(state: GameState, player_id: str, result: MiniBattleResult) -> BattleOutcome:
    """Apply a reported tactical battle result after the anti-cheat check.

    Each territory loses exactly the units its army lost. On conquest the
    attacker's survivors move in and the rest of the source garrison stays.
    """
    battle = state.active_battle
    if battle is None:
        raise PhaseError("No active battle")
    if player_id not in (battle.attacker.player_id, battle.defender.player_id):
        raise OwnershipError("You are not part of this battle")

    validation = validate_battle_result(battle, result)
    if not validation.valid:
        logger.warning("rejected battle report from %s for %s: %s",
                       player_id, battle.battle_id, validation.error)
        raise CheatError(f"Invalid battle result: {validation.error}")

    from_id, to_id = battle.attacker.territory_id, battle.defender.territory_id
    atk_start = battle.attacker.infantry + battle.attacker.cavalry + battle.attacker.cannons
    def_start = battle.defender.infantry + battle.defender.cavalry + battle.defender.cannons
    atk_lost = atk_start - validation.attacker_troops_remaining
    def_lost = def_start - validation.defender_troops_remaining

    nxt = state.fork()
    nxt.active_battle = None
    src, dst = nxt.territories[from_id], nxt.territories[to_id]
    src = replace(src, troops=src.troops - atk_lost)
    defenders_left = dst.troops - def_lost

    eliminated = None
    conquered = defenders_left <= 0 and validation.attacker_troops_remaining > 0
    if conquered:
        survivors = validation.attacker_troops_remaining
        nxt.territories[from_id] = replace(src, troops=src.troops - survivors)
        eliminated = _conquer(nxt, battle.attacker.player_id, to_id, survivors)
    else:
        nxt.territories[from_id] = src
        # a mutual wipe-out leaves the defender holding with one troop
        nxt.territories[to_id] = replace(dst, troops=max(1, defenders_left))

    return BattleOutcome(state=nxt, battle=battle, result=result, validation=validation,
                         conquered=conquered, attacker_losses=atk_lost,
                         defender_losses=def_lost, eliminated_id=eliminated)


def attack_move(state: GameState, player_id: str, from_id: str, to_id: str,
                count: int) -> GameState:
    """Move more troops into a territory after conquering it."""
    _require_phase(state, Phase.ATTACK)
    _require_no_battle(state)
    _require_turn(state, player_id)
    src, _ = _own_pair(state, player_id, from_id, to_id)
    if not are_adjacent(from_id, to_id):
        raise AdjacencyError("Territories are not adjacent")
    if count < 0 or count >= src.troops:
        raise QuantityError("Invalid troop count (must leave at least 1)")
    nxt = state.fork()
    _move(nxt, from_id, to_id, count)
    return nxt


def attack_done(state: GameState, player_id: str) -> GameState:
    """End the attack phase, drawing a card if anything was conquered."""
    _require_phase(state, Phase.ATTACK)
    _require_no_battle(state)
    player = _require_turn(state, player_id)
    nxt = state.fork()
    if nxt.has_conquered_this_turn and nxt.deck:
        card = nxt.deck.pop()
        _set_player(nxt, replace(player, cards=player.cards + (card,)))
    nxt.phase = Phase.FORTIFY
    return nxt


# ── Phase: Fortify ───────────────────────────────────────────────────────────

def are_connected(territories: dict[str, Territory], player_id: str,
                  from_id: str, to_id: str) -> bool:
    """BFS through territories owned by `player_id` only."""
    visited = {from_id}
    queue = deque([from_id])
    while queue:
        current = queue.popleft()
        if current == to_id:
            return True
        for nb in territories[current].adjacent_ids:
            if nb not in visited and territories[nb].owner_id == player_id:
                visited.add(nb)
                queue.append(nb)
    return False


def fortify(state: GameState, player_id: str, from_id: str, to_id: str,
            count: int) -> GameState:
    _require_phase(state, Phase.FORTIFY)
    _require_turn(state, player_id)
    src, _ = _own_pair(state, player_id, from_id, to_id)
    if from_id == to_id:
        raise AdjacencyError("Cannot fortify to the same territory")
    if count < 1 or count >= src.troops:
        raise QuantityError("Invalid troop count (must leave at least 1)")
    if not are_connected(state.territories, player_id, from_id, to_id):
        raise AdjacencyError("Territories are not connected through your territory chain")
    nxt = state.fork()
    _move(nxt, from_id, to_id, count)
    return nxt


def fortify_done(state: GameState, player_id: str) -> GameState:
    """End the turn and hand the next player their reinforcements."""
    _require_phase(state, Phase.FORTIFY)
    _require_turn(state, player_id)
    nxt = state.fork()
    nxt.has_conquered_this_turn = False
    _advance_player(nxt)
    nxt.turn_number += 1
    nxt.phase = Phase.REINFORCE
    current = nxt.current_player
    _set_player(nxt, replace(current,
                             reinforcements=calculate_reinforcements(nxt, current.id)))
    return nxt


# ── Card trading ─────────────────────────────────────────────────────────────

def is_valid_card_set(cards) -> bool:
    """Three of a kind, one of each, or anything with a wild.

    A pair plus an odd card with no wild is not a set.
    """
    if len(cards) != 3:
        return False
    types = [c.type for c in cards]
    if CardType.WILD in types:
        return True
    return len(set(types)) in (1, 3)


def find_valid_card_set(cards) -> tuple[TerritoryCard, ...] | None:
    for combo in itertools.combinations(cards, 3):
        if is_valid_card_set(combo):
            return combo
    return None


def trade_cards(state: GameState, player_id: str, card_ids) -> GameState:
    _require_phase(state, Phase.REINFORCE)
    player = _require_turn(state, player_id)
    card_ids = list(card_ids)
    if len(card_ids) != 3 or len(set(card_ids)) != 3:
        raise ResourceError("A card set is three different cards")
    hand = {c.id: c for c in player.cards}
    for cid in card_ids:
        if cid not in hand:
            raise ResourceError(f"Card {cid} not found in player's hand")
    cards = [hand[cid] for cid in card_ids]
    if not is_valid_card_set(cards):
        raise ResourceError("Invalid card set")

    nxt = state.fork()
    bonus = card_set_bonus(nxt.card_sets_traded_in)
    nxt.card_sets_traded_in += 1
    _set_player(nxt, replace(
        player,
        reinforcements=player.reinforcements + bonus,
        cards=tuple(c for c in player.cards if c.id not in card_ids),
    ))
    if nxt.discard_pile is not None:
        nxt.discard_pile.extend(cards)

    for card in cards:
        t = nxt.territories.get(card.territory_id) if card.territory_id else None
        if t is not None and t.owner_id == player_id:
            nxt.territories[t.id] = replace(t, troops=t.troops + 2)
    return nxt


# ── Client views ─────────────────────────────────────────────────────────────

def sanitize_for_client(state: GameState, for_player_id: str | None = None) -> GameState:
    """Strip deck and discard pile; mask every hand but the viewer's."""
    players = state.players
    if for_player_id is not None:
        players = [p if p.id == for_player_id else replace(p, cards=(HIDDEN_CARD,) * len(p.cards))
                   for p in state.players]
    return replace(state, deck=None, discard_pile=None, players=list(players),
                   territories=dict(state.territories), pacts=list(state.pacts))
