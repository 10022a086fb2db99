"""Per-turn troop income and card trade-in bonuses."""
from __future__ import annotations
from .map_data import CONTINENTS, controls_continent
from .types import GameState, Territory

MIN_REINFORCEMENTS = 3
CARD_SET_BONUSES = [4, 6, 8, 10, 12, 15]
CARD_SET_INCREMENT = 5  # per set after the schedule runs out


def territory_reinforcements(territory_count: int) -> int:
    return max(MIN_REINFORCEMENTS, territory_count // 3)


def continent_bonuses(territories: dict[str, Territory], player_id: str) -> int:
    return sum(c.bonus_troops for cid, c in CONTINENTS.items()
               if controls_continent(territories, player_id, cid))


def card_set_bonus(sets_traded: int) -> int:
    """Bonus for the next trade-in, given how many sets were traded before it."""
    if sets_traded < len(CARD_SET_BONUSES):
        return CARD_SET_BONUSES[sets_traded]
    extra = sets_traded - len(CARD_SET_BONUSES) + 1
    return CARD_SET_BONUSES[-1] + extra * CARD_SET_INCREMENT


def calculate_reinforcements(state: GameState, player_id: str) -> int:
    """Troops due at the start of a turn. Card bonuses are granted at trade-in."""
    player = state.player(player_id)
    if player is None or player.is_eliminated:
        return 0
    return (territory_reinforcements(player.territory_count)
            + continent_bonuses(state.territories, player_id))
