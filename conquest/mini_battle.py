"""Tactical mode: army composition, anti-cheat validation and auto-resolution.

Troop counts become a small army of infantry, cavalry and cannons. The client
fights the battle and reports survivors; the server checks the report against
the starting armies before any troops change.

    Troops | Infantry | Cavalry | Cannons
    -------|----------|---------|--------
       1   |    1     |    0    |    0
       3   |    3     |    0    |    0
       6   |    3     |    3    |    0
       7   |    3     |    3    |    1
       9   |    3     |    3    |    3
      10   |    4     |    3    |    3
      12+  |    6     |    3    |    3
"""
from __future__ import annotations
import math
import random
import uuid
from dataclasses import dataclass
from typing import Optional
from .types import BattleArmy, MiniBattleResult, MiniBattleState, Survivors

BASE_INFANTRY = 3
MAX_INFANTRY = 6
MAX_CAVALRY = 3
MAX_CANNONS = 3
TIME_LIMIT = 60
MAX_SIM_ROUNDS = 10

# attack power and hit points per unit type, weakest first
UNIT_COST = (("infantry", 1), ("cavalry", 2), ("cannons", 3))


def troops_to_army(player_id: str, territory_id: str, troops: int) -> BattleArmy:
    remaining = max(1, troops)
    infantry = min(remaining, BASE_INFANTRY)
    remaining -= infantry
    cavalry = min(remaining, MAX_CAVALRY)
    remaining -= cavalry
    cannons = min(remaining, MAX_CANNONS)
    remaining -= cannons
    # overflow tops infantry back up to its cap
    infantry += min(remaining, MAX_INFANTRY - infantry)
    return BattleArmy(player_id=player_id, territory_id=territory_id,
                      infantry=infantry, cavalry=cavalry, cannons=cannons,
                      source_troops=troops)


def army_unit_count(army: BattleArmy) -> int:
    return army.infantry + army.cavalry + army.cannons


def create_mini_battle(attacker_id: str, attacker_territory_id: str, attacker_troops: int,
                       defender_id: str, defender_territory_id: str, defender_troops: int,
                       battle_id: str | None = None) -> MiniBattleState:
    return MiniBattleState(
        battle_id=battle_id or f"battle-{uuid.uuid4().hex[:12]}",
        attacker=troops_to_army(attacker_id, attacker_territory_id, attacker_troops),
        defender=troops_to_army(defender_id, defender_territory_id, defender_troops),
        time_limit=TIME_LIMIT,
    )


def survivors_to_troops(survivors: Survivors) -> int:
    return survivors.total


# ── Validation ───────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class BattleValidation:
    valid: bool
    error: Optional[str] = None
    attacker_troops_remaining: int = 0
    defender_troops_remaining: int = 0
    conquered: bool = False


def _losses(army: BattleArmy, survivors: Survivors) -> int:
    return army_unit_count(army) - survivors.total


def validate_battle_result(battle: MiniBattleState, result: MiniBattleResult) -> BattleValidation:
    """Anti-cheat gate for a client-reported battle outcome."""
    if result.battle_id != battle.battle_id:
        return BattleValidation(False, "Battle ID mismatch")

    for side, army, surv in (("Attacker", battle.attacker, result.attacker_survivors),
                             ("Defender", battle.defender, result.defender_survivors)):
        for unit, _ in UNIT_COST:
            count = getattr(surv, unit)
            if count < 0:
                return BattleValidation(False, f"Negative {side.lower()} {unit}")
            if count > getattr(army, unit):
                return BattleValidation(False, f"{side} {unit} exceeds start")

    a_surv, d_surv = result.attacker_survivors, result.defender_survivors
    if (_losses(battle.attacker, a_surv) == 0
            and _losses(battle.defender, d_surv) == 0):
        return BattleValidation(False, "No casualties, someone must take losses")

    return BattleValidation(
        valid=True,
        attacker_troops_remaining=survivors_to_troops(a_surv),
        defender_troops_remaining=survivors_to_troops(d_surv),
        conquered=d_surv.total == 0 and a_surv.total > 0,
    )


# ── Auto-resolution ──────────────────────────────────────────────────────────

def _damage(units: dict[str, int]) -> int:
    return sum(units[name] * cost for name, cost in UNIT_COST)


def _apply_damage(units: dict[str, int], damage: int):
    """Kill weakest units first; a partially paid kill still counts."""
    for name, cost in UNIT_COST:
        killed = min(units[name], math.ceil(damage / cost))
        units[name] -= killed
        damage = max(0, damage - killed * cost)


def simulate_battle(battle: MiniBattleState, rng: random.Random | None = None) -> MiniBattleResult:
    """Resolve a battle server-side when no human plays it out.

    Every round both sides deal 60-100% of their raw power, at least 1, so
    the result always has a casualty and passes validate_battle_result.
    """
    rng = rng or random
    atk = {name: getattr(battle.attacker, name) for name, _ in UNIT_COST}
    dfn = {name: getattr(battle.defender, name) for name, _ in UNIT_COST}

    for _ in range(MAX_SIM_ROUNDS):
        if sum(atk.values()) == 0 or sum(dfn.values()) == 0:
            break
        to_defender = max(1, math.floor(_damage(atk) * (0.6 + rng.random() * 0.4)))
        to_attacker = max(1, math.floor(_damage(dfn) * (0.6 + rng.random() * 0.4)))
        _apply_damage(dfn, to_defender)
        _apply_damage(atk, to_attacker)

    return MiniBattleResult(
        battle_id=battle.battle_id,
        attacker_survivors=Survivors(**atk),
        defender_survivors=Survivors(**dfn),
    )
