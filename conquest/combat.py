"""Classic dice combat."""
from __future__ import annotations
import random
from .types import CombatResult, DiceRoll


def roll_dice(count: int, rng: random.Random | None = None) -> tuple[int, ...]:
    """Roll `count` six-sided dice, sorted descending."""
    rng = rng or random
    return tuple(sorted((rng.randint(1, 6) for _ in range(count)), reverse=True))


def resolve_combat(attacker_dice, defender_dice) -> CombatResult:
    """Compare the highest dice pairwise. Ties go to the defender.

    Conquest is decided by the caller from the resulting troop counts.
    """
    roll = DiceRoll(
        attacker=tuple(sorted(attacker_dice, reverse=True)),
        defender=tuple(sorted(defender_dice, reverse=True)),
    )
    attacker_losses = defender_losses = 0
    for a, d in zip(roll.attacker, roll.defender):
        if a > d:
            defender_losses += 1
        else:
            attacker_losses += 1
    return CombatResult(roll=roll, attacker_losses=attacker_losses,
                        defender_losses=defender_losses)


def max_attack_dice(attacker_troops: int) -> int:
    # one troop always stays behind
    return min(3, attacker_troops - 1)


def max_defend_dice(defender_troops: int) -> int:
    return min(2, defender_troops)


def is_valid_attack_dice(dice: int, attacker_troops: int) -> bool:
    return 1 <= dice <= max_attack_dice(attacker_troops)


def is_valid_defend_dice(dice: int, defender_troops: int) -> bool:
    return 1 <= dice <= max_defend_dice(defender_troops)
