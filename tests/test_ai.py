from dataclasses import replace

import pytest

from conquest.ai import (
    adjacent_enemy_troops, ai_attack, ai_fortify, ai_reinforce, ai_setup, border_threat,
    is_border, plan_ai_turn,
)
from conquest.types import DiplomacyPact, Difficulty, Phase

ALL = [Difficulty.EASY, Difficulty.MEDIUM, Difficulty.HARD]


def test_border_scoring(game, arrange):
    state = arrange(game, {"alaska": ("player-0", 1), "northwest-territory": ("player-0", 1),
                           "kamchatka": ("player-1", 4)})
    assert border_threat(state, "alaska", "player-0") == 2
    assert adjacent_enemy_troops(state, "alaska", "player-0") == 5
    assert is_border(state, "alaska", "player-0")

    whole = arrange(game, {}, default=("player-0", 1))
    assert not is_border(whole, "alaska", "player-0")


def test_ai_setup_prefers_exposed_territory(game, arrange):
    state = arrange(game, {"alaska": ("player-0", 1), "argentina": ("player-0", 1)},
                    phase=Phase.SETUP)
    assert ai_setup(state, "player-0").territory_id == "alaska"
    assert ai_setup(state, "player-2") is None


@pytest.fixture
def frontier(game, arrange):
    layout = {"alaska": ("player-0", 1), "argentina": ("player-0", 1),
              "northwest-territory": ("player-0", 1)}
    return arrange(game, layout, phase=Phase.REINFORCE, reinforcements={"player-0": 7})


@pytest.mark.parametrize("difficulty", ALL)
def test_ai_reinforce_spends_whole_pool(frontier, difficulty):
    decision = ai_reinforce(frontier, "player-0", difficulty)
    assert sum(count for _, count in decision.placements) == 7
    for tid, count in decision.placements:
        assert count >= 1
        assert frontier.territories[tid].owner_id == "player-0"
        assert is_border(frontier, tid, "player-0")


def test_ai_reinforce_focus(frontier):
    easy = {tid for tid, _ in ai_reinforce(frontier, "player-0", Difficulty.EASY).placements}
    hard = {tid for tid, _ in ai_reinforce(frontier, "player-0", Difficulty.HARD).placements}
    assert len(easy) == 3
    assert len(hard) <= 2


def test_ai_reinforce_small_pool_and_empty(frontier, game, arrange):
    frontier.players[0] = replace(frontier.players[0], reinforcements=2)
    decision = ai_reinforce(frontier, "player-0", Difficulty.EASY)
    assert sum(count for _, count in decision.placements) == 2

    broke = arrange(game, {"alaska": ("player-0", 1)}, phase=Phase.REINFORCE)
    assert ai_reinforce(broke, "player-0", Difficulty.HARD).placements == []

    owner = arrange(game, {}, default=("player-0", 1), phase=Phase.REINFORCE,
                    reinforcements={"player-0": 5})
    assert ai_reinforce(owner, "player-0", Difficulty.MEDIUM).placements == [
        (owner.player_territories("player-0")[0].id, 5)]


@pytest.fixture
def duel(game, arrange):
    # alaska's only enemy neighbour is kamchatka, at a 2:1 ratio
    layout = {"alaska": ("player-0", 4), "northwest-territory": ("player-0", 1),
              "western-us": ("player-0", 1), "kamchatka": ("player-1", 2)}
    return arrange(game, layout)


def test_ai_attack_thresholds(duel):
    assert ai_attack(duel, "player-0", Difficulty.EASY) is None
    medium = ai_attack(duel, "player-0", Difficulty.MEDIUM)
    assert (medium.from_id, medium.to_id, medium.ratio) == ("alaska", "kamchatka", 2.0)
    assert ai_attack(duel, "player-0", Difficulty.HARD) is not None
    assert ai_attack(duel, "player-0", Difficulty.MEDIUM, skip={"kamchatka"}) is None


def test_ai_attack_needs_advantage(arrange, game):
    layout = {"alaska": ("player-0", 4), "northwest-territory": ("player-0", 1),
              "western-us": ("player-0", 1), "kamchatka": ("player-1", 3)}
    even = arrange(game, layout)
    for difficulty in ALL:
        assert ai_attack(even, "player-0", difficulty) is None


def test_ai_attack_respects_pacts(duel):
    duel.pacts.append(DiplomacyPact(id="pact-1", player_ids=("player-1", "player-0"),
                                    created_turn=1, is_active=True))
    assert ai_attack(duel, "player-0", Difficulty.HARD) is None


def test_hard_ai_goes_for_continents(game, arrange):
    layout = {"alaska": ("player-0", 10),
              "indonesia": ("player-0", 1), "new-guinea": ("player-0", 3),
              "western-australia": ("player-0", 3), "eastern-australia": ("player-1", 2)}
    state = arrange(game, layout)
    assert ai_attack(state, "player-0", Difficulty.MEDIUM).from_id == "alaska"
    assert ai_attack(state, "player-0", Difficulty.HARD).to_id == "eastern-australia"


def test_ai_fortify(game, arrange):
    layout = {"venezuela": ("player-0", 2), "peru": ("player-0", 1),
              "brazil": ("player-0", 3), "argentina": ("player-0", 6)}
    state = arrange(game, layout, phase=Phase.FORTIFY)
    decision = ai_fortify(state, "player-0")
    assert (decision.from_id, decision.to_id, decision.count) == ("argentina", "venezuela", 5)

    layout["argentina"] = ("player-0", 1)
    assert ai_fortify(arrange(game, layout, phase=Phase.FORTIFY), "player-0") is None
    assert ai_fortify(arrange(game, {"alaska": ("player-0", 5)}), "player-0") is None


def test_plan_ai_turn_setup(game):
    plan = plan_ai_turn(game, "player-0", Difficulty.MEDIUM)
    assert plan.setup is not None
    assert plan.reinforce is None and plan.attacks == [] and plan.fortify is None


def test_plan_ai_turn_is_read_only(game, arrange):
    layout = {"alaska": ("player-0", 10)}
    state = arrange(game, layout, phase=Phase.REINFORCE, reinforcements={"player-0": 3})
    snapshot = state.to_dict()
    plan = plan_ai_turn(state, "player-0", Difficulty.MEDIUM)
    assert sum(c for _, c in plan.reinforce.placements) == 3
    targets = [a.to_id for a in plan.attacks]
    assert sorted(targets) == ["kamchatka", "northwest-territory", "western-us"]
    assert all(a.from_id == "alaska" for a in plan.attacks)
    assert state.to_dict() == snapshot
