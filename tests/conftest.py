import random
from dataclasses import replace

import pytest

from conquest.engine import create_game
from conquest.types import Phase


class FixedDice:
    """Stand-in rng whose randint returns a scripted sequence."""

    def __init__(self, *values):
        self.values = list(values)

    def randint(self, a, b):
        return self.values.pop(0)


def _arrange(state, layout, default=("player-1", 1), phase=Phase.ATTACK, current=0,
             reinforcements=None):
    """Fork `state` with every territory set from `layout` ({tid: (owner, troops)})."""
    nxt = state.fork()
    for tid, t in nxt.territories.items():
        owner, troops = layout.get(tid, default)
        nxt.territories[tid] = replace(t, owner_id=owner, troops=troops)
    pools = reinforcements or {}
    for i, p in enumerate(nxt.players):
        count = sum(1 for t in nxt.territories.values() if t.owner_id == p.id)
        nxt.players[i] = replace(p, territory_count=count, reinforcements=pools.get(p.id, 0))
    nxt.phase = phase
    nxt.current_player_index = current
    return nxt


@pytest.fixture
def rng():
    return random.Random(1234)


@pytest.fixture
def game(rng):
    return create_game(["Alice", "Bob"], rng=rng)


@pytest.fixture
def game3(rng):
    return create_game(["Alice", "Bob", "Carol"], rng=rng)


@pytest.fixture
def arrange():
    return _arrange


@pytest.fixture
def dice():
    return FixedDice
