from collections import deque

from conquest.map_data import (
    ADJACENCY, CONTINENTS, TERRITORY_IDS, are_adjacent, build_continents,
    build_initial_territories, continent_bonus, continent_of, controls_continent,
    player_territory_ids, territories_of,
)


def test_map_size():
    assert len(TERRITORY_IDS) == 34
    assert len(set(TERRITORY_IDS)) == 34
    assert len(CONTINENTS) == 6


def test_continent_bonuses():
    assert sum(continent_bonus(c) for c in CONTINENTS) == 24
    assert continent_bonus("asia") == 7
    assert continent_bonus("north-america") == 5
    assert continent_bonus("australia") == 2


def test_continents_partition_the_map():
    seen = [tid for cid in CONTINENTS for tid in territories_of(cid)]
    assert sorted(seen) == sorted(TERRITORY_IDS)
    assert len(territories_of("asia")) == 9
    assert continent_of("madagascar") == "africa"


def test_adjacency_symmetric_and_irreflexive():
    for tid, adj in ADJACENCY.items():
        assert tid not in adj
        assert len(set(adj)) == len(adj)
        for other in adj:
            assert other in ADJACENCY
            assert tid in ADJACENCY[other]


def test_cross_continent_links():
    assert are_adjacent("alaska", "kamchatka")
    assert are_adjacent("kamchatka", "alaska")
    assert are_adjacent("brazil", "north-africa")
    assert are_adjacent("greenland", "great-britain")
    assert are_adjacent("china", "indonesia")
    assert not are_adjacent("alaska", "greenland")
    assert not are_adjacent("alaska", "alaska")
    assert not are_adjacent("alaska", "atlantis")


def test_map_is_connected():
    seen = {"alaska"}
    queue = deque(["alaska"])
    while queue:
        for nb in ADJACENCY[queue.popleft()]:
            if nb not in seen:
                seen.add(nb)
                queue.append(nb)
    assert len(seen) == 34


def test_initial_territories_are_blank():
    territories = build_initial_territories()
    assert len(territories) == 34
    assert all(t.owner_id is None and t.troops == 0 for t in territories.values())
    assert territories["western-us"].name == "Western United States"
    assert set(territories["middle-east"].adjacent_ids) == {
        "southern-europe", "ukraine", "egypt", "east-africa", "india", "china"}
    assert build_initial_territories() is not territories


def test_controls_continent():
    territories = build_initial_territories()
    from dataclasses import replace
    for tid in territories_of("australia"):
        territories[tid] = replace(territories[tid], owner_id="p")
    assert controls_continent(territories, "p", "australia")
    assert not controls_continent(territories, "p", "asia")
    territories["indonesia"] = replace(territories["indonesia"], owner_id="q")
    assert not controls_continent(territories, "p", "australia")
    assert sorted(player_territory_ids(territories, "p")) == [
        "eastern-australia", "new-guinea", "western-australia"]


def test_build_continents_is_a_copy():
    continents = build_continents()
    continents.pop("asia")
    assert "asia" in CONTINENTS
