"""Fixed world map for Conquest: 34 territories on 6 continents."""
from __future__ import annotations
from .types import Continent, Territory

# ── Continents ───────────────────────────────────────────────────────────────
# id, name, bonus troops for holding every territory (bonuses sum to 24)

CONTINENT_TABLE = [
    ("north-america", "North America", 5),
    ("south-america", "South America", 2),
    ("europe",        "Europe",        5),
    ("africa",        "Africa",        3),
    ("asia",          "Asia",          7),
    ("australia",     "Australia",     2),
]

# ── Territories ──────────────────────────────────────────────────────────────
# id, name, continent. Order matters: the card deck is typed round-robin over it.

TERRITORY_TABLE = [
    # ── North America ──
    ("alaska",              "Alaska",                "north-america"),
    ("northwest-territory", "Northwest Territory",   "north-america"),
    ("greenland",           "Greenland",             "north-america"),
    ("western-us",          "Western United States", "north-america"),
    ("eastern-us",          "Eastern United States", "north-america"),
    ("central-america",     "Central America",       "north-america"),
    # ── South America ──
    ("venezuela",           "Venezuela",             "south-america"),
    ("peru",                "Peru",                  "south-america"),
    ("brazil",              "Brazil",                "south-america"),
    ("argentina",           "Argentina",             "south-america"),
    # ── Europe ──
    ("great-britain",       "Great Britain",         "europe"),
    ("northern-europe",     "Northern Europe",       "europe"),
    ("western-europe",      "Western Europe",        "europe"),
    ("southern-europe",     "Southern Europe",       "europe"),
    ("ukraine",             "Ukraine",               "europe"),
    # ── Africa ──
    ("north-africa",        "North Africa",          "africa"),
    ("egypt",               "Egypt",                 "africa"),
    ("congo",               "Congo",                 "africa"),
    ("east-africa",         "East Africa",           "africa"),
    ("south-africa",        "South Africa",          "africa"),
    ("madagascar",          "Madagascar",            "africa"),
    # ── Asia ──
    ("middle-east",         "Middle East",           "asia"),
    ("ural",                "Ural",                  "asia"),
    ("siberia",             "Siberia",               "asia"),
    ("yakutsk",             "Yakutsk",               "asia"),
    ("kamchatka",           "Kamchatka",             "asia"),
    ("mongolia",            "Mongolia",              "asia"),
    ("china",               "China",                 "asia"),
    ("india",               "India",                 "asia"),
    ("japan",               "Japan",                 "asia"),
    # ── Australia ──
    ("indonesia",           "Indonesia",             "australia"),
    ("new-guinea",          "New Guinea",            "australia"),
    ("western-australia",   "Western Australia",     "australia"),
    ("eastern-australia",   "Eastern Australia",     "australia"),
]

# Adjacency list (bidirectional: each edge is listed once)
MAP_EDGES = [
    # North America
    ("alaska", "northwest-territory"), ("alaska", "western-us"),
    ("northwest-territory", "greenland"), ("northwest-territory", "western-us"),
    ("northwest-territory", "eastern-us"),
    ("greenland", "eastern-us"),
    ("western-us", "eastern-us"), ("western-us", "central-america"),
    ("eastern-us", "central-america"),
    # South America
    ("venezuela", "peru"), ("venezuela", "brazil"),
    ("peru", "brazil"), ("peru", "argentina"),
    ("brazil", "argentina"),
    # Europe
    ("great-britain", "northern-europe"), ("great-britain", "western-europe"),
    ("northern-europe", "western-europe"), ("northern-europe", "southern-europe"),
    ("northern-europe", "ukraine"),
    ("western-europe", "southern-europe"),
    ("southern-europe", "ukraine"),
    # Africa
    ("north-africa", "egypt"), ("north-africa", "congo"), ("north-africa", "east-africa"),
    ("egypt", "east-africa"),
    ("congo", "east-africa"), ("congo", "south-africa"),
    ("east-africa", "south-africa"), ("east-africa", "madagascar"),
    ("south-africa", "madagascar"),
    # Asia
    ("middle-east", "india"), ("middle-east", "china"),
    ("ural", "siberia"), ("ural", "china"), ("ural", "mongolia"),
    ("siberia", "yakutsk"), ("siberia", "mongolia"), ("siberia", "china"),
    ("yakutsk", "kamchatka"), ("yakutsk", "mongolia"),
    ("kamchatka", "mongolia"), ("kamchatka", "japan"),
    ("mongolia", "china"), ("mongolia", "japan"),
    ("china", "india"),
    # Australia
    ("indonesia", "new-guinea"), ("indonesia", "western-australia"),
    ("new-guinea", "western-australia"), ("new-guinea", "eastern-australia"),
    ("western-australia", "eastern-australia"),
    # Cross-continent links
    ("alaska", "kamchatka"),
    ("greenland", "great-britain"),
    ("central-america", "venezuela"),
    ("brazil", "north-africa"),
    ("western-europe", "north-africa"),
    ("southern-europe", "north-africa"), ("southern-europe", "egypt"),
    ("southern-europe", "middle-east"),
    ("ukraine", "middle-east"), ("ukraine", "ural"),
    ("egypt", "middle-east"), ("east-africa", "middle-east"),
    ("china", "indonesia"), ("india", "indonesia"),
]


def _build_adjacency() -> dict[str, tuple[str, ...]]:
    adjacency: dict[str, list[str]] = {tid: [] for tid, _, _ in TERRITORY_TABLE}
    for a, b in MAP_EDGES:
        if b not in adjacency[a]:
            adjacency[a].append(b)
        if a not in adjacency[b]:
            adjacency[b].append(a)
    return {tid: tuple(adj) for tid, adj in adjacency.items()}


ADJACENCY = _build_adjacency()
TERRITORY_IDS = [tid for tid, _, _ in TERRITORY_TABLE]
CONTINENTS: dict[str, Continent] = {
    cid: Continent(
        id=cid, name=name, bonus_troops=bonus,
        territory_ids=tuple(tid for tid, _, c in TERRITORY_TABLE if c == cid),
    )
    for cid, name, bonus in CONTINENT_TABLE
}
_CONTINENT_OF = {tid: cid for tid, _, cid in TERRITORY_TABLE}


# ── Lookups ──────────────────────────────────────────────────────────────────

def territories_of(continent_id: str) -> tuple[str, ...]:
    return CONTINENTS[continent_id].territory_ids


def continent_of(territory_id: str) -> str:
    return _CONTINENT_OF[territory_id]


def are_adjacent(a: str, b: str) -> bool:
    return b in ADJACENCY.get(a, ())


def continent_bonus(continent_id: str) -> int:
    return CONTINENTS[continent_id].bonus_troops


def build_continents() -> dict[str, Continent]:
    return dict(CONTINENTS)


def build_initial_territories() -> dict[str, Territory]:
    """Fresh territory records for a new game: no owner, no troops."""
    return {
        tid: Territory(id=tid, name=name, continent_id=cid, adjacent_ids=ADJACENCY[tid])
        for tid, name, cid in TERRITORY_TABLE
    }


def player_territory_ids(territories: dict[str, Territory], player_id: str) -> list[str]:
    return [t.id for t in territories.values() if t.owner_id == player_id]


def controls_continent(territories: dict[str, Territory], player_id: str,
                       continent_id: str) -> bool:
    return all(territories[tid].owner_id == player_id
               for tid in CONTINENTS[continent_id].territory_ids)
