"""Core data types for Conquest."""
from __future__ import annotations
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Optional


class Phase(str, Enum):
    SETUP = "setup"
    REINFORCE = "reinforce"
    ATTACK = "attack"
    FORTIFY = "fortify"
    GAME_OVER = "game_over"


class PlayerColor(str, Enum):
    RED = "red"
    BLUE = "blue"
    GREEN = "green"
    YELLOW = "yellow"
    PURPLE = "purple"
    ORANGE = "orange"


PLAYER_COLORS = list(PlayerColor)


class CardType(str, Enum):
    INFANTRY = "infantry"
    CAVALRY = "cavalry"
    ARTILLERY = "artillery"
    WILD = "wild"


class BattleMode(str, Enum):
    CLASSIC = "classic"
    TACTICAL = "tactical"


class Difficulty(str, Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


# ── Map ──────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Territory:
    id: str
    name: str
    continent_id: str
    adjacent_ids: tuple[str, ...] = ()
    owner_id: Optional[str] = None
    troops: int = 0

    def to_dict(self) -> dict:
        return {
            "id": self.id, "name": self.name, "continent_id": self.continent_id,
            "adjacent_ids": list(self.adjacent_ids),
            "owner_id": self.owner_id, "troops": self.troops,
        }


@dataclass(frozen=True)
class Continent:
    id: str
    name: str
    bonus_troops: int
    territory_ids: tuple[str, ...]

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "bonus_troops": self.bonus_troops,
                "territory_ids": list(self.territory_ids)}


# ── Cards & players ──────────────────────────────────────────────────────────

@dataclass(frozen=True)
class TerritoryCard:
    id: str
    territory_id: Optional[str]  # None for wild cards
    type: CardType

    def to_dict(self) -> dict:
        return {"id": self.id, "territory_id": self.territory_id, "type": self.type.value}


HIDDEN_CARD = TerritoryCard(id="hidden", territory_id=None, type=CardType.INFANTRY)


@dataclass(frozen=True)
class Player:
    id: str
    name: str
    color: PlayerColor
    reinforcements: int = 0
    cards: tuple[TerritoryCard, ...] = ()
    is_eliminated: bool = False
    territory_count: int = 0  # cached, recomputed on every ownership change

    def to_dict(self) -> dict:
        return {
            "id": self.id, "name": self.name, "color": self.color.value,
            "reinforcements": self.reinforcements,
            "cards": [c.to_dict() for c in self.cards],
            "is_eliminated": self.is_eliminated,
            "territory_count": self.territory_count,
        }


# ── Combat ───────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class DiceRoll:
    attacker: tuple[int, ...]  # sorted descending
    defender: tuple[int, ...]


@dataclass(frozen=True)
class CombatResult:
    roll: DiceRoll
    attacker_losses: int
    defender_losses: int
    conquered: bool = False

    def to_dict(self) -> dict:
        return {
            "roll": {"attacker": list(self.roll.attacker), "defender": list(self.roll.defender)},
            "attacker_losses": self.attacker_losses,
            "defender_losses": self.defender_losses,
            "conquered": self.conquered,
        }


# ── Tactical battles ─────────────────────────────────────────────────────────

@dataclass(frozen=True)
class BattleArmy:
    player_id: str
    territory_id: str
    infantry: int
    cavalry: int
    cannons: int
    source_troops: int  # troop count the army was generated from

    def to_dict(self) -> dict:
        return {
            "player_id": self.player_id, "territory_id": self.territory_id,
            "infantry": self.infantry, "cavalry": self.cavalry, "cannons": self.cannons,
            "source_troops": self.source_troops,
        }


@dataclass(frozen=True)
class MiniBattleState:
    battle_id: str
    attacker: BattleArmy
    defender: BattleArmy
    time_limit: int  # seconds

    def to_dict(self) -> dict:
        return {"battle_id": self.battle_id, "attacker": self.attacker.to_dict(),
                "defender": self.defender.to_dict(), "time_limit": self.time_limit}


@dataclass(frozen=True)
class Survivors:
    infantry: int = 0
    cavalry: int = 0
    cannons: int = 0

    @property
    def total(self) -> int:
        return self.infantry + self.cavalry + self.cannons


@dataclass(frozen=True)
class MiniBattleResult:
    battle_id: str
    attacker_survivors: Survivors
    defender_survivors: Survivors

    def to_dict(self) -> dict:
        return {
            "battle_id": self.battle_id,
            "attacker_survivors": vars(self.attacker_survivors).copy(),
            "defender_survivors": vars(self.defender_survivors).copy(),
        }


# ── Diplomacy ────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class DiplomacyPact:
    id: str
    player_ids: tuple[str, str]  # proposer first
    created_turn: int
    minimum_duration: int = 3
    is_active: bool = False
    broken_by: Optional[str] = None

    @property
    def is_pending(self) -> bool:
        return not self.is_active and self.broken_by is None

    def involves(self, a: str, b: str) -> bool:
        return a in self.player_ids and b in self.player_ids

    def to_dict(self) -> dict:
        return {"id": self.id, "player_ids": list(self.player_ids),
                "created_turn": self.created_turn,
                "minimum_duration": self.minimum_duration, "is_active": self.is_active,
                "broken_by": self.broken_by}


@dataclass(frozen=True)
class PactBreakPenalty:
    breaker_id: str
    desertion_rate: float
    troops_lost: int
    affected_territories: tuple[str, ...]

    def to_dict(self) -> dict:
        return {"breaker_id": self.breaker_id, "desertion_rate": self.desertion_rate,
                "troops_lost": self.troops_lost,
                "affected_territories": list(self.affected_territories)}


# ── Config ───────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class GameConfig:
    min_players: int = 2
    max_players: int = 6
    starting_troops: dict[int, int] = field(
        default_factory=lambda: {2: 40, 3: 35, 4: 30, 5: 25, 6: 20})
    battle_mode: BattleMode = BattleMode.CLASSIC
    diplomacy_enabled: bool = True
    pact_break_desertion_rate: float = 0.07


DEFAULT_CONFIG = GameConfig()


# ── Game state ───────────────────────────────────────────────────────────────

@dataclass
class GameState:
    id: str
    phase: Phase
    players: list[Player]
    current_player_index: int
    turn_number: int
    territories: dict[str, Territory]
    continents: dict[str, Continent]
    deck: Optional[list[TerritoryCard]] = field(default_factory=list)  # server only
    discard_pile: Optional[list[TerritoryCard]] = field(default_factory=list)  # server only
    card_sets_traded_in: int = 0
    has_conquered_this_turn: bool = False
    winner_id: Optional[str] = None
    active_battle: Optional[MiniBattleState] = None
    pacts: list[DiplomacyPact] = field(default_factory=list)
    battle_mode: BattleMode = BattleMode.CLASSIC
    ai_player_ids: tuple[str, ...] = ()

    def fork(self) -> GameState:
        """Shallow copy with fresh containers. Entities are frozen and get
        replaced, never mutated, so untouched ones are shared."""
        return replace(
            self,
            players=list(self.players),
            territories=dict(self.territories),
            deck=list(self.deck) if self.deck is not None else None,
            discard_pile=list(self.discard_pile) if self.discard_pile is not None else None,
            pacts=list(self.pacts),
        )

    # ── Queries ──────────────────────────────────────────────────────────

    @property
    def current_player(self) -> Player:
        return self.players[self.current_player_index]

    def player(self, pid: str) -> Player | None:
        for p in self.players:
            if p.id == pid:
                return p
        return None

    def player_index(self, pid: str) -> int:
        for i, p in enumerate(self.players):
            if p.id == pid:
                return i
        return -1

    def player_territories(self, pid: str) -> list[Territory]:
        return [t for t in self.territories.values() if t.owner_id == pid]

    def total_troops(self, pid: str) -> int:
        return sum(t.troops for t in self.player_territories(pid))

    def alive_players(self) -> list[Player]:
        return [p for p in self.players if not p.is_eliminated]

    # ── Serialization ────────────────────────────────────────────────────

    def to_dict(self) -> dict:
        data = {
            "id": self.id,
            "phase": self.phase.value,
            "players": [p.to_dict() for p in self.players],
            "current_player_index": self.current_player_index,
            "turn_number": self.turn_number,
            "territories": {tid: t.to_dict() for tid, t in self.territories.items()},
            "continents": {cid: c.to_dict() for cid, c in self.continents.items()},
            "card_sets_traded_in": self.card_sets_traded_in,
            "has_conquered_this_turn": self.has_conquered_this_turn,
            "winner_id": self.winner_id,
            "active_battle": self.active_battle.to_dict() if self.active_battle else None,
            "pacts": [p.to_dict() for p in self.pacts],
            "battle_mode": self.battle_mode.value,
            "ai_player_ids": list(self.ai_player_ids),
        }
        if self.deck is not None:
            data["deck"] = [c.to_dict() for c in self.deck]
        if self.discard_pile is not None:
            data["discard_pile"] = [c.to_dict() for c in self.discard_pile]
        return data
