"""Conquest: an authoritative engine for a RISK-style territorial game."""
from .errors import (
    AdjacencyError, CheatError, GameError, OwnershipError, PhaseError,
    QuantityError, ResourceError, TurnError,
)
from .types import (
    DEFAULT_CONFIG, BattleMode, CardType, Difficulty, GameConfig, GameState,
    Phase, PlayerColor,
)

__version__ = "1.0.0"
