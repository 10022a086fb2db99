"""Rule violations raised by the Conquest engine."""
from __future__ import annotations


class GameError(Exception):
    """Base class for every rejected action. The input state is never touched."""
    category = "game"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class PhaseError(GameError):
    category = "phase"


class TurnError(GameError):
    category = "turn"


class OwnershipError(GameError):
    category = "ownership"


class AdjacencyError(GameError):
    category = "adjacency"


class QuantityError(GameError):
    category = "quantity"


class ResourceError(GameError):
    category = "resource"


class CheatError(GameError):
    """A tactical battle report failed validation."""
    category = "anti_cheat"
