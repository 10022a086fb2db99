"""Messages pushed from a room to its players.

Every message is {"event": <channel>, "data": ...}. Game events carry a
`type` tag and are validated as one discriminated union.
"""
from __future__ import annotations
from typing import Annotated, Literal, Optional, Union
from pydantic import BaseModel, Field, TypeAdapter

LOBBY_UPDATE = "lobby:update"
GAME_STATE = "game:state"
GAME_EVENT = "game:event"
ERROR = "error"


class CombatResultEvent(BaseModel):
    type: Literal["combatResult"] = "combatResult"
    attacker_id: str
    from_id: str
    to_id: str
    result: dict


class PlayerEliminatedEvent(BaseModel):
    type: Literal["playerEliminated"] = "playerEliminated"
    player_id: str
    eliminated_by: str


class GameOverEvent(BaseModel):
    type: Literal["gameOver"] = "gameOver"
    winner_id: str


class CardAwardedEvent(BaseModel):
    type: Literal["cardAwarded"] = "cardAwarded"
    player_id: str
    card: dict


class ChatMessageEvent(BaseModel):
    type: Literal["chatMessage"] = "chatMessage"
    player_id: str
    message: str


class MiniBattleStartEvent(BaseModel):
    type: Literal["miniBattleStart"] = "miniBattleStart"
    battle: dict


class MiniBattleEndEvent(BaseModel):
    type: Literal["miniBattleEnd"] = "miniBattleEnd"
    result: dict
    conquered: bool


class PactProposedEvent(BaseModel):
    type: Literal["pactProposed"] = "pactProposed"
    pact: dict


class PactAcceptedEvent(BaseModel):
    type: Literal["pactAccepted"] = "pactAccepted"
    pact: dict


class PactRejectedEvent(BaseModel):
    type: Literal["pactRejected"] = "pactRejected"
    pact_id: str
    player_id: str


class PactBrokenEvent(BaseModel):
    type: Literal["pactBroken"] = "pactBroken"
    pact: dict
    penalty: dict


class AiTurnStartEvent(BaseModel):
    type: Literal["aiTurnStart"] = "aiTurnStart"
    player_id: str


class AiTurnEndEvent(BaseModel):
    type: Literal["aiTurnEnd"] = "aiTurnEnd"
    player_id: str


GameEvent = Annotated[
    Union[
        CombatResultEvent, PlayerEliminatedEvent, GameOverEvent, CardAwardedEvent,
        ChatMessageEvent, MiniBattleStartEvent, MiniBattleEndEvent, PactProposedEvent,
        PactAcceptedEvent, PactRejectedEvent, PactBrokenEvent, AiTurnStartEvent,
        AiTurnEndEvent,
    ],
    Field(discriminator="type"),
]
GAME_EVENT_ADAPTER = TypeAdapter(GameEvent)


class ErrorPayload(BaseModel):
    message: str
    category: Optional[str] = None


def parse_event(data: dict) -> BaseModel:
    return GAME_EVENT_ADAPTER.validate_python(data)


def message(channel: str, data) -> dict:
    if isinstance(data, BaseModel):
        data = data.model_dump(mode="json")
    return {"event": channel, "data": data}
