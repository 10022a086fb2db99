"""Conquest game server: FastAPI REST and WebSocket API."""
from __future__ import annotations
import asyncio
import logging
from typing import Literal, Optional

from fastapi import FastAPI, Header, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from conquest.errors import GameError
from conquest.types import BattleMode, Difficulty, MiniBattleResult, Survivors
from server import events
from server.room import GameRoom, Member, RoomError, RoomRegistry
from server.settings import SETTINGS

logger = logging.getLogger(__name__)

app = FastAPI(title="Conquest", version="1.0.0")
ROOMS = RoomRegistry(SETTINGS)

# ── Auth ─────────────────────────────────────────────────────────────────────

def get_member(room_id: str, authorization: str) -> tuple[GameRoom, Member]:
    token = authorization.replace("Bearer ", "")
    room = ROOMS.get(room_id)
    return room, room.authenticate(token)

# ── Errors ───────────────────────────────────────────────────────────────────

@app.exception_handler(RoomError)
async def room_error_handler(request, exc: RoomError):
    return JSONResponse(status_code=exc.status, content={"detail": exc.message})

@app.exception_handler(GameError)
async def game_error_handler(request, exc: GameError):
    return JSONResponse(status_code=400,
                        content={"detail": exc.message, "category": exc.category})

# ── Models ───────────────────────────────────────────────────────────────────

class CreateRoomRequest(BaseModel):
    player_name: str

class JoinRoomRequest(BaseModel):
    player_name: str

class AddAiRequest(BaseModel):
    difficulty: Difficulty = Difficulty.MEDIUM

class StartGameRequest(BaseModel):
    battle_mode: BattleMode = BattleMode.CLASSIC
    diplomacy_enabled: bool = True

class ActionRequest(BaseModel):
    type: Literal["setup_place", "reinforce_place", "trade_cards", "reinforce_done",
                  "attack", "attack_move", "attack_done", "fortify", "fortify_done"]
    territory_id: Optional[str] = None
    from_id: Optional[str] = None
    to_id: Optional[str] = None
    count: Optional[int] = None
    dice: Optional[int] = None
    card_ids: list[str] = []

class SurvivorCounts(BaseModel):
    infantry: int = 0
    cavalry: int = 0
    cannons: int = 0

class BattleResultRequest(BaseModel):
    battle_id: str
    attacker_survivors: SurvivorCounts
    defender_survivors: SurvivorCounts

class DiplomacyRequest(BaseModel):
    action: Literal["propose", "accept", "reject", "break"]
    target_id: Optional[str] = None
    pact_id: Optional[str] = None

class ChatRequest(BaseModel):
    message: str

# ── Lobby ────────────────────────────────────────────────────────────────────

@app.get("/health")
async def health():
    return {"status": "ok"}

@app.post("/rooms")
async def create_room(req: CreateRoomRequest):
    room, host = ROOMS.create(req.player_name)
    return {"room_id": room.id, "player_id": host.player_id, "api_key": host.key}

@app.get("/rooms")
async def list_rooms():
    return ROOMS.list()

@app.post("/rooms/{room_id}/join")
async def join_room(room_id: str, req: JoinRoomRequest):
    room = ROOMS.get(room_id)
    m = room.add_player(req.player_name)
    return {"room_id": room.id, "player_id": m.player_id, "api_key": m.key}

@app.post("/rooms/{room_id}/leave")
async def leave_room(room_id: str, authorization: str = Header(...)):
    room, m = get_member(room_id, authorization)
    if room.remove_player(m.player_id):
        ROOMS.remove(room_id)
    return {"ok": True}

@app.post("/rooms/{room_id}/ready")
async def toggle_ready(room_id: str, authorization: str = Header(...)):
    room, m = get_member(room_id, authorization)
    return {"is_ready": room.set_ready(m.player_id)}

@app.post("/rooms/{room_id}/ai")
async def add_ai(room_id: str, req: AddAiRequest, authorization: str = Header(...)):
    room, m = get_member(room_id, authorization)
    ai = room.add_ai(m.player_id, req.difficulty)
    return ai.to_dict()

@app.delete("/rooms/{room_id}/ai/{player_id}")
async def remove_ai(room_id: str, player_id: str, authorization: str = Header(...)):
    room, m = get_member(room_id, authorization)
    room.remove_ai(m.player_id, player_id)
    return {"ok": True}

@app.post("/rooms/{room_id}/start")
async def start_game(room_id: str, req: StartGameRequest, authorization: str = Header(...)):
    room, m = get_member(room_id, authorization)
    state = room.start_game(m.player_id, req.battle_mode, req.diplomacy_enabled)
    return {"game_id": state.id, "players": [p.id for p in state.players]}

# ── Game ─────────────────────────────────────────────────────────────────────

@app.get("/rooms/{room_id}/state")
async def get_state(room_id: str, authorization: str = Header(...)):
    room, m = get_member(room_id, authorization)
    state = room.view(m.player_id)
    state["you"] = m.player_id
    return state

@app.get("/rooms/{room_id}/messages")
async def get_messages(room_id: str, after: int = 0, authorization: str = Header(...)):
    room, m = get_member(room_id, authorization)
    msgs = room.messages(m.player_id, after)
    return {"messages": msgs, "next": after + len(msgs)}

def _need(value, name: str):
    if value is None:
        raise HTTPException(422, f"Missing field: {name}")
    return value

@app.post("/rooms/{room_id}/actions")
async def submit_action(room_id: str, req: ActionRequest, authorization: str = Header(...)):
    room, m = get_member(room_id, authorization)
    pid = m.player_id
    result = None
    if req.type == "setup_place":
        room.handle_setup_place(pid, _need(req.territory_id, "territory_id"))
    elif req.type == "reinforce_place":
        room.handle_reinforce_place(pid, _need(req.territory_id, "territory_id"),
                                    _need(req.count, "count"))
    elif req.type == "trade_cards":
        room.handle_trade_cards(pid, req.card_ids)
    elif req.type == "reinforce_done":
        room.handle_reinforce_done(pid)
    elif req.type == "attack":
        result = room.handle_attack(pid, _need(req.from_id, "from_id"),
                                    _need(req.to_id, "to_id"), req.dice)
    elif req.type == "attack_move":
        room.handle_attack_move(pid, _need(req.from_id, "from_id"),
                                _need(req.to_id, "to_id"), _need(req.count, "count"))
    elif req.type == "attack_done":
        room.handle_attack_done(pid)
    elif req.type == "fortify":
        room.handle_fortify(pid, _need(req.from_id, "from_id"),
                            _need(req.to_id, "to_id"), _need(req.count, "count"))
    elif req.type == "fortify_done":
        room.handle_fortify_done(pid)
    return {"ok": True, "phase": room.state.phase.value, "result": result}

@app.post("/rooms/{room_id}/battle-result")
async def submit_battle_result(room_id: str, req: BattleResultRequest,
                               authorization: str = Header(...)):
    room, m = get_member(room_id, authorization)
    result = MiniBattleResult(
        battle_id=req.battle_id,
        attacker_survivors=Survivors(**req.attacker_survivors.model_dump()),
        defender_survivors=Survivors(**req.defender_survivors.model_dump()),
    )
    return room.handle_battle_result(m.player_id, result)

@app.post("/rooms/{room_id}/diplomacy")
async def submit_diplomacy(room_id: str, req: DiplomacyRequest,
                           authorization: str = Header(...)):
    room, m = get_member(room_id, authorization)
    pid = m.player_id
    if req.action == "propose":
        return room.handle_propose_pact(pid, _need(req.target_id, "target_id"))
    pact_id = _need(req.pact_id, "pact_id")
    if req.action == "accept":
        return room.handle_accept_pact(pid, pact_id)
    if req.action == "reject":
        room.handle_reject_pact(pid, pact_id)
        return {"ok": True}
    return room.handle_break_pact(pid, pact_id)

@app.post("/rooms/{room_id}/chat")
async def chat(room_id: str, req: ChatRequest, authorization: str = Header(...)):
    room, m = get_member(room_id, authorization)
    room.handle_chat(m.player_id, req.message)
    return {"ok": True}

# ── Push channel ─────────────────────────────────────────────────────────────

@app.websocket("/rooms/{room_id}/ws")
async def room_socket(ws: WebSocket, room_id: str, key: str):
    try:
        room = ROOMS.get(room_id)
        member = room.authenticate(key)
    except RoomError as e:
        logger.info("rejected socket for room %s: %s", room_id, e.message)
        await ws.close(code=4403)
        return

    await ws.accept()
    queue = room.subscribe(member.player_id)

    async def forward():
        while True:
            await ws.send_json(await queue.get())

    sender = None
    try:
        if room.state is None:
            await ws.send_json(events.message(events.LOBBY_UPDATE, room.lobby_dict()))
        else:
            await ws.send_json(events.message(events.GAME_STATE, room.view(member.player_id)))
        sender = asyncio.create_task(forward())
        # clients only listen; reading is how a disconnect shows up
        while True:
            await ws.receive_text()
    except WebSocketDisconnect:
        logger.info("%s disconnected from room %s", member.name, room_id)
    finally:
        if sender is not None:
            sender.cancel()
        room.unsubscribe(member.player_id, queue)


def main():
    import uvicorn
    logging.basicConfig(level=SETTINGS.log_level.upper(),
                        format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    logger.info("Starting server on http://%s:%d", SETTINGS.host, SETTINGS.port)
    uvicorn.run(app, host=SETTINGS.host, port=SETTINGS.port)


if __name__ == "__main__":
    main()
