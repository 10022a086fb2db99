"""Random agent that plays Conquest via the API."""
import random
import httpx

from conquest.engine import find_valid_card_set
from conquest.types import CardType, TerritoryCard

QUIPS = [
    "I come in peace... for now.",
    "Nice continent you got there.",
    "Anyone want a pact?",
    "Australia will be mine!",
    "Let's focus on the real threat.",
    "My armies grow stronger every turn.",
]


def _owned(state: dict, pid: str) -> list[dict]:
    return [t for t in state["territories"].values() if t["owner_id"] == pid]


def _enemy_neighbours(state: dict, t: dict, pid: str) -> list[str]:
    return [a for a in t["adjacent_ids"] if state["territories"][a]["owner_id"] != pid]


def _pick_action(state: dict, pid: str, rng: random.Random) -> tuple[str, dict]:
    """Choose the next request as (path suffix, json body)."""
    phase = state["phase"]
    me = next(p for p in state["players"] if p["id"] == pid)
    owned = _owned(state, pid)

    battle = state.get("active_battle")
    if battle and battle["attacker"]["player_id"] == pid:
        # someone has to lose: flip a coin for who is wiped out
        atk, dfn = battle["attacker"], battle["defender"]
        wiped = {"infantry": 0, "cavalry": 0, "cannons": 0}
        full_atk = {k: atk[k] for k in wiped}
        full_dfn = {k: dfn[k] for k in wiped}
        if rng.random() < 0.5:
            body = {"attacker_survivors": full_atk, "defender_survivors": wiped}
        else:
            body = {"attacker_survivors": wiped, "defender_survivors": full_dfn}
        return "battle-result", {"battle_id": battle["battle_id"], **body}

    if phase == "setup":
        return "actions", {"type": "setup_place", "territory_id": rng.choice(owned)["id"]}

    if phase == "reinforce":
        hand = [TerritoryCard(c["id"], c["territory_id"], CardType(c["type"])) for c in me["cards"]]
        cards = find_valid_card_set(hand)
        if cards is not None:
            return "actions", {"type": "trade_cards", "card_ids": [c.id for c in cards]}
        if me["reinforcements"] > 0:
            borders = [t for t in owned if _enemy_neighbours(state, t, pid)] or owned
            return "actions", {"type": "reinforce_place", "territory_id": rng.choice(borders)["id"],
                               "count": me["reinforcements"]}
        return "actions", {"type": "reinforce_done"}

    if phase == "attack":
        pacted = {o for p in state["pacts"] if p["is_active"] and pid in p["player_ids"]
                  for o in p["player_ids"] if o != pid}
        options = [(t["id"], e) for t in owned if t["troops"] >= 3
                   for e in _enemy_neighbours(state, t, pid)
                   if state["territories"][e]["owner_id"] not in pacted]
        if options and rng.random() < 0.8:
            src, dst = rng.choice(options)
            return "actions", {"type": "attack", "from_id": src, "to_id": dst}
        return "actions", {"type": "attack_done"}

    if phase == "fortify":
        moves = [(t["id"], a) for t in owned if t["troops"] > 1
                 for a in t["adjacent_ids"] if state["territories"][a]["owner_id"] == pid]
        if moves and rng.random() < 0.3:
            src, dst = rng.choice(moves)
            count = rng.randint(1, state["territories"][src]["troops"] - 1)
            return "actions", {"type": "fortify", "from_id": src, "to_id": dst, "count": count}
        return "actions", {"type": "fortify_done"}

    return "", {}


def play_turn(client: httpx.Client, room_id: str, api_key: str, rng: random.Random) -> dict:
    """Get state and, when it is our move, submit one random action."""
    headers = {"Authorization": f"Bearer {api_key}"}

    resp = client.get(f"/rooms/{room_id}/state", headers=headers)
    if resp.status_code != 200:
        return {"error": resp.text}
    state = resp.json()
    if state.get("winner_id"):
        return {"done": True, "winner": state["winner_id"]}
    pid = state["you"]

    # answer pact proposals addressed to us
    for pact in state.get("pacts", []):
        if not pact["is_active"] and not pact.get("broken_by") and pact["player_ids"][1] == pid:
            action = "accept" if rng.random() < 0.5 else "reject"
            client.post(f"/rooms/{room_id}/diplomacy", headers=headers,
                        json={"action": action, "pact_id": pact["id"]})

    if rng.random() < 0.05:
        client.post(f"/rooms/{room_id}/chat", headers=headers, json={"message": rng.choice(QUIPS)})

    current = state["players"][state["current_player_index"]]["id"]
    battle = state.get("active_battle")
    if current != pid and not (battle and battle["attacker"]["player_id"] == pid):
        return {"waiting": True}

    suffix, body = _pick_action(state, pid, rng)
    if not suffix:
        return {"waiting": True}
    resp = client.post(f"/rooms/{room_id}/{suffix}", headers=headers, json=body)
    if resp.status_code != 200:
        return {"error": resp.text, "action": body}
    return {"acted": body.get("type", suffix), **resp.json()}
