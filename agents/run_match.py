"""Run a full match between random agents via the server API.
Server-side AI opponents can be mixed in with --ai.
"""
import random
import time
import httpx

from agents.random_agent import play_turn


def run_match(
    base_url: str = "http://localhost:8000",
    num_players: int = 3,
    seed: int = 42,
    max_steps: int = 5000,
    ai_players: int = 0,
    ai_difficulty: str = "medium",
    battle_mode: str = "classic",
    client: httpx.Client | None = None,
    poll_delay: float = 0.2,
    verbose: bool = True,
) -> dict:
    client = client or httpx.Client(base_url=base_url)
    say = print if verbose else (lambda *a, **k: None)

    resp = client.post("/rooms", json={"player_name": "Random 0"})
    resp.raise_for_status()
    room = resp.json()
    room_id = room["room_id"]
    keys = [room["api_key"]]
    for i in range(1, num_players):
        resp = client.post(f"/rooms/{room_id}/join", json={"player_name": f"Random {i}"})
        resp.raise_for_status()
        keys.append(resp.json()["api_key"])

    host = {"Authorization": f"Bearer {keys[0]}"}
    for _ in range(ai_players):
        client.post(f"/rooms/{room_id}/ai", headers=host,
                    json={"difficulty": ai_difficulty}).raise_for_status()
    for key in keys[1:]:
        client.post(f"/rooms/{room_id}/ready",
                    headers={"Authorization": f"Bearer {key}"}).raise_for_status()
    resp = client.post(f"/rooms/{room_id}/start", headers=host, json={"battle_mode": battle_mode})
    resp.raise_for_status()

    say(f"🎮 Room {room_id}: {num_players} random agents, {ai_players} server AI, {battle_mode} mode")
    rngs = [random.Random(seed + i) for i in range(num_players)]

    errors = 0
    for step in range(max_steps):
        acted = False
        for i, key in enumerate(keys):
            result = play_turn(client, room_id, key, rngs[i])
            if result.get("done"):
                say(f"\n🏆 Game over after {step} rounds! Winner: {result['winner']}")
                return {"room_id": room_id, "winner": result["winner"], "steps": step,
                        "errors": errors}
            if result.get("error"):
                errors += 1
                say(f"  ⚠️ agent {i}: {result['error']}")
            if result.get("acted"):
                acted = True
                if result.get("result") and result["result"].get("eliminated"):
                    say(f"  💀 {result['result']['eliminated']} eliminated")
        if not acted:
            # a server AI is moving
            time.sleep(poll_delay)

    say("Game didn't finish in time")
    return {"room_id": room_id, "winner": None, "steps": max_steps, "errors": errors}


if __name__ == "__main__":
    import argparse
    parser = argparse.ArgumentParser(description="Run a Conquest match")
    parser.add_argument("--server", default="http://localhost:8000")
    parser.add_argument("--players", type=int, default=3)
    parser.add_argument("--seed", type=int, default=42)
    parser.add_argument("--max-steps", type=int, default=5000)
    parser.add_argument("--ai", type=int, default=0, help="Number of server-side AI players")
    parser.add_argument("--ai-difficulty", default="medium", choices=["easy", "medium", "hard"])
    parser.add_argument("--mode", default="classic", choices=["classic", "tactical"])
    args = parser.parse_args()

    run_match(
        base_url=args.server,
        num_players=args.players,
        seed=args.seed,
        max_steps=args.max_steps,
        ai_players=args.ai,
        ai_difficulty=args.ai_difficulty,
        battle_mode=args.mode,
    )
