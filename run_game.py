"""Run a game between AI players locally (no server needed)."""
import logging
import random

from conquest.autoplay import AiTurnProgress, next_ai_step
from conquest.engine import create_game
from conquest.types import BattleMode, Difficulty, GameConfig, GameState, Phase

DIFFICULTIES = [Difficulty.HARD, Difficulty.MEDIUM, Difficulty.EASY]


def play_local_game(num_players: int = 4, seed: int = 42, max_turns: int = 400,
                    battle_mode: BattleMode = BattleMode.CLASSIC,
                    difficulties: list[Difficulty] | None = None,
                    verbose: bool = True) -> GameState:
    """Play every seat with the built-in AI until someone wins or the turn cap hits."""
    say = print if verbose else (lambda *a, **k: None)
    rng = random.Random(seed)
    names = [f"AI {i}" for i in range(num_players)]
    config = GameConfig(battle_mode=battle_mode)
    state = create_game(names, config, rng=rng,
                        ai_player_ids=tuple(f"player-{i}" for i in range(num_players)))
    difficulties = difficulties or [DIFFICULTIES[i % 3] for i in range(num_players)]
    skill = {p.id: difficulties[i] for i, p in enumerate(state.players)}
    progress = {p.id: AiTurnProgress() for p in state.players}

    say(f"=== CONQUEST: {num_players} AI players, {battle_mode.value} mode ===")
    for p in state.players:
        say(f"  {p.id} ({skill[p.id].value}): {p.territory_count} territories")

    last_turn = state.turn_number
    while state.phase != Phase.GAME_OVER and state.turn_number <= max_turns:
        pid = state.current_player.id
        step = next_ai_step(state, pid, skill[pid], progress[pid], rng)
        state = step.state

        if step.action == "attack" and step.attack.conquered:
            say(f"  ⚔️ {pid} takes {step.to_id}")
        elif step.action == "battle" and step.outcome.conquered:
            say(f"  ⚔️ {pid} takes {step.outcome.battle.defender.territory_id}")
        eliminated = (step.attack and step.attack.eliminated_id) or \
                     (step.outcome and step.outcome.eliminated_id)
        if eliminated:
            say(f"  💀 {eliminated} eliminated by {pid}")

        if state.turn_number != last_turn and state.turn_number % 10 == 0:
            alive = ' '.join(f"{p.id}:{p.territory_count}" for p in state.alive_players())
            say(f"T{state.turn_number:3d} | {alive}")
        last_turn = state.turn_number

    if state.winner_id:
        say(f"\n🏆 Winner: {state.winner_id} on turn {state.turn_number}")
    else:
        say(f"\nNo winner after {max_turns} turns")
    return state


def main():
    import argparse
    parser = argparse.ArgumentParser(description="Play a local all-AI Conquest game")
    parser.add_argument("--players", type=int, default=4)
    parser.add_argument("--seed", type=int, default=42)
    parser.add_argument("--max-turns", type=int, default=400)
    parser.add_argument("--mode", default="classic", choices=["classic", "tactical"])
    parser.add_argument("-v", "--verbose", action="store_true", help="Log every AI step")
    args = parser.parse_args()
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING)
    play_local_game(args.players, args.seed, args.max_turns, BattleMode(args.mode))


if __name__ == "__main__":
    main()
