# cli_driver.py
# This file is intended to be run to play or test the 2048 game on the CLI

import logging
from typing import Optional

from config import Config, create_stats_store
from core import Direction, GameProgressState, grid_values, tiles_to_grid
from engine import GameEngine
from stats import StatsTracker

DIRECTION_KEYS = {'W': 'up', 'A': 'left', 'S': 'down', 'D': 'right'}


def read_direction(move_input: str) -> Optional[Direction]:
    """Maps a W/A/S/D key or a spelled-out direction to a Direction, None if neither."""
    try:
        return Direction.parse(DIRECTION_KEYS.get(move_input.upper(), move_input))
    except ValueError:
        return None


def main():
    logging.basicConfig(level=Config.LOG_LEVEL)

    # 1. Initialize game
    stats = StatsTracker(create_stats_store(Config))
    engine = GameEngine(stats=stats, size=Config.BOARD_SIZE, win_tile=Config.WIN_TILE)
    display_game(engine, stats)

    # 2. Game Loop
    while True:
        move_input = input("Move with W/A/S/D, U to undo, N for a new game, Q to quit: ").strip().upper()

        if move_input == 'Q':
            print("Quitting game.")
            break
        if move_input == 'N':
            engine.new_game()
            display_game(engine, stats)
            continue
        if move_input == 'U':
            if not engine.undo():
                print("Nothing to undo.")
            display_game(engine, stats)
            continue

        chosen_direction = read_direction(move_input)
        if not chosen_direction:
            print("Invalid input. Use W, A, S, D, U, N or Q.")
            continue

        # 3. Process the move
        if engine.game_over:
            print("No more moves possible. Undo (U) or start a new game (N).")
            continue
        result = engine.move(chosen_direction)
        if not result.accepted:
            print("Move did not change the board. Try a different direction.")

        display_game(engine, stats)

        # 4. Offer to keep going once the win tile shows up
        if result.just_won:
            print(f"Congratulations! You reached the {engine.win_tile} tile!")
            answer = input("Keep going? [Y/n]: ").strip().upper()
            if answer == 'N':
                break
            engine.acknowledge_win()
        elif result.game_over:
            print("No more moves possible. Better luck next time!")

    # 5. Game Ended
    print("\n--- Final Board State ---")
    display_game(engine, stats)


# --- Display Function (Example of external usage) ---
def display_game(engine: GameEngine, stats: StatsTracker):
    """Prints the board, score, best score, move count and game status to the console."""
    print(f"\nScore: {engine.state.score}  Best: {stats.aggregate.best_score}  Moves: {engine.state.move_count}")
    progress = engine.status
    status_message = {
        GameProgressState.IN_PROGRESS: f"Status: {progress.name}",
        GameProgressState.GAME_WON: "YOU WON!",
        GameProgressState.GAME_OVER: "GAME OVER!"
    }
    print(status_message.get(progress, f"Status: {progress.name} (Unknown)"))

    for row in grid_values(tiles_to_grid(engine.state.tiles, engine.size)):
        print("\t".join(str(value) if value else "." for value in row))
    print("-" * (engine.size * 6)) # Adjust width based on board size


if __name__ == "__main__":
    main()
