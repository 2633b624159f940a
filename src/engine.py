# engine.py
# Stateful game session built on the stateless core: move resolution with a
# busy flag, win latch, undo history and stats recording.

from dataclasses import dataclass, replace
from enum import Enum
from typing import List, Optional, Tuple
import logging
import random
import uuid

from core import (
    GRID_SIZE,
    WIN_TILE,
    ConsistencyError,
    Direction,
    GameProgressState,
    Tile,
    can_move,
    check_board_size,
    check_consistency,
    determine_game_status,
    has_won,
    resolve_move,
    spawn_tile,
)
from stats import StatsTracker

logger = logging.getLogger(__name__)


class EnginePhase(Enum):
    IDLE = 1
    RESOLVING = 2  # merge applied, spawn not yet committed


@dataclass(frozen=True)
class GameState:
    """Immutable snapshot of one game position."""
    tiles: Tuple[Tile, ...] = ()
    score: int = 0
    move_count: int = 0


@dataclass(frozen=True)
class MoveResult:
    accepted: bool
    state: GameState
    score_gained: int = 0
    just_won: bool = False
    game_over: bool = False


class HistoryStack:
    """Pre-move snapshots since the last new game, most recent last."""

    def __init__(self):
        self._states: List[GameState] = []

    def push(self, state: GameState) -> None:
        self._states.append(state)

    def pop(self) -> Optional[GameState]:
        if not self._states:
            return None
        return self._states.pop()

    def clear(self) -> None:
        self._states.clear()

    def __len__(self) -> int:
        return len(self._states)


class GameEngine:
    """
    One 2048 game session.

    A move is resolved in two phases: resolve_merge() slides and merges the
    board and leaves the engine RESOLVING, commit_spawn() adds the new tile and
    returns to IDLE. move() runs both. Requests arriving while RESOLVING are
    dropped so a front end animating the merge cannot interleave moves.

    Args:
        rng: random.Random-compatible source for spawns. A fresh Random() if omitted.
        stats (StatsTracker): Receives every accepted move. Optional.
        size (int): Dimension of the N x N board.
        win_tile (int): Tile value that sets the win latch.
        start (bool): Begin a new game immediately.
    """

    def __init__(self, rng=None, stats: Optional[StatsTracker] = None,
                 size: int = GRID_SIZE, win_tile: int = WIN_TILE, start: bool = True):
        self.size = check_board_size(size)
        if win_tile <= 0:
            raise ValueError("Win tile must be a positive integer.")
        self.win_tile = win_tile
        self.rng = rng if rng is not None else random.Random()
        self.stats = stats
        self.history = HistoryStack()
        self.state = GameState()
        self.phase = EnginePhase.IDLE
        self.won = False
        self.game_over = False
        self.win_acknowledged = False
        self.next_tile_id = 1
        self.game_id: Optional[str] = None
        self._pending_score = 0
        if start:
            self.new_game()

    # --- Session lifecycle ---

    def _allocate_id(self) -> int:
        tile_id = self.next_tile_id
        self.next_tile_id += 1
        return tile_id

    def new_game(self) -> GameState:
        """Starts over with two spawned tiles, zero score and an empty history."""
        self.game_id = uuid.uuid4().hex
        self.next_tile_id = 1
        self.history.clear()
        self.phase = EnginePhase.IDLE
        self.won = False
        self.game_over = False
        self.win_acknowledged = False
        self._pending_score = 0

        tiles: List[Tile] = []
        tiles = spawn_tile(tiles, self.rng, self._allocate_id, self.size)
        tiles = spawn_tile(tiles, self.rng, self._allocate_id, self.size)
        self.state = GameState(tiles=tuple(tiles))
        logger.info("New %dx%d game started", self.size, self.size)
        return self.state

    def load(self, state: GameState, won: bool = False, next_tile_id: Optional[int] = None,
             game_id: Optional[str] = None) -> GameState:
        """
        Installs an externally supplied position, discarding history.
        Args:
            state (GameState): The position to resume from.
            won (bool): Whether the win latch was already set for this game.
            next_tile_id (Optional[int]): Next id to allocate; never below max id + 1.
            game_id (Optional[str]): Identifies the game so stats count its outcome once.
        Raises:
            ConsistencyError: If the tiles cannot describe a real board.
        """
        check_consistency(state.tiles, self.size)
        highest_id = max((tile.id for tile in state.tiles), default=0)
        self.next_tile_id = max(next_tile_id or 1, highest_id + 1)
        self.game_id = game_id
        self.history.clear()
        self.phase = EnginePhase.IDLE
        self._pending_score = 0
        self.state = GameState(tiles=tuple(state.tiles), score=state.score, move_count=state.move_count)
        self.won = won
        self.win_acknowledged = False
        self.game_over = not can_move(self.state.tiles, self.size)
        return self.state

    def acknowledge_win(self) -> None:
        """The player dismissed the win prompt and keeps playing. The latch stays set."""
        if self.won:
            self.win_acknowledged = True

    @property
    def is_busy(self) -> bool:
        return self.phase is EnginePhase.RESOLVING

    @property
    def can_undo(self) -> bool:
        return len(self.history) > 0 and not self.is_busy

    @property
    def status(self) -> GameProgressState:
        return determine_game_status(self.game_over, self.won, self.win_acknowledged)

    # --- Move resolution ---

    def resolve_merge(self, direction: Direction) -> Optional[GameState]:
        """
        First phase of a move: slide and merge, push the pre-move snapshot.
        Args:
            direction (Direction): The direction to move.
        Returns:
            Optional[GameState]: The merged state without the new tile, or None
                                 if the request was rejected (busy or no effect).
        Raises:
            ConsistencyError: If a board already judged stuck still moved.
        """
        if self.is_busy:
            logger.debug("Move %s dropped: previous move still resolving", direction.value)
            return None

        tiles, score_gained, moved = resolve_move(self.state.tiles, direction, self.size)
        if not moved:
            if not self.game_over and not can_move(self.state.tiles, self.size):
                self.game_over = True
                logger.info("Game over after %d moves, score %d", self.state.move_count, self.state.score)
            logger.debug("Move %s had no effect", direction.value)
            return None
        if self.game_over:
            raise ConsistencyError(f"Board was judged stuck but a move {direction.value} succeeded")
        check_consistency(tiles, self.size)

        self.history.push(self.state)
        self.state = GameState(
            tiles=tuple(tiles),
            score=self.state.score + score_gained,
            move_count=self.state.move_count + 1,
        )
        self._pending_score = score_gained
        self.phase = EnginePhase.RESOLVING
        return self.state

    def commit_spawn(self) -> MoveResult:
        """
        Second phase of a move: spawn one tile, update the win latch, game over and stats.
        Returns:
            MoveResult: accepted is False when no move was resolving.
        """
        if not self.is_busy:
            logger.debug("commit_spawn called with no move resolving")
            return MoveResult(accepted=False, state=self.state, game_over=self.game_over)

        tiles = spawn_tile(self.state.tiles, self.rng, self._allocate_id, self.size)
        self.state = replace(self.state, tiles=tuple(tiles))
        score_gained = self._pending_score
        self._pending_score = 0
        self.phase = EnginePhase.IDLE

        just_won = False
        if not self.won and has_won(tiles, self.win_tile):
            self.won = just_won = True
            logger.info("Reached %d after %d moves", self.win_tile, self.state.move_count)

        just_lost = False
        if not can_move(tiles, self.size):
            self.game_over = True
            just_lost = not self.won
            logger.info("Game over after %d moves, score %d", self.state.move_count, self.state.score)

        if self.stats is not None:
            self.stats.record(self.state.tiles, self.state.score, just_won=just_won, just_lost=just_lost,
                              game_id=self.game_id)

        return MoveResult(
            accepted=True,
            state=self.state,
            score_gained=score_gained,
            just_won=just_won,
            game_over=self.game_over,
        )

    def move(self, direction: Direction) -> MoveResult:
        """Resolves a whole move (merge then spawn) atomically."""
        if self.resolve_merge(direction) is None:
            return MoveResult(accepted=False, state=self.state, game_over=self.game_over)
        return self.commit_spawn()

    def undo(self) -> bool:
        """
        Restores the snapshot taken before the last accepted move.
        Rejected while a move is resolving or when there is nothing to undo.
        Returns:
            bool: True if a snapshot was restored.
        """
        if self.is_busy:
            logger.debug("Undo dropped: move still resolving")
            return False
        previous = self.history.pop()
        if previous is None:
            logger.debug("Undo dropped: history is empty")
            return False

        reverted = tuple(replace(tile.cleared(), is_reverted=True) for tile in previous.tiles)
        self.state = replace(previous, tiles=reverted)
        self.game_over = False
        return True
