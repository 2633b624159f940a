# core.py
# This file is intended to be the stateless core logic for a 2048 game:
# the grid transforms, the row resolver, tile spawning and terminal checks.

from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, Iterable, List, NamedTuple, Optional, Sequence, Tuple
import logging

logger = logging.getLogger(__name__)

GRID_SIZE = 4
WIN_TILE = 2048
NEW_TILE_TWO_PROBABILITY = 0.9


class GameError(Exception):
    """Base class for errors raised by the game core."""


class ConsistencyError(GameError):
    """An engine invariant was violated (overlapping tiles, duplicate ids, ...).

    This is distinct from an ordinary game over: it means the board could not
    have been produced by legal play.
    """


class GameProgressState(Enum):
    """Represents the current progress state of the game."""
    IN_PROGRESS = 1
    GAME_OVER = 2  # Lost
    GAME_WON = 3


class Direction(Enum):
    """Represents the possible move directions."""
    UP = "up"
    DOWN = "down"
    LEFT = "left"
    RIGHT = "right"

    @classmethod
    def parse(cls, name: str) -> "Direction":
        """
        Looks up a direction by its name, ignoring case.
        Raises:
            ValueError: If the name is not one of up/down/left/right.
        """
        try:
            return cls(name.strip().lower())
        except (AttributeError, ValueError):
            raise ValueError(f"Invalid direction: {name!r}")


# Number of clockwise rotations that turns a move in the given direction into a slide left.
ROTATIONS = {
    Direction.LEFT: 0,
    Direction.UP: 3,
    Direction.RIGHT: 2,
    Direction.DOWN: 1,
}


@dataclass(frozen=True)
class Tile:
    """A numbered tile with a stable identity across moves.

    The is_new / is_merged / is_reverted flags are presentation hints only.
    """
    id: int
    value: int
    row: int
    col: int
    is_new: bool = False
    is_merged: bool = False
    is_reverted: bool = False

    def cleared(self) -> "Tile":
        """Returns a copy of the tile with every presentation flag reset."""
        if not (self.is_new or self.is_merged or self.is_reverted):
            return self
        return replace(self, is_new=False, is_merged=False, is_reverted=False)


Grid = List[List[Optional[Tile]]]
Row = List[Optional[Tile]]


class RowResult(NamedTuple):
    new_row: Row
    score_gained: int
    moved: bool


# --- Grid Helper Functions ---

def check_board_size(size: int) -> int:
    """
    Validates the dimension N of an N x N board.
    Raises:
        ValueError: If size is not a positive integer.
    """
    if not isinstance(size, int) or isinstance(size, bool) or size <= 0:
        raise ValueError("Board size must be a positive integer.")
    return size


def check_consistency(tiles: Iterable[Tile], size: int = GRID_SIZE) -> None:
    """
    Verifies the tile list can describe a real board.
    Args:
        tiles (Iterable[Tile]): The tiles to check.
        size (int): The dimension of the board.
    Raises:
        ConsistencyError: On duplicate ids, two tiles in one cell, or a tile off the board.
    """
    seen_ids = set()
    seen_cells = set()
    for tile in tiles:
        if tile.id in seen_ids:
            raise ConsistencyError(f"Duplicate tile id {tile.id}")
        seen_ids.add(tile.id)
        if not (0 <= tile.row < size and 0 <= tile.col < size):
            raise ConsistencyError(f"Tile {tile.id} at ({tile.row}, {tile.col}) is outside the {size}x{size} board")
        cell = (tile.row, tile.col)
        if cell in seen_cells:
            raise ConsistencyError(f"Two tiles occupy ({tile.row}, {tile.col})")
        seen_cells.add(cell)


def tiles_to_grid(tiles: Iterable[Tile], size: int = GRID_SIZE) -> Grid:
    """
    Places each tile at its (row, col) on a fresh N x N grid.
    Args:
        tiles (Iterable[Tile]): The live tiles.
        size (int): The dimension of the board.
    Returns:
        Grid: The derived grid, with None for empty cells.
    Raises:
        ConsistencyError: If two tiles share a cell or a tile lies outside the board.
    """
    grid: Grid = [[None] * size for _ in range(size)]
    for tile in tiles:
        if not (0 <= tile.row < size and 0 <= tile.col < size):
            raise ConsistencyError(f"Tile {tile.id} at ({tile.row}, {tile.col}) is outside the {size}x{size} board")
        if grid[tile.row][tile.col] is not None:
            raise ConsistencyError(f"Two tiles occupy ({tile.row}, {tile.col})")
        grid[tile.row][tile.col] = tile
    return grid


def grid_to_tiles(grid: Grid) -> List[Tile]:
    """Flattens a grid to a row-major tile list, rewriting each tile's coordinates."""
    tiles = []
    for r, row in enumerate(grid):
        for c, tile in enumerate(row):
            if tile is None:
                continue
            if tile.row != r or tile.col != c:
                tile = replace(tile, row=r, col=c)
            tiles.append(tile)
    return tiles


def grid_values(grid: Grid) -> List[List[int]]:
    """Returns the grid as plain values, 0 for empty cells."""
    return [[tile.value if tile else 0 for tile in row] for row in grid]


def get_empty_cells(tiles: Iterable[Tile], size: int = GRID_SIZE) -> List[Tuple[int, int]]:
    """
    Get coordinates of empty cells, in row-major order.
    Args:
        tiles (Iterable[Tile]): The live tiles.
        size (int): The dimension of the board.
    Returns:
        List[Tuple[int, int]]: List of (row, col) tuples for empty cells.
    """
    grid = tiles_to_grid(tiles, size)
    empty_cells = []
    for row in range(size):
        for col in range(size):
            if grid[row][col] is None:
                empty_cells.append((row, col))
    return empty_cells


def max_tile_value(tiles: Iterable[Tile]) -> int:
    """Highest tile value on the board, 0 for an empty board."""
    return max((tile.value for tile in tiles), default=0)


# --- Grid Transformations ---

def rotate_grid(grid: Grid, times: int) -> Grid:
    """
    Rotates a square grid 90 degrees clockwise the given number of times.
    Each rotation maps grid[r][c] to rotated[c][N-1-r].
    Args:
        grid (Grid): The grid to rotate. Not modified.
        times (int): Number of quarter turns; taken modulo 4.
    Returns:
        Grid: A new rotated grid.
    """
    n = len(grid)
    rotated = [list(row) for row in grid]
    for _ in range(times % 4):
        current = rotated
        rotated = [[None] * n for _ in range(n)]
        for r in range(n):
            for c in range(n):
                rotated[c][n - 1 - r] = current[r][c]
    return rotated


# --- Line Manipulation (Core Move Logic) ---

def slide_row_left(row: Sequence[Optional[Tile]]) -> RowResult:
    """
    Compacts and merges a single row towards index 0.

    Equal neighbours merge into one tile of double value that keeps the id of the
    leading tile. A tile merges at most once per move, so [2, 2, 2, 2] becomes
    [4, 4, _, _] rather than [8, _, _, _].
    Args:
        row (Sequence[Optional[Tile]]): The row, None for empty slots.
    Returns:
        RowResult: The padded new row, the score gained from merges, and whether
                   the sequence of values changed (gap closing counts).
    """
    original_values = [tile.value if tile else None for tile in row]
    compacted = [tile for tile in row if tile is not None]

    new_row: Row = []
    score_gained = 0
    i = 0
    while i < len(compacted):
        tile = compacted[i]
        if i + 1 < len(compacted) and tile.value == compacted[i + 1].value:
            merged_value = tile.value * 2
            new_row.append(replace(tile, value=merged_value, is_merged=True))
            score_gained += merged_value
            i += 2  # the partner is consumed
        else:
            new_row.append(replace(tile, is_merged=False))
            i += 1

    new_row += [None] * (len(row) - len(new_row))
    moved = [tile.value if tile else None for tile in new_row] != original_values
    return RowResult(new_row, score_gained, moved)


def resolve_move(tiles: Iterable[Tile], direction: Direction, size: int = GRID_SIZE) -> Tuple[List[Tile], int, bool]:
    """
    Slides and merges the whole board in the given direction.
    Args:
        tiles (Iterable[Tile]): The live tiles before the move.
        direction (Direction): The direction to move.
        size (int): The dimension of the board.
    Returns:
        Tuple[List[Tile], int, bool]:
            - The surviving tiles with updated coordinates (is_merged set on this
              pass's merges, other flags cleared).
            - The score gained from this move.
            - Whether any row changed.
    Raises:
        ValueError: If an invalid direction is specified.
    """
    if direction not in ROTATIONS:
        raise ValueError("Invalid direction specified for resolve_move.")
    times = ROTATIONS[direction]

    grid = tiles_to_grid((tile.cleared() for tile in tiles), size)
    grid = rotate_grid(grid, times)

    total_score = 0
    board_moved = False
    resolved: Grid = []
    for row in grid:
        new_row, score_gained, moved = slide_row_left(row)
        resolved.append(new_row)
        total_score += score_gained
        board_moved = board_moved or moved

    resolved = rotate_grid(resolved, (4 - times) % 4)
    return grid_to_tiles(resolved), total_score, board_moved


# --- Spawning ---

def spawn_tile(tiles: Sequence[Tile], rng, next_id: Callable[[], int], size: int = GRID_SIZE) -> List[Tile]:
    """
    Adds a new tile (90% chance of 2, 10% chance of 4) to a random empty cell.
    Args:
        tiles (Sequence[Tile]): The current tiles. Not modified.
        rng: A random.Random-compatible source (choice and random are used).
        next_id (Callable[[], int]): Allocates the new tile's id.
        size (int): The dimension of the board.
    Returns:
        List[Tile]: A new tile list with the spawned tile appended, or a copy of
                    the input when the board is full (no id is allocated then).
    """
    empty_cells = get_empty_cells(tiles, size)
    if not empty_cells:
        logger.debug("Spawn requested on a full board; nothing added")
        return list(tiles)

    row, col = rng.choice(empty_cells)
    value = 2 if rng.random() < NEW_TILE_TWO_PROBABILITY else 4
    return list(tiles) + [Tile(id=next_id(), value=value, row=row, col=col, is_new=True)]


# --- Game State Checks ---

def can_move(tiles: Iterable[Tile], size: int = GRID_SIZE) -> bool:
    """
    Checks if any move is possible on the board.

    Looking only below and to the right of each tile covers every adjacent pair.
    Args:
        tiles (Iterable[Tile]): The live tiles.
        size (int): The dimension of the board.
    Returns:
        bool: True if there is an empty cell or two equal neighbours.
    """
    grid = tiles_to_grid(tiles, size)
    for r in range(size):
        for c in range(size):
            tile = grid[r][c]
            if tile is None:
                return True
            below = grid[r + 1][c] if r < size - 1 else None
            right = grid[r][c + 1] if c < size - 1 else None
            if below is not None and below.value == tile.value:
                return True
            if right is not None and right.value == tile.value:
                return True
    return False


def has_won(tiles: Iterable[Tile], target: int = WIN_TILE) -> bool:
    """True if any tile has reached the target value."""
    return any(tile.value >= target for tile in tiles)


def determine_game_status(game_over: bool, won: bool, win_acknowledged: bool = False) -> GameProgressState:
    """
    Maps the engine flags to a progress state for display.
    Args:
        game_over (bool): No moves remain.
        won (bool): The win latch is set.
        win_acknowledged (bool): The player chose to keep playing after winning.
    Returns:
        GameProgressState: GAME_OVER takes precedence; an acknowledged win reads as IN_PROGRESS.
    """
    if game_over:
        return GameProgressState.GAME_OVER
    if won and not win_acknowledged:
        return GameProgressState.GAME_WON
    return GameProgressState.IN_PROGRESS
