from fastapi import Depends, FastAPI, HTTPException, Request
from pydantic import BaseModel, Field
from typing import List, Optional
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
import logging
import random

import core
from config import Config, create_stats_store
from engine import GameEngine, GameState
from stats import StatsTracker

logger = logging.getLogger(__name__)

# Initialize the rate limiter
limiter = Limiter(key_func=get_remote_address)
app = FastAPI(
    title="2048 Game API",
    description="A stateless API for playing the 2048 game. "\
                "Keep the game state (tiles, score, move count, win latch) on the client side.",
    version="2.0.0"
)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.on_event("startup")
async def _startup() -> None:
    logging.basicConfig(level=Config.LOG_LEVEL)


_stats_tracker: Optional[StatsTracker] = None


def get_stats_tracker() -> StatsTracker:
    """Process-wide tracker over the configured stats store, created on first use."""
    global _stats_tracker
    if _stats_tracker is None:
        _stats_tracker = StatsTracker(create_stats_store(Config))
    return _stats_tracker


# --- Pydantic Models for API requests and responses ---

class TileData(BaseModel):
    """A single tile; the flags are presentation hints."""
    id: int = Field(..., ge=1)
    value: int = Field(..., ge=2)
    row: int = Field(..., ge=0)
    col: int = Field(..., ge=0)
    is_new: bool = False
    is_merged: bool = False
    is_reverted: bool = False

    @classmethod
    def from_tile(cls, tile: core.Tile) -> "TileData":
        return cls(
            id=tile.id, value=tile.value, row=tile.row, col=tile.col,
            is_new=tile.is_new, is_merged=tile.is_merged, is_reverted=tile.is_reverted,
        )

    def to_tile(self) -> core.Tile:
        return core.Tile(
            id=self.id, value=self.value, row=self.row, col=self.col,
            is_new=self.is_new, is_merged=self.is_merged, is_reverted=self.is_reverted,
        )


class NewGameSettings(BaseModel):
    """Settings for creating a new game."""
    size: int = Field(
        default=Config.BOARD_SIZE,
        gt=1, # Board size must be at least 2x2
        description="Size of the N x N game board (e.g., 4 for a 4x4 board)."
    )
    win_tile: int = Field(
        default=Config.WIN_TILE,
        gt=0,
        description="The tile value to achieve for winning the game (e.g., 2048)."
    )
    seed: Optional[int] = Field(default=None, description="Seed for reproducible spawns.")


class GameStateData(BaseModel):
    """Represents the complete state of a game instance."""
    game_id: str = Field(..., description="Identifies the game; echo it back with every move.")
    tiles: List[TileData] = Field(..., description="The live tiles with their positions.")
    score: int = Field(..., ge=0, description="Current score of the game.")
    move_count: int = Field(..., ge=0, description="Accepted moves since the game started.")
    won: bool = Field(..., description="Win latch; stays set once the win tile was reached.")
    game_over: bool = Field(..., description="True when no move is possible.")
    progress: core.GameProgressState = Field(
        ...,
        description="Current progress state of the game (IN_PROGRESS, GAME_WON, GAME_OVER)."
    )
    win_tile: int = Field(..., gt=0, description="The tile value required to win this game instance.")
    board_size: int = Field(..., gt=0, description="The dimension N of the N x N board.")
    next_tile_id: int = Field(..., ge=1, description="Id the next spawned tile will receive.")


class MoveRequestData(BaseModel):
    """Data required to make a move."""
    game_id: str = Field(..., min_length=1, description="The id returned by /game/new.")
    tiles: List[TileData] = Field(..., description="Current tiles before the move.")
    score: int = Field(..., ge=0, description="Current score before the move.")
    move_count: int = Field(default=0, ge=0, description="Current move count before the move.")
    direction: core.Direction = Field(
        ...,
        description="Direction of the move (up, down, left, right)."
    )
    win_tile: int = Field(default=Config.WIN_TILE, gt=0, description="The win condition tile for this game instance.")
    board_size: int = Field(default=Config.BOARD_SIZE, gt=1, description="The dimension N of the N x N board.")
    won: bool = Field(default=False, description="Whether the win latch was already set.")
    next_tile_id: Optional[int] = Field(default=None, ge=1, description="Next id to allocate, if known.")
    seed: Optional[int] = Field(default=None, description="Seed for reproducible spawns.")


class MoveResponseData(GameStateData):
    """Response after a move, including the new game state and move effectiveness."""
    move_was_effective: bool = Field(
        ...,
        description="True if the move resulted in a change to the board state, False otherwise."
    )
    score_gained: int = Field(..., ge=0, description="Points earned by merges in this move.")
    just_won: bool = Field(..., description="True only for the move that set the win latch.")
    message: Optional[str] = Field(
        default=None,
        description="An optional message, e.g., if a move was invalid, game ended, or other info."
    )


class StatsData(BaseModel):
    best_score: int
    highest_tile_ever_seen: int
    games_won: int
    win_streak: int
    unlocked_achievement_tiers: List[int]


def _state_payload(engine: GameEngine) -> dict:
    return dict(
        game_id=engine.game_id,
        tiles=[TileData.from_tile(tile) for tile in engine.state.tiles],
        score=engine.state.score,
        move_count=engine.state.move_count,
        won=engine.won,
        game_over=engine.game_over,
        progress=engine.status,
        win_tile=engine.win_tile,
        board_size=engine.size,
        next_tile_id=engine.next_tile_id,
    )


# --- API Endpoints ---

@app.post("/game/new", response_model=GameStateData, summary="Start a New 2048 Game")
@limiter.limit(Config.RATE_LIMIT)
async def start_new_game(request: Request, settings: NewGameSettings):
    """
    Initializes a new 2048 game based on the provided settings (size and win_tile).

    - **size**: Dimension of the N x N board (e.g., 4 for 4x4). Default is 4.
    - **win_tile**: Tile value to reach to win (e.g., 2048). Default is 2048.
    - **seed**: Optional seed that makes the two starting tiles reproducible.

    Returns the initial game state with two random tiles, score 0 and
    progress IN_PROGRESS.
    """
    try:
        engine = GameEngine(rng=random.Random(settings.seed), size=settings.size, win_tile=settings.win_tile)
        return GameStateData(**_state_payload(engine))
    except (ValueError, core.GameError) as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error("Unexpected error in /game/new: %s", e, exc_info=True)
        raise HTTPException(status_code=500, detail=f"An unexpected error occurred during game creation: {str(e)}")


@app.post("/game/move", response_model=MoveResponseData, summary="Make a Move in the Game")
@limiter.limit(Config.RATE_LIMIT)
async def make_move(request: Request, request_data: MoveRequestData,
                    stats: StatsTracker = Depends(get_stats_tracker)):
    """
    Processes a player's move in the game.

    Requires the current `tiles`, `score`, `move_count`, the `direction` of the
    move, the `win_tile` and the `won` latch for this game instance.

    The API will:
    1. Slide and merge the tiles.
    2. If the move changed the board, add a new random tile (2 or 4).
    3. Update the win latch, game over flag and the persistent stats. A win or
       loss counts once per `game_id`, so repeated requests do not count again.

    Returns the updated game state, whether the move was effective, and an optional message.
    """
    try:
        engine = GameEngine(
            rng=random.Random(request_data.seed),
            stats=stats,
            size=request_data.board_size,
            win_tile=request_data.win_tile,
            start=False,
        )
        engine.load(
            GameState(
                tiles=tuple(tile.to_tile() for tile in request_data.tiles),
                score=request_data.score,
                move_count=request_data.move_count,
            ),
            won=request_data.won,
            next_tile_id=request_data.next_tile_id,
            game_id=request_data.game_id,
        )
        result = engine.move(request_data.direction)
    except (ValueError, core.GameError) as e:
        raise HTTPException(status_code=400, detail=f"Error processing move: {str(e)}")
    except Exception as e:
        logger.error("Unexpected error in /game/move: %s", e, exc_info=True)
        raise HTTPException(status_code=500, detail=f"An unexpected server error occurred while processing the move: {str(e)}")

    message_for_client: Optional[str] = None
    if not result.accepted:
        message_for_client = "Move was not effective; board state unchanged by slide."
    if result.just_won:
        message_for_client = "Congratulations! You won!"
    if engine.game_over:
        message_for_client = "Game Over. No more valid moves."

    return MoveResponseData(
        **_state_payload(engine),
        move_was_effective=result.accepted,
        score_gained=result.score_gained,
        just_won=result.just_won,
        message=message_for_client,
    )


@app.get("/stats", response_model=StatsData, summary="Persistent Statistics")
async def read_stats(stats: StatsTracker = Depends(get_stats_tracker)):
    """Best score, highest tile, wins, win streak and unlocked achievement tiers."""
    aggregate = stats.load()
    return StatsData(
        best_score=aggregate.best_score,
        highest_tile_ever_seen=aggregate.highest_tile_ever_seen,
        games_won=aggregate.games_won,
        win_streak=aggregate.win_streak,
        unlocked_achievement_tiers=sorted(aggregate.unlocked_achievement_tiers),
    )
