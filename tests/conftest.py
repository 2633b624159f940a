from __future__ import annotations

import random
from typing import Callable, List, Optional

import pytest

from core import Tile
from engine import GameEngine, GameState
from stats import InMemoryStatsStore, StatsTracker


def _make_tiles(values: List[List[int]], first_id: int = 1) -> List[Tile]:
    """Row-major tiles from a value matrix, 0 meaning empty."""
    tiles = []
    next_id = first_id
    for r, row in enumerate(values):
        for c, value in enumerate(row):
            if value:
                tiles.append(Tile(id=next_id, value=value, row=r, col=c))
                next_id += 1
    return tiles


@pytest.fixture()
def make_tiles() -> Callable[..., List[Tile]]:
    return _make_tiles


@pytest.fixture()
def rng() -> random.Random:
    return random.Random(2048)


@pytest.fixture()
def stats_store() -> InMemoryStatsStore:
    return InMemoryStatsStore()


@pytest.fixture()
def stats(stats_store: InMemoryStatsStore) -> StatsTracker:
    return StatsTracker(stats_store)


@pytest.fixture()
def engine(rng: random.Random, stats: StatsTracker) -> GameEngine:
    return GameEngine(rng=rng, stats=stats)


@pytest.fixture()
def load_board(engine: GameEngine) -> Callable[..., GameEngine]:
    """Loads a value matrix into the engine fixture and returns the engine."""

    def _load(values: List[List[int]], score: int = 0, won: bool = False,
              next_tile_id: Optional[int] = None) -> GameEngine:
        engine.load(GameState(tiles=tuple(_make_tiles(values)), score=score), won=won, next_tile_id=next_tile_id)
        return engine

    return _load
