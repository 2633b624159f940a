from __future__ import annotations

import importlib
import logging
from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient

import api
from api import app, get_stats_tracker
from config import Config
from core import GameProgressState
from stats import InMemoryStatsStore, StatsTracker


@pytest.fixture()
def tracker() -> StatsTracker:
    return StatsTracker(InMemoryStatsStore())


@pytest.fixture()
def client(tracker: StatsTracker) -> Generator[TestClient, None, None]:
    app.dependency_overrides[get_stats_tracker] = lambda: tracker
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


def _tile(tile_id: int, value: int, row: int, col: int) -> dict:
    return {"id": tile_id, "value": value, "row": row, "col": col}


def test_new_game_returns_two_tiles(client: TestClient) -> None:
    resp = client.post("/game/new", json={"seed": 5})
    assert resp.status_code == 200
    data = resp.json()
    assert len(data["tiles"]) == 2
    assert data["score"] == 0
    assert data["move_count"] == 0
    assert data["won"] is False
    assert data["game_over"] is False
    assert data["progress"] == GameProgressState.IN_PROGRESS.value
    assert data["board_size"] == 4
    assert data["next_tile_id"] == 3
    assert data["game_id"]

    again = client.post("/game/new", json={"seed": 5}).json()
    assert again["tiles"] == data["tiles"]
    assert again["game_id"] != data["game_id"]


def test_new_game_rejects_tiny_board(client: TestClient) -> None:
    assert client.post("/game/new", json={"size": 1}).status_code == 422


def test_move_merges_and_spawns(client: TestClient, tracker: StatsTracker) -> None:
    payload = {
        "game_id": "g1",
        "tiles": [_tile(1, 2, 0, 0), _tile(2, 2, 0, 1)],
        "score": 0,
        "move_count": 0,
        "direction": "left",
        "seed": 1,
    }
    resp = client.post("/game/move", json=payload)
    assert resp.status_code == 200
    data = resp.json()
    assert data["move_was_effective"] is True
    assert data["score_gained"] == 4
    assert data["score"] == 4
    assert data["move_count"] == 1
    assert len(data["tiles"]) == 2
    assert data["next_tile_id"] == 4
    merged = next(t for t in data["tiles"] if t["id"] == 1)
    assert merged["value"] == 4 and merged["is_merged"] is True
    assert tracker.aggregate.best_score == 4


def test_ineffective_move_reports_message(client: TestClient) -> None:
    payload = {
        "game_id": "g1",
        "tiles": [_tile(1, 2, 0, 0), _tile(2, 4, 0, 1)],
        "score": 12,
        "direction": "left",
    }
    data = client.post("/game/move", json=payload).json()
    assert data["move_was_effective"] is False
    assert data["score"] == 12
    assert len(data["tiles"]) == 2
    assert "not effective" in data["message"]


def test_reaching_win_tile_sets_latch_and_stats(client: TestClient) -> None:
    payload = {
        "game_id": "g1",
        "tiles": [_tile(1, 1024, 0, 0), _tile(2, 1024, 0, 1)],
        "score": 0,
        "direction": "left",
    }
    data = client.post("/game/move", json=payload).json()
    assert data["just_won"] is True
    assert data["won"] is True
    assert data["progress"] == GameProgressState.GAME_WON.value
    assert data["message"] == "Congratulations! You won!"

    # the client echoes the latch back; the next move does not win again
    payload = {"game_id": "g1", "tiles": data["tiles"], "score": data["score"], "direction": "right", "won": True}
    assert client.post("/game/move", json=payload).json()["just_won"] is False

    stats = client.get("/stats").json()
    assert stats["games_won"] == 1
    assert stats["win_streak"] == 1
    assert stats["unlocked_achievement_tiers"] == [512, 1024, 2048]


def test_overlapping_tiles_are_rejected(client: TestClient) -> None:
    payload = {
        "game_id": "g1",
        "tiles": [_tile(1, 2, 0, 0), _tile(2, 4, 0, 0)],
        "score": 0,
        "direction": "up",
    }
    resp = client.post("/game/move", json=payload)
    assert resp.status_code == 400


def test_unknown_direction_is_a_validation_error(client: TestClient) -> None:
    payload = {"game_id": "g1", "tiles": [], "score": 0, "direction": "sideways"}
    assert client.post("/game/move", json=payload).status_code == 422


def _tiles_from_rows(rows: list[list[int]]) -> list[dict]:
    tiles = []
    for r, row in enumerate(rows):
        for c, value in enumerate(row):
            if value:
                tiles.append(_tile(len(tiles) + 1, value, r, c))
    return tiles


def test_move_requires_a_game_id(client: TestClient) -> None:
    payload = {"tiles": [_tile(1, 2, 0, 0), _tile(2, 2, 0, 1)], "score": 0, "direction": "left"}
    assert client.post("/game/move", json=payload).status_code == 422


def test_repeating_a_winning_move_counts_one_win(client: TestClient) -> None:
    game_id = client.post("/game/new", json={}).json()["game_id"]
    payload = {
        "game_id": game_id,
        "tiles": [_tile(1, 1024, 0, 0), _tile(2, 1024, 0, 1)],
        "score": 0,
        "direction": "left",
    }
    for _ in range(3):
        assert client.post("/game/move", json=payload).status_code == 200

    stats = client.get("/stats").json()
    assert stats["games_won"] == 1
    assert stats["win_streak"] == 1


def test_clearing_the_win_latch_does_not_count_again(client: TestClient) -> None:
    payload = {
        "game_id": "g1",
        "tiles": [_tile(1, 1024, 0, 0), _tile(2, 1024, 0, 1)],
        "score": 0,
        "direction": "left",
    }
    data = client.post("/game/move", json=payload).json()
    assert data["just_won"] is True

    payload = {"game_id": "g1", "tiles": data["tiles"], "score": data["score"], "direction": "right", "won": False}
    assert client.post("/game/move", json=payload).status_code == 200

    assert client.get("/stats").json()["games_won"] == 1


def test_replaying_a_lost_game_keeps_a_later_streak(client: TestClient) -> None:
    losing = {
        "game_id": "a",
        "tiles": _tiles_from_rows([
            [2, 2, 8, 16],
            [8, 16, 32, 64],
            [16, 32, 64, 128],
            [32, 64, 128, 256],
        ]),
        "score": 0,
        "direction": "left",
    }
    assert client.post("/game/move", json=losing).json()["game_over"] is True
    assert client.get("/stats").json()["win_streak"] == 0

    winning = {
        "game_id": "b",
        "tiles": [_tile(1, 1024, 0, 0), _tile(2, 1024, 0, 1)],
        "score": 0,
        "direction": "left",
    }
    client.post("/game/move", json=winning)
    assert client.get("/stats").json()["win_streak"] == 1

    client.post("/game/move", json=losing)
    assert client.get("/stats").json()["win_streak"] == 1


def test_logging_is_configured_on_startup(monkeypatch: pytest.MonkeyPatch) -> None:
    calls = []
    monkeypatch.setattr(logging, "basicConfig", lambda **kw: calls.append(kw))

    module = importlib.reload(api)
    assert calls == []

    with TestClient(module.app):
        pass
    assert calls == [{"level": Config.LOG_LEVEL}]
