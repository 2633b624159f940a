# stats.py
# Persistent aggregates (best score, highest tile, wins, streak, achievements)
# kept in an injected key-value store.

from dataclasses import dataclass, field, replace
from typing import Dict, FrozenSet, Iterable, Optional, Protocol
import json
import logging

from core import Tile, max_tile_value

logger = logging.getLogger(__name__)

ACHIEVEMENT_TIERS = (512, 1024, 2048, 4096, 8192)

BEST_SCORE_KEY = "bestScore"
HIGHEST_TILE_KEY = "highestTileEverSeen"
GAMES_WON_KEY = "gamesWon"
WIN_STREAK_KEY = "winStreak"
ACHIEVEMENTS_KEY = "unlockedAchievementTiers"


class StatsStore(Protocol):
    """Synchronous key-value interface the stats are persisted through."""

    def get(self, key: str) -> Optional[str]:
        ...

    def set(self, key: str, value: str) -> None:
        ...

    def set_if_absent(self, key: str, value: str) -> bool:
        """Writes only when the key is missing; True if this call wrote it."""
        ...


class InMemoryStatsStore:
    """Dictionary-backed store; the default when nothing else is configured."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self.data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self.data.get(key)

    def set(self, key: str, value: str) -> None:
        self.data[key] = value

    def set_if_absent(self, key: str, value: str) -> bool:
        if key in self.data:
            return False
        self.data[key] = value
        return True


class RedisStatsStore:
    """
    Stores the aggregates as plain redis strings.
    The client should be created with decode_responses=True so reads return str.
    """

    def __init__(self, client, prefix: str = ""):
        self.client = client
        self.prefix = prefix

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    def get(self, key: str) -> Optional[str]:
        value = self.client.get(self._key(key))
        if isinstance(value, bytes):
            value = value.decode("utf-8")
        return value

    def set(self, key: str, value: str) -> None:
        self.client.set(self._key(key), value)

    def set_if_absent(self, key: str, value: str) -> bool:
        return bool(self.client.set(self._key(key), value, nx=True))


@dataclass(frozen=True)
class StatsAggregate:
    best_score: int = 0
    highest_tile_ever_seen: int = 0
    games_won: int = 0
    win_streak: int = 0
    unlocked_achievement_tiers: FrozenSet[int] = field(default_factory=frozenset)

    def to_store_values(self) -> Dict[str, str]:
        """Serializes each aggregate to the string stored under its key."""
        return {
            BEST_SCORE_KEY: str(self.best_score),
            HIGHEST_TILE_KEY: str(self.highest_tile_ever_seen),
            GAMES_WON_KEY: str(self.games_won),
            WIN_STREAK_KEY: str(self.win_streak),
            ACHIEVEMENTS_KEY: json.dumps(sorted(self.unlocked_achievement_tiers)),
        }


def tiers_reached(highest_tile: int) -> FrozenSet[int]:
    """Achievement tiers at or below the given tile value."""
    return frozenset(tier for tier in ACHIEVEMENT_TIERS if highest_tile >= tier)


def outcome_key(game_id: str, outcome: str) -> str:
    """Marker key that records a game's win or loss."""
    return f"game:{game_id}:{outcome}"


def _parse_int(key: str, raw: Optional[str]) -> int:
    if raw is None or raw == "":
        return 0
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring unparseable stats value %s=%r", key, raw)
        return 0


def _parse_tiers(raw: Optional[str]) -> FrozenSet[int]:
    if raw is None or raw == "":
        return frozenset()
    try:
        return frozenset(int(tier) for tier in json.loads(raw))
    except (TypeError, ValueError):
        logger.warning("Ignoring unparseable stats value %s=%r", ACHIEVEMENTS_KEY, raw)
        return frozenset()


class StatsTracker:
    """
    Derives and persists the cross-game aggregates.

    Every aggregate except win_streak is monotonic. The store is re-read before
    each update so several trackers sharing one store never lower a value.
    A win or loss tagged with a game id counts at most once per game, claimed
    through a set-if-absent marker. A failing store is logged and never
    interrupts play.
    """

    def __init__(self, store: Optional[StatsStore] = None, load: bool = True):
        self.store = store if store is not None else InMemoryStatsStore()
        self.aggregate = StatsAggregate()
        if load:
            self.load()

    def load(self) -> StatsAggregate:
        """Reads every aggregate from the store, keeping the last known values if it fails."""
        try:
            raw = {key: self.store.get(key) for key in StatsAggregate().to_store_values()}
        except Exception:
            logger.warning("Could not read stats from store; keeping last known values", exc_info=True)
            return self.aggregate

        highest = _parse_int(HIGHEST_TILE_KEY, raw.get(HIGHEST_TILE_KEY))
        self.aggregate = StatsAggregate(
            best_score=_parse_int(BEST_SCORE_KEY, raw.get(BEST_SCORE_KEY)),
            highest_tile_ever_seen=highest,
            games_won=_parse_int(GAMES_WON_KEY, raw.get(GAMES_WON_KEY)),
            win_streak=_parse_int(WIN_STREAK_KEY, raw.get(WIN_STREAK_KEY)),
            unlocked_achievement_tiers=_parse_tiers(raw.get(ACHIEVEMENTS_KEY)) | tiers_reached(highest),
        )
        return self.aggregate

    def record(self, tiles: Iterable[Tile], score: int, just_won: bool = False, just_lost: bool = False,
               game_id: Optional[str] = None) -> StatsAggregate:
        """
        Folds a resolved state into the aggregates.
        Args:
            tiles (Iterable[Tile]): The tiles of the new state.
            score (int): The score of the new state.
            just_won (bool): The win latch was set by this transition.
            just_lost (bool): This transition ended the game without a win.
            game_id (Optional[str]): Game the outcome belongs to; repeated outcomes
                                     for the same game are ignored.
        Returns:
            StatsAggregate: The updated aggregates.
        """
        old = self.load()
        if game_id is not None:
            if just_won:
                just_won = self._claim_outcome(game_id, "won")
            if just_lost:
                just_lost = not self._outcome_claimed(game_id, "won") and self._claim_outcome(game_id, "lost")

        highest = max(old.highest_tile_ever_seen, max_tile_value(tiles))
        new = replace(
            old,
            best_score=max(old.best_score, score),
            highest_tile_ever_seen=highest,
            unlocked_achievement_tiers=old.unlocked_achievement_tiers | tiers_reached(highest),
        )
        if just_won:
            new = replace(new, games_won=new.games_won + 1, win_streak=new.win_streak + 1)
        elif just_lost:
            new = replace(new, win_streak=0)

        newly_unlocked = new.unlocked_achievement_tiers - old.unlocked_achievement_tiers
        if newly_unlocked:
            logger.info("Achievement tiers unlocked: %s", sorted(newly_unlocked))

        self.aggregate = new
        self._write_changes(old, new)
        return new

    def _claim_outcome(self, game_id: str, outcome: str) -> bool:
        try:
            claimed = self.store.set_if_absent(outcome_key(game_id, outcome), "1")
        except Exception:
            logger.warning("Could not mark game %s as %s; counting it once locally", game_id, outcome, exc_info=True)
            return True
        if not claimed:
            logger.debug("Game %s was already recorded as %s", game_id, outcome)
        return claimed

    def _outcome_claimed(self, game_id: str, outcome: str) -> bool:
        try:
            return self.store.get(outcome_key(game_id, outcome)) is not None
        except Exception:
            logger.warning("Could not read outcome marker for game %s", game_id, exc_info=True)
            return False

    def _write_changes(self, old: StatsAggregate, new: StatsAggregate) -> None:
        old_values = old.to_store_values()
        for key, value in new.to_store_values().items():
            if old_values[key] == value:
                continue
            try:
                self.store.set(key, value)
            except Exception:
                logger.warning("Failed to persist stats key %s", key, exc_info=True)
