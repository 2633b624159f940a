# config.py
# Environment driven settings shared by the API and the CLI.

import os

import redis

from stats import InMemoryStatsStore, RedisStatsStore


class Config:
    BOARD_SIZE = int(os.environ.get('GAME2048_BOARD_SIZE', '4'))
    WIN_TILE = int(os.environ.get('GAME2048_WIN_TILE', '2048'))
    # slowapi limit string applied to every game route
    RATE_LIMIT = os.environ.get('GAME2048_RATE_LIMIT', '100/minute')
    # "memory" or "redis"
    STATS_BACKEND = os.environ.get('GAME2048_STATS_BACKEND', 'memory')
    REDIS_URL = os.environ.get('REDIS_URL', 'redis://localhost:6379/0')
    STATS_PREFIX = os.environ.get('GAME2048_STATS_PREFIX', '')
    LOG_LEVEL = os.environ.get('GAME2048_LOG_LEVEL', 'INFO').upper()


def create_stats_store(config=Config):
    """Builds the stats store selected by STATS_BACKEND."""
    backend = config.STATS_BACKEND.lower()
    if backend == 'memory':
        return InMemoryStatsStore()
    if backend == 'redis':
        # decode_responses=True => strings in/out instead of bytes
        client = redis.Redis.from_url(config.REDIS_URL, decode_responses=True)
        return RedisStatsStore(client, prefix=config.STATS_PREFIX)
    raise ValueError(f"Unknown stats backend: {config.STATS_BACKEND!r}")
