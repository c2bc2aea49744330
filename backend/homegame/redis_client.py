"""Redis client wrapper for table snapshots, saves and session stats."""

from __future__ import annotations

import json
import os
from typing import Any, Optional

import redis.asyncio as redis

REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")

MAX_HAND_HISTORY = 1000

_pool: Optional[redis.Redis] = None


async def get_redis() -> redis.Redis:
    global _pool
    if _pool is None:
        _pool = redis.from_url(REDIS_URL, decode_responses=True)
    return _pool


def _table_key(code: str) -> str:
    return f"table:{code}"


def _undo_key(code: str) -> str:
    return f"table:{code}:undo"


def _hand_stats_key(code: str) -> str:
    return f"table:{code}:hand"


SAVED_GAMES_KEY = "saved_games"
PLAYER_STATS_KEY = "player_stats"
HAND_HISTORY_KEY = "hand_history"


async def _get_json(key: str) -> Optional[Any]:
    r = await get_redis()
    raw = await r.get(key)
    if raw is None:
        return None
    return json.loads(raw)


async def _set_json(key: str, data: Any) -> None:
    r = await get_redis()
    await r.set(key, json.dumps(data))


# --- Tables ---


async def store_table(code: str, data: dict[str, Any]) -> None:
    await _set_json(_table_key(code), data)


async def load_table(code: str) -> Optional[dict[str, Any]]:
    return await _get_json(_table_key(code))


async def list_table_codes() -> list[str]:
    """Return all table codes currently stored in Redis."""
    r = await get_redis()
    codes: set[str] = set()
    async for key in r.scan_iter(match="table:*", count=200):
        # Keys look like table:ABCD12, table:ABCD12:undo, etc.
        parts = key.split(":")
        if len(parts) >= 2:
            codes.add(parts[1])
    return sorted(codes)


async def delete_table(code: str) -> None:
    """Clean up all keys for a table."""
    r = await get_redis()
    await r.delete(_table_key(code), _undo_key(code), _hand_stats_key(code))


# --- Undo log ---


async def store_undo_log(code: str, segments: list[dict[str, Any]]) -> None:
    await _set_json(_undo_key(code), segments)


async def load_undo_log(code: str) -> list[dict[str, Any]]:
    return await _get_json(_undo_key(code)) or []


# --- Per-hand stats scratch ---


async def store_hand_stats(code: str, data: dict[str, Any]) -> None:
    await _set_json(_hand_stats_key(code), data)


async def load_hand_stats(code: str) -> Optional[dict[str, Any]]:
    return await _get_json(_hand_stats_key(code))


async def clear_hand_stats(code: str) -> None:
    r = await get_redis()
    await r.delete(_hand_stats_key(code))


# --- Saved games ---


async def load_saved_games() -> list[dict[str, Any]]:
    return await _get_json(SAVED_GAMES_KEY) or []


async def store_saved_games(saves: list[dict[str, Any]]) -> None:
    await _set_json(SAVED_GAMES_KEY, saves)


# --- Lifetime player stats ---


async def load_player_stats() -> dict[str, dict[str, Any]]:
    r = await get_redis()
    raw = await r.hgetall(PLAYER_STATS_KEY)
    return {name: json.loads(v) for name, v in raw.items()}


async def store_player_stats(stats: dict[str, dict[str, Any]]) -> None:
    if not stats:
        return
    r = await get_redis()
    await r.hset(
        PLAYER_STATS_KEY, mapping={name: json.dumps(v) for name, v in stats.items()}
    )


# --- Hand history ---


async def append_hand_history(entry: dict[str, Any]) -> None:
    r = await get_redis()
    await r.rpush(HAND_HISTORY_KEY, json.dumps(entry))
    await r.ltrim(HAND_HISTORY_KEY, -MAX_HAND_HISTORY, -1)


async def load_hand_history() -> list[dict[str, Any]]:
    r = await get_redis()
    raw = await r.lrange(HAND_HISTORY_KEY, 0, -1)
    return [json.loads(item) for item in raw]


async def close() -> None:
    global _pool
    if _pool is not None:
        await _pool.aclose()
        _pool = None
