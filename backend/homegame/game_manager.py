"""Table manager: persisted table operations, undo and session stats."""

from __future__ import annotations

import asyncio
import logging
import random
import string
import time
import uuid
from typing import Any, Optional

from homegame import redis_client
from homegame.engine import Game
from homegame.errors import InvalidStateError, NotFoundError
from homegame.models import ActionType, GameConfig, GameStatus, SavedGameInfo
from homegame.stats import (
    HandHistoryEntry,
    HandTempStats,
    PlayerStats,
    action_opportunities,
    aggregate_hand_history,
    build_hand_entry,
    is_vpip_action,
    record_action,
    update_vpip,
)

logger = logging.getLogger(__name__)

MAX_UNDO_SEGMENTS = 20
MAX_SAVED_GAMES = 3
SAVED_GAMES_LOCK = "saved-games"

# Game methods that can be logged and replayed for undo.
REPLAYABLE_COMMANDS = frozenset(
    {
        "add_player",
        "remove_player",
        "move_player_seat",
        "set_dealer_button",
        "set_player_stack",
        "rebuy",
        "set_sitting_out",
        "start_hand",
        "perform_action",
        "end_hand",
        "end_hand_with_pots",
    }
)

_locks: dict[str, asyncio.Lock] = {}


def _get_lock(code: str) -> asyncio.Lock:
    """One lock per table, plus one for the shared saved-games list."""
    lock = _locks.get(code)
    if lock is None:
        lock = _locks[code] = asyncio.Lock()
    return lock


def _generate_code(length: int = 6) -> str:
    """Generate a short uppercase table code."""
    return "".join(random.choices(string.ascii_uppercase + string.digits, k=length))


async def _new_code() -> str:
    code = _generate_code()
    # Ensure uniqueness (simple retry)
    while await redis_client.load_table(code) is not None:
        code = _generate_code()
    return code


# ------------------------------------------------------------------
# Persistence helpers
# ------------------------------------------------------------------


async def _load_game(code: str) -> Game:
    data = await redis_client.load_table(code)
    if data is None:
        raise NotFoundError("Table not found")
    return Game.from_dict(data)


async def _save_game(code: str, game: Game) -> None:
    await redis_client.store_table(code, game.to_dict())


def _table_view(game: Game) -> dict[str, Any]:
    """Table state for the operator UI."""
    state = game.to_dict()
    current = game.current_player
    state["current_player_id"] = current.id if current else None
    state["valid_actions"] = game.valid_actions(current.id) if current else []
    return state


def _apply(game: Game, op: str, args: dict[str, Any]) -> Any:
    if op not in REPLAYABLE_COMMANDS:
        raise ValueError(f"Unknown command: {op}")
    return getattr(game, op)(**args)


async def _execute(code: str, game: Game, op: str, **args: Any) -> Any:
    """Apply a command and append it to the table's undo log.

    The log is a list of segments, each a snapshot plus the commands applied
    on top of it. A new segment starts with every hand.
    """
    log = await redis_client.load_undo_log(code)
    if op == "start_hand" or not log:
        log.append({"snapshot": game.to_dict(), "commands": []})
        del log[:-MAX_UNDO_SEGMENTS]
    result = _apply(game, op, args)
    log[-1]["commands"].append({"op": op, "args": args})
    await redis_client.store_undo_log(code, log)
    return result


# ------------------------------------------------------------------
# Tables
# ------------------------------------------------------------------


async def create_table(config: GameConfig) -> tuple[str, dict[str, Any]]:
    """Create a new table and return (code, table_state)."""
    code = await _new_code()
    game = Game(config)
    await _save_game(code, game)
    await redis_client.store_undo_log(code, [{"snapshot": game.to_dict(), "commands": []}])
    logger.info("Created table %s (%s)", code, game.name)
    return code, _table_view(game)


async def get_table(code: str) -> dict[str, Any]:
    game = await _load_game(code)
    return _table_view(game)


async def list_tables() -> list[str]:
    return await redis_client.list_table_codes()


async def delete_table(code: str) -> None:
    async with _get_lock(code):
        await _load_game(code)
        await redis_client.delete_table(code)
    _locks.pop(code, None)
    logger.info("Deleted table %s", code)


# ------------------------------------------------------------------
# Seating
# ------------------------------------------------------------------


async def add_player(
    code: str, name: str, seat: Optional[int] = None, stack: Optional[int] = None
) -> dict[str, Any]:
    async with _get_lock(code):
        game = await _load_game(code)
        await _execute(
            code, game, "add_player",
            name=name, seat=seat, stack=stack, player_id=str(uuid.uuid4()),
        )
        await _save_game(code, game)
        return _table_view(game)


async def remove_player(code: str, player_id: str) -> dict[str, Any]:
    async with _get_lock(code):
        game = await _load_game(code)
        await _execute(code, game, "remove_player", player_id=player_id)
        await _save_game(code, game)
        return _table_view(game)


async def move_player_seat(code: str, player_id: str, seat: int) -> dict[str, Any]:
    async with _get_lock(code):
        game = await _load_game(code)
        await _execute(code, game, "move_player_seat", player_id=player_id, new_seat=seat)
        await _save_game(code, game)
        return _table_view(game)


async def set_dealer(code: str, player_id: str) -> dict[str, Any]:
    async with _get_lock(code):
        game = await _load_game(code)
        await _execute(code, game, "set_dealer_button", player_id=player_id)
        await _save_game(code, game)
        return _table_view(game)


async def set_player_stack(code: str, player_id: str, stack: int) -> dict[str, Any]:
    async with _get_lock(code):
        game = await _load_game(code)
        await _execute(code, game, "set_player_stack", player_id=player_id, stack=stack)
        await _save_game(code, game)
        return _table_view(game)


async def rebuy_player(code: str, player_id: str, amount: int) -> dict[str, Any]:
    async with _get_lock(code):
        game = await _load_game(code)
        await _execute(code, game, "rebuy", player_id=player_id, amount=amount)
        await _save_game(code, game)
        return _table_view(game)


async def set_sitting_out(code: str, player_id: str, sitting_out: bool) -> dict[str, Any]:
    async with _get_lock(code):
        game = await _load_game(code)
        await _execute(
            code, game, "set_sitting_out", player_id=player_id, sitting_out=sitting_out
        )
        await _save_game(code, game)
        return _table_view(game)


# ------------------------------------------------------------------
# Hands
# ------------------------------------------------------------------


async def start_hand(code: str) -> dict[str, Any]:
    """Deal the next hand and open stats tracking for everyone dealt in."""
    async with _get_lock(code):
        game = await _load_game(code)
        stacks_before = {p.id: p.stack for p in game.contenders()}
        await _execute(code, game, "start_hand")

        lifetime = await _load_lifetime_stats()
        for p in game.players:
            if p.id not in stacks_before:
                continue
            stats = lifetime.setdefault(
                p.name, PlayerStats(player_name=p.name, starting_stack=stacks_before[p.id])
            )
            stats.hands_played += 1
            update_vpip(stats, False)
        await _store_lifetime_stats(lifetime)
        await redis_client.store_hand_stats(
            code,
            {
                "hand_number": game.hand_number,
                "stacks_before": stacks_before,
                "players": {pid: HandTempStats().model_dump() for pid in stacks_before},
            },
        )

        await _save_game(code, game)
        return _table_view(game)


async def perform_action(
    code: str, player_id: str, action: str, amount: int = 0
) -> dict[str, Any]:
    """Apply an action on a player's behalf and count it toward their stats."""
    async with _get_lock(code):
        game = await _load_game(code)
        player = game.get_player(player_id)

        # Stats are classified against the state before the action lands.
        try:
            kind: Optional[ActionType] = ActionType(action.lower())
        except ValueError:
            kind = None
        opportunities = action_opportunities(game, player)
        did_vpip = kind is not None and not player.has_acted_voluntarily and is_vpip_action(
            player, kind, game.current_bet, game.big_blind, game.current_round
        )
        name = player.name

        distributions = await _execute(
            code, game, "perform_action", player_id=player_id, action=action, amount=amount
        )

        if kind is not None:
            await _record_action_stats(code, player_id, name, kind, opportunities, did_vpip)
        if distributions is not None:
            await _record_hand_end(
                code, game, {pid for d in distributions for pid in d["winners"]}
            )

        await _save_game(code, game)
        return _table_view(game)


async def end_hand(
    code: str, winner_ids: list[str]
) -> tuple[dict[str, Any], list[dict[str, Any]]]:
    """Award every pot to the given winners."""
    async with _get_lock(code):
        game = await _load_game(code)
        distributions = await _execute(code, game, "end_hand", winner_ids=winner_ids)
        await _record_hand_end(code, game, set(winner_ids))
        await _save_game(code, game)
        return _table_view(game), distributions


async def end_hand_with_pots(
    code: str, pot_winners: dict[str, list[str]]
) -> tuple[dict[str, Any], list[dict[str, Any]]]:
    """Award each pot to the winners designated for it."""
    async with _get_lock(code):
        game = await _load_game(code)
        distributions = await _execute(
            code, game, "end_hand_with_pots", pot_winners=pot_winners
        )
        await _record_hand_end(
            code, game, {pid for ids in pot_winners.values() for pid in ids}
        )
        await _save_game(code, game)
        return _table_view(game), distributions


# ------------------------------------------------------------------
# Undo
# ------------------------------------------------------------------


def _has_history(log: list[dict[str, Any]]) -> bool:
    return any(seg["commands"] for seg in log)


async def can_undo(code: str) -> bool:
    return _has_history(await redis_client.load_undo_log(code))


async def undo(code: str) -> dict[str, Any]:
    """Roll the table back one command by replaying the rest of its segment."""
    async with _get_lock(code):
        await _load_game(code)
        log = await redis_client.load_undo_log(code)
        if not _has_history(log):
            raise InvalidStateError("Nothing to undo")
        while not log[-1]["commands"]:
            log.pop()

        segment = log[-1]
        undone = segment["commands"].pop()
        game = Game.from_dict(segment["snapshot"])
        for cmd in segment["commands"]:
            _apply(game, cmd["op"], cmd["args"])
        if not segment["commands"]:
            # the next command opens a fresh segment from the current state
            log.pop()

        await redis_client.store_undo_log(code, log)
        if game.status == GameStatus.WAITING:
            await redis_client.clear_hand_stats(code)
        await _save_game(code, game)
        logger.info("Table %s: undid %s", code, undone["op"])
        return _table_view(game)


# ------------------------------------------------------------------
# Saved games
# ------------------------------------------------------------------


def _save_info(save: dict[str, Any]) -> SavedGameInfo:
    return SavedGameInfo(
        id=save["id"],
        name=save["name"],
        saved_at=save["saved_at"],
        hand_number=save["game"].get("hand_number", 0),
        player_count=len(save["game"].get("players", [])),
    )


async def save_game(code: str, name: Optional[str] = None) -> SavedGameInfo:
    """Save a table snapshot. Only the newest few saves are kept."""
    async with _get_lock(code):
        game = await _load_game(code)
        save = {
            "id": str(uuid.uuid4()),
            "name": name or game.name,
            "saved_at": time.time(),
            "game": game.to_dict(),
        }
    async with _get_lock(SAVED_GAMES_LOCK):
        saves = await redis_client.load_saved_games()
        saves = [save, *saves][:MAX_SAVED_GAMES]
        await redis_client.store_saved_games(saves)
    logger.info("Saved table %s as %r", code, save["name"])
    return _save_info(save)


async def list_saved_games() -> list[SavedGameInfo]:
    return [_save_info(s) for s in await redis_client.load_saved_games()]


async def load_game(save_id: str) -> tuple[str, dict[str, Any]]:
    """Open a saved game on a fresh table. Returns (code, table_state)."""
    saves = await redis_client.load_saved_games()
    save = next((s for s in saves if s["id"] == save_id), None)
    if save is None:
        raise NotFoundError("Saved game not found")
    game = Game.from_dict(save["game"])
    code = await _new_code()
    await _save_game(code, game)
    await redis_client.store_undo_log(code, [{"snapshot": game.to_dict(), "commands": []}])
    logger.info("Loaded save %r onto table %s", save["name"], code)
    return code, _table_view(game)


async def delete_saved_game(save_id: str) -> None:
    async with _get_lock(SAVED_GAMES_LOCK):
        saves = await redis_client.load_saved_games()
        remaining = [s for s in saves if s["id"] != save_id]
        if len(remaining) == len(saves):
            raise NotFoundError("Saved game not found")
        await redis_client.store_saved_games(remaining)


# ------------------------------------------------------------------
# Stats
# ------------------------------------------------------------------


async def _load_lifetime_stats() -> dict[str, PlayerStats]:
    raw = await redis_client.load_player_stats()
    return {name: PlayerStats.model_validate(s) for name, s in raw.items()}


async def _store_lifetime_stats(stats: dict[str, PlayerStats]) -> None:
    await redis_client.store_player_stats(
        {name: s.model_dump() for name, s in stats.items()}
    )


async def _record_action_stats(
    code: str,
    player_id: str,
    name: str,
    action: ActionType,
    opportunities: set[ActionType],
    did_vpip: bool,
) -> None:
    lifetime = await _load_lifetime_stats()
    stats = lifetime.setdefault(name, PlayerStats(player_name=name))
    if did_vpip and stats.hands_played > 0:
        update_vpip(stats, True)
    record_action(stats.action_stats, opportunities, action)
    await _store_lifetime_stats(lifetime)

    scratch = await redis_client.load_hand_stats(code)
    if scratch is None:
        return
    hand = HandTempStats.model_validate(scratch["players"].get(player_id, {}))
    hand.vpip = hand.vpip or did_vpip
    record_action(hand.action_stats, opportunities, action)
    scratch["players"][player_id] = hand.model_dump()
    await redis_client.store_hand_stats(code, scratch)


async def _record_hand_end(code: str, game: Game, winner_ids: set[str]) -> None:
    """Credit wins and profit and append the hand to the history.

    ``winner_ids`` are the players the operator named, so a pot returned
    uncontested does not count as a win.
    """
    scratch = await redis_client.load_hand_stats(code)
    if scratch is None:
        return
    stacks_before: dict[str, int] = scratch["stacks_before"]

    lifetime = await _load_lifetime_stats()
    for p in game.players:
        if p.id not in stacks_before:
            continue
        stats = lifetime.setdefault(p.name, PlayerStats(player_name=p.name))
        stats.total_profit += p.stack - stacks_before[p.id]
        if p.id in winner_ids:
            stats.hands_won += 1
    await _store_lifetime_stats(lifetime)

    hand_stats = {
        pid: HandTempStats.model_validate(s) for pid, s in scratch["players"].items()
    }
    entry = build_hand_entry(
        game, stacks_before, hand_stats, winner_ids, scratch.get("hand_number", 0)
    )
    await redis_client.append_hand_history(entry.model_dump())
    await redis_client.clear_hand_stats(code)


async def get_player_stats() -> list[PlayerStats]:
    """Lifetime stats for every player name seen so far."""
    return list((await _load_lifetime_stats()).values())


async def get_historical_stats(last_n: Optional[int] = None) -> list[PlayerStats]:
    """Stats rebuilt from stored hand history, optionally the last ``last_n`` hands."""
    raw = await redis_client.load_hand_history()
    entries = [HandHistoryEntry.model_validate(h) for h in raw]
    return aggregate_hand_history(entries, last_n)
