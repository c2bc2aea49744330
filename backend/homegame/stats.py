"""Session statistics: VPIP, action opportunities and hand history.

The engine never computes these itself. The table manager feeds it the
pre-action state of every decision and a summary of every finished hand.
"""

from __future__ import annotations

import math
import time
from typing import TYPE_CHECKING, Iterable, Optional

from pydantic import BaseModel, Field

from homegame.models import ActionType, PlayerStatus

if TYPE_CHECKING:
    from homegame.engine import Game
    from homegame.player import Player

VOLUNTARY_ACTIONS = frozenset(
    {ActionType.BET, ActionType.CALL, ActionType.RAISE, ActionType.ALL_IN}
)

_ACTION_FIELDS = {
    ActionType.RAISE: "raises",
    ActionType.CALL: "calls",
    ActionType.FOLD: "folds",
    ActionType.CHECK: "checks",
    ActionType.BET: "bets",
    ActionType.ALL_IN: "all_ins",
}


class ActionStats(BaseModel):
    raises: int = 0
    calls: int = 0
    folds: int = 0
    checks: int = 0
    bets: int = 0
    all_ins: int = 0
    raise_opportunities: int = 0
    call_opportunities: int = 0
    fold_opportunities: int = 0
    check_opportunities: int = 0
    bet_opportunities: int = 0

    def add(self, other: ActionStats) -> None:
        for name in ActionStats.model_fields:
            setattr(self, name, getattr(self, name) + getattr(other, name))


class PlayerStats(BaseModel):
    """Stats for one player name, kept across tables and sessions."""

    player_name: str
    hands_played: int = 0
    hands_won: int = 0
    total_profit: int = 0
    vpip: float = 0
    hands_voluntarily_played: int = 0
    starting_stack: int = 0
    action_stats: ActionStats = Field(default_factory=ActionStats)


class HandTempStats(BaseModel):
    """What one player did during the hand being played."""

    vpip: bool = False
    action_stats: ActionStats = Field(default_factory=ActionStats)


class HandPlayerResult(BaseModel):
    player_id: str
    player_name: str
    stack_before: int
    profit: int
    won: bool
    vpip: bool = False
    action_stats: ActionStats = Field(default_factory=ActionStats)


class HandHistoryEntry(BaseModel):
    timestamp: float = Field(default_factory=time.time)
    hand_number: int = 0
    players: list[HandPlayerResult]
    winners: list[str]  # player names


# ----------------------------------------------------------------------
# VPIP
# ----------------------------------------------------------------------


def is_vpip_action(
    player: Player,
    action: ActionType,
    current_bet: int,
    big_blind: int,
    current_round: int,
) -> bool:
    """Whether ``action`` voluntarily puts chips in the pot pre-flop."""
    if current_round != 0:
        return False
    if action == ActionType.FOLD:
        return False
    if player.is_big_blind and action == ActionType.CHECK and current_bet == big_blind:
        return False
    return action in VOLUNTARY_ACTIONS


def update_vpip(stats: PlayerStats, did_vpip: bool) -> None:
    """Count a voluntary hand if there was one and refresh the percentage."""
    if did_vpip:
        stats.hands_voluntarily_played += 1
    if stats.hands_played > 0:
        ratio = stats.hands_voluntarily_played / stats.hands_played * 100
        stats.vpip = math.floor(ratio + 0.5)


# ----------------------------------------------------------------------
# Action opportunities
# ----------------------------------------------------------------------


def action_opportunities(game: Game, player: Player) -> set[ActionType]:
    """Actions that were open to ``player`` at this decision point.

    Must be called with the state *before* the action is applied.
    """
    if player.status != PlayerStatus.ACTIVE:
        return set()
    available = {ActionType.FOLD}
    to_call = game.current_bet - player.current_bet
    if to_call > 0:
        available.add(ActionType.CALL)
        if player.stack > to_call:
            available.add(ActionType.RAISE)
    else:
        available.add(ActionType.CHECK)
        bb_option = (
            player.is_big_blind
            and game.current_bet == game.big_blind
            and game.current_round == 0
        )
        if game.current_bet == 0 or bb_option:
            available.add(ActionType.BET)
    return available


def record_action(
    stats: ActionStats, opportunities: Iterable[ActionType], action: ActionType
) -> None:
    for opportunity in opportunities:
        field = f"{opportunity.value}_opportunities"
        setattr(stats, field, getattr(stats, field) + 1)
    field = _ACTION_FIELDS.get(action)
    if field:
        setattr(stats, field, getattr(stats, field) + 1)


# ----------------------------------------------------------------------
# Hand history
# ----------------------------------------------------------------------


def build_hand_entry(
    game: Game,
    stacks_before: dict[str, int],
    hand_stats: dict[str, HandTempStats],
    winner_ids: Iterable[str],
    hand_number: int,
) -> HandHistoryEntry:
    """Summarize a finished hand for everyone who was dealt in."""
    winners = set(winner_ids)
    results = []
    for p in game.players:
        if p.id not in stacks_before:
            continue
        hs = hand_stats.get(p.id, HandTempStats())
        results.append(
            HandPlayerResult(
                player_id=p.id,
                player_name=p.name,
                stack_before=stacks_before[p.id],
                profit=p.stack - stacks_before[p.id],
                won=p.id in winners,
                vpip=hs.vpip,
                action_stats=hs.action_stats,
            )
        )
    names = [p.name for p in game.players if p.id in winners]
    return HandHistoryEntry(hand_number=hand_number, players=results, winners=names)


def aggregate_hand_history(
    entries: list[HandHistoryEntry], last_n: Optional[int] = None
) -> list[PlayerStats]:
    """Per-player totals over the stored hands (or only the last ``last_n``)."""
    if last_n:
        entries = entries[-last_n:]
    by_name: dict[str, PlayerStats] = {}
    for hand in entries:
        for r in hand.players:
            stats = by_name.get(r.player_name)
            if stats is None:
                stats = PlayerStats(player_name=r.player_name, starting_stack=r.stack_before)
                by_name[r.player_name] = stats
            stats.hands_played += 1
            stats.hands_won += int(r.won)
            stats.total_profit += r.profit
            stats.hands_voluntarily_played += int(r.vpip)
            stats.action_stats.add(r.action_stats)

    for stats in by_name.values():
        if stats.hands_played:
            stats.vpip = round(stats.hands_voluntarily_played / stats.hands_played * 100, 1)
    return list(by_name.values())
