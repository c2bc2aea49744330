"""Tests for session statistics helpers."""

from homegame.engine import Game
from homegame.models import ActionType, GameConfig
from homegame.player import Player
from homegame.stats import (
    ActionStats,
    HandHistoryEntry,
    HandPlayerResult,
    HandTempStats,
    PlayerStats,
    action_opportunities,
    aggregate_hand_history,
    build_hand_entry,
    is_vpip_action,
    record_action,
    update_vpip,
)


def _make_game(n_players: int = 3, stacks: list[int] | None = None) -> Game:
    game = Game(GameConfig(small_blind=5, big_blind=10))
    for i in range(n_players):
        game.add_player(f"Player{i}", stack=stacks[i] if stacks else None, player_id=f"p{i}")
    return game


# ── VPIP ─────────────────────────────────────────────────────────────

class TestVpip:
    def test_preflop_call_counts(self):
        p = Player("A", 1, 100)
        assert is_vpip_action(p, ActionType.CALL, 10, 10, 0)
        assert is_vpip_action(p, ActionType.RAISE, 10, 10, 0)
        assert is_vpip_action(p, ActionType.ALL_IN, 10, 10, 0)

    def test_fold_does_not_count(self):
        assert not is_vpip_action(Player("A", 1, 100), ActionType.FOLD, 10, 10, 0)

    def test_big_blind_check_does_not_count(self):
        p = Player("A", 1, 100)
        p.is_big_blind = True
        assert not is_vpip_action(p, ActionType.CHECK, 10, 10, 0)

    def test_postflop_actions_do_not_count(self):
        p = Player("A", 1, 100)
        assert not is_vpip_action(p, ActionType.BET, 0, 10, 1)
        assert not is_vpip_action(p, ActionType.CALL, 20, 10, 2)

    def test_update_rounds_half_up(self):
        stats = PlayerStats(player_name="A", hands_played=3)
        update_vpip(stats, True)
        assert stats.vpip == 33
        update_vpip(stats, True)
        assert stats.vpip == 67

    def test_update_without_vpip_is_noop(self):
        stats = PlayerStats(player_name="A", hands_played=4, vpip=25, hands_voluntarily_played=1)
        update_vpip(stats, False)
        assert stats.vpip == 25
        assert stats.hands_voluntarily_played == 1


# ── Opportunities ────────────────────────────────────────────────────

class TestOpportunities:
    def test_facing_big_blind(self):
        game = _make_game()
        game.start_hand()
        opps = action_opportunities(game, game.get_player("p1"))
        assert opps == {ActionType.FOLD, ActionType.CALL, ActionType.RAISE}

    def test_big_blind_option(self):
        game = _make_game()
        game.start_hand()
        game.perform_action("p1", "call")
        game.perform_action("p2", "call")
        opps = action_opportunities(game, game.get_player("p0"))
        assert opps == {ActionType.FOLD, ActionType.CHECK, ActionType.BET}

    def test_unopened_postflop(self):
        game = _make_game()
        game.start_hand()
        game.perform_action("p1", "call")
        game.perform_action("p2", "call")
        game.perform_action("p0", "check")
        opps = action_opportunities(game, game.get_player("p2"))
        assert opps == {ActionType.FOLD, ActionType.CHECK, ActionType.BET}

    def test_short_stack_cannot_raise(self):
        game = _make_game(stacks=[1000, 1000, 50])
        game.start_hand()
        game.perform_action("p1", "raise", 100)
        opps = action_opportunities(game, game.get_player("p2"))
        assert opps == {ActionType.FOLD, ActionType.CALL}

    def test_folded_player_has_none(self):
        game = _make_game()
        game.start_hand()
        game.perform_action("p1", "fold")
        assert action_opportunities(game, game.get_player("p1")) == set()

    def test_record_action(self):
        stats = ActionStats()
        record_action(stats, {ActionType.FOLD, ActionType.CALL, ActionType.RAISE}, ActionType.CALL)
        assert stats.calls == 1
        assert stats.call_opportunities == 1
        assert stats.raise_opportunities == 1
        assert stats.fold_opportunities == 1
        assert stats.check_opportunities == 0

    def test_all_in_is_counted(self):
        stats = ActionStats()
        record_action(stats, set(), ActionType.ALL_IN)
        assert stats.all_ins == 1


# ── Hand history ─────────────────────────────────────────────────────

class TestHandHistory:
    def test_build_entry_after_fold_out(self):
        game = _make_game()
        stacks_before = {p.id: p.stack for p in game.players}
        game.start_hand()
        game.perform_action("p1", "fold")
        game.perform_action("p2", "fold")
        hand_stats = {"p1": HandTempStats(), "p2": HandTempStats()}
        entry = build_hand_entry(game, stacks_before, hand_stats, ["p0"], 1)

        assert entry.hand_number == 1
        assert entry.winners == ["Player0"]
        profits = {r.player_name: r.profit for r in entry.players}
        assert profits == {"Player0": 5, "Player1": 0, "Player2": -5}
        assert sum(profits.values()) == 0
        assert [r.won for r in entry.players] == [True, False, False]

    def test_players_not_dealt_in_are_skipped(self):
        game = _make_game()
        entry = build_hand_entry(game, {"p0": 1000}, {}, ["p0"], 3)
        assert [r.player_id for r in entry.players] == ["p0"]

    def _entry(self, hand_number, results):
        return HandHistoryEntry(
            hand_number=hand_number,
            players=[
                HandPlayerResult(
                    player_id=name.lower(),
                    player_name=name,
                    stack_before=1000,
                    profit=profit,
                    won=profit > 0,
                    vpip=vpip,
                )
                for name, profit, vpip in results
            ],
            winners=[name for name, profit, _ in results if profit > 0],
        )

    def test_aggregate(self):
        entries = [
            self._entry(1, [("Ann", 20, True), ("Ben", -20, False)]),
            self._entry(2, [("Ann", -10, False), ("Ben", 10, True)]),
            self._entry(3, [("Ann", 30, True), ("Ben", -30, True)]),
        ]
        stats = {s.player_name: s for s in aggregate_hand_history(entries)}
        assert stats["Ann"].hands_played == 3
        assert stats["Ann"].hands_won == 2
        assert stats["Ann"].total_profit == 40
        assert stats["Ann"].vpip == 66.7
        assert stats["Ben"].total_profit == -40
        assert stats["Ben"].starting_stack == 1000

    def test_aggregate_last_n(self):
        entries = [
            self._entry(1, [("Ann", 20, True), ("Ben", -20, False)]),
            self._entry(2, [("Ann", -10, False), ("Ben", 10, True)]),
        ]
        stats = {s.player_name: s for s in aggregate_hand_history(entries, last_n=1)}
        assert stats["Ann"].hands_played == 1
        assert stats["Ann"].total_profit == -10
        assert stats["Ben"].vpip == 100.0
