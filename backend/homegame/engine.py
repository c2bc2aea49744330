"""Table engine for a manually driven home poker game.

Tracks seating, forced bets, betting rounds, side pots and chip accounting.
No cards are dealt or evaluated: the operator enters every action on behalf
of the players at the table and designates the winner(s) of each pot.
"""

from __future__ import annotations

import logging
import time
import uuid
from typing import Any, Callable, Iterable, Optional, Union

from homegame.errors import (
    CapacityError,
    IllegalActionError,
    InvalidStateError,
    NotFoundError,
    TurnError,
)
from homegame.limits import BettingContext, strategy_for
from homegame.models import (
    ActionType,
    BettingLimit,
    GameConfig,
    GameStatus,
    PlayerStatus,
)
from homegame.player import ActionRecord, Player
from homegame.pot import DEFAULT_WINNERS_KEY, PotManager
from homegame.stats import is_vpip_action

logger = logging.getLogger(__name__)

FORCED_ACTIONS = frozenset({ActionType.POST_BLIND, ActionType.POST_ANTE})


def _coerce_action(action: Union[ActionType, str]) -> ActionType:
    try:
        parsed = ActionType(action.lower() if isinstance(action, str) else action)
    except ValueError:
        raise IllegalActionError(f"Unknown action: {action}") from None
    if parsed in FORCED_ACTIONS:
        raise IllegalActionError("Blinds and antes are posted by the table")
    return parsed


def _check_amount(amount: Any, label: str = "Amount") -> int:
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise IllegalActionError(f"{label} must be a whole number of chips")
    if amount < 0:
        raise IllegalActionError(f"{label} cannot be negative")
    return amount


class Game:
    """One table: its players, the pot and the hand/round state machine."""

    def __init__(
        self,
        config: Union[GameConfig, dict[str, Any], None] = None,
        game_id: Optional[str] = None,
    ) -> None:
        if config is None:
            config = GameConfig()
        elif not isinstance(config, GameConfig):
            config = GameConfig.model_validate(config)

        self.id = game_id or str(uuid.uuid4())
        self.name = config.name or f"Game {time.strftime('%Y-%m-%d')}"
        self.max_players = config.max_players
        self.starting_stack = config.starting_stack
        self.small_blind = config.small_blind
        self.big_blind = config.big_blind
        self.ante = config.ante
        self.betting_limit = config.betting_limit
        self.min_bet: int = config.min_bet  # type: ignore[assignment]
        self.min_raise: int = config.min_raise  # type: ignore[assignment]
        self.total_rounds = config.total_rounds
        self.limit = strategy_for(self.betting_limit)

        self.players: list[Player] = []
        self.pot_manager = PotManager()
        self.status = GameStatus.WAITING
        self.dealer_position: int = 0
        self.current_player_index: int = 0
        self.current_round: int = 0
        self.current_bet: int = 0
        self.hand_number: int = 0
        self.action_history: list[ActionRecord] = []
        self.last_hand_result: Optional[dict[str, Any]] = None

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    def _find_index(self, player_id: str) -> Optional[int]:
        for i, p in enumerate(self.players):
            if p.id == player_id:
                return i
        return None

    def _index_of(self, player_id: str) -> int:
        idx = self._find_index(player_id)
        if idx is None:
            raise NotFoundError(f"Player not found: {player_id}")
        return idx

    def get_player(self, player_id: str) -> Player:
        return self.players[self._index_of(player_id)]

    @property
    def current_player(self) -> Optional[Player]:
        if self.status != GameStatus.IN_PROGRESS or not self.players:
            return None
        return self.players[self.current_player_index]

    def contenders(self) -> list[Player]:
        """Players dealt into the hand (able to act or already all-in)."""
        return [p for p in self.players if p.is_in_hand]

    def active_players(self) -> list[Player]:
        return [p for p in self.players if p.status == PlayerStatus.ACTIVE]

    def all_in_players(self) -> list[Player]:
        return [p for p in self.players if p.status == PlayerStatus.ALL_IN]

    def players_in_hand(self) -> list[Player]:
        """Everyone still holding a claim on the pot."""
        return [
            p
            for p in self.players
            if p.status not in (
                PlayerStatus.FOLDED,
                PlayerStatus.ELIMINATED,
                PlayerStatus.SITTING_OUT,
            )
        ]

    def total_chips(self) -> int:
        """Chips on the table: every stack plus the pot."""
        return sum(p.stack for p in self.players) + self.pot_manager.total_pot

    def _next_index(
        self, idx: int, predicate: Callable[[Player], bool]
    ) -> Optional[int]:
        """Next seat after idx (wrapping) whose player matches predicate."""
        n = len(self.players)
        for offset in range(1, n + 1):
            i = (idx + offset) % n
            if predicate(self.players[i]):
                return i
        return None

    def _sort_players(self) -> None:
        self.players.sort(key=lambda p: p.seat_number)

    def _sync_dealer_position(self) -> None:
        for i, p in enumerate(self.players):
            if p.is_dealer:
                self.dealer_position = i
                return
        if self.dealer_position >= len(self.players):
            self.dealer_position = 0

    def _require_between_hands(self, what: str) -> None:
        if self.status in (GameStatus.IN_PROGRESS, GameStatus.HAND_COMPLETE):
            raise InvalidStateError(f"Cannot {what} while a hand is in progress")

    def _check_seat(self, seat: Any) -> int:
        if isinstance(seat, bool) or not isinstance(seat, int):
            raise IllegalActionError("Seat must be a number")
        if not 1 <= seat <= self.max_players:
            raise IllegalActionError(f"Seat must be between 1 and {self.max_players}")
        return seat

    # ------------------------------------------------------------------
    # Seating
    # ------------------------------------------------------------------

    def add_player(
        self,
        name: str,
        seat: Optional[int] = None,
        stack: Optional[int] = None,
        player_id: Optional[str] = None,
    ) -> Player:
        """Seat a new player. The second player seated takes the button."""
        self._require_between_hands("add players")
        if len(self.players) >= self.max_players:
            raise CapacityError("Table is full")
        taken = {p.seat_number for p in self.players}
        if seat is None:
            seat = next(s for s in range(1, self.max_players + 1) if s not in taken)
        else:
            self._check_seat(seat)
            if seat in taken:
                raise CapacityError(f"Seat {seat} is taken")
        stack = self.starting_stack if stack is None else _check_amount(stack, "Stack")
        if player_id is not None and self._find_index(player_id) is not None:
            raise InvalidStateError(f"Player {player_id} is already seated")

        player = Player(name, seat, stack, player_id)
        self.players.append(player)
        self._sort_players()
        if len(self.players) >= 2 and not any(p.is_dealer for p in self.players):
            self.players[1].is_dealer = True
        self._sync_dealer_position()
        logger.info("Seated %s at seat %d with %d chips", name, seat, stack)
        return player

    def remove_player(self, player_id: str) -> Player:
        self._require_between_hands("remove players")
        idx = self._index_of(player_id)
        removed = self.players.pop(idx)
        if removed.is_dealer and len(self.players) >= 2:
            self.players[idx % len(self.players)].is_dealer = True
        self._sync_dealer_position()
        if self.current_player_index >= len(self.players):
            self.current_player_index = 0
        logger.info("Removed %s from seat %d", removed.name, removed.seat_number)
        return removed

    def move_player_seat(self, player_id: str, new_seat: int) -> None:
        """Move a player to another seat, swapping with whoever sits there."""
        self._require_between_hands("change seats")
        player = self.get_player(player_id)
        self._check_seat(new_seat)
        for other in self.players:
            if other is not player and other.seat_number == new_seat:
                other.seat_number = player.seat_number
                break
        player.seat_number = new_seat
        self._sort_players()
        self._sync_dealer_position()

    def set_dealer_button(self, player_id: str) -> None:
        self._require_between_hands("move the button")
        idx = self._index_of(player_id)
        for i, p in enumerate(self.players):
            p.is_dealer = i == idx
        self.dealer_position = idx

    def set_player_stack(self, player_id: str, stack: int) -> None:
        """Overwrite a stack between hands. Zero eliminates, chips reactivate."""
        self._require_between_hands("edit stacks")
        player = self.get_player(player_id)
        player.stack = _check_amount(stack, "Stack")
        if player.status == PlayerStatus.SITTING_OUT:
            return
        player.status = PlayerStatus.ACTIVE if stack > 0 else PlayerStatus.ELIMINATED

    def rebuy(self, player_id: str, amount: int) -> None:
        self._require_between_hands("rebuy")
        player = self.get_player(player_id)
        if _check_amount(amount) == 0:
            raise IllegalActionError("Rebuy amount must be positive")
        player.add_chips(amount)
        if player.status == PlayerStatus.ELIMINATED:
            player.status = PlayerStatus.ACTIVE
        logger.info("%s rebought for %d", player.name, amount)

    def set_sitting_out(self, player_id: str, sitting_out: bool) -> None:
        self._require_between_hands("change sit-out status")
        player = self.get_player(player_id)
        if sitting_out:
            player.status = PlayerStatus.SITTING_OUT
        else:
            player.status = (
                PlayerStatus.ACTIVE if player.stack > 0 else PlayerStatus.ELIMINATED
            )

    def move_dealer_button(self) -> None:
        """Pass the button to the next seat that is not eliminated."""
        n = len(self.players)
        if n == 0:
            return
        idx = next(
            (i for i, p in enumerate(self.players) if p.is_dealer),
            self.dealer_position,
        )
        for p in self.players:
            p.is_dealer = False
        for _ in range(n):
            idx = (idx + 1) % n
            if self.players[idx].status != PlayerStatus.ELIMINATED:
                break
        self.players[idx].is_dealer = True
        self.dealer_position = idx

    # ------------------------------------------------------------------
    # Hand Lifecycle
    # ------------------------------------------------------------------

    def start_hand(self) -> None:
        """Post antes and blinds and put the first player on the clock."""
        if self.status in (GameStatus.IN_PROGRESS, GameStatus.HAND_COMPLETE):
            raise InvalidStateError("A hand is already in progress")
        if len(self.contenders()) < 2:
            raise InvalidStateError("Need at least 2 players with chips to start a hand")

        self.hand_number += 1
        self.status = GameStatus.IN_PROGRESS
        self.current_round = 0
        self.last_hand_result = None
        self.pot_manager.reset()
        for p in self.players:
            p.reset_for_new_hand()
        if not any(p.is_dealer for p in self.players):
            self.move_dealer_button()
        self._sync_dealer_position()

        self._post_antes()
        self._post_blinds()
        self.current_bet = self.big_blind
        self.determine_first_actor()
        logger.info(
            "Hand %d started at %s, dealer %s",
            self.hand_number,
            self.name,
            self.players[self.dealer_position].name,
        )

        # Short stacks can be all-in from the forced bets alone.
        if self._betting_is_moot(require_acted=False):
            self._skip_to_showdown()

    def _post_antes(self) -> None:
        if self.ante <= 0:
            return
        for p in self.players:
            if p.status != PlayerStatus.ACTIVE:
                continue
            posted = p.post_dead(self.ante)
            self.pot_manager.add_bet(p.id, posted)
            self._record(p, ActionType.POST_ANTE, posted)

    def _post_blinds(self) -> None:
        in_hand: Callable[[Player], bool] = lambda p: p.is_in_hand
        dealer = self.dealer_position
        if len(self.contenders()) == 2 and self.players[dealer].is_in_hand:
            sb_idx = dealer
        else:
            sb_idx = self._next_index(dealer, in_hand)
        if sb_idx is None:
            return
        bb_idx = self._next_index(sb_idx, in_hand)

        self.players[sb_idx].is_small_blind = True
        self._post_blind(sb_idx, self.small_blind)
        if bb_idx is not None:
            self.players[bb_idx].is_big_blind = True
            self._post_blind(bb_idx, self.big_blind)

    def _post_blind(self, idx: int, amount: int) -> None:
        p = self.players[idx]
        posted = min(amount, p.stack)
        if posted <= 0:
            return
        p.bet(posted)
        self.pot_manager.add_bet(p.id, posted)
        self._record(p, ActionType.POST_BLIND, posted)

    def determine_first_actor(self) -> None:
        """Pick who acts first in the current round."""
        can_act: Callable[[Player], bool] = lambda p: p.is_active
        dealer = self.dealer_position
        idx: Optional[int]
        if self.current_round == 0:
            if len(self.contenders()) == 2:
                # Heads-up: the button posts the small blind and acts first.
                idx = dealer if self.players[dealer].is_active else self._next_index(dealer, can_act)
            else:
                bb = next(
                    (i for i, p in enumerate(self.players) if p.is_big_blind),
                    dealer,
                )
                idx = self._next_index(bb, can_act)
        else:
            idx = self._next_index(dealer, can_act)
        self.current_player_index = idx if idx is not None else dealer

    def move_to_next_player(self) -> None:
        idx = self._next_index(self.current_player_index, lambda p: p.is_active)
        if idx is not None:
            self.current_player_index = idx

    # ------------------------------------------------------------------
    # Action Processing
    # ------------------------------------------------------------------

    def betting_context(self, player: Player) -> BettingContext:
        return BettingContext(
            stack=player.stack,
            player_bet=player.current_bet,
            current_bet=self.current_bet,
            pot=self.pot_manager.total_pot,
            min_bet=self.min_bet,
            min_raise=self.min_raise,
        )

    def valid_actions(self, player_id: str) -> list[dict[str, Any]]:
        """Actions the given player may take right now, with amount bounds."""
        idx = self._find_index(player_id)
        if (
            idx is None
            or self.status != GameStatus.IN_PROGRESS
            or idx != self.current_player_index
        ):
            return []
        p = self.players[idx]
        if not p.is_active:
            return []

        ctx = self.betting_context(p)
        actions: list[dict[str, Any]] = [{"action": ActionType.FOLD.value}]
        if ctx.call_amount == 0:
            actions.append({"action": ActionType.CHECK.value})
        else:
            actions.append(
                {"action": ActionType.CALL.value, "amount": min(ctx.call_amount, p.stack)}
            )

        if self.current_bet == 0:
            lo, hi = self.limit.min_bet(ctx), self.limit.max_bet(ctx)
            if 0 < lo <= hi:
                actions.append(
                    {"action": ActionType.BET.value, "min_amount": lo, "max_amount": hi}
                )
        else:
            lo, hi = self.limit.min_raise_to(ctx), self.limit.max_raise_to(ctx)
            if lo <= hi and ctx.all_in_to >= lo:
                actions.append(
                    {"action": ActionType.RAISE.value, "min_amount": lo, "max_amount": hi}
                )

        actions.append({"action": ActionType.ALL_IN.value, "amount": p.stack})
        return actions

    def perform_action(
        self,
        player_id: str,
        action: Union[ActionType, str],
        amount: int = 0,
    ) -> Optional[list[dict[str, Any]]]:
        """Apply one player's action.

        ``amount`` is the total the player bets or raises *to* this round.
        Returns the pot distribution when the action ended the hand by
        leaving a single player, otherwise None. A rejected action raises
        before anything changes.
        """
        if self.status != GameStatus.IN_PROGRESS:
            raise InvalidStateError("No hand in progress")
        idx = self._index_of(player_id)
        player = self.players[idx]
        if idx != self.current_player_index:
            raise TurnError(f"It is not {player.name}'s turn")
        if not player.is_active:
            raise IllegalActionError(f"{player.name} cannot act")
        kind = _coerce_action(action)
        amount = _check_amount(amount)
        voluntary = is_vpip_action(
            player, kind, self.current_bet, self.big_blind, self.current_round
        )

        handlers: dict[ActionType, Callable[[Player, int], int]] = {
            ActionType.CHECK: self._do_check,
            ActionType.BET: self._do_bet,
            ActionType.CALL: self._do_call,
            ActionType.RAISE: self._do_raise,
            ActionType.FOLD: self._do_fold,
            ActionType.ALL_IN: self._do_all_in,
        }
        committed = handlers[kind](player, amount)
        player.has_acted = True
        if voluntary:
            player.has_acted_voluntarily = True
        self._record(player, kind, committed)
        return self._after_action()

    def _do_check(self, player: Player, amount: int) -> int:
        if self.current_bet > player.current_bet:
            raise IllegalActionError("Cannot check, must call or fold")
        return 0

    def _do_bet(self, player: Player, amount: int) -> int:
        if self.current_bet > 0:
            raise IllegalActionError("Cannot bet, betting already started")
        self.limit.validate_bet(self.betting_context(player), amount)
        self._commit(player, amount)
        self.current_bet = player.current_bet
        self._reopen_action(player)
        return amount

    def _do_call(self, player: Player, amount: int) -> int:
        to_call = self.current_bet - player.current_bet
        if to_call <= 0:
            raise IllegalActionError("Nothing to call")
        if to_call >= player.stack:
            return self._do_all_in(player, 0)
        self._commit(player, to_call)
        return to_call

    def _do_raise(self, player: Player, amount: int) -> int:
        if self.current_bet == 0:
            raise IllegalActionError("Nothing to raise, bet instead")
        self.limit.validate_raise(self.betting_context(player), amount)
        committed = amount - player.current_bet
        self._commit(player, committed)
        self.current_bet = amount
        self._reopen_action(player)
        return committed

    def _do_fold(self, player: Player, amount: int) -> int:
        player.fold()
        return 0

    def _do_all_in(self, player: Player, amount: int) -> int:
        committed = player.all_in()
        self.pot_manager.add_bet(player.id, committed)
        if player.current_bet > self.current_bet:
            self.current_bet = player.current_bet
            self._reopen_action(player)
        return committed

    def _commit(self, player: Player, amount: int) -> None:
        player.bet(amount)
        self.pot_manager.add_bet(player.id, amount)

    def _reopen_action(self, aggressor: Player) -> None:
        for p in self.players:
            if p is not aggressor and p.is_active:
                p.has_acted = False

    def _record(self, player: Player, action: ActionType, amount: int) -> None:
        record = ActionRecord(
            player_id=player.id,
            player_name=player.name,
            action=action,
            amount=amount,
            round_index=self.current_round,
            pot=self.pot_manager.total_pot,
            hand_number=self.hand_number,
        )
        player.record_action(record)
        self.action_history.append(record)

    def _after_action(self) -> Optional[list[dict[str, Any]]]:
        remaining = self.players_in_hand()
        if len(remaining) == 1:
            self.pot_manager.create_side_pots(self.players)
            return self.end_hand([remaining[0].id])

        if self._betting_is_moot(require_acted=True):
            self._skip_to_showdown()
            return None

        self.move_to_next_player()
        if self.is_round_complete():
            self.end_round()
        return None

    # ------------------------------------------------------------------
    # Round / Street Management
    # ------------------------------------------------------------------

    def _betting_is_moot(self, require_acted: bool) -> bool:
        """True when nobody is left who could still bet against anyone."""
        active = self.active_players()
        all_in = self.all_in_players()
        if not active:
            return len(all_in) > 1
        if len(active) == 1 and all_in:
            last = active[0]
            covers = last.current_bet >= max(p.current_bet for p in all_in)
            return covers and (last.has_acted or not require_acted)
        return False

    def _skip_to_showdown(self) -> None:
        self.current_round = self.total_rounds
        self.status = GameStatus.HAND_COMPLETE
        self.pot_manager.create_side_pots(self.players)
        logger.debug("Hand %d: no more betting possible, skipping to showdown", self.hand_number)

    def is_round_complete(self) -> bool:
        active = self.active_players()
        if not active:
            return True
        if len(active) == 1:
            return not self.all_in_players() or active[0].has_acted
        return all(
            p.has_acted and p.current_bet == self.current_bet for p in active
        )

    def end_round(self) -> None:
        self.current_round += 1
        if self.current_round >= self.total_rounds:
            self.status = GameStatus.HAND_COMPLETE
            self.pot_manager.create_side_pots(self.players)
            return

        if self._betting_is_moot(require_acted=False):
            self._skip_to_showdown()
            return

        for p in self.players:
            p.reset_for_new_round()
        self.current_bet = 0
        if self.all_in_players():
            self.pot_manager.create_side_pots(self.players)
        self.determine_first_actor()

    # ------------------------------------------------------------------
    # Pot Award
    # ------------------------------------------------------------------

    def end_hand(self, winner_ids: Iterable[str]) -> list[dict[str, Any]]:
        """Award every pot to the given winners (those eligible for each pot)."""
        return self.end_hand_with_pots({DEFAULT_WINNERS_KEY: list(winner_ids)})

    def end_hand_with_pots(
        self, pot_winners: dict[str, list[str]]
    ) -> list[dict[str, Any]]:
        """Award pots using a pot id -> winner ids mapping.

        A ``default`` key applies to any pot without its own entry. Nothing
        moves unless every pot has at least one eligible winner.
        """
        if self.status not in (GameStatus.IN_PROGRESS, GameStatus.HAND_COMPLETE):
            raise InvalidStateError("No hand to end")

        pm = self.pot_manager
        if not pm.pots or pm.total_in_pots != pm.total_pot:
            pm.create_side_pots(self.players)
        distributions = pm.plan_distribution(pot_winners)

        for entry in distributions:
            for pid, amount in entry["payouts"].items():
                self.get_player(pid).add_chips(amount)

        self.last_hand_result = {
            "hand_number": self.hand_number,
            "distributions": distributions,
        }
        logger.info(
            "Hand %d complete: %d chips across %d pot(s)",
            self.hand_number,
            pm.total_pot,
            len(distributions),
        )

        self.status = GameStatus.WAITING
        self.current_round = 0
        self.current_bet = 0
        pm.reset()
        for p in self.players:
            p.reset_for_new_hand()
        self.move_dealer_button()
        return distributions

    # ------------------------------------------------------------------
    # Serialization (for Redis persistence)
    # ------------------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        """Serialize the full table state."""
        return {
            "id": self.id,
            "name": self.name,
            "max_players": self.max_players,
            "starting_stack": self.starting_stack,
            "small_blind": self.small_blind,
            "big_blind": self.big_blind,
            "ante": self.ante,
            "betting_limit": self.betting_limit.value,
            "min_bet": self.min_bet,
            "min_raise": self.min_raise,
            "total_rounds": self.total_rounds,
            "status": self.status.value,
            "dealer_position": self.dealer_position,
            "current_player_index": self.current_player_index,
            "current_round": self.current_round,
            "current_bet": self.current_bet,
            "hand_number": self.hand_number,
            "players": [p.to_dict() for p in self.players],
            "pot_manager": self.pot_manager.to_dict(),
            "action_history": [a.to_dict() for a in self.action_history],
            "last_hand_result": self.last_hand_result,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Game:
        """Restore a table from ``to_dict`` output (older snapshots included)."""
        game = cls.__new__(cls)
        game.id = data["id"]
        game.name = data.get("name", "")
        game.max_players = data.get("max_players", 10)
        game.starting_stack = data.get("starting_stack", 1000)
        game.small_blind = data.get("small_blind", 5)
        game.big_blind = data.get("big_blind", 10)
        game.ante = data.get("ante", 0)
        game.betting_limit = BettingLimit(
            data.get("betting_limit", BettingLimit.NO_LIMIT.value)
        )
        game.min_bet = data.get("min_bet", game.big_blind)
        game.min_raise = data.get("min_raise", game.big_blind)
        game.total_rounds = data.get("total_rounds", 4)
        game.limit = strategy_for(game.betting_limit)
        game.status = GameStatus(data.get("status", GameStatus.WAITING.value))
        game.dealer_position = data.get("dealer_position", 0)
        game.current_player_index = data.get("current_player_index", 0)
        game.current_round = data.get("current_round", 0)
        game.current_bet = data.get("current_bet", 0)
        game.hand_number = data.get("hand_number", 0)
        game.last_hand_result = data.get("last_hand_result")

        raw_players = data.get("players", [])
        game.players = [Player.from_dict(p) for p in raw_players]
        game._sort_players()
        if any(p.is_dealer for p in game.players):
            game._sync_dealer_position()
        elif len(game.players) >= 2:
            # Older snapshots only carry the index.
            game.dealer_position = min(max(game.dealer_position, 0), len(game.players) - 1)
            game.players[game.dealer_position].is_dealer = True

        game.pot_manager = PotManager.from_dict(data.get("pot_manager", {}))
        game.action_history = [
            ActionRecord.from_dict(a) for a in data.get("action_history", [])
        ]
        return game
