"""Betting-limit rules for BET and RAISE amounts.

Each limit is a strategy object; the game picks one at construction and asks
it for bounds. CALL, FOLD and ALL_IN behave the same under every limit.
"""

from __future__ import annotations

from dataclasses import dataclass

from homegame.errors import IllegalActionError
from homegame.models import BettingLimit


@dataclass(frozen=True)
class BettingContext:
    """What a limit needs to know about the decision point."""

    stack: int
    player_bet: int  # chips the player already has in this round
    current_bet: int
    pot: int  # everything in the middle before the action
    min_bet: int
    min_raise: int

    @property
    def call_amount(self) -> int:
        return max(self.current_bet - self.player_bet, 0)

    @property
    def all_in_to(self) -> int:
        return self.stack + self.player_bet


def pot_size_raise(pot: int, current_bet: int, call_amount: int) -> int:
    """Largest pot-limit raise-to: call first, then raise by the resulting pot."""
    return pot + current_bet + call_amount


class LimitStrategy:
    name = "limit"

    def min_bet(self, ctx: BettingContext) -> int:
        return min(ctx.min_bet, ctx.stack)

    def max_bet(self, ctx: BettingContext) -> int:
        raise NotImplementedError

    def min_raise_to(self, ctx: BettingContext) -> int:
        return ctx.current_bet + ctx.min_raise

    def max_raise_to(self, ctx: BettingContext) -> int:
        raise NotImplementedError

    def validate_bet(self, ctx: BettingContext, amount: int) -> None:
        if amount > ctx.stack:
            raise IllegalActionError(f"Insufficient chips to bet {amount}")
        lo, hi = self.min_bet(ctx), self.max_bet(ctx)
        if amount < lo:
            raise IllegalActionError(f"Bet must be at least {lo}")
        if amount > hi:
            raise IllegalActionError(f"Bet cannot exceed {hi} ({self.name})")

    def validate_raise(self, ctx: BettingContext, to_amount: int) -> None:
        """``to_amount`` is the player's total bet for the round after raising."""
        if to_amount - ctx.player_bet > ctx.stack:
            raise IllegalActionError(
                f"Insufficient chips to raise to {to_amount}"
            )
        lo = self.min_raise_to(ctx)
        if to_amount < lo:
            if ctx.all_in_to < lo:
                raise IllegalActionError(
                    f"Raise must be to at least {lo}; only all-in is possible"
                )
            raise IllegalActionError(f"Raise must be to at least {lo}")
        hi = self.max_raise_to(ctx)
        if to_amount > hi:
            raise IllegalActionError(f"Raise cannot exceed {hi} ({self.name})")


class NoLimit(LimitStrategy):
    name = "no limit"

    def max_bet(self, ctx: BettingContext) -> int:
        return ctx.stack

    def max_raise_to(self, ctx: BettingContext) -> int:
        return ctx.all_in_to


class PotLimit(LimitStrategy):
    name = "pot limit"

    def max_bet(self, ctx: BettingContext) -> int:
        return min(ctx.pot, ctx.stack)

    def max_raise_to(self, ctx: BettingContext) -> int:
        return min(
            pot_size_raise(ctx.pot, ctx.current_bet, ctx.call_amount),
            ctx.all_in_to,
        )


class FixedLimit(LimitStrategy):
    """Bets and raises come in exactly one size; short stacks go all-in."""

    name = "fixed limit"

    def min_bet(self, ctx: BettingContext) -> int:
        return self.max_bet(ctx)

    def max_bet(self, ctx: BettingContext) -> int:
        return min(ctx.min_bet, ctx.stack)

    def max_raise_to(self, ctx: BettingContext) -> int:
        return self.min_raise_to(ctx)


_STRATEGIES: dict[BettingLimit, type[LimitStrategy]] = {
    BettingLimit.NO_LIMIT: NoLimit,
    BettingLimit.POT_LIMIT: PotLimit,
    BettingLimit.FIXED_LIMIT: FixedLimit,
}


def strategy_for(limit: BettingLimit) -> LimitStrategy:
    return _STRATEGIES[BettingLimit(limit)]()
