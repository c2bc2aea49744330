"""Pot accounting: per-player contributions, side pots and distribution."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Iterable, Union

from homegame.errors import NotFoundError, PotDistributionError
from homegame.models import PlayerStatus

if TYPE_CHECKING:
    from homegame.player import Player

logger = logging.getLogger(__name__)

DEFAULT_WINNERS_KEY = "default"


class Pot:
    """A main or side pot and the players who can win it."""

    def __init__(
        self,
        pot_id: str,
        amount: int,
        eligible_players: list[str],
        is_main: bool = False,
    ) -> None:
        self.id = pot_id
        self.amount = amount
        self.eligible_players = eligible_players
        self.is_main = is_main

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "amount": self.amount,
            "eligible_players": list(self.eligible_players),
            "is_main": self.is_main,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Pot:
        return cls(
            data["id"],
            data["amount"],
            list(data.get("eligible_players", [])),
            data.get("is_main", False),
        )


class PotManager:
    """Tracks what each player has put in this hand and splits it into pots."""

    def __init__(self) -> None:
        self.pots: list[Pot] = []
        self.player_contributions: dict[str, int] = {}
        self.total_pot: int = 0

    @property
    def total_in_pots(self) -> int:
        return sum(p.amount for p in self.pots)

    def add_bet(self, player_id: str, amount: int) -> None:
        if amount <= 0:
            return
        self.player_contributions[player_id] = (
            self.player_contributions.get(player_id, 0) + amount
        )
        self.total_pot += amount

    def reset(self) -> None:
        self.pots = []
        self.player_contributions = {}
        self.total_pot = 0

    # ------------------------------------------------------------------
    # Side pots
    # ------------------------------------------------------------------

    def create_side_pots(self, players: Iterable[Player]) -> list[Pot]:
        """Rebuild ``self.pots`` from the current contributions.

        Calling it again without new contributions yields the same pots,
        ids included.
        """
        players = list(players)
        status = {p.id: p.status for p in players}
        # Seat order first, then any contributor no longer seated.
        order = [p.id for p in players if self.player_contributions.get(p.id, 0) > 0]
        order += [
            pid
            for pid, amt in self.player_contributions.items()
            if amt > 0 and pid not in status
        ]

        def _can_win(pid: str) -> bool:
            return status.get(pid) not in (None, PlayerStatus.FOLDED)

        if self.total_pot <= 0:
            self.pots = []
            return self.pots

        if not any(p.status == PlayerStatus.ALL_IN for p in players):
            eligible = [pid for pid in order if _can_win(pid)]
            self.pots = [Pot("main", self.total_pot, eligible, is_main=True)]
            return self.pots

        tiers = sorted(set(self.player_contributions[pid] for pid in order))
        pots: list[Pot] = []
        prev = 0
        for tier in tiers:
            at_tier = [pid for pid in order if self.player_contributions[pid] >= tier]
            amount = (tier - prev) * len(at_tier)
            eligible = [pid for pid in at_tier if _can_win(pid)]
            prev = tier
            # Same contenders, or nobody left to win it: fold into the pot below.
            if pots and (not eligible or set(eligible) == set(pots[-1].eligible_players)):
                pots[-1].amount += amount
                continue
            pots.append(Pot("", amount, eligible))

        # A bottom tier where every contributor folded rolls up.
        while len(pots) > 1 and not pots[0].eligible_players:
            pots[1].amount += pots[0].amount
            pots.pop(0)

        for i, pot in enumerate(pots):
            pot.id = "main" if i == 0 else f"side-{i}"
            pot.is_main = i == 0
        self.pots = pots
        return self.pots

    # ------------------------------------------------------------------
    # Distribution
    # ------------------------------------------------------------------

    def plan_distribution(
        self, winners_by_pot_id: dict[str, list[str]]
    ) -> list[dict[str, Any]]:
        """Work out every pot's payout without moving chips.

        Winners for a pot come from its id, falling back to the ``default``
        key. Only eligible players are paid; the odd chips of an uneven split
        go to the first winner listed. A pot with a single eligible player
        goes to that player when none of the designated winners can claim it.
        """
        known = {pot.id for pot in self.pots}
        for key in winners_by_pot_id:
            if key != DEFAULT_WINNERS_KEY and key not in known:
                raise NotFoundError(f"Pot not found: {key}")

        plan: list[dict[str, Any]] = []
        for pot in self.pots:
            designated = winners_by_pot_id.get(pot.id) or winners_by_pot_id.get(
                DEFAULT_WINNERS_KEY, []
            )
            winners = [
                pid for pid in dict.fromkeys(designated) if pid in pot.eligible_players
            ]
            if not winners and len(pot.eligible_players) == 1:
                # Uncontested: an uncalled bet goes back to the only claimant.
                winners = list(pot.eligible_players)
            if not winners:
                raise PotDistributionError(
                    f"No eligible winner designated for pot {pot.id}"
                )
            share, remainder = divmod(pot.amount, len(winners))
            payouts = {pid: share for pid in winners}
            payouts[winners[0]] += remainder
            plan.append(
                {
                    "pot_id": pot.id,
                    "amount": pot.amount,
                    "is_main": pot.is_main,
                    "winners": winners,
                    "payouts": payouts,
                }
            )
        return plan

    def distribute_pots(self, winners_by_pot_id: dict[str, list[str]]) -> dict[str, int]:
        """Return player id -> chips won across all pots."""
        totals: dict[str, int] = {}
        for entry in self.plan_distribution(winners_by_pot_id):
            for pid, amt in entry["payouts"].items():
                totals[pid] = totals.get(pid, 0) + amt
        logger.debug("Distributed %d chips: %s", self.total_in_pots, totals)
        return totals

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        return {
            "pots": [p.to_dict() for p in self.pots],
            "player_contributions": [
                [pid, amt] for pid, amt in self.player_contributions.items()
            ],
            "total_pot": self.total_pot,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PotManager:
        manager = cls()
        manager.pots = [Pot.from_dict(p) for p in data.get("pots", [])]
        raw: Union[list[Any], dict[str, int]] = data.get("player_contributions", [])
        if isinstance(raw, dict):
            manager.player_contributions = {pid: int(amt) for pid, amt in raw.items()}
        else:
            manager.player_contributions = {pid: int(amt) for pid, amt in raw}
        manager.total_pot = data.get(
            "total_pot", sum(manager.player_contributions.values())
        )
        return manager
