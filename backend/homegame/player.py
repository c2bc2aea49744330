"""Seat-level betting state for one player."""

from __future__ import annotations

import time
import uuid
from typing import Any, Optional

from homegame.models import ActionType, PlayerStatus


class ActionRecord:
    """One entry in a player's or the table's action history."""

    def __init__(
        self,
        player_id: str,
        player_name: str,
        action: ActionType,
        amount: int,
        round_index: int,
        pot: int,
        hand_number: int,
        timestamp: Optional[float] = None,
    ) -> None:
        self.player_id = player_id
        self.player_name = player_name
        self.action = action
        self.amount = amount
        self.round_index = round_index
        self.pot = pot
        self.hand_number = hand_number
        self.timestamp = timestamp if timestamp is not None else time.time()

    def to_dict(self) -> dict[str, Any]:
        return {
            "player_id": self.player_id,
            "player_name": self.player_name,
            "action": self.action.value,
            "amount": self.amount,
            "round": self.round_index,
            "pot": self.pot,
            "hand_number": self.hand_number,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ActionRecord:
        return cls(
            player_id=data["player_id"],
            player_name=data.get("player_name", ""),
            action=ActionType(data["action"]),
            amount=data.get("amount", 0),
            round_index=data.get("round", 0),
            pot=data.get("pot", 0),
            hand_number=data.get("hand_number", 0),
            timestamp=data.get("timestamp"),
        )


class Player:
    """A seated player.

    ``current_bet`` is what the player has put in during the current betting
    round. Dead money (antes) goes to the pot without touching it.
    """

    def __init__(
        self,
        name: str,
        seat_number: int,
        stack: int,
        player_id: Optional[str] = None,
    ) -> None:
        self.id = player_id or str(uuid.uuid4())
        self.name = name
        self.seat_number = seat_number
        self.stack = stack
        self.current_bet: int = 0
        self.status = PlayerStatus.ACTIVE if stack > 0 else PlayerStatus.ELIMINATED
        self.has_acted: bool = False
        self.is_dealer: bool = False
        self.is_small_blind: bool = False
        self.is_big_blind: bool = False
        self.has_acted_voluntarily: bool = False
        self.action_history: list[ActionRecord] = []

    @property
    def is_active(self) -> bool:
        """Still in the hand and able to act."""
        return self.status == PlayerStatus.ACTIVE

    @property
    def is_in_hand(self) -> bool:
        """Holds a claim on the pot (active or all-in)."""
        return self.status in (PlayerStatus.ACTIVE, PlayerStatus.ALL_IN)

    # ------------------------------------------------------------------
    # Chip movement
    # ------------------------------------------------------------------

    def bet(self, amount: int) -> int:
        """Move ``amount`` from the stack into this round's bet."""
        if amount < 0 or amount > self.stack:
            raise ValueError(f"Cannot bet {amount} with a stack of {self.stack}")
        self.stack -= amount
        self.current_bet += amount
        if self.stack == 0:
            self.status = PlayerStatus.ALL_IN
        return amount

    def post_dead(self, amount: int) -> int:
        """Post chips that do not count toward the round's bet. Returns the amount posted."""
        actual = min(amount, self.stack)
        self.stack -= actual
        if self.stack == 0:
            self.status = PlayerStatus.ALL_IN
        return actual

    def all_in(self) -> int:
        amount = self.stack
        self.stack = 0
        self.current_bet += amount
        self.status = PlayerStatus.ALL_IN
        return amount

    def fold(self) -> None:
        self.status = PlayerStatus.FOLDED

    def add_chips(self, amount: int) -> None:
        self.stack += amount

    # ------------------------------------------------------------------
    # Resets
    # ------------------------------------------------------------------

    def reset_for_new_round(self) -> None:
        self.current_bet = 0
        self.has_acted = False

    def reset_for_new_hand(self) -> None:
        self.current_bet = 0
        self.has_acted = False
        self.has_acted_voluntarily = False
        self.is_small_blind = False
        self.is_big_blind = False
        self.action_history = []
        if self.status == PlayerStatus.SITTING_OUT:
            return
        self.status = PlayerStatus.ACTIVE if self.stack > 0 else PlayerStatus.ELIMINATED

    def record_action(self, record: ActionRecord) -> None:
        self.action_history.append(record)

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "seat_number": self.seat_number,
            "stack": self.stack,
            "current_bet": self.current_bet,
            "status": self.status.value,
            "has_acted": self.has_acted,
            "is_dealer": self.is_dealer,
            "is_small_blind": self.is_small_blind,
            "is_big_blind": self.is_big_blind,
            "has_acted_voluntarily": self.has_acted_voluntarily,
            "action_history": [a.to_dict() for a in self.action_history],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Player:
        player = cls.__new__(cls)
        player.id = data["id"]
        player.name = data["name"]
        player.seat_number = data["seat_number"]
        player.stack = data["stack"]
        player.current_bet = data.get("current_bet", 0)
        player.status = PlayerStatus(data.get("status", PlayerStatus.ACTIVE.value))
        player.has_acted = data.get("has_acted", False)
        player.is_dealer = data.get("is_dealer", False)
        player.is_small_blind = data.get("is_small_blind", False)
        player.is_big_blind = data.get("is_big_blind", False)
        player.has_acted_voluntarily = data.get("has_acted_voluntarily", False)
        player.action_history = [
            ActionRecord.from_dict(a) for a in data.get("action_history", [])
        ]
        return player
