"""Pydantic models for table configuration and the HTTP API."""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, model_validator


class GameStatus(str, Enum):
    WAITING = "waiting"
    IN_PROGRESS = "in_progress"
    HAND_COMPLETE = "hand_complete"
    PAUSED = "paused"
    FINISHED = "finished"


class BettingLimit(str, Enum):
    NO_LIMIT = "no_limit"
    POT_LIMIT = "pot_limit"
    FIXED_LIMIT = "fixed_limit"


class PlayerStatus(str, Enum):
    ACTIVE = "active"
    FOLDED = "folded"
    ALL_IN = "all_in"
    SITTING_OUT = "sitting_out"
    ELIMINATED = "eliminated"


class ActionType(str, Enum):
    CHECK = "check"
    BET = "bet"
    CALL = "call"
    RAISE = "raise"
    FOLD = "fold"
    ALL_IN = "all_in"
    POST_BLIND = "post_blind"
    POST_ANTE = "post_ante"


# --- Configuration ---


class GameConfig(BaseModel):
    """Table configuration. Omitted fields take the home-game defaults."""

    name: Optional[str] = Field(default=None, max_length=60)
    max_players: int = Field(default=10, ge=2)
    starting_stack: int = Field(default=1000, ge=1)
    small_blind: int = Field(default=5, ge=0)
    big_blind: int = Field(default=10, ge=1)
    ante: int = Field(default=0, ge=0)
    betting_limit: BettingLimit = BettingLimit.NO_LIMIT
    min_bet: Optional[int] = Field(default=None, ge=1)  # defaults to big_blind
    min_raise: Optional[int] = Field(default=None, ge=1)  # defaults to big_blind
    total_rounds: int = Field(default=4, ge=1)

    @model_validator(mode="after")
    def _fill_limits(self) -> GameConfig:
        if self.small_blind > self.big_blind:
            raise ValueError("small_blind cannot exceed big_blind")
        if self.min_bet is None:
            self.min_bet = self.big_blind
        if self.min_raise is None:
            self.min_raise = self.big_blind
        return self


# --- Request models ---


class AddPlayerRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=20)
    seat: Optional[int] = Field(default=None, ge=1)
    stack: Optional[int] = Field(default=None, ge=0)


class SeatRequest(BaseModel):
    seat: int = Field(..., ge=1)


class StackRequest(BaseModel):
    stack: int = Field(..., ge=0)


class RebuyRequest(BaseModel):
    amount: int = Field(..., ge=1)


class SitOutRequest(BaseModel):
    sitting_out: bool = True


class DealerRequest(BaseModel):
    player_id: str


class ActionRequest(BaseModel):
    player_id: str
    action: str  # check, bet, call, raise, fold, all_in
    amount: int = Field(default=0, ge=0)


class EndHandRequest(BaseModel):
    """Either a single winner list or per-pot winner lists keyed by pot id."""

    winner_ids: list[str] = Field(default_factory=list)
    pot_winners: dict[str, list[str]] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _require_winners(self) -> EndHandRequest:
        if not self.winner_ids and not self.pot_winners:
            raise ValueError("winner_ids or pot_winners is required")
        return self


class SaveGameRequest(BaseModel):
    name: Optional[str] = Field(default=None, max_length=60)


# --- Response models ---


class TableResponse(BaseModel):
    code: str
    table: dict[str, Any]
    can_undo: bool = False


class EndHandResponse(BaseModel):
    code: str
    table: dict[str, Any]
    distributions: list[dict[str, Any]]
    can_undo: bool = False


class SavedGameInfo(BaseModel):
    id: str
    name: str
    saved_at: float
    hand_number: int
    player_count: int
