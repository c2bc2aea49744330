"""Exceptions raised by the table engine.

All of them subclass ValueError so callers that treat rule violations as
bad input (the table manager and the HTTP layer) can catch them uniformly.
"""

from __future__ import annotations


class PokerError(ValueError):
    """Base class for every rule violation raised by the engine."""


class CapacityError(PokerError):
    """The table is full or the requested seat is already taken."""


class NotFoundError(PokerError):
    """Unknown player id, pot id or table code."""


class TurnError(PokerError):
    """A player tried to act out of turn."""


class InvalidStateError(PokerError):
    """The operation is not allowed in the game's current status."""


class IllegalActionError(PokerError):
    """The action or amount violates the betting rules."""


class PotDistributionError(IllegalActionError):
    """A pot has no eligible player among the designated winners."""
