"""Domain exceptions raised by medbot components."""

from __future__ import annotations


class MedbotError(Exception):
    """Base class for all medbot domain faults."""


class InsufficientPointsError(MedbotError):
    """A user tried to spend more points than they own."""

    def __init__(self, username: str, requested: int, available: int) -> None:
        super().__init__(
            f"{username} requested {requested} points but only has {available}"
        )
        self.username = username
        self.requested = requested
        self.available = available


class CommandArgumentError(MedbotError):
    """Command arguments have the wrong arity or a malformed value."""


class RankTableError(MedbotError):
    """The rank table is missing or inconsistent."""
