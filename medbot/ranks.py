"""Rank table — named experience levels and rank-up detection."""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING, Iterable

from .exceptions import RankTableError

if TYPE_CHECKING:
    from .users import User


@dataclass(frozen=True)
class Rank:
    name: str
    level: int
    exp_required: int


class RankTable:
    """Ordered list of ranks, lowest threshold first."""

    def __init__(self, ranks: Iterable[Rank] = ()) -> None:
        self._ranks: list[Rank] = sorted(ranks, key=lambda r: r.level)
        for prev, cur in zip(self._ranks, self._ranks[1:]):
            if cur.exp_required < prev.exp_required:
                raise RankTableError(
                    f"Rank {cur.name!r} requires less experience than {prev.name!r}"
                )

    @classmethod
    def from_thresholds(cls, entries: Iterable[tuple[int, str]]) -> RankTable:
        """Build from ``(exp_required, name)`` pairs, levels assigned 1.. in order."""
        return cls(
            Rank(name=name, level=i, exp_required=exp)
            for i, (exp, name) in enumerate(entries, start=1)
        )

    def __len__(self) -> int:
        return len(self._ranks)

    def __bool__(self) -> bool:
        return bool(self._ranks)

    @property
    def ranks(self) -> list[Rank]:
        return list(self._ranks)

    def rank_for(self, experience: int) -> Rank | None:
        """Highest rank whose threshold is <= ``experience``."""
        current: Rank | None = None
        for rank in self._ranks:
            if rank.exp_required <= experience:
                current = rank
            else:
                break
        return current

    def next_rank(self, rank: Rank | None) -> Rank | None:
        """The rank after ``rank``, or the first rank when ``rank`` is None."""
        if not self._ranks:
            return None
        if rank is None:
            return self._ranks[0]
        for candidate in self._ranks:
            if candidate.level > rank.level:
                return candidate
        return None

    def assign_initial(self, user: User) -> None:
        """Set the user's rank silently (used when a user is first seen)."""
        user.rank = self.rank_for(user.experience)

    def check_rank_up(self, user: User) -> Rank | None:
        """Recompute the user's rank.

        Returns the new rank only when the user already had a rank and the
        level went up; the initial assignment and demotions are silent.
        """
        previous = user.rank
        current = self.rank_for(user.experience)
        user.rank = current
        if previous is None or current is None:
            return None
        if current.level > previous.level:
            return current
        return None

    def time_to_next(
        self,
        user: User,
        exp_per_tick: int,
        tick_interval: timedelta,
    ) -> timedelta | None:
        """Estimated time until the next rank at a steady reward rate."""
        upcoming = self.next_rank(user.rank)
        if upcoming is None or exp_per_tick <= 0:
            return None
        missing = max(upcoming.exp_required - user.experience, 0)
        ticks = math.ceil(missing / exp_per_tick)
        return tick_interval * ticks
