"""User record held by the presence tracker while a user is connected."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Iterable

from .line_classifier import Badge
from .utils import now_utc

if TYPE_CHECKING:
    from .ranks import Rank

# Largest value an SQLite INTEGER column holds.
MAX_LEDGER_VALUE = 2**63 - 1


@dataclass
class User:
    """A chatter's ledger entry. Points and experience stay within 0..MAX_LEDGER_VALUE."""

    username: str
    display_name: str = ""
    user_id: str | None = None
    last_message: datetime | None = None
    points: int = 0
    experience: int = 0
    rank: Rank | None = None
    is_broadcaster: bool = False
    is_moderator: bool = False
    is_subscriber: bool = False
    badges: frozenset[Badge] = field(default_factory=frozenset)

    def __post_init__(self) -> None:
        self.username = self.username.lower()
        if not self.display_name:
            self.display_name = self.username

    # ── Ledger ───────────────────────────────────────────────

    def add_points(self, amount: int) -> None:
        self.points = min(max(self.points + amount, 0), MAX_LEDGER_VALUE)

    def remove_points(self, amount: int) -> int:
        """Subtract, clamping at zero. Returns the amount actually removed."""
        removed = min(amount, self.points)
        self.points -= removed
        return removed

    def add_experience(self, amount: int) -> None:
        self.experience = min(max(self.experience + amount, 0), MAX_LEDGER_VALUE)

    def remove_experience(self, amount: int) -> int:
        removed = min(amount, self.experience)
        self.experience -= removed
        return removed

    # ── Roles & activity ─────────────────────────────────────

    def apply_badges(self, badges: Iterable[Badge]) -> None:
        """Replace role flags from a freshly observed badge set."""
        self.badges = frozenset(badges)
        self.is_broadcaster = Badge.BROADCASTER in self.badges
        self.is_moderator = Badge.MODERATOR in self.badges
        self.is_subscriber = Badge.SUBSCRIBER in self.badges

    def touch(self, when: datetime | None = None) -> None:
        self.last_message = when or now_utc()

    def is_active(self, idle_minutes: float, now: datetime | None = None) -> bool:
        """True when the user chatted within the last ``idle_minutes``."""
        if self.last_message is None:
            return False
        now = now or now_utc()
        return now - self.last_message < timedelta(minutes=idle_minutes)
