"""Presence tracker — the registry of connected users.

The tracker is the only component that adds, removes or iterates users.
Schedulers and the command pipeline go through its methods; a single
asyncio lock guards the registry, including the store hydrate on join.
Ledger changes for users who are not connected fall through to the store.
"""

from __future__ import annotations

import asyncio
import logging
import random
from typing import TYPE_CHECKING, Iterable

from .exceptions import InsufficientPointsError
from .notifications import RankUp, UserDisconnected, UserJoined
from .users import User
from .utils import now_utc

if TYPE_CHECKING:
    from .line_classifier import Badge
    from .context import BotContext
    from .database import UserStore
    from .notifications import Notifier
    from .ranks import Rank


class PresenceTracker:
    """Authoritative set of users currently in the channel."""

    def __init__(
        self,
        context: BotContext,
        store: UserStore,
        notifier: Notifier | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._context = context
        self._store = store
        self._notifier = notifier
        self._logger = logger or logging.getLogger("medbot.presence")

        # {username_lower: User}
        self._users: dict[str, User] = {}
        self._lock = asyncio.Lock()
        self._blacklist: set[str] = {u.lower() for u in context.config.blacklist}

    # ══════════════════════════════════════════════════════════
    #  Registry
    # ══════════════════════════════════════════════════════════

    @property
    def count(self) -> int:
        return len(self._users)

    async def join_or_get(self, username: str) -> User:
        """Return the connected user, creating and hydrating it on first sight."""
        key = username.lower()
        async with self._lock:
            user = self._users.get(key)
            if user is not None:
                return user

            user = User(username=key)
            try:
                await self._store.load_user(user)
            except Exception:
                self._logger.exception("Failed to load stored data for %s", key)
            self._context.rank_table.assign_initial(user)
            self._users[key] = user

        self._logger.debug("User joined: %s", key)
        self._publish(UserJoined(username=key))
        return user

    async def record_chat(
        self,
        username: str,
        display_name: str | None = None,
        user_id: str | None = None,
        badges: Iterable[Badge] | None = None,
    ) -> User:
        """Join-or-get the sender of a chat line and apply what the line says about them."""
        user = await self.join_or_get(username)
        if badges is not None:
            user.apply_badges(badges)
        if display_name:
            user.display_name = display_name
        if user_id and not user.user_id:
            user.user_id = user_id
        user.touch()
        return user

    async def disconnect(self, username: str) -> bool:
        """Flush everyone, then drop ``username``. No-op for unknown users."""
        key = username.lower()
        async with self._lock:
            if key not in self._users:
                return False
            snapshot = list(self._users.values())
            del self._users[key]

        await self._save(snapshot)
        self._logger.debug("User disconnected: %s", key)
        self._publish(UserDisconnected(username=key))
        return True

    async def flush(self) -> None:
        """Persist a snapshot of every connected user."""
        async with self._lock:
            snapshot = list(self._users.values())
        await self._save(snapshot)

    async def clear(self) -> None:
        async with self._lock:
            self._users.clear()

    def find(self, username: str) -> User | None:
        return self._users.get(username.lower())

    def online_users(self) -> list[User]:
        return list(self._users.values())

    def active_users(self, within_minutes: float) -> list[User]:
        now = now_utc()
        return [u for u in self._users.values() if u.is_active(within_minutes, now)]

    def is_blacklisted(self, user: User | str) -> bool:
        name = user.username if isinstance(user, User) else user.lower()
        return name in self._blacklist

    # ── Random selection ─────────────────────────────────────

    def select_random(self, exclude: Iterable[str] = ()) -> User | None:
        return self._pick(self._without(self.online_users(), exclude))

    def select_random_active(self, within_minutes: float, exclude: Iterable[str] = ()) -> User | None:
        return self._pick(self._without(self.active_users(within_minutes), exclude))

    @staticmethod
    def _without(users: list[User], exclude: Iterable[str]) -> list[User]:
        excluded = {name.lower() for name in exclude}
        return [u for u in users if u.username not in excluded]

    @staticmethod
    def _pick(candidates: list[User]) -> User | None:
        if not candidates:
            return None
        if len(candidates) == 1:
            return candidates[0]
        return random.choice(candidates)

    # ══════════════════════════════════════════════════════════
    #  Ledger
    # ══════════════════════════════════════════════════════════

    async def add_points(self, username: str, amount: int) -> None:
        user = self.find(username)
        if user is not None:
            user.add_points(amount)
        else:
            await self._store.adjust_offline_user(username, "points", amount)

    async def remove_points(self, username: str, amount: int) -> int:
        """Remove up to ``amount`` points. Returns how many were actually removed."""
        user = self.find(username)
        if user is not None:
            return user.remove_points(amount)
        before = await self._stored_value(username, "points")
        await self._store.adjust_offline_user(username, "points", -amount)
        return min(amount, before)

    def reward(self, user: User, points: int = 0, experience: int = 0) -> Rank | None:
        """Credit an online user. Returns the new rank when the experience promoted them."""
        if points:
            user.add_points(points)
        if experience:
            user.add_experience(experience)
            return self.check_rank_up(user)
        return None

    def charge(self, user: User, amount: int) -> int:
        """Debit an online user, clamping at zero. Returns the amount taken."""
        return user.remove_points(amount)

    async def transfer_points(self, sender: User, target: str, amount: int) -> None:
        """Move ``amount`` points from ``sender`` to ``target`` (online or not)."""
        if sender.points < amount:
            raise InsufficientPointsError(sender.username, amount, sender.points)
        sender.remove_points(amount)
        await self.add_points(target, amount)

    async def add_experience(self, username: str, amount: int) -> Rank | None:
        """Add experience; returns the new rank when an online user ranked up."""
        user = self.find(username)
        if user is None:
            await self._store.adjust_offline_user(username, "experience", amount)
            return None
        user.add_experience(amount)
        return self.check_rank_up(user)

    async def remove_experience(self, username: str, amount: int) -> int:
        user = self.find(username)
        if user is not None:
            removed = user.remove_experience(amount)
            self.check_rank_up(user)
            return removed
        before = await self._stored_value(username, "experience")
        await self._store.adjust_offline_user(username, "experience", -amount)
        return min(amount, before)

    def check_rank_up(self, user: User) -> Rank | None:
        """Recompute ``user``'s rank and publish a RankUp on promotion."""
        new_rank = self._context.rank_table.check_rank_up(user)
        if new_rank is not None:
            self._logger.info("%s reached rank %s (level %d)", user.username, new_rank.name, new_rank.level)
            self._publish(RankUp(user=user, rank=new_rank))
        return new_rank

    # ── Internal ─────────────────────────────────────────────

    async def _stored_value(self, username: str, field: str) -> int:
        row = await self._store.get_user(username)
        return int(row[field]) if row else 0

    async def _save(self, users: list[User]) -> None:
        if not users:
            return
        try:
            await self._store.save_all(users)
        except Exception:
            self._logger.exception("Failed to save %d users", len(users))

    def _publish(self, notification) -> None:
        if self._notifier is not None:
            self._notifier.publish(notification)
