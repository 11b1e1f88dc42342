"""Reward schedulers — periodic points and experience payouts.

Each scheduler runs its own task: sleep one interval, then tick. A tick
walks the online users, classifies each as active or idle from the time of
their last chat message, applies the reward, and flushes presence once.
Users who never chatted and blacklisted users get nothing.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import TYPE_CHECKING

from .utils import now_utc

if TYPE_CHECKING:
    from .context import BotContext
    from .presence_tracker import PresenceTracker
    from .users import User


class RewardScheduler:
    """Base periodic rewarder. Subclasses implement ``_reward``."""

    name = "reward"

    def __init__(
        self,
        presence: PresenceTracker,
        interval_seconds: float,
        idle_minutes: float,
        logger: logging.Logger | None = None,
    ) -> None:
        self._presence = presence
        self._interval = interval_seconds
        self._idle_minutes = idle_minutes
        self._logger = logger or logging.getLogger(f"medbot.scheduler.{self.name}")
        self._task: asyncio.Task | None = None
        self.ticks: int = 0

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self.is_running:
            self._logger.warning("%s scheduler already running", self.name)
            return
        self._task = asyncio.create_task(self._loop())
        self._logger.info("%s scheduler started (interval: %.0fs)", self.name, self._interval)

    async def stop(self) -> None:
        if not self.is_running:
            self._logger.warning("%s scheduler is not running", self.name)
            return
        task, self._task = self._task, None
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        self._logger.info("%s scheduler stopped", self.name)

    async def tick(self, now: datetime | None = None) -> int:
        """Reward every eligible online user once. Returns how many were rewarded."""
        users = self._presence.online_users()
        if not users:
            return 0

        now = now or now_utc()
        rewarded = 0
        for user in users:
            if user.last_message is None or self._presence.is_blacklisted(user):
                continue
            active = user.is_active(self._idle_minutes, now)
            if self._reward(user, active):
                rewarded += 1

        self.ticks += 1
        await self._presence.flush()
        return rewarded

    def _reward(self, user: User, active: bool) -> bool:
        raise NotImplementedError

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                rewarded = await self.tick()
                self._logger.debug("%s tick rewarded %d users", self.name, rewarded)
            except Exception:
                self._logger.exception("%s tick error", self.name)


class PointsScheduler(RewardScheduler):
    """Pays currency to chatters; idle users only when ``reward_idles`` is on."""

    name = "points"

    def __init__(
        self,
        context: BotContext,
        presence: PresenceTracker,
        logger: logging.Logger | None = None,
    ) -> None:
        currency = context.config.currency
        super().__init__(
            presence,
            interval_seconds=currency.tick_interval_seconds,
            idle_minutes=currency.idle_minutes,
            logger=logger,
        )
        self._amount = currency.points_per_tick
        self._reward_idles = currency.reward_idles

    def _reward(self, user: User, active: bool) -> bool:
        if not active and not self._reward_idles:
            return False
        self._presence.reward(user, points=self._amount)
        return True


class ExperienceScheduler(RewardScheduler):
    """Pays experience (less for idle users) and announces rank-ups."""

    name = "experience"

    def __init__(
        self,
        context: BotContext,
        presence: PresenceTracker,
        logger: logging.Logger | None = None,
    ) -> None:
        experience = context.config.experience
        super().__init__(
            presence,
            interval_seconds=experience.tick_interval_seconds,
            idle_minutes=experience.idle_minutes,
            logger=logger,
        )
        self._active_exp = experience.active_exp
        self._idle_exp = experience.idle_exp

    def _reward(self, user: User, active: bool) -> bool:
        self._presence.reward(user, experience=self._active_exp if active else self._idle_exp)
        return True
