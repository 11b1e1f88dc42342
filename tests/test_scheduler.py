"""Tests for the points and experience reward schedulers."""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta
from unittest.mock import AsyncMock

from medbot.config import MedbotConfig
from medbot.context import BotContext
from medbot.database import UserStore
from medbot.notifications import Notifier, RankUp
from medbot.presence_tracker import PresenceTracker
from medbot.ranks import RankTable
from medbot.scheduler import ExperienceScheduler, PointsScheduler
from medbot.utils import now_utc

from conftest import make_config_dict


async def _seed(presence: PresenceTracker):
    """alice active, bob idle, carol never chatted, nightbot blacklisted."""
    now = now_utc()
    alice = await presence.join_or_get("alice")
    alice.touch(now - timedelta(minutes=1))
    bob = await presence.join_or_get("bob")
    bob.touch(now - timedelta(minutes=10))
    carol = await presence.join_or_get("carol")
    nightbot = await presence.join_or_get("nightbot")
    nightbot.touch(now)
    return alice, bob, carol, nightbot


class TestPointsTick:
    """Currency rewards."""

    async def test_active_only(self, context: BotContext, presence: PresenceTracker):
        alice, bob, carol, nightbot = await _seed(presence)
        scheduler = PointsScheduler(context, presence, logging.getLogger("test"))
        assert await scheduler.tick() == 1
        assert (alice.points, bob.points, carol.points, nightbot.points) == (1, 0, 0, 0)

    async def test_reward_idles(self, rank_table: RankTable, store: UserStore, notifier: Notifier):
        config = MedbotConfig(**make_config_dict(currency={"reward_idles": True, "points_per_tick": 3}))
        context = BotContext(config=config, rank_table=rank_table)
        presence = PresenceTracker(context, store, notifier)
        alice, bob, carol, _ = await _seed(presence)

        await PointsScheduler(context, presence).tick()
        assert (alice.points, bob.points, carol.points) == (3, 3, 0)

    async def test_empty_presence(self, context: BotContext, presence: PresenceTracker):
        scheduler = PointsScheduler(context, presence)
        assert await scheduler.tick() == 0
        assert scheduler.ticks == 0

    async def test_one_flush_per_tick(self, context: BotContext, presence: PresenceTracker):
        await _seed(presence)
        presence.flush = AsyncMock()
        await PointsScheduler(context, presence).tick()
        presence.flush.assert_awaited_once()

    async def test_tick_persists(self, context: BotContext, presence: PresenceTracker, store: UserStore):
        await _seed(presence)
        await PointsScheduler(context, presence).tick()
        assert (await store.get_user("alice"))["points"] == 1


class TestExperienceTick:
    """Experience rewards and rank-ups."""

    async def test_active_and_idle(self, context: BotContext, presence: PresenceTracker):
        alice, bob, carol, nightbot = await _seed(presence)
        await ExperienceScheduler(context, presence).tick()
        assert (alice.experience, bob.experience, carol.experience, nightbot.experience) == (5, 1, 0, 0)

    async def test_rank_up_notification(self, context: BotContext, presence: PresenceTracker, notifier: Notifier):
        alice, *_ = await _seed(presence)
        alice.experience = 98
        notifier.drain()

        await ExperienceScheduler(context, presence).tick()
        rank_ups = [n for n in notifier.drain() if isinstance(n, RankUp)]
        assert len(rank_ups) == 1
        assert rank_ups[0].user is alice
        assert rank_ups[0].rank.name == "Nurse"


class TestLifecycle:
    """start/stop idempotence and the periodic loop."""

    async def test_start_stop_idempotent(self, context: BotContext, presence: PresenceTracker, caplog):
        scheduler = PointsScheduler(context, presence)
        await scheduler.start()
        await scheduler.start()
        assert scheduler.is_running
        assert "already running" in caplog.text

        await scheduler.stop()
        await scheduler.stop()
        assert not scheduler.is_running
        assert "not running" in caplog.text

    async def test_loop_ticks_and_survives_errors(self, rank_table: RankTable, store: UserStore, notifier: Notifier):
        config = MedbotConfig(**make_config_dict(currency={"tick_interval_seconds": 0.01}))
        context = BotContext(config=config, rank_table=rank_table)
        presence = PresenceTracker(context, store, notifier)
        alice, *_ = await _seed(presence)
        presence.flush = AsyncMock(side_effect=[RuntimeError("boom"), None, None, None, None, None])

        scheduler = PointsScheduler(context, presence)
        await scheduler.start()
        await asyncio.sleep(0.06)
        await scheduler.stop()
        assert alice.points >= 2
