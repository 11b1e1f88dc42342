"""Shared test fixtures for medbot."""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from pathlib import Path
from typing import AsyncGenerator, Iterable

import pytest
import pytest_asyncio

from medbot.commands import (
    CommandCategory,
    CommandDefinition,
    CommandMatcher,
    HandlerType,
    PermissionTier,
)
from medbot.config import MedbotConfig
from medbot.context import BotContext
from medbot.cooldowns import PermissionAndCooldownGate
from medbot.database import UserStore
from medbot.dispatcher import CommandDispatcher
from medbot.engine import ConnectionEngine
from medbot.notifications import Notifier
from medbot.presence_tracker import PresenceTracker
from medbot.ranks import RankTable
from medbot.throttle import OutboundThrottle


# ── Minimal config dict matching MedbotConfig schema ─────────

def make_config_dict(**overrides) -> dict:
    """Build a valid config dict with sensible test defaults."""
    base = {
        "login": {
            "bot_name": "medbot",
            "oauth": "secret",
            "channel": "testchannel",
            "api_token": "token",
            "client_id": "client",
        },
        "connection": {"tick_interval_ms": 10, "send_greeting": False, "send_farewell": False},
        "database": {"path": ":memory:"},
        "currency": {
            "name": "gold",
            "plural": "gold",
            "units": "g",
            "tick_interval_seconds": 60,
            "idle_minutes": 5,
            "points_per_tick": 1,
            "reward_idles": False,
        },
        "experience": {
            "tick_interval_seconds": 60,
            "idle_minutes": 5,
            "active_exp": 5,
            "idle_exp": 1,
        },
        "gamble": {"win_percentage": 20, "bonus_win_percentage": 2},
        "settings": {"leaderboard_top": 3},
        "blacklist": ["NightBot"],
    }
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            base[key] = {**base[key], **value}
        else:
            base[key] = value
    return base


def make_command(
    fmt: str,
    category: CommandCategory = CommandCategory.CURRENCY,
    handler: HandlerType = HandlerType.INFO,
    **kwargs,
) -> CommandDefinition:
    """Build a CommandDefinition with readable default templates."""
    kwargs.setdefault("success_message", "ok")
    kwargs.setdefault("fail_message", "fail")
    kwargs.setdefault("error_message", "error")
    return CommandDefinition(format=fmt, category=category, handler=handler, **kwargs)


class FakeTransport:
    """In-memory LineTransport: feed inbound lines, inspect what was sent."""

    def __init__(self, fail_open: bool = False) -> None:
        self.fail_open = fail_open
        self.inbound: deque[str] = deque()
        self.sent: list[str] = []
        self.open_calls = 0
        self.peer_closed = False
        self._open = False

    @property
    def is_open(self) -> bool:
        return self._open

    def feed(self, *lines: str) -> None:
        self.inbound.extend(lines)

    async def open(self) -> None:
        self.open_calls += 1
        if self.fail_open:
            raise ConnectionRefusedError("refused")
        self._open = True
        self.peer_closed = False

    async def write_lines(self, lines: Iterable[str]) -> None:
        if not self._open:
            raise ConnectionError("Transport is not open")
        self.sent.extend(lines)

    async def read_line(self, timeout: float) -> str | None:
        await asyncio.sleep(0)
        if self.peer_closed:
            raise ConnectionError("Connection closed by server")
        if self.inbound:
            return self.inbound.popleft()
        return None

    async def close(self) -> None:
        self._open = False

    def chat_lines(self) -> list[str]:
        """Payloads of every PRIVMSG that went out."""
        return [line.split(" :", 1)[1] for line in self.sent if line.startswith("PRIVMSG")]


@pytest.fixture
def sample_config_dict() -> dict:
    """Return a config dict suitable for tests."""
    return make_config_dict()


@pytest.fixture
def sample_config(sample_config_dict: dict) -> MedbotConfig:
    """Return a parsed MedbotConfig."""
    return MedbotConfig(**sample_config_dict)


@pytest.fixture
def rank_table() -> RankTable:
    return RankTable.from_thresholds([(0, "Patient"), (100, "Nurse"), (500, "Doctor")])


@pytest.fixture
def context(sample_config: MedbotConfig, rank_table: RankTable) -> BotContext:
    return BotContext(config=sample_config, rank_table=rank_table)


@pytest.fixture
def tmp_db_path(tmp_path: Path) -> str:
    """Return a temporary SQLite database path."""
    return str(tmp_path / "test_medbot.db")


@pytest_asyncio.fixture
async def store(tmp_db_path: str) -> AsyncGenerator[UserStore, None]:
    """Provide an initialized store with temp file."""
    db = UserStore(tmp_db_path, logging.getLogger("test"))
    await db.initialize()
    yield db


@pytest.fixture
def notifier() -> Notifier:
    return Notifier(logging.getLogger("test"))


@pytest.fixture
def presence(context: BotContext, store: UserStore, notifier: Notifier) -> PresenceTracker:
    return PresenceTracker(context, store, notifier, logging.getLogger("test"))


@pytest.fixture
def commands() -> list[CommandDefinition]:
    """A small catalog covering each permission tier."""
    return [
        make_command(
            "!med",
            success_message="{0} has {1} {2}",
        ),
        make_command(
            "!addgold {0} {1}",
            handler=HandlerType.ADD,
            permission=PermissionTier.MODERATOR,
            success_message="{0} received {1} {2}",
        ),
        make_command(
            "!removegold {0} {1}",
            handler=HandlerType.REMOVE,
            permission=PermissionTier.MODERATOR,
            success_message="{0} lost {1} {2}",
            fail_message="{4} did not have {3} {1}",
        ),
        make_command(
            "!gamble {0}",
            handler=HandlerType.GAMBLE,
            cooldown=30,
        ),
        make_command(
            "!secret",
            category=CommandCategory.INTERNAL,
            handler=HandlerType.COLOR,
            permission=PermissionTier.BROADCASTER,
            success_message="colors {0}",
        ),
    ]


@pytest.fixture
def matcher(commands: list[CommandDefinition]) -> CommandMatcher:
    return CommandMatcher(commands, logging.getLogger("test"))


@pytest.fixture
def gate(notifier: Notifier) -> PermissionAndCooldownGate:
    gate = PermissionAndCooldownGate(notifier, logging.getLogger("test"))
    yield gate
    gate.close()


@pytest.fixture
def throttle(context: BotContext, notifier: Notifier) -> OutboundThrottle:
    throttle = OutboundThrottle(context, notifier, logging.getLogger("test"))
    yield throttle
    throttle.close()


@pytest.fixture
def dispatcher(
    context: BotContext,
    presence: PresenceTracker,
    store: UserStore,
    gate: PermissionAndCooldownGate,
    matcher: CommandMatcher,
) -> CommandDispatcher:
    return CommandDispatcher(
        context=context,
        presence=presence,
        store=store,
        gate=gate,
        matcher=matcher,
        logger=logging.getLogger("test"),
    )


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def engine(
    context: BotContext,
    transport: FakeTransport,
    presence: PresenceTracker,
    matcher: CommandMatcher,
    gate: PermissionAndCooldownGate,
    dispatcher: CommandDispatcher,
    throttle: OutboundThrottle,
    notifier: Notifier,
) -> ConnectionEngine:
    return ConnectionEngine(
        context=context,
        transport=transport,
        presence=presence,
        matcher=matcher,
        gate=gate,
        dispatcher=dispatcher,
        throttle=throttle,
        notifier=notifier,
        logger=logging.getLogger("test"),
    )
