"""Notification channel — typed records flowing from components to the engine.

Components publish without awaiting; a single consumer task drains the queue
and hands each record to the engine's handler. Handler errors are logged and
never stop the consumer.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Awaitable, Callable, Union

if TYPE_CHECKING:
    from .commands import CommandDefinition
    from .ranks import Rank
    from .users import User


class MessageViolation(Enum):
    MESSAGE_EMPTY = "message_empty"
    MESSAGE_LIMIT_EXCEEDED = "message_limit_exceeded"
    EXCESSIVE_SENDING = "excessive_sending"


@dataclass(frozen=True)
class UserJoined:
    username: str


@dataclass(frozen=True)
class UserDisconnected:
    username: str


@dataclass(frozen=True)
class RankUp:
    user: User
    rank: Rank


@dataclass(frozen=True)
class CommandThrottled:
    command: CommandDefinition
    interval: float


@dataclass(frozen=True)
class MessageThrottled:
    violation: MessageViolation
    message: str
    interval: float


Notification = Union[UserJoined, UserDisconnected, RankUp, CommandThrottled, MessageThrottled]
NotificationHandler = Callable[[Notification], Awaitable[None]]


class Notifier:
    """Queue-backed publish/consume channel."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._logger = logger or logging.getLogger("medbot.notifications")
        self._queue: asyncio.Queue[Notification] = asyncio.Queue()
        self._consumer_task: asyncio.Task | None = None
        self.published: int = 0

    # ── Lifecycle ────────────────────────────────────────────

    async def start(self, handler: NotificationHandler) -> None:
        """Start consuming notifications into ``handler``."""
        if self._consumer_task is not None:
            return
        self._consumer_task = asyncio.create_task(self._consume_loop(handler))

    async def stop(self) -> None:
        if self._consumer_task:
            self._consumer_task.cancel()
            try:
                await self._consumer_task
            except asyncio.CancelledError:
                pass
            self._consumer_task = None

    # ── Public API ───────────────────────────────────────────

    def publish(self, notification: Notification) -> None:
        self._queue.put_nowait(notification)
        self.published += 1

    def drain(self) -> list[Notification]:
        """Remove and return everything currently queued."""
        items: list[Notification] = []
        while not self._queue.empty():
            items.append(self._queue.get_nowait())
        return items

    # ── Internal ─────────────────────────────────────────────

    async def _consume_loop(self, handler: NotificationHandler) -> None:
        while True:
            notification = await self._queue.get()
            try:
                await handler(notification)
            except Exception:
                self._logger.exception("Notification handler failed for %r", notification)
