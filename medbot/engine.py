"""Connection engine — owns the transport and the read loop.

One tick every ``connection.tick_interval_ms``: reconnect when the link is
down, otherwise wait up to one tick for a single line and act on it. Chat
commands flow match → gate → dispatch → throttle → wire. Transport faults
never escape a tick; they drop the link and the next tick reconnects.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import TYPE_CHECKING

from .cooldowns import GateDecision
from .line_classifier import (
    KEEPALIVE_PONG,
    Badge,
    ChatMessage,
    Join,
    Keepalive,
    Part,
    StateUpdate,
    classify,
)
from .notifications import CommandThrottled, MessageThrottled, RankUp
from .utils import safe_format

if TYPE_CHECKING:
    from .commands import CommandDefinition, CommandMatcher
    from .context import BotContext
    from .cooldowns import PermissionAndCooldownGate
    from .dispatcher import CommandDispatcher
    from .notifications import Notification, Notifier
    from .presence_tracker import PresenceTracker
    from .throttle import OutboundThrottle
    from .transport import LineTransport
    from .users import User


class ConnectionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class ConnectionEngine:
    """Keeps the bot in its channel and drives the inbound pipeline."""

    def __init__(
        self,
        context: BotContext,
        transport: LineTransport,
        presence: PresenceTracker,
        matcher: CommandMatcher,
        gate: PermissionAndCooldownGate,
        dispatcher: CommandDispatcher,
        throttle: OutboundThrottle,
        notifier: Notifier,
        logger: logging.Logger | None = None,
    ) -> None:
        self._context = context
        self._config = context.config
        self._transport = transport
        self._presence = presence
        self._matcher = matcher
        self._gate = gate
        self._dispatcher = dispatcher
        self._throttle = throttle
        self._notifier = notifier
        self._logger = logger or logging.getLogger("medbot.engine")

        self._state = ConnectionState.DISCONNECTED
        self._running = False
        self._task: asyncio.Task | None = None
        self._tick_seconds = self._config.connection.tick_interval_ms / 1000

        # Counters
        self.lines_processed: int = 0
        self.commands_processed: int = 0

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    @property
    def is_running(self) -> bool:
        return self._running

    # ══════════════════════════════════════════════════════════
    #  Lifecycle
    # ══════════════════════════════════════════════════════════

    async def start(self) -> None:
        if self._running:
            self._logger.warning("Engine already running")
            return
        self._running = True
        await self._notifier.start(self.handle_notification)
        self._task = asyncio.create_task(self._run_loop())
        self._logger.info("Engine started for #%s", self._context.channel)

    async def stop(self) -> None:
        """Stop the read loop and leave the channel. Safe to call repeatedly."""
        if not self._running:
            return
        self._running = False
        if self._task:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
            self._task = None
        if self.is_connected:
            await self.disconnect()
        await self._notifier.stop()
        self._gate.close()
        self._throttle.close()
        self._logger.info("Engine stopped (%d lines, %d commands)", self.lines_processed, self.commands_processed)

    async def wait_closed(self) -> None:
        """Block until the read loop ends."""
        if self._task:
            await asyncio.gather(self._task, return_exceptions=True)

    async def connect(self) -> bool:
        """Open the link, authenticate and join the channel. Never raises."""
        if self.is_connected:
            return True
        self._state = ConnectionState.CONNECTING
        login = self._config.login
        token = login.oauth if login.oauth.startswith("oauth:") else f"oauth:{login.oauth}"

        try:
            await self._transport.open()
            await self._transport.write_lines([
                f"PASS {token}",
                f"NICK {login.bot_name}",
                f"USER {login.bot_name} 8 * :{login.bot_name}",
            ])
            await self._transport.write_lines([
                "CAP REQ :twitch.tv/membership",
                "CAP REQ :twitch.tv/tags",
                "CAP REQ :twitch.tv/commands",
                f"JOIN #{login.channel}",
            ])
            self._state = ConnectionState.CONNECTED

            if self._config.connection.send_greeting:
                await self.send_chat(self._config.dictionary.welcome_message)
            if len(self._matcher) == 0:
                words = self._config.dictionary
                await self.send_chat(
                    words.zero_commands if self._context.commands_file_found else words.commands_not_found
                )
        except Exception:
            self._logger.exception("Failed to connect to %s:%d", login.host, login.port)
            await self._mark_disconnected()
            return False

        self._logger.info("Joined #%s as %s", login.channel, login.bot_name)
        return True

    async def disconnect(self) -> None:
        """Say goodbye, persist presence and close the link."""
        if not self.is_connected:
            self._logger.warning("Disconnect requested while %s", self._state.value)
            return

        if self._config.connection.send_farewell:
            try:
                await self.send_chat(self._config.dictionary.goodbye_message)
            except (ConnectionError, OSError) as e:
                self._logger.warning("Could not send farewell: %s", e)

        await self._presence.flush()
        await self._mark_disconnected()
        await self._presence.clear()
        self._logger.info("Disconnected from #%s", self._context.channel)

    async def _mark_disconnected(self) -> None:
        self._state = ConnectionState.DISCONNECTED
        try:
            await self._transport.close()
        except Exception:
            self._logger.exception("Error closing transport")

    # ══════════════════════════════════════════════════════════
    #  Read loop
    # ══════════════════════════════════════════════════════════

    async def _run_loop(self) -> None:
        while self._running:
            await self.tick()

    async def tick(self) -> None:
        """One read-loop step: reconnect, or read and handle at most one line."""
        if not self.is_connected:
            await self.connect()
            await asyncio.sleep(self._tick_seconds)
            return

        try:
            line = await self._transport.read_line(timeout=self._tick_seconds)
            if line is None:
                return
            await self.handle_line(line)
        except (ConnectionError, OSError) as e:
            self._logger.error("Transport failure, reconnecting: %s", e)
            await self._mark_disconnected()
        except Exception:
            self._logger.exception("Error handling inbound line")

    async def handle_line(self, line: str) -> None:
        self.lines_processed += 1
        event = classify(line)

        if isinstance(event, ChatMessage):
            await self._on_chat_message(event)
        elif isinstance(event, Join):
            await self._presence.join_or_get(event.username)
        elif isinstance(event, Part):
            await self._presence.disconnect(event.username)
        elif isinstance(event, StateUpdate):
            self._on_state_update(event)
        elif isinstance(event, Keepalive):
            await self._transport.write_lines([KEEPALIVE_PONG])
        else:
            self._logger.debug("Unhandled line: %s", line)

    async def _on_chat_message(self, event: ChatMessage) -> None:
        user = await self._presence.record_chat(
            event.sender, event.display_name, event.user_id, event.badges
        )
        if event.badges is not None and user.username == self._context.bot_name:
            self._context.bot_is_moderator = user.is_moderator or user.is_broadcaster

        if event.text.startswith("!"):
            await self._handle_command(user, event.text)

    def _on_state_update(self, event: StateUpdate) -> None:
        if event.username != self._context.bot_name or event.badges is None:
            return
        is_moderator = bool({Badge.MODERATOR, Badge.BROADCASTER} & event.badges)
        if is_moderator != self._context.bot_is_moderator:
            self._logger.info("Bot moderator status: %s", is_moderator)
        self._context.bot_is_moderator = is_moderator

    async def _handle_command(self, user: User, text: str) -> None:
        match = self._matcher.match(text)
        if match is None:
            return

        decision = self._gate.check(match.command, user)
        if decision is GateDecision.DENIED:
            await self._deliver(match.command, user, self._config.dictionary.insufficient_permissions)
            return
        if decision is GateDecision.THROTTLED:
            return

        self.commands_processed += 1
        result = await self._dispatcher.execute(match.command, user, match.args)
        if result:
            await self._deliver(match.command, user, result)

    async def _deliver(self, command: CommandDefinition, user: User, message: str) -> None:
        if command.whisper:
            await self.send_whisper(user.username, message)
        else:
            await self.send_chat(message)

    # ══════════════════════════════════════════════════════════
    #  Outbound
    # ══════════════════════════════════════════════════════════

    async def send_chat(self, message: str) -> bool:
        """Send a public message, ``/me``-prefixed when colored messages are on."""
        if self._context.colored_messages:
            return await self._send(message, f"/me {message}")
        return await self._send(message, message)

    async def send_command(self, command: str) -> bool:
        """Send a slash command (``/color ...``) to the channel as is."""
        return await self._send(command, command)

    async def send_whisper(self, username: str, message: str) -> bool:
        return await self._send(message, f"/w {username} {message}")

    async def _send(self, message: str, payload: str) -> bool:
        if not self.is_connected:
            self._logger.warning("Dropping outbound message while %s", self._state.value)
            return False
        if not self._throttle.allow(message):
            return False
        await self._transport.write_lines([f"PRIVMSG #{self._context.channel} :{payload}"])
        return True

    # ══════════════════════════════════════════════════════════
    #  Notifications
    # ══════════════════════════════════════════════════════════

    async def handle_notification(self, notification: Notification) -> None:
        if isinstance(notification, RankUp):
            user, rank = notification.user, notification.rank
            await self.send_chat(
                safe_format(
                    self._config.dictionary.new_rank_message,
                    user.display_name,
                    rank.level,
                    rank.name,
                    logger=self._logger,
                )
            )
        elif isinstance(notification, CommandThrottled):
            self._logger.debug(
                "%s throttled (%.0fs cooldown)", notification.command.name, notification.interval
            )
        elif isinstance(notification, MessageThrottled):
            self._logger.debug("Outbound message dropped: %s", notification.violation.value)
        else:
            self._logger.debug("Notification: %r", notification)
