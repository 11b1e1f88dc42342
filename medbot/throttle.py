"""Outbound message throttle.

Chat servers drop or ban clients that send too fast. Every outbound message
passes through ``allow()``, which enforces a fixed-window ceiling (20 per
20 s, or 100 while the bot is a channel moderator) and a maximum length.
The window timer starts on first use and then resets the counter every
window regardless of traffic.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from .notifications import MessageThrottled, MessageViolation

if TYPE_CHECKING:
    from .context import BotContext
    from .notifications import Notifier

WINDOW_SECONDS = 20.0
MAX_MESSAGES = 20
MAX_MESSAGES_MODERATOR = 100
MAX_MESSAGE_LENGTH = 500


class OutboundThrottle:
    """Fixed-window rate limiter and validator for outbound messages."""

    def __init__(
        self,
        context: BotContext,
        notifier: Notifier | None = None,
        logger: logging.Logger | None = None,
        window_seconds: float = WINDOW_SECONDS,
    ) -> None:
        self._context = context
        self._notifier = notifier
        self._logger = logger or logging.getLogger("medbot.throttle")
        self._window = window_seconds
        self._sent_in_window = 0
        self._timer: asyncio.TimerHandle | None = None

    @property
    def sent_in_window(self) -> int:
        return self._sent_in_window

    @property
    def ceiling(self) -> int:
        return MAX_MESSAGES_MODERATOR if self._context.bot_is_moderator else MAX_MESSAGES

    def allow(self, message: str) -> bool:
        """Return True and count the message if it may be sent now."""
        self._ensure_timer()

        if not message or not message.strip():
            return self._reject(MessageViolation.MESSAGE_EMPTY, message)
        if len(message) >= MAX_MESSAGE_LENGTH:
            return self._reject(MessageViolation.MESSAGE_LIMIT_EXCEEDED, message)
        if self._sent_in_window >= self.ceiling:
            return self._reject(MessageViolation.EXCESSIVE_SENDING, message)

        self._sent_in_window += 1
        return True

    def close(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    # ── Internal ─────────────────────────────────────────────

    def _ensure_timer(self) -> None:
        if self._timer is None:
            loop = asyncio.get_running_loop()
            self._timer = loop.call_later(self._window, self._reset_window)

    def _reset_window(self) -> None:
        self._sent_in_window = 0
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self._window, self._reset_window)

    def _reject(self, violation: MessageViolation, message: str) -> bool:
        self._logger.warning("Outbound message throttled (%s): %.60r", violation.value, message)
        if self._notifier is not None:
            self._notifier.publish(
                MessageThrottled(violation=violation, message=message, interval=self._window)
            )
        return False
