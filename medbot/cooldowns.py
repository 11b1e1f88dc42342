"""Permission and cooldown gate for chat commands.

Cooldowns are per command, shared by every sender. The first permitted use
sets the command's flag and schedules its reset with ``loop.call_later``;
further uses while the flag is set are throttled and reported on the
notification channel. Check-and-set has no suspension point, so concurrent
callers on the event loop cannot both pass.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import TYPE_CHECKING

from .commands import CommandDefinition, PermissionTier
from .notifications import CommandThrottled

if TYPE_CHECKING:
    from .notifications import Notifier
    from .users import User


class GateDecision(Enum):
    ALLOWED = "allowed"
    DENIED = "denied"
    THROTTLED = "throttled"


def has_permission(command: CommandDefinition, sender: User) -> bool:
    """Broadcaster tier needs the broadcaster; moderator tier accepts either role."""
    if command.permission is PermissionTier.BROADCASTER:
        return sender.is_broadcaster
    if command.permission is PermissionTier.MODERATOR:
        return sender.is_moderator or sender.is_broadcaster
    return True


class PermissionAndCooldownGate:
    """Decides whether a sender may run a command right now."""

    def __init__(
        self,
        notifier: Notifier | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._notifier = notifier
        self._logger = logger or logging.getLogger("medbot.gate")
        # {command format: pending reset handle}
        self._timers: dict[str, asyncio.TimerHandle] = {}
        self._throttled: set[str] = set()

    # ══════════════════════════════════════════════════════════
    #  Public API
    # ══════════════════════════════════════════════════════════

    def check(self, command: CommandDefinition, sender: User) -> GateDecision:
        if not has_permission(command, sender):
            return GateDecision.DENIED

        if command.cooldown <= 0:
            return GateDecision.ALLOWED

        if self.is_throttled(command):
            self._logger.debug("Command %s is cooling down", command.name)
            if self._notifier is not None:
                self._notifier.publish(CommandThrottled(command=command, interval=command.cooldown))
            return GateDecision.THROTTLED

        key = command.format
        self._throttled.add(key)
        loop = asyncio.get_running_loop()
        self._timers[key] = loop.call_later(command.cooldown, self._clear, key)
        return GateDecision.ALLOWED

    def is_allowed(self, command: CommandDefinition, sender: User) -> bool:
        return self.check(command, sender) is GateDecision.ALLOWED

    def is_throttled(self, command: CommandDefinition) -> bool:
        return command.format in self._throttled

    def reset_cooldown(self, command: CommandDefinition) -> None:
        """Clear the command's cooldown ahead of its timer."""
        self._clear(command.format)

    def close(self) -> None:
        """Cancel every pending reset timer."""
        for handle in self._timers.values():
            handle.cancel()
        self._timers.clear()
        self._throttled.clear()

    # ── Internal ─────────────────────────────────────────────

    def _clear(self, key: str) -> None:
        handle = self._timers.pop(key, None)
        if handle is not None:
            handle.cancel()
        self._throttled.discard(key)
