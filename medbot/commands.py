"""Command definitions and the chat-text → command matcher.

A command format is the literal chat syntax with positional placeholders::

    !addgold {0} {1}      {0} = number, {1} = word

Matching is two-staged: a cheap candidate scan (first token is a substring
of the format and token counts agree, first registered wins), then an
anchored case-insensitive regex check on the whole text. A text that fails
the regex check is discarded without trying later commands.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Iterable

logger = logging.getLogger("medbot.commands")


# ═══════════════════════════════════════════════════════════════
#  Enums
# ═══════════════════════════════════════════════════════════════


class CommandCategory(Enum):
    CURRENCY = "currency"
    EXPERIENCE = "experience"
    INTERNAL = "internal"
    UNKNOWN = "unknown"


class HandlerType(Enum):
    ADD = "add"
    ALL = "all"
    COLOR = "color"
    CHANGE_COLOR = "change_color"
    FOLLOW_AGE = "follow_age"
    GAMBLE = "gamble"
    HELP = "help"
    INFO = "info"
    INFO_SECOND = "info_second"
    LEADERBOARD = "leaderboard"
    LAST_FOLLOWER = "last_follower"
    TRADE = "trade"
    RANDOM = "random"
    REMOVE = "remove"
    UNKNOWN = "unknown"


class PermissionTier(Enum):
    EVERYONE = "everyone"
    MODERATOR = "moderator"
    BROADCASTER = "broadcaster"


# Accept the catalog spellings used by older data files as well
_CATEGORY_ALIASES = {"points": CommandCategory.CURRENCY, "xp": CommandCategory.EXPERIENCE}


def _normalise_key(value: str) -> str:
    return re.sub(r"(?<=[a-z0-9])(?=[A-Z])", "_", value.strip()).replace("-", "_").lower()


def parse_category(value: str) -> CommandCategory:
    """Total parse: unknown strings become ``CommandCategory.UNKNOWN``."""
    alias = _CATEGORY_ALIASES.get(value.strip().lower())
    if alias is not None:
        return alias
    key = _normalise_key(value)
    try:
        return CommandCategory(key)
    except ValueError:
        logger.warning("Unknown command category %r", value)
        return CommandCategory.UNKNOWN


def parse_handler(value: str) -> HandlerType:
    """Total parse: unknown strings become ``HandlerType.UNKNOWN``."""
    try:
        return HandlerType(_normalise_key(value))
    except ValueError:
        logger.warning("Unknown command handler %r", value)
        return HandlerType.UNKNOWN


# ═══════════════════════════════════════════════════════════════
#  Definitions
# ═══════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class CommandDefinition:
    """One catalog entry. Immutable; cooldown state lives in the gate."""

    format: str
    category: CommandCategory
    handler: HandlerType
    permission: PermissionTier = PermissionTier.EVERYONE
    whisper: bool = False
    cooldown: float = 0.0
    about: str = ""
    success_message: str = ""
    fail_message: str = ""
    error_message: str = ""

    @property
    def name(self) -> str:
        """The trigger token, e.g. ``!gold``."""
        return self.format.split()[0].lower() if self.format.split() else ""

    @property
    def arity(self) -> int:
        return max(len(self.format.split()) - 1, 0)

    @property
    def pattern(self) -> re.Pattern[str]:
        return compile_format(self.format)


@dataclass(frozen=True)
class CommandMatch:
    command: CommandDefinition
    args: list[str]


_PLACEHOLDERS = {"{0}": r"\d+", "{1}": r"\w+"}


def compile_format(fmt: str) -> re.Pattern[str]:
    """Anchored, case-insensitive regex for a command format."""
    tokens = []
    for token in fmt.split():
        parts = re.split(r"(\{[01]\})", token)
        tokens.append("".join(_PLACEHOLDERS.get(part, re.escape(part)) for part in parts))
    return re.compile("^" + r"\s+".join(tokens) + "$", re.IGNORECASE)


# ═══════════════════════════════════════════════════════════════
#  Matcher
# ═══════════════════════════════════════════════════════════════


class CommandMatcher:
    """Maps chat text onto the first matching registered command."""

    def __init__(
        self,
        commands: Iterable[CommandDefinition] = (),
        logger: logging.Logger | None = None,
    ) -> None:
        self._commands: list[CommandDefinition] = list(commands)
        self._logger = logger or logging.getLogger("medbot.matcher")
        self._patterns: dict[str, re.Pattern[str]] = {}

    @property
    def commands(self) -> list[CommandDefinition]:
        return list(self._commands)

    def __len__(self) -> int:
        return len(self._commands)

    def register(self, command: CommandDefinition) -> None:
        self._commands.append(command)

    def find_by_name(self, name: str) -> CommandDefinition | None:
        """Look a command up by its trigger token (``!`` optional)."""
        key = name.lower()
        if not key.startswith("!"):
            key = "!" + key
        for command in self._commands:
            if command.name == key:
                return command
        return None

    def match(self, text: str) -> CommandMatch | None:
        tokens = text.split()
        if not tokens:
            return None
        candidate = tokens[0].lower()

        for command in self._commands:
            if candidate in command.format.lower() and len(tokens) - 1 == command.arity:
                if self._pattern_for(command).match(text.strip()) is None:
                    self._logger.debug("Command %r rejected %r", command.format, text)
                    return None
                return CommandMatch(command=command, args=tokens[1:])
        return None

    def _pattern_for(self, command: CommandDefinition) -> re.Pattern[str]:
        pattern = self._patterns.get(command.format)
        if pattern is None:
            pattern = command.pattern
            self._patterns[command.format] = pattern
        return pattern
