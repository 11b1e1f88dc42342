"""Shared runtime context passed to every component."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from .ranks import RankTable

if TYPE_CHECKING:
    from .config import MedbotConfig


@dataclass
class BotContext:
    """Configuration plus the few runtime flags components share.

    ``bot_is_moderator`` is learned from USERSTATE lines and raises the
    outbound throttle ceiling. ``colored_messages`` starts from config and can
    be toggled by a chat command. ``commands_file_found`` tells an empty
    catalog file apart from a missing one.
    """

    config: MedbotConfig
    rank_table: RankTable = field(default_factory=RankTable)
    bot_is_moderator: bool = False
    commands_file_found: bool = True
    colored_messages: bool = field(init=False, default=False)

    def __post_init__(self) -> None:
        self.colored_messages = self.config.settings.colored_messages

    @property
    def bot_name(self) -> str:
        return self.config.login.bot_name

    @property
    def channel(self) -> str:
        return self.config.login.channel
