"""Configuration system for medbot.

All Pydantic models are defined here with the defaults the bot ships with.
Command and rank catalogs live in separate YAML data files (see catalog.py);
this module only knows their paths.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator


# ═══════════════════════════════════════════════════════════════
#  Connection
# ═══════════════════════════════════════════════════════════════

class LoginConfig(BaseModel):
    bot_name: str = "medbot"
    oauth: str = ""
    channel: str = ""
    host: str = "irc.chat.twitch.tv"
    port: int = 6667
    # Helix API credentials (follower lookups)
    api_token: str = ""
    client_id: str = ""

    @field_validator("bot_name", "channel", mode="before")
    @classmethod
    def _lowercase(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip().lower().lstrip("#")
        return v


class ConnectionConfig(BaseModel):
    tick_interval_ms: int = Field(default=200, gt=0)
    connect_timeout_seconds: float = 10.0
    send_greeting: bool = True
    send_farewell: bool = True


class DatabaseConfig(BaseModel):
    path: str = "medbot.db"


class DataConfig(BaseModel):
    commands_path: str = "commands.yaml"
    ranks_path: str = "ranks.yaml"


class ApiConfig(BaseModel):
    base_url: str = "https://api.twitch.tv"
    timeout_seconds: float = 10.0
    cache_ttl_seconds: int = 60


# ═══════════════════════════════════════════════════════════════
#  Economy
# ═══════════════════════════════════════════════════════════════

class CurrencyConfig(BaseModel):
    name: str = "gold"
    plural: str = "gold"
    units: str = "g"
    tick_interval_seconds: float = Field(default=60.0, gt=0)
    idle_minutes: int = 5
    points_per_tick: int = 1
    reward_idles: bool = False


class ExperienceConfig(BaseModel):
    tick_interval_seconds: float = Field(default=60.0, gt=0)
    idle_minutes: int = 5
    active_exp: int = 5
    idle_exp: int = 1


class GambleConfig(BaseModel):
    win_percentage: int = Field(default=20, ge=0)
    bonus_win_percentage: int = Field(default=2, ge=0)

    @model_validator(mode="after")
    def _normalise(self) -> "GambleConfig":
        """Odds that leave no room for a loss fall back to 20/2."""
        if self.win_percentage + self.bonus_win_percentage >= 100:
            self.win_percentage = 20
            self.bonus_win_percentage = 2
        return self


# ═══════════════════════════════════════════════════════════════
#  Chat behaviour
# ═══════════════════════════════════════════════════════════════

class SettingsConfig(BaseModel):
    leaderboard_top: int = Field(default=3, ge=1)
    colored_messages: bool = False


class DictionaryConfig(BaseModel):
    """Fixed bot phrases. Positional ``{n}`` placeholders are documented per field."""

    welcome_message: str = "Hello everyone! medbot is here."
    goodbye_message: str = "medbot is leaving. Bye!"
    # {0} display name, {1} rank level, {2} rank name
    new_rank_message: str = "{0} got a new rank: [{1}] {2}!"
    insufficient_permissions: str = "You do not have enough permissions to do that!"
    zero_commands: str = "I'm helpless! I have no active commands! Notify the broadcaster!"
    commands_not_found: str = "Something went wrong! I can't find the file with all the commands!"
    yes: str = "Yes"
    no: str = "No"


class MedbotConfig(BaseModel):
    """Root configuration."""

    login: LoginConfig = Field(default_factory=LoginConfig)
    connection: ConnectionConfig = Field(default_factory=ConnectionConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    data: DataConfig = Field(default_factory=DataConfig)
    api: ApiConfig = Field(default_factory=ApiConfig)
    currency: CurrencyConfig = Field(default_factory=CurrencyConfig)
    experience: ExperienceConfig = Field(default_factory=ExperienceConfig)
    gamble: GambleConfig = Field(default_factory=GambleConfig)
    settings: SettingsConfig = Field(default_factory=SettingsConfig)
    dictionary: DictionaryConfig = Field(default_factory=DictionaryConfig)
    blacklist: list[str] = Field(default_factory=list)


# ═══════════════════════════════════════════════════════════════
#  Config Loading
# ═══════════════════════════════════════════════════════════════

def _expand_env_vars(obj: Any) -> Any:
    """Recursively expand ${VAR} and ${VAR:-default} in string values."""
    if isinstance(obj, str):
        return re.sub(
            r"\$\{([^}:]+)(?::-(.*?))?\}",
            lambda m: os.environ.get(m.group(1), m.group(2) or ""),
            obj,
        )
    elif isinstance(obj, dict):
        return {k: _expand_env_vars(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_expand_env_vars(v) for v in obj]
    return obj


def load_config(config_path: str) -> MedbotConfig:
    """Load and validate YAML config file into MedbotConfig."""
    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f)

    if not isinstance(raw, dict):
        raise ValueError("Config file must contain a YAML mapping at the top level.")

    raw = _expand_env_vars(raw)
    return MedbotConfig(**raw)
