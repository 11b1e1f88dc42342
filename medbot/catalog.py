"""Command catalog and rank table loaders.

Both catalogs are YAML data files validated with Pydantic entry models.
Rank tables may also be given in the legacy plain-text form, one
``<exp>\\t<name>`` pair per line, levels numbered in file order.
A missing file yields an empty catalog.
"""

from __future__ import annotations

import logging
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, ValidationError

from .commands import (
    CommandDefinition,
    PermissionTier,
    parse_category,
    parse_handler,
)
from .exceptions import RankTableError
from .ranks import RankTable

logger = logging.getLogger("medbot.catalog")


class CommandEntry(BaseModel):
    format: str
    category: str
    handler: str
    permission: PermissionTier = PermissionTier.EVERYONE
    whisper: bool = False
    cooldown: float = Field(default=0.0, ge=0)
    about: str = ""
    success: str = ""
    fail: str = ""
    error: str = ""

    def to_definition(self) -> CommandDefinition:
        return CommandDefinition(
            format=self.format.strip(),
            category=parse_category(self.category),
            handler=parse_handler(self.handler),
            permission=self.permission,
            whisper=self.whisper,
            cooldown=self.cooldown,
            about=self.about,
            success_message=self.success,
            fail_message=self.fail,
            error_message=self.error,
        )


class CommandCatalog(BaseModel):
    commands: list[CommandEntry] = Field(default_factory=list)


class RankEntry(BaseModel):
    name: str
    exp: int = Field(ge=0)


class RankCatalog(BaseModel):
    ranks: list[RankEntry] = Field(default_factory=list)


def _read_yaml(path: Path) -> dict:
    with open(path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f)
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ValueError(f"{path} must contain a YAML mapping at the top level.")
    return raw


def load_commands(path: str | Path) -> list[CommandDefinition]:
    """Load command definitions in file order."""
    path = Path(path)
    if not path.is_file():
        logger.warning("Command catalog not found: %s", path)
        return []
    try:
        catalog = CommandCatalog(**_read_yaml(path))
    except (ValidationError, ValueError, yaml.YAMLError):
        logger.exception("Failed to load command catalog %s", path)
        return []
    commands = [entry.to_definition() for entry in catalog.commands]
    logger.info("Loaded %d commands from %s", len(commands), path)
    return commands


def load_ranks(path: str | Path) -> RankTable:
    """Load the rank table from YAML or the tab-separated text form."""
    path = Path(path)
    if not path.is_file():
        logger.warning("Rank table not found: %s", path)
        return RankTable()
    try:
        if path.suffix.lower() in (".txt", ".tsv"):
            table = RankTable.from_thresholds(_read_rank_lines(path))
        else:
            catalog = RankCatalog(**_read_yaml(path))
            table = RankTable.from_thresholds((r.exp, r.name) for r in catalog.ranks)
    except (ValidationError, ValueError, yaml.YAMLError, RankTableError):
        logger.exception("Failed to load rank table %s", path)
        return RankTable()
    logger.info("Loaded %d ranks from %s", len(table), path)
    return table


def _read_rank_lines(path: Path) -> list[tuple[int, str]]:
    entries: list[tuple[int, str]] = []
    with open(path, "r", encoding="utf-8") as f:
        for lineno, line in enumerate(f, start=1):
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            exp, sep, name = line.partition("\t")
            if not sep:
                raise ValueError(f"{path}:{lineno}: expected '<exp>\\t<name>'")
            entries.append((int(exp), name.strip()))
    return entries
