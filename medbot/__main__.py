"""Command-line entry point: ``medbot --config config.yaml``.

``--validate-config`` checks everything the bot needs before it can join a
channel (credentials, the command catalog and the rank table) and exits with
a non-zero status when the bot could not run.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
from pathlib import Path

import yaml

from . import __version__
from .catalog import load_commands, load_ranks
from .commands import CommandCategory, HandlerType
from .config import load_config
from .main import BotApp

CONFIG_CANDIDATES = (
    "./config.yaml",
    "~/.config/medbot/config.yaml",
    "/etc/medbot/config.yaml",
)

logger = logging.getLogger("medbot")


def setup_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="medbot",
        description="Chat bot with a points and experience economy for Twitch channels",
    )
    parser.add_argument("--config", type=str, help="Path to config.yaml")
    parser.add_argument("--log-level", type=str, default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    parser.add_argument(
        "--validate-config",
        action="store_true",
        help="Check the config, command catalog and rank table, then exit",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def find_config(explicit: str | None) -> Path | None:
    """The explicit path when given, else the first candidate that exists."""
    if explicit:
        return Path(explicit)
    for candidate in CONFIG_CANDIDATES:
        path = Path(candidate).expanduser()
        if path.is_file():
            return path
    return None


def validate(config_path: Path) -> bool:
    """Load config and catalogs the way the bot would. Returns False on any blocking problem."""
    try:
        config = load_config(str(config_path))
    except (OSError, ValueError, yaml.YAMLError) as e:
        logger.error("Config %s is invalid: %s", config_path, e)
        return False

    ok = True
    if not config.login.oauth:
        logger.error("login.oauth is empty; the bot cannot authenticate")
        ok = False
    if not config.login.channel:
        logger.error("login.channel is empty; the bot has nowhere to join")
        ok = False

    commands = load_commands(config.data.commands_path)
    if not commands:
        logger.error("No commands loaded from %s", config.data.commands_path)
        ok = False
    for command in commands:
        if command.category is CommandCategory.UNKNOWN or command.handler is HandlerType.UNKNOWN:
            logger.warning("%s has no handler and will answer %r", command.format, "Unknown handler")

    ranks = load_ranks(config.data.ranks_path)
    if not ranks:
        logger.warning("No ranks loaded from %s; rank commands will reply with their fail message",
                       config.data.ranks_path)

    if ok:
        logger.info(
            "Config OK: #%s as %s, %d commands, %d ranks",
            config.login.channel, config.login.bot_name, len(commands), len(ranks),
        )
    return ok


async def run(config_path: Path) -> None:
    app = BotApp(str(config_path))

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, lambda: asyncio.ensure_future(app.stop()))
        except NotImplementedError:
            # Windows event loops have no signal handlers; Ctrl+C raises instead.
            pass

    try:
        await app.start()
    finally:
        await app.stop()


def main(argv: list[str] | None = None) -> int:
    """Entry point for ``[project.scripts]``. Returns the process exit status."""
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level)

    config_path = find_config(args.config)
    if config_path is None:
        logger.error("No config file found. Use --config or place config.yaml in one of: %s",
                     ", ".join(CONFIG_CANDIDATES))
        return 1

    if args.validate_config:
        return 0 if validate(config_path) else 1

    try:
        asyncio.run(run(config_path))
    except KeyboardInterrupt:
        pass
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
