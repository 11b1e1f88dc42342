"""Service orchestrator — BotApp.

config → store init → catalogs → components → engine + schedulers → run.
"""

from __future__ import annotations

import logging
from pathlib import Path

from . import __version__
from .commands import CommandMatcher
from .config import MedbotConfig, load_config
from .context import BotContext
from .cooldowns import PermissionAndCooldownGate
from .database import UserStore
from .dispatcher import CommandDispatcher
from .engine import ConnectionEngine
from .helix_client import HelixClient
from .notifications import Notifier
from .presence_tracker import PresenceTracker
from .scheduler import ExperienceScheduler, PointsScheduler
from .throttle import OutboundThrottle
from .transport import IrcTransport


class BotApp:
    """Top-level application orchestrator."""

    def __init__(self, config_path: str | None = None, config: MedbotConfig | None = None) -> None:
        self.config_path = Path(config_path) if config_path else None
        self.logger = logging.getLogger("medbot")

        # Components (initialized in start())
        self.config: MedbotConfig | None = config
        self.context: BotContext | None = None
        self.store: UserStore | None = None
        self.notifier: Notifier | None = None
        self.presence_tracker: PresenceTracker | None = None
        self.matcher: CommandMatcher | None = None
        self.gate: PermissionAndCooldownGate | None = None
        self.throttle: OutboundThrottle | None = None
        self.helix_client: HelixClient | None = None
        self.dispatcher: CommandDispatcher | None = None
        self.engine: ConnectionEngine | None = None
        self.points_scheduler: PointsScheduler | None = None
        self.experience_scheduler: ExperienceScheduler | None = None

        self._running = False

    async def setup(self) -> None:
        """Build every component without touching the network."""
        # 1. Config
        if self.config is None:
            if self.config_path is None:
                raise ValueError("BotApp needs a config path or a config object")
            self.config = load_config(str(self.config_path))
            self.logger.info("Config loaded from %s", self.config_path)

        # 2. Store
        self.store = UserStore(
            self.config.database.path,
            logger=logging.getLogger("medbot.database"),
            commands_path=self.config.data.commands_path,
            ranks_path=self.config.data.ranks_path,
        )
        await self.store.initialize()
        self.logger.info("Database initialized: %s", self.config.database.path)

        # 3. Catalogs
        rank_table = await self.store.load_rank_table()
        commands = await self.store.load_command_catalog()
        self.context = BotContext(
            config=self.config,
            rank_table=rank_table,
            commands_file_found=Path(self.config.data.commands_path).is_file(),
        )

        # 4. Components
        self.notifier = Notifier()
        self.presence_tracker = PresenceTracker(self.context, self.store, self.notifier)
        self.matcher = CommandMatcher(commands)
        self.gate = PermissionAndCooldownGate(self.notifier)
        self.throttle = OutboundThrottle(self.context, self.notifier)
        self.helix_client = HelixClient(self.config.api, self.config.login)
        self.dispatcher = CommandDispatcher(
            context=self.context,
            presence=self.presence_tracker,
            store=self.store,
            gate=self.gate,
            matcher=self.matcher,
            helix=self.helix_client,
        )
        transport = IrcTransport(
            self.config.login.host,
            self.config.login.port,
            connect_timeout=self.config.connection.connect_timeout_seconds,
        )
        self.engine = ConnectionEngine(
            context=self.context,
            transport=transport,
            presence=self.presence_tracker,
            matcher=self.matcher,
            gate=self.gate,
            dispatcher=self.dispatcher,
            throttle=self.throttle,
            notifier=self.notifier,
        )
        # Wire late references
        self.dispatcher._send_chat = self.engine.send_command

        self.points_scheduler = PointsScheduler(self.context, self.presence_tracker)
        self.experience_scheduler = ExperienceScheduler(self.context, self.presence_tracker)

    async def start(self) -> None:
        """Set up, connect and block until stopped."""
        await self.setup()
        await self.helix_client.start()
        await self.engine.start()
        await self.points_scheduler.start()
        await self.experience_scheduler.start()

        self._running = True
        self.logger.info("medbot started successfully (v%s)", __version__)

        await self.engine.wait_closed()

    async def stop(self) -> None:
        """Gracefully shut down all components in reverse order."""
        if not self._running:
            return
        self.logger.info("Shutting down medbot...")
        self._running = False

        if self.experience_scheduler and self.experience_scheduler.is_running:
            await self.experience_scheduler.stop()
        if self.points_scheduler and self.points_scheduler.is_running:
            await self.points_scheduler.stop()
        if self.engine:
            await self.engine.stop()
        if self.presence_tracker:
            await self.presence_tracker.flush()
        if self.helix_client:
            await self.helix_client.stop()

        self.logger.info("medbot stopped.")
