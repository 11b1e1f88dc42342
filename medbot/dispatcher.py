"""Command dispatcher — executes a matched, permitted command.

Handlers are keyed by ``(category, handler)`` and always return the text to
send back, rendered from the command's success, fail or error template with
positional ``{n}`` arguments. Domain faults never escape ``execute``.
"""

from __future__ import annotations

import logging
import random
from datetime import timedelta
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from .commands import CommandCategory, HandlerType
from .cooldowns import has_permission
from .exceptions import CommandArgumentError, InsufficientPointsError
from .users import MAX_LEDGER_VALUE
from .utils import format_duration, now_utc, safe_format

if TYPE_CHECKING:
    from .commands import CommandDefinition, CommandMatcher
    from .context import BotContext
    from .cooldowns import PermissionAndCooldownGate
    from .database import UserStore
    from .helix_client import HelixClient
    from .presence_tracker import PresenceTracker
    from .users import User

UNKNOWN_HANDLER = "Unknown handler"
NOT_AVAILABLE = "N/A"
EXPERIENCE_LABEL = "XP"

_C = CommandCategory
_H = HandlerType


class CommandDispatcher:
    """Executes commands against presence, the store and the Helix API."""

    def __init__(
        self,
        context: BotContext,
        presence: PresenceTracker,
        store: UserStore,
        gate: PermissionAndCooldownGate,
        matcher: CommandMatcher,
        helix: HelixClient | None = None,
        send_chat: Callable[[str], Awaitable[Any]] | None = None,
        logger: logging.Logger | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self._context = context
        self._config = context.config
        self._presence = presence
        self._store = store
        self._gate = gate
        self._matcher = matcher
        self._helix = helix
        self._send_chat = send_chat
        self._logger = logger or logging.getLogger("medbot.dispatcher")
        self._rng = rng or random.Random()

    async def execute(self, command: CommandDefinition, sender: User, args: list[str]) -> str:
        handler = self._HANDLER_MAP.get((command.category, command.handler))
        if handler is None:
            self._logger.warning(
                "No handler for %s/%s (%s)", command.category.value, command.handler.value, command.format
            )
            return UNKNOWN_HANDLER

        try:
            return await handler(self, command, sender, args)
        except CommandArgumentError as e:
            self._logger.debug("Bad arguments for %s from %s: %s", command.name, sender.username, e)
            return self._render(command.error_message, sender.display_name, command.name)

    # ══════════════════════════════════════════════════════════
    #  Helpers
    # ══════════════════════════════════════════════════════════

    def _render(self, template: str, *args: Any) -> str:
        return safe_format(template, *args, logger=self._logger)

    @staticmethod
    def _expect(args: list[str], *counts: int) -> None:
        if len(args) not in counts:
            raise CommandArgumentError(f"expected {' or '.join(map(str, counts))} arguments, got {len(args)}")

    @staticmethod
    def _amount(value: str) -> int:
        if not value.isdecimal():
            raise CommandArgumentError(f"not a whole number: {value!r}")
        amount = int(value)
        if amount > MAX_LEDGER_VALUE:
            raise CommandArgumentError(f"amount out of range: {value}")
        return amount

    @property
    def _currency(self) -> tuple[str, str, str]:
        c = self._config.currency
        return c.name, c.plural, c.units

    def _zero_amount(self, command: CommandDefinition, *fail_args: Any) -> str:
        """A zero amount is a no-op: give the cooldown back and render fail."""
        self._gate.reset_cooldown(command)
        return self._render(command.fail_message, *fail_args)

    # ══════════════════════════════════════════════════════════
    #  Currency
    # ══════════════════════════════════════════════════════════

    async def _points_info(self, command: CommandDefinition, sender: User, args: list[str]) -> str:
        self._expect(args, 0)
        _, plural, units = self._currency
        return self._render(command.success_message, sender.display_name, sender.points, plural, units)

    async def _points_add(self, command: CommandDefinition, sender: User, args: list[str]) -> str:
        self._expect(args, 2)
        amount, target = self._amount(args[0]), args[1].lower()
        name, plural, units = self._currency
        if amount == 0:
            return self._zero_amount(command, name, plural, units, amount, target)

        await self._presence.add_points(target, amount)
        await self._presence.flush()
        self._logger.info("%s added %d %s to %s", sender.username, amount, plural, target)
        return self._render(command.success_message, target, amount, plural, units)

    async def _points_remove(self, command: CommandDefinition, sender: User, args: list[str]) -> str:
        self._expect(args, 2)
        amount, target = self._amount(args[0]), args[1].lower()
        name, plural, units = self._currency
        if amount == 0:
            return self._zero_amount(command, name, plural, units, amount, target)

        removed = await self._presence.remove_points(target, amount)
        await self._presence.flush()
        self._logger.info("%s removed %d %s from %s", sender.username, removed, plural, target)
        if removed < amount:
            return self._render(command.fail_message, name, plural, units, amount, target)
        return self._render(command.success_message, target, amount, plural, units)

    async def _points_all(self, command: CommandDefinition, sender: User, args: list[str]) -> str:
        self._expect(args, 1)
        amount = self._amount(args[0])
        _, plural, units = self._currency
        if amount == 0:
            return self._zero_amount(command, amount, plural, units, 0)

        rewarded = 0
        for user in self._presence.online_users():
            if self._presence.is_blacklisted(user):
                continue
            self._presence.reward(user, points=amount)
            rewarded += 1
        await self._presence.flush()
        return self._render(command.success_message, amount, plural, units, rewarded)

    async def _points_trade(self, command: CommandDefinition, sender: User, args: list[str]) -> str:
        self._expect(args, 2)
        amount, target = self._amount(args[0]), args[1].lower()
        _, plural, units = self._currency
        if amount == 0:
            return self._zero_amount(command, sender.display_name, amount, plural, units, target)
        if target == sender.username:
            return self._render(command.error_message, sender.display_name, command.name)

        try:
            await self._presence.transfer_points(sender, target, amount)
        except InsufficientPointsError:
            return self._render(command.fail_message, sender.display_name, amount, plural, units, target)
        await self._presence.flush()
        return self._render(command.success_message, sender.display_name, amount, plural, units, target)

    async def _points_gamble(self, command: CommandDefinition, sender: User, args: list[str]) -> str:
        self._expect(args, 1)
        amount = self._amount(args[0])
        _, plural, units = self._currency
        if amount == 0:
            return self._zero_amount(command, sender.display_name, amount, plural, units, sender.points)
        if amount > sender.points:
            return self._render(command.error_message, sender.display_name, amount, plural, units, sender.points)

        odds = self._config.gamble
        roll = self._rng.randint(1, 100)
        if roll <= odds.bonus_win_percentage:
            multiplier = 3
        elif roll <= odds.bonus_win_percentage + odds.win_percentage:
            multiplier = 2
        else:
            multiplier = 0

        if multiplier:
            won = amount * (multiplier - 1)
            self._presence.reward(sender, points=won)
            message = self._render(
                command.success_message, sender.display_name, won, plural, units, sender.points, multiplier
            )
        else:
            self._presence.charge(sender, amount)
            message = self._render(command.fail_message, sender.display_name, amount, plural, units, sender.points)

        self._logger.info("%s gambled %d (roll %d, x%d)", sender.username, amount, roll, multiplier)
        await self._presence.flush()
        return message

    async def _points_leaderboard(self, command: CommandDefinition, sender: User, args: list[str]) -> str:
        self._expect(args, 0)
        _, plural, units = self._currency
        return await self._leaderboard(command, "points", plural, units)

    async def _leaderboard(self, command: CommandDefinition, field: str, plural: str, units: str) -> str:
        await self._presence.flush()
        rows = await self._store.get_leaderboard(
            field,
            self._config.settings.leaderboard_top,
            exclude=[self._context.bot_name],
        )
        if not rows:
            return self._render(command.fail_message, plural, units)
        ranking = ", ".join(f"{i}. {name} ({value})" for i, (name, value) in enumerate(rows, start=1))
        return self._render(command.success_message, ranking, plural, units)

    # ══════════════════════════════════════════════════════════
    #  Experience
    # ══════════════════════════════════════════════════════════

    async def _exp_info(self, command: CommandDefinition, sender: User, args: list[str]) -> str:
        self._expect(args, 0)
        return self._rank_info(command, sender)

    async def _exp_info_second(self, command: CommandDefinition, sender: User, args: list[str]) -> str:
        self._expect(args, 1)
        target = self._presence.find(args[0])
        if target is None:
            return self._render(command.fail_message, args[0])
        return self._rank_info(command, target)

    def _rank_info(self, command: CommandDefinition, user: User) -> str:
        table = self._context.rank_table
        if not table:
            return self._render(command.fail_message, user.display_name)

        exp_config = self._config.experience
        current = user.rank or table.rank_for(user.experience)
        upcoming = table.next_rank(current)
        if upcoming is not None:
            to_next = max(upcoming.exp_required - user.experience, 0)
            eta = table.time_to_next(
                user, exp_config.active_exp, timedelta(seconds=exp_config.tick_interval_seconds)
            )
            next_name = upcoming.name
            eta_text = format_duration(eta) if eta is not None else NOT_AVAILABLE
        else:
            to_next, next_name, eta_text = 0, NOT_AVAILABLE, NOT_AVAILABLE

        return self._render(
            command.success_message,
            user.display_name,
            current.level if current else 0,
            current.name if current else NOT_AVAILABLE,
            user.experience,
            next_name,
            to_next,
            eta_text,
        )

    async def _exp_add(self, command: CommandDefinition, sender: User, args: list[str]) -> str:
        self._expect(args, 2)
        amount, target = self._amount(args[0]), args[1].lower()
        if amount == 0:
            return self._zero_amount(command, EXPERIENCE_LABEL, EXPERIENCE_LABEL, EXPERIENCE_LABEL, amount, target)

        await self._presence.add_experience(target, amount)
        await self._presence.flush()
        return self._render(command.success_message, target, amount, EXPERIENCE_LABEL, EXPERIENCE_LABEL)

    async def _exp_remove(self, command: CommandDefinition, sender: User, args: list[str]) -> str:
        self._expect(args, 2)
        amount, target = self._amount(args[0]), args[1].lower()
        if amount == 0:
            return self._zero_amount(command, EXPERIENCE_LABEL, EXPERIENCE_LABEL, EXPERIENCE_LABEL, amount, target)

        removed = await self._presence.remove_experience(target, amount)
        await self._presence.flush()
        if removed < amount:
            return self._render(
                command.fail_message, EXPERIENCE_LABEL, EXPERIENCE_LABEL, EXPERIENCE_LABEL, amount, target
            )
        return self._render(command.success_message, target, amount, EXPERIENCE_LABEL, EXPERIENCE_LABEL)

    async def _exp_leaderboard(self, command: CommandDefinition, sender: User, args: list[str]) -> str:
        self._expect(args, 0)
        return await self._leaderboard(command, "experience", EXPERIENCE_LABEL, EXPERIENCE_LABEL)

    # ══════════════════════════════════════════════════════════
    #  Internal
    # ══════════════════════════════════════════════════════════

    async def _help(self, command: CommandDefinition, sender: User, args: list[str]) -> str:
        self._expect(args, 0, 1)
        if not args:
            names = [c.name for c in self._matcher.commands if has_permission(c, sender)]
            return self._render(command.success_message, ", ".join(names))

        wanted = self._matcher.find_by_name(args[0])
        if wanted is None or not wanted.about:
            return self._render(command.fail_message, args[0])
        return self._render(wanted.about, *self._currency)

    async def _random(self, command: CommandDefinition, sender: User, args: list[str]) -> str:
        self._expect(args, 0, 1)
        exclude = [self._context.bot_name]
        if args:
            minutes = self._amount(args[0])
            pool = [u for u in self._presence.active_users(minutes) if u.username not in exclude]
            chosen = self._presence.select_random_active(minutes, exclude=exclude)
        else:
            pool = [u for u in self._presence.online_users() if u.username not in exclude]
            chosen = self._presence.select_random(exclude=exclude)

        if chosen is None:
            return self._render(command.fail_message, sender.display_name)
        return self._render(command.success_message, chosen.display_name, len(pool))

    async def _last_follower(self, command: CommandDefinition, sender: User, args: list[str]) -> str:
        self._expect(args, 0)
        follow = await self._helix.get_newest_follower() if self._helix else None
        if follow is None:
            return self._render(command.error_message, sender.display_name, command.name)
        return self._render(command.success_message, follow.user_name, follow.followed_at.strftime("%Y-%m-%d"))

    async def _follow_age(self, command: CommandDefinition, sender: User, args: list[str]) -> str:
        self._expect(args, 0)
        if self._helix is None:
            return self._render(command.error_message, sender.display_name, command.name)

        user_id = sender.user_id or await self._helix.resolve_user_id(sender.username)
        if user_id is None:
            return self._render(command.error_message, sender.display_name, command.name)

        follow = await self._helix.get_follow_info(user_id)
        if follow is None:
            return self._render(command.fail_message, sender.display_name)
        days = (now_utc() - follow.followed_at).days
        return self._render(
            command.success_message, sender.display_name, follow.followed_at.strftime("%Y-%m-%d"), days
        )

    async def _color(self, command: CommandDefinition, sender: User, args: list[str]) -> str:
        self._expect(args, 0)
        self._context.colored_messages = not self._context.colored_messages
        words = self._config.dictionary
        state = words.yes if self._context.colored_messages else words.no
        self._logger.info("Colored messages set to %s by %s", self._context.colored_messages, sender.username)
        return self._render(command.success_message, state)

    async def _change_color(self, command: CommandDefinition, sender: User, args: list[str]) -> str:
        self._expect(args, 1)
        if self._send_chat is None:
            return self._render(command.error_message, sender.display_name, command.name)
        await self._send_chat(f"/color {args[0]}")
        return self._render(command.success_message, args[0])

    _HANDLER_MAP: dict[tuple[CommandCategory, HandlerType], Any] = {
        (_C.CURRENCY, _H.INFO): _points_info,
        (_C.CURRENCY, _H.ADD): _points_add,
        (_C.CURRENCY, _H.REMOVE): _points_remove,
        (_C.CURRENCY, _H.ALL): _points_all,
        (_C.CURRENCY, _H.TRADE): _points_trade,
        (_C.CURRENCY, _H.GAMBLE): _points_gamble,
        (_C.CURRENCY, _H.LEADERBOARD): _points_leaderboard,
        (_C.EXPERIENCE, _H.INFO): _exp_info,
        (_C.EXPERIENCE, _H.INFO_SECOND): _exp_info_second,
        (_C.EXPERIENCE, _H.ADD): _exp_add,
        (_C.EXPERIENCE, _H.REMOVE): _exp_remove,
        (_C.EXPERIENCE, _H.LEADERBOARD): _exp_leaderboard,
        (_C.INTERNAL, _H.HELP): _help,
        (_C.INTERNAL, _H.RANDOM): _random,
        (_C.INTERNAL, _H.LAST_FOLLOWER): _last_follower,
        (_C.INTERNAL, _H.FOLLOW_AGE): _follow_age,
        (_C.INTERNAL, _H.COLOR): _color,
        (_C.INTERNAL, _H.CHANGE_COLOR): _change_color,
    }
