"""Twitch Helix API client — async HTTP wrapper with caching.

Provides the two follower lookups the chat commands need plus login → id
resolution. Every public method returns None on any failure; callers render
their error template. All tests mock the HTTP layer.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any

import aiohttp

from .utils import parse_timestamp

if TYPE_CHECKING:
    from .config import ApiConfig, LoginConfig


@dataclass(frozen=True)
class FollowInfo:
    user_name: str
    followed_at: datetime


class HelixClient:
    """Async client for the Helix follower endpoints."""

    def __init__(
        self,
        config: ApiConfig,
        login: LoginConfig,
        logger: logging.Logger | None = None,
    ) -> None:
        self._config = config
        self._login = login
        self._logger = logger or logging.getLogger("medbot.helix")
        self._session: aiohttp.ClientSession | None = None
        self._cache: dict[str, tuple[float, Any]] = {}  # {key: (expiry_ts, data)}
        self._cache_ttl = config.cache_ttl_seconds

    async def start(self) -> None:
        """Create the HTTP session."""
        headers: dict[str, str] = {}
        if self._login.api_token:
            headers["Authorization"] = f"Bearer {self._login.api_token}"
        if self._login.client_id:
            headers["Client-Id"] = self._login.client_id
        self._session = aiohttp.ClientSession(
            base_url=self._config.base_url,
            headers=headers,
            timeout=aiohttp.ClientTimeout(total=self._config.timeout_seconds),
        )

    async def stop(self) -> None:
        """Close the HTTP session."""
        if self._session:
            await self._session.close()
            self._session = None

    # ══════════════════════════════════════════════════════════
    #  Public API
    # ══════════════════════════════════════════════════════════

    async def resolve_user_id(self, username: str) -> str | None:
        """Map a login name to its numeric user id."""
        cache_key = f"user:{username.lower()}"
        cached = self._get_cached(cache_key)
        if cached is not None:
            return cached

        data = await self._get("/helix/users", {"login": username.lower()})
        if not data:
            return None
        user_id = str(data[0]["id"])
        self._set_cached(cache_key, user_id)
        return user_id

    async def get_follow_info(self, user_id: str) -> FollowInfo | None:
        """When ``user_id`` followed the bot's channel, or None if not following."""
        broadcaster_id = await self.resolve_user_id(self._login.channel)
        if broadcaster_id is None:
            return None
        data = await self._get(
            "/helix/channels/followers",
            {"broadcaster_id": broadcaster_id, "user_id": user_id},
        )
        return self._parse_follow(data[0]) if data else None

    async def get_newest_follower(self) -> FollowInfo | None:
        broadcaster_id = await self.resolve_user_id(self._login.channel)
        if broadcaster_id is None:
            return None
        data = await self._get(
            "/helix/channels/followers",
            {"broadcaster_id": broadcaster_id, "first": "1"},
        )
        return self._parse_follow(data[0]) if data else None

    # ══════════════════════════════════════════════════════════
    #  Internal Helpers
    # ══════════════════════════════════════════════════════════

    async def _get(self, path: str, params: dict[str, str]) -> list[dict] | None:
        """GET a Helix endpoint and return its ``data`` list, or None on error."""
        if not self._session:
            return None
        try:
            async with self._session.get(path, params=params) as resp:
                resp.raise_for_status()
                payload = await resp.json()
                return payload.get("data", [])
        except Exception as e:
            self._logger.error("Helix request %s failed: %s", path, e)
            return None

    def _parse_follow(self, item: dict) -> FollowInfo | None:
        followed_at = parse_timestamp((item.get("followed_at") or "").replace("Z", "+00:00"))
        if followed_at is None:
            self._logger.warning("Follow record without a timestamp: %r", item)
            return None
        return FollowInfo(
            user_name=item.get("user_name") or item.get("user_login") or "",
            followed_at=followed_at,
        )

    def _get_cached(self, key: str) -> Any | None:
        entry = self._cache.get(key)
        if entry and entry[0] > time.time():
            return entry[1]
        if entry:
            del self._cache[key]
        return None

    def _set_cached(self, key: str, data: Any) -> None:
        self._cache[key] = (time.time() + self._cache_ttl, data)
