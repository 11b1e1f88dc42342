"""SQLite user ledger for medbot.

Each public method is async and wraps a synchronous inner function via
asyncio.run_in_executor(None, _sync). A new connection is created per call
(WAL mode, 30s busy timeout, Row factory). Writes are serialised by an
asyncio lock owned by the store, independent of the presence registry.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from typing import TYPE_CHECKING, Any, Iterable

from .catalog import load_commands, load_ranks
from .users import MAX_LEDGER_VALUE
from .utils import parse_timestamp

if TYPE_CHECKING:
    from .commands import CommandDefinition
    from .ranks import RankTable
    from .users import User

LEDGER_FIELDS = ("points", "experience")


class UserStore:
    """SQLite-backed persistence for user points and experience."""

    def __init__(
        self,
        db_path: str,
        logger: logging.Logger | None = None,
        commands_path: str | None = None,
        ranks_path: str | None = None,
    ) -> None:
        self._db_path = db_path
        self._logger = logger or logging.getLogger("medbot.database")
        self._commands_path = commands_path
        self._ranks_path = ranks_path
        self._write_lock = asyncio.Lock()

    def _get_connection(self) -> sqlite3.Connection:
        """Create a new SQLite connection with standard settings."""
        conn = sqlite3.connect(self._db_path, timeout=30)
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA busy_timeout=30000")
        conn.row_factory = sqlite3.Row
        return conn

    # ══════════════════════════════════════════════════════════
    #  Initialization
    # ══════════════════════════════════════════════════════════

    async def initialize(self) -> None:
        """Create tables and indexes. Idempotent."""
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._create_tables)

    def _create_tables(self) -> None:
        conn = self._get_connection()
        try:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS users (
                    username TEXT PRIMARY KEY,
                    user_id TEXT,
                    display_name TEXT,
                    points INTEGER NOT NULL DEFAULT 0 CHECK (points >= 0),
                    experience INTEGER NOT NULL DEFAULT 0 CHECK (experience >= 0),
                    last_message TIMESTAMP,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """)
            conn.execute("CREATE INDEX IF NOT EXISTS idx_users_points ON users(points)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_users_experience ON users(experience)")
            conn.commit()
        finally:
            conn.close()

    # ══════════════════════════════════════════════════════════
    #  Users
    # ══════════════════════════════════════════════════════════

    async def get_user(self, username: str) -> dict[str, Any] | None:
        """Return the stored row for ``username`` as a dict, or None."""

        def _sync() -> dict[str, Any] | None:
            conn = self._get_connection()
            try:
                row = conn.execute(
                    "SELECT * FROM users WHERE username = ?",
                    (username.lower(),),
                ).fetchone()
                return dict(row) if row else None
            finally:
                conn.close()

        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, _sync)

    async def load_user(self, user: User) -> bool:
        """Hydrate ``user`` from its stored row. Returns False when none exists."""
        row = await self.get_user(user.username)
        if row is None:
            return False
        user.points = max(int(row["points"] or 0), 0)
        user.experience = max(int(row["experience"] or 0), 0)
        if row["display_name"] and user.display_name == user.username:
            user.display_name = row["display_name"]
        if row["user_id"] and not user.user_id:
            user.user_id = row["user_id"]
        if user.last_message is None:
            user.last_message = parse_timestamp(row["last_message"])
        return True

    async def save_all(self, users: Iterable[User]) -> int:
        """Upsert every user in one transaction. Returns the number of rows written."""
        rows = [
            (
                u.username,
                u.user_id,
                u.display_name,
                max(u.points, 0),
                max(u.experience, 0),
                u.last_message.isoformat() if u.last_message else None,
            )
            for u in users
        ]
        if not rows:
            return 0

        def _sync() -> int:
            conn = self._get_connection()
            try:
                conn.executemany(
                    """
                    INSERT INTO users (username, user_id, display_name, points, experience, last_message)
                    VALUES (?, ?, ?, ?, ?, ?)
                    ON CONFLICT(username) DO UPDATE SET
                        user_id = COALESCE(excluded.user_id, users.user_id),
                        display_name = excluded.display_name,
                        points = excluded.points,
                        experience = excluded.experience,
                        last_message = COALESCE(excluded.last_message, users.last_message),
                        updated_at = CURRENT_TIMESTAMP
                    """,
                    rows,
                )
                conn.commit()
                return len(rows)
            finally:
                conn.close()

        async with self._write_lock:
            loop = asyncio.get_running_loop()
            return await loop.run_in_executor(None, _sync)

    async def adjust_offline_user(self, username: str, field: str, delta: int) -> int:
        """Add ``delta`` to a stored user's ledger field, creating the row if needed.

        The result is clamped to 0..MAX_LEDGER_VALUE. Returns the new value.
        """
        if field not in LEDGER_FIELDS:
            raise ValueError(f"Unknown ledger field: {field}")
        username = username.lower()

        def _sync() -> int:
            conn = self._get_connection()
            try:
                conn.execute(
                    "INSERT OR IGNORE INTO users (username, display_name) VALUES (?, ?)",
                    (username, username),
                )
                row = conn.execute(
                    f"SELECT {field} FROM users WHERE username = ?", (username,)
                ).fetchone()
                value = min(max(int(row[0]) + delta, 0), MAX_LEDGER_VALUE)
                conn.execute(
                    f"UPDATE users SET {field} = ?, "
                    "updated_at = CURRENT_TIMESTAMP WHERE username = ?",
                    (value, username),
                )
                conn.commit()
                return value
            finally:
                conn.close()

        async with self._write_lock:
            loop = asyncio.get_running_loop()
            return await loop.run_in_executor(None, _sync)

    async def get_leaderboard(
        self,
        field: str,
        limit: int,
        exclude: Iterable[str] = (),
    ) -> list[tuple[str, int]]:
        """Top ``limit`` users by ``field`` as ``(display_name, value)``, zero values omitted."""
        if field not in LEDGER_FIELDS:
            raise ValueError(f"Unknown ledger field: {field}")
        excluded = [u.lower() for u in exclude]

        def _sync() -> list[tuple[str, int]]:
            conn = self._get_connection()
            try:
                placeholders = ",".join("?" for _ in excluded)
                where = f"{field} > 0"
                if excluded:
                    where += f" AND username NOT IN ({placeholders})"
                rows = conn.execute(
                    f"SELECT username, display_name, {field} AS value FROM users "
                    f"WHERE {where} ORDER BY {field} DESC, username ASC LIMIT ?",
                    (*excluded, limit),
                ).fetchall()
                return [(r["display_name"] or r["username"], int(r["value"])) for r in rows]
            finally:
                conn.close()

        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, _sync)

    # ══════════════════════════════════════════════════════════
    #  Catalogs
    # ══════════════════════════════════════════════════════════

    async def load_rank_table(self) -> RankTable:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, load_ranks, self._ranks_path or "")

    async def load_command_catalog(self) -> list[CommandDefinition]:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, load_commands, self._commands_path or "")
