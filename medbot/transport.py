"""Line transport over an asyncio TCP stream.

IRC is CRLF-delimited text. Writes are batched into one buffer and drained
once; reads return a single decoded line or None when nothing arrived within
the timeout. A closed peer surfaces as ConnectionError.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Iterable, Protocol


class LineTransport(Protocol):
    @property
    def is_open(self) -> bool: ...

    async def open(self) -> None: ...

    async def write_lines(self, lines: Iterable[str]) -> None: ...

    async def read_line(self, timeout: float) -> str | None: ...

    async def close(self) -> None: ...


class IrcTransport:
    """TCP implementation of ``LineTransport``."""

    def __init__(
        self,
        host: str,
        port: int,
        connect_timeout: float = 10.0,
        logger: logging.Logger | None = None,
    ) -> None:
        self._host = host
        self._port = port
        self._connect_timeout = connect_timeout
        self._logger = logger or logging.getLogger("medbot.transport")
        self._reader: asyncio.StreamReader | None = None
        self._writer: asyncio.StreamWriter | None = None

    @property
    def is_open(self) -> bool:
        return self._writer is not None and not self._writer.is_closing()

    async def open(self) -> None:
        self._reader, self._writer = await asyncio.wait_for(
            asyncio.open_connection(self._host, self._port),
            timeout=self._connect_timeout,
        )
        self._logger.info("Connected to %s:%d", self._host, self._port)

    async def write_lines(self, lines: Iterable[str]) -> None:
        if self._writer is None:
            raise ConnectionError("Transport is not open")
        payload = "".join(f"{line}\r\n" for line in lines)
        self._writer.write(payload.encode("utf-8"))
        await self._writer.drain()

    async def read_line(self, timeout: float) -> str | None:
        if self._reader is None:
            raise ConnectionError("Transport is not open")
        try:
            data = await asyncio.wait_for(self._reader.readline(), timeout=timeout)
        except asyncio.TimeoutError:
            return None
        if not data:
            # No data indicates the server has closed the connection.
            raise ConnectionError("Connection closed by server")
        return data.decode("utf-8", errors="replace").rstrip("\r\n")

    async def close(self) -> None:
        writer, self._writer, self._reader = self._writer, None, None
        if writer is None:
            return
        writer.close()
        try:
            await writer.wait_closed()
        except (OSError, ConnectionError) as e:
            self._logger.debug("Error while closing transport: %s", e)
