"""The standard byte stream to a server, over TCP or a Unix socket."""

from __future__ import annotations

import asyncio
from types import TracebackType
from typing import Optional


class Socket:
    """A connected TCP or Unix-domain stream."""

    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter, kind: str) -> None:
        self._reader = reader
        self._writer = writer
        self.kind = kind

    def __repr__(self) -> str:
        return f"Socket(kind={self.kind!r})"

    @staticmethod
    async def open_tcp(host: str, port: int) -> Socket:
        """Connect to ``host``:``port`` over TCP."""
        reader, writer = await asyncio.open_connection(host, port)
        return Socket(reader, writer, "tcp")

    @staticmethod
    async def open_unix(path: str) -> Socket:
        """Connect to the Unix-domain socket at ``path``."""
        open_connection = getattr(asyncio, "open_unix_connection", None)
        if open_connection is None:
            raise OSError("Unix-domain sockets are not supported on this platform")
        reader, writer = await open_connection(path)
        return Socket(reader, writer, "unix")

    async def read(self, n: int) -> bytes:
        """Read up to ``n`` bytes; an empty result means end of stream."""
        return await self._reader.read(n)

    async def read_exactly(self, n: int) -> bytes:
        """Read exactly ``n`` bytes; raises asyncio.IncompleteReadError at early end of stream."""
        return await self._reader.readexactly(n)

    def write(self, data: bytes) -> None:
        """Queue ``data`` for sending."""
        self._writer.write(data)

    async def flush(self) -> None:
        """Wait until queued data has been handed to the operating system."""
        await self._writer.drain()

    async def close(self) -> None:
        """Shut the stream down."""
        self._writer.close()
        try:
            await self._writer.wait_closed()
        except (ConnectionError, OSError):
            pass

    async def __aenter__(self) -> Socket:
        return self

    async def __aexit__(
        self,
        exc_type: Optional[type[BaseException]],
        exc: Optional[BaseException],
        tb: Optional[TracebackType],
    ) -> None:
        await self.close()