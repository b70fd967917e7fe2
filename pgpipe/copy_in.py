"""The sink that feeds data to a COPY ... FROM STDIN."""

from __future__ import annotations

import enum
import logging
import struct
from collections.abc import AsyncIterable, AsyncIterator, Awaitable, Callable
from types import TracebackType
from typing import Any, Optional, Union

from .errors import PgError
from .messages import BindComplete, CommandComplete, CopyInResponse, ErrorResponse

logger = logging.getLogger(__name__)

_FLUSH_THRESHOLD = 4096
_MAX_I32 = 2**31 - 1
_SYNC = b"S\x00\x00\x00\x04"
_COPY_DONE = b"c\x00\x00\x00\x04"
_COPY_FAIL_EMPTY = b"f\x00\x00\x00\x05\x00"

Sender = Callable[[bytes], Awaitable[None]]
BytesLike = Union[bytes, bytearray, memoryview]


def _copy_data(data: bytes) -> bytes:
    if len(data) + 4 > _MAX_I32:
        raise PgError.encode(ValueError("value too large to transmit"))
    return b"d" + struct.pack("!i", len(data) + 4) + data


async def _next_message(responses: AsyncIterator[Any]) -> Any:
    try:
        message = await anext(responses)
    except StopAsyncIteration:
        raise PgError.closed() from None
    if isinstance(message, ErrorResponse):
        raise message.to_error()
    return message


class _State(enum.Enum):
    ACTIVE = enum.auto()
    READING = enum.auto()
    FINISHED = enum.auto()
    ABORTED = enum.auto()


class CopyInSink:
    """A sink for ``COPY ... FROM STDIN`` data.

    The copy must be completed with ``finish``; otherwise it is aborted, which
    also happens when the sink is left as an async context manager unfinished.
    """

    def __init__(self, sender: Sender, responses: AsyncIterable[Any]) -> None:
        self._sender = sender
        self._responses = aiter(responses)
        self._buf = bytearray()
        self._state = _State.ACTIVE

    def __repr__(self) -> str:
        return f"CopyInSink(state={self._state.name}, buffered={len(self._buf)})"

    @classmethod
    async def start(
        cls, sender: Sender, responses: AsyncIterable[Any], request: bytes
    ) -> CopyInSink:
        """Send the bound COPY statement and wait until the server accepts data."""
        stream = aiter(responses)
        await sender(request)
        if not isinstance(await _next_message(stream), BindComplete):
            raise PgError.unexpected_message()
        if not isinstance(await _next_message(stream), CopyInResponse):
            raise PgError.unexpected_message()
        return cls(sender, stream)

    @property
    def finished(self) -> bool:
        return self._state in (_State.FINISHED, _State.ABORTED)

    def _check_active(self) -> None:
        if self._state is not _State.ACTIVE:
            raise PgError.closed()

    async def send(self, data: BytesLike) -> None:
        """Add ``data`` to the copy; small pieces are buffered before sending."""
        self._check_active()
        item = bytes(data)
        if len(item) > _FLUSH_THRESHOLD:
            chunk = bytes(self._buf) + item
            self._buf.clear()
        else:
            self._buf += item
            if len(self._buf) <= _FLUSH_THRESHOLD:
                return
            chunk = bytes(self._buf)
            self._buf.clear()
        await self._sender(_copy_data(chunk))

    async def flush(self) -> None:
        """Send any buffered data."""
        self._check_active()
        if self._buf:
            chunk = bytes(self._buf)
            self._buf.clear()
            await self._sender(_copy_data(chunk))

    async def finish(self) -> int:
        """Complete the copy and return the number of rows inserted."""
        if self._state is _State.ACTIVE:
            await self.flush()
            await self._sender(_COPY_DONE + _SYNC)
            self._state = _State.READING
        if self._state is not _State.READING:
            raise PgError.closed()
        message = await _next_message(self._responses)
        if not isinstance(message, CommandComplete):
            raise PgError.unexpected_message()
        self._state = _State.FINISHED
        return message.rows

    async def abort(self) -> None:
        """Abandon the copy, discarding buffered data."""
        if self._state is not _State.ACTIVE:
            return
        self._buf.clear()
        self._state = _State.ABORTED
        logger.debug("aborting copy in")
        await self._sender(_COPY_FAIL_EMPTY + _SYNC)

    async def __aenter__(self) -> CopyInSink:
        return self

    async def __aexit__(
        self,
        exc_type: Optional[type[BaseException]],
        exc: Optional[BaseException],
        tb: Optional[TracebackType],
    ) -> None:
        if not self.finished:
            await self.abort()