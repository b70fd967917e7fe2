"""The half of a client that performs I/O with the server."""

from __future__ import annotations

import asyncio
import logging
import struct
from collections import deque
from collections.abc import AsyncIterable, AsyncIterator, Iterable
from dataclasses import dataclass
from typing import Any, Optional, Union

from .errors import DbError, PgError
from .messages import (
    BindComplete,
    CommandComplete,
    CopyData,
    CopyDone,
    CopyInResponse,
    CopyOutResponse,
    DataRow,
    EmptyQueryResponse,
    ErrorResponse,
    Notification,
    NoticeResponse,
    NotificationResponse,
    ParameterStatus,
    PortalSuspended,
    ReadyForQuery,
    RowDescription,
)

logger = logging.getLogger(__name__)

_TERMINATE = b"X\x00\x00\x00\x04"
_HEADER_SIZE = 5
_END = object()

AsyncMessage = Union[DbError, Notification]
Request = Union[bytes, bytearray, memoryview, AsyncIterable[bytes]]


@dataclass(frozen=True)
class _OtherMessage:
    """A backend message the client does not interpret, such as CloseComplete."""

    tag: bytes
    body: bytes


class _Body:
    """Sequential reader over the body of one backend message."""

    def __init__(self, data: bytes) -> None:
        self._data = data
        self._pos = 0

    def _take(self, fmt: str) -> int:
        (value,) = struct.unpack_from(fmt, self._data, self._pos)
        self._pos += struct.calcsize(fmt)
        return value

    def int8(self) -> int:
        return self._take("!b")

    def int16(self) -> int:
        return self._take("!h")

    def int32(self) -> int:
        return self._take("!i")

    def take(self, n: int) -> bytes:
        if n < 0 or self._pos + n > len(self._data):
            raise ValueError("unexpected end of message")
        chunk = self._data[self._pos : self._pos + n]
        self._pos += n
        return chunk

    def cstring(self) -> str:
        end = self._data.index(b"\x00", self._pos)
        text = self._data[self._pos : end].decode("utf-8")
        self._pos = end + 1
        return text

    def rest(self) -> bytes:
        chunk = self._data[self._pos :]
        self._pos = len(self._data)
        return chunk


def _data_row(body: _Body) -> DataRow:
    values = []
    for _ in range(body.int16()):
        length = body.int32()
        values.append(None if length < 0 else body.take(length))
    return DataRow(tuple(values))


def _row_description(body: _Body) -> RowDescription:
    names = []
    oids = []
    for _ in range(body.int16()):
        names.append(body.cstring())
        body.int32()  # table oid
        body.int16()  # column attribute number
        oids.append(body.int32())
        body.int16()  # type size
        body.int32()  # type modifier
        body.int16()  # format code
    return RowDescription(tuple(names), tuple(oids))


def _error_fields(body: _Body) -> tuple[tuple[str, str], ...]:
    fields = []
    while True:
        field_type = body.take(1)
        if field_type == b"\x00":
            return tuple(fields)
        fields.append((field_type.decode("ascii"), body.cstring()))


def _copy_formats(body: _Body) -> tuple[int, tuple[int, ...]]:
    overall = body.int8()
    return overall, tuple(body.int16() for _ in range(body.int16()))


def _decode(tag: bytes, data: bytes) -> Any:
    body = _Body(data)
    if tag == b"D":
        return _data_row(body)
    if tag == b"T":
        return _row_description(body)
    if tag == b"C":
        return CommandComplete(body.cstring())
    if tag == b"I":
        return EmptyQueryResponse()
    if tag == b"Z":
        return ReadyForQuery(body.take(1).decode("ascii"))
    if tag == b"s":
        return PortalSuspended()
    if tag == b"2":
        return BindComplete()
    if tag == b"d":
        return CopyData(body.rest())
    if tag == b"c":
        return CopyDone()
    if tag == b"G":
        return CopyInResponse(*_copy_formats(body))
    if tag == b"H":
        return CopyOutResponse(*_copy_formats(body))
    if tag == b"N":
        return NoticeResponse(_error_fields(body))
    if tag == b"E":
        return ErrorResponse(_error_fields(body))
    if tag == b"A":
        process_id = body.int32()
        channel = body.cstring()
        return NotificationResponse(process_id, channel, body.cstring())
    if tag == b"S":
        name = body.cstring()
        return ParameterStatus(name, body.cstring())
    return _OtherMessage(tag, data)


class _Responses:
    """The backend messages answering one request, ending after ReadyForQuery."""

    def __init__(self) -> None:
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self._finished = False

    def __aiter__(self) -> _Responses:
        return self

    async def __anext__(self) -> Any:
        if self._finished:
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _END:
            self._finished = True
            raise StopAsyncIteration
        return item

    def _deliver(self, message: Any) -> None:
        self._queue.put_nowait(message)

    def _end(self) -> None:
        self._queue.put_nowait(_END)


class Connection:
    """Performs the I/O with the server for requests submitted to it.

    Requests are written in the order they are submitted and the server's
    replies are routed back to them in the same order. Drive the connection
    with ``run``, or with ``messages`` to see notices and notifications.
    """

    def __init__(
        self,
        stream: Any,
        parameters: Optional[dict[str, str]] = None,
        pending: Iterable[Any] = (),
    ) -> None:
        self._stream = stream
        self._parameters: dict[str, str] = dict(parameters or {})
        self._pending: deque[Any] = deque(pending)
        self._requests: asyncio.Queue[Optional[Request]] = asyncio.Queue()
        self._responses: deque[_Responses] = deque()
        self._idle = asyncio.Event()
        self._idle.set()
        self._closed = False
        self._started = False

    def __repr__(self) -> str:
        return f"Connection(closed={self._closed}, outstanding={len(self._responses)})"

    @property
    def closed(self) -> bool:
        return self._closed

    def parameter(self, name: str) -> Optional[str]:
        """The value of a runtime parameter reported by the server, if any."""
        return self._parameters.get(name)

    def submit(self, messages: Request) -> AsyncIterator[Any]:
        """Queue a request and return the stream of the server's replies to it.

        ``messages`` is either encoded frontend messages or an async iterable
        of them, as used while copying data in.
        """
        if self._closed:
            raise PgError.closed()
        if isinstance(messages, (bytes, bytearray, memoryview)):
            payload: Request = bytes(messages)
        elif hasattr(messages, "__aiter__"):
            payload = messages
        else:
            raise TypeError(f"expected bytes or an async iterable, got {type(messages).__name__}")
        responses = _Responses()
        self._responses.append(responses)
        self._idle.clear()
        self._requests.put_nowait(payload)
        return responses

    def close(self) -> None:
        """Stop taking requests; the connection terminates once outstanding work is done."""
        if self._closed:
            return
        self._closed = True
        self._requests.put_nowait(None)

    async def _write(self, data: bytes) -> None:
        try:
            self._stream.write(data)
            await self._stream.flush()
        except OSError as exc:
            raise PgError.io(exc) from exc

    async def _write_loop(self) -> None:
        while True:
            payload = await self._requests.get()
            if payload is None:
                await self._idle.wait()
                logger.debug("sending terminate")
                await self._write(_TERMINATE)
                return
            if isinstance(payload, bytes):
                await self._write(payload)
            else:
                async for chunk in payload:
                    await self._write(bytes(chunk))

    async def _read_exactly(self, n: int, at_boundary: bool) -> bytes:
        try:
            return await self._stream.read_exactly(n)
        except asyncio.IncompleteReadError as exc:
            if at_boundary and not exc.partial:
                raise PgError.closed() from None
            raise PgError.io(exc) from exc
        except EOFError:
            raise PgError.closed() from None
        except OSError as exc:
            raise PgError.io(exc) from exc

    async def _read_message(self) -> Any:
        if self._pending:
            return self._pending.popleft()
        header = await self._read_exactly(_HEADER_SIZE, True)
        tag = header[:1]
        (length,) = struct.unpack("!i", header[1:])
        if length < 4:
            raise PgError.parse(ValueError("invalid message length"))
        data = await self._read_exactly(length - 4, False) if length > 4 else b""
        try:
            return _decode(tag, data)
        except (struct.error, ValueError) as exc:
            raise PgError.parse(exc) from exc

    def _dispatch(self, message: Any) -> Optional[AsyncMessage]:
        if isinstance(message, NoticeResponse):
            return message.to_db_error()
        if isinstance(message, NotificationResponse):
            return message.to_notification()
        if isinstance(message, ParameterStatus):
            self._parameters[message.name] = message.value
            return None
        if not self._responses:
            if isinstance(message, ErrorResponse):
                raise message.to_error()
            raise PgError.unexpected_message()
        response = self._responses[0]
        response._deliver(message)
        if isinstance(message, ReadyForQuery):
            self._responses.popleft()
            response._end()
            if not self._responses:
                self._idle.set()
        return None

    async def messages(self) -> AsyncIterator[AsyncMessage]:
        """Drive the connection, yielding notices (as DbError) and notifications.

        Ends once the connection has terminated; raises PgError on failure.
        """
        if self._started:
            raise RuntimeError("the connection is already being driven")
        self._started = True
        writer = asyncio.ensure_future(self._write_loop())
        read: Optional[asyncio.Future[Any]] = None
        try:
            while True:
                read = asyncio.ensure_future(self._read_message())
                await asyncio.wait({read, writer}, return_when=asyncio.FIRST_COMPLETED)
                if read.done():
                    message = read.result()
                    read = None
                    event = self._dispatch(message)
                    if event is not None:
                        yield event
                if writer.done():
                    writer.result()
                    break
            try:
                await self._stream.close()
            except OSError as exc:
                raise PgError.io(exc) from exc
            logger.debug("connection shut down")
        finally:
            leftovers = [task for task in (read, writer) if task is not None and not task.done()]
            for task in leftovers:
                task.cancel()
            if leftovers:
                await asyncio.gather(*leftovers, return_exceptions=True)
            self._closed = True
            while self._responses:
                self._responses.popleft()._end()
            self._idle.set()

    async def run(self) -> None:
        """Drive the connection until it terminates, logging any notices."""
        async for message in self.messages():
            if isinstance(message, DbError):
                logger.info("%s: %s", message.severity, message.message)