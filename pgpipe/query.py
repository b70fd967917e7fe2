"""Consuming the server's responses to queries, simple queries and COPY TO."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterable, AsyncIterator
from typing import Any, Optional, Union

from .errors import PgError
from .messages import (
    BindComplete,
    CommandComplete,
    CommandCompleted,
    CopyData,
    CopyDone,
    CopyOutResponse,
    DataRow,
    EmptyQueryResponse,
    ErrorResponse,
    PortalSuspended,
    ReadyForQuery,
    RowDescription,
)
from .row import Row, SimpleColumn, SimpleQueryRow
from .statement import Statement

logger = logging.getLogger(__name__)


async def _next_message(responses: AsyncIterator[Any]) -> Any:
    """The next backend message; an ErrorResponse is raised, an ended stream means closed."""
    try:
        message = await anext(responses)
    except StopAsyncIteration:
        raise PgError.closed() from None
    if isinstance(message, ErrorResponse):
        raise message.to_error()
    return message


async def expect_bind_complete(responses: AsyncIterable[Any]) -> None:
    """Consume the BindComplete that opens the response to a bound query."""
    message = await _next_message(aiter(responses))
    if not isinstance(message, BindComplete):
        raise PgError.unexpected_message()


async def execute(responses: AsyncIterable[Any]) -> int:
    """Consume the responses to an executed statement and return the rows affected."""
    stream = aiter(responses)
    await expect_bind_complete(stream)
    rows = 0
    while True:
        message = await _next_message(stream)
        if isinstance(message, DataRow):
            continue
        if isinstance(message, CommandComplete):
            rows = message.rows
        elif isinstance(message, EmptyQueryResponse):
            rows = 0
        elif isinstance(message, ReadyForQuery):
            return rows
        else:
            raise PgError.unexpected_message()


async def batch_execute(responses: AsyncIterable[Any]) -> None:
    """Consume the responses to a batch of simple statements, discarding any rows."""
    stream = aiter(responses)
    while True:
        message = await _next_message(stream)
        if isinstance(message, ReadyForQuery):
            return
        if not isinstance(message, (CommandComplete, EmptyQueryResponse, RowDescription, DataRow)):
            raise PgError.unexpected_message()


async def start_copy_out(responses: AsyncIterable[Any]) -> CopyOutStream:
    """Consume the start of a COPY ... TO STDOUT and return the stream of its data."""
    stream = aiter(responses)
    await expect_bind_complete(stream)
    message = await _next_message(stream)
    if not isinstance(message, CopyOutResponse):
        raise PgError.unexpected_message()
    return CopyOutStream(stream)


class RowStream:
    """An asynchronous iterator over the rows of a statement's results."""

    def __init__(self, statement: Statement, responses: AsyncIterable[Any]) -> None:
        self.statement = statement
        self._responses = aiter(responses)
        self._done = False

    def __aiter__(self) -> RowStream:
        return self

    async def __anext__(self) -> Row:
        if self._done:
            raise StopAsyncIteration
        while True:
            message = await _next_message(self._responses)
            if isinstance(message, DataRow):
                return Row(self.statement, message.values)
            if isinstance(message, (EmptyQueryResponse, CommandComplete, PortalSuspended)):
                continue
            if isinstance(message, ReadyForQuery):
                self._done = True
                raise StopAsyncIteration
            raise PgError.unexpected_message()


class SimpleQueryStream:
    """An asynchronous iterator over the rows and completions of a simple query."""

    def __init__(self, responses: AsyncIterable[Any]) -> None:
        self._responses = aiter(responses)
        self._columns: Optional[tuple[SimpleColumn, ...]] = None
        self._done = False

    def __aiter__(self) -> SimpleQueryStream:
        return self

    async def __anext__(self) -> Union[SimpleQueryRow, CommandCompleted]:
        if self._done:
            raise StopAsyncIteration
        while True:
            message = await _next_message(self._responses)
            if isinstance(message, CommandComplete):
                return CommandCompleted(message.rows)
            if isinstance(message, EmptyQueryResponse):
                return CommandCompleted(0)
            if isinstance(message, RowDescription):
                self._columns = tuple(SimpleColumn(name) for name in message.names)
                continue
            if isinstance(message, DataRow):
                if self._columns is None:
                    raise PgError.unexpected_message()
                return SimpleQueryRow(self._columns, message.values)
            if isinstance(message, ReadyForQuery):
                self._done = True
                raise StopAsyncIteration
            raise PgError.unexpected_message()


class CopyOutStream:
    """An asynchronous iterator over the chunks of a COPY ... TO STDOUT."""

    def __init__(self, responses: AsyncIterable[Any]) -> None:
        self._responses = aiter(responses)
        self._done = False

    def __aiter__(self) -> CopyOutStream:
        return self

    async def __anext__(self) -> bytes:
        if self._done:
            raise StopAsyncIteration
        message = await _next_message(self._responses)
        if isinstance(message, CopyData):
            return message.data
        if isinstance(message, CopyDone):
            self._done = True
            raise StopAsyncIteration
        raise PgError.unexpected_message()