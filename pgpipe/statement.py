"""Prepared statements, portals and their columns."""

from __future__ import annotations

import struct
import weakref
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Any, Optional, Union

_SYNC = b"S\x00\x00\x00\x04"


def _close_message(variant: bytes, name: str) -> bytes:
    encoded = name.encode("utf-8")
    if b"\x00" in encoded:
        raise ValueError("name must not contain a NUL byte")
    body = variant + encoded + b"\x00"
    return b"C" + struct.pack("!i", len(body) + 4) + body + _SYNC


def _register_close(owner: object, client: Any, message: bytes) -> None:
    """Send ``message`` through ``client`` once ``owner`` is collected, if the client is alive."""
    client_ref = weakref.ref(client)

    def _send() -> None:
        target = client_ref()
        if target is None:
            return
        try:
            target.send(message)
        except Exception:
            pass

    weakref.finalize(owner, _send)


@dataclass(frozen=True)
class Column:
    """A column returned by a query."""

    name: str
    type: Any


class Statement:
    """A prepared statement, usable only with the connection that created it.

    When a client is given, the statement is closed on the server once the
    last reference to it goes away.
    """

    def __init__(
        self,
        name: str,
        params: Sequence[Any] = (),
        columns: Sequence[Column] = (),
        client: Any = None,
    ) -> None:
        self.name = name
        self.params = tuple(params)
        self.columns = tuple(columns)
        if client is not None:
            _register_close(self, client, self.close_message())

    def __repr__(self) -> str:
        return f"Statement(name={self.name!r}, params={self.params!r}, columns={self.columns!r})"

    def close_message(self) -> bytes:
        """The Close and Sync messages that release this statement on the server."""
        return _close_message(b"S", self.name)


class Portal:
    """A portal, valid only within the transaction that created it."""

    def __init__(self, name: str, statement: Statement, client: Any = None) -> None:
        self.name = name
        self.statement = statement
        if client is not None:
            _register_close(self, client, self.close_message())

    def __repr__(self) -> str:
        return f"Portal(name={self.name!r}, statement={self.statement!r})"

    def close_message(self) -> bytes:
        """The Close and Sync messages that release this portal on the server."""
        return _close_message(b"P", self.name)


async def to_statement(
    query: Union[Statement, str],
    prepare: Callable[[str], Awaitable[Statement]],
) -> Statement:
    """Return ``query`` if it is already prepared, otherwise prepare it."""
    if isinstance(query, Statement):
        return query
    if isinstance(query, str):
        return await prepare(query)
    raise TypeError(f"expected a Statement or str, got {type(query).__name__}")