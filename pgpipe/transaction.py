"""Transactions, savepoints and the builder that starts them."""

from __future__ import annotations

import enum
import struct
import weakref
from collections.abc import Sequence
from types import TracebackType
from typing import Any, Optional


class IsolationLevel(enum.Enum):
    """The isolation level of a transaction."""

    READ_UNCOMMITTED = "READ UNCOMMITTED"
    READ_COMMITTED = "READ COMMITTED"
    REPEATABLE_READ = "REPEATABLE READ"
    SERIALIZABLE = "SERIALIZABLE"


def build_start_query(
    isolation_level: Optional[IsolationLevel],
    read_only: Optional[bool],
    deferrable: Optional[bool],
) -> str:
    """The START TRANSACTION statement for the given options; None leaves an option unset."""
    modes = []
    if isolation_level is not None:
        modes.append(f" ISOLATION LEVEL {isolation_level.value}")
    if read_only is not None:
        modes.append(" READ ONLY" if read_only else " READ WRITE")
    if deferrable is not None:
        modes.append(" DEFERRABLE" if deferrable else " NOT DEFERRABLE")
    return "START TRANSACTION" + ",".join(modes)


def _query_message(query: str) -> bytes:
    encoded = query.encode("utf-8")
    if b"\x00" in encoded:
        raise ValueError("query must not contain a NUL byte")
    body = encoded + b"\x00"
    return b"Q" + struct.pack("!i", len(body) + 4) + body


def _send_quietly(client_ref: Any, message: bytes) -> None:
    client = client_ref()
    if client is None:
        return
    try:
        client.send(message)
    except Exception:
        pass


class Transaction:
    """A database transaction, or a savepoint nested inside one.

    A transaction that is neither committed nor rolled back is rolled back when
    it is left as an async context manager or collected.
    """

    def __init__(self, client: Any, savepoint_name: Optional[str] = None, depth: int = 0) -> None:
        self.client = client
        self.savepoint_name = savepoint_name
        self.depth = depth
        self._done = False
        self._finalizer = weakref.finalize(
            self, _send_quietly, weakref.ref(client), _query_message(self._rollback_query())
        )

    def __repr__(self) -> str:
        return f"Transaction(savepoint={self.savepoint_name!r}, depth={self.depth})"

    @property
    def done(self) -> bool:
        return self._done

    def _rollback_query(self) -> str:
        if self.savepoint_name is not None:
            return f"ROLLBACK TO {self.savepoint_name}"
        return "ROLLBACK"

    def _finish(self) -> None:
        if self._done:
            raise RuntimeError("transaction already finished")
        self._done = True
        self._finalizer.detach()

    async def commit(self) -> None:
        """Commit the changes made in the transaction."""
        self._finish()
        if self.savepoint_name is not None:
            query = f"RELEASE {self.savepoint_name}"
        else:
            query = "COMMIT"
        await self.client.batch_execute(query)

    async def rollback(self) -> None:
        """Discard the changes made in the transaction."""
        self._finish()
        await self.client.batch_execute(self._rollback_query())

    async def batch_execute(self, query: str) -> None:
        """Like the client's ``batch_execute``."""
        await self.client.batch_execute(query)

    async def transaction(self) -> Transaction:
        """Start a nested transaction through a savepoint with a generated name."""
        return await self._savepoint(None)

    async def savepoint(self, name: str) -> Transaction:
        """Start a nested transaction through a savepoint called ``name``."""
        return await self._savepoint(name)

    async def _savepoint(self, name: Optional[str]) -> Transaction:
        depth = self.depth + 1
        if name is None:
            name = f"sp_{depth}"
        await self.batch_execute(f"SAVEPOINT {name}")
        return Transaction(self.client, name, depth)

    async def prepare(self, query: str) -> Any:
        """Like the client's ``prepare``."""
        return await self.client.prepare(query)

    async def prepare_typed(self, query: str, parameter_types: Sequence[Any]) -> Any:
        """Like the client's ``prepare_typed``."""
        return await self.client.prepare_typed(query, parameter_types)

    async def query(self, statement: Any, params: Sequence[Any] = ()) -> Any:
        """Like the client's ``query``."""
        return await self.client.query(statement, params)

    async def query_one(self, statement: Any, params: Sequence[Any] = ()) -> Any:
        """Like the client's ``query_one``."""
        return await self.client.query_one(statement, params)

    async def query_opt(self, statement: Any, params: Sequence[Any] = ()) -> Any:
        """Like the client's ``query_opt``."""
        return await self.client.query_opt(statement, params)

    async def execute(self, statement: Any, params: Sequence[Any] = ()) -> int:
        """Like the client's ``execute``."""
        return await self.client.execute(statement, params)

    async def simple_query(self, query: str) -> Any:
        """Like the client's ``simple_query``."""
        return await self.client.simple_query(query)

    async def copy_in(self, statement: Any) -> Any:
        """Like the client's ``copy_in``."""
        return await self.client.copy_in(statement)

    async def copy_out(self, statement: Any) -> Any:
        """Like the client's ``copy_out``."""
        return await self.client.copy_out(statement)

    async def __aenter__(self) -> Transaction:
        return self

    async def __aexit__(
        self,
        exc_type: Optional[type[BaseException]],
        exc: Optional[BaseException],
        tb: Optional[TracebackType],
    ) -> None:
        if self._done:
            return
        if exc is None:
            await self.rollback()
            return
        try:
            await self.rollback()
        except Exception:
            pass


class TransactionBuilder:
    """Collects the options of a transaction before starting it."""

    def __init__(self, client: Any) -> None:
        self.client = client
        self._isolation_level: Optional[IsolationLevel] = None
        self._read_only: Optional[bool] = None
        self._deferrable: Optional[bool] = None

    def isolation_level(self, level: IsolationLevel) -> TransactionBuilder:
        """Set the isolation level."""
        self._isolation_level = level
        return self

    def read_only(self, read_only: bool) -> TransactionBuilder:
        """Set the access mode."""
        self._read_only = read_only
        return self

    def deferrable(self, deferrable: bool) -> TransactionBuilder:
        """Set the deferrability."""
        self._deferrable = deferrable
        return self

    @property
    def query(self) -> str:
        return build_start_query(self._isolation_level, self._read_only, self._deferrable)

    async def start(self) -> Transaction:
        """Begin the transaction; it rolls back unless committed."""
        await self.client.batch_execute(self.query)
        return Transaction(self.client)