# pgpipe

Building blocks of an asynchronous PostgreSQL client for asyncio. A `Connection` writes
requests in the order they are submitted and routes the server's replies back to each
request in the same order, so several requests can be on the wire at once. The other
modules turn those replies into rows, row counts, COPY data and errors.

The package has no dependencies outside the standard library.

## Modules

- `pgpipe.errors`: `PgError`, raised for protocol, I/O, TLS and server failures. Its
  `kind` is an `ErrorKind`. When the server reported the error,
  `PgError.as_db_error()` returns the `DbError` and `PgError.code()` its SQLSTATE code;
  `PgError.is_closed()` tells whether the connection went away. `parse_db_error` builds
  a `DbError` from the `(field type, value)` pairs of an error or notice message, and
  `parse_severity` maps a name such as `"ERROR"` to a `Severity`.
- `pgpipe.statement`: `Statement` (name, parameter types, `Column`s) and `Portal`. Given a
  client object, each sends its own Close message through `client.send` once it is
  garbage-collected; `close_message()` returns those bytes. `to_statement` returns a
  `Statement` unchanged or prepares a query string with the function you pass.
- `pgpipe.messages`: dataclasses for the backend messages the client reacts to
  (`DataRow`, `RowDescription`, `CommandComplete`, `ReadyForQuery`, `BindComplete`,
  `CopyData`, `CopyDone`, `ErrorResponse`, `NoticeResponse`, `NotificationResponse`,
  `ParameterStatus` and others), `Notification`, `CommandCompleted`, and `rows_from_tag`,
  which reads the row count at the end of a command tag (0 if there is none).
- `pgpipe.row`: `Row` and `SimpleQueryRow`. Values are selected by position or by column
  name; `column_index` tries an exact name first, then ignores ASCII case. `Row.get`
  decodes binary values of the types bool, bytea, char, int2/4/8, oid, float4/8, text,
  varchar, bpchar, name, json, jsonb and uuid; `Row.raw` returns the undecoded bytes.
  `SimpleQueryRow.get` returns text. NULL is `None`.
- `pgpipe.socket`: `Socket`, an asyncio stream opened with `Socket.open_tcp(host, port)`
  or `Socket.open_unix(path)`.
- `pgpipe.tls`: `SslMode`, `ChannelBinding`, `NoTls`, `NoTlsError`, `MaybeTlsStream` and
  `connect_tls`, which sends the SSL request and, if the server agrees, hands the stream
  to your TLS connector's `connect`.
- `pgpipe.query`: `RowStream`, `SimpleQueryStream` and `CopyOutStream` (async
  iterators over a request's replies), and `expect_bind_complete`, `execute`,
  `batch_execute` and `start_copy_out`.
- `pgpipe.copy_in`: `CopyInSink` for `COPY ... FROM STDIN`. `send` buffers small pieces
  and sends chunks above 4096 bytes, `finish` returns the number of rows copied, and
  `abort` (also run when an unfinished sink leaves an `async with` block) cancels it.
- `pgpipe.transaction`: `TransactionBuilder`, `Transaction` and `IsolationLevel`.
  `build_start_query` produces the `START TRANSACTION` statement. Nested transactions
  use savepoints (`sp_1`, `sp_2`, ... unless named). An unfinished transaction rolls back
  when it leaves an `async with` block or is garbage-collected.
- `pgpipe.connection`: `Connection`. `submit` queues encoded frontend messages (or an
  async iterable of them) and returns the stream of replies; `run` drives the
  connection until it terminates, and `messages` does the same while yielding notices
  (as `DbError`) and notifications. `close` stops taking requests and sends Terminate
  once outstanding replies have arrived. `parameter` returns a runtime parameter the
  server reported.

## Examples

Counting the rows touched by a statement from its replies:

```python
import asyncio

from pgpipe.messages import BindComplete, CommandComplete, ReadyForQuery
from pgpipe.query import execute


async def replies():
    yield BindComplete()
    yield CommandComplete("INSERT 0 3")
    yield ReadyForQuery()


assert asyncio.run(execute(replies())) == 3
```

Reading a value from a row by column name:

```python
from pgpipe.row import Row
from pgpipe.statement import Column, Statement

statement = Statement("s0", columns=[Column("id", "int4")])
row = Row(statement, [b"\x00\x00\x00\x2a"])
assert row.get("ID") == 42
```

Building a transaction's start statement:

```python
from pgpipe.transaction import IsolationLevel, build_start_query

query = build_start_query(IsolationLevel.SERIALIZABLE, True, True)
assert query == "START TRANSACTION ISOLATION LEVEL SERIALIZABLE, READ ONLY, DEFERRABLE"
```

## What the package does not do

- It does not perform the startup handshake or authentication. A `Connection` expects a
  stream on which the session is already established.
- There is no client class with `prepare`, `query` or `execute` methods, and no
  encoding of query parameters or of Parse/Bind/Execute messages: callers submit
  encoded messages themselves. `Transaction` and `TransactionBuilder` delegate to a
  client object you supply that provides `batch_execute` and the other methods they
  forward to.
- There is no connection-string parsing and no TLS implementation; `NoTls` is the only
  connector included.

## Tests

Install the test extra, then run the suite:

```
pip install -e ".[test]"
pytest
```