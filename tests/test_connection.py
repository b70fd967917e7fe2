import asyncio
import struct

import pytest

from pgpipe.connection import Connection
from pgpipe.copy_in import CopyInSink
from pgpipe.errors import DbError, ErrorKind, PgError
from pgpipe.messages import (
    CommandCompleted,
    Notification,
    NotificationResponse,
    ParameterStatus,
    ReadyForQuery,
)
from pgpipe.query import SimpleQueryStream, execute

TERMINATE = b"X\x00\x00\x00\x04"


def frame(tag: bytes, body: bytes = b"") -> bytes:
    return tag + struct.pack("!i", len(body) + 4) + body


def cstr(text: str) -> bytes:
    return text.encode() + b"\x00"


def data_row(*values: bytes) -> bytes:
    body = struct.pack("!h", len(values))
    for value in values:
        body += struct.pack("!i", len(value)) + value
    return frame(b"D", body)


def error_body(**fields: str) -> bytes:
    return b"".join(key.encode() + cstr(value) for key, value in fields.items()) + b"\x00"


READY = frame(b"Z", b"I")
BIND_COMPLETE = frame(b"2")
QUERY = frame(b"Q", cstr("SELECT 1"))


class FakeStream:
    def __init__(self) -> None:
        self.reader = asyncio.StreamReader()
        self.written = bytearray()
        self.closed = False

    def feed(self, *frames: bytes) -> None:
        for data in frames:
            self.reader.feed_data(data)

    async def read_exactly(self, n: int) -> bytes:
        return await self.reader.readexactly(n)

    def write(self, data: bytes) -> None:
        self.written += data

    async def flush(self) -> None:
        pass

    async def close(self) -> None:
        self.closed = True


class BrokenStream(FakeStream):
    def write(self, data: bytes) -> None:
        raise OSError("broken pipe")


async def _drain(channel: asyncio.Queue):
    while True:
        chunk = await channel.get()
        if chunk is None:
            return
        yield chunk


@pytest.mark.asyncio
async def test_execute_round_trip_and_terminate():
    stream = FakeStream()
    conn = Connection(stream)
    responses = conn.submit(QUERY)
    conn.close()
    stream.feed(BIND_COMPLETE, data_row(b"x"), frame(b"C", cstr("SELECT 1")), READY)
    runner = asyncio.create_task(conn.run())
    rows = await asyncio.wait_for(execute(responses), 2)
    await asyncio.wait_for(runner, 2)
    assert rows == 1
    assert bytes(stream.written) == QUERY + TERMINATE
    assert stream.closed is True


@pytest.mark.asyncio
async def test_simple_query_rows_are_decoded():
    stream = FakeStream()
    conn = Connection(stream)
    responses = conn.submit(QUERY)
    field = cstr("name") + struct.pack("!ihihih", 0, 0, 25, -1, -1, 0)
    stream.feed(
        frame(b"T", struct.pack("!h", 1) + field),
        data_row(b"alice"),
        frame(b"C", cstr("SELECT 1")),
        READY,
    )
    conn.close()
    runner = asyncio.create_task(conn.run())

    async def collect():
        return [item async for item in SimpleQueryStream(responses)]

    items = await asyncio.wait_for(collect(), 2)
    await asyncio.wait_for(runner, 2)
    assert len(items) == 2
    assert items[0].get("name") == "alice"
    assert items[1] == CommandCompleted(1)


@pytest.mark.asyncio
async def test_notice_notification_and_parameter_status():
    stream = FakeStream()
    conn = Connection(stream)
    stream.feed(
        frame(b"S", cstr("application_name") + cstr("demo")),
        frame(b"A", struct.pack("!i", 42) + cstr("jobs") + cstr("ready")),
        frame(b"N", error_body(S="NOTICE", C="00000", M="hello")),
    )
    agen = conn.messages()
    first = await asyncio.wait_for(anext(agen), 2)
    second = await asyncio.wait_for(anext(agen), 2)
    conn.close()
    rest = [item async for item in agen]
    assert first == Notification(42, "jobs", "ready")
    assert isinstance(second, DbError)
    assert (second.severity, second.code, second.message) == ("NOTICE", "00000", "hello")
    assert rest == []
    assert conn.parameter("application_name") == "demo"
    assert conn.parameter("missing") is None


@pytest.mark.asyncio
async def test_pending_messages_are_processed_first():
    stream = FakeStream()
    conn = Connection(
        stream,
        parameters={"server_version": "14"},
        pending=[ParameterStatus("a", "b"), NotificationResponse(1, "c", "p")],
    )
    agen = conn.messages()
    first = await asyncio.wait_for(anext(agen), 2)
    assert first == Notification(1, "c", "p")
    assert conn.parameter("a") == "b"
    assert conn.parameter("server_version") == "14"
    conn.close()
    assert [item async for item in agen] == []
    assert bytes(stream.written) == TERMINATE


@pytest.mark.asyncio
async def test_end_of_stream_reports_closed():
    stream = FakeStream()
    conn = Connection(stream)
    responses = conn.submit(QUERY)
    stream.reader.feed_eof()
    with pytest.raises(PgError) as info:
        await asyncio.wait_for(conn.run(), 2)
    assert info.value.is_closed()
    with pytest.raises(PgError) as waiting:
        await execute(responses)
    assert waiting.value.is_closed()


@pytest.mark.asyncio
async def test_error_without_request_is_raised():
    stream = FakeStream()
    conn = Connection(stream)
    stream.feed(frame(b"E", error_body(S="FATAL", C="57P01", M="terminating")))
    with pytest.raises(PgError) as info:
        await asyncio.wait_for(conn.run(), 2)
    assert info.value.kind is ErrorKind.DB
    assert info.value.code() == "57P01"


@pytest.mark.asyncio
async def test_unexpected_message_without_request():
    stream = FakeStream()
    conn = Connection(stream)
    stream.feed(READY)
    with pytest.raises(PgError) as info:
        await asyncio.wait_for(conn.run(), 2)
    assert info.value.kind is ErrorKind.UNEXPECTED_MESSAGE


@pytest.mark.asyncio
async def test_malformed_length_is_a_parse_error():
    stream = FakeStream()
    conn = Connection(stream)
    stream.feed(b"Z\x00\x00\x00\x02")
    with pytest.raises(PgError) as info:
        await asyncio.wait_for(conn.run(), 2)
    assert info.value.kind is ErrorKind.PARSE


@pytest.mark.asyncio
async def test_submit_after_close_raises_closed():
    conn = Connection(FakeStream())
    conn.close()
    with pytest.raises(PgError) as info:
        conn.submit(QUERY)
    assert info.value.is_closed()


@pytest.mark.asyncio
async def test_submit_rejects_other_types():
    conn = Connection(FakeStream())
    with pytest.raises(TypeError):
        conn.submit(12)


@pytest.mark.asyncio
async def test_write_failure_is_io_error():
    stream = BrokenStream()
    conn = Connection(stream)
    conn.submit(QUERY)
    with pytest.raises(PgError) as info:
        await asyncio.wait_for(conn.run(), 2)
    assert info.value.kind is ErrorKind.IO


@pytest.mark.asyncio
async def test_uninterpreted_replies_reach_their_request():
    stream = FakeStream()
    conn = Connection(stream)
    close_request = frame(b"C", b"S" + cstr("s0")) + frame(b"S")
    responses = conn.submit(close_request)
    stream.feed(frame(b"3"), READY)
    conn.close()
    await asyncio.wait_for(conn.run(), 2)
    replies = [item async for item in responses]
    assert len(replies) == 2
    assert replies[-1] == ReadyForQuery("I")
    assert bytes(stream.written) == close_request + TERMINATE


@pytest.mark.asyncio
async def test_copy_in_streams_chunks_in_order():
    stream = FakeStream()
    conn = Connection(stream)
    channel: asyncio.Queue = asyncio.Queue()
    responses = conn.submit(_drain(channel))
    stream.feed(
        BIND_COMPLETE,
        frame(b"G", b"\x00" + struct.pack("!h", 0)),
        frame(b"C", cstr("COPY 1")),
        READY,
    )
    runner = asyncio.create_task(conn.run())
    request = frame(b"B", b"placeholder")
    sink = await asyncio.wait_for(CopyInSink.start(channel.put, responses, request), 2)
    await sink.send(b"1\n")
    rows = await asyncio.wait_for(sink.finish(), 2)
    await channel.put(None)
    conn.close()
    await asyncio.wait_for(runner, 2)
    assert rows == 1
    expected = (
        request
        + frame(b"d", b"1\n")
        + b"c\x00\x00\x00\x04"
        + b"S\x00\x00\x00\x04"
        + TERMINATE
    )
    assert bytes(stream.written) == expected


@pytest.mark.asyncio
async def test_messages_cannot_be_driven_twice():
    stream = FakeStream()
    conn = Connection(stream)
    conn.close()
    await asyncio.wait_for(conn.run(), 2)
    assert stream.closed is True
    with pytest.raises(RuntimeError):
        await anext(conn.messages())