import struct

import pytest

from pgpipe.copy_in import CopyInSink
from pgpipe.errors import ErrorKind, PgError
from pgpipe.messages import (
    BindComplete,
    CommandComplete,
    CopyInResponse,
    ErrorResponse,
    ReadyForQuery,
)

COPY_DONE_SYNC = b"c\x00\x00\x00\x04S\x00\x00\x00\x04"
COPY_FAIL_SYNC = b"f\x00\x00\x00\x05\x00S\x00\x00\x00\x04"


class Recorder:
    def __init__(self):
        self.sent = []

    async def __call__(self, message):
        self.sent.append(message)


async def _responses(*messages):
    for message in messages:
        yield message


def _payload(message):
    assert message[:1] == b"d"
    (length,) = struct.unpack("!i", message[1:5])
    assert length == len(message) - 1
    return message[5:]


def _sink(*responses):
    recorder = Recorder()
    return recorder, CopyInSink(recorder, _responses(*responses))


@pytest.mark.asyncio
async def test_small_data_is_buffered_until_flush():
    recorder, sink = _sink()
    await sink.send(b"abc")
    assert recorder.sent == []
    await sink.flush()
    assert recorder.sent == [b"d\x00\x00\x00\x07abc"]


@pytest.mark.asyncio
async def test_large_item_sent_immediately():
    recorder, sink = _sink()
    data = b"x" * 5000
    await sink.send(data)
    assert len(recorder.sent) == 1
    assert _payload(recorder.sent[0]) == data


@pytest.mark.asyncio
async def test_large_item_joins_buffered_data():
    recorder, sink = _sink()
    await sink.send(b"head")
    await sink.send(b"y" * 5000)
    assert len(recorder.sent) == 1
    assert _payload(recorder.sent[0]) == b"head" + b"y" * 5000


@pytest.mark.asyncio
async def test_buffer_sent_once_past_threshold():
    recorder, sink = _sink()
    await sink.send(b"a" * 4000)
    assert recorder.sent == []
    await sink.send(b"b" * 200)
    assert _payload(recorder.sent[0]) == b"a" * 4000 + b"b" * 200


@pytest.mark.asyncio
async def test_finish_returns_row_count():
    recorder, sink = _sink(CommandComplete("COPY 3"))
    await sink.send(b"1\n2\n3\n")
    rows = await sink.finish()
    assert rows == 3
    assert _payload(recorder.sent[0]) == b"1\n2\n3\n"
    assert recorder.sent[-1] == COPY_DONE_SYNC
    assert sink.finished


@pytest.mark.asyncio
async def test_finish_unexpected_message():
    _, sink = _sink(ReadyForQuery())
    with pytest.raises(PgError) as info:
        await sink.finish()
    assert info.value.kind is ErrorKind.UNEXPECTED_MESSAGE


@pytest.mark.asyncio
async def test_finish_reports_server_error():
    fields = (("S", "ERROR"), ("C", "23505"), ("M", "duplicate"))
    _, sink = _sink(ErrorResponse(fields))
    with pytest.raises(PgError) as info:
        await sink.finish()
    assert info.value.code() == "23505"


@pytest.mark.asyncio
async def test_finish_on_closed_stream():
    _, sink = _sink()
    with pytest.raises(PgError) as info:
        await sink.finish()
    assert info.value.is_closed()


@pytest.mark.asyncio
async def test_send_after_finish_is_closed():
    _, sink = _sink(CommandComplete("COPY 0"))
    assert await sink.finish() == 0
    with pytest.raises(PgError) as info:
        await sink.send(b"late")
    assert info.value.is_closed()


@pytest.mark.asyncio
async def test_abort_sends_copy_fail_and_drops_buffer():
    recorder, sink = _sink()
    await sink.send(b"pending")
    await sink.abort()
    assert recorder.sent == [COPY_FAIL_SYNC]
    await sink.abort()
    assert recorder.sent == [COPY_FAIL_SYNC]


@pytest.mark.asyncio
async def test_context_manager_aborts_unfinished_copy():
    recorder, sink = _sink()
    async with sink:
        await sink.send(b"row\n")
    assert recorder.sent == [COPY_FAIL_SYNC]


@pytest.mark.asyncio
async def test_context_manager_after_finish_sends_nothing_more():
    recorder, sink = _sink(CommandComplete("COPY 1"))
    async with sink:
        await sink.send(b"row\n")
        await sink.finish()
    assert recorder.sent[-1] == COPY_DONE_SYNC


@pytest.mark.asyncio
async def test_start_performs_handshake():
    recorder = Recorder()
    sink = await CopyInSink.start(
        recorder,
        _responses(BindComplete(), CopyInResponse(), CommandComplete("COPY 2")),
        b"request",
    )
    assert recorder.sent == [b"request"]
    assert await sink.finish() == 2


@pytest.mark.asyncio
async def test_start_rejects_wrong_order():
    with pytest.raises(PgError) as info:
        await CopyInSink.start(Recorder(), _responses(CopyInResponse()), b"request")
    assert info.value.kind is ErrorKind.UNEXPECTED_MESSAGE