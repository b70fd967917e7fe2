import pytest

from pgpipe.errors import ErrorKind, PgError
from pgpipe.messages import (
    CommandComplete,
    ErrorResponse,
    NoticeResponse,
    Notification,
    NotificationResponse,
    error_fields,
    rows_from_tag,
)


@pytest.mark.parametrize(
    "tag, expected",
    [
        ("INSERT 0 5", 5),
        ("SELECT 3", 3),
        ("UPDATE 12", 12),
        ("COPY 7", 7),
    ],
)
def test_rows_from_tag_takes_last_word(tag, expected):
    assert rows_from_tag(tag) == expected


@pytest.mark.parametrize("tag", ["BEGIN", "", "SELECT 3 ", "SELECT x3", "SELECT -1"])
def test_rows_from_tag_without_count_is_zero(tag):
    assert rows_from_tag(tag) == 0


def test_rows_from_tag_overflow_is_zero():
    assert rows_from_tag("SELECT " + str(2**64)) == 0
    assert rows_from_tag("SELECT " + str(2**64 - 1)) == 2**64 - 1


def test_command_complete_rows_matches_tag():
    message = CommandComplete("DELETE 9")
    assert message.rows == rows_from_tag(message.tag)


def test_notification_response_converts():
    message = NotificationResponse(42, "events", "hello")
    assert message.to_notification() == Notification(42, "events", "hello")


def test_notice_parses_to_db_error():
    notice = NoticeResponse(error_fields([("S", "NOTICE"), ("C", "00000"), ("M", "hi")]))
    db_error = notice.to_db_error()
    assert db_error.severity == "NOTICE"
    assert db_error.message == "hi"


def test_malformed_notice_raises_parse_error():
    notice = NoticeResponse((("S", "NOTICE"), ("C", "00000")))
    with pytest.raises(PgError) as info:
        notice.to_db_error()
    assert info.value.kind is ErrorKind.PARSE


def test_error_response_builds_db_error():
    response = ErrorResponse((("S", "ERROR"), ("C", "42P01"), ("M", "missing")))
    error = response.to_error()
    assert error.kind is ErrorKind.DB
    assert error.code() == "42P01"