"""Asynchronous notifications and the backend messages the client consumes."""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Optional, Union

from .errors import DbError, PgError, parse_db_error

_MAX_U64 = 2**64 - 1
_U64_PATTERN = re.compile(r"\+?[0-9]+")

ErrorField = tuple[Union[str, int], str]


def rows_from_tag(tag: str) -> int:
    """Return the row count at the end of a command tag, or 0 if there is none."""
    last = tag.rsplit(" ", 1)[-1]
    if _U64_PATTERN.fullmatch(last) is None:
        return 0
    value = int(last)
    return value if value <= _MAX_U64 else 0


@dataclass(frozen=True)
class Notification:
    """An asynchronous notification raised with NOTIFY."""

    process_id: int
    channel: str
    payload: str


@dataclass(frozen=True)
class CommandCompleted:
    """A statement of a simple query finished, having touched ``rows`` rows."""

    rows: int


@dataclass(frozen=True)
class DataRow:
    """One row of values; None stands for SQL NULL."""

    values: tuple[Optional[bytes], ...]


@dataclass(frozen=True)
class RowDescription:
    """The names (and optionally type oids) of the columns of the rows that follow."""

    names: tuple[str, ...]
    type_oids: tuple[int, ...] = ()


@dataclass(frozen=True)
class CommandComplete:
    """A command finished; ``tag`` is the server's command tag."""

    tag: str

    @property
    def rows(self) -> int:
        return rows_from_tag(self.tag)


@dataclass(frozen=True)
class EmptyQueryResponse:
    """The query string was empty."""


@dataclass(frozen=True)
class ReadyForQuery:
    """The server is ready for a new query; ``status`` is the transaction status."""

    status: str = "I"


@dataclass(frozen=True)
class PortalSuspended:
    """A portal stopped after reaching its row limit."""


@dataclass(frozen=True)
class BindComplete:
    """A Bind message was accepted."""


@dataclass(frozen=True)
class CopyData:
    """A chunk of COPY data."""

    data: bytes


@dataclass(frozen=True)
class CopyDone:
    """The end of a COPY data stream."""


@dataclass(frozen=True)
class CopyInResponse:
    """The server is ready to receive COPY data."""

    format: int = 0
    column_formats: tuple[int, ...] = ()


@dataclass(frozen=True)
class CopyOutResponse:
    """The server is about to send COPY data."""

    format: int = 0
    column_formats: tuple[int, ...] = ()


@dataclass(frozen=True)
class NoticeResponse:
    """A notice, made of the same fields as an error."""

    fields: tuple[ErrorField, ...]

    def to_db_error(self) -> DbError:
        """Parse the notice; raises PgError of kind PARSE if it is malformed."""
        try:
            return parse_db_error(self.fields)
        except ValueError as exc:
            raise PgError.parse(exc) from exc


@dataclass(frozen=True)
class NotificationResponse:
    """A notification as it arrives from the server."""

    process_id: int
    channel: str
    payload: str

    def to_notification(self) -> Notification:
        return Notification(self.process_id, self.channel, self.payload)


@dataclass(frozen=True)
class ParameterStatus:
    """A runtime parameter reported by the server."""

    name: str
    value: str


@dataclass(frozen=True)
class ErrorResponse:
    """An error reported by the server."""

    fields: tuple[ErrorField, ...]

    def to_error(self) -> PgError:
        """The client error carrying the parsed server error."""
        return PgError.db(self.fields)


BackendMessage = Union[
    DataRow,
    RowDescription,
    CommandComplete,
    EmptyQueryResponse,
    ReadyForQuery,
    PortalSuspended,
    BindComplete,
    CopyData,
    CopyDone,
    CopyInResponse,
    CopyOutResponse,
    NoticeResponse,
    NotificationResponse,
    ParameterStatus,
    ErrorResponse,
]


def error_fields(pairs: Iterable[ErrorField]) -> tuple[ErrorField, ...]:
    """Freeze ``pairs`` into the tuple form message classes hold."""
    return tuple((key, value) for key, value in pairs)