"""Errors reported by the server and by the client itself."""

from __future__ import annotations

import enum
import re
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Optional, Union

_MAX_U32 = 2**32 - 1
_U32_PATTERN = re.compile(r"\+?[0-9]+")


class Severity(enum.Enum):
    """The severity of a server error or notice."""

    PANIC = "PANIC"
    FATAL = "FATAL"
    ERROR = "ERROR"
    WARNING = "WARNING"
    NOTICE = "NOTICE"
    DEBUG = "DEBUG"
    INFO = "INFO"
    LOG = "LOG"

    def __str__(self) -> str:
        return self.value


def parse_severity(value: str) -> Optional[Severity]:
    """Return the severity named by ``value``, or None if it names none."""
    try:
        return Severity(value)
    except ValueError:
        return None


@dataclass(frozen=True)
class ErrorPosition:
    """A cursor position in the client's query, or in a server-generated one if ``query`` is set."""

    position: int
    query: Optional[str] = None

    @property
    def is_internal(self) -> bool:
        return self.query is not None


@dataclass(eq=True)
class DbError(Exception):
    """An error or notice sent by the server."""

    severity: str
    code: str
    message: str
    parsed_severity: Optional[Severity] = None
    detail: Optional[str] = None
    hint: Optional[str] = None
    position: Optional[ErrorPosition] = None
    where: Optional[str] = None
    schema: Optional[str] = None
    table: Optional[str] = None
    column: Optional[str] = None
    datatype: Optional[str] = None
    constraint: Optional[str] = None
    file: Optional[str] = None
    line: Optional[int] = None
    routine: Optional[str] = None

    def __str__(self) -> str:
        text = f"{self.severity}: {self.message}"
        if self.detail is not None:
            text += f"\nDETAIL: {self.detail}"
        if self.hint is not None:
            text += f"\nHINT: {self.hint}"
        return text


_TEXT_FIELDS = {
    "S": "severity",
    "C": "code",
    "M": "message",
    "D": "detail",
    "H": "hint",
    "W": "where",
    "s": "schema",
    "t": "table",
    "c": "column",
    "d": "datatype",
    "n": "constraint",
    "F": "file",
    "R": "routine",
}


def _parse_u32(value: str, field: str) -> int:
    if _U32_PATTERN.fullmatch(value) is None or int(value) > _MAX_U32:
        raise ValueError(f"`{field}` field did not contain an integer")
    return int(value)


def parse_db_error(fields: Iterable[tuple[Union[str, int], str]]) -> DbError:
    """Build a DbError from ``(field type, value)`` pairs of an error or notice body.

    Raises ValueError if a required field is missing or a field is malformed.
    """
    values: dict[str, object] = {}
    normal_position: Optional[int] = None
    internal_position: Optional[int] = None
    internal_query: Optional[str] = None

    for field_type, value in fields:
        key = chr(field_type) if isinstance(field_type, int) else field_type
        if key in _TEXT_FIELDS:
            values[_TEXT_FIELDS[key]] = value
        elif key == "P":
            normal_position = _parse_u32(value, "P")
        elif key == "p":
            internal_position = _parse_u32(value, "p")
        elif key == "q":
            internal_query = value
        elif key == "L":
            values["line"] = _parse_u32(value, "L")
        elif key == "V":
            severity = parse_severity(value)
            if severity is None:
                raise ValueError("`V` field contained an invalid value")
            values["parsed_severity"] = severity

    for key, name in (("S", "severity"), ("C", "code"), ("M", "message")):
        if name not in values:
            raise ValueError(f"`{key}` field missing")

    if normal_position is not None:
        values["position"] = ErrorPosition(normal_position)
    elif internal_position is not None:
        if internal_query is None:
            raise ValueError("`q` field missing but `p` field present")
        values["position"] = ErrorPosition(internal_position, internal_query)

    return DbError(**values)


class ErrorKind(enum.Enum):
    """The category of a client error."""

    IO = enum.auto()
    UNEXPECTED_MESSAGE = enum.auto()
    TLS = enum.auto()
    TO_SQL = enum.auto()
    FROM_SQL = enum.auto()
    COLUMN = enum.auto()
    CLOSED = enum.auto()
    DB = enum.auto()
    PARSE = enum.auto()
    ENCODE = enum.auto()
    AUTHENTICATION = enum.auto()
    CONFIG_PARSE = enum.auto()
    CONFIG = enum.auto()
    ROW_COUNT = enum.auto()
    CONNECT = enum.auto()
    TIMEOUT = enum.auto()


_DESCRIPTIONS = {
    ErrorKind.IO: "error communicating with the server",
    ErrorKind.UNEXPECTED_MESSAGE: "unexpected message from server",
    ErrorKind.TLS: "error performing TLS handshake",
    ErrorKind.CLOSED: "connection closed",
    ErrorKind.DB: "db error",
    ErrorKind.PARSE: "error parsing response from server",
    ErrorKind.ENCODE: "error encoding message to server",
    ErrorKind.AUTHENTICATION: "authentication error",
    ErrorKind.CONFIG_PARSE: "invalid connection string",
    ErrorKind.CONFIG: "invalid configuration",
    ErrorKind.ROW_COUNT: "query returned an unexpected number of rows",
    ErrorKind.CONNECT: "error connecting to server",
    ErrorKind.TIMEOUT: "timeout waiting for server",
}


class PgError(Exception):
    """An error communicating with the server."""

    def __init__(
        self,
        kind: ErrorKind,
        cause: Optional[BaseException] = None,
        *,
        index: Optional[int] = None,
        column: Optional[str] = None,
    ) -> None:
        super().__init__(kind, cause)
        self.kind = kind
        self.cause = cause
        self.index = index
        self.column = column
        if cause is not None:
            self.__cause__ = cause

    def __str__(self) -> str:
        if self.kind is ErrorKind.TO_SQL:
            text = f"error serializing parameter {self.index}"
        elif self.kind is ErrorKind.FROM_SQL:
            text = f"error deserializing column {self.index}"
        elif self.kind is ErrorKind.COLUMN:
            text = f"invalid column `{self.column}`"
        else:
            text = _DESCRIPTIONS[self.kind]
        if self.cause is not None:
            text += f": {self.cause}"
        return text

    def __repr__(self) -> str:
        return f"PgError(kind={self.kind.name}, cause={self.cause!r})"

    def as_db_error(self) -> Optional[DbError]:
        """Return the cause if it is a DbError."""
        return self.cause if isinstance(self.cause, DbError) else None

    def is_closed(self) -> bool:
        """Whether the error reports a closed connection."""
        return self.kind is ErrorKind.CLOSED

    def code(self) -> Optional[str]:
        """The SQLSTATE code of the underlying DbError, if any."""
        db_error = self.as_db_error()
        return db_error.code if db_error is not None else None

    @classmethod
    def closed(cls) -> PgError:
        return cls(ErrorKind.CLOSED)

    @classmethod
    def unexpected_message(cls) -> PgError:
        return cls(ErrorKind.UNEXPECTED_MESSAGE)

    @classmethod
    def db(cls, fields: Iterable[tuple[Union[str, int], str]]) -> PgError:
        """Build an error from the fields of an ErrorResponse."""
        try:
            return cls(ErrorKind.DB, parse_db_error(fields))
        except ValueError as exc:
            return cls(ErrorKind.PARSE, exc)

    @classmethod
    def parse(cls, cause: BaseException) -> PgError:
        return cls(ErrorKind.PARSE, cause)

    @classmethod
    def encode(cls, cause: BaseException) -> PgError:
        return cls(ErrorKind.ENCODE, cause)

    @classmethod
    def to_sql(cls, cause: BaseException, index: int) -> PgError:
        return cls(ErrorKind.TO_SQL, cause, index=index)

    @classmethod
    def from_sql(cls, cause: BaseException, index: int) -> PgError:
        return cls(ErrorKind.FROM_SQL, cause, index=index)

    @classmethod
    def invalid_column(cls, column: str) -> PgError:
        return cls(ErrorKind.COLUMN, column=column)

    @classmethod
    def tls(cls, cause: BaseException) -> PgError:
        return cls(ErrorKind.TLS, cause)

    @classmethod
    def io(cls, cause: BaseException) -> PgError:
        return cls(ErrorKind.IO, cause)

    @classmethod
    def authentication(cls, cause: BaseException) -> PgError:
        return cls(ErrorKind.AUTHENTICATION, cause)

    @classmethod
    def config_parse(cls, cause: BaseException) -> PgError:
        return cls(ErrorKind.CONFIG_PARSE, cause)

    @classmethod
    def config(cls, cause: BaseException) -> PgError:
        return cls(ErrorKind.CONFIG, cause)

    @classmethod
    def row_count(cls) -> PgError:
        return cls(ErrorKind.ROW_COUNT)

    @classmethod
    def connect(cls, cause: BaseException) -> PgError:
        return cls(ErrorKind.CONNECT, cause)

    @classmethod
    def timeout(cls) -> PgError:
        return cls(ErrorKind.TIMEOUT)