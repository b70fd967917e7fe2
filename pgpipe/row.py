"""Rows returned by queries and value lookup by column."""

from __future__ import annotations

import json
import string
import struct
import uuid
from collections.abc import Callable, Sequence
from typing import Any, Optional, Union

from .errors import PgError
from .statement import Column, Statement

_ASCII_LOWER = str.maketrans(string.ascii_uppercase, string.ascii_lowercase)

_OID_NAMES = {
    16: "bool",
    17: "bytea",
    18: "char",
    19: "name",
    20: "int8",
    21: "int2",
    23: "int4",
    25: "text",
    26: "oid",
    114: "json",
    700: "float4",
    701: "float8",
    705: "unknown",
    1042: "bpchar",
    1043: "varchar",
    2950: "uuid",
    3802: "jsonb",
}


def _unpack(fmt: str) -> Callable[[bytes], Any]:
    def decode(raw: bytes) -> Any:
        return struct.unpack(fmt, raw)[0]

    return decode


def _decode_bool(raw: bytes) -> bool:
    if len(raw) != 1:
        raise ValueError("invalid buffer size")
    return raw != b"\x00"


def _decode_text(raw: bytes) -> str:
    return raw.decode("utf-8")


def _decode_jsonb(raw: bytes) -> Any:
    if raw[:1] != b"\x01":
        raise ValueError("unsupported JSONB encoding version")
    return json.loads(raw[1:].decode("utf-8"))


def _decode_uuid(raw: bytes) -> uuid.UUID:
    return uuid.UUID(bytes=raw)


_DECODERS: dict[str, Callable[[bytes], Any]] = {
    "bool": _decode_bool,
    "bytea": bytes,
    "char": _unpack("!b"),
    "int2": _unpack("!h"),
    "int4": _unpack("!i"),
    "int8": _unpack("!q"),
    "oid": _unpack("!I"),
    "float4": _unpack("!f"),
    "float8": _unpack("!d"),
    "text": _decode_text,
    "varchar": _decode_text,
    "bpchar": _decode_text,
    "name": _decode_text,
    "unknown": _decode_text,
    "json": lambda raw: json.loads(raw.decode("utf-8")),
    "jsonb": _decode_jsonb,
    "uuid": _decode_uuid,
}


def _type_name(type_: Any) -> Optional[str]:
    if isinstance(type_, bool):
        return None
    if isinstance(type_, int):
        return _OID_NAMES.get(type_)
    if isinstance(type_, str):
        return type_.lower()
    name = getattr(type_, "name", None)
    if isinstance(name, str):
        return name.lower()
    oid = getattr(type_, "oid", None)
    return _OID_NAMES.get(oid) if isinstance(oid, int) else None


def _column_name(column: Any) -> str:
    return column if isinstance(column, str) else column.name


def column_index(idx: Union[int, str], columns: Sequence[Any]) -> Optional[int]:
    """Resolve a position or column name to a position, or None if nothing matches.

    Names match exactly first, then ignoring ASCII case.
    """
    if isinstance(idx, bool) or not isinstance(idx, (int, str)):
        raise TypeError(f"column index must be an int or str, got {type(idx).__name__}")
    if isinstance(idx, int):
        return idx if 0 <= idx < len(columns) else None
    names = [_column_name(column) for column in columns]
    if idx in names:
        return names.index(idx)
    wanted = idx.translate(_ASCII_LOWER)
    return next(
        (position for position, name in enumerate(names) if name.translate(_ASCII_LOWER) == wanted),
        None,
    )


class SimpleColumn:
    """A column of a simple query row."""

    __slots__ = ("name",)

    def __init__(self, name: str) -> None:
        self.name = name

    def __eq__(self, other: object) -> bool:
        return isinstance(other, SimpleColumn) and other.name == self.name

    def __hash__(self) -> int:
        return hash(self.name)

    def __repr__(self) -> str:
        return f"SimpleColumn(name={self.name!r})"


class Row:
    """A row of binary-format values returned by an extended query."""

    def __init__(self, statement: Statement, values: Sequence[Optional[bytes]]) -> None:
        self.statement = statement
        self._values = tuple(values)

    @property
    def columns(self) -> tuple[Column, ...]:
        return self.statement.columns

    def __len__(self) -> int:
        return len(self.columns)

    def __repr__(self) -> str:
        return f"Row(columns={self.columns!r})"

    def _position(self, idx: Union[int, str]) -> int:
        position = column_index(idx, self.columns)
        if position is None:
            raise PgError.invalid_column(str(idx))
        return position

    def raw(self, idx: Union[int, str]) -> Optional[bytes]:
        """The undecoded bytes of a value, or None for NULL."""
        return self._values[self._position(idx)]

    def get(self, idx: Union[int, str]) -> Any:
        """Decode a value selected by position or column name; NULL gives None."""
        position = self._position(idx)
        column = self.columns[position]
        name = _type_name(column.type)
        decoder = _DECODERS.get(name) if name is not None else None
        if decoder is None:
            raise PgError.from_sql(
                TypeError(f"cannot convert the Postgres type {column.type!r} to a Python value"),
                position,
            )
        raw = self._values[position]
        if raw is None:
            return None
        try:
            return decoder(raw)
        except (ValueError, struct.error) as exc:
            raise PgError.from_sql(exc, position) from exc


class SimpleQueryRow:
    """A row of text values returned by a simple query."""

    def __init__(self, columns: Sequence[SimpleColumn], values: Sequence[Optional[bytes]]) -> None:
        self.columns = tuple(columns)
        self._values = tuple(values)

    def __len__(self) -> int:
        return len(self.columns)

    def __repr__(self) -> str:
        return f"SimpleQueryRow(columns={self.columns!r})"

    def get(self, idx: Union[int, str]) -> Optional[str]:
        """The text of a value selected by position or column name; NULL gives None."""
        position = column_index(idx, self.columns)
        if position is None:
            raise PgError.invalid_column(str(idx))
        raw = self._values[position]
        if raw is None:
            return None
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise PgError.from_sql(exc, position) from exc