"""TLS negotiation and the stream that may or may not be encrypted."""

from __future__ import annotations

import enum
import struct
from dataclasses import dataclass
from typing import Any, Optional

from .errors import PgError

_SSL_REQUEST_CODE = 80877103
_SSL_REQUEST = struct.pack("!ii", 8, _SSL_REQUEST_CODE)


class SslMode(enum.Enum):
    """Whether TLS is skipped, tried, or demanded when connecting."""

    DISABLE = "disable"
    PREFER = "prefer"
    REQUIRE = "require"


@dataclass(frozen=True)
class ChannelBinding:
    """Channel binding information produced by a TLS handshake."""

    end_point: Optional[bytes] = None

    @staticmethod
    def none() -> ChannelBinding:
        """Binding information that carries nothing."""
        return ChannelBinding()

    @staticmethod
    def tls_server_end_point(data: bytes) -> ChannelBinding:
        """Binding information of the ``tls-server-end-point`` kind."""
        return ChannelBinding(bytes(data))


class NoTlsError(Exception):
    """Raised when a TLS handshake is attempted without a TLS implementation."""

    def __str__(self) -> str:
        return "no TLS implementation configured"


class NoTls:
    """A connector that never performs TLS; usable with ``disable`` and ``prefer``."""

    def __repr__(self) -> str:
        return "NoTls()"

    def can_connect(self) -> bool:
        """NoTls cannot perform a handshake."""
        return False

    async def connect(self, stream: Any) -> Any:
        """Always fails with NoTlsError."""
        raise NoTlsError()


class MaybeTlsStream:
    """A stream that is either the raw transport or a TLS session over it."""

    def __init__(self, stream: Any, tls: bool = False) -> None:
        self.stream = stream
        self.is_tls = tls

    def __repr__(self) -> str:
        kind = "Tls" if self.is_tls else "Raw"
        return f"MaybeTlsStream.{kind}({self.stream!r})"

    async def read(self, n: int) -> bytes:
        return await self.stream.read(n)

    async def read_exactly(self, n: int) -> bytes:
        return await self.stream.read_exactly(n)

    def write(self, data: bytes) -> None:
        self.stream.write(data)

    async def flush(self) -> None:
        await self.stream.flush()

    async def close(self) -> None:
        await self.stream.close()

    def channel_binding(self) -> ChannelBinding:
        """Binding information of the TLS session, or none for a raw stream."""
        if not self.is_tls:
            return ChannelBinding.none()
        return self.stream.channel_binding()


def _can_connect(tls: Any) -> bool:
    check = getattr(tls, "can_connect", None)
    return True if check is None else bool(check())


async def connect_tls(stream: Any, mode: SslMode, tls: Any) -> MaybeTlsStream:
    """Negotiate TLS on ``stream`` as ``mode`` asks, using the connector ``tls``.

    Raises PgError of kind IO on transport failure and of kind TLS when TLS is
    required but unavailable or the handshake fails.
    """
    if mode is SslMode.DISABLE:
        return MaybeTlsStream(stream)
    if mode is SslMode.PREFER and not _can_connect(tls):
        return MaybeTlsStream(stream)

    try:
        stream.write(_SSL_REQUEST)
        await stream.flush()
        reply = await stream.read_exactly(1)
    except (OSError, EOFError) as exc:
        raise PgError.io(exc) from exc

    if reply != b"S":
        if mode is SslMode.REQUIRE:
            raise PgError.tls(ConnectionError("server does not support TLS"))
        return MaybeTlsStream(stream)

    try:
        session = await tls.connect(stream)
    except Exception as exc:
        raise PgError.tls(exc) from exc
    return MaybeTlsStream(session, tls=True)