"""
Async Stream Adapter Module

Wraps an asyncio StreamReader/StreamWriter pair behind the small set of
primitives the protocol needs:

- read_line(): one CRLF-terminated line, decoded, without the terminator
- read_exact(n): exactly n bytes
- write() / flush(): queue bytes and drain them to the socket
- close(): shut the connection down

Every failure of the underlying socket is re-raised as TransportError so
callers only deal with the package's own exception hierarchy.
"""

import asyncio
import logging
import socket
from asyncio import StreamReader, StreamWriter

from ..config.settings import settings
from ..protocol.commands import (
    ConnectError,
    DecodeFailure,
    ResolutionError,
    TransportError,
)

logger = logging.getLogger(__name__)


class Stream:
    """
    Reliable, ordered byte stream to one server.

    Attributes:
        reader: StreamReader the responses are read from
        writer: StreamWriter the requests are written to
        encoding: Text encoding used to decode response lines
    """

    def __init__(self, reader: StreamReader, writer: StreamWriter, encoding: str = None):
        self.reader = reader
        self.writer = writer
        self.encoding = encoding if encoding is not None else settings.ENCODING
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def read_line(self) -> str:
        """Read one line and return it without its trailing CRLF."""
        try:
            data = await self.reader.readuntil(b"\r\n")
        except asyncio.IncompleteReadError as exc:
            raise TransportError(
                f"connection closed while reading a line ({len(exc.partial)} bytes pending)"
            ) from exc
        except asyncio.LimitOverrunError as exc:
            raise TransportError(f"response line longer than {settings.READ_BUFFER_SIZE} bytes") from exc
        except (ConnectionError, OSError) as exc:
            raise TransportError(f"read failed: {exc}") from exc

        try:
            return data[:-2].decode(self.encoding)
        except UnicodeDecodeError as exc:
            raise DecodeFailure("invalid encoding in response line", data) from exc

    async def read_exact(self, size: int) -> bytes:
        """Read exactly size bytes, failing if the stream ends first."""
        try:
            return await self.reader.readexactly(size)
        except asyncio.IncompleteReadError as exc:
            raise TransportError(
                f"connection closed after {len(exc.partial)} of {size} bytes"
            ) from exc
        except (ConnectionError, OSError) as exc:
            raise TransportError(f"read failed: {exc}") from exc

    def write(self, data: bytes) -> None:
        """Queue bytes for sending."""
        if self._closed:
            raise TransportError("stream is closed")
        try:
            self.writer.write(data)
        except (ConnectionError, OSError, RuntimeError) as exc:
            raise TransportError(f"write failed: {exc}") from exc

    async def flush(self) -> None:
        """Wait until queued bytes have been handed to the socket."""
        try:
            await self.writer.drain()
        except (ConnectionError, OSError) as exc:
            raise TransportError(f"write failed: {exc}") from exc

    async def close(self) -> None:
        """Close the underlying connection. Closing twice is a no-op."""
        if self._closed:
            return
        self._closed = True
        self.writer.close()
        try:
            await self.writer.wait_closed()
        except (ConnectionError, OSError) as exc:
            # The peer may already have dropped the connection
            logger.debug(f"Error while closing stream: {exc}")


async def open_stream(host: str, port: int, timeout: float = None, encoding: str = None) -> Stream:
    """
    Open a TCP connection to host:port.

    Args:
        host: Server host name or address
        port: Server port
        timeout: Seconds to wait for the connection (None or 0 waits forever)
        encoding: Text encoding for response lines (default from settings)

    Raises:
        ResolutionError: The host name could not be resolved
        ConnectError: The connection was refused, unreachable or timed out
    """
    try:
        connect = asyncio.open_connection(host, port, limit=settings.READ_BUFFER_SIZE)
        if timeout:
            reader, writer = await asyncio.wait_for(connect, timeout=timeout)
        else:
            reader, writer = await connect
    except socket.gaierror as exc:
        raise ResolutionError(f"cannot resolve host name: {host}") from exc
    except asyncio.TimeoutError as exc:
        raise ConnectError(f"timeout connecting to {host}:{port}") from exc
    except OSError as exc:
        raise ConnectError(f"cannot connect to {host}:{port}: {exc}") from exc

    logger.debug(f"Connected to {host}:{port}")
    return Stream(reader, writer, encoding=encoding)
