"""
Pytest Configuration and Fixtures

This module provides shared fixtures and configuration for all tests.
"""

import asyncio
import socket
import pytest
import pytest_asyncio
from contextlib import closing
from typing import AsyncGenerator, Dict, List, Tuple

from memcache_text.client import Connection, open_connection
from memcache_text.network.stream import Stream
from memcache_text.protocol.parser import ProtocolParser


def find_free_port() -> int:
    """Find an available port for testing."""
    with closing(socket.socket(socket.AF_INET, socket.SOCK_STREAM)) as s:
        s.bind(('', 0))
        s.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        return s.getsockname()[1]


# ============================================================================
# Protocol Fixtures
# ============================================================================

@pytest.fixture
def parser() -> ProtocolParser:
    """Create a ProtocolParser instance."""
    return ProtocolParser()


# ============================================================================
# Scripted Stream Fixtures
# ============================================================================

class RecordingWriter:
    """
    Stand-in for asyncio.StreamWriter that keeps everything written.

    Attributes:
        data: All bytes written so far
        drains: Number of drain() calls
        closed: Whether close() was called
    """

    def __init__(self):
        self.data = b""
        self.drains = 0
        self.closed = False

    def write(self, data: bytes) -> None:
        self.data += data

    async def drain(self) -> None:
        self.drains += 1

    def close(self) -> None:
        self.closed = True

    def is_closing(self) -> bool:
        return self.closed

    async def wait_closed(self) -> None:
        return None


class TrackingReader(asyncio.StreamReader):
    """StreamReader that counts line and block reads."""

    def __init__(self):
        super().__init__()
        self.reads = 0

    async def readuntil(self, separator=b'\n'):
        self.reads += 1
        return await super().readuntil(separator)

    async def readexactly(self, n):
        self.reads += 1
        return await super().readexactly(n)


@pytest.fixture
def scripted():
    """
    Factory fixture building a Connection whose server replies are fixed.

    Must be called from inside a running event loop.

    Usage:
        async def test_something(scripted):
            conn, reader, writer = scripted(b"STORED\\r\\n")
            await conn.set("foo", "bar")
            assert writer.data == b"set foo 0 0 3\\r\\nbar\\r\\n"
    """
    def factory(response: bytes, eof: bool = True) -> Tuple[Connection, TrackingReader, RecordingWriter]:
        reader = TrackingReader()
        reader.feed_data(response)
        if eof:
            reader.feed_eof()
        writer = RecordingWriter()
        conn = Connection(Stream(reader, writer), host="scripted", port=0)
        return conn, reader, writer
    return factory


# ============================================================================
# Stub memcached Server
# ============================================================================

UINT64 = 2 ** 64


class MemcachedStub:
    """
    Minimal in-process memcached speaking the text protocol.

    Items live in a dict as (flags, data, unique). Fetching the key
    'boom' answers SERVER_ERROR and drops the connection, mimicking a
    severe server fault.

    Usage:
        stub = MemcachedStub('127.0.0.1', port)
        await stub.start()
        ...
        await stub.stop()
    """

    VERSION = "1.6.21 stub"

    def __init__(self, host: str, port: int):
        self.host = host
        self.port = port
        self.items: Dict[str, Tuple[int, bytes, int]] = {}
        self.requests: List[str] = []
        self._next_unique = 1
        self._server = None

    def _store(self, key: str, flags: int, data: bytes) -> None:
        self.items[key] = (flags, data, self._next_unique)
        self._next_unique += 1

    async def handle_client(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        try:
            while True:
                try:
                    raw = await reader.readuntil(b"\r\n")
                except asyncio.IncompleteReadError:
                    break

                line = raw[:-2].decode()
                self.requests.append(line)
                parts = line.split()
                noreply = bool(parts) and parts[-1] == "noreply"
                if noreply:
                    parts = parts[:-1]

                if parts[:1] in (["get"], ["gets"]) and "boom" in parts:
                    # Severe fault: connection is dropped after the error line
                    writer.write(b"SERVER_ERROR out of memory storing object\r\n")
                    await writer.drain()
                    break

                response = await self._execute(parts, reader)
                if not noreply:
                    writer.write(response)
                    await writer.drain()
        except ConnectionResetError:
            pass
        finally:
            writer.close()
            try:
                await writer.wait_closed()
            except ConnectionError:
                pass

    async def _execute(self, parts: list, reader: asyncio.StreamReader):
        command = parts[0] if parts else ""

        if command in ("set", "add", "replace", "append", "prepend", "cas"):
            expected = 6 if command == "cas" else 5
            if len(parts) != expected:
                return b"ERROR\r\n"
            key, flags, length = parts[1], int(parts[2]), int(parts[4])
            block = await reader.readexactly(length + 2)
            if block[-2:] != b"\r\n":
                return b"CLIENT_ERROR bad data chunk\r\n"
            data = block[:-2]
            current = self.items.get(key)

            if command == "add" and current is not None:
                return b"NOT_STORED\r\n"
            if command in ("replace", "append", "prepend") and current is None:
                return b"NOT_STORED\r\n"
            if command == "cas":
                if current is None:
                    return b"NOT_FOUND\r\n"
                if current[2] != int(parts[5]):
                    return b"EXISTS\r\n"
            if command == "append":
                flags, data = current[0], current[1] + data
            elif command == "prepend":
                flags, data = current[0], data + current[1]

            self._store(key, flags, data)
            return b"STORED\r\n"

        if command in ("get", "gets"):
            if len(parts) < 2:
                return b"ERROR\r\n"
            out = b""
            for key in parts[1:]:
                if key in self.items:
                    flags, data, unique = self.items[key]
                    header = f"VALUE {key} {flags} {len(data)}"
                    if command == "gets":
                        header += f" {unique}"
                    out += header.encode() + b"\r\n" + data + b"\r\n"
            return out + b"END\r\n"

        if command == "delete" and len(parts) == 2:
            if self.items.pop(parts[1], None) is None:
                return b"NOT_FOUND\r\n"
            return b"DELETED\r\n"

        if command in ("incr", "decr") and len(parts) == 3:
            key = parts[1]
            if not parts[2].isdigit():
                return b"CLIENT_ERROR invalid numeric delta argument\r\n"
            if key not in self.items:
                return b"NOT_FOUND\r\n"
            flags, data, _ = self.items[key]
            if not data.isdigit():
                return b"CLIENT_ERROR cannot increment or decrement non-numeric value\r\n"
            if command == "incr":
                value = (int(data) + int(parts[2])) % UINT64
            else:
                value = max(int(data) - int(parts[2]), 0)
            self._store(key, flags, str(value).encode())
            return f"{value}\r\n".encode()

        if command == "flush_all" and len(parts) <= 2:
            self.items.clear()
            return b"OK\r\n"

        if command == "version" and len(parts) == 1:
            return f"VERSION {self.VERSION}\r\n".encode()

        return b"ERROR\r\n"

    async def start(self) -> None:
        self._server = await asyncio.start_server(self.handle_client, self.host, self.port)

    async def stop(self) -> None:
        if self._server is None:
            return
        self._server.close()
        await self._server.wait_closed()
        self._server = None


@pytest.fixture
def server_port() -> int:
    """Get a free port for server testing."""
    return find_free_port()


@pytest_asyncio.fixture
async def stub(server_port: int) -> AsyncGenerator[MemcachedStub, None]:
    """Start a stub memcached on a random free port for one test."""
    srv = MemcachedStub('127.0.0.1', server_port)
    await srv.start()

    yield srv

    await srv.stop()


@pytest_asyncio.fixture
async def conn(stub: MemcachedStub, server_port: int) -> AsyncGenerator[Connection, None]:
    """A Connection to the stub server, closed after the test."""
    connection = await open_connection('127.0.0.1', server_port)

    yield connection

    await connection.close()


# ============================================================================
# Pytest Configuration
# ============================================================================

def pytest_configure(config):
    """Configure custom pytest markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )



# Configure asyncio mode for pytest-asyncio
pytest_plugins = ['pytest_asyncio']
