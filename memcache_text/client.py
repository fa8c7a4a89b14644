"""
memcached Text Protocol Client

A Connection owns one stream to a memcached server and exposes one
coroutine per protocol command. Every command writes its request, flushes
it, and reads the complete response before returning, so a Connection
must only be used by one task at a time. Use several Connections for
concurrency.

Usage:
    conn = await open_connection("127.0.0.1", 11211)
    await conn.set("foo", "bar")
    found = await conn.get("foo")      # ("foo", Value(flags=0, data=b"bar"))
    await close_connection(conn)

Expiration times:
    exptime 0 never expires. Values up to 60*60*24*30 seconds are taken by
    the server as an offset from now, larger values as a Unix timestamp.
    The client sends the number as given.

noreply:
    Storage, delete and counter commands accept noreply. The request is
    sent without waiting for an answer and success is assumed locally
    (STORED, True or None), so failures on the server are never reported.
"""

import asyncio
import dataclasses
import logging
from typing import Callable, Dict, List, Optional, Sequence, Tuple, Union

from .config.settings import settings
from .network.stream import Stream, open_stream
from .protocol.commands import (
    CasValue,
    DecodeFailure,
    ProtocolError,
    Reply,
    StorageOptions,
    TransportError,
    Value,
)
from .protocol.parser import ProtocolParser

logger = logging.getLogger(__name__)

ValueEntry = Tuple[str, Value]
CasEntry = Tuple[str, CasValue]


def _storage_options(options: Optional[StorageOptions], overrides: dict) -> StorageOptions:
    """Combine an explicit StorageOptions with flags=/exptime=/noreply= keywords."""
    if options is None:
        return StorageOptions(**overrides)
    if overrides:
        return dataclasses.replace(options, **overrides)
    return options


class Connection:
    """
    A single connection to a memcached server.

    Commands must be awaited one at a time. A command that is cancelled,
    or stops before reading its whole response, leaves the connection
    broken: every later command raises TransportError.

    Attributes:
        stream: The Stream the requests and responses travel over
        parser: The ProtocolParser used to encode and decode them
        host: Server host (informational)
        port: Server port (informational)
    """

    def __init__(self, stream: Stream, host: str = None, port: int = None):
        self.stream = stream
        self.parser = ProtocolParser(encoding=stream.encoding)
        self.host = host
        self.port = port
        self._broken = False
        self._in_flight = False

    @property
    def broken(self) -> bool:
        """True once the stream can no longer be trusted."""
        return self._broken

    async def close(self) -> None:
        """Close the underlying stream."""
        await self.stream.close()
        logger.info(f"Connection to {self.host}:{self.port} closed")

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    # ------------------------------------------------------------------
    # Stream plumbing
    # ------------------------------------------------------------------

    def _mark_broken(self, exc: BaseException) -> None:
        if not self._broken:
            logger.warning(f"Connection to {self.host}:{self.port} unusable: {exc!r}")
        self._broken = True

    def _finish(self) -> None:
        """The whole response to the current command has been consumed."""
        self._in_flight = False

    async def _send(self, request: bytes, expect_reply: bool = True) -> None:
        if self._broken:
            raise TransportError("connection is unusable after a previous failure")
        if self._in_flight:
            # An earlier command stopped before reading its whole response
            exc = TransportError("previous command did not finish reading its response")
            self._mark_broken(exc)
            raise exc

        self._in_flight = True
        try:
            self.stream.write(request)
            await self.stream.flush()
        except (TransportError, asyncio.CancelledError) as exc:
            self._mark_broken(exc)
            raise
        if not expect_reply:
            self._finish()

    async def _read_line(self) -> str:
        try:
            line = await self.stream.read_line()
        except (TransportError, DecodeFailure, asyncio.CancelledError) as exc:
            self._mark_broken(exc)
            raise
        logger.debug(f"<- {line}")
        return line

    async def _read_exact(self, size: int) -> bytes:
        try:
            return await self.stream.read_exact(size)
        except (TransportError, asyncio.CancelledError) as exc:
            self._mark_broken(exc)
            raise

    async def _request(self, request: bytes, decode: Callable[[str], object]):
        """Send a request and decode its single reply line."""
        await self._send(request)
        line = await self._read_line()
        self._finish()
        try:
            return decode(line)
        except DecodeFailure as exc:
            self._mark_broken(exc)
            raise

    async def _read_value(self, with_cas: bool):
        """
        Read one retrieval unit.

        Returns:
            (key, Value or CasValue), or None once the END line arrives.
        """
        line = await self._read_line()
        if self.parser.is_end(line):
            self._finish()
            return None

        try:
            key, flags, length, unique = self.parser.parse_value_line(line, with_cas)
            block = await self._read_exact(length + 2)
            data = self.parser.parse_data_block(block, length)
        except ProtocolError:
            # An error line replaces the whole response
            self._finish()
            raise
        except DecodeFailure as exc:
            self._mark_broken(exc)
            raise

        if with_cas:
            return key, CasValue(flags, unique, data)
        return key, Value(flags, data)

    async def _retrieve(self, command: str, keys: Sequence[str]):
        """Send get/gets and yield each unit until END."""
        await self._send(self.parser.format_retrieval(command, keys))
        with_cas = command == "gets"
        while True:
            entry = await self._read_value(with_cas)
            if entry is None:
                return
            yield entry

    async def _retrieve_one(self, command: str, key: str):
        found = None
        async for entry in self._retrieve(command, [key]):
            if found is not None:
                exc = DecodeFailure(f"more than one value returned for single-key {command}", entry[0])
                self._mark_broken(exc)
                raise exc
            found = entry
        return found

    # ------------------------------------------------------------------
    # Storage commands
    # ------------------------------------------------------------------

    async def _store(
            self,
            command: str,
            key: str,
            value: Union[bytes, str],
            options: Optional[StorageOptions],
            **kwargs,
    ) -> Reply:
        options = _storage_options(options, kwargs)
        logger.debug(f"-> {command} {key}")
        request = self.parser.format_storage(command, key, value, options)
        if options.noreply:
            await self._send(request, expect_reply=False)
            return Reply.STORED
        return await self._request(request, self.parser.parse_storage_reply)

    async def set(self, key: str, value: Union[bytes, str], options: StorageOptions = None, **kwargs) -> Reply:
        """Store this data."""
        return await self._store("set", key, value, options, **kwargs)

    async def add(self, key: str, value: Union[bytes, str], options: StorageOptions = None, **kwargs) -> Reply:
        """Store this data, but only if the server doesn't already hold the key."""
        return await self._store("add", key, value, options, **kwargs)

    async def replace(self, key: str, value: Union[bytes, str], options: StorageOptions = None, **kwargs) -> Reply:
        """Store this data, but only if the server already holds the key."""
        return await self._store("replace", key, value, options, **kwargs)

    async def append(self, key: str, value: Union[bytes, str], options: StorageOptions = None, **kwargs) -> Reply:
        """Add this data after the existing data. The server ignores flags and exptime."""
        return await self._store("append", key, value, options, **kwargs)

    async def prepend(self, key: str, value: Union[bytes, str], options: StorageOptions = None, **kwargs) -> Reply:
        """Add this data before the existing data. The server ignores flags and exptime."""
        return await self._store("prepend", key, value, options, **kwargs)

    async def cas(
            self,
            key: str,
            unique: int,
            value: Union[bytes, str],
            options: StorageOptions = None,
            **kwargs,
    ) -> Reply:
        """
        Store this data, but only if nobody updated it since it was fetched.

        Args:
            key: Key to store under
            unique: CAS token from a previous gets
            value: Data to store
            options: StorageOptions (or flags=, exptime=, noreply= keywords)

        Returns:
            Reply.STORED on success, Reply.EXISTS if the token is stale,
            Reply.NOT_FOUND if the key has vanished.
        """
        options = _storage_options(options, kwargs)
        logger.debug(f"-> cas {key} {unique}")
        request = self.parser.format_cas(key, unique, value, options)
        if options.noreply:
            await self._send(request, expect_reply=False)
            return Reply.STORED
        return await self._request(request, self.parser.parse_storage_reply)

    # ------------------------------------------------------------------
    # Retrieval commands
    # ------------------------------------------------------------------

    async def get(self, key: str) -> Optional[ValueEntry]:
        """Return (key, Value) or None if the key was not found."""
        logger.debug(f"-> get {key}")
        return await self._retrieve_one("get", key)

    async def gets(self, key: str) -> Optional[CasEntry]:
        """Return (key, CasValue) or None if the key was not found."""
        logger.debug(f"-> gets {key}")
        return await self._retrieve_one("gets", key)

    async def getl(self, keys: Sequence[str]) -> List[ValueEntry]:
        """Return the found items in the order the server sent them."""
        if not keys:
            return []
        logger.debug(f"-> get {len(keys)} keys")
        return [entry async for entry in self._retrieve("get", keys)]

    async def geth(self, keys: Sequence[str]) -> Dict[str, Value]:
        """Return the found items keyed by key."""
        if not keys:
            return {}
        logger.debug(f"-> get {len(keys)} keys")
        return {key: item async for key, item in self._retrieve("get", keys)}

    async def getsl(self, keys: Sequence[str]) -> List[CasEntry]:
        """Like getl, with CAS tokens."""
        if not keys:
            return []
        logger.debug(f"-> gets {len(keys)} keys")
        return [entry async for entry in self._retrieve("gets", keys)]

    async def getsh(self, keys: Sequence[str]) -> Dict[str, CasValue]:
        """Like geth, with CAS tokens."""
        if not keys:
            return {}
        logger.debug(f"-> gets {len(keys)} keys")
        return {key: item async for key, item in self._retrieve("gets", keys)}

    # ------------------------------------------------------------------
    # Deletion
    # ------------------------------------------------------------------

    async def delete(self, key: str, noreply: bool = False) -> bool:
        """
        Delete an item.

        Returns:
            True if it was deleted, False if it was not found. Always True
            with noreply.
        """
        logger.debug(f"-> delete {key}")
        request = self.parser.format_delete(key, noreply)
        if noreply:
            await self._send(request, expect_reply=False)
            return True
        return await self._request(request, self.parser.parse_delete_reply)

    # ------------------------------------------------------------------
    # Increment/Decrement
    # ------------------------------------------------------------------

    async def _counter(self, command: str, key: str, amount, noreply: bool, decode):
        logger.debug(f"-> {command} {key} {amount}")
        request = self.parser.format_counter(command, key, amount, noreply)
        if noreply:
            await self._send(request, expect_reply=False)
            return None
        return await self._request(request, decode)

    async def incr64(self, key: str, amount: int, noreply: bool = False) -> Optional[int]:
        """
        Increment a 64-bit unsigned counter.

        Returns:
            The new value, or None if the key was not found or noreply is
            set. Overflow wraps around at 2**64 on the server.
        """
        return await self._counter("incr", key, amount, noreply, self.parser.parse_counter)

    async def decr64(self, key: str, amount: int, noreply: bool = False) -> Optional[int]:
        """
        Decrement a 64-bit unsigned counter.

        Returns:
            The new value, or None if the key was not found or noreply is
            set. The server stops at 0 instead of going negative.
        """
        return await self._counter("decr", key, amount, noreply, self.parser.parse_counter)

    async def incr(self, key: str, amount: str, noreply: bool = False) -> Optional[str]:
        """Like incr64, but takes and returns decimal strings."""
        return await self._counter("incr", key, amount, noreply, self.parser.parse_counter_text)

    async def decr(self, key: str, amount: str, noreply: bool = False) -> Optional[str]:
        """Like decr64, but takes and returns decimal strings."""
        return await self._counter("decr", key, amount, noreply, self.parser.parse_counter_text)

    # ------------------------------------------------------------------
    # Other commands
    # ------------------------------------------------------------------

    async def flush_all(self, delay: int = 0) -> None:
        """Invalidate all items, immediately or after delay seconds."""
        logger.debug(f"-> flush_all {delay}")
        await self._request(self.parser.format_flush_all(delay), self.parser.parse_ok)

    async def version(self) -> str:
        """Return the server's version string."""
        logger.debug("-> version")
        return await self._request(self.parser.format_version(), self.parser.parse_version)


async def open_connection(
        host: str = None,
        port: int = None,
        timeout: float = None,
        encoding: str = None,
) -> Connection:
    """
    Connect to a memcached server.

    Args:
        host: Server host (default from settings)
        port: Server port (default from settings)
        timeout: Connect timeout in seconds (default from settings, 0 disables)
        encoding: Encoding for keys and str values (default from settings)

    Raises:
        ResolutionError, ConnectError
    """
    host = host if host is not None else settings.HOST
    port = port if port is not None else settings.PORT
    timeout = timeout if timeout is not None else settings.CONNECT_TIMEOUT

    stream = await open_stream(host, port, timeout=timeout, encoding=encoding)
    logger.info(f"Connected to memcached at {host}:{port}")
    return Connection(stream, host=host, port=port)


async def close_connection(conn: Connection) -> None:
    """Close a connection opened with open_connection."""
    await conn.close()

