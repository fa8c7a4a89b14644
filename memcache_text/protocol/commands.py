"""
Protocol Reply and Error Definitions

This module defines the closed set of outcomes a memcached text protocol
command can produce:

- Semantic outcomes (Reply, Value, CasValue) are returned as data.
- ProtocolError is raised when the server rejects a request.
- DecodeFailure is raised when a response breaks the expected grammar.
- TransportError is raised when the byte stream itself fails.
"""

from dataclasses import dataclass
from enum import Enum
from typing import NamedTuple


class Reply(Enum):
    """Outcome of a storage command. Never raised as an error."""
    STORED = "STORED"
    NOT_STORED = "NOT_STORED"
    EXISTS = "EXISTS"
    NOT_FOUND = "NOT_FOUND"


class ErrorKind(Enum):
    """The three ways a server can reject a command."""
    GENERIC = "ERROR"
    CLIENT_ERROR = "CLIENT_ERROR"
    SERVER_ERROR = "SERVER_ERROR"


class Value(NamedTuple):
    """An item returned by the get family."""
    flags: int
    data: bytes


class CasValue(NamedTuple):
    """An item returned by the gets family, with its CAS token."""
    flags: int
    unique: int
    data: bytes


@dataclass
class StorageOptions:
    """
    Per-call options for storage commands.

    Attributes:
        flags: Opaque unsigned integer stored with the item and returned
            verbatim on retrieval (16 bits is the portable range, 32 bits
            on memcached 1.2.1+).
        exptime: Expiration time in seconds. 0 means never expire. The
            server reads values up to 30 days (2592000) as an offset from
            now and larger values as an absolute Unix timestamp.
        noreply: Ask the server not to answer. The command then always
            reports success locally, so server-side failures go unseen.
    """
    flags: int = 0
    exptime: int = 0
    noreply: bool = False


class MemcacheError(Exception):
    """Base class for every error raised by this package."""


class ProtocolError(MemcacheError):
    """
    The server explicitly rejected the request.

    After a SERVER_ERROR the server may close the connection; any later
    command on it then fails with a TransportError.
    """

    def __init__(self, kind: ErrorKind, message: str = ""):
        self.kind = kind
        self.message = message
        if message:
            super().__init__(f"{kind.value} {message}")
        else:
            super().__init__(kind.value)


class DecodeFailure(MemcacheError):
    """A response did not match the grammar of the command that was sent."""

    def __init__(self, reason: str, line=None):
        self.reason = reason
        self.line = line
        if line is not None:
            super().__init__(f"{reason}: {line!r}")
        else:
            super().__init__(reason)


class TransportError(MemcacheError):
    """The underlying byte stream failed (EOF, reset, short read)."""


class ResolutionError(TransportError):
    """The server host name could not be resolved."""


class ConnectError(TransportError):
    """The TCP connection could not be established."""
