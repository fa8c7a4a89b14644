"""
memcache-text: memcached Text Protocol Client

An asyncio client for the line-oriented memcached text protocol over a
single persistent TCP connection.
"""

from .client import Connection, close_connection, open_connection
from .protocol.commands import (
    CasValue,
    ConnectError,
    DecodeFailure,
    ErrorKind,
    MemcacheError,
    ProtocolError,
    Reply,
    ResolutionError,
    StorageOptions,
    TransportError,
    Value,
)

__version__ = "1.0.0"

__all__ = [
    "CasValue",
    "ConnectError",
    "Connection",
    "DecodeFailure",
    "ErrorKind",
    "MemcacheError",
    "ProtocolError",
    "Reply",
    "ResolutionError",
    "StorageOptions",
    "TransportError",
    "Value",
    "close_connection",
    "open_connection",
]
