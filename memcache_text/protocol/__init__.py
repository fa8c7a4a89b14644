"""Protocol module for memcache-text."""

from .commands import (
    CasValue,
    DecodeFailure,
    ErrorKind,
    ProtocolError,
    Reply,
    StorageOptions,
    Value,
)
from .parser import ProtocolParser

__all__ = [
    "CasValue",
    "DecodeFailure",
    "ErrorKind",
    "ProtocolError",
    "ProtocolParser",
    "Reply",
    "StorageOptions",
    "Value",
]
