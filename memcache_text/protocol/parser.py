"""
Protocol Parser Module

This module formats outgoing memcached text protocol requests and decodes
the lines and data blocks the server sends back. It performs no I/O: the
Connection reads lines and blocks from the stream and hands them here.

Request format:
    <command line>\\r\\n[<data block>\\r\\n]

Responses:
    set/add/replace/append/prepend/cas -> STORED | NOT_STORED | EXISTS | NOT_FOUND
    get/gets <key>+                     -> (VALUE <key> <flags> <bytes> [<unique>]\\r\\n<data>\\r\\n)* END
    delete <key>                        -> DELETED | NOT_FOUND
    incr/decr <key> <amount>            -> <new value> | NOT_FOUND
    flush_all [<delay>]                 -> OK
    version                             -> VERSION <text>

    Any command may instead be answered with
    ERROR | CLIENT_ERROR <msg> | SERVER_ERROR <msg>.
"""

import re
from typing import Iterable, Optional, Tuple, Union

from .commands import (
    DecodeFailure,
    ErrorKind,
    ProtocolError,
    Reply,
    StorageOptions,
)
from ..config.settings import settings

CRLF = b"\r\n"
END = "END"
UINT64_MAX = 2 ** 64 - 1

STORAGE_COMMANDS = ("set", "add", "replace", "append", "prepend")
RETRIEVAL_COMMANDS = ("get", "gets")
COUNTER_COMMANDS = ("incr", "decr")

_UNSIGNED = re.compile(r"[0-9]+")

_REPLIES = {reply.value: reply for reply in Reply}


def _noreply_suffix(noreply: bool) -> str:
    return " noreply" if noreply else ""


def _format_uint64(value: int, field: str) -> str:
    """Format an unsigned 64-bit integer as plain decimal."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"{field} must be an int, got {type(value).__name__}")
    if value < 0 or value > UINT64_MAX:
        raise ValueError(f"{field} out of unsigned 64-bit range: {value}")
    return str(value)


def _parse_unsigned(token: str, limit: Optional[int] = None) -> Optional[int]:
    """Parse a decimal unsigned integer, returning None when malformed."""
    if not _UNSIGNED.fullmatch(token):
        return None
    number = int(token)
    if limit is not None and number > limit:
        return None
    return number


class ProtocolParser:
    """
    Codec for the memcached text protocol.

    The format_* methods build complete request payloads as bytes. The
    parse_* methods decode one response line (already stripped of its
    CRLF) or one data block, returning the typed result, raising
    ProtocolError for error lines and DecodeFailure for anything else
    that does not fit the command's grammar.
    """

    def __init__(self, encoding: str = None):
        """Initialize the parser with the text encoding used for keys and str values."""
        self.encoding = encoding if encoding is not None else settings.ENCODING

    # ------------------------------------------------------------------
    # Request encoding
    # ------------------------------------------------------------------

    def encode_value(self, value: Union[bytes, str]) -> bytes:
        """Return the exact bytes that will be sent as a data block."""
        if isinstance(value, (bytes, bytearray, memoryview)):
            return bytes(value)
        if isinstance(value, str):
            return value.encode(self.encoding)
        raise TypeError(f"value must be bytes or str, got {type(value).__name__}")

    def _line(self, text: str) -> bytes:
        return text.encode(self.encoding) + CRLF

    def format_storage(
            self,
            command: str,
            key: str,
            value: Union[bytes, str],
            options: StorageOptions,
    ) -> bytes:
        """
        Format a set/add/replace/append/prepend request.

        Examples:
            >>> ProtocolParser().format_storage("set", "foo", "bar", StorageOptions())
            b'set foo 0 0 3\\r\\nbar\\r\\n'
        """
        if command not in STORAGE_COMMANDS:
            raise ValueError(f"not a storage command: {command}")

        data = self.encode_value(value)
        header = (
            f"{command} {key} {options.flags:d} {options.exptime:d} {len(data)}"
            f"{_noreply_suffix(options.noreply)}"
        )
        return self._line(header) + data + CRLF

    def format_cas(
            self,
            key: str,
            unique: int,
            value: Union[bytes, str],
            options: StorageOptions,
    ) -> bytes:
        """Format a cas request; the token goes after the byte count."""
        data = self.encode_value(value)
        header = (
            f"cas {key} {options.flags:d} {options.exptime:d} {len(data)} "
            f"{_format_uint64(unique, 'unique')}{_noreply_suffix(options.noreply)}"
        )
        return self._line(header) + data + CRLF

    def format_retrieval(self, command: str, keys: Iterable[str]) -> bytes:
        """Format a get/gets request for one or more keys."""
        if command not in RETRIEVAL_COMMANDS:
            raise ValueError(f"not a retrieval command: {command}")

        keys = list(keys)
        if not keys:
            raise ValueError(f"{command} needs at least one key")
        return self._line(f"{command} {' '.join(keys)}")

    def format_delete(self, key: str, noreply: bool = False) -> bytes:
        """Format a delete request."""
        return self._line(f"delete {key}{_noreply_suffix(noreply)}")

    def format_counter(self, command: str, key: str, amount: Union[int, str], noreply: bool = False) -> bytes:
        """
        Format an incr/decr request.

        Integer amounts must fit in an unsigned 64-bit integer; string
        amounts are sent as given.
        """
        if command not in COUNTER_COMMANDS:
            raise ValueError(f"not a counter command: {command}")

        if isinstance(amount, str):
            text = amount
        else:
            text = _format_uint64(amount, "amount")
        return self._line(f"{command} {key} {text}{_noreply_suffix(noreply)}")

    def format_flush_all(self, delay: int = 0) -> bytes:
        """Format a flush_all request."""
        return self._line(f"flush_all {delay:d}")

    def format_version(self) -> bytes:
        """Format a version request."""
        return self._line("version")

    # ------------------------------------------------------------------
    # Response decoding
    # ------------------------------------------------------------------

    @staticmethod
    def parse_error(line: str) -> Optional[ProtocolError]:
        """
        Map an error line to a ProtocolError, or None if it is not one.

        Examples:
            >>> ProtocolParser.parse_error("CLIENT_ERROR bad data chunk").message
            'bad data chunk'
            >>> ProtocolParser.parse_error("STORED") is None
            True
        """
        for kind in (ErrorKind.GENERIC, ErrorKind.CLIENT_ERROR, ErrorKind.SERVER_ERROR):
            token = kind.value
            if line == token:
                return ProtocolError(kind)
            if line.startswith(token + " "):
                return ProtocolError(kind, line[len(token) + 1:])
        return None

    def unexpected(self, line: str, reason: str = "unexpected reply") -> Exception:
        """Build the exception for a line that does not fit the expected grammar."""
        error = self.parse_error(line)
        if error is not None:
            return error
        return DecodeFailure(reason, line)

    def parse_storage_reply(self, line: str) -> Reply:
        """Decode the reply to a storage command."""
        reply = _REPLIES.get(line)
        if reply is None:
            raise self.unexpected(line)
        return reply

    def parse_delete_reply(self, line: str) -> bool:
        """Decode the reply to delete: True when deleted, False when not found."""
        if line == "DELETED":
            return True
        if line == "NOT_FOUND":
            return False
        raise self.unexpected(line)

    def parse_ok(self, line: str) -> None:
        """Decode the reply to flush_all."""
        if line != "OK":
            raise self.unexpected(line)

    def parse_version(self, line: str) -> str:
        """Return the text after the VERSION prefix, verbatim."""
        prefix = "VERSION "
        if not line.startswith(prefix):
            raise self.unexpected(line)
        return line[len(prefix):]

    @staticmethod
    def is_end(line: str) -> bool:
        """Check for the sentinel line closing a retrieval response."""
        return line == END

    def parse_value_line(self, line: str, with_cas: bool) -> Tuple[str, int, int, Optional[int]]:
        """
        Parse a VALUE header line.

        Args:
            line: The header line without its CRLF
            with_cas: True for the gets family, which carries a CAS token

        Returns:
            (key, flags, byte_count, unique); unique is None for the get family.
        """
        parts = line.split(" ")
        expected = 5 if with_cas else 4

        if not parts or parts[0] != "VALUE":
            raise self.unexpected(line, "incorrect first line of response")
        if len(parts) != expected:
            raise DecodeFailure("incorrect first line of response", line)

        key = parts[1]
        flags = _parse_unsigned(parts[2])
        length = _parse_unsigned(parts[3])
        if not key or flags is None or length is None:
            raise DecodeFailure("incorrect first line of response", line)

        unique = None
        if with_cas:
            unique = _parse_unsigned(parts[4], UINT64_MAX)
            if unique is None:
                raise DecodeFailure("incorrect first line of response", line)

        return key, flags, length, unique

    @staticmethod
    def parse_data_block(block: bytes, length: int) -> bytes:
        """
        Strip the frame terminator from a data block of length + 2 bytes.

        A missing terminator means the byte accounting has desynchronized
        and the stream can no longer be trusted.
        """
        if len(block) != length + 2 or block[length:] != CRLF:
            raise DecodeFailure("no \\r\\n at end of data block", block)
        return block[:length]

    def parse_counter(self, line: str) -> Optional[int]:
        """Decode an incr/decr reply as an unsigned 64-bit integer."""
        if line == "NOT_FOUND":
            return None
        number = _parse_unsigned(line, UINT64_MAX)
        if number is None:
            raise self.unexpected(line)
        return number

    def parse_counter_text(self, line: str) -> Optional[str]:
        """Decode an incr/decr reply, keeping the decimal text as sent."""
        if self.parse_counter(line) is None:
            return None
        return line
