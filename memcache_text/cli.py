#!/usr/bin/env python3
"""
memcache-text Command Line Client

Runs memcached commands against a server, either once from the command
line or from an interactive prompt.

Usage:
    memcache-text version                   # Run one command and exit
    memcache-text                           # Interactive prompt on 127.0.0.1:11211
    memcache-text --host 10.0.0.5 --port 11212
    memcache-text --debug                   # Log every request and reply line

Environment Variables:
    MEMCACHE_HOST       - Server host
    MEMCACHE_PORT       - Server port
    MEMCACHE_DEBUG      - Enable debug logging (true/false)
"""

import argparse
import asyncio
import logging
import sys

from .client import Connection, open_connection
from .config.settings import settings
from .protocol.commands import DecodeFailure, ProtocolError, StorageOptions, TransportError
from .protocol.parser import UINT64_MAX

# Enable command history with arrow keys (works on Unix systems)
try:
    import readline  # noqa: F401
except ImportError:
    pass  # readline not available on Windows by default

logger = logging.getLogger(__name__)

HELP = """
Storage Commands:
-----------------
  set <key> <value> [flags] [exptime]        Store a value
  add <key> <value> [flags] [exptime]        Store only if the key is absent
  replace <key> <value> [flags] [exptime]    Store only if the key exists
  append <key> <value>                       Add data after the existing value
  prepend <key> <value>                      Add data before the existing value
  cas <key> <unique> <value> [flags] [exptime]
                                             Store if unchanged since gets

Retrieval Commands:
-------------------
  get <key> [key ...]                        Fetch values
  gets <key> [key ...]                       Fetch values with CAS tokens

Other Commands:
---------------
  delete <key>                               Delete a key
  incr <key> <amount>                        Increment a counter
  decr <key> <amount>                        Decrement a counter (stops at 0)
  flush_all [delay]                          Invalidate every item
  version                                    Show the server version

Client Commands:
----------------
  help                                       Show this help message
  exit                                       Exit the client
"""

STORAGE = ("set", "add", "replace", "append", "prepend")


class UsageError(Exception):
    """A command line could not be understood."""


def _int_arg(text: str, name: str) -> int:
    try:
        return int(text)
    except ValueError:
        raise UsageError(f"{name} must be an integer: {text}") from None


def _uint64_arg(text: str, name: str) -> int:
    number = _int_arg(text, name)
    if number < 0 or number > UINT64_MAX:
        raise UsageError(f"{name} must be between 0 and {UINT64_MAX}: {text}")
    return number


def _storage_options(extra: list) -> StorageOptions:
    if len(extra) > 2:
        raise UsageError("too many arguments")
    flags = _int_arg(extra[0], "flags") if len(extra) > 0 else 0
    exptime = _int_arg(extra[1], "exptime") if len(extra) > 1 else 0
    return StorageOptions(flags=flags, exptime=exptime)


def _show(conn: Connection, key: str, item) -> str:
    data = item.data.decode(conn.stream.encoding, errors="replace")
    if hasattr(item, "unique"):
        return f"{key} ({item.flags}, {item.unique}) = {data}"
    return f"{key} ({item.flags}) = {data}"


async def _dispatch(conn: Connection, command: str, args: list) -> str:
    if command == "help":
        return HELP.strip("\n")

    if command in STORAGE:
        if len(args) < 2:
            raise UsageError(f"usage: {command} <key> <value> [flags] [exptime]")
        method = getattr(conn, command)
        reply = await method(args[0], args[1], _storage_options(args[2:]))
        return reply.value

    if command == "cas":
        if len(args) < 3:
            raise UsageError("usage: cas <key> <unique> <value> [flags] [exptime]")
        unique = _uint64_arg(args[1], "unique")
        reply = await conn.cas(args[0], unique, args[2], _storage_options(args[3:]))
        return reply.value

    if command in ("get", "gets"):
        if not args:
            raise UsageError(f"usage: {command} <key> [key ...]")
        if len(args) == 1:
            found = await (conn.get(args[0]) if command == "get" else conn.gets(args[0]))
            entries = [found] if found is not None else []
        else:
            entries = await (conn.getl(args) if command == "get" else conn.getsl(args))
        if not entries:
            return "(nil)"
        return "\n".join(_show(conn, key, item) for key, item in entries)

    if command == "delete":
        if len(args) != 1:
            raise UsageError("usage: delete <key>")
        return "DELETED" if await conn.delete(args[0]) else "NOT_FOUND"

    if command in ("incr", "decr"):
        if len(args) != 2:
            raise UsageError(f"usage: {command} <key> <amount>")
        method = conn.incr if command == "incr" else conn.decr
        value = await method(args[0], args[1])
        return value if value is not None else "NOT_FOUND"

    if command == "flush_all":
        if len(args) > 1:
            raise UsageError("usage: flush_all [delay]")
        await conn.flush_all(_int_arg(args[0], "delay") if args else 0)
        return "OK"

    if command == "version":
        return f"VERSION {await conn.version()}"

    raise UsageError(f"unknown command: {command}")


async def execute_line(conn: Connection, line: str) -> str:
    """
    Run one command line against the connection and describe the result.

    Server rejections and usage mistakes are reported in the returned
    text. Transport failures propagate because the connection is gone.
    """
    parts = line.split()
    if not parts:
        return ""

    command, args = parts[0].lower(), parts[1:]
    try:
        return await _dispatch(conn, command, args)
    except UsageError as exc:
        return f"ERROR {exc}"
    except ProtocolError as exc:
        return str(exc)
    except DecodeFailure as exc:
        logger.error(f"Undecodable reply: {exc}")
        return f"ERROR {exc}"


def parse_args(argv=None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="memcache-text: memcached text protocol client",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    parser.add_argument(
        "--host",
        type=str,
        default=settings.HOST,
        help="Server host",
    )

    parser.add_argument(
        "--port",
        type=int,
        default=settings.PORT,
        help="Server port",
    )

    parser.add_argument(
        "--timeout",
        type=float,
        default=settings.CONNECT_TIMEOUT,
        help="Connect timeout in seconds (0 waits forever)",
    )

    parser.add_argument(
        "--debug",
        action="store_true",
        default=settings.DEBUG,
        help="Enable debug logging",
    )

    parser.add_argument(
        "command",
        nargs=argparse.REMAINDER,
        help="Command to run once instead of starting the prompt",
    )

    return parser.parse_args(argv)


def setup_logging(debug: bool = False) -> None:
    """Configure logging based on debug flag."""
    level = logging.DEBUG if debug else getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)

    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(sys.stderr),
        ]
    )


def _interactive(loop: asyncio.AbstractEventLoop, conn: Connection) -> None:
    print("Connected! Type 'help' for commands.\n")
    while True:
        try:
            line = input(">>> ").strip()
        except EOFError:
            print()
            break

        if not line:
            continue
        if line.lower() in ("exit", "quit"):
            break

        print(loop.run_until_complete(execute_line(conn, line)))


def main(argv=None) -> int:
    """Main entry point for the command line client."""
    args = parse_args(argv)
    setup_logging(debug=args.debug)

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    try:
        conn = loop.run_until_complete(open_connection(args.host, args.port, timeout=args.timeout))
    except TransportError as e:
        logger.error(f"Cannot connect: {e}")
        loop.close()
        return 1

    status = 0
    try:
        if args.command:
            print(loop.run_until_complete(execute_line(conn, " ".join(args.command))))
        else:
            _interactive(loop, conn)
    except KeyboardInterrupt:
        print("\nInterrupted.")
    except TransportError as e:
        logger.error(f"Connection lost: {e}")
        status = 1
    finally:
        loop.run_until_complete(conn.close())
        loop.close()

    return status


if __name__ == "__main__":
    sys.exit(main())
