#!/usr/bin/env python3
"""
Benchmark Script for memcache-text

Stores the content of a file under one key on a running memcached server,
then fetches it repeatedly over a single connection and reports timing.

Usage:
    python scripts/benchmark.py FILE                  # 50000 gets
    python scripts/benchmark.py FILE --cycles 1000    # Custom cycle count
    python scripts/benchmark.py FILE --port 11212     # Custom server port
"""

import argparse
import asyncio
import statistics
import sys
import time
from pathlib import Path
from typing import Any, Dict

from memcache_text import Reply, open_connection
from memcache_text.config.settings import settings

KEY = "benchmark"


async def run_benchmark(host: str, port: int, content: bytes, cycles: int) -> Dict[str, Any]:
    """Store content once, then get it cycles times, checking every reply."""
    conn = await open_connection(host, port)
    try:
        reply = await conn.set(KEY, content, exptime=360)
        if reply is not Reply.STORED:
            raise RuntimeError(f"set returned {reply.value}")

        times = []
        started = time.perf_counter()
        for _ in range(cycles):
            begin = time.perf_counter()
            found = await conn.get(KEY)
            times.append((time.perf_counter() - begin) * 1000)  # Convert to ms

            if found is None:
                raise RuntimeError(f"{KEY} vanished from the server")
            key, item = found
            if key != KEY or len(item.data) != len(content):
                raise RuntimeError(f"unexpected reply for {KEY}: {len(item.data)} bytes")
        elapsed = time.perf_counter() - started
    finally:
        await conn.close()

    return {
        "cycles": cycles,
        "bytes": len(content),
        "total_s": elapsed,
        "ops_per_second": cycles / elapsed if elapsed else float("inf"),
        "mean_ms": statistics.mean(times) if times else 0.0,
        "median_ms": statistics.median(times) if times else 0.0,
        "max_ms": max(times) if times else 0.0,
    }


def main() -> int:
    parser = argparse.ArgumentParser(description="Benchmark get round trips against memcached")
    parser.add_argument("file", type=Path, help="File whose content is stored and fetched")
    parser.add_argument("--cycles", type=int, default=50000, help="Number of get round trips")
    parser.add_argument("--host", type=str, default=settings.HOST, help="Server host")
    parser.add_argument("--port", type=int, default=settings.PORT, help="Server port")
    args = parser.parse_args()

    content = args.file.read_bytes()
    stats = asyncio.run(run_benchmark(args.host, args.port, content, args.cycles))

    print(f"{stats['cycles']} cycles done in {stats['total_s']:f}")
    print(f"  value size:  {stats['bytes']} bytes")
    print(f"  throughput:  {stats['ops_per_second']:.0f} ops/s")
    print(f"  latency:     mean {stats['mean_ms']:.3f} ms, "
          f"median {stats['median_ms']:.3f} ms, max {stats['max_ms']:.3f} ms")
    return 0


if __name__ == "__main__":
    sys.exit(main())
