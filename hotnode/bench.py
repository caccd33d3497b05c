"""Load generator for a node's transfer RPC."""

from __future__ import annotations

import argparse
import asyncio
import math
import time
from dataclasses import dataclass
from typing import Sequence

import aiohttp

from . import telemetry

DEFAULT_URL = "http://127.0.0.1:8080"


@dataclass(frozen=True)
class BenchResult:
    n: int
    concurrency: int
    elapsed: float
    latencies_ms: tuple[float, ...]

    @property
    def tps(self) -> float:
        return self.n / self.elapsed if self.elapsed > 0 else math.inf


def percentile(sorted_values: Sequence[float], q: float) -> float:
    """Nearest-rank percentile of already sorted values; 0.0 when empty."""
    if not sorted_values:
        return 0.0
    idx = math.floor((len(sorted_values) - 1) * q + 0.5)
    return sorted_values[idx]


async def _one(session: aiohttp.ClientSession, target: str, body: dict,
               sem: asyncio.Semaphore) -> float:
    async with sem:
        started = time.perf_counter()
        try:
            async with session.post(target, json=body) as resp:
                elapsed = (time.perf_counter() - started) * 1000
                if 200 <= resp.status < 300:
                    await resp.read()
                return elapsed
        except (aiohttp.ClientError, OSError, asyncio.TimeoutError):
            return (time.perf_counter() - started) * 1000


async def run_bench(url: str = DEFAULT_URL, n: int = 1000, concurrency: int = 32,
                    sender: str = "alice", recipient: str = "bench-bob") -> BenchResult:
    """Send ``n`` transfers with at most ``concurrency`` in flight; failures still count."""
    if concurrency < 1:
        raise ValueError("concurrency must be at least 1")
    target = url.rstrip("/") + "/transfer"
    body = {"from": sender, "to": recipient, "amount": 1}
    sem = asyncio.Semaphore(concurrency)
    started = time.perf_counter()
    async with aiohttp.ClientSession() as session:
        latencies = await asyncio.gather(*(_one(session, target, body, sem) for _ in range(n)))
    elapsed = time.perf_counter() - started
    return BenchResult(n, concurrency, elapsed, tuple(sorted(latencies)))


def _report(result: BenchResult) -> str:
    lat = result.latencies_ms
    return (
        f"n={result.n}, concurrency={result.concurrency}, "
        f"elapsed={result.elapsed:.2f}s, tps={result.tps:.1f}\n"
        f"p50={percentile(lat, 0.50):.0f} ms  p95={percentile(lat, 0.95):.0f} ms  "
        f"p99={percentile(lat, 0.99):.0f} ms"
    )


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        prog="hotnode-bench",
        description="Simple load generator for the node RPC (POST /transfer)",
    )
    parser.add_argument("--url", default=DEFAULT_URL, help="base URL of the node RPC")
    parser.add_argument("--n", type=int, default=1000, help="total number of requests")
    parser.add_argument("--concurrency", type=int, default=32, help="in-flight requests")
    parser.add_argument("--from", dest="sender", default="alice", help="logical sender")
    parser.add_argument("--to", dest="recipient", default="bench-bob", help="logical recipient")
    parser.add_argument("--csv", help="file to write per-request latencies (ms)")
    args = parser.parse_args(argv)

    telemetry.init()
    result = asyncio.run(
        run_bench(args.url, args.n, args.concurrency, args.sender, args.recipient)
    )
    print(_report(result))
    if args.csv:
        with open(args.csv, "w", encoding="utf-8") as fh:
            fh.writelines(f"{v:.3f}\n" for v in result.latencies_ms)
        print(f"Wrote {args.csv}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())