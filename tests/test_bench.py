import asyncio
import contextlib
import re
import socket

import pytest
from aiohttp import test_utils, web

from hotnode.bench import BenchResult, main, percentile, run_bench


def test_percentile_empty():
    assert percentile([], 0.5) == 0.0


def test_percentile_bounds_and_middle():
    values = [1.0, 2.0, 3.0, 4.0, 5.0]
    assert percentile(values, 0.0) == 1.0
    assert percentile(values, 1.0) == 5.0
    assert percentile(values, 0.5) == 3.0


def test_percentile_is_monotonic():
    values = sorted(float(v) for v in range(37))
    picks = [percentile(values, q / 100) for q in range(101)]
    assert picks == sorted(picks)


def test_tps_with_zero_elapsed_is_infinite():
    assert BenchResult(3, 1, 0.0, ()).tps == float("inf")


@contextlib.asynccontextmanager
async def _running(app):
    server = test_utils.TestServer(app)
    await server.start_server()
    try:
        yield f"http://127.0.0.1:{server.port}"
    finally:
        await server.close()


@pytest.mark.asyncio
async def test_run_bench_against_server():
    bodies = []
    state = {"now": 0, "max": 0}

    async def transfer(request):
        state["now"] += 1
        state["max"] = max(state["max"], state["now"])
        bodies.append(await request.json())
        await asyncio.sleep(0.01)
        state["now"] -= 1
        return web.json_response({"ok": True})

    app = web.Application()
    app.router.add_post("/transfer", transfer)
    async with _running(app) as url:
        result = await run_bench(url + "/", 10, 3, "alice", "bench-bob")
    assert len(result.latencies_ms) == 10
    assert list(result.latencies_ms) == sorted(result.latencies_ms)
    assert all(v >= 0 for v in result.latencies_ms)
    assert bodies == [{"from": "alice", "to": "bench-bob", "amount": 1}] * 10
    assert state["max"] <= 3


@pytest.mark.asyncio
async def test_run_bench_rejects_zero_concurrency():
    with pytest.raises(ValueError):
        await run_bench("http://127.0.0.1:1", 1, 0, "alice", "bench-bob")


def _closed_port():
    with socket.socket() as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


def test_main_writes_csv_even_when_unreachable(tmp_path, capsys):
    out = tmp_path / "lat.csv"
    code = main(["--url", f"http://127.0.0.1:{_closed_port()}", "--n", "3",
                 "--concurrency", "2", "--csv", str(out)])
    assert code == 0
    lines = out.read_text().splitlines()
    assert len(lines) == 3
    assert all(re.fullmatch(r"\d+\.\d{3}", line) for line in lines)
    printed = capsys.readouterr().out
    assert printed.startswith("n=3, concurrency=2, elapsed=")
    assert f"Wrote {out}" in printed