"""Transaction pool that groups incoming transactions into batches."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from typing import Optional

from .types import Batch, Tx

log = logging.getLogger(__name__)

QUEUE_CAPACITY = 64_000


class MempoolHandle:
    """Client-side entry point of the pool."""

    def __init__(self, queue: "asyncio.Queue[Optional[Tx]]") -> None:
        self._queue = queue

    async def enqueue(self, tx: Tx) -> None:
        await self._queue.put(tx)


def spawn_mempool(
    flush_ms: int, max_batch_len: int, to_consensus: "asyncio.Queue[Batch]"
) -> tuple[MempoolHandle, "asyncio.Queue[Optional[Tx]]"]:
    """Create the client queue and its handle; feed the queue to ``run_mempool``."""
    queue: asyncio.Queue[Optional[Tx]] = asyncio.Queue(maxsize=QUEUE_CAPACITY)
    return MempoolHandle(queue), queue


async def run_mempool(
    from_clients: "asyncio.Queue[Optional[Tx]]",
    to_consensus: "asyncio.Queue[Batch]",
    flush_ms: int,
    max_batch_len: int,
    from_p2p: "Optional[asyncio.Queue[Tx]]" = None,
) -> None:
    """Batch transactions until ``None`` arrives on ``from_clients``.

    A batch is sent when it reaches ``max_batch_len`` client transactions, or on
    every tick of ``flush_ms`` if it is not empty.
    """
    loop = asyncio.get_running_loop()
    period = flush_ms / 1000
    next_tick = loop.time()
    cur: list[Tx] = []
    batch_id = 1
    last_flush = time.monotonic()

    async def flush() -> None:
        nonlocal cur, batch_id, last_flush
        await to_consensus.put(Batch(batch_id, cur))
        batch_id += 1
        cur = []
        now = time.monotonic()
        log.debug("mempool flush after %.6fs", now - last_flush)
        last_flush = now

    def new_tick() -> asyncio.Future:
        return asyncio.ensure_future(asyncio.sleep(max(0.0, next_tick - loop.time())))

    client_get = asyncio.ensure_future(from_clients.get())
    gossip_get = asyncio.ensure_future(from_p2p.get()) if from_p2p is not None else None
    tick = new_tick()
    try:
        while True:
            waiting = {client_get, tick}
            if gossip_get is not None:
                waiting.add(gossip_get)
            done, _ = await asyncio.wait(waiting, return_when=asyncio.FIRST_COMPLETED)
            if client_get in done:
                tx = client_get.result()
                if tx is None:
                    break
                cur.append(tx)
                if len(cur) >= max_batch_len:
                    await flush()
                client_get = asyncio.ensure_future(from_clients.get())
            if gossip_get is not None and gossip_get in done:
                cur.append(gossip_get.result())
                gossip_get = asyncio.ensure_future(from_p2p.get())
            if tick in done:
                if cur:
                    await flush()
                next_tick += period
                tick = new_tick()
    finally:
        for fut in (client_get, gossip_get, tick):
            if fut is not None and not fut.done():
                fut.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await fut