"""The node object: submits transactions and waits for their commit receipts."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Optional

from .executor import Executor
from .mempool import MempoolHandle
from .rpc import NodeApi, TransferReq
from .types import Receipt, SubmitApi, Transfer, Tx, TxId

log = logging.getLogger(__name__)

DEFAULT_TX_TIMEOUT_MS = 5_000


class CommitCanceled(RuntimeError):
    """Raised when a newer submission of the same transaction replaces a waiter."""


class Node(SubmitApi):
    def __init__(
        self,
        mempool: MempoolHandle,
        executor: Executor,
        p2p_publish: "Optional[asyncio.Queue[bytes]]" = None,
        tx_timeout_ms: int = DEFAULT_TX_TIMEOUT_MS,
    ) -> None:
        self._mempool = mempool
        self._executor = executor
        self._p2p_publish = p2p_publish
        self.tx_timeout_ms = tx_timeout_ms
        self._waiters: dict[TxId, asyncio.Future] = {}

    @property
    def executor(self) -> Executor:
        return self._executor

    def spawn_commit_listener(self, committed: "asyncio.Queue[Optional[Receipt]]") -> asyncio.Task:
        """Deliver receipts from ``committed`` to waiting submitters until ``None`` arrives."""
        return asyncio.create_task(self._listen(committed))

    async def _listen(self, committed: "asyncio.Queue[Optional[Receipt]]") -> None:
        while True:
            receipt = await committed.get()
            if receipt is None:
                break
            fut = self._waiters.pop(receipt.tx_id, None)
            if fut is not None and not fut.done():
                fut.set_result(receipt)

    def _register_waiter(self, tx_id: TxId) -> asyncio.Future:
        fut = asyncio.get_running_loop().create_future()
        old = self._waiters.get(tx_id)
        self._waiters[tx_id] = fut
        if old is not None and not old.done():
            old.set_exception(CommitCanceled("commit channel canceled"))
        return fut

    async def enqueue_tx(self, tx: Tx) -> None:
        await self._mempool.enqueue(tx)

    async def submit_transfer(self, transfer: Transfer) -> Receipt:
        tx = Tx.create(transfer)
        if self._p2p_publish is not None:
            message = json.dumps(transfer.to_json(), separators=(",", ":")).encode("utf-8")
            await self._p2p_publish.put(message)
        fut = self._register_waiter(tx.id)
        try:
            await self.enqueue_tx(tx)
            return await asyncio.wait_for(fut, self.tx_timeout_ms / 1000)
        except asyncio.TimeoutError:
            raise TimeoutError("timeout waiting for commit") from None
        finally:
            if self._waiters.get(tx.id) is fut:
                del self._waiters[tx.id]

    async def get_balance(self, addr: str) -> int:
        return self._executor.balance(addr)


class NodeApiAdapter(NodeApi):
    """Presents any SubmitApi to the RPC server."""

    def __init__(self, api: SubmitApi) -> None:
        self.api = api

    async def submit_transfer(self, req: TransferReq) -> Receipt:
        transfer = Transfer(req.from_, req.to, req.amount, nonce=0, payload=None)
        return await self.api.submit_transfer(transfer)

    async def get_balance(self, addr: str) -> int:
        return await self.api.get_balance(addr)