"""HTTP interface of a node: health check, transfer submission and balances."""

from __future__ import annotations

import abc
import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any

from aiohttp import web

from .types import Receipt

log = logging.getLogger(__name__)

U64_MAX = 2**64 - 1


@dataclass(frozen=True)
class TransferReq:
    """Transfer request accepted by the RPC; ``amount`` defaults to 1."""

    from_: str
    to: str
    amount: int = 1

    @classmethod
    def from_json(cls, obj: Any) -> "TransferReq":
        if not isinstance(obj, dict):
            raise ValueError("transfer request must be a JSON object")
        for name in ("from", "to"):
            if name not in obj:
                raise ValueError(f"missing field `{name}`")
            if not isinstance(obj[name], str):
                raise ValueError(f"field `{name}` must be a string")
        amount = obj.get("amount", 1)
        if not isinstance(amount, int) or isinstance(amount, bool) or not 0 <= amount <= U64_MAX:
            raise ValueError("field `amount` must be an unsigned 64-bit integer")
        return cls(obj["from"], obj["to"], amount)


class NodeApi(abc.ABC):
    """Operations the RPC server needs from a node."""

    @abc.abstractmethod
    async def submit_transfer(self, req: TransferReq) -> Receipt:
        ...

    @abc.abstractmethod
    async def get_balance(self, addr: str) -> int:
        ...


def build_app(api: NodeApi) -> web.Application:
    """Create the web application serving ``api``."""

    async def healthz(request: web.Request) -> web.Response:
        return web.Response(text="ok")

    async def transfer(request: web.Request) -> web.Response:
        try:
            body = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            return web.Response(status=400, text="invalid JSON body")
        try:
            req = TransferReq.from_json(body)
        except ValueError as exc:
            return web.Response(status=422, text=str(exc))
        try:
            receipt = await api.submit_transfer(req)
        except Exception as exc:  # any node failure becomes a server error
            return web.Response(status=500, text=str(exc))
        return web.json_response(receipt.to_json())

    async def balance(request: web.Request) -> web.Response:
        try:
            amount = await api.get_balance(request.match_info["addr"])
        except Exception as exc:
            return web.Response(status=500, text=str(exc))
        return web.json_response(amount)

    app = web.Application()
    app.router.add_get("/healthz", healthz)
    app.router.add_post("/transfer", transfer)
    app.router.add_get("/balance/{addr}", balance)
    return app


def _split_addr(addr: str) -> tuple[str, int]:
    host, sep, port = addr.rpartition(":")
    if not sep or not host or not port.isdigit():
        raise ValueError(f"invalid listen address: {addr!r}")
    return host.strip("[]"), int(port)


async def serve(addr: str, api: NodeApi) -> None:
    """Serve the RPC on ``addr`` ("host:port") until cancelled."""
    host, port = _split_addr(addr)
    runner = web.AppRunner(build_app(api))
    await runner.setup()
    try:
        site = web.TCPSite(runner, host, port)
        await site.start()
        log.info("rpc: listening on %s", addr)
        await asyncio.Event().wait()
    finally:
        await runner.cleanup()