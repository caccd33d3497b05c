"""Message transport between validators over length-framed TCP connections."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from typing import Union

log = logging.getLogger(__name__)

Address = tuple[str, int]


@dataclass(frozen=True)
class NetOut:
    addr: Address
    data: bytes


@dataclass(frozen=True)
class Received:
    remote: Address
    data: bytes


@dataclass(frozen=True)
class Connected:
    remote: Address


@dataclass(frozen=True)
class Closed:
    remote: Address


Event = Union[Received, Connected, Closed]


def _parse_addr(text: str) -> Address:
    host, sep, port = text.rpartition(":")
    if not sep or not host or not port.isdigit():
        raise ValueError(f"invalid socket address: {text!r}")
    return host.strip("[]"), int(port)


class TransportHandle:
    """Running endpoint: put NetOut items on ``outbound`` to send them."""

    def __init__(self, events: "asyncio.Queue[Event]") -> None:
        self.outbound: asyncio.Queue[NetOut] = asyncio.Queue(maxsize=4096)
        self._events = events
        self._server: asyncio.AbstractServer | None = None
        self._pool: dict[Address, asyncio.StreamWriter] = {}
        self._incoming: set[asyncio.StreamWriter] = set()
        self._sender: asyncio.Task | None = None

    @property
    def local_addr(self) -> Address:
        assert self._server is not None
        return self._server.sockets[0].getsockname()[:2]

    async def _on_connect(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        remote = tuple(writer.get_extra_info("peername")[:2])
        self._incoming.add(writer)
        await self._events.put(Connected(remote))
        try:
            while True:
                header = await reader.readexactly(4)
                data = await reader.readexactly(int.from_bytes(header, "little"))
                await self._events.put(Received(remote, data))
        except (asyncio.IncompleteReadError, ConnectionError):
            pass
        finally:
            self._incoming.discard(writer)
            writer.close()
            with contextlib.suppress(asyncio.QueueFull):
                self._events.put_nowait(Closed(remote))

    async def _send(self, out: NetOut) -> None:
        writer = self._pool.get(out.addr)
        if writer is None or writer.is_closing():
            _, writer = await asyncio.open_connection(*out.addr)
            self._pool[out.addr] = writer
        writer.write(len(out.data).to_bytes(4, "little") + bytes(out.data))
        await writer.drain()

    async def _send_loop(self) -> None:
        while True:
            out = await self.outbound.get()
            try:
                await self._send(out)
            except OSError as exc:
                log.warning("send error to %s: %s", out.addr, exc)
                writer = self._pool.pop(out.addr, None)
                if writer is not None:
                    writer.close()

    async def close(self) -> None:
        if self._sender is not None:
            self._sender.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._sender
        for writer in list(self._pool.values()) + list(self._incoming):
            writer.close()
        self._pool.clear()
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()


async def spawn_server(bind: str) -> tuple[TransportHandle, "asyncio.Queue[Event]"]:
    """Listen on ``bind`` ("host:port"); return the handle and the inbound event queue."""
    host, port = _parse_addr(bind)
    events: asyncio.Queue[Event] = asyncio.Queue(maxsize=4096)
    handle = TransportHandle(events)
    handle._server = await asyncio.start_server(handle._on_connect, host, port)
    handle._sender = asyncio.create_task(handle._send_loop())
    log.info("transport listening on %s:%s", *handle.local_addr)
    return handle, events