import asyncio

import pytest

from hotnode.transport import Connected, NetOut, Received, spawn_server


@pytest.mark.asyncio
async def test_message_delivery():
    a, _ = await spawn_server("127.0.0.1:0")
    b, b_events = await spawn_server("127.0.0.1:0")
    try:
        await a.outbound.put(NetOut(b.local_addr, b"first"))
        await a.outbound.put(NetOut(b.local_addr, b"second"))
        first = await asyncio.wait_for(b_events.get(), 2)
        assert isinstance(first, Connected)
        got = [await asyncio.wait_for(b_events.get(), 2) for _ in range(2)]
        assert [e.data for e in got] == [b"first", b"second"]
        assert all(isinstance(e, Received) and e.remote == first.remote for e in got)
    finally:
        await a.close()
        await b.close()


@pytest.mark.asyncio
async def test_invalid_bind():
    with pytest.raises(ValueError):
        await spawn_server("no-port-here")


@pytest.mark.asyncio
async def test_send_failure_does_not_stop_sender():
    a, _ = await spawn_server("127.0.0.1:0")
    b, b_events = await spawn_server("127.0.0.1:0")
    dead, _ = await spawn_server("127.0.0.1:0")
    dead_addr = dead.local_addr
    await dead.close()
    try:
        await a.outbound.put(NetOut(dead_addr, b"lost"))
        await a.outbound.put(NetOut(b.local_addr, b"ok"))
        await asyncio.wait_for(b_events.get(), 2)
        msg = await asyncio.wait_for(b_events.get(), 2)
        assert msg.data == b"ok"
    finally:
        await a.close()
        await b.close()