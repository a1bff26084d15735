import os
import sys

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "flocksync"))

from flocksync.realtime import events
from flocksync.realtime.transport import SocketTransport


@pytest.mark.asyncio
async def test_connect_and_disconnect_reach_subscribers():
    transport = SocketTransport("http://localhost:3000")
    seen = []
    transport.on(events.CONNECT, lambda _: seen.append(("connect", transport.connected)))
    off = transport.on(events.DISCONNECT, lambda _: seen.append(("disconnect", transport.connected)))

    await transport._on_connect()
    await transport._on_disconnect()
    off()
    await transport._on_connect()
    assert seen == [("connect", True), ("disconnect", False), ("connect", True)]


def test_emit_while_disconnected_is_dropped():
    transport = SocketTransport("http://localhost:3000")
    assert not transport.connected
    transport.join_flock("3")
    assert not transport._pending
