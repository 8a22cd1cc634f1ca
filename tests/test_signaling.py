import asyncio

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from peerdrop.core import protocol
from peerdrop.core.config import RelayConfig
from peerdrop.core.exceptions import SignalingError
from peerdrop.relay.server import RelayServer, create_app
from peerdrop.webrtc.signaling import DISCONNECT, SignalingClient


def ws_url(server):
    return str(server.make_url("/ws")).replace("http", "ws", 1)


def record(client, *events):
    """Queue every delivery of the given relay events."""
    received = asyncio.Queue()
    for event in events:
        client.on(event, lambda data, event=event: received.put_nowait((event, data)))
    return received


async def next_event(received):
    return await asyncio.wait_for(received.get(), 5)


def scripted_app(*frames):
    """Relay stand-in that writes fixed frames to every connection."""
    async def handle(request):
        ws = web.WebSocketResponse()
        await ws.prepare(request)
        for frame in frames:
            await ws.send_str(frame)
        async for _ in ws:
            pass
        return ws
    
    app = web.Application()
    app.router.add_get("/ws", handle)
    return app


async def test_connect_waits_for_assigned_id_and_relays_signals():
    relay = RelayServer(RelayConfig(heartbeat=None))
    async with TestServer(create_app(relay)) as server:
        alice = SignalingClient(ws_url(server))
        bob = SignalingClient(ws_url(server))
        alice_events = record(alice, protocol.ROOM_USERS, protocol.USER_CONNECTED)
        bob_events = record(bob, protocol.ROOM_USERS, protocol.SIGNAL, protocol.RECEIVE_MESSAGE)
        
        await alice.connect()
        await bob.connect()
        
        assert alice.connected and bob.connected
        assert alice.participant_id in relay.connections
        assert bob.participant_id in relay.connections
        assert alice.participant_id != bob.participant_id
        
        await alice.join_room("r1")
        assert await next_event(alice_events) == (protocol.ROOM_USERS, [])
        await bob.join_room("r1")
        assert await next_event(bob_events) == (protocol.ROOM_USERS, [alice.participant_id])
        assert await next_event(alice_events) == (protocol.USER_CONNECTED, bob.participant_id)
        
        offer = {'type': 'offer', 'sdp': 'v=0 offer-from-alice'}
        await alice.send_signal(bob.participant_id, offer)
        assert await next_event(bob_events) == (
            protocol.SIGNAL, {'userId': alice.participant_id, 'signal': offer}
        )
        
        await alice.send_message("r1", {'type': 'text', 'content': "hi"})
        assert await next_event(bob_events) == (
            protocol.RECEIVE_MESSAGE,
            {'userId': alice.participant_id, 'message': {'type': 'text', 'content': "hi"}}
        )
        
        await alice.close()
        await bob.close()


async def test_connect_times_out_without_assigned_id():
    async with TestServer(scripted_app()) as server:
        client = SignalingClient(ws_url(server))
        
        with pytest.raises(SignalingError):
            await client.connect(timeout=0.2)
        
        assert client.connected is False
        assert client.websocket is None


async def test_connect_to_unreachable_relay_raises():
    client = SignalingClient("ws://127.0.0.1:1/ws")
    
    with pytest.raises(SignalingError):
        await client.connect(timeout=1)


async def test_malformed_frames_are_skipped():
    frames = [
        protocol.encode_event(protocol.CONNECTED, {'userId': "me"}),
        "not json",
        '{"data": "missing event"}',
        protocol.encode_event(protocol.USER_CONNECTED, "peer"),
    ]
    async with TestServer(scripted_app(*frames)) as server:
        client = SignalingClient(ws_url(server))
        received = record(client, protocol.USER_CONNECTED)
        
        await client.connect()
        
        assert client.participant_id == "me"
        assert await next_event(received) == (protocol.USER_CONNECTED, "peer")
        assert received.empty()
        
        await client.close()


async def test_relay_shutdown_dispatches_disconnect_and_blocks_emit():
    relay = RelayServer(RelayConfig(heartbeat=None))
    async with TestServer(create_app(relay)) as server:
        client = SignalingClient(ws_url(server))
        received = record(client, DISCONNECT)
        await client.connect()
        
        await relay.cleanup()
        
        assert await next_event(received) == (DISCONNECT, None)
        assert client.connected is False
        with pytest.raises(SignalingError):
            await client.join_room("r1")
        
        await client.close()


async def test_later_handler_replaces_earlier():
    frames = [
        protocol.encode_event(protocol.CONNECTED, {'userId': "me"}),
        protocol.encode_event(protocol.USER_CONNECTED, "peer"),
    ]
    async with TestServer(scripted_app(*frames)) as server:
        client = SignalingClient(ws_url(server))
        first = record(client, protocol.USER_CONNECTED)
        second = record(client, protocol.USER_CONNECTED)
        
        await client.connect()
        
        assert await next_event(second) == (protocol.USER_CONNECTED, "peer")
        assert first.empty()
        
        await client.close()


def test_client_built_before_event_loop_can_connect():
    client = SignalingClient("ws://placeholder/ws")
    assert client.connected is False
    
    async def scenario():
        async with TestServer(create_app(RelayServer(RelayConfig(heartbeat=None)))) as server:
            client.url = ws_url(server)
            await client.connect()
            assert client.connected
            await client.close()
    
    asyncio.run(scenario())
