"""
Shared fakes for relay, peer connection and data channel tests.
"""
import asyncio
import itertools

import pytest
from aiortc import RTCSessionDescription

from peerdrop.core import protocol
from peerdrop.core.exceptions import SignalingError
from peerdrop.relay.server import RelayServer
from peerdrop.webrtc.signaling import DISCONNECT


_tokens = itertools.count(1)


async def settle(rounds: int = 25):
    """Let spawned tasks run to completion."""
    for _ in range(rounds):
        await asyncio.sleep(0)


class FakeEmitter:
    """Minimal stand-in for the event emitter aiortc objects inherit."""
    
    def __init__(self):
        self._handlers = {}
    
    def on(self, event):
        def decorator(func):
            self._handlers.setdefault(event, []).append(func)
            return func
        return decorator
    
    def emit(self, event, *args):
        for func in list(self._handlers.get(event, [])):
            result = func(*args)
            if asyncio.iscoroutine(result):
                asyncio.ensure_future(result)


class FakeDataChannel(FakeEmitter):
    def __init__(self, label="data", ready_state="connecting"):
        super().__init__()
        self.label = label
        self.readyState = ready_state
        self.sent = []
        self.peer = None
    
    def open(self):
        self.readyState = "open"
        self.emit("open")
    
    def send(self, data):
        if self.readyState != "open":
            raise RuntimeError("RTCDataChannel is not open")
        self.sent.append(data)
        if self.peer is not None:
            self.peer.emit("message", data)
    
    def deliver(self, data):
        self.emit("message", data)
    
    def close(self):
        if self.readyState == "closed":
            return
        self.readyState = "closed"
        self.emit("close")
        if self.peer is not None:
            self.peer.close()


class FakePeerConnection(FakeEmitter):
    """Records negotiation calls. With a network, answering links two peers."""
    
    def __init__(self, network=None):
        super().__init__()
        self.token = f"pc{next(_tokens)}"
        self.network = network
        self.connectionState = "new"
        self.localDescription = None
        self.remoteDescription = None
        self.added_candidates = []
        self.channels = []
        self.closed = False
        self.fail_remote_description = False
    
    def createDataChannel(self, label):
        channel = FakeDataChannel(label)
        self.channels.append(channel)
        return channel
    
    async def createOffer(self):
        return RTCSessionDescription(sdp=f"v=0 fake-offer {self.token}", type="offer")
    
    async def createAnswer(self):
        if self.remoteDescription is None:
            raise RuntimeError("No remote description")
        return RTCSessionDescription(sdp=f"v=0 fake-answer {self.token}", type="answer")
    
    async def setLocalDescription(self, description):
        self.localDescription = description
    
    async def setRemoteDescription(self, description):
        if self.fail_remote_description:
            raise ValueError("Invalid remote description")
        self.remoteDescription = description
        if self.network is not None and description.type == "answer":
            self.network.link(self, description.sdp.split()[-1])
    
    async def addIceCandidate(self, candidate):
        self.added_candidates.append(candidate)
    
    def set_connection_state(self, state):
        self.connectionState = state
        self.emit("connectionstatechange")
    
    async def close(self):
        self.closed = True
        self.set_connection_state("closed")


class FakeNetwork:
    """Connects fake peer connections once the offerer applies the answer."""
    
    def __init__(self):
        self.connections = {}
    
    def create(self):
        connection = FakePeerConnection(self)
        self.connections[connection.token] = connection
        return connection
    
    def link(self, offerer, answerer_token):
        answerer = self.connections[answerer_token]
        local = offerer.channels[0]
        remote = FakeDataChannel(local.label, ready_state="open")
        local.peer, remote.peer = remote, local
        offerer.connectionState = answerer.connectionState = "connected"
        answerer.emit("datachannel", remote)
        local.open()


class FakeSignaling:
    """In-memory relay client recording everything sent."""
    
    def __init__(self, participant_id="local"):
        self.participant_id = participant_id
        self.handlers = {}
        self.joined = []
        self.sent_signals = []
        self.sent_messages = []
        self.closed = False
        self.fail = False
    
    def on(self, event, handler):
        self.handlers[event] = handler
    
    async def connect(self):
        pass
    
    async def join_room(self, room_id):
        self.joined.append(room_id)
    
    async def send_signal(self, target_id, body):
        if self.fail:
            raise SignalingError("Not connected to relay")
        self.sent_signals.append((target_id, body))
    
    async def send_message(self, room_id, message):
        if self.fail:
            raise SignalingError("Not connected to relay")
        self.sent_messages.append((room_id, message))
    
    async def fire(self, event, data=None):
        handler = self.handlers.get(event)
        if handler is None:
            return
        result = handler(data)
        if asyncio.iscoroutine(result):
            await result
    
    async def close(self):
        self.closed = True
        await self.fire(DISCONNECT)


class FakeTransport:
    """Relay-side transport that records frames written to a participant."""
    
    def __init__(self):
        self.frames = []
        self.closed = False
    
    async def send_json(self, data):
        self.frames.append(data)
    
    async def close(self):
        self.closed = True
    
    def events(self, name=None):
        return [f['data'] for f in self.frames if name is None or f['event'] == name]


class LoopbackTransport:
    def __init__(self, client):
        self.client = client
        self.closed = False
    
    async def send_json(self, data):
        await self.client.fire(data['event'], data['data'])
    
    async def close(self):
        self.closed = True


class LoopbackSignaling(FakeSignaling):
    """Relay client wired straight into an in-process RelayServer."""
    
    def __init__(self, relay: RelayServer):
        super().__init__(participant_id=None)
        self.relay = relay
        self.transport = LoopbackTransport(self)
    
    async def connect(self):
        self.participant_id = self.relay.register(self.transport)
    
    async def join_room(self, room_id):
        await self.relay.dispatch(self.participant_id, protocol.encode_event(protocol.JOIN_ROOM, room_id))
    
    async def send_signal(self, target_id, body):
        await self.relay.dispatch(
            self.participant_id,
            protocol.encode_event(protocol.SIGNAL, {'userId': target_id, 'signal': body})
        )
    
    async def send_message(self, room_id, message):
        await self.relay.dispatch(
            self.participant_id,
            protocol.encode_event(protocol.SEND_MESSAGE, {'roomId': room_id, 'message': message})
        )
    
    async def close(self):
        self.closed = True
        self.transport.closed = True
        await self.relay.leave(self.participant_id)
        await self.fire(DISCONNECT)


@pytest.fixture
def relay():
    return RelayServer()


@pytest.fixture
def network():
    return FakeNetwork()
